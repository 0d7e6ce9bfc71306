# -*- coding: utf-8 -*-
"""Deterministic per-day scheduling rules: cleanse phases, fasting windows, milestones."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .models import Intensity, Milestone


@dataclass(frozen=True)
class Phase:
    name: str
    start_day: int
    end_day: int

    def contains(self, day: int) -> bool:
        return self.start_day <= day <= self.end_day


@dataclass(frozen=True)
class FastingWindow:
    ratio: str
    fasting: str
    eating: str


# (phase name, last day) on a reference length; scaled to the actual duration.
_CLEANSE_TEMPLATES: Tuple[Tuple[int, Tuple[Tuple[str, int], ...]], ...] = (
    (7, (("Active Cleanse", 7),)),
    (14, (("Preparation", 2), ("Active Cleanse", 12), ("Restoration", 14))),
    (
        30,
        (
            ("Preparation", 3),
            ("Active Cleanse Phase 1", 14),
            ("Maintenance", 25),
            ("Restoration", 30),
        ),
    ),
    (
        90,
        (
            ("Preparation", 7),
            ("Active Cleanse Phase 1", 30),
            ("Rest Period", 37),
            ("Active Cleanse Phase 2", 60),
            ("Maintenance", 80),
            ("Restoration", 90),
        ),
    ),
)

FASTING_WINDOWS = {
    Intensity.GENTLE: FastingWindow("16:8", "8:00 PM - 12:00 PM next day", "12:00 PM - 8:00 PM"),
    Intensity.MODERATE: FastingWindow("18:6", "7:00 PM - 1:00 PM next day", "1:00 PM - 7:00 PM"),
    Intensity.INTENSIVE: FastingWindow("20:4", "6:00 PM - 2:00 PM next day", "2:00 PM - 6:00 PM"),
}


def _scale(last_day: int, reference: int, duration: int) -> int:
    return int(last_day * duration / reference + 0.5)


def cleanse_phases(duration_days: int) -> List[Phase]:
    """Split a parasite cleanse into named phases covering every day exactly once."""
    if duration_days < 1:
        return []
    reference, template = _CLEANSE_TEMPLATES[-1]
    for max_days, candidate in _CLEANSE_TEMPLATES:
        if duration_days <= max_days:
            reference, template = max_days, candidate
            break

    phases: List[Phase] = []
    start = 1
    for index, (name, last_day) in enumerate(template):
        remaining = len(template) - index - 1
        if remaining == 0:
            end = duration_days
        else:
            end = _scale(last_day, reference, duration_days)
            # Leave at least one day for each remaining phase when it fits.
            end = min(max(end, start), duration_days - remaining)
        if end < start:
            continue
        phases.append(Phase(name=name, start_day=start, end_day=end))
        start = end + 1
    return phases


def phase_for_day(phases: Sequence[Phase], day: int) -> Optional[str]:
    for phase in phases:
        if phase.contains(day):
            return phase.name
    return None


def fasting_window(intensity: Intensity) -> FastingWindow:
    return FASTING_WINDOWS[intensity]


def milestone_interval(duration_days: int) -> int:
    return 7 if duration_days <= 30 else 14


def milestones(duration_days: int) -> List[Milestone]:
    interval = milestone_interval(duration_days)
    items = [
        Milestone(day=day, title=f"Day {day} progress check-in")
        for day in range(interval, duration_days + 1, interval)
    ]
    if not items or items[-1].day != duration_days:
        items.append(Milestone(day=duration_days, title="Protocol completion review"))
    return items

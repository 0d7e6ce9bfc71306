# -*- coding: utf-8 -*-

from __future__ import annotations

import unittest

from fitmeal.protocols.aggregator import aggregate
from fitmeal.protocols.assembler import assemble, build_ingredient_guide, build_symptom_template
from fitmeal.protocols.errors import IncompleteGenerationError
from fitmeal.protocols.models import (
    DaySchedule,
    DisclaimerSeverity,
    DraftDay,
    GenerationRequest,
    Meal,
    RawArtifactDraft,
)
from fitmeal.protocols.scheduling import cleanse_phases, fasting_window, milestones

from fakes import make_meal


def _draft(days, start: int = 1) -> RawArtifactDraft:
    return RawArtifactDraft(
        days=[
            DraftDay.model_validate({"day": day, "meals": [make_meal()]})
            for day in range(start, start + days)
        ]
    )


def _request(**overrides) -> GenerationRequest:
    payload = {
        "protocol_kind": "ailment-targeted",
        "duration_days": 14,
        "selected_condition_ids": ["bloating", "constipation"],
        "healthcare_provider_consent": True,
    }
    payload.update(overrides)
    return GenerationRequest.model_validate(payload)


class TestAssembler(unittest.TestCase):
    def test_schedule_length_matches_duration(self) -> None:
        request = _request()
        focus = aggregate(request.selected_condition_ids)
        draft = RawArtifactDraft(days=list(reversed(_draft(14).days)))

        artifact = assemble(draft, request, focus)
        self.assertEqual(artifact.duration_days, 14)
        self.assertEqual([s.day for s in artifact.daily_schedules], list(range(1, 15)))
        self.assertEqual(artifact.nutrition_focus, focus)
        self.assertTrue(artifact.version.startswith("1+kb."))

    def test_short_draft_rejected(self) -> None:
        request = _request()
        focus = aggregate(request.selected_condition_ids)
        with self.assertRaises(IncompleteGenerationError):
            assemble(_draft(10), request, focus)

    def test_ingredient_guide_deduplicates(self) -> None:
        schedules = [
            DaySchedule(
                day=1,
                meals=[Meal.model_validate(make_meal(ingredients=("Oats", "Ginger")))],
            ),
            DaySchedule(
                day=2,
                meals=[
                    Meal.model_validate(make_meal(ingredients=("oats", "Prunes"))),
                    Meal.model_validate(make_meal(ingredients=("GINGER",))),
                ],
            ),
        ]
        guide = build_ingredient_guide(schedules)
        self.assertEqual([g.name for g in guide], ["Oats", "Ginger", "Prunes"])
        self.assertEqual([g.occurrences for g in guide], [2, 2, 1])
        self.assertEqual([g.first_day for g in guide], [1, 1, 2])

    def test_symptom_template_per_category(self) -> None:
        template = build_symptom_template(aggregate(["bloating", "constipation", "anxiety"]))
        categories = [c.category for c in template.checks]
        self.assertEqual(categories.count("digestive"), 3)
        self.assertEqual(categories.count("mental-health"), 3)
        for check in template.checks:
            self.assertEqual((check.scale_min, check.scale_max), (1, 5))

        default = build_symptom_template(aggregate([]))
        self.assertEqual({c.category for c in default.checks}, {"general-wellness"})

    def test_disclaimer_severity_by_kind(self) -> None:
        expected = {
            "parasite-cleanse": (DisclaimerSeverity.HIGH, True),
            "longevity": (DisclaimerSeverity.MEDIUM, True),
            "general-wellness": (DisclaimerSeverity.LOW, False),
        }
        for kind, (severity, ack) in expected.items():
            with self.subTest(kind=kind):
                request = _request(protocol_kind=kind, selected_condition_ids=[])
                artifact = assemble(_draft(14), request, aggregate([]))
                self.assertEqual(artifact.safety_disclaimer.severity, severity)
                self.assertEqual(artifact.safety_disclaimer.acknowledgment_required, ack)

    def test_conflicts_require_acknowledgment(self) -> None:
        request = _request(selected_condition_ids=["bloating", "liver_congestion"])
        focus = aggregate(request.selected_condition_ids)
        artifact = assemble(_draft(14), request, focus, ["conflict warning"])
        disclaimer = artifact.safety_disclaimer
        self.assertEqual(disclaimer.severity, DisclaimerSeverity.LOW)
        self.assertTrue(disclaimer.acknowledgment_required)
        self.assertIn("Consult your provider regarding Cruciferous vegetables.", disclaimer.content)
        self.assertEqual(disclaimer.warnings, ["conflict warning"])

    def test_parasite_cleanse_phases(self) -> None:
        request = _request(protocol_kind="parasite-cleanse", selected_condition_ids=[])
        artifact = assemble(_draft(14), request, aggregate([]))
        phases = [s.phase for s in artifact.daily_schedules]
        self.assertEqual(phases[:2], ["Preparation"] * 2)
        self.assertEqual(phases[2:12], ["Active Cleanse"] * 10)
        self.assertEqual(phases[12:], ["Restoration"] * 2)
        self.assertIsNone(artifact.daily_schedules[0].fasting_window)

    def test_longevity_fasting_windows(self) -> None:
        request = _request(protocol_kind="longevity", intensity="intensive", selected_condition_ids=[])
        artifact = assemble(_draft(14), request, aggregate([]))
        for schedule in artifact.daily_schedules:
            self.assertEqual(schedule.eating_window, "2:00 PM - 6:00 PM")
            self.assertIsNone(schedule.phase)

    def test_milestones(self) -> None:
        request = _request()
        artifact = assemble(_draft(14), request, aggregate(request.selected_condition_ids))
        self.assertEqual([m.day for m in artifact.milestones], [7, 14])


class TestScheduling(unittest.TestCase):
    def test_phases_cover_every_day_once(self) -> None:
        for duration in range(1, 91):
            with self.subTest(duration=duration):
                phases = cleanse_phases(duration)
                covered = [day for p in phases for day in range(p.start_day, p.end_day + 1)]
                self.assertEqual(covered, list(range(1, duration + 1)))

    def test_reference_durations_match_fixed_tables(self) -> None:
        self.assertEqual([(p.name, p.start_day, p.end_day) for p in cleanse_phases(7)], [("Active Cleanse", 1, 7)])
        self.assertEqual(
            [(p.start_day, p.end_day) for p in cleanse_phases(30)],
            [(1, 3), (4, 14), (15, 25), (26, 30)],
        )
        self.assertEqual(
            [(p.name, p.end_day) for p in cleanse_phases(90)],
            [
                ("Preparation", 7),
                ("Active Cleanse Phase 1", 30),
                ("Rest Period", 37),
                ("Active Cleanse Phase 2", 60),
                ("Maintenance", 80),
                ("Restoration", 90),
            ],
        )

    def test_fasting_window_ratios(self) -> None:
        self.assertEqual(fasting_window("gentle").ratio, "16:8")
        self.assertEqual(fasting_window("moderate").ratio, "18:6")
        self.assertEqual(fasting_window("intensive").ratio, "20:4")

    def test_milestone_interval(self) -> None:
        self.assertEqual([m.day for m in milestones(30)], [7, 14, 21, 28, 30])
        self.assertEqual([m.day for m in milestones(60)], [14, 28, 42, 56, 60])
        self.assertEqual([m.day for m in milestones(3)], [3])


if __name__ == "__main__":
    unittest.main()

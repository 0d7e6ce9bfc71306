# -*- coding: utf-8 -*-
"""Protocol artifact assembly.

Pure and deterministic apart from the ``generated_at`` stamp: the same draft,
request and focus always produce the same schedules, guide, tracking template
and disclaimer.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from .conditions import get_category, get_condition, knowledge_base_version
from .errors import IncompleteGenerationError
from .models import (
    DaySchedule,
    DisclaimerSeverity,
    GenerationRequest,
    IngredientGuideEntry,
    NutritionFocus,
    ProtocolArtifact,
    ProtocolKind,
    RawArtifactDraft,
    SafetyDisclaimer,
    SymptomCheck,
    SymptomTrackingTemplate,
)
from .scheduling import cleanse_phases, fasting_window, milestones, phase_for_day

logger = logging.getLogger(__name__)

ARTIFACT_SCHEMA_VERSION = "1"

GENERAL_WELLNESS_CHECKS = ("Energy level", "Sleep quality", "Digestive comfort", "Mood")

_BASE_DISCLAIMER = (
    "This protocol is general nutrition guidance and is not a substitute for "
    "professional medical advice, diagnosis or treatment."
)

_KIND_DISCLAIMERS: Dict[ProtocolKind, str] = {
    ProtocolKind.PARASITE_CLEANSE: (
        "Parasite cleanse protocols can cause significant digestive and systemic effects. "
        "Follow this protocol only under the supervision of your healthcare provider and "
        "stop immediately if you experience severe symptoms."
    ),
    ProtocolKind.LONGEVITY: (
        "Extended fasting windows are not suitable for everyone. Confirm with your "
        "healthcare provider before starting, especially if you take medication."
    ),
}

_SEVERITY_BY_KIND: Dict[ProtocolKind, DisclaimerSeverity] = {
    ProtocolKind.PARASITE_CLEANSE: DisclaimerSeverity.HIGH,
    ProtocolKind.LONGEVITY: DisclaimerSeverity.MEDIUM,
}


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_ingredient_guide(schedules: Sequence[DaySchedule]) -> List[IngredientGuideEntry]:
    first_day: Dict[str, int] = {}
    spelling: Dict[str, str] = {}
    counts: Dict[str, int] = {}
    for schedule in schedules:
        for meal in schedule.meals:
            for ingredient in meal.ingredients:
                name = ingredient.strip()
                key = name.casefold()
                if not key:
                    continue
                if key not in spelling:
                    spelling[key] = name
                    first_day[key] = schedule.day
                counts[key] = counts.get(key, 0) + 1
    return [
        IngredientGuideEntry(name=spelling[key], first_day=first_day[key], occurrences=counts[key])
        for key in spelling
    ]


def build_symptom_template(focus: NutritionFocus) -> SymptomTrackingTemplate:
    checks: List[SymptomCheck] = []
    seen_categories: List[str] = []
    for cid in focus.condition_ids:
        condition = get_condition(cid)
        if condition is None or condition.category in seen_categories:
            continue
        seen_categories.append(condition.category)
        category = get_category(condition.category)
        if category is None:
            continue
        checks.extend(
            SymptomCheck(category=category.id, symptom=symptom)
            for symptom in category.tracked_symptoms
        )
    if not checks:
        checks = [
            SymptomCheck(category="general-wellness", symptom=symptom)
            for symptom in GENERAL_WELLNESS_CHECKS
        ]
    return SymptomTrackingTemplate(frequency="daily", checks=checks)


def build_disclaimer(
    request: GenerationRequest,
    focus: NutritionFocus,
    warnings: Sequence[str],
) -> SafetyDisclaimer:
    severity = _SEVERITY_BY_KIND.get(request.protocol_kind, DisclaimerSeverity.LOW)
    paragraphs = [_BASE_DISCLAIMER]
    kind_text = _KIND_DISCLAIMERS.get(request.protocol_kind)
    if kind_text:
        paragraphs.append(kind_text)
    for cid in focus.condition_ids:
        condition = get_condition(cid)
        if condition is not None and condition.medical_disclaimer:
            paragraphs.append(f"{condition.display_name}: {condition.medical_disclaimer}.")
    for item in focus.conflicts:
        paragraphs.append(f"Consult your provider regarding {item}.")

    return SafetyDisclaimer(
        content="\n\n".join(paragraphs),
        severity=severity,
        acknowledgment_required=severity != DisclaimerSeverity.LOW or bool(focus.conflicts),
        warnings=list(warnings),
    )


def _day_focus(focus: NutritionFocus, day: int) -> Optional[str]:
    if not focus.meal_plan_focus:
        return None
    return focus.meal_plan_focus[(day - 1) % len(focus.meal_plan_focus)]


def build_schedules(
    draft: RawArtifactDraft,
    request: GenerationRequest,
    focus: NutritionFocus,
) -> List[DaySchedule]:
    expected = request.duration_days
    by_day = {day.day: day for day in draft.days}
    missing = [number for number in range(1, expected + 1) if number not in by_day]
    if missing or len(by_day) != expected:
        logger.warning(
            "Discarding incomplete draft: %d of %d day(s) present", len(by_day), expected
        )
        raise IncompleteGenerationError()

    phases = (
        cleanse_phases(expected) if request.protocol_kind == ProtocolKind.PARASITE_CLEANSE else []
    )
    window = (
        fasting_window(request.intensity)
        if request.protocol_kind == ProtocolKind.LONGEVITY
        else None
    )

    schedules: List[DaySchedule] = []
    for number in range(1, expected + 1):
        schedules.append(
            DaySchedule(
                day=number,
                meals=list(by_day[number].meals),
                phase=phase_for_day(phases, number),
                focus=_day_focus(focus, number),
                fasting_window=window.fasting if window else None,
                eating_window=window.eating if window else None,
            )
        )
    return schedules


def assemble(
    draft: RawArtifactDraft,
    request: GenerationRequest,
    focus: NutritionFocus,
    warnings: Sequence[str] = (),
) -> ProtocolArtifact:
    schedules = build_schedules(draft, request, focus)
    return ProtocolArtifact(
        version=f"{ARTIFACT_SCHEMA_VERSION}+kb.{knowledge_base_version()}",
        protocol_kind=request.protocol_kind,
        duration_days=request.duration_days,
        daily_schedules=schedules,
        ingredient_guide=build_ingredient_guide(schedules),
        symptom_tracking_template=build_symptom_template(focus),
        safety_disclaimer=build_disclaimer(request, focus, warnings),
        milestones=milestones(request.duration_days),
        nutrition_focus=focus,
        generated_at=_utc_now(),
    )

# -*- coding: utf-8 -*-
"""
Medical safety gating for protocol requests.

Rules run in a fixed order and stop at the first blocking finding:
numeric boundaries, contraindications, then provider consent. Soft findings
never block; they are returned as warnings for the safety disclaimer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .aggregator import aggregate, mentions
from .conditions import conflict_groups, find_medication, get_condition
from .errors import (
    BoundaryViolation,
    ConsentRequiredError,
    ContraindicationError,
    ProtocolError,
)
from .models import ExperienceLevel, GenerationRequest, Intensity, ProtocolKind

logger = logging.getLogger(__name__)

DURATION_RANGE = (1, 90)
AGE_RANGE = (13, 120)
CALORIE_RANGE = (800, 6000)
WEIGHT_RANGE = (30.0, 300.0)

CONSENT_REQUIRED_KINDS = frozenset({ProtocolKind.PARASITE_CLEANSE, ProtocolKind.LONGEVITY})


@dataclass
class SafetyVerdict:
    """Result of one safety evaluation."""
    error: Optional[ProtocolError] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def approved(self) -> bool:
        return self.error is None


def _in_range(value: float, bounds) -> bool:
    low, high = bounds
    return low <= value <= high


class SafetyValidator:
    """
    Safety validator

    Evaluates a sanitized GenerationRequest once. ``evaluate`` never raises for
    a rule violation; ``enforce`` raises the blocking error.
    """

    def evaluate(self, request: GenerationRequest) -> SafetyVerdict:
        error = (
            self._check_boundaries(request)
            or self._check_contraindications(request)
            or self._check_consent(request)
        )
        if error is not None:
            logger.info("Protocol request blocked (code=%s)", error.code)
            return SafetyVerdict(error=error)
        return SafetyVerdict(warnings=self._soft_warnings(request))

    def enforce(self, request: GenerationRequest) -> List[str]:
        verdict = self.evaluate(request)
        if verdict.error is not None:
            raise verdict.error
        return verdict.warnings

    def _check_boundaries(self, request: GenerationRequest) -> Optional[ProtocolError]:
        if not _in_range(request.duration_days, DURATION_RANGE):
            return BoundaryViolation(
                f"Protocol duration must be between {DURATION_RANGE[0]} and {DURATION_RANGE[1]} days."
            )
        profile = request.client_profile
        if profile.age is not None and not _in_range(profile.age, AGE_RANGE):
            return BoundaryViolation(
                f"Client age must be between {AGE_RANGE[0]} and {AGE_RANGE[1]}."
            )
        if profile.weight_kg is not None and not _in_range(profile.weight_kg, WEIGHT_RANGE):
            return BoundaryViolation(
                f"Client weight must be between {WEIGHT_RANGE[0]:g} and {WEIGHT_RANGE[1]:g} kg."
            )
        if not _in_range(request.daily_calorie_target, CALORIE_RANGE):
            return BoundaryViolation(
                f"Daily calorie target must be between {CALORIE_RANGE[0]} and {CALORIE_RANGE[1]}."
            )
        if any(get_condition(cid) is None for cid in request.selected_condition_ids):
            return BoundaryViolation("One or more selected conditions are not recognized.")
        if (
            request.protocol_kind == ProtocolKind.AILMENT_TARGETED
            and not request.selected_condition_ids
        ):
            return BoundaryViolation("Ailment-targeted protocols require at least one condition.")
        return None

    def _check_contraindications(self, request: GenerationRequest) -> Optional[ProtocolError]:
        # Pregnancy blocks a parasite cleanse regardless of consent.
        if (
            request.protocol_kind == ProtocolKind.PARASITE_CLEANSE
            and request.pregnancy_or_breastfeeding
        ):
            return ContraindicationError()
        return None

    def _check_consent(self, request: GenerationRequest) -> Optional[ProtocolError]:
        if (
            request.protocol_kind in CONSENT_REQUIRED_KINDS
            and not request.healthcare_provider_consent
        ):
            return ConsentRequiredError()
        return None

    def _soft_warnings(self, request: GenerationRequest) -> List[str]:
        warnings: List[str] = []
        selected = set(request.selected_condition_ids)

        for group in conflict_groups():
            if set(group.condition_ids) <= selected:
                names = [get_condition(cid).display_name for cid in group.condition_ids]
                warnings.append(
                    f"{' and '.join(names)} have conflicting guidance on {group.topic}; "
                    "review with your healthcare provider."
                )

        if (
            request.intensity == Intensity.INTENSIVE
            and request.experience_level == ExperienceLevel.FIRST_TIME
        ):
            warnings.append(
                "Intensive protocols are not recommended for first-time participants; "
                "consider a gentle or moderate intensity."
            )

        severe = [
            get_condition(cid).display_name
            for cid in request.selected_condition_ids
            if get_condition(cid).severity_tier == "severe"
        ]
        if severe:
            warnings.append(
                f"{', '.join(severe)} requires ongoing medical care; "
                "work closely with your healthcare provider."
            )
        warnings.extend(self._medication_warnings(request))
        return warnings

    def _medication_warnings(self, request: GenerationRequest) -> List[str]:
        if not request.medications:
            return []
        focus = aggregate(request.selected_condition_ids, request.priority_level, request.allergies)
        recommended = [*focus.beneficial_foods, *focus.key_nutrients]
        warnings: List[str] = []
        seen: set = set()
        for name in request.medications:
            medication = find_medication(name)
            # Brand and generic names resolve to the same entry.
            if medication is None or medication.id in seen:
                continue
            seen.add(medication.id)
            for interaction in medication.interactions:
                hit = next((item for item in recommended if mentions(item, interaction.substance)), None)
                if hit is None:
                    continue
                warnings.append(
                    f"{medication.display_name} may interact with {hit} in this protocol "
                    f"({interaction.severity}): {interaction.description}. {interaction.recommendation}."
                )
        return warnings


_default_validator = SafetyValidator()


def evaluate(request: GenerationRequest) -> SafetyVerdict:
    return _default_validator.evaluate(request)


def enforce(request: GenerationRequest) -> List[str]:
    return _default_validator.enforce(request)

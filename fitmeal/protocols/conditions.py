# -*- coding: utf-8 -*-
"""Condition knowledge base.

Conditions, categories and conflict groups live in ``data/conditions.json`` and
are loaded once per process into id-indexed mappings. Adding a condition is a
data change; nothing here branches on a specific condition id.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..config import settings
from .errors import BoundaryViolation
from .models import Condition, ConditionCategory, ConflictGroup, Medication

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KnowledgeBase:
    version: str
    conditions: Dict[str, Condition]
    categories: Dict[str, ConditionCategory]
    conflict_groups: Tuple[ConflictGroup, ...]
    medications: Dict[str, Medication]
    # Case-folded id or alias to medication id.
    medication_names: Dict[str, str]


def _load(path: Path) -> KnowledgeBase:
    raw = json.loads(path.read_text(encoding="utf-8"))
    categories = {
        item["id"]: ConditionCategory.model_validate(item) for item in raw.get("categories", [])
    }
    conditions: Dict[str, Condition] = {}
    for item in raw.get("conditions", []):
        condition = Condition.model_validate(item)
        if condition.category not in categories:
            raise ValueError(f"Condition {condition.id} references unknown category {condition.category}")
        if condition.id in conditions:
            raise ValueError(f"Duplicate condition id {condition.id}")
        conditions[condition.id] = condition
    groups = tuple(ConflictGroup.model_validate(item) for item in raw.get("conflict_groups", []))
    for group in groups:
        missing = [cid for cid in group.condition_ids if cid not in conditions]
        if missing:
            raise ValueError(f"Conflict group references unknown conditions: {missing}")
    medications: Dict[str, Medication] = {}
    medication_names: Dict[str, str] = {}
    for item in raw.get("medication_interactions", []):
        medication = Medication.model_validate(item)
        for name in (medication.id, *medication.aliases):
            key = name.strip().casefold()
            if key in medication_names:
                raise ValueError(f"Duplicate medication name {name}")
            medication_names[key] = medication.id
        medications[medication.id] = medication
    version = str(raw.get("version") or "0")
    logger.info(
        "Loaded condition knowledge base %s (%d conditions, %d categories, %d medications)",
        version,
        len(conditions),
        len(categories),
        len(medications),
    )
    return KnowledgeBase(
        version=version,
        conditions=conditions,
        categories=categories,
        conflict_groups=groups,
        medications=medications,
        medication_names=medication_names,
    )


@lru_cache(maxsize=1)
def knowledge_base() -> KnowledgeBase:
    return _load(settings.conditions_path)


def knowledge_base_version() -> str:
    return knowledge_base().version


def get_condition(condition_id: str) -> Optional[Condition]:
    return knowledge_base().conditions.get(condition_id)


def require_condition(condition_id: str) -> Condition:
    condition = get_condition(condition_id)
    if condition is None:
        raise BoundaryViolation("One or more selected conditions are not recognized.")
    return condition


def list_conditions() -> List[Condition]:
    return list(knowledge_base().conditions.values())


def list_categories() -> List[ConditionCategory]:
    return list(knowledge_base().categories.values())


def get_category(category_id: str) -> Optional[ConditionCategory]:
    return knowledge_base().categories.get(category_id)


def conditions_by_category(category_id: str) -> List[Condition]:
    return [c for c in knowledge_base().conditions.values() if c.category == category_id]


def search_conditions(term: str) -> List[Condition]:
    """Case-insensitive match on name, description and common symptoms."""
    needle = term.strip().casefold()
    if not needle:
        return list_conditions()
    results: List[Condition] = []
    for condition in knowledge_base().conditions.values():
        haystack = [condition.display_name, condition.description, *condition.common_symptoms]
        if any(needle in text.casefold() for text in haystack):
            results.append(condition)
    return results


def conflict_groups() -> Tuple[ConflictGroup, ...]:
    return knowledge_base().conflict_groups


def find_medication(name: str) -> Optional[Medication]:
    """Look a medication up by id, brand or generic name (case-insensitive)."""
    kb = knowledge_base()
    medication_id = kb.medication_names.get(name.strip().casefold())
    return kb.medications.get(medication_id) if medication_id else None


def list_medications() -> List[Medication]:
    return list(knowledge_base().medications.values())

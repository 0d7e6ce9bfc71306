# -*- coding: utf-8 -*-
"""Nutrition focus aggregation across the selected conditions."""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Sequence

from .conditions import get_category, require_condition
from .models import Condition, NutritionFocus, PriorityLevel

# High priority keeps only the most relevant entries of each condition.
HIGH_PRIORITY_LIMIT = 3

_QUALIFIER = re.compile(r"\s*\([^)]*\)\s*$")


def conflict_key(item: str) -> str:
    """Base name used to detect the same food on both sides.

    "Cruciferous vegetables (raw)" and "cruciferous vegetables" share a key.
    """
    return _QUALIFIER.sub("", item).strip().casefold()


def mentions(item: str, term: str) -> bool:
    """True when ``term`` appears in ``item`` as a whole word or its plural, ignoring case.

    "beet" matches "Beets" and "soy" matches "Soy products", but "soy" does not
    match "Soybean-free".
    """
    needle = conflict_key(term)
    if not needle:
        return False
    return re.search(r"\b" + re.escape(needle) + r"(?:e?s)?\b", item.casefold()) is not None


class _OrderedUnion:
    def __init__(self) -> None:
        self._items: List[str] = []
        self._seen: set = set()

    def extend(self, values: Iterable[str]) -> None:
        for value in values:
            key = value.strip().casefold()
            if not key or key in self._seen:
                continue
            self._seen.add(key)
            self._items.append(value.strip())

    @property
    def items(self) -> List[str]:
        return list(self._items)


def _resolve(condition_ids: Sequence[str]) -> List[Condition]:
    resolved: List[Condition] = []
    seen: set = set()
    for cid in condition_ids:
        if cid in seen:
            continue
        seen.add(cid)
        resolved.append(require_condition(cid))
    return resolved


def aggregate(
    condition_ids: Sequence[str],
    priority_level: PriorityLevel = PriorityLevel.MEDIUM,
    allergies: Sequence[str] = (),
) -> NutritionFocus:
    """Union the guidance of the selected conditions.

    Foods recommended by one condition and discouraged by another are dropped
    from both lists and reported as conflicts. Beneficial foods that mention a
    client allergen are removed and the allergen is added to the avoid list.
    """
    conditions = _resolve(condition_ids)
    limit = HIGH_PRIORITY_LIMIT if priority_level == PriorityLevel.HIGH else None

    beneficial = _OrderedUnion()
    avoid = _OrderedUnion()
    nutrients = _OrderedUnion()
    focus = _OrderedUnion()

    for condition in conditions:
        beneficial.extend(condition.beneficial_foods[:limit])
        avoid.extend(condition.avoid_foods[:limit])
        nutrients.extend(condition.key_nutrients)
        category = get_category(condition.category)
        if category is not None:
            focus.extend([category.focus_tag])

    beneficial_keys: Dict[str, str] = {}
    for item in beneficial.items:
        beneficial_keys.setdefault(conflict_key(item), item)
    avoid_keys = {conflict_key(item) for item in avoid.items}
    conflicting = [key for key in beneficial_keys if key in avoid_keys]

    conflicts = [beneficial_keys[key] for key in conflicting]
    dropped = set(conflicting)

    allergens = _OrderedUnion()
    allergens.extend(allergies)
    kept: List[str] = []
    excluded: List[str] = []
    for item in beneficial.items:
        if conflict_key(item) in dropped:
            continue
        if any(mentions(item, allergen) for allergen in allergens.items):
            excluded.append(item)
        else:
            kept.append(item)

    avoid_foods = _OrderedUnion()
    avoid_foods.extend(i for i in avoid.items if conflict_key(i) not in dropped)
    avoid_foods.extend(allergens.items)

    return NutritionFocus(
        condition_ids=[c.id for c in conditions],
        beneficial_foods=kept,
        avoid_foods=avoid_foods.items,
        key_nutrients=nutrients.items,
        meal_plan_focus=focus.items,
        conflicts=conflicts,
        allergen_exclusions=excluded,
    )

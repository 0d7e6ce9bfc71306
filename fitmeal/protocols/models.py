# -*- coding: utf-8 -*-
"""Protocol models for wizard payloads, artifacts and plan API payloads."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProtocolKind(str, Enum):
    LONGEVITY = "longevity"
    PARASITE_CLEANSE = "parasite-cleanse"
    AILMENT_TARGETED = "ailment-targeted"
    GENERAL_WELLNESS = "general-wellness"


class Intensity(str, Enum):
    GENTLE = "gentle"
    MODERATE = "moderate"
    INTENSIVE = "intensive"


class ExperienceLevel(str, Enum):
    FIRST_TIME = "first-time"
    BEGINNER = "beginner"
    EXPERIENCED = "experienced"
    ADVANCED = "advanced"


class PriorityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DisclaimerSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class InstanceStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# ---------- Knowledge base ----------


class Condition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    description: str = ""
    category: str
    severity_tier: str = "mild"
    common_symptoms: List[str] = Field(default_factory=list)
    beneficial_foods: List[str] = Field(default_factory=list)
    avoid_foods: List[str] = Field(default_factory=list)
    key_nutrients: List[str] = Field(default_factory=list)
    medical_disclaimer: Optional[str] = None


class ConditionCategory(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    description: str = ""
    focus_tag: str
    tracked_symptoms: List[str] = Field(default_factory=list)


class ConflictGroup(BaseModel):
    model_config = ConfigDict(frozen=True)

    condition_ids: List[str]
    topic: str


class FoodInteraction(BaseModel):
    model_config = ConfigDict(frozen=True)

    substance: str
    severity: str = "medium"
    description: str
    recommendation: str


class Medication(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    aliases: List[str] = Field(default_factory=list)
    interactions: List[FoodInteraction] = Field(default_factory=list)


# ---------- Wizard input ----------


class ClientProfile(BaseModel):
    # Ranges are enforced by the safety validator so violations surface as BoundaryViolation.
    age: Optional[int] = None
    gender: Optional[str] = Field(default=None, max_length=32)
    weight_kg: Optional[float] = None
    activity_level: Optional[str] = Field(default=None, max_length=32)


class GenerationRequest(BaseModel):
    protocol_kind: ProtocolKind
    duration_days: int
    intensity: Intensity = Intensity.MODERATE
    experience_level: ExperienceLevel = ExperienceLevel.BEGINNER
    selected_condition_ids: List[str] = Field(default_factory=list)
    priority_level: PriorityLevel = PriorityLevel.MEDIUM
    client_profile: ClientProfile = Field(default_factory=ClientProfile)
    daily_calorie_target: int = 2000
    pregnancy_or_breastfeeding: bool = False
    healthcare_provider_consent: bool = False
    plan_name: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=1000)
    client_name: Optional[str] = Field(default=None, max_length=100)
    medications: List[str] = Field(default_factory=list, max_length=20)
    allergies: List[str] = Field(default_factory=list, max_length=20)

    @field_validator("selected_condition_ids")
    @classmethod
    def _dedupe_condition_ids(cls, value: List[str]) -> List[str]:
        seen: List[str] = []
        for item in value:
            key = item.strip()
            if key and key not in seen:
                seen.append(key)
        return seen

    @field_validator("medications", "allergies")
    @classmethod
    def _dedupe_names(cls, value: List[str]) -> List[str]:
        seen: List[str] = []
        keys: set = set()
        for item in value:
            name = item.strip()
            if len(name) > 100:
                raise ValueError("entries must be at most 100 characters")
            if name and name.casefold() not in keys:
                keys.add(name.casefold())
                seen.append(name)
        return seen


# ---------- Derived ----------


class NutritionFocus(BaseModel):
    model_config = ConfigDict(frozen=True)

    condition_ids: List[str] = Field(default_factory=list)
    beneficial_foods: List[str] = Field(default_factory=list)
    avoid_foods: List[str] = Field(default_factory=list)
    key_nutrients: List[str] = Field(default_factory=list)
    meal_plan_focus: List[str] = Field(default_factory=list)
    conflicts: List[str] = Field(default_factory=list)
    allergen_exclusions: List[str] = Field(default_factory=list)


class Meal(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    meal_type: str = "meal"
    ingredients: List[str] = Field(default_factory=list)
    calories: float = Field(..., ge=0)
    protein_g: float = Field(..., ge=0)
    carbs_g: float = Field(..., ge=0)
    fat_g: float = Field(..., ge=0)
    instructions: Optional[str] = None


class DraftDay(BaseModel):
    model_config = ConfigDict(frozen=True)

    day: int
    meals: List[Meal] = Field(..., min_length=1)


class RawArtifactDraft(BaseModel):
    model_config = ConfigDict(frozen=True)

    days: List[DraftDay]
    attempts: int = 1


class DaySchedule(BaseModel):
    model_config = ConfigDict(frozen=True)

    day: int
    meals: List[Meal]
    phase: Optional[str] = None
    focus: Optional[str] = None
    fasting_window: Optional[str] = None
    eating_window: Optional[str] = None


class IngredientGuideEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    first_day: int
    occurrences: int


class SymptomCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: str
    symptom: str
    scale_min: int = 1
    scale_max: int = 5


class SymptomTrackingTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    frequency: str = "daily"
    checks: List[SymptomCheck] = Field(default_factory=list)


class SafetyDisclaimer(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: str
    severity: DisclaimerSeverity
    acknowledgment_required: bool
    warnings: List[str] = Field(default_factory=list)


class Milestone(BaseModel):
    model_config = ConfigDict(frozen=True)

    day: int
    title: str


class ProtocolArtifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: str
    protocol_kind: ProtocolKind
    duration_days: int
    daily_schedules: List[DaySchedule]
    ingredient_guide: List[IngredientGuideEntry]
    symptom_tracking_template: SymptomTrackingTemplate
    safety_disclaimer: SafetyDisclaimer
    milestones: List[Milestone] = Field(default_factory=list)
    nutrition_focus: NutritionFocus
    generated_at: str


# ---------- API payloads ----------


class SafetyCheckResponse(BaseModel):
    approved: bool
    code: Optional[str] = None
    detail: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)


class GenerateResponse(BaseModel):
    artifact: ProtocolArtifact
    warnings: List[str] = Field(default_factory=list)


class ConditionListResponse(BaseModel):
    items: List[Condition]


class CategoryListResponse(BaseModel):
    items: List[ConditionCategory]


class FocusRequest(BaseModel):
    selected_condition_ids: List[str]
    priority_level: PriorityLevel = PriorityLevel.MEDIUM
    allergies: List[str] = Field(default_factory=list, max_length=20)


class PlanCreateRequest(BaseModel):
    plan_name: str = Field(..., min_length=3, max_length=100)
    plan_description: Optional[str] = Field(default=None, max_length=1000)
    wizard_configuration: GenerationRequest
    is_template: bool = False


class PlanUpdateRequest(BaseModel):
    plan_name: Optional[str] = Field(default=None, min_length=3, max_length=100)
    plan_description: Optional[str] = Field(default=None, max_length=1000)
    is_template: Optional[bool] = None


class PlanSummary(BaseModel):
    plan_id: str
    plan_name: str
    plan_description: Optional[str] = None
    protocol_kind: Optional[str] = None
    duration_days: Optional[int] = None
    usage_count: int = 0
    is_template: bool = False
    created_at: str
    last_used_at: Optional[str] = None
    archived_at: Optional[str] = None


class PlanListResponse(BaseModel):
    items: List[PlanSummary]


class AssignmentSummary(BaseModel):
    instance_id: str
    customer_id: str
    status: InstanceStatus
    assigned_at: str
    acknowledged_at: Optional[str] = None


class PlanDetailResponse(PlanSummary):
    owner_trainer_id: str
    wizard_configuration: Dict[str, Any]
    updated_at: str
    assignments: List[AssignmentSummary] = Field(default_factory=list)


class AssignRequest(BaseModel):
    customer_id: str = Field(..., min_length=1)
    client_profile: Optional[ClientProfile] = None
    client_name: Optional[str] = Field(default=None, max_length=100)
    pregnancy_or_breastfeeding: Optional[bool] = None
    healthcare_provider_consent: Optional[bool] = None
    medications: Optional[List[str]] = Field(default=None, max_length=20)
    allergies: Optional[List[str]] = Field(default=None, max_length=20)


class InstanceResponse(BaseModel):
    instance_id: str
    plan_id: str
    plan_name: str
    customer_id: str
    trainer_id: str
    status: InstanceStatus
    assigned_at: str
    acknowledged_at: Optional[str] = None
    artifact: ProtocolArtifact
    # Only populated on the assignment response.
    warnings: List[str] = Field(default_factory=list)


class InstanceListResponse(BaseModel):
    items: List[AssignmentSummary]


class InstanceStatusRequest(BaseModel):
    status: InstanceStatus

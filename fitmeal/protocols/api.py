# -*- coding: utf-8 -*-
"""Protocol endpoints (knowledge base, generation, plans, instances)."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from ..agent_service import complete
from ..identity import get_current_user, require_role, require_trainer
from . import conditions as kb
from . import safety, storage
from .aggregator import aggregate
from .errors import ProtocolError
from .models import (
    AssignRequest,
    CategoryListResponse,
    ConditionListResponse,
    FocusRequest,
    GenerateResponse,
    GenerationRequest,
    InstanceListResponse,
    InstanceResponse,
    InstanceStatus,
    InstanceStatusRequest,
    NutritionFocus,
    PlanCreateRequest,
    PlanDetailResponse,
    PlanListResponse,
    PlanSummary,
    PlanUpdateRequest,
    SafetyCheckResponse,
)
from .orchestrator import Capability, RetryPolicy
from .pipeline import generate_protocol
from .sanitizer import sanitize_all, sanitize_request

router = APIRouter(prefix="/api/protocols", tags=["Protocols"])

# Admins cannot acknowledge a disclaimer for a customer.
require_customer = require_role("customer", allow_admin=False)


def get_capability() -> Capability:
    return complete


def get_retry_policy() -> RetryPolicy:
    return RetryPolicy.from_settings()


def _trainer_scope(user: Dict[str, Any]) -> Optional[str]:
    # Admins act on any trainer's plans.
    return None if user["role"] == "admin" else user["id"]


# ---------- Knowledge base ----------


@router.get("/conditions", response_model=ConditionListResponse, summary="List supported conditions")
def list_conditions_api(
    category: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None, max_length=100),
    user: dict = Depends(get_current_user),
):
    if search:
        items = kb.search_conditions(search)
    else:
        items = kb.list_conditions()
    if category:
        items = [c for c in items if c.category == category]
    return ConditionListResponse(items=items)


@router.get("/conditions/categories", response_model=CategoryListResponse, summary="List condition categories")
def list_categories_api(user: dict = Depends(get_current_user)):
    return CategoryListResponse(items=kb.list_categories())


@router.post("/focus", response_model=NutritionFocus, summary="Aggregate nutrition focus for conditions")
def nutrition_focus_api(request: FocusRequest, user: dict = Depends(get_current_user)):
    allergies = sanitize_all(request.allergies, "allergies")
    return aggregate(request.selected_condition_ids, request.priority_level, allergies)


# ---------- Generation ----------


@router.post("/validate", response_model=SafetyCheckResponse, summary="Run the safety check without generating")
def validate_protocol_api(request: GenerationRequest, user: dict = Depends(require_trainer)):
    try:
        clean = sanitize_request(request)
    except ProtocolError as exc:
        return SafetyCheckResponse(approved=False, code=exc.code, detail=exc.message)
    verdict = safety.evaluate(clean)
    if verdict.error is not None:
        return SafetyCheckResponse(approved=False, code=verdict.error.code, detail=verdict.error.message)
    return SafetyCheckResponse(approved=True, warnings=verdict.warnings)


@router.post("/generate", response_model=GenerateResponse, summary="Generate a protocol artifact")
def generate_protocol_api(
    request: GenerationRequest,
    user: dict = Depends(require_trainer),
    capability: Capability = Depends(get_capability),
    policy: RetryPolicy = Depends(get_retry_policy),
):
    result = generate_protocol(request, capability=capability, policy=policy)
    return GenerateResponse(artifact=result.artifact, warnings=result.warnings)


# ---------- Plans ----------


@router.post("/plans", response_model=PlanDetailResponse, status_code=201, summary="Save a reusable plan")
def create_plan_api(request: PlanCreateRequest, user: dict = Depends(require_trainer)):
    plan = storage.save_plan(
        trainer_id=user["id"],
        plan_name=request.plan_name,
        plan_description=request.plan_description,
        config=request.wizard_configuration,
        is_template=request.is_template,
    )
    plan["assignments"] = []
    return PlanDetailResponse.model_validate(plan)


@router.get("/plans", response_model=PlanListResponse, summary="List the trainer's plans")
def list_plans_api(
    search: Optional[str] = Query(default=None, max_length=100),
    include_archived: bool = Query(default=False),
    user: dict = Depends(require_trainer),
):
    plans = storage.list_plans(
        trainer_id=user["id"],
        search_term=search,
        include_archived=include_archived,
    )
    return PlanListResponse(items=[PlanSummary.model_validate(p) for p in plans])


@router.get("/plans/{plan_id}", response_model=PlanDetailResponse, summary="Get a plan with its assignments")
def get_plan_api(plan_id: str, user: dict = Depends(require_trainer)):
    plan = storage.get_plan(plan_id=plan_id, trainer_id=_trainer_scope(user))
    return PlanDetailResponse.model_validate(plan)


@router.patch("/plans/{plan_id}", response_model=PlanDetailResponse, summary="Update plan metadata")
def update_plan_api(plan_id: str, request: PlanUpdateRequest, user: dict = Depends(require_trainer)):
    plan = storage.update_plan(
        plan_id=plan_id,
        trainer_id=_trainer_scope(user),
        plan_name=request.plan_name,
        plan_description=request.plan_description,
        is_template=request.is_template,
    )
    return PlanDetailResponse.model_validate(plan)


@router.post("/plans/{plan_id}/archive", response_model=PlanDetailResponse, summary="Archive a plan")
def archive_plan_api(plan_id: str, user: dict = Depends(require_trainer)):
    plan = storage.archive_plan(plan_id=plan_id, trainer_id=_trainer_scope(user))
    return PlanDetailResponse.model_validate(plan)


@router.delete("/plans/{plan_id}", summary="Delete a plan without active assignments")
def delete_plan_api(plan_id: str, user: dict = Depends(require_trainer)):
    storage.delete_plan(plan_id=plan_id, trainer_id=_trainer_scope(user))
    return {"status": "deleted", "plan_id": plan_id}


@router.post(
    "/plans/{plan_id}/assign",
    response_model=InstanceResponse,
    status_code=201,
    summary="Assign a plan to a customer",
)
def assign_plan_api(
    plan_id: str,
    request: AssignRequest,
    user: dict = Depends(require_trainer),
    capability: Capability = Depends(get_capability),
    policy: RetryPolicy = Depends(get_retry_policy),
):
    instance = storage.assign_plan(
        plan_id=plan_id,
        trainer_id=_trainer_scope(user),
        customer_id=request.customer_id,
        capability=capability,
        client_profile=request.client_profile,
        client_name=request.client_name,
        pregnancy_or_breastfeeding=request.pregnancy_or_breastfeeding,
        healthcare_provider_consent=request.healthcare_provider_consent,
        medications=request.medications,
        allergies=request.allergies,
        policy=policy,
    )
    return InstanceResponse.model_validate(instance)


# ---------- Instances ----------


@router.get("/instances", response_model=InstanceListResponse, summary="List protocol instances")
def list_instances_api(
    plan_id: Optional[str] = Query(default=None),
    status: Optional[InstanceStatus] = Query(default=None),
    user: dict = Depends(get_current_user),
):
    items = storage.list_instances(
        user_id=user["id"],
        role=user["role"],
        plan_id=plan_id,
        status=status.value if status else None,
    )
    return InstanceListResponse(items=items)


@router.get("/instances/{instance_id}", response_model=InstanceResponse, summary="Get a protocol instance")
def get_instance_api(instance_id: str, user: dict = Depends(get_current_user)):
    instance = storage.get_instance(instance_id=instance_id, user_id=user["id"], role=user["role"])
    return InstanceResponse.model_validate(instance)


@router.post(
    "/instances/{instance_id}/acknowledge",
    response_model=InstanceResponse,
    summary="Acknowledge the safety disclaimer",
)
def acknowledge_instance_api(instance_id: str, user: dict = Depends(require_customer)):
    instance = storage.acknowledge_instance(instance_id=instance_id, customer_id=user["id"])
    return InstanceResponse.model_validate(instance)


@router.post("/instances/{instance_id}/status", response_model=InstanceResponse, summary="Change instance status")
def set_instance_status_api(
    instance_id: str,
    request: InstanceStatusRequest,
    user: dict = Depends(require_trainer),
):
    instance = storage.set_instance_status(
        instance_id=instance_id,
        user_id=user["id"],
        role=user["role"],
        status=request.status,
    )
    return InstanceResponse.model_validate(instance)

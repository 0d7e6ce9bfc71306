# -*- coding: utf-8 -*-
"""Protocol plan storage helpers (SQLite)."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import HTTPException

from ..app_db import db_conn
from ..config import settings
from .errors import PlanInUseError
from .models import ClientProfile, GenerationRequest, InstanceStatus
from .orchestrator import Capability, RetryPolicy
from .pipeline import generate_protocol, prepare_request
from .sanitizer import sanitize, sanitize_optional

logger = logging.getLogger(__name__)


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _load_json(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except ValueError:
        logger.error("Stored JSON column could not be decoded")
        raise
    return value if isinstance(value, dict) else {}


def _row_to_plan(row: Dict[str, Any]) -> Dict[str, Any]:
    config = _load_json(row.get("wizard_configuration"))
    return {
        "plan_id": row.get("id"),
        "owner_trainer_id": row.get("owner_trainer_id"),
        "plan_name": row.get("plan_name"),
        "plan_description": row.get("plan_description"),
        "protocol_kind": config.get("protocol_kind"),
        "duration_days": config.get("duration_days"),
        "wizard_configuration": config,
        "usage_count": int(row.get("usage_count") or 0),
        "is_template": bool(row.get("is_template")),
        "created_at": row.get("created_at"),
        "updated_at": row.get("updated_at"),
        "last_used_at": row.get("last_used_at"),
        "archived_at": row.get("archived_at"),
    }


def _row_to_assignment(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "instance_id": row.get("id"),
        "customer_id": row.get("customer_id"),
        "status": row.get("status"),
        "assigned_at": row.get("assigned_at"),
        "acknowledged_at": row.get("acknowledged_at"),
    }


def _row_to_instance(row: Dict[str, Any]) -> Dict[str, Any]:
    payload = _row_to_assignment(row)
    payload.update(
        {
            "plan_id": row.get("plan_id"),
            "plan_name": row.get("plan_name"),
            "trainer_id": row.get("trainer_id"),
            "artifact": _load_json(row.get("artifact_json")),
        }
    )
    return payload


def _fetch_plan_row(conn, plan_id: str, trainer_id: Optional[str]) -> Dict[str, Any]:
    row = conn.execute("SELECT * FROM protocol_plans WHERE id = ?", (plan_id,)).fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="Plan not found")
    current = dict(row)
    # trainer_id=None is the admin path.
    if trainer_id is not None and current.get("owner_trainer_id") != trainer_id:
        raise HTTPException(status_code=404, detail="Plan not found")
    return current


def _ensure_unique_name(
    conn,
    *,
    trainer_id: str,
    plan_name: str,
    exclude_plan_id: Optional[str] = None,
) -> None:
    rows = conn.execute(
        "SELECT id, plan_name FROM protocol_plans WHERE owner_trainer_id = ? AND archived_at IS NULL",
        (trainer_id,),
    ).fetchall()
    wanted = plan_name.strip().casefold()
    for row in rows:
        if row["id"] != exclude_plan_id and (row["plan_name"] or "").strip().casefold() == wanted:
            raise HTTPException(status_code=409, detail="A plan with this name already exists")


# ---------- Plans ----------


def save_plan(
    *,
    trainer_id: str,
    plan_name: str,
    plan_description: Optional[str],
    config: GenerationRequest,
    is_template: bool = False,
) -> Dict[str, Any]:
    plan_name = sanitize(plan_name, "plan_name").strip()
    plan_description = sanitize_optional(plan_description, "plan_description")
    clean, _ = prepare_request(config)

    plan_id = str(uuid4())
    now = _iso_now()
    config_json = json.dumps(clean.model_dump(mode="json"), ensure_ascii=False)

    with db_conn(settings.app_db_path) as conn:
        # Hold the write lock across the name check and the insert.
        conn.execute("BEGIN IMMEDIATE")
        _ensure_unique_name(conn, trainer_id=trainer_id, plan_name=plan_name)
        conn.execute(
            """
            INSERT INTO protocol_plans (
                id, owner_trainer_id, plan_name, plan_description, wizard_configuration,
                is_template, usage_count, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?)
            """,
            (
                plan_id,
                trainer_id,
                plan_name,
                plan_description,
                config_json,
                1 if is_template else 0,
                now,
                now,
            ),
        )
        row = conn.execute("SELECT * FROM protocol_plans WHERE id = ?", (plan_id,)).fetchone()

    logger.info("Saved protocol plan %s for trainer %s", plan_id, trainer_id)
    return _row_to_plan(dict(row))


def list_plans(
    *,
    trainer_id: str,
    search_term: Optional[str] = None,
    include_archived: bool = False,
) -> List[Dict[str, Any]]:
    sql = "SELECT * FROM protocol_plans WHERE owner_trainer_id = ?"
    params: List[Any] = [trainer_id]
    if not include_archived:
        sql += " AND archived_at IS NULL"
    sql += " ORDER BY created_at DESC, rowid DESC"

    with db_conn(settings.app_db_path) as conn:
        rows = conn.execute(sql, params).fetchall()

    plans = [_row_to_plan(dict(r)) for r in rows]
    needle = (search_term or "").strip().casefold()
    if needle:
        # SQLite LIKE/lower() only fold ASCII.
        plans = [p for p in plans if needle in (p["plan_name"] or "").casefold()]
    return plans


def get_plan(*, plan_id: str, trainer_id: Optional[str]) -> Dict[str, Any]:
    with db_conn(settings.app_db_path) as conn:
        current = _fetch_plan_row(conn, plan_id, trainer_id)
        rows = conn.execute(
            "SELECT * FROM protocol_instances WHERE plan_id = ? ORDER BY assigned_at DESC, rowid DESC",
            (plan_id,),
        ).fetchall()

    plan = _row_to_plan(current)
    plan["assignments"] = [_row_to_assignment(dict(r)) for r in rows]
    return plan


def update_plan(
    *,
    plan_id: str,
    trainer_id: Optional[str],
    plan_name: Optional[str] = None,
    plan_description: Optional[str] = None,
    is_template: Optional[bool] = None,
) -> Dict[str, Any]:
    updates: Dict[str, Any] = {}
    if plan_name is not None:
        updates["plan_name"] = sanitize(plan_name, "plan_name").strip()
    if plan_description is not None:
        updates["plan_description"] = sanitize(plan_description, "plan_description")
    if is_template is not None:
        updates["is_template"] = 1 if is_template else 0

    with db_conn(settings.app_db_path) as conn:
        conn.execute("BEGIN IMMEDIATE")
        current = _fetch_plan_row(conn, plan_id, trainer_id)
        if "plan_name" in updates:
            _ensure_unique_name(
                conn,
                trainer_id=current["owner_trainer_id"],
                plan_name=updates["plan_name"],
                exclude_plan_id=plan_id,
            )
        if updates:
            updates["updated_at"] = _iso_now()
            assignments = ", ".join(f"{column} = ?" for column in updates)
            conn.execute(
                f"UPDATE protocol_plans SET {assignments} WHERE id = ?",
                (*updates.values(), plan_id),
            )
    return get_plan(plan_id=plan_id, trainer_id=trainer_id)


def archive_plan(*, plan_id: str, trainer_id: Optional[str]) -> Dict[str, Any]:
    now = _iso_now()
    with db_conn(settings.app_db_path) as conn:
        current = _fetch_plan_row(conn, plan_id, trainer_id)
        if not current.get("archived_at"):
            conn.execute(
                "UPDATE protocol_plans SET archived_at = ?, updated_at = ? WHERE id = ?",
                (now, now, plan_id),
            )
    logger.info("Archived protocol plan %s", plan_id)
    return get_plan(plan_id=plan_id, trainer_id=trainer_id)


def delete_plan(*, plan_id: str, trainer_id: Optional[str]) -> None:
    with db_conn(settings.app_db_path) as conn:
        # Hold the write lock so no assignment lands between the count and the delete.
        conn.execute("BEGIN IMMEDIATE")
        _fetch_plan_row(conn, plan_id, trainer_id)
        active = conn.execute(
            "SELECT COUNT(*) FROM protocol_instances WHERE plan_id = ? AND status = ?",
            (plan_id, InstanceStatus.ACTIVE.value),
        ).fetchone()[0]
        if active:
            raise PlanInUseError(int(active))
        conn.execute("DELETE FROM protocol_plans WHERE id = ?", (plan_id,))
    logger.info("Deleted protocol plan %s", plan_id)


# ---------- Assignment ----------


def _merge_profile(base: ClientProfile, override: Optional[ClientProfile]) -> ClientProfile:
    if override is None:
        return base
    merged = base.model_dump()
    merged.update({k: v for k, v in override.model_dump().items() if v is not None})
    return ClientProfile.model_validate(merged)


def assign_plan(
    *,
    plan_id: str,
    trainer_id: Optional[str],
    customer_id: str,
    capability: Capability,
    client_profile: Optional[ClientProfile] = None,
    client_name: Optional[str] = None,
    pregnancy_or_breastfeeding: Optional[bool] = None,
    healthcare_provider_consent: Optional[bool] = None,
    medications: Optional[List[str]] = None,
    allergies: Optional[List[str]] = None,
    policy: Optional[RetryPolicy] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Dict[str, Any]:
    """Generate a fresh artifact from the stored configuration and bind it to a customer.

    Nothing is written unless generation succeeds; the instance insert and the
    usage increment share one transaction.
    """
    with db_conn(settings.app_db_path) as conn:
        current = _fetch_plan_row(conn, plan_id, trainer_id)
    if current.get("archived_at"):
        raise HTTPException(status_code=409, detail="Plan is archived")

    config = GenerationRequest.model_validate(_load_json(current.get("wizard_configuration")))
    overrides: Dict[str, Any] = {
        "client_profile": _merge_profile(config.client_profile, client_profile),
    }
    if client_name is not None:
        overrides["client_name"] = client_name
    if pregnancy_or_breastfeeding is not None:
        overrides["pregnancy_or_breastfeeding"] = pregnancy_or_breastfeeding
    if healthcare_provider_consent is not None:
        overrides["healthcare_provider_consent"] = healthcare_provider_consent
    if medications is not None:
        overrides["medications"] = medications
    if allergies is not None:
        overrides["allergies"] = allergies
    request = GenerationRequest.model_validate({**config.model_dump(), **overrides})

    result = generate_protocol(
        request,
        capability=capability,
        policy=policy,
        cancel_event=cancel_event,
    )

    instance_id = str(uuid4())
    now = _iso_now()
    artifact_json = json.dumps(result.artifact.model_dump(mode="json"), ensure_ascii=False)

    with db_conn(settings.app_db_path) as conn:
        updated = conn.execute(
            """
            UPDATE protocol_plans
            SET usage_count = usage_count + 1, last_used_at = ?
            WHERE id = ? AND archived_at IS NULL
            """,
            (now, plan_id),
        )
        if updated.rowcount == 0:
            raise HTTPException(status_code=409, detail="Plan is no longer available")
        conn.execute(
            """
            INSERT INTO protocol_instances (
                id, plan_id, plan_name, customer_id, trainer_id, status,
                artifact_json, assigned_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                instance_id,
                plan_id,
                current.get("plan_name"),
                customer_id,
                current.get("owner_trainer_id"),
                InstanceStatus.ACTIVE.value,
                artifact_json,
                now,
            ),
        )
        row = conn.execute("SELECT * FROM protocol_instances WHERE id = ?", (instance_id,)).fetchone()

    logger.info("Assigned protocol plan %s to customer %s (instance %s)", plan_id, customer_id, instance_id)
    instance = _row_to_instance(dict(row))
    instance["warnings"] = result.warnings
    return instance


# ---------- Instances ----------


def _visible_to(row: Dict[str, Any], *, user_id: str, role: str) -> bool:
    if role == "admin":
        return True
    if role == "customer":
        return row.get("customer_id") == user_id
    return row.get("trainer_id") == user_id


def _fetch_instance_row(conn, instance_id: str, *, user_id: str, role: str) -> Dict[str, Any]:
    row = conn.execute("SELECT * FROM protocol_instances WHERE id = ?", (instance_id,)).fetchone()
    if not row or not _visible_to(dict(row), user_id=user_id, role=role):
        raise HTTPException(status_code=404, detail="Instance not found")
    return dict(row)


def get_instance(*, instance_id: str, user_id: str, role: str) -> Dict[str, Any]:
    with db_conn(settings.app_db_path) as conn:
        current = _fetch_instance_row(conn, instance_id, user_id=user_id, role=role)
    return _row_to_instance(current)


def list_instances(
    *,
    user_id: str,
    role: str,
    plan_id: Optional[str] = None,
    status: Optional[str] = None,
) -> List[Dict[str, Any]]:
    sql = "SELECT * FROM protocol_instances WHERE 1 = 1"
    params: List[Any] = []
    if role == "customer":
        sql += " AND customer_id = ?"
        params.append(user_id)
    elif role != "admin":
        sql += " AND trainer_id = ?"
        params.append(user_id)
    if plan_id:
        sql += " AND plan_id = ?"
        params.append(plan_id)
    if status:
        sql += " AND status = ?"
        params.append(status)
    sql += " ORDER BY assigned_at DESC, rowid DESC"

    with db_conn(settings.app_db_path) as conn:
        rows = conn.execute(sql, params).fetchall()
    return [_row_to_assignment(dict(r)) for r in rows]


def acknowledge_instance(*, instance_id: str, customer_id: str) -> Dict[str, Any]:
    with db_conn(settings.app_db_path) as conn:
        current = _fetch_instance_row(conn, instance_id, user_id=customer_id, role="customer")
        if not current.get("acknowledged_at"):
            now = _iso_now()
            conn.execute(
                "UPDATE protocol_instances SET acknowledged_at = ? WHERE id = ?",
                (now, instance_id),
            )
            current["acknowledged_at"] = now
    return _row_to_instance(current)


def set_instance_status(
    *,
    instance_id: str,
    user_id: str,
    role: str,
    status: InstanceStatus,
) -> Dict[str, Any]:
    with db_conn(settings.app_db_path) as conn:
        current = _fetch_instance_row(conn, instance_id, user_id=user_id, role=role)
        if current.get("status") != InstanceStatus.ACTIVE.value and status != current.get("status"):
            raise HTTPException(status_code=409, detail="Only active instances can change status")
        conn.execute(
            "UPDATE protocol_instances SET status = ? WHERE id = ?",
            (status.value, instance_id),
        )
        current["status"] = status.value
    logger.info("Protocol instance %s set to %s", instance_id, status.value)
    return _row_to_instance(current)

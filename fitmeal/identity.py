# -*- coding: utf-8 -*-
"""Identity: FastAPI helpers over headers set by the upstream identity provider."""

from __future__ import annotations

from typing import Any, Callable, Dict

from fastapi import Depends, HTTPException, Request

USER_ID_HEADER = "x-user-id"
USER_ROLE_HEADER = "x-user-role"

ROLES = frozenset({"trainer", "customer", "admin"})


def get_current_user_from_request(request: Request) -> Dict[str, Any]:
    # If middleware already resolved the caller, reuse it.
    user = getattr(request.state, "user", None)
    if user:
        return user

    user_id = (request.headers.get(USER_ID_HEADER) or "").strip()
    role = (request.headers.get(USER_ROLE_HEADER) or "").strip().lower()
    if not user_id or not role:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if role not in ROLES:
        raise HTTPException(status_code=401, detail="Unknown role")

    user = {"id": user_id, "role": role}
    request.state.user = user
    return user


def get_current_user(user: Dict[str, Any] = Depends(get_current_user_from_request)) -> Dict[str, Any]:
    return user


def require_role(*roles: str, allow_admin: bool = True) -> Callable[..., Dict[str, Any]]:
    """Dependency factory; admins pass every role check unless ``allow_admin`` is False."""
    allowed = set(roles) | ({"admin"} if allow_admin else set())

    def _dependency(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if user["role"] not in allowed:
            raise HTTPException(status_code=403, detail="Insufficient role")
        return user

    return _dependency


require_trainer = require_role("trainer")

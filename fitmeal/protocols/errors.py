# -*- coding: utf-8 -*-
"""Protocol engine error taxonomy.

Every blocking error carries a stable ``code`` and a fixed public message so
responses never echo submitted content or provider internals.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ProtocolError(Exception):
    code = "PROTOCOL_ERROR"
    status_code = 400
    public_message = "The protocol request could not be processed."

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.public_message
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code}


class UnsafeInputError(ProtocolError):
    code = "UNSAFE_INPUT"
    status_code = 422

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"Field '{field}' contains content that is not allowed.")

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["field"] = self.field
        return payload


class BoundaryViolation(ProtocolError):
    code = "BOUNDARY_VIOLATION"
    status_code = 422
    public_message = "A protocol setting is outside the allowed range."


class ContraindicationError(ProtocolError):
    code = "CONTRAINDICATED"
    status_code = 422
    public_message = (
        "Parasite cleanse protocols are not available during pregnancy or breastfeeding."
    )


class ConsentRequiredError(ProtocolError):
    code = "CONSENT_REQUIRED"
    status_code = 422
    public_message = (
        "Healthcare provider acknowledgment is required before generating this protocol."
    )


class GenerationFailedError(ProtocolError):
    code = "GENERATION_FAILED"
    status_code = 502
    public_message = "Protocol content could not be generated. Please try again later."

    def __init__(self, message: Optional[str] = None, *, attempts: int = 0) -> None:
        self.attempts = attempts
        super().__init__(message)


class GenerationCancelledError(ProtocolError):
    code = "GENERATION_CANCELLED"
    status_code = 499
    public_message = "Protocol generation was cancelled."


class IncompleteGenerationError(ProtocolError):
    code = "INCOMPLETE_GENERATION"
    status_code = 502
    public_message = "Generated protocol content was incomplete and has been discarded."


class PlanInUseError(ProtocolError):
    code = "PLAN_IN_USE"
    status_code = 409
    public_message = "This plan still has active assignments and cannot be deleted."

    def __init__(self, active_count: int) -> None:
        self.active_count = active_count
        super().__init__(
            f"This plan still has {active_count} active assignment(s) and cannot be deleted."
        )

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["assignment_count"] = self.active_count
        return payload


# ---------- Generation capability (internal, never rendered to users) ----------


class CapabilityError(Exception):
    """Failure reported by the external generation capability."""


class CapabilityTimeout(CapabilityError):
    pass


class CapabilityUnavailable(CapabilityError):
    pass


class CapabilityRejected(CapabilityError):
    """The capability refused the request itself (bad request, unsafe input, not configured)."""


class DraftSchemaError(ValueError):
    """Capability output did not match the expected draft structure."""

# -*- coding: utf-8 -*-
"""End-to-end protocol generation: sanitize, gate, aggregate, generate, assemble."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from . import safety
from .aggregator import aggregate
from .assembler import assemble
from .models import GenerationRequest, NutritionFocus, ProtocolArtifact
from .orchestrator import Capability, RetryPolicy, generate
from .sanitizer import sanitize_request

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationResult:
    request: GenerationRequest
    focus: NutritionFocus
    artifact: ProtocolArtifact
    warnings: List[str] = field(default_factory=list)


def prepare_request(request: GenerationRequest) -> Tuple[GenerationRequest, List[str]]:
    """Sanitize and safety-check a request without generating anything."""
    clean = sanitize_request(request)
    warnings = safety.enforce(clean)
    return clean, warnings


def generate_protocol(
    request: GenerationRequest,
    *,
    capability: Capability,
    policy: Optional[RetryPolicy] = None,
    cancel_event: Optional[threading.Event] = None,
) -> GenerationResult:
    clean, warnings = prepare_request(request)
    focus = aggregate(clean.selected_condition_ids, clean.priority_level, clean.allergies)
    draft = generate(
        clean,
        focus,
        capability=capability,
        policy=policy,
        cancel_event=cancel_event,
    )
    artifact = assemble(draft, clean, focus, warnings)
    logger.info(
        "Generated %s protocol (%d days, %d attempt(s))",
        clean.protocol_kind.value,
        clean.duration_days,
        draft.attempts,
    )
    return GenerationResult(request=clean, focus=focus, artifact=artifact, warnings=warnings)

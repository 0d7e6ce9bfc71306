# -*- coding: utf-8 -*-
"""
Specialized health protocol generation.

Wizard input flows through sanitization, safety gating, nutrition focus
aggregation, AI-assisted generation and deterministic assembly into a
versioned protocol artifact that can be saved as a reusable plan.
"""

from .errors import (
    BoundaryViolation,
    ConsentRequiredError,
    ContraindicationError,
    GenerationCancelledError,
    GenerationFailedError,
    IncompleteGenerationError,
    PlanInUseError,
    ProtocolError,
    UnsafeInputError,
)
from .pipeline import GenerationResult, generate_protocol

__all__ = [
    'BoundaryViolation',
    'ConsentRequiredError',
    'ContraindicationError',
    'GenerationCancelledError',
    'GenerationFailedError',
    'GenerationResult',
    'IncompleteGenerationError',
    'PlanInUseError',
    'ProtocolError',
    'UnsafeInputError',
    'generate_protocol',
]

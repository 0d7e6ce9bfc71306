# -*- coding: utf-8 -*-
"""Free-text sanitizer shared by the wizard boundary and the generation boundary.

Policy is reject-only: text either passes through byte-for-byte or the call
raises ``UnsafeInputError`` naming the field. Detection runs on a normalized
copy (NFKC, case-folded, whitespace collapsed) so full-width and spaced-out
variants are caught without altering what is stored.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from typing import Iterable, List, Optional, Pattern, Tuple

from .errors import UnsafeInputError
from .models import GenerationRequest

logger = logging.getLogger(__name__)


_SQL_STATEMENT = (
    r"(?:select\s+(?:\*|[\w\s,.]{1,60}?)\s+from\s+[\w.]+\s*(?:where\b|;|--)|insert\s+into|update\s+\w+\s+set|delete\s+from|"
    r"drop\s+(?:table|database|schema|view)|alter\s+table|truncate\s+table|"
    r"create\s+(?:table|database|user)|union\s+(?:all\s+)?select|exec(?:ute)?\s*\(|xp_cmdshell)"
)

_MARKUP_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"<\s*/?\s*[a-z!?][^>]*>"),
    re.compile(r"<\s*(?:script|iframe|object|embed|svg|img|style|link|meta)\b"),
    re.compile(r"javascript\s*:"),
    # Event handlers only count inside an opening tag; "onions = 2 cups" is plain text.
    re.compile(r"<[^>]*\bon[a-z]+\s*="),
)

_SQL_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(_SQL_STATEMENT + r"[^\n]*?(?:;|--|/\*)"),
    re.compile(r"(?:;|['\"`])\s*" + _SQL_STATEMENT),
    re.compile(r"['\"]\s*(?:or|and)\s+['\"]?\w+['\"]?\s*=\s*['\"]?\w+"),
    re.compile(r"['\"]\s*(?:;|--)"),
    re.compile(r";\s*--"),
)

_SHELL_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"\$\("),
    re.compile(r"\$\{"),
    re.compile(r"`"),
    re.compile(r"&&"),
    re.compile(r"\|\|"),
    re.compile(r"\|\s*(?:sh|bash|zsh|nc|netcat|curl|wget|python\d?|perl)\b"),
    re.compile(r"(?:^|[;&|])\s*(?:rm|curl|wget|chmod|chown|sudo|nc|bash|sh|mkfifo)\s+[-/\w]"),
    re.compile(r"\brm\s+-[a-z]*[rf]"),
    re.compile(r"\.\./|\.\.\\"),
    re.compile(r">\s*/(?:etc|dev|tmp|var|bin)\b"),
)

_INJECTION_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(
        r"\b(?:ignore|disregard|forget|override|skip)\s+(?:all\s+|any\s+|the\s+|your\s+)*"
        r"(?:previous|prior|above|earlier|preceding|system|safety|original)\b"
        r"\s+(?:instructions?|prompts?|rules?|messages?|guidelines?|directions?)"
    ),
    re.compile(r"\b(?:disregard|bypass|disable|override|turn\s+off)\s+(?:the\s+|all\s+|any\s+)?(?:safety|guardrails?|filters?|restrictions?)\b"),
    re.compile(r"\byou\s+are\s+now\b"),
    re.compile(r"\bact\s+as\s+(?:an?\s+)?(?:unrestricted|unfiltered|jailbroken|different)\b"),
    re.compile(r"\b(?:system|developer)\s+(?:prompt|message|mode)\b"),
    re.compile(r"\bjailbreak"),
    re.compile(r"\bdo\s+anything\s+now\b"),
    re.compile(r"\bnew\s+instructions?\s*:"),
    re.compile(r"\breveal\s+(?:your|the)\s+(?:instructions|prompt|system)"),
)

_PATTERN_GROUPS: Tuple[Tuple[str, Tuple[Pattern[str], ...]], ...] = (
    ("markup", _MARKUP_PATTERNS),
    ("sql", _SQL_PATTERNS),
    ("shell", _SHELL_PATTERNS),
    ("prompt_injection", _INJECTION_PATTERNS),
)


def _normalize(text: str) -> str:
    folded = unicodedata.normalize("NFKC", text).casefold()
    return re.sub(r"\s+", " ", folded)


def _has_control_chars(text: str) -> bool:
    for ch in text:
        if ch in "\n\r\t":
            continue
        if unicodedata.category(ch) in {"Cc", "Cf"}:
            return True
    return False


def find_violation(text: str) -> Optional[str]:
    """Return the name of the first rule ``text`` violates, or None."""
    if _has_control_chars(text):
        return "control_characters"
    normalized = _normalize(text)
    if normalized.count("<") != normalized.count(">"):
        return "unbalanced_brackets"
    for rule, patterns in _PATTERN_GROUPS:
        for pattern in patterns:
            if pattern.search(normalized):
                return rule
    return None


def is_safe(text: str) -> bool:
    return find_violation(text) is None


def sanitize(text: str, field: str) -> str:
    violation = find_violation(text)
    if violation:
        # The rule name is safe to log; the text itself never is.
        logger.warning("Rejected unsafe text in field %s (rule=%s)", field, violation)
        raise UnsafeInputError(field)
    return text


def sanitize_optional(text: Optional[str], field: str) -> Optional[str]:
    if text is None:
        return None
    return sanitize(text, field)


def sanitize_all(values: Iterable[str], field: str) -> List[str]:
    return [sanitize(value, field) for value in values]


def sanitize_request(request: GenerationRequest) -> GenerationRequest:
    """Validate every free-text field of a wizard submission."""
    profile = request.client_profile
    sanitize_optional(profile.gender, "gender")
    sanitize_optional(profile.activity_level, "activity_level")
    sanitize_all(request.selected_condition_ids, "selected_condition_ids")
    sanitize_all(request.medications, "medications")
    sanitize_all(request.allergies, "allergies")
    return request.model_copy(
        update={
            "plan_name": sanitize_optional(request.plan_name, "plan_name"),
            "notes": sanitize_optional(request.notes, "notes"),
            "client_name": sanitize_optional(request.client_name, "client_name"),
        }
    )

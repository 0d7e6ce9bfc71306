# -*- coding: utf-8 -*-
"""Generation capability adapter (OpenAI-compatible chat completions).

The protocol orchestrator only sees ``complete(prompt) -> str``. Transport and
provider failures are mapped onto the capability error classes so the retry
policy can tell transient failures from refusals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

import httpx

from .config import settings
from .protocols.errors import CapabilityRejected, CapabilityTimeout, CapabilityUnavailable

if TYPE_CHECKING:
    from .protocols.orchestrator import StructuredPrompt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgentSettings:
    base_url: str
    api_key: Optional[str]
    model: str
    timeout: float
    temperature: float
    max_tokens: int


def resolve_agent_settings() -> AgentSettings:
    return AgentSettings(
        base_url=settings.ai_base_url,
        api_key=settings.ai_api_key,
        model=settings.ai_model,
        timeout=settings.ai_timeout,
        temperature=settings.ai_temperature,
        max_tokens=settings.ai_max_tokens,
    )


def _completions_url(base_url: str) -> str:
    base = base_url.rstrip("/")
    if base.endswith("/chat/completions"):
        return base
    return f"{base}/chat/completions"


def _extract_content(data: Any) -> str:
    if not isinstance(data, dict):
        raise CapabilityUnavailable("Completion response is not a JSON object")
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        raise CapabilityUnavailable("Completion response has no choices")
    choice = choices[0]
    if choice.get("finish_reason") == "content_filter":
        raise CapabilityRejected("Completion blocked by provider content filter")
    message = choice.get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str) or not content.strip():
        raise CapabilityUnavailable("Completion response has empty content")
    return content.strip()


def complete(prompt: "StructuredPrompt") -> str:
    cfg = resolve_agent_settings()
    if not cfg.api_key:
        raise CapabilityRejected("FITMEAL_AI_API_KEY not set")

    payload: Dict[str, Any] = {
        "model": cfg.model,
        "messages": prompt.messages,
        "temperature": cfg.temperature,
        "max_tokens": cfg.max_tokens,
        "response_format": {"type": "json_object"},
    }
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {cfg.api_key}",
    }
    # Never wait past the caller's remaining budget.
    timeout = max(0.1, min(cfg.timeout, prompt.timeout))

    try:
        with httpx.Client(timeout=timeout, follow_redirects=True) as client:
            resp = client.post(_completions_url(cfg.base_url), headers=headers, json=payload)
    except httpx.TimeoutException as exc:
        raise CapabilityTimeout(f"Completion request timed out after {timeout:.1f}s") from exc
    except httpx.RequestError as exc:
        raise CapabilityUnavailable(f"Completion endpoint unreachable: {type(exc).__name__}") from exc

    if resp.status_code == 429 or resp.status_code >= 500:
        logger.warning("Completion endpoint returned HTTP %d", resp.status_code)
        raise CapabilityUnavailable(f"Completion endpoint returned HTTP {resp.status_code}")
    if resp.status_code >= 400:
        logger.warning("Completion endpoint rejected the request with HTTP %d", resp.status_code)
        raise CapabilityRejected(f"Completion endpoint returned HTTP {resp.status_code}")

    try:
        data = resp.json()
    except ValueError as exc:
        raise CapabilityUnavailable("Completion endpoint returned non-JSON body") from exc
    return _extract_content(data)

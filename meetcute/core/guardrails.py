"""
Guardrails — input validation for user-submitted text.

Layers:
  1. Sanitisation (strip markup, collapse whitespace, cap length)
  2. Length checks (empty / too short)
  3. Injection logging (narratives are forwarded to the extraction LLM)
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from .config import get_settings

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"[ \t]+")

MAX_MESSAGE_LENGTH = 4000        # Max chat message length

_INJECTION_PATTERNS = [
    r"ignore\s+(all\s+)?previous\s+instructions",
    r"ignore\s+(all\s+)?above",
    r"disregard\s+(all\s+)?previous",
    r"you\s+are\s+now\s+(?:a|an)\s+",
    r"<\s*system\s*>",
]


@dataclass
class GuardrailResult:
    """Result of a guardrail check."""
    allowed: bool
    reason: Optional[str] = None
    modified_input: Optional[str] = None


def sanitize_text(text: str, max_length: int) -> str:
    """Strip HTML tags and surrounding whitespace, truncate to max_length."""
    cleaned = _TAG_RE.sub("", text or "")
    cleaned = _WS_RE.sub(" ", cleaned).strip()
    return cleaned[:max_length]


def check_memory_text(text: str, user_id: str = "") -> GuardrailResult:
    """
    Validate a memory narrative before it is stored.
    The cleaned text is returned in modified_input.
    """
    settings = get_settings()
    cleaned = sanitize_text(text, settings.max_memory_length)

    if not cleaned:
        return GuardrailResult(allowed=False, reason="Memory description is empty.")

    if len(cleaned) < settings.min_memory_length:
        return GuardrailResult(
            allowed=False,
            reason=(
                f"Memory description is too short ({len(cleaned)} chars). "
                f"Minimum is {settings.min_memory_length}."
            ),
        )

    lowered = cleaned.lower()
    for pattern in _INJECTION_PATTERNS:
        if re.search(pattern, lowered):
            # Logged, not blocked: the text is only ever used as data.
            logger.warning("Potential injection in memory from user=%s: %s", user_id, cleaned[:100])
            break

    return GuardrailResult(allowed=True, modified_input=cleaned)


def check_message(text: str) -> GuardrailResult:
    """Validate a chat message between two matched users."""
    cleaned = sanitize_text(text, MAX_MESSAGE_LENGTH + 1)
    if not cleaned:
        return GuardrailResult(allowed=False, reason="Message is empty.")
    if len(cleaned) > MAX_MESSAGE_LENGTH:
        return GuardrailResult(
            allowed=False,
            reason=f"Message too long. Maximum is {MAX_MESSAGE_LENGTH} characters.",
        )
    return GuardrailResult(allowed=True, modified_input=cleaned)

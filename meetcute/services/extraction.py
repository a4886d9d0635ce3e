"""
Detail extraction — pull location, time and appearance details out of a
missed-connection narrative with the LLM.

Best effort: any failure returns an empty MemoryDetails and the memory is
stored with whatever the user typed.
"""

import json
import logging
import re
from dataclasses import dataclass, asdict, fields
from typing import Optional

from ..core.flags import get_flags
from . import llm

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*|\s*```")

EXTRACTION_PROMPT = """\
Analyze this description of a missed connection and extract structured information.
Focus on factual details that could help match it with someone else's memory of the same event.

Description: {text}

Return ONLY a JSON object with these fields (use null for missing info):
{{
  "location": "specific place/venue",
  "time_period": "time/date range when this happened",
  "person_description": "what the other person looked like",
  "user_description": "what the user was wearing/looked like",
  "circumstances": "what was happening/context",
  "clothing": "specific clothing mentioned",
  "interaction": "brief description of their interaction"
}}"""


@dataclass
class MemoryDetails:
    location: Optional[str] = None
    time_period: Optional[str] = None
    person_description: Optional[str] = None
    user_description: Optional[str] = None
    circumstances: Optional[str] = None
    clothing: Optional[str] = None
    interaction: Optional[str] = None

    def is_empty(self) -> bool:
        return not any(asdict(self).values())

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v}


def parse_details(raw: str) -> MemoryDetails:
    """Parse the model's reply, tolerating markdown fences. Raises ValueError."""
    text = _FENCE_RE.sub("", raw or "").strip()
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("extraction reply is not a JSON object")

    known = {f.name for f in fields(MemoryDetails)}
    values = {}
    for key, value in data.items():
        if key not in known or value is None:
            continue
        value = str(value).strip()
        if value and value.lower() not in ("null", "none", "unknown", "not specified"):
            values[key] = value
    return MemoryDetails(**values)


async def extract_details(text: str) -> MemoryDetails:
    if not get_flags().use_llm_extraction:
        return MemoryDetails()

    try:
        reply = await llm.chat_simple(EXTRACTION_PROMPT.format(text=text))
        details = parse_details(reply)
    except Exception as e:
        logger.warning("Detail extraction failed: %s", e)
        return MemoryDetails()

    logger.info("Extracted details: %s", sorted(details.to_dict()))
    return details

"""
Defensive parsing of structured LLM output.

Models asked for JSON frequently wrap it in a markdown code fence
(```json ... ```) even when told not to. These helpers strip the fence
before parsing and never raise.
"""

from __future__ import annotations

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*(.*?)\s*```$", re.DOTALL)


def strip_code_fence(text: str) -> str:
    """Remove one surrounding markdown code fence, if present."""
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    if match:
        return match.group(1).strip()
    return stripped


def parse_json_object(text: str) -> dict[str, Any] | None:
    """Parse text as a JSON object. Returns None for anything else."""
    try:
        data = json.loads(strip_code_fence(text))
    except (json.JSONDecodeError, TypeError):
        return None
    return data if isinstance(data, dict) else None

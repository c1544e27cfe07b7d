from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional

from siteforge.errors import GenerationParseError

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def _fenced_block(text: str) -> Optional[str]:
    m = _FENCE_RE.search(text)
    return m.group(1).strip() if m else None


def parse_generation_json(text: Any) -> Dict[str, Any]:
    """Turn a model response into a JSON object; raise GenerationParseError on failure.

    Strategy:
    - Already a mapping: return as-is.
    - Direct ``json.loads`` of the whole text.
    - A fenced ```json block, if the model wrapped its answer.
    - Greedy first ``{`` to last ``}`` extraction.
    """
    if isinstance(text, dict):
        return text
    raw = text if isinstance(text, str) else str(text or "")
    t = raw.strip()
    if not t:
        raise GenerationParseError("Failed to parse AI response: empty response", raw)

    first_error: Optional[Exception] = None
    try:
        value = json.loads(t)
    except json.JSONDecodeError as exc:
        first_error = exc
    else:
        if isinstance(value, dict):
            return value
        raise GenerationParseError("Failed to parse AI response: expected a JSON object", raw)

    candidates = []
    fenced = _fenced_block(t)
    if fenced:
        candidates.append(fenced)
    m = _OBJECT_RE.search(t)
    if m:
        candidates.append(m.group(0))

    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError as exc:
            first_error = exc
            continue
        if isinstance(value, dict):
            return value
    raise GenerationParseError(f"Failed to parse AI response: {first_error}", raw)

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, List, Optional

import requests

from siteforge.errors import LLMRequestError, LLMUnavailableError
from siteforge.llm_parsing import parse_generation_json

log = logging.getLogger(__name__)

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "").strip()
ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514").strip()
ANTHROPIC_ENDPOINT = os.getenv("ANTHROPIC_ENDPOINT", "https://api.anthropic.com/v1/messages").strip()
ANTHROPIC_VERSION = "2023-06-01"
try:
    LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "8000") or 8000)
except Exception:
    LLM_MAX_TOKENS = 8000
try:
    LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.7") or 0.7)
except Exception:
    LLM_TEMPERATURE = 0.7
try:
    LLM_TIMEOUT_SECS = float(os.getenv("LLM_TIMEOUT_SECS", "120") or 120)
except Exception:
    LLM_TIMEOUT_SECS = 120.0


def status() -> Dict[str, Any]:
    if ANTHROPIC_API_KEY:
        return {"provider": "anthropic", "model": ANTHROPIC_MODEL, "has_token": True, "using": "anthropic"}
    return {"provider": None, "model": None, "has_token": False, "using": "none"}


def _system_blocks(system: str, schema: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    blocks: List[Dict[str, Any]] = [
        {"type": "text", "text": system, "cache_control": {"type": "ephemeral"}},
    ]
    if schema:
        blocks.append({
            "type": "text",
            "text": "The JSON you return must validate against this schema:\n"
            + json.dumps(schema, ensure_ascii=False),
        })
    return blocks


def _response_text(payload: Dict[str, Any]) -> str:
    parts = []
    for block in payload.get("content") or []:
        if isinstance(block, dict) and block.get("type") == "text":
            parts.append(str(block.get("text") or ""))
    return "".join(parts)


def complete(system: str, prompt: str, schema: Optional[Dict[str, Any]] = None) -> str:
    """Send one user turn to the Messages API and return the concatenated text blocks."""
    if not ANTHROPIC_API_KEY:
        raise LLMUnavailableError("ANTHROPIC_API_KEY is not configured")

    headers = {
        "x-api-key": ANTHROPIC_API_KEY,
        "anthropic-version": ANTHROPIC_VERSION,
        "content-type": "application/json",
    }
    body = {
        "model": ANTHROPIC_MODEL,
        "max_tokens": LLM_MAX_TOKENS,
        "temperature": LLM_TEMPERATURE,
        "system": _system_blocks(system, schema),
        "messages": [{"role": "user", "content": prompt}],
    }
    try:
        resp = requests.post(ANTHROPIC_ENDPOINT, headers=headers, json=body, timeout=LLM_TIMEOUT_SECS)
    except requests.RequestException as e:
        logging.warning("Anthropic request error: %r", e)
        raise LLMRequestError(f"LLM request failed: {e}") from e

    if resp.status_code != 200:
        raw = ""
        try:
            raw = resp.text
        except Exception:
            raw = ""
        logging.warning("Anthropic returned %s: %s", resp.status_code, raw[:300])
        raise LLMRequestError(f"LLM request failed with status {resp.status_code}")

    try:
        payload = resp.json()
    except ValueError as e:
        raise LLMRequestError("LLM response was not JSON") from e
    if not isinstance(payload, dict):
        raise LLMRequestError("LLM response was not a JSON object")
    text = _response_text(payload)
    usage = payload.get("usage")
    if usage:
        log.info(
            "llm.complete: model=%s in=%s out=%s cache_read=%s",
            ANTHROPIC_MODEL,
            usage.get("input_tokens"),
            usage.get("output_tokens"),
            usage.get("cache_read_input_tokens"),
        )
    if payload.get("stop_reason") == "max_tokens":
        log.warning("llm.complete: response truncated at max_tokens=%s", LLM_MAX_TOKENS)
    return text


def generate(system: str, prompt: str, schema: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """``complete`` followed by JSON extraction; raises GenerationParseError when no object is found."""
    return parse_generation_json(complete(system, prompt, schema))

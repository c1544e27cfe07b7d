"""Generation and update flows: model -> normalize -> serialize."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional

import jsonschema

from siteforge import llm_client, prompts, site_nlu
from siteforge.errors import InvalidGenerationError, LLMUnavailableError
from siteforge.evaluator import evaluate
from siteforge.normalizer import NormalizeDefaults, normalize, normalize_document
from siteforge.serializer import serialize, to_plain_config

log = logging.getLogger(__name__)

SCHEMA_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "schemas", "generation_schema.json")

Generator = Callable[[str, str, Optional[Dict[str, Any]]], Dict[str, Any]]


def offline_allowed() -> bool:
    return os.getenv("ALLOW_OFFLINE_GENERATION", "0").lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def generation_schema() -> Dict[str, Any]:
    with open(SCHEMA_PATH, encoding="utf-8") as fh:
        return json.load(fh)


@dataclass
class GeneratedSite:
    data: Dict[str, Any]
    config: Dict[str, Any]
    config_js: str

    def to_response(self) -> Dict[str, Any]:
        return {"data": self.data, "configJs": self.config_js, "config": self.config}


def envelope_errors(raw: Any) -> List[Dict[str, str]]:
    validator = jsonschema.Draft202012Validator(generation_schema())
    errors: List[Dict[str, str]] = []
    for err in validator.iter_errors(raw):
        loc = ".".join(str(p) for p in err.path) or "(root)"
        errors.append({"path": loc, "message": str(err.message)})
    return errors


def finalize(raw: Any, defaults: Optional[NormalizeDefaults] = None) -> GeneratedSite:
    """Check the ``{data, config}`` envelope, then normalize both halves and serialize the config."""
    errors = envelope_errors(raw)
    if not isinstance(raw, dict) or not isinstance(raw.get("data"), dict) or not isinstance(raw.get("config"), dict):
        raise InvalidGenerationError("Invalid response structure from AI", errors)
    if errors:
        # structural defects inside the halves are repaired below; log them for diagnosis
        log.warning("finalize: %d schema issue(s), first: %s", len(errors), errors[0])
    data = normalize_document(raw["data"])
    config = normalize(raw["config"], defaults)
    return GeneratedSite(data=data, config=config, config_js=serialize(config))


def _generator(generator: Optional[Generator]) -> Optional[Generator]:
    if generator is not None:
        return generator
    if llm_client.status().get("has_token"):
        return llm_client.generate
    return None


def generate_site(
    prompt: str,
    context: Optional[Dict[str, Any]] = None,
    generator: Optional[Generator] = None,
    defaults: Optional[NormalizeDefaults] = None,
) -> GeneratedSite:
    gen = _generator(generator)
    if gen is None:
        if not offline_allowed():
            raise LLMUnavailableError("Model or token not configured")
        log.info("generate_site: no model configured; using offline intent parser")
        return finalize(site_nlu.offline_generation(prompt), defaults)

    log.info("generate_site: prompt_len=%d has_context=%s", len(prompt), bool(context))
    raw = gen(
        prompts.build_generate_system_prompt(),
        prompts.build_generate_user_prompt(prompt, context),
        generation_schema(),
    )
    return finalize(raw, defaults)


def current_config_mapping(current_config: Any) -> Dict[str, Any]:
    """Accept a config as a mapping or as module source; return plain JSON-able data."""
    if isinstance(current_config, str):
        return to_plain_config(evaluate(current_config))
    if isinstance(current_config, dict):
        return to_plain_config(current_config)
    raise InvalidGenerationError("currentConfig must be an object or module source string")


def update_site(
    prompt: str,
    current_data: Dict[str, Any],
    current_config: Any,
    generator: Optional[Generator] = None,
    defaults: Optional[NormalizeDefaults] = None,
) -> GeneratedSite:
    gen = _generator(generator)
    if gen is None:
        raise LLMUnavailableError("Model or token not configured")
    config = current_config_mapping(current_config)
    log.info("update_site: prompt_len=%d components=%d", len(prompt), len(config.get("components") or {}))
    raw = gen(
        prompts.build_update_system_prompt(),
        prompts.build_update_user_prompt(prompt, current_data, config),
        generation_schema(),
    )
    return finalize(raw, defaults)

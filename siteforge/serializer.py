from __future__ import annotations

import inspect
import json
import logging
import re
from typing import Any, Dict

from siteforge.js_runtime import UNDEFINED, JSFunction, number_to_string

log = logging.getLogger(__name__)

EXPORT_HEADER = "export const config = "
RAW_SOURCE_KEYS = frozenset({"render", "getItemSummary"})
INDENT = "  "
_NEEDS_QUOTES = re.compile(r"[^A-Za-z0-9_$]")


def serialize(config: Any, bare_keys: bool = False) -> str:
    """Render ``config`` as ``export const config = <literal>;``.

    Keys are JSON-quoted unless ``bare_keys`` is set, in which case only keys
    containing characters outside ``[A-Za-z0-9_$]`` are quoted. String values
    under ``render``/``getItemSummary`` are emitted as raw source.
    """
    return f"{EXPORT_HEADER}{serialize_value(config, bare_keys=bare_keys)};"


def serialize_value(value: Any, indent: int = 0, bare_keys: bool = False) -> str:
    return _Writer(bare_keys).write(value, indent, raw=False)


class _Writer:
    def __init__(self, bare_keys: bool) -> None:
        self.bare_keys = bare_keys
        self._active: set = set()

    def key(self, name: Any) -> str:
        text = str(name)
        if self.bare_keys and text and not _NEEDS_QUOTES.search(text):
            return text
        return json.dumps(text, ensure_ascii=False)

    def write(self, value: Any, indent: int, raw: bool) -> str:
        if value is None:
            return "null"
        if value is UNDEFINED:
            return "undefined"
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float)):
            return number_to_string(value)
        if isinstance(value, str):
            if raw and value.strip():
                return value.strip()
            return json.dumps(value, ensure_ascii=False)
        if callable(value):
            return function_source(value)
        if isinstance(value, (list, tuple)):
            return self._container(value, indent, "[", "]", self._items(value, indent))
        if isinstance(value, dict):
            return self._container(value, indent, "{", "}", self._pairs(value, indent))
        log.warning("serialize: unsupported value of type %s; quoting its repr", type(value).__name__)
        return json.dumps(repr(value))

    def _items(self, value: Any, indent: int):
        for item in value:
            yield self.write(item, indent + 1, raw=False)

    def _pairs(self, value: Dict[Any, Any], indent: int):
        for key, item in value.items():
            rendered = self.write(item, indent + 1, raw=key in RAW_SOURCE_KEYS)
            yield f"{self.key(key)}: {rendered}"

    def _container(self, value: Any, indent: int, open_: str, close: str, parts) -> str:
        marker = id(value)
        if marker in self._active:
            log.warning("serialize: circular reference; emitting null")
            return "null"
        self._active.add(marker)
        try:
            rendered = list(parts)
        finally:
            self._active.discard(marker)
        if not rendered:
            return open_ + close
        pad = INDENT * (indent + 1)
        body = ",\n".join(pad + part for part in rendered)
        return f"{open_}\n{body}\n{INDENT * indent}{close}"


def function_source(fn: Any) -> str:
    """Best-effort source text for a callable; never raises."""
    if isinstance(fn, JSFunction):
        return fn.source
    source = getattr(fn, "source", None)
    if isinstance(source, str) and source.strip():
        return source.strip()
    try:
        return inspect.getsource(fn).strip()
    except (OSError, TypeError):
        log.debug("serialize: no source for %r", fn)
        return json.dumps(repr(fn))


def to_plain_config(live: Any) -> Any:
    """Copy of a live config with every function replaced by its source text."""
    if isinstance(live, dict):
        return {k: to_plain_config(v) for k, v in live.items()}
    if isinstance(live, (list, tuple)):
        return [to_plain_config(v) for v in live]
    if callable(live):
        return function_source(live)
    if live is UNDEFINED:
        return None
    return live

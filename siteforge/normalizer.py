"""Structural repair of AI-generated component configurations.

The normalizer never rejects input. Whatever shape arrives, the result has
a ``components`` mapping where every component carries ``label``, ``fields``
and ``render``, and every field carries ``type`` and ``label`` plus only the
keys its kind allows. Each repair is logged with its ``component.field`` path.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

log = logging.getLogger(__name__)

FIELD_TYPES = ("text", "textarea", "number", "select", "radio", "array")
BASE_FIELD_KEYS = ("type", "label", "options")
ARRAY_FIELD_KEYS = BASE_FIELD_KEYS + ("arrayFields", "defaultItemProps", "getItemSummary", "min", "max")

DEFAULT_ITEM_TEXT = os.getenv("DEFAULT_ITEM_TEXT", "New item")
DEFAULT_ITEM_SUMMARY = "(item, index) => (item && (item.title || item.name)) || `Item ${index + 1}`"
DEFAULT_ROOT_PROPS = {"title": "My Site", "theme": "light"}


@dataclass(frozen=True)
class NormalizeDefaults:
    """Placeholder values used when the normalizer has to synthesize something."""

    item_text: str = DEFAULT_ITEM_TEXT
    item_number: int = 0
    item_summary: str = DEFAULT_ITEM_SUMMARY
    array_field_name: str = "value"
    array_field_label: str = "Value"

    def placeholder_render(self, component: str) -> str:
        return f"() => React.createElement('div', {{}}, {json.dumps(component)})"


def _is_callable_source(value: Any) -> bool:
    return (isinstance(value, str) and bool(value.strip())) or callable(value)


def title_label(name: str) -> str:
    """``heroTitle`` -> ``HeroTitle``: only the first character changes."""
    return name[:1].upper() + name[1:] if name else name


def _normalize_field(path: str, name: str, field: Any, allowed: tuple, defaults: NormalizeDefaults) -> Dict[str, Any]:
    if not isinstance(field, dict):
        log.warning("normalize: %s is not a mapping (%s); replacing", path, type(field).__name__)
        field = {}

    ftype = field.get("type")
    if not isinstance(ftype, str) or not ftype:
        if "type" in field:
            log.warning("normalize: %s.type invalid (%r); using text", path, ftype)
        else:
            log.warning("normalize: %s missing type; using text", path)
        field["type"] = "text"
    elif ftype not in FIELD_TYPES or (ftype == "array" and "arrayFields" not in allowed):
        log.warning("normalize: %s unsupported type %r; using text", path, ftype)
        field["type"] = "text"

    label = field.get("label")
    if not isinstance(label, str) or not label.strip():
        log.warning("normalize: %s missing label", path)
        field["label"] = title_label(name) or "Field"

    keys = ARRAY_FIELD_KEYS if field["type"] == "array" and "arrayFields" in allowed else BASE_FIELD_KEYS
    for key in list(field.keys()):
        if key not in keys:
            log.warning("normalize: %s dropping key %r", path, key)
            del field[key]

    if "options" in field and not isinstance(field["options"], list):
        log.warning("normalize: %s.options is not a list; dropping", path)
        del field["options"]

    if field["type"] == "array":
        _normalize_array(path, field, defaults)
    return field


def _normalize_array(path: str, field: Dict[str, Any], defaults: NormalizeDefaults) -> None:
    sub_fields = field.get("arrayFields")
    if not isinstance(sub_fields, dict) or not sub_fields:
        log.warning("normalize: %s.arrayFields missing or empty; synthesizing", path)
        sub_fields = {defaults.array_field_name: {"type": "text", "label": defaults.array_field_label}}
    for sub_name in list(sub_fields.keys()):
        sub_fields[sub_name] = _normalize_field(
            f"{path}.{sub_name}", str(sub_name), sub_fields[sub_name], BASE_FIELD_KEYS, defaults
        )
    field["arrayFields"] = sub_fields

    if not _is_callable_source(field.get("getItemSummary")):
        log.warning("normalize: %s.getItemSummary missing; synthesizing", path)
        field["getItemSummary"] = defaults.item_summary

    if not isinstance(field.get("defaultItemProps"), dict):
        log.warning("normalize: %s.defaultItemProps missing; synthesizing", path)
        field["defaultItemProps"] = default_item_props(sub_fields, defaults)


def default_item_props(sub_fields: Dict[str, Any], defaults: Optional[NormalizeDefaults] = None) -> Dict[str, Any]:
    defaults = defaults or NormalizeDefaults()
    props: Dict[str, Any] = {}
    for name, sub in sub_fields.items():
        kind = sub.get("type")
        if kind == "number":
            props[name] = defaults.item_number
        elif kind in ("select", "radio"):
            props[name] = _first_option_value(sub.get("options"), defaults.item_text)
        else:
            props[name] = defaults.item_text
    return props


def _first_option_value(options: Any, fallback: Any) -> Any:
    if isinstance(options, list) and options:
        first = options[0]
        if isinstance(first, dict) and "value" in first:
            return first["value"]
        if isinstance(first, (str, int, float)):
            return first
    return fallback


def normalize(raw: Any, defaults: Optional[NormalizeDefaults] = None) -> Dict[str, Any]:
    """Repair ``raw`` in place and return it (a new mapping if ``raw`` was not one)."""
    defaults = defaults or NormalizeDefaults()
    if not isinstance(raw, dict):
        log.warning("normalize: config is %s, not a mapping; starting empty", type(raw).__name__)
        raw = {}

    components = raw.get("components")
    if not isinstance(components, dict):
        log.warning("normalize: components missing or not a mapping; using {}")
        components = {}
        raw["components"] = components

    for name in list(components.keys()):
        component = components[name]
        if not isinstance(component, dict):
            log.warning("normalize: %s is not a mapping; replacing", name)
            component = {}
            components[name] = component

        label = component.get("label")
        if not isinstance(label, str) or not label.strip():
            log.warning("normalize: %s missing label", name)
            component["label"] = str(name) or "Component"

        fields = component.get("fields")
        if not isinstance(fields, dict):
            log.warning("normalize: %s missing fields", name)
            fields = {}
            component["fields"] = fields

        if not _is_callable_source(component.get("render")):
            log.warning("normalize: %s missing render; using placeholder", name)
            component["render"] = defaults.placeholder_render(str(name))

        for field_name in list(fields.keys()):
            fields[field_name] = _normalize_field(
                f"{name}.{field_name}", str(field_name), fields[field_name], ARRAY_FIELD_KEYS, defaults
            )
    return raw


def normalize_document(data: Any) -> Dict[str, Any]:
    """Fill in the page document shell: ``content`` list, ``root.props`` and ``zones``."""
    if not isinstance(data, dict):
        log.warning("normalize_document: data is %s, not a mapping", type(data).__name__)
        data = {}
    content = data.get("content")
    if not isinstance(content, list):
        log.warning("normalize_document: content missing; using []")
        data["content"] = []
    root = data.get("root")
    if not isinstance(root, dict):
        data["root"] = {"props": dict(DEFAULT_ROOT_PROPS)}
    elif not isinstance(root.get("props"), dict):
        flat = {k: v for k, v in root.items() if k != "props"}
        data["root"] = {"props": {**DEFAULT_ROOT_PROPS, **flat}}
    if not isinstance(data.get("zones"), dict):
        data["zones"] = {}
    return data


def missing_types(data: Dict[str, Any], config: Dict[str, Any]) -> List[str]:
    """Content types referenced by ``data`` with no definition in ``config``."""
    known = config.get("components") or {}
    seen: List[str] = []
    nodes = list(data.get("content") or [])
    for zone in (data.get("zones") or {}).values():
        if isinstance(zone, list):
            nodes.extend(zone)
    for node in nodes:
        ctype = node.get("type") if isinstance(node, dict) else None
        if isinstance(ctype, str) and ctype not in known and ctype not in seen:
            seen.append(ctype)
    return seen

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from markupsafe import Markup, escape

from siteforge.js_runtime import UNDEFINED, number_to_string, to_js_string

log = logging.getLogger(__name__)

VOID_ELEMENTS = {
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "source", "track", "wbr",
}

# CSS properties that take bare numbers (no px suffix)
UNITLESS_CSS = {
    "flex", "flexGrow", "flexShrink", "fontWeight", "lineHeight", "opacity",
    "order", "zIndex", "zoom", "gridRow", "gridColumn", "columnCount",
}

_ATTR_ALIASES = {"className": "class", "htmlFor": "for"}
_TAG_RE = re.compile(r"^[A-Za-z][A-Za-z0-9-]*$")


class _Fragment:
    __slots__ = ()

    def __repr__(self) -> str:
        return "Fragment"


Fragment = _Fragment()


@dataclass
class Element:
    """A node in the rendered tree: an HTML tag, a fragment or a function component."""

    type: Any
    props: Dict[str, Any] = field(default_factory=dict)
    children: List[Any] = field(default_factory=list)
    key: Optional[str] = None


@dataclass
class ErrorElement(Element):
    """Inline error marker produced in place of a section that failed."""

    component: str = ""
    message: str = ""

    @classmethod
    def create(cls, component: str, message: str) -> "ErrorElement":
        return cls(
            type="div",
            props={"className": "siteforge-error", "data-error": component},
            children=[message],
            component=component,
            message=message,
        )


class ElementFactory:
    """The ``React`` capability handed to evaluated render functions."""

    Fragment = Fragment

    def createElement(self, type_: Any = UNDEFINED, props: Any = None, *children: Any) -> Element:
        if type_ is UNDEFINED or type_ is None:
            raise TypeError("createElement: element type is invalid")
        if isinstance(type_, str) and not _TAG_RE.match(type_):
            raise TypeError(f"createElement: invalid tag name {type_!r}")
        attrs = dict(props) if isinstance(props, dict) else {}
        key = attrs.pop("key", None)
        nested = attrs.pop("children", None)
        kids = list(children)
        if not kids and nested not in (None, UNDEFINED):
            kids = nested if isinstance(nested, list) else [nested]
        return Element(type=type_, props=attrs, children=kids, key=None if key in (None, UNDEFINED) else to_js_string(key))

    def __repr__(self) -> str:
        return "<React>"


def default_render_env() -> Dict[str, Any]:
    return {"React": ElementFactory()}


def materialize(node: Any, depth: int = 0) -> Any:
    """Expand function components so that any failure surfaces here."""
    if depth > 200:
        raise RecursionError("component tree too deep")
    if isinstance(node, list):
        return [materialize(child, depth + 1) for child in node]
    if not isinstance(node, Element) or isinstance(node, ErrorElement):
        return node
    if callable(node.type) and not isinstance(node.type, _Fragment):
        props = dict(node.props)
        if node.children:
            props["children"] = node.children if len(node.children) > 1 else node.children[0]
        return materialize(node.type(props), depth + 1)
    return Element(
        type=node.type,
        props=node.props,
        children=[materialize(child, depth + 1) for child in node.children],
        key=node.key,
    )


def _kebab(name: str) -> str:
    return re.sub(r"([A-Z])", lambda m: "-" + m.group(1).lower(), name)


def style_to_css(style: Dict[str, Any]) -> str:
    parts = []
    for name, value in style.items():
        if value is None or value is UNDEFINED or value is False or value == "":
            continue
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            text = number_to_string(value)
            if value != 0 and name not in UNITLESS_CSS:
                text += "px"
        else:
            text = to_js_string(value)
        parts.append(f"{_kebab(name)}: {text}")
    return "; ".join(parts)


def _attrs_html(props: Dict[str, Any]) -> str:
    out = []
    for name, value in props.items():
        if name in ("children", "dangerouslySetInnerHTML", "key", "ref"):
            continue
        if name.startswith("on") and name[2:3].isupper():
            continue
        if callable(value) or value is None or value is UNDEFINED or value is False:
            continue
        attr = _ATTR_ALIASES.get(name, name)
        if not _TAG_RE.match(attr.replace("_", "-").replace(":", "-")):
            continue
        if value is True:
            out.append(f" {attr}")
            continue
        if attr == "style" and isinstance(value, dict):
            value = style_to_css(value)
        else:
            value = to_js_string(value)
        out.append(f' {attr}="{escape(value)}"')
    return "".join(out)


def to_html(node: Any) -> Markup:
    """Serialize a materialized tree to escaped HTML."""
    if node is None or node is UNDEFINED or isinstance(node, bool):
        return Markup("")
    if isinstance(node, list):
        return Markup("").join(to_html(child) for child in node)
    if callable(node):
        return Markup("")
    if not isinstance(node, Element):
        if isinstance(node, dict):
            log.debug("to_html: dropping plain object child")
            return Markup("")
        return escape(to_js_string(node))
    if isinstance(node.type, _Fragment):
        return to_html(node.children)
    if not isinstance(node.type, str):
        return to_html(materialize(node))
    tag = node.type
    attrs = _attrs_html(node.props)
    if tag.lower() in VOID_ELEMENTS:
        return Markup(f"<{tag}{attrs} />")
    inner = node.props.get("dangerouslySetInnerHTML")
    if isinstance(inner, dict) and isinstance(inner.get("__html"), str):
        body = Markup(inner["__html"])
    else:
        body = to_html(node.children)
    return Markup(f"<{tag}{attrs}>") + body + Markup(f"</{tag}>")


def to_json(node: Any) -> Any:
    """Plain JSON-able view of a tree, used by the JSON render response."""
    if isinstance(node, list):
        return [to_json(child) for child in node]
    if isinstance(node, ErrorElement):
        return {"error": True, "component": node.component, "message": node.message}
    if isinstance(node, Element):
        props = {
            k: to_json(v)
            for k, v in node.props.items()
            if not callable(v) and v is not UNDEFINED
        }
        tag = node.type if isinstance(node.type, str) else "#fragment"
        return {"type": tag, "props": props, "children": [to_json(child) for child in node.children]}
    if node is UNDEFINED or callable(node):
        return None
    if isinstance(node, dict):
        return {k: to_json(v) for k, v in node.items() if v is not UNDEFINED and not callable(v)}
    return node

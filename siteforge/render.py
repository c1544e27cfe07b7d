from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Mapping

from jinja2 import Environment, FileSystemLoader, select_autoescape

from siteforge.elements import ErrorElement, materialize, to_html, to_json
from siteforge.errors import SiteforgeError

log = logging.getLogger(__name__)

TEMPLATES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates")

# Jinja environment that looks in the package templates directory
_env = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    autoescape=select_autoescape(["html", "xml"]),
    enable_async=False,
)


def _render_node(index: int, node: Any, components: Mapping[str, Any]) -> Any:
    """
    Map one content node {type, props} to its rendered tree.
    Every failure becomes an ErrorElement in place of the section.
    """
    if not isinstance(node, dict):
        return ErrorElement.create("?", f"Error: content entry {index} is not an object")
    ctype = node.get("type")
    name = ctype if isinstance(ctype, str) else str(ctype)
    component = components.get(name) if isinstance(ctype, str) else None
    if not isinstance(component, dict):
        log.warning("render: component %s not found (content[%d])", name, index)
        return ErrorElement.create(name, f"Error: Component {name} not found")
    render = component.get("render")
    props = node.get("props")
    props = dict(props) if isinstance(props, dict) else {}
    try:
        if not callable(render):
            raise TypeError("render is not a function")
        return materialize(render(props))
    except SiteforgeError as exc:
        log.warning("render: %s failed (content[%d]): %s", name, index, exc)
        return ErrorElement.create(name, f"Error rendering {name}: {exc}")
    except Exception as exc:
        # host callables in the render env may raise anything
        log.exception("render: %s raised (content[%d])", name, index)
        return ErrorElement.create(name, f"Error rendering {name}: {exc}")


def render_nodes(nodes: Any, live_config: Mapping[str, Any]) -> List[Any]:
    components = live_config.get("components") if isinstance(live_config, Mapping) else None
    if not isinstance(components, Mapping):
        components = {}
    if not isinstance(nodes, list):
        return []
    return [_render_node(i, node, components) for i, node in enumerate(nodes)]


def render_page(doc: Mapping[str, Any], live_config: Mapping[str, Any]) -> List[Any]:
    """One rendered node per ``doc["content"]`` entry, in order. Never raises."""
    content = doc.get("content") if isinstance(doc, Mapping) else None
    return render_nodes(content, live_config)


def render_zones(doc: Mapping[str, Any], live_config: Mapping[str, Any]) -> Dict[str, List[Any]]:
    zones = doc.get("zones") if isinstance(doc, Mapping) else None
    if not isinstance(zones, Mapping):
        return {}
    return {str(name): render_nodes(nodes, live_config) for name, nodes in zones.items()}


def root_props(doc: Mapping[str, Any]) -> Dict[str, Any]:
    root = doc.get("root") if isinstance(doc, Mapping) else None
    if not isinstance(root, Mapping):
        return {}
    props = root.get("props")
    if isinstance(props, Mapping):
        return dict(props)
    return {k: v for k, v in root.items() if k != "props"}


def render_page_json(doc: Mapping[str, Any], live_config: Mapping[str, Any]) -> Dict[str, Any]:
    nodes = render_page(doc, live_config)
    return {
        "root": root_props(doc),
        "content": to_json(nodes),
        "zones": {name: to_json(z) for name, z in render_zones(doc, live_config).items()},
        "errors": [
            {"index": i, "component": n.component, "message": n.message}
            for i, n in enumerate(nodes)
            if isinstance(n, ErrorElement)
        ],
    }


def render_page_html(doc: Mapping[str, Any], live_config: Mapping[str, Any]) -> str:
    """
    Given a page document and a live config, build the full HTML string.
    """
    root = root_props(doc)
    sections = [to_html(n) for n in render_page(doc, live_config)]
    zones = {name: [to_html(n) for n in nodes] for name, nodes in render_zones(doc, live_config).items()}
    base = _env.get_template("page.html")
    return base.render(
        title=root.get("title") or "Untitled",
        theme=root.get("theme") or "light",
        sections=sections,
        zones=zones,
    )

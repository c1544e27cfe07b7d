from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

CONTEXT_PREVIEW_CHARS = 2000

_SHAPE_HINT = """
Respond with one JSON object and nothing else:
{
  "data": {
    "content": [{"type": "ComponentName", "props": {"id": "ComponentName-1", ...}}],
    "root": {"props": {"title": "Site title", "theme": "light"}},
    "zones": {}
  },
  "config": {
    "components": {
      "ComponentName": {
        "label": "Human label",
        "fields": {
          "title": {"type": "text", "label": "Title"},
          "items": {
            "type": "array",
            "label": "Items",
            "arrayFields": {"title": {"type": "text", "label": "Title"}},
            "defaultItemProps": {"title": "New item"},
            "getItemSummary": "(item) => item.title || 'Item'"
          }
        },
        "render": "({ title, items }) => React.createElement('section', { className: 'p-8' }, title)"
      }
    }
  }
}
""".strip()

_RULES = """
Rules:
- Every type used in data.content must be defined in config.components.
- Field types are limited to text, textarea, number, select, radio and array.
- select and radio fields carry "options": [{"label": "...", "value": "..."}].
- Array fields need arrayFields, defaultItemProps and getItemSummary; array items may not nest arrays.
- render and getItemSummary are single JavaScript arrow functions stored as strings.
- render functions may only use React.createElement (no JSX, no imports, no hooks).
- Style with Tailwind class names passed as className.
- Give every content item a unique props.id.
""".strip()


def build_generate_system_prompt() -> str:
    return (
        "You design small marketing websites as page-builder data. "
        "Given a description, produce the page content and the component library that renders it.\n\n"
        f"{_RULES}\n\n{_SHAPE_HINT}"
    )


def build_update_system_prompt() -> str:
    return (
        "You edit an existing page-builder site. You receive the current data and component config "
        "and a change request. Apply the change, keep everything the user did not ask to change, "
        "and return the complete updated data and config (not a diff).\n\n"
        f"{_RULES}\n\n{_SHAPE_HINT}"
    )


def _scraped_sites(context: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not isinstance(context, dict):
        return []
    conversation = context.get("conversationContext")
    if not isinstance(conversation, dict):
        return []
    sites = conversation.get("scrapedWebsites")
    return [s for s in sites if isinstance(s, dict)] if isinstance(sites, list) else []


def build_generate_user_prompt(prompt: str, context: Optional[Dict[str, Any]] = None) -> str:
    parts = [f"Create a website: {prompt.strip()}"]
    sites = _scraped_sites(context)
    if sites:
        parts.append("\nReference websites the user shared:")
        for site in sites:
            url = site.get("url") or "(unknown url)"
            content = site.get("content")
            if isinstance(content, dict):
                content = content.get("markdown") or content.get("content") or json.dumps(content, ensure_ascii=False)
            preview = str(content or "")[:CONTEXT_PREVIEW_CHARS]
            parts.append(f"\nURL: {url}\nContent preview:\n{preview}")
    return "\n".join(parts)


def build_update_user_prompt(prompt: str, current_data: Dict[str, Any], current_config: Dict[str, Any]) -> str:
    return (
        f"Current data:\n{json.dumps(current_data, ensure_ascii=False, indent=2)}\n\n"
        f"Current config:\n{json.dumps(current_config, ensure_ascii=False, indent=2)}\n\n"
        f"Change request: {prompt.strip()}"
    )

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import TypeAdapter, ValidationError

from siteforge.models import PageDocument
from siteforge.normalizer import missing_types

_page_adapter = TypeAdapter(PageDocument)


def collect_errors(doc: Dict[str, Any], config: Optional[Dict[str, Any]] = None) -> List[Dict[str, str]]:
    """
    Return a list of {"path": "...", "message": "..."} error dicts.
    Shape problems come from the PageDocument model; when a config is given,
    content types it does not define are reported too.
    """
    errors: List[Dict[str, str]] = []
    try:
        _page_adapter.validate_python(doc)
    except ValidationError as ve:
        for e in ve.errors():
            loc = ".".join(str(p) for p in e.get("loc", [])) or "(root)"
            msg = e.get("msg", "invalid")
            if e.get("type") == "missing":
                msg = f"required property '{e['loc'][-1]}' is missing"
            errors.append({"path": loc, "message": msg})

    if config is not None and isinstance(doc, dict):
        for ctype in missing_types(doc, config):
            errors.append({"path": "content", "message": f"component '{ctype}' is not defined in config"})
    return errors

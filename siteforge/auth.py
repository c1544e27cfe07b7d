"""API-key gate for the routes that spend model calls or write to the sandbox."""
import hmac
import logging
import os
from typing import Optional, Set

from fastapi import Header, HTTPException

log = logging.getLogger(__name__)


def load_api_keys(raw: Optional[str] = None) -> Set[str]:
    """``API_KEYS="key1, key2"`` -> ``{"key1", "key2"}``; blanks are ignored."""
    raw = os.getenv("API_KEYS", "") if raw is None else raw
    return {k.strip() for k in raw.split(",") if k.strip()}


API_KEYS: Set[str] = load_api_keys()


def check_api_key(key: Optional[str]) -> bool:
    """True when no keys are configured (open dev server) or ``key`` matches one of them."""
    if not API_KEYS:
        return True
    if not key:
        return False
    return any(hmac.compare_digest(key.encode(), known.encode()) for known in API_KEYS)


def require_api_key(x_api_key: Optional[str] = Header(default=None)) -> Optional[str]:
    if not check_api_key(x_api_key):
        log.warning("auth: rejected request (%s x-api-key)", "bad" if x_api_key else "missing")
        raise HTTPException(status_code=401, detail="invalid or missing API key")
    return x_api_key

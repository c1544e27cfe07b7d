"""Normalize, serialize, evaluate and render AI-generated page-builder sites."""
import os
from pathlib import Path
from typing import Dict


def load_env_file(path: Path) -> Dict[str, str]:
    """Copy ``KEY=value`` lines from ``path`` into ``os.environ`` without overriding set values.

    Returns the entries that were applied. A missing or unreadable file is
    treated as empty.
    """
    applied: Dict[str, str] = {}
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return applied
    for line in lines:
        s = line.strip()
        if not s or s.startswith("#") or "=" not in s:
            continue
        key, val = s.split("=", 1)
        key = key.removeprefix("export ").strip()
        val = val.strip()
        if len(val) >= 2 and val[0] == val[-1] and val[0] in "\"'":
            val = val[1:-1]
        if key and key not in os.environ:
            os.environ[key] = val
            applied[key] = val
    return applied


# ANTHROPIC_API_KEY and friends usually live in .env; tests stay offline
if not os.getenv("PYTEST_CURRENT_TEST"):
    load_env_file(Path(os.getenv("SITEFORGE_ENV_FILE", ".env")))

__version__ = "0.1.0"

"""Sandbox providers, the per-app registry, and the preview-app writer."""
from __future__ import annotations

import json
import logging
import os
import re
import shlex
import subprocess
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from siteforge.errors import SandboxError
from siteforge.evaluator import strip_export_prefix
from siteforge.render import TEMPLATES_DIR, root_props
from siteforge.serializer import serialize

log = logging.getLogger(__name__)

SANDBOX_ROOT = os.getenv("SANDBOX_ROOT", os.path.join(os.getcwd(), ".sandboxes"))
PREVIEW_APP_PATH = "src/App.jsx"
SOURCE_EXTENSIONS = (".jsx", ".js", ".tsx", ".ts", ".css", ".json")
EXCLUDED_DIRS = {"node_modules", ".git", "dist", "build", ".next", "__pycache__"}
MAX_FILE_BYTES = 100_000
_SANDBOX_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
COMMAND_TIMEOUT_SECS = 120

# JSX uses {{ }} for inline styles, so the app template gets its own delimiters
_jsx_env = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    variable_start_string="[[",
    variable_end_string="]]",
    block_start_string="[%",
    block_end_string="%]",
    comment_start_string="[#",
    comment_end_string="#]",
    autoescape=False,
    undefined=StrictUndefined,
    keep_trailing_newline=True,
)

_VITE_FILES = {
    "package.json": json.dumps(
        {
            "name": "siteforge-preview",
            "private": True,
            "type": "module",
            "scripts": {"dev": "vite --host", "build": "vite build"},
            "dependencies": {"react": "^18.2.0", "react-dom": "^18.2.0"},
            "devDependencies": {"@vitejs/plugin-react": "^4.2.0", "vite": "^5.0.0"},
        },
        indent=2,
    ),
    "index.html": (
        '<!doctype html>\n<html lang="en">\n<head>\n<meta charset="UTF-8" />\n'
        '<script src="https://cdn.tailwindcss.com"></script>\n<title>Preview</title>\n</head>\n'
        '<body>\n<div id="root"></div>\n<script type="module" src="/src/main.jsx"></script>\n</body>\n</html>\n'
    ),
    "vite.config.js": (
        "import { defineConfig } from 'vite';\nimport react from '@vitejs/plugin-react';\n\n"
        "export default defineConfig({ plugins: [react()] });\n"
    ),
    "src/main.jsx": (
        "import React from 'react';\nimport ReactDOM from 'react-dom/client';\nimport App from './App.jsx';\n\n"
        "ReactDOM.createRoot(document.getElementById('root')).render(React.createElement(App));\n"
    ),
}


@dataclass
class SandboxInfo:
    sandbox_id: str
    url: Optional[str] = None
    provider: str = "local"
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {"sandboxId": self.sandbox_id, "url": self.url, "provider": self.provider, "createdAt": self.created_at}


class SandboxProvider:
    """Operations the pipeline needs from a sandbox."""

    def create_sandbox(self) -> SandboxInfo:
        raise NotImplementedError

    def setup_app(self) -> None:
        raise NotImplementedError

    def write_file(self, path: str, content: str) -> None:
        raise NotImplementedError

    def read_file(self, path: str) -> str:
        raise NotImplementedError

    def run_command(self, command: Union[str, Sequence[str]]) -> Dict[str, Any]:
        raise NotImplementedError

    def list_files(self) -> Dict[str, str]:
        raise NotImplementedError

    def get_sandbox_info(self) -> Optional[SandboxInfo]:
        raise NotImplementedError


class LocalSandboxProvider(SandboxProvider):
    """A sandbox backed by a directory under ``root``."""

    def __init__(self, root: Optional[str] = None, sandbox_id: Optional[str] = None) -> None:
        if sandbox_id is not None and not _SANDBOX_ID_RE.match(sandbox_id):
            raise SandboxError(f"invalid sandbox id: {sandbox_id!r}")
        self.root = Path(root or SANDBOX_ROOT)
        self._sandbox_id = sandbox_id
        self._info: Optional[SandboxInfo] = None
        if sandbox_id and self._dir_for(sandbox_id).is_dir():
            self._info = self._make_info(sandbox_id)

    def _dir_for(self, sandbox_id: str) -> Path:
        return self.root / sandbox_id

    def _make_info(self, sandbox_id: str) -> SandboxInfo:
        return SandboxInfo(sandbox_id=sandbox_id, url=self._dir_for(sandbox_id).resolve().as_uri())

    @property
    def workdir(self) -> Path:
        if self._info is None:
            raise SandboxError("sandbox has not been created")
        return self._dir_for(self._info.sandbox_id)

    def create_sandbox(self) -> SandboxInfo:
        sandbox_id = self._sandbox_id or uuid.uuid4().hex[:12]
        try:
            self._dir_for(sandbox_id).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SandboxError(f"could not create sandbox {sandbox_id}: {e}") from e
        self._info = self._make_info(sandbox_id)
        log.info("sandbox.create: id=%s dir=%s", sandbox_id, self._dir_for(sandbox_id))
        return self._info

    def setup_app(self) -> None:
        for rel, content in _VITE_FILES.items():
            self.write_file(rel, content)

    def _resolve(self, path: str) -> Path:
        base = self.workdir.resolve()
        target = (base / path.lstrip("/")).resolve()
        if target != base and base not in target.parents:
            raise SandboxError(f"path escapes sandbox: {path}")
        return target

    def write_file(self, path: str, content: str) -> None:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as e:
            raise SandboxError(f"write failed for {path}: {e}") from e

    def read_file(self, path: str) -> str:
        target = self._resolve(path)
        try:
            return target.read_text(encoding="utf-8")
        except OSError as e:
            raise SandboxError(f"read failed for {path}: {e}") from e

    def run_command(self, command: Union[str, Sequence[str]]) -> Dict[str, Any]:
        argv = shlex.split(command) if isinstance(command, str) else list(command)
        if not argv:
            raise SandboxError("empty command")
        try:
            proc = subprocess.run(
                argv,
                cwd=str(self.workdir),
                capture_output=True,
                text=True,
                timeout=COMMAND_TIMEOUT_SECS,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise SandboxError(f"command failed: {e}") from e
        return {"exitCode": proc.returncode, "stdout": proc.stdout, "stderr": proc.stderr}

    def list_files(self) -> Dict[str, str]:
        base = self.workdir
        files: Dict[str, str] = {}
        for dirpath, dirnames, filenames in os.walk(base):
            dirnames[:] = sorted(d for d in dirnames if d not in EXCLUDED_DIRS)
            for name in sorted(filenames):
                if not name.endswith(SOURCE_EXTENSIONS):
                    continue
                full = Path(dirpath) / name
                try:
                    if full.stat().st_size >= MAX_FILE_BYTES:
                        continue
                    files[full.relative_to(base).as_posix()] = full.read_text(encoding="utf-8", errors="ignore")
                except OSError:
                    log.debug("sandbox.list_files: skipping unreadable %s", full)
        return files

    def get_sandbox_info(self) -> Optional[SandboxInfo]:
        return self._info


class SandboxRegistry:
    """Providers keyed by sandbox id; the most recently registered one is active."""

    def __init__(self, root: Optional[str] = None) -> None:
        self.root = root
        self._providers: Dict[str, SandboxProvider] = {}
        self._active: Optional[str] = None
        self._lock = threading.Lock()

    def get(self, sandbox_id: str) -> Optional[SandboxProvider]:
        with self._lock:
            return self._providers.get(sandbox_id)

    def active(self) -> Optional[SandboxProvider]:
        with self._lock:
            return self._providers.get(self._active) if self._active else None

    def register(self, sandbox_id: str, provider: SandboxProvider) -> None:
        with self._lock:
            self._providers[sandbox_id] = provider
            self._active = sandbox_id

    def remove(self, sandbox_id: str) -> None:
        with self._lock:
            self._providers.pop(sandbox_id, None)
            if self._active == sandbox_id:
                self._active = next(reversed(self._providers), None) if self._providers else None

    def create(self, sandbox_id: Optional[str] = None) -> SandboxProvider:
        provider = LocalSandboxProvider(self.root, sandbox_id)
        info = provider.get_sandbox_info()
        if info is None:
            info = provider.create_sandbox()
            provider.setup_app()
        self.register(info.sandbox_id, provider)
        return provider

    def get_or_create(self, sandbox_id: Optional[str] = None) -> SandboxProvider:
        provider = self.get(sandbox_id) if sandbox_id else self.active()
        if provider is not None:
            return provider
        log.info("sandbox.registry: no provider for %s; creating", sandbox_id or "(active)")
        return self.create(sandbox_id)


def build_preview_app(puck_data: Dict[str, Any], puck_config: Any) -> str:
    """Source of ``src/App.jsx`` rendering ``puck_data`` with the given config."""
    config_js = puck_config if isinstance(puck_config, str) else serialize(puck_config)
    template = _jsx_env.get_template("preview_app.jsx.j2")
    return template.render(
        config_literal=strip_export_prefix(config_js),
        data_json=json.dumps(puck_data, ensure_ascii=False, indent=2),
        theme_json=json.dumps(root_props(puck_data).get("theme") or "light"),
    )


def apply_site(
    registry: SandboxRegistry,
    puck_data: Dict[str, Any],
    puck_config: Any,
    sandbox_id: Optional[str] = None,
) -> Dict[str, Any]:
    provider = registry.get_or_create(sandbox_id)
    content = build_preview_app(puck_data, puck_config)
    log.info("apply_site: writing %s (%d chars, %d sections)", PREVIEW_APP_PATH, len(content), len(puck_data.get("content") or []))
    provider.write_file(PREVIEW_APP_PATH, content)

    read_back = provider.read_file(PREVIEW_APP_PATH)
    if len(read_back) != len(content):
        log.error("apply_site: read back %d chars, expected %d", len(read_back), len(content))
        raise SandboxError(f"{PREVIEW_APP_PATH} verification failed")

    info = provider.get_sandbox_info()
    return {
        "success": True,
        "sandboxId": info.sandbox_id if info else None,
        "url": info.url if info else None,
        "filesCreated": [PREVIEW_APP_PATH],
    }

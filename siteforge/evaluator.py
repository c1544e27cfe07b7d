"""Turn a module-source config back into a live object with callable functions.

Source text is never handed to Python's ``eval``; it goes through the
expression interpreter in :mod:`siteforge.js_runtime`, which only sees the
names in the render environment (``React`` by default) plus a small set of
JavaScript builtins.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from siteforge.elements import ErrorElement, default_render_env
from siteforge.errors import ConfigEvaluationError, JSRuntimeError, JSSyntaxError
from siteforge.js_parser import Token, parse_expression, tokenize
from siteforge.js_runtime import EVAL_STEP_BUDGET, Interpreter

log = logging.getLogger(__name__)

EXPORT_PREFIX_RE = re.compile(r"^\s*export\s+(?:const|let|var)\s+config\s*=\s*")


def strip_export_prefix(source: str) -> str:
    """``export const config = {...};`` -> ``{...}``."""
    body = EXPORT_PREFIX_RE.sub("", source, count=1).strip()
    while body.endswith(";"):
        body = body[:-1].rstrip()
    return body


class FallbackFunction:
    """Stands in for a render/getItemSummary string that failed to compile."""

    def __init__(self, source: str, error: str, component: str, field: Optional[str] = None) -> None:
        self.source = source
        self.error = error
        self.component = component
        self.field = field

    @property
    def where(self) -> str:
        return f"{self.component}.{self.field}" if self.field else self.component

    def __call__(self, *args: Any) -> Any:
        if self.field:
            return f"Error in {self.where}: {self.error}"
        return ErrorElement.create(self.component, f"Error in {self.where} render: {self.error}")

    def __repr__(self) -> str:
        return f"<FallbackFunction {self.where}: {self.error}>"


def _open_keys(tokens: List[Token]) -> List[Optional[str]]:
    """Property key currently open in each enclosing bracket, outermost first."""
    frames: List[list] = []
    for idx, tok in enumerate(tokens):
        if tok.kind != "punc":
            prev = tokens[idx - 1] if idx else None
            is_key = (
                frames
                and frames[-1][0] == "{"
                and tok.kind in ("name", "str", "num")
                and prev is not None
                and prev.kind == "punc"
                and prev.value in ("{", ",")
                and idx + 1 < len(tokens)
                and tokens[idx + 1].kind == "punc"
                and tokens[idx + 1].value == ":"
            )
            if is_key:
                frames[-1][1] = str(tok.value)
        elif tok.value in ("{", "[", "("):
            frames.append([tok.value, None])
        elif tok.value in ("}", "]", ")") and frames:
            frames.pop()
    return [key for _, key in frames]


def locate(source: str, position: int) -> str:
    """Best-effort ``Component`` or ``Component.field`` for an offset in module source.

    Walks the tokens before ``position`` and keeps the key of every open
    object, so quoting style and line layout do not matter.
    """
    if position < 0:
        return "config"
    try:
        keys = _open_keys(tokenize(source[:position]))
    except JSSyntaxError:
        return "config"
    if len(keys) < 2 or keys[0] != "components" or keys[1] is None:
        return "config"
    component = keys[1]
    if len(keys) >= 4 and keys[2] == "fields" and keys[3] is not None:
        return f"{component}.{keys[3]}"
    return component


def _components_node(tree: tuple) -> Optional[tuple]:
    if tree[0] != "object":
        return None
    for prop in tree[1]:
        if prop[0] == "prop" and not prop[3] and prop[1] == "components" and prop[2][0] == "object":
            return prop[2]
    return None


def _locate_runtime_failure(tree: tuple, interpreter: Interpreter) -> str:
    components = _components_node(tree)
    if components is None:
        return "config"
    for prop in components[1]:
        if prop[0] != "prop" or prop[3]:
            continue
        try:
            interpreter.evaluate_node(prop[2])
        except JSRuntimeError:
            return str(prop[1])
    return "config"


class ConfigEvaluator:
    """Evaluates one config against a fixed render environment."""

    def __init__(self, render_env: Optional[Mapping[str, Any]] = None, step_budget: int = EVAL_STEP_BUDGET) -> None:
        self.render_env = dict(default_render_env() if render_env is None else render_env)
        self.interpreter = Interpreter(self.render_env, step_budget=step_budget)

    def evaluate_source(self, source: str) -> Dict[str, Any]:
        body = strip_export_prefix(source)
        if not body:
            raise ConfigEvaluationError("Config evaluation failed: module source is empty")
        try:
            tree = parse_expression(body)
        except JSSyntaxError as exc:
            where = locate(body, exc.position)
            log.warning("evaluate: syntax error at %s: %s", where, exc)
            raise ConfigEvaluationError(f"Config evaluation failed at {where}: {exc}", where) from exc
        try:
            value = self.interpreter.evaluate_node(tree)
        except JSRuntimeError as exc:
            where = _locate_runtime_failure(tree, self.interpreter)
            log.warning("evaluate: runtime error at %s: %s", where, exc)
            raise ConfigEvaluationError(f"Config evaluation failed at {where}: {exc}", where) from exc
        return self.hydrate(value)

    def hydrate(self, config: Any) -> Dict[str, Any]:
        if not isinstance(config, dict):
            raise ConfigEvaluationError("Config evaluation failed: top-level value is not an object")
        components = config.get("components")
        if not isinstance(components, dict):
            raise ConfigEvaluationError("Config evaluation failed: missing components mapping", "components")
        for name, component in components.items():
            if not isinstance(component, dict):
                log.warning("evaluate: %s is not an object; skipping", name)
                continue
            render = component.get("render")
            if render is None or not (isinstance(render, str) or callable(render)):
                component["render"] = FallbackFunction("", "render is missing", str(name))
            else:
                component["render"] = self.compile(render, str(name))
            fields = component.get("fields")
            if isinstance(fields, dict):
                self._hydrate_fields(str(name), fields, prefix="")
        return config

    def _hydrate_fields(self, component: str, fields: Dict[str, Any], prefix: str) -> None:
        for field_name, field in fields.items():
            if not isinstance(field, dict):
                continue
            path = f"{prefix}{field_name}"
            if "getItemSummary" in field:
                summary = field["getItemSummary"]
                if isinstance(summary, str) or callable(summary):
                    field["getItemSummary"] = self.compile(summary, component, f"{path}.getItemSummary")
                else:
                    log.warning("evaluate: %s.%s.getItemSummary is not a function", component, path)
                    field["getItemSummary"] = FallbackFunction(
                        "", "getItemSummary is not a function", component, f"{path}.getItemSummary"
                    )
            nested = field.get("arrayFields")
            if isinstance(nested, dict):
                self._hydrate_fields(component, nested, prefix=f"{path}.")

    def compile(self, fn: Any, component: str, field: Optional[str] = None) -> Any:
        """Compile a source string into a callable; anything already callable passes through."""
        if callable(fn):
            return fn
        where = f"{component}.{field}" if field else component
        try:
            value = self.interpreter.evaluate(fn)
        except (JSSyntaxError, JSRuntimeError) as exc:
            log.warning("evaluate: %s failed to compile: %s", where, exc)
            return FallbackFunction(fn, str(exc), component, field)
        if not callable(value):
            log.warning("evaluate: %s is not a function expression", where)
            return FallbackFunction(fn, "not a function expression", component, field)
        return value


def _copy_tree(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _copy_tree(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_copy_tree(v) for v in value]
    return value


def evaluate(
    source: Any,
    render_env: Optional[Mapping[str, Any]] = None,
    step_budget: int = EVAL_STEP_BUDGET,
) -> Dict[str, Any]:
    """Build a live config from module-source text or an already parsed mapping.

    Mappings are deep-copied first; the caller's object is left untouched.
    Raises :class:`ConfigEvaluationError` when the top-level literal cannot
    be evaluated. Individual functions that fail are replaced by
    :class:`FallbackFunction` instances.
    """
    evaluator = ConfigEvaluator(render_env, step_budget=step_budget)
    if isinstance(source, str):
        return evaluator.evaluate_source(source)
    return evaluator.hydrate(_copy_tree(source))

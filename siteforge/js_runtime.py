"""Tree-walking interpreter for the AST produced by :mod:`siteforge.js_parser`.

Values map onto Python types: ``dict`` for objects, ``list`` for arrays,
``str``, ``int``/``float`` for numbers, ``bool``, ``None`` for ``null`` and
the :data:`UNDEFINED` sentinel for ``undefined``. Functions defined in
source become :class:`JSFunction` objects that are callable from Python.

Nothing from the host is reachable except the builtins defined here and the
capability values handed to :class:`Interpreter`; attribute names starting
with an underscore are never resolved on host objects.
"""
from __future__ import annotations

import functools
import json
import logging
import math
import os
import random
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional
from urllib.parse import quote

from siteforge.errors import JSRuntimeError, JSSyntaxError
from siteforge.js_parser import MAX_SAFE_INTEGER, js_number, parse_expression

log = logging.getLogger(__name__)

EVAL_STEP_BUDGET = int(os.getenv("EVAL_STEP_BUDGET", "200000") or 200000)
MAX_STRING_LENGTH = 1_000_000


class _Undefined:
    __slots__ = ()

    def __repr__(self) -> str:
        return "undefined"

    def __bool__(self) -> bool:
        return False


UNDEFINED = _Undefined()


class _Return(Exception):
    def __init__(self, value: Any) -> None:
        self.value = value


class _ShortCircuit(Exception):
    pass


# -- conversions -----------------------------------------------------------


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_nullish(value: Any) -> bool:
    return value is None or value is UNDEFINED


def number_to_string(value: Any) -> str:
    value = js_number(value)
    if isinstance(value, int):
        return str(value)
    if value != value:
        return "NaN"
    if value in (math.inf, -math.inf):
        return "Infinity" if value > 0 else "-Infinity"
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    text = repr(value)
    if "e" in text:
        mantissa, exponent = text.split("e")
        exp = int(exponent)
        return f"{mantissa}e{'+' if exp > 0 else '-'}{abs(exp)}"
    return text


def to_js_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return "null"
    if value is UNDEFINED:
        return "undefined"
    if isinstance(value, bool):
        return "true" if value else "false"
    if is_number(value):
        return number_to_string(value)
    if isinstance(value, list):
        return ",".join("" if is_nullish(v) else to_js_string(v) for v in value)
    if isinstance(value, dict):
        return "[object Object]"
    if isinstance(value, JSFunction):
        return value.source
    return str(value)


def to_number(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if is_number(value):
        return js_number(value)
    if value is None:
        return 0
    if value is UNDEFINED:
        return math.nan
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        if "_" in text:
            return math.nan
        try:
            if text[:2].lower() == "0x":
                return js_number(int(text, 16))
            number = float(text)
        except ValueError:
            return math.nan
        if text.lower().lstrip("+-") in ("inf", "infinity", "nan"):
            return number if text.lower().lstrip("+-") == "infinity" else math.nan
        return js_number(int(number)) if number.is_integer() and "." not in text and "e" not in text.lower() else number
    if isinstance(value, list):
        return to_number(to_js_string(value))
    return math.nan


def truthy(value: Any) -> bool:
    if is_nullish(value):
        return False
    if isinstance(value, bool):
        return value
    if is_number(value):
        return value != 0 and value == value
    if isinstance(value, str):
        return bool(value)
    return True


def type_of(value: Any) -> str:
    if value is UNDEFINED:
        return "undefined"
    if value is None:
        return "object"
    if isinstance(value, bool):
        return "boolean"
    if is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if callable(value):
        return "function"
    return "object"


def to_property_key(value: Any) -> Any:
    if isinstance(value, str):
        return value
    if is_number(value):
        return number_to_string(value)
    return to_js_string(value)


def _array_index(key: Any) -> Optional[int]:
    if is_number(key) and key == key and float(key).is_integer() and key >= 0:
        return int(key)
    if isinstance(key, str) and key.isdigit():
        return int(key)
    return None


def _category(value: Any) -> str:
    if value is UNDEFINED:
        return "undefined"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    return "object"


def strict_equals(a: Any, b: Any) -> bool:
    ca, cb = _category(a), _category(b)
    if ca != cb:
        return False
    if ca in ("number", "string", "boolean"):
        return a == b
    if ca in ("undefined", "null"):
        return True
    return a is b


def loose_equals(a: Any, b: Any) -> bool:
    if is_nullish(a) or is_nullish(b):
        return is_nullish(a) and is_nullish(b)
    ca, cb = _category(a), _category(b)
    if ca == cb:
        return strict_equals(a, b)
    if ca == "boolean" or cb == "boolean":
        return loose_equals(to_number(a), to_number(b))
    if ca == "object" or cb == "object":
        return loose_equals(to_js_string(a) if ca == "object" else a, to_js_string(b) if cb == "object" else b)
    return to_number(a) == to_number(b)


def _divide(a: Any, b: Any) -> Any:
    if b == 0:
        if a == 0 or a != a:
            return math.nan
        return math.inf if a > 0 else -math.inf
    return a / b


def _power(a: Any, b: Any) -> Any:
    try:
        result = math.pow(float(a), float(b))
    except OverflowError:
        return math.inf
    except ValueError:
        return math.nan
    if isinstance(a, int) and isinstance(b, int) and b >= 0 and abs(result) <= MAX_SAFE_INTEGER:
        return int(result)
    return result


def _check_length(text: str) -> str:
    if len(text) > MAX_STRING_LENGTH:
        raise JSRuntimeError("RangeError: Invalid string length")
    return text


def js_add(a: Any, b: Any) -> Any:
    primitive = (str, int, float, bool, type(None), _Undefined)
    if isinstance(a, str) or isinstance(b, str) or not isinstance(a, primitive) or not isinstance(b, primitive):
        return _check_length(to_js_string(a) + to_js_string(b))
    return js_number(to_number(a) + to_number(b))


def _compare(op: str, a: Any, b: Any) -> bool:
    if isinstance(a, str) and isinstance(b, str):
        x, y = a, b
    else:
        x, y = to_number(a), to_number(b)
        if x != x or y != y:
            return False
    if op == "<":
        return x < y
    if op == ">":
        return x > y
    if op == "<=":
        return x <= y
    return x >= y


def to_plain(value: Any) -> Any:
    """Convert a JS value into something ``json.dumps`` accepts (JSON.stringify rules)."""
    if isinstance(value, dict):
        out = {}
        for key, item in value.items():
            if item is UNDEFINED or callable(item):
                continue
            out[key] = to_plain(item)
        return out
    if isinstance(value, list):
        return [None if (v is UNDEFINED or callable(v)) else to_plain(v) for v in value]
    if is_number(value) and (value != value or value in (math.inf, -math.inf)):
        return None
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


# -- functions -------------------------------------------------------------


class JSFunction:
    """A function created by evaluating source text."""

    def __init__(
        self,
        interpreter: "Interpreter",
        params: list,
        rest: Optional[tuple],
        body: Any,
        is_expression: bool,
        closure: "Scope",
        source: str,
        name: str = "",
    ) -> None:
        self._interpreter = interpreter
        self._params = params
        self._rest = rest
        self._body = body
        self._is_expression = is_expression
        self._closure = closure
        self.source = source
        self.name = name

    def __call__(self, *args: Any) -> Any:
        return self._interpreter.call_from_host(self, list(args))

    def __repr__(self) -> str:
        snippet = self.source if len(self.source) <= 60 else self.source[:57] + "..."
        return f"<JSFunction {snippet!r}>"


class NativeFunction:
    """A builtin method bound to its receiver."""

    __slots__ = ("_fn", "_this", "name")

    def __init__(self, fn: Callable[..., Any], this: Any, name: str) -> None:
        self._fn = fn
        self._this = this
        self.name = name

    def __call__(self, *args: Any) -> Any:
        return self._fn(self._this, *args)

    def __repr__(self) -> str:
        return f"<native {self.name}>"


class Constructor:
    """A builtin that may be invoked with ``new``."""

    __slots__ = ("_fn", "name")

    def __init__(self, fn: Callable[..., Any], name: str) -> None:
        self._fn = fn
        self.name = name

    def __call__(self, *args: Any) -> Any:
        return self._fn(*args)

    def __repr__(self) -> str:
        return f"<constructor {self.name}>"


def _error_type(name: str) -> Constructor:
    def _make(message: Any = UNDEFINED, *_: Any) -> Dict[str, Any]:
        return {"name": name, "message": "" if message is UNDEFINED else to_js_string(message)}

    return Constructor(_make, name)


class Scope:
    __slots__ = ("vars", "consts", "parent")

    def __init__(self, parent: Optional["Scope"] = None) -> None:
        self.vars: Dict[str, Any] = {}
        self.consts: set = set()
        self.parent = parent

    def declare(self, name: str, value: Any, const: bool = False) -> None:
        self.vars[name] = value
        if const:
            self.consts.add(name)

    def _owner(self, name: str) -> Optional["Scope"]:
        scope: Optional[Scope] = self
        while scope is not None:
            if name in scope.vars:
                return scope
            scope = scope.parent
        return None

    def has(self, name: str) -> bool:
        return self._owner(name) is not None

    def lookup(self, name: str) -> Any:
        owner = self._owner(name)
        if owner is None:
            raise JSRuntimeError(f"ReferenceError: {name} is not defined")
        return owner.vars[name]

    def assign(self, name: str, value: Any) -> None:
        owner = self._owner(name)
        if owner is None:
            raise JSRuntimeError(f"ReferenceError: {name} is not defined")
        if name in owner.consts:
            raise JSRuntimeError("TypeError: Assignment to constant variable.")
        owner.vars[name] = value


# -- builtin methods ---------------------------------------------------------


def _arg(args: tuple, idx: int, default: Any = UNDEFINED) -> Any:
    return args[idx] if len(args) > idx else default


def _int_arg(args: tuple, idx: int, default: int) -> int:
    value = _arg(args, idx)
    if value is UNDEFINED:
        return default
    number = to_number(value)
    if number != number:
        return 0
    if number in (math.inf, -math.inf):
        return 2 ** 31 if number > 0 else -(2 ** 31)
    return int(number)


def _slice_bounds(length: int, args: tuple) -> tuple:
    start = _int_arg(args, 0, 0)
    end = _int_arg(args, 1, length)
    if start < 0:
        start = max(length + start, 0)
    if end < 0:
        end = max(length + end, 0)
    return min(start, length), min(end, length)


def _call(fn: Any, *args: Any) -> Any:
    if not callable(fn):
        raise JSRuntimeError(f"TypeError: {to_js_string(fn)} is not a function")
    return fn(*args)


def _array_map(arr: list, fn: Any = UNDEFINED, *_: Any) -> list:
    return [_call(fn, item, idx, arr) for idx, item in enumerate(list(arr))]


def _array_filter(arr: list, fn: Any = UNDEFINED, *_: Any) -> list:
    return [item for idx, item in enumerate(list(arr)) if truthy(_call(fn, item, idx, arr))]


def _array_for_each(arr: list, fn: Any = UNDEFINED, *_: Any) -> Any:
    for idx, item in enumerate(list(arr)):
        _call(fn, item, idx, arr)
    return UNDEFINED


def _array_find(arr: list, fn: Any = UNDEFINED, *_: Any) -> Any:
    for idx, item in enumerate(list(arr)):
        if truthy(_call(fn, item, idx, arr)):
            return item
    return UNDEFINED


def _array_find_index(arr: list, fn: Any = UNDEFINED, *_: Any) -> int:
    for idx, item in enumerate(list(arr)):
        if truthy(_call(fn, item, idx, arr)):
            return idx
    return -1


def _array_some(arr: list, fn: Any = UNDEFINED, *_: Any) -> bool:
    return any(truthy(_call(fn, item, idx, arr)) for idx, item in enumerate(list(arr)))


def _array_every(arr: list, fn: Any = UNDEFINED, *_: Any) -> bool:
    return all(truthy(_call(fn, item, idx, arr)) for idx, item in enumerate(list(arr)))


def _array_reduce(arr: list, fn: Any = UNDEFINED, *args: Any) -> Any:
    items = list(arr)
    start = 0
    if args:
        acc = args[0]
    elif items:
        acc = items[0]
        start = 1
    else:
        raise JSRuntimeError("TypeError: Reduce of empty array with no initial value")
    for idx in range(start, len(items)):
        acc = _call(fn, acc, items[idx], idx, arr)
    return acc


def _array_join(arr: list, *args: Any) -> str:
    sep = _arg(args, 0)
    sep = "," if sep is UNDEFINED else to_js_string(sep)
    return _check_length(sep.join("" if is_nullish(v) else to_js_string(v) for v in arr))


def _array_slice(arr: list, *args: Any) -> list:
    start, end = _slice_bounds(len(arr), args)
    return arr[start:end]


def _array_concat(arr: list, *args: Any) -> list:
    out = list(arr)
    for item in args:
        if isinstance(item, list):
            out.extend(item)
        else:
            out.append(item)
    return out


def _array_includes(arr: list, *args: Any) -> bool:
    target = _arg(args, 0)
    for item in arr:
        if strict_equals(item, target) or (is_number(item) and is_number(target) and item != item and target != target):
            return True
    return False


def _array_index_of(arr: list, *args: Any) -> int:
    target = _arg(args, 0)
    for idx, item in enumerate(arr):
        if strict_equals(item, target):
            return idx
    return -1


def _array_push(arr: list, *args: Any) -> int:
    arr.extend(args)
    return len(arr)


def _array_reverse(arr: list, *_: Any) -> list:
    arr.reverse()
    return arr


def _array_sort(arr: list, *args: Any) -> list:
    fn = _arg(args, 0)
    if fn is UNDEFINED:
        arr.sort(key=to_js_string)
    else:
        arr.sort(key=functools.cmp_to_key(lambda a, b: to_number(_call(fn, a, b)) or 0))
    return arr


def _array_at(arr: list, *args: Any) -> Any:
    idx = _int_arg(args, 0, 0)
    if idx < 0:
        idx += len(arr)
    return arr[idx] if 0 <= idx < len(arr) else UNDEFINED


def _array_flat(arr: list, *_: Any) -> list:
    out: list = []
    for item in arr:
        if isinstance(item, list):
            out.extend(item)
        else:
            out.append(item)
    return out


ARRAY_METHODS: Dict[str, Callable[..., Any]] = {
    "map": _array_map,
    "filter": _array_filter,
    "forEach": _array_for_each,
    "find": _array_find,
    "findIndex": _array_find_index,
    "some": _array_some,
    "every": _array_every,
    "reduce": _array_reduce,
    "join": _array_join,
    "slice": _array_slice,
    "concat": _array_concat,
    "includes": _array_includes,
    "indexOf": _array_index_of,
    "push": _array_push,
    "reverse": _array_reverse,
    "sort": _array_sort,
    "at": _array_at,
    "flat": _array_flat,
    "toString": lambda arr, *_: to_js_string(arr),
}


def _str_split(text: str, *args: Any) -> list:
    sep = _arg(args, 0)
    limit = _arg(args, 1)
    if sep is UNDEFINED:
        parts = [text]
    elif to_js_string(sep) == "":
        parts = list(text)
    else:
        parts = text.split(to_js_string(sep))
    if limit is not UNDEFINED:
        parts = parts[: max(int(to_number(limit) or 0), 0)]
    return parts


def _str_replace(text: str, *args: Any) -> str:
    pattern = to_js_string(_arg(args, 0))
    replacement = _arg(args, 1)
    idx = text.find(pattern)
    if idx == -1:
        return text
    if callable(replacement):
        new = to_js_string(replacement(pattern, idx, text))
    else:
        new = to_js_string(replacement)
    return text[:idx] + new + text[idx + len(pattern):]


def _str_replace_all(text: str, *args: Any) -> str:
    pattern = to_js_string(_arg(args, 0))
    replacement = _arg(args, 1)
    if callable(replacement):
        parts = text.split(pattern)
        out = parts[0]
        pos = len(parts[0])
        for part in parts[1:]:
            out += to_js_string(replacement(pattern, pos, text)) + part
            pos += len(pattern) + len(part)
        return _check_length(out)
    return _check_length(text.replace(pattern, to_js_string(replacement)))


def _str_slice(text: str, *args: Any) -> str:
    start, end = _slice_bounds(len(text), args)
    return text[start:end]


def _str_substring(text: str, *args: Any) -> str:
    length = len(text)
    start = min(max(_int_arg(args, 0, 0), 0), length)
    end = min(max(_int_arg(args, 1, length), 0), length)
    if start > end:
        start, end = end, start
    return text[start:end]


def _str_pad(text: str, args: tuple, at_start: bool) -> str:
    target = _int_arg(args, 0, 0)
    fill = _arg(args, 1)
    fill = " " if fill is UNDEFINED else to_js_string(fill)
    if target <= len(text) or not fill:
        return text
    _check_length(" " * target)
    pad = (fill * (target // len(fill) + 1))[: target - len(text)]
    return pad + text if at_start else text + pad


def _str_repeat(text: str, *args: Any) -> str:
    count = _int_arg(args, 0, 0)
    if count < 0:
        raise JSRuntimeError("RangeError: Invalid count value")
    if len(text) * count > MAX_STRING_LENGTH:
        raise JSRuntimeError("RangeError: Invalid string length")
    return text * count


def _str_char_at(text: str, *args: Any) -> str:
    idx = _int_arg(args, 0, 0)
    return text[idx] if 0 <= idx < len(text) else ""


STRING_METHODS: Dict[str, Callable[..., Any]] = {
    "toUpperCase": lambda s, *_: s.upper(),
    "toLowerCase": lambda s, *_: s.lower(),
    "trim": lambda s, *_: s.strip(),
    "trimStart": lambda s, *_: s.lstrip(),
    "trimEnd": lambda s, *_: s.rstrip(),
    "split": _str_split,
    "slice": _str_slice,
    "substring": _str_substring,
    "includes": lambda s, *a: to_js_string(_arg(a, 0)) in s,
    "startsWith": lambda s, *a: s.startswith(to_js_string(_arg(a, 0))),
    "endsWith": lambda s, *a: s.endswith(to_js_string(_arg(a, 0))),
    "indexOf": lambda s, *a: s.find(to_js_string(_arg(a, 0))),
    "replace": _str_replace,
    "replaceAll": _str_replace_all,
    "charAt": _str_char_at,
    "repeat": _str_repeat,
    "padStart": lambda s, *a: _str_pad(s, a, True),
    "padEnd": lambda s, *a: _str_pad(s, a, False),
    "concat": lambda s, *a: _check_length(s + "".join(to_js_string(x) for x in a)),
    "at": lambda s, *a: _array_at(list(s), *a) if s else UNDEFINED,
    "toString": lambda s, *_: s,
}


def _num_to_fixed(value: Any, *args: Any) -> str:
    digits = min(max(_int_arg(args, 0, 0), 0), 100)
    if value != value or value in (math.inf, -math.inf):
        return number_to_string(value)
    return f"{value:.{digits}f}"


def _num_to_string(value: Any, *args: Any) -> str:
    radix = _int_arg(args, 0, 10)
    if radix == 10 or not isinstance(value, int):
        return number_to_string(value)
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"[:radix]
    n, out = abs(value), ""
    while True:
        n, rem = divmod(n, radix)
        out = digits[rem] + out
        if not n:
            break
    return ("-" if value < 0 else "") + out


def _num_to_locale_string(value: Any, *_: Any) -> str:
    if isinstance(value, float) and not value.is_integer():
        return f"{value:,.3f}".rstrip("0").rstrip(".")
    return f"{int(value):,}" if value == value and value not in (math.inf, -math.inf) else number_to_string(value)


NUMBER_METHODS: Dict[str, Callable[..., Any]] = {
    "toFixed": _num_to_fixed,
    "toString": _num_to_string,
    "toLocaleString": _num_to_locale_string,
}

OBJECT_METHODS: Dict[str, Callable[..., Any]] = {
    "hasOwnProperty": lambda obj, *a: to_property_key(_arg(a, 0)) in obj,
    "toString": lambda obj, *_: "[object Object]",
}


# -- globals -------------------------------------------------------------------


def _math_round(value: Any) -> Any:
    number = to_number(value)
    if number != number or number in (math.inf, -math.inf):
        return number
    return js_number(math.floor(number + 0.5))


def _math_extreme(pick: Callable[..., Any], empty: float) -> Callable[..., Any]:
    def _inner(*args: Any) -> Any:
        numbers = [to_number(a) for a in args]
        if any(n != n for n in numbers):
            return math.nan
        return pick(numbers) if numbers else empty

    return _inner


def _unary_math(fn: Callable[[float], Any]) -> Callable[..., Any]:
    def _inner(value: Any = UNDEFINED, *_: Any) -> Any:
        number = to_number(value)
        if number != number:
            return math.nan
        try:
            return js_number(fn(number))
        except (ValueError, OverflowError):
            return math.nan

    return _inner


def _json_stringify(value: Any = UNDEFINED, _replacer: Any = None, space: Any = UNDEFINED, *_: Any) -> Any:
    if value is UNDEFINED or callable(value):
        return UNDEFINED
    indent = None
    if is_number(space) and space > 0:
        indent = min(int(space), 10)
    elif isinstance(space, str) and space:
        indent = space[:10]
    separators = (",", ":") if indent is None else (",", ": ")
    return json.dumps(to_plain(value), ensure_ascii=False, indent=indent, separators=separators)


def _json_int(text: str) -> Any:
    return js_number(int(text)) if len(text) <= 17 else float(text)


def _json_parse(text: Any = UNDEFINED, *_: Any) -> Any:
    try:
        return json.loads(to_js_string(text), parse_int=_json_int)
    except ValueError as exc:
        raise JSRuntimeError(f"SyntaxError: {exc}") from exc


def _parse_int(value: Any = UNDEFINED, radix: Any = UNDEFINED, *_: Any) -> Any:
    text = to_js_string(value).strip()
    base = 10 if radix is UNDEFINED else int(to_number(radix) or 10)
    sign = -1 if text.startswith("-") else 1
    text = text.lstrip("+-")
    if base == 16 and text[:2].lower() == "0x":
        text = text[2:]
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"[:base]
    end = 0
    while end < len(text) and text[end].lower() in digits:
        end += 1
    if not end:
        return math.nan
    digits_text = text[:end].lstrip("0") or "0"
    if base == 10 and len(digits_text) > 16:
        return sign * float(digits_text)
    if len(digits_text) > 1100:
        return sign * math.inf
    return js_number(sign * int(digits_text, base))


def _parse_float(value: Any = UNDEFINED, *_: Any) -> Any:
    text = to_js_string(value).strip()
    best: Any = math.nan
    for end in range(len(text), 0, -1):
        try:
            best = float(text[:end])
        except ValueError:
            continue
        break
    if isinstance(best, float) and best.is_integer() and "." not in text and "e" not in text.lower():
        return js_number(int(best))
    return best


def _object_assign(target: Any = UNDEFINED, *sources: Any) -> Any:
    if not isinstance(target, dict):
        raise JSRuntimeError("TypeError: Object.assign target must be an object")
    for source in sources:
        if isinstance(source, dict):
            target.update(source)
    return target


def _as_mapping(value: Any) -> Dict[Any, Any]:
    if isinstance(value, dict):
        return value
    if isinstance(value, (list, str)):
        return {str(i): v for i, v in enumerate(value)}
    if is_nullish(value):
        raise JSRuntimeError("TypeError: Cannot convert undefined or null to object")
    return {}


def _array_from(value: Any = UNDEFINED, fn: Any = UNDEFINED, *_: Any) -> list:
    if isinstance(value, (list, str)):
        items = list(value)
    elif isinstance(value, dict) and is_number(value.get("length")):
        items = [value.get(str(i), UNDEFINED) for i in range(int(value["length"]))]
    else:
        items = []
    if fn is not UNDEFINED:
        return [_call(fn, item, idx) for idx, item in enumerate(items)]
    return items


def _console(level: int) -> Callable[..., Any]:
    def _inner(*args: Any) -> Any:
        log.log(level, "js console: %s", " ".join(to_js_string(a) for a in args))
        return UNDEFINED

    return _inner


def builtin_globals() -> Dict[str, Any]:
    """Fresh global bindings available to every evaluated expression."""
    return {
        "undefined": UNDEFINED,
        "NaN": math.nan,
        "Infinity": math.inf,
        "Math": {
            "PI": math.pi,
            "E": math.e,
            "floor": _unary_math(math.floor),
            "ceil": _unary_math(math.ceil),
            "trunc": _unary_math(math.trunc),
            "abs": _unary_math(abs),
            "sqrt": _unary_math(math.sqrt),
            "sign": _unary_math(lambda n: (n > 0) - (n < 0)),
            "round": _math_round,
            "pow": lambda a=UNDEFINED, b=UNDEFINED, *_: _power(to_number(a), to_number(b)),
            "min": _math_extreme(min, math.inf),
            "max": _math_extreme(max, -math.inf),
            "random": lambda *_: random.random(),
        },
        "JSON": {"stringify": _json_stringify, "parse": _json_parse},
        "Object": {
            "keys": lambda obj=UNDEFINED, *_: list(_as_mapping(obj).keys()),
            "values": lambda obj=UNDEFINED, *_: list(_as_mapping(obj).values()),
            "entries": lambda obj=UNDEFINED, *_: [[k, v] for k, v in _as_mapping(obj).items()],
            "fromEntries": lambda pairs=UNDEFINED, *_: {
                to_property_key(p[0]): p[1] for p in (pairs if isinstance(pairs, list) else []) if isinstance(p, list) and len(p) >= 2
            },
            "assign": _object_assign,
            "freeze": lambda obj=UNDEFINED, *_: obj,
        },
        "Array": {
            "isArray": lambda value=UNDEFINED, *_: isinstance(value, list),
            "from": _array_from,
            "of": lambda *items: list(items),
        },
        "String": lambda value="", *_: to_js_string(value),
        "Number": lambda value=0, *_: to_number(value),
        "Boolean": lambda value=UNDEFINED, *_: truthy(value),
        "Error": _error_type("Error"),
        "TypeError": _error_type("TypeError"),
        "RangeError": _error_type("RangeError"),
        "parseInt": _parse_int,
        "parseFloat": _parse_float,
        "isNaN": lambda value=UNDEFINED, *_: to_number(value) != to_number(value),
        "isFinite": lambda value=UNDEFINED, *_: to_number(value) not in (math.inf, -math.inf) and to_number(value) == to_number(value),
        "encodeURIComponent": lambda value=UNDEFINED, *_: quote(to_js_string(value), safe="-_.!~*'()"),
        "console": {"log": _console(logging.DEBUG), "warn": _console(logging.WARNING), "error": _console(logging.WARNING)},
    }


# -- interpreter ---------------------------------------------------------------


class Interpreter:
    """Evaluates expressions with only the builtins and ``capabilities`` in scope."""

    def __init__(self, capabilities: Optional[Mapping[str, Any]] = None, step_budget: int = EVAL_STEP_BUDGET) -> None:
        self.globals = Scope()
        for name, value in builtin_globals().items():
            self.globals.declare(name, value)
        for name, value in (capabilities or {}).items():
            if not isinstance(name, str) or not name.isidentifier():
                raise ValueError(f"invalid capability name: {name!r}")
            self.globals.declare(name, value, const=True)
        self.step_budget = step_budget
        self._steps = 0
        self._active = 0
        self._dispatch = {
            "num": self._eval_literal_value,
            "str": self._eval_literal_value,
            "lit": self._eval_literal_value,
            "tpl": self._eval_tpl,
            "name": self._eval_name,
            "array": self._eval_array,
            "object": self._eval_object,
            "func": self._eval_func,
            "member": self._eval_member,
            "call": self._eval_call,
            "new": self._eval_new,
            "chain": self._eval_chain,
            "unary": self._eval_unary,
            "binary": self._eval_binary,
            "logical": self._eval_logical,
            "cond": self._eval_cond,
            "assign": self._eval_assign,
        }

    # -- host entry points -------------------------------------------------

    def evaluate(self, source: str) -> Any:
        """Parse and evaluate ``source`` as one expression."""
        return self.evaluate_node(parse_expression(source))

    def evaluate_node(self, node: tuple) -> Any:
        return self._enter(lambda: self.eval(node, self.globals))

    def call_from_host(self, fn: JSFunction, args: List[Any]) -> Any:
        return self._enter(lambda: self._invoke(fn, args))

    def _enter(self, thunk: Callable[[], Any]) -> Any:
        if self._active == 0:
            self._steps = 0
        self._active += 1
        try:
            return thunk()
        except RecursionError:
            raise JSRuntimeError("RangeError: Maximum call stack size exceeded") from None
        except (OverflowError, ValueError, MemoryError) as exc:
            raise JSRuntimeError(f"RangeError: {str(exc) or type(exc).__name__}") from None
        except _Return:
            raise JSRuntimeError("SyntaxError: Illegal return statement") from None
        finally:
            self._active -= 1

    # -- evaluation --------------------------------------------------------

    def eval(self, node: tuple, scope: Scope) -> Any:
        self._steps += 1
        if self._steps > self.step_budget:
            raise JSRuntimeError("RangeError: evaluation step budget exceeded")
        handler = self._dispatch.get(node[0])
        if handler is None:
            raise JSRuntimeError(f"SyntaxError: unsupported expression {node[0]!r}")
        return handler(node, scope)

    def _eval_literal_value(self, node: tuple, scope: Scope) -> Any:
        return node[1]

    def _eval_tpl(self, node: tuple, scope: Scope) -> str:
        strings, exprs = node[1], node[2]
        parts = [strings[0]]
        for idx, expr in enumerate(exprs):
            parts.append(to_js_string(self.eval(expr, scope)))
            parts.append(strings[idx + 1])
        return _check_length("".join(parts))

    def _eval_name(self, node: tuple, scope: Scope) -> Any:
        return scope.lookup(node[1])

    def _eval_array(self, node: tuple, scope: Scope) -> list:
        out: list = []
        for element in node[1]:
            if element[0] == "hole":
                out.append(UNDEFINED)
            elif element[0] == "spread":
                out.extend(self._iterate(self.eval(element[1], scope)))
            else:
                out.append(self.eval(element, scope))
        return out

    def _eval_object(self, node: tuple, scope: Scope) -> dict:
        out: dict = {}
        for prop in node[1]:
            if prop[0] == "spread":
                value = self.eval(prop[1], scope)
                if isinstance(value, dict):
                    out.update(value)
                elif isinstance(value, (list, str)):
                    out.update({str(i): v for i, v in enumerate(value)})
                continue
            _, key, value_node, computed = prop
            if computed:
                key = to_property_key(self.eval(key, scope))
            value = self.eval(value_node, scope)
            if isinstance(value, JSFunction) and not value.name:
                value.name = key
            out[key] = value
        return out

    def _eval_func(self, node: tuple, scope: Scope) -> JSFunction:
        _, params, rest, body, is_expression, source, name = node
        return JSFunction(self, params, rest, body, is_expression, scope, source, name)

    def _eval_member(self, node: tuple, scope: Scope) -> Any:
        _, obj_node, prop, computed, optional = node
        obj = self.eval(obj_node, scope)
        if optional and is_nullish(obj):
            raise _ShortCircuit()
        key = self.eval(prop, scope) if computed else prop
        return self.get_member(obj, key)

    def _eval_chain(self, node: tuple, scope: Scope) -> Any:
        try:
            return self.eval(node[1], scope)
        except _ShortCircuit:
            return UNDEFINED

    def _eval_call(self, node: tuple, scope: Scope) -> Any:
        _, callee, arg_nodes, optional = node
        fn = self.eval(callee, scope)
        if optional and is_nullish(fn):
            raise _ShortCircuit()
        args: list = []
        for arg in arg_nodes:
            if arg[0] == "spread":
                args.extend(self._iterate(self.eval(arg[1], scope)))
            else:
                args.append(self.eval(arg, scope))
        if not callable(fn):
            raise JSRuntimeError(f"TypeError: {_describe(callee)} is not a function")
        return self.call_value(fn, args)

    def _eval_new(self, node: tuple, scope: Scope) -> Any:
        _, callee, arg_nodes = node
        fn = self.eval(callee, scope)
        if not isinstance(fn, Constructor):
            raise JSRuntimeError(f"TypeError: {_describe(callee)} is not a constructor")
        args: list = []
        for arg in arg_nodes:
            if arg[0] == "spread":
                args.extend(self._iterate(self.eval(arg[1], scope)))
            else:
                args.append(self.eval(arg, scope))
        return self.call_value(fn, args)

    def _eval_unary(self, node: tuple, scope: Scope) -> Any:
        _, op, arg = node
        if op == "typeof":
            if arg[0] == "name" and not scope.has(arg[1]):
                return "undefined"
            return type_of(self.eval(arg, scope))
        value = self.eval(arg, scope)
        if op == "!":
            return not truthy(value)
        if op == "-":
            return -to_number(value)
        if op == "+":
            return to_number(value)
        return UNDEFINED  # void

    def _eval_binary(self, node: tuple, scope: Scope) -> Any:
        _, op, left_node, right_node = node
        left = self.eval(left_node, scope)
        right = self.eval(right_node, scope)
        return self.binary_op(op, left, right)

    def binary_op(self, op: str, left: Any, right: Any) -> Any:
        if op == "+":
            return js_add(left, right)
        if op == "===":
            return strict_equals(left, right)
        if op == "!==":
            return not strict_equals(left, right)
        if op == "==":
            return loose_equals(left, right)
        if op == "!=":
            return not loose_equals(left, right)
        if op in ("<", ">", "<=", ">="):
            return _compare(op, left, right)
        if op == "in":
            if isinstance(right, dict):
                return to_property_key(left) in right
            if isinstance(right, list):
                idx = _array_index(left)
                return left == "length" or (idx is not None and idx < len(right))
            raise JSRuntimeError("TypeError: Cannot use 'in' operator on a non-object")
        a, b = to_number(left), to_number(right)
        if op == "-":
            return js_number(a - b)
        if op == "*":
            return js_number(a * b)
        if op == "/":
            return _divide(a, b)
        if op == "%":
            if b == 0 or a != a or b != b or a in (math.inf, -math.inf):
                return math.nan
            return math.fmod(a, b) if isinstance(a, float) or isinstance(b, float) else int(math.fmod(a, b))
        if op == "**":
            return _power(a, b)
        raise JSRuntimeError(f"SyntaxError: unsupported operator {op}")

    def _eval_logical(self, node: tuple, scope: Scope) -> Any:
        _, op, left_node, right_node = node
        left = self.eval(left_node, scope)
        if op == "&&":
            return self.eval(right_node, scope) if truthy(left) else left
        if op == "||":
            return left if truthy(left) else self.eval(right_node, scope)
        return self.eval(right_node, scope) if is_nullish(left) else left

    def _eval_cond(self, node: tuple, scope: Scope) -> Any:
        _, test, consequent, alternate = node
        return self.eval(consequent if truthy(self.eval(test, scope)) else alternate, scope)

    def _eval_assign(self, node: tuple, scope: Scope) -> Any:
        _, op, target, value_node = node
        if target[0] == "name":
            value = self.eval(value_node, scope)
            if op != "=":
                value = self.binary_op(op[0], scope.lookup(target[1]), value)
            scope.assign(target[1], value)
            return value
        _, obj_node, prop, computed, _optional = target
        obj = self.eval(obj_node, scope)
        key = self.eval(prop, scope) if computed else prop
        value = self.eval(value_node, scope)
        if op != "=":
            value = self.binary_op(op[0], self.get_member(obj, key), value)
        self.set_member(obj, key, value)
        return value

    # -- statements --------------------------------------------------------

    def exec_block(self, statements: list, scope: Scope) -> None:
        for stmt in statements:
            self.exec(stmt, scope)

    def exec(self, stmt: tuple, scope: Scope) -> None:
        self._steps += 1
        if self._steps > self.step_budget:
            raise JSRuntimeError("RangeError: evaluation step budget exceeded")
        kind = stmt[0]
        if kind == "expr":
            self.eval(stmt[1], scope)
        elif kind == "return":
            raise _Return(UNDEFINED if stmt[1] is None else self.eval(stmt[1], scope))
        elif kind == "decl":
            for target, init in stmt[2]:
                value = UNDEFINED if init is None else self.eval(init, scope)
                self.bind(target, value, scope, const=stmt[1] == "const")
        elif kind == "if":
            if truthy(self.eval(stmt[1], scope)):
                self.exec(stmt[2], Scope(scope))
            elif stmt[3] is not None:
                self.exec(stmt[3], Scope(scope))
        elif kind == "block":
            self.exec_block(stmt[1], Scope(scope))
        elif kind == "forof":
            _, decl_kind, target, iterable, body = stmt
            for item in self._iterate(self.eval(iterable, scope)):
                inner = Scope(scope)
                self.bind(target, item, inner, const=decl_kind == "const")
                self.exec(body, inner)
        elif kind == "throw":
            value = self.eval(stmt[1], scope)
            if isinstance(value, dict) and "message" in value:
                text = f"{to_js_string(value.get('name', 'Error'))}: {to_js_string(value['message'])}"
            else:
                text = to_js_string(value)
            raise JSRuntimeError(f"Uncaught {text}", value)
        elif kind != "empty":
            raise JSRuntimeError(f"SyntaxError: unsupported statement {kind!r}")

    # -- functions ---------------------------------------------------------

    def call_value(self, fn: Any, args: List[Any]) -> Any:
        if isinstance(fn, JSFunction):
            return self._invoke(fn, args)
        try:
            return fn(*args)
        except (JSRuntimeError, _Return, _ShortCircuit, RecursionError):
            raise
        except Exception as exc:
            raise JSRuntimeError(f"{type(exc).__name__}: {exc}") from exc

    def _invoke(self, fn: JSFunction, args: List[Any]) -> Any:
        scope = Scope(fn._closure)
        for idx, (target, default) in enumerate(fn._params):
            value = args[idx] if idx < len(args) else UNDEFINED
            if value is UNDEFINED and default is not None:
                value = self.eval(default, scope)
            self.bind(target, value, scope)
        if fn._rest is not None:
            self.bind(fn._rest, list(args[len(fn._params):]), scope)
        if fn._is_expression:
            return self.eval(fn._body, scope)
        try:
            self.exec_block(fn._body, scope)
        except _Return as ret:
            return ret.value
        return UNDEFINED

    def bind(self, target: tuple, value: Any, scope: Scope, const: bool = False) -> None:
        kind = target[0]
        if kind == "pname":
            scope.declare(target[1], value, const=const)
            return
        if is_nullish(value):
            raise JSRuntimeError(f"TypeError: Cannot destructure '{to_js_string(value)}' as it is {to_js_string(value)}.")
        if kind == "pobject":
            _, entries, rest = target
            used = set()
            for key, computed, sub_target, default in entries:
                if computed:
                    key = to_property_key(self.eval(key, scope))
                used.add(key)
                item = self.get_member(value, key)
                if item is UNDEFINED and default is not None:
                    item = self.eval(default, scope)
                self.bind(sub_target, item, scope, const)
            if rest is not None:
                remaining = {k: v for k, v in _as_mapping(value).items() if k not in used}
                self.bind(rest, remaining, scope, const)
            return
        _, elements, rest = target
        items = self._iterate(value)
        for idx, element in enumerate(elements):
            if element is None:
                continue
            sub_target, default = element
            item = items[idx] if idx < len(items) else UNDEFINED
            if item is UNDEFINED and default is not None:
                item = self.eval(default, scope)
            self.bind(sub_target, item, scope, const)
        if rest is not None:
            self.bind(rest, items[len(elements):], scope, const)

    # -- member access -------------------------------------------------------

    def get_member(self, obj: Any, key: Any) -> Any:
        if is_nullish(obj):
            raise JSRuntimeError(
                f"TypeError: Cannot read properties of {to_js_string(obj)} (reading '{to_js_string(key)}')"
            )
        if isinstance(obj, dict):
            prop = to_property_key(key)
            if prop in obj:
                return obj[prop]
            method = OBJECT_METHODS.get(prop)
            return NativeFunction(method, obj, prop) if method else UNDEFINED
        if isinstance(obj, (list, str)):
            idx = _array_index(key)
            if idx is not None:
                return obj[idx] if idx < len(obj) else UNDEFINED
            prop = to_property_key(key)
            if prop == "length":
                return len(obj)
            table = ARRAY_METHODS if isinstance(obj, list) else STRING_METHODS
            method = table.get(prop)
            return NativeFunction(method, obj, prop) if method else UNDEFINED
        if isinstance(obj, bool):
            return NativeFunction(lambda b, *_: to_js_string(b), obj, "toString") if key == "toString" else UNDEFINED
        if is_number(obj):
            method = NUMBER_METHODS.get(to_property_key(key))
            return NativeFunction(method, obj, key) if method else UNDEFINED
        if isinstance(obj, JSFunction):
            if key == "name":
                return obj.name
            if key == "length":
                return len(obj._params)
            return UNDEFINED
        if not isinstance(key, str) or key.startswith("_"):
            return UNDEFINED
        return getattr(obj, key, UNDEFINED)

    def set_member(self, obj: Any, key: Any, value: Any) -> None:
        if isinstance(obj, dict):
            obj[to_property_key(key)] = value
            return
        if isinstance(obj, list):
            idx = _array_index(key)
            if idx is None:
                raise JSRuntimeError(f"TypeError: Cannot assign property '{to_js_string(key)}' on an array")
            if idx >= len(obj):
                if idx - len(obj) > 10_000:
                    raise JSRuntimeError("RangeError: Invalid array length")
                obj.extend([UNDEFINED] * (idx + 1 - len(obj)))
            obj[idx] = value
            return
        raise JSRuntimeError(f"TypeError: Cannot set properties of {type_of(obj)} value")

    def _iterate(self, value: Any) -> list:
        if isinstance(value, (list, str)):
            return list(value)
        if isinstance(value, (tuple, Iterable)) and not isinstance(value, (dict, bytes)):
            return list(value)
        raise JSRuntimeError(f"TypeError: {to_js_string(value)} is not iterable")


def _describe(node: tuple) -> str:
    if node[0] == "name":
        return node[1]
    if node[0] == "member" and not node[3]:
        return f"{_describe(node[1])}.{node[2]}"
    if node[0] == "chain":
        return _describe(node[1])
    return "expression"


__all__ = [
    "UNDEFINED",
    "Interpreter",
    "JSFunction",
    "NativeFunction",
    "JSSyntaxError",
    "JSRuntimeError",
    "number_to_string",
    "to_js_string",
    "to_plain",
    "truthy",
]

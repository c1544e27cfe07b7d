"""Lexer and parser for the JavaScript subset used by generated render code.

Only expressions are parsed at the top level: arrow and ``function``
expressions, object/array literals (with spread), template strings, member
access (including optional chaining), calls, ``new`` on builtin error
constructors, and the usual unary, binary, logical and conditional
operators. Function bodies additionally accept
``const``/``let``/``var`` declarations, ``return``, ``if``/``else``,
``for ... of``, ``throw`` and expression statements.

The AST is made of plain tuples whose first item names the node kind; the
interpreter in :mod:`siteforge.js_runtime` dispatches on it.
"""
from __future__ import annotations

import math
import re
from typing import Any, List, NamedTuple, Optional, Tuple

from siteforge.errors import JSSyntaxError


class Token(NamedTuple):
    kind: str  # num, str, template, name, punc, eof
    value: Any
    pos: int
    end: int


PUNCTUATORS = sorted(
    [
        "...", "===", "!==", "=>", "==", "!=", "<=", ">=", "&&", "||", "??", "?.", "**",
        "+=", "-=", "*=", "/=", "%=",
        "{", "}", "(", ")", "[", "]", ";", ",", "<", ">", "+", "-", "*", "/", "%",
        "!", "?", ":", ".", "=",
    ],
    key=len,
    reverse=True,
)

RESERVED = frozenset(
    {
        "break", "case", "catch", "class", "const", "continue", "debugger", "default",
        "delete", "do", "else", "export", "extends", "finally", "for", "function", "if",
        "import", "in", "instanceof", "let", "new", "return", "super", "switch", "this",
        "throw", "try", "typeof", "var", "void", "while", "with", "yield", "await",
    }
)

ASSIGN_OPS = frozenset({"=", "+=", "-=", "*=", "/=", "%="})

BINARY_PRECEDENCE = {
    "??": 1,
    "||": 2,
    "&&": 3,
    "==": 7, "!=": 7, "===": 7, "!==": 7,
    "<": 8, ">": 8, "<=": 8, ">=": 8, "in": 8,
    "+": 10, "-": 10,
    "*": 11, "/": 11, "%": 11,
    "**": 12,
}
LOGICAL_OPS = frozenset({"&&", "||", "??"})

_NAME_RE = re.compile(r"(?:[^\W\d]|\$)(?:\w|\$)*")
_NUMBER_RE = re.compile(r"0[xX][0-9a-fA-F_]+|(?:\d[\d_]*\.?[\d_]*|\.\d[\d_]*)(?:[eE][+-]?\d+)?")
_SIMPLE_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f", "v": "\v"}

MAX_SAFE_INTEGER = 2 ** 53


def js_number(value: Any) -> Any:
    """Every JS number is a double: integers past 2**53 become floats and overflow becomes infinity."""
    if isinstance(value, int) and not isinstance(value, bool) and abs(value) > MAX_SAFE_INTEGER:
        try:
            return float(value)
        except OverflowError:
            return math.inf if value > 0 else -math.inf
    return value


class _Lexer:
    def __init__(self, source: str) -> None:
        self.source = source
        self.pos = 0

    def error(self, message: str, pos: Optional[int] = None) -> JSSyntaxError:
        return JSSyntaxError(message, self.pos if pos is None else pos)

    def _skip_space(self) -> None:
        src = self.source
        n = len(src)
        while self.pos < n:
            ch = src[self.pos]
            if ch.isspace():
                self.pos += 1
            elif src.startswith("//", self.pos):
                nl = src.find("\n", self.pos)
                self.pos = n if nl == -1 else nl + 1
            elif src.startswith("/*", self.pos):
                close = src.find("*/", self.pos + 2)
                if close == -1:
                    raise self.error("Unterminated comment")
                self.pos = close + 2
            else:
                return

    def lex(self, in_template: bool = False) -> List[Token]:
        src = self.source
        n = len(src)
        tokens: List[Token] = []
        depth = 0
        while True:
            self._skip_space()
            start = self.pos
            if start >= n:
                if in_template:
                    raise self.error("Unterminated template expression")
                tokens.append(Token("eof", None, start, start))
                return tokens
            ch = src[start]
            if in_template and ch == "}" and depth == 0:
                self.pos += 1
                tokens.append(Token("eof", None, start, start))
                return tokens
            if ch in "\"'":
                tokens.append(Token("str", self._read_string(ch), start, self.pos))
            elif ch == "`":
                tokens.append(Token("template", self._read_template(), start, self.pos))
            elif ch.isdigit() or (ch == "." and start + 1 < n and src[start + 1].isdigit()):
                tokens.append(Token("num", self._read_number(), start, self.pos))
            else:
                m = _NAME_RE.match(src, start)
                if m:
                    self.pos = m.end()
                    tokens.append(Token("name", m.group(0), start, self.pos))
                    continue
                for punc in PUNCTUATORS:
                    if src.startswith(punc, start):
                        # "a?.5:b" is a conditional, not optional chaining
                        if punc == "?." and start + 2 < n and src[start + 2].isdigit():
                            continue
                        break
                else:
                    raise self.error(f"Unexpected character {ch!r}")
                if punc == "{":
                    depth += 1
                elif punc == "}":
                    depth -= 1
                self.pos = start + len(punc)
                tokens.append(Token("punc", punc, start, self.pos))

    def _read_number(self) -> Any:
        m = _NUMBER_RE.match(self.source, self.pos)
        if not m:
            raise self.error("Invalid number")
        self.pos = m.end()
        text = m.group(0).replace("_", "")
        if text[:2] in ("0x", "0X"):
            return js_number(int(text, 16))
        if any(c in text for c in ".eE") or len(text) > 16:
            return float(text)
        return js_number(int(text))

    def _read_escape(self) -> str:
        src = self.source
        self.pos += 1  # backslash
        if self.pos >= len(src):
            raise self.error("Unterminated escape sequence")
        ch = src[self.pos]
        self.pos += 1
        if ch in _SIMPLE_ESCAPES:
            return _SIMPLE_ESCAPES[ch]
        if ch == "0" and not (self.pos < len(src) and src[self.pos].isdigit()):
            return "\0"
        if ch == "x":
            digits = src[self.pos:self.pos + 2]
            self.pos += 2
            try:
                return chr(int(digits, 16))
            except ValueError:
                raise self.error("Invalid hexadecimal escape") from None
        if ch == "u":
            if src.startswith("{", self.pos):
                close = src.find("}", self.pos)
                digits = src[self.pos + 1:close] if close != -1 else ""
                self.pos = close + 1 if close != -1 else len(src)
            else:
                digits = src[self.pos:self.pos + 4]
                self.pos += 4
            try:
                return chr(int(digits, 16))
            except ValueError:
                raise self.error("Invalid Unicode escape") from None
        if ch == "\r":
            if src.startswith("\n", self.pos):
                self.pos += 1
            return ""
        if ch in "\n\u2028\u2029":
            return ""
        return ch

    def _read_string(self, quote: str) -> str:
        src = self.source
        start = self.pos
        self.pos += 1
        buf: List[str] = []
        while True:
            if self.pos >= len(src):
                raise self.error("Unterminated string literal", start)
            ch = src[self.pos]
            if ch == quote:
                self.pos += 1
                return "".join(buf)
            if ch == "\\":
                buf.append(self._read_escape())
                continue
            if ch == "\n":
                raise self.error("Unterminated string literal", start)
            buf.append(ch)
            self.pos += 1

    def _read_template(self) -> Tuple[List[str], List[List[Token]]]:
        src = self.source
        start = self.pos
        self.pos += 1
        strings: List[str] = []
        exprs: List[List[Token]] = []
        buf: List[str] = []
        while True:
            if self.pos >= len(src):
                raise self.error("Unterminated template literal", start)
            ch = src[self.pos]
            if ch == "`":
                self.pos += 1
                strings.append("".join(buf))
                return strings, exprs
            if ch == "\\":
                buf.append(self._read_escape())
                continue
            if src.startswith("${", self.pos):
                self.pos += 2
                strings.append("".join(buf))
                buf = []
                exprs.append(self.lex(in_template=True))
                continue
            buf.append(ch)
            self.pos += 1


def tokenize(source: str) -> List[Token]:
    return _Lexer(source).lex()


class Parser:
    def __init__(self, tokens: List[Token], source: str) -> None:
        self.tokens = tokens
        self.source = source
        self.i = 0

    # -- token helpers -------------------------------------------------

    def peek(self, offset: int = 0) -> Token:
        idx = min(self.i + offset, len(self.tokens) - 1)
        return self.tokens[idx]

    def next(self) -> Token:
        tok = self.tokens[self.i]
        if tok.kind != "eof":
            self.i += 1
        return tok

    def at(self, value: str) -> bool:
        tok = self.peek()
        return tok.kind == "punc" and tok.value == value

    def at_name(self, value: str) -> bool:
        tok = self.peek()
        return tok.kind == "name" and tok.value == value

    def eat(self, value: str) -> bool:
        if self.at(value):
            self.i += 1
            return True
        return False

    def expect(self, value: str) -> Token:
        tok = self.peek()
        if tok.kind == "punc" and tok.value == value:
            return self.next()
        raise self.unexpected(tok, f"expected '{value}'")

    def unexpected(self, tok: Token, hint: str = "") -> JSSyntaxError:
        if tok.kind == "eof":
            what = "Unexpected end of input"
        else:
            what = f"Unexpected token {self.source[tok.pos:tok.end] or tok.value!r}"
        return JSSyntaxError(f"{what}{' (' + hint + ')' if hint else ''}", tok.pos)

    def last_end(self) -> int:
        return self.tokens[self.i - 1].end if self.i else 0

    # -- entry points --------------------------------------------------

    def parse_program_expression(self) -> tuple:
        node = self.parse_assignment()
        while self.eat(";"):
            pass
        tok = self.peek()
        if tok.kind != "eof":
            raise self.unexpected(tok)
        return node

    # -- expressions ---------------------------------------------------

    def parse_assignment(self) -> tuple:
        tok = self.peek()
        if tok.kind == "name" and tok.value not in RESERVED:
            follow = self.peek(1)
            if follow.kind == "punc" and follow.value == "=>":
                self.i += 2
                return self._finish_arrow([(("pname", tok.value), None)], None, tok.pos)
        if self.at("("):
            arrow = self._try_arrow()
            if arrow is not None:
                return arrow
        left = self.parse_conditional()
        tok = self.peek()
        if tok.kind == "punc" and tok.value in ASSIGN_OPS:
            if left[0] not in ("name", "member"):
                raise JSSyntaxError("Invalid left-hand side in assignment", tok.pos)
            self.next()
            value = self.parse_assignment()
            return ("assign", tok.value, left, value)
        return left

    def _try_arrow(self) -> Optional[tuple]:
        save = self.i
        start = self.peek().pos
        try:
            params, rest = self.parse_params()
        except JSSyntaxError:
            self.i = save
            return None
        if not self.at("=>"):
            self.i = save
            return None
        self.next()
        return self._finish_arrow(params, rest, start)

    def _finish_arrow(self, params: list, rest: Optional[tuple], start: int) -> tuple:
        if self.at("{"):
            body: Any = self.parse_block()
            is_expression = False
        else:
            body = self.parse_assignment()
            is_expression = True
        source = self.source[start:self.last_end()]
        return ("func", params, rest, body, is_expression, source, "")

    def parse_conditional(self) -> tuple:
        test = self.parse_binary(1)
        if self.eat("?"):
            consequent = self.parse_assignment()
            self.expect(":")
            alternate = self.parse_assignment()
            return ("cond", test, consequent, alternate)
        return test

    def parse_binary(self, min_prec: int) -> tuple:
        left = self.parse_unary()
        while True:
            tok = self.peek()
            op = None
            if tok.kind == "punc" or (tok.kind == "name" and tok.value == "in"):
                op = tok.value
            prec = BINARY_PRECEDENCE.get(op) if op else None
            if prec is None or prec < min_prec:
                return left
            self.next()
            right = self.parse_binary(prec if op == "**" else prec + 1)
            kind = "logical" if op in LOGICAL_OPS else "binary"
            left = (kind, op, left, right)

    def parse_unary(self) -> tuple:
        tok = self.peek()
        if (tok.kind == "punc" and tok.value in ("!", "-", "+")) or (
            tok.kind == "name" and tok.value in ("typeof", "void")
        ):
            self.next()
            return ("unary", tok.value, self.parse_unary())
        if tok.kind == "name" and tok.value == "new":
            self.next()
            callee = self.parse_primary()
            while self.eat("."):
                callee = ("member", callee, self._property_name(), False, False)
            args = self._parse_arguments() if self.eat("(") else []
            return self.parse_call_member(("new", callee, args))
        if tok.kind == "name" and tok.value in ("delete", "await"):
            raise JSSyntaxError(f"'{tok.value}' expressions are not supported", tok.pos)
        return self.parse_call_member()

    def parse_call_member(self, expr: Optional[tuple] = None) -> tuple:
        if expr is None:
            expr = self.parse_primary()
        optional_chain = False
        while True:
            if self.eat("."):
                expr = ("member", expr, self._property_name(), False, False)
            elif self.eat("?."):
                optional_chain = True
                if self.eat("("):
                    expr = ("call", expr, self._parse_arguments(), True)
                elif self.eat("["):
                    prop = self.parse_assignment()
                    self.expect("]")
                    expr = ("member", expr, prop, True, True)
                else:
                    expr = ("member", expr, self._property_name(), False, True)
            elif self.eat("["):
                prop = self.parse_assignment()
                self.expect("]")
                expr = ("member", expr, prop, True, False)
            elif self.eat("("):
                expr = ("call", expr, self._parse_arguments(), False)
            elif self.peek().kind == "template":
                raise JSSyntaxError("Tagged templates are not supported", self.peek().pos)
            else:
                break
        return ("chain", expr) if optional_chain else expr

    def _property_name(self) -> str:
        tok = self.next()
        if tok.kind != "name":
            raise self.unexpected(tok, "expected property name")
        return tok.value

    def _parse_arguments(self) -> list:
        args: list = []
        while not self.eat(")"):
            if self.eat("..."):
                args.append(("spread", self.parse_assignment()))
            else:
                args.append(self.parse_assignment())
            if not self.eat(","):
                self.expect(")")
                break
        return args

    def parse_primary(self) -> tuple:
        tok = self.next()
        if tok.kind == "num":
            return ("num", tok.value)
        if tok.kind == "str":
            return ("str", tok.value)
        if tok.kind == "template":
            strings, expr_tokens = tok.value
            exprs = [Parser(toks, self.source).parse_program_expression() for toks in expr_tokens]
            return ("tpl", strings, exprs)
        if tok.kind == "name":
            if tok.value == "true":
                return ("lit", True)
            if tok.value == "false":
                return ("lit", False)
            if tok.value == "null":
                return ("lit", None)
            if tok.value == "function":
                return self._parse_function(tok.pos)
            if tok.value in RESERVED:
                raise self.unexpected(tok)
            return ("name", tok.value)
        if tok.kind == "punc":
            if tok.value == "(":
                expr = self.parse_assignment()
                self.expect(")")
                return expr
            if tok.value == "[":
                return self._parse_array()
            if tok.value == "{":
                return self._parse_object()
        raise self.unexpected(tok)

    def _parse_function(self, start: int) -> tuple:
        name = ""
        if self.peek().kind == "name" and self.peek().value not in RESERVED:
            name = self.next().value
        params, rest = self.parse_params()
        body = self.parse_block()
        return ("func", params, rest, body, False, self.source[start:self.last_end()], name)

    def _parse_array(self) -> tuple:
        elements: list = []
        while not self.eat("]"):
            if self.eat(","):
                elements.append(("hole",))
                continue
            if self.eat("..."):
                elements.append(("spread", self.parse_assignment()))
            else:
                elements.append(self.parse_assignment())
            if not self.eat(","):
                self.expect("]")
                break
        return ("array", elements)

    def _parse_object(self) -> tuple:
        props: list = []
        while not self.eat("}"):
            if self.eat("..."):
                props.append(("spread", self.parse_assignment()))
            else:
                tok = self.next()
                computed = False
                if tok.kind == "punc" and tok.value == "[":
                    key: Any = self.parse_assignment()
                    self.expect("]")
                    computed = True
                elif tok.kind in ("name", "str"):
                    key = tok.value
                elif tok.kind == "num":
                    key = _number_key(tok.value)
                else:
                    raise self.unexpected(tok, "expected property key")
                if self.eat(":"):
                    value = self.parse_assignment()
                elif self.at("("):
                    params, rest = self.parse_params()
                    body = self.parse_block()
                    value = ("func", params, rest, body, False, self.source[tok.pos:self.last_end()], "")
                elif tok.kind == "name" and not computed and tok.value not in RESERVED:
                    value = ("name", tok.value)
                else:
                    raise self.unexpected(self.peek())
                props.append(("prop", key, value, computed))
            if not self.eat(","):
                self.expect("}")
                break
        return ("object", props)

    # -- binding patterns ----------------------------------------------

    def parse_params(self) -> Tuple[list, Optional[tuple]]:
        self.expect("(")
        params: list = []
        rest = None
        while not self.eat(")"):
            if self.eat("..."):
                rest = self.parse_binding_target()
                self.eat(",")
                self.expect(")")
                break
            params.append(self._binding_element())
            if not self.eat(","):
                self.expect(")")
                break
        return params, rest

    def _binding_element(self) -> Tuple[tuple, Optional[tuple]]:
        target = self.parse_binding_target()
        default = self.parse_assignment() if self.eat("=") else None
        return target, default

    def parse_binding_target(self) -> tuple:
        tok = self.peek()
        if self.eat("{"):
            return self._object_pattern()
        if self.eat("["):
            return self._array_pattern()
        if tok.kind == "name" and tok.value not in RESERVED:
            self.next()
            return ("pname", tok.value)
        raise self.unexpected(tok, "expected binding name")

    def _object_pattern(self) -> tuple:
        entries: list = []
        rest = None
        while not self.eat("}"):
            if self.eat("..."):
                rest = self.parse_binding_target()
                self.eat(",")
                self.expect("}")
                break
            tok = self.next()
            computed = False
            if tok.kind == "punc" and tok.value == "[":
                key: Any = self.parse_assignment()
                self.expect("]")
                computed = True
            elif tok.kind in ("name", "str"):
                key = tok.value
            elif tok.kind == "num":
                key = _number_key(tok.value)
            else:
                raise self.unexpected(tok, "expected property name")
            if self.eat(":"):
                target = self.parse_binding_target()
            elif tok.kind == "name" and tok.value not in RESERVED:
                target = ("pname", tok.value)
            else:
                raise self.unexpected(self.peek())
            default = self.parse_assignment() if self.eat("=") else None
            entries.append((key, computed, target, default))
            if not self.eat(","):
                self.expect("}")
                break
        return ("pobject", entries, rest)

    def _array_pattern(self) -> tuple:
        elements: list = []
        rest = None
        while not self.eat("]"):
            if self.eat(","):
                elements.append(None)
                continue
            if self.eat("..."):
                rest = self.parse_binding_target()
                self.eat(",")
                self.expect("]")
                break
            elements.append(self._binding_element())
            if not self.eat(","):
                self.expect("]")
                break
        return ("parray", elements, rest)

    # -- statements ----------------------------------------------------

    def parse_block(self) -> list:
        self.expect("{")
        statements: list = []
        while not self.eat("}"):
            if self.peek().kind == "eof":
                raise self.unexpected(self.peek(), "expected '}'")
            statements.append(self.parse_statement())
        return statements

    def parse_statement(self) -> tuple:
        tok = self.peek()
        if tok.kind == "punc":
            if tok.value == "{":
                return ("block", self.parse_block())
            if tok.value == ";":
                self.next()
                return ("empty",)
        if tok.kind == "name":
            word = tok.value
            if word in ("const", "let", "var"):
                self.next()
                stmt = self._declaration(word)
                self.eat(";")
                return stmt
            if word == "return":
                self.next()
                arg = None
                if not (self.at(";") or self.at("}") or self.peek().kind == "eof"):
                    arg = self.parse_assignment()
                self.eat(";")
                return ("return", arg)
            if word == "if":
                self.next()
                self.expect("(")
                test = self.parse_assignment()
                self.expect(")")
                consequent = self.parse_statement()
                alternate = None
                if self.at_name("else"):
                    self.next()
                    alternate = self.parse_statement()
                return ("if", test, consequent, alternate)
            if word == "for":
                return self._for_of()
            if word == "throw":
                self.next()
                arg = self.parse_assignment()
                self.eat(";")
                return ("throw", arg)
            if word == "function":
                self.next()
                name_tok = self.next()
                if name_tok.kind != "name" or name_tok.value in RESERVED:
                    raise self.unexpected(name_tok, "expected function name")
                params, rest = self.parse_params()
                body = self.parse_block()
                func = ("func", params, rest, body, False, self.source[tok.pos:self.last_end()], name_tok.value)
                return ("decl", "let", [(("pname", name_tok.value), func)])
        expr = self.parse_assignment()
        self.eat(";")
        return ("expr", expr)

    def _declaration(self, kind: str) -> tuple:
        declarations: list = []
        while True:
            target = self.parse_binding_target()
            init = self.parse_assignment() if self.eat("=") else None
            if init is None and kind == "const":
                raise JSSyntaxError("Missing initializer in const declaration", self.peek().pos)
            declarations.append((target, init))
            if not self.eat(","):
                return ("decl", kind, declarations)

    def _for_of(self) -> tuple:
        start = self.next()
        self.expect("(")
        kind_tok = self.next()
        if kind_tok.kind != "name" or kind_tok.value not in ("const", "let", "var"):
            raise JSSyntaxError("Only 'for (const x of items)' loops are supported", start.pos)
        target = self.parse_binding_target()
        if not self.at_name("of"):
            raise JSSyntaxError("Only 'for (const x of items)' loops are supported", start.pos)
        self.next()
        iterable = self.parse_assignment()
        self.expect(")")
        body = self.parse_statement()
        return ("forof", kind_tok.value, target, iterable, body)


def _number_key(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def parse_expression(source: str) -> tuple:
    """Parse ``source`` as a single expression (trailing ``;`` allowed)."""
    try:
        return Parser(tokenize(source), source).parse_program_expression()
    except RecursionError:
        raise JSSyntaxError("Expression is nested too deeply") from None


__all__ = ["Token", "Parser", "tokenize", "parse_expression", "js_number", "MAX_SAFE_INTEGER", "RESERVED"]

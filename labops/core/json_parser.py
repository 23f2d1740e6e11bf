"""Small JSON parser with line/column diagnostics.

Used for scenario and parameter-map files. Accepts RFC 8259 documents with
two restrictions: ``\\uXXXX`` escapes are rejected, and containers may nest at
most ``MAX_NESTING_DEPTH`` levels. Duplicate object keys keep the last value.
Numbers are returned as ``float``.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List

from labops.core.errors import JsonParseError

_SIMPLE_ESCAPES = {
    '"': '"',
    "\\": "\\",
    "/": "/",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}

_WHITESPACE = " \t\r\n"
MAX_NESTING_DEPTH = 256


class _Parser:
    def __init__(self, text: str) -> None:
        self._text = text
        self._pos = 0
        self._line = 1
        self._col = 1
        self._depth = 0

    def parse(self) -> Any:
        self._skip_whitespace()
        value = self._parse_value()
        self._skip_whitespace()
        if not self._at_end():
            self._fail("unexpected trailing content after JSON value")
        return value

    # ------------------------------------------------------------------
    # Cursor helpers

    def _fail(self, message: str) -> None:
        raise JsonParseError(
            f"parse error at line {self._line}, col {self._col}: {message}",
            line=self._line,
            column=self._col,
        )

    def _at_end(self) -> bool:
        return self._pos >= len(self._text)

    def _peek(self) -> str:
        return self._text[self._pos]

    def _advance(self) -> str:
        ch = self._text[self._pos]
        self._pos += 1
        if ch == "\n":
            self._line += 1
            self._col = 1
        else:
            self._col += 1
        return ch

    def _match(self, expected: str) -> bool:
        if self._at_end() or self._peek() != expected:
            return False
        self._advance()
        return True

    def _consume(self, expected: str, message: str) -> None:
        if not self._match(expected):
            self._fail(message)

    def _starts_with(self, token: str) -> bool:
        return self._text.startswith(token, self._pos)

    def _skip_whitespace(self) -> None:
        while not self._at_end() and self._peek() in _WHITESPACE:
            self._advance()

    def _enter_container(self) -> None:
        if self._depth >= MAX_NESTING_DEPTH:
            self._fail("nesting too deep")
        self._depth += 1

    def _consume_digits(self) -> bool:
        count = 0
        while not self._at_end() and self._peek() in "0123456789":
            self._advance()
            count += 1
        return count > 0

    # ------------------------------------------------------------------
    # Grammar

    def _parse_value(self) -> Any:
        if self._at_end():
            self._fail("unexpected end of input while parsing value")
        ch = self._peek()
        if ch in "{[":
            self._enter_container()
            try:
                return self._parse_object() if ch == "{" else self._parse_array()
            finally:
                self._depth -= 1
        if ch == '"':
            return self._parse_string()
        if ch == "-" or ch.isdigit():
            return self._parse_number()
        for token, value in (("true", True), ("false", False), ("null", None)):
            if self._starts_with(token):
                for _ in token:
                    self._advance()
                return value
        self._fail("expected JSON value")

    def _parse_object(self) -> Dict[str, Any]:
        self._consume("{", "expected '{' to start object")
        result: Dict[str, Any] = {}
        self._skip_whitespace()
        if self._match("}"):
            return result
        while True:
            self._skip_whitespace()
            key = self._parse_string()
            self._skip_whitespace()
            self._consume(":", "expected ':' after object key")
            self._skip_whitespace()
            result[key] = self._parse_value()
            self._skip_whitespace()
            if self._match("}"):
                return result
            self._consume(",", "expected ',' between object entries")

    def _parse_array(self) -> List[Any]:
        self._consume("[", "expected '[' to start array")
        items: List[Any] = []
        self._skip_whitespace()
        if self._match("]"):
            return items
        while True:
            self._skip_whitespace()
            items.append(self._parse_value())
            self._skip_whitespace()
            if self._match("]"):
                return items
            self._consume(",", "expected ',' between array items")

    def _parse_string(self) -> str:
        self._consume('"', "expected '\"' to start string")
        out: List[str] = []
        while not self._at_end():
            ch = self._advance()
            if ch == '"':
                return "".join(out)
            if ch == "\\":
                if self._at_end():
                    self._fail("unterminated escape sequence in string")
                escape = self._advance()
                if escape == "u":
                    self._fail("unicode escape \\uXXXX is not supported in current parser")
                if escape not in _SIMPLE_ESCAPES:
                    self._fail("invalid escape sequence in string")
                out.append(_SIMPLE_ESCAPES[escape])
                continue
            if ord(ch) < 0x20:
                self._fail("control character in string is not allowed")
            out.append(ch)
        self._fail("unterminated string literal")

    def _parse_number(self) -> float:
        start = self._pos
        self._match("-")
        if not self._match("0"):
            if not self._consume_digits():
                self._fail("expected digits in number")
        if self._match("."):
            if not self._consume_digits():
                self._fail("expected digits after decimal point")
        if self._match("e") or self._match("E"):
            if not self._match("+"):
                self._match("-")
            if not self._consume_digits():
                self._fail("expected exponent digits")
        value = float(self._text[start:self._pos])
        if math.isinf(value) or math.isnan(value):
            self._fail("invalid numeric value")
        return value


def parse_json(text: str) -> Any:
    """Parse ``text`` into plain Python values.

    Raises:
        JsonParseError: ``parse error at line L, col C: <message>``.
    """
    return _Parser(text).parse()


__all__ = ["MAX_NESTING_DEPTH", "parse_json"]

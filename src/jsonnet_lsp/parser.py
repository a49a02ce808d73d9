"""Jsonnet parser front end.

Wraps a lark LALR parser built from the bundled ``jsonnet.lark`` grammar and
turns its exceptions into data: parsing never raises, it returns either a
``Parsed`` tree or a ``ParseFailure`` describing where the grammar gave up.

Usage:
    from jsonnet_lsp.parser import Parsed, parse

    outcome = parse("{ a: 1, b: 2 }")
    if isinstance(outcome, Parsed):
        print(outcome.tree.pretty())
    else:
        print(outcome.location.line, outcome.message)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING

from lark import Lark, Token, Tree
from lark.exceptions import UnexpectedCharacters, UnexpectedEOF, UnexpectedInput, UnexpectedToken

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

GRAMMAR_PATH = Path(__file__).with_name("jsonnet.lark")

# Display names for regex terminals in "expected ..." messages
_TERMINAL_NAMES = {
    "IDENT": "identifier",
    "NUMBER": "number",
    "STRING": "string",
    "VERBATIM_STRING": "string",
    "TEXT_BLOCK": "text block",
    "EQ_OP": "'=='",
    "CMP_OP": "comparison",
    "SHIFT_OP": "shift operator",
    "$END": "end of input",
}


# =============================================================================
# Parse Outcomes
# =============================================================================


@dataclass(frozen=True)
class SourceLocation:
    """A location reported by the grammar.

    ``offset`` is a 0-based index into the document string; ``line`` and
    ``column`` are 1-based.
    """

    offset: int
    line: int
    column: int


@dataclass(frozen=True)
class Parsed:
    """Successful parse carrying the syntax tree."""

    tree: Tree


@dataclass(frozen=True)
class ParseFailure:
    """Rejected input: where the grammar stopped and why."""

    location: SourceLocation
    message: str


ParseOutcome = Parsed | ParseFailure


# =============================================================================
# Parser
# =============================================================================


class JsonnetParser:
    """LALR parser for Jsonnet source text."""

    def __init__(self, grammar_path: Path = GRAMMAR_PATH) -> None:
        self._lark = Lark(
            grammar_path.read_text(encoding="utf-8"),
            parser="lalr",
            propagate_positions=True,
            maybe_placeholders=False,
        )

    def parse(self, text: str) -> ParseOutcome:
        """Parse ``text`` into a tree or a structured failure."""
        try:
            return Parsed(self._lark.parse(text))
        except UnexpectedInput as e:
            failure = self._failure(text, e)
            logger.debug(
                "Parse failed at %d:%d: %s",
                failure.location.line,
                failure.location.column,
                failure.message,
            )
            return failure

    def _failure(self, text: str, error: UnexpectedInput) -> ParseFailure:
        if isinstance(error, UnexpectedToken) and error.token.type == "$END":
            return ParseFailure(
                location=_end_of_text(text),
                message=f"unexpected end of input; expected {self._describe(error.expected)}",
            )
        if isinstance(error, UnexpectedEOF):
            return ParseFailure(
                location=_end_of_text(text),
                message=f"unexpected end of input; expected {self._describe(error.expected)}",
            )

        offset = error.pos_in_stream
        if offset is None or offset < 0:
            return ParseFailure(location=_end_of_text(text), message=str(error).splitlines()[0])
        location = SourceLocation(offset=offset, line=error.line, column=error.column)

        if isinstance(error, UnexpectedToken):
            found = _describe_token(error.token)
            expected = self._describe(error.expected)
            return ParseFailure(location, f"unexpected {found}; expected {expected}")
        if isinstance(error, UnexpectedCharacters):
            found = repr(error.char)
            if error.allowed:
                return ParseFailure(
                    location, f"unexpected character {found}; expected {self._describe(error.allowed)}"
                )
            return ParseFailure(location, f"unexpected character {found}")
        return ParseFailure(location, str(error).splitlines()[0])

    def _describe(self, names: Iterable[str] | None) -> str:
        """Render terminal names as a short, stable list."""
        if not names:
            return "nothing"
        shown = sorted({self._terminal_display(str(getattr(name, "name", name))) for name in names})
        if len(shown) > 8:
            return "one of " + ", ".join(shown[:8]) + ", ..."
        if len(shown) == 1:
            return shown[0]
        return "one of " + ", ".join(shown)

    def _terminal_display(self, name: str) -> str:
        if name in _TERMINAL_NAMES:
            return _TERMINAL_NAMES[name]
        try:
            pattern = self._lark.get_terminal(name).pattern
        except KeyError:
            return name.lower()
        if pattern.type == "str":
            return repr(pattern.value)
        return name.lower()


def _describe_token(token: Token) -> str:
    if token.type in ("IDENT", "NUMBER"):
        return f"{_TERMINAL_NAMES[token.type]} {token.value!r}"
    return repr(str(token.value))


def _end_of_text(text: str) -> SourceLocation:
    lines = text.split("\n")
    return SourceLocation(offset=len(text), line=len(lines), column=len(lines[-1]) + 1)


@lru_cache(maxsize=1)
def get_parser() -> JsonnetParser:
    """Shared parser instance; building the LALR tables is the expensive part."""
    return JsonnetParser()


def parse(text: str) -> ParseOutcome:
    """Parse Jsonnet ``text`` with the shared parser."""
    return get_parser().parse(text)


__all__ = [
    "JsonnetParser",
    "ParseFailure",
    "ParseOutcome",
    "Parsed",
    "SourceLocation",
    "get_parser",
    "parse",
]

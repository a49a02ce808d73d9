"""Offset <-> line/character translation.

Lines are split on ``\\n`` only. A ``\\r`` before the newline is an ordinary
character, which keeps the arithmetic in step with the grammar's own column
counting.
"""

from __future__ import annotations

from lsprotocol import types as lsp


def line_count(text: str) -> int:
    """Number of ``\\n``-delimited lines (an empty text has one line)."""
    return text.count("\n") + 1


def to_position(text: str, offset: int) -> lsp.Position:
    """Map an offset reported by the grammar to a zero-based position.

    The walk subtracts each line (plus its newline) until the remaining offset
    fits in the current line. The character is the remaining offset minus one,
    saturating at zero; offsets outside the text clamp to its bounds.

    Args:
        text: Full document text
        offset: Index into ``text``

    Returns:
        Zero-based line/character position
    """
    remaining = min(max(offset, 0), len(text))
    line_index = 0
    for line_index, line in enumerate(text.split("\n")):
        if remaining <= len(line):
            break
        remaining -= len(line) + 1

    return lsp.Position(line=line_index, character=max(remaining - 1, 0))


def to_offset(text: str, position: lsp.Position) -> int:
    """Map a zero-based position back to an index into ``text``.

    Lines and characters beyond the text are clamped.
    """
    lines = text.split("\n")
    line = min(max(position.line, 0), len(lines) - 1)
    start = sum(len(previous) + 1 for previous in lines[:line])
    return start + min(max(position.character, 0), len(lines[line]))


def point_range(text: str, offset: int) -> lsp.Range:
    """One-character-wide range starting at the translated ``offset``."""
    start = to_position(text, offset)
    end = lsp.Position(line=start.line, character=start.character + 1)
    return lsp.Range(start=start, end=end)


__all__ = ["line_count", "point_range", "to_offset", "to_position"]

"""Per-document state for open Jsonnet files."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

from lsprotocol import types as lsp

from jsonnet_lsp.diagnostics import DiagnosticsEngine
from jsonnet_lsp.parser import ParseOutcome

logger = logging.getLogger(__name__)


@dataclass
class Document:
    """Latest known content of an open document and what it parsed to."""

    uri: str
    text: str
    outcome: ParseOutcome
    diagnostics: list[lsp.Diagnostic] = field(default_factory=list)


class DocumentStore:
    """Maps document URIs to their latest ``Document``.

    The outcome and diagnostics are always recomputed together with the
    text, so a stored record never describes stale content.
    """

    def __init__(self, engine: DiagnosticsEngine | None = None) -> None:
        self.engine = engine or DiagnosticsEngine()
        self._documents: dict[str, Document] = {}

    def open(self, uri: str, text: str) -> list[lsp.Diagnostic]:
        """Analyze and store ``text`` for ``uri``, replacing any previous record."""
        analysis = self.engine.analyze(text)
        self._documents[uri] = Document(
            uri=uri,
            text=text,
            outcome=analysis.outcome,
            diagnostics=analysis.diagnostics,
        )
        logger.debug("Stored %s (%d diagnostics)", uri, len(analysis.diagnostics))
        return analysis.diagnostics

    def replace(self, uri: str, text: str) -> list[lsp.Diagnostic]:
        """Replace the full text of ``uri``."""
        return self.open(uri, text)

    def change(
        self, uri: str, changes: Sequence[lsp.TextDocumentContentChangeEvent]
    ) -> list[lsp.Diagnostic] | None:
        """Apply a full-sync change notification.

        Only the last entry counts; every entry carries the whole document.

        Returns:
            The new diagnostics, or None when ``changes`` is empty and the
            record was left untouched
        """
        if not changes:
            logger.debug("Empty change list for %s", uri)
            return None
        return self.replace(uri, changes[-1].text)

    def lookup(self, uri: str) -> Document | None:
        return self._documents.get(uri)

    def close(self, uri: str) -> bool:
        """Forget ``uri``. Returns whether a record existed."""
        return self._documents.pop(uri, None) is not None

    def uris(self) -> Iterator[str]:
        return iter(list(self._documents))

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, uri: object) -> bool:
        return uri in self._documents


__all__ = ["Document", "DocumentStore"]

"""Diagnostics for Jsonnet documents.

Turns a parse outcome into LSP diagnostics. A syntax error yields exactly one
Error diagnostic, one character wide, at the position the grammar rejected.
A successful parse yields none, unless a secondary source (the evaluator)
is configured *and* allowed to publish.

Usage:
    from jsonnet_lsp.diagnostics import compute_diagnostics

    compute_diagnostics("{ a: 1, b: 2 }")  # []
    compute_diagnostics("{ a: 1 b: 2 }")   # [Diagnostic(...)]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from lsprotocol import types as lsp

from jsonnet_lsp.evaluator import EvaluationError, Evaluator
from jsonnet_lsp.parser import JsonnetParser, ParseFailure, ParseOutcome, get_parser
from jsonnet_lsp.positions import point_range

if TYPE_CHECKING:
    from lark import Tree

    from jsonnet_lsp.config import ServerConfig

logger = logging.getLogger(__name__)

DIAGNOSTIC_SOURCE = "jsonnet"


@dataclass
class Analysis:
    """Parse outcome of a text and the diagnostics to publish for it."""

    outcome: ParseOutcome
    diagnostics: list[lsp.Diagnostic] = field(default_factory=list)


def make_diagnostic(
    text: str,
    offset: int,
    message: str,
    severity: lsp.DiagnosticSeverity = lsp.DiagnosticSeverity.Error,
) -> lsp.Diagnostic:
    """Build a one-character diagnostic at ``offset`` in ``text``."""
    return lsp.Diagnostic(
        range=point_range(text, offset),
        message=message,
        severity=severity,
        source=DIAGNOSTIC_SOURCE,
    )


# =============================================================================
# Secondary Sources
# =============================================================================


class SecondaryDiagnosticSource(Protocol):
    """Extra analysis run on successfully parsed documents."""

    def diagnose(self, text: str, tree: Tree) -> list[lsp.Diagnostic]: ...


class EvaluationDiagnostics:
    """Reports the first definite runtime error found by the evaluator."""

    def __init__(self, evaluator: Evaluator | None = None) -> None:
        self.evaluator = evaluator or Evaluator()

    def diagnose(self, text: str, tree: Tree) -> list[lsp.Diagnostic]:
        try:
            self.evaluator.evaluate(tree)
        except EvaluationError as e:
            offset = e.location.offset if e.location is not None else 0
            return [make_diagnostic(text, offset, e.message)]
        return []


# =============================================================================
# Engine
# =============================================================================


class DiagnosticsEngine:
    """Parses text and derives its diagnostics.

    Args:
        parser: Grammar front end; defaults to the shared parser
        secondary: Optional extra source consulted after a successful parse
        publish_secondary: Whether the secondary source's findings are
            returned. When false they are only logged.
    """

    def __init__(
        self,
        parser: JsonnetParser | None = None,
        secondary: SecondaryDiagnosticSource | None = None,
        publish_secondary: bool = False,
    ) -> None:
        self.parser = parser or get_parser()
        self.secondary = secondary
        self.publish_secondary = publish_secondary

    @classmethod
    def from_config(cls, config: ServerConfig) -> DiagnosticsEngine:
        secondary = EvaluationDiagnostics() if config.evaluate else None
        return cls(secondary=secondary, publish_secondary=config.publish_evaluation_errors)

    def analyze(self, text: str) -> Analysis:
        """Parse ``text`` and compute the diagnostics to publish."""
        outcome = self.parser.parse(text)
        if isinstance(outcome, ParseFailure):
            diagnostic = make_diagnostic(text, outcome.location.offset, outcome.message)
            return Analysis(outcome, [diagnostic])

        if self.secondary is None:
            return Analysis(outcome)

        try:
            found = self.secondary.diagnose(text, outcome.tree)
        except Exception:
            logger.exception("Secondary diagnostic source failed")
            return Analysis(outcome)

        if self.publish_secondary:
            return Analysis(outcome, found)
        for diagnostic in found:
            logger.debug(
                "Discarding evaluation diagnostic at %d:%d: %s",
                diagnostic.range.start.line,
                diagnostic.range.start.character,
                diagnostic.message,
            )
        return Analysis(outcome)


def compute_diagnostics(text: str) -> list[lsp.Diagnostic]:
    """Diagnostics for ``text`` with the default engine."""
    return DiagnosticsEngine().analyze(text).diagnostics


__all__ = [
    "DIAGNOSTIC_SOURCE",
    "Analysis",
    "DiagnosticsEngine",
    "EvaluationDiagnostics",
    "SecondaryDiagnosticSource",
    "compute_diagnostics",
    "make_diagnostic",
]

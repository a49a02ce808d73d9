"""Capabilities advertised in the initialize response."""

from __future__ import annotations

from typing import Any

from lsprotocol import types as lsp

from jsonnet_lsp import __version__
from jsonnet_lsp.messages import unstructure

SERVER_NAME = "jsonnet-lsp"


def server_capabilities() -> lsp.ServerCapabilities:
    return lsp.ServerCapabilities(
        text_document_sync=lsp.TextDocumentSyncOptions(
            open_close=True,
            change=lsp.TextDocumentSyncKind.Full,
        ),
        completion_provider=lsp.CompletionOptions(),
        definition_provider=True,
        document_formatting_provider=True,
        document_link_provider=lsp.DocumentLinkOptions(resolve_provider=False),
        rename_provider=True,
        selection_range_provider=True,
    )


def initialize_result() -> dict[str, Any]:
    """JSON-ready result for the ``initialize`` request."""
    result = lsp.InitializeResult(
        capabilities=server_capabilities(),
        server_info=lsp.ServerInfo(name=SERVER_NAME, version=__version__),
    )
    return unstructure(result)


__all__ = ["SERVER_NAME", "initialize_result", "server_capabilities"]

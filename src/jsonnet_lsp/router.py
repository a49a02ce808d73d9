"""Request routing.

Each request method maps to a ``Handler``: either ``Supported`` with the
lsprotocol params type and a function producing the result, or
``Unsupported``, which answers with method-not-found. Methods missing from
the table are treated the same way.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from lsprotocol import types as lsp
from pygls.exceptions import JsonRpcException, JsonRpcMethodNotFound

from jsonnet_lsp.documents import DocumentStore
from jsonnet_lsp.messages import JsonRpcRequest, JsonRpcResponse, structure_params, unstructure
from jsonnet_lsp.parser import Parsed

logger = logging.getLogger(__name__)

DEFAULT_PLACEHOLDER = "TODO: test"


@dataclass(frozen=True)
class Supported:
    """A method the server answers."""

    params_type: type
    handler: Callable[[Any], Any]


@dataclass(frozen=True)
class Unsupported:
    """A method advertised by the client protocol but not implemented."""


Handler = Supported | Unsupported

UNSUPPORTED = Unsupported()


class RequestRouter:
    """Dispatches requests to handlers with access to the document store."""

    def __init__(self, store: DocumentStore, placeholder: str = DEFAULT_PLACEHOLDER) -> None:
        self.store = store
        self.placeholder = placeholder
        self.handlers: dict[str, Handler] = {
            lsp.TEXT_DOCUMENT_FORMATTING: Supported(lsp.DocumentFormattingParams, self.formatting),
            lsp.TEXT_DOCUMENT_COMPLETION: UNSUPPORTED,
            lsp.TEXT_DOCUMENT_DEFINITION: UNSUPPORTED,
            lsp.TEXT_DOCUMENT_RENAME: UNSUPPORTED,
            lsp.TEXT_DOCUMENT_SELECTION_RANGE: UNSUPPORTED,
            lsp.TEXT_DOCUMENT_DOCUMENT_LINK: UNSUPPORTED,
        }

    def dispatch(self, request: JsonRpcRequest) -> JsonRpcResponse:
        """Answer ``request``; failures become error responses with its id."""
        handler = self.handlers.get(request.method, UNSUPPORTED)
        if isinstance(handler, Unsupported):
            logger.info("Unhandled method %s", request.method)
            return JsonRpcResponse.failure(
                request.id, JsonRpcMethodNotFound(message=f"Unhandled method {request.method}")
            )

        try:
            params = structure_params(request.params, handler.params_type)
        except JsonRpcException as e:
            logger.warning(f"Invalid params for {request.method}: {e.message}")
            return JsonRpcResponse.failure(request.id, e)
        return JsonRpcResponse(id=request.id, result=unstructure(handler.handler(params)))

    def formatting(self, params: lsp.DocumentFormattingParams) -> list[lsp.TextEdit]:
        """Placeholder edit at the start of a document that parses."""
        document = self.store.lookup(params.text_document.uri)
        if document is None or not isinstance(document.outcome, Parsed):
            return []
        origin = lsp.Position(line=0, character=0)
        return [lsp.TextEdit(range=lsp.Range(start=origin, end=origin), new_text=self.placeholder)]


__all__ = ["Handler", "RequestRouter", "Supported", "UNSUPPORTED", "Unsupported"]

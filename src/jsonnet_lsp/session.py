"""The server's main loop.

Reads messages from the connection until the shutdown handshake completes or
the channel closes. Requests go through the ``RequestRouter``; document
notifications update the ``DocumentStore`` and publish diagnostics.
"""

from __future__ import annotations

import logging
from enum import Enum

from lsprotocol import types as lsp
from pygls.exceptions import JsonRpcException, JsonRpcInvalidRequest

from jsonnet_lsp.config import ServerConfig
from jsonnet_lsp.diagnostics import DiagnosticsEngine
from jsonnet_lsp.documents import DocumentStore
from jsonnet_lsp.messages import (
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    structure_params,
    unstructure,
)
from jsonnet_lsp.router import RequestRouter
from jsonnet_lsp.transport import Connection, ProtocolError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1


class SessionState(Enum):
    # Awaiting exit after a shutdown reply happens inside
    # Connection.handle_shutdown, which blocks until the handshake ends.
    RUNNING = "running"
    TERMINATED = "terminated"


class Session:
    """One editor session over an initialized connection."""

    def __init__(
        self,
        connection: Connection,
        config: ServerConfig | None = None,
        store: DocumentStore | None = None,
    ) -> None:
        self.connection = connection
        self.config = config or ServerConfig()
        self.store = store or DocumentStore(DiagnosticsEngine.from_config(self.config))
        self.router = RequestRouter(self.store, self.config.formatting_placeholder)
        self.state = SessionState.RUNNING
        self.exit_code = EXIT_OK

    def run(self) -> int:
        """Process messages until the session ends.

        Returns:
            Process exit code: 0 after a clean shutdown or a closed channel,
            1 after a handshake violation or an early ``exit``
        """
        while self.state is not SessionState.TERMINATED:
            message = self.connection.receive()
            if message is None:
                logger.info("Channel closed")
                self._terminate(EXIT_OK)
            elif isinstance(message, JsonRpcRequest):
                self.handle_request(message)
            elif isinstance(message, JsonRpcNotification):
                self.handle_notification(message)
            else:
                logger.debug("Ignoring response %s", message.id)
        return self.exit_code

    def _terminate(self, code: int) -> None:
        self.state = SessionState.TERMINATED
        self.exit_code = code

    # =========================================================================
    # Requests
    # =========================================================================

    def handle_request(self, request: JsonRpcRequest) -> None:
        try:
            if self.connection.handle_shutdown(request):
                logger.info("Shutdown complete")
                self._terminate(EXIT_OK)
                return
        except ProtocolError as e:
            logger.error("Shutdown handshake failed: %s", e)
            self.connection.send(
                JsonRpcResponse.failure(request.id, JsonRpcInvalidRequest(message=str(e)))
            )
            self._terminate(EXIT_FAILURE)
            return

        self.connection.send(self.router.dispatch(request))

    # =========================================================================
    # Notifications
    # =========================================================================

    def handle_notification(self, notification: JsonRpcNotification) -> None:
        method = notification.method
        try:
            if method == lsp.TEXT_DOCUMENT_DID_OPEN:
                params = structure_params(notification.params, lsp.DidOpenTextDocumentParams)
                uri = params.text_document.uri
                self.publish(uri, self.store.open(uri, params.text_document.text))
            elif method == lsp.TEXT_DOCUMENT_DID_CHANGE:
                params = structure_params(notification.params, lsp.DidChangeTextDocumentParams)
                uri = params.text_document.uri
                diagnostics = self.store.change(uri, params.content_changes)
                if diagnostics is not None:
                    self.publish(uri, diagnostics)
            elif method == lsp.TEXT_DOCUMENT_DID_CLOSE:
                params = structure_params(notification.params, lsp.DidCloseTextDocumentParams)
                uri = params.text_document.uri
                if not self.store.close(uri):
                    logger.debug("Closed unknown document %s", uri)
                self.publish(uri, [])
            elif method == lsp.EXIT:
                logger.error("Exit notification received before shutdown")
                self._terminate(EXIT_FAILURE)
            else:
                logger.debug("Ignoring notification %s", method)
        except JsonRpcException as e:
            logger.warning(f"Dropping {method}: {e.message}")

    def publish(self, uri: str, diagnostics: list[lsp.Diagnostic]) -> None:
        params = lsp.PublishDiagnosticsParams(uri=uri, diagnostics=diagnostics)
        self.connection.send(
            JsonRpcNotification(
                method=lsp.TEXT_DOCUMENT_PUBLISH_DIAGNOSTICS, params=unstructure(params)
            )
        )


__all__ = ["EXIT_FAILURE", "EXIT_OK", "Session", "SessionState"]

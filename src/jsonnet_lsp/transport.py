"""Message channel and LSP handshakes.

A ``Connection`` is a pair of queues: ``inbound`` carries decoded messages
to the session loop, ``outbound`` carries messages to be written. For stdio
a reader thread runs pygls's ``Content-Length`` framed read loop into the
inbound queue and a writer thread frames outbound messages through the same
pygls protocol. ``None`` on a queue marks the end of the channel.

Usage:
    connection, io_threads = Connection.stdio()
    connection.initialize(capabilities)
    ...
    connection.close()
    io_threads.join()
"""

from __future__ import annotations

import logging
import queue
import sys
import threading
from dataclasses import dataclass
from typing import IO, Any

from cattrs import Converter
from lsprotocol import types as lsp
from lsprotocol.converters import get_converter
from pygls.exceptions import JsonRpcServerNotInitialized
from pygls.io_ import StdoutWriter, run
from pygls.protocol import JsonRPCProtocol
from pygls.server import JsonRPCServer

from jsonnet_lsp.messages import (
    InvalidMessage,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    Message,
    parse_message,
)

logger = logging.getLogger(__name__)

DEFAULT_SHUTDOWN_TIMEOUT = 30.0

# None marks a closed channel
MessageQueue = queue.Queue  # queue.Queue[Message | None]


class ProtocolError(Exception):
    """The client broke the initialize or shutdown handshake."""


# =============================================================================
# Stdio
# =============================================================================


class MessageQueueProtocol(JsonRPCProtocol):
    """pygls JSON-RPC protocol that queues messages for the session loop.

    pygls reads and frames the byte stream; instead of dispatching to
    registered features, every decoded message is put on ``inbound`` as one
    of the ``jsonnet_lsp.messages`` dataclasses. Reading stops after the
    ``exit`` notification.
    """

    def __init__(self, server: JsonRPCServer, converter: Converter) -> None:
        super().__init__(server, converter)
        self.inbound: MessageQueue = queue.Queue()
        self.stop_event = threading.Event()

    def structure_message(self, data: dict[str, Any]) -> dict[str, Any]:
        # Payloads stay plain JSON; parse_message classifies the whole body
        return data

    def handle_message(self, message: Any) -> None:
        try:
            message = parse_message(message)
        except InvalidMessage as e:
            logger.warning("Dropping invalid message: %s", e)
            return
        self.inbound.put(message)
        if isinstance(message, JsonRpcNotification) and message.method == lsp.EXIT:
            self.stop_event.set()

    def send_message(self, message: Message) -> None:
        """Serialize and frame ``message`` through the protocol's writer."""
        self._send_data(message.to_dict())


def _reader(stdin: IO[bytes], protocol: MessageQueueProtocol) -> None:
    try:
        # Undecodable frames are logged by pygls and skipped
        run(protocol.stop_event, stdin, protocol, logger=logger)
    finally:
        logger.info("Input stream closed")
        protocol.inbound.put(None)


def _writer(protocol: MessageQueueProtocol, outbound: MessageQueue) -> None:
    while True:
        message = outbound.get()
        if message is None:
            break
        protocol.send_message(message)


@dataclass
class IoThreads:
    """Background reader and writer threads of a stdio connection."""

    reader: threading.Thread
    writer: threading.Thread

    def join(self) -> None:
        self.reader.join()
        self.writer.join()


# =============================================================================
# Connection
# =============================================================================


class Connection:
    """Bidirectional message channel between the server and a client."""

    def __init__(
        self,
        inbound: MessageQueue,
        outbound: MessageQueue,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
    ) -> None:
        self.inbound = inbound
        self.outbound = outbound
        self.shutdown_timeout = shutdown_timeout

    @classmethod
    def stdio(
        cls,
        stdin: IO[bytes] | None = None,
        stdout: IO[bytes] | None = None,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
    ) -> tuple[Connection, IoThreads]:
        """Connection over the process's stdin/stdout."""
        protocol = JsonRPCServer(MessageQueueProtocol, get_converter).protocol
        protocol.set_writer(StdoutWriter(stdout or sys.stdout.buffer))
        outbound: MessageQueue = queue.Queue()
        reader = threading.Thread(
            target=_reader,
            args=(stdin or sys.stdin.buffer, protocol),
            name="jsonnet-lsp-reader",
            daemon=True,
        )
        writer = threading.Thread(
            target=_writer, args=(protocol, outbound), name="jsonnet-lsp-writer", daemon=True
        )
        reader.start()
        writer.start()
        return cls(protocol.inbound, outbound, shutdown_timeout), IoThreads(reader, writer)

    @classmethod
    def memory(
        cls, shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT
    ) -> tuple[Connection, Connection]:
        """Two connected in-process ends: (server, client)."""
        to_server: MessageQueue = queue.Queue()
        to_client: MessageQueue = queue.Queue()
        server = cls(to_server, to_client, shutdown_timeout)
        client = cls(to_client, to_server, shutdown_timeout)
        return server, client

    def send(self, message: Message) -> None:
        logger.debug("Sending %s", message)
        self.outbound.put(message)

    def receive(self, timeout: float | None = None) -> Message | None:
        """Next inbound message, or None once the channel is closed.

        Raises:
            queue.Empty: If ``timeout`` elapses first
        """
        message = self.inbound.get(timeout=timeout)
        if message is None:
            # Keep the channel closed for later receivers
            self.inbound.put(None)
        else:
            logger.debug("Received %s", message)
        return message

    def close(self) -> None:
        """Stop the outbound side after queued messages are written."""
        self.outbound.put(None)

    # -- handshakes ----------------------------------------------------------

    def initialize(self, result: dict[str, Any]) -> Any:
        """Run the initialize handshake.

        Answers the ``initialize`` request with ``result`` and waits for the
        ``initialized`` notification. Requests arriving before ``initialize``
        get a server-not-initialized error; notifications are ignored.

        Returns:
            The client's initialize params

        Raises:
            ProtocolError: If the channel closes or the client deviates
        """
        while True:
            message = self.receive()
            if message is None:
                raise ProtocolError("channel closed before initialize")
            if isinstance(message, JsonRpcRequest):
                if message.method == lsp.INITIALIZE:
                    params = message.params
                    self.send(JsonRpcResponse(id=message.id, result=result))
                    break
                self.send(
                    JsonRpcResponse.failure(
                        message.id,
                        JsonRpcServerNotInitialized(
                            message=f"expected initialize request, got {message.method}"
                        ),
                    )
                )
            elif isinstance(message, JsonRpcNotification) and message.method == lsp.EXIT:
                raise ProtocolError("exit notification before initialize")
            else:
                logger.debug("Ignoring %s before initialize", message)

        message = self.receive()
        if isinstance(message, JsonRpcNotification) and message.method == lsp.INITIALIZED:
            logger.info("Client initialized")
            return params
        raise ProtocolError(f"expected initialized notification, got {message!r}")

    def handle_shutdown(self, request: JsonRpcRequest) -> bool:
        """Complete the shutdown handshake if ``request`` starts it.

        Returns:
            False for any other request; True once the client has sent
            ``exit`` (or closed the channel) after the shutdown reply

        Raises:
            ProtocolError: If anything but ``exit`` follows, or nothing does
                within ``shutdown_timeout``
        """
        if request.method != lsp.SHUTDOWN:
            return False

        logger.info("Shutdown requested")
        self.send(JsonRpcResponse(id=request.id, result=None))
        try:
            message = self.receive(timeout=self.shutdown_timeout)
        except queue.Empty:
            raise ProtocolError(
                f"timed out after {self.shutdown_timeout}s waiting for exit notification"
            ) from None

        if message is None:
            return True
        if isinstance(message, JsonRpcNotification) and message.method == lsp.EXIT:
            return True
        raise ProtocolError(f"unexpected message during shutdown: {message!r}")


__all__ = [
    "Connection",
    "IoThreads",
    "MessageQueueProtocol",
    "ProtocolError",
]

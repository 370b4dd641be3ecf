from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple, Union

from pydantic import ValidationError

from ue_protocol import validator
from ue_protocol.commands import ExecMode, MsgType
from ue_protocol.errors import (
    ChannelClosed,
    CommandTimeout,
    ConnectionBusy,
    ConnectionTimeout,
    DecodeError,
    ProtocolError,
    SocketError,
)
from ue_protocol.framing import FrameBuffer, decode_message, encode_message, passes_filter
from ue_protocol.messages import CommandPayload, CommandResultPayload, RemoteMessage
from ue_remote.config import RemoteExecutionConfig

if TYPE_CHECKING:
    from .discovery import DiscoveryChannel

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024


class CommandChannel:
    """
    TCP command connection to one remote node.

    We listen locally and ask the node (over the discovery channel) to dial in. Once
    the node's connection is accepted, commands go out one at a time and each waits
    for exactly one command_result: the protocol has no request ids to match
    interleaved replies.
    """

    def __init__(self, config: RemoteExecutionConfig, node_id: str, remote_node_id: str) -> None:
        self.config = config
        self.node_id = node_id
        self.remote_node_id = remote_node_id
        self._server: Optional[asyncio.AbstractServer] = None
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._accepted = asyncio.Event()
        self._closed = False
        self._pending: Optional[asyncio.Future] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._command_lock = asyncio.Lock()
        self._frames = FrameBuffer()

    @property
    def is_connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    @property
    def command_endpoint(self) -> Tuple[str, int]:
        """Endpoint the remote node should dial: the configured host and the port actually bound."""
        host, port = self.config.command_endpoint
        if self._server is not None and self._server.sockets:
            port = self._server.sockets[0].getsockname()[1]
        return host, port

    async def open(self, discovery: "DiscoveryChannel") -> None:
        """Listen, then keep asking the remote node to connect until it does or we give up."""
        host, port = self.config.command_endpoint
        try:
            self._server = await asyncio.start_server(
                self._handle_connection, host, port, backlog=1, reuse_address=True
            )
        except OSError as exc:
            raise SocketError(f"Failed to listen on {host}:{port}: {exc}") from exc
        logger.debug("Command channel listening on %s:%s", *self.command_endpoint)

        try:
            await self._try_accept(discovery)
        except BaseException:
            await self._close_sockets()
            raise

    async def _try_accept(self, discovery: "DiscoveryChannel") -> None:
        attempts = self.config.accept_retry_count
        for attempt in range(1, attempts + 1):
            logger.debug("Requesting connection from %s (attempt %s/%s)", self.remote_node_id, attempt, attempts)
            discovery.broadcast_open_connection(self.remote_node_id, self.command_endpoint)
            try:
                await asyncio.wait_for(self._accepted.wait(), timeout=self.config.accept_retry_interval)
            except asyncio.TimeoutError:
                continue
            if self._closed:
                raise ChannelClosed(f"Command channel to {self.remote_node_id} closed while connecting")
            logger.info("Command connection accepted from %s", self.remote_node_id)
            return
        logger.warning("Remote node %s never connected after %s attempts", self.remote_node_id, attempts)
        raise ConnectionTimeout(f"Remote party {self.remote_node_id} failed to attempt the command socket connection")

    async def run_command(
        self,
        command: str,
        unattended: bool = True,
        exec_mode: Union[ExecMode, str] = ExecMode.EXEC_FILE,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Send one command and wait for its command_result payload."""
        if self._command_lock.locked():
            raise ConnectionBusy(f"A command is already running on the connection to {self.remote_node_id}")
        async with self._command_lock:
            if not self.is_connected:
                raise ChannelClosed(f"No command connection to {self.remote_node_id}")
            try:
                payload = CommandPayload(command=command, unattended=unattended, exec_mode=exec_mode).model_dump(mode="json")
            except ValidationError as exc:
                raise ValueError(f"Invalid command: {exc}") from exc
            validator.validate_payload(MsgType.COMMAND, payload)
            message = RemoteMessage(type=MsgType.COMMAND, source=self.node_id, dest=self.remote_node_id, payload=payload)

            self._pending = asyncio.get_running_loop().create_future()
            try:
                await self._send_message(message)
                wait_for = timeout if timeout is not None else self.config.command_timeout
                try:
                    result: RemoteMessage = await asyncio.wait_for(self._pending, timeout=wait_for)
                except asyncio.TimeoutError as exc:
                    raise CommandTimeout(f"No command_result from {self.remote_node_id} within {wait_for}s") from exc
            finally:
                self._pending = None
            return dict(result.payload or {})

    def receive_message(self, data: bytes, expected_type: Union[MsgType, str]) -> RemoteMessage:
        """Parse one frame from the remote party, insisting on `expected_type`."""
        try:
            message = decode_message(data)
        except DecodeError as exc:
            raise ProtocolError(f"Remote party failed to send a valid response: {exc}") from exc
        if not passes_filter(message, self.node_id):
            raise ProtocolError(f"Message from {message.source} is not addressed to {self.node_id}")
        if message.type != expected_type:
            raise ProtocolError(f"Expected {expected_type}, got {message.type.value}")
        if message.type == MsgType.COMMAND_RESULT:
            validator.validate_payload(MsgType.COMMAND_RESULT, message.payload)
            try:
                CommandResultPayload.model_validate(message.payload or {})
            except ValidationError as exc:
                raise ProtocolError(f"Invalid command_result payload: {exc}") from exc
        return message

    async def close(self, discovery: Optional["DiscoveryChannel"] = None) -> None:
        """Notify the remote node first, then tear down the sockets."""
        self._closed = True
        if discovery is not None:
            discovery.broadcast_close_connection(self.remote_node_id)
        await self._close_sockets()
        logger.info("Command connection to %s closed", self.remote_node_id)

    async def _send_message(self, message: RemoteMessage) -> None:
        if self._writer is None:
            raise ChannelClosed(f"No command connection to {self.remote_node_id}")
        try:
            self._writer.write(encode_message(message))
            await self._writer.drain()
        except (ConnectionError, OSError) as exc:
            raise SocketError(f"Connection lost: {exc}") from exc
        logger.debug("Sent %s to %s", message.type.value, self.remote_node_id)

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peername = writer.get_extra_info("peername")
        if self._writer is not None or self._closed:
            logger.warning("Rejecting extra command connection from %s", peername)
            writer.close()
            return
        self._reader, self._writer = reader, writer
        self._reader_task = asyncio.current_task()
        self._accepted.set()
        try:
            await self._receive_loop(reader)
        finally:
            self._fail_pending(ChannelClosed(f"Remote node {self.remote_node_id} closed the command connection"))
            writer.close()

    async def _receive_loop(self, reader: asyncio.StreamReader) -> None:
        while True:
            try:
                data = await reader.read(READ_CHUNK_SIZE)
            except (ConnectionError, OSError) as exc:
                logger.warning("Command connection to %s failed: %s", self.remote_node_id, exc)
                return
            if not data:
                logger.info("Remote node %s closed the command connection", self.remote_node_id)
                return
            try:
                frames = self._frames.feed(data)
            except ProtocolError as exc:
                self._fail_pending(exc)
                continue
            for frame in frames:
                self._handle_frame(frame)

    def _handle_frame(self, frame: bytes) -> None:
        pending = self._pending
        if pending is None or pending.done():
            logger.warning("Dropping unsolicited message from %s", self.remote_node_id)
            return
        try:
            message = self.receive_message(frame, MsgType.COMMAND_RESULT)
        except ProtocolError as exc:
            logger.warning("Protocol error from %s: %s", self.remote_node_id, exc)
            pending.set_exception(exc)
            return
        pending.set_result(message)

    def _fail_pending(self, exc: Exception) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.set_exception(exc)

    async def _close_sockets(self) -> None:
        self._closed = True
        self._accepted.set()
        self._fail_pending(ChannelClosed(f"Command channel to {self.remote_node_id} closed"))
        if self._writer is not None:
            self._writer.close()
            with contextlib.suppress(ConnectionError, OSError):
                await self._writer.wait_closed()
            self._writer = None
            self._reader = None
        if self._reader_task is not None and self._reader_task is not asyncio.current_task():
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
            self._reader_task = None
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        self._frames.reset()


__all__ = ["CommandChannel", "READ_CHUNK_SIZE"]

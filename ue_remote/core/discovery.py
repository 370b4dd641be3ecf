from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
import time
from typing import Any, List, Optional, Tuple

from pydantic import ValidationError

from ue_protocol import validator
from ue_protocol.commands import UDP, MsgType, transport_for
from ue_protocol.errors import DecodeError, RemoteExecutionError, SocketError
from ue_protocol.framing import decode_message, encode_message, passes_filter
from ue_protocol.messages import NodeAttributes, OpenConnectionPayload, RemoteMessage
from ue_remote.config import RemoteExecutionConfig

from .registry import Clock, NodeRecord, NodeRegistry

logger = logging.getLogger(__name__)


class DiscoveryChannel(asyncio.DatagramProtocol):
    """
    UDP multicast channel: pings for nodes, ingests their pongs, and carries the
    open/close connection requests for command channels.
    """

    def __init__(self, config: RemoteExecutionConfig, node_id: str, clock: Clock = time.monotonic) -> None:
        self.config = config
        self.node_id = node_id
        self._clock = clock
        self.registry: Optional[NodeRegistry] = None
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._sock: Optional[socket.socket] = None
        self._task: Optional[asyncio.Task] = None
        self._last_ping: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self._transport is not None

    @property
    def remote_nodes(self) -> List[NodeRecord]:
        return self.registry.snapshot() if self.registry else []

    async def open(self) -> None:
        if self.is_open:
            return
        sock = self._create_socket()
        self.registry = NodeRegistry(self.config.node_timeout, clock=self._clock)
        self._last_ping = None
        loop = asyncio.get_running_loop()
        try:
            await loop.create_datagram_endpoint(lambda: self, sock=sock)
        except OSError as exc:
            sock.close()
            self.registry = None
            raise SocketError(f"Failed to open discovery endpoint: {exc}") from exc
        self._sock = sock
        self._task = asyncio.create_task(self._run(), name="discovery-ping")
        logger.info(
            "Discovery listening on %s:%s (group %s, ttl %s)",
            self.config.multicast_bind_address,
            self.config.multicast_group_port,
            self.config.multicast_group_host,
            self.config.multicast_ttl,
        )

    async def close(self) -> None:
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._sock is not None and self._transport is not None:
            with contextlib.suppress(OSError):
                self._sock.setsockopt(socket.IPPROTO_IP, socket.IP_DROP_MEMBERSHIP, self._membership())
        if self._transport is not None:
            self._transport.close()
            self._transport = None
        self._sock = None
        if self.registry is not None:
            self.registry.clear()
            self.registry = None
        logger.info("Discovery channel closed")

    # -- broadcasts -----------------------------------------------------------------

    def ping(self, now: Optional[float] = None) -> bool:
        """Broadcast a ping unless one went out less than a ping interval ago."""
        now = self._clock() if now is None else now
        if self._last_ping is not None and now - self._last_ping < self.config.ping_interval:
            return False
        self._last_ping = now
        self._broadcast_message(RemoteMessage(type=MsgType.PING, source=self.node_id))
        return True

    def broadcast_open_connection(self, remote_node_id: str, command_endpoint: Optional[Tuple[str, int]] = None) -> None:
        """Ask `remote_node_id` to dial back to our command endpoint."""
        host, port = command_endpoint or self.config.command_endpoint
        payload = OpenConnectionPayload(command_ip=host, command_port=port).model_dump()
        validator.validate_payload(MsgType.OPEN_CONNECTION, payload)
        self._broadcast_message(
            RemoteMessage(type=MsgType.OPEN_CONNECTION, source=self.node_id, dest=remote_node_id, payload=payload)
        )

    def broadcast_close_connection(self, remote_node_id: str) -> None:
        """Tell `remote_node_id` to drop its command connection. Best-effort."""
        try:
            self._broadcast_message(RemoteMessage(type=MsgType.CLOSE_CONNECTION, source=self.node_id, dest=remote_node_id))
        except RemoteExecutionError as exc:
            logger.warning("close_connection to %s not sent: %s", remote_node_id, exc)

    def _broadcast_message(self, message: RemoteMessage) -> None:
        if transport_for(message.type) != UDP:
            raise ValueError(f"{message.type.value} messages are not sent over UDP")
        if self._transport is None:
            raise SocketError("Discovery channel is not open")
        data = encode_message(message)
        try:
            self._transport.sendto(data, self.config.multicast_group_endpoint)
        except OSError as exc:
            logger.warning("Broadcast of %s failed: %s", message.type.value, exc)

    # -- periodic work ----------------------------------------------------------------

    def tick(self, now: Optional[float] = None) -> None:
        now = self._clock() if now is None else now
        self.ping(now)
        if self.registry is not None:
            self.registry.sweep(now)

    async def _run(self) -> None:
        while True:
            try:
                self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("Discovery tick failed: %s", exc)
            await asyncio.sleep(self._next_ping_delay())

    def _next_ping_delay(self) -> float:
        # asyncio may wake a little early; the skipped ping then goes out on a short follow-up tick
        if self._last_ping is None:
            return self.config.ping_interval
        return max(self._last_ping + self.config.ping_interval - self._clock(), 0.0)

    # -- inbound ----------------------------------------------------------------------

    def handle_datagram(self, data: bytes, now: Optional[float] = None) -> None:
        try:
            message = decode_message(data)
        except DecodeError as exc:
            logger.debug("Dropping datagram: %s", exc)
            return
        if not passes_filter(message, self.node_id):
            return
        if message.type == MsgType.PONG:
            self._handle_pong(message, now)
            return
        logger.debug("Unhandled remote execution message type %s", message.type.value)

    def _handle_pong(self, message: RemoteMessage, now: Optional[float]) -> None:
        if self.registry is None:
            return
        try:
            attributes = NodeAttributes.model_validate(message.payload or {})
        except ValidationError as exc:
            logger.debug("Dropping pong from %s: %s", message.source, exc)
            return
        self.registry.upsert(message.source, attributes, now)

    # -- asyncio.DatagramProtocol -------------------------------------------------------

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._transport = transport  # type: ignore[assignment]

    def datagram_received(self, data: bytes, addr: Any) -> None:
        self.handle_datagram(data)

    def error_received(self, exc: Exception) -> None:
        logger.warning("Discovery socket error: %s", exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc:
            logger.warning("Discovery socket lost: %s", exc)
        self._transport = None

    # -- socket setup -----------------------------------------------------------------

    def _membership(self) -> bytes:
        return socket.inet_aton(self.config.multicast_group_host) + socket.inet_aton(self.config.multicast_bind_address)

    def _create_socket(self) -> socket.socket:
        bind_address = self.config.multicast_bind_address
        group, port = self.config.multicast_group_endpoint
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, "SO_REUSEPORT"):
                with contextlib.suppress(OSError):
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, self.config.multicast_ttl)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, socket.inet_aton(bind_address))
            sock.bind((bind_address, port))
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, self._membership())
            sock.setblocking(False)
        except OSError as exc:
            sock.close()
            raise SocketError(f"Failed to bind/join multicast group {group}:{port}: {exc}") from exc
        return sock


__all__ = ["DiscoveryChannel"]

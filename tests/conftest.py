from __future__ import annotations

import asyncio
import socket
from collections.abc import Callable
from typing import Any, Dict, List, Optional, Tuple, Union

import pytest

from ue_protocol import FrameBuffer, MsgType, RemoteMessage, decode_message, encode_message
from ue_remote.config import RemoteExecutionConfig
from ue_remote.core.discovery import DiscoveryChannel
from ue_remote.core.registry import NodeRegistry

Responder = Callable[[RemoteMessage], Union[Dict[str, Any], bytes, None]]


class FakeEngine:
    """Stands in for a remote engine: dials back on open_connection and answers commands."""

    def __init__(self, node_id: str = "n1", responder: Optional[Responder] = None, dial_back: bool = True) -> None:
        self.node_id = node_id
        self.responder = responder or (lambda message: {"success": True, "result": "None"})
        self.dial_back = dial_back
        self.received: List[RemoteMessage] = []
        self.close_requests = 0
        self.writer: Optional[asyncio.StreamWriter] = None
        self._task: Optional[asyncio.Task] = None

    def on_datagram(self, message: RemoteMessage) -> None:
        if message.dest != self.node_id:
            return
        if message.type == MsgType.CLOSE_CONNECTION:
            self.close_requests += 1
        elif message.type == MsgType.OPEN_CONNECTION and self.dial_back and self._task is None:
            payload = message.payload or {}
            self._task = asyncio.get_running_loop().create_task(
                self._serve(payload["command_ip"], payload["command_port"])
            )

    async def hang_up(self) -> None:
        if self.writer is not None:
            self.writer.close()

    async def _serve(self, host: str, port: int) -> None:
        reader, writer = await asyncio.open_connection(host, port)
        self.writer = writer
        frames = FrameBuffer()
        try:
            while True:
                data = await reader.read(65536)
                if not data:
                    break
                for frame in frames.feed(data):
                    message = decode_message(frame)
                    self.received.append(message)
                    reply = self.responder(message)
                    if reply is None:
                        continue
                    if not isinstance(reply, bytes):
                        reply = encode_message(
                            RemoteMessage(
                                type=MsgType.COMMAND_RESULT, source=self.node_id, dest=message.source, payload=reply
                            )
                        )
                    writer.write(reply)
                    await writer.drain()
        except (ConnectionError, OSError):
            pass
        finally:
            writer.close()


class FakeTransport:
    """Datagram transport that records sends and hands them to fake engines."""

    def __init__(self, engines: Optional[List[FakeEngine]] = None) -> None:
        self.engines = engines if engines is not None else []
        self.sent: List[Tuple[bytes, Any]] = []
        self.closed = False

    def sendto(self, data: bytes, addr: Any = None) -> None:
        self.sent.append((data, addr))
        message = decode_message(data)
        for engine in self.engines:
            engine.on_datagram(message)

    def messages(self) -> List[RemoteMessage]:
        return [decode_message(data) for data, _ in self.sent]

    def close(self) -> None:
        self.closed = True

    def is_closing(self) -> bool:
        return self.closed


def free_tcp_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def make_config() -> Callable[..., RemoteExecutionConfig]:
    def _make(**overrides: Any) -> RemoteExecutionConfig:
        values: Dict[str, Any] = {
            "command_host": "127.0.0.1",
            "command_port": free_tcp_port(),
            "accept_retry_count": 3,
            "accept_retry_interval": 0.2,
            "command_timeout": 2.0,
        }
        values.update(overrides)
        return RemoteExecutionConfig(**values)

    return _make


@pytest.fixture
def network(monkeypatch: pytest.MonkeyPatch) -> FakeTransport:
    """Replace the multicast socket of every DiscoveryChannel with an in-memory transport."""
    transport = FakeTransport()

    async def _open(self: DiscoveryChannel) -> None:
        self.registry = NodeRegistry(self.config.node_timeout, clock=self._clock)
        self.connection_made(transport)

    monkeypatch.setattr(DiscoveryChannel, "open", _open)
    return transport


@pytest.fixture
def add_engine(network: FakeTransport) -> Callable[..., FakeEngine]:
    def _add(node_id: str = "n1", **kwargs: Any) -> FakeEngine:
        engine = FakeEngine(node_id, **kwargs)
        network.engines.append(engine)
        return engine

    return _add

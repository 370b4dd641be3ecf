from __future__ import annotations

import asyncio
import logging
import uuid
from enum import StrEnum
from typing import Any, Dict, List, Optional, Union

from ue_protocol.commands import ExecMode
from ue_protocol.errors import CommandFailed, ErrorCode, RemoteExecutionError
from ue_remote.config import RemoteExecutionConfig

from .command import CommandChannel
from .discovery import DiscoveryChannel
from .registry import NodeRecord

logger = logging.getLogger(__name__)


class SessionError(RemoteExecutionError):
    """The session is not in a state that allows the requested operation."""

    default_code = ErrorCode.SESSION_STATE


class SessionState(StrEnum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    CONNECTED = "connected"
    STOPPED = "stopped"


class RemoteExecutionSession:
    """
    A remote execution session. Discovers remote nodes (engine instances running
    Python) and opens a command connection to one of them at a time.

    The node ID is generated once and kept for the lifetime of the object, across
    stop/start cycles.
    """

    def __init__(self, config: Optional[RemoteExecutionConfig] = None, node_id: Optional[str] = None) -> None:
        self.config = config or RemoteExecutionConfig()
        self._node_id = node_id or str(uuid.uuid4())
        self._discovery: Optional[DiscoveryChannel] = None
        self._command: Optional[CommandChannel] = None
        self._stopped = False

    async def __aenter__(self) -> "RemoteExecutionSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    @property
    def node_id(self) -> str:
        return self._node_id

    @property
    def discovery(self) -> Optional[DiscoveryChannel]:
        return self._discovery

    @property
    def state(self) -> SessionState:
        if self._discovery is None:
            return SessionState.STOPPED if self._stopped else SessionState.IDLE
        if self.has_command_connection():
            return SessionState.CONNECTED
        return SessionState.DISCOVERING

    @property
    def remote_node_id(self) -> Optional[str]:
        return self._command.remote_node_id if self._command else None

    async def start(self) -> None:
        """Begin discovering remote nodes."""
        if self._discovery is not None:
            return
        discovery = DiscoveryChannel(self.config, self._node_id)
        await discovery.open()
        self._discovery = discovery
        self._stopped = False
        logger.info("Remote execution session %s started", self._node_id)

    async def stop(self) -> None:
        """Close any command connection, then end discovery."""
        await self.disconnect()
        if self._discovery is not None:
            await self._discovery.close()
            self._discovery = None
            self._stopped = True
            logger.info("Remote execution session %s stopped", self._node_id)

    def list_nodes(self) -> List[Dict[str, Any]]:
        return [record.to_dict() for record in self.nodes()]

    def nodes(self) -> List[NodeRecord]:
        if self._discovery is None:
            return []
        return self._discovery.remote_nodes

    async def wait_for_nodes(self, timeout: float = 10.0) -> List[Dict[str, Any]]:
        """Wait until at least one node has answered, then return the node list."""
        if self._discovery is None or self._discovery.registry is None:
            raise SessionError("Session is not started")
        registry = self._discovery.registry
        loop = asyncio.get_running_loop()
        found = asyncio.Event()

        def _on_found(_record: NodeRecord) -> None:
            loop.call_soon_threadsafe(found.set)

        registry.add_listener(_on_found)
        try:
            if not len(registry):
                await asyncio.wait_for(found.wait(), timeout=timeout)
        finally:
            registry.remove_listener(_on_found)
        return self.list_nodes()

    def has_command_connection(self) -> bool:
        return self._command is not None and self._command.is_connected

    async def connect(self, remote_node_id: str) -> None:
        """Open a command connection to `remote_node_id`, closing any current one first."""
        if self._discovery is None:
            raise SessionError("Session must be started before connecting")
        await self.disconnect()
        channel = CommandChannel(self.config, self._node_id, remote_node_id)
        self._command = channel
        try:
            await channel.open(self._discovery)
        except BaseException:
            if self._command is channel:
                self._command = None
            raise
        logger.info("Connected to node %s", remote_node_id)

    async def disconnect(self) -> None:
        """Close the command connection, if any."""
        channel, self._command = self._command, None
        if channel is not None:
            await channel.close(self._discovery)

    async def execute(
        self,
        command: str,
        unattended: bool = True,
        exec_mode: Union[ExecMode, str] = ExecMode.EXEC_FILE,
        raise_on_failure: bool = False,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Run `command` on the connected node.

        Args:
            command: Python source, a statement, or a file path (with arguments) depending on `exec_mode`.
            unattended: Suppress engine UI (dialogs, progress) while the command runs.
            exec_mode: One of the `ExecMode` tokens.
            raise_on_failure: Raise `CommandFailed` instead of returning an unsuccessful result.
            timeout: Seconds to wait for the result; defaults to `config.command_timeout`.

        Returns:
            The command_result payload, at least ``{"success": bool, "result": ...}``.
        """
        if self._command is None or not self.has_command_connection():
            raise SessionError("No command connection; call connect() first")
        result = await self._command.run_command(command, unattended=unattended, exec_mode=exec_mode, timeout=timeout)
        if raise_on_failure and not result.get("success"):
            raise CommandFailed(result.get("result"), result)
        return result


__all__ = ["RemoteExecutionSession", "SessionError", "SessionState"]

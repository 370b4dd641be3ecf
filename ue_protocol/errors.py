from __future__ import annotations

from enum import IntEnum
from typing import Any, Dict, Optional


class ErrorCode(IntEnum):
    """Stable error codes for every failure the protocol engine reports."""

    INVALID_JSON = 1001
    VERSION_MISMATCH = 1002
    MAGIC_MISMATCH = 1003
    PROTOCOL_ERROR = 1004
    CONNECTION_TIMEOUT = 2001
    CONNECTION_BUSY = 2002
    CHANNEL_CLOSED = 2003
    SOCKET_ERROR = 2004
    COMMAND_TIMEOUT = 3001
    COMMAND_FAILED = 3002
    SESSION_STATE = 4001


class RemoteExecutionError(Exception):
    """Structured exception carrying an error code + message."""

    default_code = ErrorCode.PROTOCOL_ERROR

    def __init__(self, message: str = "", code: Optional[ErrorCode] = None) -> None:
        self.code = code if code is not None else self.default_code
        self.message = message
        super().__init__(f"{self.code.name} ({int(self.code)}): {message}")


class DecodeError(RemoteExecutionError):
    """Inbound bytes are not a message of this protocol."""

    default_code = ErrorCode.INVALID_JSON


class InvalidJSON(DecodeError):
    default_code = ErrorCode.INVALID_JSON


class VersionMismatch(DecodeError):
    default_code = ErrorCode.VERSION_MISMATCH


class MagicMismatch(DecodeError):
    default_code = ErrorCode.MAGIC_MISMATCH


class ProtocolError(RemoteExecutionError):
    """The remote party sent something other than the expected response."""

    default_code = ErrorCode.PROTOCOL_ERROR


class ConnectionTimeout(RemoteExecutionError):
    default_code = ErrorCode.CONNECTION_TIMEOUT


class ConnectionBusy(RemoteExecutionError):
    default_code = ErrorCode.CONNECTION_BUSY


class ChannelClosed(RemoteExecutionError):
    """A pending wait was abandoned because the channel went away."""

    default_code = ErrorCode.CHANNEL_CLOSED


class SocketError(RemoteExecutionError):
    default_code = ErrorCode.SOCKET_ERROR


class CommandTimeout(RemoteExecutionError):
    default_code = ErrorCode.COMMAND_TIMEOUT


class CommandFailed(RemoteExecutionError):
    """The engine ran the command and reported failure."""

    default_code = ErrorCode.COMMAND_FAILED

    def __init__(self, result: Any, payload: Optional[Dict[str, Any]] = None) -> None:
        self.result = result
        self.payload = payload or {}
        super().__init__(f"Remote Python command failed: {result}")


__all__ = [
    "ErrorCode",
    "RemoteExecutionError",
    "DecodeError",
    "InvalidJSON",
    "VersionMismatch",
    "MagicMismatch",
    "ProtocolError",
    "ConnectionTimeout",
    "ConnectionBusy",
    "ChannelClosed",
    "SocketError",
    "CommandTimeout",
    "CommandFailed",
]

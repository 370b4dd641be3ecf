from __future__ import annotations

from enum import StrEnum
from typing import Dict, Iterable, Union


class MsgType(StrEnum):
    """Message types understood by the remote engine."""

    # Discovery (UDP)
    PING = "ping"
    PONG = "pong"
    OPEN_CONNECTION = "open_connection"
    CLOSE_CONNECTION = "close_connection"

    # Command (TCP)
    COMMAND = "command"
    COMMAND_RESULT = "command_result"


class ExecMode(StrEnum):
    """
    How the engine runs a command.
    Names must match the engine's own execution-mode tokens.
    """

    # Literal script with multiple statements, or a file path with optional arguments
    EXEC_FILE = "ExecuteFile"
    # Single statement, result is printed, cannot run files
    EXEC_STATEMENT = "ExecuteStatement"
    # Single statement, result is returned, cannot run files
    EVAL_STATEMENT = "EvaluateStatement"


UDP = "udp"
TCP = "tcp"

MESSAGE_TRANSPORTS: Dict[str, str] = {
    MsgType.PING.value: UDP,
    MsgType.PONG.value: UDP,
    MsgType.OPEN_CONNECTION.value: UDP,
    MsgType.CLOSE_CONNECTION.value: UDP,
    MsgType.COMMAND.value: TCP,
    MsgType.COMMAND_RESULT.value: TCP,
}


def normalize_type(msg_type: Union[str, MsgType]) -> str:
    """Convert enum/string into canonical message type text."""
    return msg_type.value if isinstance(msg_type, MsgType) else str(msg_type)


def is_message_type(value: str) -> bool:
    """Check if `value` is a known message type."""
    try:
        MsgType(value)
        return True
    except ValueError:
        return False


def transport_for(msg_type: Union[str, MsgType]) -> str:
    return MESSAGE_TRANSPORTS[normalize_type(msg_type)]


def types_for_transport(transport: str) -> Iterable[str]:
    """Yield message types carried by the given transport."""
    for msg_type, carrier in MESSAGE_TRANSPORTS.items():
        if carrier == transport:
            yield msg_type


__all__ = [
    "MsgType",
    "ExecMode",
    "UDP",
    "TCP",
    "MESSAGE_TRANSPORTS",
    "normalize_type",
    "is_message_type",
    "transport_for",
    "types_for_transport",
]

"""
Wire protocol for driving a remote Python engine: message types, envelope models,
framing helpers, and validation utilities shared by the UDP and TCP transports.
"""

from .commands import ExecMode, MsgType, is_message_type, normalize_type, transport_for, types_for_transport
from .constants import ENCODING, PROTOCOL_MAGIC, PROTOCOL_VERSION
from .errors import (
    ChannelClosed,
    CommandFailed,
    CommandTimeout,
    ConnectionBusy,
    ConnectionTimeout,
    DecodeError,
    ErrorCode,
    InvalidJSON,
    MagicMismatch,
    ProtocolError,
    RemoteExecutionError,
    SocketError,
    VersionMismatch,
)
from .framing import FrameBuffer, decode_message, encode_message, passes_filter
from .messages import CommandPayload, CommandResultPayload, NodeAttributes, OpenConnectionPayload, RemoteMessage
from .validator import load_schema, validate_header, validate_msg, validate_payload

__all__ = [
    "ExecMode",
    "MsgType",
    "is_message_type",
    "normalize_type",
    "transport_for",
    "types_for_transport",
    "ENCODING",
    "PROTOCOL_MAGIC",
    "PROTOCOL_VERSION",
    "ChannelClosed",
    "CommandFailed",
    "CommandTimeout",
    "ConnectionBusy",
    "ConnectionTimeout",
    "DecodeError",
    "ErrorCode",
    "InvalidJSON",
    "MagicMismatch",
    "ProtocolError",
    "RemoteExecutionError",
    "SocketError",
    "VersionMismatch",
    "FrameBuffer",
    "decode_message",
    "encode_message",
    "passes_filter",
    "CommandPayload",
    "CommandResultPayload",
    "NodeAttributes",
    "OpenConnectionPayload",
    "RemoteMessage",
    "load_schema",
    "validate_header",
    "validate_msg",
    "validate_payload",
]

from .command import CommandChannel
from .discovery import DiscoveryChannel
from .registry import NodeRecord, NodeRegistry
from .session import RemoteExecutionSession, SessionError, SessionState

__all__ = [
    "CommandChannel",
    "DiscoveryChannel",
    "NodeRecord",
    "NodeRegistry",
    "RemoteExecutionSession",
    "SessionError",
    "SessionState",
]

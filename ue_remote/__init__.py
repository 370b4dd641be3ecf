"""
Client for a remote Python engine: discovers engine nodes over UDP multicast and
runs commands on one of them over a TCP connection the node dials back into.
"""

from .config import ConfigError, RemoteExecutionConfig, load_config
from .core import RemoteExecutionSession, SessionError, SessionState

__all__ = [
    "ConfigError",
    "RemoteExecutionConfig",
    "load_config",
    "RemoteExecutionSession",
    "SessionError",
    "SessionState",
]

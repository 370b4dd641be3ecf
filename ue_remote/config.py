from __future__ import annotations

import ipaddress
import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv

from ue_protocol.constants import (
    DEFAULT_COMMAND_ENDPOINT,
    DEFAULT_MULTICAST_BIND_ADDRESS,
    DEFAULT_MULTICAST_GROUP_ENDPOINT,
    DEFAULT_MULTICAST_TTL,
)

ENV_PREFIX = "UE_REMOTE_"

# Every interval/timeout is in seconds.
DEFAULT_CONFIG: Dict[str, Any] = {
    "multicast_group_host": DEFAULT_MULTICAST_GROUP_ENDPOINT[0],
    "multicast_group_port": DEFAULT_MULTICAST_GROUP_ENDPOINT[1],
    "multicast_ttl": DEFAULT_MULTICAST_TTL,
    "multicast_bind_address": DEFAULT_MULTICAST_BIND_ADDRESS,
    "command_host": DEFAULT_COMMAND_ENDPOINT[0],
    "command_port": DEFAULT_COMMAND_ENDPOINT[1],
    "ping_interval": 1.0,
    "node_timeout": 5.0,
    "accept_retry_count": 6,
    "accept_retry_interval": 5.0,
    "command_timeout": 60.0,
    "log_level": "INFO",
}

CLIENT_CONFIG: Dict[str, Any] = DEFAULT_CONFIG.copy()


class ConfigError(Exception):
    """Raised when configuration values are invalid."""

    pass


@dataclass(frozen=True)
class RemoteExecutionConfig:
    """
    Settings for one remote execution session. Frozen: a running session never sees
    its settings change underneath it.

    Time values are seconds:
        ping_interval: minimum spacing between two discovery pings.
        node_timeout: a node is dropped once it has not answered for longer than this.
        accept_retry_interval: wait per accept attempt while opening a command channel.
        command_timeout: default bound on waiting for a command_result.

    `command_port` 0 binds an ephemeral port; the port actually bound is what gets
    advertised to the remote node.
    """

    multicast_group_host: str = DEFAULT_CONFIG["multicast_group_host"]
    multicast_group_port: int = DEFAULT_CONFIG["multicast_group_port"]
    multicast_ttl: int = DEFAULT_CONFIG["multicast_ttl"]
    multicast_bind_address: str = DEFAULT_CONFIG["multicast_bind_address"]
    command_host: str = DEFAULT_CONFIG["command_host"]
    command_port: int = DEFAULT_CONFIG["command_port"]
    ping_interval: float = DEFAULT_CONFIG["ping_interval"]
    node_timeout: float = DEFAULT_CONFIG["node_timeout"]
    accept_retry_count: int = DEFAULT_CONFIG["accept_retry_count"]
    accept_retry_interval: float = DEFAULT_CONFIG["accept_retry_interval"]
    command_timeout: float = DEFAULT_CONFIG["command_timeout"]
    log_level: str = DEFAULT_CONFIG["log_level"]

    def __post_init__(self) -> None:
        _validate(self)

    @property
    def multicast_group_endpoint(self) -> Tuple[str, int]:
        return (self.multicast_group_host, self.multicast_group_port)

    @property
    def command_endpoint(self) -> Tuple[str, int]:
        return (self.command_host, self.command_port)

    @classmethod
    def from_dict(cls, values: Optional[Mapping[str, Any]] = None) -> "RemoteExecutionConfig":
        values = values if values is not None else CLIENT_CONFIG
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in values.items():
            if key in known:
                kwargs[key] = _coerce_type(value, type(DEFAULT_CONFIG[key]))
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def load_config(env_path: str = ".env") -> RemoteExecutionConfig:
    """Load configuration from env file/environment variables."""
    if os.path.exists(env_path):
        load_dotenv(env_path)

    for key, default_value in DEFAULT_CONFIG.items():
        env_key = f"{ENV_PREFIX}{key.upper()}"
        value = os.getenv(env_key, default_value)
        CLIENT_CONFIG[key] = _coerce_type(value, type(default_value))

    config = RemoteExecutionConfig.from_dict(CLIENT_CONFIG)
    logging.getLogger().setLevel(config.log_level.upper())
    return config


def _coerce_type(value: Any, target_type: type) -> Any:
    if isinstance(value, target_type) and not (target_type is int and isinstance(value, bool)):
        return value
    try:
        if target_type is bool:
            return str(value).lower() in ("1", "true", "yes", "on")
        if target_type is float and isinstance(value, int) and not isinstance(value, bool):
            return float(value)
        return target_type(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Cannot convert {value!r} to {target_type.__name__}") from exc


def _validate(config: RemoteExecutionConfig) -> None:
    if not (1 <= config.multicast_group_port <= 65535):
        raise ConfigError("multicast_group_port must be between 1 and 65535")
    if not (0 <= config.command_port <= 65535):
        raise ConfigError("command_port must be between 0 and 65535")
    if not (0 <= config.multicast_ttl <= 255):
        raise ConfigError("multicast_ttl must be between 0 and 255")
    try:
        group = ipaddress.IPv4Address(config.multicast_group_host)
        ipaddress.IPv4Address(config.multicast_bind_address)
    except ipaddress.AddressValueError as exc:
        raise ConfigError(f"Invalid multicast address: {exc}") from exc
    if not group.is_multicast:
        raise ConfigError(f"{config.multicast_group_host} is not a multicast group address")
    if not config.command_host:
        raise ConfigError("command_host must not be empty")
    for name in ("ping_interval", "node_timeout", "accept_retry_interval", "command_timeout"):
        if getattr(config, name) <= 0:
            raise ConfigError(f"{name} must be positive")
    if config.node_timeout < config.ping_interval:
        raise ConfigError("node_timeout must not be shorter than ping_interval")
    if config.accept_retry_count < 1:
        raise ConfigError("accept_retry_count must be at least 1")
    if str(config.log_level).upper() not in logging.getLevelNamesMapping():
        raise ConfigError(f"Unknown log_level {config.log_level}")


__all__ = ["CLIENT_CONFIG", "DEFAULT_CONFIG", "ENV_PREFIX", "ConfigError", "RemoteExecutionConfig", "load_config"]

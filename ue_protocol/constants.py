"""Protocol-wide constants shared by the discovery and command transports."""

PROTOCOL_VERSION = 1
PROTOCOL_MAGIC = "ue_py"
ENCODING = "utf-8"

DEFAULT_MULTICAST_TTL = 0  # 0 keeps traffic on the local host, 1 on the local subnet
DEFAULT_MULTICAST_GROUP_ENDPOINT = ("239.0.0.1", 6766)
DEFAULT_MULTICAST_BIND_ADDRESS = "0.0.0.0"
DEFAULT_COMMAND_ENDPOINT = ("127.0.0.1", 6776)

MAX_FRAME_SIZE = 8 * 1024 * 1024  # upper bound for one command/command_result frame

__all__ = [
    "PROTOCOL_VERSION",
    "PROTOCOL_MAGIC",
    "ENCODING",
    "DEFAULT_MULTICAST_TTL",
    "DEFAULT_MULTICAST_GROUP_ENDPOINT",
    "DEFAULT_MULTICAST_BIND_ADDRESS",
    "DEFAULT_COMMAND_ENDPOINT",
    "MAX_FRAME_SIZE",
]

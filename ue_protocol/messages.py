from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .commands import ExecMode, MsgType
from .constants import PROTOCOL_MAGIC, PROTOCOL_VERSION
from .errors import InvalidJSON


class RemoteMessage(BaseModel):
    """
    Envelope shared by the UDP and TCP transports.

    On the wire the payload lives under ``data``; ``payload`` is accepted as an alias
    when decoding.
    """

    model_config = ConfigDict(populate_by_name=True)

    version: int = Field(default=PROTOCOL_VERSION, description="Protocol version")
    magic: str = Field(default=PROTOCOL_MAGIC, description="Protocol magic identifier")
    type: MsgType = Field(..., description="ping / pong / open_connection / ...")
    source: str = Field(..., min_length=1, description="Node ID of the sender")
    dest: Optional[str] = Field(default=None, description="Target node ID, None for everyone")
    payload: Optional[Dict[str, Any]] = Field(
        default=None,
        validation_alias=AliasChoices("data", "payload"),
        serialization_alias="data",
        description="Type specific payload",
    )

    @field_validator("dest", mode="before")
    @classmethod
    def _blank_dest_is_broadcast(cls, value: Any) -> Any:
        return value or None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemoteMessage":
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise InvalidJSON(f"Message validation failed: {exc}") from exc

    def to_dict(self) -> Dict[str, Any]:
        envelope: Dict[str, Any] = {
            "version": self.version,
            "magic": self.magic,
            "type": self.type.value,
            "source": self.source,
        }
        if self.dest:
            envelope["dest"] = self.dest
        if self.payload is not None:
            envelope["data"] = self.payload
        return envelope


class NodeAttributes(BaseModel):
    """Data a node reports about itself in its pong."""

    model_config = ConfigDict(extra="allow")

    user: Optional[str] = None
    machine: Optional[str] = None
    engine_version: Optional[str] = None
    engine_root: Optional[str] = None
    project_root: Optional[str] = None
    project_name: Optional[str] = None

    @field_validator("user", "machine", "engine_version", "engine_root", "project_root", "project_name", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> Any:
        return value if value is None or isinstance(value, str) else str(value)


class OpenConnectionPayload(BaseModel):
    command_ip: str
    command_port: int


class CommandPayload(BaseModel):
    command: str
    unattended: bool = True
    exec_mode: ExecMode = ExecMode.EXEC_FILE


class CommandResultPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    success: bool
    result: Any = None


__all__ = [
    "RemoteMessage",
    "NodeAttributes",
    "OpenConnectionPayload",
    "CommandPayload",
    "CommandResultPayload",
]

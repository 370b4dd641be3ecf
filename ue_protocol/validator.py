from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Union

import jsonschema

from .commands import MsgType, normalize_type
from .constants import PROTOCOL_MAGIC, PROTOCOL_VERSION
from .errors import InvalidJSON, MagicMismatch, ProtocolError, VersionMismatch

SCHEMA_DIR = Path(__file__).parent / "schemas"

ENVELOPE_SCHEMA = "envelope.json"

# Mapping message type -> payload schema filename (relative to SCHEMA_DIR)
SCHEMA_REGISTRY: Dict[str, str] = {
    MsgType.OPEN_CONNECTION.value: "open_connection.json",
    MsgType.COMMAND.value: "command.json",
    MsgType.COMMAND_RESULT.value: "command_result.json",
}


@lru_cache(maxsize=16)
def _load(filename: str) -> dict:
    with (SCHEMA_DIR / filename).open("r", encoding="utf-8") as fp:
        return json.load(fp)


def load_schema(msg_type: Union[str, MsgType]) -> Optional[dict]:
    """Load the payload schema for a message type if one exists."""
    filename = SCHEMA_REGISTRY.get(normalize_type(msg_type))
    if not filename:
        return None
    return _load(filename)


def validate_header(msg: Dict[str, Any]) -> None:
    """Reject anything that is not this protocol before looking at other fields."""
    version = msg.get("version")
    if isinstance(version, bool) or version != PROTOCOL_VERSION:
        raise VersionMismatch(f'"version" is incorrect (got {version!r}, expected {PROTOCOL_VERSION})')
    magic = msg.get("magic")
    if magic != PROTOCOL_MAGIC:
        raise MagicMismatch(f'"magic" is incorrect (got {magic!r}, expected {PROTOCOL_MAGIC!r})')


def validate_msg(msg: Dict[str, Any]) -> None:
    """Run envelope validations (version + magic + json-schema)."""
    validate_header(msg)
    try:
        jsonschema.validate(instance=msg, schema=_load(ENVELOPE_SCHEMA))
    except jsonschema.ValidationError as exc:
        raise InvalidJSON(f"Envelope validation failed: {exc.message}") from exc


def validate_payload(msg_type: Union[str, MsgType], payload: Optional[Dict[str, Any]]) -> None:
    schema = load_schema(msg_type)
    if not schema:
        return
    try:
        jsonschema.validate(instance=payload if payload is not None else {}, schema=schema)
    except jsonschema.ValidationError as exc:
        raise ProtocolError(f"Invalid {normalize_type(msg_type)} payload: {exc.message}") from exc


__all__ = ["load_schema", "validate_header", "validate_msg", "validate_payload"]

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Union

from .constants import ENCODING, MAX_FRAME_SIZE
from .errors import InvalidJSON, ProtocolError
from .messages import RemoteMessage
from .validator import validate_msg

_WHITESPACE = b" \t\r\n"


def encode_message(message: Union[RemoteMessage, Dict[str, Any]]) -> bytes:
    """Encode a message into compact UTF-8 JSON."""
    if isinstance(message, dict):
        message = RemoteMessage.from_dict(message)
    try:
        json_str = json.dumps(message.to_dict(), ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"Encode failed: {exc}") from exc
    return json_str.encode(ENCODING)


def decode_message(data: bytes) -> RemoteMessage:
    """Decode bytes into a message, validating version and magic first."""
    try:
        raw = json.loads(data.decode(ENCODING))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidJSON(f"Decode failed: {exc}") from exc
    if not isinstance(raw, dict):
        raise InvalidJSON(f"Expected a JSON object, got {type(raw).__name__}")
    validate_msg(raw)
    return RemoteMessage.from_dict(raw)


def passes_filter(message: RemoteMessage, node_id: str) -> bool:
    """True if `node_id` should react to `message`: not its own, and addressed to it or to everyone."""
    return message.source != node_id and (not message.dest or message.dest == node_id)


class FrameBuffer:
    """
    Splits a TCP byte stream into JSON object frames.

    The engine writes bare JSON objects back to back, so frame boundaries are found by
    tracking brace depth outside of string literals. Multi-byte UTF-8 sequences never
    contain ASCII bytes, so scanning raw bytes is safe.
    """

    def __init__(self, max_frame_size: int = MAX_FRAME_SIZE) -> None:
        self.max_frame_size = max_frame_size
        self._buffer = bytearray()
        self._scanned = 0
        self._depth = 0
        self._in_string = False
        self._escaped = False

    def __len__(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> List[bytes]:
        self._buffer.extend(data)
        frames: List[bytes] = []
        while True:
            frame = self._next_frame()
            if frame is None:
                break
            frames.append(frame)
        if len(self._buffer) > self.max_frame_size:
            self.reset()
            raise ProtocolError(f"Frame exceeds {self.max_frame_size} bytes")
        return frames

    def reset(self) -> None:
        self._buffer.clear()
        self._scanned = 0
        self._depth = 0
        self._in_string = False
        self._escaped = False

    def _next_frame(self) -> Optional[bytes]:
        buf = self._buffer
        # Drop whitespace between frames
        if self._depth == 0 and self._scanned == 0:
            start = 0
            while start < len(buf) and buf[start] in _WHITESPACE:
                start += 1
            del buf[:start]
            if not buf:
                return None
            if buf[0] != ord("{"):
                # Not an object: hand the junk up to the next brace to the decoder to reject
                end = buf.find(b"{")
                end = len(buf) if end < 0 else end
                junk = bytes(buf[:end])
                del buf[:end]
                return junk

        i = self._scanned
        while i < len(buf):
            byte = buf[i]
            i += 1
            if self._in_string:
                if self._escaped:
                    self._escaped = False
                elif byte == 0x5C:  # backslash
                    self._escaped = True
                elif byte == 0x22:  # quote
                    self._in_string = False
                continue
            if byte == 0x22:
                self._in_string = True
            elif byte == 0x7B:  # {
                self._depth += 1
            elif byte == 0x7D:  # }
                self._depth -= 1
                if self._depth == 0:
                    frame = bytes(buf[:i])
                    del buf[:i]
                    self._scanned = 0
                    return frame
        self._scanned = i
        return None


__all__ = ["encode_message", "decode_message", "passes_filter", "FrameBuffer"]

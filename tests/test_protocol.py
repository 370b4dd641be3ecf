import json

import pytest

from ue_protocol import (
    ExecMode,
    FrameBuffer,
    InvalidJSON,
    MagicMismatch,
    MsgType,
    ProtocolError,
    RemoteMessage,
    VersionMismatch,
    decode_message,
    encode_message,
    is_message_type,
    passes_filter,
    transport_for,
    types_for_transport,
    validate_payload,
)


def _raw(**fields):
    msg = {"version": 1, "magic": "ue_py", "type": "pong", "source": "n1"}
    msg.update(fields)
    return json.dumps(msg).encode("utf-8")


def test_ping_encodes_without_dest_or_data():
    encoded = encode_message(RemoteMessage(type=MsgType.PING, source="abc"))
    assert encoded == b'{"version":1,"magic":"ue_py","type":"ping","source":"abc"}'


def test_encode_decode_roundtrip():
    msg = RemoteMessage(
        type=MsgType.COMMAND,
        source="local",
        dest="n1",
        payload={"command": "print('héllo')", "unattended": True, "exec_mode": ExecMode.EXEC_FILE.value},
    )
    encoded = encode_message(msg)
    assert b'"data":{' in encoded
    assert decode_message(encoded) == msg


def test_encode_accepts_plain_dict():
    encoded = encode_message({"type": "close_connection", "source": "a", "dest": "b"})
    assert json.loads(encoded) == {"version": 1, "magic": "ue_py", "type": "close_connection", "source": "a", "dest": "b"}


def test_decode_accepts_payload_alias():
    message = decode_message(_raw(type="command_result", dest="me", payload={"success": True, "result": "1"}))
    assert message.payload == {"success": True, "result": "1"}


def test_decode_blank_dest_means_broadcast():
    assert decode_message(_raw(dest="")).dest is None


@pytest.mark.parametrize("version", [2, 0, "1", True, None])
def test_decode_rejects_wrong_version(version):
    with pytest.raises(VersionMismatch):
        decode_message(_raw(version=version))


def test_decode_rejects_wrong_magic():
    with pytest.raises(MagicMismatch):
        decode_message(_raw(magic="nope"))


def test_version_checked_before_other_fields():
    data = json.dumps({"version": 7, "magic": "bad", "type": 42}).encode()
    with pytest.raises(VersionMismatch):
        decode_message(data)
    data = json.dumps({"version": 1, "magic": "bad", "type": 42}).encode()
    with pytest.raises(MagicMismatch):
        decode_message(data)


@pytest.mark.parametrize(
    "data",
    [
        b"not json",
        b"[1, 2, 3]",
        b"\xff\xfe",
        _raw(type="gossip"),
        _raw(source=""),
        _raw(data=[1, 2]),
    ],
)
def test_decode_rejects_malformed(data):
    with pytest.raises(InvalidJSON):
        decode_message(data)


def test_passes_filter_truth_table():
    local = "me"
    assert not passes_filter(RemoteMessage(type=MsgType.PONG, source="me"), local)
    assert not passes_filter(RemoteMessage(type=MsgType.PONG, source="n1", dest="other"), local)
    assert passes_filter(RemoteMessage(type=MsgType.PONG, source="n1"), local)
    assert passes_filter(RemoteMessage(type=MsgType.PONG, source="n1", dest="me"), local)


def test_message_types_are_bound_to_transports():
    assert transport_for(MsgType.PING) == "udp"
    assert transport_for("open_connection") == "udp"
    assert transport_for(MsgType.COMMAND_RESULT) == "tcp"
    assert list(types_for_transport("tcp")) == ["command", "command_result"]
    assert is_message_type("close_connection")
    assert not is_message_type("gossip")


def test_validate_payload():
    validate_payload(MsgType.COMMAND, {"command": "x", "unattended": False, "exec_mode": "ExecuteStatement"})
    validate_payload(MsgType.PING, None)
    with pytest.raises(ProtocolError):
        validate_payload(MsgType.COMMAND, {"command": "x", "unattended": False, "exec_mode": "Run"})
    with pytest.raises(ProtocolError):
        validate_payload(MsgType.COMMAND_RESULT, {"result": "1"})


def test_frame_buffer_splits_concatenated_objects():
    buf = FrameBuffer()
    first = encode_message(RemoteMessage(type=MsgType.PING, source="a", payload={"s": "brace } in \"string\" {"}))
    second = encode_message(RemoteMessage(type=MsgType.PING, source="b"))
    stream = first + b"\n" + second
    assert buf.feed(stream[:10]) == []
    frames = buf.feed(stream[10:])
    assert frames == [first, second]
    assert len(buf) == 0


def test_frame_buffer_passes_junk_to_decoder():
    buf = FrameBuffer()
    frames = buf.feed(b"garbage" + encode_message(RemoteMessage(type=MsgType.PING, source="a")))
    assert frames[0] == b"garbage"
    with pytest.raises(InvalidJSON):
        decode_message(frames[0])
    assert decode_message(frames[1]).source == "a"


def test_frame_buffer_limits_frame_size():
    buf = FrameBuffer(max_frame_size=16)
    with pytest.raises(ProtocolError):
        buf.feed(b'{"data":"' + b"x" * 32)
    assert len(buf) == 0

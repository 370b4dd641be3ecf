import asyncio

from ue_protocol import MsgType, RemoteMessage, encode_message
from ue_remote.core import RemoteExecutionSession
from ue_remote.main import parse_args
from ue_remote.ui import RemoteCLI


def _respond(message):
    command = message.payload["command"]
    if command == "boom":
        return {"success": False, "result": "Traceback: boom"}
    return {"success": True, "result": "2", "output": [{"type": "Info", "output": "printed\n"}]}


def test_cli_session(make_config, add_engine, capsys):
    add_engine("n1", responder=_respond)
    pong = encode_message(RemoteMessage(type=MsgType.PONG, source="n1", payload={"machine": "ws-01"}))

    async def scenario():
        async with RemoteExecutionSession(make_config(), node_id="local") as session:
            cli = RemoteCLI(session)
            assert await cli.handle("nodes")
            assert await cli.handle("connect 0")
            session.discovery.handle_datagram(pong)
            assert await cli.handle("nodes")
            assert await cli.handle("exec print(1)")
            assert await cli.handle("connect 0")
            assert await cli.handle("eval 1+1")
            assert await cli.handle("stmt boom")
            assert await cli.handle("bogus")
            assert await cli.handle("")
            assert not await cli.handle("quit")

    asyncio.run(scenario())
    out = capsys.readouterr().out
    assert "No nodes discovered yet" in out
    assert "No node at index 0" in out
    assert "[0] n1  ws-01" in out
    assert "exec failed" in out
    assert "Connected to n1" in out
    assert "printed" in out
    assert "[ok] 2" in out
    assert "[FAILED] Traceback: boom" in out
    assert "Unknown command" in out


def test_cli_file_command(make_config, add_engine, capsys, tmp_path):
    engine = add_engine("n1", responder=_respond)
    script = tmp_path / "script.py"
    script.write_text("print('from file')\n", encoding="utf-8")

    async def scenario():
        async with RemoteExecutionSession(make_config(), node_id="local") as session:
            cli = RemoteCLI(session)
            await cli.handle("connect n1")
            await cli.handle(f"file {script}")
            await cli.handle(f"file {tmp_path / 'missing.py'}")

    asyncio.run(scenario())
    assert engine.received[0].payload["command"] == "print('from file')\n"
    assert "file failed" in capsys.readouterr().out


def test_parse_args():
    args = parse_args(["--env", "custom.env", "--log-level", "debug"])
    assert args.env == "custom.env"
    assert args.log_level == "debug"
    assert parse_args([]).env == ".env"

from __future__ import annotations

import asyncio
import logging
import shlex
from pathlib import Path
from typing import Any, Dict

from ue_protocol.commands import ExecMode
from ue_protocol.errors import RemoteExecutionError
from ue_remote.core import RemoteExecutionSession

logger = logging.getLogger(__name__)


class RemoteCLI:
    """Simple async console driving a remote execution session."""

    def __init__(self, session: RemoteExecutionSession) -> None:
        self.session = session

    async def run(self) -> None:
        logger.info("CLI ready. Type 'help' for commands.")
        loop = asyncio.get_running_loop()
        while True:
            try:
                line = await loop.run_in_executor(None, input, "> ")
            except EOFError:
                break
            if not await self.handle(line):
                break

    async def handle(self, line: str) -> bool:
        """Run one console line. Returns False when the user asked to quit."""
        cmd, _, rest = line.strip().partition(" ")
        rest = rest.strip()
        if not cmd:
            return True
        try:
            match cmd:
                case "help":
                    self._show_help()
                case "nodes":
                    self._show_nodes(self.session.list_nodes())
                case "wait":
                    timeout = float(rest) if rest else 10.0
                    self._show_nodes(await self.session.wait_for_nodes(timeout=timeout))
                case "connect":
                    await self._handle_connect(rest)
                case "disconnect":
                    await self.session.disconnect()
                    print("Disconnected")
                case "exec":
                    await self._execute(rest, ExecMode.EXEC_FILE)
                case "stmt":
                    await self._execute(rest, ExecMode.EXEC_STATEMENT)
                case "eval":
                    await self._execute(rest, ExecMode.EVAL_STATEMENT)
                case "run":
                    await self._execute(rest, ExecMode.EXEC_FILE)
                case "file":
                    await self._handle_file(rest)
                case "quit" | "exit":
                    return False
                case _:
                    print("Unknown command")
        except asyncio.TimeoutError:
            print("No nodes found")
        except RemoteExecutionError as exc:
            logger.warning("%s failed: %s", cmd, exc)
            print(f"{cmd} failed: {exc.message}")
        except (ValueError, OSError) as exc:
            print(f"{cmd} failed: {exc}")
        return True

    def _show_help(self) -> None:
        print(
            "Commands: nodes, wait [seconds], connect <node-id|index>, disconnect, "
            "exec <python>, stmt <statement>, eval <expression>, run <remote-path> [args], "
            "file <local-path>, quit"
        )

    def _show_nodes(self, nodes: list[Dict[str, Any]]) -> None:
        if not nodes:
            print("No nodes discovered yet")
            return
        for index, node in enumerate(nodes):
            print(
                f"[{index}] {node['node_id']}  {node.get('machine') or '?'}  "
                f"{node.get('engine_version') or '?'}  {node.get('project_root') or ''}"
            )

    async def _handle_connect(self, target: str) -> None:
        if not target:
            print("Usage: connect <node-id|index>")
            return
        node_id = target
        if target.isdigit():
            nodes = self.session.list_nodes()
            index = int(target)
            if index >= len(nodes):
                print(f"No node at index {index}")
                return
            node_id = nodes[index]["node_id"]
        print(f"Connecting to {node_id} ...")
        await self.session.connect(node_id)
        print(f"Connected to {node_id}")

    async def _handle_file(self, args: str) -> None:
        parts = shlex.split(args)
        if not parts:
            print("Usage: file <local-path>")
            return
        source = Path(parts[0]).read_text(encoding="utf-8")
        await self._execute(source, ExecMode.EXEC_FILE)

    async def _execute(self, command: str, exec_mode: ExecMode) -> None:
        if not command:
            print("Nothing to run")
            return
        result = await self.session.execute(command, unattended=True, exec_mode=exec_mode)
        for entry in result.get("output") or []:
            if isinstance(entry, dict):
                print(str(entry.get("output", "")).rstrip("\n"))
        status = "ok" if result.get("success") else "FAILED"
        print(f"[{status}] {result.get('result', '')}")

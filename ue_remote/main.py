from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Optional, Sequence

from ue_remote.config import load_config
from ue_remote.core import RemoteExecutionSession
from ue_remote.ui import RemoteCLI


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ue-remote", description="Discover and drive remote Python engine nodes.")
    parser.add_argument("--env", default=".env", help="dotenv file with UE_REMOTE_* settings (default: .env)")
    parser.add_argument("--log-level", default=None, help="override the configured log level")
    return parser.parse_args(argv)


async def run_client(args: argparse.Namespace) -> None:
    config = load_config(args.env)
    logging.basicConfig(level=(args.log_level or config.log_level).upper())
    async with RemoteExecutionSession(config) as session:
        await RemoteCLI(session).run()


def main(argv: Optional[Sequence[str]] = None) -> None:
    try:
        asyncio.run(run_client(parse_args(argv)))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()

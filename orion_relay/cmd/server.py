from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict

from orion_relay.server.config import ConfigError, load_config
from orion_relay.server.runtime import ServerRuntime

log = logging.getLogger("orion_relay.cmd.server")


async def _run(config: Dict[str, Any]) -> None:
    runtime = ServerRuntime(config)
    await runtime.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)
    except NotImplementedError:
        pass

    log.info("Server running. Press Ctrl+C to stop.")
    try:
        await stop_event.wait()
    finally:
        await runtime.stop()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Orion peer rendezvous and relay server")
    parser.add_argument("--config", help="Path to server YAML config")
    parser.add_argument("--host", help="Listen address (overrides config and ORION_HOST)")
    parser.add_argument("--port", type=int, help="Listen port (overrides config and PORT)")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ...")
    args = parser.parse_args(argv)

    try:
        config = load_config(
            Path(args.config) if args.config else None,
            overrides={"host": args.host, "port": args.port, "log_level": args.log_level},
        )
    except ConfigError as e:
        parser.exit(2, f"error: {e}\n")

    logging.basicConfig(level=config["log_level"], format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    asyncio.run(_run(config))


if __name__ == "__main__":
    main(sys.argv[1:])

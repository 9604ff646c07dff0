"""
Entry point: python -m okx_relay.main
"""

from __future__ import annotations

import asyncio
import json
import signal
import sys

from okx_relay.app import RelayApp
from okx_relay.config.config import ConfigError, Settings
from okx_relay.config.config_validator import validate_and_log
from okx_relay.infra.logging_cfg import build_logger


async def main() -> int:
    try:
        cfg = Settings.load()
    except (ConfigError, ValueError) as exc:
        log = build_logger(file_path=None)
        log.error(json.dumps({"event": "config_invalid", "err": str(exc)}))
        return 1

    log = build_logger(level=cfg.log_level, file_path=cfg.log_file)
    if not validate_and_log(cfg, log):
        log.error("Configuration validation failed, exiting")
        return 1

    app = RelayApp(cfg)
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    # Windows doesn't support add_signal_handler, so rely on KeyboardInterrupt handling
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass

    try:
        await app.start()
        await stop_event.wait()
        log.info("Shutdown signal received, cleaning up...")
    finally:
        await app.stop()
        log.info("Shutdown complete")
    return 0


def run() -> None:
    try:
        code = asyncio.run(main())
    except KeyboardInterrupt:
        print("\nRelay stopped by user")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    run()

"""
Deploy hook server — validates configuration and procedures, then serves the webhook.

Usage:
    python server.py              # serve on HOST:PORT
    python server.py --check      # validate settings and procedures file, then exit
"""

from __future__ import annotations

import argparse
import logging
import sys

import uvicorn

import config
from features.procedures import RegistryError, load_registry

log = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="deploy-hook", description="Deployment webhook dispatcher")
    parser.add_argument("--check", action="store_true", help="Validate configuration and exit")
    parser.add_argument("--host", default=None, help=f"Bind address (default {config.HOST})")
    parser.add_argument("--port", type=int, default=None, help=f"Bind port (default {config.PORT})")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    # Fail before binding the port rather than inside the app lifespan
    try:
        config.validate()
        registry = load_registry(config.PROCEDURES_FILE)
    except (config.ConfigError, RegistryError) as e:
        log.error("%s", e)
        return 1

    if args.check:
        log.info("Configuration OK: %d procedure(s)", len(registry))
        return 0

    host = args.host or config.HOST
    port = args.port or config.PORT
    log.info("Deploy hook listening on %s:%d", host, port)
    uvicorn.run("app:app", host=host, port=port, log_level=config.LOG_LEVEL.lower())
    return 0


if __name__ == "__main__":
    sys.exit(main())

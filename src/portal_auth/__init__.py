"""RAOIDC sign-in, session validation and logout for the benefits portal."""

from __future__ import annotations

import argparse
import logging
import sys

__version__ = "0.4.0"

logger = logging.getLogger("portal-auth")


def main(argv: list[str] | None = None) -> None:
    """Serve the auth application with uvicorn."""
    import uvicorn

    from portal_auth.servers.main import create_app
    from portal_auth.utils.environment import ServerConfig
    from portal_auth.utils.logging import setup_logging

    parser = argparse.ArgumentParser(prog="portal-auth", description=__doc__)
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--log-level", default=None, help="overrides LOG_LEVEL")
    parser.add_argument("--version", action="version", version=__version__)
    args = parser.parse_args(argv)

    try:
        config = ServerConfig.from_env()
    except ValueError as exc:
        setup_logging("ERROR")
        logger.error("Invalid configuration: %s", exc)
        sys.exit(2)

    setup_logging(args.log_level or config.LOG_LEVEL)
    logger.info("Starting portal-auth %s on %s:%d", __version__, args.host, args.port)
    uvicorn.run(create_app(config), host=args.host, port=args.port, log_config=None)


__all__ = ["__version__", "main"]

"""
Command line entry point.

    oncalls-mcp stdio    single-user mode for local MCP clients
    oncalls-mcp serve    multi-user HTTP server (SSE + streamable HTTP)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .config import settings
from .core.errors import AuthenticationError, ConfigurationError

logger = logging.getLogger("mcp.app")


def _configure_logging(level: str) -> None:
    # stdout belongs to the stdio protocol; logs always go to stderr.
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _run_stdio() -> int:
    from .stdio import serve_stdio

    try:
        asyncio.run(serve_stdio(settings))
    except ConfigurationError as exc:
        logger.error("%s", exc)
        logger.error("Set ONCALLS_BASE_URL, ONCALLS_USERNAME and ONCALLS_PASSWORD in the MCP client configuration.")
        return 1
    except AuthenticationError as exc:
        logger.error("Fatal: %s", exc)
        return 1
    except KeyboardInterrupt:
        pass
    return 0


def _run_http(host: str, port: int) -> int:
    import uvicorn

    uvicorn.run(
        "oncalls_mcp_server.main:app",
        host=host,
        port=port,
        log_level=settings.log_level.lower(),
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="oncalls-mcp",
        description="OnCalls scheduling tools for Model Context Protocol clients",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("stdio", help="serve one user over stdin/stdout (default)")

    serve = sub.add_parser("serve", help="run the remote HTTP server")
    serve.add_argument("--host", default=settings.host)
    serve.add_argument("--port", type=int, default=settings.port)

    args = parser.parse_args(argv)
    _configure_logging(settings.log_level)

    if args.command == "serve":
        return _run_http(args.host, args.port)
    return _run_stdio()


if __name__ == "__main__":
    sys.exit(main())

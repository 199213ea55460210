"""Command-line entry point for the spicesession MCP server.

Usage:
    python -m spicesession                                  # stdio (default)
    python -m spicesession --transport sse                  # HTTP + SSE on port 8000
    python -m spicesession --library-path ./libs --log-level DEBUG
"""

from __future__ import annotations

import argparse
import logging
import os

logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _run_with_auth(mcp, transport: str, host: str, port: int, api_key: str) -> None:
    """Serve the HTTP app behind the bearer-key middleware with uvicorn."""
    import anyio
    import uvicorn

    from spicesession.auth import ApiKeyMiddleware

    app = mcp.sse_app() if transport == "sse" else mcp.streamable_http_app()
    app = ApiKeyMiddleware(app, api_key)

    log_level = str(getattr(mcp.settings, "log_level", "info")).lower()

    async def _serve() -> None:
        config = uvicorn.Config(app, host=host, port=port, log_level=log_level)
        await uvicorn.Server(config).serve()

    anyio.run(_serve)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spicesession",
        description="Stateful MCP server for circuit simulation sessions",
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "sse", "streamable-http"],
        default=os.environ.get("SPICESESSION_TRANSPORT", "stdio"),
        help="MCP transport type (default: stdio, or SPICESESSION_TRANSPORT env)",
    )
    parser.add_argument(
        "--host",
        default=os.environ.get("FASTMCP_HOST", "127.0.0.1"),
        help="Host to bind to for HTTP transports (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("FASTMCP_PORT", "8000")),
        help="Port for HTTP transports (default: 8000)",
    )
    parser.add_argument(
        "--library-path",
        action="append",
        default=[],
        metavar="DIR",
        help="Directory of .lib/.mod/.sub files to index (repeatable; "
        "added to SPICESESSION_LIBRARY_PATHS)",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=_LOG_LEVELS,
        default=os.environ.get("SPICESESSION_LOG_LEVEL", "INFO").upper(),
        help="Logging level (default: INFO, or SPICESESSION_LOG_LEVEL env)",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Set env vars before importing server so pydantic-settings picks them up
    os.environ["FASTMCP_HOST"] = args.host
    os.environ["FASTMCP_PORT"] = str(args.port)

    from spicesession.server import configure_for_remote, index_libraries, mcp

    # The server module may already be imported with other settings
    mcp.settings.host = args.host
    mcp.settings.port = args.port

    if args.library_path:
        index_libraries(args.library_path)

    if args.transport != "stdio":
        configure_for_remote()

    api_key = os.environ.get("SPICESESSION_API_KEY", "")

    if api_key and args.transport != "stdio":
        logger.info("API key authentication enabled for %s transport", args.transport)
        _run_with_auth(mcp, args.transport, args.host, args.port, api_key)
    else:
        if not api_key and args.transport != "stdio":
            logger.warning(
                "No API key configured; the MCP server is unauthenticated. "
                "Set SPICESESSION_API_KEY to enable authentication."
            )
        mcp.run(transport=args.transport)


if __name__ == "__main__":
    main()

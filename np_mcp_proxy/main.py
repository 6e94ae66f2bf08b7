"""np-mcp-proxy entry point.

Usage::

    np-mcp-proxy --apiKey <key> --agentId <id>
    np-mcp-proxy --apiKey <key> --selector "region=us-west,service=api"
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Sequence

from pydantic import ValidationError

from np_mcp_proxy.config import Settings, build_arg_parser, load_settings
from np_mcp_proxy.context import ProxyContext
from np_mcp_proxy.core.logging import setup_logging
from np_mcp_proxy.core.security import mask_mapping
from np_mcp_proxy.mcp.stdio import StdioTransport

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1


async def serve(settings: Settings) -> None:
    """Run the stdio transport until EOF or a termination signal."""
    async with ProxyContext.create(settings) as context:
        await StdioTransport(context.bridge).run()


def main(argv: Sequence[str] | None = None) -> int:
    try:
        settings = load_settings(argv)
    except ValidationError as exc:
        print("Configuration validation failed:", file=sys.stderr)
        print(exc, file=sys.stderr)
        build_arg_parser().print_help(sys.stderr)
        return EXIT_CONFIG_ERROR

    setup_logging(settings)
    logger.info(
        "Starting MCP Proxy",
        extra={"config": mask_mapping(settings.model_dump(mode="json"))},
    )

    try:
        asyncio.run(serve(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down...")
    return EXIT_OK


def run() -> None:
    """Console-script wrapper."""
    sys.exit(main())


if __name__ == "__main__":
    run()

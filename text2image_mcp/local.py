"""
Local entry point: single-tenant MCP server over stdio.
The key comes from GEMINI_API_KEY or, at runtime, from the configure_gemini_token tool.
"""
import asyncio
import logging
import sys

from mcp.server.stdio import stdio_server

from text2image_mcp import config
from text2image_mcp.adapter import ImageToolAdapter

logger = logging.getLogger(__name__)


async def run_stdio(adapter: ImageToolAdapter) -> None:
    server = adapter.server
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def main() -> None:
    # stdout carries the protocol; logs go to stderr
    logging.basicConfig(
        level=logging.INFO,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    adapter = ImageToolAdapter(config.GEMINI_API_KEY, remote=False)
    if not adapter.configured:
        logger.info("GEMINI_API_KEY not set; use the configure_gemini_token tool")
    asyncio.run(run_stdio(adapter))


if __name__ == "__main__":
    main()

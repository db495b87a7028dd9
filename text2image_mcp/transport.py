"""
Streamable HTTP transport for one MCP session.
Wraps the SDK transport and runs the session's MCP server in a background task,
the same way the SDK's StreamableHTTPSessionManager does per session.
"""
import asyncio
import logging
from typing import Callable

from mcp.server.streamable_http import StreamableHTTPServerTransport

from text2image_mcp.adapter import ImageToolAdapter

logger = logging.getLogger(__name__)


class McpHttpTransport:
    def __init__(
        self,
        session_id: str,
        adapter: ImageToolAdapter,
        on_closed: Callable[[], None] | None = None,
        *,
        json_response: bool = False,
    ):
        self.session_id = session_id
        self._adapter = adapter
        self._on_closed = on_closed
        self._transport = StreamableHTTPServerTransport(
            mcp_session_id=session_id,
            is_json_response_enabled=json_response,
        )
        self._ready = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._closing = False

    async def start(self) -> None:
        self._task = asyncio.create_task(self._run())
        ready = asyncio.create_task(self._ready.wait())
        done, _ = await asyncio.wait({self._task, ready}, return_when=asyncio.FIRST_COMPLETED)
        if self._task in done:
            ready.cancel()
            # Server exited before it was ready; surface its exception
            self._task.result()
            raise RuntimeError(f"MCP server for session {self.session_id} exited during startup")

    async def _run(self) -> None:
        server = self._adapter.server
        try:
            async with self._transport.connect() as (read_stream, write_stream):
                self._ready.set()
                await server.run(read_stream, write_stream, server.create_initialization_options(), stateless=False)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("MCP server for session %s crashed", self.session_id)
        finally:
            if not self._closing and self._on_closed is not None:
                self._on_closed()

    async def handle_request(self, scope, receive, send) -> None:
        await self._transport.handle_request(scope, receive, send)

    async def close(self) -> None:
        self._closing = True
        await self._transport.terminate()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

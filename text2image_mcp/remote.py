"""
Remote entry point: uvicorn serving the multi-tenant app.
On SIGINT/SIGTERM live sessions are closed while uvicorn drains, so streaming
clients are not left on half-open connections until the graceful timeout.
"""
import asyncio
import logging

import uvicorn

from text2image_mcp import config
from text2image_mcp.app import create_app

logger = logging.getLogger(__name__)


class _Server(uvicorn.Server):
    def __init__(self, config_: uvicorn.Config, app):
        super().__init__(config_)
        self._app = app
        self._loop: asyncio.AbstractEventLoop | None = None
        self._shutdown_scheduled = False
        self._shutdown_task: asyncio.Task | None = None

    async def serve(self, sockets=None) -> None:
        self._loop = asyncio.get_running_loop()
        await super().serve(sockets)

    def handle_exit(self, sig, frame) -> None:
        if self._loop is not None and not self._shutdown_scheduled:
            self._shutdown_scheduled = True
            self._loop.call_soon_threadsafe(self._begin_shutdown)
        super().handle_exit(sig, frame)

    def _begin_shutdown(self) -> None:
        logger.info("Shutting down: closing %d session(s)", len(self._app.state.sessions))
        self._shutdown_task = asyncio.ensure_future(self._close_sessions())

    async def _close_sessions(self) -> None:
        await self._app.state.reclaimer.stop()
        await self._app.state.sessions.close_all()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app = create_app()
    server_config = uvicorn.Config(
        app,
        host=config.HOST,
        port=config.PORT,
        timeout_graceful_shutdown=config.SHUTDOWN_TIMEOUT_SECONDS,
    )
    logger.info("MCP endpoint: http://%s:%s/mcp", config.HOST, config.PORT)
    _Server(server_config, app).run()


if __name__ == "__main__":
    main()

"""
Pytest configuration for text2image_mcp. Tests build their own apps and stores;
the environment must not switch on operator-key or OAuth mode behind their back.
"""
import asyncio
import os

import pytest
from starlette.responses import JSONResponse

for _name in ("GEMINI_API_KEY", "MCP_AUTH_ENABLED", "MCP_ISSUER_URL"):
    os.environ.pop(_name, None)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeTransport:
    """Stands in for McpHttpTransport: answers every HTTP request with an empty JSON-RPC result."""

    def __init__(self, session_id, adapter, on_closed, *, fail_start=False, close_delay=0.0):
        self.session_id = session_id
        self.adapter = adapter
        self.on_closed = on_closed
        self.fail_start = fail_start
        self.close_delay = close_delay
        self.started = False
        self.close_calls = 0
        self.requests = []

    async def start(self):
        if self.fail_start:
            raise RuntimeError("transport failed to start")
        self.started = True

    async def handle_request(self, scope, receive, send):
        if scope.get("type") != "http":
            self.requests.append(None)
            return
        message = await receive()
        self.requests.append((scope["method"], message.get("body", b"")))
        response = JSONResponse(
            {"jsonrpc": "2.0", "id": 1, "result": {}},
            headers={"mcp-session-id": self.session_id},
        )
        await response(scope, receive, send)

    async def close(self):
        self.close_calls += 1
        if self.close_delay:
            await asyncio.sleep(self.close_delay)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transports():
    """Transport factory that records every FakeTransport it builds in .created."""
    created = []

    def factory(session_id, adapter, on_closed, **kwargs):
        transport = FakeTransport(session_id, adapter, on_closed, **kwargs)
        created.append(transport)
        return transport

    factory.created = created
    return factory

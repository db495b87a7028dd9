"""Tests for the session table and the idle reclaimer."""
import asyncio
from unittest.mock import MagicMock

import pytest

from text2image_mcp.errors import SessionNotFound
from text2image_mcp.sessions import SessionReclaimer, SessionTable


@pytest.fixture
def table(clock):
    return SessionTable(idle_timeout=60, close_timeout=0.5, clock=clock)


def test_create_registers_session_before_start(table, transports):
    seen = {}

    def factory(session_id, adapter, on_closed):
        transport = transports(session_id, adapter, on_closed)
        original_start = transport.start

        async def start():
            seen["registered"] = session_id in table
            await original_start()

        transport.start = start
        return transport

    session = asyncio.run(table.create(factory, lambda: "adapter"))
    assert seen["registered"] is True
    assert session.session_id in table
    assert session.adapter == "adapter"
    assert transports.created[0].started


def test_create_assigns_distinct_ids(table, transports):
    async def scenario():
        return [await table.create(transports, lambda: None) for _ in range(50)]

    sessions = asyncio.run(scenario())
    assert len({s.session_id for s in sessions}) == 50
    assert len(table) == 50


def test_failed_start_leaves_table_empty(table, transports):
    def failing(session_id, adapter, on_closed):
        return transports(session_id, adapter, on_closed, fail_start=True)

    with pytest.raises(RuntimeError):
        asyncio.run(table.create(failing, lambda: None))
    assert len(table) == 0


def test_route_unknown_session(table):
    with pytest.raises(SessionNotFound):
        asyncio.run(table.route("missing", {}, None, None))
    assert len(table) == 0


def test_route_forwards_and_bumps_activity(table, transports, clock):
    async def scenario():
        session = await table.create(transports, lambda: None)
        clock.now += 30
        await table.route(session.session_id, {}, None, None)
        return session

    session = asyncio.run(scenario())
    assert session.last_activity == clock.now
    assert transports.created[0].requests == [None]


def test_sweep_closes_idle_sessions_exactly_once(table, transports, clock):
    async def scenario():
        idle = await table.create(transports, lambda: None)
        active = await table.create(transports, lambda: None)
        clock.now += 30
        await table.route(active.session_id, {}, None, None)
        clock.now += 40
        first = await table.sweep()
        second = await table.sweep()
        return idle, active, first, second

    idle, active, first, second = asyncio.run(scenario())
    assert first == [idle.session_id]
    assert second == []
    assert idle.session_id not in table
    assert active.session_id in table
    assert transports.created[0].close_calls == 1
    assert transports.created[1].close_calls == 0


def test_sweep_at_exact_timeout_keeps_session(table, transports, clock):
    async def scenario():
        session = await table.create(transports, lambda: None)
        clock.now += 60
        return session, await table.sweep()

    session, evicted = asyncio.run(scenario())
    assert evicted == []
    assert session.session_id in table


def test_close_is_idempotent(table, transports):
    async def scenario():
        session = await table.create(transports, lambda: None)
        return await table.close(session.session_id), await table.close(session.session_id)

    assert asyncio.run(scenario()) == (True, False)
    assert transports.created[0].close_calls == 1
    assert len(table) == 0


def test_close_timeout_still_removes_session(transports, clock):
    table = SessionTable(idle_timeout=60, close_timeout=0.05, clock=clock)

    def slow(session_id, adapter, on_closed):
        return transports(session_id, adapter, on_closed, close_delay=5)

    async def scenario():
        session = await table.create(slow, lambda: None)
        return await table.close(session.session_id)

    assert asyncio.run(scenario()) is True
    assert len(table) == 0


def test_transport_closing_itself_discards_session(table, transports):
    async def scenario():
        return await table.create(transports, lambda: None)

    session = asyncio.run(scenario())
    transports.created[0].on_closed()
    assert session.session_id not in table
    # Discarding twice is harmless
    table.discard(session.session_id)


def test_close_all(table, transports):
    async def scenario():
        for _ in range(3):
            await table.create(transports, lambda: None)
        return await table.close_all()

    assert asyncio.run(scenario()) == 3
    assert len(table) == 0
    assert all(t.close_calls == 1 for t in transports.created)


# --- reclaimer ---


def test_reclaimer_tick_sweeps_and_purges(table, transports, clock):
    provider = MagicMock()
    reclaimer = SessionReclaimer(table, interval=60, provider=provider)

    async def scenario():
        await table.create(transports, lambda: None)
        clock.now += 61
        await reclaimer.tick()

    asyncio.run(scenario())
    assert len(table) == 0
    provider.purge_expired.assert_called_once_with()


def test_reclaimer_runs_until_stopped(table, transports, clock):
    reclaimer = SessionReclaimer(table, interval=0.01)

    async def scenario():
        await table.create(transports, lambda: None)
        clock.now += 61
        reclaimer.start()
        assert reclaimer.running
        for _ in range(100):
            if len(table) == 0:
                break
            await asyncio.sleep(0.01)
        await reclaimer.stop()

    asyncio.run(scenario())
    assert len(table) == 0
    assert not reclaimer.running


def test_reclaimer_survives_failed_tick(table, clock):
    reclaimer = SessionReclaimer(table, interval=0.01)
    calls = []

    async def flaky_sweep():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("boom")
        return []

    table.sweep = flaky_sweep

    async def scenario():
        reclaimer.start()
        for _ in range(100):
            if len(calls) >= 2:
                break
            await asyncio.sleep(0.01)
        await reclaimer.stop()

    asyncio.run(scenario())
    assert len(calls) >= 2

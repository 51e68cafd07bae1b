import asyncio
from unittest.mock import MagicMock

import pytest

from flapburn.core.position.scheduler import AutoConnectPrompt, PollingScheduler


class _Session:
    def __init__(self, connected: bool = False):
        self.is_connected = connected
        self.connect_calls = 0

    async def connect(self) -> None:
        self.connect_calls += 1
        self.is_connected = True


@pytest.mark.asyncio
async def test_scheduler_runs_immediately_and_repeats():
    calls = []
    reached = asyncio.Event()

    async def tick():
        calls.append(1)
        if len(calls) >= 3:
            reached.set()

    scheduler = PollingScheduler(tick, interval_seconds=0.01)
    async with scheduler:
        await asyncio.wait_for(reached.wait(), timeout=2)

    assert len(calls) >= 3
    assert not scheduler.running


@pytest.mark.asyncio
async def test_stop_cancels_pending_tick():
    calls = []

    async def tick():
        calls.append(1)

    scheduler = PollingScheduler(tick, interval_seconds=60)
    scheduler.start()
    await asyncio.sleep(0.05)
    await scheduler.stop()
    await asyncio.sleep(0.05)

    assert calls == [1]
    assert not scheduler.running
    await scheduler.stop()


@pytest.mark.asyncio
async def test_tick_error_does_not_stop_polling():
    calls = []
    reached = asyncio.Event()

    async def tick():
        calls.append(1)
        if len(calls) >= 2:
            reached.set()
        raise RuntimeError("rpc down")

    async with PollingScheduler(tick, interval_seconds=0.01) as scheduler:
        await asyncio.wait_for(reached.wait(), timeout=2)

    assert scheduler.ticks >= 1


@pytest.mark.asyncio
async def test_start_is_idempotent():
    async def tick():
        return None

    scheduler = PollingScheduler(tick, interval_seconds=60)
    scheduler.start()
    task = scheduler._task
    scheduler.start()

    assert scheduler._task is task
    await scheduler.stop()


def test_interval_defaults_from_config(monkeypatch):
    monkeypatch.setattr(
        "flapburn.core.position.scheduler.get_poll_interval_seconds", lambda: 7.5
    )

    async def tick():
        return None

    assert PollingScheduler(tick).interval_seconds == 7.5


@pytest.mark.asyncio
async def test_auto_connect_fires_once_when_disconnected():
    session = _Session()
    prompt = AutoConnectPrompt(session, delay_seconds=0)

    prompt.start()
    await prompt.wait()
    prompt.start()
    await prompt.wait()

    assert session.connect_calls == 1
    assert prompt.fired


@pytest.mark.asyncio
async def test_auto_connect_skipped_when_already_connected():
    session = _Session(connected=True)
    prompt = AutoConnectPrompt(session, delay_seconds=0)

    prompt.start()
    await prompt.wait()

    assert session.connect_calls == 0
    assert not prompt.fired


@pytest.mark.asyncio
async def test_auto_connect_cancelled_by_connection():
    session = _Session()
    prompt = AutoConnectPrompt(session, delay_seconds=60)

    prompt.start()
    prompt.notify_connected()
    await prompt.wait()

    assert session.connect_calls == 0
    assert not prompt.fired


@pytest.mark.asyncio
async def test_auto_connect_skips_if_connected_during_delay():
    session = _Session()
    prompt = AutoConnectPrompt(session, delay_seconds=0.01)

    prompt.start()
    session.is_connected = True
    await prompt.wait()

    assert session.connect_calls == 0


@pytest.mark.asyncio
async def test_auto_connect_prompt_error_is_logged():
    session = _Session()
    failing = MagicMock(side_effect=RuntimeError("user rejected"))
    prompt = AutoConnectPrompt(session, prompt=failing, delay_seconds=0)

    prompt.start()
    await prompt.wait()

    failing.assert_called_once_with()
    assert prompt.fired

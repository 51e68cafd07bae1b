from __future__ import annotations

import asyncio
import contextlib
import inspect
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from flapburn.core.config import get_auto_connect_delay_seconds, get_poll_interval_seconds
from flapburn.core.wallet import WalletSession


class PollingScheduler:
    """Run ``callback`` now and then every ``interval_seconds`` until stopped.

    Owned by whatever consumes the view: ``stop()`` (or leaving the ``async
    with`` block) cancels the task and waits for it, so no timer outlives it.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[Any]],
        interval_seconds: float | None = None,
    ) -> None:
        self._callback = callback
        self.interval_seconds = float(interval_seconds or get_poll_interval_seconds())
        self._task: asyncio.Task | None = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _loop(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            tick_started = loop.time()
            try:
                await self._callback()
            except Exception as exc:  # noqa: BLE001
                logger.exception(f"Polling tick error: {exc}")
            self.ticks += 1
            elapsed = loop.time() - tick_started
            await asyncio.sleep(max(0.0, self.interval_seconds - elapsed))

    async def __aenter__(self) -> PollingScheduler:
        self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()


class AutoConnectPrompt:
    """Ask a disconnected session to connect once, shortly after start.

    Fires at most once per instance and never if the session connects first.
    """

    def __init__(
        self,
        session: WalletSession,
        prompt: Callable[[], Any] | None = None,
        delay_seconds: float | None = None,
    ) -> None:
        self.session = session
        self._prompt = prompt or session.connect
        self.delay_seconds = (
            get_auto_connect_delay_seconds() if delay_seconds is None else float(delay_seconds)
        )
        self._task: asyncio.Task | None = None
        self.fired = False

    def start(self) -> None:
        if self.fired or self._task is not None or self.session.is_connected:
            return
        self._task = asyncio.create_task(self._fire_later())

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def notify_connected(self) -> None:
        self.cancel()

    async def wait(self) -> None:
        if self._task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await self._task

    async def _fire_later(self) -> None:
        await asyncio.sleep(self.delay_seconds)
        if self.fired or self.session.is_connected:
            return
        self.fired = True
        try:
            result = self._prompt()
            if inspect.isawaitable(result):
                await result
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Auto-connect prompt failed: {exc}")

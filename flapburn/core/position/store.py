from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

from loguru import logger

from flapburn.adapters.flap_adapter.adapter import FlapAdapter
from flapburn.core.clients.MonitorClient import MonitorClient
from flapburn.core.position.errors import RefreshFailedError
from flapburn.core.position.models import PositionView
from flapburn.core.position.reader import MultiSourceReader
from flapburn.core.position.reconciler import reconcile
from flapburn.core.wallet import WalletSession

Listener = Callable[[PositionView], Any]


class PositionStore:
    """Single writer of the reconciled position; readers subscribe for updates.

    Refreshes may overlap (poll vs. post-transaction); whichever finishes last
    wins. A failed refresh leaves the previous view in place.
    """

    def __init__(
        self,
        session: WalletSession,
        *,
        reader: MultiSourceReader | None = None,
    ) -> None:
        self.session = session
        self._fixed_reader = reader
        self._reader: MultiSourceReader | None = reader
        self._reader_chain_id: int | None = None
        self._view: PositionView | None = None
        self._listeners: list[Listener] = []
        self.logger = logger.bind(component="position_store")

    @property
    def view(self) -> PositionView | None:
        return self._view

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def _reader_for_session(self) -> MultiSourceReader:
        if self._fixed_reader is not None:
            return self._fixed_reader
        chain_id = self.session.chain_id
        if self._reader is None or self._reader_chain_id != chain_id:
            previous = self._reader
            self._reader = MultiSourceReader(
                FlapAdapter(chain_id=chain_id),
                MonitorClient(chain_id=chain_id),
            )
            self._reader_chain_id = chain_id
            if previous is not None and previous.monitor is not None:
                await previous.monitor.close()
        return self._reader

    async def refresh(self) -> PositionView | None:
        address = self.session.address
        if not address:
            self.logger.debug("No wallet address; skipping refresh")
            return self._view

        reader = await self._reader_for_session()
        try:
            onchain, offchain = await reader.read(address)
        except RefreshFailedError as exc:
            self.logger.warning(f"Refresh failed, keeping previous view: {exc}")
            return self._view

        loss_dividend = onchain.loss_dividend
        effective = reconcile(
            loss_dividend.snapshot,
            loss_dividend.cached_loss,
            onchain.pool.holding_value,
            offchain,
        )
        view = PositionView(
            onchain=onchain,
            offchain=offchain,
            effective=effective,
            refreshed_at=time.time(),
        )
        self._publish(view)
        return view

    def _publish(self, view: PositionView) -> None:
        self._view = view
        for listener in list(self._listeners):
            try:
                listener(view)
            except Exception as exc:  # noqa: BLE001
                self.logger.exception(f"Position listener failed: {exc}")

    async def close(self) -> None:
        if self._reader is not None and self._reader.monitor is not None:
            await self._reader.monitor.close()

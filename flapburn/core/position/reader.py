from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import Any

from eth_utils import to_checksum_address
from loguru import logger

from flapburn.adapters.flap_adapter.adapter import FlapAdapter
from flapburn.core.clients.MonitorClient import MonitorClient
from flapburn.core.position.errors import ContractGroupError, RefreshFailedError
from flapburn.core.position.models import (
    BurnDividendState,
    BurnTokenState,
    LossDividendState,
    NftDividendState,
    NftSubscriptionState,
    OffchainSnapshot,
    OnchainState,
    PoolState,
    TokenState,
)
from flapburn.core.utils.amm_math import spot_value
from flapburn.core.utils.read_batch import ReadError
from flapburn.core.utils.web3 import web3_from_chain_id


@dataclass
class _GroupOutcome:
    group: str
    state: Any
    errors: list[ReadError] = field(default_factory=list)
    skipped: bool = False
    failed: bool = False


class MultiSourceReader:
    """Fan out one refresh across every contract group.

    Groups run in two waves: the token and pool groups need addresses that the
    burn registry and loss-dividend groups publish. Within a wave groups are
    independent; a group that is not deployed (or has an invalid pool) is
    skipped and reset to its defaults, and any other group failure resets it
    too but counts against the refresh. Only when every attempted group failed
    does the refresh raise ``RefreshFailedError``.
    """

    def __init__(self, adapter: FlapAdapter, monitor: MonitorClient | None = None):
        self.adapter = adapter
        self.monitor = monitor
        self.logger = logger.bind(component="reader")

    async def _group(
        self, group: str, read: Awaitable[tuple[Any, list[ReadError]]], default: Any
    ) -> _GroupOutcome:
        try:
            state, errors = await read
        except ContractGroupError as exc:
            self.logger.debug(f"Skipping {group}: {exc}")
            return _GroupOutcome(group, default, skipped=True)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning(f"Reading {group} failed, resetting to defaults: {exc}")
            return _GroupOutcome(group, default, failed=True)
        return _GroupOutcome(group, state, errors)

    async def read_onchain(self, account: str) -> OnchainState:
        account = to_checksum_address(account)
        adapter = self.adapter
        try:
            async with web3_from_chain_id(adapter.read_chain_id) as web3:
                first = await asyncio.gather(
                    self._group(
                        "burn_token",
                        adapter.read_burn_token(web3, account),
                        BurnTokenState(),
                    ),
                    self._group(
                        "burn_dividend",
                        adapter.read_burn_dividend(web3, account),
                        BurnDividendState(),
                    ),
                    self._group(
                        "loss_dividend",
                        adapter.read_loss_dividend(web3, account),
                        LossDividendState(),
                    ),
                    self._group(
                        "nft_dividend",
                        adapter.read_nft_dividend(web3, account),
                        NftDividendState(),
                    ),
                    self._group(
                        "nft_subscription",
                        adapter.read_nft_subscription(web3, account),
                        NftSubscriptionState(),
                    ),
                )
                burn_token, _, loss_dividend, _, _ = first
                token_address = adapter.token_address(burn_token.state)
                pool_address = adapter.pool_address(loss_dividend.state)
                second = await asyncio.gather(
                    self._group(
                        "token",
                        adapter.read_token(web3, account, token_address),
                        TokenState(),
                    ),
                    self._group(
                        "pool",
                        adapter.read_pool(web3, pool_address, token_address),
                        PoolState(),
                    ),
                )
        except Exception as exc:  # noqa: BLE001
            raise RefreshFailedError(f"RPC unavailable: {exc}") from exc

        outcomes = {o.group: o for o in (*first, *second)}
        attempted = [o for o in outcomes.values() if not o.skipped]
        if attempted and all(o.failed for o in attempted):
            raise RefreshFailedError(
                f"All contract groups failed: {', '.join(o.group for o in attempted)}"
            )

        token: TokenState = outcomes["token"].state
        pool: PoolState = outcomes["pool"].state
        if pool.reserves is not None:
            pool = PoolState(
                reserves=pool.reserves,
                holding_value=spot_value(token.balance, pool.reserves),
            )

        return OnchainState(
            chain_id=adapter.read_chain_id,
            account=account,
            burn_token=outcomes["burn_token"].state,
            token=token,
            burn_dividend=outcomes["burn_dividend"].state,
            loss_dividend=outcomes["loss_dividend"].state,
            pool=pool,
            nft_dividend=outcomes["nft_dividend"].state,
            nft_subscription=outcomes["nft_subscription"].state,
            read_errors=tuple(e for o in outcomes.values() for e in o.errors),
            unavailable_groups=tuple(
                o.group for o in outcomes.values() if o.skipped or o.failed
            ),
        )

    async def read_offchain(self, account: str) -> OffchainSnapshot | None:
        if self.monitor is None:
            return None
        return await self.monitor.get_user_status(account)

    async def read(self, account: str) -> tuple[OnchainState, OffchainSnapshot | None]:
        return await asyncio.gather(
            self.read_onchain(account), self.read_offchain(account)
        )

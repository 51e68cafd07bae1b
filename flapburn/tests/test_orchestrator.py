"""Transaction flows against a mocked adapter and an in-memory position."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from flapburn.core.constants import ZERO_ADDRESS
from flapburn.core.constants.base import MIN_LOSS_DIVIDEND_CLAIM_WEI
from flapburn.core.position.models import (
    AllowanceState,
    BurnDividendState,
    BurnTokenState,
    EffectivePosition,
    LossDividendState,
    NftDividendState,
    NftSubscriptionState,
    OnchainState,
    PoolState,
    PositionView,
    TokenState,
)
from flapburn.core.transactions.errors import TxErrorKind
from flapburn.core.transactions.orchestrator import (
    TransactionOrchestrator,
    check_burn_value,
)
from flapburn.core.transactions.state import ClaimKind, Phase
from flapburn.core.utils.amm_math import ReservePair, get_min_amount_in
from flapburn.core.utils.units import format_whole_tokens

WALLET = "0x1111111111111111111111111111111111111111"
TOKEN = "0x2222222222222222222222222222222222222222"
PAIR = "0x3333333333333333333333333333333333333333"
INVITER = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
E18 = 10**18
MIN_BURN = 5 * 10**16

DEEP_POOL = ReservePair(reserve_in=100 * E18, reserve_out=10 * E18)
SHALLOW_POOL = ReservePair(reserve_in=1_000_000 * E18, reserve_out=10 * E18)


class _Session:
    def __init__(self, *, connected=True, chain_id=56, signer=True):
        self.address = WALLET
        self.chain_id = chain_id
        self.is_connected = connected
        self.sign_callback = AsyncMock() if signer else None
        self.connect = AsyncMock()
        self.switch_network = AsyncMock()


class _Store:
    def __init__(self, view):
        self.view = view
        self.refreshes = 0

    async def refresh(self):
        self.refreshes += 1
        return self.view


def _view(
    *,
    reserves=DEEP_POOL,
    allowance=0,
    burn_dividend=None,
    pending_loss_dividend=0,
    claimable_nfts=0,
    price_per_share=E18,
    subscription_inviter=ZERO_ADDRESS,
) -> PositionView:
    onchain = OnchainState(
        chain_id=56,
        account=WALLET,
        burn_token=BurnTokenState(token=TOKEN, min_burn_value=MIN_BURN),
        token=TokenState(symbol="FLAP", balance=1_000 * E18, allowance=allowance),
        burn_dividend=burn_dividend or BurnDividendState(),
        loss_dividend=LossDividendState(
            pending_dividend=pending_loss_dividend, pool=PAIR
        ),
        pool=PoolState(reserves=reserves),
        nft_dividend=NftDividendState(claimable_nfts=claimable_nfts),
        nft_subscription=NftSubscriptionState(
            price_per_share=price_per_share, inviter=subscription_inviter
        ),
    )
    return PositionView(
        onchain=onchain,
        offchain=None,
        effective=EffectivePosition(
            cost_basis=0, sold_value=0, holding_value=0, loss_amount=0
        ),
        refreshed_at=0.0,
    )


def _adapter(*, allowance=5 * E18, reserves=DEEP_POOL, balance=10 * E18):
    adapter = MagicMock()
    adapter.token_address.return_value = TOKEN
    adapter.pool_address.return_value = PAIR
    adapter.get_allowance = AsyncMock(
        return_value=AllowanceState(owner=WALLET, spender=PAIR, amount=allowance)
    )
    adapter.get_reserves = AsyncMock(return_value=reserves)
    adapter.get_native_balance = AsyncMock(return_value=balance)
    adapter.approve_unlimited = AsyncMock(return_value=(True, "0xapprove"))
    adapter.burn = AsyncMock(return_value=(True, "0xburn"))
    adapter.subscribe = AsyncMock(return_value=(True, "0xsubscribe"))
    for name in (
        "claim_burn_bnb",
        "claim_burn_token",
        "claim_loss_dividend",
        "claim_nft_dividend",
        "claim_nft",
    ):
        setattr(adapter, name, AsyncMock(return_value=(True, f"0x{name}")))
    return adapter


def _orchestrator(view=None, adapter=None, session=None):
    adapter = adapter or _adapter()
    store = _Store(view if view is not None else _view())
    orchestrator = TransactionOrchestrator(
        session or _Session(), store, adapter_factory=lambda _session: adapter
    )
    return orchestrator, adapter, store


# --------------------------------------------------------------- burn value


def test_check_burn_value_accepts_deep_pool():
    check = check_burn_value(100 * E18, DEEP_POOL, MIN_BURN, "FLAP")
    assert check.valid
    assert check.burn_value >= MIN_BURN
    assert check.message == ""


def test_check_burn_value_zero_amount_is_silent():
    check = check_burn_value(0, DEEP_POOL, MIN_BURN)
    assert not check.valid
    assert check.message == ""


@pytest.mark.asyncio
async def test_burn_below_minimum_is_rejected_before_submission():
    orchestrator, adapter, _ = _orchestrator(_view(reserves=SHALLOW_POOL))

    result = await orchestrator.burn(100 * E18)

    expected_tokens = format_whole_tokens(
        get_min_amount_in(MIN_BURN, SHALLOW_POOL.reserve_in, SHALLOW_POOL.reserve_out)
    )
    assert result.ok is False
    assert result.action == "rejected"
    assert "Burn value too low" in result.message
    assert f"Burn at least {expected_tokens} FLAP" in result.message
    adapter.burn.assert_not_awaited()
    assert orchestrator.state.phase is Phase.IDLE


@pytest.mark.asyncio
async def test_burn_rejected_when_fresh_reserves_are_shallow():
    adapter = _adapter(reserves=SHALLOW_POOL)
    orchestrator, _, _ = _orchestrator(_view(allowance=5 * E18), adapter)

    result = await orchestrator.burn(100 * E18)

    assert result.ok is False
    assert result.action == "rejected"
    assert result.error.kind is TxErrorKind.BELOW_MIN_BURN_VALUE
    adapter.burn.assert_not_awaited()
    assert orchestrator.state.phase is Phase.IDLE


@pytest.mark.asyncio
async def test_burn_uses_cached_reserves_when_fresh_read_fails():
    adapter = _adapter()
    adapter.get_reserves = AsyncMock(side_effect=RuntimeError("rpc down"))
    orchestrator, _, _ = _orchestrator(_view(), adapter)

    result = await orchestrator.burn(100 * E18)

    assert result.ok is True
    adapter.burn.assert_awaited_once()


@pytest.mark.asyncio
async def test_burn_without_amount_is_rejected():
    orchestrator, adapter, _ = _orchestrator()
    result = await orchestrator.burn()
    assert result.ok is False
    assert result.action == "rejected"
    adapter.get_allowance.assert_not_awaited()


def test_set_burn_amount_parses_text():
    orchestrator, _, _ = _orchestrator()
    assert orchestrator.set_burn_amount("1.5") == 15 * 10**17
    assert orchestrator.set_burn_amount("abc") == 0


# ---------------------------------------------------------- approve / burn


@pytest.mark.asyncio
async def test_stale_cached_allowance_does_not_force_approval():
    adapter = _adapter(allowance=5 * E18)
    orchestrator, _, store = _orchestrator(_view(allowance=E18), adapter)
    assert orchestrator.approval_needed(2 * E18)

    result = await orchestrator.burn(2 * E18)

    assert result.ok is True
    assert result.tx_hashes == ("0xburn",)
    adapter.approve_unlimited.assert_not_awaited()
    adapter.burn.assert_awaited_once_with(2 * E18, ZERO_ADDRESS)
    assert store.refreshes == 1
    assert orchestrator.burn_amount == 0
    assert orchestrator.state.phase is Phase.IDLE


@pytest.mark.asyncio
async def test_short_fresh_allowance_redirects_to_approval_then_burns():
    adapter = _adapter()
    adapter.get_allowance = AsyncMock(
        side_effect=[
            AllowanceState(owner=WALLET, spender=PAIR, amount=0),
            AllowanceState(owner=WALLET, spender=PAIR, amount=5 * E18),
        ]
    )
    orchestrator, _, store = _orchestrator(_view(allowance=5 * E18), adapter)

    result = await orchestrator.burn(2 * E18)

    assert result.ok is True
    assert result.tx_hashes == ("0xapprove", "0xburn")
    adapter.approve_unlimited.assert_awaited_once_with(TOKEN)
    assert store.refreshes == 2
    assert orchestrator.state.phase is Phase.IDLE


@pytest.mark.asyncio
async def test_approve_continues_into_burn():
    orchestrator, adapter, _ = _orchestrator()

    result = await orchestrator.approve(2 * E18)

    assert result.ok is True
    assert result.tx_hashes == ("0xapprove", "0xburn")
    adapter.burn.assert_awaited_once()
    assert orchestrator.state.phase is Phase.IDLE


@pytest.mark.asyncio
async def test_allowance_still_short_after_approval_fails_once():
    adapter = _adapter(allowance=0)
    orchestrator, _, _ = _orchestrator(_view(), adapter)

    result = await orchestrator.burn(2 * E18)

    assert result.ok is False
    assert result.error.kind is TxErrorKind.ALLOWANCE
    assert result.tx_hashes == ("0xapprove",)
    adapter.approve_unlimited.assert_awaited_once()
    adapter.burn.assert_not_awaited()
    assert orchestrator.state.phase is Phase.IDLE


@pytest.mark.asyncio
async def test_failed_allowance_read_still_submits_burn():
    adapter = _adapter()
    adapter.get_allowance = AsyncMock(side_effect=RuntimeError("rpc down"))
    orchestrator, _, _ = _orchestrator(_view(), adapter)

    result = await orchestrator.burn(2 * E18)

    assert result.ok is True
    adapter.approve_unlimited.assert_not_awaited()


@pytest.mark.asyncio
async def test_rejected_approval_returns_to_idle():
    adapter = _adapter()
    adapter.approve_unlimited = AsyncMock(return_value=(False, "user rejected"))
    orchestrator, _, _ = _orchestrator(_view(), adapter)

    result = await orchestrator.approve(2 * E18)

    assert result.ok is False
    assert result.error.kind is TxErrorKind.UNKNOWN
    adapter.burn.assert_not_awaited()
    assert orchestrator.state.phase is Phase.IDLE


@pytest.mark.asyncio
async def test_burn_revert_is_classified_with_minimum():
    adapter = _adapter()
    adapter.burn = AsyncMock(
        return_value=(False, "execution reverted: BELOW_MIN_BURN_VALUE")
    )
    orchestrator, _, _ = _orchestrator(_view(), adapter)

    result = await orchestrator.burn(100 * E18)

    assert result.ok is False
    assert result.error.kind is TxErrorKind.BELOW_MIN_BURN_VALUE
    assert "0.05 BNB" in result.message
    assert orchestrator.state.phase is Phase.IDLE


@pytest.mark.asyncio
async def test_burn_inviter_priority():
    orchestrator, adapter, _ = _orchestrator()
    orchestrator.url_inviter = WALLET

    await orchestrator.burn(2 * E18, manual_inviter=INVITER)

    adapter.burn.assert_awaited_once_with(2 * E18, INVITER)


# -------------------------------------------------------------------- gate


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("start", "method", "phase"),
    [
        (lambda o: o.approve(2 * E18), "approve_unlimited", Phase.APPROVING),
        (lambda o: o.burn(2 * E18), "burn", Phase.BURNING),
        (lambda o: o.claim(ClaimKind.BURN_BNB), "claim_burn_bnb", Phase.CLAIMING),
        (lambda o: o.subscribe(), "subscribe", Phase.SUBSCRIBING),
    ],
    ids=["approve", "burn", "claim", "subscribe"],
)
async def test_operations_are_refused_while_one_is_in_flight(start, method, phase):
    release = asyncio.Event()
    adapter = _adapter()

    async def slow(*_args, **_kwargs):
        await release.wait()
        return True, "0xslow"

    setattr(adapter, method, AsyncMock(side_effect=slow))
    orchestrator, _, _ = _orchestrator(
        _view(burn_dividend=BurnDividendState(unpaid_bnb=1)), adapter
    )

    task = asyncio.create_task(start(orchestrator))
    for _ in range(100):
        if getattr(adapter, method).await_count:
            break
        await asyncio.sleep(0)
    assert orchestrator.state.phase is phase

    results = [
        await orchestrator.burn(2 * E18),
        await orchestrator.approve(2 * E18),
        await orchestrator.claim(ClaimKind.BURN_BNB),
        await orchestrator.subscribe(),
    ]
    release.set()
    finished = await task

    assert all(r.action == "busy" for r in results)
    assert finished.ok is True
    assert getattr(adapter, method).await_count == 1
    assert orchestrator.state.phase is Phase.IDLE


@pytest.mark.asyncio
async def test_unexpected_error_still_returns_to_idle():
    adapter = _adapter()
    adapter.burn = AsyncMock(side_effect=RuntimeError("boom"))
    orchestrator, _, _ = _orchestrator(_view(), adapter)

    with pytest.raises(RuntimeError):
        await orchestrator.burn(2 * E18)

    assert orchestrator.state.phase is Phase.IDLE


# ------------------------------------------------------------------ claims


@pytest.mark.parametrize(
    ("kind", "view_kwargs", "claimable"),
    [
        (ClaimKind.BURN_BNB, {}, False),
        (ClaimKind.BURN_BNB, {"burn_dividend": BurnDividendState(unpaid_bnb=1)}, True),
        (ClaimKind.BURN_TOKEN, {}, False),
        (ClaimKind.BURN_TOKEN, {"burn_dividend": BurnDividendState(unpaid_token=1)}, True),
        (
            ClaimKind.LOSS_DIVIDEND,
            {"pending_loss_dividend": MIN_LOSS_DIVIDEND_CLAIM_WEI - 1},
            False,
        ),
        (
            ClaimKind.LOSS_DIVIDEND,
            {"pending_loss_dividend": MIN_LOSS_DIVIDEND_CLAIM_WEI},
            True,
        ),
        (ClaimKind.NFT_MINT, {}, False),
        (ClaimKind.NFT_MINT, {"claimable_nfts": 1}, True),
        (ClaimKind.NFT_DIVIDEND, {}, True),
    ],
)
def test_claimable_thresholds(kind, view_kwargs, claimable):
    orchestrator, _, _ = _orchestrator(_view(**view_kwargs))
    assert orchestrator.claimable(kind) is claimable


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("kind", "method"),
    [
        (ClaimKind.BURN_BNB, "claim_burn_bnb"),
        (ClaimKind.BURN_TOKEN, "claim_burn_token"),
        (ClaimKind.LOSS_DIVIDEND, "claim_loss_dividend"),
        (ClaimKind.NFT_DIVIDEND, "claim_nft_dividend"),
        (ClaimKind.NFT_MINT, "claim_nft"),
    ],
)
async def test_claim_dispatches_and_refreshes(kind, method):
    view = _view(
        burn_dividend=BurnDividendState(unpaid_bnb=1, unpaid_token=1),
        pending_loss_dividend=E18,
        claimable_nfts=2,
    )
    orchestrator, adapter, store = _orchestrator(view)

    result = await orchestrator.claim(kind)

    assert result.ok is True
    assert result.tx_hashes == (f"0x{method}",)
    getattr(adapter, method).assert_awaited_once_with()
    assert store.refreshes == 1
    assert orchestrator.state.phase is Phase.IDLE


@pytest.mark.asyncio
async def test_claim_with_nothing_pending_is_rejected():
    orchestrator, adapter, _ = _orchestrator()

    result = await orchestrator.claim("BURN_BNB")

    assert result.action == "rejected"
    adapter.claim_burn_bnb.assert_not_awaited()


@pytest.mark.asyncio
async def test_claim_failure_is_classified():
    adapter = _adapter()
    adapter.claim_burn_token = AsyncMock(return_value=(False, "nonce too low"))
    orchestrator, _, store = _orchestrator(
        _view(burn_dividend=BurnDividendState(unpaid_token=5)), adapter
    )

    result = await orchestrator.claim(ClaimKind.BURN_TOKEN)

    assert result.ok is False
    assert result.message.startswith("Transaction failed: nonce too low")
    assert store.refreshes == 0
    assert orchestrator.state.phase is Phase.IDLE


# --------------------------------------------------------------- subscribe


@pytest.mark.asyncio
async def test_subscribe_requests_connection_first():
    session = _Session(connected=False)
    orchestrator, adapter, _ = _orchestrator(session=session)

    result = await orchestrator.subscribe()

    assert result.action == "connect"
    session.connect.assert_awaited_once()
    adapter.subscribe.assert_not_awaited()
    assert orchestrator.state.phase is Phase.IDLE


@pytest.mark.asyncio
async def test_subscribe_on_wrong_chain_requests_switch():
    session = _Session(chain_id=1)
    orchestrator, adapter, _ = _orchestrator(session=session)

    result = await orchestrator.subscribe()

    assert result.action == "switch_network"
    session.switch_network.assert_awaited_once_with(56)
    adapter.subscribe.assert_not_awaited()


@pytest.mark.asyncio
async def test_subscribe_switch_failure_asks_user():
    session = _Session(chain_id=1)
    session.switch_network = AsyncMock(side_effect=RuntimeError("unsupported"))
    orchestrator, _, _ = _orchestrator(session=session)

    result = await orchestrator.subscribe()

    assert result.message == "Please switch to BSC network"


@pytest.mark.asyncio
async def test_subscribe_without_signer_is_rejected():
    orchestrator, adapter, _ = _orchestrator(session=_Session(signer=False))

    result = await orchestrator.subscribe()

    assert result.action == "rejected"
    adapter.subscribe.assert_not_awaited()


@pytest.mark.asyncio
async def test_subscribe_insufficient_balance():
    adapter = _adapter(balance=E18 - 1)
    orchestrator, _, _ = _orchestrator(_view(price_per_share=E18), adapter)

    result = await orchestrator.subscribe()

    assert result.ok is False
    assert result.message == "Insufficient BNB balance"
    adapter.subscribe.assert_not_awaited()
    assert orchestrator.state.phase is Phase.IDLE


@pytest.mark.asyncio
async def test_subscribe_sends_price_times_shares_with_url_inviter():
    orchestrator, adapter, store = _orchestrator(_view(price_per_share=E18))

    result = await orchestrator.subscribe(url_inviter=INVITER, shares=3)

    assert result.ok is True
    adapter.subscribe.assert_awaited_once_with(INVITER, 3 * E18, 3)
    assert store.refreshes == 1


@pytest.mark.asyncio
async def test_subscribe_prefers_bound_inviter():
    orchestrator, adapter, _ = _orchestrator(
        _view(subscription_inviter=INVITER)
    )

    await orchestrator.subscribe(url_inviter=WALLET)

    assert adapter.subscribe.await_args.args[0] == INVITER


@pytest.mark.asyncio
async def test_subscribe_proceeds_when_balance_read_fails():
    adapter = _adapter()
    adapter.get_native_balance = AsyncMock(side_effect=RuntimeError("rpc down"))
    orchestrator, _, _ = _orchestrator(_view(), adapter)

    result = await orchestrator.subscribe()

    assert result.ok is True
    adapter.subscribe.assert_awaited_once()


@pytest.mark.asyncio
async def test_subscribe_failure_is_classified_and_returns_to_idle():
    adapter = _adapter()
    adapter.subscribe = AsyncMock(return_value=(False, "execution reverted: sold out"))
    orchestrator, _, store = _orchestrator(_view(price_per_share=E18), adapter)

    result = await orchestrator.subscribe(shares=2)

    assert result.ok is False
    assert result.error.kind is TxErrorKind.UNKNOWN
    assert result.message.startswith("Transaction failed: execution reverted: sold out")
    adapter.subscribe.assert_awaited_once_with(ZERO_ADDRESS, 2 * E18, 2)
    assert store.refreshes == 0
    assert orchestrator.state.phase is Phase.IDLE

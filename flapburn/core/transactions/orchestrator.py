from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from loguru import logger

from flapburn.adapters.flap_adapter.adapter import FlapAdapter
from flapburn.core.constants import ZERO_ADDRESS
from flapburn.core.constants.base import (
    DEFAULT_SUBSCRIBE_SHARES,
    DEFAULT_TOKEN_SYMBOL,
    MIN_LOSS_DIVIDEND_CLAIM_WEI,
    NATIVE_SYMBOL,
)
from flapburn.core.constants.chains import TARGET_CHAIN_ID
from flapburn.core.position.models import PositionView
from flapburn.core.position.store import PositionStore
from flapburn.core.transactions.errors import (
    ALLOWANCE_MARKER,
    ClassifiedError,
    TxErrorKind,
    classify_transaction_error,
)
from flapburn.core.transactions.state import (
    ClaimKind,
    Event,
    TransactionState,
    next_state,
)
from flapburn.core.utils.amm_math import ReservePair, min_input_for, quote
from flapburn.core.utils.referral import resolve_inviter
from flapburn.core.utils.units import (
    format_native,
    format_whole_tokens,
    parse_token_amount,
)
from flapburn.core.wallet import WalletSession

AdapterFactory = Callable[[WalletSession], FlapAdapter]


@dataclass(frozen=True)
class OperationResult:
    operation: str
    ok: bool
    tx_hashes: tuple[str, ...] = ()
    message: str = ""
    error: ClassifiedError | None = None
    # set when nothing was submitted: "busy", "rejected", "connect", "switch_network"
    action: str | None = None


@dataclass(frozen=True)
class BurnCheck:
    valid: bool
    burn_value: int = 0
    min_burn_value: int = 0
    min_tokens: int = 0
    message: str = ""


def check_burn_value(
    amount: int,
    reserves: ReservePair | None,
    min_burn_value: int,
    symbol: str = DEFAULT_TOKEN_SYMBOL,
) -> BurnCheck:
    """Quote ``amount`` against the pool and compare with the protocol minimum.

    The quote includes swap slippage, which is how the burn contract values it.
    """
    amount = int(amount)
    if amount <= 0:
        return BurnCheck(valid=False)
    burn_value = quote(amount, reserves)
    if burn_value >= int(min_burn_value):
        return BurnCheck(valid=True, burn_value=burn_value, min_burn_value=min_burn_value)
    min_tokens = min_input_for(min_burn_value, reserves)
    return BurnCheck(
        valid=False,
        burn_value=burn_value,
        min_burn_value=min_burn_value,
        min_tokens=min_tokens,
        message=(
            f"Burn value too low: {format_native(burn_value)} {NATIVE_SYMBOL} < "
            f"minimum {format_native(min_burn_value)} {NATIVE_SYMBOL}. "
            f"Burn at least {format_whole_tokens(min_tokens)} {symbol}"
        ),
    )


def _default_adapter_factory(session: WalletSession) -> FlapAdapter:
    return FlapAdapter(
        chain_id=session.chain_id,
        wallet_address=session.address,
        sign_callback=session.sign_callback,
    )


class TransactionOrchestrator:
    """Drives approve / burn / claim / subscribe, one at a time.

    Entry is refused unless the phase is IDLE and every operation returns to
    IDLE on exit. Allowance and reserves are re-read right before a burn is
    submitted; the cached view is only used for pre-checks.
    """

    def __init__(
        self,
        session: WalletSession,
        store: PositionStore,
        *,
        adapter_factory: AdapterFactory | None = None,
    ) -> None:
        self.session = session
        self.store = store
        self._adapter_factory = adapter_factory or _default_adapter_factory
        self.state = TransactionState()
        self.burn_amount = 0
        self.manual_inviter: str | None = None
        self.url_inviter: str | None = None
        self.logger = logger.bind(component="orchestrator")

    @property
    def view(self) -> PositionView | None:
        return self.store.view

    def set_burn_amount(self, text: str | None) -> int:
        self.burn_amount = parse_token_amount(text)
        return self.burn_amount

    def _transition(self, event: Event, claim_kind: ClaimKind | None = None) -> None:
        self.state = next_state(self.state, event, claim_kind=claim_kind)

    def _reset(self) -> None:
        if not self.state.is_idle:
            self._transition(Event.FINISHED)

    def _busy(self, operation: str) -> OperationResult:
        self.logger.info(f"{operation} ignored: {self.state.phase} in progress")
        return OperationResult(
            operation,
            ok=False,
            message=f"Another transaction is in progress ({self.state.phase})",
            action="busy",
        )

    def _failure(
        self,
        operation: str,
        raw_error: str,
        tx_hashes: list[str],
    ) -> OperationResult:
        min_burn_value = self.view.onchain.burn_token.min_burn_value if self.view else None
        classified = classify_transaction_error(raw_error, min_burn_value)
        self.logger.error(f"{operation} failed ({classified.kind}): {raw_error}")
        return OperationResult(
            operation,
            ok=False,
            tx_hashes=tuple(tx_hashes),
            message=classified.message,
            error=classified,
        )

    def _token_address(self, adapter: FlapAdapter) -> str:
        return adapter.token_address(self.view.onchain.burn_token if self.view else None)

    # ------------------------------------------------------------- pre-checks

    def check_burn_value(self, amount: int | None = None) -> BurnCheck:
        amount = self.burn_amount if amount is None else int(amount)
        if self.view is None:
            return check_burn_value(amount, None, 0)
        onchain = self.view.onchain
        return check_burn_value(
            amount,
            onchain.pool.reserves,
            onchain.burn_token.min_burn_value,
            onchain.token.symbol,
        )

    def approval_needed(self, amount: int | None = None) -> bool:
        amount = self.burn_amount if amount is None else int(amount)
        if amount <= 0:
            return False
        allowance = self.view.onchain.token.allowance if self.view else 0
        return allowance < amount

    def _precheck_burn(self, operation: str, amount: int) -> OperationResult | None:
        if amount <= 0:
            return OperationResult(
                operation, ok=False, message="Enter an amount to burn", action="rejected"
            )
        check = self.check_burn_value(amount)
        if not check.valid:
            return OperationResult(
                operation, ok=False, message=check.message, action="rejected"
            )
        return None

    # --------------------------------------------------------- approve / burn

    async def burn(
        self, amount: int | None = None, *, manual_inviter: str | None = None
    ) -> OperationResult:
        """Burn ``amount``.

        The allowance is re-read on entry; only a short fresh read redirects
        into approval, whatever the cached view says.
        """
        if not self.state.is_idle:
            return self._busy("burn")
        amount = self.burn_amount if amount is None else int(amount)
        if manual_inviter is not None:
            self.manual_inviter = manual_inviter
        rejected = self._precheck_burn("burn", amount)
        if rejected is not None:
            return rejected

        adapter = self._adapter_factory(self.session)
        self._transition(Event.BURN)
        try:
            return await self._burn_step(adapter, amount, [], allow_redirect=True)
        finally:
            self._reset()

    async def approve(self, amount: int | None = None) -> OperationResult:
        """Approve the burn registry for an unlimited amount, then burn."""
        if not self.state.is_idle:
            return self._busy("approve")
        amount = self.burn_amount if amount is None else int(amount)
        rejected = self._precheck_burn("approve", amount)
        if rejected is not None:
            return rejected

        adapter = self._adapter_factory(self.session)
        self._transition(Event.APPROVE)
        try:
            return await self._approve_then_burn(adapter, amount, [])
        finally:
            self._reset()

    async def _approve_then_burn(
        self, adapter: FlapAdapter, amount: int, tx_hashes: list[str]
    ) -> OperationResult:
        token = self._token_address(adapter)
        if token == ZERO_ADDRESS:
            return self._failure("approve", "token address unavailable", tx_hashes)

        ok, result = await adapter.approve_unlimited(token)
        if not ok:
            return self._failure("approve", str(result), tx_hashes)
        tx_hashes.append(str(result))
        self.logger.info(f"Approval confirmed: {result}")
        await self.store.refresh()

        self._transition(Event.APPROVED)
        return await self._burn_step(adapter, amount, tx_hashes, allow_redirect=False)

    async def _burn_step(
        self,
        adapter: FlapAdapter,
        amount: int,
        tx_hashes: list[str],
        *,
        allow_redirect: bool,
    ) -> OperationResult:
        token = self._token_address(adapter)
        if token == ZERO_ADDRESS:
            return self._failure("burn", "token address unavailable", tx_hashes)

        try:
            allowance = await adapter.get_allowance(token, self.session.address)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning(f"Allowance check failed, submitting anyway: {exc}")
        else:
            if allowance.amount < amount:
                if not allow_redirect:
                    return self._failure("burn", ALLOWANCE_MARKER, tx_hashes)
                self.logger.info(
                    f"Allowance {allowance.amount} < {amount}; approving first"
                )
                self._transition(Event.ALLOWANCE_SHORT)
                return await self._approve_then_burn(adapter, amount, tx_hashes)

        check = await self._fresh_burn_check(adapter, token, amount)
        if not check.valid:
            self.logger.info(f"Burn rejected before submission: {check.message}")
            return OperationResult(
                "burn",
                ok=False,
                tx_hashes=tuple(tx_hashes),
                message=check.message,
                error=ClassifiedError(
                    TxErrorKind.BELOW_MIN_BURN_VALUE, check.message, check.message
                ),
                action="rejected",
            )

        burn_token = self.view.onchain.burn_token if self.view else None
        inviter = resolve_inviter(
            onchain_inviter=burn_token.inviter if burn_token else None,
            manual_inviter=self.manual_inviter,
            url_inviter=self.url_inviter,
            root_inviter=burn_token.root_inviter if burn_token else None,
        )
        ok, result = await adapter.burn(amount, inviter)
        if not ok:
            return self._failure("burn", str(result), tx_hashes)
        tx_hashes.append(str(result))
        self.logger.info(f"Burned {amount} with inviter {inviter}: {result}")

        self.burn_amount = 0
        await self.store.refresh()
        return OperationResult("burn", ok=True, tx_hashes=tuple(tx_hashes))

    async def _fresh_burn_check(
        self, adapter: FlapAdapter, token: str, amount: int
    ) -> BurnCheck:
        onchain = self.view.onchain if self.view else None
        reserves = onchain.pool.reserves if onchain else None
        pool_address = (
            adapter.pool_address(onchain.loss_dividend) if onchain else None
        )
        try:
            fresh = await adapter.get_reserves(token, pool_address)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning(f"Reserve refresh failed, using cached reserves: {exc}")
        else:
            if fresh is not None:
                reserves = fresh
        return check_burn_value(
            amount,
            reserves,
            onchain.burn_token.min_burn_value if onchain else 0,
            onchain.token.symbol if onchain else DEFAULT_TOKEN_SYMBOL,
        )

    # ----------------------------------------------------------------- claims

    def claimable(self, kind: ClaimKind) -> bool:
        if kind is ClaimKind.NFT_DIVIDEND:
            return True
        if self.view is None:
            return False
        onchain = self.view.onchain
        match kind:
            case ClaimKind.BURN_BNB:
                return onchain.burn_dividend.unpaid_bnb > 0
            case ClaimKind.BURN_TOKEN:
                return onchain.burn_dividend.unpaid_token > 0
            case ClaimKind.LOSS_DIVIDEND:
                return (
                    onchain.loss_dividend.pending_dividend >= MIN_LOSS_DIVIDEND_CLAIM_WEI
                )
            case ClaimKind.NFT_MINT:
                return onchain.nft_dividend.claimable_nfts > 0
        return False

    async def claim(self, kind: ClaimKind | str) -> OperationResult:
        kind = ClaimKind(kind)
        operation = f"claim:{kind}"
        if not self.state.is_idle:
            return self._busy(operation)
        if not self.claimable(kind):
            return OperationResult(
                operation, ok=False, message="Nothing to claim", action="rejected"
            )

        adapter = self._adapter_factory(self.session)
        self._transition(Event.CLAIM, claim_kind=kind)
        try:
            send = {
                ClaimKind.BURN_BNB: adapter.claim_burn_bnb,
                ClaimKind.BURN_TOKEN: adapter.claim_burn_token,
                ClaimKind.LOSS_DIVIDEND: adapter.claim_loss_dividend,
                ClaimKind.NFT_DIVIDEND: adapter.claim_nft_dividend,
                ClaimKind.NFT_MINT: adapter.claim_nft,
            }[kind]
            ok, result = await send()
            if not ok:
                return self._failure(operation, str(result), [])
            self.logger.info(f"{operation} confirmed: {result}")
            await self.store.refresh()
            return OperationResult(operation, ok=True, tx_hashes=(str(result),))
        finally:
            self._reset()

    # -------------------------------------------------------------- subscribe

    async def subscribe(
        self,
        url_inviter: str | None = None,
        shares: int = DEFAULT_SUBSCRIBE_SHARES,
    ) -> OperationResult:
        if not self.state.is_idle:
            return self._busy("subscribe")

        session = self.session
        if not session.is_connected:
            await session.connect()
            return OperationResult(
                "subscribe", ok=False, message="Wallet connection requested", action="connect"
            )
        if session.chain_id != TARGET_CHAIN_ID:
            try:
                await session.switch_network(TARGET_CHAIN_ID)
            except Exception as exc:  # noqa: BLE001
                self.logger.warning(f"Network switch failed: {exc}")
                return OperationResult(
                    "subscribe",
                    ok=False,
                    message="Please switch to BSC network",
                    action="switch_network",
                )
            return OperationResult(
                "subscribe",
                ok=False,
                message="Network switch requested; retry once on BSC",
                action="switch_network",
            )
        if not session.address or session.sign_callback is None:
            return OperationResult(
                "subscribe", ok=False, message="signer not available", action="rejected"
            )

        subscription = self.view.onchain.nft_subscription if self.view else None
        value = (subscription.price_per_share if subscription else 0) * int(shares)
        adapter = self._adapter_factory(session)

        self._transition(Event.SUBSCRIBE)
        try:
            try:
                balance = await adapter.get_native_balance(session.address)
            except Exception as exc:  # noqa: BLE001
                self.logger.error(f"Balance check failed: {exc}")
            else:
                if balance < value:
                    return OperationResult(
                        "subscribe",
                        ok=False,
                        message=f"Insufficient {NATIVE_SYMBOL} balance",
                        action="rejected",
                    )

            inviter = resolve_inviter(
                onchain_inviter=subscription.inviter if subscription else None,
                url_inviter=url_inviter or self.url_inviter,
                root_inviter=subscription.root_inviter if subscription else None,
            )
            ok, result = await adapter.subscribe(inviter, value, shares)
            if not ok:
                return self._failure("subscribe", str(result), [])
            self.logger.info(f"Subscribed {shares} share(s) with inviter {inviter}: {result}")
            await self.store.refresh()
            return OperationResult("subscribe", ok=True, tx_hashes=(str(result),))
        finally:
            self._reset()

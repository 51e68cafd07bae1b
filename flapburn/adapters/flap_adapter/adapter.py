from __future__ import annotations

from typing import Any

from eth_utils import is_address, to_checksum_address
from web3 import AsyncWeb3

from flapburn.core.adapters.BaseAdapter import BaseAdapter, require_wallet
from flapburn.core.adapters.decorators import status_tuple
from flapburn.core.config import get_contracts
from flapburn.core.constants import ZERO_ADDRESS
from flapburn.core.constants.base import (
    DEFAULT_SUBSCRIBE_SHARES,
    DEFAULT_TOKEN_SYMBOL,
    MAX_UINT256,
)
from flapburn.core.constants.chains import TARGET_CHAIN_ID, read_chain_id
from flapburn.core.constants.contracts import FlapContracts
from flapburn.core.constants.erc20_abi import ERC20_ABI
from flapburn.core.constants.flap_abi import (
    BURN_DIVIDEND_ABI,
    BURN_TOKEN_ABI,
    LOSS_DIVIDEND_ABI,
    NFT_DIVIDEND_ABI,
    NFT_SUBSCRIPTION_ABI,
    PAIR_ABI,
)
from flapburn.core.position.errors import (
    ContractGroupError,
    ContractNotDeployedError,
    InvalidPoolError,
)
from flapburn.core.position.models import (
    AllowanceState,
    BurnDividendState,
    BurnTokenState,
    CachedLoss,
    LossDividendState,
    NftDividendState,
    NftSubscriptionState,
    PoolState,
    PositionSnapshot,
    TokenState,
)
from flapburn.core.utils.amm_math import ReservePair, orient_reserves
from flapburn.core.utils.read_batch import (
    FieldRead,
    ReadCallFactory,
    ReadError,
    errors,
    read_fields,
    values,
)
from flapburn.core.utils.tokens import (
    approve_transaction,
    read_allowance,
    read_native_balance,
)
from flapburn.core.utils.transaction import encode_call, send_transaction
from flapburn.core.utils.web3 import is_contract_deployed, web3_from_chain_id

GroupRead = tuple[Any, list[ReadError]]

# Value each field degrades to when its own call fails.
BURN_TOKEN_FALLBACKS: dict[str, Any] = {
    "token": ZERO_ADDRESS,
    "root_inviter": None,
    "inviter": ZERO_ADDRESS,
    "burned_value": 0,
    "total_burned_value": 0,
    "invitee_count": 0,
    "min_burn_value": 0,
}
TOKEN_FALLBACKS: dict[str, Any] = {
    "symbol": DEFAULT_TOKEN_SYMBOL,
    "balance": 0,
    "allowance": 0,
}
BURN_DIVIDEND_FALLBACKS: dict[str, Any] = {
    "unpaid_bnb": 0,
    "unpaid_token": 0,
}
LOSS_DIVIDEND_FALLBACKS: dict[str, Any] = {
    "snapshot": (0, 0, 0),
    "cached_loss": (0, False),
    "contract_balance": 0,
    "total_allocated": 0,
    "total_claimed": 0,
    "pool": ZERO_ADDRESS,
    "pending_dividend": 0,
}
POOL_FALLBACKS: dict[str, Any] = {
    "reserves": (0, 0, 0),
    "token0": ZERO_ADDRESS,
}
NFT_DIVIDEND_FALLBACKS: dict[str, Any] = {
    "user_info": (0, 0, 0, 0),
    "claimable_nfts": 0,
}
NFT_SUBSCRIPTION_FALLBACKS: dict[str, Any] = {
    "price_per_share": 0,
    "two_level_subscribed": 0,
    "team_subscribed": 0,
    "inviter": ZERO_ADDRESS,
    "root_inviter": None,
}


def _field_reads(
    fallbacks: dict[str, Any], calls: dict[str, ReadCallFactory]
) -> list[FieldRead]:
    return [FieldRead(name, call, fallbacks[name]) for name, call in calls.items()]


def _safe_checksum(value: Any, default: str | None = ZERO_ADDRESS) -> str | None:
    if value is None:
        return default
    value_str = str(value)
    if is_address(value_str):
        return to_checksum_address(value_str)
    return default


def _is_zero_address(value: str | None) -> bool:
    return not value or not is_address(value) or int(value, 16) == 0


class FlapAdapter(BaseAdapter):
    """Reads and writes against the burn / dividend / subscription contracts.

    Group reads take an open ``web3`` so one refresh shares a connection; each
    probes for bytecode first and raises ``ContractNotDeployedError`` when the
    configured address is empty. Individual calls inside a group fall back to
    the values in the ``*_FALLBACKS`` tables.
    """

    adapter_type = "FLAP"

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        *,
        chain_id: int | None = TARGET_CHAIN_ID,
        contracts: FlapContracts | None = None,
        sign_callback=None,
        wallet_address: str | None = None,
    ) -> None:
        super().__init__(
            "flap_adapter",
            config,
            wallet_address=wallet_address,
            sign_callback=sign_callback,
        )
        self.chain_id = int(chain_id) if chain_id is not None else TARGET_CHAIN_ID
        self.read_chain_id = read_chain_id(chain_id)
        self.contracts: FlapContracts = contracts or get_contracts(chain_id)

    def _address(self, name: str) -> str:
        address = self.contracts.get(name)  # type: ignore[misc]
        if _is_zero_address(address):
            raise ValueError(f"{name} contract not configured")
        return to_checksum_address(address)

    async def _require_deployed(
        self, web3: AsyncWeb3, group: str, address: str | None
    ) -> str:
        if _is_zero_address(address) or not await is_contract_deployed(web3, address):
            raise ContractNotDeployedError(group, address)
        return to_checksum_address(address)

    def token_address(self, burn_token: BurnTokenState | None = None) -> str:
        """Token bound to the burn registry, else the configured token."""
        if burn_token is not None and not _is_zero_address(burn_token.token):
            return burn_token.token
        return self.contracts.get("token") or ZERO_ADDRESS

    def pool_address(self, loss_dividend: LossDividendState | None = None) -> str:
        if loss_dividend is not None and not _is_zero_address(loss_dividend.pool):
            return loss_dividend.pool
        return self.contracts.get("pair") or ZERO_ADDRESS

    # ------------------------------------------------------------------ reads

    async def read_burn_token(self, web3: AsyncWeb3, account: str) -> GroupRead:
        address = await self._require_deployed(
            web3, "burn_token", self.contracts.get("burn_token")
        )
        fns = web3.eth.contract(address=address, abi=BURN_TOKEN_ABI).functions
        results = await read_fields(
            *_field_reads(
                BURN_TOKEN_FALLBACKS,
                {
                    "token": lambda: fns.token().call(),
                    "root_inviter": lambda: fns.rootInviter().call(),
                    "inviter": lambda: fns.inviterOf(account).call(),
                    "burned_value": lambda: fns.burnedValueOf(account).call(),
                    "total_burned_value": lambda: fns.totalBurnedValue().call(),
                    "invitee_count": lambda: fns.inviteeCount(account).call(),
                    "min_burn_value": lambda: fns.minBurnValue().call(),
                },
            )
        )
        v = values(results)
        state = BurnTokenState(
            token=_safe_checksum(v["token"]),
            root_inviter=_safe_checksum(v["root_inviter"], None),
            inviter=_safe_checksum(v["inviter"]),
            burned_value=int(v["burned_value"]),
            total_burned_value=int(v["total_burned_value"]),
            invitee_count=int(v["invitee_count"]),
            min_burn_value=int(v["min_burn_value"]),
        )
        return state, errors(results)

    async def read_token(
        self, web3: AsyncWeb3, account: str, token_address: str
    ) -> GroupRead:
        address = await self._require_deployed(web3, "token", token_address)
        spender = self.contracts.get("burn_token") or ZERO_ADDRESS
        fns = web3.eth.contract(address=address, abi=ERC20_ABI).functions
        results = await read_fields(
            *_field_reads(
                TOKEN_FALLBACKS,
                {
                    "symbol": lambda: fns.symbol().call(),
                    "balance": lambda: fns.balanceOf(account).call(),
                    "allowance": lambda: fns.allowance(
                        account, to_checksum_address(spender)
                    ).call(),
                },
            )
        )
        v = values(results)
        state = TokenState(
            symbol=str(v["symbol"] or DEFAULT_TOKEN_SYMBOL),
            balance=int(v["balance"]),
            allowance=int(v["allowance"]),
        )
        return state, errors(results)

    async def read_burn_dividend(self, web3: AsyncWeb3, account: str) -> GroupRead:
        address = await self._require_deployed(
            web3, "burn_dividend", self.contracts.get("burn_dividend")
        )
        fns = web3.eth.contract(address=address, abi=BURN_DIVIDEND_ABI).functions
        results = await read_fields(
            *_field_reads(
                BURN_DIVIDEND_FALLBACKS,
                {
                    "unpaid_bnb": lambda: fns.getUnpaidDividendBNB(account).call(),
                    "unpaid_token": lambda: fns.getUnpaidDividendToken(account).call(),
                },
            )
        )
        v = values(results)
        state = BurnDividendState(
            unpaid_bnb=int(v["unpaid_bnb"]), unpaid_token=int(v["unpaid_token"])
        )
        return state, errors(results)

    async def read_loss_dividend(self, web3: AsyncWeb3, account: str) -> GroupRead:
        address = await self._require_deployed(
            web3, "loss_dividend", self.contracts.get("loss_dividend")
        )
        fns = web3.eth.contract(address=address, abi=LOSS_DIVIDEND_ABI).functions
        results = await read_fields(
            *_field_reads(
                LOSS_DIVIDEND_FALLBACKS,
                {
                    "snapshot": lambda: fns.userSnapshots(account).call(),
                    "cached_loss": lambda: fns.getCachedLoss(account).call(),
                    "contract_balance": lambda: web3.eth.get_balance(address),
                    "total_allocated": lambda: fns.totalDividendsAllocated().call(),
                    "total_claimed": lambda: fns.totalDividendsClaimed().call(),
                    "pool": lambda: fns.pool().call(),
                },
            )
        )
        v = values(results)
        cost_basis, sold_value, dividend_received = v["snapshot"]
        loss, valid = v["cached_loss"]
        cached_loss = CachedLoss(loss=int(loss), valid=bool(valid))

        # The contract only prices a dividend against a loss it vouches for.
        pending_dividend = 0
        if cached_loss.valid and cached_loss.loss > 0:
            pending = await read_fields(
                FieldRead(
                    "pending_dividend",
                    lambda: fns.getUnpaidDividend(account, cached_loss.loss).call(),
                    LOSS_DIVIDEND_FALLBACKS["pending_dividend"],
                )
            )
            pending_dividend = int(pending["pending_dividend"].value)
            results = {**results, **pending}

        received = int(v["contract_balance"]) + int(v["total_claimed"])
        state = LossDividendState(
            snapshot=PositionSnapshot(
                cost_basis=int(cost_basis),
                sold_value=int(sold_value),
                dividend_received=int(dividend_received),
            ),
            cached_loss=cached_loss,
            pending_dividend=pending_dividend,
            available_balance=max(received - int(v["total_allocated"]), 0),
            total_allocated=int(v["total_allocated"]),
            total_claimed=int(v["total_claimed"]),
            pool=_safe_checksum(v["pool"]),
        )
        return state, errors(results)

    async def read_pool(
        self, web3: AsyncWeb3, pool_address: str, token_address: str
    ) -> GroupRead:
        address = await self._require_deployed(web3, "pool", pool_address)
        if _is_zero_address(token_address):
            raise InvalidPoolError("pool", "token address unknown")
        fns = web3.eth.contract(address=address, abi=PAIR_ABI).functions
        results = await read_fields(
            *_field_reads(
                POOL_FALLBACKS,
                {
                    "reserves": lambda: fns.getReserves().call(),
                    "token0": lambda: fns.token0().call(),
                },
            )
        )
        v = values(results)
        reserve0, reserve1 = v["reserves"][0], v["reserves"][1]
        reserves = orient_reserves(reserve0, reserve1, v["token0"], token_address)
        if reserves is None:
            raise InvalidPoolError("pool", f"invalid token0 {v['token0']!r}")
        return PoolState(reserves=reserves), errors(results)

    async def read_nft_dividend(self, web3: AsyncWeb3, account: str) -> GroupRead:
        address = await self._require_deployed(
            web3, "nft_dividend", self.contracts.get("nft_dividend")
        )
        fns = web3.eth.contract(address=address, abi=NFT_DIVIDEND_ABI).functions
        results = await read_fields(
            *_field_reads(
                NFT_DIVIDEND_FALLBACKS,
                {
                    "user_info": lambda: fns.getUserInfo(account).call(),
                    "claimable_nfts": lambda: fns.getClaimableNFTCount(account).call(),
                },
            )
        )
        v = values(results)
        performance, nft_count, total_dividends, pending_dividends = v["user_info"]
        state = NftDividendState(
            performance=int(performance),
            nft_count=int(nft_count),
            total_dividends=int(total_dividends),
            pending_dividends=int(pending_dividends),
            claimable_nfts=int(v["claimable_nfts"]),
        )
        return state, errors(results)

    async def read_nft_subscription(
        self, web3: AsyncWeb3, account: str
    ) -> GroupRead:
        address = await self._require_deployed(
            web3, "nft_subscription", self.contracts.get("nft_subscription")
        )
        fns = web3.eth.contract(address=address, abi=NFT_SUBSCRIPTION_ABI).functions
        results = await read_fields(
            *_field_reads(
                NFT_SUBSCRIPTION_FALLBACKS,
                {
                    "price_per_share": lambda: fns.pricePerShare().call(),
                    "two_level_subscribed": lambda: fns.getTwoLevelSubscribed(
                        account
                    ).call(),
                    "team_subscribed": lambda: fns.teamSubscribed(account).call(),
                    "inviter": lambda: fns.inviterOf(account).call(),
                    "root_inviter": lambda: fns.rootInviter().call(),
                },
            )
        )
        v = values(results)
        state = NftSubscriptionState(
            price_per_share=int(v["price_per_share"]),
            two_level_subscribed=int(v["two_level_subscribed"]),
            team_subscribed=int(v["team_subscribed"]),
            inviter=_safe_checksum(v["inviter"]),
            root_inviter=_safe_checksum(v["root_inviter"], None),
        )
        return state, errors(results)

    # ----------------------------------------------------- fresh reads (pre-submit)

    async def get_allowance(
        self, token_address: str, owner: str | None = None
    ) -> AllowanceState:
        owner = to_checksum_address(owner or self.wallet_address or ZERO_ADDRESS)
        spender = self._address("burn_token")
        amount = await read_allowance(
            token_address, self.read_chain_id, owner, spender
        )
        return AllowanceState(owner=owner, spender=spender, amount=int(amount))

    async def get_native_balance(self, address: str | None = None) -> int:
        account = address or self.wallet_address
        if not account:
            raise ValueError("wallet address not configured")
        return await read_native_balance(self.read_chain_id, account)

    async def get_reserves(
        self, token_address: str, pool_address: str | None = None
    ) -> ReservePair | None:
        """Current (token, native) reserves, or ``None`` when the pool is unusable."""
        async with web3_from_chain_id(self.read_chain_id) as web3:
            if _is_zero_address(pool_address):
                pool_address = await self._read_pool_address(web3)
            try:
                pool, _ = await self.read_pool(web3, pool_address, token_address)
            except ContractGroupError as exc:
                self.logger.warning(f"Reserves unavailable: {exc}")
                return None
        return pool.reserves

    async def _read_pool_address(self, web3: AsyncWeb3) -> str:
        loss_dividend = self.contracts.get("loss_dividend")
        if not _is_zero_address(loss_dividend):
            contract = web3.eth.contract(
                address=to_checksum_address(loss_dividend), abi=LOSS_DIVIDEND_ABI
            )
            try:
                pool = await contract.functions.pool().call()
            except Exception as exc:  # noqa: BLE001
                self.logger.debug(f"pool() failed, using configured pair: {exc}")
            else:
                if not _is_zero_address(pool):
                    return to_checksum_address(pool)
        return self.pool_address()

    # ----------------------------------------------------------------- writes

    async def _send(
        self, name: str, abi: list[dict[str, Any]], fn_name: str, args: list[Any], value: int = 0
    ) -> str:
        tx = await encode_call(
            target=self._address(name),
            abi=abi,
            fn_name=fn_name,
            args=args,
            from_address=self.wallet_address,
            chain_id=self.chain_id,
            value=value,
        )
        return await send_transaction(tx, self.sign_callback)

    @require_wallet
    @status_tuple
    async def approve_unlimited(self, token_address: str) -> str:
        tx = await approve_transaction(
            token_address=token_address,
            spender=self._address("burn_token"),
            amount=MAX_UINT256,
            from_address=self.wallet_address,
            chain_id=self.chain_id,
        )
        return await send_transaction(tx, self.sign_callback)

    @require_wallet
    @status_tuple
    async def burn(self, amount: int, inviter: str) -> str:
        if int(amount) <= 0:
            raise ValueError("amount must be positive")
        return await self._send(
            "burn_token",
            BURN_TOKEN_ABI,
            "burn",
            [int(amount), to_checksum_address(inviter)],
        )

    @require_wallet
    @status_tuple
    async def claim_burn_bnb(self) -> str:
        return await self._send("burn_dividend", BURN_DIVIDEND_ABI, "claimBNB", [])

    @require_wallet
    @status_tuple
    async def claim_burn_token(self) -> str:
        return await self._send("burn_dividend", BURN_DIVIDEND_ABI, "claimToken", [])

    @require_wallet
    @status_tuple
    async def claim_loss_dividend(self) -> str:
        return await self._send("loss_dividend", LOSS_DIVIDEND_ABI, "claim", [])

    @require_wallet
    @status_tuple
    async def claim_nft_dividend(self) -> str:
        return await self._send("nft_dividend", NFT_DIVIDEND_ABI, "claim", [])

    @require_wallet
    @status_tuple
    async def claim_nft(self) -> str:
        return await self._send("nft_dividend", NFT_DIVIDEND_ABI, "claimNFT", [])

    @require_wallet
    @status_tuple
    async def subscribe(
        self,
        inviter: str,
        value: int,
        shares: int = DEFAULT_SUBSCRIBE_SHARES,
    ) -> str:
        return await self._send(
            "nft_subscription",
            NFT_SUBSCRIPTION_ABI,
            "subscribe",
            [int(shares), to_checksum_address(inviter)],
            value=int(value),
        )

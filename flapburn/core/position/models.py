from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from flapburn.core.constants import ZERO_ADDRESS
from flapburn.core.constants.base import DEFAULT_TOKEN_SYMBOL
from flapburn.core.utils.amm_math import ReservePair
from flapburn.core.utils.read_batch import ReadError

PositionSource = Literal["onchain", "offchain"]


@dataclass(frozen=True)
class CachedLoss:
    loss: int = 0
    valid: bool = False


@dataclass(frozen=True)
class PositionSnapshot:
    cost_basis: int = 0
    sold_value: int = 0
    dividend_received: int = 0


@dataclass(frozen=True)
class AllowanceState:
    owner: str
    spender: str
    amount: int


# -- per contract group views; every default is the "group unavailable" state --


@dataclass(frozen=True)
class BurnTokenState:
    token: str = ZERO_ADDRESS
    root_inviter: str | None = None
    inviter: str = ZERO_ADDRESS
    burned_value: int = 0
    total_burned_value: int = 0
    invitee_count: int = 0
    min_burn_value: int = 0


@dataclass(frozen=True)
class TokenState:
    symbol: str = DEFAULT_TOKEN_SYMBOL
    balance: int = 0
    allowance: int = 0


@dataclass(frozen=True)
class BurnDividendState:
    unpaid_bnb: int = 0
    unpaid_token: int = 0


@dataclass(frozen=True)
class LossDividendState:
    snapshot: PositionSnapshot = field(default_factory=PositionSnapshot)
    cached_loss: CachedLoss = field(default_factory=CachedLoss)
    pending_dividend: int = 0
    available_balance: int = 0
    total_allocated: int = 0
    total_claimed: int = 0
    pool: str = ZERO_ADDRESS

    @property
    def total_dividend(self) -> int:
        return self.snapshot.dividend_received + self.pending_dividend


@dataclass(frozen=True)
class PoolState:
    reserves: ReservePair | None = None
    holding_value: int = 0


@dataclass(frozen=True)
class NftDividendState:
    performance: int = 0
    nft_count: int = 0
    total_dividends: int = 0
    pending_dividends: int = 0
    claimable_nfts: int = 0


@dataclass(frozen=True)
class NftSubscriptionState:
    price_per_share: int = 0
    two_level_subscribed: int = 0
    team_subscribed: int = 0
    inviter: str = ZERO_ADDRESS
    root_inviter: str | None = None


@dataclass(frozen=True)
class OnchainState:
    chain_id: int
    account: str
    burn_token: BurnTokenState = field(default_factory=BurnTokenState)
    token: TokenState = field(default_factory=TokenState)
    burn_dividend: BurnDividendState = field(default_factory=BurnDividendState)
    loss_dividend: LossDividendState = field(default_factory=LossDividendState)
    pool: PoolState = field(default_factory=PoolState)
    nft_dividend: NftDividendState = field(default_factory=NftDividendState)
    nft_subscription: NftSubscriptionState = field(
        default_factory=NftSubscriptionState
    )
    read_errors: tuple[ReadError, ...] = ()
    unavailable_groups: tuple[str, ...] = ()


class OffchainThresholds(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    min_holding_value: str | None = Field(default=None, alias="minHoldingValue")
    min_loss_value: str | None = Field(default=None, alias="minLossValue")

    @field_validator("*", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        return None if value is None else str(value)


class OffchainSnapshot(BaseModel):
    """``GET /user-status/{address}`` payload; amounts are decimal-string wei."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    cost_basis: str | None = Field(default=None, alias="costBasis")
    sold_value: str | None = Field(default=None, alias="soldValue")
    current_holding_value: str | None = Field(
        default=None, alias="currentHoldingValue"
    )
    loss_amount: str | None = Field(default=None, alias="lossAmount")
    can_claim: bool | None = Field(default=None, alias="canClaim")
    thresholds: OffchainThresholds | None = None

    @field_validator(
        "cost_basis", "sold_value", "current_holding_value", "loss_amount", mode="before"
    )
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        return None if value is None else str(value)

    # Optional fields never reject the snapshot; the amounts above still apply.
    @field_validator("can_claim", mode="before")
    @classmethod
    def _flag_or_none(cls, value: Any) -> bool | None:
        return value if isinstance(value, bool) else None

    @field_validator("thresholds", mode="before")
    @classmethod
    def _mapping_or_none(cls, value: Any) -> Any:
        return value if isinstance(value, dict | OffchainThresholds) else None


@dataclass(frozen=True)
class EffectivePosition:
    cost_basis: int = 0
    sold_value: int = 0
    holding_value: int = 0
    loss_amount: int = 0
    source: PositionSource = "onchain"


@dataclass(frozen=True)
class PositionView:
    onchain: OnchainState
    offchain: OffchainSnapshot | None
    effective: EffectivePosition
    refreshed_at: float

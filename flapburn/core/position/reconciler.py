from __future__ import annotations

from flapburn.core.position.models import (
    CachedLoss,
    EffectivePosition,
    OffchainSnapshot,
    PositionSnapshot,
)
from flapburn.core.utils.units import parse_wei_string


def effective_onchain_loss(cached_loss: CachedLoss) -> int:
    """A cache the contract does not vouch for is never shown as a loss."""
    return int(cached_loss.loss) if cached_loss.valid else 0


def reconcile(
    snapshot: PositionSnapshot,
    cached_loss: CachedLoss,
    holding_value: int,
    offchain: OffchainSnapshot | None,
) -> EffectivePosition:
    """Pick one source for the whole position.

    A present off-chain snapshot is authoritative for every field, even ones
    it leaves out (those decode to 0). Without one, on-chain values are used.
    """
    if offchain is not None:
        return EffectivePosition(
            cost_basis=parse_wei_string(offchain.cost_basis),
            sold_value=parse_wei_string(offchain.sold_value),
            holding_value=parse_wei_string(offchain.current_holding_value),
            loss_amount=parse_wei_string(offchain.loss_amount),
            source="offchain",
        )
    return EffectivePosition(
        cost_basis=int(snapshot.cost_basis),
        sold_value=int(snapshot.sold_value),
        holding_value=max(int(holding_value), 0),
        loss_amount=effective_onchain_loss(cached_loss),
        source="onchain",
    )

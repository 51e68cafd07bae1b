from __future__ import annotations

import time
from dataclasses import dataclass
from enum import StrEnum


class Phase(StrEnum):
    IDLE = "IDLE"
    APPROVING = "APPROVING"
    BURNING = "BURNING"
    CLAIMING = "CLAIMING"
    SUBSCRIBING = "SUBSCRIBING"


class ClaimKind(StrEnum):
    BURN_BNB = "BURN_BNB"
    BURN_TOKEN = "BURN_TOKEN"
    LOSS_DIVIDEND = "LOSS_DIVIDEND"
    NFT_DIVIDEND = "NFT_DIVIDEND"
    NFT_MINT = "NFT_MINT"


class Event(StrEnum):
    APPROVE = "approve"
    BURN = "burn"
    CLAIM = "claim"
    SUBSCRIBE = "subscribe"
    # approval confirmed: continue straight into the burn
    APPROVED = "approved"
    # fresh allowance read came back short: approve first
    ALLOWANCE_SHORT = "allowance_short"
    FINISHED = "finished"


TRANSITIONS: dict[tuple[Phase, Event], Phase] = {
    (Phase.IDLE, Event.APPROVE): Phase.APPROVING,
    (Phase.IDLE, Event.BURN): Phase.BURNING,
    (Phase.IDLE, Event.CLAIM): Phase.CLAIMING,
    (Phase.IDLE, Event.SUBSCRIBE): Phase.SUBSCRIBING,
    (Phase.APPROVING, Event.APPROVED): Phase.BURNING,
    (Phase.BURNING, Event.ALLOWANCE_SHORT): Phase.APPROVING,
    (Phase.APPROVING, Event.FINISHED): Phase.IDLE,
    (Phase.BURNING, Event.FINISHED): Phase.IDLE,
    (Phase.CLAIMING, Event.FINISHED): Phase.IDLE,
    (Phase.SUBSCRIBING, Event.FINISHED): Phase.IDLE,
}


class InvalidTransitionError(RuntimeError):
    def __init__(self, phase: Phase, event: Event):
        self.phase = phase
        self.event = event
        super().__init__(f"Cannot handle {event} while {phase}")


@dataclass(frozen=True)
class TransactionState:
    phase: Phase = Phase.IDLE
    claim_kind: ClaimKind | None = None
    pending_since: float | None = None

    @property
    def is_idle(self) -> bool:
        return self.phase is Phase.IDLE


def next_state(
    state: TransactionState, event: Event, *, claim_kind: ClaimKind | None = None
) -> TransactionState:
    phase = TRANSITIONS.get((state.phase, event))
    if phase is None:
        raise InvalidTransitionError(state.phase, event)
    if phase is Phase.IDLE:
        return TransactionState()
    if event is Event.CLAIM and claim_kind is None:
        raise ValueError("claim transitions need a claim kind")
    return TransactionState(
        phase=phase,
        claim_kind=claim_kind if phase is Phase.CLAIMING else None,
        pending_since=(
            state.pending_since if state.pending_since is not None else time.time()
        ),
    )

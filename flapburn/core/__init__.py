from flapburn.core.adapters.BaseAdapter import BaseAdapter
from flapburn.core.position.store import PositionStore
from flapburn.core.transactions.orchestrator import (
    OperationResult,
    TransactionOrchestrator,
)
from flapburn.core.transactions.state import ClaimKind
from flapburn.core.wallet import (
    LocalWalletSession,
    WalletSession,
    WatchOnlyWalletSession,
)

__all__ = [
    "BaseAdapter",
    "ClaimKind",
    "LocalWalletSession",
    "OperationResult",
    "PositionStore",
    "TransactionOrchestrator",
    "WalletSession",
    "WatchOnlyWalletSession",
]

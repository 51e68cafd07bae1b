__version__ = "0.1.0"

from flapburn.core import (
    BaseAdapter,
    ClaimKind,
    LocalWalletSession,
    OperationResult,
    PositionStore,
    TransactionOrchestrator,
    WalletSession,
    WatchOnlyWalletSession,
)

__all__ = [
    "__version__",
    "BaseAdapter",
    "ClaimKind",
    "LocalWalletSession",
    "OperationResult",
    "PositionStore",
    "TransactionOrchestrator",
    "WalletSession",
    "WatchOnlyWalletSession",
]

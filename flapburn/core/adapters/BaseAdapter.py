from __future__ import annotations

import functools
from abc import ABC
from collections.abc import Callable
from typing import Any

from eth_utils import to_checksum_address
from loguru import logger

from flapburn.core.utils.transaction import SignCallback


def require_wallet(fn: Callable) -> Callable:
    """Short-circuit a write with ``(False, reason)`` when the adapter cannot sign.

    Nothing is sent and nothing is raised: a watch-only session sees the same
    status tuple shape as a failed transaction.
    """

    @functools.wraps(fn)
    async def wrapper(self: BaseAdapter, *args: Any, **kwargs: Any) -> Any:
        if not self.wallet_address:
            return False, "wallet address not configured"
        if self.sign_callback is None:
            return False, "signer not available"
        return await fn(self, *args, **kwargs)

    return wrapper


class BaseAdapter(ABC):
    """Protocol adapter bound to at most one wallet."""

    adapter_type: str | None = None

    def __init__(
        self,
        name: str,
        config: dict[str, Any] | None = None,
        *,
        wallet_address: str | None = None,
        sign_callback: SignCallback | None = None,
    ):
        self.name = name
        self.config = config or {}
        self.wallet_address: str | None = (
            to_checksum_address(wallet_address) if wallet_address else None
        )
        self.sign_callback = sign_callback
        self.logger = logger.bind(adapter=self.__class__.__name__)

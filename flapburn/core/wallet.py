from __future__ import annotations

from typing import Protocol, runtime_checkable

from eth_account import Account
from eth_utils import to_checksum_address

from flapburn.core.constants.chains import TARGET_CHAIN_ID
from flapburn.core.utils.transaction import SignCallback, private_key_sign_callback


@runtime_checkable
class WalletSession(Protocol):
    """Connection to the user's wallet, owned by the embedding application."""

    @property
    def address(self) -> str | None: ...

    @property
    def chain_id(self) -> int | None: ...

    @property
    def is_connected(self) -> bool: ...

    @property
    def sign_callback(self) -> SignCallback | None: ...

    async def connect(self) -> None: ...

    async def switch_network(self, chain_id: int) -> None: ...


class LocalWalletSession:
    """Private-key wallet used from the command line; always connected."""

    def __init__(self, private_key: str, chain_id: int = TARGET_CHAIN_ID) -> None:
        self._account = Account.from_key(private_key)
        self._sign_callback = private_key_sign_callback(private_key)
        self._chain_id = int(chain_id)

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def chain_id(self) -> int:
        return self._chain_id

    @property
    def is_connected(self) -> bool:
        return True

    @property
    def sign_callback(self) -> SignCallback:
        return self._sign_callback

    async def connect(self) -> None:
        return None

    async def switch_network(self, chain_id: int) -> None:
        self._chain_id = int(chain_id)


class WatchOnlyWalletSession:
    """Address without a signer: reads work, every write reports no signer."""

    def __init__(self, address: str, chain_id: int = TARGET_CHAIN_ID) -> None:
        self._address = to_checksum_address(address)
        self._chain_id = int(chain_id)

    @property
    def address(self) -> str:
        return self._address

    @property
    def chain_id(self) -> int:
        return self._chain_id

    @property
    def is_connected(self) -> bool:
        return True

    @property
    def sign_callback(self) -> None:
        return None

    async def connect(self) -> None:
        return None

    async def switch_network(self, chain_id: int) -> None:
        self._chain_id = int(chain_id)

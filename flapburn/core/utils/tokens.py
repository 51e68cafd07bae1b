"""One-off token reads taken right before a transaction is submitted.

Unlike the batched position refresh, these open their own connection (unless
one is passed in) so the result reflects the chain at submission time.
"""

from collections.abc import Awaitable, Callable
from typing import Any

from web3 import AsyncWeb3

from flapburn.core.constants.erc20_abi import ERC20_ABI
from flapburn.core.utils.transaction import encode_call
from flapburn.core.utils.web3 import web3_from_chain_id


async def _on_chain[T](
    chain_id: int,
    web3: AsyncWeb3 | None,
    read: Callable[[AsyncWeb3], Awaitable[T]],
) -> T:
    if web3 is not None:
        return await read(web3)
    async with web3_from_chain_id(chain_id) as w3:
        return await read(w3)


async def read_native_balance(
    chain_id: int, address: str, *, web3: AsyncWeb3 | None = None
) -> int:
    async def _read(w3: AsyncWeb3) -> int:
        return int(await w3.eth.get_balance(w3.to_checksum_address(address)))

    return await _on_chain(chain_id, web3, _read)


async def read_allowance(
    token_address: str,
    chain_id: int,
    owner: str,
    spender: str,
    *,
    web3: AsyncWeb3 | None = None,
) -> int:
    """ERC-20 allowance at the ``pending`` block, so a just-mined approval counts."""

    async def _read(w3: AsyncWeb3) -> int:
        token = w3.eth.contract(address=w3.to_checksum_address(token_address), abi=ERC20_ABI)
        amount = await token.functions.allowance(
            w3.to_checksum_address(owner), w3.to_checksum_address(spender)
        ).call(block_identifier="pending")
        return int(amount)

    return await _on_chain(chain_id, web3, _read)


async def approve_transaction(
    *,
    token_address: str,
    spender: str,
    amount: int,
    from_address: str,
    chain_id: int,
) -> dict[str, Any]:
    return await encode_call(
        target=token_address,
        abi=ERC20_ABI,
        fn_name="approve",
        args=[AsyncWeb3.to_checksum_address(spender), int(amount)],
        from_address=from_address,
        chain_id=chain_id,
    )

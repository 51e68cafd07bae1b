import asyncio
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from eth_account import Account
from loguru import logger
from web3 import AsyncWeb3
from web3.exceptions import TransactionNotFound

from flapburn.core.constants.base import (
    DEFAULT_RECEIPT_POLL_INTERVAL,
    GAS_BUFFER_MULTIPLIER,
    MAX_BASE_FEE_GROWTH_MULTIPLIER,
    SUGGESTED_GAS_PRICE_MULTIPLIER,
    SUGGESTED_PRIORITY_FEE_MULTIPLIER,
)
from flapburn.core.constants.chains import PRE_EIP_1559_CHAIN_IDS
from flapburn.core.utils.web3 import (
    get_transaction_chain_id,
    web3_from_chain_id,
    web3s_from_chain_id,
)

SignCallback = Callable[[dict], Awaitable[bytes | str]]


class TransactionRevertedError(RuntimeError):
    """The transaction was mined with status 0."""

    def __init__(self, txn_hash: str, receipt: dict[str, Any] | None = None):
        self.txn_hash = txn_hash
        self.receipt = receipt or {}
        block = self.receipt.get("blockNumber")
        suffix = f" in block {block}" if block is not None else ""
        super().__init__(f"Transaction {txn_hash} reverted{suffix}")


@dataclass(frozen=True)
class FeeQuote:
    """Either a legacy ``gasPrice`` or an EIP-1559 fee pair, never both."""

    gas_price: int | None = None
    max_fee_per_gas: int | None = None
    max_priority_fee_per_gas: int | None = None

    def fields(self) -> dict[str, int]:
        if self.gas_price is not None:
            return {"gasPrice": self.gas_price}
        return {
            "maxFeePerGas": int(self.max_fee_per_gas or 0),
            "maxPriorityFeePerGas": int(self.max_priority_fee_per_gas or 0),
        }


def sender_of(transaction: dict) -> str:
    sender = transaction.get("from")
    if not sender:
        raise ValueError("Transaction has no sender ('from')")
    return AsyncWeb3.to_checksum_address(sender)


def hex_hash(txn_hash: Any) -> str:
    if isinstance(txn_hash, (bytes, bytearray)):
        txn_hash = bytes(txn_hash).hex()
    text = str(txn_hash)
    return text if text.startswith("0x") else f"0x{text}"


async def quote_fees(web3: AsyncWeb3, chain_id: int) -> FeeQuote:
    # BSC validators still price by gasPrice
    if chain_id in PRE_EIP_1559_CHAIN_IDS:
        gas_price = await web3.eth.gas_price
        return FeeQuote(gas_price=int(gas_price * SUGGESTED_GAS_PRICE_MULTIPLIER))

    block = await web3.eth.get_block("latest")
    base_fee = int(block.get("baseFeePerGas") or 0)
    tip = int(int(await web3.eth.max_priority_fee) * SUGGESTED_PRIORITY_FEE_MULTIPLIER)
    return FeeQuote(
        max_fee_per_gas=base_fee * MAX_BASE_FEE_GROWTH_MULTIPLIER + tip,
        max_priority_fee_per_gas=tip,
    )


async def estimate_gas_limit(web3: AsyncWeb3, transaction: dict) -> int:
    """Buffered gas estimate.

    A call that would revert fails here with the contract's reason string
    (``BELOW_MIN_BURN_VALUE`` and friends); the error propagates unchanged.
    """
    probe = {k: v for k, v in transaction.items() if k != "gas"}
    estimate = await web3.eth.estimate_gas(probe, block_identifier="latest")
    return int(math.ceil(int(estimate) * GAS_BUFFER_MULTIPLIER))


async def pending_nonce(chain_id: int, address: str) -> int:
    """Highest pending nonce any configured RPC reports for ``address``."""
    async with web3s_from_chain_id(chain_id) as web3s:
        counts = await asyncio.gather(
            *(
                web3.eth.get_transaction_count(address, block_identifier="pending")
                for web3 in web3s
            )
        )
    return max(int(c) for c in counts)


async def prepare_transaction(transaction: dict) -> dict:
    """Return a copy of ``transaction`` with gas, fees and nonce filled in."""
    chain_id = get_transaction_chain_id(transaction)
    sender = sender_of(transaction)

    async with web3_from_chain_id(chain_id) as web3:
        gas = await estimate_gas_limit(web3, transaction)
        fees = await quote_fees(web3, chain_id)
    nonce = await pending_nonce(chain_id, sender)

    prepared = {
        k: v
        for k, v in transaction.items()
        if k not in ("gas", "gasPrice", "maxFeePerGas", "maxPriorityFeePerGas")
    }
    prepared.update(gas=gas, nonce=nonce, **fees.fields())
    return prepared


async def broadcast_transaction(chain_id: int, signed_transaction: bytes | str) -> str:
    raw = (
        bytes.fromhex(signed_transaction.removeprefix("0x"))
        if isinstance(signed_transaction, str)
        else signed_transaction
    )
    async with web3_from_chain_id(chain_id) as web3:
        return hex_hash(await web3.eth.send_raw_transaction(raw))


async def wait_for_transaction_receipt(
    chain_id: int,
    txn_hash: str,
    poll_interval: float = DEFAULT_RECEIPT_POLL_INTERVAL,
    confirmations: int = 1,
) -> dict:
    """Poll until ``txn_hash`` is mined with ``confirmations`` blocks on top.

    There is no client-side timeout: the outcome is whatever the chain decides.
    """
    txn_hash = hex_hash(txn_hash)

    async with web3_from_chain_id(chain_id) as web3:
        receipt = None
        while receipt is None:
            try:
                receipt = await web3.eth.get_transaction_receipt(txn_hash)
            except TransactionNotFound:
                receipt = None
            if receipt is None:
                await asyncio.sleep(poll_interval)

        receipt = dict(receipt)
        if receipt.get("status") == 0:
            raise TransactionRevertedError(txn_hash, receipt)

        final_block = int(receipt["blockNumber"]) + max(1, int(confirmations)) - 1
        while await web3.eth.block_number < final_block:
            await asyncio.sleep(poll_interval)
    return receipt


async def send_transaction(
    transaction: dict, sign_callback: SignCallback | None, wait_for_receipt=True
) -> str:
    """Prepare, sign, broadcast and (by default) wait for ``transaction``.

    Returns the transaction hash. Estimation reverts, signer rejections and
    mined reverts all raise.
    """
    if sign_callback is None:
        raise ValueError("sign_callback must be provided to send transaction")

    chain_id = get_transaction_chain_id(transaction)
    prepared = await prepare_transaction(transaction)
    logger.info(
        f"Submitting to {prepared.get('to')} on chain {chain_id} "
        f"(nonce {prepared['nonce']}, gas {prepared['gas']})"
    )
    signed = await sign_callback(prepared)
    txn_hash = await broadcast_transaction(chain_id, signed)
    logger.info(f"Broadcast {txn_hash}")
    if wait_for_receipt:
        receipt = await wait_for_transaction_receipt(chain_id, txn_hash)
        logger.info(f"{txn_hash} confirmed in block {receipt.get('blockNumber')}")
    return txn_hash


def private_key_sign_callback(private_key: str) -> SignCallback:
    account = Account.from_key(private_key)

    async def sign_callback(tx: dict) -> bytes:
        return account.sign_transaction(tx).raw_transaction

    return sign_callback


async def encode_call(
    *,
    target: str,
    abi: list[dict[str, Any]],
    fn_name: str,
    args: list[Any],
    from_address: str,
    chain_id: int,
    value: int = 0,
) -> dict[str, Any]:
    """Unsigned call to ``target.fn_name(*args)`` ready for ``send_transaction``."""
    to = AsyncWeb3.to_checksum_address(target)
    async with web3_from_chain_id(chain_id) as web3:
        try:
            data = web3.eth.contract(address=to, abi=abi).encode_abi(fn_name, args)
        except (ValueError, TypeError) as exc:
            raise ValueError(f"Failed to encode {fn_name}: {exc}") from exc

    return {
        "chainId": int(chain_id),
        "from": AsyncWeb3.to_checksum_address(from_address),
        "to": to,
        "data": data,
        "value": int(value),
    }

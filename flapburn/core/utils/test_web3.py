from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from flapburn.core.constants import ZERO_ADDRESS
from flapburn.core.utils.web3 import (
    RpcRateLimitedError,
    _RetryingRpcProvider,
    get_transaction_chain_id,
    is_contract_deployed,
)


class _HttpStatusError(Exception):
    def __init__(self, status: int):
        super().__init__(f"HTTP {status}")
        self.status = status


@pytest.mark.asyncio
async def test_retrying_provider_retries_on_http_429():
    provider = _RetryingRpcProvider("https://rpc.invalid", chain_id=56)
    provider._make_request = AsyncMock(
        side_effect=[
            _HttpStatusError(429),
            b'{"jsonrpc":"2.0","id":1,"result":"0x1"}',
        ]
    )

    with patch("flapburn.core.utils.web3.asyncio.sleep", new_callable=AsyncMock):
        resp = await provider.make_request("eth_blockNumber", [])

    assert resp["result"] == "0x1"
    assert provider._make_request.await_count == 2


@pytest.mark.asyncio
async def test_retrying_provider_does_not_retry_other_errors():
    provider = _RetryingRpcProvider("https://rpc.invalid", chain_id=56)
    provider._make_request = AsyncMock(side_effect=_HttpStatusError(400))

    with pytest.raises(_HttpStatusError):
        await provider.make_request("eth_call", [])

    assert provider._make_request.await_count == 1


@pytest.mark.asyncio
async def test_retrying_provider_gives_up_after_max_retries():
    provider = _RetryingRpcProvider("https://rpc.invalid", chain_id=56)
    provider._make_request = AsyncMock(side_effect=_HttpStatusError(503))

    with patch("flapburn.core.utils.web3.asyncio.sleep", new_callable=AsyncMock):
        with pytest.raises(_HttpStatusError):
            await provider.make_request("eth_blockNumber", [])

    assert provider._make_request.await_count == 3


@pytest.mark.asyncio
async def test_retrying_provider_fills_missing_response_id():
    provider = _RetryingRpcProvider("https://rpc.invalid", chain_id=56)
    provider._make_request = AsyncMock(return_value=b'{"jsonrpc":"2.0","result":"0x2"}')

    resp = await provider.make_request("eth_blockNumber", [])

    assert resp["result"] == "0x2"
    assert "id" in resp


@pytest.mark.asyncio
async def test_retrying_provider_retries_rate_limited_rpc_error():
    provider = _RetryingRpcProvider("https://rpc.invalid", chain_id=56)
    provider._make_request = AsyncMock(
        side_effect=[
            b'{"jsonrpc":"2.0","id":1,"error":{"code":-32005,"message":"limit exceeded"}}',
            b'{"jsonrpc":"2.0","id":1,"result":"0x3"}',
        ]
    )

    with patch("flapburn.core.utils.web3.asyncio.sleep", new_callable=AsyncMock):
        resp = await provider.make_request("eth_blockNumber", [])

    assert resp["result"] == "0x3"
    assert provider._make_request.await_count == 2


@pytest.mark.asyncio
async def test_retrying_provider_returns_execution_errors_untouched():
    provider = _RetryingRpcProvider("https://rpc.invalid", chain_id=56)
    provider._make_request = AsyncMock(
        return_value=b'{"jsonrpc":"2.0","id":1,"error":{"code":3,"message":"execution reverted"}}'
    )

    resp = await provider.make_request("eth_call", [])

    assert resp["error"]["message"] == "execution reverted"
    assert provider._make_request.await_count == 1


@pytest.mark.asyncio
async def test_retrying_provider_raises_when_rate_limit_persists():
    provider = _RetryingRpcProvider("https://rpc.invalid", chain_id=56)
    provider._make_request = AsyncMock(
        return_value=b'{"jsonrpc":"2.0","id":1,"error":{"code":-32005,"message":"limit exceeded"}}'
    )

    with patch("flapburn.core.utils.web3.asyncio.sleep", new_callable=AsyncMock):
        with pytest.raises(RpcRateLimitedError):
            await provider.make_request("eth_call", [])

    assert provider._make_request.await_count == 3


def test_get_transaction_chain_id():
    assert get_transaction_chain_id({"chainId": "56"}) == 56
    with pytest.raises(ValueError, match="does not contain chainId"):
        get_transaction_chain_id({})


@pytest.mark.asyncio
async def test_is_contract_deployed_skips_zero_address():
    web3 = MagicMock()
    web3.eth.get_code = AsyncMock()

    assert await is_contract_deployed(web3, ZERO_ADDRESS) is False
    assert await is_contract_deployed(web3, None) is False
    web3.eth.get_code.assert_not_awaited()


@pytest.mark.asyncio
async def test_is_contract_deployed_checks_bytecode():
    web3 = MagicMock()
    web3.to_checksum_address = lambda a: a
    web3.eth.get_code = AsyncMock(side_effect=[b"\x60\x80", b""])
    address = "0x1111111111111111111111111111111111111111"

    assert await is_contract_deployed(web3, address) is True
    assert await is_contract_deployed(web3, address) is False

import asyncio
from contextlib import asynccontextmanager
from typing import Any

from loguru import logger
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.middleware import ExtraDataToPOAMiddleware

from flapburn.core.config import get_rpcs_for_chain_id
from flapburn.core.constants.chains import POA_MIDDLEWARE_CHAIN_IDS

# Only throttling and gateway failures are retried; execution errors
# (reverts, bad params) surface on the first attempt.
_RETRYABLE_HTTP_STATUS_CODES = {429, 502, 503, 504}
_RATE_LIMIT_RPC_ERROR_CODES = {-32005, 429}
_RATE_LIMIT_MESSAGE_MARKERS = ("limit exceeded", "rate limit", "too many requests")
_MAX_RPC_ATTEMPTS = 3
_RETRY_BASE_DELAY_S = 0.25


class RpcRateLimitedError(RuntimeError):
    def __init__(self, error: dict[str, Any]):
        self.error = error
        super().__init__(f"RPC rate limited: {error.get('message') or error}")


def _http_status(exc: Exception) -> int | None:
    for candidate in (exc, getattr(exc, "response", None)):
        if candidate is None:
            continue
        for attr in ("status", "status_code"):
            value = getattr(candidate, attr, None)
            if isinstance(value, int):
                return value
    return None


def _is_rate_limited_rpc_error(error: Any) -> bool:
    if not isinstance(error, dict):
        return False
    if error.get("code") in _RATE_LIMIT_RPC_ERROR_CODES:
        return True
    text = str(error.get("message") or "").lower()
    return any(marker in text for marker in _RATE_LIMIT_MESSAGE_MARKERS)


def _is_retryable(exc: Exception) -> bool:
    return isinstance(exc, RpcRateLimitedError) or (
        _http_status(exc) in _RETRYABLE_HTTP_STATUS_CODES
    )


class _RetryingRpcProvider(AsyncHTTPProvider):
    """HTTP provider that backs off on throttled public endpoints.

    Some gateways also drop the JSON-RPC ``id``; it is restored from the
    request so web3 can match the response.
    """

    def __init__(self, rpc: str, chain_id: int, **kwargs: Any):
        super().__init__(rpc, **kwargs)
        self.chain_id = chain_id

    async def _request_once(self, method: str, request_data: bytes, request_id: Any):
        raw_response = await self._make_request(method, request_data)
        response = self.decode_rpc_response(raw_response)
        if not isinstance(response, dict):
            return response
        response.setdefault("id", request_id)
        if _is_rate_limited_rpc_error(response.get("error")):
            raise RpcRateLimitedError(response["error"])
        return response

    async def make_request(self, method, params):  # type: ignore[override]
        req = self.form_request(method, params)
        request_data = self.encode_rpc_dict(req)

        attempt = 0
        while True:
            try:
                return await self._request_once(method, request_data, req.get("id"))
            except Exception as exc:
                attempt += 1
                if not _is_retryable(exc) or attempt >= _MAX_RPC_ATTEMPTS:
                    raise
                delay_s = _RETRY_BASE_DELAY_S * (2 ** (attempt - 1))
                logger.warning(
                    f"RPC {method} on chain {self.chain_id} throttled ({exc}); "
                    f"attempt {attempt + 1}/{_MAX_RPC_ATTEMPTS} in {delay_s:.2f}s"
                )
                await asyncio.sleep(delay_s)


def _get_web3(rpc: str, chain_id: int) -> AsyncWeb3:
    provider = _RetryingRpcProvider(
        rpc,
        chain_id,
        request_kwargs={"headers": AsyncHTTPProvider.get_request_headers()},
    )
    web3 = AsyncWeb3(provider)
    # BSC headers carry validator signatures in extraData
    if chain_id in POA_MIDDLEWARE_CHAIN_IDS:
        web3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    return web3


def get_transaction_chain_id(transaction: dict) -> int:
    if "chainId" not in transaction:
        raise ValueError("Transaction does not contain chainId")
    return int(transaction["chainId"])


@asynccontextmanager
async def web3s_from_chain_id(chain_id: int):
    """One connection per configured RPC (nonce reads compare them all)."""
    web3s = [_get_web3(rpc, chain_id) for rpc in get_rpcs_for_chain_id(chain_id)]
    try:
        yield web3s
    finally:
        for web3 in web3s:
            await web3.provider.disconnect()


@asynccontextmanager
async def web3_from_chain_id(chain_id: int):
    web3 = _get_web3(get_rpcs_for_chain_id(chain_id)[0], chain_id)
    try:
        yield web3
    finally:
        await web3.provider.disconnect()


async def is_contract_deployed(web3: AsyncWeb3, address: str | None) -> bool:
    """True when ``address`` is a non-zero address holding bytecode."""
    if not address or int(str(address), 16) == 0:
        return False
    code = await web3.eth.get_code(web3.to_checksum_address(address))
    return len(code) > 0

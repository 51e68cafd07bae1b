from __future__ import annotations

import httpx
from eth_utils import to_checksum_address
from loguru import logger
from pydantic import ValidationError

from flapburn.core.config import get_monitor_api_base_url, is_offchain_enabled
from flapburn.core.constants.base import DEFAULT_HTTP_TIMEOUT
from flapburn.core.position.models import OffchainSnapshot


class MonitorClient:
    """Client for the optional position-monitor service.

    Every failure mode (disabled, unreachable, non-2xx, bad payload) reads as
    "no off-chain data"; nothing here raises to the caller.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        chain_id: int | None = None,
        enabled: bool | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = str(base_url or get_monitor_api_base_url(chain_id)).rstrip("/")
        self._enabled = enabled
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(DEFAULT_HTTP_TIMEOUT)
        )

    @property
    def enabled(self) -> bool:
        return is_offchain_enabled() if self._enabled is None else self._enabled

    async def get_user_status(self, address: str) -> OffchainSnapshot | None:
        if not self.enabled or not address:
            return None

        url = f"{self.base_url}/user-status/{to_checksum_address(address)}"
        try:
            resp = await self.client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning(f"Monitor API unreachable ({url}): {exc}")
            return None

        if not resp.is_success:
            logger.warning(f"Monitor API returned {resp.status_code} for {url}")
            return None

        try:
            data = resp.json()
        except ValueError as exc:
            logger.warning(f"Monitor API returned invalid JSON: {exc}")
            return None
        if not isinstance(data, dict):
            logger.warning("Monitor API returned unexpected response type")
            return None

        try:
            return OffchainSnapshot.model_validate(data)
        except ValidationError as exc:
            logger.warning(f"Monitor API payload rejected: {exc}")
            return None

    async def close(self) -> None:
        await self.client.aclose()

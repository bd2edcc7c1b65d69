from typing import Any, Dict, Optional

import httpx
from loguru import logger

DEFAULT_SPIN_ENDPOINT = "/api/v1/games/spin"


class HttpRoundSupplier:
    """
    Requests spin batches from a gaming platform API.

    Any transport or HTTP status error propagates to the ingestor, which turns
    it into a batch failure. Retry and rate limiting are left to the caller
    (or to the httpx transport passed in).
    """

    def __init__(self, base_url: str, *, endpoint: str = DEFAULT_SPIN_ENDPOINT,
                 headers: Optional[Dict[str, str]] = None, timeout: float = 10.0,
                 client: Optional[httpx.AsyncClient] = None):
        """
        :param base_url: Platform API base URL.
        :param endpoint: Path of the spin endpoint.
        :param headers: Extra request headers (auth is the caller's concern).
        :param timeout: Per-request timeout in seconds.
        :param client: Pre-built client, e.g. with a mock transport in tests.
        """
        self.endpoint = endpoint
        self._client = client or httpx.AsyncClient(base_url=base_url, headers=headers or {}, timeout=timeout)

    async def fetch_batch(self, company: str, game_id: Optional[str], client_id: str,
                          bet_amount: float, spins_requested: int) -> Any:
        body = {
            "company": company,
            "gameId": game_id,
            "clientId": client_id,
            "betAmount": bet_amount,
            "spins": spins_requested,
        }
        response = await self._client.post(self.endpoint, json=body)
        response.raise_for_status()
        logger.debug(f"Spin batch sent for company={company} gameId={game_id} status={response.status_code}")
        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpRoundSupplier":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()


__all__ = ['HttpRoundSupplier', 'DEFAULT_SPIN_ENDPOINT']

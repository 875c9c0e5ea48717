"""
Ledger source HTTP client.

Talks to the payment provider that indexes token transfers for the deposit
wallets associated with one API key.

Example usage:
    ```python
    from ledgerscan.client import LedgerClient

    async with LedgerClient(
        endpoint="https://scan.example.com",
        identifier="satellite-1",
        secret="secret",
    ) as client:
        latest = await client.payments(from_block=0)
        address = await client.claim_new_address()
    ```

The client performs no retries and no caching: every failure is reported
upward as a LedgerSourceError subclass and the caller decides what to do.
"""
from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from .exceptions import ProviderError, TransportError, UnauthorizedError
from .models import LatestPayments

logger = logging.getLogger("ledgerscan.client")

PAYMENTS_PATH = "/api/v0/tokens/payments"
CLAIM_PATH = "/api/v0/wallets/claim"


class LedgerClient:
    """
    Ledger source API client.

    Args:
        endpoint: Provider base URL
        identifier: Basic auth identifier
        secret: Basic auth secret
        timeout: Request timeout in seconds (default: 30)
        transport: Optional httpx transport, used to stub the provider in tests
    """

    DEFAULT_TIMEOUT = 30.0

    def __init__(
        self,
        endpoint: str,
        identifier: str,
        secret: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not endpoint:
            raise ValueError("endpoint is required")

        self._endpoint = endpoint.rstrip("/")
        self._auth = httpx.BasicAuth(identifier, secret)
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._endpoint,
                auth=self._auth,
                headers={"User-Agent": "ledgerscan/0.1.0"},
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        client = await self._get_client()

        try:
            response = await client.request(method, path, params=params)
        except httpx.HTTPError as e:
            raise TransportError(
                f"{operation}: {type(e).__name__}: {e}",
                operation=operation,
            ) from e

        if response.status_code != httpx.codes.OK:
            raise self._error_from_response(response, operation)

        try:
            # Keep fiat values exact; JSON floats become Decimal.
            return json.loads(response.content, parse_float=Decimal)
        except ValueError as e:
            raise ProviderError(
                f"{operation}: malformed response body: {e}",
                status_code=response.status_code,
                operation=operation,
            ) from e

    @staticmethod
    def _error_from_response(response: httpx.Response, operation: str) -> Exception:
        try:
            body = response.json()
            message = body.get("error", "") if isinstance(body, dict) else str(body)
        except ValueError:
            message = response.text

        message = message or response.reason_phrase

        if response.status_code == httpx.codes.UNAUTHORIZED:
            return UnauthorizedError(message, operation=operation)
        return ProviderError(message, status_code=response.status_code, operation=operation)

    async def payments(self, from_block: int) -> LatestPayments:
        """Retrieve every payment observed at or after ``from_block``.

        Also returns the provider's current chain head, which is the
        confirmation baseline for this fetch only.
        """
        data = await self._request(
            "GET",
            PAYMENTS_PATH,
            operation="payments",
            params={"from": str(from_block)},
        )
        try:
            latest = LatestPayments.model_validate(data)
        except ValidationError as e:
            raise ProviderError(
                f"payments: unexpected response shape: {e.error_count()} validation errors",
                status_code=httpx.codes.OK,
                operation="payments",
            ) from e

        logger.debug(
            "Fetched %d payments from block %d (head %d)",
            len(latest.payments),
            from_block,
            latest.latest_block.number,
        )
        return latest

    async def claim_new_address(self) -> str:
        """Ask the provider to allocate a fresh receiving address."""
        data = await self._request("POST", CLAIM_PATH, operation="claim")
        if not isinstance(data, str) or not data:
            raise ProviderError(
                "claim: expected an address string",
                status_code=httpx.codes.OK,
                operation="claim",
            )
        return data.lower()

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "LedgerClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

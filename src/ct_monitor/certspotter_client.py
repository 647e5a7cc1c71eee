"""
Cert Spotter API client.

Queries the issuances endpoint for certificates issued for a domain after
a given cursor. The client does not retry; a failed fetch surfaces as a
FetchError subclass and the orchestrator skips the domain for the pass.
"""

import json
from typing import Optional
from urllib.parse import quote

import httpx

from .config import DEFAULT_CERTSPOTTER_ENDPOINT
from .exceptions import FetchError, RateLimitedError, UpstreamError
from .models import Issuance

DEFAULT_PARAMS = "?expand=dns_names&expand=issuer&expand=cert"


class CertSpotterClient:
    """
    Async client for the Cert Spotter issuances API.

    An ``httpx.AsyncClient`` may be injected; otherwise one is created on
    first use (or on ``async with``) and closed by ``close()``.
    """

    def __init__(
        self,
        endpoint: str = DEFAULT_CERTSPOTTER_ENDPOINT,
        token: str = "",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._endpoint = endpoint
        self._token = token
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "CertSpotterClient":
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                verify=True,
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
            )
            self._owns_client = True
        return self._client

    def build_query(
        self,
        domain: str,
        match_wildcards: bool,
        include_subdomains: bool,
        after_id: int,
    ) -> str:
        """Build the query string; ``after`` is only sent for a positive cursor."""
        query = f"{DEFAULT_PARAMS}&domain={quote(domain, safe='.-*')}"
        if after_id > 0:
            query += f"&after={after_id}"
        if match_wildcards:
            query += "&match_wildcards=true"
        if include_subdomains:
            query += "&include_subdomains=true"
        return query

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def fetch(
        self,
        domain: str,
        match_wildcards: bool = False,
        include_subdomains: bool = False,
        after_id: int = 0,
    ) -> list[Issuance]:
        """
        Fetch issuances for ``domain`` newer than ``after_id``.

        Returns:
            Issuances in the order returned by the API (ascending id)

        Raises:
            RateLimitedError: On HTTP 429, with the Retry-After value
            UpstreamError: On any other non-200 status or a malformed body
            FetchError: On transport failure
        """
        url = self._endpoint + self.build_query(
            domain, match_wildcards, include_subdomains, after_id
        )
        client = self._ensure_client()

        try:
            response = await client.get(url, headers=self._headers())
        except httpx.HTTPError as e:
            raise FetchError(
                code="network_error",
                message=f"Request to Cert Spotter API failed: {e}",
                details={"domain": domain, "error_type": type(e).__name__},
            )

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitedError(
                message=f"hit Cert Spotter's API limit. Retry-After: {retry_after}",
                retry_after=retry_after,
                details={"domain": domain},
            )

        if response.status_code != 200:
            raise UpstreamError(
                message=(
                    "undocumented status code returned by the Cert Spotter API: "
                    f"{response.status_code}"
                ),
                status_code=response.status_code,
                details={"domain": domain},
            )

        return self._parse_body(response, domain)

    def _parse_body(self, response: httpx.Response, domain: str) -> list[Issuance]:
        try:
            payload = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise UpstreamError(
                message=f"Failed to parse Cert Spotter response: {e}",
                status_code=response.status_code,
                details={"domain": domain},
            )

        if not isinstance(payload, list):
            raise UpstreamError(
                message="Cert Spotter response is not a JSON array",
                status_code=response.status_code,
                details={"domain": domain},
            )

        try:
            return [Issuance.from_api(item) for item in payload]
        except ValueError as e:
            raise UpstreamError(
                message=f"Malformed issuance in Cert Spotter response: {e}",
                status_code=response.status_code,
                details={"domain": domain},
            )

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

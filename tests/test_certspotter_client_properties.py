"""
Property-based tests for the Cert Spotter client.

Uses httpx.MockTransport in place of the real API.
"""

import asyncio
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from ct_monitor.certspotter_client import CertSpotterClient
from ct_monitor.exceptions import FetchError, RateLimitedError, UpstreamError

ENDPOINT = "https://api.certspotter.test/v1/issuances"


def _issuance_json(issuance_id: int, names=("example.com",)) -> dict:
    return {
        "id": str(issuance_id),
        "tbs_sha256": "ab" * 32,
        "dns_names": list(names),
        "pubkey_sha256": "cd" * 32,
        "issuer": {
            "name": "C=US, O=Let's Encrypt, CN=R3",
            "pubkey_sha256": "ef" * 32,
            "friendly_name": "Let's Encrypt",
        },
        "not_before": "2024-01-01T00:00:00Z",
        "not_after": "2024-04-01T00:00:00Z",
        "cert": {"type": "cert", "sha256": "01" * 32, "data": "MIIB"},
        "problem_reporting": "",
    }


def _client_for(handler, token: str = "") -> CertSpotterClient:
    transport = httpx.MockTransport(handler)
    return CertSpotterClient(
        endpoint=ENDPOINT,
        token=token,
        client=httpx.AsyncClient(transport=transport),
    )


domain_strategy = st.builds(
    lambda sld, tld: f"{sld}.{tld}",
    st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789", min_size=1, max_size=20),
    st.sampled_from(["com", "net", "org", "io"]),
)


class TestQueryBuilding:
    """The query string sent to the API."""

    @given(
        domain=domain_strategy,
        match_wildcards=st.booleans(),
        include_subdomains=st.booleans(),
        after_id=st.integers(min_value=0, max_value=2 ** 63),
    )
    @settings(max_examples=100)
    def test_query_parameters(
        self,
        domain: str,
        match_wildcards: bool,
        include_subdomains: bool,
        after_id: int,
    ) -> None:
        client = CertSpotterClient(endpoint=ENDPOINT)
        query = client.build_query(domain, match_wildcards, include_subdomains, after_id)
        params = parse_qs(query.lstrip("?"))

        assert params["expand"] == ["dns_names", "issuer", "cert"]
        assert params["domain"] == [domain]
        if after_id > 0:
            assert params["after"] == [str(after_id)]
        else:
            assert "after" not in params
        assert ("match_wildcards" in params) == match_wildcards
        assert ("include_subdomains" in params) == include_subdomains

    def test_query_matches_expected_order(self) -> None:
        client = CertSpotterClient(endpoint=ENDPOINT)
        assert client.build_query("example.com", True, True, 12) == (
            "?expand=dns_names&expand=issuer&expand=cert&domain=example.com"
            "&after=12&match_wildcards=true&include_subdomains=true"
        )


class TestFetch:
    """Fetching and decoding issuances."""

    def test_fetch_decodes_issuances_in_order(self) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=[_issuance_json(i) for i in (10, 11, 12)])

        async def run():
            async with _client_for(handler, token="secret") as client:
                return await client.fetch("example.com", after_id=9)

        issuances = asyncio.run(run())

        assert [i.id for i in issuances] == [10, 11, 12]
        assert issuances[0].issuer.friendly_name == "Let's Encrypt"
        assert issuances[0].cert_sha256 == "01" * 32
        assert requests[0].headers["Authorization"] == "Bearer secret"
        query = parse_qs(urlsplit(str(requests[0].url)).query)
        assert query["after"] == ["9"]

    def test_no_token_sends_no_authorization(self) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=[])

        async def run():
            async with _client_for(handler) as client:
                return await client.fetch("example.com")

        assert asyncio.run(run()) == []
        assert "Authorization" not in requests[0].headers

    def test_rate_limit_carries_retry_after(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, headers={"Retry-After": "3600"})

        async def run():
            async with _client_for(handler) as client:
                await client.fetch("example.com")

        with pytest.raises(RateLimitedError) as exc_info:
            asyncio.run(run())
        assert exc_info.value.retry_after == "3600"
        assert "Retry-After: 3600" in exc_info.value.message

    @given(status=st.sampled_from([400, 401, 403, 404, 500, 502, 503]))
    @settings(max_examples=20)
    def test_other_status_is_upstream_error(self, status: int) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, text="nope")

        async def run():
            async with _client_for(handler) as client:
                await client.fetch("example.com")

        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(run())
        assert exc_info.value.status_code == status

    @pytest.mark.parametrize(
        "body",
        [
            b"not json",
            b'{"id": "1"}',
            b'[{"id": "abc"}]',
            b'[{"id": "1_000"}]',
            b'[{"id": " 12 "}]',
            b'[{"id": "-1"}]',
            b'[{"id": "+7"}]',
            b'[{"id": "\\u0661\\u0662"}]',
            b'[{"id": "1", "dns_names": "example.com"}]',
        ],
    )
    def test_malformed_body_is_upstream_error(self, body: bytes) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=body)

        async def run():
            async with _client_for(handler) as client:
                await client.fetch("example.com")

        with pytest.raises(UpstreamError):
            asyncio.run(run())

    def test_transport_error_is_fetch_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async def run():
            async with _client_for(handler) as client:
                await client.fetch("example.com")

        with pytest.raises(FetchError) as exc_info:
            asyncio.run(run())
        assert exc_info.value.code == "network_error"

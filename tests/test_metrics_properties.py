"""
Tests for issuance metrics and the Pushgateway push.
"""

import asyncio
from io import StringIO
from urllib.error import URLError

from hypothesis import given, settings
from hypothesis import strategies as st
from prometheus_client.parser import text_string_to_metric_families

from ct_monitor.audit_logger import AuditLogger
from ct_monitor.enums import LogLevel
from ct_monitor.metrics import METRIC_NAME, IssuanceMetrics
from ct_monitor.models import Issuance, Issuer


def make_issuance(issuance_id: int, names=("www.example.com",), issuer: str = "CN=Test CA") -> Issuance:
    return Issuance(
        id=issuance_id,
        dns_names=tuple(names),
        issuer=Issuer(name=issuer),
        not_before="2024-01-01T00:00:00Z",
    )


def recording_handler(calls: list):
    """Push handler recording each request instead of sending it."""

    def handler(url, method, timeout, headers, data):
        def send():
            calls.append({"url": url, "method": method, "data": data})
        return send

    return handler


def failing_handler(error: Exception):
    def handler(url, method, timeout, headers, data):
        def send():
            raise error
        return send

    return handler


def samples(text: str) -> list:
    families = [f for f in text_string_to_metric_families(text) if f.name == METRIC_NAME]
    assert len(families) == 1
    return families[0].samples


class TestRender:
    """Samples in the text exposition format."""

    def test_one_sample_per_issuance(self) -> None:
        metrics = IssuanceMetrics("http://pushgateway.test")
        metrics.observe("example.com", make_issuance(10, ("a.example.com", "b.example.com")))
        metrics.observe("example.com", make_issuance(11))
        metrics.observe("example.com", make_issuance(11))

        rendered = samples(metrics.render())

        assert len(metrics) == 2
        assert len(rendered) == 2
        first = next(s for s in rendered if s.labels["id"] == "10")
        assert first.value == 1.0
        assert first.labels == {
            "id": "10",
            "domain": "example.com",
            "dns_names": "a.example.com,b.example.com",
            "issuer": "CN=Test CA",
            "not_before": "2024-01-01T00:00:00Z",
        }

    @given(issuer=st.text(
        alphabet=st.one_of(
            st.characters(blacklist_categories=("Cs", "Cc", "Zl", "Zp")),
            st.sampled_from(['\n', '"', '\\']),
        ),
        max_size=40,
    ))
    @settings(max_examples=100)
    def test_label_values_survive_exposition(self, issuer: str) -> None:
        metrics = IssuanceMetrics("http://pushgateway.test")
        metrics.observe("example.com", make_issuance(1, issuer=issuer))

        (sample,) = samples(metrics.render())

        assert sample.labels["issuer"] == issuer


class TestPush:
    """Pushing never raises."""

    def test_push_puts_samples(self) -> None:
        calls = []
        metrics = IssuanceMetrics("http://pushgateway.test", handler=recording_handler(calls))
        metrics.observe("example.com", make_issuance(10))

        assert asyncio.run(metrics.push()) is True
        assert len(calls) == 1
        assert calls[0]["method"] == "PUT"
        assert calls[0]["url"] == "http://pushgateway.test/metrics/job/ct_monitor"
        assert b'id="10"' in calls[0]["data"]

    def test_job_name_is_used(self) -> None:
        calls = []
        metrics = IssuanceMetrics("http://pushgateway.test", job="ct", handler=recording_handler(calls))
        metrics.observe("example.com", make_issuance(10))

        asyncio.run(metrics.push())

        assert calls[0]["url"] == "http://pushgateway.test/metrics/job/ct"

    def test_nothing_to_push(self) -> None:
        calls = []
        metrics = IssuanceMetrics("http://pushgateway.test", handler=recording_handler(calls))

        assert asyncio.run(metrics.push()) is True
        assert calls == []

    def test_failures_are_logged_not_raised(self) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO())
        metrics = IssuanceMetrics(
            "http://pushgateway.test",
            handler=failing_handler(URLError("connection refused")),
            logger=logger,
        )
        metrics.observe("example.com", make_issuance(10))

        assert asyncio.run(metrics.push()) is False
        assert [e.level for e in logger.entries] == [LogLevel.WARN]
        assert logger.entries[0].data["gateway"] == "http://pushgateway.test"

    def test_error_status_is_failure(self) -> None:
        metrics = IssuanceMetrics(
            "http://pushgateway.test",
            handler=failing_handler(OSError("error talking to pushgateway: 500 Internal Server Error")),
        )
        metrics.observe("example.com", make_issuance(10))

        assert asyncio.run(metrics.push()) is False

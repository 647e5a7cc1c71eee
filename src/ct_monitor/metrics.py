"""
Issuance metrics pushed to a Prometheus Pushgateway.

One ``issuances_observed`` gauge sample is recorded per observed issuance
and the collected samples are pushed once at the end of a run.
"""

import asyncio
from typing import Callable, Optional

from prometheus_client import CollectorRegistry, Gauge, generate_latest, push_to_gateway
from prometheus_client.exposition import default_handler

from .audit_logger import AuditLogger
from .enums import LogLevel
from .models import Issuance

METRIC_NAME = "issuances_observed"
LABEL_NAMES = ("id", "domain", "dns_names", "issuer", "not_before")
PUSH_TIMEOUT = 10.0


class IssuanceMetrics:
    """Collects issuance gauges in a private registry and pushes them."""

    def __init__(
        self,
        pushgateway_url: str,
        job: str = "ct_monitor",
        handler: Optional[Callable] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Args:
            pushgateway_url: Base URL of the Pushgateway
            job: Job label the samples are grouped under
            handler: prometheus_client push handler, defaults to plain HTTP
            logger: Optional audit logger
        """
        self._gateway = pushgateway_url
        self._job = job
        self._handler = handler or default_handler
        self._logger = logger
        self._registry = CollectorRegistry()
        self._gauge = Gauge(
            METRIC_NAME,
            "Certificate issuances observed for a monitored domain",
            LABEL_NAMES,
            registry=self._registry,
        )
        self._observed: set[tuple[str, ...]] = set()

    def observe(self, domain: str, issuance: Issuance) -> None:
        labels = (
            str(issuance.id),
            domain,
            ",".join(issuance.dns_names),
            issuance.issuer.name,
            issuance.not_before,
        )
        self._gauge.labels(*labels).set(1)
        self._observed.add(labels)

    def __len__(self) -> int:
        return len(self._observed)

    def render(self) -> str:
        return generate_latest(self._registry).decode("utf-8")

    async def push(self) -> bool:
        """
        Push collected samples. Failures are logged, never raised.

        Returns:
            True if the Pushgateway accepted the samples
        """
        if not self._observed:
            return True

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._push_sync)
        except OSError as e:
            if self._logger:
                self._logger.log(
                    LogLevel.WARN,
                    "IssuanceMetrics",
                    f"Metrics push failed: {e}",
                    {"gateway": self._gateway, "job": self._job},
                )
            return False

        if self._logger:
            self._logger.log(
                LogLevel.DEBUG,
                "IssuanceMetrics",
                "Pushed issuance metrics",
                {"samples": len(self._observed), "gateway": self._gateway},
            )
        return True

    def _push_sync(self) -> None:
        push_to_gateway(
            self._gateway,
            job=self._job,
            registry=self._registry,
            timeout=PUSH_TIMEOUT,
            handler=self._handler,
        )

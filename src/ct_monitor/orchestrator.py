"""
Monitor Orchestrator for the ct-monitor system.

Runs one polling pass. For each configured domain, in order:
fetch -> detect new -> filter -> notify -> commit watermark.

A domain that fails to fetch or to notify ends the pass errored with its
watermark untouched, so the same issuances are fetched again next time.
Filter failures are logged and the domain continues with whatever the
chain produced. The watermark store is persisted once, after every domain
has been processed.
"""

from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence

from .audit_logger import AuditLogger
from .certspotter_client import CertSpotterClient
from .config import MonitorConfig
from .enums import DomainPhase, LogLevel, MailerKind
from .exceptions import CTMonitorError, FetchError, NotifyError, PersistenceError
from .filter_chain import FilterChainRunner
from .mailers import Mailer, build_mailer
from .metrics import IssuanceMetrics
from .models import DomainDescriptor, DomainReport, Issuance, RunSummary
from .notifications import NotificationDispatcher
from .watermark_store import WatermarkStore


class IssuanceSource(Protocol):
    async def fetch(
        self,
        domain: str,
        match_wildcards: bool = False,
        include_subdomains: bool = False,
        after_id: int = 0,
    ) -> list[Issuance]:
        ...


MailerProvider = Callable[[MailerKind], Mailer]


class MonitorOrchestrator:
    """
    Coordinates one polling pass over all monitored domains.

    All state (store, domains, sinks) is passed in; nothing is global.
    """

    def __init__(
        self,
        domains: Sequence[DomainDescriptor],
        store: WatermarkStore,
        position_path: Path,
        source: IssuanceSource,
        dispatcher: NotificationDispatcher,
        filter_runner: Optional[FilterChainRunner] = None,
        filters: Sequence[str] = (),
        default_mailer: Optional[Mailer] = None,
        mailer_provider: Optional[MailerProvider] = None,
        metrics: Optional[IssuanceMetrics] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Args:
            domains: Domains to check, in order
            store: Loaded watermark store; mutated in place
            position_path: Where the store is persisted at the end of the run
            source: Issuance source (normally a CertSpotterClient)
            dispatcher: Renders and sends reports
            filter_runner: Runner for the filter chain
            filters: Filter plugin paths, in chain order
            default_mailer: Initialized sink used when a domain has no override
            mailer_provider: Builds the sink for a domain-level override
            metrics: Optional metrics collector, pushed after persisting
            logger: Optional audit logger
        """
        self._domains = list(domains)
        self._store = store
        self._position_path = Path(position_path)
        self._source = source
        self._dispatcher = dispatcher
        self._filter_runner = filter_runner or FilterChainRunner(logger=logger)
        self._filters = list(filters)
        self._default_mailer = default_mailer
        self._mailer_provider = mailer_provider
        self._metrics = metrics
        self._logger = logger
        self._domain_mailers: dict[MailerKind, Optional[Mailer]] = {}

    @classmethod
    def from_config(
        cls,
        config: MonitorConfig,
        store: WatermarkStore,
        source: CertSpotterClient,
        logger: Optional[AuditLogger] = None,
    ) -> "MonitorOrchestrator":
        """
        Build an orchestrator and its collaborators from configuration.

        Raises:
            ConfigurationError: If the default mailer cannot be initialized
                or a template does not compile
        """
        metrics = None
        if config.metrics.pushgateway_url:
            metrics = IssuanceMetrics(
                config.metrics.pushgateway_url, job=config.metrics.job, logger=logger
            )

        default_mailer = build_mailer(config.alert_config.mailer, config, logger)
        default_mailer.init()

        return cls(
            domains=config.domains,
            store=store,
            position_path=config.position_config.filename,
            source=source,
            dispatcher=NotificationDispatcher(config.mail_template, logger=logger, metrics=metrics),
            filter_runner=FilterChainRunner(
                start_timeout=config.filter_config.start_timeout_seconds,
                call_timeout=config.filter_config.call_timeout_seconds,
                logger=logger,
            ),
            filters=config.filter_config.filters,
            default_mailer=default_mailer,
            mailer_provider=lambda kind: build_mailer(kind, config, logger),
            metrics=metrics,
            logger=logger,
        )

    async def run(self) -> RunSummary:
        """Check every domain, then persist the watermark store once."""
        summary = RunSummary()

        for descriptor in self._domains:
            summary.reports.append(await self.check_domain(descriptor))

        try:
            summary.persisted = self._store.persist(self._position_path)
        except PersistenceError as e:
            summary.persist_error = e.message
            self._log_error(
                "Failed to persist positions",
                e,
                {"path": str(self._position_path)},
            )
        else:
            self._log(
                LogLevel.INFO,
                "Positions written" if summary.persisted else "Nothing to persist",
                {"path": str(self._position_path), "entries": len(self._store)},
            )

        if self._metrics is not None:
            await self._metrics.push()

        return summary

    async def check_domain(self, descriptor: DomainDescriptor) -> DomainReport:
        """Run the fetch/filter/notify/commit cycle for one domain."""
        key = descriptor.key
        current = self._store.get(key)
        report = DomainReport(
            domain=descriptor.name,
            phase=DomainPhase.FETCHING,
            previous_watermark=current,
        )

        try:
            issuances = await self._source.fetch(
                descriptor.name,
                descriptor.match_wildcards,
                descriptor.include_subdomains,
                current,
            )
        except FetchError as e:
            return self._errored(report, e, "Failed to fetch issuances")

        report.fetched = len(issuances)
        report.phase = DomainPhase.DETECTING

        if not issuances:
            self._log(LogLevel.INFO, "no new issuances observed", {"domain": descriptor.name})
            return self._commit(report, key, current)

        candidate = max(current, issuances[-1].id)
        self._dispatcher.record_observed(descriptor.name, issuances)

        report.phase = DomainPhase.FILTERING
        try:
            result = await self._filter_runner.apply(self._filters, issuances)
        except Exception as e:
            return self._errored(report, e, "Filter chain failed unexpectedly")

        if result.error is not None:
            report.filter_error = result.error.message
            self._log(
                LogLevel.WARN,
                "errors encountered running filters",
                {
                    "domain": descriptor.name,
                    "error": result.error.message,
                    "step": result.error.step,
                    "filter": result.error.filter_path,
                    "filters": self._filters,
                },
            )

        report.phase = DomainPhase.NOTIFYING
        if result.issuances:
            sink = self._sink_for(descriptor)
            try:
                await self._dispatcher.report(descriptor.name, result.issuances, sink)
            except NotifyError as e:
                return self._errored(report, e, "Failed to send report")
            report.notified = len(result.issuances)

        return self._commit(report, key, candidate)

    def _commit(self, report: DomainReport, key: str, candidate: int) -> DomainReport:
        report.phase = DomainPhase.COMMITTING
        if candidate != self._store.get(key):
            self._store.set(key, candidate)
        report.committed_watermark = candidate
        report.phase = DomainPhase.DONE
        self._log(
            LogLevel.INFO,
            "done checking",
            {"domain": report.domain, "position": candidate, "notified": report.notified},
        )
        return report

    def _errored(self, report: DomainReport, error: Exception, message: str) -> DomainReport:
        failed_in = report.phase
        report.phase = DomainPhase.ERRORED
        report.error = error.message if isinstance(error, CTMonitorError) else str(error)
        self._log_error(
            message,
            error,
            {"domain": report.domain, "phase": failed_in.value},
        )
        return report

    def _sink_for(self, descriptor: DomainDescriptor) -> Optional[Mailer]:
        if descriptor.mailer is None or self._mailer_provider is None:
            return self._default_mailer

        if descriptor.mailer not in self._domain_mailers:
            mailer: Optional[Mailer]
            try:
                mailer = self._mailer_provider(descriptor.mailer)
                mailer.init()
            except CTMonitorError as e:
                self._log_error(
                    "could not initialize domain mailer, using default",
                    e,
                    {"domain": descriptor.name, "mailer": descriptor.mailer.value},
                )
                mailer = None
            self._domain_mailers[descriptor.mailer] = mailer

        return self._domain_mailers[descriptor.mailer] or self._default_mailer

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, "MonitorOrchestrator", message, data)

    def _log_error(self, message: str, error: Exception, data: dict) -> None:
        if self._logger:
            self._logger.log_error("MonitorOrchestrator", message, error=error, additional_data=data)

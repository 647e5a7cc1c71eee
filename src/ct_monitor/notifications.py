"""
Notification Dispatcher for ct-monitor.

Records every observed issuance to the log (and metrics, when configured)
and renders and sends the report for the issuances that survived the
filter chain. The filters govern what is alerted on, not what is logged
as observed.
"""

from typing import Optional, Sequence

from jinja2 import Environment, Template, TemplateError

from .audit_logger import AuditLogger
from .config import MailTemplate
from .enums import LogLevel
from .exceptions import ConfigurationError, NotifyError
from .mailers import Mailer
from .metrics import IssuanceMetrics
from .models import Issuance


class NotificationDispatcher:
    """
    Renders reports with Jinja2 and hands them to a Mailer.

    Template variables: ``domain`` (the configured name) and
    ``issuances`` (list of Issuance).
    """

    def __init__(
        self,
        templates: Optional[MailTemplate] = None,
        logger: Optional[AuditLogger] = None,
        metrics: Optional[IssuanceMetrics] = None,
    ) -> None:
        """
        Raises:
            ConfigurationError: If a template does not compile
        """
        templates = templates or MailTemplate()
        self._env = Environment(autoescape=False, keep_trailing_newline=True)
        self._subject = self._compile("subject", templates.subject)
        self._body = self._compile("body", templates.body)
        self._logger = logger
        self._metrics = metrics

    def _compile(self, name: str, source: str) -> Template:
        try:
            return self._env.from_string(source)
        except TemplateError as e:
            raise ConfigurationError(
                code="invalid_template",
                message=f"Invalid {name} template: {e}",
                details={"template": name},
            )

    def record_observed(self, domain: str, issuances: Sequence[Issuance]) -> None:
        """Log (and meter) each issuance fetched for ``domain``."""
        for issuance in issuances:
            if self._logger:
                self._logger.log(
                    LogLevel.INFO,
                    "NotificationDispatcher",
                    "observed issuance",
                    {
                        "domain": domain,
                        "id": issuance.id,
                        "names": list(issuance.dns_names),
                        "sha256": issuance.cert_sha256,
                    },
                )
            if self._metrics is not None:
                self._metrics.observe(domain, issuance)

    def render(self, domain: str, issuances: Sequence[Issuance]) -> tuple[str, str]:
        """
        Render subject and body.

        Raises:
            NotifyError: If rendering fails
        """
        variables = {"domain": domain, "issuances": list(issuances)}
        try:
            subject = self._subject.render(**variables)
            body = self._body.render(**variables)
        except TemplateError as e:
            raise NotifyError(
                code="template_error",
                message=f"Failed to render report: {e}",
                details={"domain": domain},
            )
        # Subject is always a single line
        subject = " ".join(subject.split())
        return subject, body

    async def report(
        self,
        domain: str,
        issuances: Sequence[Issuance],
        sink: Optional[Mailer],
    ) -> None:
        """
        Send a report for ``issuances`` through ``sink``.

        Does nothing when no sink is configured.

        Raises:
            NotifyError: If rendering or delivery fails
        """
        if sink is None:
            return

        subject, body = self.render(domain, issuances)

        if self._logger:
            self._logger.log(
                LogLevel.INFO,
                "NotificationDispatcher",
                "sending report",
                {"domain": domain, "issuances": len(issuances), "mailer": sink.get_name()},
            )

        try:
            await sink.send(subject, body)
        except NotifyError:
            raise
        except Exception as e:
            raise NotifyError(
                code="send_failed",
                message=f"Mailer {sink.get_name()} failed: {e}",
                details={"domain": domain, "mailer": sink.get_name()},
            )

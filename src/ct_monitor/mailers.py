"""
Mail providers for ct-monitor reports.

Every provider implements the Mailer protocol: ``init()`` validates the
configuration and prepares clients, ``send(subject, body)`` delivers one
plain-text report. Providers are selected by MailerKind through an explicit
factory table; an unknown name is a configuration error.
"""

import asyncio
import smtplib
import ssl
from email.mime.text import MIMEText
from typing import Any, Callable, Optional, Protocol, runtime_checkable

import boto3
import httpx
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .audit_logger import AuditLogger
from .config import AmazonSESConfig, MonitorConfig, SendgridConfig, SMTPConfig
from .enums import LogLevel, MailerKind
from .exceptions import ConfigurationError, NotifyError


def _require_addresses(kind: MailerKind, from_address: str, to_address: str) -> None:
    if not from_address:
        raise ConfigurationError(
            code="missing_sender",
            message=f"{kind.value}: sender address is not configured",
            details={"mailer": kind.value},
        )
    if not to_address:
        raise ConfigurationError(
            code="missing_recipient",
            message=f"{kind.value}: recipient address is not configured",
            details={"mailer": kind.value},
        )


@runtime_checkable
class Mailer(Protocol):
    """Protocol for report sinks."""

    def init(self) -> None:
        """
        Validate configuration.

        Raises:
            ConfigurationError: If required settings are missing
        """
        ...

    async def send(self, subject: str, body: str) -> None:
        """
        Deliver one report.

        Raises:
            NotifyError: If delivery fails
        """
        ...

    def get_name(self) -> str:
        ...


class NoOpMailer:
    """Mailer that only logs that nothing is sent."""

    def __init__(self, logger: Optional[AuditLogger] = None) -> None:
        self._logger = logger

    def init(self) -> None:
        return None

    async def send(self, subject: str, body: str) -> None:
        if self._logger:
            self._logger.log(
                LogLevel.INFO,
                "NoOpMailer",
                "no-op mailer, no email reports will be sent",
            )

    def get_name(self) -> str:
        return MailerKind.NONE.value


class SMTPMailer:
    """Mailer using plain SMTP with opportunistic or required STARTTLS."""

    def __init__(self, config: SMTPConfig, timeout: float = 30.0) -> None:
        self._config = config
        self._timeout = timeout

    def init(self) -> None:
        _require_addresses(MailerKind.SMTP, self._config.from_address, self._config.to_address)

    def get_name(self) -> str:
        return MailerKind.SMTP.value

    async def send(self, subject: str, body: str) -> None:
        # smtplib blocks; run it in the default executor
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._send_sync, subject, body)

    def _format_message(self, subject: str, body: str) -> MIMEText:
        msg = MIMEText(body, "plain", "utf-8")
        msg["From"] = self._config.from_address
        msg["To"] = self._config.to_address
        msg["Subject"] = subject
        return msg

    def _tls_context(self) -> ssl.SSLContext:
        try:
            return ssl.create_default_context(cafile=self._config.ca_cert_file)
        except (OSError, ssl.SSLError) as e:
            raise NotifyError(
                code="tls_error",
                message=f"Failed to load CA certificate: {e}",
                details={"ca_cert_file": self._config.ca_cert_file},
            )

    def _send_sync(self, subject: str, body: str) -> None:
        cfg = self._config
        msg = self._format_message(subject, body)
        try:
            with smtplib.SMTP(cfg.server, cfg.port, timeout=self._timeout) as server:
                server.ehlo()
                if server.has_extn("starttls"):
                    try:
                        server.starttls(context=self._tls_context())
                        server.ehlo()
                    except (smtplib.SMTPException, ssl.SSLError):
                        if cfg.require_encryption:
                            raise
                elif cfg.require_encryption:
                    raise NotifyError(
                        code="tls_required",
                        message="SMTP server does not support STARTTLS",
                        details={"server": cfg.server, "port": cfg.port},
                    )

                if cfg.username and cfg.password:
                    server.login(cfg.username, cfg.password)

                server.sendmail(cfg.from_address, [cfg.to_address], msg.as_string())
        except (smtplib.SMTPException, ssl.SSLError, OSError) as e:
            raise NotifyError(
                code="smtp_error",
                message=f"Failed to send mail via SMTP: {e}",
                details={"server": cfg.server, "port": cfg.port},
            )


class AmazonSESMailer:
    """Mailer using the Amazon SES v2 API."""

    def __init__(
        self,
        config: AmazonSESConfig,
        client: Any = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._config = config
        self._client = client
        self._logger = logger

    def init(self) -> None:
        _require_addresses(
            MailerKind.AMAZON_SES, self._config.from_address, self._config.to_address
        )
        if self._client is not None:
            return
        try:
            self._client = boto3.client(
                "sesv2",
                region_name=self._config.region,
                config=BotoConfig(
                    retries={"max_attempts": 1, "mode": "standard"},
                    connect_timeout=10,
                    read_timeout=30,
                ),
            )
        except BotoCoreError as e:
            raise ConfigurationError(
                code="ses_client_error",
                message=f"Failed to create SES client: {e}",
                details={"region": self._config.region},
            )

    def get_name(self) -> str:
        return MailerKind.AMAZON_SES.value

    async def send(self, subject: str, body: str) -> None:
        if self._client is None:
            raise NotifyError(code="not_initialized", message="SES mailer was not initialized")
        loop = asyncio.get_running_loop()
        message_id = await loop.run_in_executor(None, self._send_sync, subject, body)
        if self._logger:
            self._logger.log(
                LogLevel.INFO, "AmazonSESMailer", "SES email sent", {"message_id": message_id}
            )

    def _send_sync(self, subject: str, body: str) -> Optional[str]:
        try:
            response = self._client.send_email(
                FromEmailAddress=self._config.from_address,
                Destination={"ToAddresses": [self._config.to_address]},
                Content={
                    "Simple": {
                        "Subject": {"Data": subject, "Charset": "UTF-8"},
                        "Body": {"Text": {"Data": body, "Charset": "UTF-8"}},
                    }
                },
            )
        except (ClientError, BotoCoreError) as e:
            raise NotifyError(
                code="ses_error",
                message=f"Failed to send mail via SES: {e}",
                details={"region": self._config.region},
            )
        return response.get("MessageId")


class SendgridMailer:
    """Mailer using the Sendgrid v3 mail/send API."""

    def __init__(
        self,
        config: SendgridConfig,
        client: Optional[httpx.AsyncClient] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._config = config
        self._client = client
        self._logger = logger

    def init(self) -> None:
        _require_addresses(
            MailerKind.SENDGRID, self._config.from_address, self._config.to_address
        )
        if not self._config.api_key:
            raise ConfigurationError(
                code="missing_api_key",
                message="sendgrid: api_key is not configured",
                details={"mailer": MailerKind.SENDGRID.value},
            )

    def get_name(self) -> str:
        return MailerKind.SENDGRID.value

    def _payload(self, subject: str, body: str) -> dict:
        return {
            "personalizations": [{"to": [{"email": self._config.to_address}]}],
            "from": {"email": self._config.from_address},
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        }

    async def send(self, subject: str, body: str) -> None:
        headers = {"Authorization": f"Bearer {self._config.api_key}"}
        try:
            if self._client is not None:
                response = await self._client.post(
                    self._config.endpoint,
                    json=self._payload(subject, body),
                    headers=headers,
                )
            else:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    response = await client.post(
                        self._config.endpoint,
                        json=self._payload(subject, body),
                        headers=headers,
                    )
        except httpx.HTTPError as e:
            raise NotifyError(
                code="sendgrid_error",
                message=f"Request to Sendgrid failed: {e}",
            )

        if self._logger:
            self._logger.log(
                LogLevel.INFO,
                "SendgridMailer",
                "sendgrid response",
                {"status_code": response.status_code},
            )

        if not 200 <= response.status_code < 300:
            raise NotifyError(
                code="sendgrid_error",
                message=f"Sendgrid returned HTTP {response.status_code}",
                details={"status_code": response.status_code, "body": response.text[:500]},
            )


MailerFactory = Callable[[MonitorConfig, Optional[AuditLogger]], Mailer]

MAILER_FACTORIES: dict[MailerKind, MailerFactory] = {
    MailerKind.NONE: lambda config, logger: NoOpMailer(logger=logger),
    MailerKind.SMTP: lambda config, logger: SMTPMailer(config.smtp),
    MailerKind.AMAZON_SES: lambda config, logger: AmazonSESMailer(config.amazonses, logger=logger),
    MailerKind.SENDGRID: lambda config, logger: SendgridMailer(config.sendgrid, logger=logger),
}


def parse_mailer_kind(name: str) -> MailerKind:
    """
    Map a configured provider name to a MailerKind.

    Raises:
        ConfigurationError: If the name is not a known provider
    """
    try:
        return MailerKind(str(name).strip().lower())
    except ValueError:
        raise ConfigurationError(
            code="unknown_mailer",
            message=f"Unknown mailer {name!r}",
            details={"known": [kind.value for kind in MailerKind]},
        )


def build_mailer(
    kind: MailerKind,
    config: MonitorConfig,
    logger: Optional[AuditLogger] = None,
) -> Mailer:
    """Construct (without initializing) the mailer registered for ``kind``."""
    return MAILER_FACTORIES[kind](config, logger)

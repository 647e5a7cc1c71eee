"""
Configuration dataclasses for the ct-monitor system.

This module defines all configuration structures used throughout the system,
including monitored domains, upstream API access, mail providers, filter
plugins, templates, metrics, and logging configuration.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .enums import MailerKind
from .models import DomainDescriptor

DEFAULT_CONFIG_FILE = Path("/etc/ct-monitor/config.json")
DEFAULT_POSITION_FILE = Path("/var/log/ct-monitor/positions.json")
DEFAULT_CERTSPOTTER_ENDPOINT = "https://api.certspotter.com/v1/issuances"
CERTSPOTTER_TOKEN_ENV = "CERTSPOTTER_TOKEN"
DEFAULT_FILTER_START_TIMEOUT = 10.0

DEFAULT_SUBJECT_TEMPLATE = "Certificate Transparency Notification for {{ domain }}"
DEFAULT_BODY_TEMPLATE = """\
ct-monitor has observed the issuance of the following certificate{% if issuances|length > 1 %}s{% endif %} for the {{ domain }} domain:
{% for issuance in issuances %}
Issuer Friendly Name: {{ issuance.issuer.friendly_name }}
Issuer Distinguished Name: {{ issuance.issuer.name }}
DNS Names: {{ issuance.dns_names|join(", ") }}
Validity: {{ issuance.not_before }} - {{ issuance.not_after }}
SHA256: {{ issuance.cert_sha256 }}
TBS SHA256: {{ issuance.tbs_sha256 }}

{{ issuance.problem_reporting }}
{% endfor %}"""


@dataclass
class SMTPConfig:
    """Plain SMTP mail provider configuration."""

    from_address: str = ""
    to_address: str = ""
    server: str = "localhost"
    port: int = 25
    username: str = ""
    password: str = ""
    ca_cert_file: Optional[str] = None
    require_encryption: bool = False


@dataclass
class AmazonSESConfig:
    """Amazon Simple Email Service configuration."""

    from_address: str = ""
    to_address: str = ""
    region: str = "us-east-1"


@dataclass
class SendgridConfig:
    """Sendgrid configuration."""

    from_address: str = ""
    to_address: str = ""
    api_key: str = ""
    endpoint: str = "https://api.sendgrid.com/v3/mail/send"


@dataclass
class AlertConfig:
    """Default mail provider used when a domain has no override."""

    mailer: MailerKind = MailerKind.NONE


@dataclass
class PositionConfig:
    """Location of the watermark (position) file."""

    filename: Path = DEFAULT_POSITION_FILE


@dataclass
class FilterConfig:
    """Filter plugin chain, in execution order."""

    filters: list[str] = field(default_factory=list)
    start_timeout_seconds: float = DEFAULT_FILTER_START_TIMEOUT
    call_timeout_seconds: Optional[float] = None


@dataclass
class MailTemplate:
    """Jinja2 templates for the report. Variables: ``domain``, ``issuances``."""

    subject: str = DEFAULT_SUBJECT_TEMPLATE
    body: str = DEFAULT_BODY_TEMPLATE


@dataclass
class MetricsConfig:
    """Prometheus Pushgateway settings. Metrics are disabled without a URL."""

    pushgateway_url: Optional[str] = None
    job: str = "ct_monitor"


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class MonitorConfig:
    """Main configuration combining all sub-configurations."""

    domains: list[DomainDescriptor] = field(default_factory=list)
    certspotter_endpoint: str = DEFAULT_CERTSPOTTER_ENDPOINT
    certspotter_token: str = ""
    alert_config: AlertConfig = field(default_factory=AlertConfig)
    position_config: PositionConfig = field(default_factory=PositionConfig)
    filter_config: FilterConfig = field(default_factory=FilterConfig)
    mail_template: MailTemplate = field(default_factory=MailTemplate)
    smtp: SMTPConfig = field(default_factory=SMTPConfig)
    amazonses: AmazonSESConfig = field(default_factory=AmazonSESConfig)
    sendgrid: SendgridConfig = field(default_factory=SendgridConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

"""
ct-monitor - Certificate Transparency issuance monitor.

This package polls the Cert Spotter API for certificates issued for a set of
domains, runs them through out-of-process filter plugins, reports the
survivors by mail and keeps a durable per-domain position.
"""

__version__ = "0.1.0"
__author__ = "ct-monitor Team"

from ct_monitor.exceptions import (
    CTMonitorError,
    ConfigurationError,
    FetchError,
    RateLimitedError,
    UpstreamError,
    FilterChainError,
    NotifyError,
    PersistenceError,
)
from ct_monitor.enums import (
    LogLevel,
    MailerKind,
    DomainPhase,
)
from ct_monitor.models import (
    Issuer,
    Certificate,
    Issuance,
    DomainDescriptor,
    DomainReport,
    RunSummary,
    domain_key,
)
from ct_monitor.config import (
    SMTPConfig,
    AmazonSESConfig,
    SendgridConfig,
    AlertConfig,
    PositionConfig,
    FilterConfig,
    MailTemplate,
    MetricsConfig,
    LoggingConfig,
    MonitorConfig,
)
from ct_monitor.audit_logger import (
    AuditLogger,
    LogEntry,
)
from ct_monitor.watermark_store import (
    WatermarkStore,
)
from ct_monitor.certspotter_client import (
    CertSpotterClient,
)
from ct_monitor.filter_protocol import (
    IssuanceFilter,
    PluginFilter,
    handle_request,
    handshake_line,
    serve,
)
from ct_monitor.filter_chain import (
    FilterChainResult,
    FilterChainRunner,
)
from ct_monitor.mailers import (
    Mailer,
    NoOpMailer,
    SMTPMailer,
    AmazonSESMailer,
    SendgridMailer,
    MAILER_FACTORIES,
    build_mailer,
    parse_mailer_kind,
)
from ct_monitor.metrics import (
    IssuanceMetrics,
)
from ct_monitor.notifications import (
    NotificationDispatcher,
)
from ct_monitor.orchestrator import (
    IssuanceSource,
    MonitorOrchestrator,
)
from ct_monitor.cli import (
    main as cli_main,
    create_parser,
    create_default_config,
    load_config_from_file,
    save_config_to_file,
)

__all__ = [
    # Exceptions
    "CTMonitorError",
    "ConfigurationError",
    "FetchError",
    "RateLimitedError",
    "UpstreamError",
    "FilterChainError",
    "NotifyError",
    "PersistenceError",
    # Enums
    "LogLevel",
    "MailerKind",
    "DomainPhase",
    # Models
    "Issuer",
    "Certificate",
    "Issuance",
    "DomainDescriptor",
    "DomainReport",
    "RunSummary",
    "domain_key",
    # Configuration
    "SMTPConfig",
    "AmazonSESConfig",
    "SendgridConfig",
    "AlertConfig",
    "PositionConfig",
    "FilterConfig",
    "MailTemplate",
    "MetricsConfig",
    "LoggingConfig",
    "MonitorConfig",
    # Audit Logger
    "AuditLogger",
    "LogEntry",
    # Watermark Store
    "WatermarkStore",
    # Cert Spotter Client
    "CertSpotterClient",
    # Filter Protocol
    "IssuanceFilter",
    "PluginFilter",
    "handle_request",
    "handshake_line",
    "serve",
    # Filter Chain
    "FilterChainResult",
    "FilterChainRunner",
    # Mailers
    "Mailer",
    "NoOpMailer",
    "SMTPMailer",
    "AmazonSESMailer",
    "SendgridMailer",
    "MAILER_FACTORIES",
    "build_mailer",
    "parse_mailer_kind",
    # Metrics
    "IssuanceMetrics",
    # Notifications
    "NotificationDispatcher",
    # Orchestrator
    "IssuanceSource",
    "MonitorOrchestrator",
    # CLI
    "cli_main",
    "create_parser",
    "create_default_config",
    "load_config_from_file",
    "save_config_to_file",
]

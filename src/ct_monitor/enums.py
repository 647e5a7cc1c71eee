"""
Enumeration types for the ct-monitor system.
"""

from enum import Enum


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"

    @property
    def severity(self) -> int:
        """Numeric rank used for minimum-level filtering."""
        return _SEVERITY[self]


_SEVERITY = {
    LogLevel.DEBUG: 10,
    LogLevel.INFO: 20,
    LogLevel.WARN: 30,
    LogLevel.ERROR: 40,
}


class MailerKind(Enum):
    """Names of the supported mail providers, as written in configuration."""

    AMAZON_SES = "amazonses"
    SENDGRID = "sendgrid"
    SMTP = "smtp"
    NONE = "none"


class DomainPhase(Enum):
    """Phases a domain goes through during one polling pass."""

    FETCHING = "fetching"
    DETECTING = "detecting"
    FILTERING = "filtering"
    NOTIFYING = "notifying"
    COMMITTING = "committing"
    DONE = "done"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (DomainPhase.DONE, DomainPhase.ERRORED)

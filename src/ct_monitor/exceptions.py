"""
Exception classes for the ct-monitor system.

All exceptions inherit from CTMonitorError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Optional


class CTMonitorError(Exception):
    """Base exception for all ct-monitor errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(CTMonitorError):
    """Raised when configuration is invalid or a mailer cannot be initialized."""

    pass


class FetchError(CTMonitorError):
    """Raised when issuances cannot be fetched from the upstream API."""

    pass


class RateLimitedError(FetchError):
    """Raised when the upstream API answers HTTP 429."""

    def __init__(
        self,
        message: str,
        retry_after: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        self.retry_after = retry_after
        details = dict(details or {})
        details["retry_after"] = retry_after
        super().__init__(code="rate_limited", message=message, details=details)


class UpstreamError(FetchError):
    """Raised on an undocumented status code or a malformed response body."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[dict] = None,
    ) -> None:
        self.status_code = status_code
        details = dict(details or {})
        details["status_code"] = status_code
        super().__init__(code="upstream_error", message=message, details=details)


class FilterChainError(CTMonitorError):
    """Raised when a filter plugin cannot be spawned, handshaken, or called."""

    def __init__(
        self,
        code: str,
        message: str,
        filter_path: Optional[str] = None,
        step: Optional[int] = None,
        details: Optional[dict] = None,
    ) -> None:
        self.filter_path = filter_path
        self.step = step
        details = dict(details or {})
        details["filter_path"] = filter_path
        details["step"] = step
        super().__init__(code=code, message=message, details=details)


class NotifyError(CTMonitorError):
    """Raised when a report cannot be rendered or delivered."""

    pass


class PersistenceError(CTMonitorError):
    """Raised when the watermark file cannot be read or written."""

    pass

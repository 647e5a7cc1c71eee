"""
Data models for the ct-monitor system.

This module defines the issuance records returned by the Cert Spotter API,
the monitored domain descriptors, and the per-pass result structures.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Optional

from .enums import DomainPhase, MailerKind

_KEY_SEPARATOR = re.compile(r"[^0-9A-Za-z]")


def _require_str(data: dict, key: str) -> str:
    value = data.get(key, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class Issuer:
    """Issuer of a certificate as reported by the API."""

    name: str = ""
    pubkey_sha256: str = ""
    friendly_name: str = ""

    @classmethod
    def from_api(cls, data: Optional[dict]) -> "Issuer":
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("issuer must be an object")
        return cls(
            name=_require_str(data, "name"),
            pubkey_sha256=_require_str(data, "pubkey_sha256"),
            friendly_name=_require_str(data, "friendly_name"),
        )

    def to_api(self) -> dict:
        return {
            "name": self.name,
            "pubkey_sha256": self.pubkey_sha256,
            "friendly_name": self.friendly_name,
        }


@dataclass(frozen=True)
class Certificate:
    """Certificate object embedded in an issuance (``expand=cert``)."""

    type: str = ""
    sha256: str = ""
    data: str = ""  # base64 DER

    @classmethod
    def from_api(cls, data: Optional[dict]) -> "Certificate":
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("cert must be an object")
        return cls(
            type=_require_str(data, "type"),
            sha256=_require_str(data, "sha256"),
            data=_require_str(data, "data"),
        )

    def to_api(self) -> dict:
        return {"type": self.type, "sha256": self.sha256, "data": self.data}


@dataclass(frozen=True)
class Issuance:
    """A single certificate issuance event."""

    id: int
    tbs_sha256: str = ""
    dns_names: tuple[str, ...] = ()
    pubkey_sha256: str = ""
    issuer: Issuer = field(default_factory=Issuer)
    not_before: str = ""
    not_after: str = ""
    cert: Certificate = field(default_factory=Certificate)
    problem_reporting: str = ""

    @property
    def cert_sha256(self) -> str:
        return self.cert.sha256

    @classmethod
    def from_api(cls, data: Any) -> "Issuance":
        """
        Build an Issuance from an API object.

        The id is a 64-bit integer encoded as a JSON string.

        Raises:
            ValueError: If the object is malformed
        """
        if not isinstance(data, dict):
            raise ValueError("issuance must be an object")

        raw_id = data.get("id")
        if isinstance(raw_id, bool) or not isinstance(raw_id, (str, int)):
            raise ValueError(f"invalid issuance id: {raw_id!r}")
        if isinstance(raw_id, str) and not (raw_id.isascii() and raw_id.isdigit()):
            raise ValueError(f"invalid issuance id: {raw_id!r}")
        issuance_id = int(raw_id)
        if issuance_id < 0 or issuance_id >= 2 ** 64:
            raise ValueError(f"issuance id out of range: {raw_id!r}")

        dns_names = data.get("dns_names") or []
        if not isinstance(dns_names, list) or not all(isinstance(n, str) for n in dns_names):
            raise ValueError("dns_names must be a list of strings")

        return cls(
            id=issuance_id,
            tbs_sha256=_require_str(data, "tbs_sha256"),
            dns_names=tuple(dns_names),
            pubkey_sha256=_require_str(data, "pubkey_sha256"),
            issuer=Issuer.from_api(data.get("issuer")),
            not_before=_require_str(data, "not_before"),
            not_after=_require_str(data, "not_after"),
            cert=Certificate.from_api(data.get("cert")),
            problem_reporting=_require_str(data, "problem_reporting"),
        )

    def to_api(self) -> dict:
        """Serialize back to the API wire shape."""
        return {
            "id": str(self.id),
            "tbs_sha256": self.tbs_sha256,
            "dns_names": list(self.dns_names),
            "pubkey_sha256": self.pubkey_sha256,
            "issuer": self.issuer.to_api(),
            "not_before": self.not_before,
            "not_after": self.not_after,
            "cert": self.cert.to_api(),
            "problem_reporting": self.problem_reporting,
        }


def domain_key(name: str) -> str:
    """Normalize a domain name into a watermark key (``example.com`` -> ``example-com``)."""
    return _KEY_SEPARATOR.sub("-", name)


@dataclass(frozen=True)
class DomainDescriptor:
    """A monitored domain and its query options."""

    name: str
    match_wildcards: bool = False
    include_subdomains: bool = False
    mailer: Optional[MailerKind] = None  # None: use alert_config.mailer

    @property
    def key(self) -> str:
        return domain_key(self.name)


@dataclass
class DomainReport:
    """Outcome of one domain during a polling pass."""

    domain: str
    phase: DomainPhase
    previous_watermark: int
    committed_watermark: Optional[int] = None
    fetched: int = 0
    notified: int = 0
    filter_error: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.phase == DomainPhase.DONE


@dataclass
class RunSummary:
    """Outcome of a complete polling pass."""

    reports: list[DomainReport] = field(default_factory=list)
    persisted: bool = False
    persist_error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.persist_error is None and all(r.succeeded for r in self.reports)

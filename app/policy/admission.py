"""
Admission policy deciding which target URLs the relay may fetch.

Host matching against the deny-list is plain substring containment on the
lower-cased hostname. It blocks any host that merely contains one of the
tokens (``10.`` inside ``web10.example.com`` for instance) and it does not
resolve DNS, canonicalize IPv6 or decode numeric loopback forms, so a public
name resolving to a private address is still admitted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple
from urllib.parse import SplitResult, urlsplit

logger = logging.getLogger("uvicorn.error")

ALLOWED_SCHEMES = ("http", "https")

DEFAULT_BLOCKED_HOSTS: Tuple[str, ...] = (
    "localhost",
    "127.0.0.1",
    "0.0.0.0",
    "internal",
    "192.168.",
    "10.",
) + tuple(f"172.{octet}." for octet in range(16, 32))


class RejectionCode(str, Enum):
    INVALID_URL_FORMAT = "invalid_url_format"
    UNSUPPORTED_SCHEME = "unsupported_scheme"
    DOMAIN_NOT_ALLOWED = "domain_not_allowed"
    DOMAIN_NOT_WHITELISTED = "domain_not_whitelisted"


REJECTION_REASONS = {
    RejectionCode.INVALID_URL_FORMAT: "Invalid URL format",
    RejectionCode.UNSUPPORTED_SCHEME: "Only HTTP and HTTPS protocols allowed",
    RejectionCode.DOMAIN_NOT_ALLOWED: "Domain not allowed",
    RejectionCode.DOMAIN_NOT_WHITELISTED: "Domain not in whitelist",
}


@dataclass(frozen=True)
class AdmissionVerdict:
    allowed: bool
    reason: Optional[str] = None
    code: Optional[RejectionCode] = None
    url: Optional[SplitResult] = None

    @classmethod
    def accept(cls, url: SplitResult) -> "AdmissionVerdict":
        return cls(allowed=True, url=url)

    @classmethod
    def reject(cls, code: RejectionCode) -> "AdmissionVerdict":
        return cls(allowed=False, reason=REJECTION_REASONS[code], code=code)


def parse_target_url(candidate: str) -> Optional[SplitResult]:
    """Parse an absolute URL, returning None when it is not one."""
    if not isinstance(candidate, str):
        return None
    try:
        parsed = urlsplit(candidate.strip())
        # Accessing the port validates it
        parsed.port
    except ValueError:
        return None
    if not parsed.scheme:
        return None
    if parsed.scheme in ALLOWED_SCHEMES and not parsed.hostname:
        return None
    return parsed


@dataclass(frozen=True)
class AdmissionPolicy:
    """Immutable deny/allow configuration shared by both relay endpoints."""

    blocked_hosts: Tuple[str, ...] = DEFAULT_BLOCKED_HOSTS
    allowed_domains: Tuple[str, ...] = ()

    @classmethod
    def from_settings(cls, allowed_domains: Iterable[str]) -> "AdmissionPolicy":
        domains = tuple(d.strip().lower() for d in allowed_domains if d and d.strip())
        return cls(allowed_domains=domains)

    def is_blocked(self, hostname: str) -> bool:
        hostname = hostname.lower()
        return any(blocked in hostname for blocked in self.blocked_hosts)

    def is_whitelisted(self, hostname: str) -> bool:
        if not self.allowed_domains:
            return True
        hostname = hostname.lower()
        return any(
            hostname == domain or hostname.endswith("." + domain)
            for domain in self.allowed_domains
        )

    def evaluate(self, candidate_url_text: str) -> AdmissionVerdict:
        parsed = parse_target_url(candidate_url_text)
        if parsed is None:
            verdict = AdmissionVerdict.reject(RejectionCode.INVALID_URL_FORMAT)
        elif parsed.scheme not in ALLOWED_SCHEMES:
            verdict = AdmissionVerdict.reject(RejectionCode.UNSUPPORTED_SCHEME)
        elif self.is_blocked(parsed.hostname):
            verdict = AdmissionVerdict.reject(RejectionCode.DOMAIN_NOT_ALLOWED)
        elif not self.is_whitelisted(parsed.hostname):
            verdict = AdmissionVerdict.reject(RejectionCode.DOMAIN_NOT_WHITELISTED)
        else:
            return AdmissionVerdict.accept(parsed)

        logger.info(f"Admission rejected ({verdict.code.value}): {verdict.reason}")
        return verdict

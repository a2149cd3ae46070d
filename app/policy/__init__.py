from .admission import (
    AdmissionPolicy,
    AdmissionVerdict,
    RejectionCode,
    DEFAULT_BLOCKED_HOSTS,
    parse_target_url,
)

__all__ = [
    "AdmissionPolicy",
    "AdmissionVerdict",
    "RejectionCode",
    "DEFAULT_BLOCKED_HOSTS",
    "parse_target_url",
]

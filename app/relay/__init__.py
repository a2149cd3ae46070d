from .errors import (
    RelayError,
    MissingUrlParameter,
    MethodNotAllowed,
    AdmissionRejected,
    ResourceNotFound,
)
from .page import RelayState, RenderedPage, fetch_and_rewrite
from .resource import RawResource, fetch_raw
from .rewrite import RewriteKind, relay_link, rewrite_html

__all__ = [
    "RelayError",
    "MissingUrlParameter",
    "MethodNotAllowed",
    "AdmissionRejected",
    "ResourceNotFound",
    "RelayState",
    "RenderedPage",
    "fetch_and_rewrite",
    "RawResource",
    "fetch_raw",
    "RewriteKind",
    "relay_link",
    "rewrite_html",
]

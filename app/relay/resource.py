import logging
from dataclasses import dataclass

from opentelemetry import trace

from app.policy import AdmissionPolicy
from app.relay.errors import AdmissionRejected, ResourceNotFound
from app.relay.fetcher import RESOURCE_REQUEST_HEADERS, fetch_target
from app.relay.page import cache_directive
from app.utils import redact_query
from app.vars import RESOURCE_CACHE_MAX_AGE

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass
class RawResource:
    content_type: str
    body: bytes
    cache_control: str


async def fetch_raw(target_url: str, policy: AdmissionPolicy) -> RawResource:
    """Fetch a sub-resource verbatim. Every fetch failure becomes ResourceNotFound."""
    with tracer.start_as_current_span("relay.resource") as span:
        verdict = policy.evaluate(target_url)
        if not verdict.allowed:
            span.set_attribute("relay.error", verdict.reason)
            raise AdmissionRejected(verdict.reason)

        try:
            document = await fetch_target(target_url, RESOURCE_REQUEST_HEADERS)
        except Exception as exc:
            logger.error(f"Resource proxy error for {redact_query(target_url)}: {exc}")
            span.set_attribute("relay.error", type(exc).__name__)
            raise ResourceNotFound() from exc

        if document.status_code >= 400:
            logger.error(
                f"Resource proxy error for {redact_query(target_url)}: "
                f"upstream status {document.status_code}"
            )
            span.set_attribute("relay.error", f"status_{document.status_code}")
            raise ResourceNotFound()

        return RawResource(
            content_type=document.content_type or DEFAULT_CONTENT_TYPE,
            body=document.body,
            cache_control=cache_directive(RESOURCE_CACHE_MAX_AGE),
        )

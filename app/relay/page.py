import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict

import httpx
from opentelemetry import trace

from app.policy import AdmissionPolicy
from app.relay.errors import (
    AdmissionRejected,
    RelayError,
    UpstreamStatusError,
    classify_fetch_error,
)
from app.relay.fetcher import PAGE_REQUEST_HEADERS, fetch_target
from app.relay.rewrite import rewrite_html
from app.utils import redact_query
from app.vars import HTML_CACHE_MAX_AGE, PASSTHROUGH_CACHE_MAX_AGE

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

HTML_CONTENT_TYPE = "text/html; charset=utf-8"
HTML_SECURITY_HEADERS = {
    "X-Frame-Options": "SAMEORIGIN",
    "X-Content-Type-Options": "nosniff",
}


class RelayState(str, Enum):
    INIT = "init"
    POLICY_CHECKED = "policy_checked"
    FETCHED = "fetched"
    REWRITTEN = "rewritten"
    PASSTHROUGH = "passthrough"
    DONE = "done"
    ERROR = "error"


@dataclass
class RenderedPage:
    content_type: str
    body: bytes
    cache_control: str
    rewritten: bool
    headers: Dict[str, str] = field(default_factory=dict)


def cache_directive(max_age: int) -> str:
    return f"public, max-age={max_age}"


async def fetch_and_rewrite(
    target_url: str, relay_base: str, policy: AdmissionPolicy
) -> RenderedPage:
    """
    Fetch ``target_url`` and, for HTML, rewrite its links onto ``relay_base``.

    Raises RelayError subclasses mapped to the response status and reason.
    """
    with tracer.start_as_current_span("relay.page") as span:
        state = RelayState.INIT

        def advance(next_state: RelayState) -> None:
            nonlocal state
            logger.debug(f"Page relay {state.value} -> {next_state.value}")
            state = next_state
            span.set_attribute("relay.state", state.value)

        span.set_attribute("relay.state", state.value)
        try:
            verdict = policy.evaluate(target_url)
            if not verdict.allowed:
                raise AdmissionRejected(verdict.reason)
            advance(RelayState.POLICY_CHECKED)

            try:
                document = await fetch_target(target_url, PAGE_REQUEST_HEADERS)
            except httpx.HTTPError as exc:
                logger.error(f"Proxy error for {redact_query(target_url)}: {exc}")
                raise classify_fetch_error(exc) from exc
            if document.status_code >= 500:
                raise UpstreamStatusError(document.status_code)
            advance(RelayState.FETCHED)

            if document.is_html:
                html, rewritten = rewrite_html(
                    document.body, target_url, relay_base, encoding=document.encoding
                )
                span.set_attribute("relay.rewritten_links", rewritten)
                page = RenderedPage(
                    content_type=HTML_CONTENT_TYPE,
                    body=html.encode("utf-8"),
                    cache_control=cache_directive(HTML_CACHE_MAX_AGE),
                    rewritten=True,
                    headers=dict(HTML_SECURITY_HEADERS),
                )
                advance(RelayState.REWRITTEN)
            else:
                page = RenderedPage(
                    content_type=document.content_type,
                    body=document.body,
                    cache_control=cache_directive(PASSTHROUGH_CACHE_MAX_AGE),
                    rewritten=False,
                )
                advance(RelayState.PASSTHROUGH)

            advance(RelayState.DONE)
            return page
        except RelayError as exc:
            advance(RelayState.ERROR)
            span.set_attribute("relay.error", exc.reason)
            raise

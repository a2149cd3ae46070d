import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import anyio
import httpx
from opentelemetry import trace

from app.utils import redact_query
from app.vars import RELAY_MAX_REDIRECTS, RELAY_TIMEOUT, RELAY_USER_AGENT

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

PAGE_REQUEST_HEADERS = {
    "User-Agent": RELAY_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Accept-Encoding": "gzip, deflate",
    "Upgrade-Insecure-Requests": "1",
}

RESOURCE_REQUEST_HEADERS = {
    "User-Agent": RELAY_USER_AGENT,
    "Accept": "*/*",
    "Accept-Encoding": "gzip, deflate",
}


@dataclass
class FetchedDocument:
    url: str
    status_code: int
    content_type: str
    body: bytes
    encoding: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def is_html(self) -> bool:
        return "text/html" in self.content_type.lower()


async def fetch_target(url: str, headers: Dict[str, str]) -> FetchedDocument:
    """
    Perform the single outbound GET for a relay request.

    Redirects are followed up to RELAY_MAX_REDIRECTS hops. RELAY_TIMEOUT bounds
    each network step and also the whole exchange including redirects and body
    download; exceeding the overall deadline raises httpx.TimeoutException.
    httpx errors propagate to the caller.
    """
    with tracer.start_as_current_span("relay.fetch") as span:
        span.set_attribute("relay.target_url", redact_query(url))

        try:
            with anyio.fail_after(RELAY_TIMEOUT):
                async with httpx.AsyncClient(
                    timeout=httpx.Timeout(RELAY_TIMEOUT),
                    follow_redirects=True,
                    max_redirects=RELAY_MAX_REDIRECTS,
                ) as client:
                    response = await client.get(url, headers=headers)
        except TimeoutError as exc:
            span.set_attribute("relay.error", "deadline_exceeded")
            raise httpx.TimeoutException(
                f"Request exceeded {RELAY_TIMEOUT}s deadline"
            ) from exc

        span.set_attribute("relay.status_code", response.status_code)
        span.set_attribute("relay.redirects", len(response.history))
        logger.debug(
            f"Fetched {redact_query(url)} -> {response.status_code} "
            f"after {len(response.history)} redirect(s)"
        )

        return FetchedDocument(
            url=str(response.url),
            status_code=response.status_code,
            content_type=response.headers.get("content-type", ""),
            body=response.content,
            encoding=response.charset_encoding,
            headers=dict(response.headers),
        )

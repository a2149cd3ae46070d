import logging
from typing import Optional, Dict
from contextlib import contextmanager

from opentelemetry.trace import Tracer

from app.utils import redact_query

logger = logging.getLogger("uvicorn.error")


@contextmanager
def traced_request(
    tracer: Tracer,
    operation: str,
    target_url: Optional[str],
    relay_base: Optional[str],
    start_message: str,
    extra_attrs: Optional[Dict] = None,
):
    """Context manager to create a span, set common attributes, and log a start message."""
    with tracer.start_as_current_span(operation) as span:
        if target_url:
            span.set_attribute("relay.target_url", redact_query(target_url))
        if relay_base:
            span.set_attribute("relay.base", relay_base)
        if extra_attrs:
            for k, v in extra_attrs.items():
                span.set_attribute(k, v)
        if target_url:
            start_message = start_message.replace(target_url, redact_query(target_url))
        logger.info(start_message)
        yield span

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from opentelemetry import trace

from app.models import ErrorResponse
from app.policy import AdmissionPolicy
from app.relay import (
    MethodNotAllowed,
    MissingUrlParameter,
    RelayError,
    fetch_and_rewrite,
    fetch_raw,
)
from app.utils.traced_requests import traced_request
from app.vars import ALLOWED_DOMAINS, PUBLIC_URL, RELAY_BASE_PATH

router = APIRouter()
tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

# Read-only after startup, shared by both relay endpoints
admission_policy = AdmissionPolicy.from_settings(ALLOWED_DOMAINS)

if RELAY_BASE_PATH:
    router.prefix = RELAY_BASE_PATH
    logger.info(f"Using RELAY_BASE_PATH: {RELAY_BASE_PATH}")

if admission_policy.allowed_domains:
    logger.info(f"Relay restricted to domains: {', '.join(admission_policy.allowed_domains)}")
else:
    logger.info("No ALLOWED_DOMAINS set, running as open relay")

CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}
CORS_PREFLIGHT_HEADERS = {
    **CORS_HEADERS,
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

RELAY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]
ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    405: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    504: {"model": ErrorResponse},
}


def relay_base_for(request: Request) -> str:
    """Externally visible origin used when rewriting links back into the relay."""
    if PUBLIC_URL:
        return f"{PUBLIC_URL}{RELAY_BASE_PATH}"
    scheme = request.headers.get("x-forwarded-proto", request.url.scheme)
    scheme = scheme.split(",")[0].strip()
    host = request.headers.get("host") or request.url.netloc
    return f"{scheme}://{host}{RELAY_BASE_PATH}"


def error_response(error: RelayError) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_client_payload(),
        headers=CORS_HEADERS,
    )


def preflight_response() -> Response:
    return Response(status_code=200, headers=CORS_PREFLIGHT_HEADERS)


def _check_request(request: Request, url: Optional[str]) -> Optional[Response]:
    if request.method == "OPTIONS":
        return preflight_response()
    if request.method != "GET":
        return error_response(MethodNotAllowed())
    if not url:
        return error_response(MissingUrlParameter())
    return None


@router.api_route("/page", methods=RELAY_METHODS, responses=ERROR_RESPONSES)
async def relay_page(
    request: Request,
    url: Optional[str] = Query(None, description="Absolute URL of the page to relay"),
):
    early = _check_request(request, url)
    if early is not None:
        return early

    relay_base = relay_base_for(request)
    try:
        with traced_request(
            tracer,
            operation="relay_page",
            target_url=url,
            relay_base=relay_base,
            start_message=f"[Page] Relaying {url} via {relay_base}",
        ):
            page = await fetch_and_rewrite(url, relay_base, admission_policy)
    except RelayError as e:
        logger.warning(f"[Page] Request failed with {e.status_code}: {e.reason}")
        return error_response(e)
    except Exception as e:
        logger.error(f"[Page] Proxy error: {e}", exc_info=True)
        return error_response(RelayError())

    headers = {**CORS_HEADERS, **page.headers, "Cache-Control": page.cache_control}
    # Set directly so Starlette does not append a charset to the upstream type
    if page.content_type:
        headers["Content-Type"] = page.content_type
    return Response(content=page.body, status_code=200, headers=headers)


@router.api_route("/resource", methods=RELAY_METHODS, responses=ERROR_RESPONSES)
async def relay_resource(
    request: Request,
    url: Optional[str] = Query(None, description="Absolute URL of the resource to relay"),
):
    early = _check_request(request, url)
    if early is not None:
        return early

    try:
        with traced_request(
            tracer,
            operation="relay_resource",
            target_url=url,
            relay_base=None,
            start_message=f"[Resource] Relaying {url}",
        ):
            resource = await fetch_raw(url, admission_policy)
    except RelayError as e:
        logger.warning(f"[Resource] Request failed with {e.status_code}: {e.reason}")
        return error_response(e)
    except Exception as e:
        logger.error(f"[Resource] Resource proxy error: {e}", exc_info=True)
        return error_response(RelayError())

    headers = {
        **CORS_HEADERS,
        "Cache-Control": resource.cache_control,
        "Content-Type": resource.content_type,
    }
    return Response(content=resource.body, status_code=200, headers=headers)


@router.get("/healthz", response_class=PlainTextResponse)
async def health_check():
    return "OK"

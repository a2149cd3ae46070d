import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "page-relay")
RELAY_BASE_PATH = os.environ.get("RELAY_BASE_PATH", "").rstrip("/")
# Public-facing origin used for rewritten links; derived from the request when empty
PUBLIC_URL = os.environ.get("PUBLIC_URL", "").rstrip("/")

# Empty means open relay mode
ALLOWED_DOMAINS = [
    d.strip().lower() for d in os.environ.get("ALLOWED_DOMAINS", "").split(",") if d.strip()
]

RELAY_TIMEOUT = float(os.getenv("RELAY_TIMEOUT", "10"))
RELAY_MAX_REDIRECTS = int(os.getenv("RELAY_MAX_REDIRECTS", "5"))
RELAY_USER_AGENT = os.getenv(
    "RELAY_USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
)

HTML_CACHE_MAX_AGE = int(os.getenv("HTML_CACHE_MAX_AGE", "300"))
PASSTHROUGH_CACHE_MAX_AGE = int(os.getenv("PASSTHROUGH_CACHE_MAX_AGE", "3600"))
RESOURCE_CACHE_MAX_AGE = int(os.getenv("RESOURCE_CACHE_MAX_AGE", "86400"))

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")

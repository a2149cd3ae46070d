from urllib.parse import urlsplit, urlunsplit


def redact_query(url: str) -> str:
    """Drop query string and fragment so target URLs can be logged safely."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return "<unparseable url>"
    if not parts.query and not parts.fragment:
        return url
    redacted_query = "<redacted>" if parts.query else ""
    return urlunsplit((parts.scheme, parts.netloc, parts.path, redacted_query, ""))

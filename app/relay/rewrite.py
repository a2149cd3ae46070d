"""
HTML link rewriting that keeps navigation and sub-resource loads inside the relay.

Anchors become NAVIGATE links served by the page endpoint; images,
stylesheets and scripts become LOAD links served by the resource endpoint.
Each reference is resolved against the fetched page URL first. A reference
that cannot be resolved keeps its original value and the pass continues.
"""

import logging
from enum import Enum
from typing import Iterable, Optional, Tuple, Union
from urllib.parse import quote, urljoin, urlsplit

from bs4 import BeautifulSoup, Comment, Declaration, Doctype, NavigableString, Tag

logger = logging.getLogger("uvicorn.error")

# Characters left unescaped by JavaScript's encodeURIComponent
_URI_COMPONENT_SAFE = "-_.!~*'()"
_SKIPPED_ANCHOR_PREFIXES = ("#", "javascript:")


class RewriteKind(Enum):
    NAVIGATE = "/page"
    LOAD = "/resource"


def encode_uri_component(value: str) -> str:
    return quote(value, safe=_URI_COMPONENT_SAFE)


def relay_link(relay_base: str, kind: RewriteKind, absolute_url: str) -> str:
    return f"{relay_base}{kind.value}?url={encode_uri_component(absolute_url)}"


def resolve_reference(reference: str, base_url: str) -> Optional[str]:
    """Resolve ``reference`` against ``base_url``; None when it cannot be resolved."""
    try:
        absolute = urljoin(base_url, reference.strip())
        parsed = urlsplit(absolute)
        parsed.port
    except ValueError:
        return None
    if not parsed.scheme:
        return None
    return absolute


def _is_stylesheet(tag: Tag) -> bool:
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    return any(value.lower() == "stylesheet" for value in rel)


def _rewrite_attribute(
    tags: Iterable[Tag],
    attribute: str,
    kind: RewriteKind,
    base_url: str,
    relay_base: str,
) -> int:
    rewritten = 0
    for tag in tags:
        original = tag.get(attribute)
        if not original:
            continue
        if kind is RewriteKind.NAVIGATE and original.strip().lower().startswith(
            _SKIPPED_ANCHOR_PREFIXES
        ):
            continue
        absolute = resolve_reference(original, base_url)
        if absolute is None:
            logger.debug(f"Leaving unresolvable {tag.name}[{attribute}] as-is: {original!r}")
            continue
        tag[attribute] = relay_link(relay_base, kind, absolute)
        rewritten += 1
    return rewritten


def _prolog_length(soup: BeautifulSoup) -> int:
    """Count leading doctype, declaration, comment and whitespace nodes."""
    count = 0
    for node in soup.contents:
        if isinstance(node, (Doctype, Declaration, Comment)):
            count += 1
        elif isinstance(node, NavigableString) and not node.strip():
            count += 1
        else:
            break
    return count


def _ensure_head(soup: BeautifulSoup) -> Tag:
    if soup.head is not None:
        return soup.head
    head = soup.new_tag("head")
    if soup.html is not None:
        soup.html.insert(0, head)
    else:
        soup.insert(_prolog_length(soup), head)
    return head


def inject_base(soup: BeautifulSoup, base_url: str) -> bool:
    """Insert ``<base href=base_url>`` first in head unless a base already exists."""
    if soup.find("base") is not None:
        return False
    _ensure_head(soup).insert(0, soup.new_tag("base", href=base_url))
    return True


def rewrite_html(
    markup: Union[str, bytes],
    base_url: str,
    relay_base: str,
    encoding: Optional[str] = None,
) -> Tuple[str, int]:
    """
    Rewrite a HTML document so its links route back through the relay.

    Args:
        markup: The fetched document, as text or raw bytes
        base_url: The URL the document was fetched from
        relay_base: Externally visible origin of the relay
        encoding: Declared charset, only used when markup is bytes

    Returns:
        The serialized document and the number of rewritten references
    """
    if isinstance(markup, bytes):
        soup = BeautifulSoup(markup, "html.parser", from_encoding=encoding)
    else:
        soup = BeautifulSoup(markup, "html.parser")

    rewritten = _rewrite_attribute(
        soup.find_all("a", href=True), "href", RewriteKind.NAVIGATE, base_url, relay_base
    )
    rewritten += _rewrite_attribute(
        soup.find_all("img", src=True), "src", RewriteKind.LOAD, base_url, relay_base
    )
    rewritten += _rewrite_attribute(
        [tag for tag in soup.find_all("link", href=True) if _is_stylesheet(tag)],
        "href",
        RewriteKind.LOAD,
        base_url,
        relay_base,
    )
    rewritten += _rewrite_attribute(
        soup.find_all("script", src=True), "src", RewriteKind.LOAD, base_url, relay_base
    )

    inject_base(soup, base_url)
    return str(soup), rewritten

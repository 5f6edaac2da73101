"""
Page identity capture from a parsed HTML document.

Samples a bounded number of text and element nodes from the main content
regions of a page and folds them into SimHash signatures. The walk is capped
by ``node_sample_limit`` and ``token_limit`` so large pages cost the same as
small ones.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Iterator, List, Optional, Union

import structlog
from bs4 import BeautifulSoup
from bs4.element import NavigableString, PageElement, PreformattedString, Tag, TemplateString

from pageidentity.observability.metrics import METRICS
from pageidentity.protocols import (
    DEFAULT_NODE_SAMPLE_LIMIT,
    DEFAULT_TOKEN_LIMIT,
    IdentityComparisonOptions,
    IdentityComparisonResult,
    PageIdentity,
)

from .hashing import sim_hash
from .similarity import compare_page_identities
from .url import normalize_url

logger = structlog.get_logger(__name__)

SKIPPED_TAGS = frozenset({"script", "style", "noscript", "svg", "canvas", "img", "video", "audio"})
CONTENT_ROOT_SELECTOR = "main, [role='main'], article"
MAX_CLASS_TOKENS = 3

_NON_ALNUM = re.compile(r"[^a-z0-9\s]+")

DocumentLike = Union[str, bytes, BeautifulSoup]


class CaptureUnavailableError(RuntimeError):
    """Raised when there is no document (or no URL) to capture from."""

    pass


async def capture_page_identity(
    target: Optional[DocumentLike] = None,
    *,
    current_url: Optional[str] = None,
    token_limit: Optional[int] = None,
    node_sample_limit: Optional[int] = None,
    ignore_query_params: Optional[Iterable[str]] = None,
    strip_hash: bool = True,
    yield_to_event_loop: bool = True,
) -> PageIdentity:
    """
    Capture a fingerprint of a page.

    Args:
        target: HTML markup or a parsed BeautifulSoup document
        current_url: URL the page was loaded from, overrides ``<base href>``
        token_limit: Max text tokens sampled
        node_sample_limit: Max text nodes and max element nodes visited
        ignore_query_params: Query parameters dropped during normalization
        strip_hash: Drop the fragment from the normalized URL
        yield_to_event_loop: Yield once before walking the document

    Returns:
        A fresh, immutable PageIdentity

    Raises:
        CaptureUnavailableError: If no document or no URL is available
    """
    try:
        document = _resolve_document(target)

        if yield_to_event_loop:
            await asyncio.sleep(0)

        canonical_url = read_canonical_url(document)
        source_url = current_url if current_url else _document_url(document)

        key_url = canonical_url or source_url
        if not key_url:
            raise CaptureUnavailableError("Page identity capture requires a URL (current_url, canonical or <base>)")
    except CaptureUnavailableError:
        METRICS["captures_total"].labels(status="unavailable").inc()
        raise

    normalized_url = normalize_url(key_url, ignore_query_params=ignore_query_params, strip_hash=strip_hash)

    tokens_cap = DEFAULT_TOKEN_LIMIT if token_limit is None else token_limit
    nodes_cap = DEFAULT_NODE_SAMPLE_LIMIT if node_sample_limit is None else node_sample_limit

    roots = pick_content_roots(document)
    text_tokens = collect_text_tokens(roots, tokens_cap, nodes_cap)
    layout_tokens = collect_layout_tokens(roots, nodes_cap)

    identity = PageIdentity(
        canonical_url=canonical_url,
        normalized_url=normalized_url,
        source_url=source_url or None,
        content_signature=str(sim_hash(text_tokens)),
        layout_signature=str(sim_hash(layout_tokens)),
        layout_tokens=tuple(layout_tokens),
        text_token_sample=len(text_tokens),
        generated_at=datetime.now(timezone.utc).isoformat(),
    )

    METRICS["captures_total"].labels(status="captured").inc()
    logger.debug(
        "Captured page identity",
        normalized_url=normalized_url,
        canonical_url=canonical_url,
        text_tokens=len(text_tokens),
        layout_tokens=len(layout_tokens),
    )
    return identity


def _resolve_document(target: Optional[DocumentLike]) -> BeautifulSoup:
    if isinstance(target, BeautifulSoup):
        return target

    if isinstance(target, bytes):
        target = target.decode("utf-8", errors="replace")

    if not isinstance(target, str) or not target.strip():
        raise CaptureUnavailableError("Page identity capture requires an HTML document")

    return BeautifulSoup(target, "html.parser")


def _attr_text(tag: Optional[Tag], name: str) -> Optional[str]:
    """Stripped attribute value, or None when missing or blank."""
    if tag is None:
        return None
    value = tag.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    if value and value.strip():
        return value.strip()
    return None


def _has_rel(tag: Tag, rel: str) -> bool:
    values = tag.get("rel") or []
    if isinstance(values, str):
        values = values.split()
    return rel in (value.lower() for value in values)


def read_canonical_url(document: BeautifulSoup) -> Optional[str]:
    """Author-declared canonical URL: link rel=canonical, og:url, then body data-page-id."""
    for link in document.find_all("link"):
        if _has_rel(link, "canonical"):
            href = _attr_text(link, "href")
            if href:
                return href

    for meta in document.find_all("meta", attrs={"property": "og:url"}):
        content = _attr_text(meta, "content")
        if content:
            return content

    return _attr_text(document.body, "data-page-id")


def _document_url(document: BeautifulSoup) -> str:
    base = document.find("base", href=True)
    return _attr_text(base, "href") or ""


def pick_content_roots(document: BeautifulSoup) -> List[Tag]:
    """Main content elements, outermost only; falls back to <body> (or the document)."""
    preferred = document.select(CONTENT_ROOT_SELECTOR)
    if preferred:
        selected = {id(tag) for tag in preferred}
        return [tag for tag in preferred if not any(id(parent) in selected for parent in tag.parents)]

    if document.body is not None:
        return [document.body]
    return [document]


def should_skip_element(element: Tag) -> bool:
    if (element.name or "").lower() in SKIPPED_TAGS:
        return True
    return element.get("aria-hidden") == "true"


def _iter_nodes(root: Tag) -> Iterator[PageElement]:
    """Descendants of root in document order, pruning skipped subtrees."""
    if should_skip_element(root):
        return

    stack: List[PageElement] = list(reversed(root.contents))
    while stack:
        node = stack.pop()
        if isinstance(node, Tag):
            if should_skip_element(node):
                continue
            stack.extend(reversed(node.contents))
        yield node


def _is_text_node(node: PageElement) -> bool:
    return isinstance(node, NavigableString) and not isinstance(node, (PreformattedString, TemplateString))


def tokenize_text(text: str) -> List[str]:
    cleaned = _NON_ALNUM.sub(" ", text.lower())
    return [token for token in cleaned.split() if len(token) > 2]


def collect_text_tokens(roots: Iterable[Tag], token_limit: int, node_sample_limit: int) -> List[str]:
    tokens: List[str] = []
    processed_nodes = 0

    for root in roots:
        for node in _iter_nodes(root):
            if not _is_text_node(node):
                continue
            if processed_nodes >= node_sample_limit or len(tokens) >= token_limit:
                return tokens

            processed_nodes += 1
            tokens.extend(tokenize_text(str(node))[: token_limit - len(tokens)])

    return tokens


def serialize_element_signature(element: Tag) -> str:
    """Structural token: tag|role=..|#id|.c1.c2.c3|data-view=..|data-page=.."""
    parts = [(element.name or "").lower()]

    role = _attr_text(element, "role")
    if role:
        parts.append(f"role={role}")

    element_id = element.get("id")
    if element_id:
        parts.append(f"#{element_id}")

    classes = element.get("class") or []
    if isinstance(classes, str):
        classes = classes.split()
    if classes:
        parts.append("." + ".".join(classes[:MAX_CLASS_TOKENS]))

    data_view = element.get("data-view")
    if data_view:
        parts.append(f"data-view={data_view}")

    data_page = element.get("data-page-id")
    if data_page:
        parts.append(f"data-page={data_page}")

    return "|".join(parts)


def collect_layout_tokens(roots: Iterable[Tag], node_sample_limit: int) -> List[str]:
    tokens: List[str] = []

    for root in roots:
        for node in _iter_nodes(root):
            if not isinstance(node, Tag):
                continue
            if len(tokens) >= node_sample_limit:
                return tokens
            tokens.append(serialize_element_signature(node))

    return tokens


# ============================================================================
# Identity tracking across re-captures of the same URL
# ============================================================================


@dataclass(frozen=True)
class IdentityObservation:
    """Result of observing a page through a PageIdentityTracker."""

    identity: PageIdentity
    previous_identity: Optional[PageIdentity] = None
    comparison: Optional[IdentityComparisonResult] = None


class PageIdentityTracker:
    """
    Keeps the identity of the page currently shown and refreshes it on re-capture.

    Re-captures of the same URL that still match keep the original content
    signature and URLs, and take the fresh layout sample. A URL change starts
    over.
    """

    def __init__(self, options: Optional[IdentityComparisonOptions] = None, **capture_options: object) -> None:
        self.options = options
        self.capture_options = capture_options
        self._identity: Optional[PageIdentity] = None
        self._current_url: Optional[str] = None
        self._lock = asyncio.Lock()

    @property
    def identity(self) -> Optional[PageIdentity]:
        return self._identity

    async def observe(self, target: Optional[DocumentLike], current_url: str) -> IdentityObservation:
        async with self._lock:
            previous = self._identity if current_url == self._current_url else None

            fresh = await capture_page_identity(target, current_url=current_url, **self.capture_options)  # type: ignore[arg-type]

            comparison: Optional[IdentityComparisonResult] = None
            next_identity = fresh

            if previous is not None:
                comparison = compare_page_identities(previous, fresh, self.options)
                if comparison.is_match:
                    next_identity = previous.evolve(
                        canonical_url=previous.canonical_url or fresh.canonical_url,
                        layout_signature=fresh.layout_signature,
                        layout_tokens=fresh.layout_tokens,
                        text_token_sample=fresh.text_token_sample,
                        generated_at=fresh.generated_at,
                    )

            self._current_url = current_url
            self._identity = next_identity

            logger.debug(
                "Observed page identity",
                current_url=current_url,
                had_previous=previous is not None,
                is_match=comparison.is_match if comparison else None,
            )
            return IdentityObservation(identity=next_identity, previous_identity=previous, comparison=comparison)

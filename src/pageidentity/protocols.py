"""
Core contracts and data structures for page identity fingerprinting.

A page identity is a compact fingerprint of a web page (URL keys plus
locality-sensitive signatures over sampled text and layout) used to reattach
notes to the same logical page when its URL or content drifts.

Architecture Overview:
- Pure fingerprint algorithms (hashing, similarity, ranking) with no I/O
- Capture over a parsed HTML document, bounded by node and token limits
- Server-side resolution against a durable store behind a Protocol seam
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

# ============================================================================
# Constants
# ============================================================================

DEFAULT_QUERY_PARAM_IGNORES: tuple[str, ...] = (
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "fbclid",
    "gclid",
    "msclkid",
    "ref",
    "ref_src",
    "igshid",
    "mc_cid",
    "mc_eid",
)

DEFAULT_MAX_CONTENT_DISTANCE = 8
DEFAULT_MIN_LAYOUT_SIMILARITY = 0.6
DEFAULT_TOKEN_LIMIT = 200
DEFAULT_NODE_SAMPLE_LIMIT = 80
DEFAULT_MAX_SOURCE_URLS = 10

# ============================================================================
# Fingerprint Dataclasses
# ============================================================================


@dataclass(frozen=True)
class PageIdentity:
    """Immutable fingerprint of a page, produced fresh on every capture."""

    normalized_url: str
    content_signature: str
    layout_signature: str
    layout_tokens: tuple[str, ...] = ()
    text_token_sample: int = 0
    generated_at: str = ""
    canonical_url: Optional[str] = None
    source_url: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        """Serialize to the camelCase wire payload."""
        payload: Dict[str, Any] = {
            "normalizedUrl": self.normalized_url,
            "contentSignature": self.content_signature,
            "layoutSignature": self.layout_signature,
            "layoutTokens": list(self.layout_tokens),
            "textTokenSample": self.text_token_sample,
            "generatedAt": self.generated_at,
        }
        if self.canonical_url is not None:
            payload["canonicalUrl"] = self.canonical_url
        if self.source_url is not None:
            payload["sourceUrl"] = self.source_url
        return payload

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> PageIdentity:
        """Build an identity from a camelCase wire payload without validation."""
        return cls(
            normalized_url=payload["normalizedUrl"],
            content_signature=str(payload["contentSignature"]),
            layout_signature=str(payload["layoutSignature"]),
            layout_tokens=tuple(payload.get("layoutTokens") or ()),
            text_token_sample=int(payload.get("textTokenSample", 0)),
            generated_at=payload.get("generatedAt") or "",
            canonical_url=payload.get("canonicalUrl") or None,
            source_url=payload.get("sourceUrl") or None,
        )

    def evolve(self, **changes: Any) -> PageIdentity:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)


@dataclass(frozen=True)
class IdentityComparisonOptions:
    """Tunable thresholds for comparing two identities."""

    max_content_distance: int = DEFAULT_MAX_CONTENT_DISTANCE
    min_layout_similarity: float = DEFAULT_MIN_LAYOUT_SIMILARITY
    require_canonical_agreement: bool = False


@dataclass(frozen=True)
class IdentityComparisonResult:
    """Structured outcome of comparing two identities."""

    is_match: bool
    canonical_match: bool
    content_distance: int
    layout_similarity: float
    reason: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isMatch": self.is_match,
            "canonicalMatch": self.canonical_match,
            "contentDistance": self.content_distance,
            "layoutSimilarity": self.layout_similarity,
            "reason": list(self.reason),
        }


@dataclass(frozen=True)
class PageIdentityCandidate:
    """A stored identity offered to the ranker under its record id."""

    id: str
    identity: PageIdentity


@dataclass(frozen=True)
class RankedIdentityMatch:
    """A candidate scored against an incoming fingerprint."""

    id: str
    is_match: bool
    score: float
    comparison: IdentityComparisonResult

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "isMatch": self.is_match,
            "score": self.score,
            "comparison": self.comparison.to_dict(),
        }


# ============================================================================
# Stored Records and Resolution
# ============================================================================


@dataclass
class PageIdentityRecord:
    """Durable, server-owned page identity record."""

    id: str
    normalized_url: str
    content_signature: str
    layout_signature: str
    layout_tokens: List[str] = field(default_factory=list)
    text_token_sample: int = 0
    canonical_url: Optional[str] = None
    source_urls: List[str] = field(default_factory=list)
    last_seen_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    merged_into: Optional[str] = None

    def to_identity(self) -> PageIdentity:
        """View the record as the fingerprint the ranker compares against."""
        return PageIdentity(
            canonical_url=self.canonical_url or None,
            normalized_url=self.normalized_url,
            source_url=self.source_urls[-1] if self.source_urls else None,
            content_signature=self.content_signature,
            layout_signature=self.layout_signature,
            layout_tokens=tuple(self.layout_tokens),
            text_token_sample=self.text_token_sample,
            generated_at=self.updated_at.isoformat() if self.updated_at else "",
        )


@dataclass(frozen=True)
class PageIdentityResolution:
    """Verdict returned to note query/create paths."""

    page_id: str
    matched: bool
    confidence: float
    canonical_match: bool
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pageId": self.page_id,
            "matched": self.matched,
            "confidence": self.confidence,
            "canonicalMatch": self.canonical_match,
            "reasons": list(self.reasons),
        }


@dataclass(frozen=True)
class ResolveResult:
    """Resolved record together with the verdict."""

    document: PageIdentityRecord
    resolution: PageIdentityResolution


# ============================================================================
# Collaborator Protocols
# ============================================================================


class PageIdentityStore(Protocol):
    """Durable keyed store queryable by normalized or canonical URL."""

    async def find(
        self,
        normalized_url: str,
        canonical_url: Optional[str] = None,
        *,
        include_merged: bool = False,
    ) -> List[PageIdentityRecord]:
        """Records matching either URL, most recently updated first."""
        ...

    async def create(self, fields: Mapping[str, Any]) -> PageIdentityRecord:
        """Insert a new record and return it with its assigned id."""
        ...

    async def update_one(self, record_id: str, patch: Mapping[str, Any]) -> None:
        """Apply a partial update to one record."""
        ...

    async def find_by_id(self, record_id: str) -> Optional[PageIdentityRecord]:
        """Fetch a record by primary key."""
        ...


def candidates_from_records(records: Sequence[PageIdentityRecord]) -> List[PageIdentityCandidate]:
    """Map stored records to ranker candidates."""
    return [PageIdentityCandidate(id=record.id, identity=record.to_identity()) for record in records]

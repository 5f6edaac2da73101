"""
pageidentity - Re-identify web pages across URL and content drift.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .fingerprint import (
    CaptureUnavailableError,
    capture_page_identity,
    compare_identities,
    compare_page_identities,
    hamming_distance,
    jaccard_index,
    normalize_url,
    rank_identity_matches,
    sim_hash,
)
from .protocols import (
    IdentityComparisonOptions,
    IdentityComparisonResult,
    PageIdentity,
    PageIdentityCandidate,
    PageIdentityResolution,
    RankedIdentityMatch,
)

__all__ = [
    "__version__",
    "CaptureUnavailableError",
    "IdentityComparisonOptions",
    "IdentityComparisonResult",
    "PageIdentity",
    "PageIdentityCandidate",
    "PageIdentityResolution",
    "RankedIdentityMatch",
    "capture_page_identity",
    "compare_identities",
    "compare_page_identities",
    "hamming_distance",
    "jaccard_index",
    "normalize_url",
    "rank_identity_matches",
    "sim_hash",
]

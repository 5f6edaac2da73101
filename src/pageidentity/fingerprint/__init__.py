"""
Page fingerprinting: URL normalization, SimHash signatures, comparison,
ranking and capture.

The hashing, similarity and ranking functions are pure and stateless.
"""

from __future__ import annotations

from .capture import (
    CaptureUnavailableError,
    IdentityObservation,
    PageIdentityTracker,
    capture_page_identity,
)
from .hashing import hamming_distance, hash_token, sim_hash
from .ranking import rank_identity_matches
from .similarity import compare_identities, compare_page_identities, jaccard_index
from .url import normalize_url

__all__ = [
    "CaptureUnavailableError",
    "IdentityObservation",
    "PageIdentityTracker",
    "capture_page_identity",
    "compare_identities",
    "compare_page_identities",
    "hamming_distance",
    "hash_token",
    "jaccard_index",
    "normalize_url",
    "rank_identity_matches",
    "sim_hash",
]

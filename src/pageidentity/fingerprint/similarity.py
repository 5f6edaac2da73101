"""
Pairwise comparison of page identities.

Pure functions only: safe to call from any number of tasks or threads.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from pageidentity.protocols import IdentityComparisonOptions, IdentityComparisonResult, PageIdentity

from .hashing import hamming_distance

REASON_CANONICAL = "canonical-url-match"
REASON_CONTENT = "content-similarity"
REASON_LAYOUT = "layout-similarity"


def jaccard_index(first: Iterable[str], second: Iterable[str]) -> float:
    """|A ∩ B| / |A ∪ B| over token sets; two empty sets are identical (1.0)."""
    a_set = set(first)
    b_set = set(second)

    if not a_set and not b_set:
        return 1.0

    return len(a_set & b_set) / len(a_set | b_set)


def compare_identities(
    subject: PageIdentity,
    candidate: PageIdentity,
    options: Optional[IdentityComparisonOptions] = None,
) -> IdentityComparisonResult:
    """
    Decide whether two fingerprints describe the same logical page.

    A shared non-empty canonical URL is a match on its own. Otherwise both the
    content signatures must be within ``max_content_distance`` bits and the
    layout token sets must reach ``min_layout_similarity``. With
    ``require_canonical_agreement`` the canonical URLs must also agree.

    Args:
        subject: Incoming fingerprint
        candidate: Fingerprint to compare against
        options: Thresholds, defaults when omitted

    Returns:
        IdentityComparisonResult with the verdict and the signals behind it
    """
    opts = options or IdentityComparisonOptions()

    canonical_match = bool(subject.canonical_url) and subject.canonical_url == candidate.canonical_url
    content_distance = hamming_distance(subject.content_signature, candidate.content_signature)
    layout_similarity = jaccard_index(subject.layout_tokens, candidate.layout_tokens)

    content_ok = content_distance <= opts.max_content_distance
    layout_ok = layout_similarity >= opts.min_layout_similarity

    reasons: List[str] = []
    if canonical_match:
        reasons.append(REASON_CANONICAL)
    if content_ok:
        reasons.append(REASON_CONTENT)
    if layout_ok:
        reasons.append(REASON_LAYOUT)

    is_match = canonical_match or (content_ok and layout_ok)
    if opts.require_canonical_agreement:
        is_match = is_match and canonical_match

    return IdentityComparisonResult(
        is_match=is_match,
        canonical_match=canonical_match,
        content_distance=content_distance,
        layout_similarity=layout_similarity,
        reason=reasons,
    )


def compare_page_identities(
    previous_identity: PageIdentity,
    next_identity: PageIdentity,
    options: Optional[IdentityComparisonOptions] = None,
) -> IdentityComparisonResult:
    """Compare a previously captured identity with a fresh capture of the same page."""
    return compare_identities(previous_identity, next_identity, options)

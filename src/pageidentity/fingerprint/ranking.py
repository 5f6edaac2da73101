"""
Ranking of stored identity candidates against an incoming fingerprint.

Canonical agreement and layout stability outweigh raw text similarity, which
is the most volatile signal (ads, dynamic widgets).
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from pageidentity.protocols import (
    IdentityComparisonOptions,
    PageIdentity,
    PageIdentityCandidate,
    RankedIdentityMatch,
)

from .similarity import compare_identities

CANONICAL_WEIGHT = 0.4
LAYOUT_WEIGHT = 0.4
CONTENT_WEIGHT = 0.2


def rank_identity_matches(
    fingerprint: PageIdentity,
    candidates: Sequence[PageIdentityCandidate],
    options: Optional[IdentityComparisonOptions] = None,
) -> List[RankedIdentityMatch]:
    """
    Score every candidate and sort best first.

    Ties keep input order.

    Args:
        fingerprint: Incoming identity
        candidates: Stored identities keyed by record id
        options: Comparison thresholds

    Returns:
        One RankedIdentityMatch per candidate, sorted by score descending
    """
    opts = options or IdentityComparisonOptions()
    assessments: List[RankedIdentityMatch] = []

    for candidate in candidates:
        comparison = compare_identities(fingerprint, candidate.identity, opts)

        content_score = max(0.0, 1 - comparison.content_distance / (opts.max_content_distance + 1))
        layout_score = comparison.layout_similarity
        canonical_score = 1.0 if comparison.canonical_match else 0.0

        score = canonical_score * CANONICAL_WEIGHT + layout_score * LAYOUT_WEIGHT + content_score * CONTENT_WEIGHT

        assessments.append(
            RankedIdentityMatch(
                id=candidate.id,
                is_match=comparison.is_match,
                score=score,
                comparison=comparison,
            )
        )

    # list.sort is stable
    assessments.sort(key=lambda match: match.score, reverse=True)
    return assessments

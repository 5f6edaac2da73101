"""
Unit tests for identity comparison and candidate ranking.
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from pageidentity.fingerprint import compare_identities, compare_page_identities, jaccard_index, rank_identity_matches
from pageidentity.fingerprint.hashing import MASK_64
from pageidentity.fingerprint.similarity import REASON_CANONICAL, REASON_CONTENT, REASON_LAYOUT
from pageidentity.protocols import IdentityComparisonOptions, PageIdentityCandidate

from tests.helpers.identity_data import BASE_SIGNATURE, flip_bits

_token_sets = st.sets(st.text(alphabet="abcdef|.#", min_size=1, max_size=4), max_size=12)


@pytest.mark.unit
class TestJaccardIndex:
    """Test jaccard_index."""

    def test_empty_sets_are_identical(self):
        assert jaccard_index([], []) == 1.0

    def test_one_empty_set(self):
        assert jaccard_index(["a"], []) == 0.0
        assert jaccard_index([], ["a"]) == 0.0

    def test_partial_overlap(self):
        assert jaccard_index(["a", "b", "c"], ["b", "c", "d"]) == pytest.approx(0.5)

    def test_duplicates_collapse(self):
        assert jaccard_index(["a", "a", "b"], ["a", "b"]) == 1.0

    @given(a=_token_sets, b=_token_sets)
    def test_bounds(self, a, b):
        assert 0.0 <= jaccard_index(a, b) <= 1.0
        assert jaccard_index(a, a) == 1.0
        assert jaccard_index(a, b) == jaccard_index(b, a)


@pytest.mark.unit
class TestCompareIdentities:
    """Test compare_identities."""

    def test_identical_identities_match(self, make_identity):
        identity = make_identity()
        result = compare_identities(identity, identity)

        assert result.is_match
        assert not result.canonical_match
        assert result.content_distance == 0
        assert result.layout_similarity == 1.0
        assert result.reason == [REASON_CONTENT, REASON_LAYOUT]

    def test_canonical_short_circuit(self, make_identity):
        subject = make_identity(canonical_url="https://a.com/c", content_signature="0", layout_tokens=("a",))
        candidate = make_identity(canonical_url="https://a.com/c", content_signature=str(MASK_64), layout_tokens=("b",))

        result = compare_identities(subject, candidate)

        assert result.is_match
        assert result.canonical_match
        assert result.content_distance == 64
        assert result.layout_similarity == 0.0
        assert result.reason == [REASON_CANONICAL]

    def test_require_canonical_agreement_with_shared_canonical(self, make_identity):
        subject = make_identity(canonical_url="https://a.com/c", content_signature="0")
        candidate = make_identity(canonical_url="https://a.com/c", content_signature=str(MASK_64))
        options = IdentityComparisonOptions(require_canonical_agreement=True)

        assert compare_identities(subject, candidate, options).is_match

    def test_require_canonical_agreement_with_mismatch(self, make_identity):
        subject = make_identity(canonical_url="https://a.com/c")
        candidate = make_identity(canonical_url="https://a.com/other")
        options = IdentityComparisonOptions(require_canonical_agreement=True)

        result = compare_identities(subject, candidate, options)

        assert not result.is_match
        assert result.reason == [REASON_CONTENT, REASON_LAYOUT]

    def test_missing_canonical_never_agrees(self, make_identity):
        identity = make_identity(canonical_url=None)
        options = IdentityComparisonOptions(require_canonical_agreement=True)

        result = compare_identities(identity, identity, options)

        assert not result.canonical_match
        assert not result.is_match

    def test_content_distance_threshold_is_inclusive(self, make_identity):
        subject = make_identity()
        at_limit = make_identity(content_signature=str(flip_bits(BASE_SIGNATURE, *range(8))))
        over_limit = make_identity(content_signature=str(flip_bits(BASE_SIGNATURE, *range(9))))

        assert compare_identities(subject, at_limit).is_match
        assert not compare_identities(subject, over_limit).is_match
        assert compare_identities(subject, over_limit).reason == [REASON_LAYOUT]

    def test_layout_similarity_threshold(self, make_identity):
        subject = make_identity(layout_tokens=("a", "b", "c", "d", "e"))
        similar = make_identity(layout_tokens=("a", "b", "c", "d", "x"))
        different = make_identity(layout_tokens=("a", "b", "x", "y", "z"))

        assert compare_identities(subject, similar).is_match
        result = compare_identities(subject, different)
        assert not result.is_match
        assert result.reason == [REASON_CONTENT]

    def test_custom_thresholds(self, make_identity):
        subject = make_identity()
        candidate = make_identity(content_signature=str(flip_bits(BASE_SIGNATURE, 1, 2, 3)))
        strict = IdentityComparisonOptions(max_content_distance=2)

        assert compare_identities(subject, candidate).is_match
        assert not compare_identities(subject, candidate, strict).is_match

    def test_compare_page_identities_delegates(self, make_identity):
        previous = make_identity()
        fresh = make_identity(content_signature=str(flip_bits(BASE_SIGNATURE, 0)))

        assert compare_page_identities(previous, fresh) == compare_identities(previous, fresh)

    def test_result_to_dict_is_camel_case(self, make_identity):
        identity = make_identity()
        data = compare_identities(identity, identity).to_dict()

        assert set(data) == {"isMatch", "canonicalMatch", "contentDistance", "layoutSimilarity", "reason"}


@pytest.mark.unit
class TestRankIdentityMatches:
    """Test rank_identity_matches."""

    def test_canonical_candidate_ranked_first(self, make_identity):
        subject = make_identity(canonical_url="https://a.com/c", layout_tokens=("a", "b", "c", "d"))
        candidates = [
            PageIdentityCandidate("low-layout", make_identity(layout_tokens=("z",))),
            PageIdentityCandidate("high-layout", make_identity(layout_tokens=("a", "b", "c", "d"))),
            PageIdentityCandidate(
                "canonical",
                make_identity(canonical_url="https://a.com/c", layout_tokens=("a", "b", "x", "y")),
            ),
        ]

        ranked = rank_identity_matches(subject, candidates)

        assert [match.id for match in ranked] == ["canonical", "high-layout", "low-layout"]
        assert ranked[0].is_match
        assert ranked[0].score == pytest.approx(0.4 + 0.4 * (2 / 6) + 0.2)
        assert ranked[1].score == pytest.approx(0.6)
        assert ranked[2].score == pytest.approx(0.2)
        assert not ranked[2].is_match

    def test_content_score_decays_with_distance(self, make_identity):
        subject = make_identity()
        candidates = [
            PageIdentityCandidate("far", make_identity(content_signature=str(flip_bits(BASE_SIGNATURE, *range(20))))),
            PageIdentityCandidate("near", make_identity(content_signature=str(flip_bits(BASE_SIGNATURE, 5)))),
        ]

        ranked = rank_identity_matches(subject, candidates)

        assert [match.id for match in ranked] == ["near", "far"]
        assert ranked[0].score == pytest.approx(0.4 + 0.2 * (1 - 1 / 9))
        # Content score bottoms out at zero
        assert ranked[1].score == pytest.approx(0.4)

    def test_ties_keep_input_order(self, make_identity):
        subject = make_identity()
        candidates = [PageIdentityCandidate(f"c{i}", make_identity()) for i in range(5)]

        ranked = rank_identity_matches(subject, candidates)

        assert [match.id for match in ranked] == ["c0", "c1", "c2", "c3", "c4"]

    def test_no_candidates(self, make_identity):
        assert rank_identity_matches(make_identity(), []) == []

    def test_scores_within_unit_interval(self, make_identity):
        subject = make_identity(canonical_url="https://a.com/c")
        candidates = [PageIdentityCandidate("same", make_identity(canonical_url="https://a.com/c"))]

        ranked = rank_identity_matches(subject, candidates)

        assert ranked[0].score == pytest.approx(1.0)
        assert ranked[0].to_dict()["comparison"]["canonicalMatch"] is True

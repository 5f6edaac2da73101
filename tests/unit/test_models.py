"""
Unit tests for the pydantic wire models.
"""

import pytest
from pydantic import ValidationError

from pageidentity.models import PageIdentityPayload, PageIdentityResolutionModel
from pageidentity.protocols import PageIdentity, PageIdentityResolution


@pytest.mark.unit
class TestPageIdentityPayload:
    """Test PageIdentityPayload validation."""

    def test_parses_camel_case(self, payload_dict):
        payload = PageIdentityPayload.model_validate(payload_dict(canonicalUrl="https://a.com/c"))

        assert payload.normalized_url == "https://a.com/x"
        assert payload.canonical_url == "https://a.com/c"
        assert payload.text_token_sample == 50
        assert payload.generated_at

    def test_accepts_snake_case(self):
        payload = PageIdentityPayload(normalized_url="https://a.com/x", content_signature="1", layout_signature="2")
        assert payload.layout_tokens == []

    def test_unknown_fields_ignored(self, payload_dict):
        payload = PageIdentityPayload.model_validate(payload_dict(clientVersion="3.1"))
        assert not hasattr(payload, "clientVersion")

    def test_hex_signature_normalized_to_decimal(self, payload_dict):
        payload = PageIdentityPayload.model_validate(payload_dict(contentSignature="0x10", layoutSignature=255))

        assert payload.content_signature == "16"
        assert payload.layout_signature == "255"

    @pytest.mark.parametrize("signature", ["-1", str(1 << 64), "abc", "", True, 1.5, None])
    def test_invalid_signature_rejected(self, payload_dict, signature):
        with pytest.raises(ValidationError):
            PageIdentityPayload.model_validate(payload_dict(contentSignature=signature))

    def test_max_signature_accepted(self, payload_dict):
        payload = PageIdentityPayload.model_validate(payload_dict(contentSignature=str((1 << 64) - 1)))
        assert payload.content_signature == str((1 << 64) - 1)

    @pytest.mark.parametrize("url", ["", "   "])
    def test_blank_normalized_url_rejected(self, payload_dict, url):
        with pytest.raises(ValidationError):
            PageIdentityPayload.model_validate(payload_dict(normalizedUrl=url))

    def test_missing_signature_rejected(self, payload_dict):
        data = payload_dict()
        del data["layoutSignature"]
        with pytest.raises(ValidationError):
            PageIdentityPayload.model_validate(data)

    def test_blank_optional_urls_become_none(self, payload_dict):
        payload = PageIdentityPayload.model_validate(payload_dict(canonicalUrl="", sourceUrl="  "))

        assert payload.canonical_url is None
        assert payload.source_url is None

    def test_negative_token_sample_rejected(self, payload_dict):
        with pytest.raises(ValidationError):
            PageIdentityPayload.model_validate(payload_dict(textTokenSample=-1))

    def test_identity_conversion(self, make_identity):
        identity = make_identity(canonical_url="https://a.com/c", source_url="https://a.com/x?ref=1")

        payload = PageIdentityPayload.from_identity(identity)

        assert payload.to_identity() == identity
        assert payload.model_dump(by_alias=True)["normalizedUrl"] == identity.normalized_url


@pytest.mark.unit
class TestPageIdentityResolutionModel:
    """Test PageIdentityResolutionModel."""

    def test_from_resolution(self):
        resolution = PageIdentityResolution(
            page_id="abc", matched=True, confidence=0.75, canonical_match=False, reasons=["content-similarity"]
        )

        data = PageIdentityResolutionModel.from_resolution(resolution).model_dump(by_alias=True)

        assert data == resolution.to_dict()

    @pytest.mark.parametrize("confidence", [-0.1, 1.5])
    def test_confidence_bounds(self, confidence):
        with pytest.raises(ValidationError):
            PageIdentityResolutionModel(page_id="abc", matched=False, confidence=confidence, canonical_match=False)


@pytest.mark.unit
class TestPageIdentityPayloadDict:
    """Test the dataclass view of the wire payload."""

    def test_missing_urls_omitted(self, make_identity):
        payload = make_identity().to_payload()

        assert "canonicalUrl" not in payload
        assert "sourceUrl" not in payload
        assert payload["layoutTokens"] == list(make_identity().layout_tokens)

    def test_from_payload_tolerates_sparse_input(self):
        identity = PageIdentity.from_payload(
            {"normalizedUrl": "https://a.com/x", "contentSignature": 1, "layoutSignature": "2", "canonicalUrl": ""}
        )

        assert identity.content_signature == "1"
        assert identity.canonical_url is None
        assert identity.layout_tokens == ()
        assert identity.text_token_sample == 0

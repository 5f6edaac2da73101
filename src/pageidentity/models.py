"""
Pydantic wire models for page identity payloads and resolution verdicts.

The JSON keys are camelCase (``normalizedUrl``, ``contentSignature`` ...);
Python attribute names are snake_case and either form is accepted on input.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from pageidentity.protocols import PageIdentity, PageIdentityResolution


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class PageIdentityPayload(_WireModel):
    """Client to server page identity payload."""

    canonical_url: Optional[str] = None
    normalized_url: str = Field(min_length=1)
    source_url: Optional[str] = None
    content_signature: str
    layout_signature: str
    layout_tokens: List[str] = Field(default_factory=list)
    text_token_sample: int = Field(default=0, ge=0)
    generated_at: str = Field(default_factory=_utc_now_iso)

    @field_validator("normalized_url")
    @classmethod
    def normalized_url_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("normalizedUrl must not be blank")
        return v.strip()

    @field_validator("canonical_url", "source_url")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("content_signature", "layout_signature", mode="before")
    @classmethod
    def validate_signature(cls, v: object) -> str:
        if isinstance(v, bool) or not isinstance(v, (int, str)):
            raise ValueError("signature must be a decimal or 0x-prefixed hex string")
        text = str(v).strip()
        try:
            value = int(text[2:], 16) if text[:2].lower() == "0x" else int(text, 10)
        except ValueError as e:
            raise ValueError("signature must be a decimal or 0x-prefixed hex string") from e
        if not 0 <= value < 1 << 64:
            raise ValueError("signature must be an unsigned 64-bit value")
        return str(value)

    @field_validator("generated_at", mode="before")
    @classmethod
    def default_generated_at(cls, v: object) -> object:
        if v is None or (isinstance(v, str) and not v.strip()):
            return _utc_now_iso()
        if isinstance(v, datetime):
            return v.isoformat()
        return v

    def to_identity(self) -> PageIdentity:
        return PageIdentity(
            canonical_url=self.canonical_url,
            normalized_url=self.normalized_url,
            source_url=self.source_url,
            content_signature=self.content_signature,
            layout_signature=self.layout_signature,
            layout_tokens=tuple(self.layout_tokens),
            text_token_sample=self.text_token_sample,
            generated_at=self.generated_at,
        )

    @classmethod
    def from_identity(cls, identity: PageIdentity) -> PageIdentityPayload:
        return cls.model_validate(identity.to_payload())


class PageIdentityResolutionModel(_WireModel):
    """Resolution verdict embedded in note list/create responses."""

    page_id: str
    matched: bool
    confidence: float = Field(ge=0.0, le=1.0)
    canonical_match: bool
    reasons: List[str] = Field(default_factory=list)

    @classmethod
    def from_resolution(cls, resolution: PageIdentityResolution) -> PageIdentityResolutionModel:
        return cls(
            page_id=resolution.page_id,
            matched=resolution.matched,
            confidence=resolution.confidence,
            canonical_match=resolution.canonical_match,
            reasons=list(resolution.reasons),
        )

"""Server-side page identity resolution."""

from __future__ import annotations

from .resolution import PageIdentityService, build_update_from_payload, resolve_page_identity

__all__ = ["PageIdentityService", "build_update_from_payload", "resolve_page_identity"]

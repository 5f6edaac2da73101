"""
Server-side page identity resolution.

Decides whether an incoming fingerprint belongs to an existing stored record
or needs a new one:
1. Look up candidates by normalized or canonical URL (most recent first)
2. Rank them against the fingerprint
3. On a match: merge the payload into the winner, persist, re-fetch
4. Otherwise: create a new record from the payload

Store failures propagate; a pageId is never fabricated.
"""

from __future__ import annotations

import asyncio
import time
import weakref
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Union

import structlog

from pageidentity.config.config import MatchingConfig
from pageidentity.fingerprint.ranking import rank_identity_matches
from pageidentity.fingerprint.similarity import compare_identities
from pageidentity.models import PageIdentityPayload
from pageidentity.observability.metrics import METRICS
from pageidentity.protocols import (
    PageIdentity,
    PageIdentityRecord,
    PageIdentityResolution,
    PageIdentityStore,
    ResolveResult,
    candidates_from_records,
)
from pageidentity.storage.sqlite_store import StoreWriteError, utc_now

REASON_NEW = "new-page-identity"
REASON_SIMILARITY = "similarity-match"

MAX_MERGE_HOPS = 16

PayloadLike = Union[PageIdentity, PageIdentityPayload, Mapping[str, Any]]


def _coerce_payload(payload: PayloadLike) -> PageIdentity:
    if isinstance(payload, PageIdentity):
        identity = payload
    elif isinstance(payload, PageIdentityPayload):
        identity = payload.to_identity()
    else:
        identity = PageIdentityPayload.model_validate(payload).to_identity()

    if not identity.normalized_url or not identity.content_signature or not identity.layout_signature:
        raise ValueError("Page identity payload requires normalizedUrl and both signatures")
    return identity


def _timestamp_key(value: Optional[datetime]) -> str:
    return value.isoformat() if value is not None else ""


def append_source_url(existing: List[str], source_url: Optional[str], limit: int) -> Optional[List[str]]:
    """New bounded history with ``source_url`` appended, or None if nothing changes."""
    if not source_url or source_url in existing:
        return None
    return [*existing, source_url][-limit:]


def build_update_from_payload(
    payload: PageIdentity,
    record: PageIdentityRecord,
    matching: MatchingConfig,
) -> Dict[str, Any]:
    """
    Patch that moves a stored record to the latest observation.

    Signatures and layout tokens are overwritten, not averaged. URLs change
    only when the payload supplies a different non-empty value.
    """
    update: Dict[str, Any] = {"last_seen_at": utc_now()}

    if payload.normalized_url and payload.normalized_url != record.normalized_url:
        update["normalized_url"] = payload.normalized_url

    if payload.canonical_url and payload.canonical_url != record.canonical_url:
        update["canonical_url"] = payload.canonical_url

    update["content_signature"] = payload.content_signature
    update["layout_signature"] = payload.layout_signature
    update["layout_tokens"] = list(payload.layout_tokens[: matching.max_layout_tokens])
    update["text_token_sample"] = payload.text_token_sample

    source_urls = append_source_url(record.source_urls, payload.source_url, matching.max_source_urls)
    if source_urls is not None:
        update["source_urls"] = source_urls

    return update


class PageIdentityService:
    """
    Resolves page identity payloads against a durable store.

    Resolutions sharing a normalized or canonical URL are serialized within
    this instance. Duplicates created by other processes are folded together
    by :meth:`reconcile`.
    """

    def __init__(
        self,
        store: PageIdentityStore,
        matching: Optional[MatchingConfig] = None,
        logger: Optional[Any] = None,
    ) -> None:
        self.store = store
        self.matching = matching or MatchingConfig()
        self.logger = logger or structlog.get_logger(__name__)
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def _locked(self, *keys: Optional[str]) -> AsyncIterator[None]:
        """Hold the lock of every given URL, acquired in sorted order."""
        async with AsyncExitStack() as stack:
            for key in sorted({key for key in keys if key}):
                await stack.enter_async_context(self._lock_for(key))
            yield

    async def resolve_page_identity(self, payload: PayloadLike) -> ResolveResult:
        """
        Resolve a fingerprint to a stored record, creating one if nothing matches.

        Args:
            payload: Incoming fingerprint (dataclass, validated model, or wire dict)

        Returns:
            ResolveResult with the durable record and the verdict

        Raises:
            StoreUnavailableError: If the store cannot be queried
            StoreWriteError: If the update or insert fails
        """
        identity = _coerce_payload(payload)
        start_time = time.perf_counter()

        try:
            async with self._locked(identity.normalized_url, identity.canonical_url):
                result = await self._resolve(identity)
        except Exception:
            METRICS["resolutions_total"].labels(outcome="error").inc()
            raise
        finally:
            METRICS["resolution_latency_seconds"].observe(time.perf_counter() - start_time)

        METRICS["resolutions_total"].labels(outcome="matched" if result.resolution.matched else "created").inc()
        return result

    async def _resolve(self, payload: PageIdentity) -> ResolveResult:
        self.logger.info(
            "page_identity.resolve.start",
            normalized_url=payload.normalized_url,
            canonical_url=payload.canonical_url,
            source_url=payload.source_url,
            text_token_sample=payload.text_token_sample,
        )

        candidates = await self.store.find(payload.normalized_url, payload.canonical_url)

        best_match: Optional[PageIdentityRecord] = None
        best_score = 0.0
        canonical_match = False
        reasons: List[str] = []

        if candidates:
            ranked = rank_identity_matches(
                payload,
                candidates_from_records(candidates),
                self.matching.comparison_options(),
            )

            self.logger.info(
                "page_identity.resolve.candidates",
                candidate_count=len(candidates),
                ranked=[match.to_dict() for match in ranked[:3]],
            )

            top_match = ranked[0]
            if top_match.is_match:
                best_match = next(record for record in candidates if record.id == top_match.id)
                best_score = top_match.score
                canonical_match = top_match.comparison.canonical_match
                reasons = list(top_match.comparison.reason)

        if best_match is not None:
            return await self._merge_into(payload, best_match, best_score, canonical_match, reasons)

        return await self._create(payload)

    async def _merge_into(
        self,
        payload: PageIdentity,
        record: PageIdentityRecord,
        score: float,
        canonical_match: bool,
        reasons: List[str],
    ) -> ResolveResult:
        update = build_update_from_payload(payload, record, self.matching)
        await self.store.update_one(record.id, update)

        refreshed = await self.store.find_by_id(record.id)
        if refreshed is None:
            raise StoreWriteError(f"Page identity {record.id} vanished after update")

        resolution = PageIdentityResolution(
            page_id=refreshed.id,
            matched=True,
            confidence=score,
            canonical_match=canonical_match,
            reasons=reasons or [REASON_SIMILARITY],
        )

        self.logger.info(
            "page_identity.resolve.match",
            page_id=refreshed.id,
            normalized_url=refreshed.normalized_url,
            canonical_url=refreshed.canonical_url,
            reasons=resolution.reasons,
            score=score,
        )
        return ResolveResult(document=refreshed, resolution=resolution)

    async def _create(self, payload: PageIdentity) -> ResolveResult:
        created = await self.store.create(
            {
                "normalized_url": payload.normalized_url,
                "canonical_url": payload.canonical_url,
                "content_signature": payload.content_signature,
                "layout_signature": payload.layout_signature,
                "layout_tokens": list(payload.layout_tokens[: self.matching.max_layout_tokens]),
                "text_token_sample": payload.text_token_sample,
                "source_urls": [payload.source_url] if payload.source_url else [],
                "last_seen_at": utc_now(),
            }
        )

        resolution = PageIdentityResolution(
            page_id=created.id,
            matched=False,
            confidence=1.0,
            canonical_match=False,
            reasons=[REASON_NEW],
        )

        self.logger.info(
            "page_identity.resolve.created",
            page_id=created.id,
            normalized_url=created.normalized_url,
            canonical_url=created.canonical_url,
        )
        return ResolveResult(document=created, resolution=resolution)

    async def resolve_page_id(self, page_id: str) -> Optional[PageIdentityRecord]:
        """Fetch a record, following reconciliation links to the surviving record."""
        record = await self.store.find_by_id(page_id)
        hops = 0
        while record is not None and record.merged_into and hops < MAX_MERGE_HOPS:
            record = await self.store.find_by_id(record.merged_into)
            hops += 1
        return record

    async def reconcile(self, normalized_url: str, canonical_url: Optional[str] = None) -> List[str]:
        """
        Fold duplicate live records for a normalized URL into the oldest one.

        With ``canonical_url``, records declaring that canonical URL under
        other normalized URLs are considered too.

        Only records that match the survivor are folded. Folded records are
        kept and point at the survivor through ``merged_into``.

        Returns:
            Ids of the records folded into the survivor
        """
        async with self._locked(normalized_url, canonical_url):
            records = await self.store.find(normalized_url, canonical_url)
            if len(records) < 2:
                return []

            # find() lists most recently updated first; ties on created_at keep the older row
            records.reverse()
            records.sort(key=lambda r: _timestamp_key(r.created_at))
            survivor = records[0]
            merged: List[str] = []

            for other in records[1:]:
                comparison = compare_identities(
                    other.to_identity(), survivor.to_identity(), self.matching.comparison_options()
                )
                if not comparison.is_match:
                    continue

                await self.store.update_one(survivor.id, self._fold_patch(survivor, other))
                await self.store.update_one(other.id, {"merged_into": survivor.id})
                merged.append(other.id)

                refreshed = await self.store.find_by_id(survivor.id)
                if refreshed is None:
                    raise StoreWriteError(f"Page identity {survivor.id} vanished during reconciliation")
                survivor = refreshed

            if merged:
                METRICS["reconciled_total"].inc(len(merged))
                self.logger.info(
                    "page_identity.reconcile.merged",
                    normalized_url=normalized_url,
                    canonical_url=canonical_url,
                    survivor_id=survivor.id,
                    merged_ids=merged,
                )
            return merged

    def _fold_patch(self, survivor: PageIdentityRecord, other: PageIdentityRecord) -> Dict[str, Any]:
        """Survivor patch combining both histories and the freshest fingerprint."""
        older, newer = sorted((survivor, other), key=lambda r: _timestamp_key(r.last_seen_at))
        # Keep the last occurrence of each URL so recency order survives
        combined = [*older.source_urls, *newer.source_urls]
        ordered = [url for index, url in enumerate(combined) if url not in combined[index + 1 :]]

        patch: Dict[str, Any] = {
            "source_urls": ordered[-self.matching.max_source_urls :],
            "content_signature": newer.content_signature,
            "layout_signature": newer.layout_signature,
            "layout_tokens": list(newer.layout_tokens[: self.matching.max_layout_tokens]),
            "text_token_sample": newer.text_token_sample,
        }
        if not survivor.canonical_url and other.canonical_url:
            patch["canonical_url"] = other.canonical_url

        last_seen = [r.last_seen_at for r in (survivor, other) if r.last_seen_at is not None]
        if last_seen:
            patch["last_seen_at"] = max(last_seen)
        return patch


async def resolve_page_identity(
    payload: PayloadLike,
    store: PageIdentityStore,
    *,
    matching: Optional[MatchingConfig] = None,
    logger: Optional[Any] = None,
) -> ResolveResult:
    """One-shot resolution without a long-lived service (no in-process serialization)."""
    service = PageIdentityService(store, matching=matching, logger=logger)
    return await service.resolve_page_identity(payload)

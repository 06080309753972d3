from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from .profile_client import ProfileClient, SyncMetadata
from .profile_sync_state_machine import WeakPointWriteStateMachine, initial_write_state
from .review_models import (
    REASON_MAX_CHARS,
    REASON_SEPARATOR,
    RunResult,
    SyncResult,
    WeakKnowledgeCandidate,
    WeakKnowledgePoint,
    clamp_score,
    unique_texts,
)
from .review_schedule_service import format_profile_time
from .round_idempotency import RoundIdempotencyCache, round_key

_log = logging.getLogger(__name__)

__all__ = [
    "merge_reason",
    "normalize_candidate",
    "merge_weak_points",
    "ProfileSyncEngine",
]

_REASON_SPLIT_RE = re.compile(r"[；;]")


def merge_reason(old_reason: str, new_reason: str) -> str:
    fragments = _REASON_SPLIT_RE.split(old_reason or "") + _REASON_SPLIT_RE.split(new_reason or "")
    return REASON_SEPARATOR.join(unique_texts(fragments))[:REASON_MAX_CHARS]


def normalize_candidate(candidate: WeakKnowledgeCandidate, now: str) -> Optional[WeakKnowledgePoint]:
    """Turn a candidate into a fresh weak point; None when it is not actionable."""
    knowledge_id = str(candidate.knowledge_id or "")
    knowledge_name = str(candidate.knowledge_name or "")
    if not knowledge_id or not knowledge_name:
        return None
    point = WeakKnowledgePoint(
        knowledge_id=knowledge_id,
        knowledge_name=knowledge_name,
        knowledge_category=unique_texts(candidate.knowledge_category),
        weak_reason=str(candidate.weak_reason or "").strip()[:REASON_MAX_CHARS],
        weak_score=clamp_score(candidate.weak_score),
        first_weak_time=now,
        last_review_time=None,
        review_count=0,
    )
    if point.weak_score <= 0:
        return None
    return point


def merge_weak_points(existing: WeakKnowledgePoint, incoming: WeakKnowledgePoint, now: str) -> WeakKnowledgePoint:
    # A fresh weak signal always restarts the review schedule.
    return WeakKnowledgePoint(
        knowledge_id=existing.knowledge_id,
        knowledge_name=existing.knowledge_name or incoming.knowledge_name,
        knowledge_category=unique_texts([*existing.knowledge_category, *incoming.knowledge_category]),
        weak_reason=merge_reason(existing.weak_reason, incoming.weak_reason),
        weak_score=max(clamp_score(existing.weak_score), clamp_score(incoming.weak_score)),
        first_weak_time=existing.first_weak_time or now,
        last_review_time=None,
        review_count=max(0, int(existing.review_count or 0)),
    )


class ProfileSyncEngine:
    """Merge review candidates into the remote profile, one candidate at a time.

    Candidates are written sequentially in input order because each success
    updates the in-memory lookup that later candidates merge against. When the
    profile GET fails the engine cannot tell new ids from known ones, so every
    write starts as an update and falls back to a create on 404.
    """

    def __init__(
        self,
        client: ProfileClient,
        idempotency: Optional[RoundIdempotencyCache] = None,
        *,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.client = client
        self.idempotency = idempotency if idempotency is not None else RoundIdempotencyCache()
        self._now = now

    async def _write_point(
        self,
        user_id: str,
        point: WeakKnowledgePoint,
        meta: SyncMetadata,
        machine: WeakPointWriteStateMachine,
        cancel_event: Optional[asyncio.Event],
    ) -> Optional[Exception]:
        last_error: Optional[Exception] = None
        while not machine.terminal:
            try:
                if machine.state == "try_update":
                    await self.client.update_weak_point(user_id, point, meta, cancel_event=cancel_event)
                else:
                    await self.client.create_weak_point(user_id, point, meta, cancel_event=cancel_event)
            except Exception as exc:
                last_error = exc
                if machine.on_failure(getattr(exc, "status", None)) == "try_create":
                    _log.info("weak point %s missing remotely, creating it", point.knowledge_id)
                continue
            machine.on_success()
        return last_error

    async def sync(
        self,
        user_id: str,
        mode: str,
        round_id: Optional[str],
        review_summary: str,
        run_result: Optional[RunResult],
        candidates: Iterable[WeakKnowledgeCandidate],
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> SyncResult:
        result = SyncResult()
        candidate_list = list(candidates or [])
        if not user_id or not candidate_list:
            return result

        now = format_profile_time(self._now())
        points: List[WeakKnowledgePoint] = []
        for candidate in candidate_list:
            point = normalize_candidate(candidate, now)
            if point is not None:
                points.append(point)
        if not points:
            return result

        profile_loaded = True
        existing_list: List[WeakKnowledgePoint] = []
        try:
            existing_list = await self.client.get_weak_knowledge(user_id, cancel_event=cancel_event)
        except Exception as exc:
            profile_loaded = False
            _log.warning("load profile failed for %s, falling back to update-then-create: %s", user_id, exc)
            result.errors.append(f"load_profile_failed:{exc}")

        existing_map: Dict[str, WeakKnowledgePoint] = {item.knowledge_id: item for item in existing_list}
        meta = SyncMetadata(mode=mode, round_id=round_id, review_summary=review_summary, run_result=run_result)

        for point in points:
            key = round_key(user_id, round_id, point.knowledge_id)
            if key and self.idempotency.seen(key):
                _log.debug("skip %s, already synced in round %s", point.knowledge_id, round_id)
                result.skipped += 1
                continue

            existing = existing_map.get(point.knowledge_id)
            merged = merge_weak_points(existing, point, now) if existing else point
            machine = WeakPointWriteStateMachine(
                initial_write_state(existing_known=existing is not None, profile_loaded=profile_loaded),
                allow_create_fallback=not profile_loaded,
            )
            error = await self._write_point(user_id, merged, meta, machine, cancel_event)
            if machine.state != "done":
                _log.warning("weak point write failed for %s/%s: %s", user_id, point.knowledge_id, error)
                result.errors.append(f"write_failed:{point.knowledge_id}:{error}")
                continue

            if machine.outcome == "updated":
                result.updated += 1
            else:
                result.added += 1
            existing_map[point.knowledge_id] = merged
            if key:
                self.idempotency.mark(key)

        return result

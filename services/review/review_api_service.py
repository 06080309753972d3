from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .api_models import ReviewRequest
from .review_assessment_service import ReviewAssessment, build_error_review
from .review_models import RunResult, SyncResult, WeakKnowledgeCandidate, WeakKnowledgePoint, is_review_mode
from .review_schedule_service import annotate_schedule

_log = logging.getLogger(__name__)


class ReviewApiError(Exception):
    def __init__(self, status_code: int, detail: str):
        super().__init__(detail)
        self.status_code = int(status_code)
        self.detail = detail


@dataclass(frozen=True)
class ReviewApiDeps:
    assess_review: Callable[[str, str, Optional[RunResult]], ReviewAssessment]
    sync_weak_knowledge: Callable[..., Awaitable[SyncResult]]
    load_weak_knowledge: Callable[[str], Awaitable[List[WeakKnowledgePoint]]]
    now: Callable[[], datetime]


def _metrics(assessment: ReviewAssessment, candidates: List[WeakKnowledgeCandidate], sync: SyncResult) -> Dict[str, Any]:
    metrics = assessment.metrics()
    metrics.update(
        {
            "weakCandidateCount": len(candidates),
            "syncAdded": sync.added,
            "syncUpdated": sync.updated,
            "syncSkipped": sync.skipped,
            "syncErrors": len(sync.errors),
        }
    )
    return metrics


def _error_response(mode: str) -> Dict[str, Any]:
    return {
        "review": build_error_review().to_dict(),
        "metrics": {
            "issueCount": 0,
            "highestSeverity": 0,
            "mode": mode,
            "weakCandidateCount": 0,
            "syncAdded": 0,
            "syncUpdated": 0,
            "syncSkipped": 0,
            "syncErrors": 1,
        },
    }


async def review_api(req: ReviewRequest, user_id: Optional[str], *, deps: ReviewApiDeps) -> Dict[str, Any]:
    code = req.code if isinstance(req.code, str) else ""
    mode = req.mode
    if not code.strip() or not is_review_mode(mode):
        raise ReviewApiError(status_code=400, detail="code and mode are required")

    run_result = RunResult.from_payload(req.runResult)
    round_id = req.roundId if isinstance(req.roundId, str) and req.roundId else None
    uid = str(user_id or "").strip()
    log_context = {"user_id": uid, "round_id": round_id, "mode": mode}
    try:
        assessment = deps.assess_review(code, mode, run_result)
        candidates = assessment.weak_candidates
        sync = SyncResult()
        if uid and candidates:
            try:
                sync = await deps.sync_weak_knowledge(
                    uid,
                    mode,
                    round_id,
                    assessment.review.summary,
                    run_result,
                    candidates,
                )
            except Exception as exc:
                _log.warning(
                    "review weak-knowledge sync failed user=%s round=%s mode=%s error_type=%s: %s",
                    uid,
                    round_id,
                    mode,
                    run_result.error_type if run_result else None,
                    exc,
                    exc_info=True,
                    extra=log_context,
                )
            else:
                if sync.errors:
                    _log.warning(
                        "review weak-knowledge sync partial failure user=%s round=%s mode=%s error_type=%s errors=%s",
                        uid,
                        round_id,
                        mode,
                        run_result.error_type if run_result else None,
                        sync.errors,
                        extra=log_context,
                    )
        return {"review": assessment.review.to_dict(), "metrics": _metrics(assessment, candidates, sync)}
    except Exception:
        _log.exception("review api failed mode=%s", mode)
        return _error_response(mode)


async def weak_schedule_api(user_id: str, *, deps: ReviewApiDeps) -> Dict[str, Any]:
    uid = str(user_id or "").strip()
    if not uid:
        raise ReviewApiError(status_code=400, detail="user_id is required")
    try:
        points = await deps.load_weak_knowledge(uid)
    except Exception as exc:
        _log.warning("load weak knowledge failed for %s: %s", uid, exc)
        raise ReviewApiError(status_code=502, detail="profile service unavailable") from exc
    items = annotate_schedule(points, now=deps.now())
    return {
        "user_id": uid,
        "weak_knowledge": items,
        "due_count": sum(1 for item in items if item["review_due"]),
    }

from __future__ import annotations

from typing import Dict, Iterable, List

from .review_models import (
    KNOWLEDGE_ID_PREFIX,
    REASON_MAX_CHARS,
    REASON_SEPARATOR,
    Issue,
    WeakKnowledgeCandidate,
    clamp_score,
    unique_texts,
)

__all__ = ["knowledge_id_for_issue", "truncate_reason", "aggregate"]


def knowledge_id_for_issue(issue_id: str) -> str:
    return f"{KNOWLEDGE_ID_PREFIX}{issue_id}"


def truncate_reason(text: str, limit: int = REASON_MAX_CHARS) -> str:
    return str(text or "")[: max(0, int(limit))]


def aggregate(issues: Iterable[Issue]) -> List[WeakKnowledgeCandidate]:
    """Collapse issues into one candidate per derived knowledge id.

    Output keeps first-appearance order. Scores take the max severity,
    categories and reasons are unioned in order of appearance, and the merged
    reason is capped at ``REASON_MAX_CHARS``. Zero-score candidates are dropped.
    """
    merged: Dict[str, WeakKnowledgeCandidate] = {}
    reasons: Dict[str, List[str]] = {}
    for issue in issues:
        knowledge_id = knowledge_id_for_issue(issue.id)
        score = clamp_score(issue.severity)
        cur = merged.get(knowledge_id)
        if cur is None:
            merged[knowledge_id] = WeakKnowledgeCandidate(
                knowledge_id=knowledge_id,
                knowledge_name=issue.knowledge_name,
                knowledge_category=unique_texts(issue.knowledge_category),
                weak_reason=truncate_reason(issue.reason),
                weak_score=score,
            )
            reasons[knowledge_id] = [issue.reason]
            continue
        cur.weak_score = max(cur.weak_score, score)
        cur.knowledge_category = unique_texts([*cur.knowledge_category, *issue.knowledge_category])
        if issue.reason not in reasons[knowledge_id]:
            reasons[knowledge_id].append(issue.reason)
        cur.weak_reason = truncate_reason(REASON_SEPARATOR.join(reasons[knowledge_id]))
    return [candidate for candidate in merged.values() if candidate.weak_score > 0]

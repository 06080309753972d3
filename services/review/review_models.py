from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

REVIEW_MODES = ("syntax", "style", "logic")
MODE_NAMES = {"syntax": "语法", "style": "风格", "logic": "逻辑"}
REASON_MAX_CHARS = 280
REASON_SEPARATOR = "；"
KNOWLEDGE_ID_PREFIX = "k_review_"


def is_review_mode(mode: object) -> bool:
    return isinstance(mode, str) and mode in REVIEW_MODES


def clamp_score(value: Any) -> int:
    try:
        number = float(value)
    except OverflowError:
        return 10 if value > 0 else 0
    except (TypeError, ValueError):
        return 0
    if math.isnan(number):
        return 0
    if math.isinf(number):
        return 10 if number > 0 else 0
    # halves round up
    return max(0, min(10, math.floor(number + 0.5)))


def unique_texts(items: Any) -> List[str]:
    out: List[str] = []
    for item in items or []:
        text = str(item if item is not None else "").strip()
        if text and text not in out:
            out.append(text)
    return out


@dataclass(frozen=True)
class RunResult:
    success: bool
    error_type: Optional[str] = None
    error_summary: Optional[str] = None
    error_lines_summary: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["RunResult"]:
        if not isinstance(payload, dict):
            return None
        success = payload.get("success")
        if not isinstance(success, bool):
            return None

        def _text(*keys: str) -> Optional[str]:
            for key in keys:
                value = payload.get(key)
                if isinstance(value, str):
                    return value
            return None

        return cls(
            success=success,
            error_type=_text("errorType", "error_type"),
            error_summary=_text("errorSummary", "error_summary"),
            error_lines_summary=_text("errorLinesSummary", "error_lines_summary"),
            error=_text("error"),
        )


@dataclass(frozen=True)
class Issue:
    id: str
    reason: str
    suggestion: str
    question: str
    knowledge_name: str
    knowledge_category: Tuple[str, ...]
    severity: int


@dataclass
class WeakKnowledgeCandidate:
    knowledge_id: str
    knowledge_name: str
    knowledge_category: List[str] = field(default_factory=list)
    weak_reason: str = ""
    weak_score: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class WeakKnowledgePoint:
    knowledge_id: str
    knowledge_name: str
    knowledge_category: List[str] = field(default_factory=list)
    weak_reason: str = ""
    weak_score: int = 0
    first_weak_time: str = ""
    last_review_time: Optional[str] = None
    review_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, value: Any) -> Optional["WeakKnowledgePoint"]:
        """Normalize a remote weak_knowledge entry; None when it has no id."""
        if not isinstance(value, dict):
            return None
        knowledge_id = value.get("knowledge_id")
        if not isinstance(knowledge_id, str) or not knowledge_id:
            return None
        name = value.get("knowledge_name")
        category = value.get("knowledge_category")
        reason = value.get("weak_reason")
        first = value.get("first_weak_time")
        last = value.get("last_review_time")
        try:
            review_count = max(0, clamp_int(value.get("review_count")))
        except (TypeError, ValueError, OverflowError):
            review_count = 0
        return cls(
            knowledge_id=knowledge_id,
            knowledge_name=name if isinstance(name, str) else knowledge_id,
            knowledge_category=[str(item) for item in category] if isinstance(category, list) else [],
            weak_reason=reason if isinstance(reason, str) else "",
            weak_score=clamp_score(value.get("weak_score")),
            first_weak_time=first if isinstance(first, str) else "",
            last_review_time=last if isinstance(last, str) else None,
            review_count=review_count,
        )


def clamp_int(value: Any) -> int:
    number = float(value if value is not None else 0)
    if not math.isfinite(number):
        return 0
    return math.floor(number + 0.5)


@dataclass
class ReviewResult:
    status: str
    summary: str
    details: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    questions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SyncResult:
    added: int = 0
    updated: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

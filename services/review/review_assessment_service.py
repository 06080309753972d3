from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .review_models import MODE_NAMES, Issue, ReviewResult, RunResult, WeakKnowledgeCandidate, unique_texts
from .review_rules import detect
from .weak_candidate_service import aggregate

MAX_DETAILS = 4
MAX_SUGGESTIONS = 4
MAX_QUESTIONS = 3
HIGH_RISK_SEVERITY = 8


@dataclass
class ReviewAssessment:
    review: ReviewResult
    weak_candidates: List[WeakKnowledgeCandidate] = field(default_factory=list)
    issue_count: int = 0
    highest_severity: int = 0
    mode: str = "syntax"

    def metrics(self) -> Dict[str, Any]:
        return {
            "issueCount": self.issue_count,
            "highestSeverity": self.highest_severity,
            "mode": self.mode,
        }


def build_positive_review(mode: str) -> ReviewResult:
    mode_name = MODE_NAMES[mode]
    return ReviewResult(
        status="ok",
        summary=f"{mode_name}层面未发现明显问题，建议继续用更多测试样例验证稳定性。",
        details=[f"当前代码在{mode_name}层面表现稳定。"],
        suggestions=["继续补充边界输入与异常输入测试，防止隐藏问题在复杂场景暴露。"],
        questions=["如果输入规模扩大 10 倍，这段代码最先可能出现什么问题？"],
    )


def build_review_summary(mode: str, issues: List[Issue]) -> str:
    mode_name = MODE_NAMES[mode]
    highest = max(issue.severity for issue in issues)
    if highest >= HIGH_RISK_SEVERITY:
        return f"{mode_name}评审发现高风险问题 {len(issues)} 项，建议优先处理。"
    return f"{mode_name}评审发现可改进点 {len(issues)} 项，可逐步优化。"


def build_error_review() -> ReviewResult:
    return ReviewResult(status="error", summary="评审服务内部异常，请稍后重试。")


def assess_review(code: str, mode: str, run_result: Optional[RunResult] = None) -> ReviewAssessment:
    issues = detect(code or "", mode, run_result)
    if not issues:
        return ReviewAssessment(review=build_positive_review(mode), mode=mode)

    review = ReviewResult(
        status="ok",
        summary=build_review_summary(mode, issues),
        details=unique_texts(issue.reason for issue in issues)[:MAX_DETAILS],
        suggestions=unique_texts(issue.suggestion for issue in issues)[:MAX_SUGGESTIONS],
        questions=unique_texts(issue.question for issue in issues)[:MAX_QUESTIONS],
    )
    return ReviewAssessment(
        review=review,
        weak_candidates=aggregate(issues),
        issue_count=len(issues),
        highest_severity=max(issue.severity for issue in issues),
        mode=mode,
    )

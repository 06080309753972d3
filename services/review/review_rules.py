"""Heuristic review rules for submitted C code.

Each rule is a plain function ``(code, context) -> Issue | None``. Rules are
grouped per review mode in ordered tuples; ``detect`` evaluates them in that
order, so issue order is stable for identical input. The checks are text
pattern matches over the source plus the execution outcome, not a parser.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from .review_models import REVIEW_MODES, Issue, RunResult, unique_texts

__all__ = [
    "RuleContext",
    "Rule",
    "SYNTAX_RULES",
    "STYLE_RULES",
    "LOGIC_RULES",
    "RULES_BY_MODE",
    "detect",
]

_MAIN_ENTRY_RE = re.compile(r"\bint\s+main\s*\(")
_STDIO_CALL_RE = re.compile(r"\b(printf|scanf)\s*\(")
_STDIO_INCLUDE_RE = re.compile(r"#include\s*<stdio\.h>")
_LINE_SPLIT_RE = re.compile(r"\r?\n")
_TAB_INDENT_RE = re.compile(r"^\t+")
_COMMENT_RE = re.compile(r"//|/\*")
_DECLARATION_RE = re.compile(r"\b(?:int|long|short|float|double|char)\s+([a-zA-Z_][a-zA-Z0-9_]*)")
_WHILE_TRUE_RE = re.compile(r"\bwhile\s*\(\s*1\s*\)")
_BREAK_RE = re.compile(r"\bbreak\s*;")
_MALLOC_RE = re.compile(r"\bmalloc\s*\(")
_FREE_RE = re.compile(r"\bfree\s*\(")
_POINTER_OP_RE = re.compile(r"->|\*[a-zA-Z_][a-zA-Z0-9_]*")
_NULL_COMPARE_GUARD_RE = re.compile(r"if\s*\(\s*[a-zA-Z_][a-zA-Z0-9_]*\s*(?:!=|==)\s*NULL\s*\)")
_TRUTHY_GUARD_RE = re.compile(r"if\s*\(\s*[a-zA-Z_][a-zA-Z0-9_]*\s*\)")
_INCLUSIVE_FOR_RE = re.compile(r"\bfor\s*\([^;]*;[^;]*<=\s*[a-zA-Z_][a-zA-Z0-9_]*[^;]*;")
_INDEXING_RE = re.compile(r"\[[^\]]+\]")

LONG_LINE_CHARS = 100
COMMENT_REQUIRED_LINES = 25
SHORT_NAME_ALLOWLIST = frozenset({"i", "j", "k"})
SHORT_NAME_MIN_HITS = 2

COMPILE_ERROR_MARKER = "编译"
TIMEOUT_ERROR_MARKER = "超时"
RUNTIME_ERROR_MARKER = "运行时"
SEGFAULT_MARKERS = ("segmentation", "sigsegv")


@dataclass(frozen=True)
class RuleContext:
    lines: Tuple[str, ...]
    run_result: Optional[RunResult] = None

    @classmethod
    def build(cls, code: str, run_result: Optional[RunResult] = None) -> "RuleContext":
        return cls(lines=tuple(_LINE_SPLIT_RE.split(code)), run_result=run_result)

    @property
    def run_failed(self) -> bool:
        return self.run_result is None or not self.run_result.success

    @property
    def error_type(self) -> str:
        if self.run_result is None:
            return ""
        return self.run_result.error_type or ""

    @property
    def lower_error_text(self) -> str:
        rr = self.run_result
        if rr is None:
            return ""
        return f"{rr.error_type or ''} {rr.error_summary or ''} {rr.error or ''}".lower()


Rule = Callable[[str, RuleContext], Optional[Issue]]


# syntax


def compile_failure_rule(code: str, ctx: RuleContext) -> Optional[Issue]:
    rr = ctx.run_result
    if rr is None or rr.success or COMPILE_ERROR_MARKER not in ctx.error_type:
        return None
    detail = rr.error_summary or rr.error_lines_summary or "代码当前无法通过编译。"
    return Issue(
        id="syntax_compile",
        reason=f"编译未通过：{detail}",
        suggestion="先修复编译错误行，再重新运行评审。",
        question="你能定位首个编译错误，并解释它为何导致后续连锁报错吗？",
        knowledge_name="C 语法与声明基础",
        knowledge_category=("程序调试", "C语言"),
        severity=8,
    )


def main_entry_rule(code: str, ctx: RuleContext) -> Optional[Issue]:
    if _MAIN_ENTRY_RE.search(code):
        return None
    return Issue(
        id="syntax_main_entry",
        reason="代码中未检测到标准入口函数 `int main()`。",
        suggestion="补充 `int main()` 作为程序入口，并确保有 `return 0;`。",
        question="你的程序执行入口在哪里，是否符合 C 语言规范？",
        knowledge_name="程序入口函数",
        knowledge_category=("C语言", "程序结构"),
        severity=7,
    )


def stdio_header_rule(code: str, ctx: RuleContext) -> Optional[Issue]:
    if not _STDIO_CALL_RE.search(code) or _STDIO_INCLUDE_RE.search(code):
        return None
    return Issue(
        id="syntax_stdio_header",
        reason="检测到 `printf/scanf` 调用，但未包含 `<stdio.h>`。",
        suggestion="在文件顶部补充 `#include <stdio.h>`。",
        question="你调用的标准库函数，是否都包含了对应头文件？",
        knowledge_name="标准库头文件匹配",
        knowledge_category=("C语言", "语法规范"),
        severity=6,
    )


def brace_balance_rule(code: str, ctx: RuleContext) -> Optional[Issue]:
    if code.count("{") == code.count("}"):
        return None
    return Issue(
        id="syntax_brace_balance",
        reason="花括号数量不匹配，存在代码块边界风险。",
        suggestion="逐层检查函数与控制流代码块，确保 `{}` 成对出现。",
        question="是否有某个分支少了右花括号，导致后续语句归属错误？",
        knowledge_name="代码块边界",
        knowledge_category=("C语言", "语法规范"),
        severity=6,
    )


def parenthesis_balance_rule(code: str, ctx: RuleContext) -> Optional[Issue]:
    if code.count("(") == code.count(")"):
        return None
    return Issue(
        id="syntax_parenthesis_balance",
        reason="圆括号数量不匹配，可能影响表达式和函数调用。",
        suggestion="检查条件表达式、函数参数列表是否闭合。",
        question="哪一个表达式的括号层级与你预期不一致？",
        knowledge_name="表达式括号匹配",
        knowledge_category=("C语言", "表达式"),
        severity=5,
    )


# style


def line_length_rule(code: str, ctx: RuleContext) -> Optional[Issue]:
    long_lines = sum(1 for line in ctx.lines if len(line) > LONG_LINE_CHARS)
    if long_lines <= 0:
        return None
    return Issue(
        id="style_line_length",
        reason=f"发现 {long_lines} 行代码超过 {LONG_LINE_CHARS} 字符，可读性偏低。",
        suggestion="将过长语句拆分为更短的表达式或辅助变量。",
        question="哪些长语句可以通过中间变量提高可读性？",
        knowledge_name="代码可读性与格式化",
        knowledge_category=("编码规范", "C语言"),
        severity=5,
    )


def indent_consistency_rule(code: str, ctx: RuleContext) -> Optional[Issue]:
    if not any(_TAB_INDENT_RE.match(line) for line in ctx.lines):
        return None
    return Issue(
        id="style_indent_consistency",
        reason="检测到 Tab 缩进，可能与空格缩进混用。",
        suggestion="统一缩进风格（建议 2 或 4 空格），减少团队协作冲突。",
        question="你当前项目的缩进约定是什么，是否已统一？",
        knowledge_name="缩进一致性",
        knowledge_category=("编码规范",),
        severity=4,
    )


def variable_naming_rule(code: str, ctx: RuleContext) -> Optional[Issue]:
    short_names = [
        name
        for name in _DECLARATION_RE.findall(code)
        if len(name) <= 1 and name not in SHORT_NAME_ALLOWLIST
    ]
    if len(short_names) < SHORT_NAME_MIN_HITS:
        return None
    return Issue(
        id="style_variable_naming",
        reason=f"存在较多语义弱变量名（如：{', '.join(unique_texts(short_names))}）。",
        suggestion="将变量名改为可表达意图的命名（如 `count`, `index`, `headNode`）。",
        question="读者仅看变量名，能否立即理解该变量的角色？",
        knowledge_name="变量命名表达力",
        knowledge_category=("编码规范",),
        severity=5,
    )


def commenting_rule(code: str, ctx: RuleContext) -> Optional[Issue]:
    if len(ctx.lines) < COMMENT_REQUIRED_LINES or _COMMENT_RE.search(code):
        return None
    return Issue(
        id="style_commenting",
        reason="代码体量较大但缺少注释，不利于后续维护。",
        suggestion="为关键分支、边界处理和核心逻辑补充简洁注释。",
        question="你认为哪些逻辑如果不写注释，三天后最难快速回忆？",
        knowledge_name="注释与可维护性",
        knowledge_category=("工程实践",),
        severity=4,
    )


# logic


def run_failure_rule(code: str, ctx: RuleContext) -> Optional[Issue]:
    """Classify a failed run; timeout beats segfault beats generic runtime."""
    if not ctx.run_failed:
        return None
    if TIMEOUT_ERROR_MARKER in ctx.error_type:
        return Issue(
            id="logic_loop_termination",
            reason="程序运行超时，可能存在循环终止条件缺失或条件永真问题。",
            suggestion="为循环增加明确终止条件，并使用小规模输入验证退出路径。",
            question="你的循环在最坏情况下何时结束？如何证明它一定结束？",
            knowledge_name="循环终止条件设计",
            knowledge_category=("程序调试", "算法"),
            severity=8,
        )
    lower_error = ctx.lower_error_text
    if any(marker in lower_error for marker in SEGFAULT_MARKERS):
        return Issue(
            id="logic_pointer_safety",
            reason="检测到段错误信号，通常由空指针或越界访问引发。",
            suggestion="在解引用前增加空指针与边界校验。",
            question="本次解引用的指针来源是否可靠，生命周期是否有效？",
            knowledge_name="指针与内存安全",
            knowledge_category=("程序调试", "C语言"),
            severity=9,
        )
    if RUNTIME_ERROR_MARKER in ctx.error_type:
        summary = ctx.run_result.error_summary if ctx.run_result else None
        return Issue(
            id="logic_runtime_stability",
            reason=summary or "程序出现运行时异常。",
            suggestion="补充边界输入测试并定位触发异常的最小复现样例。",
            question="在异常发生前，哪些变量的值偏离了你的预期？",
            knowledge_name="运行时稳定性",
            knowledge_category=("程序调试",),
            severity=7,
        )
    return None


def infinite_loop_rule(code: str, ctx: RuleContext) -> Optional[Issue]:
    if not _WHILE_TRUE_RE.search(code) or _BREAK_RE.search(code):
        return None
    return Issue(
        id="logic_infinite_loop",
        reason="检测到 `while(1)` 且未发现 `break`，存在死循环风险。",
        suggestion="增加可达的退出条件，或改为条件循环。",
        question="该循环的退出条件是什么，触发路径是否真实可达？",
        knowledge_name="循环控制与退出路径",
        knowledge_category=("算法", "程序调试"),
        severity=8,
    )


def memory_release_rule(code: str, ctx: RuleContext) -> Optional[Issue]:
    if not _MALLOC_RE.search(code) or _FREE_RE.search(code):
        return None
    return Issue(
        id="logic_memory_release",
        reason="检测到动态内存分配但未发现对应释放，存在内存泄漏风险。",
        suggestion="为每个 `malloc/calloc/realloc` 路径补充 `free`，并考虑异常分支回收。",
        question="每一块动态内存在成功和失败路径下都被释放了吗？",
        knowledge_name="动态内存生命周期",
        knowledge_category=("C语言", "内存管理"),
        severity=7,
    )


def _has_null_guard(code: str) -> bool:
    return bool(_NULL_COMPARE_GUARD_RE.search(code) or _TRUTHY_GUARD_RE.search(code))


def null_guard_rule(code: str, ctx: RuleContext) -> Optional[Issue]:
    if not _POINTER_OP_RE.search(code) or _has_null_guard(code):
        return None
    return Issue(
        id="logic_null_guard",
        reason="检测到指针操作，但未识别到显式空指针保护逻辑。",
        suggestion="在关键解引用位置增加 `NULL` 判定。",
        question="哪些指针来自外部输入或函数返回，可能为空？",
        knowledge_name="空指针防护",
        knowledge_category=("C语言", "程序调试"),
        severity=6,
    )


def index_boundary_rule(code: str, ctx: RuleContext) -> Optional[Issue]:
    if not _INCLUSIVE_FOR_RE.search(code) or not _INDEXING_RE.search(code):
        return None
    return Issue(
        id="logic_index_boundary",
        reason="循环条件出现 `<=` 且存在数组访问，可能产生越界风险。",
        suggestion="优先使用 `< length` 形式，并统一边界定义来源。",
        question="当前上界是否包含最后一个合法下标？",
        knowledge_name="数组边界控制",
        knowledge_category=("C语言", "程序调试"),
        severity=7,
    )


SYNTAX_RULES: Tuple[Rule, ...] = (
    compile_failure_rule,
    main_entry_rule,
    stdio_header_rule,
    brace_balance_rule,
    parenthesis_balance_rule,
)

STYLE_RULES: Tuple[Rule, ...] = (
    line_length_rule,
    indent_consistency_rule,
    variable_naming_rule,
    commenting_rule,
)

LOGIC_RULES: Tuple[Rule, ...] = (
    run_failure_rule,
    infinite_loop_rule,
    memory_release_rule,
    null_guard_rule,
    index_boundary_rule,
)

RULES_BY_MODE: Dict[str, Tuple[Rule, ...]] = {
    "syntax": SYNTAX_RULES,
    "style": STYLE_RULES,
    "logic": LOGIC_RULES,
}


def detect(code: str, mode: str, run_result: Optional[RunResult] = None) -> List[Issue]:
    if mode not in REVIEW_MODES:
        raise ValueError(f"invalid_review_mode:{mode}")
    text = code or ""
    ctx = RuleContext.build(text, run_result)
    issues: List[Issue] = []
    for rule in RULES_BY_MODE[mode]:
        issue = rule(text, ctx)
        if issue is not None:
            issues.append(issue)
    return issues

"""Resolve symbolic code references to 1-based line ranges.

A :class:`~labz_cli.models.CodeRef` may name explicit lines, a test scenario
plus a call inside it, a function, an operation, or a regex pattern.  The
locator applies exactly one strategy, the first that is both applicable and
successful, in that order.  Unresolved references yield ``None``.

Test sources (Mocha/Jest style) are partitioned into *scenario spans*: every
``describe``/``context``/``it``/``test``/``specify`` call with a literal
title opens a span that ends at the call's closing parenthesis.  Nested
calls form a tree.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Dict, Iterator, List, Optional, Pattern, Tuple, Union

from .models import CodeRef, FheCall, ResolvedCodeRef, TutorialStep
from .parser import function_spans
from .scanner import QUOTES, LineIndex, mask_source, match_delimiter

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "FHE"

_SCENARIO_RE = re.compile(
    r"(?<![\w$.])(describe|context|it|test|specify)(?:\.(only|skip))?\s*\("
)
_SECTION_RE = re.compile(r"//\s*=+\s*(Stage\s*\d+[^=]*?)\s*=+", re.IGNORECASE)


@dataclass
class ScenarioSpan:
    title: str
    kind: str
    start_line: int
    end_line: int
    children: List["ScenarioSpan"] = field(default_factory=list)

    def walk(self) -> Iterator["ScenarioSpan"]:
        yield self
        for child in self.children:
            yield from child.walk()


@dataclass(frozen=True)
class CodeSection:
    id: str
    title: str
    start_line: int
    end_line: int


@dataclass(frozen=True)
class ResolvedStep:
    step: TutorialStep
    contract: Optional[ResolvedCodeRef] = None
    test: Optional[ResolvedCodeRef] = None


# ===================================================================
# Source partitioning
# ===================================================================

def scenario_spans(source: str) -> List[ScenarioSpan]:
    """Return the top-level scenario spans of a test source, in source order."""
    masked = mask_source(source)
    index = LineIndex(source)
    roots: List[ScenarioSpan] = []
    stack: List[Tuple[int, ScenarioSpan]] = []

    for match in _SCENARIO_RE.finditer(masked):
        paren = match.end() - 1
        title = _literal_argument(source, paren + 1)
        if title is None:
            continue
        close = match_delimiter(masked, paren)
        end_offset = close if close is not None else len(source) - 1
        span = ScenarioSpan(
            title=title,
            kind=match.group(1),
            start_line=index.line_of(match.start()),
            end_line=index.line_of(max(end_offset, match.start())),
        )
        while stack and stack[-1][0] < match.start():
            stack.pop()
        if stack:
            stack[-1][1].children.append(span)
        else:
            roots.append(span)
        stack.append((end_offset, span))
    return roots


def _literal_argument(source: str, pos: int) -> Optional[str]:
    """Read a quoted string literal starting at the first non-space after *pos*."""
    n = len(source)
    while pos < n and source[pos].isspace():
        pos += 1
    if pos >= n or source[pos] not in QUOTES:
        return None
    quote = source[pos]
    chars: List[str] = []
    pos += 1
    while pos < n:
        ch = source[pos]
        if ch == "\\" and pos + 1 < n:
            chars.append(source[pos + 1])
            pos += 2
            continue
        if ch == quote:
            return "".join(chars)
        if ch == "\n" and quote != "`":
            return None
        chars.append(ch)
        pos += 1
    return None


def code_sections(source: str) -> Dict[str, CodeSection]:
    """Sections delimited by ``// ==== Stage N: title ====`` comment headers."""
    lines = source.split("\n")
    sections: Dict[str, CodeSection] = {}
    current: Optional[Tuple[str, str, int]] = None

    for line_no, line in enumerate(lines, start=1):
        match = _SECTION_RE.search(line)
        if not match:
            continue
        if current is not None:
            sections[current[0]] = CodeSection(current[0], current[1], current[2], line_no - 1)
        title = match.group(1).strip()
        section_id = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
        current = (section_id, title, line_no)

    if current is not None:
        sections[current[0]] = CodeSection(current[0], current[1], current[2], len(lines))
    return sections


# ===================================================================
# Locator
# ===================================================================

class CodeLocator:
    """Precomputed spans over one displayed source, contract or test."""

    def __init__(self, source: str, namespace: str = DEFAULT_NAMESPACE) -> None:
        self.source = source
        self.namespace = namespace
        self.functions = function_spans(source)
        self.sections = code_sections(source)
        self.scenarios = scenario_spans(source)
        # Comments blanked, string literals kept: pattern search sees literal text.
        self._comment_free = mask_source(source, strip_strings=False).split("\n")
        # Comments and strings blanked: call and operation search sees code only.
        self._code_only = mask_source(source).split("\n")

    def function(self, name: str) -> Optional[Tuple[int, int]]:
        span = self.functions.get(name)
        return (span.start_line, span.end_line) if span else None

    def section(self, stage_or_id: Union[int, str]) -> Optional[Tuple[int, int]]:
        if isinstance(stage_or_id, int):
            wanted = re.compile(rf"stage-{stage_or_id}(?:-|$)")
            for section in self.sections.values():
                if wanted.match(section.id):
                    return section.start_line, section.end_line
            return None
        section = self.sections.get(stage_or_id)
        return (section.start_line, section.end_line) if section else None

    def scenario(self, title: str) -> Optional[ScenarioSpan]:
        for root in self.scenarios:
            for span in root.walk():
                if span.title == title:
                    return span
        return None

    def find_line(self, pattern: Union[str, Pattern[str]]) -> Optional[int]:
        """First line whose code (comments removed) matches *pattern*."""
        if isinstance(pattern, str):
            try:
                pattern = re.compile(pattern)
            except re.error as exc:
                logger.debug("Invalid locator pattern %r: %s", pattern, exc)
                return None
        return self._first_match(pattern, self._comment_free, 1, len(self._comment_free))

    def find_operation(self, operation: str) -> Optional[int]:
        qualified = self.qualify(operation)
        pattern = re.compile(r"(?<![\w$])" + re.escape(qualified) + r"\s*\(")
        return self._first_match(pattern, self._code_only, 1, len(self._code_only))

    def find_call(self, block: str, call: str) -> Optional[int]:
        """First line inside scenario *block* that calls *call*."""
        span = self.scenario(block)
        if span is None:
            return None
        pattern = re.compile(r"(?<![\w$])" + re.escape(call) + r"\s*\(")
        return self._first_match(pattern, self._code_only, span.start_line, span.end_line)

    def qualify(self, operation: str) -> str:
        return operation if "." in operation else f"{self.namespace}.{operation}"

    def resolve(self, ref: Optional[CodeRef]) -> Optional[ResolvedCodeRef]:
        """Apply the first applicable strategy that succeeds."""
        if ref is None:
            return None

        if ref.lines is not None:
            return ResolvedCodeRef(lines=tuple(ref.lines), method=ref.method)

        if ref.block and ref.call:
            line = self.find_call(ref.block, ref.call)
            if line is not None:
                return ResolvedCodeRef(lines=(line, line), method=ref.call)

        if ref.method:
            lines = self.function(ref.method)
            if lines is None:
                span = self.scenario(ref.method)
                if span is not None:
                    lines = (span.start_line, span.end_line)
            if lines is not None:
                return ResolvedCodeRef(lines=lines, method=ref.method)

        if ref.fhe_op:
            line = self.find_operation(ref.fhe_op)
            if line is not None:
                return ResolvedCodeRef(lines=(line, line), method=self.qualify(ref.fhe_op))

        if ref.pattern:
            line = self.find_line(ref.pattern)
            if line is not None:
                return ResolvedCodeRef(lines=(line, line))

        return None

    @staticmethod
    def _first_match(pattern: Pattern[str], lines: List[str], first: int, last: int) -> Optional[int]:
        for line_no in range(max(first, 1), min(last, len(lines)) + 1):
            if pattern.search(lines[line_no - 1]):
                return line_no
        return None


def locate(source: str, ref: Optional[CodeRef], namespace: str = DEFAULT_NAMESPACE) -> Optional[ResolvedCodeRef]:
    """Resolve *ref* against *source*; ``None`` when nothing matches."""
    return CodeLocator(source, namespace).resolve(ref)


def resolve_step(step: TutorialStep, contract: CodeLocator, test: CodeLocator) -> ResolvedStep:
    """Resolve both panels of *step*.

    A reference that fails to resolve keeps the lines it already carried.
    The step's operation call gets a line when it has none.
    """
    resolved_contract = contract.resolve(step.contract)
    resolved_test = test.resolve(step.test)

    contract_ref = step.contract
    if contract_ref is not None and resolved_contract is not None:
        contract_ref = replace(contract_ref, lines=resolved_contract.lines)
    test_ref = step.test
    if test_ref is not None and resolved_test is not None:
        test_ref = replace(test_ref, lines=resolved_test.lines)

    fhe_call: Optional[FheCall] = step.fhe_call
    if fhe_call is not None and fhe_call.line is None:
        line = contract.find_operation(fhe_call.name)
        if line is not None:
            fhe_call = replace(fhe_call, line=line)

    return ResolvedStep(
        step=replace(step, contract=contract_ref, test=test_ref, fhe_call=fhe_call),
        contract=resolved_contract,
        test=resolved_test,
    )

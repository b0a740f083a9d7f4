"""Structural parser for Solidity contract sources.

Turns raw contract text into a :class:`~labz_cli.models.ParsedContract`:

- contract name and inheritance list from the declaration
- import statements (path, named items, line)
- top-level state declarations (type, name, visibility, mapping info)
- functions with their body spans and the ordered ``FHE.xxx(...)`` calls
  found inside each body

This is a lightweight structural scan, not a grammar-correct parse.  All
brace/paren matching runs over the masked text from :mod:`labz_cli.scanner`,
so delimiters inside comments and string literals never shift a span.
Malformed input yields ``None`` instead of raising.
"""

from __future__ import annotations

import itertools
import logging
import re
from pathlib import Path
from typing import Dict, Iterator, List, NamedTuple, Optional, Pattern, Sequence, Set, Tuple

from .models import (
    FunctionDef,
    FunctionSpan,
    ImportRef,
    OperationCall,
    Parameter,
    ParsedContract,
    StateAccess,
    StateVariable,
)
from .scanner import LineIndex, mask_source, match_delimiter, split_top_level

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACES: Tuple[str, ...] = ("FHE",)
DEFAULT_STATE_VISIBILITY = "internal"
DEFAULT_FUNCTION_VISIBILITY = "internal"

VISIBILITIES = ("public", "private", "internal", "external")
MUTABILITIES = ("view", "pure", "payable")
DATA_LOCATIONS = {"memory", "calldata", "storage"}

SKIP_DIRS: Set[str] = {
    "node_modules", ".git", "artifacts", "cache", "typechain-types",
    "coverage", "build", "dist", ".venv", "venv",
}

_IDENT = r"[A-Za-z_$][\w$]*"

_CONTRACT_RE = re.compile(r"\bcontract\s+(" + _IDENT + r")\s*(?:\bis\b([^{;]*))?\{")
_CALLABLE_RE = re.compile(
    r"(?:function\s+(" + _IDENT + r")|(constructor|fallback|receive))\s*\("
)
_SPAN_RE = re.compile(
    r"(?<![.\w$])(?:function\s*\*?\s*(" + _IDENT + r")|(constructor))\s*\("
)
_IMPORT_KEYWORD_RE = re.compile(r"(?<![\w$.])import\b")
_IMPORT_NAMED_RE = re.compile(r"""^import\s*\{([^}]*)\}\s*from\s*(["'])(.+?)\2\s*;$""")
_IMPORT_STAR_RE = re.compile(r"""^import\s*\*\s*as\s+([\w$]+)\s+from\s*(["'])(.+?)\2\s*;$""")
_IMPORT_PLAIN_RE = re.compile(r"""^import\s*(["'])(.+?)\1(?:\s+as\s+([\w$]+))?\s*;$""")
_TYPE_RE = re.compile(r"[A-Za-z_$][\w$.]*(?:\s*\[[^\]]*\])*")
_RETURNS_RE = re.compile(r"\breturns\s*\(")
_PARENS_RE = re.compile(r"\([^()]*\)")
_ASSIGNMENT_RE = re.compile(
    r"(?:^|\s)(?:([A-Za-z_$][\w$.]*)\s+)?([A-Za-z_$][\w$.]*(?:\[[^\]]*\])*)\s*=$"
)

_STATE_QUALIFIERS = {
    "public", "private", "internal", "constant", "immutable", "transient", "override",
}
_STATE_MUTABILITY = ("constant", "immutable", "transient")
_SIGNATURE_KEYWORDS = set(VISIBILITIES) | set(MUTABILITIES) | {"virtual", "override"}
_CALLABLE_MEMBERS = {"function", "constructor", "fallback", "receive"}
_SKIPPED_MEMBERS = {"modifier", "event", "error", "struct", "enum", "using", "type"}


class _Member(NamedTuple):
    """One top-level member of a contract body.

    ``terminator`` is the offset of the ``;`` or ``{`` ending the header;
    ``body_close`` is the matching ``}`` for members with a body.
    """
    start: int
    terminator: int
    body_close: Optional[int]


# ===================================================================
# Public API
# ===================================================================

def parse_contract(
    source: str,
    namespaces: Optional[Sequence[str]] = DEFAULT_NAMESPACES,
) -> Optional[ParsedContract]:
    """Parse the first contract declared in *source*.

    Args:
        source: Raw Solidity text.
        namespaces: Library identifiers whose member calls are recorded as
            operations (``FHE`` -> ``FHE.add(...)``).  ``None`` accepts any
            capitalised identifier.

    Returns:
        The structural model, or ``None`` when no contract declaration is
        found or its body braces are unbalanced.
    """
    if not source:
        return None

    masked = mask_source(source)
    decl = _CONTRACT_RE.search(masked)
    if decl is None:
        logger.debug("No contract declaration found")
        return None

    body_open = decl.end() - 1
    body_close = match_delimiter(masked, body_open)
    if body_close is None:
        logger.debug("Unbalanced braces in contract '%s'", decl.group(1))
        return None

    index = LineIndex(source)
    contract = ParsedContract(
        name=decl.group(1),
        inherits=_split_inherits(decl.group(2)),
        imports=_parse_imports(source, masked, index),
    )

    members = list(_iter_members(masked, body_open + 1, body_close))

    for member in members:
        if member.body_close is not None or _leading_word(masked, member.start) in (
            _CALLABLE_MEMBERS | _SKIPPED_MEMBERS
        ):
            continue
        var = _parse_state_variable(
            masked[member.start:member.terminator],
            var_id=f"state-{len(contract.state_variables) + 1}",
            line=index.line_of(member.start),
        )
        if var is not None:
            contract.state_variables.append(var)

    op_pattern = _operation_pattern(namespaces)
    masked_lines = masked.split("\n")
    fn_ids = itertools.count(1)
    op_ids = itertools.count(1)

    for member in members:
        if _leading_word(masked, member.start) not in _CALLABLE_MEMBERS:
            continue
        fn = _parse_callable(
            source, masked, masked_lines, index, member,
            op_pattern, fn_ids, op_ids, contract.state_variables,
        )
        if fn is None:
            continue
        if fn.name == "constructor":
            if contract.constructor is None:
                contract.constructor = fn
            continue
        contract.functions.append(fn)

    return contract


def function_spans(source: str) -> Dict[str, FunctionSpan]:
    """Return ``name -> span`` for every named function in *source*.

    Works on Solidity and TypeScript alike (``function name(...) {...}`` and
    ``constructor(...) {...}``).  The first declaration of a name wins.
    """
    masked = mask_source(source)
    index = LineIndex(source)
    spans: Dict[str, FunctionSpan] = {}

    for match in _SPAN_RE.finditer(masked):
        name = match.group(1) or match.group(2)
        if name in spans:
            continue
        bounds = _callable_bounds(masked, match.end() - 1)
        if bounds is None:
            continue
        _, terminator, body_close = bounds
        end = body_close if body_close is not None else terminator
        spans[name] = FunctionSpan(
            name=name,
            start_line=index.line_of(match.start()),
            end_line=index.line_of(end),
        )
    return spans


class ContractParser:
    """File- and directory-level front end for :func:`parse_contract`."""

    def __init__(self, namespaces: Optional[Sequence[str]] = DEFAULT_NAMESPACES) -> None:
        self.namespaces = tuple(namespaces) if namespaces is not None else None

    def parse_source(self, source: str) -> Optional[ParsedContract]:
        return parse_contract(source, self.namespaces)

    def parse_file(self, file_path: Path) -> Optional[ParsedContract]:
        source = file_path.read_text(encoding="utf-8", errors="replace")
        return self.parse_source(source)

    def parse_project(self, project_root: Path) -> Dict[str, ParsedContract]:
        """Parse every ``.sol`` file under *project_root*, keyed by relative path."""
        contracts: Dict[str, ParsedContract] = {}
        for file_path in sorted(project_root.rglob("*.sol")):
            if any(part in SKIP_DIRS for part in file_path.parts):
                continue
            parsed = self.parse_file(file_path)
            if parsed is None:
                logger.warning("No contract found in %s", file_path)
                continue
            contracts[str(file_path.relative_to(project_root))] = parsed
        return contracts


# ===================================================================
# Contract members
# ===================================================================

def _iter_members(masked: str, start: int, end: int) -> Iterator[_Member]:
    pos = start
    while pos < end:
        while pos < end and masked[pos].isspace():
            pos += 1
        if pos >= end:
            return
        member_start = pos
        while pos < end:
            ch = masked[pos]
            if ch == ";":
                yield _Member(member_start, pos, None)
                pos += 1
                break
            if ch == "{":
                close = match_delimiter(masked, pos, end)
                if close is None:
                    return
                yield _Member(member_start, pos, close)
                pos = close + 1
                break
            if ch in "([":
                close = match_delimiter(masked, pos, end)
                if close is None:
                    return
                pos = close + 1
                continue
            pos += 1


def _leading_word(masked: str, pos: int) -> str:
    match = re.match(_IDENT, masked[pos:pos + 64])
    return match.group(0) if match else ""


def _callable_bounds(
    masked: str,
    paren_pos: int,
    limit: Optional[int] = None,
) -> Optional[Tuple[int, int, Optional[int]]]:
    """Locate ``(params_close, terminator, body_close)`` for a signature.

    *paren_pos* is the opening parenthesis of the parameter list.  The
    terminator is the ``{`` opening the body or the ``;`` of a bodiless
    declaration (``body_close`` is then ``None``).
    """
    params_close = match_delimiter(masked, paren_pos, limit)
    if params_close is None:
        return None
    end = len(masked) if limit is None else min(limit, len(masked))
    pos = params_close + 1
    while pos < end:
        ch = masked[pos]
        if ch in "([":
            close = match_delimiter(masked, pos, limit)
            if close is None:
                return None
            pos = close + 1
            continue
        if ch == ";":
            return params_close, pos, None
        if ch == "{":
            close = match_delimiter(masked, pos, limit)
            if close is None:
                return None
            return params_close, pos, close
        pos += 1
    return None


def _parse_callable(
    source: str,
    masked: str,
    masked_lines: List[str],
    index: LineIndex,
    member: _Member,
    op_pattern: Pattern[str],
    fn_ids: Iterator[int],
    op_ids: Iterator[int],
    state_vars: List[StateVariable],
) -> Optional[FunctionDef]:
    head = _CALLABLE_RE.match(masked, member.start)
    if head is None:
        return None
    name = head.group(1) or head.group(2)
    limit = (member.body_close if member.body_close is not None else member.terminator) + 1
    bounds = _callable_bounds(masked, head.end() - 1, limit)
    if bounds is None:
        logger.debug("Could not delimit signature of '%s'", name)
        return None
    params_close, terminator, body_close = bounds

    params_text = " ".join(masked[head.end():params_close].split())
    tail = " ".join(masked[params_close + 1:terminator].split())

    return_type: Optional[str] = None
    returns = _RETURNS_RE.search(tail)
    if returns is not None:
        close = match_delimiter(tail, returns.end() - 1)
        if close is not None:
            return_type = tail[returns.end():close].strip() or None
            tail = tail[:returns.start()] + " " + tail[close + 1:]

    if name == "constructor":
        default_visibility = "public"
    elif name in ("fallback", "receive"):
        default_visibility = "external"
    else:
        default_visibility = DEFAULT_FUNCTION_VISIBILITY

    start_line = index.line_of(member.start)
    end_line = index.line_of(body_close if body_close is not None else terminator)

    fn = FunctionDef(
        id=f"func-{next(fn_ids)}",
        name=name,
        visibility=_first_keyword(tail, VISIBILITIES) or default_visibility,
        start_line=start_line,
        end_line=end_line,
        state_mutability=_first_keyword(tail, MUTABILITIES),
        parameters=[_parse_parameter(p) for p in split_top_level(params_text)],
        return_type=return_type,
        modifiers=_signature_modifiers(tail),
    )

    if body_close is None:
        return fn

    open_calls: List[Tuple[int, str]] = []
    for match in op_pattern.finditer(masked, terminator + 1, body_close):
        paren = match.end() - 1
        close = match_delimiter(masked, paren, body_close)
        if close is not None:
            call_end = close + 1
        else:
            eol = masked.find("\n", match.start(), body_close)
            call_end = body_close if eol == -1 else eol
        while open_calls and open_calls[-1][0] <= match.start():
            open_calls.pop()
        op_id = f"op-{next(op_ids)}"
        enclosing = open_calls[-1][1] if open_calls else None
        open_calls.append((call_end, op_id))

        stmt_start = _statement_start(masked, terminator, match.start())
        target, target_type = _assignment_target(masked[stmt_start:match.start()])
        statement = None
        semi = masked.find(";", call_end, body_close)
        if semi != -1 and not masked[call_end:semi].strip():
            statement = " ".join(mask_source(source[stmt_start:semi + 1], strip_strings=False).split())
        fn.fhe_operations.append(OperationCall(
            id=op_id,
            name=f"{match.group(1)}.{match.group(2)}",
            full_call=source[match.start():call_end],
            line=index.line_of(match.start()),
            column=index.column_of(match.start()),
            target=target,
            target_type=target_type,
            statement=statement,
            enclosing=enclosing,
        ))

    for var in state_vars:
        usage = re.compile(r"(?<![\w$])" + re.escape(var.name) + r"(?![\w$])")
        for line_no in range(start_line, end_line + 1):
            if usage.search(masked_lines[line_no - 1]):
                fn.state_accesses.append(StateAccess(name=var.name, line=line_no))

    return fn


def _operation_pattern(namespaces: Optional[Sequence[str]]) -> Pattern[str]:
    if namespaces:
        prefix = "|".join(re.escape(ns) for ns in namespaces)
    else:
        prefix = r"[A-Z][\w$]*"
    return re.compile(r"(?<![\w$.])(" + prefix + r")\.(" + _IDENT + r")\s*\(")


def _statement_start(masked: str, body_open: int, pos: int) -> int:
    """Offset just past the ``;``, ``{`` or ``}`` that precedes *pos*."""
    return max(masked.rfind(ch, body_open, pos) for ch in ";{}") + 1


def _assignment_target(prefix: str) -> Tuple[Optional[str], Optional[str]]:
    """``(name, declared_type)`` when *prefix* ends in ``[type] name =``."""
    text = " ".join(prefix.split())
    match = _ASSIGNMENT_RE.search(text)
    if match is None:
        return None, None
    declared = match.group(1)
    if declared in DATA_LOCATIONS:
        declared = None
    return match.group(2), declared


def _first_keyword(text: str, keywords: Sequence[str]) -> Optional[str]:
    for word in re.findall(_IDENT, text):
        if word in keywords:
            return word
    return None


def _signature_modifiers(tail: str) -> List[str]:
    previous = None
    while previous != tail:
        previous = tail
        tail = _PARENS_RE.sub(" ", tail)
    return [w for w in re.findall(_IDENT, tail) if w not in _SIGNATURE_KEYWORDS]


def _parse_parameter(text: str) -> Parameter:
    tokens = [t for t in text.split() if t not in DATA_LOCATIONS]
    if len(tokens) >= 2:
        return Parameter(name=tokens[-1], type=" ".join(tokens[:-1]))
    return Parameter(name="", type=tokens[0] if tokens else "")


# ===================================================================
# State variables
# ===================================================================

def _parse_state_variable(text: str, var_id: str, line: int) -> Optional[StateVariable]:
    text = " ".join(text.split())

    if text.startswith("mapping"):
        paren = text.find("(")
        close = match_delimiter(text, paren) if paren != -1 else None
        if close is None:
            return None
        var_type = text[:close + 1]
        rest = text[close + 1:]
    else:
        match = _TYPE_RE.match(text)
        if match is None:
            return None
        var_type = match.group(0)
        rest = text[match.end():]

    tokens = rest.split("=", 1)[0].split()
    if not tokens:
        return None
    name, qualifiers = tokens[-1], tokens[:-1]
    if not re.fullmatch(_IDENT, name):
        return None
    if var_type == "address" and "payable" in qualifiers:
        var_type = "address payable"
        qualifiers = [q for q in qualifiers if q != "payable"]
    if any(q not in _STATE_QUALIFIERS for q in qualifiers):
        return None

    visibility = next(
        (q for q in qualifiers if q in ("public", "private", "internal")),
        DEFAULT_STATE_VISIBILITY,
    )
    mutability = next((q for q in qualifiers if q in _STATE_MUTABILITY), None)

    is_mapping = var_type.startswith("mapping")
    key_type = value_type = None
    if is_mapping:
        inner = var_type[var_type.find("(") + 1:-1]
        key, _, value = inner.partition("=>")
        key_type, value_type = key.strip(), value.strip()

    return StateVariable(
        id=var_id,
        name=name,
        type=var_type,
        visibility=visibility,
        is_mapping=is_mapping,
        line=line,
        mapping_key_type=key_type,
        mapping_value_type=value_type,
        mutability=mutability,
    )


# ===================================================================
# Declaration and imports
# ===================================================================

def _split_inherits(text: Optional[str]) -> List[str]:
    if not text:
        return []
    names: List[str] = []
    for part in split_top_level(text):
        match = re.match(_IDENT + r"(?:\." + _IDENT + r")*", part)
        if match:
            names.append(match.group(0))
    return names


def _parse_imports(source: str, masked: str, index: LineIndex) -> List[ImportRef]:
    code = mask_source(source, strip_strings=False)
    imports: List[ImportRef] = []

    for match in _IMPORT_KEYWORD_RE.finditer(masked):
        start = match.start()
        if not _starts_statement(masked, start):
            continue
        end = masked.find(";", start)
        if end == -1:
            continue
        statement = " ".join(code[start:end + 1].split())
        parsed = _parse_import_statement(statement)
        if parsed is None:
            logger.debug("Unrecognised import at line %d: %s", index.line_of(start), statement)
            continue
        path, items = parsed
        imports.append(ImportRef(
            id=f"import-{len(imports) + 1}",
            statement=statement,
            path=path,
            line=index.line_of(start),
            items=items,
        ))
    return imports


def _starts_statement(masked: str, pos: int) -> bool:
    if masked.count("{", 0, pos) != masked.count("}", 0, pos):
        return False
    before = masked[:pos].rstrip()
    return not before or before[-1] in ";}"


def _parse_import_statement(statement: str) -> Optional[Tuple[str, List[str]]]:
    named = _IMPORT_NAMED_RE.match(statement)
    if named:
        items = [item.strip() for item in named.group(1).split(",") if item.strip()]
        return named.group(3), items
    star = _IMPORT_STAR_RE.match(statement)
    if star:
        return star.group(3), [f"* as {star.group(1)}"]
    plain = _IMPORT_PLAIN_RE.match(statement)
    if plain:
        return plain.group(2), []
    return None

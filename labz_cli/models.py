"""Core data models produced by the contract parser and the code locator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class Parameter:
    name: str
    type: str


@dataclass
class ImportRef:
    id: str
    statement: str
    path: str
    line: int
    items: List[str] = field(default_factory=list)


@dataclass
class StateVariable:
    id: str
    name: str
    type: str
    visibility: str
    is_mapping: bool
    line: int
    mapping_key_type: Optional[str] = None
    mapping_value_type: Optional[str] = None
    mutability: Optional[str] = None


@dataclass
class OperationCall:
    """A ``Namespace.member(...)`` invocation found inside a function body.

    ``target`` and ``target_type`` describe the assignment the call is the
    right-hand side of (``euint32 x = FHE.add(...)``), when there is one.
    ``statement`` is the whole statement, comments removed, when the call is
    the last thing before its ``;``. ``enclosing`` is the id of the recorded
    call whose argument list contains this one.
    """
    id: str
    name: str
    full_call: str
    line: int
    column: int
    target: Optional[str] = None
    target_type: Optional[str] = None
    statement: Optional[str] = None
    enclosing: Optional[str] = None


@dataclass
class StateAccess:
    name: str
    line: int


@dataclass
class FunctionDef:
    id: str
    name: str
    visibility: str
    start_line: int
    end_line: int
    state_mutability: Optional[str] = None
    parameters: List[Parameter] = field(default_factory=list)
    return_type: Optional[str] = None
    modifiers: List[str] = field(default_factory=list)
    fhe_operations: List[OperationCall] = field(default_factory=list)
    state_accesses: List[StateAccess] = field(default_factory=list)


@dataclass
class ParsedContract:
    name: str
    inherits: List[str] = field(default_factory=list)
    imports: List[ImportRef] = field(default_factory=list)
    state_variables: List[StateVariable] = field(default_factory=list)
    functions: List[FunctionDef] = field(default_factory=list)
    constructor: Optional[FunctionDef] = None

    def function(self, name: str) -> Optional[FunctionDef]:
        for fn in self.functions:
            if fn.name == name:
                return fn
        return None


@dataclass(frozen=True)
class FunctionSpan:
    name: str
    start_line: int
    end_line: int


@dataclass(frozen=True)
class CodeRef:
    """Symbolic reference into a displayed source panel.

    Several fields may be set at once; the locator applies exactly one
    strategy in the order lines > block+call > method > fhe_op > pattern.
    """
    lines: Optional[Tuple[int, int]] = None
    method: Optional[str] = None
    fhe_op: Optional[str] = None
    pattern: Optional[str] = None
    block: Optional[str] = None
    call: Optional[str] = None


@dataclass(frozen=True)
class ResolvedCodeRef:
    lines: Tuple[int, int]
    method: Optional[str] = None


@dataclass(frozen=True)
class FheCall:
    name: str
    line: Optional[int] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class TutorialStep:
    """One walkthrough step highlighting lines in the test and contract panels."""
    id: str
    title: str
    test: Optional[CodeRef] = None
    contract: Optional[CodeRef] = None
    fhe_call: Optional[FheCall] = None

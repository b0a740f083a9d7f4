"""Block availability analysis.

Given a :class:`~labz_cli.project.ProjectState` and the id of the function
being edited, decide for every catalog block whether it may be added now and,
when it may not, why.

The algorithm builds a :class:`PresenceSnapshot` once per call, then per
block evaluates ``requires`` first and ``incompatible_with`` second.  Blocks
scoped to the current function see a snapshot whose function-body zone holds
only the selected function's body.  Unknown block ids in the project are
ignored.  The result is a fresh immutable value; two calls with equal inputs
return equal results.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Tuple

from .catalog import (
    CATEGORY_PREFIX,
    DEFAULT_CATALOG,
    OPERATION_CATEGORIES,
    AllOf,
    AnyOf,
    Block,
    BlockCatalog,
    ContextScope,
    HasBlock,
    HasCategory,
    ProducesEncrypted,
    Requirement,
    Zone,
)
from .project import ProjectBlock, ProjectFunction, ProjectState

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 5


@dataclass(frozen=True)
class PresenceSnapshot:
    """Which blocks, categories and encrypted producers are placed."""
    zones: Dict[Zone, FrozenSet[str]]
    block_ids: FrozenSet[str]
    categories: FrozenSet[str]
    produces_encrypted: bool

    def has_block(self, block_id: str, zone: Optional[Zone] = None) -> bool:
        if zone is None:
            return block_id in self.block_ids
        return block_id in self.zones.get(zone, frozenset())


@dataclass(frozen=True)
class BlockAvailability:
    available: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class Suggestion:
    block_id: str
    reason: str
    priority: int


@dataclass(frozen=True)
class AnalysisStats:
    total: int
    available: int
    suggested: int


@dataclass(frozen=True)
class AvailabilityAnalysis:
    blocks: Dict[str, BlockAvailability]
    suggested: Tuple[Suggestion, ...]
    stats: AnalysisStats

    def is_available(self, block_id: str) -> bool:
        entry = self.blocks.get(block_id)
        return entry is not None and entry.available


# ===================================================================
# Presence snapshots
# ===================================================================

def build_snapshot(
    state: ProjectState,
    catalog: BlockCatalog = DEFAULT_CATALOG,
    function: Optional[ProjectFunction] = None,
) -> PresenceSnapshot:
    """Snapshot the project.

    With *function* given, the function-body zone holds only that function's
    body and ``produces_encrypted`` looks at that body alone.
    """
    zoned: Dict[Zone, List[ProjectBlock]] = {
        Zone.IMPORTS: list(state.imports),
        Zone.STATE: list(state.state_variables),
        Zone.CONSTRUCTOR: list(state.constructor_body),
        Zone.MODIFIER: list(state.modifiers),
    }
    if function is None:
        zoned[Zone.FUNCTION_BODY] = [b for fn in state.functions for b in fn.body]
    else:
        zoned[Zone.FUNCTION_BODY] = list(function.body)

    zones: Dict[Zone, FrozenSet[str]] = {}
    categories = set()
    produces = False
    for zone, blocks in zoned.items():
        known = []
        for placed in blocks:
            block = catalog.get(placed.block_id)
            if block is None:
                continue
            known.append(block.id)
            categories.add(block.category)
            if block.produces_encrypted and (function is None or zone is Zone.FUNCTION_BODY):
                produces = True
        zones[zone] = frozenset(known)

    block_ids = frozenset().union(*zones.values())
    return PresenceSnapshot(
        zones=zones,
        block_ids=block_ids,
        categories=frozenset(categories),
        produces_encrypted=produces,
    )


# ===================================================================
# Requirement evaluation
# ===================================================================

def evaluate(req: Optional[Requirement], snapshot: PresenceSnapshot) -> bool:
    if req is None:
        return True
    if isinstance(req, AllOf):
        return all(evaluate(term, snapshot) for term in req.terms)
    if isinstance(req, AnyOf):
        return any(evaluate(term, snapshot) for term in req.terms)
    if isinstance(req, HasBlock):
        return snapshot.has_block(req.block_id, req.zone)
    if isinstance(req, HasCategory):
        return req.category in snapshot.categories
    if isinstance(req, ProducesEncrypted):
        return snapshot.produces_encrypted
    raise TypeError(f"Unknown requirement {req!r}")


def first_unsatisfied(req: Optional[Requirement], snapshot: PresenceSnapshot) -> Optional[Requirement]:
    """The first failing predicate of *req*, left to right.

    An unsatisfied :class:`AnyOf` is reported as a whole.
    """
    if req is None:
        return None
    if isinstance(req, AllOf):
        for term in req.terms:
            missing = first_unsatisfied(term, snapshot)
            if missing is not None:
                return missing
        return None
    return None if evaluate(req, snapshot) else req


def describe_requirement(req: Requirement, catalog: BlockCatalog = DEFAULT_CATALOG) -> str:
    return "Requires " + _phrase(req, catalog)


def _phrase(req: Requirement, catalog: BlockCatalog) -> str:
    if isinstance(req, HasBlock):
        block = catalog.get(req.block_id)
        name = block.name if block is not None else req.block_id
        return f"{name} in {req.zone.value}" if req.zone is not None else name
    if isinstance(req, HasCategory):
        return f"at least one {req.category} block"
    if isinstance(req, ProducesEncrypted):
        return "an encrypted value produced in this function"
    if isinstance(req, AllOf):
        return " and ".join(_phrase(term, catalog) for term in req.terms)
    if isinstance(req, AnyOf):
        return "one of: " + ", ".join(_phrase(term, catalog) for term in req.terms)
    return repr(req)


def conflicts(block: Block, snapshot: PresenceSnapshot,
              catalog: BlockCatalog = DEFAULT_CATALOG) -> List[str]:
    """Reasons for every ``incompatible_with`` entry present in *snapshot*."""
    reasons: List[str] = []
    for entry in block.incompatible_with:
        if entry.startswith(CATEGORY_PREFIX):
            category = entry[len(CATEGORY_PREFIX):]
            if category in snapshot.categories:
                reasons.append(f"Conflicts with existing {category} block")
            continue
        if not snapshot.has_block(entry):
            continue
        if entry == block.id:
            reasons.append("Already added")
            continue
        other = catalog.get(entry)
        reasons.append(f"Conflicts with {other.name if other is not None else entry}")
    return reasons


def evaluate_block(block: Block, snapshot: PresenceSnapshot,
                   catalog: BlockCatalog = DEFAULT_CATALOG,
                   has_functions: bool = True) -> BlockAvailability:
    missing = first_unsatisfied(block.requires, snapshot)
    if missing is not None:
        return BlockAvailability(False, describe_requirement(missing, catalog))
    found = conflicts(block, snapshot, catalog)
    if found:
        return BlockAvailability(False, found[0])
    if block.zone is Zone.FUNCTION_BODY and not has_functions:
        return BlockAvailability(False, "Create a function first")
    return BlockAvailability(True)


# ===================================================================
# Suggestions
# ===================================================================

def _suggest(
    block: Block,
    state: ProjectState,
    snapshot: PresenceSnapshot,
    function: Optional[ProjectFunction],
    catalog: BlockCatalog,
) -> Optional[Suggestion]:
    has_fhe = snapshot.has_block("import-fhe")

    if not state.imports and block.id == "import-fhe":
        return Suggestion(block.id, "Start with FHE import", 100)

    if (has_fhe and block.id == "import-config"
            and not snapshot.has_block("import-config-zama")):
        return Suggestion(block.id, "Add network config", 95)

    if has_fhe and block.category == "state" and not snapshot.has_block(block.id):
        count = len(state.state_variables)
        if count == 0:
            return Suggestion(block.id, "Define encrypted state", 80)
        return Suggestion(block.id, "Add more state variables", 70 - count)

    if function is None:
        return None

    body_categories = set()
    for placed in function.body:
        known = catalog.get(placed.block_id)
        if known is not None:
            body_categories.add(known.category)
    has_conversion = "input-conversion" in body_categories
    has_operations = bool(body_categories.intersection(OPERATION_CATEGORIES))
    has_acl = "acl" in body_categories

    if not function.body and block.category == "input-conversion":
        return Suggestion(block.id, "Convert external input first", 75)
    if has_conversion and not has_operations and block.category in ("arithmetic", "comparison"):
        return Suggestion(block.id, "Perform FHE operation", 65)
    if has_operations and not has_acl and block.category == "acl":
        return Suggestion(block.id, "Set access permissions", 55)
    return None


# ===================================================================
# Public entry points
# ===================================================================

def analyze(
    state: ProjectState,
    selected_function_id: Optional[str] = None,
    catalog: BlockCatalog = DEFAULT_CATALOG,
) -> AvailabilityAnalysis:
    """Compute availability for every block in *catalog*.

    ``current-function`` blocks are checked against the selected function's
    body; with no selection, or a selection that matches no function, they
    fall back to the project-wide snapshot.
    """
    global_snapshot = build_snapshot(state, catalog)
    selected = state.function(selected_function_id)
    if selected_function_id is not None and selected is None:
        logger.debug("Selected function '%s' not in project; using global scope", selected_function_id)
    scoped_snapshot = build_snapshot(state, catalog, selected) if selected is not None else global_snapshot

    flow_function = selected
    if flow_function is None and state.functions:
        flow_function = state.functions[-1]

    blocks: Dict[str, BlockAvailability] = {}
    suggestions: List[Suggestion] = []
    for block in catalog:
        if block.context_scope is ContextScope.CURRENT_FUNCTION:
            snapshot = scoped_snapshot
        else:
            snapshot = global_snapshot
        availability = evaluate_block(block, snapshot, catalog, bool(state.functions))
        blocks[block.id] = availability
        if availability.available:
            suggestion = _suggest(block, state, global_snapshot, flow_function, catalog)
            if suggestion is not None:
                suggestions.append(suggestion)

    suggestions.sort(key=lambda s: s.priority, reverse=True)
    available = sum(1 for entry in blocks.values() if entry.available)
    return AvailabilityAnalysis(
        blocks=blocks,
        suggested=tuple(suggestions[:MAX_SUGGESTIONS]),
        stats=AnalysisStats(total=len(blocks), available=available, suggested=len(suggestions)),
    )


def is_block_available(
    block_id: str,
    state: ProjectState,
    function_id: Optional[str] = None,
    catalog: BlockCatalog = DEFAULT_CATALOG,
) -> Optional[BlockAvailability]:
    """Availability of a single block, or ``None`` if *block_id* is not in the catalog."""
    block = catalog.get(block_id)
    if block is None:
        return None
    selected = state.function(function_id)
    if block.context_scope is ContextScope.CURRENT_FUNCTION and selected is not None:
        snapshot = build_snapshot(state, catalog, selected)
    else:
        snapshot = build_snapshot(state, catalog)
    return evaluate_block(block, snapshot, catalog, bool(state.functions))

"""Drop and project validation.

:func:`validate_drop` answers "may block X be inserted at position P of zone
Z?" with errors (the drop is refused), warnings (the drop is allowed but
suspicious) and auto-add suggestions.  :func:`validate_project` checks a whole
project for problems that no single drop reveals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence

from .analyzer import PresenceSnapshot, build_snapshot, conflicts, describe_requirement, evaluate
from .catalog import (
    DEFAULT_CATALOG,
    OPERATION_CATEGORIES,
    AllOf,
    Block,
    BlockCatalog,
    ContextScope,
    HasBlock,
    Requirement,
    Zone,
    requirement_leaves,
)
from .project import CONFIG_TYPES, ProjectBlock, ProjectState, StateConfig

logger = logging.getLogger(__name__)

_ORDERED_ZONES = (Zone.FUNCTION_BODY, Zone.CONSTRUCTOR)


@dataclass
class DropValidation:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    auto_add: List[str] = field(default_factory=list)
    position: Optional[int] = None


@dataclass
class ProjectValidation:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def validate_drop(
    block_id: str,
    zone: Zone,
    position: Optional[int],
    state: ProjectState,
    function_id: Optional[str] = None,
    catalog: BlockCatalog = DEFAULT_CATALOG,
) -> DropValidation:
    """Validate inserting catalog block *block_id* at *position* of *zone*.

    *position* is an insertion index into the target sequence (``None``
    appends).  Function-body drops need *function_id* to name an existing
    function.
    """
    block = catalog.get(block_id)
    if block is None:
        return DropValidation(False, errors=[f"Unknown block '{block_id}'"])

    if block.zone is not zone:
        return DropValidation(False, errors=[f"{block.name} cannot be placed in {zone.value}"])

    function = None
    target: Sequence[ProjectBlock] = ()
    if zone is Zone.FUNCTION_BODY:
        function = state.function(function_id)
        if function is None:
            message = "Create a function first" if not state.functions else f"Unknown function '{function_id}'"
            return DropValidation(False, errors=[message])
        target = function.body
    elif zone is Zone.CONSTRUCTOR:
        target = state.constructor_body
    elif zone is Zone.IMPORTS:
        target = state.imports
    elif zone is Zone.STATE:
        target = state.state_variables

    insert_at = len(target) if position is None else max(0, min(position, len(target)))
    result = DropValidation(True, position=insert_at)

    scoped = function if block.context_scope is ContextScope.CURRENT_FUNCTION else None
    snapshot = build_snapshot(state, catalog, scoped)

    for term in _unsatisfied_terms(block.requires, snapshot):
        if isinstance(term, HasBlock) and term.block_id in catalog:
            dependency = catalog.get(term.block_id)
            _append_unique(result.auto_add, term.block_id)
            result.warnings.append(f"Will auto-add: {dependency.name}")
        else:
            result.errors.append(describe_requirement(term, catalog))

    result.errors.extend(conflicts(block, snapshot, catalog))

    if zone in _ORDERED_ZONES:
        result.errors.extend(_ordering_errors(block, target, insert_at, catalog))

    type_warning = _type_warning(block, state, catalog)
    if type_warning:
        result.warnings.append(type_warning)

    for follow_up in block.auto_adds:
        if not snapshot.has_block(follow_up):
            _append_unique(result.auto_add, follow_up)

    result.valid = not result.errors
    if not result.valid:
        logger.debug("Drop of %s into %s rejected: %s", block_id, zone.value, "; ".join(result.errors))
    return result


def validate_project(state: ProjectState, catalog: BlockCatalog = DEFAULT_CATALOG) -> ProjectValidation:
    result = ProjectValidation(True)
    has_fhe = any(b.block_id == "import-fhe" for b in state.imports)

    bodies = [b for fn in state.functions for b in fn.body] + list(state.constructor_body)
    if not has_fhe and any(_needs_fhe_import(catalog.get(b.block_id)) for b in bodies):
        result.errors.append("FHE operations require the FHE library import")

    for placed in state.all_blocks():
        if placed.block_id not in catalog and not placed.block_id.startswith("custom-"):
            result.warnings.append(f"Unknown block '{placed.block_id}' ({placed.id}) is ignored")
        if not isinstance(placed.config, CONFIG_TYPES[placed.zone]):
            result.errors.append(
                f"Block {placed.id} has a {type(placed.config).__name__} config in zone {placed.zone.value}"
            )

    for fn in state.functions:
        categories = {_category(b, catalog) for b in fn.body}
        if categories.intersection(OPERATION_CATEGORIES) and "acl" not in categories:
            result.warnings.append(
                f"Function {fn.name}: consider adding ACL operations after FHE operations"
            )

    result.valid = not result.errors
    return result


def _unsatisfied_terms(req: Optional[Requirement], snapshot: PresenceSnapshot) -> Iterator[Requirement]:
    if req is None:
        return
    if isinstance(req, AllOf):
        for term in req.terms:
            yield from _unsatisfied_terms(term, snapshot)
    elif not evaluate(req, snapshot):
        yield req


def _ordering_errors(block: Block, target: Sequence[ProjectBlock], insert_at: int,
                     catalog: BlockCatalog) -> List[str]:
    categories = [_category(b, catalog) for b in target]
    errors = []
    for category in block.must_come_after:
        if category in categories[insert_at:]:
            errors.append(f"{block.name} must come after {category} blocks")
    for category in block.must_come_before:
        if category in categories[:insert_at]:
            errors.append(f"{block.name} must come before {category} blocks")
    return errors


def _type_warning(block: Block, state: ProjectState, catalog: BlockCatalog) -> Optional[str]:
    if not block.input_types:
        return None
    available = _declared_types(state, catalog)
    if not available:
        return None
    for pattern in block.input_types:
        if all(_type_matches(t, available) for t in pattern.split("+")):
            return None
    return f"{block.name} may need compatible type: {block.input_types[0].replace('+', ' + ')}"


def _declared_types(state: ProjectState, catalog: BlockCatalog) -> List[str]:
    types = []
    for placed in state.state_variables:
        config = placed.config
        if isinstance(config, StateConfig) and config.value_type:
            types.append(config.value_type)
            continue
        block = catalog.get(placed.block_id)
        if block is not None and block.output_type:
            types.append(block.output_type)
        elif isinstance(config, StateConfig) and config.type:
            types.append(config.type)
    return types


def _type_matches(required: str, available: Sequence[str]) -> bool:
    if required.endswith("*"):
        prefix = required[:-1]
        return any(t.startswith(prefix) for t in available)
    return required in available


def _needs_fhe_import(block: Optional[Block]) -> bool:
    if block is None:
        return False
    return any(isinstance(leaf, HasBlock) and leaf.block_id == "import-fhe"
               for leaf in requirement_leaves(block.requires))


def _category(placed: ProjectBlock, catalog: BlockCatalog) -> Optional[str]:
    block = catalog.get(placed.block_id)
    return block.category if block is not None else None


def _append_unique(items: List[str], value: str) -> None:
    if value not in items:
        items.append(value)

"""Versioned project state and pure transition functions.

A :class:`ProjectState` is an immutable value.  Every reducer in this module
returns a *new* state with ``revision`` bumped by one; nothing is mutated in
place, so analyzers and locators can memoize on state equality.  Sibling
``order`` values are renumbered ``0..n-1`` after every insertion, removal or
reorder.

Block configuration is a tagged variant per zone (:class:`ImportConfig`,
:class:`StateConfig`, :class:`StatementConfig`) selected through
:data:`CONFIG_TYPES`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Type, Union

from .catalog import DEFAULT_CATALOG, ENCRYPTED_TYPES, PLACEHOLDER_RE, Block, BlockCatalog, Zone
from .models import OperationCall, Parameter, ParsedContract
from .scanner import split_top_level

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_NAME = "MyContract"
DEFAULT_VERSION = "1.0.0"

CUSTOM_IMPORT = "custom-import"
CUSTOM_STATE = "custom-state"
CUSTOM_STATEMENT = "custom-statement"

# Params filled by the statement's assignment target, not by call arguments.
_TARGET_SLOTS = ("target", "result", "output")
_OUTPUT_PARAMS = set(_TARGET_SLOTS) | {"outputType"}


# ===================================================================
# Block configs
# ===================================================================

@dataclass(frozen=True)
class ImportConfig:
    types: Optional[str] = None
    path: Optional[str] = None
    statement: Optional[str] = None

    def template_values(self) -> Dict[str, str]:
        return {"types": self.types} if self.types else {}


@dataclass(frozen=True)
class StateConfig:
    name: str = ""
    type: Optional[str] = None
    visibility: Optional[str] = None
    value_type: Optional[str] = None

    def template_values(self) -> Dict[str, str]:
        values = {"name": self.name} if self.name else {}
        if self.value_type:
            values["valueType"] = self.value_type
        return values


@dataclass(frozen=True)
class StatementConfig:
    values: Tuple[Tuple[str, str], ...] = ()
    full_call: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None

    def template_values(self) -> Dict[str, str]:
        return dict(self.values)


BlockConfig = Union[ImportConfig, StateConfig, StatementConfig]

CONFIG_TYPES: Dict[Zone, Type[Any]] = {
    Zone.IMPORTS: ImportConfig,
    Zone.STATE: StateConfig,
    Zone.CONSTRUCTOR: StatementConfig,
    Zone.FUNCTION_BODY: StatementConfig,
    Zone.MODIFIER: StatementConfig,
}

_CONFIG_KINDS: Dict[str, Type[Any]] = {
    "import": ImportConfig,
    "state": StateConfig,
    "statement": StatementConfig,
}


def default_config(zone: Zone) -> BlockConfig:
    return CONFIG_TYPES[zone]()


# ===================================================================
# State values
# ===================================================================

@dataclass(frozen=True)
class ProjectBlock:
    id: str
    block_id: str
    config: BlockConfig
    order: int
    zone: Zone


@dataclass(frozen=True)
class ProjectFunction:
    id: str
    name: str
    visibility: str = "external"
    state_mutability: Optional[str] = None
    params: Tuple[Parameter, ...] = ()
    return_type: Optional[str] = None
    body: Tuple[ProjectBlock, ...] = ()
    start_line: Optional[int] = None
    end_line: Optional[int] = None
    order: int = 0


@dataclass(frozen=True)
class ProjectState:
    name: str = DEFAULT_PROJECT_NAME
    version: str = DEFAULT_VERSION
    inherits: Tuple[str, ...] = ()
    imports: Tuple[ProjectBlock, ...] = ()
    state_variables: Tuple[ProjectBlock, ...] = ()
    functions: Tuple[ProjectFunction, ...] = ()
    constructor_body: Tuple[ProjectBlock, ...] = ()
    modifiers: Tuple[ProjectBlock, ...] = ()
    revision: int = 0

    def function(self, function_id: Optional[str]) -> Optional[ProjectFunction]:
        for fn in self.functions:
            if fn.id == function_id:
                return fn
        return None

    def all_blocks(self) -> List[ProjectBlock]:
        blocks = list(self.imports) + list(self.state_variables) + list(self.constructor_body)
        for fn in self.functions:
            blocks.extend(fn.body)
        blocks.extend(self.modifiers)
        return blocks


def new_block(
    block_id: str,
    config: Optional[BlockConfig] = None,
    catalog: BlockCatalog = DEFAULT_CATALOG,
    zone: Optional[Zone] = None,
) -> ProjectBlock:
    """Build an unplaced instance of catalog block *block_id*.

    The instance id is left empty; the reducer that places it assigns one.
    """
    if zone is None:
        block = catalog.get(block_id)
        zone = block.zone if block is not None else Zone.FUNCTION_BODY
    return ProjectBlock(
        id="",
        block_id=block_id,
        config=config if config is not None else default_config(zone),
        order=0,
        zone=zone,
    )


def empty_project(name: str = DEFAULT_PROJECT_NAME) -> ProjectState:
    """A new project with the FHE library and Sepolia config already imported."""
    return ProjectState(
        name=name,
        inherits=("SepoliaConfig",),
        imports=(
            ProjectBlock("import-1", "import-fhe", ImportConfig(types="euint32, externalEuint32"),
                         0, Zone.IMPORTS),
            ProjectBlock("import-2", "import-config", ImportConfig(), 1, Zone.IMPORTS),
        ),
    )


# ===================================================================
# Sequence helpers
# ===================================================================

def _renumber(blocks: Sequence[ProjectBlock]) -> Tuple[ProjectBlock, ...]:
    return tuple(b if b.order == i else replace(b, order=i) for i, b in enumerate(blocks))


def _insert(blocks: Sequence[ProjectBlock], block: ProjectBlock,
            position: Optional[int] = None) -> Tuple[ProjectBlock, ...]:
    items = list(blocks)
    if position is None:
        items.append(block)
    else:
        items.insert(max(0, min(position, len(items))), block)
    return _renumber(items)


def _remove(blocks: Sequence[ProjectBlock], instance_id: str) -> Optional[Tuple[ProjectBlock, ...]]:
    kept = [b for b in blocks if b.id != instance_id]
    if len(kept) == len(blocks):
        return None
    return _renumber(kept)


def _update(blocks: Sequence[ProjectBlock], instance_id: str,
            changes: Dict[str, Any]) -> Optional[Tuple[ProjectBlock, ...]]:
    updated = []
    found = False
    for b in blocks:
        if b.id == instance_id:
            b = replace(b, config=replace(b.config, **changes))
            found = True
        updated.append(b)
    return tuple(updated) if found else None


def _reorder(blocks: Sequence[ProjectBlock], from_index: int, to_index: int) -> Tuple[ProjectBlock, ...]:
    items = list(blocks)
    if not (0 <= from_index < len(items) and 0 <= to_index < len(items)):
        raise IndexError(f"reorder {from_index} -> {to_index} out of range for {len(items)} blocks")
    moved = items.pop(from_index)
    items.insert(to_index, moved)
    return _renumber(items)


def _next_id(state: ProjectState, prefix: str, taken: Iterable[str]) -> str:
    """``prefix-N`` numbered past both the revision and every ``prefix-*`` id in *taken*."""
    highest = state.revision
    for existing in taken:
        head, _, number = existing.rpartition("-")
        if head == prefix and number.isdigit():
            highest = max(highest, int(number))
    return f"{prefix}-{highest + 1}"


def _place(state: ProjectState, block: ProjectBlock, zone: Zone) -> ProjectBlock:
    block_id = block.id or _next_id(state, "block", (b.id for b in state.all_blocks()))
    return replace(block, id=block_id, zone=zone)


def _bump(state: ProjectState, **changes: Any) -> ProjectState:
    return replace(state, revision=state.revision + 1, **changes)


# ===================================================================
# Reducers
# ===================================================================

def set_name(state: ProjectState, name: str) -> ProjectState:
    return _bump(state, name=name)


def add_import(state: ProjectState, block: ProjectBlock, position: Optional[int] = None) -> ProjectState:
    placed = _place(state, block, Zone.IMPORTS)
    return _bump(state, imports=_insert(state.imports, placed, position))


def remove_import(state: ProjectState, instance_id: str) -> ProjectState:
    imports = _remove(state.imports, instance_id)
    return state if imports is None else _bump(state, imports=imports)


def update_import(state: ProjectState, instance_id: str, **changes: Any) -> ProjectState:
    imports = _update(state.imports, instance_id, changes)
    return state if imports is None else _bump(state, imports=imports)


def reorder_imports(state: ProjectState, from_index: int, to_index: int) -> ProjectState:
    return _bump(state, imports=_reorder(state.imports, from_index, to_index))


def add_state_variable(state: ProjectState, block: ProjectBlock,
                       position: Optional[int] = None) -> ProjectState:
    placed = _place(state, block, Zone.STATE)
    return _bump(state, state_variables=_insert(state.state_variables, placed, position))


def remove_state_variable(state: ProjectState, instance_id: str) -> ProjectState:
    variables = _remove(state.state_variables, instance_id)
    return state if variables is None else _bump(state, state_variables=variables)


def update_state_variable(state: ProjectState, instance_id: str, **changes: Any) -> ProjectState:
    variables = _update(state.state_variables, instance_id, changes)
    return state if variables is None else _bump(state, state_variables=variables)


def reorder_state_variables(state: ProjectState, from_index: int, to_index: int) -> ProjectState:
    return _bump(state, state_variables=_reorder(state.state_variables, from_index, to_index))


def add_function(state: ProjectState, function: ProjectFunction) -> ProjectState:
    function = replace(
        function,
        id=function.id or _next_id(state, "func", (fn.id for fn in state.functions)),
        order=len(state.functions),
        body=_renumber(function.body),
    )
    return _bump(state, functions=state.functions + (function,))


def remove_function(state: ProjectState, function_id: str) -> ProjectState:
    kept = [fn for fn in state.functions if fn.id != function_id]
    if len(kept) == len(state.functions):
        return state
    functions = tuple(fn if fn.order == i else replace(fn, order=i) for i, fn in enumerate(kept))
    return _bump(state, functions=functions)


def update_function(state: ProjectState, function_id: str, **changes: Any) -> ProjectState:
    """Change signature fields of a function (``id``, ``body`` and ``order`` are fixed)."""
    for key in ("id", "body", "order"):
        if key in changes:
            raise ValueError(f"update_function cannot change '{key}'")
    return _map_function(state, function_id, lambda fn: replace(fn, **changes))


def add_to_function_body(state: ProjectState, function_id: str, block: ProjectBlock,
                         position: Optional[int] = None) -> ProjectState:
    placed = _place(state, block, Zone.FUNCTION_BODY)
    return _map_function(
        state, function_id, lambda fn: replace(fn, body=_insert(fn.body, placed, position))
    )


def remove_from_function_body(state: ProjectState, function_id: str, instance_id: str) -> ProjectState:
    fn = state.function(function_id)
    if fn is None:
        return state
    body = _remove(fn.body, instance_id)
    if body is None:
        return state
    return _map_function(state, function_id, lambda f: replace(f, body=body))


def update_function_body_block(state: ProjectState, function_id: str, instance_id: str,
                               **changes: Any) -> ProjectState:
    fn = state.function(function_id)
    if fn is None:
        return state
    body = _update(fn.body, instance_id, changes)
    if body is None:
        return state
    return _map_function(state, function_id, lambda f: replace(f, body=body))


def reorder_function_body(state: ProjectState, function_id: str,
                          from_index: int, to_index: int) -> ProjectState:
    return _map_function(
        state, function_id, lambda fn: replace(fn, body=_reorder(fn.body, from_index, to_index))
    )


def add_to_constructor_body(state: ProjectState, block: ProjectBlock,
                            position: Optional[int] = None) -> ProjectState:
    placed = _place(state, block, Zone.CONSTRUCTOR)
    return _bump(state, constructor_body=_insert(state.constructor_body, placed, position))


def remove_from_constructor_body(state: ProjectState, instance_id: str) -> ProjectState:
    body = _remove(state.constructor_body, instance_id)
    return state if body is None else _bump(state, constructor_body=body)


def _map_function(state: ProjectState, function_id: str, change: Any) -> ProjectState:
    if state.function(function_id) is None:
        logger.debug("No function '%s' in project '%s'", function_id, state.name)
        return state
    functions = tuple(change(fn) if fn.id == function_id else fn for fn in state.functions)
    return _bump(state, functions=functions)


# ===================================================================
# Import from parsed source
# ===================================================================

def project_from_contract(parsed: ParsedContract, catalog: BlockCatalog = DEFAULT_CATALOG) -> ProjectState:
    """Materialize a parsed contract into a project state.

    Imports, state declarations and operation calls are matched to catalog
    blocks; anything without a catalog counterpart becomes a ``custom-*``
    block that the analyzer ignores and the generator renders literally.
    """
    imports = tuple(
        ProjectBlock(
            id=imp.id,
            block_id=_import_block_id(imp.path),
            config=ImportConfig(
                types=_import_types(imp.items) if imp.path.endswith("/FHE.sol") else None,
                path=imp.path,
                statement=imp.statement,
            ),
            order=i,
            zone=Zone.IMPORTS,
        )
        for i, imp in enumerate(parsed.imports)
    )

    state_variables = []
    for i, var in enumerate(parsed.state_variables):
        if var.is_mapping:
            block_id = "state-mapping" if var.mapping_value_type in ENCRYPTED_TYPES else CUSTOM_STATE
        else:
            block_id = f"state-{var.type}" if f"state-{var.type}" in catalog else CUSTOM_STATE
        state_variables.append(ProjectBlock(
            id=var.id,
            block_id=block_id,
            config=StateConfig(
                name=var.name,
                type=var.type,
                visibility=var.visibility,
                value_type=var.mapping_value_type,
            ),
            order=i,
            zone=Zone.STATE,
        ))

    functions = []
    for i, fn in enumerate(parsed.functions):
        functions.append(ProjectFunction(
            id=fn.id,
            name=fn.name,
            visibility=fn.visibility,
            state_mutability=fn.state_mutability,
            params=tuple(fn.parameters),
            return_type=fn.return_type,
            body=_operation_blocks(fn.fhe_operations, Zone.FUNCTION_BODY, catalog),
            start_line=fn.start_line,
            end_line=fn.end_line,
            order=i,
        ))

    constructor_body: Tuple[ProjectBlock, ...] = ()
    if parsed.constructor is not None:
        constructor_body = _operation_blocks(parsed.constructor.fhe_operations, Zone.CONSTRUCTOR, catalog)

    return ProjectState(
        name=parsed.name,
        inherits=tuple(parsed.inherits),
        imports=imports,
        state_variables=tuple(state_variables),
        functions=tuple(functions),
        constructor_body=constructor_body,
    )


def _import_block_id(path: str) -> str:
    if path.endswith("/FHE.sol"):
        return "import-fhe"
    if path.endswith("/ZamaConfig.sol"):
        return "import-config-zama"
    if path.endswith("/Config.sol"):
        return "import-config"
    return CUSTOM_IMPORT


def _import_types(items: Sequence[str]) -> Optional[str]:
    types = [item for item in items if item != "FHE"]
    return ", ".join(types) if types else None


def _operation_blocks(operations: Sequence[OperationCall], zone: Zone, catalog: BlockCatalog) -> Tuple[ProjectBlock, ...]:
    """One block per top-level call; nested calls stay inside their caller's arguments.

    A call whose statement the matching catalog template cannot reproduce
    (missing target, different declaration, unfilled slots) is kept as a
    custom statement with its literal source text.
    """
    blocks = []
    for op in operations:
        if op.enclosing is not None:
            continue
        args = _call_arguments(op.full_call)
        candidates = [b for b in catalog.by_operation(op.name) if b.zone is zone]
        block: Optional[Block] = None
        values: Tuple[Tuple[str, str], ...] = ()
        if candidates:
            block = candidates[0]
            inputs = [p.id for p in block.params if p.id not in _OUTPUT_PARAMS]
            values = _target_values(op, [p.id for p in block.params]) + tuple(zip(inputs, args))
        elif zone is Zone.CONSTRUCTOR and op.name.startswith("FHE.as") and "ctor-initEncrypted" in catalog:
            block = catalog.get("ctor-initEncrypted")
            values = _target_values(op, ["target"]) + (("conversion", op.name.split(".", 1)[1]),)
            if args:
                values += (("value", args[0]),)

        if block is not None and _reproduces(block, op, values):
            config = StatementConfig(values=values, full_call=op.full_call, line=op.line, column=op.column)
            block_id = block.id
        else:
            config = StatementConfig(full_call=op.statement or op.full_call, line=op.line, column=op.column)
            block_id = CUSTOM_STATEMENT
        blocks.append(ProjectBlock(
            id=op.id,
            block_id=block_id,
            config=config,
            order=len(blocks),
            zone=zone,
        ))
    return tuple(blocks)


def _reproduces(block: Block, op: OperationCall, values: Sequence[Tuple[str, str]]) -> bool:
    """Whether *block*'s template, filled with *values*, renders the statement *op* came from."""
    template = block.template
    slot = next((s for s in _TARGET_SLOTS if "{{" + s + "}}" in template), None)
    if slot is None:
        if op.target is not None:
            return False
    else:
        if op.target is None:
            return False
        declared = template[:template.index("{{" + slot + "}}")].strip()
        if declared == "{{outputType}}":
            if op.target_type is None:
                return False
        elif (declared or None) != op.target_type:
            return False
    filled = {key for key, _ in values} | {p.id for p in block.params if p.default is not None}
    return set(PLACEHOLDER_RE.findall(template)) <= filled


def _target_values(op: OperationCall, param_ids: Sequence[str]) -> Tuple[Tuple[str, str], ...]:
    """Template values for the assignment a call feeds, if the block has slots for it."""
    values: List[Tuple[str, str]] = []
    if op.target_type and "outputType" in param_ids:
        values.append(("outputType", op.target_type))
    if op.target:
        slot = next((p for p in _TARGET_SLOTS if p in param_ids), None)
        if slot is not None:
            values.append((slot, op.target))
    return tuple(values)


def _call_arguments(full_call: str) -> List[str]:
    start = full_call.find("(")
    end = full_call.rfind(")")
    if start == -1 or end <= start:
        return []
    return split_top_level(full_call[start + 1:end])


# ===================================================================
# Serialization
# ===================================================================

def project_to_dict(state: ProjectState) -> Dict[str, Any]:
    """JSON-ready representation of *state*."""
    return {
        "name": state.name,
        "version": state.version,
        "revision": state.revision,
        "inherits": list(state.inherits),
        "imports": [_block_to_dict(b) for b in state.imports],
        "state_variables": [_block_to_dict(b) for b in state.state_variables],
        "constructor_body": [_block_to_dict(b) for b in state.constructor_body],
        "modifiers": [_block_to_dict(b) for b in state.modifiers],
        "functions": [
            {
                "id": fn.id,
                "name": fn.name,
                "visibility": fn.visibility,
                "state_mutability": fn.state_mutability,
                "params": [{"name": p.name, "type": p.type} for p in fn.params],
                "return_type": fn.return_type,
                "start_line": fn.start_line,
                "end_line": fn.end_line,
                "order": fn.order,
                "body": [_block_to_dict(b) for b in fn.body],
            }
            for fn in state.functions
        ],
    }


def project_from_dict(data: Dict[str, Any]) -> ProjectState:
    """Inverse of :func:`project_to_dict`.

    Raises:
        ValueError: if *data* is not a project mapping or names an unknown
            zone or config kind.
    """
    if not isinstance(data, dict) or "name" not in data:
        raise ValueError("Project data must be a mapping with a 'name' key")

    functions = tuple(
        ProjectFunction(
            id=fn["id"],
            name=fn["name"],
            visibility=fn.get("visibility", "external"),
            state_mutability=fn.get("state_mutability"),
            params=tuple(Parameter(name=p.get("name", ""), type=p.get("type", ""))
                         for p in fn.get("params", [])),
            return_type=fn.get("return_type"),
            body=tuple(_block_from_dict(b) for b in fn.get("body", [])),
            start_line=fn.get("start_line"),
            end_line=fn.get("end_line"),
            order=fn.get("order", i),
        )
        for i, fn in enumerate(data.get("functions", []))
    )
    return ProjectState(
        name=data["name"],
        version=data.get("version", DEFAULT_VERSION),
        revision=data.get("revision", 0),
        inherits=tuple(data.get("inherits", [])),
        imports=tuple(_block_from_dict(b) for b in data.get("imports", [])),
        state_variables=tuple(_block_from_dict(b) for b in data.get("state_variables", [])),
        constructor_body=tuple(_block_from_dict(b) for b in data.get("constructor_body", [])),
        modifiers=tuple(_block_from_dict(b) for b in data.get("modifiers", [])),
        functions=functions,
    )


def _block_to_dict(block: ProjectBlock) -> Dict[str, Any]:
    config: Dict[str, Any] = {}
    for f in fields(block.config):
        value = getattr(block.config, f.name)
        if f.name == "values":
            value = dict(value)
        if value is not None and value != {}:
            config[f.name] = value
    kind = next(k for k, cls in _CONFIG_KINDS.items() if isinstance(block.config, cls))
    config["kind"] = kind
    return {
        "id": block.id,
        "block_id": block.block_id,
        "zone": block.zone.value,
        "order": block.order,
        "config": config,
    }


def _block_from_dict(data: Dict[str, Any]) -> ProjectBlock:
    try:
        zone = Zone(data["zone"])
    except (KeyError, ValueError) as exc:
        raise ValueError(f"Invalid zone in block {data.get('id')!r}") from exc

    raw = dict(data.get("config") or {})
    kind = raw.pop("kind", None)
    config_cls = _CONFIG_KINDS.get(kind) if kind else CONFIG_TYPES[zone]
    if config_cls is None:
        raise ValueError(f"Unknown config kind {kind!r} in block {data.get('id')!r}")
    if "values" in raw:
        raw["values"] = tuple((str(k), str(v)) for k, v in raw["values"].items())
    allowed = {f.name for f in fields(config_cls)}
    config = config_cls(**{k: v for k, v in raw.items() if k in allowed})

    return ProjectBlock(
        id=data.get("id", ""),
        block_id=data["block_id"],
        config=config,
        order=data.get("order", 0),
        zone=zone,
    )

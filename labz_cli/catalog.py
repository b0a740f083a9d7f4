"""Block catalog: the static table of composable FHEVM contract blocks.

Each :class:`Block` describes one injectable snippet: the zone it lives in,
its template, and its dependency edges.  ``requires`` is a small boolean
expression tree (:class:`HasBlock`, :class:`HasCategory`,
:class:`ProducesEncrypted`, :class:`AllOf`, :class:`AnyOf`) evaluated by
:mod:`labz_cli.analyzer` against a presence snapshot of the project.

The table is validated once when this module is imported.  A duplicate id,
a reference to an unknown block or category, or a ``requires`` cycle raises
:class:`CatalogIntegrityError` naming the offending block ids.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple, Union

logger = logging.getLogger(__name__)

PRODUCES_ENCRYPTED = "produces-encrypted-value"
CATEGORY_PREFIX = "category:"
PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")

ENCRYPTED_TYPES = (
    "ebool", "euint8", "euint16", "euint32", "euint64", "euint128", "euint256", "eaddress",
)


class Zone(str, Enum):
    IMPORTS = "imports"
    STATE = "state"
    CONSTRUCTOR = "constructor"
    FUNCTION_BODY = "function-body"
    MODIFIER = "modifier-body"


class ContextScope(str, Enum):
    GLOBAL = "global"
    CURRENT_FUNCTION = "current-function"


class CatalogIntegrityError(ValueError):
    """Raised when the block table is internally inconsistent."""

    def __init__(self, message: str, block_ids: Sequence[str]) -> None:
        self.block_ids = tuple(block_ids)
        super().__init__(f"{message}: {', '.join(self.block_ids)}")


# ===================================================================
# Requirement expressions
# ===================================================================

@dataclass(frozen=True)
class HasBlock:
    """Block *block_id* is placed (in *zone*, or anywhere when ``None``)."""
    block_id: str
    zone: Optional[Zone] = None


@dataclass(frozen=True)
class HasCategory:
    """At least one block of *category* is placed."""
    category: str


@dataclass(frozen=True)
class ProducesEncrypted:
    """A block tagged ``produces-encrypted-value`` is placed."""


@dataclass(frozen=True)
class AllOf:
    terms: Tuple["Requirement", ...]


@dataclass(frozen=True)
class AnyOf:
    terms: Tuple["Requirement", ...]


Requirement = Union[HasBlock, HasCategory, ProducesEncrypted, AllOf, AnyOf]


def requirement_leaves(req: Optional[Requirement]) -> Iterator[Requirement]:
    """Yield the atomic predicates of *req* in declaration order."""
    if req is None:
        return
    if isinstance(req, (AllOf, AnyOf)):
        for term in req.terms:
            yield from requirement_leaves(term)
    else:
        yield req


# ===================================================================
# Block definitions
# ===================================================================

@dataclass(frozen=True)
class BlockParam:
    id: str
    label: str
    kind: str = "string"  # string | variable | address | type-select
    default: Optional[str] = None
    options: Tuple[str, ...] = ()
    variable_type: Optional[str] = None
    required: bool = False


@dataclass(frozen=True)
class Block:
    id: str
    name: str
    description: str
    category: str
    zone: Zone
    template: str
    params: Tuple[BlockParam, ...] = ()
    requires: Optional[Requirement] = None
    incompatible_with: Tuple[str, ...] = ()
    context_scope: ContextScope = ContextScope.GLOBAL
    tags: Tuple[str, ...] = ()
    operation: Optional[str] = None
    output_type: Optional[str] = None
    input_types: Tuple[str, ...] = ()
    must_come_after: Tuple[str, ...] = ()
    must_come_before: Tuple[str, ...] = ()
    auto_adds: Tuple[str, ...] = ()

    @property
    def produces_encrypted(self) -> bool:
        return PRODUCES_ENCRYPTED in self.tags

    def param(self, param_id: str) -> Optional[BlockParam]:
        for param in self.params:
            if param.id == param_id:
                return param
        return None


class BlockCatalog:
    """Read-only lookup over a validated block table."""

    def __init__(self, blocks: Sequence[Block]) -> None:
        self._blocks: Tuple[Block, ...] = tuple(blocks)
        self._by_id: Dict[str, Block] = {b.id: b for b in self._blocks}

    def __iter__(self) -> Iterator[Block]:
        return iter(self._blocks)

    def __len__(self) -> int:
        return len(self._blocks)

    def __contains__(self, block_id: object) -> bool:
        return block_id in self._by_id

    def get(self, block_id: str) -> Optional[Block]:
        return self._by_id.get(block_id)

    def by_category(self, category: str) -> List[Block]:
        return [b for b in self._blocks if b.category == category]

    def by_zone(self, zone: Zone) -> List[Block]:
        return [b for b in self._blocks if b.zone is zone]

    def by_operation(self, operation: str) -> List[Block]:
        return [b for b in self._blocks if b.operation == operation]

    def categories(self) -> List[str]:
        seen: List[str] = []
        for block in self._blocks:
            if block.category not in seen:
                seen.append(block.category)
        return seen

    def search(self, query: str) -> List[Block]:
        """Blocks whose id, name, description or tags contain every query term."""
        terms = query.lower().split()
        if not terms:
            return list(self._blocks)
        hits = []
        for block in self._blocks:
            haystack = " ".join((block.id, block.name, block.description) + block.tags).lower()
            if all(term in haystack for term in terms):
                hits.append(block)
        return hits


# ===================================================================
# Loading and integrity checks
# ===================================================================

def load_catalog(blocks: Iterable[Block]) -> BlockCatalog:
    """Validate *blocks* and wrap them in a :class:`BlockCatalog`.

    Raises:
        CatalogIntegrityError: on duplicate ids, unknown references or a
            ``requires`` cycle.
    """
    blocks = list(blocks)

    seen: Set[str] = set()
    duplicates: List[str] = []
    for block in blocks:
        if block.id in seen and block.id not in duplicates:
            duplicates.append(block.id)
        seen.add(block.id)
    if duplicates:
        raise CatalogIntegrityError("Duplicate block ids", duplicates)

    by_id = {b.id: b for b in blocks}
    categories = {b.category for b in blocks}

    offenders: List[str] = []
    for block in blocks:
        for ref in _unknown_references(block, by_id, categories):
            logger.error("Block '%s' references unknown %s", block.id, ref)
            if block.id not in offenders:
                offenders.append(block.id)
    if offenders:
        raise CatalogIntegrityError("Unknown block or category references in", offenders)

    cycle = _find_requires_cycle(by_id)
    if cycle:
        raise CatalogIntegrityError("Dependency cycle in requires", cycle)

    logger.debug("Loaded block catalog with %d blocks", len(blocks))
    return BlockCatalog(blocks)


def _unknown_references(block: Block, by_id: Dict[str, Block], categories: Set[str]) -> List[str]:
    unknown: List[str] = []
    for leaf in requirement_leaves(block.requires):
        if isinstance(leaf, HasBlock) and leaf.block_id not in by_id:
            unknown.append(f"block '{leaf.block_id}'")
        elif isinstance(leaf, HasCategory) and leaf.category not in categories:
            unknown.append(f"category '{leaf.category}'")
    for entry in block.incompatible_with:
        if entry.startswith(CATEGORY_PREFIX):
            if entry[len(CATEGORY_PREFIX):] not in categories:
                unknown.append(f"category '{entry}'")
        elif entry not in by_id:
            unknown.append(f"block '{entry}'")
    for category in block.must_come_after + block.must_come_before:
        if category not in categories:
            unknown.append(f"category '{category}'")
    for block_id in block.auto_adds:
        if block_id not in by_id:
            unknown.append(f"block '{block_id}'")
    return unknown


def _dependency_ids(block: Block, by_id: Dict[str, Block]) -> List[str]:
    deps: List[str] = []
    for leaf in requirement_leaves(block.requires):
        if isinstance(leaf, HasBlock):
            deps.append(leaf.block_id)
        elif isinstance(leaf, HasCategory):
            deps.extend(bid for bid, b in by_id.items() if b.category == leaf.category)
    return deps


def _find_requires_cycle(by_id: Dict[str, Block]) -> List[str]:
    """Depth-first search over ``requires`` edges; returns the first cycle found.

    Edges come from :class:`HasBlock` and :class:`HasCategory` leaves (a
    category edge points at every member).  :class:`ProducesEncrypted` is a
    tag predicate and contributes no edge.
    """
    white, grey, black = 0, 1, 2
    color = {bid: white for bid in by_id}
    path: List[str] = []

    def visit(bid: str) -> List[str]:
        color[bid] = grey
        path.append(bid)
        for dep in _dependency_ids(by_id[bid], by_id):
            if color[dep] == grey:
                return path[path.index(dep):] + [dep]
            if color[dep] == white:
                found = visit(dep)
                if found:
                    return found
        path.pop()
        color[bid] = black
        return []

    for bid in by_id:
        if color[bid] == white:
            found = visit(bid)
            if found:
                return found
    return []


# ===================================================================
# Default FHEVM block table
# ===================================================================

FHE_IMPORT = HasBlock("import-fhe", Zone.IMPORTS)
ENCRYPTED_OPERAND = AnyOf((HasCategory("state"), ProducesEncrypted()))

OPERATION_CATEGORIES = ("arithmetic", "comparison", "bitwise", "conditional", "random")
_BEFORE_OPERATIONS = OPERATION_CATEGORIES + ("acl",)
_AFTER_OPERATIONS = ("input-conversion",) + OPERATION_CATEGORIES

_EUINT_TYPES = ("euint8", "euint16", "euint32", "euint64", "euint128", "euint256")
_NETWORK_CONFIGS = ("import-config", "import-config-zama")


def _variable(param_id: str, label: str, variable_type: str = "euint*") -> BlockParam:
    return BlockParam(param_id, label, kind="variable", variable_type=variable_type, required=True)


def _state_block(enc_type: str, default_name: str, description: str, tags: Tuple[str, ...]) -> Block:
    return Block(
        id=f"state-{enc_type}",
        name=enc_type,
        description=description,
        category="state",
        zone=Zone.STATE,
        template=enc_type + " private {{name}};",
        params=(BlockParam("name", "Variable name", default=default_name, required=True),),
        requires=FHE_IMPORT,
        output_type=enc_type,
        tags=("state", "variable", enc_type, "encrypted") + tags,
    )


def _cast_block(target_type: str) -> Block:
    method = "as" + target_type[0].upper() + target_type[1:]
    return Block(
        id=f"op-{method}",
        name=f"FHE.{method}()",
        description=f"Encrypt a plaintext value as {target_type}",
        category="input-conversion",
        zone=Zone.FUNCTION_BODY,
        template=target_type + " {{output}} = FHE." + method + "({{value}});",
        params=(
            BlockParam("output", "Output variable", default="eValue", required=True),
            BlockParam("value", "Plaintext value", default="0", required=True),
        ),
        requires=FHE_IMPORT,
        context_scope=ContextScope.CURRENT_FUNCTION,
        tags=("convert", "cast", "trivial", method.lower(), target_type, PRODUCES_ENCRYPTED),
        operation=f"FHE.{method}",
        output_type=target_type,
        must_come_before=_BEFORE_OPERATIONS,
    )


def _binary_op(
    name: str,
    description: str,
    category: str,
    input_types: Tuple[str, ...],
    tags: Tuple[str, ...],
    operands: Tuple[str, str] = ("First operand", "Second operand"),
) -> Block:
    comparison = category == "comparison"
    out = "result" if comparison else "target"
    return Block(
        id=f"op-{name}",
        name=f"FHE.{name}()",
        description=description,
        category=category,
        zone=Zone.FUNCTION_BODY,
        template="{{" + out + "}} = FHE." + name + "({{a}}, {{b}});",
        params=(
            BlockParam("result", "Result variable", default="isEqual", required=True)
            if comparison else _variable("target", "Target variable"),
            _variable("a", operands[0]),
            _variable("b", operands[1]),
        ),
        requires=AllOf((FHE_IMPORT, ENCRYPTED_OPERAND)),
        context_scope=ContextScope.CURRENT_FUNCTION,
        tags=(name, category) + tags + (PRODUCES_ENCRYPTED,),
        operation=f"FHE.{name}",
        output_type="ebool" if comparison else "same-as-input",
        input_types=input_types,
        must_come_after=("input-conversion",),
        must_come_before=() if comparison else ("acl",),
        auto_adds=() if comparison else ("acl-allowThis",),
    )


def _unary_op(name: str, description: str, input_types: Tuple[str, ...], tags: Tuple[str, ...], category: str) -> Block:
    return Block(
        id=f"op-{name}",
        name=f"FHE.{name}()",
        description=description,
        category=category,
        zone=Zone.FUNCTION_BODY,
        template="{{target}} = FHE." + name + "({{a}});",
        params=(_variable("target", "Target variable"), _variable("a", "Operand")),
        requires=AllOf((FHE_IMPORT, ENCRYPTED_OPERAND)),
        context_scope=ContextScope.CURRENT_FUNCTION,
        tags=(name, category) + tags + (PRODUCES_ENCRYPTED,),
        operation=f"FHE.{name}",
        output_type="same-as-input",
        input_types=input_types,
        must_come_after=("input-conversion",),
        must_come_before=("acl",),
        auto_adds=("acl-allowThis",),
    )


def _shift_op(name: str, description: str, tags: Tuple[str, ...]) -> Block:
    return Block(
        id=f"op-{name}",
        name=f"FHE.{name}()",
        description=description,
        category="bitwise",
        zone=Zone.FUNCTION_BODY,
        template="{{target}} = FHE." + name + "({{value}}, {{amount}});",
        params=(
            _variable("target", "Target variable"),
            _variable("value", "Value"),
            BlockParam("amount", "Bit count", default="1", required=True),
        ),
        requires=AllOf((FHE_IMPORT, ENCRYPTED_OPERAND)),
        context_scope=ContextScope.CURRENT_FUNCTION,
        tags=(name, "bitwise", "shift") + tags + (PRODUCES_ENCRYPTED,),
        operation=f"FHE.{name}",
        output_type="same-as-first",
        input_types=("euint*+euint8",),
        must_come_after=("input-conversion",),
        must_come_before=("acl",),
        auto_adds=("acl-allowThis",),
    )


def _random_block(enc_type: str, bounded: bool = False) -> Block:
    method = "rand" + enc_type[0].upper() + enc_type[1:] + ("Bounded" if bounded else "")
    params = (BlockParam("output", "Output variable", default="randomValue", required=True),)
    args = ""
    if bounded:
        params += (BlockParam("bound", "Upper bound (power of two)", default="256", required=True),)
        args = "{{bound}}"
    return Block(
        id=f"op-{method}",
        name=f"FHE.{method}()",
        description=f"Generate an encrypted random {enc_type}" + (" below a bound" if bounded else ""),
        category="random",
        zone=Zone.FUNCTION_BODY,
        template=enc_type + " {{output}} = FHE." + method + "(" + args + ");",
        params=params,
        requires=FHE_IMPORT,
        context_scope=ContextScope.CURRENT_FUNCTION,
        tags=("random", "rand", enc_type, PRODUCES_ENCRYPTED),
        operation=f"FHE.{method}",
        output_type=enc_type,
        must_come_before=("acl",),
        auto_adds=("acl-allowThis",),
    )


def _acl_block(method: str, description: str, template: str, params: Tuple[BlockParam, ...],
               tags: Tuple[str, ...]) -> Block:
    return Block(
        id=f"acl-{method}",
        name=f"FHE.{method}()",
        description=description,
        category="acl",
        zone=Zone.FUNCTION_BODY,
        template=template,
        params=params,
        requires=AllOf((FHE_IMPORT, ProducesEncrypted())),
        context_scope=ContextScope.CURRENT_FUNCTION,
        tags=("acl", "permission", "access") + tags,
        operation=f"FHE.{method}",
        must_come_after=_AFTER_OPERATIONS,
    )


def _acl_query(method: str, description: str, template: str, params: Tuple[BlockParam, ...]) -> Block:
    return Block(
        id=f"acl-{method}",
        name=f"FHE.{method}()",
        description=description,
        category="acl",
        zone=Zone.FUNCTION_BODY,
        template=template,
        params=params,
        requires=AllOf((FHE_IMPORT, HasCategory("state"))),
        tags=("acl", "check", "query", method.lower()),
        operation=f"FHE.{method}",
        output_type="bool",
    )


_ARITH_TYPES = tuple(f"{t}+{t}" for t in _EUINT_TYPES)
_NARROW_ARITH_TYPES = tuple(f"{t}+{t}" for t in _EUINT_TYPES[:4])
_EQUALITY_TYPES = ("euint*+euint*", "ebool+ebool", "eaddress+eaddress")
_LOGIC_TYPES = ("euint*+euint*", "ebool+ebool")

_ACL_VARIABLE = _variable("variable", "Encrypted variable", "e*")
_ACL_ADDRESS = BlockParam("address", "Address", kind="address", default="msg.sender", required=True)

BLOCKS: Tuple[Block, ...] = (
    # Imports
    Block(
        id="import-fhe",
        name="FHE Library",
        description="Import the FHE library with encrypted types",
        category="import",
        zone=Zone.IMPORTS,
        template='import { FHE, {{types}} } from "@fhevm/solidity/lib/FHE.sol";',
        params=(BlockParam("types", "Types to import", default="euint32, externalEuint32"),),
        incompatible_with=("import-fhe",),
        tags=("import", "fhe", "library", "start"),
    ),
    Block(
        id="import-config",
        name="Sepolia Config",
        description="Import the Sepolia network configuration (SepoliaConfig)",
        category="import",
        zone=Zone.IMPORTS,
        template='import { SepoliaConfig } from "@fhevm/solidity/config/Config.sol";',
        incompatible_with=_NETWORK_CONFIGS,
        tags=("import", "config", "network", "sepolia"),
    ),
    Block(
        id="import-config-zama",
        name="Zama Ethereum Config",
        description="Import the Zama network configuration (ZamaEthereumConfig)",
        category="import",
        zone=Zone.IMPORTS,
        template='import { ZamaEthereumConfig } from "@fhevm/solidity/config/ZamaConfig.sol";',
        incompatible_with=_NETWORK_CONFIGS,
        tags=("import", "config", "network", "zama", "ethereum"),
    ),

    # State variables
    _state_block("euint8", "_value8", "Encrypted 8-bit unsigned integer", ("uint8", "8-bit")),
    _state_block("euint16", "_value16", "Encrypted 16-bit unsigned integer", ("uint16", "16-bit")),
    _state_block("euint32", "_value", "Encrypted 32-bit unsigned integer", ("uint32", "32-bit", "counter", "balance")),
    _state_block("euint64", "_value64", "Encrypted 64-bit unsigned integer", ("uint64", "64-bit", "balance", "amount")),
    _state_block("euint128", "_value128", "Encrypted 128-bit unsigned integer", ("uint128", "128-bit", "large")),
    _state_block("euint256", "_value256", "Encrypted 256-bit unsigned integer", ("uint256", "256-bit", "large")),
    _state_block("ebool", "_flag", "Encrypted boolean", ("bool", "boolean", "flag", "condition")),
    _state_block("eaddress", "_hiddenAddress", "Encrypted address", ("address", "wallet", "owner")),
    Block(
        id="state-mapping",
        name="mapping(address => euint64)",
        description="Per-account encrypted balances",
        category="state",
        zone=Zone.STATE,
        template="mapping(address => {{valueType}}) private {{name}};",
        params=(
            BlockParam("name", "Variable name", default="_balances", required=True),
            BlockParam("valueType", "Value type", kind="type-select", default="euint64",
                       options=ENCRYPTED_TYPES),
        ),
        requires=FHE_IMPORT,
        output_type="euint64",
        tags=("state", "mapping", "balances", "token", "encrypted"),
    ),

    # Input conversion
    Block(
        id="op-fromExternal",
        name="FHE.fromExternal()",
        description="Convert an external encrypted input to an internal handle",
        category="input-conversion",
        zone=Zone.FUNCTION_BODY,
        template="{{outputType}} {{output}} = FHE.fromExternal({{input}}, {{proof}});",
        params=(
            BlockParam("outputType", "Output type", kind="type-select", default="euint32",
                       options=ENCRYPTED_TYPES),
            BlockParam("output", "Output variable", default="eValue"),
            BlockParam("input", "External input", default="inputHandle"),
            BlockParam("proof", "Proof parameter", default="inputProof"),
        ),
        requires=FHE_IMPORT,
        context_scope=ContextScope.CURRENT_FUNCTION,
        tags=("fromExternal", "input", "convert", "external", "proof", PRODUCES_ENCRYPTED),
        operation="FHE.fromExternal",
        output_type="euint*",
        must_come_before=_BEFORE_OPERATIONS,
    ),
    _cast_block("euint8"),
    _cast_block("euint16"),
    _cast_block("euint32"),
    _cast_block("euint64"),
    _cast_block("ebool"),

    # Arithmetic
    _binary_op("add", "Add two encrypted values", "arithmetic", _ARITH_TYPES,
               ("addition", "plus", "sum", "math")),
    _binary_op("sub", "Subtract two encrypted values", "arithmetic", _ARITH_TYPES,
               ("subtract", "minus", "difference", "math")),
    _binary_op("mul", "Multiply two encrypted values", "arithmetic", _NARROW_ARITH_TYPES,
               ("multiply", "times", "product", "math")),
    _binary_op("div", "Divide an encrypted value by a plaintext divisor", "arithmetic",
               _NARROW_ARITH_TYPES, ("divide", "division", "quotient", "math"),
               operands=("Dividend", "Divisor")),
    _binary_op("rem", "Remainder of an encrypted value by a plaintext divisor", "arithmetic",
               _NARROW_ARITH_TYPES, ("remainder", "modulo", "mod", "math"),
               operands=("Dividend", "Divisor")),
    _binary_op("min", "Minimum of two encrypted values", "arithmetic", _NARROW_ARITH_TYPES,
               ("minimum", "smallest")),
    _binary_op("max", "Maximum of two encrypted values", "arithmetic", _NARROW_ARITH_TYPES,
               ("maximum", "largest")),
    _unary_op("neg", "Negate an encrypted value (two's complement)", _EUINT_TYPES[:4],
              ("negate", "negative"), "arithmetic"),

    # Comparison
    _binary_op("eq", "Check whether two encrypted values are equal", "comparison",
               _EQUALITY_TYPES, ("equal", "equals", "compare")),
    _binary_op("ne", "Check whether two encrypted values differ", "comparison",
               _EQUALITY_TYPES, ("not-equal", "differ", "compare")),
    _binary_op("gt", "Encrypted greater-than", "comparison", ("euint*+euint*",),
               ("greater", "compare")),
    _binary_op("ge", "Encrypted greater-or-equal", "comparison", ("euint*+euint*",),
               ("greater", "equal", "compare")),
    _binary_op("lt", "Encrypted less-than", "comparison", ("euint*+euint*",),
               ("less", "compare")),
    _binary_op("le", "Encrypted less-or-equal", "comparison", ("euint*+euint*",),
               ("less", "equal", "compare")),

    # Bitwise
    _binary_op("and", "Bitwise AND of two encrypted values", "bitwise", _LOGIC_TYPES,
               ("bitwise-and", "logic")),
    _binary_op("or", "Bitwise OR of two encrypted values", "bitwise", _LOGIC_TYPES,
               ("bitwise-or", "logic")),
    _binary_op("xor", "Bitwise XOR of two encrypted values", "bitwise", _LOGIC_TYPES,
               ("bitwise-xor", "logic")),
    _unary_op("not", "Bitwise NOT of an encrypted value", ("euint*", "ebool"),
              ("invert", "logic"), "bitwise"),
    _shift_op("shl", "Shift an encrypted value left", ("left",)),
    _shift_op("shr", "Shift an encrypted value right", ("right",)),
    _shift_op("rotl", "Rotate an encrypted value left", ("rotate", "left")),
    _shift_op("rotr", "Rotate an encrypted value right", ("rotate", "right")),

    # Conditional
    Block(
        id="op-select",
        name="FHE.select()",
        description="Pick one of two encrypted values based on an encrypted condition",
        category="conditional",
        zone=Zone.FUNCTION_BODY,
        template="{{target}} = FHE.select({{condition}}, {{ifTrue}}, {{ifFalse}});",
        params=(
            _variable("target", "Target variable"),
            _variable("condition", "Condition", "ebool"),
            _variable("ifTrue", "Value if true"),
            _variable("ifFalse", "Value if false"),
        ),
        requires=AllOf((
            FHE_IMPORT,
            AnyOf((HasCategory("comparison"), HasBlock("state-ebool"), HasBlock("op-asEbool"))),
        )),
        context_scope=ContextScope.CURRENT_FUNCTION,
        tags=("select", "if", "ternary", "conditional", "branch", PRODUCES_ENCRYPTED),
        operation="FHE.select",
        output_type="same-as-second",
        input_types=("ebool+euint*+euint*",),
        must_come_after=("input-conversion",),
        must_come_before=("acl",),
        auto_adds=("acl-allowThis",),
    ),

    # Random
    _random_block("euint8"),
    _random_block("euint16"),
    _random_block("euint32"),
    _random_block("euint64"),
    _random_block("euint32", bounded=True),

    # Access control
    _acl_block("allowThis", "Grant this contract access to an encrypted value",
               "FHE.allowThis({{variable}});", (_ACL_VARIABLE,), ("allowThis", "contract")),
    _acl_block("allow", "Grant an address access to an encrypted value",
               "FHE.allow({{variable}}, {{address}});", (_ACL_VARIABLE, _ACL_ADDRESS),
               ("allow", "user", "grant")),
    _acl_block("allowTransient", "Grant access for the current transaction only",
               "FHE.allowTransient({{variable}}, {{address}});", (_ACL_VARIABLE, _ACL_ADDRESS),
               ("allowTransient", "temporary", "transaction")),
    _acl_query("isAllowed", "Check whether an address may use an encrypted value",
               "bool {{result}} = FHE.isAllowed({{variable}}, {{address}});",
               (BlockParam("result", "Result variable", default="allowed"), _ACL_VARIABLE, _ACL_ADDRESS)),
    _acl_query("isSenderAllowed", "Check whether msg.sender may use an encrypted value",
               "bool {{result}} = FHE.isSenderAllowed({{variable}});",
               (BlockParam("result", "Result variable", default="allowed"), _ACL_VARIABLE)),

    # Decryption
    Block(
        id="acl-makePubliclyDecryptable",
        name="FHE.makePubliclyDecryptable()",
        description="Mark an encrypted value as publicly decryptable",
        category="decrypt",
        zone=Zone.FUNCTION_BODY,
        template="FHE.makePubliclyDecryptable({{variable}});",
        params=(_ACL_VARIABLE,),
        requires=AllOf((FHE_IMPORT, ProducesEncrypted())),
        context_scope=ContextScope.CURRENT_FUNCTION,
        tags=("decrypt", "public", "reveal", "oracle"),
        operation="FHE.makePubliclyDecryptable",
        must_come_after=_AFTER_OPERATIONS + ("acl",),
    ),

    # Constructor
    Block(
        id="ctor-initEncrypted",
        name="Initialize encrypted state",
        description="Initialize an encrypted state variable from a plaintext constant",
        category="constructor",
        zone=Zone.CONSTRUCTOR,
        template="{{target}} = FHE.{{conversion}}({{value}});",
        params=(
            _variable("target", "State variable", "e*"),
            BlockParam("conversion", "Conversion", kind="type-select", default="asEuint32",
                       options=("asEuint8", "asEuint16", "asEuint32", "asEuint64", "asEbool")),
            BlockParam("value", "Initial value", default="0"),
        ),
        requires=AllOf((FHE_IMPORT, HasCategory("state"))),
        tags=("constructor", "init", "initialize", PRODUCES_ENCRYPTED),
        auto_adds=("ctor-allowThis",),
    ),
    Block(
        id="ctor-allowThis",
        name="Constructor FHE.allowThis()",
        description="Grant the contract access to a value initialized in the constructor",
        category="constructor",
        zone=Zone.CONSTRUCTOR,
        template="FHE.allowThis({{variable}});",
        params=(_ACL_VARIABLE,),
        requires=HasBlock("ctor-initEncrypted", Zone.CONSTRUCTOR),
        tags=("constructor", "acl", "allowThis"),
        operation="FHE.allowThis",
    ),
)

DEFAULT_CATALOG = load_catalog(BLOCKS)

"""Render a project state as Solidity source.

Every placed block is rendered through the renderer registered for its zone
in :data:`ZONE_RENDERERS`.  Alongside the code, :func:`generate_contract`
reports a :class:`BlockLineMapping` per rendered block so a UI can highlight
the lines a block produced.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from .catalog import DEFAULT_CATALOG, PLACEHOLDER_RE, Block, BlockCatalog, Zone
from .project import ImportConfig, ProjectBlock, ProjectFunction, ProjectState, StateConfig, StatementConfig

logger = logging.getLogger(__name__)

LICENSE_LINE = "// SPDX-License-Identifier: MIT"
PRAGMA_LINE = "pragma solidity ^0.8.24;"
INDENT = "    "


@dataclass(frozen=True)
class BlockLineMapping:
    instance_id: str
    block_id: str
    line_start: int
    line_end: int
    zone: Zone


@dataclass
class GeneratedCode:
    code: str
    mappings: List[BlockLineMapping] = field(default_factory=list)

    def mapping_for(self, instance_id: str) -> Optional[BlockLineMapping]:
        for mapping in self.mappings:
            if mapping.instance_id == instance_id:
                return mapping
        return None


def render_template(template: str, values: Mapping[str, str], block: Optional[Block] = None) -> str:
    """Fill ``{{param}}`` placeholders from *values*, then from *block* param defaults.

    Placeholders with neither a value nor a default are left in place.
    """
    defaults = {}
    if block is not None:
        defaults = {p.id: p.default for p in block.params if p.default is not None}

    def fill(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key in values:
            return values[key]
        if key in defaults:
            return defaults[key]
        return match.group(0)

    return PLACEHOLDER_RE.sub(fill, template)


# ===================================================================
# Zone renderers
# ===================================================================

Renderer = Callable[[ProjectBlock, Optional[Block]], Optional[str]]


def _render_import(placed: ProjectBlock, block: Optional[Block]) -> Optional[str]:
    config = placed.config
    if block is not None:
        return render_template(block.template, config.template_values(), block)
    if isinstance(config, ImportConfig):
        if config.statement:
            return config.statement
        if config.path:
            return f'import "{config.path}";'
    return None


def _render_state(placed: ProjectBlock, block: Optional[Block]) -> Optional[str]:
    config = placed.config
    if block is not None:
        return render_template(block.template, config.template_values(), block)
    if isinstance(config, StateConfig) and config.type and config.name:
        parts = [config.type]
        if config.visibility:
            parts.append(config.visibility)
        parts.append(config.name)
        return " ".join(parts) + ";"
    return None


def _render_statement(placed: ProjectBlock, block: Optional[Block]) -> Optional[str]:
    config = placed.config
    if block is not None:
        return render_template(block.template, config.template_values(), block)
    if isinstance(config, StatementConfig) and config.full_call:
        return config.full_call.rstrip(";") + ";"
    return None


ZONE_RENDERERS: Dict[Zone, Renderer] = {
    Zone.IMPORTS: _render_import,
    Zone.STATE: _render_state,
    Zone.CONSTRUCTOR: _render_statement,
    Zone.FUNCTION_BODY: _render_statement,
    Zone.MODIFIER: _render_statement,
}

_missing_zones = set(Zone) - set(ZONE_RENDERERS)
if _missing_zones:
    raise RuntimeError(f"No renderer for zones: {sorted(z.value for z in _missing_zones)}")


# ===================================================================
# Contract assembly
# ===================================================================

class _Writer:
    """Accumulates output lines and block mappings."""

    def __init__(self, catalog: BlockCatalog) -> None:
        self.catalog = catalog
        self.lines: List[str] = []
        self.mappings: List[BlockLineMapping] = []

    def line(self, text: str = "") -> None:
        self.lines.append(text)

    def blocks(self, placed_blocks: Sequence[ProjectBlock], indent: str) -> None:
        for placed in placed_blocks:
            block = self.catalog.get(placed.block_id)
            rendered = ZONE_RENDERERS[placed.zone](placed, block)
            if rendered is None:
                logger.warning("Skipping block %s (%s): nothing to render", placed.id, placed.block_id)
                continue
            start = len(self.lines) + 1
            for text in rendered.split("\n"):
                self.lines.append(indent + text)
            self.mappings.append(BlockLineMapping(
                instance_id=placed.id,
                block_id=placed.block_id,
                line_start=start,
                line_end=len(self.lines),
                zone=placed.zone,
            ))


def generate_contract(state: ProjectState, catalog: BlockCatalog = DEFAULT_CATALOG) -> GeneratedCode:
    """Render *state* as a Solidity contract with per-block line mappings."""
    out = _Writer(catalog)
    out.line(LICENSE_LINE)
    out.line(PRAGMA_LINE)
    out.line()

    if state.imports:
        out.blocks(state.imports, "")
        out.line()

    inherits = f" is {', '.join(state.inherits)}" if state.inherits else ""
    out.line(f"contract {state.name}{inherits} {{")

    if state.state_variables:
        out.blocks(state.state_variables, INDENT)
        out.line()

    if state.modifiers:
        out.blocks(state.modifiers, INDENT)
        out.line()

    if state.constructor_body:
        out.line(f"{INDENT}constructor() {{")
        out.blocks(state.constructor_body, INDENT * 2)
        out.line(f"{INDENT}}}")
        out.line()

    for fn in state.functions:
        out.line(INDENT + _signature(fn) + " {")
        out.blocks(fn.body, INDENT * 2)
        out.line(f"{INDENT}}}")
        out.line()

    if out.lines[-1] == "":
        out.lines.pop()
    out.line("}")
    return GeneratedCode(code="\n".join(out.lines) + "\n", mappings=out.mappings)


def _signature(fn: ProjectFunction) -> str:
    params = ", ".join(f"{p.type} {p.name}".strip() for p in fn.params)
    parts = [f"function {fn.name}({params})", fn.visibility or "external"]
    if fn.state_mutability:
        parts.append(fn.state_mutability)
    if fn.return_type:
        parts.append(f"returns ({fn.return_type})")
    return " ".join(parts)


def generate_test(state: ProjectState) -> str:
    """A Hardhat test skeleton with one scenario per function."""
    lines = [
        'import { expect } from "chai";',
        'import { ethers } from "hardhat";',
        "",
        f'describe("{state.name}", function () {{',
    ]
    for fn in state.functions:
        lines.extend([
            f'  describe("{fn.name}", function () {{',
            f'    it("should execute {fn.name}", async function () {{',
            f'      const factory = await ethers.getContractFactory("{state.name}");',
            "      const contract = await factory.deploy();",
            "      await contract.waitForDeployment();",
            "      expect(await contract.getAddress()).to.be.properAddress;",
            "    });",
            "  });",
        ])
    lines.append("});")
    return "\n".join(lines) + "\n"

"""labz: structural analysis, block availability and code location for FHEVM contracts."""

from .analyzer import analyze, is_block_available
from .locator import CodeLocator, locate, resolve_step
from .parser import ContractParser, parse_contract

__version__ = "0.1.0"

__all__ = [
    "CodeLocator",
    "ContractParser",
    "analyze",
    "is_block_available",
    "locate",
    "parse_contract",
    "resolve_step",
]

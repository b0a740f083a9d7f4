"""Pytest configuration and fixtures for labz tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest

from labz_cli.project import (
    ProjectFunction,
    ProjectState,
    StateConfig,
    add_function,
    add_import,
    add_state_variable,
    new_block,
)

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path: Path, monkeypatch):
    """Point the TOML config at a throwaway file so tests never read ~/.labz."""
    monkeypatch.setattr("labz_cli.config_manager.CONFIG_FILE", tmp_path / "labz-home" / "config.toml")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES


@pytest.fixture
def encrypted_add_path() -> Path:
    """Single-import contract: fromExternal, add, allowThis, allow in one function."""
    return FIXTURES / "contracts" / "EncryptedAdd.sol"


@pytest.fixture
def encrypted_add_source(encrypted_add_path: Path) -> str:
    return encrypted_add_path.read_text()


@pytest.fixture
def token_path() -> Path:
    """Larger contract with a constructor, mappings, a modifier and nested calls."""
    return FIXTURES / "contracts" / "ConfidentialToken.sol"


@pytest.fixture
def token_source(token_path: Path) -> str:
    return token_path.read_text()


@pytest.fixture
def market_test_path() -> Path:
    return FIXTURES / "PredictionMarket.test.ts"


@pytest.fixture
def market_test_source(market_test_path: Path) -> str:
    return market_test_path.read_text()


@pytest.fixture
def empty_state() -> ProjectState:
    """A project with nothing placed at all."""
    return ProjectState()


@pytest.fixture
def counter_state() -> ProjectState:
    """FHE import, one euint32 state variable and an empty 'increment' function."""
    state = ProjectState(name="Counter")
    state = add_import(state, new_block("import-fhe"))
    state = add_state_variable(state, new_block("state-euint32", StateConfig(name="_count")))
    state = add_function(state, ProjectFunction(id="", name="increment"))
    return state


@pytest.fixture
def counter_function_id(counter_state: ProjectState) -> str:
    return counter_state.functions[0].id

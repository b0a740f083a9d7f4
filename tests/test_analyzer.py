"""Tests for the block availability analyzer."""

import pytest

from labz_cli.analyzer import (
    MAX_SUGGESTIONS,
    analyze,
    build_snapshot,
    describe_requirement,
    first_unsatisfied,
    is_block_available,
)
from labz_cli.catalog import DEFAULT_CATALOG, AllOf, AnyOf, HasBlock, HasCategory, ProducesEncrypted, Zone
from labz_cli.project import (
    ProjectBlock,
    ProjectFunction,
    ProjectState,
    StatementConfig,
    add_function,
    add_import,
    add_state_variable,
    add_to_function_body,
    empty_project,
    new_block,
)
from labz_cli.validator import validate_drop


class TestEmptyProjectImportScenario:
    def test_unavailable_until_fhe_import(self, empty_state: ProjectState):
        before = analyze(empty_state).blocks["state-euint32"]
        assert before.available is False
        assert before.reason

        with_import = add_import(empty_state, new_block("import-fhe"))
        after = analyze(with_import).blocks["state-euint32"]
        assert after.available is True
        assert after.reason is None

    def test_every_import_dependent_block_blocked(self, empty_state: ProjectState):
        result = analyze(empty_state)
        for block in DEFAULT_CATALOG:
            if HasBlock("import-fhe", Zone.IMPORTS) in _leaves(block.requires):
                assert not result.blocks[block.id].available, block.id
                assert result.blocks[block.id].reason

    def test_imports_available_on_empty_project(self, empty_state: ProjectState):
        result = analyze(empty_state)
        assert result.is_available("import-fhe")
        assert result.is_available("import-config")


def _leaves(req):
    if req is None:
        return []
    if isinstance(req, (AllOf, AnyOf)):
        return [leaf for term in req.terms for leaf in _leaves(term)]
    return [req]


class TestIncompatibility:
    def test_self_incompatible_import(self, counter_state: ProjectState):
        entry = analyze(counter_state).blocks["import-fhe"]
        assert entry.available is False
        assert entry.reason == "Already added"

    def test_network_configs_exclusive(self, counter_state: ProjectState):
        state = add_import(counter_state, new_block("import-config"))
        result = analyze(state)
        assert not result.is_available("import-config-zama")
        assert "Sepolia Config" in result.blocks["import-config-zama"].reason

    def test_requires_checked_before_incompatible(self, empty_state: ProjectState):
        catalog_block = DEFAULT_CATALOG.get("ctor-allowThis")
        result = analyze(empty_state)
        assert result.blocks[catalog_block.id].reason.startswith("Requires")


class TestFunctionZone:
    def test_body_blocks_need_a_function(self):
        state = empty_project("Vault")
        entry = analyze(state).blocks["op-fromExternal"]
        assert entry.available is False
        assert entry.reason == "Create a function first"
        assert not is_block_available("op-randEuint32", state).available

        with_function = add_function(state, ProjectFunction(id="", name="deposit"))
        assert analyze(with_function).is_available("op-fromExternal")

    def test_requirement_reported_before_missing_function(self, empty_state: ProjectState):
        assert analyze(empty_state).blocks["op-fromExternal"].reason.startswith("Requires")

    def test_agrees_with_drop_validation(self):
        state = empty_project("Vault")
        result = analyze(state)
        for block in DEFAULT_CATALOG.by_zone(Zone.FUNCTION_BODY):
            assert not result.is_available(block.id), block.id
            assert not validate_drop(block.id, Zone.FUNCTION_BODY, None, state).valid, block.id


class TestFunctionScope:
    def test_acl_needs_encrypted_value_in_selected_function(
        self, counter_state: ProjectState, counter_function_id: str
    ):
        assert not analyze(counter_state, counter_function_id).is_available("acl-allowThis")

        state = add_to_function_body(counter_state, counter_function_id, new_block("op-fromExternal"))
        assert analyze(state, counter_function_id).is_available("acl-allowThis")

    def test_other_function_body_does_not_count(self, counter_state: ProjectState, counter_function_id: str):
        state = add_to_function_body(counter_state, counter_function_id, new_block("op-fromExternal"))
        state = add_function(state, ProjectFunction(id="", name="other"))
        other_id = state.functions[1].id
        assert not analyze(state, other_id).is_available("acl-allowThis")
        assert analyze(state, counter_function_id).is_available("acl-allowThis")

    def test_unknown_selection_falls_back_to_global(self, counter_state: ProjectState, counter_function_id: str):
        state = add_to_function_body(counter_state, counter_function_id, new_block("op-fromExternal"))
        assert analyze(state, "func-404") == analyze(state, None)
        assert analyze(state, None).is_available("acl-allowThis")

    def test_snapshot_scoped_to_function(self, counter_state: ProjectState, counter_function_id: str):
        state = add_to_function_body(counter_state, counter_function_id, new_block("op-fromExternal"))
        state = add_function(state, ProjectFunction(id="", name="other"))
        scoped = build_snapshot(state, DEFAULT_CATALOG, state.functions[1])
        assert scoped.zones[Zone.FUNCTION_BODY] == frozenset()
        assert scoped.produces_encrypted is False
        assert build_snapshot(state).produces_encrypted is True


class TestPurityAndStability:
    def test_equal_inputs_equal_outputs(self, counter_state: ProjectState, counter_function_id: str):
        first = analyze(counter_state, counter_function_id)
        second = analyze(counter_state, counter_function_id)
        assert first == second

    def test_input_not_mutated(self, counter_state: ProjectState):
        snapshot = (counter_state.imports, counter_state.state_variables, counter_state.functions)
        analyze(counter_state)
        assert (counter_state.imports, counter_state.state_variables, counter_state.functions) == snapshot

    def test_unknown_block_ids_ignored(self, counter_state: ProjectState):
        stray = ProjectBlock("x-1", "not-in-catalog", StatementConfig(), 0, Zone.FUNCTION_BODY)
        fn = counter_state.functions[0]
        with_stray = ProjectState(
            name=counter_state.name,
            imports=counter_state.imports,
            state_variables=counter_state.state_variables,
            functions=(ProjectFunction(id=fn.id, name=fn.name, body=(stray,)),),
        )
        assert analyze(with_stray).blocks == analyze(counter_state).blocks

    def test_stats(self, counter_state: ProjectState):
        result = analyze(counter_state)
        assert result.stats.total == len(DEFAULT_CATALOG)
        assert result.stats.available == sum(1 for e in result.blocks.values() if e.available)


def _add(state: ProjectState, function_id: str, block_id: str) -> ProjectState:
    zone = DEFAULT_CATALOG.get(block_id).zone
    if zone is Zone.IMPORTS:
        return add_import(state, new_block(block_id))
    if zone is Zone.STATE:
        return add_state_variable(state, new_block(block_id))
    return add_to_function_body(state, function_id, new_block(block_id))


def _assert_only_incompatible_lost(before, after, added: str):
    for block_id, entry in before.blocks.items():
        if entry.available and not after.blocks[block_id].available:
            other = DEFAULT_CATALOG.get(block_id)
            assert added in other.incompatible_with or block_id == added, block_id


class TestMonotonicity:
    @pytest.mark.parametrize("added", [
        "state-ebool",
        "import-config",
        "state-mapping",
        "op-fromExternal",
        "op-add",
        "acl-allowThis",
    ])
    def test_adding_only_blocks_incompatible_ones(
        self, counter_state: ProjectState, counter_function_id: str, added: str
    ):
        before = analyze(counter_state, counter_function_id)
        after = analyze(_add(counter_state, counter_function_id, added), counter_function_id)
        _assert_only_incompatible_lost(before, after, added)

    def test_function_body_sequence(self, counter_state: ProjectState, counter_function_id: str):
        state = counter_state
        for added in ("op-fromExternal", "op-add", "acl-allowThis", "acl-allow"):
            before = analyze(state, counter_function_id)
            state = _add(state, counter_function_id, added)
            _assert_only_incompatible_lost(before, analyze(state, counter_function_id), added)

    def test_adding_a_function(self, counter_state: ProjectState):
        state = ProjectState(name="Bare", imports=counter_state.imports,
                             state_variables=counter_state.state_variables)
        before = analyze(state)
        after = analyze(add_function(state, ProjectFunction(id="", name="f")))
        for block_id, entry in before.blocks.items():
            if entry.available:
                assert after.blocks[block_id].available, block_id


class TestSuggestions:
    def test_start_with_import(self, empty_state: ProjectState):
        result = analyze(empty_state)
        assert result.suggested[0].block_id == "import-fhe"
        assert result.suggested[0].priority == 100

    def test_define_state_after_import(self, empty_state: ProjectState):
        state = add_import(empty_state, new_block("import-fhe"))
        suggestions = analyze(state).suggested
        assert suggestions[0].block_id == "import-config"
        assert all(s.priority <= 95 for s in suggestions)
        assert len(suggestions) <= MAX_SUGGESTIONS
        assert any(s.reason == "Define encrypted state" for s in suggestions)

    def test_state_suggestions_outrank_flow(self, counter_state: ProjectState, counter_function_id: str):
        state = add_to_function_body(counter_state, counter_function_id, new_block("op-fromExternal"))
        state = add_to_function_body(state, counter_function_id, new_block("op-add"))
        suggestions = analyze(state, counter_function_id).suggested
        assert len(suggestions) == MAX_SUGGESTIONS
        assert [s.reason for s in suggestions[1:]] == ["Add more state variables"] * 4
        assert suggestions[1].priority == 69

    def test_acl_suggested_after_operation(self, counter_state: ProjectState, counter_function_id: str):
        state = counter_state
        for block in DEFAULT_CATALOG.by_category("state"):
            if block.id != "state-euint32":
                state = add_state_variable(state, new_block(block.id))
        state = add_to_function_body(state, counter_function_id, new_block("op-fromExternal"))
        state = add_to_function_body(state, counter_function_id, new_block("op-add"))
        ids = [s.block_id for s in analyze(state, counter_function_id).suggested]
        assert "acl-allowThis" in ids


class TestRequirementHelpers:
    def test_first_unsatisfied_reports_any_of_whole(self, empty_state: ProjectState):
        snapshot = build_snapshot(empty_state)
        req = AllOf((HasBlock("import-fhe"), AnyOf((HasCategory("state"), ProducesEncrypted()))))
        assert first_unsatisfied(req, snapshot) == HasBlock("import-fhe")

        imported = build_snapshot(add_import(empty_state, new_block("import-fhe")))
        assert isinstance(first_unsatisfied(req, imported), AnyOf)
        assert first_unsatisfied(None, snapshot) is None

    def test_describe(self):
        assert describe_requirement(HasBlock("import-fhe", Zone.IMPORTS)) == "Requires FHE Library in imports"
        assert describe_requirement(HasCategory("state")) == "Requires at least one state block"

    def test_is_block_available(self, counter_state: ProjectState, counter_function_id: str):
        assert is_block_available("nope", counter_state) is None
        assert is_block_available("state-ebool", counter_state).available
        assert not is_block_available("acl-allow", counter_state, counter_function_id).available

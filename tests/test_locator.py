"""Tests for the code locator and tutorial step resolution."""

import pytest

from labz_cli.locator import CodeLocator, code_sections, locate, resolve_step, scenario_spans
from labz_cli.models import CodeRef, FheCall, TutorialStep


@pytest.fixture
def contract(encrypted_add_source: str) -> CodeLocator:
    return CodeLocator(encrypted_add_source)


@pytest.fixture
def test_panel(market_test_source: str) -> CodeLocator:
    return CodeLocator(market_test_source)


class TestContractLookups:
    def test_function(self, contract: CodeLocator):
        assert contract.function("add") == (13, 18)
        assert contract.function("getTotal") == (22, 25)
        assert contract.function("missing") is None

    def test_sections(self, contract: CodeLocator, encrypted_add_source: str):
        sections = code_sections(encrypted_add_source)
        assert list(sections) == ["stage-1-accumulate", "stage-2-read"]
        assert sections["stage-1-accumulate"].title == "Stage 1: Accumulate"
        assert contract.section(1) == (11, 19)
        assert contract.section("stage-1-accumulate") == (11, 19)
        assert contract.section(2)[0] == 20
        assert contract.section(3) is None

    def test_find_operation(self, contract: CodeLocator):
        assert contract.find_operation("add") == 15
        assert contract.find_operation("FHE.allow") == 17
        assert contract.find_operation("FHE.sub") is None

    def test_find_line(self, contract: CodeLocator):
        assert contract.find_line("_total") == 9
        assert contract.find_line(r"msg\.sender") == 17
        assert contract.find_line("(unclosed") is None

    def test_custom_namespace(self, encrypted_add_source: str):
        locator = CodeLocator(encrypted_add_source, namespace="TFHE")
        assert locator.qualify("add") == "TFHE.add"
        assert locator.find_operation("add") is None


class TestPrecedence:
    def test_lines_win(self, contract: CodeLocator):
        resolved = contract.resolve(CodeRef(lines=(3, 4), method="add"))
        assert resolved.lines == (3, 4)
        assert resolved.method == "add"

    def test_method_before_pattern(self, contract: CodeLocator):
        resolved = contract.resolve(CodeRef(method="getTotal", pattern="_total"))
        assert resolved.lines == (22, 25)

    def test_falls_through_to_operation(self, contract: CodeLocator):
        resolved = contract.resolve(CodeRef(method="missing", fhe_op="allow"))
        assert resolved.lines == (17, 17)
        assert resolved.method == "FHE.allow"

    def test_falls_through_to_pattern(self, contract: CodeLocator):
        resolved = contract.resolve(CodeRef(fhe_op="sub", pattern=r"return _total"))
        assert resolved.lines == (24, 24)
        assert resolved.method is None

    def test_nothing_matches(self, encrypted_add_source: str):
        assert locate(encrypted_add_source, CodeRef(method="nope", pattern="zzz")) is None
        assert locate(encrypted_add_source, CodeRef()) is None
        assert locate(encrypted_add_source, None) is None


class TestScenarios:
    def test_span_tree(self, market_test_source: str):
        roots = scenario_spans(market_test_source)
        assert [(r.title, r.start_line, r.end_line) for r in roots] == [("PredictionMarket", 4, 31)]
        children = roots[0].children
        assert [(c.title, c.kind, c.start_line, c.end_line) for c in children] == [
            ("Market creation", "describe", 12, 23),
            ("Betting", "describe", 25, 30),
        ]
        assert [(s.title, s.start_line, s.end_line) for s in children[0].children] == [
            ("should create a market", 13, 17),
            ("should reject an empty question", 19, 22),
        ]

    def test_call_scoped_to_block(self, test_panel: CodeLocator):
        resolved = test_panel.resolve(CodeRef(block="should create a market", call="createMarket"))
        assert resolved.lines == (14, 14)
        assert resolved.method == "createMarket"
        assert test_panel.find_call("should place a bet", "createMarket") == 27
        assert test_panel.find_call("should place a bet", "placeBet") == 28

    def test_call_in_comment_ignored(self, test_panel: CodeLocator):
        assert test_panel.find_call("should reject an empty question", "createMarket") == 21

    def test_call_outside_block(self, test_panel: CodeLocator):
        assert test_panel.resolve(CodeRef(block="should place a bet", call="marketCount")) is None
        assert test_panel.find_call("no such block", "createMarket") is None

    def test_method_resolves_scenario(self, test_panel: CodeLocator):
        assert test_panel.resolve(CodeRef(method="Betting")).lines == (25, 30)


class TestResolveStep:
    def test_resolves_both_panels(self, contract: CodeLocator, test_panel: CodeLocator):
        step = TutorialStep(
            id="step-1",
            title="Add to the total",
            test=CodeRef(block="should create a market", call="createMarket"),
            contract=CodeRef(method="add"),
            fhe_call=FheCall(name="allowThis"),
        )
        resolved = resolve_step(step, contract, test_panel)
        assert resolved.contract.lines == (13, 18)
        assert resolved.test.lines == (14, 14)
        assert resolved.step.contract.lines == (13, 18)
        assert resolved.step.test.lines == (14, 14)
        assert resolved.step.fhe_call.line == 16

    def test_failed_reference_left_alone(self, contract: CodeLocator, test_panel: CodeLocator):
        step = TutorialStep(
            id="step-2",
            title="Missing",
            contract=CodeRef(method="nope"),
            fhe_call=FheCall(name="add", line=3),
        )
        resolved = resolve_step(step, contract, test_panel)
        assert resolved.contract is None
        assert resolved.test is None
        assert resolved.step.contract == CodeRef(method="nope")
        assert resolved.step.fhe_call.line == 3

"""Tests for the Solidity structural parser."""

from pathlib import Path

import pytest

from labz_cli.parser import ContractParser, function_spans, parse_contract


class TestConcreteScenario:
    """One import, one private euint32, one function with four ordered calls."""

    def test_single_import(self, encrypted_add_source: str):
        parsed = parse_contract(encrypted_add_source)
        assert parsed is not None
        assert len(parsed.imports) == 1
        imp = parsed.imports[0]
        assert imp.path == "@fhevm/solidity/lib/FHE.sol"
        assert imp.items == ["FHE", "euint32", "externalEuint32"]
        assert imp.line == 4

    def test_single_private_state_variable(self, encrypted_add_source: str):
        parsed = parse_contract(encrypted_add_source)
        assert len(parsed.state_variables) == 1
        var = parsed.state_variables[0]
        assert var.name == "_total"
        assert var.type == "euint32"
        assert var.visibility == "private"
        assert var.is_mapping is False
        assert var.line == 9

    def test_operations_in_literal_order(self, encrypted_add_source: str):
        parsed = parse_contract(encrypted_add_source)
        fn = parsed.function("add")
        assert fn is not None
        assert fn.visibility == "external"
        assert [op.name for op in fn.fhe_operations] == [
            "FHE.fromExternal",
            "FHE.add",
            "FHE.allowThis",
            "FHE.allow",
        ]
        lines = [op.line for op in fn.fhe_operations]
        assert lines == sorted(set(lines))
        assert lines == [14, 15, 16, 17]

    def test_operation_full_call_and_column(self, encrypted_add_source: str):
        fn = parse_contract(encrypted_add_source).function("add")
        first = fn.fhe_operations[0]
        assert first.full_call == "FHE.fromExternal(inputHandle, inputProof)"
        assert first.column == 25

    def test_assignment_targets(self, encrypted_add_source: str):
        ops = parse_contract(encrypted_add_source).function("add").fhe_operations
        assert [(op.target, op.target_type) for op in ops] == [
            ("value", "euint32"),
            ("_total", None),
            (None, None),
            (None, None),
        ]

    def test_calls_inside_comments_ignored(self, encrypted_add_source: str):
        fn = parse_contract(encrypted_add_source).function("getTotal")
        assert fn.fhe_operations == []
        assert fn.return_type == "euint32"
        assert fn.state_mutability == "view"

    def test_function_spans_and_params(self, encrypted_add_source: str):
        parsed = parse_contract(encrypted_add_source)
        assert [fn.name for fn in parsed.functions] == ["add", "getTotal"]
        add = parsed.function("add")
        assert (add.start_line, add.end_line) == (13, 18)
        assert [(p.type, p.name) for p in add.parameters] == [
            ("externalEuint32", "inputHandle"),
            ("bytes", "inputProof"),
        ]

    def test_state_accesses(self, encrypted_add_source: str):
        fn = parse_contract(encrypted_add_source).function("add")
        assert [a.line for a in fn.state_accesses] == [15, 16, 17]


class TestTokenContract:
    def test_inheritance_and_imports(self, token_source: str):
        parsed = parse_contract(token_source)
        assert parsed.name == "ConfidentialToken"
        assert parsed.inherits == ["SepoliaConfig", "IToken"]
        assert [imp.path for imp in parsed.imports] == [
            "@fhevm/solidity/lib/FHE.sol",
            "@fhevm/solidity/config/Config.sol",
            "./interfaces/IToken.sol",
        ]
        assert parsed.imports[2].items == []

    def test_state_variables(self, token_source: str):
        parsed = parse_contract(token_source)
        names = [v.name for v in parsed.state_variables]
        assert names == ["NAME", "owner", "_totalSupply", "_balances", "allowances"]

        name_var = parsed.state_variables[0]
        assert name_var.visibility == "public"
        assert name_var.mutability == "constant"

        balances = parsed.state_variables[3]
        assert balances.is_mapping
        assert balances.type == "mapping(address => euint64)"
        assert balances.mapping_key_type == "address"
        assert balances.mapping_value_type == "euint64"

        nested = parsed.state_variables[4]
        assert nested.mapping_value_type == "mapping(address => uint256)"

    def test_events_and_modifiers_are_not_state(self, token_source: str):
        parsed = parse_contract(token_source)
        assert "Transfer" not in [v.name for v in parsed.state_variables]
        assert "onlyOwner" not in [fn.name for fn in parsed.functions]

    def test_constructor_kept_separately(self, token_source: str):
        parsed = parse_contract(token_source)
        assert parsed.constructor is not None
        assert [op.name for op in parsed.constructor.fhe_operations] == [
            "FHE.asEuint64",
            "FHE.allowThis",
        ]
        assert "constructor" not in [fn.name for fn in parsed.functions]

    def test_multiline_signature(self, token_source: str):
        fn = parse_contract(token_source).function("transfer")
        assert (fn.start_line, fn.end_line) == (28, 40)
        assert fn.return_type == "ebool"
        assert fn.visibility == "external"
        assert fn.modifiers == []

    def test_nested_calls_recorded_in_textual_order(self, token_source: str):
        fn = parse_contract(token_source).function("transfer")
        assert [op.name for op in fn.fhe_operations] == [
            "FHE.fromExternal",
            "FHE.le",
            "FHE.select",
            "FHE.asEuint64",
            "FHE.sub",
            "FHE.add",
            "FHE.allowThis",
        ]

    def test_enclosing_call_recorded(self, token_source: str):
        ops = parse_contract(token_source).function("transfer").fhe_operations
        select, nested = ops[2], ops[3]
        assert nested.enclosing == select.id
        assert nested.statement is None
        assert nested.target is None
        assert all(op.enclosing is None for op in ops if op is not nested)

    def test_statement_text(self, token_source: str):
        ops = parse_contract(token_source).function("transfer").fhe_operations
        assert ops[1].statement == "ebool enough = FHE.le(amount, _balances[msg.sender]);"
        assert (ops[4].target, ops[4].target_type) == ("_balances[msg.sender]", None)

    def test_custom_modifiers(self, token_source: str):
        fn = parse_contract(token_source).function("mint")
        assert fn.visibility == "public"
        assert fn.modifiers == ["onlyOwner"]

    def test_operation_ids_are_unique(self, token_source: str):
        parsed = parse_contract(token_source)
        ops = list(parsed.constructor.fhe_operations)
        for fn in parsed.functions:
            ops.extend(fn.fhe_operations)
        ids = [op.id for op in ops]
        assert len(ids) == len(set(ids))


class TestParserEdgeCases:
    def test_idempotent(self, token_source: str):
        assert parse_contract(token_source) == parse_contract(token_source)

    @pytest.mark.parametrize("source", ["", "pragma solidity ^0.8.24;", "contract Broken { function f() {"])
    def test_unparsable_returns_none(self, source: str):
        assert parse_contract(source) is None

    def test_braces_in_strings_and_comments(self):
        source = (
            "contract C {\n"
            '    string s = "}}}";\n'
            "    // }\n"
            "    function f() public {\n"
            "        /* { */ FHE.add(a, b);\n"
            "    }\n"
            "}\n"
        )
        parsed = parse_contract(source)
        fn = parsed.function("f")
        assert (fn.start_line, fn.end_line) == (4, 6)
        assert [op.line for op in fn.fhe_operations] == [5]

    def test_custom_namespaces(self):
        source = "contract C { function f() public { TFHE.add(a, b); FHE.sub(a, b); } }"
        parsed = parse_contract(source, namespaces=["TFHE"])
        assert [op.name for op in parsed.function("f").fhe_operations] == ["TFHE.add"]

    def test_any_namespace(self):
        source = "contract C { function f() public { TFHE.add(a, b); FHE.sub(a, b); x.y(1); } }"
        parsed = parse_contract(source, namespaces=None)
        assert [op.name for op in parsed.function("f").fhe_operations] == ["TFHE.add", "FHE.sub"]

    def test_default_visibility(self):
        parsed = parse_contract("contract C { uint256 x; function f() { } }")
        assert parsed.state_variables[0].visibility == "internal"
        assert parsed.function("f").visibility == "internal"


class TestFunctionSpans:
    def test_solidity(self, encrypted_add_source: str):
        spans = function_spans(encrypted_add_source)
        assert (spans["add"].start_line, spans["add"].end_line) == (13, 18)
        assert (spans["getTotal"].start_line, spans["getTotal"].end_line) == (22, 25)

    def test_first_declaration_wins(self):
        source = "function f() {\n}\nfunction f() {\n\n}\n"
        assert function_spans(source)["f"].start_line == 1

    def test_method_calls_are_not_declarations(self):
        assert function_spans("obj.function(x) {\n}\n") == {}


class TestContractParser:
    def test_parse_file(self, encrypted_add_path: Path):
        parsed = ContractParser().parse_file(encrypted_add_path)
        assert parsed.name == "EncryptedAdd"

    def test_parse_project_skips_vendor_dirs(self, temp_dir: Path, encrypted_add_source: str):
        (temp_dir / "contracts").mkdir()
        (temp_dir / "node_modules" / "lib").mkdir(parents=True)
        (temp_dir / "contracts" / "Add.sol").write_text(encrypted_add_source)
        (temp_dir / "node_modules" / "lib" / "Vendor.sol").write_text(encrypted_add_source)
        (temp_dir / "contracts" / "Empty.sol").write_text("// nothing here\n")

        contracts = ContractParser().parse_project(temp_dir)
        assert list(contracts) == [str(Path("contracts") / "Add.sol")]

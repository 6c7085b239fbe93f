"""Tests for the composable API functions in loopguard.api."""

import pytest

from loopguard.api import (
    build_program,
    dump_cfg,
    dump_instrumented_ir,
    dump_ir,
    lower_source,
)
from loopguard.cfg import CFG
from loopguard.ir import IRInstruction, Opcode
from loopguard.parser import SourceParseError
from loopguard.registry import FunctionRegistry

SIMPLE_SOURCE = "x = 42\n"

FUNCTION_SOURCE = """\
def greet(name):
    return name

greet("world")
"""


class TestLowerSource:
    def test_returns_list_of_ir_instructions(self):
        result = lower_source(SIMPLE_SOURCE)
        assert isinstance(result, list)
        assert all(isinstance(inst, IRInstruction) for inst in result)

    def test_contains_expected_opcodes(self):
        result = lower_source(SIMPLE_SOURCE)
        opcodes = [inst.opcode for inst in result]
        assert Opcode.CONST in opcodes
        assert Opcode.STORE_VAR in opcodes

    def test_language_parameter(self):
        result = lower_source("let x = 42;\n", language="javascript")
        assert len(result) > 0

    def test_namespace_prefixes_labels(self):
        result = lower_source(FUNCTION_SOURCE, namespace="p3")
        labels = [inst.label for inst in result if inst.opcode == Opcode.LABEL]
        assert labels[0] == "entry_p3"
        assert all("_p3_" in label for label in labels[1:])

    def test_syntax_error_raises(self):
        with pytest.raises(SourceParseError) as exc_info:
            lower_source("def (:\n")
        assert exc_info.value.line == 1

    def test_unsupported_language(self):
        with pytest.raises(ValueError):
            lower_source("x", language="cobol")


class TestDumpIr:
    def test_contains_instruction_text(self):
        result = dump_ir(SIMPLE_SOURCE)
        assert "const" in result
        assert "42" in result

    def test_one_instruction_per_line(self):
        result = dump_ir(SIMPLE_SOURCE)
        assert len(result.strip().split("\n")) == len(lower_source(SIMPLE_SOURCE))


class TestDumpInstrumentedIr:
    def test_includes_hooks_and_prelude(self):
        result = dump_instrumented_ir("let x = 1;", "javascript")
        assert "save_var" in result
        assert "func_map_prelude" in result

    def test_includes_previous_programs(self):
        result = dump_instrumented_ir("let y = 1;", "javascript", previous=["let x = 1;"])
        assert "entry_p0" in result


class TestBuildProgram:
    def test_returns_cfg_and_registry(self):
        cfg, registry = build_program(lower_source(FUNCTION_SOURCE))
        assert isinstance(cfg, CFG)
        assert isinstance(registry, FunctionRegistry)

    def test_registry_has_function_params(self):
        _, registry = build_program(lower_source(FUNCTION_SOURCE))
        assert list(registry.func_params.values()) == [["name"]]

    def test_cfg_has_entry_block(self):
        cfg, _ = build_program(lower_source(SIMPLE_SOURCE))
        assert "entry" in cfg.blocks


class TestDumpCfg:
    def test_contains_block_labels(self):
        result = dump_cfg(FUNCTION_SOURCE)
        assert "[entry]" in result
        assert "func_greet" in result

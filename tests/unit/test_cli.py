"""Tests for the loopguard command-line entry point."""

import pytest

from loopguard.cli import main


def _write(tmp_path, name: str, text: str) -> str:
    path = tmp_path / name
    path.write_text(text)
    return str(path)


class TestCheck:
    def test_diagnostic_exits_one(self, tmp_path, capsys):
        path = _write(tmp_path, "loop.js", "let i = 0;\nwhile (i < 10) { i = i - 1; }\n")
        assert main(["check", path]) == 1
        assert capsys.readouterr().out.startswith("candidate:2:1: infinite loop detected")

    def test_terminating_program_exits_zero(self, tmp_path, capsys):
        path = _write(tmp_path, "ok.js", "let x = 1 + 2;\n")
        assert main(["check", path]) == 0
        assert capsys.readouterr().out.strip() == "no infinite loop detected"

    def test_program_error_is_reported_but_not_flagged(self, tmp_path, capsys):
        path = _write(tmp_path, "err.js", "throw 1;\n")
        assert main(["check", path]) == 0
        assert "program_error" in capsys.readouterr().out

    def test_python_language(self, tmp_path, capsys):
        path = _write(tmp_path, "loop.py", "while True:\n    pass\n")
        assert main(["check", "--language", "python", path]) == 1
        assert "infinite loop detected" in capsys.readouterr().out

    def test_prior_programs_are_loaded(self, tmp_path, capsys):
        prior = _write(tmp_path, "prior.js", "function step(x) { return x - 1; }\n")
        path = _write(tmp_path, "cand.js", "let i = 0;\nwhile (i < 10) { i = step(i); }\n")
        assert main(["check", "--prior", prior, path]) == 1
        assert capsys.readouterr().out.startswith("candidate:")

    def test_invalid_threshold_exits_two(self, tmp_path):
        path = _write(tmp_path, "ok.js", "let x = 1;\n")
        assert main(["check", "--threshold", "1", path]) == 2

    def test_unparseable_prior_exits_two(self, tmp_path):
        prior = _write(tmp_path, "bad.js", "let = ;\n")
        path = _write(tmp_path, "ok.js", "let x = 1;\n")
        assert main(["check", "--prior", prior, path]) == 2

    def test_unknown_language_rejected_by_parser(self, tmp_path):
        path = _write(tmp_path, "x.rb", "x = 1\n")
        with pytest.raises(SystemExit):
            main(["check", "--language", "ruby", path])


class TestRun:
    def test_output_is_echoed(self, tmp_path, capsys):
        path = _write(tmp_path, "hello.js", 'console.log("hello");\n')
        assert main(["run", path]) == 0
        assert "hello" in capsys.readouterr().out

    def test_runtime_error_exits_one(self, tmp_path):
        path = _write(tmp_path, "err.py", "x = undefined_name\n")
        assert main(["run", "-l", "python", path]) == 1

    def test_step_limit_exits_one(self, tmp_path):
        path = _write(tmp_path, "spin.js", "while (true) { }\n")
        assert main(["run", "--max-steps", "100", path]) == 1


class TestIr:
    def test_prints_ir(self, tmp_path, capsys):
        path = _write(tmp_path, "x.py", "x = 42\n")
        assert main(["ir", "-l", "python", path]) == 0
        out = capsys.readouterr().out
        assert "store_var x" in out
        assert "save_var" not in out

    def test_prints_instrumented_ir(self, tmp_path, capsys):
        path = _write(tmp_path, "x.js", "let x = 1;\n")
        assert main(["ir", "--instrumented", path]) == 0
        assert "save_var" in capsys.readouterr().out

    def test_syntax_error_exits_one(self, tmp_path):
        path = _write(tmp_path, "bad.py", "def (:\n")
        assert main(["ir", "-l", "python", path]) == 1

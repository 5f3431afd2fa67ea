# =============================================================================
# test_cli.py - crbparse Command-Line Tests
# =============================================================================
# Tests for the crbparse CLI tool.
#
# Test coverage includes:
#   - Help and version output
#   - Clean programs: default summary, --tree, --json, --tokens
#   - Programs with errors: report on stderr, exit code 1
#   - --strict and --max-errors
#   - Missing input file
# =============================================================================

import json


CLEAN = """\
Public Batt
BeginProg
  Scan(1, Sec, 0, 0)
    Battery(Batt)
  NextScan
EndProg
"""

BROKEN = """\
BeginProg
  Scan(1, Sec, 0)
    If Batt < 11 Than
      x = 1
"""


def write_program(tmp_path, source: str, name: str = "logger.cr1"):
    """Write a program file and return its path as a string."""
    path = tmp_path / name
    path.write_text(source, encoding="utf-8")
    return str(path)


# =============================================================================
# CLI Tests
# =============================================================================

class TestCrbparseCLI:
    """Tests for the crbparse CLI tool."""

    def test_cli_help(self):
        """Test CLI help output."""
        from click.testing import CliRunner
        from crbasic.cli.crbparse import main

        runner = CliRunner()
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        assert "Parse a CRBasic datalogger program" in result.output

    def test_cli_version(self):
        """Test CLI version output."""
        from click.testing import CliRunner
        from crbasic import __version__
        from crbasic.cli.crbparse import main

        runner = CliRunner()
        result = runner.invoke(main, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_clean_program(self, tmp_path):
        """A clean program prints a one-line summary."""
        from click.testing import CliRunner
        from crbasic.cli.crbparse import main

        path = write_program(tmp_path, CLEAN)
        runner = CliRunner()
        result = runner.invoke(main, [path])

        assert result.exit_code == 0
        assert "no errors" in result.output

    def test_tree_output(self, tmp_path):
        """--tree prints the outline."""
        from click.testing import CliRunner
        from crbasic.cli.crbparse import main

        path = write_program(tmp_path, CLEAN)
        runner = CliRunner()
        result = runner.invoke(main, [path, "--tree"])

        assert result.exit_code == 0
        assert result.output.startswith("SourceFile")
        assert "ScanStmt" in result.output
        assert "FunctionCall Battery" in result.output

    def test_json_output(self, tmp_path):
        """--json prints the tree as JSON."""
        from click.testing import CliRunner
        from crbasic.cli.crbparse import main

        path = write_program(tmp_path, CLEAN)
        runner = CliRunner()
        result = runner.invoke(main, [path, "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["root"]["kind"] == "SourceFile"
        assert data["filename"] == path
        assert data["diagnostics"] == []

    def test_tokens_output(self, tmp_path):
        """--tokens prints one token per line."""
        from click.testing import CliRunner
        from crbasic.cli.crbparse import main

        path = write_program(tmp_path, "Public Batt\n")
        runner = CliRunner()
        result = runner.invoke(main, [path, "--tokens"])

        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert len(lines) == 3
        assert "KEYWORD" in lines[0]
        assert "'Batt'" in lines[1]
        assert lines[2].endswith("EOF")

    def test_errors_reported(self, tmp_path):
        """Diagnostics are printed with source context and exit code 1."""
        from click.testing import CliRunner
        from crbasic.cli.crbparse import main

        path = write_program(tmp_path, BROKEN)
        runner = CliRunner()
        result = runner.invoke(main, [path])

        assert result.exit_code == 1
        assert f"{path}:2:7: error: malformed argument list" in result.output
        assert "expected 'Then', found 'Than'" in result.output
        assert "missing 'EndProg' to close 'BeginProg'" in result.output
        assert "5 errors" in result.output

    def test_tree_printed_despite_errors(self, tmp_path):
        """Without --strict the partial tree is still printed."""
        from click.testing import CliRunner
        from crbasic.cli.crbparse import main

        path = write_program(tmp_path, BROKEN)
        runner = CliRunner()
        result = runner.invoke(main, [path, "--tree"])

        assert result.exit_code == 1
        assert "IfStmt" in result.output

    def test_strict(self, tmp_path):
        """--strict fails without printing the tree."""
        from click.testing import CliRunner
        from crbasic.cli.crbparse import main

        path = write_program(tmp_path, BROKEN)
        runner = CliRunner()
        result = runner.invoke(main, [path, "--tree", "--strict"])

        assert result.exit_code == 1
        assert "SourceFile" not in result.output
        assert "missing 'EndProg'" in result.output

    def test_max_errors(self, tmp_path):
        """--max-errors limits the diagnostics shown but not the total."""
        from click.testing import CliRunner
        from crbasic.cli.crbparse import main

        path = write_program(tmp_path, BROKEN)
        runner = CliRunner()
        result = runner.invoke(main, [path, "--max-errors", "1"])

        assert result.exit_code == 1
        assert result.output.count(": error:") == 1
        assert "5 errors" in result.output

    def test_missing_file(self, tmp_path):
        """A missing input file is a usage error."""
        from click.testing import CliRunner
        from crbasic.cli.crbparse import main

        runner = CliRunner()
        result = runner.invoke(main, [str(tmp_path / "nope.cr1")])

        assert result.exit_code == 2

    def test_verbose(self, tmp_path):
        """-v reports token and node counts."""
        from click.testing import CliRunner
        from crbasic.cli.crbparse import main

        path = write_program(tmp_path, CLEAN)
        runner = CliRunner()
        result = runner.invoke(main, ["-v", path])

        assert result.exit_code == 0
        assert "Parsed" in result.output

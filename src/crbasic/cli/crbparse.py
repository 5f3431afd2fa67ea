"""
crbparse - CRBasic Parser Command-Line Interface
================================================

This module implements the command-line interface for the CRBasic parser.
It reads a datalogger program, parses it, and prints the syntax tree, the
token stream or just the diagnostics.

Usage Examples
--------------
Check a program for syntax errors:
    $ crbparse logger.cr1

Print the syntax tree:
    $ crbparse logger.cr1 --tree

Machine-readable tree for other tools:
    $ crbparse logger.cr1 --json > logger.json

Token stream (for debugging the lexer):
    $ crbparse logger.cr1 --tokens

Verbose mode:
    $ crbparse -v logger.cr1
"""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click

from crbasic import __version__
from crbasic.ast import TreePrinter
from crbasic.cli.errors import ExitCode, handle_cli_exception
from crbasic.errors import DiagnosticCollector
from crbasic.lexer import Token, TokenKind
from crbasic.parser import ParserOptions, parse


def _format_token(token: Token) -> str:
    """One line per token: position, kind, text."""
    position = f"{token.span.line}:{token.span.column}"
    if token.kind is TokenKind.EOF:
        return f"{position:<10}EOF"
    return f"{position:<10}{token.kind.name:<13}{token.text!r}"


# =============================================================================
# CLI Definition
# =============================================================================

@click.command()
@click.argument(
    "input_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--tree", "output_format",
    flag_value="tree",
    help="Print the syntax tree as an indented outline",
)
@click.option(
    "--json", "output_format",
    flag_value="json",
    help="Print the syntax tree and diagnostics as JSON",
)
@click.option(
    "--tokens", "output_format",
    flag_value="tokens",
    help="Print the token stream",
)
@click.option(
    "--strict",
    is_flag=True,
    help="Fail without output if the program has any error",
)
@click.option(
    "--max-errors",
    type=click.IntRange(min=1),
    default=100,
    show_default=True,
    help="Stop recording diagnostics after this many",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Verbose output (debug logging)",
)
@click.version_option(version=__version__, prog_name="crbparse")
def main(
    input_file: Path,
    output_format: Optional[str],
    strict: bool,
    max_errors: int,
    verbose: bool,
) -> None:
    """
    Parse a CRBasic datalogger program.

    INPUT_FILE is the CRBasic source file (.cr1, .cr6, .cr300, ...).

    Diagnostics are written to stderr. The exit status is 0 for a clean
    program and 1 if any lexical or syntax error was found.

    \b
    Examples:
        crbparse logger.cr1              # Report errors only
        crbparse logger.cr1 --tree       # Print the syntax tree
        crbparse logger.cr1 --json       # Tree and diagnostics as JSON
        crbparse logger.cr1 --tokens     # Token stream
    """
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s: %(message)s")

    options = ParserOptions(
        filename=str(input_file),
        max_errors=max_errors,
        strict=strict,
    )

    try:
        source = input_file.read_text(encoding="utf-8")
        tree, diagnostics = parse(source, options)

        if output_format == "tree":
            click.echo(TreePrinter().print(tree.root))
        elif output_format == "json":
            click.echo(json.dumps(tree.to_dict(), indent=2))
        elif output_format == "tokens":
            for token in tree.tokens:
                click.echo(_format_token(token))

        if verbose:
            click.echo(
                f"Parsed {input_file}: {len(tree.tokens)} tokens, "
                f"{sum(1 for _ in tree.walk())} nodes",
                err=True,
            )

    except Exception as e:
        handle_cli_exception(e, verbose=verbose)

    if diagnostics:
        collector = DiagnosticCollector(max_errors=max_errors)
        for diagnostic in diagnostics:
            collector.add(diagnostic)
        collector.dropped = tree.dropped_diagnostics
        click.echo(collector.report(source, options.filename), err=True)
        sys.exit(ExitCode.PARSE_ERROR)

    if output_format is None:
        click.echo(f"{input_file}: no errors")


if __name__ == "__main__":
    main()

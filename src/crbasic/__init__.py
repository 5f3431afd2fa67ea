"""
CRBasic Parser - Syntax Trees for Campbell Scientific Datalogger Programs
=========================================================================

This package parses CRBasic, the BASIC dialect used to program Campbell
Scientific dataloggers (CR1000, CR6, CR300, ...), into an immutable syntax
tree for downstream tooling such as editors, linters and static analyzers.

The parser never gives up on bad input: every lexical or syntax problem is
reported as a diagnostic attached to the smallest enclosing construct, and
a complete tree is always returned.

Main Components
---------------
- **lexer**: Source text to tokens, with comments and whitespace kept as
  trivia so the tree reproduces the source exactly
- **expressions**: Precedence-climbing expression parser
- **parser**: Statement parser with block matching and error recovery
- **ast**: Node kinds, the syntax tree, visitor and printer
- **errors**: Diagnostics, collector and exception hierarchy

Quick Start
-----------
Parse a program:
    >>> from crbasic import parse
    >>> tree, diagnostics = parse(open("logger.cr1").read())
    >>> for node in tree.find_all(NodeKind.DATA_TABLE_STMT):
    ...     print(node.metadata["name"])

Print the tree:
    >>> from crbasic import TreePrinter
    >>> print(TreePrinter().print(tree.root))

Or use the command-line tool:
    $ crbparse logger.cr1 --tree
"""

__version__ = "1.0.0"

# =============================================================================
# Public API Exports
# =============================================================================

from crbasic.ast import (
    NodeKind,
    NodeVisitor,
    SyntaxNode,
    SyntaxTree,
    TreePrinter,
)
from crbasic.errors import (
    CRBasicDiagnosticError,
    CRBasicError,
    CRBasicLexError,
    CRBasicParseError,
    CRBasicSyntaxError,
    Diagnostic,
    DiagnosticCollector,
    DiagnosticKind,
    SourceLocation,
    SourceSpan,
)
from crbasic.expressions import parse_expression
from crbasic.lexer import (
    Directive,
    Keyword,
    Lexer,
    NumberBase,
    Token,
    TokenKind,
    tokenize,
)
from crbasic.parser import Parser, ParserOptions, parse

__all__ = [
    "__version__",
    # Parsing
    "parse",
    "parse_expression",
    "tokenize",
    "Parser",
    "ParserOptions",
    "Lexer",
    # Tokens
    "Token",
    "TokenKind",
    "Keyword",
    "Directive",
    "NumberBase",
    # Tree
    "NodeKind",
    "SyntaxNode",
    "SyntaxTree",
    "NodeVisitor",
    "TreePrinter",
    # Diagnostics
    "Diagnostic",
    "DiagnosticKind",
    "DiagnosticCollector",
    "SourceLocation",
    "SourceSpan",
    "CRBasicError",
    "CRBasicDiagnosticError",
    "CRBasicLexError",
    "CRBasicSyntaxError",
    "CRBasicParseError",
]

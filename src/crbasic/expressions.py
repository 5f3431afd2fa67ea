"""
CRBasic Expression Parser
=========================

This module implements the expression half of the CRBasic parser, and the
token-cursor machinery shared with the statement parser: lookahead,
diagnostic reporting, missing-token handling and node construction.

Expression Grammar
------------------
Precedence climbing over seven binary levels, all left-associative
(lowest to highest):

1. Additive:       + -
2. Multiplicative: * / MOD INTDV
3. Power:          ^             (2^3^2 is (2^3)^2)
4. Comparison:     = <> < > <= >=
5. Logical:        AND OR XOR IMP
6. Concatenation:  & |
7. Shift:          >> <<

Unary prefix operators (- + NOT !) bind tighter than any binary level and
are right-recursive. Primaries are identifiers, number/string/boolean
literals, parenthesized expressions and function calls ``Name(args)``.

CRBasic is line-oriented: an expression never continues onto the next
line, so an operator that starts a new line ends the expression.

Parentheses, call arguments and unary operators may nest at most
MAX_NESTING_DEPTH levels. A group nested deeper is reported and skipped
up to its closing parenthesis, which keeps the parser within Python's
recursion limit.

Example Usage
-------------
>>> from crbasic.expressions import parse_expression
>>> node, diagnostics = parse_expression("2 + 3 * 4")
>>> node.metadata["operator"]
'+'
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from crbasic.ast import NodeKind, SyntaxNode, TreeBuilder
from crbasic.errors import (
    Diagnostic,
    DiagnosticCollector,
    DiagnosticKind,
    SourceSpan,
)
from crbasic.lexer import Lexer, Token, TokenKind

logger = logging.getLogger(__name__)


# =============================================================================
# Operator Tables
# =============================================================================

# Canonical operator value -> precedence level
BINARY_PRECEDENCE: dict[str, int] = {
    "+": 1, "-": 1,
    "*": 2, "/": 2, "MOD": 2, "INTDV": 2,
    "^": 3,
    "=": 4, "<>": 4, "<": 4, ">": 4, "<=": 4, ">=": 4,
    "AND": 5, "OR": 5, "XOR": 5, "IMP": 5,
    "&": 6, "|": 6,
    ">>": 7, "<<": 7,
}

UNARY_OPERATORS = frozenset({"-", "+", "NOT", "!"})

COMPARISON_OPERATORS = frozenset({"=", "<>", "<", ">", "<=", ">="})

# Deepest nesting of parentheses, call arguments and unary operators
MAX_NESTING_DEPTH = 64


# =============================================================================
# Parse Markers
# =============================================================================

@dataclass(frozen=True)
class Marker:
    """
    Start of a construct being parsed.

    Attributes:
        start: Index of the construct's first token
        depth: Diagnostic frame depth before the construct was opened
    """
    start: int
    depth: int


# =============================================================================
# Expression Parser
# =============================================================================

class ExpressionParser:
    """
    Parses CRBasic expressions from a token list.

    Problems never raise. Each one is reported as a diagnostic and attached
    to the smallest construct being built when it was found: every
    construct opens a diagnostic frame with ``_open()`` and collects the
    frame's diagnostics when it is finished with ``_close()``.

    Attributes:
        tokens: Tokens to parse, ending with EOF
        source: Source text the tokens came from
        builder: TreeBuilder allocating the nodes
        collector: DiagnosticCollector receiving every diagnostic
    """

    def __init__(
        self,
        tokens: Sequence[Token],
        source: str = "",
        collector: Optional[DiagnosticCollector] = None,
        lex_diagnostics: Sequence[Diagnostic] = (),
    ):
        """
        Initialize the parser.

        Args:
            tokens: Token list from the lexer, ending with EOF
            source: Original source text
            collector: Diagnostic sink (a fresh one if not given)
            lex_diagnostics: LexError diagnostics to attach to their tokens
        """
        self.tokens = list(tokens)
        self.source = source
        self.builder = TreeBuilder(self.tokens, source)
        self.collector = collector if collector is not None else DiagnosticCollector()

        # Current position in token stream
        self._pos = 0

        # Open parentheses, argument lists and unary operators
        self._nesting = 0

        # Open diagnostic frames, innermost last
        self._frames: list[list[Diagnostic]] = []

        # Line of the most recent diagnostic
        self._last_error_line = 0

        # Lex diagnostics keyed by the index of the token they describe
        by_offset: dict[int, list[Diagnostic]] = {}
        for diagnostic in lex_diagnostics:
            by_offset.setdefault(diagnostic.span.start, []).append(diagnostic)
        self._lex_diagnostics: dict[int, list[Diagnostic]] = {}
        for index, token in enumerate(self.tokens):
            if token.span.start in by_offset and token.kind is not TokenKind.EOF:
                self._lex_diagnostics[index] = by_offset.pop(token.span.start)

    # =========================================================================
    # Token Access Methods
    # =========================================================================

    def _at_end(self) -> bool:
        """Check if we've reached the EOF token."""
        return self._peek().kind is TokenKind.EOF

    def _peek(self, offset: int = 0) -> Token:
        """Look at token at current position + offset."""
        pos = self._pos + offset
        if pos >= len(self.tokens):
            return self.tokens[-1]  # Return EOF
        return self.tokens[pos]

    def _advance(self) -> Token:
        """
        Consume and return the current token.

        EOF is never consumed here; see ``_claim_eof``.
        """
        token = self._peek()
        if token.kind is TokenKind.EOF:
            return token

        for diagnostic in self._lex_diagnostics.pop(self._pos, ()):
            self._record(diagnostic)
        self._pos += 1
        return token

    def _claim_eof(self) -> None:
        """Consume the EOF token into the construct being built."""
        if self._pos == len(self.tokens) - 1:
            self._pos += 1

    def _same_line(self, offset: int = 0) -> bool:
        """True if the token at offset continues the current line."""
        token = self._peek(offset)
        return token.kind is not TokenKind.EOF and not token.newline_before

    def _on_line(self) -> bool:
        """True if the current token may continue the construct being parsed."""
        return self._same_line() or (self._pos == 0 and not self._at_end())

    def _check_punct(self, char: str) -> bool:
        """Check for punctuation on the current line."""
        return self._same_line() and self._peek().is_punctuation(char)

    def _check_operator(self, *values: str) -> bool:
        """Check for one of the operators on the current line."""
        return self._same_line() and self._peek().is_operator(*values)

    @staticmethod
    def _describe(token: Token) -> str:
        """Short description of a token for messages."""
        if token.kind is TokenKind.EOF:
            return "end of input"
        if token.kind is TokenKind.STRING:
            return "string literal"
        return f"'{token.text}'"

    # =========================================================================
    # Diagnostics and Node Construction
    # =========================================================================

    def _open(self, start: Optional[int] = None) -> Marker:
        """Begin a construct at the current token (or at start)."""
        marker = Marker(self._pos if start is None else start, len(self._frames))
        self._frames.append([])
        return marker

    def _pop_frames(self, marker: Marker) -> list[Diagnostic]:
        """Close every frame opened since marker, returning their diagnostics."""
        collected: list[Diagnostic] = []
        while len(self._frames) > marker.depth:
            collected = self._frames.pop() + collected
        return collected

    def _close(
        self,
        kind: NodeKind,
        marker: Marker,
        children: Sequence[Optional[SyntaxNode]] = (),
        fields: Optional[dict] = None,
        metadata: Optional[dict] = None,
    ) -> SyntaxNode:
        """Finish a construct opened with _open and build its node."""
        return self.builder.node(
            kind,
            marker.start,
            self._pos,
            children=children,
            fields=fields,
            metadata=metadata,
            diagnostics=self._pop_frames(marker),
        )

    def _abandon(self, marker: Marker) -> None:
        """Drop a construct that produced no node; its diagnostics move outward."""
        diagnostics = self._pop_frames(marker)
        if self._frames:
            self._frames[-1].extend(diagnostics)

    def _record(self, diagnostic: Diagnostic) -> None:
        """Hand a diagnostic to the collector and the innermost frame."""
        self._last_error_line = diagnostic.span.line
        if self.collector.add(diagnostic) and self._frames:
            self._frames[-1].append(diagnostic)

    def _report(
        self,
        message: str,
        span: Optional[SourceSpan] = None,
        hint: Optional[str] = None,
    ) -> None:
        """Report a syntax error at span (default: the current token)."""
        if span is None:
            span = self._error_span()
        self._record(Diagnostic(DiagnosticKind.SYNTAX_ERROR, message, span, hint))

    def _text_span(self, node: SyntaxNode) -> SourceSpan:
        """Span of a node's tokens, leading trivia excluded."""
        if node.end_token <= node.first_token:
            return node.span
        first = self.tokens[node.first_token]
        last = self.tokens[min(node.end_token, len(self.tokens)) - 1]
        return first.span.cover(last.span)

    def _error_span(self) -> SourceSpan:
        """
        Where to point for something missing at the current position.

        The current token if it is on the same line, otherwise the end of
        the previous token.
        """
        if self._pos == 0 or self._same_line():
            return self._peek().span
        return self.tokens[self._pos - 1].span.collapse_to_end()

    def _missing(self, description: str, hint: Optional[str] = None) -> SyntaxNode:
        """Report a missing construct and return an empty ErrorNode in its place."""
        marker = self._open()
        found = self._peek()
        if self._same_line():
            self._report(f"expected {description}, found {self._describe(found)}", hint=hint)
        else:
            self._report(f"expected {description}", hint=hint)
        return self._close(NodeKind.ERROR_NODE, marker)

    def _expect(
        self,
        predicate: Callable[[Token], bool],
        description: str,
        children: list,
    ) -> Optional[Token]:
        """
        Expect and consume a token matching predicate on the current line.

        If the token is found later on the same line, the tokens before it
        are wrapped in an ErrorNode (appended to children) and it is then
        consumed. Otherwise the token is treated as missing and nothing is
        consumed.

        Args:
            predicate: Test for the expected token
            description: What was expected, for the message
            children: Child list of the construct being built

        Returns:
            The consumed token, or None if it was missing
        """
        token = self._peek()
        if not self._same_line():
            self._report(f"expected {description}")
            return None

        if predicate(token):
            return self._advance()

        # Look for it further along the line
        index = self._pos + 1
        while index < len(self.tokens) - 1 and not self.tokens[index].newline_before:
            if predicate(self.tokens[index]):
                marker = self._open()
                self._report(
                    f"expected {description}, found {self._describe(token)}",
                    span=token.span.cover(self.tokens[index - 1].span),
                )
                while self._pos < index:
                    self._advance()
                children.append(self._close(NodeKind.ERROR_NODE, marker))
                return self._advance()
            index += 1

        self._report(f"expected {description}, found {self._describe(token)}")
        return None

    def _expect_punct(self, char: str, children: list) -> Optional[Token]:
        """Expect punctuation on the current line."""
        return self._expect(lambda t: t.is_punctuation(char), f"'{char}'", children)

    def _expect_operator(self, value: str, children: list) -> Optional[Token]:
        """Expect an operator on the current line."""
        return self._expect(lambda t: t.is_operator(value), f"'{value}'", children)

    # =========================================================================
    # Expression Parsing
    # =========================================================================

    def parse_expression(self, min_precedence: int = 1) -> SyntaxNode:
        """
        Parse an expression by precedence climbing.

        Args:
            min_precedence: Lowest binary level this call may consume

        Returns:
            The expression node (an ErrorNode if no expression was found)
        """
        marker = self._open()
        left = self._parse_unary()

        while True:
            token = self._peek()
            if not self._same_line() or token.kind is not TokenKind.OPERATOR:
                break
            precedence = BINARY_PRECEDENCE.get(token.value)
            if precedence is None or precedence < min_precedence:
                break

            self._advance()
            right = self.parse_expression(precedence + 1)
            left = self._close(
                NodeKind.BINARY_EXPR,
                marker,
                children=(left, right),
                fields={"left": left, "right": right},
                metadata={"operator": token.value},
            )
            marker = self._open(left.first_token)

        self._abandon(marker)
        return left

    def parse_standalone(self) -> SyntaxNode:
        """
        Parse the whole token list as one expression.

        Trailing tokens become an ErrorNode. All tokens, EOF included, end
        up in a SourceFile root; the expression node is returned.
        """
        root = self._open()
        expression = self.parse_expression()
        children: list = [expression]
        if not self._at_end():
            trailing = self._open()
            self._report(f"unexpected {self._describe(self._peek())} after expression")
            while not self._at_end():
                self._advance()
            children.append(self._close(NodeKind.ERROR_NODE, trailing))
        self._claim_eof()
        self._close(NodeKind.SOURCE_FILE, root, children=children)
        return expression

    def _parse_unary(self) -> SyntaxNode:
        """Parse unary expression (- + NOT !), right-recursive."""
        token = self._peek()
        if self._on_line() and token.is_operator(*UNARY_OPERATORS):
            if self._nesting >= MAX_NESTING_DEPTH:
                return self._skip_nested_group()
            marker = self._open()
            self._advance()
            self._nesting += 1
            try:
                operand = self._parse_unary()
            finally:
                self._nesting -= 1
            return self._close(
                NodeKind.UNARY_EXPR,
                marker,
                children=(operand,),
                fields={"operand": operand},
                metadata={"operator": token.value},
            )
        return self._parse_primary()

    def _skip_nested_group(self) -> SyntaxNode:
        """
        Report an expression nested too deeply and wrap it in an ErrorNode.

        Tokens are skipped up to the ',' or ')' that ends the current
        operand at this depth, or the end of the line.
        """
        marker = self._open()
        self._report(
            f"expression nested more than {MAX_NESTING_DEPTH} levels deep",
            hint="split it into intermediate variables",
        )
        balance = 0
        while True:
            token = self._peek()
            if token.is_punctuation("("):
                balance += 1
            elif token.is_punctuation(")") or token.is_punctuation(","):
                if balance == 0:
                    break
                if token.is_punctuation(")"):
                    balance -= 1
            self._advance()
            if not self._same_line():
                break
        return self._close(NodeKind.ERROR_NODE, marker)

    def _parse_primary(self) -> SyntaxNode:
        """Parse primary expression (literals, names, calls, parenthesized)."""
        token = self._peek()

        if self._on_line():
            if token.kind is TokenKind.NUMBER:
                return self._leaf(NodeKind.NUMBER_LITERAL, value=token.value,
                                  base=token.metadata.get("base"),
                                  suffix=token.metadata.get("suffix"),
                                  scientific=token.metadata.get("scientific", False))

            if token.kind is TokenKind.STRING:
                return self._leaf(NodeKind.STRING_LITERAL, value=token.value,
                                  terminated=token.metadata.get("terminated", True))

            if token.kind is TokenKind.BOOLEAN:
                return self._leaf(NodeKind.BOOLEAN_LITERAL, value=token.value)

            if token.kind is TokenKind.IDENTIFIER:
                if self._peek(1).is_punctuation("(") and self._same_line(1):
                    if self._nesting >= MAX_NESTING_DEPTH:
                        return self._skip_nested_group()
                    return self._parse_call()
                return self._parse_identifier()

            if token.is_punctuation("("):
                if self._nesting >= MAX_NESTING_DEPTH:
                    return self._skip_nested_group()
                return self._parse_paren()

            if token.kind is TokenKind.ERROR:
                return self._parse_error_tokens()

        return self._missing("expression")

    def _leaf(self, kind: NodeKind, **metadata) -> SyntaxNode:
        """Consume one token as a leaf node."""
        marker = self._open()
        self._advance()
        return self._close(kind, marker, metadata=metadata)

    def _parse_identifier(self) -> SyntaxNode:
        """Consume an identifier token as an Identifier node."""
        token = self._peek()
        return self._leaf(NodeKind.IDENTIFIER, value=token.text, name=token.text)

    def _parse_paren(self) -> SyntaxNode:
        """Parse '(' expression ')'."""
        marker = self._open()
        self._advance()  # consume (
        self._nesting += 1
        try:
            inner = self.parse_expression()
        finally:
            self._nesting -= 1
        children: list = [inner]
        self._expect_punct(")", children)
        return self._close(
            NodeKind.PAREN_EXPR,
            marker,
            children=children,
            fields={"expression": inner},
        )

    def _parse_arguments(self, children: list) -> tuple[SyntaxNode, ...]:
        """
        Parse '(' [expr {, expr}] ')' into children.

        The opening parenthesis must be the current token.
        """
        self._advance()  # consume (
        arguments: list[SyntaxNode] = []
        self._nesting += 1
        try:
            if not self._check_punct(")"):
                while True:
                    argument = self.parse_expression()
                    arguments.append(argument)
                    children.append(argument)
                    if self._check_punct(","):
                        self._advance()
                        continue
                    break
        finally:
            self._nesting -= 1
        self._expect_punct(")", children)
        return tuple(arguments)

    def _parse_call(self) -> SyntaxNode:
        """Parse Name '(' [args] ')' as a FunctionCall node."""
        marker = self._open()
        callee = self._parse_identifier()
        children: list = [callee]
        arguments = self._parse_arguments(children)
        return self._close(
            NodeKind.FUNCTION_CALL,
            marker,
            children=children,
            fields={"callee": callee, "arguments": arguments},
            metadata={"name": callee.value, "argument_count": len(arguments)},
        )

    def _parse_error_tokens(self) -> SyntaxNode:
        """
        Wrap a run of invalid characters in an ErrorNode.

        The lexer has already reported them, so no diagnostic is added.
        """
        marker = self._open()
        self._advance()
        while self._same_line() and self._peek().kind is TokenKind.ERROR:
            self._advance()
        return self._close(NodeKind.ERROR_NODE, marker)


# =============================================================================
# Convenience Functions
# =============================================================================

def parse_expression(source: str) -> tuple[SyntaxNode, list[Diagnostic]]:
    """
    Parse a standalone CRBasic expression.

    Anything left over after the expression is wrapped in an ErrorNode and
    reported.

    Args:
        source: Expression text, e.g. ``"(a + 1) * Sin(x)"``

    Returns:
        Tuple of (expression node, diagnostics ordered by position)
    """
    lexer = Lexer(source)
    tokens = list(lexer.tokenize())
    parser = ExpressionParser(tokens, source, lex_diagnostics=lexer.diagnostics)
    expression = parser.parse_standalone()

    diagnostics = parser.collector.sorted()
    logger.debug(f"Parsed expression with {len(diagnostics)} diagnostics")
    return expression, diagnostics

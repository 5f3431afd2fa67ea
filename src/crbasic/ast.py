"""
CRBasic Syntax Tree
===================

This module defines the syntax tree produced by the CRBasic parser: the
node kind tags, the immutable node type, the tree wrapper returned to
callers, the builder the parser uses to allocate nodes, and a visitor and
pretty printer for walking the result.

Node Kinds
----------
SourceFile - root, one per parse
├── Blocks
│   ├── Program (BeginProg/EndProg), FunctionDecl, SubDecl
│   ├── IfStmt (+ ElseIfClause, ElseClause), ForLoop, WhileLoop, DoLoop
│   ├── SelectStmt (+ CaseClause)
│   ├── ScanStmt, SubScanStmt, SlowSequenceStmt
│   ├── MenuStmt, SubMenuStmt, DataTableStmt, ConstTableDecl
│   └── PreprocessorIf, PreprocessorIfDef (+ PreprocessorElse)
├── Simple statements
│   ├── VariableDecl (+ Declarator), ConstDecl, Assignment, FunctionCall
│   ├── MenuItem, CallTableStmt
│   └── PreprocessorUndef, IncludeDirective
├── Expressions
│   ├── BinaryExpr, UnaryExpr, ParenExpr, FunctionCall
│   └── Identifier, NumberLiteral, StringLiteral, BooleanLiteral
└── TypeRef, ParameterList, ErrorNode

Design Notes
------------
- One frozen node type tagged by NodeKind; consumers dispatch on ``kind``.
- Nodes are allocated once, in the order the parser finishes them, and
  referenced by their parent's ``children``. Nothing is mutated or
  re-parented after construction.
- Every token belongs to exactly one node: either a child covers it or the
  node owns it directly in ``tokens`` (keywords, punctuation). Walking the
  leaves in order therefore reproduces the source text.
- ``fields`` names the structurally important children (``condition``,
  ``body``, ...); ``metadata`` carries scalar facts (operator, literal
  value, numeric base, suffix, names).
- A long operator chain is a deep left-leaning tree, so ``walk``,
  ``leaves``, ``to_dict`` and the printer's expression rendering use an
  explicit stack. ``NodeVisitor`` recurses and is limited by Python's
  recursion limit on such trees.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional, Sequence, Union

from crbasic.errors import Diagnostic, SourceSpan
from crbasic.lexer import Token


# =============================================================================
# Node Kinds
# =============================================================================

class NodeKind(Enum):
    """Tag of a syntax node. The value is the name shown in dumps."""

    # === Root and Program Structure ===
    SOURCE_FILE = "SourceFile"
    PROGRAM = "Program"
    FUNCTION_DECL = "FunctionDecl"
    SUB_DECL = "SubDecl"
    PARAMETER_LIST = "ParameterList"

    # === Declarations ===
    VARIABLE_DECL = "VariableDecl"
    DECLARATOR = "Declarator"
    CONST_DECL = "ConstDecl"
    CONST_TABLE_DECL = "ConstTableDecl"
    TYPE_REF = "TypeRef"

    # === Simple Statements ===
    ASSIGNMENT = "Assignment"
    FUNCTION_CALL = "FunctionCall"

    # === Control Structures ===
    IF_STMT = "IfStmt"
    ELSE_IF_CLAUSE = "ElseIfClause"
    ELSE_CLAUSE = "ElseClause"
    FOR_LOOP = "ForLoop"
    WHILE_LOOP = "WhileLoop"
    DO_LOOP = "DoLoop"
    SELECT_STMT = "SelectStmt"
    CASE_CLAUSE = "CaseClause"

    # === Scan, Menu and Table Structures ===
    SCAN_STMT = "ScanStmt"
    SUB_SCAN_STMT = "SubScanStmt"
    SLOW_SEQUENCE_STMT = "SlowSequenceStmt"
    MENU_STMT = "MenuStmt"
    SUB_MENU_STMT = "SubMenuStmt"
    MENU_ITEM = "MenuItem"
    DATA_TABLE_STMT = "DataTableStmt"
    CALL_TABLE_STMT = "CallTableStmt"

    # === Preprocessor ===
    PREPROCESSOR_IF = "PreprocessorIf"
    PREPROCESSOR_IFDEF = "PreprocessorIfDef"
    PREPROCESSOR_ELSE = "PreprocessorElse"
    PREPROCESSOR_UNDEF = "PreprocessorUndef"
    INCLUDE_DIRECTIVE = "IncludeDirective"

    # === Expressions ===
    BINARY_EXPR = "BinaryExpr"
    UNARY_EXPR = "UnaryExpr"
    PAREN_EXPR = "ParenExpr"
    IDENTIFIER = "Identifier"
    NUMBER_LITERAL = "NumberLiteral"
    STRING_LITERAL = "StringLiteral"
    BOOLEAN_LITERAL = "BooleanLiteral"

    # === Recovery ===
    ERROR_NODE = "ErrorNode"


LEAF_KINDS = frozenset({
    NodeKind.IDENTIFIER,
    NodeKind.NUMBER_LITERAL,
    NodeKind.STRING_LITERAL,
    NodeKind.BOOLEAN_LITERAL,
    NodeKind.TYPE_REF,
})

EMPTY_MAPPING: Mapping[str, Any] = MappingProxyType({})


# =============================================================================
# Syntax Node
# =============================================================================

@dataclass(frozen=True, eq=False)
class SyntaxNode:
    """
    One node of the syntax tree.

    Attributes:
        kind: The NodeKind tag
        span: Source range, leading trivia of the first token included
        children: Child nodes in source order
        tokens: Tokens owned directly (not inside any child)
        fields: Named references into children
        metadata: Scalar facts about the node
        diagnostics: Problems attached to this construct
        first_token: Index of the first token in the tree's token list
        end_token: Index just past the last token
    """
    kind: NodeKind
    span: SourceSpan
    children: tuple["SyntaxNode", ...] = ()
    tokens: tuple[Token, ...] = ()
    fields: Mapping[str, Any] = field(default_factory=lambda: EMPTY_MAPPING)
    metadata: Mapping[str, Any] = field(default_factory=lambda: EMPTY_MAPPING)
    diagnostics: tuple[Diagnostic, ...] = ()
    first_token: int = 0
    end_token: int = 0

    def __repr__(self) -> str:
        return f"{self.kind.value}@{self.span.line}:{self.span.column}"

    def __getitem__(self, name: str) -> Any:
        """Shorthand for the named field."""
        return self.fields[name]

    def get(self, name: str, default: Any = None) -> Any:
        """Return a named field, or default if absent."""
        return self.fields.get(name, default)

    @property
    def is_leaf(self) -> bool:
        """True for literal, identifier and type nodes."""
        return self.kind in LEAF_KINDS

    @property
    def value(self) -> Any:
        """The parsed value of a leaf (name, number, string body, bool)."""
        return self.metadata.get("value")

    @property
    def lexeme(self) -> str:
        """Text of the owned tokens, trivia excluded."""
        return " ".join(t.text for t in self.tokens)

    def elements(self) -> Iterator[Union["SyntaxNode", Token]]:
        """Yield children and owned tokens interleaved in source order."""
        items: list[tuple[int, int, Union[SyntaxNode, Token]]] = []
        items.extend((c.span.start, 0, c) for c in self.children)
        items.extend((t.full_start, 1, t) for t in self.tokens)
        items.sort(key=lambda item: (item[0], item[1]))
        for _, _, element in items:
            yield element

    def leaves(self) -> Iterator[Token]:
        """Yield every token under this node in source order."""
        stack: list[Union[SyntaxNode, Token]] = [self]
        while stack:
            element = stack.pop()
            if isinstance(element, Token):
                yield element
            else:
                stack.extend(reversed(list(element.elements())))

    def walk(self) -> Iterator["SyntaxNode"]:
        """Yield this node and all descendants, pre-order."""
        stack: list[SyntaxNode] = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def find_all(self, kind: NodeKind) -> list["SyntaxNode"]:
        """All descendants (self included) of the given kind."""
        return [node for node in self.walk() if node.kind is kind]


# =============================================================================
# Syntax Tree
# =============================================================================

@dataclass(frozen=True, eq=False)
class SyntaxTree:
    """
    The result of parsing one source text.

    Attributes:
        root: The SourceFile node
        source: The text that was parsed
        tokens: Every token, EOF included
        diagnostics: Every diagnostic, ordered by position
        filename: Name used when formatting diagnostics
        dropped_diagnostics: Diagnostics past max_errors that were not kept
    """
    root: SyntaxNode
    source: str
    tokens: tuple[Token, ...]
    diagnostics: tuple[Diagnostic, ...] = ()
    filename: str = "<input>"
    dropped_diagnostics: int = 0

    def walk(self) -> Iterator[SyntaxNode]:
        """Yield all nodes, pre-order."""
        return self.root.walk()

    def leaves(self) -> Iterator[Token]:
        """Yield all tokens in source order, as owned by the tree."""
        return self.root.leaves()

    def find_all(self, kind: NodeKind) -> list[SyntaxNode]:
        """All nodes of the given kind."""
        return self.root.find_all(kind)

    def text(self, node: SyntaxNode) -> str:
        """Source text covered by a node, leading trivia included."""
        return self.source[node.span.start:node.span.end]

    @property
    def has_errors(self) -> bool:
        return bool(self.diagnostics)

    def to_dict(self) -> dict[str, Any]:
        """Plain-data form for JSON output."""
        return {
            "filename": self.filename,
            "root": _node_to_dict(self.root),
            "diagnostics": [
                {
                    "kind": d.kind.value,
                    "message": d.message,
                    "span": _span_to_dict(d.span),
                    "hint": d.hint,
                }
                for d in self.diagnostics
            ],
        }


def _span_to_dict(span: SourceSpan) -> dict[str, int]:
    return {
        "start": span.start,
        "end": span.end,
        "line": span.line,
        "column": span.column,
        "end_line": span.end_line,
        "end_column": span.end_column,
    }


def _plain(value: Any) -> Any:
    """Make a metadata value JSON-friendly."""
    if isinstance(value, Enum):
        return value.name.lower()
    return value


def _node_to_dict(root: SyntaxNode) -> dict[str, Any]:
    # Post-order with an explicit stack; operator chains can be very deep
    built: dict[int, dict[str, Any]] = {}
    stack: list[tuple[SyntaxNode, bool]] = [(root, False)]
    while stack:
        node, expanded = stack.pop()
        if node.children and not expanded:
            stack.append((node, True))
            stack.extend((child, False) for child in node.children)
            continue

        data: dict[str, Any] = {
            "kind": node.kind.value,
            "span": _span_to_dict(node.span),
        }
        if node.metadata:
            data["metadata"] = {k: _plain(v) for k, v in node.metadata.items()}
        if node.is_leaf:
            data["text"] = node.lexeme
        if node.children:
            data["children"] = [built.pop(id(c)) for c in node.children]
        built[id(node)] = data
    return built[id(root)]


# =============================================================================
# Tree Builder
# =============================================================================

class TreeBuilder:
    """
    Allocates syntax nodes for the parser.

    The parser tracks constructs by token index. Given the index range of
    a construct and its already-built children, the builder works out the
    node's span and which tokens the node owns directly.

    Attributes:
        tokens: The token list being parsed
        source: The source text
        node_count: Number of nodes allocated so far
    """

    def __init__(self, tokens: Sequence[Token], source: str):
        self.tokens = tokens
        self.source = source
        self.node_count = 0

    def span(self, first: int, end: int) -> SourceSpan:
        """Span of tokens[first:end], leading trivia included."""
        if end <= first:
            return self.empty_span(first)
        return self.tokens[first].full_span.cover(self.tokens[end - 1].span)

    def empty_span(self, index: int) -> SourceSpan:
        """Zero-width span where tokens[index] (with its trivia) begins."""
        if index >= len(self.tokens):
            return self.tokens[-1].span.collapse_to_end()
        full = self.tokens[index].full_span
        return SourceSpan(full.start, full.start, full.line, full.column, full.line, full.column)

    def node(
        self,
        kind: NodeKind,
        first: int,
        end: int,
        children: Sequence[Optional[SyntaxNode]] = (),
        fields: Optional[dict[str, Any]] = None,
        metadata: Optional[dict[str, Any]] = None,
        diagnostics: Sequence[Diagnostic] = (),
    ) -> SyntaxNode:
        """
        Build a node over tokens[first:end].

        Args:
            kind: Node kind tag
            first: Index of the construct's first token
            end: Index just past its last token
            children: Child nodes in source order (None entries skipped)
            fields: Named references into children
            metadata: Scalar facts
            diagnostics: Problems attached to this construct
        """
        kept = tuple(c for c in children if c is not None)

        owned = []
        cursor = first
        for child in kept:
            owned.extend(self.tokens[cursor:child.first_token])
            cursor = max(cursor, child.end_token)
        owned.extend(self.tokens[cursor:end])

        self.node_count += 1
        return SyntaxNode(
            kind=kind,
            span=self.span(first, end),
            children=kept,
            tokens=tuple(owned),
            fields=MappingProxyType(dict(fields)) if fields else EMPTY_MAPPING,
            metadata=MappingProxyType(dict(metadata)) if metadata else EMPTY_MAPPING,
            diagnostics=tuple(diagnostics),
            first_token=first,
            end_token=end,
        )


# =============================================================================
# Visitor
# =============================================================================

class NodeVisitor:
    """
    Base class for tree visitors.

    Dispatch goes through the node's kind tag: a node of kind ``IfStmt``
    is handled by ``visit_IfStmt`` if the subclass defines it, otherwise by
    ``generic_visit``, which visits the children.

    Usage:
        class TableCollector(NodeVisitor):
            def __init__(self):
                self.names = []

            def visit_DataTableStmt(self, node):
                self.names.append(node.metadata["name"])
                self.generic_visit(node)
    """

    def visit(self, node: SyntaxNode) -> Any:
        visitor = getattr(self, f"visit_{node.kind.value}", self.generic_visit)
        return visitor(node)

    def generic_visit(self, node: SyntaxNode) -> None:
        for child in node.children:
            self.visit(child)


# =============================================================================
# Tree Pretty Printer
# =============================================================================

class TreePrinter(NodeVisitor):
    """
    Pretty printer for syntax tree debugging.

    Statements print one per line with their children indented;
    expressions print inline in fully parenthesized form.

    Usage:
        printer = TreePrinter()
        print(printer.print(tree.root))
    """

    EXPRESSION_KINDS = frozenset({
        NodeKind.BINARY_EXPR,
        NodeKind.UNARY_EXPR,
        NodeKind.PAREN_EXPR,
        NodeKind.IDENTIFIER,
        NodeKind.NUMBER_LITERAL,
        NodeKind.STRING_LITERAL,
        NodeKind.BOOLEAN_LITERAL,
    })

    def __init__(self):
        self.output: list[str] = []
        self.indent_level = 0

    def print(self, node: SyntaxNode) -> str:
        """Print the tree and return it as a string."""
        self.output = []
        self.indent_level = 0
        self.visit(node)
        return "\n".join(self.output)

    def _emit(self, text: str) -> None:
        indent = "  " * self.indent_level
        self.output.append(f"{indent}{text}")

    def generic_visit(self, node: SyntaxNode) -> None:
        if node.kind in self.EXPRESSION_KINDS:
            self._emit(self.expression(node))
            return

        label = node.kind.value
        name = node.metadata.get("name")
        if name is not None:
            label += f" {name}"
        if node.kind is NodeKind.TYPE_REF:
            label += f" {node.value}"
        if node.diagnostics:
            label += f"  !{len(node.diagnostics)}"
        self._emit(f"{label}  [{node.span}]")

        self.indent_level += 1
        for child in node.children:
            self.visit(child)
        self.indent_level -= 1

    def expression(self, node: Optional[SyntaxNode]) -> str:
        """Render an expression in fully parenthesized form."""
        if node is None:
            return ""
        rendered: dict[int, str] = {}
        stack: list[tuple[SyntaxNode, bool]] = [(node, False)]
        while stack:
            current, expanded = stack.pop()
            operands = self._operands(current)
            if operands and not expanded:
                stack.append((current, True))
                stack.extend((operand, False) for operand in operands)
                continue
            texts = [rendered.pop(id(operand)) for operand in operands]
            rendered[id(current)] = self._render(current, texts)
        return rendered[id(node)]

    @staticmethod
    def _operands(node: SyntaxNode) -> tuple[SyntaxNode, ...]:
        """Sub-expressions rendered inside node."""
        kind = node.kind
        if kind is NodeKind.BINARY_EXPR:
            return (node["left"], node["right"])
        if kind is NodeKind.UNARY_EXPR:
            return (node["operand"],)
        if kind is NodeKind.PAREN_EXPR:
            return (node["expression"],)
        if kind is NodeKind.FUNCTION_CALL:
            return tuple(node["arguments"])
        return ()

    @staticmethod
    def _render(node: SyntaxNode, operands: list[str]) -> str:
        """Render one expression node given its rendered operands."""
        kind = node.kind
        if kind is NodeKind.NUMBER_LITERAL or kind is NodeKind.IDENTIFIER:
            return node.tokens[0].text if node.tokens else "?"
        if kind is NodeKind.STRING_LITERAL:
            return f'"{node.value}"'
        if kind is NodeKind.BOOLEAN_LITERAL:
            return "True" if node.value else "False"
        if kind is NodeKind.BINARY_EXPR:
            return f"({operands[0]} {node.metadata['operator']} {operands[1]})"
        if kind is NodeKind.UNARY_EXPR:
            op = node.metadata["operator"]
            sep = " " if op == "NOT" else ""
            return f"({op}{sep}{operands[0]})"
        if kind is NodeKind.PAREN_EXPR:
            return operands[0]
        if kind is NodeKind.FUNCTION_CALL:
            return f"{node.metadata['name']}({', '.join(operands)})"
        if kind is NodeKind.ERROR_NODE:
            return "<error>"
        return f"<{kind.value}>"

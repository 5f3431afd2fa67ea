# =============================================================================
# test_tree.py - Syntax Tree Tests
# =============================================================================
# Tests for the syntax tree structure and its helpers.
#
# Test coverage includes:
#   - Lossless round trip: the tree's tokens reproduce the source exactly,
#     for valid programs and for arbitrary (mostly invalid) input
#   - Span invariants: children inside parents, siblings in order and
#     non-overlapping
#   - Immutability of nodes
#   - Tree navigation: walk, leaves, elements, find_all, text
#   - NodeVisitor dispatch, TreePrinter output, dict/JSON form
#   - Helpers on very deep operator chains
# =============================================================================

import dataclasses
import json

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from crbasic.ast import NodeKind, NodeVisitor, SyntaxNode, TreePrinter
from crbasic.errors import SourceSpan
from crbasic.lexer import Token
from crbasic.parser import parse


# =============================================================================
# Helper Functions
# =============================================================================

def reconstruct(tree) -> str:
    """Concatenate the full text of every token the tree owns."""
    return "".join(token.full_text for token in tree.leaves())


def check_spans(node) -> None:
    """Assert the span invariants for node and all its descendants."""
    previous_end = node.span.start
    for child in node.children:
        assert node.span.contains(child.span), (node, child)
        assert child.span.start >= previous_end, (node, child)
        previous_end = child.span.end
        check_spans(child)


SAMPLE = """\
' Station program
Public Batt, PTemp   ' volts, degC
Dim Msg As String * 16

DataTable(Daily, True, -1)
  DataInterval(0, 1440, Min, 10)
  Minimum(1, Batt, FP2, False, False)
EndTable

BeginProg
  Scan(1, Sec, 0, 0)
    Battery(Batt)
    If Batt < 11 Then Msg = "low" Else Msg = "ok"
    Select Case PTemp
      Case Is > 50
        Msg = "hot"
    EndSelect
    CallTable Daily
  NextScan
EndProg
"""

BROKEN = """\
BeginProg
  Scan(1, 2, 0)
    If x Than
      y = 1 +
    For i = 1 To
    Next j
  EndSelect @
  ExitScan
"""

FRAGMENTS = [
    "BeginProg", "EndProg", "Scan(1, Sec, 0, 0)", "NextScan", "If", "Then",
    "Else", "ElseIf", "EndIf", "For i = 1 To 3", "Next", "While", "Wend",
    "Do", "Loop", "Until", "Select Case", "Case", "Is", "EndSelect",
    "DataTable(T, True, -1)", "EndTable", "Public", "Dim", "As", "Float",
    "#If", "#IfDef", "#Else", "#EndIf", "#UnDef", "Include", "MenuItem",
    "x", "y(1)", "=", "+=", "+", "-", "*", "^", "AND", "NOT", "<>",
    "(", ")", ",", "1", "&hFF", "1.5e-3", '"s"', '"open', "True",
    "@", "' comment", " ", "  ", "\n", "\r\n", "\t",
]


# =============================================================================
# Round Trip Tests
# =============================================================================

class TestRoundTrip:
    """Test that no source text is lost or duplicated."""

    @pytest.mark.parametrize("source", [SAMPLE, BROKEN, "", "   ", "' only a comment"])
    def test_fixed_sources(self, source):
        """Valid, broken and trivial sources all reproduce exactly."""
        tree, _ = parse(source)
        assert reconstruct(tree) == source

    def test_every_token_owned_once(self):
        """The leaves are exactly the token list, in order."""
        tree, _ = parse(BROKEN)
        leaves = list(tree.leaves())
        assert len(leaves) == len(tree.tokens)
        assert all(a is b for a, b in zip(leaves, tree.tokens))

    def test_root_covers_source(self):
        """The root span is the whole source."""
        tree, _ = parse(SAMPLE)
        assert (tree.root.span.start, tree.root.span.end) == (0, len(SAMPLE))

    @settings(max_examples=200, deadline=None)
    @given(st.lists(st.sampled_from(FRAGMENTS), max_size=40).map(" ".join))
    def test_fragment_soup(self, source):
        """Arbitrary keyword soup never loses text and keeps spans valid."""
        tree, diagnostics = parse(source)
        assert reconstruct(tree) == source
        check_spans(tree.root)
        assert sum(len(n.diagnostics) for n in tree.walk()) == len(diagnostics)

    @settings(max_examples=200, deadline=None)
    @given(st.text(alphabet="abIfThen01&hb.e+-*/^=<>()#,\"' \t\n@!", max_size=80))
    def test_character_soup(self, source):
        """Arbitrary characters never crash the parser."""
        tree, _ = parse(source)
        assert reconstruct(tree) == source
        check_spans(tree.root)


# =============================================================================
# Span Invariant Tests
# =============================================================================

class TestSpans:
    """Test parent/child span relationships."""

    @pytest.mark.parametrize("source", [SAMPLE, BROKEN])
    def test_children_inside_parent_and_ordered(self, source):
        """Children are contained in the parent and do not overlap."""
        tree, _ = parse(source)
        check_spans(tree.root)

    def test_span_includes_leading_comment(self):
        """A node's span starts at the comment trivia before it."""
        tree, _ = parse("x = 1\n' note\ny = 2\n")
        second = tree.root.children[1]
        assert tree.text(second) == "\n' note\ny = 2"

    def test_zero_width_error_node(self):
        """A missing expression is an empty ErrorNode at the gap."""
        tree, _ = parse("x = \n")
        value = tree.root.children[0]["value"]
        assert value.kind is NodeKind.ERROR_NODE
        assert len(value.span) == 0


# =============================================================================
# Immutability Tests
# =============================================================================

class TestImmutability:
    """Test that built trees cannot be changed."""

    def test_node_attributes_frozen(self):
        """Node attributes cannot be reassigned."""
        tree, _ = parse("x = 1\n")
        with pytest.raises(dataclasses.FrozenInstanceError):
            tree.root.kind = NodeKind.PROGRAM

    def test_fields_read_only(self):
        """Field mappings cannot be modified."""
        tree, _ = parse("x = 1\n")
        with pytest.raises(TypeError):
            tree.root.children[0].fields["value"] = None

    def test_metadata_read_only(self):
        """Metadata mappings cannot be modified."""
        tree, _ = parse("x = 1\n")
        with pytest.raises(TypeError):
            tree.root.children[0].metadata["operator"] = "+="

    def test_children_are_tuples(self):
        """Children cannot be appended to."""
        tree, _ = parse("x = 1\n")
        assert isinstance(tree.root.children, tuple)

    def test_default_mappings_read_only(self):
        """A node built without fields or metadata gets empty read-only mappings."""
        node = SyntaxNode(NodeKind.ERROR_NODE, SourceSpan(0, 0, 1, 1, 1, 1))
        assert dict(node.fields) == {}
        assert dict(node.metadata) == {}
        with pytest.raises(TypeError):
            node.metadata["value"] = 1

    def test_separate_parses_share_nothing(self):
        """Each parse builds its own tree."""
        first, _ = parse("x = 1\n")
        second, _ = parse("x = 1\n")
        assert first.root is not second.root
        assert first.tokens[0] is not second.tokens[0]


# =============================================================================
# Navigation Tests
# =============================================================================

class TestNavigation:
    """Test walk, elements, find_all and text."""

    def test_walk_preorder(self):
        """walk() yields the parent before its children."""
        tree, _ = parse("BeginProg\n  x = 1\nEndProg\n")
        kinds = [n.kind for n in tree.walk()]
        assert kinds[:3] == [NodeKind.SOURCE_FILE, NodeKind.PROGRAM, NodeKind.ASSIGNMENT]

    def test_elements_interleave(self):
        """elements() puts owned tokens and children in source order."""
        tree, _ = parse("x = 1\n")
        assignment = tree.root.children[0]
        elements = list(assignment.elements())
        assert elements[0].kind is NodeKind.IDENTIFIER
        assert isinstance(elements[1], Token)
        assert elements[1].text == "="
        assert elements[2].kind is NodeKind.NUMBER_LITERAL

    def test_lexeme(self):
        """lexeme is the text of the owned tokens."""
        tree, _ = parse("x = 1\n")
        assert tree.root.children[0].lexeme == "="

    def test_text(self):
        """text() returns the covered source."""
        tree, _ = parse("Public Batt As Float\n")
        assert tree.text(tree.root.children[0]) == "Public Batt As Float"

    def test_repr(self):
        """repr shows kind and position."""
        tree, _ = parse("\n  BeginProg\n  EndProg\n")
        assert repr(tree.root.children[0]) == "Program@1:1"

    def test_get_with_default(self):
        """get() returns the default for absent fields."""
        tree, _ = parse("x = 1\n")
        assert tree.root.children[0].get("missing", 7) == 7

    def test_has_errors(self):
        """has_errors reflects the diagnostics."""
        assert parse("EndIf\n")[0].has_errors
        assert not parse("x = 1\n")[0].has_errors


# =============================================================================
# Visitor and Printer Tests
# =============================================================================

class TableCollector(NodeVisitor):
    """Collects the names of data tables."""

    def __init__(self):
        self.names = []

    def visit_DataTableStmt(self, node):
        self.names.append(node.metadata["name"])
        self.generic_visit(node)


class TestVisitor:
    """Test kind-based visitor dispatch."""

    def test_dispatch_by_kind(self):
        """visit_<Kind> is called for matching nodes."""
        tree, _ = parse(
            "DataTable(A, True, -1)\nEndTable\n"
            "DataTable(B, True, -1)\nEndTable\n"
        )
        collector = TableCollector()
        collector.visit(tree.root)
        assert collector.names == ["A", "B"]

    def test_generic_visit_reaches_nested(self):
        """Nodes inside other blocks are visited."""
        tree, _ = parse("#IfDef X\nDataTable(C, True, -1)\nEndTable\n#EndIf\n")
        collector = TableCollector()
        collector.visit(tree.root)
        assert collector.names == ["C"]


class TestPrinter:
    """Test the tree pretty printer."""

    def test_outline(self):
        """Statements print indented with their spans."""
        tree, _ = parse("BeginProg\nEndProg")
        assert TreePrinter().print(tree.root) == (
            "SourceFile  [1:1-2:8]\n"
            "  Program  [1:1-2:8]"
        )

    def test_names_and_expressions(self):
        """Named nodes show their name; expressions print inline."""
        tree, _ = parse("DataTable(Hourly, True, -1)\nEndTable\n")
        output = TreePrinter().print(tree.root)
        assert "DataTableStmt Hourly" in output
        assert "\n    True" in output
        assert "\n    (-1)" in output

    def test_diagnostic_count_shown(self):
        """Nodes with diagnostics are flagged."""
        tree, _ = parse("BeginProg\n")
        assert "Program  !1" in TreePrinter().print(tree.root)


# =============================================================================
# Serialization Tests
# =============================================================================

class TestToDict:
    """Test the plain-data form used for JSON output."""

    def test_json_serializable(self):
        """to_dict output goes through json.dumps."""
        tree, _ = parse(SAMPLE)
        data = json.loads(json.dumps(tree.to_dict()))
        assert data["root"]["kind"] == "SourceFile"
        assert data["diagnostics"] == []

    def test_leaf_text_and_metadata(self):
        """Leaves carry their text; enum metadata becomes a name."""
        tree, _ = parse("x = &hFF\n")
        number = tree.to_dict()["root"]["children"][0]["children"][1]
        assert number["kind"] == "NumberLiteral"
        assert number["text"] == "&hFF"
        assert number["metadata"]["base"] == "hexadecimal"
        assert number["metadata"]["value"] == 255

    def test_diagnostics_included(self):
        """Diagnostics appear with kind, message and span."""
        tree, _ = parse("EndIf\n")
        diagnostic = tree.to_dict()["diagnostics"][0]
        assert diagnostic["kind"] == "SyntaxError"
        assert diagnostic["span"]["line"] == 1


# =============================================================================
# Deep Tree Tests
# =============================================================================

class TestDeepTrees:
    """Test tree helpers on a long operator chain."""

    SOURCE = "x = " + " + ".join(["1"] * 1200) + "\n"

    def test_walk_and_leaves(self):
        """walk() and leaves() handle a 1200-term sum."""
        tree, diagnostics = parse(self.SOURCE)
        assert diagnostics == []
        assert reconstruct(tree) == self.SOURCE
        assert len(tree.find_all(NodeKind.BINARY_EXPR)) == 1199

    def test_to_dict(self):
        """to_dict() handles a 1200-term sum."""
        tree, _ = parse(self.SOURCE)
        assignment = tree.to_dict()["root"]["children"][0]
        assert assignment["kind"] == "Assignment"
        assert assignment["children"][1]["metadata"]["operator"] == "+"

    def test_printer(self):
        """The printer renders a 1200-term sum inline."""
        tree, _ = parse(self.SOURCE)
        output = TreePrinter().print(tree.root)
        assert output.count(" + ") == 1199

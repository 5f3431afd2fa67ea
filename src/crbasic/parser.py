"""
CRBasic Recursive Descent Parser
================================

This module implements the statement parser for CRBasic. It takes the
token list from the lexer and builds a syntax tree, recovering from every
error so that a single parse reports all problems in a file.

Grammar (Simplified EBNF)
-------------------------
source_file     ::= statement*
statement       ::= program | function | sub | variable_decl | const_decl
                  | const_table | if_stmt | for_loop | while_loop | do_loop
                  | select_stmt | scan | subscan | slow_sequence
                  | display_menu | submenu | menu_item | data_table
                  | call_table | preprocessor | assignment | call

program         ::= 'BeginProg' statement* 'EndProg'
function        ::= 'Function' NAME params? ('As' type)? statement* 'EndFunction'
sub             ::= 'Sub' NAME params? statement* 'EndSub'
params          ::= '(' (declarator (',' declarator)*)? ')'
variable_decl   ::= ('Dim' | 'Public') declarator (',' declarator)*
declarator      ::= NAME ('(' expr (',' expr)* ')')? ('As' type)?
type            ::= TYPE_NAME ('*' expr)?
const_decl      ::= 'Const' NAME '=' expr
const_table     ::= 'ConstTable' (NAME '=' expr)* 'EndConstTable'

if_stmt         ::= 'If' expr 'Then' statement* elseif* else? 'EndIf'
                  | 'If' expr 'Then' statement ('Else' statement)?
elseif          ::= ('ElseIf' | 'Else' 'If') expr 'Then' statement*
else            ::= 'Else' statement*
for_loop        ::= 'For' NAME '=' expr 'To' expr ('Step' expr)?
                    statement* 'Next' NAME?
while_loop      ::= 'While' expr statement* 'Wend'
do_loop         ::= 'Do' (('While' | 'Until') expr)? statement*
                    'Loop' (('While' | 'Until') expr)?
select_stmt     ::= 'Select' 'Case' expr case* 'EndSelect'
case            ::= 'Case' ('Else' | 'Is' CMP_OP? expr | expr (',' expr)*)
                    statement*

scan            ::= 'Scan' '(' expr ',' NAME ',' expr ',' expr ')'
                    statement* 'NextScan'
subscan         ::= 'SubScan' '(' expr ',' NAME (',' expr)? ')'
                    statement* 'NextSubScan'
slow_sequence   ::= 'SlowSequence' statement* 'EndSequence'
display_menu    ::= 'DisplayMenu' args? statement* 'EndMenu'
submenu         ::= 'SubMenu' (NAME | STRING | args)? statement* 'EndSubMenu'
menu_item       ::= 'MenuItem' STRING NAME | 'MenuItem' '(' expr ',' NAME ')'
data_table      ::= 'DataTable' '(' NAME ',' expr ',' expr ')' statement* 'EndTable'
                  | 'DataTable' NAME unary expr statement* 'EndTable'
call_table      ::= 'CallTable' '(' NAME ')' | 'CallTable' NAME

preprocessor    ::= '#If' expr 'Then'? statement* ('#Else' statement*)? '#EndIf'
                  | '#IfDef' NAME statement* ('#Else' statement*)? '#EndIf'
                  | '#UnDef' NAME
                  | 'Include' STRING
assignment      ::= (NAME | call) ASSIGN_OP expr
call            ::= NAME '(' (expr (',' expr)*)? ')'

Statements are line-oriented: a header (everything up to ``Then``, the
``For`` bounds, an argument list) must be on one line, and a block ends
at its own terminator, at a terminator of an enclosing block, or at end
of input.

Example Usage
-------------
>>> from crbasic.parser import parse
>>> tree, diagnostics = parse("Public Batt As Float\\nBeginProg\\nEndProg\\n")
>>> [node.kind.value for node in tree.root.children]
['VariableDecl', 'Program']
>>> diagnostics
[]
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from crbasic.ast import NodeKind, SyntaxNode, SyntaxTree
from crbasic.errors import Diagnostic, DiagnosticCollector
from crbasic.expressions import COMPARISON_OPERATORS, ExpressionParser
from crbasic.lexer import DATA_TYPES, Directive, Keyword, Lexer, Token, TokenKind

logger = logging.getLogger(__name__)

Tag = Union[Keyword, Directive]


# =============================================================================
# Parser Configuration
# =============================================================================

@dataclass
class ParserOptions:
    """
    Configuration options for parsing.

    Attributes:
        filename: Name shown in formatted diagnostics
        max_errors: Maximum diagnostics to keep (later ones are dropped)
        strict: Raise CRBasicParseError if any diagnostic is produced
    """
    filename: str = "<input>"
    max_errors: int = 100
    strict: bool = False


# =============================================================================
# Block Tables
# =============================================================================

IF_STOPS = frozenset({Keyword.ELSEIF, Keyword.ELSE, Keyword.ENDIF})
ELSE_STOPS = frozenset({Keyword.ENDIF})
SELECT_STOPS = frozenset({Keyword.CASE, Keyword.ENDSELECT})
PREPROCESSOR_IF_STOPS = frozenset({Directive.ELSE, Directive.ENDIF})
PREPROCESSOR_ELSE_STOPS = frozenset({Directive.ENDIF})

# Terminators and clause keywords -> the opener they belong to
OPENER_OF: dict[Tag, str] = {
    Keyword.ENDPROG: "BeginProg",
    Keyword.ENDFUNCTION: "Function",
    Keyword.ENDSUB: "Sub",
    Keyword.ENDCONSTTABLE: "ConstTable",
    Keyword.ELSEIF: "If",
    Keyword.ELSE: "If",
    Keyword.ENDIF: "If",
    Keyword.NEXT: "For",
    Keyword.WEND: "While",
    Keyword.LOOP: "Do",
    Keyword.CASE: "Select Case",
    Keyword.ENDSELECT: "Select Case",
    Keyword.NEXTSCAN: "Scan",
    Keyword.NEXTSUBSCAN: "SubScan",
    Keyword.ENDSEQUENCE: "SlowSequence",
    Keyword.ENDMENU: "DisplayMenu",
    Keyword.ENDSUBMENU: "SubMenu",
    Keyword.ENDTABLE: "DataTable",
    Directive.ELSE: "#If",
    Directive.ENDIF: "#If",
}

TYPE_HINT = "data types are " + ", ".join(DATA_TYPES.values())


# =============================================================================
# Parser Class
# =============================================================================

class Parser(ExpressionParser):
    """
    Parses CRBasic tokens into a SyntaxTree.

    Statements are dispatched through a fixed keyword table. Errors never
    stop the parse: each is reported once, the offending tokens are
    wrapped in an ErrorNode, and parsing resumes at the next statement
    boundary (a new line, a statement keyword or an enclosing block's
    terminator).

    Attributes:
        options: ParserOptions for this parse
    """

    def __init__(
        self,
        tokens: Sequence[Token],
        source: str = "",
        options: Optional[ParserOptions] = None,
        lex_diagnostics: Sequence[Diagnostic] = (),
    ):
        """
        Initialize the parser.

        Args:
            tokens: Token list from the lexer, ending with EOF
            source: Original source text
            options: Parsing options
            lex_diagnostics: LexError diagnostics from the lexer
        """
        self.options = options or ParserOptions()
        super().__init__(
            tokens,
            source,
            DiagnosticCollector(self.options.max_errors),
            lex_diagnostics,
        )

        # Terminator sets of the blocks being parsed, innermost last
        self._stop_stack: list[frozenset] = []

        self._dispatch = {
            Keyword.BEGINPROG: self._parse_program,
            Keyword.FUNCTION: self._parse_function,
            Keyword.SUB: self._parse_sub,
            Keyword.DIM: self._parse_variable_decl,
            Keyword.PUBLIC: self._parse_variable_decl,
            Keyword.CONST: self._parse_const_decl,
            Keyword.CONSTTABLE: self._parse_const_table,
            Keyword.IF: self._parse_if,
            Keyword.FOR: self._parse_for,
            Keyword.WHILE: self._parse_while,
            Keyword.DO: self._parse_do,
            Keyword.SELECT: self._parse_select,
            Keyword.SCAN: self._parse_scan,
            Keyword.SUBSCAN: self._parse_subscan,
            Keyword.SLOWSEQUENCE: self._parse_slow_sequence,
            Keyword.DISPLAYMENU: self._parse_display_menu,
            Keyword.SUBMENU: self._parse_submenu,
            Keyword.MENUITEM: self._parse_menu_item,
            Keyword.DATATABLE: self._parse_data_table,
            Keyword.CALLTABLE: self._parse_call_table,
            Keyword.INCLUDE: self._parse_include,
            Directive.IF: self._parse_preprocessor_if,
            Directive.IFDEF: self._parse_preprocessor_ifdef,
            Directive.UNDEF: self._parse_preprocessor_undef,
        }

    def parse(self) -> SyntaxTree:
        """
        Parse the whole token list.

        Returns:
            SyntaxTree whose root SourceFile node owns every token
        """
        root = self._open()
        statements = []
        while not self._at_end():
            start = self._pos
            statements.append(self.parse_statement())
            self._ensure_progress(start, statements)
        self._claim_eof()
        node = self._close(
            NodeKind.SOURCE_FILE,
            root,
            children=statements,
            fields={"body": tuple(statements)},
        )

        diagnostics = self.collector.sorted()
        logger.debug(
            f"Parsed {len(statements)} top-level statements, "
            f"{self.builder.node_count} nodes, {len(diagnostics)} diagnostics"
        )
        return SyntaxTree(
            root=node,
            source=self.source,
            tokens=tuple(self.tokens),
            diagnostics=tuple(diagnostics),
            filename=self.options.filename,
            dropped_diagnostics=self.collector.dropped,
        )

    # =========================================================================
    # Statement Dispatch and Recovery
    # =========================================================================

    def parse_statement(self) -> SyntaxNode:
        """Parse one statement, always consuming at least one token."""
        token = self._peek()

        handler = self._dispatch.get(token.tag)
        if handler is not None:
            return handler()

        if token.kind is TokenKind.IDENTIFIER:
            return self._parse_assignment_or_call()

        if token.kind is TokenKind.ERROR:
            return self._parse_error_tokens()

        opener = OPENER_OF.get(token.tag)
        if opener is not None:
            return self._recover(
                f"'{token.tag.value}' without matching '{opener}'",
                hint=f"remove it or add the missing '{opener}'",
            )

        if token.kind is TokenKind.PREPROCESSOR:
            return self._recover(
                f"unknown preprocessor directive '{token.text}'",
                hint="directives are #If, #IfDef, #Else, #EndIf and #UnDef",
            )

        return self._recover(f"unexpected {self._describe(token)} at start of statement")

    def _at_stop(self) -> bool:
        """True if the current token terminates any enclosing block."""
        tag = self._peek().tag
        return tag is not None and any(tag in stops for stops in self._stop_stack)

    def _at_boundary(self) -> bool:
        """True at a plausible place to resume parsing statements."""
        token = self._peek()
        return (
            token.kind is TokenKind.EOF
            or token.newline_before
            or token.tag in self._dispatch
            or self._at_stop()
        )

    def _report_once(self, message: str, span, hint: Optional[str] = None) -> None:
        """Report unless an error was already reported on the same line."""
        if span.line != self._last_error_line:
            self._report(message, span=span, hint=hint)

    def _recover(self, message: str, hint: Optional[str] = None) -> SyntaxNode:
        """
        Report an error and skip to the next statement boundary.

        At least one token is consumed. Only the first error on a line is
        reported; later junk on the same line is skipped silently.

        Returns:
            ErrorNode covering the skipped tokens
        """
        marker = self._open()
        token = self._peek()
        self._report_once(message, token.span, hint)

        self._advance()
        skipped = 1
        while not self._at_boundary():
            self._advance()
            skipped += 1

        logger.debug(f"Recovered at {token.span.line}:{token.span.column}, skipped {skipped} tokens")
        return self._close(NodeKind.ERROR_NODE, marker)

    def _ensure_progress(self, start: int, statements: list) -> None:
        """
        Skip ahead if a statement consumed no tokens.

        Every pass of a statement loop must consume at least one token.
        """
        if self._pos == start and not self._at_end():
            statements.append(self._recover(
                f"unexpected {self._describe(self._peek())} at start of statement"
            ))

    # =========================================================================
    # Block Helpers
    # =========================================================================

    def _parse_block_body(self, stops: frozenset) -> list[SyntaxNode]:
        """
        Parse statements until one of stops, an enclosing block's
        terminator, or end of input.
        """
        self._stop_stack.append(stops)
        statements = []
        while not self._at_end() and not self._at_stop():
            start = self._pos
            statements.append(self.parse_statement())
            self._ensure_progress(start, statements)
        self._stop_stack.pop()
        return statements

    def _close_block(
        self,
        terminator: Tag,
        opener: Token,
        opener_name: Optional[str] = None,
    ) -> Optional[Token]:
        """
        Consume a block terminator, or report it missing.

        A block left open at end of input takes the EOF token, so its span
        reaches the end of the source.

        Returns:
            The terminator token, or None if it was missing
        """
        if self._peek().tag is terminator:
            return self._advance()

        name = opener_name or opener.tag.value
        self._report(
            f"missing '{terminator.value}' to close '{name}'",
            span=opener.span,
            hint=f"add '{terminator.value}' after the last statement of the block",
        )
        if self._at_end():
            self._claim_eof()
        return None

    def _check_keyword(self, *keywords: Keyword) -> bool:
        """Check for one of the keywords on the current line."""
        return self._same_line() and self._peek().keyword in keywords

    def _expect_keyword(self, keyword: Keyword, children: list) -> Optional[Token]:
        """Expect a keyword on the current line."""
        return self._expect(lambda t: t.keyword is keyword, f"'{keyword.value}'", children)

    def _parse_name(self, description: str) -> SyntaxNode:
        """Parse an identifier on the current line, or report it missing."""
        if self._same_line() and self._peek().kind is TokenKind.IDENTIFIER:
            return self._parse_identifier()
        return self._missing(description)

    def _parse_instruction_arguments(
        self,
        children: list,
        name: str,
        counts: tuple[int, ...],
        name_positions: tuple[int, ...] = (),
    ) -> tuple[SyntaxNode, ...]:
        """
        Parse and check a structural instruction's argument list.

        Args:
            children: Child list of the construct being built
            name: Instruction name for messages
            counts: Accepted argument counts
            name_positions: Indexes of arguments that must be bare names

        Returns:
            The argument expressions (empty if the list is missing)
        """
        if not self._check_punct("("):
            self._report(
                f"expected '(' after '{name}'",
                hint=f"'{name}' takes {self._count_text(counts)} arguments",
            )
            return ()

        start = self._pos
        arguments = self._parse_arguments(children)
        if any(arg.kind is NodeKind.ERROR_NODE for arg in arguments):
            return arguments

        span = self.tokens[start].span.cover(self.tokens[self._pos - 1].span)
        if len(arguments) not in counts:
            self._report(
                f"malformed argument list: '{name}' takes "
                f"{self._count_text(counts)} arguments, found {len(arguments)}",
                span=span,
            )
            return arguments

        for index in name_positions:
            if arguments[index].kind is not NodeKind.IDENTIFIER:
                self._report(
                    f"malformed argument list: argument {index + 1} of '{name}' must be a name",
                    span=self._text_span(arguments[index]),
                )
                break
        return arguments

    @staticmethod
    def _count_text(counts: tuple[int, ...]) -> str:
        return " or ".join(str(c) for c in counts)

    @staticmethod
    def _name_of(node: Optional[SyntaxNode]) -> Optional[str]:
        """The name carried by an Identifier or StringLiteral node."""
        if node is None:
            return None
        if node.kind is NodeKind.IDENTIFIER or node.kind is NodeKind.STRING_LITERAL:
            return node.value
        return None

    # =========================================================================
    # Program Structure
    # =========================================================================

    def _parse_program(self) -> SyntaxNode:
        """Parse BeginProg ... EndProg."""
        marker = self._open()
        opener = self._advance()
        body = self._parse_block_body(frozenset({Keyword.ENDPROG}))
        self._close_block(Keyword.ENDPROG, opener)
        return self._close(
            NodeKind.PROGRAM,
            marker,
            children=body,
            fields={"body": tuple(body)},
        )

    def _parse_function(self) -> SyntaxNode:
        """Parse Function name [(params)] [As type] ... EndFunction."""
        marker = self._open()
        opener = self._advance()
        children: list = []

        name = self._parse_name("function name")
        children.append(name)

        parameters = None
        if self._check_punct("("):
            parameters = self._parse_parameter_list()
            children.append(parameters)

        return_type = None
        if self._check_keyword(Keyword.AS):
            self._advance()
            return_type = self._parse_type()
            children.append(return_type)

        body = self._parse_block_body(frozenset({Keyword.ENDFUNCTION}))
        children.extend(body)
        self._close_block(Keyword.ENDFUNCTION, opener)

        return self._close(
            NodeKind.FUNCTION_DECL,
            marker,
            children=children,
            fields={
                "name": name,
                "parameters": parameters,
                "return_type": return_type,
                "body": tuple(body),
            },
            metadata={
                "name": self._name_of(name),
                "return_type": return_type.value if return_type else None,
            },
        )

    def _parse_sub(self) -> SyntaxNode:
        """Parse Sub name [(params)] ... EndSub."""
        marker = self._open()
        opener = self._advance()
        children: list = []

        name = self._parse_name("subroutine name")
        children.append(name)

        parameters = None
        if self._check_punct("("):
            parameters = self._parse_parameter_list()
            children.append(parameters)

        body = self._parse_block_body(frozenset({Keyword.ENDSUB}))
        children.extend(body)
        self._close_block(Keyword.ENDSUB, opener)

        return self._close(
            NodeKind.SUB_DECL,
            marker,
            children=children,
            fields={"name": name, "parameters": parameters, "body": tuple(body)},
            metadata={"name": self._name_of(name)},
        )

    def _parse_parameter_list(self) -> SyntaxNode:
        """Parse '(' [name [As type] {, name [As type]}] ')'."""
        marker = self._open()
        self._advance()  # consume (
        children: list = []
        parameters = []

        if not self._check_punct(")"):
            while True:
                if not (self._same_line() and self._peek().kind is TokenKind.IDENTIFIER):
                    if parameters:
                        children.append(self._missing("parameter name after ','"))
                    break
                parameter = self._parse_declarator(allow_dimensions=False)
                parameters.append(parameter)
                children.append(parameter)
                if not self._check_punct(","):
                    break
                self._advance()

        self._expect(
            lambda t: t.is_punctuation(")"),
            "')' to end the parameter list",
            children,
        )

        return self._close(
            NodeKind.PARAMETER_LIST,
            marker,
            children=children,
            fields={"parameters": tuple(parameters)},
            metadata={"names": tuple(p.metadata["name"] for p in parameters)},
        )

    # =========================================================================
    # Declarations
    # =========================================================================

    def _parse_type(self) -> SyntaxNode:
        """
        Parse a data type name after 'As'.

        Unknown names are reported but still become a TypeRef. A String
        may carry a size: ``String * 32``.
        """
        token = self._peek()
        if not (self._same_line() and token.kind is TokenKind.IDENTIFIER):
            return self._missing("data type after 'As'", hint=TYPE_HINT)

        marker = self._open()
        self._advance()
        canonical = DATA_TYPES.get(token.text.lower())
        if canonical is None:
            self._report(f"unknown data type '{token.text}'", span=token.span, hint=TYPE_HINT)

        size = None
        if self._check_operator("*"):
            self._advance()
            size = self._parse_unary()

        return self._close(
            NodeKind.TYPE_REF,
            marker,
            children=(size,),
            fields={"size": size},
            metadata={"value": canonical or token.text, "known": canonical is not None},
        )

    def _parse_declarator(self, allow_dimensions: bool = True) -> SyntaxNode:
        """Parse name [(dims)] [As type]."""
        marker = self._open()
        name = self._parse_identifier()
        children: list = [name]

        dimensions: tuple[SyntaxNode, ...] = ()
        if allow_dimensions and self._check_punct("("):
            dimensions = self._parse_arguments(children)

        type_ref = None
        if self._check_keyword(Keyword.AS):
            self._advance()
            type_ref = self._parse_type()
            children.append(type_ref)

        return self._close(
            NodeKind.DECLARATOR,
            marker,
            children=children,
            fields={"name": name, "dimensions": dimensions, "type": type_ref},
            metadata={
                "name": name.value,
                "type": type_ref.value if type_ref else None,
                "rank": len(dimensions),
            },
        )

    def _parse_variable_decl(self) -> SyntaxNode:
        """Parse Dim|Public declarator {, declarator}."""
        marker = self._open()
        keyword = self._advance()
        children: list = []
        declarators = []

        while True:
            if not (self._same_line() and self._peek().kind is TokenKind.IDENTIFIER):
                children.append(self._missing("variable name"))
                break
            declarator = self._parse_declarator()
            declarators.append(declarator)
            children.append(declarator)
            if not self._check_punct(","):
                break
            self._advance()

        return self._close(
            NodeKind.VARIABLE_DECL,
            marker,
            children=children,
            fields={"declarators": tuple(declarators)},
            metadata={
                "scope": keyword.keyword.value,
                "names": tuple(d.metadata["name"] for d in declarators),
            },
        )

    def _parse_const_entry(
        self,
        marker,
        children: list,
        name: Optional[SyntaxNode] = None,
    ) -> SyntaxNode:
        """Parse 'name = expr' and finish a ConstDecl node."""
        if name is None:
            name = self._parse_name("constant name")
        children.append(name)
        self._expect_operator("=", children)
        value = self.parse_expression()
        children.append(value)
        return self._close(
            NodeKind.CONST_DECL,
            marker,
            children=children,
            fields={"name": name, "value": value},
            metadata={"name": self._name_of(name)},
        )

    def _parse_const_decl(self) -> SyntaxNode:
        """Parse Const name = expr."""
        marker = self._open()
        self._advance()  # consume Const
        return self._parse_const_entry(marker, [])

    def _parse_const_table(self) -> SyntaxNode:
        """Parse ConstTable {name = expr} EndConstTable."""
        marker = self._open()
        opener = self._advance()
        entries = []

        self._stop_stack.append(frozenset({Keyword.ENDCONSTTABLE}))
        while not self._at_end() and not self._at_stop():
            start = self._pos
            if self._peek().kind is TokenKind.IDENTIFIER:
                # Each entry starts its own line
                marker = self._open()
                entries.append(self._parse_const_entry(marker, [], self._parse_identifier()))
            else:
                entries.append(self._recover(
                    f"expected constant definition, found {self._describe(self._peek())}",
                    hint="entries look like 'Name = value'",
                ))
            self._ensure_progress(start, entries)
        self._stop_stack.pop()
        self._close_block(Keyword.ENDCONSTTABLE, opener)

        return self._close(
            NodeKind.CONST_TABLE_DECL,
            marker,
            children=entries,
            fields={"entries": tuple(entries)},
            metadata={"names": tuple(
                e.metadata["name"] for e in entries if e.kind is NodeKind.CONST_DECL
            )},
        )

    # =========================================================================
    # Simple Statements
    # =========================================================================

    def _parse_assignment_or_call(self) -> SyntaxNode:
        """
        Parse a statement starting with a name.

        ``x = e`` and ``x(i) op= e`` are assignments, ``f(args)`` is a call
        statement; anything else is an error.
        """
        marker = self._open()
        if self._peek(1).is_punctuation("(") and self._same_line(1):
            target = self._parse_call()
        else:
            target = self._parse_identifier()

        if self._same_line() and self._peek().is_assignment_operator():
            operator = self._advance()
            value = self.parse_expression()
            return self._close(
                NodeKind.ASSIGNMENT,
                marker,
                children=(target, value),
                fields={"target": target, "value": value},
                metadata={"operator": operator.text, "target": target.metadata["name"]},
            )

        if target.kind is NodeKind.FUNCTION_CALL:
            self._abandon(marker)
            return target

        if self._same_line():
            self._report_once(
                f"expected assignment or call, found {self._describe(self._peek())}",
                self._peek().span,
            )
        else:
            self._report_once(
                f"expected assignment or call after '{target.value}'",
                target.span.collapse_to_end(),
                hint=f"write '{target.value} = value' or '{target.value}(...)'",
            )
        while not self._at_boundary():
            self._advance()
        return self._close(NodeKind.ERROR_NODE, marker, children=(target,))

    # =========================================================================
    # Control Structures
    # =========================================================================

    def _parse_if(self) -> SyntaxNode:
        """
        Parse an If statement.

        Block form:
            If cond Then
              ...
            ElseIf cond Then      (or: Else If cond Then)
              ...
            Else
              ...
            EndIf

        Single-line form (no EndIf):
            If cond Then statement [Else statement]
        """
        marker = self._open()
        opener = self._advance()
        children: list = []

        condition = self.parse_expression()
        children.append(condition)
        then_token = self._expect_keyword(Keyword.THEN, children)

        if (then_token is not None and self._same_line()
                and self._peek().tag not in IF_STOPS and not self._at_stop()):
            return self._finish_single_line_if(marker, condition, children)

        then_body = self._parse_block_body(IF_STOPS)
        children.extend(then_body)

        else_ifs = []
        else_clause = None
        while True:
            token = self._peek()
            is_else_if = token.keyword is Keyword.ELSEIF or (
                token.keyword is Keyword.ELSE
                and self._peek(1).keyword is Keyword.IF
                and self._same_line(1)
            )
            if is_else_if:
                clause = self._parse_else_if_clause()
                else_ifs.append(clause)
                children.append(clause)
                continue
            if token.keyword is Keyword.ELSE:
                else_clause = self._parse_else_clause(ELSE_STOPS)
                children.append(else_clause)
            break

        self._close_block(Keyword.ENDIF, opener)
        return self._close(
            NodeKind.IF_STMT,
            marker,
            children=children,
            fields={
                "condition": condition,
                "then_body": tuple(then_body),
                "else_ifs": tuple(else_ifs),
                "else_clause": else_clause,
            },
            metadata={"single_line": False},
        )

    def _finish_single_line_if(self, marker, condition: SyntaxNode, children: list) -> SyntaxNode:
        """Finish 'If cond Then stmt [Else stmt]' on one line."""
        statement = self.parse_statement()
        children.append(statement)

        else_clause = None
        if self._check_keyword(Keyword.ELSE):
            else_marker = self._open()
            self._advance()
            if self._same_line():
                else_statement = self.parse_statement()
            else:
                else_statement = self._missing("statement after 'Else'")
            else_clause = self._close(
                NodeKind.ELSE_CLAUSE,
                else_marker,
                children=(else_statement,),
                fields={"body": (else_statement,)},
            )
            children.append(else_clause)

        return self._close(
            NodeKind.IF_STMT,
            marker,
            children=children,
            fields={
                "condition": condition,
                "then_body": (statement,),
                "else_ifs": (),
                "else_clause": else_clause,
            },
            metadata={"single_line": True},
        )

    def _parse_else_if_clause(self) -> SyntaxNode:
        """Parse ElseIf|Else If cond Then ..."""
        marker = self._open()
        first = self._advance()
        if first.keyword is Keyword.ELSE:
            self._advance()  # consume If
            spelling = "Else If"
        else:
            spelling = "ElseIf"

        children: list = []
        condition = self.parse_expression()
        children.append(condition)
        self._expect_keyword(Keyword.THEN, children)
        body = self._parse_block_body(IF_STOPS)
        children.extend(body)

        return self._close(
            NodeKind.ELSE_IF_CLAUSE,
            marker,
            children=children,
            fields={"condition": condition, "body": tuple(body)},
            metadata={"spelling": spelling},
        )

    def _parse_else_clause(self, stops: frozenset) -> SyntaxNode:
        """Parse Else (or #Else) and its body."""
        marker = self._open()
        self._advance()
        body = self._parse_block_body(stops)
        kind = NodeKind.ELSE_CLAUSE if stops is ELSE_STOPS else NodeKind.PREPROCESSOR_ELSE
        return self._close(kind, marker, children=body, fields={"body": tuple(body)})

    def _parse_for(self) -> SyntaxNode:
        """Parse For v = a To b [Step c] ... Next [v]."""
        marker = self._open()
        opener = self._advance()
        children: list = []

        variable = self._parse_name("loop variable")
        children.append(variable)
        self._expect_operator("=", children)
        start = self.parse_expression()
        children.append(start)
        self._expect_keyword(Keyword.TO, children)
        end = self.parse_expression()
        children.append(end)

        step = None
        if self._check_keyword(Keyword.STEP):
            self._advance()
            step = self.parse_expression()
            children.append(step)

        body = self._parse_block_body(frozenset({Keyword.NEXT}))
        children.extend(body)

        next_variable = None
        closed = self._close_block(Keyword.NEXT, opener)
        if closed is not None and self._same_line() and self._peek().kind is TokenKind.IDENTIFIER:
            next_variable = self._parse_identifier()
            children.append(next_variable)
            loop_name = self._name_of(variable)
            if loop_name is not None and next_variable.value.lower() != loop_name.lower():
                self._report(
                    f"'Next {next_variable.value}' does not match 'For {loop_name}'",
                    span=self._text_span(next_variable),
                    hint=f"use 'Next {loop_name}' or a plain 'Next'",
                )

        return self._close(
            NodeKind.FOR_LOOP,
            marker,
            children=children,
            fields={
                "variable": variable,
                "start": start,
                "end": end,
                "step": step,
                "body": tuple(body),
                "next_variable": next_variable,
            },
            metadata={"variable": self._name_of(variable)},
        )

    def _parse_while(self) -> SyntaxNode:
        """Parse While cond ... Wend."""
        marker = self._open()
        opener = self._advance()
        condition = self.parse_expression()
        body = self._parse_block_body(frozenset({Keyword.WEND}))
        self._close_block(Keyword.WEND, opener)
        return self._close(
            NodeKind.WHILE_LOOP,
            marker,
            children=[condition, *body],
            fields={"condition": condition, "body": tuple(body)},
        )

    def _parse_do(self) -> SyntaxNode:
        """Parse Do [While|Until cond] ... Loop [While|Until cond]."""
        marker = self._open()
        opener = self._advance()
        children: list = []

        condition = None
        test = None
        position = None
        if self._check_keyword(Keyword.WHILE, Keyword.UNTIL):
            test = self._advance().keyword.value
            position = "pre"
            condition = self.parse_expression()
            children.append(condition)

        body = self._parse_block_body(frozenset({Keyword.LOOP}))
        children.extend(body)

        closed = self._close_block(Keyword.LOOP, opener)
        if closed is not None and self._check_keyword(Keyword.WHILE, Keyword.UNTIL):
            keyword = self._advance()
            post_condition = self.parse_expression()
            children.append(post_condition)
            if condition is not None:
                self._report(
                    "loop condition given at both 'Do' and 'Loop'",
                    span=keyword.span,
                )
            else:
                condition = post_condition
                test = keyword.keyword.value
                position = "post"

        return self._close(
            NodeKind.DO_LOOP,
            marker,
            children=children,
            fields={"condition": condition, "body": tuple(body)},
            metadata={"test": test, "position": position},
        )

    def _parse_select(self) -> SyntaxNode:
        """Parse Select Case expr {Case ...} EndSelect."""
        marker = self._open()
        opener = self._advance()
        children: list = []

        self._expect_keyword(Keyword.CASE, children)
        subject = self.parse_expression()
        children.append(subject)

        # Statements before the first Case are kept but reported
        stray = self._parse_block_body(SELECT_STOPS)
        if stray:
            self._report(
                "statements before the first 'Case' of 'Select Case'",
                span=self._text_span(stray[0]),
            )
            children.extend(stray)

        cases = []
        while self._peek().keyword is Keyword.CASE:
            clause = self._parse_case_clause()
            cases.append(clause)
            children.append(clause)

        self._close_block(Keyword.ENDSELECT, opener, "Select Case")
        return self._close(
            NodeKind.SELECT_STMT,
            marker,
            children=children,
            fields={"subject": subject, "cases": tuple(cases)},
        )

    def _parse_case_clause(self) -> SyntaxNode:
        """Parse Case Else | Case Is [op] expr | Case expr {, expr}, and its body."""
        marker = self._open()
        self._advance()  # consume Case
        children: list = []
        values = []
        metadata: dict = {"is_else": False, "comparison": None}

        if self._check_keyword(Keyword.ELSE):
            self._advance()
            metadata["is_else"] = True
        elif self._check_keyword(Keyword.IS):
            self._advance()
            if self._check_operator(*COMPARISON_OPERATORS):
                metadata["comparison"] = self._advance().value
            value = self.parse_expression()
            values.append(value)
            children.append(value)
        else:
            while True:
                value = self.parse_expression()
                values.append(value)
                children.append(value)
                if not self._check_punct(","):
                    break
                self._advance()

        body = self._parse_block_body(SELECT_STOPS)
        children.extend(body)
        return self._close(
            NodeKind.CASE_CLAUSE,
            marker,
            children=children,
            fields={"values": tuple(values), "body": tuple(body)},
            metadata=metadata,
        )

    # =========================================================================
    # Scan Structures
    # =========================================================================

    def _parse_scan(self) -> SyntaxNode:
        """Parse Scan(interval, units, buffer, count) ... NextScan."""
        marker = self._open()
        opener = self._advance()
        children: list = []
        arguments = self._parse_instruction_arguments(children, "Scan", (4,), (1,))
        body = self._parse_block_body(frozenset({Keyword.NEXTSCAN}))
        children.extend(body)
        self._close_block(Keyword.NEXTSCAN, opener)
        return self._close(
            NodeKind.SCAN_STMT,
            marker,
            children=children,
            fields={"arguments": arguments, "body": tuple(body)},
            metadata={"units": self._name_of(arguments[1]) if len(arguments) > 1 else None},
        )

    def _parse_subscan(self) -> SyntaxNode:
        """Parse SubScan(interval, units [, count]) ... NextSubScan."""
        marker = self._open()
        opener = self._advance()
        children: list = []
        arguments = self._parse_instruction_arguments(children, "SubScan", (2, 3), (1,))
        body = self._parse_block_body(frozenset({Keyword.NEXTSUBSCAN}))
        children.extend(body)
        self._close_block(Keyword.NEXTSUBSCAN, opener)
        return self._close(
            NodeKind.SUB_SCAN_STMT,
            marker,
            children=children,
            fields={"arguments": arguments, "body": tuple(body)},
            metadata={"units": self._name_of(arguments[1]) if len(arguments) > 1 else None},
        )

    def _parse_slow_sequence(self) -> SyntaxNode:
        """Parse SlowSequence ... EndSequence."""
        marker = self._open()
        opener = self._advance()
        body = self._parse_block_body(frozenset({Keyword.ENDSEQUENCE}))
        self._close_block(Keyword.ENDSEQUENCE, opener)
        return self._close(
            NodeKind.SLOW_SEQUENCE_STMT,
            marker,
            children=body,
            fields={"body": tuple(body)},
        )

    # =========================================================================
    # Menus
    # =========================================================================

    def _parse_display_menu(self) -> SyntaxNode:
        """Parse DisplayMenu [(args)] ... EndMenu."""
        marker = self._open()
        opener = self._advance()
        children: list = []

        arguments: tuple[SyntaxNode, ...] = ()
        if self._check_punct("("):
            arguments = self._parse_arguments(children)

        body = self._parse_block_body(frozenset({Keyword.ENDMENU}))
        children.extend(body)
        self._close_block(Keyword.ENDMENU, opener)
        return self._close(
            NodeKind.MENU_STMT,
            marker,
            children=children,
            fields={"arguments": arguments, "body": tuple(body)},
            metadata={"name": self._name_of(arguments[0]) if arguments else None},
        )

    def _parse_submenu(self) -> SyntaxNode:
        """Parse SubMenu [name | "name" | (args)] ... EndSubMenu."""
        marker = self._open()
        opener = self._advance()
        children: list = []

        name = None
        arguments: tuple[SyntaxNode, ...] = ()
        token = self._peek()
        if self._check_punct("("):
            arguments = self._parse_arguments(children)
            name = arguments[0] if arguments else None
        elif self._same_line() and token.kind is TokenKind.IDENTIFIER:
            name = self._parse_identifier()
            children.append(name)
        elif self._same_line() and token.kind is TokenKind.STRING:
            name = self._leaf(NodeKind.STRING_LITERAL, value=token.value,
                              terminated=token.metadata.get("terminated", True))
            children.append(name)

        body = self._parse_block_body(frozenset({Keyword.ENDSUBMENU}))
        children.extend(body)
        self._close_block(Keyword.ENDSUBMENU, opener)
        return self._close(
            NodeKind.SUB_MENU_STMT,
            marker,
            children=children,
            fields={"name": name, "arguments": arguments, "body": tuple(body)},
            metadata={"name": self._name_of(name)},
        )

    def _parse_menu_item(self) -> SyntaxNode:
        """Parse MenuItem "label" var, or MenuItem("label", var)."""
        marker = self._open()
        self._advance()  # consume MenuItem
        children: list = []

        if self._check_punct("("):
            arguments = self._parse_instruction_arguments(children, "MenuItem", (2,), (1,))
            label = arguments[0] if len(arguments) > 0 else None
            variable = arguments[1] if len(arguments) > 1 else None
        else:
            token = self._peek()
            if self._same_line() and token.kind is TokenKind.STRING:
                label = self._leaf(NodeKind.STRING_LITERAL, value=token.value,
                                   terminated=token.metadata.get("terminated", True))
            else:
                label = self._missing("menu item label string")
            children.append(label)
            variable = self._parse_name("menu item variable")
            children.append(variable)

        return self._close(
            NodeKind.MENU_ITEM,
            marker,
            children=children,
            fields={"label": label, "variable": variable},
            metadata={"label": self._name_of(label), "variable": self._name_of(variable)},
        )

    # =========================================================================
    # Tables
    # =========================================================================

    def _parse_data_table(self) -> SyntaxNode:
        """Parse DataTable(name, trigger, size) ... EndTable, or the bare form."""
        marker = self._open()
        opener = self._advance()
        children: list = []

        if self._check_punct("("):
            arguments = self._parse_instruction_arguments(children, "DataTable", (3,), (0,))
            form = "call"
        else:
            name = self._parse_name("table name")
            children.append(name)
            trigger = self._parse_unary()
            children.append(trigger)
            size = self.parse_expression()
            children.append(size)
            arguments = (name, trigger, size)
            form = "bare"

        name = arguments[0] if len(arguments) > 0 else None
        body = self._parse_block_body(frozenset({Keyword.ENDTABLE}))
        children.extend(body)
        self._close_block(Keyword.ENDTABLE, opener)

        return self._close(
            NodeKind.DATA_TABLE_STMT,
            marker,
            children=children,
            fields={
                "name": name,
                "trigger": arguments[1] if len(arguments) > 1 else None,
                "size": arguments[2] if len(arguments) > 2 else None,
                "arguments": arguments,
                "body": tuple(body),
            },
            metadata={"name": self._name_of(name), "form": form},
        )

    def _parse_call_table(self) -> SyntaxNode:
        """Parse CallTable(name) or CallTable name."""
        marker = self._open()
        self._advance()  # consume CallTable
        children: list = []

        if self._check_punct("("):
            arguments = self._parse_instruction_arguments(children, "CallTable", (1,), (0,))
            name = arguments[0] if arguments else None
        else:
            name = self._parse_name("table name")
            children.append(name)

        return self._close(
            NodeKind.CALL_TABLE_STMT,
            marker,
            children=children,
            fields={"name": name},
            metadata={"name": self._name_of(name)},
        )

    # =========================================================================
    # Preprocessor
    # =========================================================================

    def _parse_preprocessor_if(self) -> SyntaxNode:
        """Parse #If expr [Then] ... [#Else ...] #EndIf."""
        marker = self._open()
        opener = self._advance()
        condition = self.parse_expression()
        if self._check_keyword(Keyword.THEN):
            self._advance()
        return self._finish_preprocessor_block(
            NodeKind.PREPROCESSOR_IF, marker, opener, condition, "condition"
        )

    def _parse_preprocessor_ifdef(self) -> SyntaxNode:
        """Parse #IfDef name ... [#Else ...] #EndIf."""
        marker = self._open()
        opener = self._advance()
        name = self._parse_name("symbol name")
        return self._finish_preprocessor_block(
            NodeKind.PREPROCESSOR_IFDEF, marker, opener, name, "name"
        )

    def _finish_preprocessor_block(
        self,
        kind: NodeKind,
        marker,
        opener: Token,
        header: SyntaxNode,
        header_field: str,
    ) -> SyntaxNode:
        children: list = [header]
        then_body = self._parse_block_body(PREPROCESSOR_IF_STOPS)
        children.extend(then_body)

        else_clause = None
        if self._peek().directive is Directive.ELSE:
            else_clause = self._parse_else_clause(PREPROCESSOR_ELSE_STOPS)
            children.append(else_clause)

        self._close_block(Directive.ENDIF, opener)
        return self._close(
            kind,
            marker,
            children=children,
            fields={
                header_field: header,
                "then_body": tuple(then_body),
                "else_clause": else_clause,
            },
            metadata={"name": self._name_of(header)} if header_field == "name" else None,
        )

    def _parse_preprocessor_undef(self) -> SyntaxNode:
        """Parse #UnDef name."""
        marker = self._open()
        self._advance()
        name = self._parse_name("symbol name")
        return self._close(
            NodeKind.PREPROCESSOR_UNDEF,
            marker,
            children=(name,),
            fields={"name": name},
            metadata={"name": self._name_of(name)},
        )

    def _parse_include(self) -> SyntaxNode:
        """Parse Include "file"."""
        marker = self._open()
        self._advance()
        token = self._peek()
        if self._same_line() and token.kind is TokenKind.STRING:
            path = self._leaf(NodeKind.STRING_LITERAL, value=token.value,
                              terminated=token.metadata.get("terminated", True))
        else:
            path = self._missing("file name string after 'Include'")
        return self._close(
            NodeKind.INCLUDE_DIRECTIVE,
            marker,
            children=(path,),
            fields={"path": path},
            metadata={"path": self._name_of(path)},
        )


# =============================================================================
# Convenience Functions
# =============================================================================

def parse(
    source: str,
    options: Optional[ParserOptions] = None,
) -> tuple[SyntaxTree, list[Diagnostic]]:
    """
    Parse CRBasic source code.

    This is a convenience function that combines lexing and parsing.

    Args:
        source: The CRBasic source code
        options: Parsing options (defaults to ParserOptions())

    Returns:
        Tuple of (syntax tree, diagnostics ordered by position)

    Raises:
        CRBasicParseError: If options.strict is set and any diagnostic
            was produced
    """
    options = options or ParserOptions()
    lexer = Lexer(source)
    tokens = list(lexer.tokenize())
    parser = Parser(tokens, source, options, lexer.diagnostics)
    tree = parser.parse()

    if options.strict:
        parser.collector.raise_if_errors(source, options.filename)

    return tree, list(tree.diagnostics)

# =============================================================================
# test_lexer.py - Lexer Unit Tests
# =============================================================================
# Tests for the CRBasic lexer/tokenizer.
#
# Test coverage includes:
#   - Keywords, identifiers, booleans and word operators (case-insensitive)
#   - Number formats: decimal, fraction, scientific, &h hex, &b binary,
#     type suffixes, malformed literals
#   - String literals with escapes, unterminated strings
#   - Operators (longest match) and punctuation
#   - Preprocessor markers
#   - Comments and whitespace kept as trivia, line tracking
#   - Invalid characters reported as LexError diagnostics
# =============================================================================

import pytest
from crbasic.errors import DiagnosticKind
from crbasic.lexer import (
    Directive,
    Keyword,
    Lexer,
    NumberBase,
    TokenKind,
    tokenize,
)


# =============================================================================
# Helper Functions
# =============================================================================

def lex(source: str) -> list:
    """Tokenize and drop the EOF token."""
    return [t for t in tokenize(source) if t.kind is not TokenKind.EOF]


def lex_with_errors(source: str) -> tuple:
    """Tokenize and return (tokens without EOF, diagnostics)."""
    lexer = Lexer(source)
    tokens = [t for t in lexer.tokenize() if t.kind is not TokenKind.EOF]
    return tokens, lexer.diagnostics


# =============================================================================
# Basic Token Recognition Tests
# =============================================================================

class TestBasicTokens:
    """Test basic token recognition for simple inputs."""

    def test_empty_source(self):
        """Empty source produces only EOF."""
        tokens = tokenize("")
        assert len(tokens) == 1
        assert tokens[0].kind is TokenKind.EOF

    def test_whitespace_only(self):
        """Whitespace becomes trivia of the EOF token."""
        tokens = tokenize("   \t\n  ")
        assert len(tokens) == 1
        assert tokens[0].leading_trivia[0].kind is TokenKind.WHITESPACE

    def test_identifier(self):
        """Names keep their spelling as value."""
        tokens = lex("Batt_volt")
        assert len(tokens) == 1
        assert tokens[0].kind is TokenKind.IDENTIFIER
        assert tokens[0].value == "Batt_volt"

    def test_declaration_line(self):
        """A typical declaration tokenizes into keyword/identifier pairs."""
        tokens = lex("Public Batt As Float")
        assert [t.kind for t in tokens] == [
            TokenKind.KEYWORD, TokenKind.IDENTIFIER,
            TokenKind.KEYWORD, TokenKind.IDENTIFIER,
        ]

    def test_punctuation(self):
        """Parentheses and commas are punctuation."""
        tokens = lex("Scan(1,Sec,0,0)")
        assert tokens[1].kind is TokenKind.PUNCTUATION
        assert tokens[1].text == "("
        assert tokens[3].is_punctuation(",")
        assert tokens[-1].is_punctuation(")")


# =============================================================================
# Keyword Tests
# =============================================================================

class TestKeywords:
    """Test reserved word recognition."""

    @pytest.mark.parametrize("spelling", ["BeginProg", "beginprog", "BEGINPROG", "bEgInPrOg"])
    def test_keywords_case_insensitive(self, spelling):
        """Keywords match in any letter case and keep the source spelling."""
        token = lex(spelling)[0]
        assert token.kind is TokenKind.KEYWORD
        assert token.keyword is Keyword.BEGINPROG
        assert token.text == spelling
        assert token.value == "BeginProg"

    def test_block_terminators(self):
        """Terminators are single keywords, not two words."""
        tokens = lex("EndIf NextScan EndTable EndSelect")
        assert [t.keyword for t in tokens] == [
            Keyword.ENDIF, Keyword.NEXTSCAN, Keyword.ENDTABLE, Keyword.ENDSELECT,
        ]

    def test_keyword_prefix_is_identifier(self):
        """A name that merely starts with a keyword is an identifier."""
        tokens = lex("Scanner IfCount")
        assert all(t.kind is TokenKind.IDENTIFIER for t in tokens)

    def test_data_type_names_are_identifiers(self):
        """Type names are resolved by the parser, not reserved."""
        token = lex("Float")[0]
        assert token.kind is TokenKind.IDENTIFIER

    def test_tag_property(self):
        """tag gives the keyword or directive of a token."""
        assert lex("Wend")[0].tag is Keyword.WEND
        assert lex("#EndIf")[0].tag is Directive.ENDIF
        assert lex("x")[0].tag is None


# =============================================================================
# Boolean and Word Operator Tests
# =============================================================================

class TestBooleansAndWordOperators:
    """Test True/False and MOD/AND/... recognition."""

    @pytest.mark.parametrize("spelling,value", [
        ("true", True), ("True", True), ("TRUE", True),
        ("false", False), ("FALSE", False),
    ])
    def test_booleans(self, spelling, value):
        """Booleans are case-insensitive."""
        token = lex(spelling)[0]
        assert token.kind is TokenKind.BOOLEAN
        assert token.value is value

    @pytest.mark.parametrize("spelling,canonical", [
        ("mod", "MOD"), ("Mod", "MOD"), ("intdv", "INTDV"),
        ("and", "AND"), ("Or", "OR"), ("xor", "XOR"), ("imp", "IMP"), ("not", "NOT"),
    ])
    def test_word_operators(self, spelling, canonical):
        """Word operators are OPERATOR tokens with an upper-case value."""
        token = lex(spelling)[0]
        assert token.kind is TokenKind.OPERATOR
        assert token.value == canonical
        assert token.text == spelling


# =============================================================================
# Number Tests
# =============================================================================

class TestNumbers:
    """Test numeric literal formats."""

    def test_integer(self):
        """Plain integers have an int value."""
        token = lex("42")[0]
        assert token.kind is TokenKind.NUMBER
        assert token.value == 42
        assert token.metadata["base"] is NumberBase.DECIMAL

    def test_fraction(self):
        """Numbers with a point are floats."""
        assert lex("1.5")[0].value == 1.5

    def test_leading_dot_fraction(self):
        """'.5' is a number, not punctuation."""
        tokens = lex(".5")
        assert len(tokens) == 1
        assert tokens[0].value == 0.5

    def test_scientific(self):
        """Exponent notation sets the scientific flag."""
        token = lex("1.5e-3")[0]
        assert token.value == pytest.approx(0.0015)
        assert token.metadata["scientific"] is True

    def test_scientific_uppercase(self):
        """The exponent marker may be upper case."""
        assert lex("2E+2")[0].value == 200.0

    def test_hexadecimal(self):
        """&h introduces hex digits."""
        token = lex("&hFF")[0]
        assert token.value == 255
        assert token.metadata["base"] is NumberBase.HEXADECIMAL

    def test_hexadecimal_uppercase_marker(self):
        """The radix marker is case-insensitive."""
        assert lex("&H1f")[0].value == 31

    def test_binary(self):
        """&b introduces binary digits."""
        token = lex("&b101")[0]
        assert token.value == 5
        assert token.metadata["base"] is NumberBase.BINARY

    @pytest.mark.parametrize("text,suffix", [("10UL", "UL"), ("10Ul", "Ul"), ("10L", "L")])
    def test_integer_suffix(self, text, suffix):
        """Type suffixes are kept in metadata and not part of the value."""
        token = lex(text)[0]
        assert token.value == 10
        assert token.metadata["suffix"] == suffix

    def test_float_suffix(self):
        """1.5F is a float with suffix F."""
        token = lex("1.5F")[0]
        assert token.value == 1.5
        assert token.metadata["suffix"] == "F"

    def test_no_suffix(self):
        """Plain numbers have no suffix."""
        assert lex("7")[0].metadata["suffix"] is None

    def test_ampersand_not_followed_by_radix_digit(self):
        """'&batt' is the concatenation operator followed by a name."""
        tokens = lex("&batt")
        assert tokens[0].is_operator("&")
        assert tokens[1].kind is TokenKind.IDENTIFIER
        assert tokens[1].text == "batt"


class TestMalformedNumbers:
    """Test LexError reporting for bad numeric literals."""

    @pytest.mark.parametrize("text,reason", [
        ("&h1G", "invalid hexadecimal digits"),
        ("&b102", "invalid binary digits"),
        ("1e+", "exponent has no digits"),
        ("12abc", "unexpected characters in number"),
    ])
    def test_malformed_literal(self, text, reason):
        """Malformed numbers become one NUMBER token and one LexError."""
        tokens, diagnostics = lex_with_errors(text)
        assert len(tokens) == 1
        assert tokens[0].kind is TokenKind.NUMBER
        assert tokens[0].text == text
        assert tokens[0].value is None
        assert len(diagnostics) == 1
        assert diagnostics[0].kind is DiagnosticKind.LEX_ERROR
        assert diagnostics[0].message == f"malformed numeric literal '{text}': {reason}"

    def test_malformed_span(self):
        """The diagnostic covers the whole literal."""
        _, diagnostics = lex_with_errors("x = &h1G")
        span = diagnostics[0].span
        assert (span.line, span.column, span.end_column) == (1, 5, 9)


# =============================================================================
# String Tests
# =============================================================================

class TestStrings:
    """Test string literal scanning."""

    def test_simple_string(self):
        """The value is the text between the quotes."""
        token = lex('"Battery"')[0]
        assert token.kind is TokenKind.STRING
        assert token.value == "Battery"
        assert token.metadata["terminated"] is True

    def test_escaped_quote(self):
        """Backslash escapes do not end the string and are kept verbatim."""
        tokens = lex('"say \\"hi\\"" x')
        assert tokens[0].value == 'say \\"hi\\"'
        assert tokens[1].kind is TokenKind.IDENTIFIER

    def test_empty_string(self):
        """Empty strings are allowed."""
        assert lex('""')[0].value == ""

    def test_unterminated_string(self):
        """An unterminated string runs to end of input and is reported."""
        tokens, diagnostics = lex_with_errors('MenuItem "Temp')
        assert tokens[1].kind is TokenKind.STRING
        assert tokens[1].value == "Temp"
        assert tokens[1].metadata["terminated"] is False
        assert len(diagnostics) == 1
        assert diagnostics[0].message == "unterminated string literal"
        assert diagnostics[0].hint is not None

    def test_unterminated_string_stops_at_line_end(self):
        """The next line is lexed normally after an unterminated string."""
        tokens, diagnostics = lex_with_errors('x = "abc\ny = 1')
        assert tokens[2].value == "abc"
        assert tokens[3].text == "y"
        assert tokens[3].newline_before is True
        assert len(diagnostics) == 1


# =============================================================================
# Operator Tests
# =============================================================================

class TestOperators:
    """Test operator scanning."""

    @pytest.mark.parametrize("op", ["<=", ">=", "<>", ">>", "<<", "+=", "-=", "*=", "/=", "^=", "&="])
    def test_two_character_operators(self, op):
        """Two-character operators win over their one-character prefixes."""
        tokens = lex(f"a{op}b")
        assert len(tokens) == 3
        assert tokens[1].kind is TokenKind.OPERATOR
        assert tokens[1].value == op

    def test_backslash_assign(self):
        """'\\=' is the integer-divide assignment operator."""
        tokens = lex("a \\= 2")
        assert tokens[1].text == "\\="
        assert tokens[1].is_assignment_operator()

    @pytest.mark.parametrize("op", ["+", "-", "*", "/", "^", "=", "<", ">", "&", "|", "!"])
    def test_single_character_operators(self, op):
        """Single-character operators."""
        tokens = lex(f"a {op} b")
        assert tokens[1].is_operator(op)

    def test_assignment_operator_check(self):
        """Comparison operators are not assignments."""
        tokens = lex("a <= b")
        assert not tokens[1].is_assignment_operator()
        assert lex("a = b")[1].is_assignment_operator()


# =============================================================================
# Preprocessor Tests
# =============================================================================

class TestDirectives:
    """Test '#' preprocessor markers."""

    @pytest.mark.parametrize("text,directive", [
        ("#If", Directive.IF),
        ("#ifdef", Directive.IFDEF),
        ("#Else", Directive.ELSE),
        ("#ENDIF", Directive.ENDIF),
        ("#UnDef", Directive.UNDEF),
    ])
    def test_known_directives(self, text, directive):
        """Directives are case-insensitive."""
        token = lex(text)[0]
        assert token.kind is TokenKind.PREPROCESSOR
        assert token.directive is directive

    def test_unknown_directive(self):
        """Unknown directives still lex; the parser reports them."""
        token = lex("#Pragma")[0]
        assert token.kind is TokenKind.PREPROCESSOR
        assert token.directive is None
        assert token.value == "#Pragma"

    def test_include_is_keyword(self):
        """Include is a keyword, not a '#' directive."""
        assert lex("Include")[0].keyword is Keyword.INCLUDE


# =============================================================================
# Trivia and Position Tests
# =============================================================================

class TestTrivia:
    """Test comments, whitespace and line tracking."""

    def test_comment_is_trivia(self):
        """Comments attach to the following token, not the token stream."""
        tokens = lex("x = 1 ' note\ny = 2")
        assert [t.text for t in tokens] == ["x", "=", "1", "y", "=", "2"]
        y = tokens[3]
        assert y.comments[0].value == " note"
        assert y.newline_before is True

    def test_trailing_comment_belongs_to_eof(self):
        """A comment at the end of input is EOF trivia."""
        eof = tokenize("x = 1 ' done")[-1]
        assert eof.kind is TokenKind.EOF
        assert eof.comments[0].text == "' done"

    def test_newline_before(self):
        """Only tokens that start a line have newline_before set."""
        tokens = lex("a b\nc")
        assert [t.newline_before for t in tokens] == [True, False, True]

    def test_positions(self):
        """Lines and columns are 1-indexed."""
        tokens = tokenize("Public Batt As Float")
        assert [(t.span.line, t.span.column) for t in tokens] == [
            (1, 1), (1, 8), (1, 13), (1, 16), (1, 21),
        ]

    def test_positions_across_lines(self):
        """Columns reset after a line break."""
        tokens = lex("BeginProg\n  Scan")
        assert (tokens[1].span.line, tokens[1].span.column) == (2, 3)

    def test_full_text_reproduces_source(self):
        """Concatenating full_text of every token gives the source back."""
        source = "' header\r\nPublic  x\t' trailing\n\nBeginProg\n  x = &hFF\nEndProg\n"
        tokens = tokenize(source)
        assert "".join(t.full_text for t in tokens) == source

    def test_full_span_includes_trivia(self):
        """full_span starts at the first trivia character."""
        token = lex("   x")[0]
        assert token.full_start == 0
        assert token.span.start == 3


# =============================================================================
# Error Condition Tests
# =============================================================================

class TestInvalidCharacters:
    """Test LexError reporting for characters outside the language."""

    def test_invalid_character(self):
        """Invalid characters become ERROR tokens with a diagnostic."""
        tokens, diagnostics = lex_with_errors("x = @")
        assert tokens[2].kind is TokenKind.ERROR
        assert tokens[2].text == "@"
        assert len(diagnostics) == 1
        assert diagnostics[0].message == "invalid character '@' (0x40)"
        assert (diagnostics[0].span.line, diagnostics[0].span.column) == (1, 5)

    def test_lexing_continues_after_error(self):
        """Tokens after an invalid character are still produced."""
        tokens, diagnostics = lex_with_errors("a ? b")
        assert [t.kind for t in tokens] == [
            TokenKind.IDENTIFIER, TokenKind.ERROR, TokenKind.IDENTIFIER,
        ]
        assert len(diagnostics) == 1

    def test_non_ascii_digit_is_invalid(self):
        """Only ASCII digits start numbers."""
        tokens, diagnostics = lex_with_errors("٣")
        assert tokens[0].kind is TokenKind.ERROR
        assert len(diagnostics) == 1

    def test_lone_dot_is_invalid(self):
        """A dot not followed by a digit is not a number."""
        tokens, diagnostics = lex_with_errors(".")
        assert tokens[0].kind is TokenKind.ERROR
        assert diagnostics[0].message == "invalid character '.' (0x2E)"

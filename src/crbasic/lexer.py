"""
CRBasic Lexer (Tokenizer)
=========================

This module implements the lexer for CRBasic, the BASIC dialect used to
program Campbell Scientific dataloggers. It converts source text into a
list of tokens for the parser.

Token Categories
----------------
- Keywords: BeginProg, Scan, DataTable, If, For, ... (case-insensitive)
- Identifiers: variable, table and instruction names
- Numbers: decimal, hexadecimal (&h), binary (&b), scientific, suffixed
- Strings: "double quoted", backslash escapes kept verbatim
- Booleans: True / False in any letter case
- Operators: + - * / ^ = <> < > <= >= & | >> << ! and word operators
  MOD INTDV AND OR XOR IMP NOT
- Punctuation: ( ) ,
- Preprocessor markers: #If #IfDef #Else #EndIf #UnDef

Number Formats
--------------
| Format      | Example   | Value  |
|-------------|-----------|--------|
| Decimal     | 123       | 123    |
| Fraction    | 1.5, .5   | 1.5    |
| Scientific  | 1.5e-3    | 0.0015 |
| Hexadecimal | &hFF      | 255    |
| Binary      | &b101     | 5      |
| Suffixed    | 10UL      | 10     |

Trivia
------
Whitespace and comments (``'`` to end of line) are not tokens of their
own. They are attached to the following token as ``leading_trivia``, so
the concatenated ``full_text`` of all tokens is exactly the source.

Example Usage
-------------
>>> from crbasic.lexer import tokenize
>>> for token in tokenize("Public Batt As Float"):
...     print(token)
Token(KEYWORD, 'Public', 1:1)
Token(IDENTIFIER, 'Batt', 1:8)
Token(KEYWORD, 'As', 1:13)
Token(IDENTIFIER, 'Float', 1:16)
Token(EOF, 1:21)
"""

import logging
import string
from dataclasses import dataclass, field
from enum import Enum, auto
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional

from crbasic.errors import (
    Diagnostic,
    DiagnosticKind,
    SourceLocation,
    SourceSpan,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Token Classification
# =============================================================================

class TokenKind(Enum):
    """Lexical category of a token."""

    KEYWORD = auto()        # BeginProg, Scan, If, ...
    IDENTIFIER = auto()     # Names
    NUMBER = auto()         # All numeric literal formats
    STRING = auto()         # "..."
    BOOLEAN = auto()        # True / False
    OPERATOR = auto()       # Symbolic and word operators
    PUNCTUATION = auto()    # ( ) ,
    PREPROCESSOR = auto()   # #If, #IfDef, ...
    COMMENT = auto()        # ' to end of line (trivia only)
    WHITESPACE = auto()     # Spaces, tabs, line breaks (trivia only)
    ERROR = auto()          # Invalid character
    EOF = auto()            # End of input


class Keyword(Enum):
    """
    CRBasic reserved words. The value is the canonical spelling used in
    messages; matching is case-insensitive.
    """

    # === Program Structure ===
    BEGINPROG = "BeginProg"
    ENDPROG = "EndProg"
    FUNCTION = "Function"
    ENDFUNCTION = "EndFunction"
    SUB = "Sub"
    ENDSUB = "EndSub"

    # === Declarations ===
    DIM = "Dim"
    PUBLIC = "Public"
    AS = "As"
    CONST = "Const"
    CONSTTABLE = "ConstTable"
    ENDCONSTTABLE = "EndConstTable"

    # === Control Flow ===
    IF = "If"
    THEN = "Then"
    ELSEIF = "ElseIf"
    ELSE = "Else"
    ENDIF = "EndIf"
    FOR = "For"
    TO = "To"
    STEP = "Step"
    NEXT = "Next"
    WHILE = "While"
    WEND = "Wend"
    DO = "Do"
    LOOP = "Loop"
    UNTIL = "Until"
    SELECT = "Select"
    CASE = "Case"
    IS = "Is"
    ENDSELECT = "EndSelect"

    # === Scan Structures ===
    SCAN = "Scan"
    NEXTSCAN = "NextScan"
    SUBSCAN = "SubScan"
    NEXTSUBSCAN = "NextSubScan"
    SLOWSEQUENCE = "SlowSequence"
    ENDSEQUENCE = "EndSequence"

    # === Menus ===
    DISPLAYMENU = "DisplayMenu"
    ENDMENU = "EndMenu"
    SUBMENU = "SubMenu"
    ENDSUBMENU = "EndSubMenu"
    MENUITEM = "MenuItem"

    # === Tables ===
    DATATABLE = "DataTable"
    ENDTABLE = "EndTable"
    CALLTABLE = "CallTable"

    # === Preprocessor (keyword form) ===
    INCLUDE = "Include"


class Directive(Enum):
    """Preprocessor markers introduced by '#'."""
    IF = "#If"
    IFDEF = "#IfDef"
    ELSE = "#Else"
    ENDIF = "#EndIf"
    UNDEF = "#UnDef"


class NumberBase(Enum):
    """Radix of a numeric literal."""
    DECIMAL = 10
    HEXADECIMAL = 16
    BINARY = 2


# =============================================================================
# Lookup Tables (built once, keyed by lower-case spelling)
# =============================================================================

KEYWORDS: dict[str, Keyword] = {kw.value.lower(): kw for kw in Keyword}

DIRECTIVES: dict[str, Directive] = {d.value.lower(): d for d in Directive}

BOOLEANS: dict[str, bool] = {"true": True, "false": False}

WORD_OPERATORS: dict[str, str] = {
    word.lower(): word
    for word in ("MOD", "INTDV", "AND", "OR", "XOR", "IMP", "NOT")
}

DATA_TYPES: dict[str, str] = {
    name.lower(): name
    for name in (
        "Boolean", "Float", "Double", "Long", "String",
        "FP2", "IEEE4", "IEEE8", "UINT1", "UINT2", "UINT4",
        "Bool8", "NSEC",
    )
}

# Longest first so that '<=' wins over '<'
OPERATORS: tuple[str, ...] = (
    "*=", "+=", "-=", "/=", "\\=", "^=", "&=",
    "<=", ">=", "<>", ">>", "<<",
    "=", "+", "-", "*", "/", "^", "<", ">", "&", "|", "!",
)

PUNCTUATION = frozenset("(),")

ASSIGNMENT_OPERATORS = frozenset({"=", "*=", "+=", "-=", "/=", "\\=", "^=", "&="})

NUMBER_SUFFIXES = frozenset("LlUuFf")


# =============================================================================
# Token Data Class
# =============================================================================

@dataclass(frozen=True)
class Token:
    """
    A single token of CRBasic source.

    Attributes:
        kind: The TokenKind classification
        text: The exact source text of the token
        span: Source range of the text, trivia excluded
        value: Parsed value (number, bool, string body, canonical operator)
        keyword: The Keyword for KEYWORD tokens
        directive: The Directive for PREPROCESSOR tokens
        newline_before: True if the token starts a line
        leading_trivia: Whitespace and comment tokens before this token
        metadata: Literal metadata (base, suffix, scientific, terminated)
    """
    kind: TokenKind
    text: str
    span: SourceSpan
    value: Any = None
    keyword: Optional[Keyword] = None
    directive: Optional[Directive] = None
    newline_before: bool = False
    leading_trivia: tuple["Token", ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict, compare=False)

    def __repr__(self) -> str:
        """Format token for debugging output."""
        if self.kind is TokenKind.EOF:
            return f"Token(EOF, {self.span.line}:{self.span.column})"
        return f"Token({self.kind.name}, {self.text!r}, {self.span.line}:{self.span.column})"

    @property
    def tag(self) -> Optional[Keyword | Directive]:
        """The keyword or directive this token stands for, if any."""
        return self.keyword or self.directive

    @property
    def full_start(self) -> int:
        """Offset of the first character, leading trivia included."""
        if self.leading_trivia:
            return self.leading_trivia[0].span.start
        return self.span.start

    @property
    def full_span(self) -> SourceSpan:
        """Span covering the leading trivia and the token itself."""
        if self.leading_trivia:
            return self.leading_trivia[0].span.cover(self.span)
        return self.span

    @property
    def full_text(self) -> str:
        """Leading trivia text followed by the token text."""
        return "".join(t.text for t in self.leading_trivia) + self.text

    @property
    def comments(self) -> tuple["Token", ...]:
        """The comment tokens in the leading trivia."""
        return tuple(t for t in self.leading_trivia if t.kind is TokenKind.COMMENT)

    def location(self, filename: str = "<input>") -> SourceLocation:
        """Return a SourceLocation for error reporting."""
        return self.span.location(filename)

    def is_assignment_operator(self) -> bool:
        """Return True if this token is an assignment operator."""
        return self.kind is TokenKind.OPERATOR and self.text in ASSIGNMENT_OPERATORS

    def is_operator(self, *values: str) -> bool:
        """Return True if this is an operator with one of the canonical values."""
        return self.kind is TokenKind.OPERATOR and self.value in values

    def is_punctuation(self, char: str) -> bool:
        """Return True if this is the given punctuation character."""
        return self.kind is TokenKind.PUNCTUATION and self.text == char


# =============================================================================
# Lexer Implementation
# =============================================================================

class Lexer:
    """
    Tokenizes CRBasic source code.

    The lexer never stops on bad input. Invalid characters become ERROR
    tokens, unterminated strings and malformed numbers still become
    STRING/NUMBER tokens, and each problem is recorded as a LexError
    diagnostic in ``diagnostics``.

    Usage:
        lexer = Lexer(source_text)
        tokens = list(lexer.tokenize())
        problems = lexer.diagnostics

    Attributes:
        source: The source code being tokenized
        diagnostics: LexError diagnostics found so far
    """

    # Characters that can start an identifier
    IDENT_START = string.ascii_letters + "_"

    # Characters that can continue an identifier
    IDENT_CHARS = string.ascii_letters + string.digits + "_"

    def __init__(self, source: str):
        """
        Initialize the lexer with source code.

        Args:
            source: The CRBasic source code to tokenize
        """
        self.source = source
        self.diagnostics: list[Diagnostic] = []

        # Current position in source
        self._pos = 0
        self._line = 1
        self._column = 1

    def tokenize(self) -> Iterator[Token]:
        """
        Generate tokens from the source code.

        Yields:
            Token objects, always ending with a single EOF token
        """
        first = True
        count = 0
        while True:
            trivia = self._scan_trivia()
            newline_before = first or any(
                t.kind is TokenKind.WHITESPACE and "\n" in t.text for t in trivia
            )
            first = False

            if self._at_end():
                start = self._mark()
                yield self._make_token(
                    TokenKind.EOF, start,
                    newline_before=newline_before, leading_trivia=trivia,
                )
                break

            token = self._scan_token(newline_before, trivia)
            count += 1
            yield token

        logger.debug(f"Tokenized {count} tokens, {len(self.diagnostics)} lex errors")

    # =========================================================================
    # Character Access Methods
    # =========================================================================

    def _at_end(self) -> bool:
        """Check if we've reached the end of source."""
        return self._pos >= len(self.source)

    def _peek(self, offset: int = 0) -> str:
        """
        Look at character at current position + offset without advancing.

        Returns empty string if past end of source.
        """
        pos = self._pos + offset
        if pos >= len(self.source):
            return ""
        return self.source[pos]

    def _advance(self) -> str:
        """Consume and return the current character, tracking line/column."""
        if self._at_end():
            return ""

        char = self.source[self._pos]
        self._pos += 1

        if char == "\n":
            self._line += 1
            self._column = 1
        else:
            self._column += 1

        return char

    @staticmethod
    def _is_digit(char: str) -> bool:
        """ASCII decimal digit check ('' is not a digit)."""
        return char != "" and char in string.digits

    def _advance_while(self, chars: str) -> str:
        """Consume characters while they belong to chars."""
        start = self._pos
        while self._peek() and self._peek() in chars:
            self._advance()
        return self.source[start:self._pos]

    # =========================================================================
    # Token Creation
    # =========================================================================

    def _mark(self) -> tuple[int, int, int]:
        """Remember the current position as (offset, line, column)."""
        return (self._pos, self._line, self._column)

    def _span_from(self, start: tuple[int, int, int]) -> SourceSpan:
        """Span from a remembered position to the current position."""
        offset, line, column = start
        return SourceSpan(offset, self._pos, line, column, self._line, self._column)

    def _make_token(
        self,
        kind: TokenKind,
        start: tuple[int, int, int],
        value: Any = None,
        keyword: Optional[Keyword] = None,
        directive: Optional[Directive] = None,
        newline_before: bool = False,
        leading_trivia: tuple[Token, ...] = (),
        **metadata: Any,
    ) -> Token:
        """Create a token spanning from start to the current position."""
        return Token(
            kind=kind,
            text=self.source[start[0]:self._pos],
            span=self._span_from(start),
            value=value,
            keyword=keyword,
            directive=directive,
            newline_before=newline_before,
            leading_trivia=leading_trivia,
            metadata=MappingProxyType(metadata),
        )

    def _error(self, message: str, span: SourceSpan, hint: Optional[str] = None) -> None:
        """Record a LexError diagnostic."""
        self.diagnostics.append(
            Diagnostic(DiagnosticKind.LEX_ERROR, message, span, hint)
        )

    # =========================================================================
    # Whitespace and Comment Handling
    # =========================================================================

    def _scan_trivia(self) -> tuple[Token, ...]:
        """Collect whitespace runs and comments before the next token."""
        trivia = []
        while not self._at_end():
            char = self._peek()

            if char.isspace():
                start = self._mark()
                while self._peek() and self._peek().isspace():
                    self._advance()
                trivia.append(self._make_token(TokenKind.WHITESPACE, start))
                continue

            # Comment: ' to end of line (line break not included)
            if char == "'":
                start = self._mark()
                while not self._at_end() and self._peek() not in "\r\n":
                    self._advance()
                text = self.source[start[0]:self._pos]
                trivia.append(self._make_token(TokenKind.COMMENT, start, value=text[1:]))
                continue

            break
        return tuple(trivia)

    # =========================================================================
    # Token Scanning
    # =========================================================================

    def _scan_token(self, newline_before: bool, trivia: tuple[Token, ...]) -> Token:
        """Scan the next token from source."""
        start = self._mark()
        char = self._peek()
        context = {"newline_before": newline_before, "leading_trivia": trivia}

        # Identifiers, keywords, booleans and word operators
        if char in self.IDENT_START:
            return self._scan_word(start, context)

        # Decimal numbers, including leading-dot fractions
        if self._is_digit(char) or (char == "." and self._is_digit(self._peek(1))):
            return self._scan_decimal(start, context)

        # &h / &b radix literals need at least one valid digit after the marker
        if char == "&" and self._starts_radix_literal():
            return self._scan_radix(start, context)

        # String literal
        if char == '"':
            return self._scan_string(start, context)

        # Preprocessor marker
        if char == "#" and self._peek(1) in self.IDENT_START and self._peek(1):
            return self._scan_directive(start, context)

        return self._scan_operator(start, context)

    def _scan_word(self, start, context) -> Token:
        """
        Scan an identifier-shaped word and classify it.

        The lower-cased text is looked up once in the keyword, boolean and
        word-operator tables.
        """
        self._advance_while(self.IDENT_CHARS)
        text = self.source[start[0]:self._pos]
        folded = text.lower()

        keyword = KEYWORDS.get(folded)
        if keyword is not None:
            return self._make_token(TokenKind.KEYWORD, start, value=keyword.value,
                                    keyword=keyword, **context)

        if folded in BOOLEANS:
            return self._make_token(TokenKind.BOOLEAN, start, value=BOOLEANS[folded], **context)

        if folded in WORD_OPERATORS:
            return self._make_token(TokenKind.OPERATOR, start,
                                    value=WORD_OPERATORS[folded], **context)

        return self._make_token(TokenKind.IDENTIFIER, start, value=text, **context)

    def _scan_decimal(self, start, context) -> Token:
        """
        Scan a decimal literal.

        Handles:
        - Integers: 42
        - Fractions: 1.5, 1., .5
        - Exponents: 1e5, 1.5E-3, .5e+2
        - Suffixes: 10L, 10U, 1.5F, 10UL
        """
        malformed = None
        self._advance_while(string.digits)
        is_float = False

        if self._peek() == ".":
            self._advance()
            self._advance_while(string.digits)
            is_float = True

        scientific = False
        if self._peek() in ("e", "E") and self._peek():
            sign = 1 if self._peek(1) in ("+", "-") and self._peek(1) else 0
            if self._is_digit(self._peek(1 + sign)):
                self._advance()
                if sign:
                    self._advance()
                self._advance_while(string.digits)
                scientific = True
            else:
                self._advance()
                if sign:
                    self._advance()
                malformed = "exponent has no digits"

        number_end = self._pos
        suffix = None
        if malformed is None:
            suffix_start = self._pos
            while (self._pos - suffix_start < 2 and self._peek()
                   and self._peek() in NUMBER_SUFFIXES):
                self._advance()
            suffix = self.source[suffix_start:self._pos] or None

        # Letters glued to the number make the whole run invalid
        if self._peek() and self._peek() in self.IDENT_CHARS:
            self._advance_while(self.IDENT_CHARS)
            malformed = malformed or "unexpected characters in number"

        metadata = {"base": NumberBase.DECIMAL, "suffix": suffix, "scientific": scientific}
        if malformed:
            token = self._make_token(TokenKind.NUMBER, start, **metadata, **context)
            self._error(
                f"malformed numeric literal '{token.text}': {malformed}",
                token.span,
                hint="numbers look like 42, 1.5, 1.5e-3, &hFF or &b101",
            )
            return token

        digits = self.source[start[0]:number_end]
        value = float(digits) if (is_float or scientific) else int(digits)
        return self._make_token(TokenKind.NUMBER, start, value=value, **metadata, **context)

    def _starts_radix_literal(self) -> bool:
        """Check for '&h<hexdigit>' or '&b<0|1>' at the current position."""
        marker = self._peek(1).lower()
        digit = self._peek(2)
        if not marker or not digit:
            return False
        if marker == "h":
            return digit in string.hexdigits
        if marker == "b":
            return digit in "01"
        return False

    def _scan_radix(self, start, context) -> Token:
        """Scan a hexadecimal (&h) or binary (&b) literal."""
        self._advance()  # consume &
        marker = self._advance().lower()
        base = NumberBase.HEXADECIMAL if marker == "h" else NumberBase.BINARY

        body = self._advance_while(self.IDENT_CHARS)
        valid = string.hexdigits if base is NumberBase.HEXADECIMAL else "01"
        metadata = {"base": base, "suffix": None, "scientific": False}

        if not all(c in valid for c in body):
            token = self._make_token(TokenKind.NUMBER, start, **metadata, **context)
            kind = "hexadecimal" if base is NumberBase.HEXADECIMAL else "binary"
            self._error(
                f"malformed numeric literal '{token.text}': invalid {kind} digits",
                token.span,
            )
            return token

        return self._make_token(TokenKind.NUMBER, start, value=int(body, base.value),
                                **metadata, **context)

    def _scan_string(self, start, context) -> Token:
        """
        Scan a double-quoted string literal.

        Backslash escapes are kept as written: ``\\"`` does not end the
        string and the value keeps both characters.
        """
        self._advance()  # consume opening "

        # A string never spans lines
        while not self._at_end() and self._peek() not in "\r\n":
            char = self._advance()
            if char == "\\" and self._peek() not in "\r\n":
                self._advance()
            elif char == '"':
                text = self.source[start[0]:self._pos]
                return self._make_token(TokenKind.STRING, start, value=text[1:-1],
                                        terminated=True, **context)

        token = self._make_token(TokenKind.STRING, start,
                                 value=self.source[start[0] + 1:self._pos],
                                 terminated=False, **context)
        self._error(
            "unterminated string literal",
            token.span,
            hint="add closing '\"' to complete the string",
        )
        return token

    def _scan_directive(self, start, context) -> Token:
        """Scan a '#' preprocessor marker such as #If or #EndIf."""
        self._advance()  # consume #
        self._advance_while(self.IDENT_CHARS)
        text = self.source[start[0]:self._pos]
        directive = DIRECTIVES.get(text.lower())
        return self._make_token(TokenKind.PREPROCESSOR, start,
                                value=directive.value if directive else text,
                                directive=directive, **context)

    def _scan_operator(self, start, context) -> Token:
        """Scan an operator or punctuation by longest match."""
        for op in OPERATORS:
            if self.source.startswith(op, self._pos):
                for _ in op:
                    self._advance()
                return self._make_token(TokenKind.OPERATOR, start, value=op, **context)

        char = self._advance()
        if char in PUNCTUATION:
            return self._make_token(TokenKind.PUNCTUATION, start, value=char, **context)

        # Unknown character
        token = self._make_token(TokenKind.ERROR, start, **context)
        self._error(f"invalid character '{char}' (0x{ord(char):02X})", token.span)
        return token


# =============================================================================
# Convenience Functions
# =============================================================================

def tokenize(source: str) -> list[Token]:
    """
    Tokenize CRBasic source code.

    Never raises for bad input; use Lexer directly to also get the
    LexError diagnostics.

    Args:
        source: The CRBasic source code

    Returns:
        All tokens, ending with EOF
    """
    return list(Lexer(source).tokenize())

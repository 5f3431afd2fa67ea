"""
CRBasic Parser Errors and Diagnostics
=====================================

This module defines the source-position types, the diagnostic records the
parser produces, the collector that accumulates them, and the exception
hierarchy used when a caller asks for all-or-nothing behavior.

The parser itself never raises for bad input. Problems found while lexing
or parsing become ``Diagnostic`` values; the tree is always returned.

Exception Hierarchy
-------------------
CRBasicError (base for all CRBasic parser errors)
├── CRBasicDiagnosticError - a single formatted diagnostic
│   ├── CRBasicLexError - invalid character, bad literal
│   └── CRBasicSyntaxError - unexpected token, missing terminator
└── CRBasicParseError - aggregate report of every diagnostic

Error Message Format
--------------------
    filename:line:column: error: description
        source_line_text
            ^^^^^ (pointer to error location)
    hint: suggestion for fixing

Example:
    logger.cr1:5:1: error: missing 'EndIf' to close 'If'
        If TCTemp > 30 Then
        ^^
    hint: add 'EndIf' after the last statement of the block
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, List


# =============================================================================
# Base Exception Class
# =============================================================================

class CRBasicError(Exception):
    """
    Base exception for all CRBasic parser errors.

    Callers can catch every error raised by this package with a single
    except clause:

        try:
            tree, diagnostics = parse(source, ParserOptions(strict=True))
        except CRBasicError as e:
            print(f"Error: {e}")
    """
    pass


# =============================================================================
# Source Location Tracking
# =============================================================================

@dataclass(frozen=True)
class SourceLocation:
    """
    A single point in a named source, used for error messages.

    Attributes:
        filename: Name of the source file (or "<input>" for string input)
        line: Line number (1-indexed)
        column: Column number (1-indexed)
    """
    filename: str
    line: int
    column: int

    def __str__(self) -> str:
        """Format as 'filename:line:column' for error messages."""
        return f"{self.filename}:{self.line}:{self.column}"


@dataclass(frozen=True)
class SourceSpan:
    """
    A half-open range of the source text.

    Offsets index into the source string; lines and columns are 1-indexed
    and describe the first character of the span and the position just
    past its last character.

    Attributes:
        start: Offset of the first character
        end: Offset just past the last character
        line: Line of the first character
        column: Column of the first character
        end_line: Line of the end position
        end_column: Column of the end position
    """
    start: int
    end: int
    line: int
    column: int
    end_line: int
    end_column: int

    def __str__(self) -> str:
        return f"{self.line}:{self.column}-{self.end_line}:{self.end_column}"

    def __len__(self) -> int:
        return self.end - self.start

    def location(self, filename: str = "<input>") -> SourceLocation:
        """Return the start of this span as a SourceLocation."""
        return SourceLocation(filename, self.line, self.column)

    def contains(self, other: "SourceSpan") -> bool:
        """Return True if other lies entirely inside this span."""
        return self.start <= other.start and other.end <= self.end

    def collapse_to_end(self) -> "SourceSpan":
        """Return a zero-width span at the end of this span."""
        return SourceSpan(
            self.end, self.end, self.end_line, self.end_column,
            self.end_line, self.end_column,
        )

    def cover(self, other: "SourceSpan") -> "SourceSpan":
        """Return the smallest span covering both self and other."""
        first = self if self.start <= other.start else other
        last = self if self.end >= other.end else other
        return SourceSpan(
            first.start, last.end, first.line, first.column,
            last.end_line, last.end_column,
        )


# =============================================================================
# Diagnostics
# =============================================================================

class DiagnosticKind(Enum):
    """Category of a diagnostic."""
    LEX_ERROR = "LexError"
    SYNTAX_ERROR = "SyntaxError"


@dataclass(frozen=True)
class Diagnostic:
    """
    A problem found while lexing or parsing.

    Attributes:
        kind: LexError or SyntaxError
        message: Human-readable description
        span: Where in the source the problem is
        hint: Optional suggestion for fixing it
    """
    kind: DiagnosticKind
    message: str
    span: SourceSpan
    hint: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.span.line}:{self.span.column}: {self.kind.value}: {self.message}"

    def to_exception(
        self,
        source: Optional[str] = None,
        filename: str = "<input>",
    ) -> "CRBasicDiagnosticError":
        """Convert this diagnostic into the matching exception."""
        error_class = (
            CRBasicLexError if self.kind is DiagnosticKind.LEX_ERROR
            else CRBasicSyntaxError
        )
        source_line = None
        if source is not None:
            lines = source.split("\n")
            if 0 < self.span.line <= len(lines):
                source_line = lines[self.span.line - 1].rstrip("\r")
        return error_class(
            self.message,
            location=self.span.location(filename),
            hint=self.hint,
            source_line=source_line,
            width=self._width_on_line(),
        )

    def format(self, source: Optional[str] = None, filename: str = "<input>") -> str:
        """Format with location, source context and hint."""
        return str(self.to_exception(source, filename))

    def _width_on_line(self) -> int:
        """Number of caret characters to draw under the first line."""
        if self.span.end_line == self.span.line:
            return max(1, self.span.end_column - self.span.column)
        return 1


# =============================================================================
# Exceptions
# =============================================================================

class CRBasicDiagnosticError(CRBasicError):
    """
    A single diagnostic raised as an exception.

    Attributes:
        message: The error description
        location: Where in the source the error occurred
        hint: A suggestion for fixing the error
        source_line: The actual source text at the error location
    """

    def __init__(
        self,
        message: str,
        location: Optional[SourceLocation] = None,
        hint: Optional[str] = None,
        source_line: Optional[str] = None,
        width: int = 1,
    ):
        self.message = message
        self.location = location
        self.hint = hint
        self.source_line = source_line
        self.width = width
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """
        Format the error message with location, source context, and hint.

            logger.cr1:3:7: error: expected 'Then', found 'Than'
                If x Than
                     ^^^^
            hint: add 'Then' at the end of the condition
        """
        parts = []

        # Location prefix: filename:line:column: error: message
        if self.location:
            parts.append(f"{self.location}: error: {self.message}")
        else:
            parts.append(f"error: {self.message}")

        # Source context with caret pointer
        if self.source_line is not None and self.location is not None:
            parts.append(f"    {self.source_line}")
            if self.location.column > 0:
                padding = " " * (4 + self.location.column - 1)
                remaining = max(1, len(self.source_line) - self.location.column + 1)
                parts.append(f"{padding}{'^' * min(self.width, remaining)}")

        if self.hint:
            parts.append(f"hint: {self.hint}")

        return "\n".join(parts)


class CRBasicLexError(CRBasicDiagnosticError):
    """
    Lexical error in CRBasic source.

    Examples:
        - Invalid character: ``x = 1 @ 2``
        - Unterminated string: ``MenuItem "Temp``
        - Malformed number: ``&h1G``, ``&b102``, ``1e+``
    """
    pass


class CRBasicSyntaxError(CRBasicDiagnosticError):
    """
    Syntax error in CRBasic source.

    Examples:
        - Missing 'Then' after an If condition
        - 'BeginProg' without 'EndProg'
        - 'Next j' closing 'For i'
        - Wrong number of Scan() arguments
    """
    pass


class CRBasicParseError(CRBasicError):
    """
    Aggregate error carrying every diagnostic of a parse.

    The message is a report already formatted by DiagnosticCollector and
    is passed through unchanged.
    """

    def __init__(self, report: str, diagnostics: Optional[List[Diagnostic]] = None):
        self.report = report
        self.diagnostics = list(diagnostics or [])
        super().__init__(report)


# =============================================================================
# Diagnostic Collection
# =============================================================================

class DiagnosticCollector:
    """
    Collects diagnostics for batch reporting.

    The parser keeps going after every problem and records it here, so a
    single run reports everything wrong with a file.

    Example:
        collector = DiagnosticCollector(max_errors=100)
        collector.add(diagnostic)
        if collector.has_errors():
            print(collector.report(source, "logger.cr1"))
    """

    def __init__(self, max_errors: int = 100):
        """
        Initialize the collector.

        Args:
            max_errors: Maximum diagnostics to keep; later ones are dropped
        """
        self.errors: List[Diagnostic] = []
        self.max_errors = max_errors
        self.dropped = 0

    def add(self, diagnostic: Diagnostic) -> bool:
        """
        Add a diagnostic.

        Returns:
            True if recorded, False if the collector is full
        """
        if self.should_stop():
            self.dropped += 1
            return False
        self.errors.append(diagnostic)
        return True

    def has_errors(self) -> bool:
        """Return True if any diagnostics have been collected."""
        return len(self.errors) > 0

    def should_stop(self) -> bool:
        """Return True if max_errors has been reached."""
        return len(self.errors) >= self.max_errors

    def error_count(self) -> int:
        """Return the number of collected diagnostics."""
        return len(self.errors)

    def sorted(self) -> List[Diagnostic]:
        """Return the diagnostics ordered by source position."""
        return sorted(self.errors, key=lambda d: (d.span.start, d.span.end))

    def report(self, source: Optional[str] = None, filename: str = "<input>") -> str:
        """Format all diagnostics for display."""
        lines = []
        for diagnostic in self.sorted():
            lines.append(diagnostic.format(source, filename))
            lines.append("")

        count = len(self.errors) + self.dropped
        error_word = "error" if count == 1 else "errors"
        lines.append(f"{count} {error_word}")
        return "\n".join(lines)

    def clear(self) -> None:
        """Clear all collected diagnostics."""
        self.errors.clear()
        self.dropped = 0

    def raise_if_errors(self, source: Optional[str] = None, filename: str = "<input>") -> None:
        """Raise a CRBasicParseError if any diagnostics were collected."""
        if self.has_errors():
            raise CRBasicParseError(self.report(source, filename), self.sorted())

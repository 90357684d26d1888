"""
Error handling for the Vernacular runtime with detailed error messages
Compile-time errors (lex, parse, semantics) carry source positions;
runtime errors mirror the language-level error values they travel as
"""

from typing import List, Optional, Dict, Any, Sequence
from pyparsing import lineno, col, line as source_line_at


# ============================================================================
# DATA STRUCTURES (Immutable Dictionaries)
# ============================================================================

def make_parse_error(
    message: str,
    location: int,
    line: int,
    column: int,
    expected: Optional[List[str]] = None,
    got: Optional[str] = None,
    context: Optional[str] = None,
    suggestions: Optional[List[str]] = None
) -> Dict:
    """Create an immutable parse error structure"""
    return {
        'message': message,
        'location': location,
        'line': line,
        'column': column,
        'expected': expected or [],
        'got': got,
        'context': context,
        'suggestions': suggestions or []
    }


def format_parse_error(error: Dict, kind: str = "Parse error") -> str:
    """Format parse error as string"""
    error_msg = f"{kind} at line {error['line']}, column {error['column']}:\n"
    error_msg += f"  {error['message']}\n"

    if error['expected']:
        error_msg += f"  Expected: {', '.join(error['expected'])}\n"

    if error['got']:
        error_msg += f"  Got: {error['got']}\n"

    if error['context']:
        error_msg += f"  Context:\n{error['context']}\n"

    if error['suggestions']:
        error_msg += f"  Suggestions:\n"
        for suggestion in error['suggestions']:
            error_msg += f"    - {suggestion}\n"

    return error_msg


# ============================================================================
# PURE FUNCTIONS
# ============================================================================

def get_context_lines(source_text: str, line_num: int, col_num: int, context_lines: int = 2) -> str:
    """Get context lines around the error"""
    if not source_text or line_num <= 0:
        return ""
    lines = source_text.split('\n')
    start_line = max(0, line_num - context_lines - 1)
    end_line = min(len(lines), line_num + context_lines)

    context_parts = []
    for i in range(start_line, end_line):
        line_prefix = f"{i+1:4d}: "
        context_parts.append(f"{line_prefix}{lines[i]}")
        if i == line_num - 1:
            context_parts.append(f"{'':6}{' ' * max(col_num - 1, 0)}^ Error here")

    return '\n'.join(context_parts)


def locate(source_text: str, location: int) -> Dict[str, Any]:
    """Translate an absolute character offset into line, column and line text"""
    return {
        'line': lineno(location, source_text),
        'column': col(location, source_text),
        'text': source_line_at(location, source_text),
    }


def offset_of(source_text: str, line_num: int, col_num: int) -> int:
    """Absolute character offset of a 1-based line/column position"""
    lines = source_text.split('\n')
    offset = sum(len(text) + 1 for text in lines[:max(line_num - 1, 0)])
    return offset + max(col_num - 1, 0)


def describe_got(got: Optional[str]) -> str:
    if got is None or got == "":
        return "end of input"
    if got == "\n":
        return "end of line"
    return f"'{got}'"


def generate_suggestions(got: str, expected: Sequence[str]) -> List[str]:
    """Generate helpful suggestions based on the error"""
    suggestions = []
    expected_text = " ".join(expected)

    if got in ("'='", "'=='") and "'is'" in expected_text:
        suggestions.append("Bindings use 'is', as in: total is 0")

    if "':'" in expected_text:
        suggestions.append("Block headers end with ':' followed by an indented block")

    if "'{'" == got or "'}'" == got:
        suggestions.append("Mappings are written {key: value}; blocks use indentation")

    if "INDENT" in expected_text:
        suggestions.append("Indent the body of the block more than its header")

    if got in ("'then'", "'elif'", "'catch'", "'try'"):
        suggestions.append("Use if/else if/else for branches and do/fail/always for errors")

    return suggestions


# ============================================================================
# COMPILE-TIME ERRORS
# ============================================================================

class VernacularLexError(Exception):
    """Raised when source text cannot be split into tokens"""
    def __init__(self, message: str, line: int = 0, column: int = 0,
                 filename: str = "<input>", context: Optional[str] = None):
        self.message = message
        self.line = line
        self.column = column
        self.filename = filename
        self.context = context
        super().__init__(message)

    def __str__(self) -> str:
        result = f"Lex error at {self.filename}:{self.line}:{self.column}: {self.message}"
        if self.context:
            result += f"\n{self.context}"
        return result


class VernacularParseError(Exception):
    """Parse error with expected alternatives, context and suggestions"""
    kind = "Parse error"

    def __init__(self, message: str, location: int = 0, line: int = 0, column: int = 0,
                 expected: Optional[List[str]] = None, got: Optional[str] = None,
                 context: Optional[str] = None, suggestions: Optional[List[str]] = None):
        self.message = message
        self.location = location
        self.line = line
        self.column = column
        self.expected = expected or []
        self.got = got
        self.context = context
        self.suggestions = suggestions or []
        super().__init__(message)

    def __str__(self) -> str:
        error_dict = make_parse_error(
            self.message, self.location, self.line, self.column,
            self.expected, self.got, self.context, self.suggestions
        )
        return format_parse_error(error_dict, self.kind)


class VernacularSemanticsError(VernacularParseError):
    """Program is well-formed but breaks a structural rule of the language"""
    kind = "Semantics error"


class VernacularErrorHandler:
    """Builds positioned compile-time errors for one source text"""
    def __init__(self, source_text: str, filename: str = "<input>"):
        self.source_text = source_text
        self.filename = filename

    def parse_error(self, message: str, line: int, column: int,
                    expected: Optional[List[str]] = None,
                    got: Optional[str] = None) -> VernacularParseError:
        got_text = describe_got(got)
        return VernacularParseError(
            message=message,
            location=offset_of(self.source_text, line, column),
            line=line,
            column=column,
            expected=list(expected or []),
            got=got_text,
            context=get_context_lines(self.source_text, line, column),
            suggestions=generate_suggestions(got_text, expected or [])
        )

    def semantics_error(self, message: str, line: int, column: int) -> VernacularSemanticsError:
        return VernacularSemanticsError(
            message=message,
            location=offset_of(self.source_text, line, column),
            line=line,
            column=column,
            context=get_context_lines(self.source_text, line, column)
        )

    def lex_error(self, message: str, line: int, column: int) -> VernacularLexError:
        return VernacularLexError(
            message, line, column, self.filename,
            get_context_lines(self.source_text, line, column)
        )


# ============================================================================
# RUNTIME ERRORS
# ============================================================================

RUNTIME_ERROR_KINDS = (
    "NameError",
    "TypeMismatchError",
    "ArityError",
    "NoSuchMethodError",
    "MatchError",
    "DivisionByZeroError",
    "IndexError",
    "HostError",
    "SuspendedError",
)


class VernacularRuntimeError(Exception):
    """Runtime error surfaced to the host

    ``error_value`` is the language-level Error value the failure travelled
    as, so a host can inspect the payload of user-raised errors.
    """
    def __init__(self, kind: str, message: str, span: Any = None,
                 call_stack: Sequence[str] = (), error_value: Optional[Dict] = None):
        self.kind = kind
        self.message = message
        self.span = span
        self.call_stack = list(call_stack)
        self.error_value = error_value
        super().__init__(message)

    def __str__(self) -> str:
        result = f"{self.kind}: {self.message}"
        if self.span:
            result += f" (at {self.span})"
        return result

    def format_trace(self) -> str:
        """Render the error with its originating call stack, innermost last"""
        lines = [str(self)]
        if self.call_stack:
            lines.append("Call stack (most recent call last):")
            for frame in self.call_stack:
                lines.append(f"  in {frame}")
        return "\n".join(lines)


class VernacularNameError(VernacularRuntimeError):
    pass


class VernacularTypeMismatchError(VernacularRuntimeError):
    pass


class VernacularArityError(VernacularRuntimeError):
    pass


class VernacularNoSuchMethodError(VernacularRuntimeError):
    pass


class VernacularMatchError(VernacularRuntimeError):
    pass


_ERROR_CLASSES = {
    "NameError": VernacularNameError,
    "TypeMismatchError": VernacularTypeMismatchError,
    "ArityError": VernacularArityError,
    "NoSuchMethodError": VernacularNoSuchMethodError,
    "MatchError": VernacularMatchError,
}


def runtime_error(kind: str, message: str, span: Any = None,
                  call_stack: Sequence[str] = (), error_value: Optional[Dict] = None) -> VernacularRuntimeError:
    """Instantiate the most specific exception class for a runtime error kind"""
    error_class = _ERROR_CLASSES.get(kind, VernacularRuntimeError)
    return error_class(kind, message, span, call_stack, error_value)

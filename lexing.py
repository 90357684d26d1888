"""
Vernacular Lexer
Turns source text into a lazy token stream with explicit INDENT/DEDENT block
markers, NEWLINE statement ends and interpolation fragments for strings
containing {expr}
"""

import re
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional, Tuple

from error_handling import VernacularErrorHandler


@dataclass(frozen=True)
class SourceSpan:
    """Source location of a token or AST node"""
    filename: str
    start_line: int
    start_col: int
    end_line: int
    end_col: int
    text: str = ""

    def __str__(self) -> str:
        if self.start_line == self.end_line:
            return f"{self.filename}:{self.start_line}:{self.start_col}"
        return f"{self.filename}:{self.start_line}:{self.start_col}-{self.end_line}:{self.end_col}"

    def through(self, other: Optional['SourceSpan']) -> 'SourceSpan':
        """Span covering self up to the end of other"""
        if other is None:
            return self
        return SourceSpan(self.filename, self.start_line, self.start_col,
                          other.end_line, other.end_col, self.text)


@dataclass(frozen=True)
class Token:
    """Vernacular token with source information"""
    type: str
    value: Any
    span: SourceSpan

    @property
    def lexeme(self) -> str:
        return self.span.text

    def __str__(self) -> str:
        if self.type in LAYOUT_TOKENS:
            return self.type
        if self.type == 'EXPR_FRAGMENT':
            inner = " ".join(str(token) for token in self.value[:-1])
            return f"EXPR_FRAGMENT[{inner}]"
        return f"{self.type}({self.value!r})"


KEYWORDS = frozenset({
    'is', 'as', 'Job', 'async', 'requires', 'returning', 'Object', 'inherits',
    'build', 'new', 'my', 'do', 'fail', 'always', 'raise', 'match', 'when',
    'or', 'and', 'not', 'each', 'becomes', 'loop', 'while', 'for', 'in',
    'yield', 'output', 'show', 'await', 'if', 'else', 'true', 'false', 'void',
    'using', 'at', 'of', 'to',
})

# '=' is lexed so the parser can suggest 'is'
OPERATORS = ('==', '!=', '<=', '>=', '<', '>', '+', '-', '*', '/', '%', '=')

DELIMITERS = frozenset('()[]{},:.')
OPENING = frozenset('([{')
CLOSING = frozenset(')]}')

LAYOUT_TOKENS = frozenset({'NEWLINE', 'INDENT', 'DEDENT', 'EOF', 'INTERP_START', 'INTERP_END'})

STRING_ESCAPES = {
    'n': '\n', 't': '\t', 'r': '\r', '\\': '\\', '"': '"', '{': '{', '}': '}',
}

TAB_WIDTH = 4


class VernacularLexer:
    """Vernacular tokenizer with indentation tracking"""

    def __init__(self, filename: str = "<input>", debug: bool = False):
        self.filename = filename
        self.debug = debug
        self._setup_token_patterns()

    def _setup_token_patterns(self):
        """Setup all token patterns for Vernacular"""
        self.number_pattern = re.compile(r'\d+(?:\.\d+)?')
        self.identifier_pattern = re.compile(r'[A-Za-z_][A-Za-z0-9_]*')

        # Longest operators first
        operators_sorted = sorted(OPERATORS, key=len, reverse=True)
        self.operator_pattern = re.compile('|'.join(re.escape(op) for op in operators_sorted))

    def tokenize(self, text: str) -> List[Token]:
        """Materialise the whole token stream"""
        return list(self.iter_tokens(text))

    def iter_tokens(self, text: str) -> Iterator[Token]:
        """Yield tokens one at a time; raises VernacularLexError on bad input"""
        handler = VernacularErrorHandler(text, self.filename)
        indents = [0]
        depth = 0
        continued = False
        line_has_tokens = False
        lines = text.split('\n')

        for line_num, raw_line in enumerate(lines, 1):
            line = raw_line.rstrip('\r')
            pos = 0

            if depth == 0 and not continued:
                width, pos = self._measure_indent(line)
                if pos >= len(line) or line[pos] == '#':
                    # Blank and comment-only lines carry no layout
                    continue
                yield from self._layout_tokens(indents, width, line_num, pos, handler)
            continued = False

            while pos < len(line):
                ch = line[pos]
                if ch in ' \t':
                    pos += 1
                    continue
                if ch == '#':
                    break
                if ch == '\\' and not line[pos + 1:].strip():
                    continued = True
                    break

                if ch == '"':
                    string_tokens, pos = self._lex_string(line, pos, line_num, handler)
                    for token in string_tokens:
                        self._trace(token)
                        yield token
                    line_has_tokens = True
                    continue

                token = self._match_token_at_position(line, pos, line_num)
                if token is None:
                    raise handler.lex_error(f"Unknown character '{ch}'", line_num, pos + 1)
                if token.type == 'DELIMITER':
                    if token.value in OPENING:
                        depth += 1
                    elif token.value in CLOSING:
                        depth = max(depth - 1, 0)
                self._trace(token)
                yield token
                pos += len(token.lexeme)
                line_has_tokens = True

            if line_has_tokens and depth == 0 and not continued:
                yield Token('NEWLINE', '\n', self._span(line_num, len(line), len(line) + 1, ''))
                line_has_tokens = False

        last_line = max(len(lines), 1)
        if continued:
            raise handler.lex_error("Line continuation at end of input", last_line, 1)
        if line_has_tokens:
            yield Token('NEWLINE', '\n', self._span(last_line, 0, 1, ''))
        while len(indents) > 1:
            indents.pop()
            yield Token('DEDENT', '', self._span(last_line, 0, 1, ''))
        yield Token('EOF', None, self._span(last_line, 0, 1, ''))

    # ---- layout ----

    def _measure_indent(self, line: str) -> Tuple[int, int]:
        """Indentation width (tabs count as TAB_WIDTH) and first content column"""
        width = 0
        pos = 0
        while pos < len(line) and line[pos] in ' \t':
            width += TAB_WIDTH if line[pos] == '\t' else 1
            pos += 1
        return width, pos

    def _layout_tokens(self, indents: List[int], width: int, line_num: int, pos: int,
                       handler: VernacularErrorHandler) -> Iterator[Token]:
        span = self._span(line_num, 0, pos + 1, '')
        if width > indents[-1]:
            indents.append(width)
            yield Token('INDENT', width, span)
            return
        while width < indents[-1]:
            indents.pop()
            yield Token('DEDENT', width, span)
        if width != indents[-1]:
            raise handler.lex_error(
                "Invalid indentation: dedent does not match any enclosing block",
                line_num, pos + 1)

    # ---- token matching ----

    def _match_token_at_position(self, line: str, pos: int, line_num: int,
                                 offset: int = 0) -> Optional[Token]:
        """Match a token at a specific position using priority order"""

        # Priority 1: Numbers
        num_match = self.number_pattern.match(line, pos)
        if num_match:
            value = num_match.group(0)
            processed_value = float(value) if '.' in value else int(value)
            span = self._span(line_num, pos, num_match.end(), value, offset)
            return Token("NUMBER", processed_value, span)

        # Priority 2: Identifiers and keywords
        id_match = self.identifier_pattern.match(line, pos)
        if id_match:
            value = id_match.group(0)
            span = self._span(line_num, pos, id_match.end(), value, offset)
            if value in KEYWORDS:
                return Token("KEYWORD", value, span)
            return Token("IDENTIFIER", value, span)

        # Priority 3: Operators (longest match first)
        op_match = self.operator_pattern.match(line, pos)
        if op_match:
            value = op_match.group(0)
            return Token("OPERATOR", value, self._span(line_num, pos, op_match.end(), value, offset))

        # Priority 4: Delimiters (single characters)
        if line[pos] in DELIMITERS:
            value = line[pos]
            return Token("DELIMITER", value, self._span(line_num, pos, pos + 1, value, offset))

        return None

    # ---- strings and interpolation ----

    def _lex_string(self, line: str, start: int, line_num: int,
                    handler: VernacularErrorHandler, offset: int = 0) -> Tuple[List[Token], int]:
        """Lex a string literal starting at the opening quote

        Plain strings become one STRING token. Strings containing {expr}
        become INTERP_START, TEXT_FRAGMENT/EXPR_FRAGMENT tokens, INTERP_END.
        """
        pos = start + 1
        parts = []
        buffer = []
        buffer_start = pos
        interpolated = False

        while True:
            if pos >= len(line):
                raise handler.lex_error("Unterminated string", line_num, offset + start + 1)
            ch = line[pos]

            if ch == '\\':
                if pos + 1 >= len(line):
                    raise handler.lex_error("Unterminated string", line_num, offset + start + 1)
                escaped = line[pos + 1]
                buffer.append(STRING_ESCAPES.get(escaped, '\\' + escaped))
                pos += 2
                continue

            if ch == '"':
                pos += 1
                break

            if ch == '{':
                end = self._find_closing_brace(line, pos, line_num, handler, offset)
                expr_text = line[pos + 1:end]
                if not expr_text.strip():
                    raise handler.lex_error("Empty interpolation '{}'", line_num, offset + pos + 1)
                if buffer:
                    parts.append(('text', ''.join(buffer), buffer_start))
                    buffer = []
                parts.append(('expr', expr_text, pos + 1))
                interpolated = True
                pos = end + 1
                buffer_start = pos
                continue

            if ch == '}':
                raise handler.lex_error("Unmatched '}' in string; write \\} for a literal brace",
                                        line_num, offset + pos + 1)

            buffer.append(ch)
            pos += 1

        lexeme = line[start:pos]
        if not interpolated:
            span = self._span(line_num, start, pos, lexeme, offset)
            return [Token('STRING', ''.join(buffer), span)], pos

        if buffer:
            parts.append(('text', ''.join(buffer), buffer_start))

        tokens = [Token('INTERP_START', '"', self._span(line_num, start, start + 1, '"', offset))]
        for kind, content, column in parts:
            if kind == 'text':
                span = self._span(line_num, column, column + len(content), content, offset)
                tokens.append(Token('TEXT_FRAGMENT', content, span))
            else:
                inner = self._lex_fragment(content, line_num, handler, offset + column)
                span = self._span(line_num, column, column + len(content), content, offset)
                tokens.append(Token('EXPR_FRAGMENT', inner, span))
        tokens.append(Token('INTERP_END', '"', self._span(line_num, pos - 1, pos, '"', offset)))
        return tokens, pos

    def _find_closing_brace(self, line: str, start: int, line_num: int,
                            handler: VernacularErrorHandler, offset: int) -> int:
        depth = 0
        in_string = False
        pos = start
        while pos < len(line):
            ch = line[pos]
            if in_string:
                if ch == '\\':
                    pos += 2
                    continue
                if ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == '{':
                depth += 1
            elif ch == '}':
                depth -= 1
                if depth == 0:
                    return pos
            pos += 1
        raise handler.lex_error("Unclosed '{' in string interpolation", line_num, offset + start + 1)

    def _lex_fragment(self, content: str, line_num: int, handler: VernacularErrorHandler,
                      offset: int) -> List[Token]:
        """Tokens of an embedded expression, terminated by EOF"""
        tokens = []
        pos = 0
        while pos < len(content):
            ch = content[pos]
            if ch in ' \t':
                pos += 1
                continue
            if ch == '"':
                string_tokens, pos = self._lex_string(content, pos, line_num, handler, offset)
                tokens.extend(string_tokens)
                continue
            token = self._match_token_at_position(content, pos, line_num, offset)
            if token is None:
                raise handler.lex_error(f"Unknown character '{ch}'", line_num, offset + pos + 1)
            tokens.append(token)
            pos += len(token.lexeme)
        tokens.append(Token('EOF', None, self._span(line_num, len(content), len(content) + 1, '', offset)))
        return tokens

    # ---- helpers ----

    def _span(self, line_num: int, start: int, end: int, text: str, offset: int = 0) -> SourceSpan:
        """Span for 0-based [start, end) columns of a line"""
        return SourceSpan(self.filename, line_num, offset + start + 1, line_num, offset + end + 1, text)

    def _trace(self, token: Token):
        if self.debug:
            print(f"Token: {token} at {token.span}")


def tokenize(text: str, filename: str = "<input>") -> List[Token]:
    """Tokenize Vernacular source code"""
    return VernacularLexer(filename).tokenize(text)


def format_tokens(tokens: List[Token]) -> str:
    """One token per line, as dumped by --tokens and .tokens"""
    return "\n".join(f"{token.span.start_line:4d}:{token.span.start_col:<4d} {token}" for token in tokens)

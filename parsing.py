"""
Vernacular Programming Language Parser
Recursive-descent parser over the lexer's token stream producing a
dictionary AST with source spans
"""

from typing import Any, Dict, Iterable, Iterator, List, Optional

from pyparsing import ParseException

from error_handling import VernacularErrorHandler, VernacularParseError
from lexing import SourceSpan, Token, VernacularLexer
from semantics import (
    ANY, DeclaredType, canonical_type_name, create_analyzer, parse_type_annotation,
    type_annotation_error
)


# ============================================================================
# AST NODES
# ============================================================================

def make_ast_node(node_type: str, value: Any, span: Optional[SourceSpan] = None) -> Dict:
    """Create an AST node"""
    return {
        'type': node_type,
        'value': value,
        'span': span
    }


def is_ast_node(item: Any) -> bool:
    return isinstance(item, dict) and 'type' in item and 'span' in item and 'value' in item


ASSIGNABLE = ('IDENTIFIER', 'MY', 'MEMBER', 'INDEX')

COMPARISON_OPERATORS = ('==', '!=', '<', '>', '<=', '>=')

# Tokens that end a type annotation at bracket depth 0
ANNOTATION_STOP_DELIMITERS = (',', ':', ')', ']', '}')
ANNOTATION_STOP_KEYWORDS = ('is', 'returning')


class TokenStream:
    """Lazy lookahead buffer over the lexer's token iterator"""

    def __init__(self, tokens: Iterable[Token]):
        self._source: Iterator[Token] = iter(tokens)
        self._buffer: List[Token] = []
        self._eof: Optional[Token] = None
        self.previous: Optional[Token] = None

    def peek(self, ahead: int = 0) -> Token:
        while len(self._buffer) <= ahead:
            token = next(self._source, None)
            if token is None:
                token = self._eof
            elif token.type == 'EOF':
                self._eof = token
            self._buffer.append(token)
        return self._buffer[ahead]

    def advance(self) -> Token:
        token = self.peek()
        if token.type != 'EOF':
            self._buffer.pop(0)
        self.previous = token
        return token


# ============================================================================
# RECURSIVE DESCENT PARSER
# ============================================================================

class RecursiveDescentParser:
    """Vernacular grammar, one method per production"""

    def __init__(self, tokens: Iterable[Token], handler: VernacularErrorHandler, debug: bool = False):
        self.stream = TokenStream(tokens)
        self.handler = handler
        self.debug = debug

    # ---- token helpers ----

    def peek(self, ahead: int = 0) -> Token:
        return self.stream.peek(ahead)

    def advance(self) -> Token:
        return self.stream.advance()

    def check(self, token_type: str, value: Any = None, ahead: int = 0) -> bool:
        token = self.peek(ahead)
        return token.type == token_type and (value is None or token.value == value)

    def check_keyword(self, *words: str) -> bool:
        token = self.peek()
        return token.type == 'KEYWORD' and token.value in words

    def check_delimiter(self, *chars: str) -> bool:
        token = self.peek()
        return token.type == 'DELIMITER' and token.value in chars

    def check_operator(self, *ops: str) -> bool:
        token = self.peek()
        return token.type == 'OPERATOR' and token.value in ops

    def match_keyword(self, word: str) -> bool:
        if self.check_keyword(word):
            self.advance()
            return True
        return False

    def match_delimiter(self, char: str) -> bool:
        if self.check_delimiter(char):
            self.advance()
            return True
        return False

    def expect(self, token_type: str, value: Any = None, description: Optional[str] = None) -> Token:
        if self.check(token_type, value):
            return self.advance()
        wanted = description or (f"'{value}'" if value is not None else token_type)
        raise self.error(f"Expected {wanted}", self.peek(), [wanted])

    def expect_keyword(self, word: str) -> Token:
        return self.expect('KEYWORD', word)

    def expect_delimiter(self, char: str) -> Token:
        return self.expect('DELIMITER', char)

    def expect_identifier(self, what: str = "name") -> Token:
        return self.expect('IDENTIFIER', None, what)

    def skip_newlines(self):
        while self.check('NEWLINE'):
            self.advance()

    def error(self, message: str, token: Token, expected: Optional[List[str]] = None) -> VernacularParseError:
        return self.handler.parse_error(
            message, token.span.start_line, token.span.start_col,
            expected, self._token_text(token))

    def _token_text(self, token: Token) -> str:
        if token.type == 'NEWLINE':
            return "\n"
        if token.type == 'EOF':
            return ""
        if token.type in ('INDENT', 'DEDENT'):
            return token.type
        return token.lexeme or str(token.value)

    def end_statement(self):
        """A statement ends at NEWLINE, or directly after a closed block"""
        if self.check('NEWLINE'):
            self.advance()
            return
        previous = self.stream.previous
        if previous is not None and previous.type in ('DEDENT', 'NEWLINE'):
            return
        if self.check('EOF') or self.check('DEDENT'):
            return
        raise self.error("Expected end of statement", self.peek(), ["end of line"])

    # ---- program and blocks ----

    def parse_program(self) -> Dict:
        start = self.peek().span
        statements = []
        self.skip_newlines()
        while not self.check('EOF'):
            if self.check('INDENT'):
                raise self.error("Unexpected indentation", self.peek())
            statements.append(self.statement())
            self.skip_newlines()
        return make_ast_node('PROGRAM', {'body': statements}, start)

    def block(self) -> Dict:
        """':' followed by an indented block or a single inline statement"""
        colon = self.expect_delimiter(':')
        statements = []
        if self.check('NEWLINE'):
            self.advance()
            self.expect('INDENT', None, "an indented block")
            while not self.check('DEDENT') and not self.check('EOF'):
                statements.append(self.statement())
                self.skip_newlines()
            self.expect('DEDENT', None, "end of block")
        else:
            statements.append(self.statement())
        return make_ast_node('BLOCK', {'statements': statements}, colon.span)

    # ---- statements ----

    def statement(self) -> Dict:
        token = self.peek()
        node = self._statement(token)
        if self.debug:
            print(f"Parsed statement: {node['type']} at {node['span']}")
        return node

    def _statement(self, token: Token) -> Dict:
        if token.type == 'KEYWORD':
            word = token.value
            if word in ('Job', 'async'):
                return self.function_def()
            if word == 'Object':
                return self.class_def()
            if word == 'if':
                return self.if_statement()
            if word == 'match':
                node = self.match_construct(statement=True)
                self.end_statement()
                return node
            if word == 'loop':
                return self.loop_statement()
            if word == 'for':
                return self.for_each_statement()
            if word == 'do':
                return self.try_block()
            if word == 'raise':
                return self.raise_statement()
            if word == 'yield':
                self.advance()
                node = make_ast_node('YIELD', {'value': self.expression()}, token.span)
                self.end_statement()
                return node
            if word == 'output':
                return self.output_statement()
            if word == 'show':
                self.advance()
                node = make_ast_node('SHOW', {'value': self.expression()}, token.span)
                self.end_statement()
                return node

        if token.type == 'IDENTIFIER' and self.check('KEYWORD', 'as', ahead=1):
            return self.declaration()
        return self.expression_or_assignment()

    def declaration(self) -> Dict:
        """name as Type is expr"""
        name = self.expect_identifier()
        self.expect_keyword('as')
        declared_type = self.type_annotation()
        self.expect_keyword('is')
        value = self.expression()
        self.end_statement()
        return make_ast_node('DECLARATION', {
            'name': name.value,
            'declared_type': declared_type,
            'value': value,
        }, name.span)

    def expression_or_assignment(self) -> Dict:
        start = self.peek()
        expr = self.expression()
        if self.check_keyword('is'):
            is_token = self.advance()
            if expr['type'] not in ASSIGNABLE:
                raise self.error(f"Cannot assign to {expr['type'].lower()}", is_token,
                                 ["name", "my field", "object.field", "list[index]"])
            value = self.expression()
            self.end_statement()
            return make_ast_node('ASSIGNMENT', {'target': expr, 'value': value}, start.span)
        self.end_statement()
        return make_ast_node('EXPRESSION_STATEMENT', {'expr': expr}, start.span)

    def parameter_list(self, owner: str):
        """[requires p1, p2 [as T1, T2]] -> (names, types)"""
        params: List[str] = []
        param_types: List[DeclaredType] = []
        if not self.match_keyword('requires'):
            return params, param_types
        params.append(self.expect_identifier("parameter name").value)
        while self.match_delimiter(','):
            params.append(self.expect_identifier("parameter name").value)
        if self.check_keyword('as'):
            as_token = self.advance()
            param_types.append(self.type_annotation())
            while self.match_delimiter(','):
                param_types.append(self.type_annotation())
            if len(param_types) != len(params):
                raise self.error(
                    f"{owner} declares {len(params)} parameters but {len(param_types)} types",
                    as_token, [f"{len(params)} types"])
        else:
            param_types = [ANY] * len(params)
        return params, param_types

    def function_def(self, is_method: bool = False) -> Dict:
        """[async] Job name [requires ...] [returning T] block"""
        start = self.peek()
        is_async = self.match_keyword('async')
        self.expect_keyword('Job')
        name = self.expect_identifier("Job name")
        params, param_types = self.parameter_list(f"Job '{name.value}'")
        return_type = None
        if self.match_keyword('returning'):
            return_type = self.type_annotation()
        body = self.block()
        return make_ast_node('FUNCTION_DEF', {
            'name': name.value,
            'params': params,
            'param_types': param_types,
            'return_type': return_type,
            'body': body,
            'is_async': is_async,
            'is_generator': False,
            'is_method': is_method,
        }, start.span)

    def build_def(self, class_name: str) -> Dict:
        start = self.expect_keyword('build')
        params, param_types = self.parameter_list(f"build of '{class_name}'")
        body = self.block()
        return make_ast_node('FUNCTION_DEF', {
            'name': 'build',
            'params': params,
            'param_types': param_types,
            'return_type': None,
            'body': body,
            'is_async': False,
            'is_generator': False,
            'is_method': True,
        }, start.span)

    def class_def(self) -> Dict:
        """Object Name [inherits Parent]: fields, build, Jobs"""
        start = self.expect_keyword('Object')
        name = self.expect_identifier("Object name")
        parent = None
        if self.match_keyword('inherits'):
            parent = self.expect_identifier("parent Object name").value
        self.expect_delimiter(':')
        self.expect('NEWLINE', None, "end of line")
        self.expect('INDENT', None, "an indented Object body")

        fields = []
        build = None
        methods = []
        while not self.check('DEDENT') and not self.check('EOF'):
            token = self.peek()
            if self.check_keyword('build'):
                if build is not None:
                    raise self.handler.semantics_error(
                        f"Object '{name.value}' has more than one build clause",
                        token.span.start_line, token.span.start_col)
                build = self.build_def(name.value)
            elif self.check_keyword('Job', 'async'):
                methods.append(self.function_def(is_method=True))
            elif token.type == 'IDENTIFIER':
                fields.append(self.field_decl())
            else:
                raise self.error(f"Unexpected {self._token_text(token)!r} in Object '{name.value}'",
                                 token, ["field declaration", "build", "Job"])
            self.skip_newlines()
        self.expect('DEDENT', None, "end of block")

        return make_ast_node('CLASS_DEF', {
            'name': name.value,
            'parent': parent,
            'fields': fields,
            'build': build,
            'methods': methods,
        }, start.span)

    def field_decl(self) -> Dict:
        """name [as Type] [is default]"""
        name = self.expect_identifier("field name")
        declared_type = None
        default = None
        if self.match_keyword('as'):
            declared_type = self.type_annotation()
        if self.match_keyword('is'):
            default = self.expression()
        if declared_type is None and default is None:
            raise self.error(f"Field '{name.value}' needs a type or a default value",
                             self.peek(), ["'as'", "'is'"])
        self.end_statement()
        return {
            'name': name.value,
            'declared_type': declared_type,
            'default': default,
            'span': name.span,
        }

    def if_statement(self) -> Dict:
        start = self.expect_keyword('if')
        branches = [{'condition': self.expression(), 'body': self.block()}]
        else_body = None
        while self.check_keyword('else'):
            self.advance()
            if self.match_keyword('if'):
                branches.append({'condition': self.expression(), 'body': self.block()})
            else:
                else_body = self.block()
                break
        self.end_statement()
        return make_ast_node('IF_WHEN', {'branches': branches, 'else': else_body}, start.span)

    def match_construct(self, statement: bool) -> Dict:
        """match subject: when P1, P2: ... or: ..."""
        start = self.expect_keyword('match')
        subject = self.expression()
        self.expect_delimiter(':')
        self.expect('NEWLINE', None, "end of line")
        self.expect('INDENT', None, "indented 'when' arms")

        arms = []
        has_fallback = False
        while not self.check('DEDENT') and not self.check('EOF'):
            token = self.peek()
            if has_fallback:
                raise self.error("The 'or' arm must be the last arm of a match", token)
            if self.match_keyword('when'):
                patterns = [self.pattern()]
                while self.match_delimiter(','):
                    patterns.append(self.pattern())
                arms.append({'patterns': patterns, 'body': self.block(),
                             'fallback': False, 'span': token.span})
            elif self.match_keyword('or'):
                arms.append({'patterns': [], 'body': self.block(),
                             'fallback': True, 'span': token.span})
                has_fallback = True
            else:
                raise self.error("Expected a match arm", token, ["'when'", "'or'"])
            self.skip_newlines()
        self.expect('DEDENT', None, "end of block")

        if not arms:
            raise self.error("match needs at least one arm", start, ["'when'"])
        return make_ast_node('MATCH', {
            'subject': subject,
            'arms': arms,
            'statement': statement,
        }, start.span)

    def pattern(self) -> Dict:
        """Type name or literal"""
        token = self.peek()
        if token.type == 'IDENTIFIER':
            self.advance()
            return {'kind': 'type', 'name': canonical_type_name(token.value), 'span': token.span}
        if token.type in ('NUMBER', 'STRING') or self.check_keyword('true', 'false', 'void'):
            return {'kind': 'literal', 'value': self.literal(), 'span': token.span}
        if self.check_operator('-') and self.check('NUMBER', ahead=1):
            self.advance()
            number = self.literal()
            number['value']['value'] = -number['value']['value']
            return {'kind': 'literal', 'value': number, 'span': token.span}
        raise self.error("Expected a pattern", token, ["type name", "literal"])

    def loop_statement(self) -> Dict:
        start = self.expect_keyword('loop')
        self.expect_keyword('while')
        condition = self.expression()
        body = self.block()
        self.end_statement()
        return make_ast_node('LOOP', {'condition': condition, 'body': body}, start.span)

    def for_each_statement(self) -> Dict:
        start = self.expect_keyword('for')
        self.expect_keyword('each')
        names = [self.expect_identifier("loop variable").value]
        if self.match_delimiter(','):
            names.append(self.expect_identifier("loop variable").value)
        self.expect_keyword('in')
        iterable = self.expression()
        body = self.block()
        self.end_statement()
        return make_ast_node('FOR_EACH', {'names': names, 'iterable': iterable, 'body': body}, start.span)

    def try_block(self) -> Dict:
        """do: ... fail e [as Kind]: ... always: ..."""
        start = self.expect_keyword('do')
        body = self.block()
        handlers = []
        finally_body = None
        while self.check_keyword('fail'):
            token = self.advance()
            name = self.expect_identifier("error name").value
            kind = None
            if self.match_keyword('as'):
                kind = self.expect_identifier("error kind").value
            handlers.append({'name': name, 'kind': kind, 'body': self.block(), 'span': token.span})
        if self.match_keyword('always'):
            finally_body = self.block()
        if not handlers and finally_body is None:
            raise self.error("'do' block needs a 'fail' or 'always' clause", self.peek(),
                             ["'fail'", "'always'"])
        self.end_statement()
        return make_ast_node('TRY_BLOCK', {
            'body': body,
            'handlers': handlers,
            'finally': finally_body,
        }, start.span)

    def raise_statement(self) -> Dict:
        start = self.expect_keyword('raise')
        value = self.expression()
        kind = None
        if self.match_keyword('as'):
            kind = self.expect_identifier("error kind").value
        self.end_statement()
        return make_ast_node('RAISE', {'value': value, 'kind': kind}, start.span)

    def output_statement(self) -> Dict:
        start = self.expect_keyword('output')
        value = None
        if not (self.check('NEWLINE') or self.check('EOF') or self.check('DEDENT')):
            value = self.expression()
        self.end_statement()
        return make_ast_node('OUTPUT', {'value': value}, start.span)

    # ---- type annotations ----

    def type_annotation(self) -> DeclaredType:
        """Collect annotation tokens and hand the text to the pyparsing type grammar"""
        start = self.peek()
        parts = []
        depth = 0
        while True:
            token = self.peek()
            if token.type in ('NEWLINE', 'EOF', 'INDENT', 'DEDENT'):
                break
            if depth == 0:
                if token.type == 'DELIMITER' and token.value in ANNOTATION_STOP_DELIMITERS:
                    break
                if token.type == 'KEYWORD' and token.value in ANNOTATION_STOP_KEYWORDS:
                    break
            if token.type == 'DELIMITER' and token.value == '(':
                depth += 1
            elif token.type == 'DELIMITER' and token.value == ')':
                depth -= 1
            parts.append(token.lexeme)
            self.advance()

        if not parts:
            raise self.error("Expected a type annotation", start, ["type name"])
        text = " ".join(parts)
        try:
            return parse_type_annotation(text)
        except ParseException as exc:
            raise self.error(type_annotation_error(text, exc), start, ["type name"])

    # ---- expressions ----

    def expression(self) -> Dict:
        """Collection transforms bind loosest and chain left to right"""
        expr = self.or_expression()
        while True:
            if self.check_keyword('and') and self.check('KEYWORD', 'each', ahead=1):
                token = self.advance()
                self.advance()
                names = self.transform_names()
                self.expect_keyword('becomes')
                body = self.or_expression()
                expr = make_ast_node('COLLECTION_TRANSFORM', {
                    'mode': 'map', 'source': expr, 'names': names, 'body': body}, token.span)
            elif self.check_keyword('when') and self.check('KEYWORD', 'each', ahead=1):
                token = self.advance()
                self.advance()
                names = self.transform_names()
                body = self.or_expression()
                expr = make_ast_node('COLLECTION_TRANSFORM', {
                    'mode': 'filter', 'source': expr, 'names': names, 'body': body}, token.span)
            else:
                return expr

    def transform_names(self) -> List[str]:
        names = [self.expect_identifier("element name").value]
        if self.match_delimiter(','):
            names.append(self.expect_identifier("value name").value)
        return names

    def or_expression(self) -> Dict:
        left = self.and_expression()
        while self.check_keyword('or'):
            token = self.advance()
            right = self.and_expression()
            left = make_ast_node('LOGICAL', {'op': 'or', 'left': left, 'right': right}, token.span)
        return left

    def and_expression(self) -> Dict:
        left = self.not_expression()
        while self.check_keyword('and') and not self.check('KEYWORD', 'each', ahead=1):
            token = self.advance()
            right = self.not_expression()
            left = make_ast_node('LOGICAL', {'op': 'and', 'left': left, 'right': right}, token.span)
        return left

    def not_expression(self) -> Dict:
        if self.check_keyword('not'):
            token = self.advance()
            return make_ast_node('UNARY', {'op': 'not', 'operand': self.not_expression()}, token.span)
        return self.comparison()

    def comparison(self) -> Dict:
        left = self.additive()
        if self.check_operator(*COMPARISON_OPERATORS):
            token = self.advance()
            right = self.additive()
            left = make_ast_node('BINARY', {'op': token.value, 'left': left, 'right': right}, token.span)
            if self.check_operator(*COMPARISON_OPERATORS):
                raise self.error("Comparisons cannot be chained; combine them with 'and'", self.peek())
        elif self.check_operator('='):
            raise self.error("Unexpected '='", self.peek(), ["'is'", "'=='"])
        return left

    def additive(self) -> Dict:
        left = self.multiplicative()
        while self.check_operator('+', '-'):
            token = self.advance()
            right = self.multiplicative()
            left = make_ast_node('BINARY', {'op': token.value, 'left': left, 'right': right}, token.span)
        return left

    def multiplicative(self) -> Dict:
        left = self.unary()
        while self.check_operator('*', '/', '%'):
            token = self.advance()
            right = self.unary()
            left = make_ast_node('BINARY', {'op': token.value, 'left': left, 'right': right}, token.span)
        return left

    def unary(self) -> Dict:
        if self.check_operator('-'):
            token = self.advance()
            return make_ast_node('UNARY', {'op': '-', 'operand': self.unary()}, token.span)
        if self.check_keyword('await'):
            token = self.advance()
            return make_ast_node('AWAIT', {'expr': self.unary()}, token.span)
        return self.postfix()

    def postfix(self) -> Dict:
        expr = self.primary()
        while True:
            if self.check_delimiter('.'):
                token = self.advance()
                name = self.expect_identifier("member name")
                expr = make_ast_node('MEMBER', {'object': expr, 'name': name.value}, token.span)
            elif self.check_delimiter('('):
                token = self.advance()
                args = self.argument_list(')')
                expr = make_ast_node('CALL', {'callee': expr, 'args': args}, token.span)
            elif self.check_delimiter('['):
                token = self.advance()
                index = self.expression()
                self.expect_delimiter(']')
                expr = make_ast_node('INDEX', {'object': expr, 'index': index}, token.span)
            else:
                break

        if self.check_keyword('using'):
            token = self.advance()
            args = [self.or_expression()]
            while self.match_delimiter(','):
                args.append(self.or_expression())
            expr = make_ast_node('CALL', {'callee': expr, 'args': args}, token.span)
        elif self.check_keyword('at'):
            token = self.advance()
            expr = make_ast_node('CALL', {'callee': expr, 'args': [self.or_expression()]}, token.span)
        return expr

    def argument_list(self, closing: str) -> List[Dict]:
        args = []
        if self.match_delimiter(closing):
            return args
        args.append(self.expression())
        while self.match_delimiter(','):
            if self.check_delimiter(closing):
                break
            args.append(self.expression())
        self.expect_delimiter(closing)
        return args

    def literal(self) -> Dict:
        token = self.advance()
        if token.type == 'NUMBER':
            tag = "Decimal" if isinstance(token.value, float) else "Whole"
            return make_ast_node('LITERAL', {'value': token.value, 'tag': tag}, token.span)
        if token.type == 'STRING':
            return make_ast_node('LITERAL', {'value': token.value, 'tag': "Text"}, token.span)
        if token.value in ('true', 'false'):
            return make_ast_node('LITERAL', {'value': token.value == 'true', 'tag': "Logic"}, token.span)
        return make_ast_node('LITERAL', {'value': None, 'tag': "Void"}, token.span)

    def primary(self) -> Dict:
        token = self.peek()

        if token.type in ('NUMBER', 'STRING') or self.check_keyword('true', 'false', 'void'):
            return self.literal()

        if token.type == 'INTERP_START':
            return self.interpolation()

        if token.type == 'IDENTIFIER':
            self.advance()
            return make_ast_node('IDENTIFIER', {'name': token.value}, token.span)

        if self.check_delimiter('('):
            self.advance()
            expr = self.expression()
            self.expect_delimiter(')')
            return expr

        if self.check_delimiter('['):
            self.advance()
            return make_ast_node('LIST', {'elements': self.argument_list(']')}, token.span)

        if self.check_delimiter('{'):
            return self.mapping_literal()

        if self.check_keyword('new'):
            self.advance()
            class_name = self.expect_identifier("Object name")
            args = []
            if self.check_delimiter('('):
                self.advance()
                args = self.argument_list(')')
            elif self.match_keyword('using'):
                args = [self.or_expression()]
                while self.match_delimiter(','):
                    args.append(self.or_expression())
            return make_ast_node('NEW', {'class_name': class_name.value, 'args': args}, token.span)

        if self.check_keyword('my'):
            self.advance()
            if self.check('IDENTIFIER'):
                name = self.advance()
                return make_ast_node('MY', {'name': name.value}, token.span)
            # bare `my` is the receiver itself
            return make_ast_node('IDENTIFIER', {'name': 'my'}, token.span)

        if self.check_keyword('match'):
            return self.match_construct(statement=False)

        raise self.error("Expected an expression", token,
                         ["literal", "name", "'('", "'['", "'{'", "'new'", "'my'", "'match'"])

    def mapping_literal(self) -> Dict:
        start = self.expect_delimiter('{')
        entries = []
        while not self.check_delimiter('}'):
            key = self.expression()
            self.expect_delimiter(':')
            entries.append({'key': key, 'value': self.expression()})
            if not self.match_delimiter(','):
                break
        self.expect_delimiter('}')
        return make_ast_node('MAPPING', {'entries': entries}, start.span)

    def interpolation(self) -> Dict:
        start = self.expect('INTERP_START')
        parts = []
        while not self.check('INTERP_END'):
            token = self.advance()
            if token.type == 'TEXT_FRAGMENT':
                parts.append(make_ast_node('LITERAL', {'value': token.value, 'tag': "Text"}, token.span))
            elif token.type == 'EXPR_FRAGMENT':
                inner = RecursiveDescentParser(token.value, self.handler, self.debug)
                expr = inner.expression()
                if not inner.check('EOF'):
                    raise inner.error("Unexpected token in interpolation", inner.peek(), ["'}'"])
                parts.append(expr)
            else:
                raise self.error("Malformed interpolated string", token)
        self.expect('INTERP_END')
        return make_ast_node('INTERPOLATION', {'parts': parts}, start.span)


# ============================================================================
# PARSER FACADE
# ============================================================================

class VernacularParser:
    """Main Vernacular parser combining lexer, grammar and semantic pass"""

    def __init__(self, debug: bool = False):
        self.debug = debug
        self.analyzer = create_analyzer(debug)

    def parse_file(self, filepath: str) -> Dict:
        """Parse a Vernacular source file"""
        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                content = f.read()
        except FileNotFoundError:
            raise VernacularParseError(f"File not found: {filepath}")
        except UnicodeDecodeError as e:
            raise VernacularParseError(f"Cannot decode file {filepath}: {e}")
        return self.parse_string(content, filepath)

    def parse_string(self, text: str, filename: str = "<input>") -> Dict:
        """Parse Vernacular source code into an analysed PROGRAM node"""
        handler = VernacularErrorHandler(text, filename)
        lexer = VernacularLexer(filename, self.debug)
        parser = RecursiveDescentParser(lexer.iter_tokens(text), handler, self.debug)
        program = parser.parse_program()
        program = self.analyzer(program, text, filename)
        if self.debug:
            print(pretty_print_ast(program))
        return program

    def parse_expression(self, text: str, filename: str = "<input>") -> Dict:
        """Parse a single Vernacular expression (no semantic pass)"""
        handler = VernacularErrorHandler(text, filename)
        lexer = VernacularLexer(filename, self.debug)
        parser = RecursiveDescentParser(lexer.iter_tokens(text), handler, self.debug)
        expr = parser.expression()
        parser.skip_newlines()
        if not parser.check('EOF'):
            raise parser.error("Unexpected token after expression", parser.peek(), ["end of input"])
        return expr

    def tokenize(self, text: str, filename: str = "<input>") -> List[Token]:
        """Tokenize Vernacular source code"""
        return VernacularLexer(filename).tokenize(text)


def parse(source: str, filename: str = "<input>", debug: bool = False) -> Dict:
    """Parse source text into a Program or raise VernacularParseError"""
    return VernacularParser(debug).parse_string(source, filename)


# Factory functions for creating parsers
def create_parser(debug: bool = False) -> VernacularParser:
    """Create a Vernacular parser"""
    return VernacularParser(debug=debug)


def create_debug_parser() -> VernacularParser:
    """Create a Vernacular parser with debug enabled"""
    return VernacularParser(debug=True)


# ============================================================================
# AST UTILITIES
# ============================================================================

def iter_child_nodes(node: Dict) -> Iterator[Dict]:
    """Direct AST children of node, including those held in arm/branch records"""
    def walk(item):
        if is_ast_node(item):
            yield item
        elif isinstance(item, list):
            for element in item:
                yield from walk(element)
        elif isinstance(item, dict):
            for inner in item.values():
                yield from walk(inner)

    value = node['value']
    if isinstance(value, dict):
        for item in value.values():
            yield from walk(item)


def find_nodes_by_type(ast: Dict, node_type: str) -> List[Dict]:
    """Find all nodes of a specific type in the AST"""
    result = []

    def search(node: Dict):
        if node['type'] == node_type:
            result.append(node)
        for child in iter_child_nodes(node):
            search(child)

    search(ast)
    return result


def _holds_nodes(item: Any) -> bool:
    if is_ast_node(item):
        return True
    if isinstance(item, list):
        return any(_holds_nodes(element) or isinstance(element, dict) for element in item)
    return isinstance(item, dict)


def _brief(item: Any) -> str:
    if isinstance(item, DeclaredType):
        return str(item)
    if isinstance(item, list):
        return "[" + ", ".join(_brief(element) for element in item) + "]"
    return repr(item)


def pretty_print_ast(node: Any, indent: int = 0) -> str:
    """Pretty print an AST node for debugging"""
    pad = "  " * indent
    if isinstance(node, list):
        return "".join(pretty_print_ast(item, indent) for item in node)

    if not is_ast_node(node):
        # arm, branch, handler and field records
        scalars = [f"{key}={_brief(item)}" for key, item in node.items()
                   if key != 'span' and not _holds_nodes(item) and item is not None]
        result = f"{pad}-" + (f" {', '.join(scalars)}" if scalars else "") + "\n"
        for key, item in node.items():
            if _holds_nodes(item):
                result += f"{pad}  {key}:\n" + pretty_print_ast(item, indent + 2)
        return result

    value = node['value']
    attributes = []
    children = []
    for key, item in value.items():
        if _holds_nodes(item):
            children.append((key, item))
        elif item is not None and item != [] and item is not False:
            attributes.append(f"{key}={_brief(item)}")

    result = f"{pad}{node['type']}"
    if attributes:
        result += f"({', '.join(attributes)})"
    result += "\n"
    for key, item in children:
        result += f"{pad}  {key}:\n"
        result += pretty_print_ast(item, indent + 2)
    return result

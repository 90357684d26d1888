"""
Parser tests for Vernacular
Tests statements, expression precedence and error reporting
"""

import pytest
from error_handling import VernacularParseError, VernacularSemanticsError
from parsing import parse, find_nodes_by_type, pretty_print_ast
from semantics import ANY, TEXT, WHOLE, list_of, mapping_of


def body(source):
  return parse(source)['value']['body']


def first_expr(source):
  """Expression of the first expression statement"""
  return body(source)[0]['value']['expr']


class TestStatements:
  """Test statement forms"""

  def test_declaration_with_type(self, parser):
    """Test `name as Type is expr`"""
    program = parser.parse_string("names as List of Text is []\n")
    node = program['value']['body'][0]
    assert node['type'] == 'DECLARATION'
    assert node['value']['name'] == 'names'
    assert node['value']['declared_type'] == list_of(TEXT)

  def test_nested_mapping_annotation(self):
    """Test `Mapping of K to V` annotations"""
    node = body("scores as Mapping of Text to Whole is {}\n")[0]
    assert node['value']['declared_type'] == mapping_of(TEXT, WHOLE)

  def test_bare_assignment(self):
    """Test that `x is 1` is an assignment to a name"""
    node = body("x is 1\n")[0]
    assert node['type'] == 'ASSIGNMENT'
    assert node['value']['target']['type'] == 'IDENTIFIER'

  def test_assignment_targets(self):
    """Test member and index targets"""
    nodes = body("p.x is 1\nxs[0] is 2\n")
    assert nodes[0]['value']['target']['type'] == 'MEMBER'
    assert nodes[1]['value']['target']['type'] == 'INDEX'

  def test_cannot_assign_to_call(self):
    """Test that calls are not assignment targets"""
    with pytest.raises(VernacularParseError) as exc_info:
      parse("f() is 1\n")
    assert "Cannot assign" in exc_info.value.message

  def test_job_definition(self):
    """Test parameters, types and return type"""
    source = "Job add requires a, b as Whole, Whole returning Whole:\n    output a + b\n"
    node = body(source)[0]
    info = node['value']
    assert node['type'] == 'FUNCTION_DEF'
    assert info['params'] == ['a', 'b']
    assert info['param_types'] == [WHOLE, WHOLE]
    assert info['return_type'] == WHOLE
    assert info['is_async'] is False

  def test_untyped_parameters_are_any(self):
    """Test parameters without an `as` clause"""
    info = body("Job f requires x:\n    show x\n")[0]['value']
    assert info['param_types'] == [ANY]

  def test_parameter_type_count_mismatch(self):
    """Test that types pair with parameters"""
    with pytest.raises(VernacularParseError) as exc_info:
      parse("Job f requires a, b as Whole:\n    show a\n")
    assert "declares 2 parameters but 1 types" in exc_info.value.message

  def test_generator_is_detected(self):
    """Test that a yield marks the Job as a generator"""
    info = body("Job count_up:\n    yield 1\n")[0]['value']
    assert info['is_generator'] is True

  def test_inline_block(self):
    """Test a single statement after the colon"""
    node = body("if x: show 1\n")[0]
    assert node['type'] == 'IF_WHEN'
    assert len(node['value']['branches'][0]['body']['value']['statements']) == 1

  def test_else_if_chain(self):
    """Test else if branches"""
    source = "if a:\n    show 1\nelse if b:\n    show 2\nelse:\n    show 3\n"
    node = body(source)[0]
    assert len(node['value']['branches']) == 2
    assert node['value']['else'] is not None

  def test_object_definition(self):
    """Test fields, build and methods"""
    source = (
        "Object Dog inherits Animal:\n"
        "    tricks as List of Text is []\n"
        "    age as Whole\n"
        "    build requires name:\n"
        "        my name is name\n"
        "    Job bark returning Text:\n"
        "        output \"Woof\"\n"
    )
    node = body(source)[0]
    info = node['value']
    assert node['type'] == 'CLASS_DEF'
    assert info['parent'] == 'Animal'
    assert [f['name'] for f in info['fields']] == ['tricks', 'age']
    assert info['fields'][1]['default'] is None
    assert info['build']['value']['params'] == ['name']
    assert info['methods'][0]['value']['name'] == 'bark'

  def test_duplicate_build(self):
    """Test that an Object has at most one build"""
    source = (
        "Object A:\n"
        "    build:\n"
        "        show 1\n"
        "    build:\n"
        "        show 2\n"
    )
    with pytest.raises(VernacularSemanticsError) as exc_info:
      parse(source)
    assert "more than one build" in exc_info.value.message

  def test_match_statement(self):
    """Test when arms with several patterns and a fallback"""
    source = (
        "match v:\n"
        "    when 1, 2: show \"small\"\n"
        "    when Text: show \"text\"\n"
        "    or: show \"other\"\n"
    )
    node = body(source)[0]
    arms = node['value']['arms']
    assert node['value']['statement'] is True
    assert [p['kind'] for p in arms[0]['patterns']] == ['literal', 'literal']
    assert arms[1]['patterns'][0]['name'] == 'Text'
    assert arms[2]['fallback'] is True

  def test_or_arm_must_be_last(self):
    """Test that nothing follows the fallback arm"""
    source = "match v:\n    or: show 1\n    when 1: show 2\n"
    with pytest.raises(VernacularParseError):
      parse(source)

  def test_try_block(self):
    """Test do / fail / always"""
    source = (
        "do:\n"
        "    raise \"x\"\n"
        "fail e as ValidationError:\n"
        "    show 1\n"
        "fail e:\n"
        "    show 2\n"
        "always:\n"
        "    show 3\n"
    )
    node = body(source)[0]
    handlers = node['value']['handlers']
    assert [h['kind'] for h in handlers] == ['ValidationError', None]
    assert node['value']['finally'] is not None

  def test_for_each_two_names(self):
    """Test key, value loops"""
    node = body("for each k, v in m:\n    show k\n")[0]
    assert node['value']['names'] == ['k', 'v']


class TestExpressions:
  """Test expression precedence and forms"""

  def test_arithmetic_precedence(self):
    """Test that * binds tighter than +"""
    expr = first_expr("1 + 2 * 3\n")
    assert expr['type'] == 'BINARY'
    assert expr['value']['op'] == '+'
    assert expr['value']['right']['value']['op'] == '*'

  def test_logical_precedence(self):
    """Test not > and > or"""
    expr = first_expr("a or b and not c\n")
    assert expr['value']['op'] == 'or'
    right = expr['value']['right']
    assert right['value']['op'] == 'and'
    assert right['value']['right']['type'] == 'UNARY'

  def test_comparison_does_not_chain(self):
    """Test that a < b < c is rejected"""
    with pytest.raises(VernacularParseError):
      parse("a < b < c\n")

  def test_single_equals_suggests_is(self):
    """Test the error for '=' used as assignment"""
    with pytest.raises(VernacularParseError):
      parse("x = 1\n")

  def test_using_call(self):
    """Test `f using a, b`"""
    expr = first_expr("process using \"add\", 1, 2\n")
    assert expr['type'] == 'CALL'
    assert len(expr['value']['args']) == 3

  def test_at_call_on_member(self):
    """Test `http.fetch at url`"""
    expr = first_expr("http.fetch at url\n")
    assert expr['type'] == 'CALL'
    assert expr['value']['callee']['type'] == 'MEMBER'
    assert expr['value']['callee']['value']['name'] == 'fetch'

  def test_await_binds_tighter_than_plus(self):
    """Test unary await"""
    expr = first_expr("await a + 1\n")
    assert expr['type'] == 'BINARY'
    assert expr['value']['left']['type'] == 'AWAIT'

  def test_map_and_filter_chain(self):
    """Test collection transforms chain left to right"""
    expr = first_expr("xs and each x becomes x * 2 when each y y > 2\n")
    assert expr['type'] == 'COLLECTION_TRANSFORM'
    assert expr['value']['mode'] == 'filter'
    assert expr['value']['source']['value']['mode'] == 'map'

  def test_new_forms(self):
    """Test `new X(args)` and `new X using args`"""
    a = first_expr("new Dog(\"Rex\")\n")
    b = first_expr("new Dog using \"Rex\", 3\n")
    assert a['type'] == b['type'] == 'NEW'
    assert len(b['value']['args']) == 2

  def test_mapping_literal(self):
    """Test mapping entries"""
    expr = first_expr("{\"a\": 1, \"b\": 2}\n")
    assert expr['type'] == 'MAPPING'
    assert len(expr['value']['entries']) == 2

  def test_interpolation_parts(self):
    """Test that interpolated strings parse their fragments"""
    expr = first_expr("\"sum is {a + b}!\"\n")
    assert expr['type'] == 'INTERPOLATION'
    assert [p['type'] for p in expr['value']['parts']] == ['LITERAL', 'BINARY', 'LITERAL']

  def test_match_expression(self):
    """Test match in expression position"""
    source = "kind is match v:\n    when Whole: \"n\"\n    or: \"x\"\nshow kind\n"
    nodes = body(source)
    assert nodes[0]['value']['value']['type'] == 'MATCH'
    assert nodes[0]['value']['value']['value']['statement'] is False
    assert nodes[1]['type'] == 'SHOW'

  def test_parse_expression(self, parser):
    """Test the expression entry point"""
    expr = parser.parse_expression("xs[1] + 2")
    assert expr['type'] == 'BINARY'
    assert expr['value']['left']['type'] == 'INDEX'


class TestStructuralRules:
  """Test the analysis pass run after parsing"""

  def test_await_outside_async_job(self):
    """Test await in a plain Job"""
    with pytest.raises(VernacularSemanticsError) as exc_info:
      parse("Job f:\n    x is await g()\n")
    assert "not async" in exc_info.value.message

  def test_async_generator_rejected(self):
    """Test yield inside an async Job"""
    with pytest.raises(VernacularSemanticsError):
      parse("async Job f:\n    yield 1\n")

  def test_output_outside_job(self):
    """Test top-level output"""
    with pytest.raises(VernacularSemanticsError):
      parse("output 1\n")

  def test_my_outside_method(self):
    """Test `my` in a plain Job"""
    with pytest.raises(VernacularSemanticsError):
      parse("Job f:\n    show my name\n")

  def test_output_inside_match_expression(self):
    """Test that match expression arms cannot output"""
    source = "Job f requires v:\n    x is match v:\n        or: output 1\n"
    with pytest.raises(VernacularSemanticsError):
      parse(source)

  def test_top_level_await_allowed(self):
    """Test await in the program body"""
    nodes = parse("x is await p\n")['value']['body']
    assert nodes[0]['value']['value']['type'] == 'AWAIT'


class TestErrorReporting:
  """Test error positions and AST utilities"""

  def test_error_position_and_context(self):
    """Test that errors carry line, column and source context"""
    with pytest.raises(VernacularParseError) as exc_info:
      parse("x is 1\ny is (2 +\n")
    error = exc_info.value
    assert error.line >= 2
    assert "Error here" in error.context

  def test_missing_block(self):
    """Test a colon without a block"""
    with pytest.raises(VernacularParseError) as exc_info:
      parse("if x:\nshow 1\n")
    assert "indented block" in str(exc_info.value)

  def test_malformed_type_annotation(self):
    """Test that annotation errors name the annotation text"""
    with pytest.raises(VernacularParseError) as exc_info:
      parse("xs as List of is []\n")
    assert "Malformed type annotation 'List of'" in str(exc_info.value)

  def test_find_nodes_by_type(self):
    """Test AST search across arm records"""
    source = "match v:\n    when 1: show 1\n    or: show 2\n"
    program = parse(source)
    assert len(find_nodes_by_type(program, 'SHOW')) == 2

  def test_pretty_print(self):
    """Test the AST dump"""
    text = pretty_print_ast(parse("x is 1 + 2\n"))
    assert "ASSIGNMENT" in text
    assert "BINARY" in text

"""
Standard library tests for Vernacular
Tests the built-in Jobs directly and through programs
"""

import pytest
from error_handling import VernacularArityError, VernacularTypeMismatchError
from stdlib import (
  BUILTIN_FUNCTIONS, create_builtin_runtime_env, get_builtin_function, list_builtin_functions,
  vern_append, vern_contains, vern_sum, vern_whole
)
from semantics import TEXT, check_conformance, list_of
from values import make_decimal, make_list, make_mapping, make_text, make_whole


class TestSequenceFunctions:
  """Test sequence built-ins"""

  def test_length(self, run):
    """Test length of each container"""
    result = run("a is length([1, 2, 3])\nb is length(\"hello\")\nc is length({\"k\": 1})\n")
    assert (result.bindings['a'], result.bindings['b'], result.bindings['c']) == (3, 5, 1)

  def test_append_leaves_original(self, run):
    """Test that append returns a new List"""
    result = run("xs is [1, 2]\nys is append(xs, 3)\n")
    assert result.bindings['xs'] == [1, 2]
    assert result.bindings['ys'] == [1, 2, 3]

  def test_append_keeps_element_type(self):
    """Test that the declared element type survives append"""
    names = check_conformance(make_list([make_text("a")]), list_of(TEXT), "names")
    assert vern_append(names, make_text("b"))['declared'] == list_of(TEXT)

  def test_append_checks_item(self, run):
    """Test that append enforces the declared element type"""
    with pytest.raises(VernacularTypeMismatchError):
      run('names as List of Text is ["a"]\nmore is append(names, 1)\n')
    result = run("xs as List of Decimal is [1.5]\nys is append(xs, 2)\n")
    assert [type(v) for v in result.bindings['ys']] == [float, float]

  def test_keys_and_values_keep_order(self, run):
    """Test insertion order"""
    result = run("m is {\"b\": 2, \"a\": 1}\nks is keys(m)\nvs is values(m)\n")
    assert result.bindings['ks'] == ["b", "a"]
    assert result.bindings['vs'] == [2, 1]

  def test_contains(self):
    """Test membership for each container"""
    mapping = make_mapping([(make_text("k"), make_whole(1))])
    assert vern_contains(make_list([make_whole(1)]), make_whole(1))['value'] is True
    assert vern_contains(mapping, make_text("k"))['value'] is True
    assert vern_contains(make_text("hello"), make_text("ell"))['value'] is True
    assert vern_contains(make_text("hello"), make_text("z"))['value'] is False

  def test_range_and_join(self, run):
    """Test range bounds and join rendering"""
    result = run("r is range(1, 4)\nj is join(r, \"-\")\n")
    assert result.bindings['r'] == [1, 2, 3]
    assert result.bindings['j'] == "1-2-3"

  def test_sum(self):
    """Test Whole and Decimal sums"""
    assert vern_sum(make_list([make_whole(1), make_whole(2)])) == make_whole(3)
    assert vern_sum(make_list([make_whole(1), make_decimal(0.5)]))['type'] == "Decimal"
    with pytest.raises(VernacularTypeMismatchError):
      vern_sum(make_list([make_text("x")]))

  def test_wrong_argument_type(self, run):
    """Test the error for a non-container"""
    with pytest.raises(VernacularTypeMismatchError):
      run("n is length(5)\n")


class TestConversions:
  """Test text, whole and decimal"""

  def test_round_trips(self, run):
    """Test conversions between numbers and Text"""
    result = run("a is whole(\"42\")\nb is decimal(2)\nc is text(3.5)\nd is whole(3.9)\n")
    assert result.bindings['a'] == 42
    assert result.bindings['b'] == 2.0
    assert result.bindings['c'] == "3.5"
    assert result.bindings['d'] == 3

  def test_unreadable_text(self):
    """Test that bad Text is a TypeMismatchError"""
    with pytest.raises(VernacularTypeMismatchError):
      vern_whole(make_text("forty"))


class TestRegistry:
  """Test the built-in registry and scope"""

  def test_arity_from_signature(self):
    """Test that arity comes from the Python signature"""
    assert BUILTIN_FUNCTIONS['append']['value']['arity'] == 2
    assert BUILTIN_FUNCTIONS['length']['value']['arity'] == 1

  def test_builtin_arity_checked(self, run):
    """Test calling a built-in with the wrong number of arguments"""
    with pytest.raises(VernacularArityError):
      run("xs is append([1])\n")

  def test_lookup(self):
    """Test registry access"""
    assert get_builtin_function("collect")['type'] == "Job"
    assert "advance" in list_builtin_functions()

  def test_builtin_scope(self):
    """Test the outermost scope"""
    env = create_builtin_runtime_env({'extra': make_whole(1)})
    assert 'length' in env['bindings']
    assert env['bindings']['extra'] == make_whole(1)

  def test_user_bindings_shadow_builtins(self, run):
    """Test that a program may reuse a built-in name"""
    result = run("Job length requires x returning Whole:\n    output 99\nn is length([1])\n")
    assert result.bindings['n'] == 99

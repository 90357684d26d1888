"""
Vernacular Standard Library
Built-in Jobs available to every program
"""

import inspect
from typing import Callable, Dict, List, Optional

from environment import make_runtime_env, env_define
from semantics import ANY, check_conformance, element_type_of
from utilities import runtime_failure, type_mismatch_error
from values import (
  NUMERIC_TAGS, display_value, make_decimal, make_list, make_logic, make_text,
  make_value, make_void, make_whole, mapping_entries, mapping_get, values_equal
)


def _require(name: str, value: Dict, *tags: str) -> None:
  if value['type'] not in tags:
    raise type_mismatch_error(f"{name}", " or ".join(tags), value)


# ============================================================================
# SEQUENCE FUNCTIONS
# ============================================================================

def vern_length(seq: Dict) -> Dict:
  """Number of elements of a List or Mapping, or characters of a Text"""
  _require("length", seq, "List", "Mapping", "Text")
  return make_whole(len(seq['value']))


def vern_append(lst: Dict, item: Dict) -> Dict:
  """New List with item added at the end; the original is unchanged"""
  _require("append", lst, "List")
  item = check_conformance(item, element_type_of(lst), "append", None)
  result = make_list(lst['value'] + [item])
  if 'declared' in lst:
    result['declared'] = lst['declared']
  return result


def vern_keys(mapping: Dict) -> Dict:
  """Keys of a Mapping in insertion order"""
  _require("keys", mapping, "Mapping")
  return make_list([key for key, _ in mapping_entries(mapping)])


def vern_values(mapping: Dict) -> Dict:
  """Values of a Mapping in insertion order"""
  _require("values", mapping, "Mapping")
  return make_list([item for _, item in mapping_entries(mapping)])


def vern_contains(container: Dict, item: Dict) -> Dict:
  """Membership: List element, Mapping key or Text substring"""
  _require("contains", container, "List", "Mapping", "Text")
  if container['type'] == "List":
    return make_logic(any(values_equal(element, item) for element in container['value']))
  if container['type'] == "Mapping":
    return make_logic(mapping_get(container, item) is not None)
  _require("contains", item, "Text")
  return make_logic(item['value'] in container['value'])


def vern_range(start: Dict, end: Dict) -> Dict:
  """Wholes from start up to but not including end"""
  _require("range", start, "Whole")
  _require("range", end, "Whole")
  return make_list([make_whole(i) for i in range(start['value'], end['value'])])


def vern_sum(lst: Dict) -> Dict:
  """Sum of a List of numbers; Whole unless a Decimal is present"""
  _require("sum", lst, "List")
  total = 0
  decimal = False
  for item in lst['value']:
    if item['type'] not in NUMERIC_TAGS:
      raise type_mismatch_error("sum element", "Whole or Decimal", item)
    decimal = decimal or item['type'] == "Decimal"
    total += item['value']
  return make_decimal(total) if decimal else make_whole(total)


def vern_join(lst: Dict, separator: Dict) -> Dict:
  """Display texts of the elements joined by separator"""
  _require("join", lst, "List")
  _require("join", separator, "Text")
  return make_text(separator['value'].join(display_value(item) for item in lst['value']))


# ============================================================================
# CONVERSIONS
# ============================================================================

def vern_text(value: Dict) -> Dict:
  """Display text of any value"""
  return make_text(display_value(value))


def vern_whole(value: Dict) -> Dict:
  """Truncate a number or parse a Text as Whole"""
  _require("whole", value, "Whole", "Decimal", "Text")
  if value['type'] == "Text":
    try:
      return make_whole(int(value['value'].strip()))
    except ValueError:
      raise runtime_failure("TypeMismatchError", f"Cannot read '{value['value']}' as Whole")
  return make_whole(int(value['value']))


def vern_decimal(value: Dict) -> Dict:
  """Widen a number or parse a Text as Decimal"""
  _require("decimal", value, "Whole", "Decimal", "Text")
  if value['type'] == "Text":
    try:
      return make_decimal(float(value['value'].strip()))
    except ValueError:
      raise runtime_failure("TypeMismatchError", f"Cannot read '{value['value']}' as Decimal")
  return make_decimal(value['value'])


# ============================================================================
# GENERATOR FUNCTIONS
# ============================================================================

def vern_advance(generator: Dict) -> Dict:
  """Next value of a generator, Void once it is exhausted"""
  _require("advance", generator, "Generator")
  value = generator['value'].advance()
  return value if value is not None else make_void()


def vern_collect(generator: Dict) -> Dict:
  """Drain the remaining values of a generator into a List"""
  _require("collect", generator, "Generator")
  return make_list(list(generator['value']))


# ============================================================================
# BUILT-IN FUNCTION REGISTRY
# ============================================================================

def make_builtin_function(name: str, func: Callable, type_signature: str = "",
                          arity: Optional[int] = None, owner: Optional[str] = None,
                          contextual: bool = False) -> Dict:
  """Create a built-in Job value

  Contextual built-ins receive the execution context and call span before
  their arguments.
  """
  if arity is None:
    arity = len(inspect.signature(func).parameters) - (2 if contextual else 0)
  return make_value({
      'name': name,
      'owner': owner,
      'builtin': func,
      'arity': arity,
      'contextual': contextual,
      'type_signature': type_signature,
      'body': None,
      'receiver': None,
  }, "Job")


BUILTIN_FUNCTIONS: Dict[str, Dict] = {
    # Sequences
    "length": make_builtin_function("length", vern_length, "List | Mapping | Text -> Whole"),
    "append": make_builtin_function("append", vern_append, "List of T, T -> List of T"),
    "keys": make_builtin_function("keys", vern_keys, "Mapping of K to V -> List of K"),
    "values": make_builtin_function("values", vern_values, "Mapping of K to V -> List of V"),
    "contains": make_builtin_function("contains", vern_contains, "List | Mapping | Text, Any -> Logic"),
    "range": make_builtin_function("range", vern_range, "Whole, Whole -> List of Whole"),
    "sum": make_builtin_function("sum", vern_sum, "List of Decimal -> Decimal"),
    "join": make_builtin_function("join", vern_join, "List, Text -> Text"),

    # Conversions
    "text": make_builtin_function("text", vern_text, "Any -> Text"),
    "whole": make_builtin_function("whole", vern_whole, "Decimal | Text -> Whole"),
    "decimal": make_builtin_function("decimal", vern_decimal, "Whole | Text -> Decimal"),

    # Generators
    "advance": make_builtin_function("advance", vern_advance, "Generator -> Any"),
    "collect": make_builtin_function("collect", vern_collect, "Generator -> List"),
}


def get_builtin_function(name: str) -> Dict:
  """Get a built-in function by name"""
  if name in BUILTIN_FUNCTIONS:
    return BUILTIN_FUNCTIONS[name]
  raise runtime_failure("NameError", f"Unknown built-in function: {name}")


def list_builtin_functions() -> List[str]:
  """List all available built-in functions"""
  return list(BUILTIN_FUNCTIONS.keys())


def create_builtin_runtime_env(extra: Optional[Dict[str, Dict]] = None) -> Dict:
  """Outermost scope holding the built-in Jobs (and host namespaces)"""
  env = make_runtime_env(None, label="builtins")
  for name, job in BUILTIN_FUNCTIONS.items():
    env_define(env, name, job, ANY)
  for name, value in (extra or {}).items():
    env_define(env, name, value, ANY)
  return env

"""
Vernacular Semantics - declared types and structural analysis
Type annotations are parsed with a small pyparsing grammar; the analysis
pass annotates Job definitions and rejects misplaced constructs
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from pyparsing import (
    Forward, Keyword, ParseException, ParserElement, StringEnd, Suppress,
    Word, alphanums, alphas, Opt
)

from error_handling import VernacularErrorHandler, VernacularSemanticsError, locate
from values import NUMERIC_TAGS, make_decimal, runtime_tag, mapping_key
from utilities import type_mismatch_error

ParserElement.enable_packrat()


# ============================================================================
# DECLARED TYPES
# ============================================================================

@dataclass(frozen=True)
class DeclaredType:
  """A declared type: a name plus type parameters (List, Mapping, Promise)"""
  name: str
  params: Tuple['DeclaredType', ...] = ()

  def __str__(self) -> str:
    return format_type(self)


ANY = DeclaredType("Any")
VOID = DeclaredType("Void")
WHOLE = DeclaredType("Whole")
DECIMAL = DeclaredType("Decimal")
TEXT = DeclaredType("Text")
LOGIC = DeclaredType("Logic")

BUILTIN_TYPE_NAMES = ("Whole", "Decimal", "Text", "Logic", "Void", "Any",
                      "List", "Mapping", "Promise")

# Names used by the original runtime
TYPE_ALIASES = {
    "Truth": "Logic",
    "Nothing": "Void",
}


def canonical_type_name(name: str) -> str:
  return TYPE_ALIASES.get(name, name)


def make_type(name: str, *params: DeclaredType) -> DeclaredType:
  return DeclaredType(canonical_type_name(name), tuple(params))


def list_of(element: DeclaredType) -> DeclaredType:
  return DeclaredType("List", (element,))


def mapping_of(key: DeclaredType, item: DeclaredType) -> DeclaredType:
  return DeclaredType("Mapping", (key, item))


def promise_of(result: DeclaredType) -> DeclaredType:
  return DeclaredType("Promise", (result,))


def format_type(declared: DeclaredType) -> str:
  """Render a declared type in source syntax"""
  if declared.name == "List":
    return f"List of {_format_param(declared.params[0])}"
  if declared.name == "Mapping":
    return f"Mapping of {_format_param(declared.params[0])} to {_format_param(declared.params[1])}"
  if declared.name == "Promise":
    return f"Promise of {_format_param(declared.params[0])}"
  return declared.name


def _format_param(declared: DeclaredType) -> str:
  if declared.name == "Mapping":
    return f"({format_type(declared)})"
  return format_type(declared)


# ============================================================================
# ANNOTATION GRAMMAR (pyparsing)
# ============================================================================

_type_grammar = None


def _build_type_grammar() -> ParserElement:
  """Grammar for annotations such as `Mapping of Text to List of Whole`"""
  type_expr = Forward()

  of_kw = Suppress(Keyword("of"))
  to_kw = Suppress(Keyword("to"))

  list_type = (Keyword("List") + Opt(of_kw + type_expr)).set_parse_action(
      lambda t: list_of(t[1] if len(t) > 1 else ANY))
  promise_type = (Keyword("Promise") + Opt(of_kw + type_expr)).set_parse_action(
      lambda t: promise_of(t[1] if len(t) > 1 else ANY))
  mapping_type = (Keyword("Mapping") + Opt(of_kw + type_expr + to_kw + type_expr)).set_parse_action(
      lambda t: mapping_of(t[1], t[2]) if len(t) > 2 else mapping_of(ANY, ANY))

  reserved = Keyword("of") | Keyword("to")
  simple_type = (~reserved + Word(alphas + "_", alphanums + "_")).set_parse_action(
      lambda t: make_type(t[0]))

  parenthesized = Suppress("(") + type_expr + Suppress(")")

  type_expr <<= list_type | promise_type | mapping_type | parenthesized | simple_type
  return type_expr + StringEnd()


def parse_type_annotation(text: str) -> DeclaredType:
  """Parse annotation text into a DeclaredType

  Raises pyparsing.ParseException on malformed annotations; callers map the
  failure onto source positions.
  """
  global _type_grammar
  if _type_grammar is None:
    _type_grammar = _build_type_grammar()
  return _type_grammar.parse_string(text.strip(), parse_all=True)[0]


def type_annotation_error(text: str, exc: ParseException) -> str:
  where = locate(text, min(exc.loc, len(text)))
  return f"Malformed type annotation '{text}' at column {where['column']}: {exc.msg}"


# ============================================================================
# CONFORMANCE (assignment and call time checks)
# ============================================================================

def conforms(value: Dict, declared: DeclaredType) -> bool:
  """True when value may be stored under the declared type"""
  name = declared.name
  tag = value['type']

  if name == "Any":
    return True
  if name == "Decimal":
    return tag in NUMERIC_TAGS
  if name == "List":
    return tag == "List" and all(conforms(item, declared.params[0]) for item in value['value'])
  if name == "Mapping":
    return tag == "Mapping" and all(
        conforms(k, declared.params[0]) and conforms(v, declared.params[1])
        for k, v in value['value'].values())
  if name == "Promise":
    return tag == "Promise"
  return runtime_tag(value) == name


def check_conformance(value: Dict, declared: Optional[DeclaredType], what: str, span: Any = None) -> Dict:
  """Return value (widened where needed) or raise TypeMismatchError

  Whole widens to Decimal. Lists and Mappings carry the declared type they
  were checked against so element updates stay homogeneous. A container
  checked against a different type is copied; the original keeps its type.
  """
  if declared is None or declared.name == "Any":
    return value
  if not conforms(value, declared):
    raise type_mismatch_error(what, format_type(declared), value, span)
  return _coerce(value, declared)


def _coerce(value: Dict, declared: DeclaredType) -> Dict:
  name = declared.name
  if name == "Decimal" and value['type'] == "Whole":
    return make_decimal(value['value'])
  if name not in ("List", "Mapping") or value.get('declared') == declared:
    return value
  checked = dict(value)
  if name == "List":
    checked['value'] = [_coerce(item, declared.params[0]) for item in value['value']]
  else:
    checked['value'] = {hashed: (k, _coerce(v, declared.params[1]))
                        for hashed, (k, v) in value['value'].items()}
  checked['declared'] = declared
  return checked


def element_type_of(container: Dict, position: int = 0) -> DeclaredType:
  """Declared element (0) or value (1) type a container was last checked against"""
  declared = container.get('declared')
  if declared is None:
    return ANY
  if declared.name == "List":
    return declared.params[0]
  return declared.params[position]


def infer_declared_type(value: Dict) -> DeclaredType:
  """Type fixed for a binding introduced without an annotation"""
  tag = value['type']
  if tag in ("Whole", "Decimal", "Text", "Logic"):
    return DeclaredType(tag)
  if tag in ("List", "Mapping") and value.get('declared') is not None:
    return value['declared']
  if tag == "List":
    return list_of(_common_type([item for item in value['value']]))
  if tag == "Mapping":
    entries = list(value['value'].values())
    return mapping_of(_common_type([k for k, _ in entries]),
                      _common_type([v for _, v in entries]))
  if tag == "Object":
    return DeclaredType(runtime_tag(value))
  # Void, Jobs, handles and errors leave the binding open
  return ANY


def _common_type(items: List[Dict]) -> DeclaredType:
  tags = {item['type'] for item in items}
  if len(tags) == 1:
    tag = tags.pop()
    if tag in ("Whole", "Decimal", "Text", "Logic"):
      return DeclaredType(tag)
    if tag == "Object" and len({runtime_tag(item) for item in items}) == 1:
      return DeclaredType(runtime_tag(items[0]))
    return ANY
  if tags and tags <= set(NUMERIC_TAGS):
    return DECIMAL
  return ANY


def is_valid_mapping_key(value: Dict) -> bool:
  return mapping_key(value) is not None


# ============================================================================
# STRUCTURAL ANALYSIS
# ============================================================================

def make_scope_info(kind: str, node: Optional[Dict] = None) -> Dict:
  """Analysis frame: 'program', 'job', 'method', 'build' or 'match_arm'"""
  return {
      'kind': kind,
      'node': node,
  }


class _Analyzer:
  """Walks the AST once, annotating Jobs and collecting the first violation"""

  def __init__(self, handler: VernacularErrorHandler, debug: bool = False):
    self.handler = handler
    self.debug = debug
    self.frames: List[Dict] = [make_scope_info('program')]
    self.job_count = 0

  def error(self, message: str, node: Dict) -> VernacularSemanticsError:
    span = node.get('span')
    line = span.start_line if span else 0
    column = span.start_col if span else 0
    return self.handler.semantics_error(message, line, column)

  # ---- frame queries ----

  def current_job(self) -> Optional[Dict]:
    for frame in reversed(self.frames):
      if frame['kind'] in ('job', 'method', 'build'):
        return frame
    return None

  def in_method(self) -> bool:
    for frame in reversed(self.frames):
      if frame['kind'] in ('method', 'build'):
        return True
    return False

  def in_match_expression(self) -> bool:
    for frame in reversed(self.frames):
      if frame['kind'] in ('job', 'method', 'build'):
        return False
      if frame['kind'] == 'match_arm':
        return True
    return False

  # ---- traversal ----

  def visit(self, node: Any) -> None:
    if isinstance(node, list):
      for item in node:
        self.visit(item)
      return
    if not isinstance(node, dict) or 'type' not in node:
      return

    handler = getattr(self, f"visit_{node['type'].lower()}", None)
    if handler is not None:
      handler(node)
    else:
      self.visit_children(node)

  def visit_children(self, node: Dict) -> None:
    value = node.get('value')
    if isinstance(value, dict):
      for key, child in value.items():
        if key in ('declared_type', 'param_types', 'return_type'):
          continue
        self.visit(child)
        if isinstance(child, list):
          for item in child:
            if isinstance(item, dict) and 'type' not in item:
              # arm/handler/branch records
              for inner in item.values():
                self.visit(inner)

  def visit_function_def(self, node: Dict, kind: str = 'job') -> None:
    info = node['value']
    self.job_count += 1
    seen = set()
    for param in info['params']:
      if param in seen:
        raise self.error(f"Duplicate parameter '{param}' in Job '{info['name']}'", node)
      seen.add(param)

    frame = make_scope_info(kind, node)
    frame['yields'] = False
    self.frames.append(frame)
    try:
      self.visit(info['body'])
    finally:
      self.frames.pop()

    info['is_generator'] = frame['yields']
    if info['is_generator'] and info['is_async']:
      raise self.error(f"Async Job '{info['name']}' cannot yield", node)
    if info['is_generator'] and kind == 'build':
      raise self.error("build cannot yield", node)
    if self.debug:
      flavour = "generator" if info['is_generator'] else ("async" if info['is_async'] else "plain")
      print(f"Analyzed Job {info['name']} ({flavour})")

  def visit_class_def(self, node: Dict) -> None:
    info = node['value']
    if info['parent'] == info['name']:
      raise self.error(f"Object '{info['name']}' cannot inherit from itself", node)
    names = set()
    for field_decl in info['fields']:
      if field_decl['name'] in names:
        raise self.error(f"Duplicate field '{field_decl['name']}' in Object '{info['name']}'", node)
      names.add(field_decl['name'])
      if field_decl['default'] is not None:
        self.visit(field_decl['default'])
    if info['build'] is not None:
      self.visit_function_def(info['build'], 'build')
    for method in info['methods']:
      method['value']['is_method'] = True
      self.visit_function_def(method, 'method')

  def visit_yield(self, node: Dict) -> None:
    job = self.current_job()
    if job is None:
      raise self.error("'yield' outside of a Job", node)
    job['yields'] = True
    self.visit_children(node)

  def visit_await(self, node: Dict) -> None:
    job = self.current_job()
    if job is not None and not job['node']['value']['is_async']:
      name = job['node']['value']['name']
      raise self.error(f"'await' inside Job '{name}' which is not async", node)
    self.visit_children(node)

  def visit_output(self, node: Dict) -> None:
    if self.current_job() is None:
      raise self.error("'output' outside of a Job", node)
    if self.in_match_expression():
      raise self.error("'output' inside a match expression arm", node)
    self.visit_children(node)

  def visit_my(self, node: Dict) -> None:
    if not self.in_method():
      raise self.error(f"'my {node['value']['name']}' outside of an Object method", node)

  def visit_match(self, node: Dict) -> None:
    info = node['value']
    self.visit(info['subject'])
    for arm in info['arms']:
      if info['statement']:
        self.visit(arm['body'])
      else:
        self.frames.append(make_scope_info('match_arm', node))
        try:
          self.visit(arm['body'])
        finally:
          self.frames.pop()


def analyze_program(program: Dict, handler: VernacularErrorHandler, debug: bool = False) -> Dict:
  """Annotate a PROGRAM node in place and return it"""
  analyzer = _Analyzer(handler, debug)
  analyzer.visit(program['value']['body'])
  if debug:
    print(f"Analyzed {len(program['value']['body'])} top-level statements, {analyzer.job_count} Jobs")
  return program


# ============================================================================
# FACTORY FUNCTIONS (for compatibility with main.py)
# ============================================================================

def create_analyzer(debug: bool = False):
  """Factory function returning an analyzer function"""
  def analyzer(program: Dict, source_text: str = "", filename: str = "<input>") -> Dict:
    return analyze_program(program, VernacularErrorHandler(source_text, filename), debug)
  return analyzer

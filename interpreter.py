"""
Vernacular Interpreter - tree-walking evaluator
Evaluation functions are Python generators: `await` and `yield` travel up
through `yield from` as suspension requests to whichever driver runs the
code (the scheduler for async Jobs and the program, a GeneratorHandle for
generator Jobs). Statements produce control signals; expressions produce
values or raise VernacularRuntimeError.
"""

import operator
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generator, List, Optional, Tuple

from environment import (
  env_assign, env_bind_receiver, env_define, env_lookup_value, env_receiver,
  env_user_bindings, make_runtime_env
)
from error_handling import VernacularRuntimeError
from host import create_host_bindings, host_operation, print_sink, VARIADIC
from objects import (
  FieldDecl, bind_method, class_chain, has_field, instance_class, instance_field,
  make_class_def, make_class_value, make_instance, resolve_build, resolve_method
)
from parsing import parse
from scheduler import AwaitRequest, GeneratorHandle, Scheduler, YieldRequest
from semantics import (
  ANY, VOID, check_conformance, element_type_of, infer_declared_type, is_valid_mapping_key
)
from stdlib import create_builtin_runtime_env
from utilities import (
  arity_error, attach_call_stack, error_value_of, exception_from_error_value,
  no_such_method_error, operation_error, require_logic, runtime_failure
)
from values import (
  NUMERIC_TAGS, display_value, from_value, make_decimal, make_error_value, make_list,
  make_logic, make_mapping, make_text, make_value, make_void, make_whole, mapping_entries,
  mapping_get, mapping_set, runtime_tag, to_value, values_equal
)

# Each language call nests several generator frames
sys.setrecursionlimit(max(sys.getrecursionlimit(), 10000))

Evaluation = Generator[Any, Any, Dict]


# ============================================================================
# DATA STRUCTURES
# ============================================================================

def make_signal(kind: str, value: Optional[Dict] = None) -> Dict:
  """Control signal: 'continue' (value of the last expression statement or None), 'return' or 'raise'"""
  return {
      'kind': kind,
      'value': value
  }


def make_runtime(scheduler: Scheduler, sink: Callable[[str], None], resolver: Any,
                 debug: bool = False) -> Dict:
  """State shared by every call of one interpreter session"""
  return {
      'scheduler': scheduler,
      'sink': sink,
      'resolver': resolver,
      'debug': debug,
      'output': [],
  }


def make_execution_context(runtime: Dict, call_stack: Tuple[str, ...] = (),
                           job: Optional[Dict] = None) -> Dict:
  """Per-call context: the runtime, the active call stack and the running Job"""
  return {
      'runtime': runtime,
      'call_stack': call_stack,
      'job': job,
  }


def make_job_value(node: Dict, env: Dict, owner: Optional[str] = None) -> Dict:
  """Closure over the environment active at the definition"""
  info = node['value']
  return make_value({
      'name': info['name'],
      'owner': owner,
      'node': node,
      'body': info['body'],
      'env': env,
      'receiver': None,
      'builtin': None,
  }, "Job")


def job_frame_name(job: Dict) -> str:
  owner = job.get('owner')
  return f"{owner}.{job['name']}" if owner else job['name']


# ============================================================================
# EXPRESSION EVALUATION
# ============================================================================

def eval_ast(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  """Evaluate an expression node to a value"""
  if context['runtime']['debug']:
    print(f"Evaluating: {ast_node['type']}")

  node_type = ast_node['type']
  plain = PLAIN_HANDLERS.get(node_type)
  if plain is not None:
    return plain(ast_node, env, context)
  handler = SUSPENDING_HANDLERS.get(node_type)
  if handler is None:
    raise runtime_failure("Error", f"Cannot evaluate {node_type}", ast_node['span'])
  return (yield from handler(ast_node, env, context))


def eval_literal(ast_node: Dict, env: Dict, context: Dict) -> Dict:
  info = ast_node['value']
  return make_value(info['value'], info['tag'])


def eval_identifier(ast_node: Dict, env: Dict, context: Dict) -> Dict:
  return env_lookup_value(env, ast_node['value']['name'], ast_node['span'])


def eval_my(ast_node: Dict, env: Dict, context: Dict) -> Dict:
  """`my name`: a field of the receiver, else one of its methods"""
  name = ast_node['value']['name']
  receiver = env_receiver(env)
  if receiver is None:
    raise runtime_failure("NameError", f"'my {name}' used outside of an Object method", ast_node['span'])
  return object_member(receiver, name, ast_node['span'])


def object_member(instance: Dict, name: str, span: Any) -> Dict:
  if has_field(instance, name):
    return instance_field(instance, name)
  method = resolve_method(instance_class(instance), name)
  if method is None:
    raise runtime_failure(
      "NameError", f"{runtime_tag(instance)} has no field or method '{name}'", span)
  return bind_method(method, instance)


def eval_interpolation(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  pieces = []
  for part in ast_node['value']['parts']:
    value = yield from eval_ast(part, env, context)
    pieces.append(display_value(value))
  return make_text("".join(pieces))


def eval_list(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  elements = []
  for element in ast_node['value']['elements']:
    elements.append((yield from eval_ast(element, env, context)))
  return make_list(elements)


def eval_mapping(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  entries = []
  for entry in ast_node['value']['entries']:
    key = yield from eval_ast(entry['key'], env, context)
    if not is_valid_mapping_key(key):
      raise runtime_failure(
        "TypeMismatchError",
        f"Mapping keys must be Whole, Decimal, Text or Logic, got {runtime_tag(key)}",
        entry['key']['span'])
    item = yield from eval_ast(entry['value'], env, context)
    entries.append((key, item))
  return make_mapping(entries)


def eval_member(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  info = ast_node['value']
  target = yield from eval_ast(info['object'], env, context)
  return member_of(target, info['name'], ast_node['span'])


def member_of(target: Dict, name: str, span: Any) -> Dict:
  tag = target['type']
  if tag == "Object":
    if has_field(target, name):
      return instance_field(target, name)
    method = resolve_method(instance_class(target), name)
    if method is None:
      raise no_such_method_error(target, name, span)
    return bind_method(method, target)
  if tag == "Host":
    return host_operation(target, name)
  if tag == "Error" and name in ('kind', 'message', 'payload'):
    info = target['value']
    return info['payload'] if name == 'payload' else make_text(info[name])
  raise no_such_method_error(target, name, span)


def eval_index(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  info = ast_node['value']
  container = yield from eval_ast(info['object'], env, context)
  index = yield from eval_ast(info['index'], env, context)
  span = ast_node['span']

  if container['type'] in ("List", "Text"):
    position = list_position(container, index, span)
    item = container['value'][position]
    return make_text(item) if container['type'] == "Text" else item
  if container['type'] == "Mapping":
    item = mapping_get(container, index)
    if item is None:
      raise runtime_failure("IndexError", f"Key {display_value(index, True)} not found", span)
    return item
  raise operation_error("[]", container, None, span)


def list_position(container: Dict, index: Dict, span: Any) -> int:
  if index['type'] != "Whole":
    raise runtime_failure("TypeMismatchError", f"Index must be Whole, got {runtime_tag(index)}", span)
  position = index['value']
  size = len(container['value'])
  if not 0 <= position < size:
    raise runtime_failure("IndexError", f"Index {position} out of range for length {size}", span)
  return position


def eval_call(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  info = ast_node['value']
  callee = yield from eval_ast(info['callee'], env, context)
  args = []
  for arg in info['args']:
    args.append((yield from eval_ast(arg, env, context)))
  return (yield from call_value(callee, args, context, ast_node['span']))


def eval_new(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  info = ast_node['value']
  class_value = env_lookup_value(env, info['class_name'], ast_node['span'])
  if class_value['type'] != "Class":
    raise runtime_failure(
      "TypeMismatchError", f"'{info['class_name']}' is not an Object type", ast_node['span'])
  args = []
  for arg in info['args']:
    args.append((yield from eval_ast(arg, env, context)))
  return (yield from instantiate(class_value['value'], args, context, ast_node['span']))


ARITHMETIC = {
    '+': operator.add,
    '-': operator.sub,
    '*': operator.mul,
    '%': operator.mod,
}

COMPARATORS = {
    '<': operator.lt,
    '>': operator.gt,
    '<=': operator.le,
    '>=': operator.ge,
}


def apply_binary(op: str, left: Dict, right: Dict, span: Any = None) -> Dict:
  """Arithmetic, concatenation and comparison on runtime values"""
  if op == '==':
    return make_logic(values_equal(left, right))
  if op == '!=':
    return make_logic(not values_equal(left, right))

  left_tag, right_tag = left['type'], right['type']
  numeric = left_tag in NUMERIC_TAGS and right_tag in NUMERIC_TAGS

  if op in COMPARATORS:
    if numeric or left_tag == right_tag == "Text":
      return make_logic(COMPARATORS[op](left['value'], right['value']))
    raise operation_error(op, left, right, span)

  if op == '+' and left_tag == right_tag == "Text":
    return make_text(left['value'] + right['value'])
  if op == '+' and left_tag == right_tag == "List":
    return make_list(left['value'] + right['value'])

  if not numeric:
    raise operation_error(op, left, right, span)

  if op in ('/', '%') and right['value'] == 0:
    raise runtime_failure("DivisionByZeroError", "Division by zero", span)
  if op == '/':
    return make_decimal(left['value'] / right['value'])
  result = ARITHMETIC[op](left['value'], right['value'])
  if left_tag == right_tag == "Whole":
    return make_whole(result)
  return make_decimal(result)


def eval_binary(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  info = ast_node['value']
  left = yield from eval_ast(info['left'], env, context)
  right = yield from eval_ast(info['right'], env, context)
  return apply_binary(info['op'], left, right, ast_node['span'])


def eval_logical(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  info = ast_node['value']
  left = yield from eval_ast(info['left'], env, context)
  left_truth = require_logic(left, f"Left operand of '{info['op']}'", info['left']['span'])
  if info['op'] == 'and' and not left_truth:
    return make_logic(False)
  if info['op'] == 'or' and left_truth:
    return make_logic(True)
  right = yield from eval_ast(info['right'], env, context)
  return make_logic(require_logic(right, f"Right operand of '{info['op']}'", info['right']['span']))


def eval_unary(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  info = ast_node['value']
  operand = yield from eval_ast(info['operand'], env, context)
  if info['op'] == 'not':
    return make_logic(not require_logic(operand, "Operand of 'not'", ast_node['span']))
  if operand['type'] not in NUMERIC_TAGS:
    raise operation_error('-', operand, None, ast_node['span'])
  return make_value(-operand['value'], operand['type'])


def eval_await(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  """Suspend until a promise settles; other values pass straight through"""
  value = yield from eval_ast(ast_node['value']['expr'], env, context)
  if value['type'] != "Promise":
    return value
  result = yield AwaitRequest(value['value'], ast_node['span'])
  return result


def transform_items(source: Dict, span: Any) -> List[Tuple[Optional[Dict], Dict]]:
  """(key, item) pairs of a transform source; key is None for sequences"""
  if source['type'] == "List":
    return [(None, item) for item in source['value']]
  if source['type'] == "Mapping":
    return mapping_entries(source)
  if source['type'] == "Generator":
    return [(None, item) for item in source['value']]
  raise runtime_failure(
    "TypeMismatchError", f"Cannot transform {runtime_tag(source)}; expected List, Mapping or Generator", span)


def bind_transform_names(env: Dict, names: List[str], key: Optional[Dict], item: Dict, span: Any) -> None:
  if len(names) == 2:
    if key is None:
      raise runtime_failure("TypeMismatchError", "Two-name transforms need a Mapping", span)
    env_define(env, names[0], key, ANY)
    env_define(env, names[1], item, ANY)
  else:
    env_define(env, names[0], item, ANY)


def eval_collection_transform(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  """Eager, order-preserving map (`and each … becomes`) and filter (`when each`)"""
  info = ast_node['value']
  span = ast_node['span']
  source = yield from eval_ast(info['source'], env, context)
  mode = info['mode']
  kept = []

  for key, item in transform_items(source, span):
    item_env = make_runtime_env(env, label="each")
    bind_transform_names(item_env, info['names'], key, item, span)
    result = yield from eval_ast(info['body'], item_env, context)
    if mode == 'map':
      kept.append((key, result))
    elif require_logic(result, "Filter condition", info['body']['span']):
      kept.append((key, item))

  if source['type'] == "Mapping":
    result_value = make_mapping(kept)
  else:
    result_value = make_list([item for _, item in kept])
  if mode == 'filter' and 'declared' in source:
    result_value['declared'] = source['declared']
  return result_value


def eval_match_expression(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  signal = yield from execute_match(ast_node, env, context)
  if signal['kind'] == 'raise':
    raise exception_from_error_value(signal['value'])
  return signal['value'] if signal['value'] is not None else make_void()


# ============================================================================
# CALLS AND OBJECTS
# ============================================================================

def call_value(callee: Dict, args: List[Dict], context: Dict, span: Any = None) -> Evaluation:
  """Invoke a Job (closure, bound method or built-in) or an Object type"""
  if callee['type'] == "Class":
    return (yield from instantiate(callee['value'], args, context, span))
  if callee['type'] != "Job":
    raise runtime_failure("TypeMismatchError", f"{runtime_tag(callee)} is not callable", span)

  job = callee['value']
  if job.get('builtin') is not None:
    return call_builtin(job, args, context, span)
  return (yield from call_job(job, args, context, span))


def call_builtin(job: Dict, args: List[Dict], context: Dict, span: Any) -> Dict:
  arity = job['arity']
  if arity != VARIADIC and len(args) != arity:
    raise arity_error(job_frame_name(job), arity, len(args), span)
  if job.get('contextual'):
    return job['builtin'](context, span, *args)
  return job['builtin'](*args)


def bind_arguments(job: Dict, args: List[Dict], call_env: Dict, frame: str, span: Any) -> None:
  info = job['node']['value']
  params = info['params']
  if len(args) != len(params):
    raise arity_error(frame, len(params), len(args), span)
  for param, declared, arg in zip(params, info['param_types'], args):
    value = check_conformance(arg, declared, f"Parameter '{param}' of {frame}", span)
    env_define(call_env, param, value, declared, span)


def call_job(job: Dict, args: List[Dict], context: Dict, span: Any = None) -> Evaluation:
  info = job['node']['value']
  frame = job_frame_name(job)
  call_env = make_runtime_env(job['env'], label=f"Job {frame}")
  if job['receiver'] is not None:
    env_bind_receiver(call_env, job['receiver'])
  bind_arguments(job, args, call_env, frame, span)

  runtime = context['runtime']
  call_stack = context['call_stack'] + (frame,)

  if info['is_generator']:
    job_info = {'name': frame, 'element_type': info['return_type'] or ANY}
    call_context = make_execution_context(runtime, call_stack, job_info)
    handle = GeneratorHandle(frame, lambda: run_generator_body(info, call_env, call_context))
    return make_value(handle, "Generator")

  declared = info['return_type']
  if info['is_async']:
    if declared is not None and declared.name == "Promise":
      declared = declared.params[0]
    call_context = make_execution_context(runtime, call_stack, {'name': frame})
    promise = runtime['scheduler'].make_promise(frame)

    def finish(value: Optional[Dict], error: Optional[VernacularRuntimeError]):
      if error is not None:
        runtime['scheduler'].reject_job(promise, error_value_of(error))
        return
      try:
        promise.resolve(check_conformance(value, declared or ANY, f"Result of {frame}", span))
      except VernacularRuntimeError as exc:
        runtime['scheduler'].reject_job(promise, error_value_of(attach_call_stack(exc, call_stack)))

    runtime['scheduler'].spawn(run_job_body(info, call_env, call_context), finish, frame)
    return make_value(promise, "Promise")

  call_context = make_execution_context(runtime, call_stack, {'name': frame})
  value = yield from run_job_body(info, call_env, call_context)
  return check_conformance(value, declared or VOID, f"Result of {frame}", span)


def run_job_body(info: Dict, call_env: Dict, context: Dict) -> Evaluation:
  signal = yield from execute_block(info['body'], call_env, context, new_scope=False)
  if signal['kind'] == 'raise':
    raise exception_from_error_value(signal['value'])
  if signal['kind'] == 'return':
    return signal['value']
  return make_void()


def run_generator_body(info: Dict, call_env: Dict, context: Dict) -> Evaluation:
  """Generator bodies end with the value of an `output`, or None"""
  signal = yield from execute_block(info['body'], call_env, context, new_scope=False)
  if signal['kind'] == 'raise':
    raise exception_from_error_value(signal['value'])
  if signal['kind'] == 'return':
    return signal['value']
  return None


def set_field(instance: Dict, name: str, value: Dict, span: Any = None) -> Dict:
  """Store a field value, checked against the field's declared type"""
  payload = instance['value']
  declared = payload['field_types'].get(name)
  if declared is None:
    declared = infer_declared_type(value)
    payload['field_types'][name] = declared
  value = check_conformance(value, declared, f"Field '{name}' of {runtime_tag(instance)}", span)
  payload['fields'][name] = value
  return value


def instantiate(class_def: Any, args: List[Dict], context: Dict, span: Any = None) -> Evaluation:
  """`new`: defaults root first, then the nearest build with the receiver bound"""
  instance = make_instance(class_def)
  payload = instance['value']

  for cls in class_chain(class_def):
    init_env = make_runtime_env(cls.env, label=f"Object {cls.name}")
    env_bind_receiver(init_env, instance)
    for decl in cls.fields:
      if decl.declared_type is not None:
        payload['field_types'][decl.name] = decl.declared_type
      else:
        payload['field_types'].pop(decl.name, None)
      if decl.default is None:
        payload['fields'][decl.name] = make_void()
        continue
      value = yield from eval_ast(decl.default, init_env, context)
      set_field(instance, decl.name, value, decl.span)

  build = resolve_build(class_def)
  if build is None:
    if args:
      raise arity_error(f"new {class_def.name}", 0, len(args), span)
    return instance

  job = bind_method(build, instance)['value']
  frame = job_frame_name(job)
  call_env = make_runtime_env(job['env'], label=f"build {class_def.name}")
  env_bind_receiver(call_env, instance)
  bind_arguments(job, args, call_env, frame, span)
  for param in job['node']['value']['params']:
    if has_field(instance, param):
      set_field(instance, param, call_env['bindings'][param], span)

  call_context = make_execution_context(context['runtime'], context['call_stack'] + (frame,), {'name': frame})
  yield from run_job_body(job['node']['value'], call_env, call_context)
  return instance


# ============================================================================
# STATEMENT EXECUTION
# ============================================================================

def execute_statements(statements: List[Dict], env: Dict, context: Dict) -> Evaluation:
  last = None
  for statement in statements:
    signal = yield from execute_statement(statement, env, context)
    if signal['kind'] != 'continue':
      return signal
    if signal['value'] is not None:
      last = signal['value']
  return make_signal('continue', last)


def execute_block(block: Dict, env: Dict, context: Dict, new_scope: bool = True) -> Evaluation:
  """Run a BLOCK, stopping at the first return or raise signal"""
  scope = make_runtime_env(env) if new_scope else env
  return (yield from execute_statements(block['value']['statements'], scope, context))


def execute_statement(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  """Run one statement; runtime errors become raise signals here"""
  node_type = ast_node['type']
  handler = STATEMENT_HANDLERS.get(node_type)
  try:
    plain = PLAIN_STATEMENT_HANDLERS.get(node_type)
    if plain is not None:
      return plain(ast_node, env, context)
    if handler is None:
      value = yield from eval_ast(ast_node, env, context)
      return make_signal('continue', value)
    return (yield from handler(ast_node, env, context))
  except VernacularRuntimeError as exc:
    attach_call_stack(exc, context['call_stack'])
    if context['runtime']['debug']:
      print(f"Raised: {exc}")
    return make_signal('raise', error_value_of(exc))


def exec_expression_statement(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  value = yield from eval_ast(ast_node['value']['expr'], env, context)
  return make_signal('continue', value)


def exec_declaration(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  info = ast_node['value']
  value = yield from eval_ast(info['value'], env, context)
  env_define(env, info['name'], value, info['declared_type'], ast_node['span'])
  return make_signal('continue')


def exec_assignment(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  info = ast_node['value']
  target = info['target']
  span = ast_node['span']
  value = yield from eval_ast(info['value'], env, context)

  if target['type'] == 'IDENTIFIER':
    env_assign(env, target['value']['name'], value, span)
  elif target['type'] == 'MY':
    receiver = env_receiver(env)
    if receiver is None:
      raise runtime_failure("NameError", f"'my {target['value']['name']}' used outside of an Object method", span)
    set_field(receiver, target['value']['name'], value, span)
  elif target['type'] == 'MEMBER':
    instance = yield from eval_ast(target['value']['object'], env, context)
    if instance['type'] != "Object":
      raise operation_error("field assignment", instance, None, span)
    set_field(instance, target['value']['name'], value, span)
  else:
    container = yield from eval_ast(target['value']['object'], env, context)
    index = yield from eval_ast(target['value']['index'], env, context)
    assign_index(container, index, value, span)
  return make_signal('continue')


def assign_index(container: Dict, index: Dict, value: Dict, span: Any) -> None:
  if container['type'] == "List":
    position = list_position(container, index, span)
    container['value'][position] = check_conformance(
      value, element_type_of(container), "List element", span)
    return
  if container['type'] == "Mapping":
    if not is_valid_mapping_key(index):
      raise runtime_failure(
        "TypeMismatchError", f"Mapping keys must be Whole, Decimal, Text or Logic, got {runtime_tag(index)}", span)
    key = check_conformance(index, element_type_of(container, 0), "Mapping key", span)
    mapping_set(container, key, check_conformance(value, element_type_of(container, 1), "Mapping value", span))
    return
  raise operation_error("[]", container, None, span)


def exec_function_def(ast_node: Dict, env: Dict, context: Dict) -> Dict:
  job = make_job_value(ast_node, env)
  env_define(env, ast_node['value']['name'], job, ANY, ast_node['span'])
  return make_signal('continue')


def exec_class_def(ast_node: Dict, env: Dict, context: Dict) -> Dict:
  info = ast_node['value']
  span = ast_node['span']
  parent = None
  if info['parent'] is not None:
    parent_value = env_lookup_value(env, info['parent'], span)
    if parent_value['type'] != "Class":
      raise runtime_failure("TypeMismatchError", f"'{info['parent']}' is not an Object type", span)
    parent = parent_value['value']

  fields = [FieldDecl(f['name'], f['declared_type'], f['default'], f['span']) for f in info['fields']]
  build = make_job_value(info['build'], env, info['name']) if info['build'] is not None else None
  methods = {method['value']['name']: make_job_value(method, env, info['name']) for method in info['methods']}
  class_def = make_class_def(info['name'], parent, fields, build, methods, env)
  env_define(env, info['name'], make_class_value(class_def), ANY, span)
  if context['runtime']['debug']:
    print(f"Defined {class_def!r}")
  return make_signal('continue')


def exec_if(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  info = ast_node['value']
  for branch in info['branches']:
    condition = yield from eval_ast(branch['condition'], env, context)
    if require_logic(condition, "Condition of 'if'", branch['condition']['span']):
      return (yield from execute_block(branch['body'], env, context))
  if info['else'] is not None:
    return (yield from execute_block(info['else'], env, context))
  return make_signal('continue')


def pattern_matches(pattern: Dict, subject: Dict) -> bool:
  if pattern['kind'] == 'type':
    return pattern['name'] == "Any" or runtime_tag(subject) == pattern['name']
  literal = pattern['value']['value']
  return values_equal(make_value(literal['value'], literal['tag']), subject)


def execute_match(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  """Evaluate the subject once and run the first matching arm"""
  info = ast_node['value']
  subject = yield from eval_ast(info['subject'], env, context)
  for arm in info['arms']:
    if arm['fallback'] or any(pattern_matches(p, subject) for p in arm['patterns']):
      return (yield from execute_block(arm['body'], env, context))
  raise runtime_failure(
    "MatchError", f"No arm matches {display_value(subject, True)} ({runtime_tag(subject)})", ast_node['span'])


def exec_match(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  return (yield from execute_match(ast_node, env, context))


def exec_loop(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  info = ast_node['value']
  while True:
    condition = yield from eval_ast(info['condition'], env, context)
    if not require_logic(condition, "Condition of 'loop while'", info['condition']['span']):
      return make_signal('continue')
    signal = yield from execute_block(info['body'], env, context)
    if signal['kind'] != 'continue':
      return signal


def iteration_items(source: Dict, names: List[str], span: Any) -> List[Tuple[Dict, ...]]:
  """Values bound per iteration of `for each`"""
  tag = source['type']
  if tag == "Mapping":
    entries = mapping_entries(source)
    return entries if len(names) == 2 else [(key,) for key, _ in entries]
  if len(names) == 2:
    raise runtime_failure("TypeMismatchError", "Two loop variables need a Mapping", span)
  if tag == "List":
    return [(item,) for item in list(source['value'])]
  if tag == "Text":
    return [(make_text(ch),) for ch in source['value']]
  raise runtime_failure("TypeMismatchError", f"Cannot iterate over {runtime_tag(source)}", span)


def exec_for_each(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  info = ast_node['value']
  span = ast_node['span']
  source = yield from eval_ast(info['iterable'], env, context)

  if source['type'] == "Generator":
    items = ((item,) for item in source['value'])
  else:
    items = iteration_items(source, info['names'], span)

  for values in items:
    loop_env = make_runtime_env(env, label="for each")
    for name, value in zip(info['names'], values):
      env_define(loop_env, name, value, ANY)
    signal = yield from execute_block(info['body'], loop_env, context, new_scope=False)
    if signal['kind'] != 'continue':
      return signal
  return make_signal('continue')


def exec_try(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  """do / fail / always"""
  info = ast_node['value']
  signal = yield from execute_block(info['body'], env, context)

  if signal['kind'] == 'raise':
    error = signal['value']
    kind = error['value']['kind']
    for handler in info['handlers']:
      if handler['kind'] is None or handler['kind'] == kind:
        handler_env = make_runtime_env(env, label="fail")
        env_define(handler_env, handler['name'], error, ANY)
        signal = yield from execute_block(handler['body'], handler_env, context, new_scope=False)
        break

  if info['finally'] is not None:
    final = yield from execute_block(info['finally'], env, context)
    if final['kind'] != 'continue':
      return final
  return signal


def exec_raise(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  info = ast_node['value']
  value = yield from eval_ast(info['value'], env, context)
  span = ast_node['span']

  if value['type'] == "Error" and info['kind'] is None:
    return make_signal('raise', value)
  kind = info['kind'] or "Error"
  if value['type'] == "Error":
    message = value['value']['message']
    payload = value['value']['payload']
  else:
    message = display_value(value)
    payload = value
  return make_signal('raise', make_error_value(kind, message, payload, span, context['call_stack']))


def exec_output(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  expr = ast_node['value']['value']
  value = make_void() if expr is None else (yield from eval_ast(expr, env, context))
  return make_signal('return', value)


def exec_yield(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  job = context['job'] or {}
  value = yield from eval_ast(ast_node['value']['value'], env, context)
  value = check_conformance(value, job.get('element_type', ANY),
                            f"Value yielded by {job.get('name', 'generator')}", ast_node['span'])
  yield YieldRequest(value, ast_node['span'])
  return make_signal('continue')


def exec_show(ast_node: Dict, env: Dict, context: Dict) -> Evaluation:
  value = yield from eval_ast(ast_node['value']['value'], env, context)
  text = display_value(value)
  runtime = context['runtime']
  runtime['output'].append(text)
  runtime['sink'](text)
  return make_signal('continue')


# ============================================================================
# DISPATCH TABLES
# ============================================================================

# Handlers that never suspend
PLAIN_HANDLERS: Dict[str, Callable] = {
    'LITERAL': eval_literal,
    'IDENTIFIER': eval_identifier,
    'MY': eval_my,
}

SUSPENDING_HANDLERS: Dict[str, Callable] = {
    'INTERPOLATION': eval_interpolation,
    'LIST': eval_list,
    'MAPPING': eval_mapping,
    'MEMBER': eval_member,
    'INDEX': eval_index,
    'CALL': eval_call,
    'NEW': eval_new,
    'BINARY': eval_binary,
    'LOGICAL': eval_logical,
    'UNARY': eval_unary,
    'AWAIT': eval_await,
    'COLLECTION_TRANSFORM': eval_collection_transform,
    'MATCH': eval_match_expression,
}

# Definitions bind names without evaluating anything that can suspend
PLAIN_STATEMENT_HANDLERS: Dict[str, Callable] = {
    'FUNCTION_DEF': exec_function_def,
    'CLASS_DEF': exec_class_def,
}

STATEMENT_HANDLERS: Dict[str, Callable] = {
    'EXPRESSION_STATEMENT': exec_expression_statement,
    'DECLARATION': exec_declaration,
    'ASSIGNMENT': exec_assignment,
    'IF_WHEN': exec_if,
    'MATCH': exec_match,
    'LOOP': exec_loop,
    'FOR_EACH': exec_for_each,
    'TRY_BLOCK': exec_try,
    'RAISE': exec_raise,
    'OUTPUT': exec_output,
    'YIELD': exec_yield,
    'SHOW': exec_show,
}


# ============================================================================
# PROGRAM EVALUATION
# ============================================================================

@dataclass
class RunResult:
  """Outcome of running a program"""
  value: Dict
  bindings: Dict[str, Any] = field(default_factory=dict)
  output: List[str] = field(default_factory=list)


def execute_program(program: Dict, env: Dict, context: Dict) -> Evaluation:
  signal = yield from execute_statements(program['value']['body'], env, context)
  if signal['kind'] == 'raise':
    raise exception_from_error_value(signal['value'])
  return signal['value'] if signal['value'] is not None else make_void()


class InterpreterSession:
  """Persistent globals for REPLs and embedding; each execute runs one program"""

  def __init__(self, debug: bool = False, sink: Optional[Callable[[str], None]] = None,
               resolver: Any = None, global_bindings: Optional[Dict[str, Any]] = None,
               timeout: Optional[float] = None):
    self.debug = debug
    self.timeout = timeout
    self.scheduler = Scheduler(debug)
    self.runtime = make_runtime(self.scheduler, sink or print_sink, resolver, debug)
    self.builtins = create_builtin_runtime_env(create_host_bindings())
    self.global_env = make_runtime_env(self.builtins, label="globals")
    for name, value in (global_bindings or {}).items():
      env_define(self.global_env, name, to_value(value))

  @property
  def resolver(self) -> Any:
    return self.runtime['resolver']

  def execute(self, program: Dict) -> RunResult:
    """Run a PROGRAM node against the session globals"""
    self.runtime['output'] = []
    context = make_execution_context(self.runtime)
    value = self._drive(execute_program(program, self.global_env, context), "program", "Program")
    return RunResult(value, self.bindings(), list(self.runtime['output']))

  def bindings(self) -> Dict[str, Any]:
    """Global bindings as plain Python values"""
    return {name: from_value(value) for name, value in env_user_bindings(self.global_env).items()}

  def lookup(self, name: str) -> Dict:
    return env_lookup_value(self.global_env, name)

  def call(self, name: str, *args: Any) -> Dict:
    """Call a global Job from Python; returns its runtime value"""
    callee = self.lookup(name)
    context = make_execution_context(self.runtime)
    return self._drive(call_value(callee, [to_value(arg) for arg in args], context), name, f"Call to {name}")

  def _drive(self, coroutine: Generator, label: str, what: str) -> Dict:
    """
    Run coroutine and everything it starts until the scheduler is idle

    Raises a call depth error, the coroutine's error, or the first async Job
    failure that nothing awaited, in that order.
    """
    outcome: Dict[str, Any] = {}

    def finish(value: Optional[Dict], error: Optional[VernacularRuntimeError]):
      outcome['value'] = value
      outcome['error'] = error

    self.scheduler.take_unobserved_rejection()
    try:
      self.scheduler.spawn(coroutine, finish, label)
      self.scheduler.run_until_idle(self.timeout)
    except RecursionError:
      self.scheduler.take_unobserved_rejection()
      raise runtime_failure("Error", "Maximum call depth exceeded")

    lost = self.scheduler.take_unobserved_rejection()
    if not outcome:
      raise runtime_failure("SuspendedError", f"{what} is waiting on a promise that can never settle")
    if outcome['error'] is not None:
      raise outcome['error']
    if lost is not None:
      raise exception_from_error_value(lost.error)
    return outcome['value']

  def close(self) -> None:
    resolver = self.runtime['resolver']
    if resolver is not None:
      resolver.stop()


def run(program: Dict, global_bindings: Optional[Dict[str, Any]] = None,
        sink: Optional[Callable[[str], None]] = None, resolver: Any = None,
        debug: bool = False) -> RunResult:
  """Run a parsed program in a fresh session"""
  session = InterpreterSession(debug, sink, resolver, global_bindings)
  try:
    return session.execute(program)
  finally:
    session.close()


def run_source(source: str, filename: str = "<input>", **kwargs) -> RunResult:
  """Parse and run source text"""
  return run(parse(source, filename, kwargs.get('debug', False)), **kwargs)


# ============================================================================
# FACTORY FUNCTIONS (for compatibility with main.py)
# ============================================================================

def create_interpreter(debug: bool = False, sink: Optional[Callable[[str], None]] = None,
                       resolver: Any = None, global_bindings: Optional[Dict[str, Any]] = None) -> InterpreterSession:
  """Factory function returning an interpreter session"""
  return InterpreterSession(debug, sink, resolver, global_bindings)


def create_debug_interpreter(**kwargs) -> InterpreterSession:
  """Factory function returning a debug interpreter"""
  return create_interpreter(debug=True, **kwargs)

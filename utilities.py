"""
Utilities module for the Vernacular interpreter
Contains common helper functions to reduce code duplication
"""

from typing import Any, Dict, List, Optional, Sequence

from error_handling import VernacularRuntimeError, runtime_error
from values import make_error_value, runtime_tag, display_value


# ==================== ERROR MESSAGE BUILDERS ====================

def runtime_failure(kind: str, message: str, span: Any = None,
                    payload: Optional[Dict] = None,
                    call_stack: Sequence[str] = ()) -> VernacularRuntimeError:
  """
  Build a runtime error together with the Error value it travels as

  Args:
    kind: Error kind tag (e.g. "NameError")
    message: Human readable message
    span: Source span of the failing construct
    payload: Value raised by user code, if any
    call_stack: Frames active when the error was raised

  Returns:
    VernacularRuntimeError (or the subclass registered for kind)
  """
  error_value = make_error_value(kind, message, payload, span, call_stack)
  return runtime_error(kind, message, span, call_stack, error_value)


def exception_from_error_value(error_value: Dict) -> VernacularRuntimeError:
  """Rebuild the host-facing exception for an Error value"""
  info = error_value['value']
  return runtime_error(info['kind'], info['message'], info['span'],
                       info['call_stack'], error_value)


def error_value_of(exc: VernacularRuntimeError) -> Dict:
  """The Error value carried by an exception, created on demand"""
  if exc.error_value is None:
    exc.error_value = make_error_value(exc.kind, exc.message, None, exc.span, exc.call_stack)
  return exc.error_value


def attach_call_stack(exc: VernacularRuntimeError, call_stack: Sequence[str]) -> VernacularRuntimeError:
  """Record the originating call stack the first time an error crosses a statement"""
  if not exc.call_stack and call_stack:
    exc.call_stack = list(call_stack)
    error_value_of(exc)['value']['call_stack'] = list(call_stack)
  return exc


def type_mismatch_error(what: str, expected: str, actual: Dict, span: Any = None) -> VernacularRuntimeError:
  """
  Generate type mismatch error

  Args:
    what: Description of the checked slot (binding, parameter, field)
    expected: Expected declared type, formatted
    actual: Actual value dict
    span: Source span

  Returns:
    VernacularRuntimeError with formatted message
  """
  return runtime_failure(
    "TypeMismatchError",
    f"{what} expects {expected}, got {runtime_tag(actual)}",
    span
  )


def arity_error(func_name: str, expected: int, got: int, span: Any = None) -> VernacularRuntimeError:
  """
  Generate arity mismatch error

  Args:
    func_name: Function name
    expected: Expected number of arguments
    got: Actual number of arguments

  Returns:
    VernacularRuntimeError with formatted message
  """
  noun = "argument" if expected == 1 else "arguments"
  return runtime_failure(
    "ArityError",
    f"{func_name} expects {expected} {noun}, got {got}",
    span
  )


def operation_error(op: str, left: Dict, right: Optional[Dict] = None, span: Any = None) -> VernacularRuntimeError:
  """Generate an error for an operator applied to unsupported operands"""
  if right is None:
    return runtime_failure(
      "TypeMismatchError", f"Cannot apply '{op}' to {runtime_tag(left)}", span)
  return runtime_failure(
    "TypeMismatchError",
    f"Cannot apply '{op}' to {runtime_tag(left)} and {runtime_tag(right)}",
    span
  )


def name_error(name: str, span: Any = None) -> VernacularRuntimeError:
  return runtime_failure("NameError", f"Name '{name}' is not defined", span)


def no_such_method_error(receiver: Dict, name: str, span: Any = None) -> VernacularRuntimeError:
  return runtime_failure(
    "NoSuchMethodError",
    f"{runtime_tag(receiver)} has no method '{name}'",
    span
  )


def require_logic(value: Dict, where: str, span: Any = None) -> bool:
  """Conditions only accept Logic values"""
  if value['type'] != "Logic":
    raise runtime_failure(
      "TypeMismatchError",
      f"{where} must be Logic, got {runtime_tag(value)}",
      span
    )
  return value['value']


# ==================== DISPLAY UTILITIES ====================

def truncate(text: str, limit: int = 60) -> str:
  """Shorten long value renderings for REPL and error listings"""
  text = text.replace('\n', ' ')
  if len(text) > limit:
    return text[:limit - 3] + "..."
  return text


def describe_bindings(bindings: Dict[str, Dict], limit: int = 10) -> List[str]:
  """Render name = value lines for user bindings"""
  lines = []
  visible = {k: v for k, v in bindings.items() if not k.startswith('_')}
  for name, value in list(visible.items())[:limit]:
    lines.append(f"  {name} = {truncate(display_value(value, True))}")
  if len(visible) > limit:
    lines.append(f"  ... and {len(visible) - limit} more bindings")
  return lines

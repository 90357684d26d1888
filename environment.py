"""
Vernacular runtime environments
A scope is a dictionary of bindings and their declared types plus a parent
reference. Closures share the scope they were defined in, so scopes are
mutated in place rather than copied.
"""

from typing import Any, Dict, Optional

from semantics import DeclaredType, check_conformance, infer_declared_type
from utilities import name_error

RECEIVER = "my"


# ============================================================================
# DATA STRUCTURES
# ============================================================================

def make_runtime_env(parent: Optional[Dict] = None, bindings: Optional[Dict] = None,
                     label: str = "block") -> Dict:
  """Create a runtime environment"""
  return {
      'parent': parent,
      'bindings': dict(bindings or {}),
      'types': {},
      'label': label,
  }


# ============================================================================
# ENVIRONMENT OPERATIONS
# ============================================================================

def env_find_owner(env: Dict, name: str) -> Optional[Dict]:
  """Nearest scope, walking outward, that binds name"""
  current = env
  while current is not None:
    if name in current['bindings']:
      return current
    current = current['parent']
  return None


def env_lookup_value(env: Dict, name: str, span: Any = None) -> Dict:
  """Look up a value in the environment chain; NameError when unbound"""
  owner = env_find_owner(env, name)
  if owner is None:
    raise name_error(name, span)
  return owner['bindings'][name]


def env_define(env: Dict, name: str, value: Dict, declared_type: Optional[DeclaredType] = None,
               span: Any = None) -> Dict:
  """Create (or shadow) a binding in this scope

  Without a declared type the value's own type is inferred and fixed.
  """
  if declared_type is None:
    declared_type = infer_declared_type(value)
  value = check_conformance(value, declared_type, f"'{name}'", span)
  env['bindings'][name] = value
  env['types'][name] = declared_type
  return value


def env_assign(env: Dict, name: str, value: Dict, span: Any = None) -> Dict:
  """Re-bind in the nearest scope owning name, else define here"""
  owner = env_find_owner(env, name)
  if owner is None:
    return env_define(env, name, value, None, span)
  value = check_conformance(value, owner['types'].get(name), f"'{name}'", span)
  owner['bindings'][name] = value
  return value


def env_bind_receiver(env: Dict, receiver: Dict) -> None:
  """Bind the object a method runs against; `my` resolves through this"""
  env['bindings'][RECEIVER] = receiver


def env_receiver(env: Dict) -> Optional[Dict]:
  owner = env_find_owner(env, RECEIVER)
  return owner['bindings'][RECEIVER] if owner is not None else None


def env_user_bindings(env: Dict) -> Dict[str, Dict]:
  """Bindings of this scope that user code introduced"""
  return {name: value for name, value in env['bindings'].items() if name != RECEIVER}

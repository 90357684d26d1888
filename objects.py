"""
Vernacular class runtime
Object definitions form a single-inheritance tree of immutable ClassDefs;
instances own their field mapping. Method lookup is an explicit upward walk.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from semantics import DeclaredType
from values import make_value


@dataclass(frozen=True)
class FieldDecl:
  """Declared field: name, declared type and default expression (AST)"""
  name: str
  declared_type: Optional[DeclaredType]
  default: Optional[Dict]
  span: Any = None


@dataclass(frozen=True, eq=False)
class ClassDef:
  """Runtime Object definition, created once when its statement executes"""
  name: str
  parent: Optional['ClassDef']
  fields: Tuple[FieldDecl, ...]
  build: Optional[Dict]
  methods: Mapping[str, Dict] = field(default_factory=lambda: MappingProxyType({}))
  env: Optional[Dict] = field(default=None, repr=False)

  def __repr__(self) -> str:
    parent = f" inherits {self.parent.name}" if self.parent else ""
    return f"<ClassDef {self.name}{parent}>"


def make_class_def(name: str, parent: Optional[ClassDef], fields: List[FieldDecl],
                   build: Optional[Dict], methods: Dict[str, Dict], env: Dict) -> ClassDef:
  return ClassDef(name, parent, tuple(fields), build, MappingProxyType(dict(methods)), env)


def make_class_value(class_def: ClassDef) -> Dict:
  return make_value(class_def, "Class")


# ============================================================================
# HIERARCHY QUERIES
# ============================================================================

def class_chain(class_def: ClassDef) -> List[ClassDef]:
  """Classes from the root of the hierarchy down to class_def"""
  chain = []
  current = class_def
  while current is not None:
    chain.append(current)
    current = current.parent
  chain.reverse()
  return chain


def resolve_method(class_def: ClassDef, name: str) -> Optional[Dict]:
  """First method called name walking from class_def up through its parents"""
  current = class_def
  while current is not None:
    method = current.methods.get(name)
    if method is not None:
      return method
    current = current.parent
  return None


def resolve_build(class_def: ClassDef) -> Optional[Dict]:
  """The constructor that runs for `new`: the nearest build up the chain"""
  current = class_def
  while current is not None:
    if current.build is not None:
      return current.build
    current = current.parent
  return None


# ============================================================================
# INSTANCES
# ============================================================================

def make_instance(class_def: ClassDef) -> Dict:
  """Blank instance; the interpreter fills fields from their defaults"""
  return make_value({
      'class': class_def,
      'fields': {},
      'field_types': {},
  }, "Object")


def instance_class(instance: Dict) -> ClassDef:
  return instance['value']['class']


def instance_field(instance: Dict, name: str) -> Optional[Dict]:
  return instance['value']['fields'].get(name)


def has_field(instance: Dict, name: str) -> bool:
  return name in instance['value']['fields']


def bind_method(method: Dict, receiver: Dict) -> Dict:
  """Job value for method with its receiver attached"""
  bound = dict(method['value'])
  bound['receiver'] = receiver
  return make_value(bound, "Job")

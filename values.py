"""
Vernacular runtime values
Every value is a tagged dictionary {'type': tag, 'value': payload}
"""

from typing import Any, Dict, List, Optional, Tuple, Sequence


SCALAR_TAGS = ("Whole", "Decimal", "Text", "Logic")
NUMERIC_TAGS = ("Whole", "Decimal")


# ============================================================================
# CONSTRUCTORS
# ============================================================================

def make_value(value: Any, type_name: str = "Void") -> Dict:
  """Create a runtime value"""
  return {
      'value': value,
      'type': type_name
  }


def make_whole(n: int) -> Dict:
  return make_value(int(n), "Whole")


def make_decimal(x: float) -> Dict:
  return make_value(float(x), "Decimal")


def make_text(s: str) -> Dict:
  return make_value(s, "Text")


def make_logic(b: bool) -> Dict:
  return make_value(bool(b), "Logic")


def make_void() -> Dict:
  return make_value(None, "Void")


def make_list(elements: Optional[List[Dict]] = None) -> Dict:
  return make_value(list(elements or []), "List")


def make_mapping(entries: Optional[Sequence[Tuple[Dict, Dict]]] = None) -> Dict:
  """Create a Mapping; later duplicate keys replace earlier ones in place"""
  payload = {}
  for key, item in entries or []:
    payload[mapping_key(key)] = (key, item)
  return make_value(payload, "Mapping")


def make_error_value(kind: str, message: str, payload: Optional[Dict] = None,
                     span: Any = None, call_stack: Sequence[str] = ()) -> Dict:
  """Create the language-level value a runtime error travels as"""
  return make_value({
      'kind': kind,
      'message': message,
      'payload': payload if payload is not None else make_text(message),
      'span': span,
      'call_stack': list(call_stack),
  }, "Error")


# ============================================================================
# MAPPING HELPERS
# ============================================================================

def mapping_key(key: Dict) -> Optional[Tuple[str, Any]]:
  """Hashable identity of a mapping key; None when the value cannot be a key"""
  if key['type'] not in SCALAR_TAGS:
    return None
  return (key['type'], key['value'])


def mapping_get(mapping: Dict, key: Dict) -> Optional[Dict]:
  hashed = mapping_key(key)
  entry = mapping['value'].get(hashed) if hashed is not None else None
  return entry[1] if entry else None


def mapping_set(mapping: Dict, key: Dict, item: Dict) -> None:
  mapping['value'][mapping_key(key)] = (key, item)


def mapping_entries(mapping: Dict) -> List[Tuple[Dict, Dict]]:
  return list(mapping['value'].values())


# ============================================================================
# INSPECTION
# ============================================================================

def runtime_tag(value: Dict) -> str:
  """The tag used by match arms and type checks; objects report their class name"""
  if value['type'] == "Object":
    return value['value']['class'].name
  return value['type']


def _format_decimal(x: float) -> str:
  if x != x or x in (float('inf'), float('-inf')):
    return str(x)
  if x == int(x) and abs(x) < 1e16:
    return f"{int(x)}.0"
  return repr(x)


def display_value(value: Dict, nested: bool = False) -> str:
  """Text shown by `show` and string interpolation"""
  tag = value['type']
  payload = value['value']

  if tag == "Text":
    return f'"{payload}"' if nested else payload
  if tag == "Whole":
    return str(payload)
  if tag == "Decimal":
    return _format_decimal(payload)
  if tag == "Logic":
    return "true" if payload else "false"
  if tag == "Void":
    return "void"
  if tag == "List":
    return "[" + ", ".join(display_value(item, True) for item in payload) + "]"
  if tag == "Mapping":
    parts = [f"{display_value(k, True)}: {display_value(v, True)}" for k, v in payload.values()]
    return "{" + ", ".join(parts) + "}"
  if tag == "Object":
    fields = ", ".join(f"{name}: {display_value(v, True)}" for name, v in payload['fields'].items())
    return f"{payload['class'].name}({fields})"
  if tag == "Error":
    return f"{payload['kind']}: {payload['message']}"
  if tag == "Job":
    owner = payload.get('owner')
    name = f"{owner}.{payload['name']}" if owner else payload['name']
    return f"<Job {name}>"
  if tag == "Class":
    return f"<Object {payload.name}>"
  if tag == "Promise":
    return f"<Promise {payload.state}>"
  if tag == "Generator":
    return f"<Generator {payload.name}>"
  if tag == "Host":
    return f"<Host {payload['namespace']}>"
  return f"<{tag}>"


def values_equal(left: Dict, right: Dict) -> bool:
  """Structural equality; Whole and Decimal compare by numeric value"""
  if left['type'] in NUMERIC_TAGS and right['type'] in NUMERIC_TAGS:
    return left['value'] == right['value']
  if left['type'] != right['type']:
    return False
  tag = left['type']
  if tag == "List":
    if len(left['value']) != len(right['value']):
      return False
    return all(values_equal(a, b) for a, b in zip(left['value'], right['value']))
  if tag == "Mapping":
    if left['value'].keys() != right['value'].keys():
      return False
    return all(values_equal(left['value'][k][1], right['value'][k][1]) for k in left['value'])
  if tag in ("Object", "Promise", "Generator", "Class", "Host"):
    return left['value'] is right['value']
  if tag == "Job":
    a, b = left['value'], right['value']
    if a is b:
      return True
    # bound methods compare by definition and receiver
    return (a.get('body') is not None and a.get('body') is b.get('body')
            and a.get('receiver') is b.get('receiver'))
  if tag == "Error":
    return (left['value']['kind'] == right['value']['kind']
            and left['value']['message'] == right['value']['message'])
  return left['value'] == right['value']


# ============================================================================
# HOST CONVERSIONS
# ============================================================================

def is_value_dict(val: Any) -> bool:
  return isinstance(val, dict) and 'type' in val and 'value' in val


def to_value(obj: Any) -> Dict:
  """Convert a plain Python object into a runtime value"""
  if is_value_dict(obj):
    return obj
  if obj is None:
    return make_void()
  if isinstance(obj, bool):
    return make_logic(obj)
  if isinstance(obj, int):
    return make_whole(obj)
  if isinstance(obj, float):
    return make_decimal(obj)
  if isinstance(obj, str):
    return make_text(obj)
  if isinstance(obj, (list, tuple)):
    return make_list([to_value(item) for item in obj])
  if isinstance(obj, dict):
    return make_mapping([(to_value(k), to_value(v)) for k, v in obj.items()])
  raise TypeError(f"Cannot convert {type(obj).__name__} to a Vernacular value")


def from_value(value: Dict) -> Any:
  """Convert a runtime value into the closest plain Python object"""
  tag = value['type']
  if tag in SCALAR_TAGS or tag == "Void":
    return value['value']
  if tag == "List":
    return [from_value(item) for item in value['value']]
  if tag == "Mapping":
    return {from_value(k): from_value(v) for k, v in value['value'].values()}
  if tag == "Object":
    return {name: from_value(v) for name, v in value['value']['fields'].items()}
  if tag == "Error":
    return {'kind': value['value']['kind'], 'message': value['value']['message']}
  return value

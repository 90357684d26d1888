"""
Vernacular host layer
Output sinks and resolvers for operations the language treats as externally
fulfilled, such as `await http.fetch at url`. Network work happens on a pykka
actor thread and is reported back through the scheduler's inbox.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pykka

from error_handling import VernacularRuntimeError
from scheduler import PromiseHandle, Scheduler
from stdlib import make_builtin_function
from utilities import runtime_failure
from values import from_value, make_error_value, make_value, to_value

HOST_NAMESPACES = ("http",)

VARIADIC = -1


# ============================================================================
# OUTPUT SINKS
# ============================================================================

def print_sink(text: str) -> None:
  """Default sink for `show`"""
  print(text)


class ListSink:
  """Sink that keeps shown lines in memory"""

  def __init__(self):
    self.lines: List[str] = []

  def __call__(self, text: str) -> None:
    self.lines.append(text)


# ============================================================================
# OPERATION RESOLUTION
# ============================================================================

@dataclass(frozen=True)
class OperationDescriptor:
  """One host operation invocation; arguments are plain Python values"""
  namespace: str
  operation: str
  arguments: Tuple[Any, ...] = ()
  span: Any = None

  @property
  def qualified_name(self) -> str:
    return f"{self.namespace}.{self.operation}"


class HostResolver:
  """Resolves host operations to an immediate value or a PromiseHandle"""

  def resolve(self, descriptor: OperationDescriptor, scheduler: Scheduler) -> Any:
    raise NotImplementedError

  def stop(self) -> None:
    """Release any threads the resolver started"""


class StaticHostResolver(HostResolver):
  """Maps qualified operation names to Python callables"""

  def __init__(self, operations: Optional[Dict[str, Callable]] = None):
    self.operations: Dict[str, Callable] = dict(operations or {})

  def register(self, name: str, func: Callable) -> None:
    self.operations[name] = func

  def resolve(self, descriptor: OperationDescriptor, scheduler: Scheduler) -> Any:
    func = self.operations.get(descriptor.qualified_name)
    if func is None:
      raise runtime_failure("HostError", f"Unknown host operation {descriptor.qualified_name}",
                            descriptor.span)
    try:
      return func(*descriptor.arguments)
    except VernacularRuntimeError:
      raise
    except Exception as e:
      raise runtime_failure("HostError", f"{descriptor.qualified_name} failed: {e}", descriptor.span)


def decode_response(response: httpx.Response) -> Any:
  """JSON bodies become Mappings/Lists, anything else Text"""
  content_type = response.headers.get("Content-Type", "")
  if "json" in content_type:
    return response.json()
  return response.text


class FetchActor(pykka.ThreadingActor):
  """Performs HTTP GETs off the interpreter thread"""

  def __init__(self, timeout: float = 5.0, retries: int = 2, backoff: float = 0.2,
               client_factory: Callable[..., httpx.Client] = httpx.Client):
    super().__init__()
    self.timeout = timeout
    self.retries = retries
    self.backoff = backoff
    self.client_factory = client_factory
    self.client: Optional[httpx.Client] = None

  def on_start(self):
    self.client = self.client_factory(timeout=self.timeout, follow_redirects=True)

  def on_stop(self):
    if self.client is not None:
      self.client.close()

  def on_receive(self, message):
    """Fetch message['url'] and settle message['promise'] via the scheduler inbox"""
    scheduler = message['scheduler']
    promise = message['promise']
    url = message['url']
    try:
      value = self.fetch(url)
    except (httpx.HTTPError, ValueError) as e:
      scheduler.report(promise, error=make_error_value("HostError", f"fetch {url} failed: {e}"))
      return None
    scheduler.report(promise, value=value)
    return None

  def fetch(self, url: str) -> Any:
    last_exc = None
    for attempt in range(self.retries + 1):
      try:
        response = self.client.get(url)
        response.raise_for_status()
        return decode_response(response)
      except httpx.TransportError as e:
        last_exc = e
        if attempt < self.retries:
          time.sleep(self.backoff * (2 ** attempt))
    raise last_exc


class ActorHostResolver(HostResolver):
  """Runs http.fetch on a FetchActor; other operations go to the fallback"""

  def __init__(self, timeout: float = 5.0, retries: int = 2,
               fallback: Optional[HostResolver] = None,
               client_factory: Callable[..., httpx.Client] = httpx.Client):
    self.timeout = timeout
    self.retries = retries
    self.fallback = fallback
    self.client_factory = client_factory
    self._actor: Optional[pykka.ActorRef] = None

  def resolve(self, descriptor: OperationDescriptor, scheduler: Scheduler) -> Any:
    if descriptor.qualified_name != "http.fetch":
      if self.fallback is not None:
        return self.fallback.resolve(descriptor, scheduler)
      raise runtime_failure("HostError", f"Unknown host operation {descriptor.qualified_name}",
                            descriptor.span)

    if len(descriptor.arguments) != 1 or not isinstance(descriptor.arguments[0], str):
      raise runtime_failure("HostError", "http.fetch expects one Text url", descriptor.span)
    url = descriptor.arguments[0]

    if self._actor is None:
      self._actor = FetchActor.start(self.timeout, self.retries, client_factory=self.client_factory)
    promise = scheduler.expect_external(f"http.fetch {url}")
    self._actor.tell({'scheduler': scheduler, 'promise': promise, 'url': url})
    return promise

  def stop(self) -> None:
    if self._actor is not None:
      self._actor.stop()
      self._actor = None


# ============================================================================
# HOST VALUES
# ============================================================================

def make_host_value(namespace: str) -> Dict:
  return make_value({'namespace': namespace}, "Host")


def host_operation(host: Dict, operation: str) -> Dict:
  """Built-in Job that forwards a call on host.operation to the resolver"""
  namespace = host['value']['namespace']

  def invoke(context: Dict, span: Any, *args: Dict) -> Dict:
    runtime = context['runtime']
    resolver = runtime['resolver']
    if resolver is None:
      raise runtime_failure("HostError", f"No host resolver for {namespace}.{operation}", span)
    descriptor = OperationDescriptor(namespace, operation, tuple(from_value(arg) for arg in args), span)
    result = resolver.resolve(descriptor, runtime['scheduler'])
    if isinstance(result, PromiseHandle):
      return make_value(result, "Promise")
    return to_value(result)

  return make_builtin_function(operation, invoke, f"{namespace}.{operation}",
                               arity=VARIADIC, owner=namespace, contextual=True)


def create_host_bindings() -> Dict[str, Dict]:
  return {namespace: make_host_value(namespace) for namespace in HOST_NAMESPACES}

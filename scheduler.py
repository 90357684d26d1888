"""
Vernacular cooperative scheduler
Async Jobs and generator Jobs are Python generators that yield suspension
requests. The scheduler owns the ready queue that resumes async
continuations; GeneratorHandle drives generator Jobs one value at a time.
Only `report` may be called from another thread.
"""

import queue
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Generator, List, Optional

from error_handling import VernacularRuntimeError
from utilities import exception_from_error_value, runtime_failure
from values import is_value_dict, make_error_value, to_value


PENDING = "pending"
RESOLVED = "resolved"
REJECTED = "rejected"


# ============================================================================
# SUSPENSION REQUESTS
# ============================================================================

@dataclass(frozen=True)
class AwaitRequest:
  """Yielded by the evaluator when an async Job awaits a promise"""
  promise: 'PromiseHandle'
  span: Any = None


@dataclass(frozen=True)
class YieldRequest:
  """Yielded by the evaluator when a generator Job produces a value"""
  value: Dict
  span: Any = None


# ============================================================================
# PROMISES
# ============================================================================

class PromiseHandle:
  """One-shot result of an async Job or host operation"""

  def __init__(self, label: str = "promise"):
    self.label = label
    self.state = PENDING
    self.value: Optional[Dict] = None
    self.error: Optional[Dict] = None
    # set once something awaits the promise
    self.observed = False
    self._callbacks: List[Callable[['PromiseHandle'], None]] = []

  @property
  def settled(self) -> bool:
    return self.state != PENDING

  def resolve(self, value: Dict) -> bool:
    """Fulfil the promise; later settlements are ignored"""
    if self.settled:
      return False
    self.state = RESOLVED
    self.value = value
    self._fire()
    return True

  def reject(self, error_value: Dict) -> bool:
    if self.settled:
      return False
    self.state = REJECTED
    self.error = error_value
    self._fire()
    return True

  def when_settled(self, callback: Callable[['PromiseHandle'], None]) -> None:
    if self.settled:
      callback(self)
    else:
      self._callbacks.append(callback)

  def _fire(self) -> None:
    callbacks, self._callbacks = self._callbacks, []
    for callback in callbacks:
      callback(self)

  def __repr__(self) -> str:
    return f"<PromiseHandle {self.label} {self.state}>"


# ============================================================================
# GENERATORS
# ============================================================================

class GeneratorHandle:
  """
  Suspended generator Job; the body does not start until the first advance

  A generator that is dropped before it finishes is never resumed, so its
  pending `always` blocks do not run.
  """

  def __init__(self, name: str, body_factory: Callable[[], Generator]):
    self.name = name
    self._factory = body_factory
    self._coroutine: Optional[Generator] = None
    self.exhausted = False
    self.running = False
    # value of an `output` that ended generation early
    self.result: Optional[Dict] = None

  def advance(self) -> Optional[Dict]:
    """Resume to the next yield; None once the body has finished"""
    if self.exhausted:
      return None
    if self.running:
      raise runtime_failure("Error", f"Generator {self.name} is already running")
    if self._coroutine is None:
      self._coroutine = self._factory()

    self.running = True
    try:
      request = self._coroutine.send(None)
    except StopIteration as stop:
      self.exhausted = True
      self.result = stop.value
      return None
    except VernacularRuntimeError:
      self.exhausted = True
      raise
    finally:
      self.running = False

    if not isinstance(request, YieldRequest):
      self.exhausted = True
      raise runtime_failure("Error", f"Generator {self.name} cannot await", getattr(request, 'span', None))
    return request.value

  def __iter__(self):
    while True:
      value = self.advance()
      if value is None:
        return
      yield value

  def __repr__(self) -> str:
    state = "exhausted" if self.exhausted else "suspended"
    return f"<GeneratorHandle {self.name} {state}>"


# ============================================================================
# SCHEDULER
# ============================================================================

class Scheduler:
  """FIFO ready queue plus a thread-safe inbox for host-settled promises"""

  def __init__(self, debug: bool = False):
    self.debug = debug
    self._ready: Deque[Callable[[], None]] = deque()
    self._inbox: queue.Queue = queue.Queue()
    self._external = 0
    self._rejected: List[PromiseHandle] = []

  @property
  def pending_externals(self) -> int:
    return self._external

  def call_soon(self, callback: Callable[[], None]) -> None:
    self._ready.append(callback)

  def make_promise(self, label: str = "promise") -> PromiseHandle:
    return PromiseHandle(label)

  def reject_job(self, promise: PromiseHandle, error_value: Dict) -> None:
    """Reject the promise of an async Job; kept until checked for an await"""
    if promise.reject(error_value):
      self._rejected.append(promise)

  def take_unobserved_rejection(self) -> Optional[PromiseHandle]:
    """First rejected Job promise nothing awaited; clears the record"""
    rejected, self._rejected = self._rejected, []
    for promise in rejected:
      if not promise.observed:
        return promise
    return None

  def expect_external(self, label: str = "external") -> PromiseHandle:
    """Promise the host will settle later through report"""
    self._external += 1
    return PromiseHandle(label)

  def report(self, promise: PromiseHandle, value: Any = None, error: Any = None) -> None:
    """Queue the outcome of host work; safe to call from any thread"""
    self._inbox.put((promise, value, error))

  # ---- coroutines ----

  def spawn(self, coroutine: Generator, finish: Callable[[Optional[Dict], Optional[VernacularRuntimeError]], None],
            label: str = "job") -> None:
    """Run coroutine now until its first await; finish(value, error) runs at the end"""
    if self.debug:
      print(f"Scheduler: start {label}")
    self._step(coroutine, finish, label, None, None)

  def _step(self, coroutine: Generator, finish: Callable, label: str,
            send_value: Optional[Dict], throw_error: Optional[VernacularRuntimeError]) -> None:
    try:
      if throw_error is not None:
        request = coroutine.throw(throw_error)
      else:
        request = coroutine.send(send_value)
    except StopIteration as stop:
      finish(stop.value, None)
      return
    except VernacularRuntimeError as exc:
      finish(None, exc)
      return

    if not isinstance(request, AwaitRequest):
      coroutine.close()
      finish(None, runtime_failure("Error", "'yield' outside of a generator Job",
                                   getattr(request, 'span', None)))
      return

    if self.debug:
      print(f"Scheduler: {label} waits on {request.promise!r}")

    def on_settled(promise: PromiseHandle):
      self.call_soon(lambda: self._resume(coroutine, finish, label, promise))

    request.promise.observed = True
    request.promise.when_settled(on_settled)

  def _resume(self, coroutine: Generator, finish: Callable, label: str, promise: PromiseHandle) -> None:
    if self.debug:
      print(f"Scheduler: resume {label} ({promise.state})")
    if promise.state == REJECTED:
      self._step(coroutine, finish, label, None, exception_from_error_value(promise.error))
    else:
      self._step(coroutine, finish, label, promise.value, None)

  # ---- run loop ----

  def run_until_idle(self, timeout: Optional[float] = None) -> None:
    """Run continuations until none are ready and no host work is outstanding"""
    while True:
      self._drain_inbox()
      while self._ready:
        callback = self._ready.popleft()
        callback()
        self._drain_inbox()

      if self._external == 0:
        return
      try:
        promise, value, error = self._inbox.get(timeout=timeout)
      except queue.Empty:
        raise runtime_failure(
          "SuspendedError",
          f"Timed out waiting for {self._external} host operation(s)")
      self._settle_reported(promise, value, error)

  def _drain_inbox(self) -> None:
    while True:
      try:
        promise, value, error = self._inbox.get_nowait()
      except queue.Empty:
        return
      self._settle_reported(promise, value, error)

  def _settle_reported(self, promise: PromiseHandle, value: Any, error: Any) -> None:
    self._external -= 1
    if error is not None:
      if not is_value_dict(error):
        error = make_error_value("HostError", str(error))
      promise.reject(error)
    else:
      promise.resolve(to_value(value))

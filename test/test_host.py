"""
Host operation tests for Vernacular
Tests resolvers, the fetch actor and host values in programs
"""

import threading

import httpx
import pytest
from error_handling import VernacularRuntimeError
from host import (
  ActorHostResolver, FetchActor, HostResolver, OperationDescriptor, StaticHostResolver, decode_response
)
from scheduler import RESOLVED, Scheduler


def mock_client_factory(handler):
  """client_factory that routes every request to handler"""
  def factory(**kwargs):
    return httpx.Client(transport=httpx.MockTransport(handler), **kwargs)
  return factory


def title_handler(request):
  return httpx.Response(200, json={"title": "Example Domain", "url": str(request.url)})


FETCH_TITLE = (
    "async Job fetch_title requires url as Text returning Text:\n"
    "    page is await http.fetch at url\n"
    "    output page[\"title\"]\n"
)


class TestStaticResolver:
  """Test callables registered by name"""

  def test_immediate_value(self, run, static_resolver):
    """Test that a plain result needs no await"""
    result = run("page is http.fetch at \"u\"\n", resolver=static_resolver)
    assert result.bindings['page'] == {"url": "u", "title": "Example Domain"}

  def test_await_passes_value_through(self, run, static_resolver):
    """Test awaiting an immediately available result"""
    result = run(FETCH_TITLE + "t is await fetch_title(\"u\")\n", resolver=static_resolver)
    assert result.bindings['t'] == "Example Domain"

  def test_unknown_operation(self, run, static_resolver):
    """Test an operation nobody registered"""
    with pytest.raises(VernacularRuntimeError) as exc_info:
      run("x is http.post at \"u\"\n", resolver=static_resolver)
    assert exc_info.value.kind == "HostError"
    assert "http.post" in exc_info.value.message

  def test_failing_callable(self, run):
    """Test that Python exceptions become HostError"""
    def broken(url):
      raise ConnectionError("refused")

    resolver = StaticHostResolver({"http.fetch": broken})
    with pytest.raises(VernacularRuntimeError) as exc_info:
      run("x is http.fetch at \"u\"\n", resolver=resolver)
    assert exc_info.value.kind == "HostError"
    assert "refused" in exc_info.value.message

  def test_register(self):
    """Test adding operations later"""
    resolver = StaticHostResolver()
    resolver.register("http.fetch", lambda url: url.upper())
    descriptor = OperationDescriptor("http", "fetch", ("abc",))
    assert resolver.resolve(descriptor, Scheduler()) == "ABC"


class TestWithoutResolver:
  """Test programs run with no host access"""

  def test_fetch_raises_host_error(self, run):
    """Test the error for a missing resolver"""
    with pytest.raises(VernacularRuntimeError) as exc_info:
      run("x is http.fetch at \"u\"\n")
    assert exc_info.value.kind == "HostError"
    assert exc_info.value.message == "No host resolver for http.fetch"

  def test_host_error_is_catchable(self, run, sink):
    """Test recovering from a missing resolver"""
    source = FETCH_TITLE + (
        "do:\n"
        "    t is await fetch_title(\"u\")\n"
        "fail e as HostError:\n"
        "    show \"fetch failed: {e.message}\"\n"
    )
    run(source)
    assert sink.lines == ['fetch failed: No host resolver for http.fetch']


class TestCustomResolver:
  """Test resolvers settling promises from their own threads"""

  def test_report_from_worker_thread(self, run):
    """Test a resolver built on expect_external and report"""
    class ThreadedResolver(HostResolver):
      def resolve(self, descriptor, scheduler):
        promise = scheduler.expect_external(descriptor.qualified_name)
        url = descriptor.arguments[0]
        threading.Thread(target=lambda: scheduler.report(promise, value={"title": url})).start()
        return promise

    result = run(FETCH_TITLE + "t is await fetch_title(\"threaded\")\n", resolver=ThreadedResolver())
    assert result.bindings['t'] == "threaded"

  def test_reported_error(self, run, sink):
    """Test that reported exceptions reject as HostError"""
    class FailingResolver(HostResolver):
      def resolve(self, descriptor, scheduler):
        promise = scheduler.expect_external(descriptor.qualified_name)
        scheduler.report(promise, error=TimeoutError("too slow"))
        return promise

    source = FETCH_TITLE + (
        "do:\n"
        "    t is await fetch_title(\"u\")\n"
        "fail e as HostError:\n"
        "    show e.message\n"
    )
    run(source, resolver=FailingResolver())
    assert sink.lines == ['too slow']


class TestActorResolver:
  """Test http.fetch on the pykka fetch actor"""

  def test_fetch_json(self, run):
    """Test a JSON response becoming a Mapping"""
    resolver = ActorHostResolver(client_factory=mock_client_factory(title_handler))
    result = run(FETCH_TITLE + "t is await fetch_title(\"https://example.com/\")\n", resolver=resolver)
    assert result.bindings['t'] == "Example Domain"

  def test_http_error_status(self, run, sink):
    """Test that error statuses reject with HostError"""
    resolver = ActorHostResolver(
        client_factory=mock_client_factory(lambda request: httpx.Response(500)))
    source = FETCH_TITLE + (
        "do:\n"
        "    t is await fetch_title(\"https://example.com/\")\n"
        "fail e as HostError:\n"
        "    show e.kind\n"
    )
    run(source, resolver=resolver)
    assert sink.lines == ['HostError']

  def test_transport_errors_are_retried(self, run):
    """Test retrying connection failures before giving up"""
    calls = []

    def handler(request):
      calls.append(request.url)
      raise httpx.ConnectError("refused", request=request)

    resolver = ActorHostResolver(retries=1, client_factory=mock_client_factory(handler))
    with pytest.raises(VernacularRuntimeError) as exc_info:
      run("x is await http.fetch at \"https://example.com/\"\n", resolver=resolver)
    assert exc_info.value.kind == "HostError"
    assert len(calls) == 2

  def test_fetch_needs_one_url(self, run):
    """Test argument validation"""
    resolver = ActorHostResolver(client_factory=mock_client_factory(title_handler))
    with pytest.raises(VernacularRuntimeError) as exc_info:
      run("x is http.fetch(1, 2)\n", resolver=resolver)
    assert "one Text url" in exc_info.value.message

  def test_other_operations_use_fallback(self, run, static_resolver):
    """Test delegation of non-fetch operations"""
    static_resolver.register("http.ping", lambda: "pong")
    resolver = ActorHostResolver(fallback=static_resolver)
    result = run("x is http.ping()\n", resolver=resolver)
    assert result.bindings['x'] == "pong"

  def test_actor_reports_through_inbox(self):
    """Test the actor message protocol directly"""
    scheduler = Scheduler()
    promise = scheduler.expect_external("fetch")
    actor = FetchActor.start(client_factory=mock_client_factory(title_handler))
    try:
      actor.tell({'scheduler': scheduler, 'promise': promise, 'url': "https://example.com/"})
      scheduler.run_until_idle(timeout=5)
    finally:
      actor.stop()
    assert promise.state == RESOLVED
    assert promise.value['type'] == "Mapping"


class TestDecodeResponse:
  """Test response bodies"""

  def test_json_body(self):
    """Test JSON content"""
    assert decode_response(httpx.Response(200, json={"a": [1, 2]})) == {"a": [1, 2]}

  def test_text_body(self):
    """Test anything else"""
    assert decode_response(httpx.Response(200, text="hello")) == "hello"

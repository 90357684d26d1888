"""
Integration tests for Vernacular using real example files
"""

import pytest
from error_handling import VernacularRuntimeError
from interpreter import create_interpreter
from parsing import create_parser


SHOWCASE_OUTPUT = [
    "Hello, Ada! count=3 ratio=2.0",
    "multiply gives 15",
    "Error: Unknown action: divide",
    "number",
    "text",
    "list",
    "something else",
    "Rex says Woof",
    "Rex knows 2 tricks",
    "Tom says ...",
    "division attempted",
    "3.5",
    "cannot divide 1 by zero",
    "division attempted",
    "0.0",
    "caught ValidationError with code 42",
    "squares: [1, 4, 9, 16, 25, 36]",
    "evens: [2, 4, 6]",
    "sum of even squares: 56",
    "Ada turns 37",
    "Grace turns 86",
    "fibonacci: [0, 1, 1, 2, 3, 5, 8, 13, 21, 34, 55, 89, 144]",
    "total: 18",
]


class TestFileIntegration:
  """Test parsing and running complete example files"""

  @pytest.fixture
  def showcase(self, examples_dir):
    test_file = examples_dir / "showcase.vern"
    if not test_file.exists():
      pytest.skip(f"Test file {test_file} not found")
    return test_file

  def test_showcase_parses(self, parser, showcase):
    """Test that the showcase parses into top-level statements"""
    program = parser.parse_file(str(showcase))
    assert program['type'] == 'PROGRAM'
    assert len(program['value']['body']) > 20

  def test_showcase_runs(self, sink, static_resolver, showcase):
    """Test the full showcase output with a static fetch"""
    session = create_interpreter(sink=sink, resolver=static_resolver)
    try:
      result = session.execute(create_parser().parse_file(str(showcase)))
    finally:
      session.close()
    assert sink.lines == SHOWCASE_OUTPUT + ["title: Example Domain"]
    assert result.value['value'] == 18
    assert result.bindings['fib'][-1] == 144

  def test_showcase_without_network(self, sink, showcase):
    """Test that the fetch failure is handled inside the script"""
    session = create_interpreter(sink=sink)
    try:
      session.execute(create_parser().parse_file(str(showcase)))
    finally:
      session.close()
    assert sink.lines[:-1] == SHOWCASE_OUTPUT
    assert sink.lines[-1] == "fetch failed: No host resolver for http.fetch"

  def test_process_end_to_end(self, run):
    """Test the action dispatcher with the action last"""
    source = (
        "Job process requires a, b, action as Whole, Whole, Text returning Whole:\n"
        "    match action:\n"
        "        when \"add\": output a + b\n"
        "        when \"multiply\": output a * b\n"
        "        or: raise \"Unknown action: {action}\"\n"
        "product is process using 5, 3, \"multiply\"\n"
    )
    assert run(source).bindings['product'] == 15
    with pytest.raises(VernacularRuntimeError) as exc_info:
      run(source + "process using 5, 3, \"divide\"\n")
    assert exc_info.value.kind == "Error"
    assert "Unknown action" in exc_info.value.message

  def test_session_reuses_showcase_definitions(self, sink, static_resolver, showcase):
    """Test calling script Jobs from Python after the run"""
    session = create_interpreter(sink=sink, resolver=static_resolver)
    try:
      session.execute(create_parser().parse_file(str(showcase)))
      assert session.call("process", "add", 2, 3)['value'] == 5
      assert session.lookup("rex")['type'] == "Object"
    finally:
      session.close()

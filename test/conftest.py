"""
Test configuration for Vernacular tests
"""

import pytest
import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from host import ListSink, StaticHostResolver
from interpreter import run_source
from parsing import create_parser


@pytest.fixture
def parser():
  """Provide a fresh parser for each test"""
  return create_parser()


@pytest.fixture
def sink():
  return ListSink()


@pytest.fixture
def run(sink):
  """Run source text, collecting shown lines in the sink fixture"""
  def _run(source, **kwargs):
    kwargs.setdefault('sink', sink)
    return run_source(source, **kwargs)
  return _run


@pytest.fixture
def static_resolver():
  return StaticHostResolver({
      "http.fetch": lambda url: {"url": url, "title": "Example Domain"},
  })


@pytest.fixture
def examples_dir():
  """Get the examples directory path"""
  return project_root / "examples"

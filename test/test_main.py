"""
Command line tests for Vernacular
Tests argument parsing, script runs and REPL input handling
"""

import sys

import pytest
import main
from main import create_arg_parser, read_entry


@pytest.fixture
def script(tmp_path):
  """Write a script file and return its path"""
  def _script(source, name="script.vern"):
    path = tmp_path / name
    path.write_text(source, encoding='utf-8')
    return str(path)
  return _script


def run_main(monkeypatch, *argv):
  monkeypatch.setattr(sys, 'argv', ['vernacular', *argv])
  main.main()


class TestArguments:
  """Test the argparse configuration"""

  def test_flags(self):
    """Test that every flag is recognised"""
    args = create_arg_parser().parse_args(['--debug', '--no-fetch', '--tokens', 'a.vern'])
    assert args.debug and args.no_fetch and args.tokens
    assert args.script == 'a.vern'
    assert not args.parse

  def test_version(self, monkeypatch, capsys):
    """Test --version"""
    with pytest.raises(SystemExit) as exc_info:
      run_main(monkeypatch, '--version')
    assert exc_info.value.code == 0
    assert f"v{main.VERSION}" in capsys.readouterr().out


class TestScriptRuns:
  """Test running, tokenizing and parsing files"""

  def test_run_script(self, monkeypatch, capsys, script):
    """Test that shown lines reach stdout"""
    path = script("name is \"World\"\nshow \"Hello, {name}!\"\n")
    run_main(monkeypatch, '--no-fetch', path)
    assert "Hello, World!" in capsys.readouterr().out

  def test_tokens(self, monkeypatch, capsys, script):
    """Test the token listing"""
    path = script("x is 1\n")
    run_main(monkeypatch, '--tokens', path)
    out = capsys.readouterr().out
    assert "Tokenized" in out
    assert "KEYWORD" in out

  def test_parse(self, monkeypatch, capsys, script):
    """Test the AST listing"""
    path = script("x is 1\nshow x\n")
    run_main(monkeypatch, '--parse', path)
    out = capsys.readouterr().out
    assert "Parsed 2 top-level statements" in out
    assert "Statement 2:" in out

  def test_runtime_error_exit_code(self, monkeypatch, capsys, script):
    """Test the error report for an uncaught runtime error"""
    path = script("Job boom:\n    x is 1 / 0\nboom()\n")
    with pytest.raises(SystemExit) as exc_info:
      run_main(monkeypatch, '--no-fetch', path)
    assert exc_info.value.code == 1
    out = capsys.readouterr().out
    assert "DivisionByZeroError: Division by zero" in out
    assert "in boom" in out

  def test_parse_error_exit_code(self, monkeypatch, capsys, script):
    """Test the error report for malformed source"""
    path = script("x = 1\n")
    with pytest.raises(SystemExit) as exc_info:
      run_main(monkeypatch, path)
    assert exc_info.value.code == 1
    assert "Error in" in capsys.readouterr().out

  def test_missing_script(self, monkeypatch, capsys, tmp_path):
    """Test a path that does not exist"""
    with pytest.raises(SystemExit):
      run_main(monkeypatch, str(tmp_path / "missing.vern"))
    assert "does not exist" in capsys.readouterr().out


class TestReplInput:
  """Test how the REPL gathers multi-line entries"""

  def test_single_line(self):
    """Test a plain statement"""
    assert read_entry("x is 1") == "x is 1\n"

  def test_block_ends_at_blank_line(self, monkeypatch):
    """Test a block header collecting its body"""
    lines = iter(["    show 1", "    show 2", ""])
    monkeypatch.setattr('builtins.input', lambda prompt="": next(lines))
    assert read_entry("if true:") == "if true:\n    show 1\n    show 2\n"

  def test_backslash_continuation(self, monkeypatch):
    """Test continuing a long line"""
    lines = iter(["+ 2"])
    monkeypatch.setattr('builtins.input', lambda prompt="": next(lines))
    assert read_entry("x is 1 \\") == "x is 1 \\\n+ 2\n"

  def test_interactive_session(self, monkeypatch, capsys):
    """Test globals persisting between entries"""
    lines = iter(["x is 20", "x + 22", ".exit"])
    monkeypatch.setattr('builtins.input', lambda prompt="": next(lines))
    monkeypatch.setattr(main, 'setup_readline', lambda: None)
    main.run_interactive_mode(no_fetch=True)
    out = capsys.readouterr().out
    assert "=> 42 : Whole" in out
    assert "Goodbye!" in out

"""
Vernacular Runtime - Main Entry Point
An indentation-structured scripting language with declared types, Objects,
generators and async Jobs
"""

import sys
import argparse
from pathlib import Path
from typing import Optional, List
import os

# Readline support for history and auto-completion
try:
  import readline
  READLINE_AVAILABLE = True
except ImportError:
  READLINE_AVAILABLE = False

from error_handling import VernacularLexError, VernacularParseError, VernacularRuntimeError
from host import ActorHostResolver
from interpreter import create_interpreter, create_debug_interpreter, InterpreterSession
from lexing import KEYWORDS, format_tokens
from parsing import create_parser, create_debug_parser, pretty_print_ast
from stdlib import list_builtin_functions
from utilities import describe_bindings
from values import display_value, runtime_tag

VERSION = "0.1.0"

REPL_COMMANDS = [".exit", ".load", ".env", ".tokens", ".ast", ".help"]


def create_arg_parser() -> argparse.ArgumentParser:
  """Create command line argument parser"""
  parser = argparse.ArgumentParser(
      description='Vernacular Runtime - typed scripting with Objects, generators and async Jobs',
      formatter_class=argparse.RawDescriptionHelpFormatter,
      epilog="""
Examples:
  %(prog)s script.vern            # Run a Vernacular script
  %(prog)s -i                     # Interactive mode
  %(prog)s --tokens script.vern   # Show the token stream
  %(prog)s --parse script.vern    # Parse and show the AST
  %(prog)s --debug script.vern    # Run with debug output
  %(prog)s --no-fetch script.vern # Run without network access
        """
  )

  parser.add_argument(
      'script',
      nargs='?',
      help='Vernacular script file to execute'
  )

  parser.add_argument(
      '-i', '--interactive',
      action='store_true',
      help='Start interactive mode'
  )

  parser.add_argument(
      '--tokens',
      action='store_true',
      help='Tokenize file and show tokens (for debugging)'
  )

  parser.add_argument(
      '--parse',
      action='store_true',
      help='Parse file and show AST (for debugging)'
  )

  parser.add_argument(
      '--debug',
      action='store_true',
      help='Enable debug output for all stages'
  )

  parser.add_argument(
      '--no-fetch',
      action='store_true',
      help='Disable http.fetch (host operations fail with HostError)'
  )

  parser.add_argument(
      '--version',
      action='version',
      version=f'Vernacular Runtime v{VERSION}'
  )

  return parser


def make_session(debug: bool = False, no_fetch: bool = False) -> InterpreterSession:
  resolver = None if no_fetch else ActorHostResolver()
  if debug:
    return create_debug_interpreter(resolver=resolver)
  return create_interpreter(resolver=resolver)


def read_script(script_path: str) -> str:
  with open(script_path, 'r', encoding='utf-8') as f:
    return f.read()


def fail_reading(script_path: str, e: Exception) -> None:
  if isinstance(e, FileNotFoundError):
    print(f"Error: Script file '{script_path}' not found")
    print(f"  Hint: Check the file path and make sure the file exists")
  elif isinstance(e, PermissionError):
    print(f"Error: Permission denied reading '{script_path}'")
    print(f"  Hint: Make sure you have read permissions for this file")
  else:
    print(f"Error: Cannot decode file '{script_path}': {e}")
    print(f"  Hint: Make sure the file is a text file with UTF-8 encoding")
  sys.exit(1)


def tokenize_file(script_path: str, debug: bool = False) -> None:
  """Tokenize a Vernacular script file and show the tokens"""
  try:
    source = read_script(script_path)
    parser = create_debug_parser() if debug else create_parser()
    tokens = parser.tokenize(source, script_path)
    print(f"Tokenized {script_path}: {len(tokens)} tokens")
    print("=" * 50)
    print(format_tokens(tokens))
  except (FileNotFoundError, PermissionError, UnicodeDecodeError) as e:
    fail_reading(script_path, e)
  except VernacularLexError as e:
    print(f"{e}")
    sys.exit(1)


def parse_file(script_path: str, debug: bool = False) -> None:
  """Parse a Vernacular script file and show the AST"""
  try:
    parser = create_debug_parser() if debug else create_parser()

    print(f"Parsing {script_path}...")
    program = parser.parse_file(script_path)
    statements = program['value']['body']

    print(f"\nParsed {len(statements)} top-level statements:")
    print("=" * 50)

    for i, node in enumerate(statements, 1):
      print(f"\nStatement {i}:")
      print(pretty_print_ast(node))

  except (FileNotFoundError, PermissionError, UnicodeDecodeError) as e:
    fail_reading(script_path, e)
  except VernacularLexError as e:
    print(f"{e}")
    sys.exit(1)
  except VernacularParseError as e:
    print(f"Error in '{script_path}':\n{e}")
    sys.exit(1)


def print_runtime_error(e: VernacularRuntimeError, where: str, debug: bool = False,
                        session: Optional[InterpreterSession] = None) -> None:
  print(f"\n{'='*70}")
  print(f"Runtime Error in {where}")
  print(f"{'='*70}")
  print(f"\n{e.kind}: {e.message}")

  if e.span:
    print(f"\nLocation: {e.span}")
    if e.span.text:
      print(f"\nSource:")
      print(f"  {e.span.text}")
      print(f"  {'~' * len(e.span.text)}")

  if e.call_stack:
    print(f"\nCall stack (most recent call last):")
    for frame in e.call_stack:
      print(f"  in {frame}")

  if debug and session is not None:
    lines = describe_bindings(session.global_env['bindings'])
    if lines:
      print(f"\nGlobals at error:")
      for line in lines:
        print(line)

  print(f"\n{'='*70}\n")


def run_script_file(script_path: str, debug: bool = False, no_fetch: bool = False) -> None:
  """Run a Vernacular script file"""
  session = None
  try:
    parser = create_debug_parser() if debug else create_parser()
    if debug:
      print(f"Parsing {script_path}...")
    program = parser.parse_file(script_path)
    if debug:
      print(f"Parsed {len(program['value']['body'])} statements")

    session = make_session(debug, no_fetch)
    result = session.execute(program)

    if debug:
      print(f"Program finished with {display_value(result.value, True)}")
      print(f"\nFinal globals ({len(result.bindings)} bindings):")
      for line in describe_bindings(session.global_env['bindings']):
        print(line)

  except (FileNotFoundError, PermissionError, UnicodeDecodeError) as e:
    fail_reading(script_path, e)
  except VernacularLexError as e:
    print(f"{e}")
    sys.exit(1)
  except VernacularParseError as e:
    print(f"Error in '{script_path}':\n{e}")
    sys.exit(1)
  except VernacularRuntimeError as e:
    print_runtime_error(e, f"'{script_path}'", debug, session)
    sys.exit(1)
  finally:
    if session is not None:
      session.close()


def setup_readline():
  """Setup readline with history and auto-completion"""
  if not READLINE_AVAILABLE:
    return

  history_file = os.path.expanduser("~/.vernacular_history")
  try:
    readline.read_history_file(history_file)
  except OSError:
    pass  # First time, no history yet, or permission denied

  readline.set_history_length(1000)

  completions = sorted(KEYWORDS) + list_builtin_functions() + ["http.fetch"] + REPL_COMMANDS

  def completer(text, state):
    options = [cmd for cmd in completions if cmd.startswith(text)]
    if state < len(options):
      return options[state]
    return None

  readline.set_completer(completer)
  readline.parse_and_bind("tab: complete")

  import atexit
  atexit.register(lambda: readline.write_history_file(history_file))


def show_repl_help() -> None:
  print("Commands:")
  print("  .exit          Quit")
  print("  .load <path>   Run a script in this session")
  print("  .env           Show global bindings")
  print("  .tokens <code> Show tokens for a line")
  print("  .ast <code>    Show the AST for a line")
  print("  .help          Show this message")
  print("End a line with ':' to open a block; finish it with an empty line.")
  print("End a line with '\\' to continue it on the next line.")


def read_entry(first_line: str) -> str:
  """Gather continuation lines for blocks and backslash-continued lines"""
  lines: List[str] = [first_line]
  if first_line.rstrip().endswith(':'):
    while True:
      line = input("... ")
      if not line.strip():
        break
      lines.append(line)
  else:
    while lines[-1].rstrip().endswith('\\'):
      lines.append(input("... "))
  return "\n".join(lines) + "\n"


def show_result(result) -> None:
  value = result.value
  if value['type'] != "Void":
    print(f"=> {display_value(value, True)} : {runtime_tag(value)}")


def run_interactive_mode(debug: bool = False, no_fetch: bool = False) -> None:
  """Run Vernacular in interactive mode; globals persist between entries"""
  print(f"Vernacular Runtime v{VERSION}")
  print("'.exit' is quit, '.load' is load, or enter code directly.")
  if debug:
    print("Debug mode enabled")
  print()

  setup_readline()

  parser = create_debug_parser() if debug else create_parser()
  session = make_session(debug, no_fetch)

  try:
    while True:
      try:
        line = input("> ")
        command = line.strip()
        if not command:
          continue

        if command == ".exit":
          print("Goodbye!")
          break
        if command == ".help":
          show_repl_help()
          continue
        if command == ".env":
          lines = describe_bindings(session.global_env['bindings'], limit=50)
          print("\n".join(lines) if lines else "(no bindings)")
          continue
        if command.startswith(".load"):
          path = command[len(".load"):].strip()
          if not path:
            print("Usage: .load <path>")
            continue
          show_result(session.execute(parser.parse_file(path)))
          continue
        if command.startswith(".tokens"):
          print(format_tokens(parser.tokenize(command[len(".tokens"):].strip() + "\n")))
          continue
        if command.startswith(".ast"):
          program = parser.parse_string(command[len(".ast"):].strip() + "\n")
          for node in program['value']['body']:
            print(pretty_print_ast(node))
          continue

        source = read_entry(line)
        show_result(session.execute(parser.parse_string(source, "<repl>")))

      except (FileNotFoundError, PermissionError, UnicodeDecodeError) as e:
        print(f"Error: {e}")
      except VernacularLexError as e:
        print(f"{e}")
      except VernacularParseError as e:
        print(f"{e}")
      except VernacularRuntimeError as e:
        print_runtime_error(e, "<repl>", debug, session)
      except KeyboardInterrupt:
        print("\nGoodbye!")
        break
      except EOFError:
        print("\nGoodbye!")
        break
  finally:
    session.close()


def show_language_info() -> None:
  """Show Vernacular language information"""
  print("Vernacular Programming Language")
  print("=" * 50)
  print("An indentation-structured scripting language with:")
  print("• Declared and inferred types")
  print("• Objects with single inheritance")
  print("• Pattern matching and collection transforms")
  print("• Generators and async Jobs")
  print("• Host operations such as http.fetch")
  print()


def main() -> None:
  """Main entry point for Vernacular"""
  arg_parser = create_arg_parser()
  args = arg_parser.parse_args()

  if len(sys.argv) == 1:
    run_interactive_mode()
    return

  if args.script:
    if not Path(args.script).exists():
      print(f"Error: Script file '{args.script}' does not exist")
      sys.exit(1)

    if args.tokens:
      tokenize_file(args.script, debug=args.debug)
    elif args.parse:
      parse_file(args.script, debug=args.debug)
    else:
      run_script_file(args.script, debug=args.debug, no_fetch=args.no_fetch)

  elif args.interactive:
    run_interactive_mode(debug=args.debug, no_fetch=args.no_fetch)

  else:
    arg_parser.print_help()
    print()
    show_language_info()


if __name__ == "__main__":
  main()

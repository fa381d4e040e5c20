"""Interactive REPL for FQL (Form Query Language)."""

from __future__ import annotations

import argparse
import asyncio
import re
import readline  # noqa: F401 - enables line editing in input()
import sys
from pathlib import Path
from typing import Any

from form_query.config import Settings, get_settings
from form_query.control_flow import LoopContext
from form_query.datasource import InMemoryDataSource
from form_query.executor import (
    BlockResult,
    FunctionResult,
    InsertResult,
    QueryExecutor,
    QueryResult,
    UpdateResult,
    VariableResult,
)
from form_query.identifiers import split_statements
from form_query.logging_config import configure_logging

_QUOTED = re.compile(r"'(?:[^']|'')*'|\"[^\"]*\"|`[^`]*`")
_OPENERS = re.compile(r"\b(?:BEGIN|CASE)\b", re.IGNORECASE)
_CLOSERS = re.compile(r"\bEND\b", re.IGNORECASE)


def format_value(value: Any, max_items: int = 10, max_width: int = 40) -> str:
    """Format a value for display.

    Args:
        value: The value to format
        max_items: Maximum number of list items to show before eliding
        max_width: Maximum character width before truncating
    """
    if value is None:
        return "NULL"
    elif isinstance(value, bool):
        return "true" if value else "false"
    elif isinstance(value, int):
        return str(value)
    elif isinstance(value, float):
        return f"{value:.6g}"
    elif isinstance(value, str):
        if len(value) > max_width:
            return value[:max_width - 3] + "..."
        return value
    elif isinstance(value, list):
        formatted = []
        for i, v in enumerate(value):
            if i >= max_items:
                remaining = len(value) - max_items
                formatted.append(f"...+{remaining} more")
                break
            formatted.append(format_value(v, max_items, max_width))

        result = "[" + ", ".join(formatted) + "]"
        if len(result) > max_width:
            return result[:max_width - 4] + "...]"
        return result
    elif isinstance(value, dict):
        pairs = ", ".join(f"{k}: {format_value(v, max_items, max_width)}" for k, v in value.items())
        result = "{" + pairs + "}"
        if len(result) > max_width:
            return result[:max_width - 4] + "...}"
        return result
    else:
        s = str(value)
        if len(s) > max_width:
            return s[:max_width - 3] + "..."
        return s


def print_result(result: QueryResult) -> None:
    """Print a statement result as a formatted table."""
    # Write statements report partial failures next to their counts
    if isinstance(result, (UpdateResult, InsertResult)):
        print(result.message)
        for error in result.errors:
            print(f"  failed: {error}")
        return

    if result.errors:
        for error in result.errors:
            print(f"Error: {error}")
        return

    if isinstance(result, FunctionResult):
        print(result.message)
        return

    if isinstance(result, VariableResult):
        print(f"@{result.var_name} = {format_value(result.value)}")
        return

    if isinstance(result, BlockResult):
        for inner in result.results:
            if not isinstance(inner, VariableResult):
                print_result(inner)
        if result.iterations:
            print(f"(loop ran {result.iterations} time{'s' if result.iterations != 1 else ''})")
        return

    if not result.rows:
        print("(no results)")
        return

    # Calculate column widths
    col_widths = [len(col) for col in result.columns]
    for row in result.rows:
        for i, value in enumerate(row):
            col_widths[i] = max(col_widths[i], len(format_value(value)))

    # Cap column widths
    max_col_width = 40
    col_widths = [min(w, max_col_width) for w in col_widths]

    # Print header
    header = " | ".join(col.ljust(w)[:w] for col, w in zip(result.columns, col_widths))
    print(header)
    print("-" * len(header))

    # Print rows
    for row in result.rows:
        values = []
        for value, w in zip(row, col_widths):
            val = format_value(value)
            if len(val) > w:
                val = val[: w - 3] + "..."
            values.append(val.ljust(w))
        print(" | ".join(values))

    print(f"\n({len(result.rows)} row{'s' if len(result.rows) != 1 else ''})")


def needs_continuation(text: str) -> bool:
    """Check if we need more input for this statement.

    A statement is complete when it ends with a semicolon outside any
    BEGIN/CASE ... END block and with balanced parentheses.
    """
    stripped = text.strip()
    if not stripped:
        return False
    if not stripped.endswith(";"):
        return True
    bare = _QUOTED.sub("''", stripped)
    if bare.count("(") != bare.count(")"):
        return True
    return len(_OPENERS.findall(bare)) > len(_CLOSERS.findall(bare))


def load_source(data_file: Path | None) -> InMemoryDataSource:
    if data_file is None:
        return InMemoryDataSource()
    return InMemoryDataSource.from_file(data_file)


def run_repl(data_file: Path | None, settings: Settings) -> int:
    """Run the interactive REPL."""
    print("FQL REPL - Form Query Language")
    if data_file:
        print(f"Data file: {data_file}")
    else:
        print("No data file loaded; working on an empty in-memory store.")
    print("Type 'help' for commands, 'exit' to quit.\n")

    try:
        source = load_source(data_file)
    except Exception as e:
        print(f"Error loading data: {e}", file=sys.stderr)
        return 1

    executor = QueryExecutor(source, settings=settings)
    context = LoopContext()

    # Command history
    history_file = settings.history_file
    try:
        readline.read_history_file(history_file)
    except (FileNotFoundError, OSError):
        pass

    buffer: list[str] = []
    try:
        while True:
            try:
                line = input("fql> " if not buffer else "...> ")
            except EOFError:
                print()
                break

            if not buffer:
                command = line.strip().rstrip(";").strip().lower()
                if not command:
                    continue
                if command in ("exit", "quit"):
                    break
                if command == "help":
                    print_help()
                    continue
                if command == "functions":
                    functions = executor.functions.list_functions()
                    for function in functions:
                        print(function.signature)
                    if not functions:
                        print("(no functions)")
                    continue
                if command.startswith("drop function "):
                    name = command[len("drop function "):].strip()
                    if executor.functions.drop(name):
                        print(f"Function {name.upper()} dropped")
                    else:
                        print(f"Function {name.upper()} is not defined")
                    continue
                if command in ("vars", "variables"):
                    for name, value in context.variables.items():
                        print(f"@{name} = {format_value(value)}")
                    if not context.variables:
                        print("(no variables)")
                    continue
                if command == "save":
                    if data_file is None:
                        print("No data file loaded")
                    else:
                        source.save(data_file)
                        print(f"Saved to {data_file}")
                    continue

            buffer.append(line)
            text = "\n".join(buffer)
            if needs_continuation(text):
                continue
            buffer = []

            for statement in split_statements(text):
                try:
                    result = asyncio.run(executor.run(statement, context))
                    print_result(result)
                except Exception as e:
                    print(f"Error: {e}")
            print()

    finally:
        try:
            readline.set_history_length(1000)
            readline.write_history_file(history_file)
        except OSError:
            pass

    return 0


def print_help() -> None:
    """Print help information."""
    print("""
FQL - Form Query Language

QUERIES:
  SELECT <items> FROM '<form-uuid>' [WHERE ...] [GROUP BY ...] [HAVING ...]
         [ORDER BY ... [ASC|DESC]] [LIMIT n] [OFFSET n];
  SELECT * FROM users | groups | forms | form_fields | projects;

  Fields are referenced by UUID ("<uuid>" or FIELD('<uuid>')) or by label.
  System columns: submission_id, submission_ref_id, submitted_by,
  submitted_at, form_id.

WRITES:
  UPDATE FORM '<form-uuid>' SET FIELD('<field-uuid>') = <expr> WHERE <cond>;
  INSERT INTO FORM '<form-uuid>' ("<field>", ...) VALUES (...), (...);
  INSERT INTO FORM '<form-uuid>' ("<field>", ...) SELECT ...;

SCRIPTING:
  DECLARE @name TYPE [= value];
  SET @name = <expr>;
  IF <cond> BEGIN ... END [ELSE IF <cond> BEGIN ... END] [ELSE BEGIN ... END];
  WHILE <cond> BEGIN ... END;
  CREATE FUNCTION name(@p TYPE, ...) RETURNS TYPE AS BEGIN ... RETURN <expr>; END;

COMMANDS:
  functions                List user-defined functions
  drop function <name>     Remove a user-defined function
  vars                     Show session variables
  save                     Write the in-memory store back to the data file
  help                     Show this help
  exit, quit               Leave the REPL
""")


def run_file(file_path: Path, data_file: Path | None, settings: Settings, verbose: bool = False) -> int:
    """Execute statements from a file.

    Args:
        file_path: Path to the file containing statements
        data_file: Optional JSON fixture to run against
        settings: Runtime settings
        verbose: If True, print each statement before executing

    Returns:
        0 on success, 1 on error
    """
    try:
        content = file_path.read_text()
    except Exception as e:
        print(f"Error reading file: {e}", file=sys.stderr)
        return 1

    statements = split_statements(content)
    if not statements:
        print("No statements found in file", file=sys.stderr)
        return 1

    try:
        source = load_source(data_file)
    except Exception as e:
        print(f"Error loading data: {e}", file=sys.stderr)
        return 1

    executor = QueryExecutor(source, settings=settings)
    context = LoopContext()

    async def run_all() -> int:
        for statement in statements:
            if verbose:
                print(f"fql> {statement};")
            result = await executor.run(statement, context)
            print_result(result)
            if result.errors and not isinstance(result, (UpdateResult, InsertResult)):
                return 1
        return 0

    return asyncio.run(run_all())


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    settings = get_settings()

    arg_parser = argparse.ArgumentParser(
        description="Interactive REPL for the Form Query Language"
    )
    arg_parser.add_argument(
        "data_file",
        type=Path,
        nargs="?",
        default=settings.data_file,
        help="JSON fixture with forms, fields and submissions (optional)",
    )
    arg_parser.add_argument(
        "-c", "--command",
        type=str,
        help="Execute a single statement and exit",
    )
    arg_parser.add_argument(
        "-f", "--file",
        type=Path,
        help="Execute statements from a file and exit",
    )
    arg_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Print each statement before executing (for -f/--file)",
    )
    arg_parser.add_argument(
        "--log-level",
        default=settings.log_level,
        help="Logging level (default: %(default)s)",
    )

    args = arg_parser.parse_args(argv)
    configure_logging(args.log_level)

    if args.data_file and not args.data_file.exists():
        print(f"Error: Data file not found: {args.data_file}", file=sys.stderr)
        return 1

    if args.file:
        if not args.file.exists():
            print(f"Error: File not found: {args.file}", file=sys.stderr)
            return 1
        return run_file(args.file, args.data_file, settings, args.verbose)

    if args.command:
        try:
            source = load_source(args.data_file)
            executor = QueryExecutor(source, settings=settings)
            result = asyncio.run(executor.run(args.command))
        except Exception as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        print_result(result)
        return 1 if result.errors and not isinstance(result, (UpdateResult, InsertResult)) else 0

    return run_repl(args.data_file, settings)


if __name__ == "__main__":
    sys.exit(main())

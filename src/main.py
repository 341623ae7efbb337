#!/usr/bin/env python3

# Entry of gesh

from __future__ import annotations

import argparse
import os
import sys
from typing import Optional

try:
    import readline  # type: ignore
except Exception:  # pragma: no cover - fallback when readline unavailable
    readline = None

READLINE_ACTIVE = bool(readline)

PROMPT_SUFFIX = "$ "
HISTORY_ENV = "GESH_HISTFILE"
DEFAULT_HISTORY = "~/.gesh_history"

from command import ShellExit  # local modules in the same folder
from ops import ShellSession, execute_line


def history_path(override: Optional[str] = None) -> str:
    """Pick the history file: explicit path, then $GESH_HISTFILE, then the default."""
    return os.path.expanduser(override or os.environ.get(HISTORY_ENV) or DEFAULT_HISTORY)


def setup_readline(history_file: Optional[str] = None) -> None:
    if not READLINE_ACTIVE:
        return
    try:
        readline.parse_and_bind("set editing-mode emacs")
        readline.parse_and_bind("Control-l: clear-screen")
    except Exception:
        pass
    if history_file:
        try:
            readline.read_history_file(history_file)
        except OSError:
            # First run, or an unreadable file: start with empty history
            pass


def save_history(history_file: Optional[str]) -> None:
    if not READLINE_ACTIVE or not history_file:
        return
    try:
        readline.write_history_file(history_file)
    except OSError as e:
        sys.stderr.write(f"gesh: could not save history: {e}\n")
        sys.stderr.flush()


def prompt_for(session: ShellSession) -> str:
    return session.cwd + PROMPT_SUFFIX


def run_line(line: str, session: ShellSession) -> int:
    """Run one line outside the REPL; `exit` becomes the returned status."""
    try:
        return execute_line(line, session)
    except ShellExit as e:
        return e.code


def repl(session: ShellSession, history_file: Optional[str] = None) -> int:
    setup_readline(history_file)

    last_status = 0
    try:
        while True:
            try:
                line = input(prompt_for(session))
            except EOFError:
                # Ctrl-D on empty line -> exit
                print()
                break
            except KeyboardInterrupt:
                # Ctrl-C at prompt -> new line and continue
                print()
                continue

            try:
                last_status = execute_line(line, session)
            except ShellExit as e:
                return e.code
            except Exception as e:
                sys.stderr.write(f"gesh: error: {e}\n")
                sys.stderr.flush()
                last_status = 1
    finally:
        save_history(history_file)

    # If loop exits via EOF, return the last exit code we saw.
    return last_status


def parse_args(args=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="gesh - a small interactive shell",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  gesh                          # Interactive prompt
  gesh -c 'echo "${HOME}"'      # Run one line and exit
  gesh --strict                 # Unset variables are errors
""",
    )

    parser.add_argument(
        "-c",
        dest="command",
        metavar="COMMAND",
        help="Run COMMAND as a single line and exit with its status",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Treat references to unset variables as errors",
    )
    parser.add_argument(
        "--history",
        metavar="PATH",
        help=f"History file (default: ${HISTORY_ENV} or {DEFAULT_HISTORY})",
    )

    return parser.parse_args(args)


def main() -> None:
    args = parse_args()
    session = ShellSession(inherit_env=True, strict=args.strict)
    if args.command is not None:
        sys.exit(run_line(args.command, session))
    sys.exit(repl(session, history_path(args.history)))


if __name__ == "__main__":
    main()

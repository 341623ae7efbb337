from __future__ import annotations

import copy
import os
import sys
from typing import Dict, Iterable, List, Optional, Set

from command import Registry
from expand import ExpansionError, expand, expand_one
from geshl import Command, ParseError, SetVariable, SetVariables, parse


class ShellSession:
    """Holds session-wide shell context: variables, exports, and directories."""

    def __init__(self, inherit_env: bool = True, strict: bool = False, cwd: Optional[str] = None) -> None:
        # Every variable the shell knows; only names in `exported` reach child processes
        self.env: Dict[str, str] = dict(os.environ) if inherit_env else {}
        self.exported: Set[str] = set(self.env)
        self.cwd: str = os.path.realpath(cwd or os.getcwd())
        self.dir_stack: List[str] = []
        # Unset variables are errors instead of expanding to ''
        self.strict: bool = strict

    # --- variable helpers ---
    def get_var(self, name: str) -> Optional[str]:
        return self.env.get(name)

    def set_var(self, name: str, value: str) -> None:
        self.env[name] = value

    def export(self, name: str) -> None:
        self.exported.add(name)

    def exported_env(self) -> Dict[str, str]:
        return {name: value for name, value in self.env.items() if name in self.exported}

    def paths(self) -> List[str]:
        return [p for p in self.env.get("PATH", "").split(os.pathsep) if p]

    def set_cwd(self, path: str) -> None:
        self.cwd = path
        self.env["PWD"] = path

    def copy(self) -> "ShellSession":
        """A detached copy for variables that only apply to one command."""
        clone = copy.copy(self)
        clone.env = dict(self.env)
        clone.exported = set(self.exported)
        clone.dir_stack = list(self.dir_stack)
        return clone


REGISTRY = Registry()


def assign(variables: Iterable[SetVariable], session: ShellSession, *, export: bool = False) -> None:
    # Each value sees the assignments made before it on the same line
    for var in variables:
        session.set_var(var.name, expand_one(var.value, session.get_var, strict=session.strict))
        if export:
            session.export(var.name)


def run_command(cmd: Command, session: ShellSession, registry: Optional[Registry] = None) -> int:
    registry = registry or REGISTRY
    # Arguments are expanded before the command's own variables are applied
    args = expand(cmd.args, session.get_var, cwd=session.cwd, strict=session.strict)
    if not args:
        return 0
    target = session
    if cmd.vars:
        target = session.copy()
        assign(cmd.vars, target, export=True)
    return registry.execute(args[0], args[1:], target, cmd.redirects)


def execute_line(line: str, session: ShellSession, registry: Optional[Registry] = None) -> int:
    """Parse and run one line of input, returning its exit status.

    A line that does not parse runs nothing at all.
    """
    try:
        parsed = parse(line)
    except ParseError as e:
        sys.stderr.write(f"gesh: parse error: {e}\n")
        sys.stderr.flush()
        return 2

    try:
        if isinstance(parsed, SetVariables):
            assign(parsed.vars, session)
            return 0
        if isinstance(parsed, Command):
            return run_command(parsed, session, registry)
        return 0
    except ExpansionError as e:
        sys.stderr.write(f"gesh: {e}\n")
        sys.stderr.flush()
        return 1
    except (OSError, ValueError) as e:
        # Redirect files that cannot be opened, unsupported redirect forms
        sys.stderr.write(f"gesh: {e}\n")
        sys.stderr.flush()
        return 1

# module for command execution

from __future__ import annotations

import os
import shutil
import subprocess
import sys
from contextlib import ExitStack
from dataclasses import dataclass
from typing import IO, TYPE_CHECKING, Callable, Dict, Iterable, List, Optional

from expand import expand_one
from geshl import DescriptorNode, FileNode, ParseError, Redirect, RedirectNode, RedirectType, var_name

if TYPE_CHECKING:
    from ops import ShellSession


class ShellExit(Exception):
    """Raised by the ``exit`` builtin to end the shell with ``code``."""

    def __init__(self, code: int = 0) -> None:
        super().__init__(code)
        self.code = code


@dataclass
class Context:
    """What a builtin gets to work with: session, arguments, and streams."""
    session: "ShellSession"
    args: List[str]
    stdin: Optional[IO] = None
    stdout: Optional[IO] = None
    stderr: Optional[IO] = None

    def out(self, text: str) -> None:
        stream = self.stdout or sys.stdout
        stream.write(text.encode() if "b" in getattr(stream, "mode", "") else text)
        stream.flush()

    def err(self, text: str) -> None:
        stream = self.stderr or sys.stderr
        stream.write(text.encode() if "b" in getattr(stream, "mode", "") else text)
        stream.flush()


Builtin = Callable[[Context], int]


# ---- Redirects ----

@dataclass
class Streams:
    stdin: Optional[IO] = None
    stdout: Optional[IO] = None
    stderr: Optional[IO] = None


def _file_path(node: FileNode, session: "ShellSession") -> str:
    target = expand_one(node.path, session.get_var, strict=session.strict)
    return os.path.join(session.cwd, target)


def _source_fd(node: Optional[RedirectNode]) -> int:
    if node is None:
        return 1
    if isinstance(node, DescriptorNode) and node.fd in (1, 2):
        return node.fd
    raise ValueError("only stdout (1) and stderr (2) can be redirected for output")


def open_redirects(redirects: Iterable[Redirect], session: "ShellSession", stack: ExitStack) -> Streams:
    """Open the files named by ``redirects``; they close with ``stack``.

    Supports ``<file``, ``[n]>file``, ``[n]>>file``, ``2>&1`` and ``1>&2``.
    """
    streams = Streams()
    for r in redirects:
        if r.type is RedirectType.IN:
            if not isinstance(r.from_, FileNode):
                raise ValueError("input redirection requires a file")
            if r.to is not None and r.to != DescriptorNode(0):
                raise ValueError("input can only be redirected into stdin (0)")
            streams.stdin = stack.enter_context(open(_file_path(r.from_, session), "rb"))
            continue

        fd = _source_fd(r.from_)
        if r.to is None:
            raise ValueError(f"missing target for '{r.type.value}'")
        if isinstance(r.to, FileNode):
            mode = "ab" if r.type is RedirectType.OUT_APPEND else "wb"
            stream = stack.enter_context(open(_file_path(r.to, session), mode))
        elif isinstance(r.to, DescriptorNode) and r.to.fd == 1:
            stream = streams.stdout or sys.stdout
        elif isinstance(r.to, DescriptorNode) and r.to.fd == 2:
            stream = streams.stderr or sys.stderr
        else:
            raise ValueError(f"unsupported redirection target: {r.to!r}")

        if fd == 1:
            streams.stdout = stream
        else:
            streams.stderr = stream
    return streams


# ---- Executables ----

def _is_executable(path: str) -> bool:
    return os.path.isfile(path) and os.access(path, os.X_OK)


def find_executable(name: str, session: "ShellSession") -> Optional[str]:
    """Locate ``name``: absolute paths as-is, paths with a separator relative
    to the working directory, bare names on PATH then in the working directory.
    """
    if os.path.isabs(name):
        return name if _is_executable(name) else None
    in_cwd = os.path.join(session.cwd, name)
    if os.sep in name or (os.altsep and os.altsep in name):
        return in_cwd if _is_executable(in_cwd) else None
    search_path = os.pathsep.join(session.paths())
    if search_path:
        found = shutil.which(name, mode=os.F_OK | os.X_OK, path=search_path)
        if found:
            return found
    return in_cwd if _is_executable(in_cwd) else None


def run_executable(path: str, argv: List[str], session: "ShellSession", streams: Streams) -> int:
    try:
        completed = subprocess.run(
            argv,
            executable=path,
            env=session.exported_env(),
            cwd=session.cwd,
            stdin=streams.stdin,
            stdout=streams.stdout,
            stderr=streams.stderr,
        )
    except KeyboardInterrupt:
        # SIGINT during command
        return 130
    except OSError as e:
        sys.stderr.write(f"gesh: {argv[0]}: {e.strerror or e}\n")
        sys.stderr.flush()
        return 126
    return completed.returncode


# ---- Builtins ----

def _change_directory(ctx: Context, name: str, target: str) -> int:
    new_dir = os.path.realpath(os.path.join(ctx.session.cwd, target))
    if not os.path.isdir(new_dir):
        ctx.err(f"gesh: {name}: no such directory: {target}\n")
        return 1
    ctx.session.set_cwd(new_dir)
    return 0


def cd(ctx: Context) -> int:
    if len(ctx.args) > 1:
        ctx.err("gesh: cd: too many arguments\n")
        return 1
    if ctx.args:
        target = ctx.args[0]
    else:
        target = ctx.session.get_var("HOME") or os.path.expanduser("~")
    return _change_directory(ctx, "cd", target)


def pushd(ctx: Context) -> int:
    if len(ctx.args) != 1:
        ctx.err("gesh: pushd: usage: pushd DIR\n")
        return 1
    previous = ctx.session.cwd
    rc = _change_directory(ctx, "pushd", ctx.args[0])
    if rc == 0:
        ctx.session.dir_stack.append(previous)
    return rc


def popd(ctx: Context) -> int:
    if not ctx.session.dir_stack:
        ctx.err("gesh: popd: directory stack empty\n")
        return 1
    return _change_directory(ctx, "popd", ctx.session.dir_stack.pop())


def dirs(ctx: Context) -> int:
    # Current directory first, then the stack from most recent push
    ctx.out(" ".join([ctx.session.cwd, *reversed(ctx.session.dir_stack)]) + "\n")
    return 0


def export(ctx: Context) -> int:
    session = ctx.session
    if not ctx.args:
        for name in sorted(session.exported):
            if name in session.env:
                ctx.out(f"export {name}={session.env[name]}\n")
        return 0
    rc = 0
    for arg in ctx.args:
        name, sep, value = arg.partition("=")
        if not is_valid_name(name):
            ctx.err(f"gesh: export: not a valid identifier: {name}\n")
            rc = 1
            continue
        if sep:
            session.set_var(name, value)
        session.export(name)
    return rc


def exit_(ctx: Context) -> int:
    if not ctx.args:
        raise ShellExit(0)
    try:
        code = int(ctx.args[0])
    except ValueError:
        code = 255
    raise ShellExit(code)


def exec_(ctx: Context) -> int:
    """Replace the shell with the given command; with no command do nothing."""
    if not ctx.args:
        return 0
    path = find_executable(ctx.args[0], ctx.session)
    if path is None:
        ctx.err(f"gesh: exec: command not found: {ctx.args[0]}\n")
        return 127
    sys.stdout.flush()
    sys.stderr.flush()
    os.chdir(ctx.session.cwd)
    os.execve(path, ctx.args, ctx.session.exported_env())
    return 126  # pragma: no cover - execve does not return


def is_valid_name(name: str) -> bool:
    # Same rule the parser applies to NAME=value
    try:
        _, end = var_name(name + "\n", 0)
    except ParseError:
        return False
    return end == len(name)


BUILTINS: Dict[str, Builtin] = {
    "cd": cd,
    "dirs": dirs,
    "exec": exec_,
    "exit": exit_,
    "export": export,
    "popd": popd,
    "pushd": pushd,
}


class Registry:
    """Entry point for running a command: builtins first, then executables."""

    def __init__(self, builtins: Optional[Dict[str, Builtin]] = None) -> None:
        self.builtins: Dict[str, Builtin] = dict(BUILTINS if builtins is None else builtins)

    def register(self, name: str, handler: Builtin) -> None:
        self.builtins[name] = handler

    def find_executable(self, name: str, session: "ShellSession") -> Optional[str]:
        return find_executable(name, session)

    def execute(
        self,
        name: str,
        args: List[str],
        session: "ShellSession",
        redirects: Iterable[Redirect] = (),
    ) -> int:
        with ExitStack() as stack:
            streams = open_redirects(redirects, session, stack)
            builtin = self.builtins.get(name)
            if builtin is not None:
                return builtin(Context(session, list(args), streams.stdin, streams.stdout, streams.stderr))
            path = self.find_executable(name, session)
            if path is None:
                Context(session, [], stderr=streams.stderr).err(f"gesh: command not found: {name}\n")
                return 127
            return run_executable(path, [name, *args], session, streams)

"""Line parser for gesh.

Turns one line of input into a structured ``ParsedLine``: nothing at all, a
set of ``NAME=value`` assignments, or a command with optional assignment
prefix, arguments, and I/O redirects.

Each grammar production is a plain function ``production(line, i)`` that
returns ``(value, next_index)`` or raises. Two failure kinds exist:

- ``_Backtrack``: the production does not match here; the caller may try an
  alternative.
- ``ParseError``: the input started a construct that cannot be finished (an
  unterminated quote, a bad ``${...}``). Nothing else could consume it, so the
  whole line is rejected immediately.

Arguments are made of fragments fused without whitespace, so
``foo/'bar'/"${HOME}"`` is one argument of four pieces.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple, Union

from shellstring import Fixed, Glob, Piece, ShellString, Variable


# ---- Errors ----

class ParseError(ValueError):
    """The line is not valid gesh; it must be rejected as a whole."""

    def __init__(self, expected: str = "valid input", offset: int = 0) -> None:
        super().__init__(f"expected {expected} at offset {offset}")
        self.expected = expected
        self.offset = offset


class _Backtrack(ParseError):
    """A production did not match at this position."""


# ---- Parsed line model ----

class RedirectType(Enum):
    IN = "<"
    OUT_TRUNCATE = ">"
    OUT_APPEND = ">>"


@dataclass(frozen=True)
class FileNode:
    path: ShellString


@dataclass(frozen=True)
class DescriptorNode:
    fd: int


RedirectNode = Union[FileNode, DescriptorNode]


@dataclass(frozen=True)
class Redirect:
    """An I/O redirect with its operands normalized into source and target.

    ``from_`` is where data comes from and ``to`` is where it goes, whichever
    side of the operator each was written on.
    """
    from_: Optional[RedirectNode]
    to: Optional[RedirectNode]
    type: RedirectType


@dataclass(frozen=True)
class SetVariable:
    name: str
    value: ShellString


@dataclass(frozen=True)
class Empty:
    """A line with nothing to do."""


@dataclass(frozen=True)
class SetVariables:
    vars: Tuple[SetVariable, ...]


@dataclass(frozen=True)
class Command:
    """A command to run.

    ``vars`` only apply while this command runs; ``args[0]`` is the command
    name.
    """
    vars: Tuple[SetVariable, ...] = ()
    args: Tuple[ShellString, ...] = ()
    redirects: Tuple[Redirect, ...] = ()


ParsedLine = Union[Empty, SetVariables, Command]

Production = Callable[[str, int], Tuple[ShellString, int]]


# ---- Character classes ----

_PATH_SEPARATORS = {"/", os.sep} | ({os.altsep} if os.altsep else set())
_PATH_PUNCTUATION = set("~-_.=")
_SPACE = (" ", "\t")

# Escape targets inside "..." strings; anything else after a backslash is an error.
_DOUBLE_QUOTE_ESCAPES: Dict[str, str] = {
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "\\": "\\",
    '"': '"',
    "'": "'",
}
# Inside '...' only these are escapes; other backslashes are literal text.
_SINGLE_QUOTE_ESCAPES = ("\\", "'")

# Tried in order: '**' must come before '*', and the bracket forms with a
# literal ']' before the general bracket class.
_SIMPLE_GLOBS = ("?", "**", "*", "[]]", "[!]]")

# Longest operator first so '>>' is never read as '>' followed by '>'.
_REDIRECT_OPERATORS: Tuple[Tuple[str, RedirectType], ...] = (
    (">>", RedirectType.OUT_APPEND),
    (">", RedirectType.OUT_TRUNCATE),
    ("<", RedirectType.IN),
)

# Which written operand (left/right of the operator) becomes the source and
# which becomes the target, per redirect type.
_OPERAND_ROLES: Dict[RedirectType, Tuple[str, str]] = {
    RedirectType.IN: ("right", "left"),
    RedirectType.OUT_TRUNCATE: ("left", "right"),
    RedirectType.OUT_APPEND: ("left", "right"),
}


def _is_path_char(ch: str) -> bool:
    return ch in _PATH_SEPARATORS or (ch.isascii() and ch.isalnum()) or ch in _PATH_PUNCTUATION


def _is_var_char(ch: str) -> bool:
    return ch.isascii() and (ch.isalnum() or ch == "_")


def _skip_space(line: str, i: int) -> int:
    while i < len(line) and line[i] in _SPACE:
        i += 1
    return i


def _at_end(line: str, i: int) -> bool:
    # The trailing '\n' is the end-of-line sentinel appended by parse().
    return i == len(line) - 1 and line[i] == "\n"


# ---- Names and variables ----

def var_name(line: str, i: int) -> Tuple[str, int]:
    """Parse ``[A-Za-z_][A-Za-z0-9_]*``."""
    if i >= len(line) or not _is_var_char(line[i]) or line[i].isdigit():
        raise _Backtrack("variable name", i)
    j = i + 1
    while j < len(line) and _is_var_char(line[j]):
        j += 1
    return line[i:j], j


def interpolated_env_var(line: str, i: int) -> Tuple[Variable, int]:
    """Parse ``${NAME}``; once ``$`` is seen the rest is mandatory."""
    if not line.startswith("$", i):
        raise _Backtrack("'$'", i)
    if not line.startswith("{", i + 1):
        raise ParseError("'{'", i + 1)
    try:
        name, j = var_name(line, i + 2)
    except _Backtrack as err:
        raise ParseError(err.expected, err.offset) from None
    if not line.startswith("}", j):
        raise ParseError("'}'", j)
    return Variable(name), j + 1


# ---- Argument fragments ----

def path(line: str, i: int) -> Tuple[ShellString, int]:
    """Parse a run of path characters.

    A leading ``~`` standing alone or before a separator becomes the HOME
    variable followed by the rest of the path.
    """
    j = i
    while j < len(line) and _is_path_char(line[j]):
        j += 1
    if j == i:
        raise _Backtrack("path", i)
    text = line[i:j]
    if text == "~" or (text.startswith("~") and text[1] in _PATH_SEPARATORS):
        pieces: List[Piece] = [Variable("HOME")]
        if len(text) > 1:
            pieces.append(Fixed(text[1:]))
        return ShellString(pieces), j
    return ShellString.of(text), j


def glob(line: str, i: int) -> Tuple[ShellString, int]:
    for pattern in _SIMPLE_GLOBS:
        if line.startswith(pattern, i):
            return ShellString.of(Glob(pattern)), i + len(pattern)
    if line.startswith("[", i):
        j = i + 1
        while j < len(line) and line[j] not in "]\n":
            j += 1
        if j > i + 1 and line.startswith("]", j):
            return ShellString.of(Glob(line[i:j + 1])), j + 1
    raise _Backtrack("glob", i)


def interpolated_string(line: str, i: int) -> Tuple[ShellString, int]:
    """Parse ``"..."`` with ``${NAME}`` interpolation and escapes."""
    if not line.startswith('"', i):
        raise _Backtrack("'\"'", i)
    pieces: List[Piece] = []
    buf: List[str] = []

    def flush() -> None:
        if buf:
            pieces.append(Fixed("".join(buf)))
            buf.clear()

    j = i + 1
    while True:
        if j >= len(line) or _at_end(line, j):
            raise ParseError("closing '\"'", j)
        ch = line[j]
        if ch == '"':
            break
        if ch == "$":
            flush()
            var, j = interpolated_env_var(line, j)
            pieces.append(var)
            continue
        if ch == "\\":
            escaped = line[j + 1:j + 2]
            if escaped not in _DOUBLE_QUOTE_ESCAPES:
                raise ParseError("escape sequence", j)
            buf.append(_DOUBLE_QUOTE_ESCAPES[escaped])
            j += 2
            continue
        buf.append(ch)
        j += 1
    flush()
    return ShellString(pieces), j + 1


def uninterpolated_string(line: str, i: int) -> Tuple[ShellString, int]:
    """Parse ``'...'``; only ``\\\\`` and ``\\'`` are escapes."""
    if not line.startswith("'", i):
        raise _Backtrack("\"'\"", i)
    buf: List[str] = []
    j = i + 1
    while True:
        if j >= len(line) or _at_end(line, j):
            raise ParseError("closing \"'\"", j)
        ch = line[j]
        if ch == "'":
            break
        if ch == "\\" and line[j + 1:j + 2] in _SINGLE_QUOTE_ESCAPES:
            buf.append(line[j + 1])
            j += 2
            continue
        buf.append(ch)
        j += 1
    text = "".join(buf)
    return (ShellString.of(text) if text else ShellString()), j + 1


_FRAGMENTS: Tuple[Production, ...] = (path, glob, interpolated_string, uninterpolated_string)


def piece(line: str, i: int) -> Tuple[ShellString, int]:
    """Parse one argument: one or more adjacent fragments fused together."""
    result = ShellString()
    j = i
    while True:
        for fragment in _FRAGMENTS:
            try:
                value, j = fragment(line, j)
            except _Backtrack:
                continue
            result = result + value
            break
        else:
            break
    if j == i:
        raise _Backtrack("argument", i)
    return result, j


# ---- Assignments ----

def set_variable(line: str, i: int) -> Tuple[SetVariable, int]:
    """Parse ``NAME=value``; a missing value is the empty string."""
    name, j = var_name(line, i)
    if not line.startswith("=", j):
        raise _Backtrack("'='", j)
    try:
        value, j = piece(line, j + 1)
    except _Backtrack:
        value, j = ShellString(), j + 1
    return SetVariable(name, value), j


def _separated(line: str, i: int) -> int:
    """Skip the whitespace after an element; it must be there unless the line ends."""
    j = _skip_space(line, i)
    if j == i and not _at_end(line, i):
        raise _Backtrack("whitespace", i)
    return j


def _assignment_prefix(line: str, i: int) -> Tuple[List[SetVariable], int]:
    variables: List[SetVariable] = []
    while True:
        try:
            var, j = set_variable(line, i)
        except _Backtrack:
            return variables, i
        variables.append(var)
        i = _separated(line, j)


def set_variables(line: str, i: int) -> Tuple[List[SetVariable], int]:
    """Parse one or more whitespace-separated assignments."""
    variables, j = _assignment_prefix(line, _skip_space(line, i))
    if not variables:
        raise _Backtrack("variable assignment", i)
    return variables, j


# ---- Redirects ----

def redirect_type(line: str, i: int) -> Tuple[RedirectType, int]:
    for operator, kind in _REDIRECT_OPERATORS:
        if line.startswith(operator, i):
            return kind, i + len(operator)
    raise _Backtrack("redirect operator", i)


def _digits_end(line: str, i: int) -> int:
    j = i
    while j < len(line) and line[j].isdigit():
        j += 1
    return j


def redirect_node_left(line: str, i: int) -> Tuple[Optional[RedirectNode], int]:
    """Parse an optional operand written before the operator: ``2`` or ``foo.txt``."""
    j = _digits_end(line, i)
    if j > i and line.startswith(("<", ">"), j):
        return DescriptorNode(int(line[i:j])), j
    try:
        value, j = path(line, i)
    except _Backtrack:
        return None, i
    return FileNode(value), j


def redirect_node_right(line: str, i: int) -> Tuple[Optional[RedirectNode], int]:
    """Parse an optional operand written after the operator: ``&1`` or a file."""
    if line.startswith("&", i):
        j = _digits_end(line, i + 1)
        if j == i + 1:
            raise ParseError("file descriptor", i + 1)
        return DescriptorNode(int(line[i + 1:j])), j
    try:
        value, j = piece(line, i)
    except _Backtrack:
        return None, i
    return FileNode(value), j


def redirect(line: str, i: int) -> Tuple[Redirect, int]:
    left, j = redirect_node_left(line, i)
    kind, j = redirect_type(line, j)
    if isinstance(left, FileNode) and kind is not RedirectType.IN:
        # 'foo>out' is the argument foo followed by '>out'
        raise _Backtrack("redirect", i)
    right, k = redirect_node_right(line, _skip_space(line, j))
    if right is not None:
        j = k
    operands = {"left": left, "right": right}
    source, target = _OPERAND_ROLES[kind]
    return Redirect(from_=operands[source], to=operands[target], type=kind), j


# ---- Lines ----

def command(line: str, i: int) -> Tuple[Command, int]:
    """Parse ``[NAME=value ...] name [arg ...] [redirect ...]``."""
    variables, j = _assignment_prefix(line, _skip_space(line, i))
    name, j = piece(line, j)
    args: List[ShellString] = [name]
    redirects: List[Redirect] = []
    while not _at_end(line, _skip_space(line, j)):
        k = _skip_space(line, j)
        try:
            found, j = redirect(line, k)
        except _Backtrack:
            pass
        else:
            redirects.append(found)
            continue
        if redirects:
            raise ParseError("redirect", k)
        if k == j:
            raise ParseError("whitespace", k)
        try:
            value, j = piece(line, k)
        except _Backtrack:
            raise ParseError("argument or redirect", k) from None
        args.append(value)
    j = _skip_space(line, j)
    return Command(vars=tuple(variables), args=tuple(args), redirects=tuple(redirects)), j


def parse_line(line: str, i: int = 0) -> Tuple[ParsedLine, int]:
    """Parse a newline-terminated line; returns the index of the sentinel."""
    try:
        return command(line, i)
    except _Backtrack:
        pass
    try:
        variables, j = set_variables(line, i)
    except _Backtrack:
        j = _skip_space(line, i)
        if _at_end(line, j):
            return Empty(), j
        raise
    return SetVariables(tuple(variables)), _skip_space(line, j)


def _terminated(line: str) -> str:
    return line if line.endswith("\n") else line + "\n"


def parse(line: str) -> ParsedLine:
    """Parse ``line`` into a ``ParsedLine``.

    Raises ``ParseError`` for anything that is not a complete, valid line.
    """
    line = _terminated(line)
    try:
        parsed, pos = parse_line(line)
    except _Backtrack as err:
        raise ParseError(err.expected, err.offset) from None
    if not _at_end(line, pos):
        raise ParseError("end of line", pos)
    return parsed


def parse_redirect(text: str) -> Redirect:
    """Parse a single redirect such as ``<foo.txt`` or ``2>&1``."""
    text = _terminated(text)
    try:
        found, pos = redirect(text, 0)
    except _Backtrack as err:
        raise ParseError(err.expected, err.offset) from None
    if not _at_end(text, pos):
        raise ParseError("end of redirect", pos)
    return found

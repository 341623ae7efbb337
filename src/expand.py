"""Expansion of parsed shell strings into concrete arguments.

Rules:
- Fixed text is used verbatim.
- Variables are looked up at expansion time; an unset variable expands to ''
  unless strict mode is requested.
- A string holding any glob piece is rendered (variables substituted) and the
  whole result is matched as one pattern against the filesystem, then replaced
  by its matches (zero or more, sorted). Wildcard characters coming from fixed
  text or variable values take part in the match unless ``quote=True``
  escapes everything but the glob pieces.
"""
from __future__ import annotations

import glob as _glob
import os
from typing import Iterable, List, Optional

from shellstring import Glob, ShellString, VarLookup, render_piece


class ExpansionError(LookupError):
    """Raised in strict mode when a referenced variable is unset."""

    def __init__(self, name: str) -> None:
        super().__init__(f"{name}: unset variable")
        self.name = name


def has_glob(string: ShellString) -> bool:
    return string.has_glob()


def _checked(lookup: VarLookup, strict: bool) -> VarLookup:
    if not strict:
        return lookup

    def strict_lookup(name: str) -> Optional[str]:
        value = lookup(name)
        if value is None:
            raise ExpansionError(name)
        return value

    return strict_lookup


def expand_one(string: ShellString, lookup: VarLookup, *, strict: bool = False) -> str:
    """Expand ``string`` to exactly one string; glob pieces stay as pattern text."""
    return string.render(_checked(lookup, strict))


def glob_pattern(string: ShellString, lookup: VarLookup, *, quote: bool = False) -> str:
    """The filesystem pattern for ``string``.

    By default this is just the rendered string. With ``quote`` set, text from
    fixed and variable pieces is escaped so only glob pieces are wildcards.
    """
    if not quote:
        return string.render(lookup)
    parts: List[str] = []
    for piece in string:
        if isinstance(piece, Glob):
            parts.append(piece.pattern)
        else:
            parts.append(_glob.escape(render_piece(piece, lookup)))
    return "".join(parts)


def match(pattern: str, cwd: Optional[str] = None) -> List[str]:
    """Filesystem matches for ``pattern``, relative to ``cwd`` when given.

    Dotfiles are only matched by a literal leading dot, and ``*``/``?``
    never cross a path separator. Returns [] on no match or a bad pattern.
    """
    try:
        if cwd is None or os.path.isabs(pattern):
            found = _glob.glob(pattern, recursive=True)
        else:
            found = _glob.glob(pattern, root_dir=cwd, recursive=True)
    except (OSError, ValueError):
        return []
    return sorted(found)


def expand(
    strings: Iterable[ShellString],
    lookup: VarLookup,
    *,
    cwd: Optional[str] = None,
    strict: bool = False,
    quote: bool = False,
) -> List[str]:
    """Expand each string in order, splicing glob matches into place."""
    lookup = _checked(lookup, strict)
    out: List[str] = []
    for string in strings:
        if has_glob(string):
            out.extend(match(glob_pattern(string, lookup, quote=quote), cwd))
        else:
            out.append(string.render(lookup))
    return out

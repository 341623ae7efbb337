"""String model for gesh command lines.

A shell string is an ordered sequence of typed pieces: fixed text, a
deferred variable reference, or a glob fragment. The parser fuses adjacent
fragments of one argument (``foo/'bar'/"${HOME}"``) into a single
``ShellString``; evaluation against an environment happens later, in
``expand``.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional, Union


@dataclass(frozen=True)
class Fixed:
    """Literal text, used verbatim."""
    text: str


@dataclass(frozen=True)
class Variable:
    """A variable reference, looked up when the string is expanded."""
    name: str


@dataclass(frozen=True)
class Glob:
    """A filesystem glob fragment.

    One of ``?``, ``*``, ``**``, ``[...]`` or ``[!...]``.
    """
    pattern: str


# Discriminated union type alias
Piece = Union[Fixed, Variable, Glob]

VarLookup = Callable[[str], Optional[str]]


class ShellString:
    """An immutable, ordered sequence of pieces."""

    __slots__ = ("_pieces",)

    def __init__(self, pieces: Iterable[Piece] = ()) -> None:
        self._pieces: tuple[Piece, ...] = tuple(pieces)

    @classmethod
    def of(cls, value: Union[str, Piece, Iterable[Piece]]) -> "ShellString":
        if isinstance(value, str):
            return cls((Fixed(value),))
        if isinstance(value, (Fixed, Variable, Glob)):
            return cls((value,))
        return cls(value)

    @property
    def pieces(self) -> tuple[Piece, ...]:
        return self._pieces

    def __iter__(self) -> Iterator[Piece]:
        return iter(self._pieces)

    def __len__(self) -> int:
        return len(self._pieces)

    def __add__(self, other: "ShellString") -> "ShellString":
        if not isinstance(other, ShellString):
            return NotImplemented
        return ShellString(self._pieces + other._pieces)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ShellString):
            return NotImplemented
        return self._pieces == other._pieces

    def __hash__(self) -> int:
        return hash(self._pieces)

    def __repr__(self) -> str:
        return f"ShellString({list(self._pieces)!r})"

    def has_glob(self) -> bool:
        return any(isinstance(p, Glob) for p in self._pieces)

    def render(self, lookup: VarLookup) -> str:
        """Concatenate every piece; unset variables render as ''.

        Glob pieces render as their own pattern text.
        """
        return "".join(render_piece(p, lookup) for p in self._pieces)


def render_piece(piece: Piece, lookup: VarLookup) -> str:
    if isinstance(piece, Fixed):
        return piece.text
    if isinstance(piece, Glob):
        return piece.pattern
    value = lookup(piece.name)
    return "" if value is None else value

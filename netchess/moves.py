"""Move records.

A move is either a normal piece move between two squares or a castle,
identified by side only (king and rook squares follow from the mover's
color). Promotion is chosen separately, after the pawn has arrived.
"""
from dataclasses import dataclass
from typing import Union

from .board import Square
from .constants import CastleSide


@dataclass(frozen=True)
class NormalMove:
    """Move the piece on `start` to `end`."""
    start: Square
    end: Square

    def __str__(self):
        return f"{self.start}{self.end}"


@dataclass(frozen=True)
class CastleMove:
    """Castle towards the given side."""
    side: CastleSide

    def __str__(self):
        return 'O-O' if self.side is CastleSide.KING else 'O-O-O'


Move = Union[NormalMove, CastleMove]


def parse_move(text: str) -> Move:
    """Parse 'e2e4', 'e2-e4', 'O-O' or 'O-O-O'."""
    cleaned = text.strip().replace('0', 'O').upper()
    if cleaned == 'O-O':
        return CastleMove(CastleSide.KING)
    if cleaned == 'O-O-O':
        return CastleMove(CastleSide.QUEEN)

    squares = text.strip().replace('-', '')
    if len(squares) != 4:
        raise ValueError(f"Cannot parse move: {text!r}")
    return NormalMove(Square.parse(squares[:2]), Square.parse(squares[2:]))

"""Board value types: squares, pieces and immutable board snapshots.

Coordinates follow the usual chess convention:
    file 0..7 = a..h (left to right from White's side)
    rank 0..7 = 1..8 (White's back rank is rank 0)
"""
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

from .constants import BOARD_FILES, BOARD_RANKS, FILE_NAMES, Color, PieceType


@dataclass(frozen=True)
class Square:
    """A board square. Out-of-range coordinates are rejected at construction."""
    file: int
    rank: int

    def __post_init__(self):
        for name, value, limit in (('file', self.file, BOARD_FILES), ('rank', self.rank, BOARD_RANKS)):
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"Square {name} must be an int, got {value!r}")
            if not 0 <= value < limit:
                raise ValueError(f"Invalid square: file={self.file} rank={self.rank}")

    @classmethod
    def parse(cls, name: str) -> 'Square':
        """Parse algebraic notation like 'e2'."""
        name = name.strip().lower()
        if len(name) != 2 or name[0] not in FILE_NAMES or not name[1].isdigit():
            raise ValueError(f"Invalid square name: {name!r}")
        return cls(FILE_NAMES.index(name[0]), int(name[1]) - 1)

    @classmethod
    def all(cls) -> Iterator['Square']:
        """Every square, rank by rank starting at a1."""
        for rank in range(BOARD_RANKS):
            for file in range(BOARD_FILES):
                yield cls(file, rank)

    @property
    def name(self) -> str:
        return f"{FILE_NAMES[self.file]}{self.rank + 1}"

    def __str__(self):
        return self.name


# FEN letters, uppercase for White
_SYMBOLS = {
    PieceType.PAWN: 'p',
    PieceType.KNIGHT: 'n',
    PieceType.BISHOP: 'b',
    PieceType.ROOK: 'r',
    PieceType.QUEEN: 'q',
    PieceType.KING: 'k',
}


@dataclass(frozen=True)
class Piece:
    """A piece: type and color only (engine-private flags are not carried)."""
    type: PieceType
    color: Color

    @property
    def symbol(self) -> str:
        letter = _SYMBOLS[self.type]
        return letter.upper() if self.color is Color.WHITE else letter


_BACK_RANK = (
    PieceType.ROOK, PieceType.KNIGHT, PieceType.BISHOP, PieceType.QUEEN,
    PieceType.KING, PieceType.BISHOP, PieceType.KNIGHT, PieceType.ROOK,
)


@dataclass(frozen=True)
class BoardSnapshot:
    """Immutable 8x8 board contents.

    Cells are stored rank-major (index = rank * 8 + file). Snapshots are
    replaced wholesale by newer ones, never edited.
    """
    cells: Tuple[Optional[Piece], ...]

    def __post_init__(self):
        if len(self.cells) != BOARD_FILES * BOARD_RANKS:
            raise ValueError(f"Board needs 64 cells, got {len(self.cells)}")

    @classmethod
    def empty(cls) -> 'BoardSnapshot':
        return cls((None,) * (BOARD_FILES * BOARD_RANKS))

    @classmethod
    def initial(cls) -> 'BoardSnapshot':
        """Standard opening position."""
        pieces: Dict[Square, Piece] = {}
        for file, piece_type in enumerate(_BACK_RANK):
            pieces[Square(file, 0)] = Piece(piece_type, Color.WHITE)
            pieces[Square(file, 1)] = Piece(PieceType.PAWN, Color.WHITE)
            pieces[Square(file, 6)] = Piece(PieceType.PAWN, Color.BLACK)
            pieces[Square(file, 7)] = Piece(piece_type, Color.BLACK)
        return cls.from_pieces(pieces)

    @classmethod
    def from_pieces(cls, pieces: Dict[Square, Piece]) -> 'BoardSnapshot':
        cells: List[Optional[Piece]] = [None] * (BOARD_FILES * BOARD_RANKS)
        for square, piece in pieces.items():
            cells[square.rank * BOARD_FILES + square.file] = piece
        return cls(tuple(cells))

    @classmethod
    def from_rows(cls, rows: List[List[Optional[Piece]]]) -> 'BoardSnapshot':
        """Build from rows indexed [rank][file]."""
        if len(rows) != BOARD_RANKS or any(len(row) != BOARD_FILES for row in rows):
            raise ValueError("Board must be 8 rows of 8 cells")
        return cls(tuple(piece for row in rows for piece in row))

    def rows(self) -> List[List[Optional[Piece]]]:
        """Cells as rows indexed [rank][file]."""
        return [
            list(self.cells[rank * BOARD_FILES:(rank + 1) * BOARD_FILES])
            for rank in range(BOARD_RANKS)
        ]

    def __getitem__(self, square: Square) -> Optional[Piece]:
        return self.cells[square.rank * BOARD_FILES + square.file]

    def render(self) -> str:
        """Plain-text diagram, rank 8 at the top."""
        lines = []
        for rank in reversed(range(BOARD_RANKS)):
            row = []
            for file in range(BOARD_FILES):
                piece = self[Square(file, rank)]
                row.append(piece.symbol if piece else '.')
            lines.append(f"{rank + 1} {' '.join(row)}")
        lines.append(f"  {' '.join(FILE_NAMES)}")
        return '\n'.join(lines)

"""Rules engine boundary and its python-chess implementation.

Sessions never decide legality themselves. The host (or a local hot-seat
game) asks a RulesEngine, which owns every piece of rule state: whose turn
it is, castling rights, en-passant flags, pending promotions.
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import chess

from .board import BoardSnapshot, Piece, Square
from .constants import PROMOTION_TYPES, CastleSide, Color, Outcome, PieceType
from .moves import CastleMove, Move, NormalMove

logger = logging.getLogger(__name__)


class MoveError(Exception):
    """A move or promotion could not be carried out."""


class IllegalMoveError(MoveError):
    """The rules forbid the move. The message is shown to the player."""


class UnsupportedMoveError(MoveError):
    """The engine cannot adjudicate this kind of move."""


class RulesEngine(ABC):
    """Authoritative chess rules.

    Subclasses implement the rules; the generic helpers here only combine
    the abstract queries.
    """

    # Whether CastleMove can be adjudicated. Hosts advertise this to clients.
    supports_castling: bool = True

    @abstractmethod
    def apply(self, move: Move) -> None:
        """Play a move for the side to act.

        Raises:
            IllegalMoveError: the move is not legal right now
            UnsupportedMoveError: the engine cannot express the move
        """

    @abstractmethod
    def legal_moves(self, square: Square) -> List[Move]:
        """Legal moves for the piece on `square` (castles belong to the king)."""

    @abstractmethod
    def in_check(self) -> bool:
        """Whether the side to move is in check."""

    @abstractmethod
    def current_turn(self) -> Color:
        """Side that has to act next (including a pending promotion choice)."""

    @abstractmethod
    def promote(self, square: Square, piece_type: PieceType) -> None:
        """Choose the piece for the promotion pending on `square`."""

    @abstractmethod
    def pending_promotion(self) -> Optional[Square]:
        """Square of a pawn waiting for its promotion choice, if any."""

    @abstractmethod
    def board(self) -> BoardSnapshot:
        """Current position."""

    @abstractmethod
    def outcome(self) -> Outcome:
        """Result decided on the board (checkmate, stalemate, ...)."""

    def all_legal_moves(self) -> List[Move]:
        """Every legal move of the side to act, as one flat list."""
        moves: List[Move] = []
        for square in Square.all():
            for move in self.legal_moves(square):
                if move not in moves:
                    moves.append(move)
        return moves


_TO_CHESS_TYPE: Dict[PieceType, int] = {
    PieceType.PAWN: chess.PAWN,
    PieceType.KNIGHT: chess.KNIGHT,
    PieceType.BISHOP: chess.BISHOP,
    PieceType.ROOK: chess.ROOK,
    PieceType.QUEEN: chess.QUEEN,
    PieceType.KING: chess.KING,
}
_FROM_CHESS_TYPE = {value: key for key, value in _TO_CHESS_TYPE.items()}


def _to_chess_square(square: Square) -> int:
    return chess.square(square.file, square.rank)


def _from_chess_square(square: int) -> Square:
    return Square(chess.square_file(square), chess.square_rank(square))


def _color(chess_color: bool) -> Color:
    return Color.WHITE if chess_color == chess.WHITE else Color.BLACK


def _color_name(color: Color) -> str:
    return color.name.lower()


class ChessRulesEngine(RulesEngine):
    """RulesEngine backed by python-chess.

    Promotion is a two-step affair: a pawn reaching the last rank is
    played as a queen straight away, then `promote()` swaps in the chosen
    piece. Until that choice arrives the engine holds a pending promotion
    and refuses other moves.
    """

    def __init__(self, fen: Optional[str] = None):
        self._board = chess.Board(fen) if fen else chess.Board()
        self._pending: Optional[Square] = None

    def apply(self, move: Move) -> None:
        if self._pending is not None:
            raise IllegalMoveError(f"Choose a promotion for the pawn on {self._pending} first")
        if self._board.is_game_over():
            raise IllegalMoveError("The game is over")

        if isinstance(move, CastleMove):
            chess_move = self._castle_move(move)
        elif isinstance(move, NormalMove):
            chess_move = self._normal_move(move)
        else:
            raise UnsupportedMoveError(f"Unknown move kind: {move!r}")

        self._board.push(chess_move)
        if chess_move.promotion is not None:
            self._pending = move.end
        logger.debug(f"Applied {chess_move.uci()}")

    def _normal_move(self, move: NormalMove) -> chess.Move:
        start = _to_chess_square(move.start)
        end = _to_chess_square(move.end)
        candidates = [
            m for m in self._board.legal_moves
            if m.from_square == start and m.to_square == end
        ]
        if not candidates:
            raise IllegalMoveError(self._explain_illegal(move, chess.Move(start, end)))
        for candidate in candidates:
            if candidate.promotion == chess.QUEEN:
                return candidate
        return candidates[0]

    def _castle_move(self, move: CastleMove) -> chess.Move:
        turn = self._board.turn
        side_name = 'kingside' if move.side is CastleSide.KING else 'queenside'
        king = self._board.king(turn)
        if king is None:
            raise IllegalMoveError(f"Cannot castle {side_name}: no king")
        back_rank = 0 if turn == chess.WHITE else 7
        target = chess.square(6 if move.side is CastleSide.KING else 2, back_rank)
        chess_move = chess.Move(king, target)
        if not (self._board.is_castling(chess_move) and self._board.is_legal(chess_move)):
            raise IllegalMoveError(f"Cannot castle {side_name} now")
        return chess_move

    def _explain_illegal(self, move: NormalMove, chess_move: chess.Move) -> str:
        piece = self._board.piece_at(chess_move.from_square)
        if piece is None:
            return f"There is no piece on {move.start}"
        turn = _color(self._board.turn)
        if _color(piece.color) is not turn:
            return f"It is {_color_name(turn)}'s turn"
        if self._board.is_pseudo_legal(chess_move):
            return f"{move} would leave the king in check"
        return f"{move} is not a legal move"

    def legal_moves(self, square: Square) -> List[Move]:
        if self._pending is not None:
            return []
        origin = _to_chess_square(square)
        moves: List[Move] = []
        for m in self._board.legal_moves:
            if m.from_square != origin:
                continue
            if self._board.is_castling(m):
                side = CastleSide.KING if self._board.is_kingside_castling(m) else CastleSide.QUEEN
                result: Move = CastleMove(side)
            else:
                result = NormalMove(square, _from_chess_square(m.to_square))
            # Promotion variants collapse into a single move
            if result not in moves:
                moves.append(result)
        return moves

    def in_check(self) -> bool:
        if self._pending is not None:
            # The promoting side just made a legal move, so it cannot be in check
            return False
        return self._board.is_check()

    def current_turn(self) -> Color:
        if self._pending is not None:
            return _color(self._board.turn).opposite
        return _color(self._board.turn)

    def promote(self, square: Square, piece_type: PieceType) -> None:
        if self._pending is None or self._pending != square:
            raise IllegalMoveError(f"No promotion is pending on {square}")
        if piece_type not in PROMOTION_TYPES:
            raise IllegalMoveError(f"Cannot promote to {piece_type.name.lower()}")

        last = self._board.pop()
        self._board.push(chess.Move(last.from_square, last.to_square,
                                    promotion=_TO_CHESS_TYPE[piece_type]))
        self._pending = None
        logger.debug(f"Promoted on {square} to {piece_type.name}")

    def pending_promotion(self) -> Optional[Square]:
        return self._pending

    def board(self) -> BoardSnapshot:
        pieces = {
            _from_chess_square(square): Piece(_FROM_CHESS_TYPE[piece.piece_type], _color(piece.color))
            for square, piece in self._board.piece_map().items()
        }
        return BoardSnapshot.from_pieces(pieces)

    def outcome(self) -> Outcome:
        if self._pending is not None:
            return Outcome.ONGOING
        result = self._board.outcome()
        if result is None:
            return Outcome.ONGOING
        if result.winner is None:
            return Outcome.DRAW
        return Outcome.win_for(_color(result.winner))

"""Game session interface shared by local, hosted and joined games.

The front-end only talks to a GameSession:
    session.update()                 # once per tick
    session.board()                  # what to draw
    session.possible_moves(square)   # highlight targets
    session.perform_move(move)       # submit a move
    session.promote(square, kind)    # answer a pending promotion

Variants:
    LocalSession   - hot-seat game on one machine (this module)
    HostSession    - authoritative networked game (network.server)
    ClientSession  - mirror of a hosted game (network.client)
"""
import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from .board import BoardSnapshot, Square
from .constants import Color, Outcome, PieceType
from .moves import Move
from .rules import RulesEngine

logger = logging.getLogger(__name__)


class SessionError(Exception):
    """A request the session cannot honour in its current state."""


class NotConnectedError(SessionError):
    """No peer is connected, or the handshake has not finished."""


class NotYourTurnError(SessionError):
    """The local player tried to act on the opponent's turn."""


class MoveInFlightError(SessionError):
    """A previous request is still waiting for the host's answer."""


class GameOverError(SessionError):
    """The game has already ended."""


class GameSession(ABC):
    """Common interface of every game backend.

    Callbacks are optional and invoked from update() (or directly from the
    call that caused the change), always on the caller's thread.
    """

    def __init__(self):
        self.on_state: Optional[Callable[[], None]] = None
        self.on_reject: Optional[Callable[[str], None]] = None
        self.on_disconnected: Optional[Callable[[str], None]] = None
        self.on_game_over: Optional[Callable[[Outcome], None]] = None
        self.on_draw_offered: Optional[Callable[[], None]] = None

    @abstractmethod
    def update(self) -> None:
        """Advance the session by at most one step. Never blocks."""

    @abstractmethod
    def board(self) -> BoardSnapshot:
        pass

    @abstractmethod
    def current_turn(self) -> Color:
        pass

    @abstractmethod
    def is_check(self) -> bool:
        pass

    @abstractmethod
    def outcome(self) -> Outcome:
        pass

    @abstractmethod
    def pending_promotion(self) -> Optional[Square]:
        pass

    @abstractmethod
    def possible_moves(self, at: Square) -> List[Move]:
        pass

    @abstractmethod
    def perform_move(self, move: Move) -> None:
        pass

    @abstractmethod
    def promote(self, square: Square, piece_type: PieceType) -> None:
        pass

    @abstractmethod
    def resign(self) -> None:
        pass

    @abstractmethod
    def is_my_turn(self) -> bool:
        """Whether the local player may act right now."""

    def close(self) -> None:
        """Release sockets. Safe to call more than once."""

    def _notify_state(self):
        if self.on_state:
            self.on_state()

    def _notify_game_over(self):
        outcome = self.outcome()
        logger.info(f"Game over: {outcome.name}")
        if self.on_game_over:
            self.on_game_over(outcome)


class LocalSession(GameSession):
    """Hot-seat game: both players share one machine and one engine."""

    def __init__(self, engine: RulesEngine):
        super().__init__()
        self.engine = engine
        self._resolution: Optional[Outcome] = None

    def update(self) -> None:
        pass

    def board(self) -> BoardSnapshot:
        return self.engine.board()

    def current_turn(self) -> Color:
        return self.engine.current_turn()

    def is_check(self) -> bool:
        return self.engine.in_check()

    def outcome(self) -> Outcome:
        return self._resolution or self.engine.outcome()

    def pending_promotion(self) -> Optional[Square]:
        return self.engine.pending_promotion()

    def possible_moves(self, at: Square) -> List[Move]:
        if self.outcome().is_over:
            return []
        return self.engine.legal_moves(at)

    def perform_move(self, move: Move) -> None:
        self._check_ongoing()
        self.engine.apply(move)
        self._notify_state()
        if self.outcome().is_over:
            self._notify_game_over()

    def promote(self, square: Square, piece_type: PieceType) -> None:
        self._check_ongoing()
        self.engine.promote(square, piece_type)
        self._notify_state()
        if self.outcome().is_over:
            self._notify_game_over()

    def resign(self) -> None:
        """The side to move gives up."""
        self._check_ongoing()
        self._resolution = Outcome.win_for(self.engine.current_turn().opposite)
        self._notify_game_over()

    def offer_draw(self) -> None:
        """Both players are at the keyboard, so an offer is an agreement."""
        self._check_ongoing()
        self._resolution = Outcome.DRAW
        self._notify_game_over()

    def is_my_turn(self) -> bool:
        return not self.outcome().is_over

    def _check_ongoing(self):
        if self.outcome().is_over:
            raise GameOverError("The game is over")

"""Hosting side of a networked game: the authoritative session.

Handles:
- Accepting one client connection (and later reconnections)
- Handshake: color assignment, initial position, feature flags
- Client requests: moves, promotions, resignation, draw offers
- The host player's own moves, pushed to the client after every change

Usage:
    session = HostSession(ChessRulesEngine(), port=7777)
    while running:
        session.update()            # once per tick, never blocks
        draw(session.board())
"""

import logging
import socket
from typing import List, Optional, Tuple

from ..board import BoardSnapshot, Square
from ..constants import BIND_ADDRESS, DEFAULT_PORT, Color, Outcome, PieceType, ProtocolState
from ..moves import CastleMove, Move
from ..rules import MoveError, RulesEngine
from ..session import GameOverError, GameSession, NotConnectedError, NotYourTurnError, SessionError
from .protocol import (
    ClientHandshake, ClientMove, ClientOfferDraw, ClientPromote, ClientResign,
    Feature, HostDraw, HostHandshake, HostPromoted, HostReject, HostResigned, HostState,
    Message, Position, ProtocolError,
)
from .stream import FramedStream, ReadStatus

logger = logging.getLogger(__name__)


class HostSession(GameSession):
    """Authoritative game host.

    The rules engine is the single source of truth for the position and
    whose turn it is; the session only adds connection state and the
    results decided off the board (resignation, agreed draw).
    """

    def __init__(
        self,
        engine: RulesEngine,
        port: int = DEFAULT_PORT,
        bind_address: str = BIND_ADDRESS,
    ):
        super().__init__()
        self.engine = engine
        self.state = ProtocolState.NOT_CONNECTED
        self.host_color = Color.WHITE
        self.disconnect_reason: Optional[str] = None
        self.draw_offered = False

        self._stream: Optional[FramedStream] = None
        self._colors_locked = False
        self._last_move: Optional[Move] = None
        self._resolution: Optional[Outcome] = None
        self._closed = False

        self._listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            self._listener.bind((bind_address, port))
            self._listener.listen(1)
        except OSError:
            self._listener.close()
            raise
        self._listener.setblocking(False)
        logger.info(f"Hosting on {bind_address}:{self.port}")

    @property
    def port(self) -> int:
        """Port actually bound (useful when constructed with port 0)."""
        return self._listener.getsockname()[1]

    @property
    def client_color(self) -> Color:
        return self.host_color.opposite

    @property
    def last_move(self) -> Optional[Move]:
        return self._last_move

    @property
    def features(self) -> Tuple[Feature, ...]:
        features = [Feature.POSSIBLE_MOVE_GENERATION]
        if self.engine.supports_castling:
            features.append(Feature.CASTLING)
        return tuple(features)

    # =========================================================================
    # POLLING
    # =========================================================================

    def update(self) -> None:
        """Perform at most one accept or read and react to it."""
        if self._closed:
            return
        if self.state in (ProtocolState.NOT_CONNECTED, ProtocolState.DISCONNECTED):
            self._try_accept()
            return

        try:
            result = self._stream.try_read()
        except ProtocolError as e:
            logger.warning(f"Protocol error from client: {e}")
            self._drop_client(f"protocol error: {e}")
            return

        if result.status is ReadStatus.CLOSED:
            self._drop_client("peer disconnected")
            return
        if result.status is ReadStatus.PENDING:
            return

        logger.debug(f"Received {result.message.type.name}")
        try:
            if self.state is ProtocolState.HANDSHAKE:
                self._handle_handshake(result.message)
            else:
                self._handle_play(result.message)
        except ProtocolError as e:
            logger.warning(f"Protocol violation: {e}")
            self._drop_client(f"protocol violation: {e}")

    def _try_accept(self):
        try:
            conn, addr = self._listener.accept()
        except (BlockingIOError, InterruptedError, ConnectionAbortedError):
            # Aborted before accept counts as nothing to accept
            return
        self._stream = FramedStream(conn)
        self.state = ProtocolState.HANDSHAKE
        self.disconnect_reason = None
        logger.info(f"{addr[0]}:{addr[1]} connected")

    def _handle_handshake(self, message: Message):
        if not isinstance(message, ClientHandshake):
            raise ProtocolError(f"Expected CLIENT_HANDSHAKE during handshake, got {message.type.name}")

        if not self._colors_locked:
            self.host_color = message.requested_host_color
            self._colors_locked = True
        elif message.requested_host_color is not self.host_color:
            logger.info(f"Client asked to host {message.requested_host_color.name}, "
                        f"keeping {self.host_color.name} for the game in progress")

        self._send(HostHandshake(
            position=self._position(),
            features=self.features,
            host_color=self.host_color,
        ))
        if self._stream is not None:
            self.state = ProtocolState.PLAY
            logger.info(f"Handshake complete, host plays {self.host_color.name}")

    def _handle_play(self, message: Message):
        if isinstance(message, ClientMove):
            self._handle_client_move(message.move)
        elif isinstance(message, ClientPromote):
            self._handle_client_promote(message.square, message.piece_type)
        elif isinstance(message, ClientResign):
            self._handle_client_resign()
        elif isinstance(message, ClientOfferDraw):
            self._handle_draw_offer()
        else:
            raise ProtocolError(f"Unexpected {message.type.name} during play")

    # =========================================================================
    # CLIENT REQUESTS
    # =========================================================================

    def _handle_client_move(self, move: Move):
        if self.outcome().is_over:
            self._reject("The game is over")
            return
        if self.engine.current_turn() is not self.client_color:
            self._reject(f"It is {self.engine.current_turn().name.lower()}'s turn")
            return
        try:
            self.engine.apply(move)
        except MoveError as e:
            self._reject(str(e))
            return

        logger.info(f"Client played {move}")
        self._commit(move)

    def _handle_client_promote(self, square: Square, piece_type: PieceType):
        if self.outcome().is_over:
            self._reject("The game is over")
            return
        if self.engine.current_turn() is not self.client_color:
            self._reject(f"It is {self.engine.current_turn().name.lower()}'s turn")
            return
        try:
            self.engine.promote(square, piece_type)
        except MoveError as e:
            self._reject(str(e))
            return

        logger.info(f"Client promoted on {square} to {piece_type.name}")
        self._send(HostPromoted(self._position(), square, piece_type))
        self._after_change()

    def _handle_client_resign(self):
        if self.outcome().is_over:
            self._reject("The game is over")
            return
        self._resolution = Outcome.win_for(self.host_color)
        logger.info("Client resigned")
        self._send(HostResigned(winner=self.host_color))
        self._notify_game_over()

    def _handle_draw_offer(self):
        if self.outcome().is_over:
            return
        self.draw_offered = True
        logger.info("Client offered a draw")
        if self.on_draw_offered:
            self.on_draw_offered()

    def _reject(self, reason: str):
        logger.info(f"Rejected client request: {reason}")
        self._send(HostReject(self._position(), reason))

    # =========================================================================
    # HOST PLAYER ACTIONS
    # =========================================================================

    def perform_move(self, move: Move) -> None:
        """Play a move for the host.

        Raises:
            NotConnectedError: no client has completed the handshake
            GameOverError: the game has ended
            NotYourTurnError: it is the client's turn
            MoveError: the rules engine refused the move
        """
        self._check_can_act()
        self.engine.apply(move)
        logger.info(f"Host played {move}")
        self._commit(move)

    def promote(self, square: Square, piece_type: PieceType) -> None:
        self._check_can_act()
        self.engine.promote(square, piece_type)
        self._send(HostPromoted(self._position(), square, piece_type))
        self._after_change()

    def resign(self) -> None:
        if self.outcome().is_over:
            raise GameOverError("The game is over")
        self._resolution = Outcome.win_for(self.client_color)
        logger.info("Host resigned")
        if self.state is ProtocolState.PLAY:
            self._send(HostResigned(winner=self.client_color))
        self._notify_game_over()

    def accept_draw(self) -> None:
        """Accept the client's pending draw offer."""
        if not self.draw_offered:
            raise SessionError("No draw has been offered")
        if self.outcome().is_over:
            raise GameOverError("The game is over")
        self.draw_offered = False
        self._resolution = Outcome.DRAW
        logger.info("Draw agreed")
        self._send(HostDraw())
        self._notify_game_over()

    def decline_draw(self) -> None:
        self.draw_offered = False

    def _check_can_act(self):
        if self.state is not ProtocolState.PLAY:
            raise NotConnectedError("No opponent is connected")
        if self.outcome().is_over:
            raise GameOverError("The game is over")
        if self.engine.current_turn() is not self.host_color:
            raise NotYourTurnError("It is the opponent's turn")

    # =========================================================================
    # STATE
    # =========================================================================

    def _commit(self, move: Move):
        self._last_move = move
        self.draw_offered = False
        self._send(HostState(self._position(), last_move=move))
        self._after_change()

    def _after_change(self):
        self._notify_state()
        if self.outcome().is_over:
            self._notify_game_over()

    def _position(self) -> Position:
        over = self.outcome().is_over
        return Position(
            board=self.engine.board(),
            legal_moves=() if over else tuple(self.engine.all_legal_moves()),
            outcome=self.outcome(),
            turn=self.engine.current_turn(),
            in_check=self.engine.in_check(),
            promotion=self.engine.pending_promotion(),
        )

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
        """Legal moves from `at` while it is the host's turn."""
        if self.outcome().is_over or self.engine.current_turn() is not self.host_color:
            return []
        moves = self.engine.legal_moves(at)
        if not self.engine.supports_castling:
            moves = [move for move in moves if not isinstance(move, CastleMove)]
        return moves

    def is_my_turn(self) -> bool:
        return (
            self.state is ProtocolState.PLAY
            and not self.outcome().is_over
            and self.engine.current_turn() is self.host_color
        )

    # =========================================================================
    # CONNECTION
    # =========================================================================

    def _send(self, message: Message):
        """Push a message to the client; a dead connection drops the client."""
        if self._stream is None:
            return
        try:
            self._stream.write(message)
        except ConnectionError as e:
            logger.info(f"Send failed: {e}")
            self._drop_client("peer disconnected")

    def _drop_client(self, reason: str):
        if self._stream is not None:
            self._stream.close()
            self._stream = None
        self.state = ProtocolState.DISCONNECTED
        self.disconnect_reason = reason
        self.draw_offered = False
        logger.info(f"Client dropped: {reason}")
        if self.on_disconnected:
            self.on_disconnected(reason)

    def close(self) -> None:
        self._closed = True
        if self._stream is not None:
            self._stream.close()
            self._stream = None
        self._listener.close()
        self.state = ProtocolState.DISCONNECTED

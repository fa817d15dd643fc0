"""Joining side of a networked game: mirrors the host's position.

Usage:
    session = ClientSession('192.168.1.10', 7777, requested_host_color=Color.BLACK)
    while running:
        session.update()            # once per tick, never blocks
        if session.is_my_turn():
            session.perform_move(NormalMove(Square.parse('e2'), Square.parse('e4')))

The client never judges legality. It submits requests, keeps at most one
of them in flight, and replaces its view with whatever position the host
answers with.
"""

import errno
import logging
import select
import socket
from typing import List, Optional, Tuple

from ..board import BoardSnapshot, Square
from ..constants import DEFAULT_PORT, Color, Outcome, PieceType, ProtocolState
from ..moves import CastleMove, Move, NormalMove
from ..rules import UnsupportedMoveError
from ..session import (
    GameOverError, GameSession, MoveInFlightError, NotConnectedError, NotYourTurnError,
)
from .protocol import (
    ClientHandshake, ClientMove, ClientOfferDraw, ClientPromote, ClientResign,
    Feature, HostDraw, HostHandshake, HostPromoted, HostReject, HostResigned, HostState,
    Message, Position, ProtocolError,
)
from .stream import FramedStream, ReadStatus

logger = logging.getLogger(__name__)


class ClientSession(GameSession):
    """Network client for a hosted game.

    Connection is non-blocking: construction only starts the TCP connect,
    update() finishes it, sends the handshake and processes host messages.
    """

    def __init__(
        self,
        address: str,
        port: int = DEFAULT_PORT,
        requested_host_color: Color = Color.BLACK,
    ):
        super().__init__()
        self.address = address
        self.port = port
        self.requested_host_color = requested_host_color

        self.state = ProtocolState.CONNECTING
        self.disconnect_reason: Optional[str] = None
        self.last_reject_reason: Optional[str] = None
        self.last_move: Optional[Move] = None

        # Mirrored game state (replaced by every host message)
        self.host_color = requested_host_color
        self.features: Tuple[Feature, ...] = ()
        self._board = BoardSnapshot.empty()
        self._legal_moves: Tuple[Move, ...] = ()
        self._outcome = Outcome.ONGOING
        self._turn = Color.WHITE
        self._in_check = False
        self._promotion: Optional[Square] = None

        # True while a request waits for HostState/HostReject/HostPromoted
        self._in_flight = False

        self._stream: Optional[FramedStream] = None
        self._sock: Optional[socket.socket] = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setblocking(False)
        logger.info(f"Connecting to {address}:{port}")
        err = self._sock.connect_ex((address, port))
        if err not in (0, errno.EINPROGRESS, errno.EWOULDBLOCK, errno.EALREADY):
            self._fail_connect(err)

    @property
    def my_color(self) -> Color:
        return self.host_color.opposite

    @property
    def awaiting_response(self) -> bool:
        """Whether a request is still waiting for the host's answer."""
        return self._in_flight

    def has_feature(self, feature: Feature) -> bool:
        return feature in self.features

    # =========================================================================
    # POLLING
    # =========================================================================

    def update(self) -> None:
        """Perform at most one connect check or read and react to it."""
        if self.state is ProtocolState.DISCONNECTED:
            return
        if self.state is ProtocolState.CONNECTING:
            self._poll_connect()
            return

        try:
            result = self._stream.try_read()
        except ProtocolError as e:
            logger.warning(f"Protocol error from host: {e}")
            self._disconnect(f"protocol error: {e}")
            return

        if result.status is ReadStatus.CLOSED:
            self._disconnect("peer disconnected")
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
            self._disconnect(f"protocol violation: {e}")

    def _poll_connect(self):
        _, writable, _ = select.select([], [self._sock], [], 0)
        if not writable:
            return
        err = self._sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
        if err:
            self._fail_connect(err)
            return

        logger.info(f"Connected to {self.address}:{self.port}")
        self._stream = FramedStream(self._sock)
        self._sock = None
        self.state = ProtocolState.HANDSHAKE
        self._send(ClientHandshake(requested_host_color=self.requested_host_color))

    def _fail_connect(self, err: int):
        reason = f"connection failed: {errno.errorcode.get(err, err)}"
        self._sock.close()
        self._sock = None
        self._disconnect(reason)

    def _handle_handshake(self, message: Message):
        if not isinstance(message, HostHandshake):
            raise ProtocolError(f"Expected HOST_HANDSHAKE during handshake, got {message.type.name}")

        self.host_color = message.host_color
        self.features = message.features
        self._adopt(message.position)
        self.state = ProtocolState.PLAY
        logger.info(f"Handshake complete, playing {self.my_color.name}, "
                    f"host features: {[feature.name for feature in self.features]}")
        self._notify_state()
        if self._outcome.is_over:
            self._notify_game_over()

    def _handle_play(self, message: Message):
        if isinstance(message, HostState):
            self._in_flight = False
            self.last_move = message.last_move
            self._adopt(message.position)
            self._notify_state()
            if self._outcome.is_over:
                self._notify_game_over()

        elif isinstance(message, HostReject):
            # Nothing happened on the host; take its (unchanged) position back
            self._in_flight = False
            self.last_reject_reason = message.reason
            self._adopt(message.position)
            logger.info(f"Host rejected request: {message.reason}")
            if self.on_reject:
                self.on_reject(message.reason)

        elif isinstance(message, HostPromoted):
            self._in_flight = False
            self._adopt(message.position)
            self._notify_state()
            if self._outcome.is_over:
                self._notify_game_over()

        elif isinstance(message, HostResigned):
            self._in_flight = False
            self._outcome = Outcome.win_for(message.winner)
            self._legal_moves = ()
            self._notify_game_over()

        elif isinstance(message, HostDraw):
            self._in_flight = False
            self._outcome = Outcome.DRAW
            self._legal_moves = ()
            self._notify_game_over()

        else:
            raise ProtocolError(f"Unexpected {message.type.name} during play")

    def _adopt(self, position: Position):
        self._board = position.board
        self._legal_moves = position.legal_moves
        self._outcome = position.outcome
        self._turn = position.turn
        self._in_check = position.in_check
        self._promotion = position.promotion

    # =========================================================================
    # PLAYER ACTIONS
    # =========================================================================

    def perform_move(self, move: Move) -> None:
        """Submit a move. The board changes only when the host accepts it.

        Raises:
            NotConnectedError: handshake not finished or connection lost
            GameOverError: the game has ended
            MoveInFlightError: the previous request is unanswered
            NotYourTurnError: it is the host's turn
            UnsupportedMoveError: castling without host support
        """
        self._check_can_act()
        if isinstance(move, CastleMove) and not self.has_feature(Feature.CASTLING):
            raise UnsupportedMoveError("The host cannot adjudicate castling")

        self._in_flight = True
        self._turn = self.my_color.opposite  # optimistic, corrected by the answer
        self._send(ClientMove(move))

    def promote(self, square: Square, piece_type: PieceType) -> None:
        self._check_can_act()
        self._in_flight = True
        self._send(ClientPromote(square, piece_type))

    def resign(self) -> None:
        self._check_connected()
        if self._outcome.is_over:
            raise GameOverError("The game is over")
        self._send(ClientResign())

    def offer_draw(self) -> None:
        self._check_connected()
        if self._outcome.is_over:
            raise GameOverError("The game is over")
        self._send(ClientOfferDraw())

    def _check_connected(self):
        if self.state is not ProtocolState.PLAY:
            raise NotConnectedError("Not connected to a host")

    def _check_can_act(self):
        self._check_connected()
        if self._outcome.is_over:
            raise GameOverError("The game is over")
        if self._in_flight:
            raise MoveInFlightError("Busy: waiting for the host to answer the previous move")
        if self._turn is not self.my_color:
            raise NotYourTurnError("It is the opponent's turn")

    # =========================================================================
    # STATE
    # =========================================================================

    def board(self) -> BoardSnapshot:
        return self._board

    def current_turn(self) -> Color:
        return self._turn

    def is_check(self) -> bool:
        return self._in_check

    def outcome(self) -> Outcome:
        return self._outcome

    def pending_promotion(self) -> Optional[Square]:
        return self._promotion

    def legal_moves(self) -> Tuple[Move, ...]:
        """Host-provided legal moves for the side to act."""
        return self._legal_moves

    def possible_moves(self, at: Square) -> List[Move]:
        """Candidate moves from `at` for highlighting.

        With POSSIBLE_MOVE_GENERATION the host's list is filtered by start
        square. Without it every other square is offered and the host
        sorts out legality when the move is submitted.
        """
        self._check_connected()
        if not self.has_feature(Feature.POSSIBLE_MOVE_GENERATION):
            return [NormalMove(at, square) for square in Square.all() if square != at]

        moves: List[Move] = [
            move for move in self._legal_moves
            if isinstance(move, NormalMove) and move.start == at
        ]
        piece = self._board[at]
        if piece is not None and piece.type is PieceType.KING and piece.color is self._turn:
            moves.extend(move for move in self._legal_moves if isinstance(move, CastleMove))
        return moves

    def is_my_turn(self) -> bool:
        return (
            self.state is ProtocolState.PLAY
            and not self._outcome.is_over
            and not self._in_flight
            and self._turn is self.my_color
        )

    # =========================================================================
    # CONNECTION
    # =========================================================================

    def _send(self, message: Message):
        if self._stream is None:
            return
        try:
            self._stream.write(message)
        except ConnectionError as e:
            logger.info(f"Send failed: {e}")
            self._disconnect("peer disconnected")

    def _disconnect(self, reason: str):
        if self._stream is not None:
            self._stream.close()
            self._stream = None
        self.state = ProtocolState.DISCONNECTED
        self.disconnect_reason = reason
        self._in_flight = False
        logger.info(f"Disconnected: {reason}")
        if self.on_disconnected:
            self.on_disconnected(reason)

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None
        if self._stream is not None:
            self._stream.close()
            self._stream = None
        self.state = ProtocolState.DISCONNECTED

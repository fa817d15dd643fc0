"""Network protocol: message types, framing, serialization.

Wire format:
    [4-byte big-endian length][JSON payload]

Message envelope:
    {
        "type": "CLIENT_MOVE" | "HOST_STATE" | ...,
        "payload": { ... }     (type-specific data)
    }

Value encodings:
    square  {"x": file, "y": rank}
    piece   "WHITE_PAWN" ... "BLACK_KING", or "EMPTY" for an empty square
    board   8 rows (rank 1 first) of 8 piece tags (file a first)
    move    {"kind": "normal", "start_x": 4, "start_y": 1, "end_x": 4, "end_y": 3}
            {"kind": "castle", "side": "KING" | "QUEEN"}

Every host message that describes the game carries a full position
(board, legal moves, outcome, turn, check flag, pending promotion), so the
client never has to infer anything from message order.
"""

import json
import struct
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type, TypeVar

from ..board import BoardSnapshot, Piece, Square
from ..constants import BOARD_FILES, BOARD_RANKS, CastleSide, Color, Outcome, PieceType
from ..moves import CastleMove, Move, NormalMove


class ProtocolError(ValueError):
    """Peer sent something that is not a valid message for this protocol."""


class FramingError(ProtocolError):
    """The byte stream cannot be split into frames."""


class MessageType(Enum):
    """Network message types."""
    # Handshake
    CLIENT_HANDSHAKE = auto()   # Client → Host: requested host color
    HOST_HANDSHAKE = auto()     # Host → Client: initial position + features

    # Client actions
    CLIENT_MOVE = auto()        # Client → Host: move request
    CLIENT_PROMOTE = auto()     # Client → Host: promotion choice
    CLIENT_RESIGN = auto()      # Client → Host: client gives up
    CLIENT_OFFER_DRAW = auto()  # Client → Host: draw offer

    # Host updates
    HOST_STATE = auto()         # Host → Client: position after an accepted move
    HOST_REJECT = auto()        # Host → Client: request refused, unchanged position
    HOST_PROMOTED = auto()      # Host → Client: promotion applied
    HOST_RESIGNED = auto()      # Host → Client: someone resigned
    HOST_DRAW = auto()          # Host → Client: game drawn by agreement


class Feature(Enum):
    """Optional capabilities a host advertises in its handshake."""
    POSSIBLE_MOVE_GENERATION = auto()  # legal_moves lists are meaningful
    CASTLING = auto()                  # host adjudicates castle moves


# =============================================================================
# VALUE ENCODINGS
# =============================================================================

E = TypeVar('E', bound=Enum)

EMPTY_TAG = 'EMPTY'

PIECE_TAGS: Dict[Optional[Piece], str] = {
    None: EMPTY_TAG,
    **{Piece(kind, color): f"{color.name}_{kind.name}" for color in Color for kind in PieceType},
}
TAG_PIECES: Dict[str, Optional[Piece]] = {tag: piece for piece, tag in PIECE_TAGS.items()}


def _field(payload: Dict[str, Any], name: str) -> Any:
    try:
        return payload[name]
    except KeyError:
        raise ProtocolError(f"Missing field: {name}") from None
    except TypeError:
        raise ProtocolError(f"Expected an object, got {type(payload).__name__}") from None


def _int(value: Any, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ProtocolError(f"{what} must be an integer, got {value!r}")
    return value


def encode_enum(value: Enum) -> str:
    return value.name


def decode_enum(enum_cls: Type[E], value: Any) -> E:
    if not isinstance(value, str) or value not in enum_cls.__members__:
        raise ProtocolError(f"Invalid {enum_cls.__name__}: {value!r}")
    return enum_cls[value]


def encode_square(square: Square) -> Dict[str, int]:
    return {'x': square.file, 'y': square.rank}


def decode_square(obj: Any) -> Square:
    file = _int(_field(obj, 'x'), 'x')
    rank = _int(_field(obj, 'y'), 'y')
    try:
        return Square(file, rank)
    except ValueError as e:
        raise ProtocolError(str(e)) from None


def encode_piece(piece: Optional[Piece]) -> str:
    return PIECE_TAGS[piece]


def decode_piece(tag: Any) -> Optional[Piece]:
    if not isinstance(tag, str) or tag not in TAG_PIECES:
        raise ProtocolError(f"Invalid piece tag: {tag!r}")
    return TAG_PIECES[tag]


def encode_board(board: BoardSnapshot) -> List[List[str]]:
    return [[encode_piece(piece) for piece in row] for row in board.rows()]


def decode_board(rows: Any) -> BoardSnapshot:
    if not isinstance(rows, list) or len(rows) != BOARD_RANKS:
        raise ProtocolError("Board must be a list of 8 rows")
    decoded = []
    for row in rows:
        if not isinstance(row, list) or len(row) != BOARD_FILES:
            raise ProtocolError("Board rows must hold 8 cells")
        decoded.append([decode_piece(tag) for tag in row])
    return BoardSnapshot.from_rows(decoded)


def encode_move(move: Move) -> Dict[str, Any]:
    if isinstance(move, CastleMove):
        return {'kind': 'castle', 'side': encode_enum(move.side)}
    return {
        'kind': 'normal',
        'start_x': move.start.file,
        'start_y': move.start.rank,
        'end_x': move.end.file,
        'end_y': move.end.rank,
    }


def decode_move(obj: Any) -> Move:
    kind = _field(obj, 'kind')
    if kind == 'castle':
        return CastleMove(decode_enum(CastleSide, _field(obj, 'side')))
    if kind == 'normal':
        start = decode_square({'x': _field(obj, 'start_x'), 'y': _field(obj, 'start_y')})
        end = decode_square({'x': _field(obj, 'end_x'), 'y': _field(obj, 'end_y')})
        return NormalMove(start, end)
    raise ProtocolError(f"Invalid move kind: {kind!r}")


def encode_moves(moves: Tuple[Move, ...]) -> List[Dict[str, Any]]:
    return [encode_move(move) for move in moves]


def decode_moves(obj: Any) -> Tuple[Move, ...]:
    if not isinstance(obj, list):
        raise ProtocolError("Move list must be a list")
    return tuple(decode_move(item) for item in obj)


@dataclass(frozen=True)
class Position:
    """Everything a client needs to mirror the authoritative game."""
    board: BoardSnapshot
    legal_moves: Tuple[Move, ...]
    outcome: Outcome
    turn: Color
    in_check: bool = False
    promotion: Optional[Square] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            'board': encode_board(self.board),
            'legal_moves': encode_moves(self.legal_moves),
            'outcome': encode_enum(self.outcome),
            'turn': encode_enum(self.turn),
            'in_check': self.in_check,
            'promotion': encode_square(self.promotion) if self.promotion else None,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'Position':
        in_check = _field(payload, 'in_check')
        if not isinstance(in_check, bool):
            raise ProtocolError(f"in_check must be a boolean, got {in_check!r}")
        promotion = payload.get('promotion')
        return cls(
            board=decode_board(_field(payload, 'board')),
            legal_moves=decode_moves(_field(payload, 'legal_moves')),
            outcome=decode_enum(Outcome, _field(payload, 'outcome')),
            turn=decode_enum(Color, _field(payload, 'turn')),
            in_check=in_check,
            promotion=decode_square(promotion) if promotion is not None else None,
        )


# =============================================================================
# MESSAGES
# =============================================================================

class Message:
    """Base of all wire messages. Subclasses set `type` and their fields."""
    type: ClassVar[MessageType]

    def to_payload(self) -> Dict[str, Any]:
        return {}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'Message':
        return cls()

    def to_bytes(self) -> bytes:
        """Serialize message to bytes with length prefix."""
        return FrameWriter.pack(self)

    @staticmethod
    def from_bytes(data: bytes) -> 'Message':
        """Deserialize message from JSON bytes (without length prefix)."""
        return decode_message(data)


@dataclass(frozen=True)
class ClientHandshake(Message):
    type: ClassVar[MessageType] = MessageType.CLIENT_HANDSHAKE
    requested_host_color: Color = Color.WHITE

    def to_payload(self) -> Dict[str, Any]:
        return {'requested_host_color': encode_enum(self.requested_host_color)}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'ClientHandshake':
        return cls(decode_enum(Color, _field(payload, 'requested_host_color')))


@dataclass(frozen=True)
class ClientMove(Message):
    type: ClassVar[MessageType] = MessageType.CLIENT_MOVE
    move: Move

    def to_payload(self) -> Dict[str, Any]:
        return {'move': encode_move(self.move)}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'ClientMove':
        return cls(decode_move(_field(payload, 'move')))


@dataclass(frozen=True)
class ClientPromote(Message):
    type: ClassVar[MessageType] = MessageType.CLIENT_PROMOTE
    square: Square
    piece_type: PieceType

    def to_payload(self) -> Dict[str, Any]:
        return {'square': encode_square(self.square), 'piece_type': encode_enum(self.piece_type)}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'ClientPromote':
        return cls(
            decode_square(_field(payload, 'square')),
            decode_enum(PieceType, _field(payload, 'piece_type')),
        )


@dataclass(frozen=True)
class ClientResign(Message):
    type: ClassVar[MessageType] = MessageType.CLIENT_RESIGN


@dataclass(frozen=True)
class ClientOfferDraw(Message):
    type: ClassVar[MessageType] = MessageType.CLIENT_OFFER_DRAW


@dataclass(frozen=True)
class HostHandshake(Message):
    type: ClassVar[MessageType] = MessageType.HOST_HANDSHAKE
    position: Position
    features: Tuple[Feature, ...]
    host_color: Color

    def to_payload(self) -> Dict[str, Any]:
        payload = self.position.to_payload()
        payload['features'] = [encode_enum(feature) for feature in self.features]
        payload['host_color'] = encode_enum(self.host_color)
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'HostHandshake':
        features = _field(payload, 'features')
        if not isinstance(features, list):
            raise ProtocolError("features must be a list")
        return cls(
            position=Position.from_payload(payload),
            features=tuple(decode_enum(Feature, name) for name in features),
            host_color=decode_enum(Color, _field(payload, 'host_color')),
        )


@dataclass(frozen=True)
class HostState(Message):
    type: ClassVar[MessageType] = MessageType.HOST_STATE
    position: Position
    last_move: Optional[Move] = None

    def to_payload(self) -> Dict[str, Any]:
        payload = self.position.to_payload()
        payload['last_move'] = encode_move(self.last_move) if self.last_move else None
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'HostState':
        last_move = payload.get('last_move')
        return cls(
            position=Position.from_payload(payload),
            last_move=decode_move(last_move) if last_move is not None else None,
        )


@dataclass(frozen=True)
class HostReject(Message):
    type: ClassVar[MessageType] = MessageType.HOST_REJECT
    position: Position
    reason: str

    def to_payload(self) -> Dict[str, Any]:
        payload = self.position.to_payload()
        payload['reason'] = self.reason
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'HostReject':
        reason = _field(payload, 'reason')
        if not isinstance(reason, str):
            raise ProtocolError(f"reason must be a string, got {reason!r}")
        return cls(Position.from_payload(payload), reason)


@dataclass(frozen=True)
class HostPromoted(Message):
    type: ClassVar[MessageType] = MessageType.HOST_PROMOTED
    position: Position
    square: Square
    piece_type: PieceType

    def to_payload(self) -> Dict[str, Any]:
        payload = self.position.to_payload()
        payload['square'] = encode_square(self.square)
        payload['piece_type'] = encode_enum(self.piece_type)
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'HostPromoted':
        return cls(
            position=Position.from_payload(payload),
            square=decode_square(_field(payload, 'square')),
            piece_type=decode_enum(PieceType, _field(payload, 'piece_type')),
        )


@dataclass(frozen=True)
class HostResigned(Message):
    type: ClassVar[MessageType] = MessageType.HOST_RESIGNED
    winner: Color

    def to_payload(self) -> Dict[str, Any]:
        return {'winner': encode_enum(self.winner)}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'HostResigned':
        return cls(decode_enum(Color, _field(payload, 'winner')))


@dataclass(frozen=True)
class HostDraw(Message):
    type: ClassVar[MessageType] = MessageType.HOST_DRAW


MESSAGE_CLASSES: Dict[MessageType, Type[Message]] = {
    cls.type: cls for cls in (
        ClientHandshake, ClientMove, ClientPromote, ClientResign, ClientOfferDraw,
        HostHandshake, HostState, HostReject, HostPromoted, HostResigned, HostDraw,
    )
}


def encode_message(message: Message) -> bytes:
    """Serialize a message to JSON bytes (no length prefix)."""
    data = {
        'type': message.type.name,
        'payload': message.to_payload(),
    }
    return json.dumps(data, ensure_ascii=False).encode('utf-8')


def decode_message(data: bytes) -> Message:
    """Deserialize JSON bytes into a message.

    Raises:
        ProtocolError: the bytes are not a valid message
    """
    try:
        obj = json.loads(data.decode('utf-8'))
    except (UnicodeDecodeError, ValueError, RecursionError) as e:
        # ValueError covers JSONDecodeError and oversized integer literals
        raise ProtocolError(f"Malformed message: {e}") from None
    if not isinstance(obj, dict):
        raise ProtocolError("Message must be a JSON object")

    message_type = decode_enum(MessageType, _field(obj, 'type'))
    payload = obj.get('payload', {})
    if not isinstance(payload, dict):
        raise ProtocolError("Message payload must be an object")
    return MESSAGE_CLASSES[message_type].from_payload(payload)


# =============================================================================
# FRAME READER/WRITER - handles length-prefixed framing over TCP
# =============================================================================

class FrameReader:
    """Reads length-prefixed frames from a stream.

    Usage:
        reader = FrameReader()
        reader.feed(data_from_socket)
        message = reader.get_message()   # None until a whole frame arrived
    """

    HEADER_SIZE = 4  # 4 bytes for length (big-endian uint32)
    MAX_FRAME_SIZE = 1024 * 1024  # 1MB max message size

    def __init__(self):
        self._buffer = bytearray()

    @property
    def buffered(self) -> int:
        """Bytes received but not yet returned as a frame."""
        return len(self._buffer)

    def feed(self, data: bytes):
        """Add received data to buffer."""
        self._buffer.extend(data)

    def get_frame(self) -> Optional[bytes]:
        """Extract next complete frame from buffer, or None if incomplete."""
        if len(self._buffer) < self.HEADER_SIZE:
            return None

        # Read length prefix
        length = struct.unpack('>I', self._buffer[:self.HEADER_SIZE])[0]

        if length > self.MAX_FRAME_SIZE:
            raise FramingError(f"Frame too large: {length} bytes")

        total_size = self.HEADER_SIZE + length
        if len(self._buffer) < total_size:
            return None  # Incomplete frame

        # Extract frame
        frame = bytes(self._buffer[self.HEADER_SIZE:total_size])
        del self._buffer[:total_size]
        return frame

    def get_message(self) -> Optional[Message]:
        """Get next complete message, or None if incomplete."""
        frame = self.get_frame()
        if frame is None:
            return None
        return Message.from_bytes(frame)


class FrameWriter:
    """Writes length-prefixed frames.

    Usage:
        data = FrameWriter.pack(message)
        socket.sendall(data)
    """

    @staticmethod
    def pack(message: Message) -> bytes:
        """Pack message into length-prefixed frame."""
        body = encode_message(message)
        if len(body) > FrameReader.MAX_FRAME_SIZE:
            raise FramingError(f"Frame too large: {len(body)} bytes")
        return struct.pack('>I', len(body)) + body

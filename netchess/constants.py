"""Game constants and enums."""
from enum import Enum, auto


# Network defaults
DEFAULT_PORT = 7777
DEFAULT_ADDRESS = '127.0.0.1'
BIND_ADDRESS = '0.0.0.0'

# Front-end polls sessions this many times per second
TICK_RATE = 30

# Board dimensions
BOARD_FILES = 8
BOARD_RANKS = 8

FILE_NAMES = 'abcdefgh'


class Color(Enum):
    """Side colors."""
    WHITE = auto()
    BLACK = auto()

    @property
    def opposite(self) -> 'Color':
        return Color.BLACK if self is Color.WHITE else Color.WHITE


class PieceType(Enum):
    """Chess piece kinds."""
    PAWN = auto()
    KNIGHT = auto()
    BISHOP = auto()
    ROOK = auto()
    QUEEN = auto()
    KING = auto()


# Pieces a pawn may promote to
PROMOTION_TYPES = (PieceType.QUEEN, PieceType.ROOK, PieceType.BISHOP, PieceType.KNIGHT)


class CastleSide(Enum):
    """Castling direction."""
    KING = auto()   # Short castling, towards the h-file
    QUEEN = auto()  # Long castling, towards the a-file


class Outcome(Enum):
    """Terminal status of a game ("joever")."""
    ONGOING = auto()
    WHITE_WINS = auto()
    BLACK_WINS = auto()
    DRAW = auto()

    @classmethod
    def win_for(cls, color: Color) -> 'Outcome':
        return cls.WHITE_WINS if color is Color.WHITE else cls.BLACK_WINS

    @property
    def is_over(self) -> bool:
        return self is not Outcome.ONGOING


class ProtocolState(Enum):
    """Connection lifecycle of a network session."""
    NOT_CONNECTED = auto()  # Host: listening, no client yet
    CONNECTING = auto()     # Client: TCP connect in progress
    HANDSHAKE = auto()      # Waiting for the peer's handshake
    PLAY = auto()           # Handshake done, game messages flow
    DISCONNECTED = auto()   # Peer gone or connection torn down

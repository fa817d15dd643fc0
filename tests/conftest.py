"""Pytest fixtures for netchess session testing."""
import socket
import time
from typing import Callable, List, Optional

import pytest

from netchess.board import Square
from netchess.constants import Color, ProtocolState
from netchess.moves import CastleMove, Move, NormalMove
from netchess.network.client import ClientSession
from netchess.network.protocol import ClientHandshake, FrameWriter, HostHandshake, Message
from netchess.network.server import HostSession
from netchess.network.stream import FramedStream, ReadStatus
from netchess.rules import ChessRulesEngine, UnsupportedMoveError


LOOPBACK = '127.0.0.1'

# Well-framed bodies that are not JSON syntax errors but still cannot be decoded
DEEP_NESTING = b'[' * 100000 + b']' * 100000
HUGE_INTEGER = (
    b'{"type": "CLIENT_MOVE", "payload": {"move": {"kind": "normal", "start_x": '
    + b'1' * 5000
    + b', "start_y": 1, "end_x": 4, "end_y": 3}}}'
)


def sq(name: str) -> Square:
    """Square from algebraic name."""
    return Square.parse(name)


def mv(text: str) -> NormalMove:
    """Normal move from 'e2e4'."""
    return NormalMove(sq(text[:2]), sq(text[2:]))


def pump(*sessions, until: Callable[[], bool], limit: int = 2000):
    """Update sessions round-robin until `until()` holds.

    Usage:
        pump(host, client, until=lambda: client.state is ProtocolState.PLAY)
    """
    for _ in range(limit):
        if until():
            return
        for session in sessions:
            session.update()
        time.sleep(0.001)
    assert until(), "condition not reached while pumping sessions"


class CastlingUnsupportedEngine(ChessRulesEngine):
    """Engine that cannot adjudicate castling."""
    supports_castling = False

    def apply(self, move: Move) -> None:
        if isinstance(move, CastleMove):
            raise UnsupportedMoveError("Castling is not supported by this engine")
        super().apply(move)

    def legal_moves(self, square: Square) -> List[Move]:
        return [m for m in super().legal_moves(square) if not isinstance(m, CastleMove)]


class RawClient:
    """Hand-driven client for poking a HostSession with arbitrary messages."""

    def __init__(self, port: int):
        self.sock = socket.create_connection((LOOPBACK, port), timeout=2.0)
        self.stream = FramedStream(self.sock)

    def send(self, message: Message):
        self.stream.write(message)

    def send_bytes(self, data: bytes, host: Optional[HostSession] = None):
        """Send raw bytes, pumping `host` whenever the socket buffer is full."""
        view = memoryview(data)
        while view:
            try:
                view = view[self.sock.send(view):]
            except BlockingIOError:
                assert host is not None, "send buffer full and no host to pump"
                host.update()
                time.sleep(0.001)

    def receive(self, host: HostSession, limit: int = 2000) -> Message:
        """Pump the host until a message arrives for this client."""
        for _ in range(limit):
            host.update()
            result = self.stream.try_read()
            if result.status is ReadStatus.MESSAGE:
                return result.message
            assert result.status is not ReadStatus.CLOSED, "host closed the connection"
            time.sleep(0.001)
        raise AssertionError("no message from host")

    def handshake(self, host: HostSession, host_color: Color = Color.BLACK) -> HostHandshake:
        self.send(ClientHandshake(requested_host_color=host_color))
        reply = self.receive(host)
        assert isinstance(reply, HostHandshake)
        return reply

    def close(self):
        self.stream.close()


@pytest.fixture
def engine() -> ChessRulesEngine:
    """Fresh engine at the standard starting position."""
    return ChessRulesEngine()


@pytest.fixture
def stream_pair():
    """A FramedStream and the raw socket on the other end of it.

    Usage:
        stream, peer = stream_pair
        peer.sendall(FrameWriter.pack(msg))
        result = stream.try_read()
    """
    left, right = socket.socketpair()
    stream = FramedStream(left)
    yield stream, right
    stream.close()
    right.close()


@pytest.fixture
def make_host():
    """Factory fixture for hosts on an ephemeral loopback port.

    Usage:
        host = make_host()                          # standard engine
        host = make_host(ChessRulesEngine(fen))     # custom position
    """
    hosts: List[HostSession] = []

    def _make(engine: Optional[ChessRulesEngine] = None, host_cls=HostSession) -> HostSession:
        session = host_cls(engine or ChessRulesEngine(), port=0, bind_address=LOOPBACK)
        hosts.append(session)
        return session

    yield _make
    for session in hosts:
        session.close()


@pytest.fixture
def host(make_host) -> HostSession:
    return make_host()


@pytest.fixture
def raw_client(host):
    """Raw socket client already connected (not yet handshaken) to `host`."""
    client = RawClient(host.port)
    yield client
    client.close()


@pytest.fixture
def connect(make_host):
    """Factory fixture returning a (host, client) pair that finished the handshake.

    By default the client asks the host to play Black, so the client is White
    and moves first.

    Usage:
        host, client = connect()
        host, client = connect(engine=ChessRulesEngine(fen), host_color=Color.WHITE)
    """
    clients: List[ClientSession] = []

    def _connect(engine=None, host_color: Color = Color.BLACK, host_cls=HostSession):
        host_session = make_host(engine, host_cls=host_cls)
        client = ClientSession(LOOPBACK, host_session.port, requested_host_color=host_color)
        clients.append(client)
        pump(host_session, client, until=lambda: (
            client.state is ProtocolState.PLAY and host_session.state is ProtocolState.PLAY
        ))
        return host_session, client

    yield _connect
    for client in clients:
        client.close()


def frame(message: Message) -> bytes:
    return FrameWriter.pack(message)

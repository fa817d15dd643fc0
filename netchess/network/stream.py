"""Non-blocking framed message stream over a TCP socket.

Usage:
    stream = FramedStream(sock)
    result = stream.try_read()      # once per tick
    if result.status is ReadStatus.MESSAGE:
        handle(result.message)
    elif result.status is ReadStatus.CLOSED:
        peer_gone()
    stream.write(ClientMove(move))
"""

import logging
import select
import socket
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from .protocol import FrameReader, Message

logger = logging.getLogger(__name__)


class ReadStatus(Enum):
    """What a single read attempt produced."""
    PENDING = auto()   # No complete frame yet, try again next tick
    MESSAGE = auto()   # One whole message decoded
    CLOSED = auto()    # Peer closed or reset the connection


@dataclass(frozen=True)
class ReadResult:
    status: ReadStatus
    message: Optional[Message] = None


PENDING = ReadResult(ReadStatus.PENDING)
CLOSED = ReadResult(ReadStatus.CLOSED)

# Errors that mean the peer is gone
_DISCONNECT_ERRORS = (ConnectionResetError, ConnectionAbortedError, BrokenPipeError)


class FramedStream:
    """Length-prefixed message stream on a non-blocking socket.

    The socket is owned by the stream; closing the stream closes it.
    """

    RECV_SIZE = 4096
    WRITE_TIMEOUT = 5.0  # seconds to wait for a full send buffer to drain

    def __init__(self, sock: socket.socket):
        sock.setblocking(False)
        self._sock = sock
        self._reader = FrameReader()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def try_read(self) -> ReadResult:
        """Attempt to produce one message without blocking.

        Frames already buffered are returned before the socket is read
        again, so back-to-back frames come out one per call.

        Raises:
            ProtocolError: a complete frame did not hold a valid message
        """
        if self._closed:
            return CLOSED

        message = self._reader.get_message()
        if message is not None:
            return ReadResult(ReadStatus.MESSAGE, message)

        try:
            data = self._sock.recv(self.RECV_SIZE)
        except (BlockingIOError, InterruptedError):
            return PENDING
        except OSError as e:
            # Any other socket error leaves the connection unusable
            logger.debug(f"Read failed, peer gone: {e}")
            self._closed = True
            return CLOSED

        if not data:
            if self._reader.buffered:
                logger.debug(f"Peer closed with {self._reader.buffered} unread bytes")
            self._closed = True
            return CLOSED

        self._reader.feed(data)
        message = self._reader.get_message()
        if message is None:
            return PENDING
        return ReadResult(ReadStatus.MESSAGE, message)

    def write(self, message: Message):
        """Send one message, blocking only while the send buffer is full.

        Raises:
            ConnectionError: the peer is gone or the write timed out
        """
        if self._closed:
            raise ConnectionError("Stream is closed")

        view = memoryview(message.to_bytes())
        while view:
            try:
                sent = self._sock.send(view)
            except (BlockingIOError, InterruptedError):
                _, writable, _ = select.select([], [self._sock], [], self.WRITE_TIMEOUT)
                if not writable:
                    raise ConnectionError("Timed out writing to peer") from None
                continue
            except _DISCONNECT_ERRORS:
                self._closed = True
                raise
            view = view[sent:]
        logger.debug(f"Sent {message.type.name}")

    def close(self):
        """Close the underlying socket."""
        self._closed = True
        try:
            self._sock.close()
        except OSError:
            pass

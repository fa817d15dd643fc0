"""Network module for two-player games over TCP."""

from .protocol import MessageType, Message, Feature, FrameReader, FrameWriter, ProtocolError, FramingError
from .stream import FramedStream, ReadStatus, ReadResult
from .server import HostSession
from .client import ClientSession

"""Tests for wire encodings, message (de)serialization and frame splitting."""
import json
import struct

import pytest

from netchess.board import BoardSnapshot, Piece, Square
from netchess.constants import CastleSide, Color, Outcome, PieceType
from netchess.moves import CastleMove, NormalMove
from netchess.network.protocol import (
    EMPTY_TAG, PIECE_TAGS, ClientHandshake, ClientMove, ClientOfferDraw, ClientPromote,
    ClientResign, Feature, FrameReader, FrameWriter, FramingError, HostDraw, HostHandshake,
    HostPromoted, HostReject, HostResigned, HostState, Message, MessageType, Position,
    ProtocolError, decode_board, decode_message, decode_move, decode_piece, decode_square,
    encode_board, encode_message, encode_move, encode_piece, encode_square,
)
from tests.conftest import DEEP_NESTING, HUGE_INTEGER, mv, sq


def opening_position() -> Position:
    return Position(
        board=BoardSnapshot.initial(),
        legal_moves=(mv('e2e3'), mv('e2e4'), mv('g1f3')),
        outcome=Outcome.ONGOING,
        turn=Color.WHITE,
    )


def raw(message_type: str, payload) -> bytes:
    return json.dumps({'type': message_type, 'payload': payload}).encode('utf-8')


class TestValueEncodings:
    """Squares, pieces, boards and moves on the wire."""

    def test_every_piece_round_trips(self):
        """Piece encoding is total, including the empty square."""
        for piece in PIECE_TAGS:
            assert decode_piece(encode_piece(piece)) == piece

    def test_piece_tags_are_a_bijection(self):
        """13 values (12 pieces + empty) map to 13 distinct tags."""
        assert len(PIECE_TAGS) == 13
        assert len(set(PIECE_TAGS.values())) == 13
        assert encode_piece(None) == EMPTY_TAG
        assert encode_piece(Piece(PieceType.PAWN, Color.WHITE)) == 'WHITE_PAWN'

    def test_every_square_round_trips(self):
        for square in Square.all():
            assert decode_square(encode_square(square)) == square

    def test_castle_moves_round_trip(self):
        """Castling is representable natively, by side only."""
        for side in CastleSide:
            move = CastleMove(side)
            assert decode_move(encode_move(move)) == move
        assert encode_move(CastleMove(CastleSide.KING)) == {'kind': 'castle', 'side': 'KING'}

    def test_normal_moves_round_trip(self):
        for move in (mv('e2e4'), mv('a1h8'), mv('h8a1'), mv('g8f6')):
            assert decode_move(encode_move(move)) == move

    def test_normal_move_wire_fields(self):
        assert encode_move(mv('e2e4')) == {
            'kind': 'normal', 'start_x': 4, 'start_y': 1, 'end_x': 4, 'end_y': 3,
        }

    def test_board_round_trips(self):
        board = BoardSnapshot.initial()
        encoded = encode_board(board)
        assert encoded[0][4] == 'WHITE_KING'
        assert encoded[3][3] == EMPTY_TAG
        assert decode_board(encoded) == board

    @pytest.mark.parametrize("obj", [
        {'x': 8, 'y': 0},
        {'x': 0, 'y': -1},
        {'x': '1', 'y': 0},
        {'x': True, 'y': 0},
        {'x': 1},
        [1, 2],
        None,
    ])
    def test_invalid_squares(self, obj):
        with pytest.raises(ProtocolError):
            decode_square(obj)

    @pytest.mark.parametrize("obj", [
        {'kind': 'teleport'},
        {'kind': 'castle', 'side': 'MIDDLE'},
        {'kind': 'normal', 'start_x': 0, 'start_y': 0, 'end_x': 9, 'end_y': 0},
        {'start_x': 0},
        'e2e4',
    ])
    def test_invalid_moves(self, obj):
        with pytest.raises(ProtocolError):
            decode_move(obj)

    def test_invalid_boards(self):
        good = encode_board(BoardSnapshot.initial())
        with pytest.raises(ProtocolError):
            decode_board(good[:7])
        with pytest.raises(ProtocolError):
            decode_board([row[:7] for row in good])
        bad = [list(row) for row in good]
        bad[0][0] = 'WHITE_DRAGON'
        with pytest.raises(ProtocolError):
            decode_board(bad)


class TestMessages:
    """Message catalogue serialization."""

    @pytest.mark.parametrize("message", [
        ClientHandshake(Color.BLACK),
        ClientMove(mv('e2e4')),
        ClientMove(CastleMove(CastleSide.QUEEN)),
        ClientPromote(sq('e8'), PieceType.KNIGHT),
        ClientResign(),
        ClientOfferDraw(),
        HostHandshake(opening_position(), (Feature.POSSIBLE_MOVE_GENERATION,), Color.BLACK),
        HostState(opening_position(), last_move=mv('e7e5')),
        HostState(opening_position()),
        HostReject(opening_position(), "It is white's turn"),
        HostPromoted(opening_position(), sq('a8'), PieceType.QUEEN),
        HostResigned(Color.WHITE),
        HostDraw(),
    ])
    def test_message_round_trip(self, message):
        """Each message decodes to an equal message."""
        decoded = decode_message(encode_message(message))
        assert type(decoded) is type(message)
        assert decoded == message

    def test_envelope_shape(self):
        data = json.loads(encode_message(HostResigned(Color.BLACK)))
        assert data == {'type': 'HOST_RESIGNED', 'payload': {'winner': 'BLACK'}}

    def test_position_carries_explicit_turn_and_promotion(self):
        position = Position(
            board=BoardSnapshot.empty(), legal_moves=(), outcome=Outcome.ONGOING,
            turn=Color.BLACK, in_check=True, promotion=sq('h1'),
        )
        payload = HostState(position).to_payload()
        assert payload['turn'] == 'BLACK'
        assert payload['in_check'] is True
        assert payload['promotion'] == {'x': 7, 'y': 0}

    def test_every_type_has_a_class(self):
        from netchess.network.protocol import MESSAGE_CLASSES
        assert set(MESSAGE_CLASSES) == set(MessageType)

    def test_from_bytes_matches_decode(self):
        message = ClientMove(mv('d2d4'))
        assert Message.from_bytes(encode_message(message)) == message

    @pytest.mark.parametrize("data", [
        b'not json',
        b'\xff\xfe',
        b'[1, 2, 3]',
        raw('FLY_TO_MOON', {}),
        raw('CLIENT_MOVE', {}),
        raw('CLIENT_MOVE', {'move': {'kind': 'normal'}}),
        raw('CLIENT_HANDSHAKE', {'requested_host_color': 'PURPLE'}),
        raw('CLIENT_HANDSHAKE', []),
        raw('HOST_REJECT', {'reason': 42}),
        b'{"payload": {}}',
        DEEP_NESTING,
        HUGE_INTEGER,
    ])
    def test_malformed_messages_raise(self, data):
        """Invalid payloads are protocol errors, never silently accepted."""
        with pytest.raises(ProtocolError):
            decode_message(data)

    def test_host_state_with_bad_check_flag(self):
        payload = HostState(opening_position()).to_payload()
        payload['in_check'] = 'yes'
        with pytest.raises(ProtocolError):
            decode_message(raw('HOST_STATE', payload))


class TestFrameReader:
    """Length-prefixed framing."""

    def test_frame_layout(self):
        message = ClientResign()
        data = FrameWriter.pack(message)
        body = encode_message(message)
        assert data[:4] == struct.pack('>I', len(body))
        assert data[4:] == body
        assert message.to_bytes() == data

    def test_incomplete_header(self):
        reader = FrameReader()
        reader.feed(b'\x00\x00')
        assert reader.get_frame() is None

    def test_split_at_every_byte_boundary(self):
        """Any split of a frame decodes to the same message, exactly once."""
        message = HostState(opening_position(), last_move=mv('e2e4'))
        data = FrameWriter.pack(message)
        for split in range(1, len(data)):
            reader = FrameReader()
            reader.feed(data[:split])
            assert reader.get_message() is None
            reader.feed(data[split:])
            assert reader.get_message() == message
            assert reader.get_message() is None
            assert reader.buffered == 0

    def test_byte_at_a_time(self):
        message = ClientMove(mv('e2e4'))
        data = FrameWriter.pack(message)
        reader = FrameReader()
        decoded = []
        for byte in data:
            reader.feed(bytes([byte]))
            result = reader.get_message()
            if result is not None:
                decoded.append(result)
        assert decoded == [message]

    def test_back_to_back_frames_keep_order(self):
        first, second = ClientMove(mv('e2e4')), ClientOfferDraw()
        reader = FrameReader()
        reader.feed(FrameWriter.pack(first) + FrameWriter.pack(second)[:3])
        assert reader.get_message() == first
        assert reader.get_message() is None
        reader.feed(FrameWriter.pack(second)[3:])
        assert reader.get_message() == second

    def test_oversized_frame(self):
        reader = FrameReader()
        reader.feed(struct.pack('>I', FrameReader.MAX_FRAME_SIZE + 1))
        with pytest.raises(FramingError):
            reader.get_frame()

    def test_complete_garbage_frame_is_fatal(self):
        """A well-delimited frame with a bad payload raises, it is not 'incomplete'."""
        reader = FrameReader()
        reader.feed(struct.pack('>I', 5) + b'{oops')
        with pytest.raises(ProtocolError):
            reader.get_message()

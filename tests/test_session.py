"""Tests for the hot-seat LocalSession."""
import pytest

from netchess.constants import Color, Outcome, PieceType
from netchess.rules import ChessRulesEngine, IllegalMoveError
from netchess.session import GameOverError, LocalSession
from tests.conftest import mv, sq


@pytest.fixture
def local(engine) -> LocalSession:
    return LocalSession(engine)


class TestLocalPlay:
    """Both sides move through the same session."""

    def test_moves_alternate(self, local):
        local.perform_move(mv('e2e4'))
        assert local.current_turn() is Color.BLACK
        local.perform_move(mv('e7e5'))
        assert local.current_turn() is Color.WHITE
        assert local.board()[sq('e4')] is not None

    def test_illegal_move_propagates(self, local):
        with pytest.raises(IllegalMoveError):
            local.perform_move(mv('e2e5'))
        assert local.current_turn() is Color.WHITE

    def test_possible_moves(self, local):
        assert set(local.possible_moves(sq('e2'))) == {mv('e2e3'), mv('e2e4')}
        assert local.possible_moves(sq('e7')) == []

    def test_state_callback(self, local):
        calls = []
        local.on_state = lambda: calls.append(local.current_turn())
        local.perform_move(mv('d2d4'))
        assert calls == [Color.BLACK]

    def test_update_is_a_no_op(self, local):
        local.update()
        assert local.current_turn() is Color.WHITE
        assert local.is_my_turn()

    def test_promotion(self):
        local = LocalSession(ChessRulesEngine('7k/P7/8/8/8/8/8/K7 w - - 0 1'))
        local.perform_move(mv('a7a8'))
        assert local.pending_promotion() == sq('a8')
        local.promote(sq('a8'), PieceType.ROOK)
        assert local.board()[sq('a8')].type is PieceType.ROOK
        assert local.current_turn() is Color.BLACK


class TestLocalEnding:
    """Games end on the board, by resignation or by agreement."""

    def test_checkmate_fires_game_over(self, local):
        outcomes = []
        local.on_game_over = outcomes.append
        for text in ('f2f3', 'e7e5', 'g2g4', 'd8h4'):
            local.perform_move(mv(text))
        assert outcomes == [Outcome.BLACK_WINS]
        assert local.is_check()
        assert not local.is_my_turn()
        assert local.possible_moves(sq('a2')) == []

    def test_resign_gives_win_to_opponent_of_side_to_move(self, local):
        local.perform_move(mv('e2e4'))
        local.resign()
        assert local.outcome() is Outcome.WHITE_WINS

    def test_draw_offer_ends_game(self, local):
        outcomes = []
        local.on_game_over = outcomes.append
        local.offer_draw()
        assert local.outcome() is Outcome.DRAW
        assert outcomes == [Outcome.DRAW]

    def test_no_moves_after_resignation(self, local):
        local.resign()
        with pytest.raises(GameOverError):
            local.perform_move(mv('e2e4'))
        with pytest.raises(GameOverError):
            local.resign()

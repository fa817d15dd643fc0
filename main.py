"""
netchess - two-player chess over TCP.

    python main.py host [--port 7777]
    python main.py join 192.168.1.10 [--port 7777] [--host-color black]
    python main.py local

Type moves like 'e2e4', 'O-O', or 'help' for the full command list.
"""
import argparse
import logging
import sys
import threading
import time
from queue import Empty, Queue
from typing import Optional

from netchess.board import Square
from netchess.constants import BIND_ADDRESS, Color, Outcome, PieceType
from netchess.moves import parse_move
from netchess.network import ClientSession, HostSession
from netchess.rules import ChessRulesEngine, MoveError
from netchess.session import GameSession, LocalSession, SessionError
from netchess.settings import get_address, get_host_color, get_port, get_tick_rate, load_settings
from netchess.version import __version__

logger = logging.getLogger(__name__)

PROMOTION_LETTERS = {
    'q': PieceType.QUEEN,
    'r': PieceType.ROOK,
    'b': PieceType.BISHOP,
    'n': PieceType.KNIGHT,
}

HELP = """Commands:
  e2e4 / O-O / O-O-O   play a move
  moves e2             list moves for the piece on e2
  promote e8 q         choose a promotion piece (q, r, b, n)
  resign               give up
  draw                 offer a draw (local: agree to a draw)
  accept / decline     answer the opponent's draw offer (host only)
  board                show the board
  quit                 leave"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Two-player chess over TCP')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    parser.add_argument('--version', action='version', version=f'netchess {__version__}')
    sub = parser.add_subparsers(dest='mode', required=True)

    host = sub.add_parser('host', help='Host a game and wait for an opponent')
    host.add_argument('--bind', default=BIND_ADDRESS, help='Address to bind to')
    host.add_argument('--port', type=int, help='Port to listen on')

    join = sub.add_parser('join', help='Join a hosted game')
    join.add_argument('address', nargs='?', help='Host address')
    join.add_argument('--port', type=int, help='Host port')
    join.add_argument('--host-color', choices=['white', 'black'],
                      help='Color to ask the host to play')

    sub.add_parser('local', help='Hot-seat game on this machine')
    return parser


def create_session(args: argparse.Namespace, settings: dict) -> GameSession:
    if args.mode == 'host':
        port = args.port if args.port is not None else get_port(settings)
        return HostSession(ChessRulesEngine(), port=port, bind_address=args.bind)
    if args.mode == 'join':
        address = args.address or get_address(settings)
        port = args.port if args.port is not None else get_port(settings)
        host_color = Color[args.host_color.upper()] if args.host_color else get_host_color(settings)
        return ClientSession(address, port, requested_host_color=host_color)
    return LocalSession(ChessRulesEngine())


def print_board(session: GameSession):
    print()
    print(session.board().render())
    status = f"{session.current_turn().name.lower()} to move"
    if session.is_check():
        status += ", check"
    if session.pending_promotion():
        status += f", promotion pending on {session.pending_promotion()}"
    print(status)


def attach_callbacks(session: GameSession):
    session.on_state = lambda: print_board(session)
    session.on_reject = lambda reason: print(f"Move rejected: {reason}")
    session.on_disconnected = lambda reason: print(f"Connection closed: {reason}")
    session.on_draw_offered = lambda: print("Opponent offers a draw (accept / decline)")

    def game_over(outcome: Outcome):
        if outcome is Outcome.DRAW:
            print("Game drawn.")
        else:
            print(f"Game over: {outcome.name.replace('_', ' ').lower()}.")
    session.on_game_over = game_over


def read_commands(commands: Queue):
    """Feed stdin lines to the main loop (runs in a daemon thread)."""
    for line in sys.stdin:
        commands.put(line.strip())
    commands.put(None)  # EOF


def handle_command(session: GameSession, line: str) -> bool:
    """Run one console command. Returns False to quit."""
    words = line.split()
    if not words:
        return True
    command = words[0].lower()

    try:
        if command in ('quit', 'exit'):
            return False
        elif command == 'help':
            print(HELP)
        elif command == 'board':
            print_board(session)
        elif command == 'moves' and len(words) == 2:
            moves = session.possible_moves(Square.parse(words[1]))
            print(' '.join(str(move) for move in moves) or 'no moves')
        elif command == 'promote' and len(words) == 3:
            piece_type = PROMOTION_LETTERS.get(words[2].lower())
            if piece_type is None:
                print("Promote to one of: q, r, b, n")
            else:
                session.promote(Square.parse(words[1]), piece_type)
        elif command == 'resign':
            session.resign()
        elif command == 'draw' and isinstance(session, (ClientSession, LocalSession)):
            session.offer_draw()
        elif command == 'accept' and isinstance(session, HostSession):
            session.accept_draw()
        elif command == 'decline' and isinstance(session, HostSession):
            session.decline_draw()
        else:
            session.perform_move(parse_move(line))
    except (ValueError, SessionError, MoveError) as e:
        print(e)
    return True


def run(session: GameSession, tick_rate: int):
    """Main loop: poll the session, then handle typed commands."""
    commands: Queue = Queue()
    threading.Thread(target=read_commands, args=(commands,), daemon=True).start()
    if isinstance(session, LocalSession):
        print_board(session)

    running = True
    while running:
        session.update()
        while running:
            try:
                line: Optional[str] = commands.get_nowait()
            except Empty:
                break
            running = line is not None and handle_command(session, line)
        time.sleep(1.0 / tick_rate)


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s',
    )
    settings = load_settings()

    try:
        session = create_session(args, settings)
    except OSError as e:
        logger.error(f"Cannot start session: {e}")
        return 1

    attach_callbacks(session)
    print("Type 'help' for commands.")
    try:
        run(session, get_tick_rate(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        session.close()
    return 0


if __name__ == '__main__':
    sys.exit(main())

from tictactoe import db
from tictactoe.models import Board, BOARD_SIZE


def create_board(room_id: int) -> Board:
    board = Board(room_id=room_id)
    board.cells = [None] * BOARD_SIZE
    board.move_history = []
    db.session.add(board)
    # Flush so the caller can point the room at board.id in the same transaction
    db.session.flush()
    return board


def find_by_room_id(room_id: int):
    return Board.query.filter_by(room_id=room_id).first()


def record_move(board: Board, index: int, sign: str) -> None:
    """Set the cell and append to the history. Caller checks the cell is empty."""
    cells = board.cells
    cells[index] = sign
    board.cells = cells
    history = board.move_history
    history.append({'sign': sign, 'index': index})
    board.move_history = history
    db.session.add(board)


def delete_board(board_id) -> None:
    if board_id is None:
        return
    board = db.session.get(Board, board_id)
    if board is not None:
        db.session.delete(board)

"""Win/draw evaluation for the 3x3 grid.

Pure functions only: no database access, no app context.
"""
from typing import NamedTuple, Optional, Sequence, Tuple

WIN_LINES = (
    (0, 1, 2), (3, 4, 5), (6, 7, 8),  # rows
    (0, 3, 6), (1, 4, 7), (2, 5, 8),  # columns
    (0, 4, 8), (2, 4, 6),  # diagonals
)

IN_PROGRESS = 'in_progress'
WINNER = 'winner'
DRAW = 'draw'


class Evaluation(NamedTuple):
    outcome: str
    sign: Optional[str] = None
    line: Optional[Tuple[int, int, int]] = None

    @property
    def finished(self) -> bool:
        return self.outcome != IN_PROGRESS


def evaluate(cells: Sequence[Optional[str]]) -> Evaluation:
    """Return the first matching line in ``WIN_LINES`` order, else draw or in progress."""
    if len(cells) != 9:
        raise ValueError('Board must have exactly 9 cells')
    for line in WIN_LINES:
        a, b, c = line
        if cells[a] and cells[a] == cells[b] == cells[c]:
            return Evaluation(WINNER, cells[a], line)
    if all(cell is not None for cell in cells):
        return Evaluation(DRAW)
    return Evaluation(IN_PROGRESS)

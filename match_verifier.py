from __future__ import annotations

from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple

from grid_engine import WordPlacement


@dataclass(frozen=True)
class SelectedCell:
    """One cell of the player's drag/click path."""
    row: int
    col: int
    value: str


@dataclass
class MatchResult:
    found: bool
    placement: Optional[WordPlacement] = None


def _sign(n: int) -> int:
    return (n > 0) - (n < 0)


def _line_direction(cells: Sequence[SelectedCell]) -> Optional[Tuple[int, int]]:
    """
    Unit direction of the path, or None if the cells are not one straight
    line walked one cell at a time.
    """
    if len(cells) == 1:
        return (0, 0)
    first, last = cells[0], cells[-1]
    d = (_sign(last.row - first.row), _sign(last.col - first.col))
    for a, b in zip(cells, cells[1:]):
        if (b.row - a.row, b.col - a.col) != d:
            return None
    return d


def check_match(
    cells: Sequence[SelectedCell],
    placements: Sequence[WordPlacement],
    min_length: int = 0,
) -> MatchResult:
    """
    Do the selected cells spell an unfound word at its recorded placement?
    A match is either the word read from its start cell along its direction,
    or the word reversed read from its end cell along the negated direction.
    First unfound placement in list order wins. Nothing is mutated.
    """
    if not cells or len(cells) < min_length:
        return MatchResult(found=False)

    direction = _line_direction(cells)
    if direction is None:
        return MatchResult(found=False)

    selected = "".join(c.value for c in cells).upper()
    start = (cells[0].row, cells[0].col)
    end = (cells[-1].row, cells[-1].col)
    dr, dc = direction

    for p in placements:
        if p.found:
            continue
        forward = (
            selected == p.word
            and start == (p.row, p.col)
            and (dr, dc) == tuple(p.direction)
        )
        backward = (
            selected == p.word[::-1]
            and end == (p.row, p.col)
            and (dr, dc) == (-p.direction[0], -p.direction[1])
        )
        if forward or backward:
            return MatchResult(found=True, placement=p)

    return MatchResult(found=False)


def mark_word_found(
    placements: Sequence[WordPlacement], placement: WordPlacement
) -> Tuple[List[WordPlacement], bool]:
    """Return a copy of the list with the placement flagged found, plus whether all are found."""
    new_list = [replace(p, found=True) if p is placement else p for p in placements]
    return new_list, all(p.found for p in new_list)


def check_win_condition(placements: Sequence[WordPlacement]) -> bool:
    return bool(placements) and all(p.found for p in placements)


def cells_for_placement(placement: WordPlacement) -> List[Tuple[int, int]]:
    """All grid coordinates covered by the placement, start to end."""
    dr, dc = placement.direction
    return [(placement.row + i * dr, placement.col + i * dc) for i in range(len(placement.word))]


def select_line(
    grid: Sequence[Sequence[str]], start: Tuple[int, int], end: Tuple[int, int]
) -> List[SelectedCell]:
    """
    Cells from start to end inclusive, for click-start / click-end input.
    Empty when the two cells are not on one row, column or diagonal, or
    either lies outside the grid.
    """
    n = len(grid)
    (r0, c0), (r1, c1) = start, end
    for r, c in (start, end):
        if not (0 <= r < n and 0 <= c < len(grid[r])):
            return []
    dr, dc = r1 - r0, c1 - c0
    if dr and dc and abs(dr) != abs(dc):
        return []
    steps = max(abs(dr), abs(dc))
    sr, sc = _sign(dr), _sign(dc)
    return [
        SelectedCell(r0 + i * sr, c0 + i * sc, grid[r0 + i * sr][c0 + i * sc])
        for i in range(steps + 1)
    ]

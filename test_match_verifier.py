import unittest

from grid_engine import WordPlacement
from match_verifier import (
    SelectedCell,
    cells_for_placement,
    check_match,
    check_win_condition,
    mark_word_found,
    select_line,
)


def blank_grid(n=10):
    return [["X"] * n for _ in range(n)]


def put(grid, placement):
    for (r, c), ch in zip(cells_for_placement(placement), placement.word):
        grid[r][c] = ch


class TestCheckMatch(unittest.TestCase):
    """Selected path vs. placed words"""

    def setUp(self):
        self.sun = WordPlacement(word="SUN", row=2, col=3, direction=(0, 1))
        self.moon = WordPlacement(word="MOON", row=5, col=5, direction=(1, -1))
        self.grid = blank_grid()
        put(self.grid, self.sun)
        put(self.grid, self.moon)
        self.placements = [self.sun, self.moon]

    def test_forward_match(self):
        cells = select_line(self.grid, (2, 3), (2, 5))
        res = check_match(cells, self.placements)
        self.assertTrue(res.found)
        self.assertIs(res.placement, self.sun)

    def test_reverse_match(self):
        # "NUS" selected from the end cell back to the start
        cells = [SelectedCell(2, 5, "N"), SelectedCell(2, 4, "U"), SelectedCell(2, 3, "S")]
        res = check_match(cells, self.placements)
        self.assertTrue(res.found)
        self.assertIs(res.placement, self.sun)

    def test_diagonal_match(self):
        cells = select_line(self.grid, (5, 5), (8, 2))
        self.assertEqual("".join(c.value for c in cells), "MOON")
        self.assertIs(check_match(cells, self.placements).placement, self.moon)

    def test_right_letters_wrong_place(self):
        cells = [SelectedCell(0, 0, "S"), SelectedCell(0, 1, "U"), SelectedCell(0, 2, "N")]
        self.assertFalse(check_match(cells, self.placements).found)

    def test_non_straight_path(self):
        cells = [SelectedCell(2, 3, "S"), SelectedCell(2, 4, "U"), SelectedCell(3, 5, "N")]
        self.assertFalse(check_match(cells, self.placements).found)

    def test_gap_in_path(self):
        cells = [SelectedCell(2, 3, "S"), SelectedCell(2, 5, "N")]
        self.assertFalse(check_match(cells, self.placements).found)

    def test_found_words_are_skipped(self):
        self.sun.found = True
        cells = select_line(self.grid, (2, 3), (2, 5))
        self.assertFalse(check_match(cells, self.placements).found)

    def test_min_length_and_empty(self):
        self.assertFalse(check_match([], self.placements).found)
        cells = select_line(self.grid, (2, 3), (2, 5))
        self.assertFalse(check_match(cells, self.placements, min_length=4).found)

    def test_case_insensitive_values(self):
        cells = [SelectedCell(2, 3, "s"), SelectedCell(2, 4, "u"), SelectedCell(2, 5, "n")]
        self.assertTrue(check_match(cells, self.placements).found)

    def test_does_not_mutate(self):
        cells = select_line(self.grid, (2, 3), (2, 5))
        check_match(cells, self.placements)
        self.assertFalse(self.sun.found)


class TestFoundAndWin(unittest.TestCase):

    def test_mark_word_found_copies(self):
        a = WordPlacement("SUN", 0, 0, (0, 1))
        b = WordPlacement("MOON", 1, 0, (0, 1))
        placements = [a, b]

        new_list, all_found = mark_word_found(placements, a)
        self.assertTrue(new_list[0].found)
        self.assertFalse(a.found)
        self.assertFalse(all_found)
        self.assertFalse(check_win_condition(new_list))

        final, all_found = mark_word_found(new_list, new_list[1])
        self.assertTrue(all_found)
        self.assertTrue(check_win_condition(final))

    def test_empty_is_not_a_win(self):
        self.assertFalse(check_win_condition([]))


class TestSelectLine(unittest.TestCase):

    def test_straight_lines(self):
        grid = blank_grid(5)
        self.assertEqual(len(select_line(grid, (0, 0), (4, 4))), 5)
        self.assertEqual(len(select_line(grid, (3, 1), (3, 1))), 1)
        cells = select_line(grid, (4, 0), (0, 0))
        self.assertEqual([(c.row, c.col) for c in cells], [(4, 0), (3, 0), (2, 0), (1, 0), (0, 0)])

    def test_not_a_line_or_out_of_bounds(self):
        grid = blank_grid(5)
        self.assertEqual(select_line(grid, (0, 0), (1, 2)), [])
        self.assertEqual(select_line(grid, (0, 0), (0, 5)), [])


if __name__ == "__main__":
    unittest.main()

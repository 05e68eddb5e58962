import random
import unittest

from config import SelectionConfig
from game_state import GameProgressState, PuzzleDefinition, record_puzzle_completion
from puzzle_selector import (
    initialize_puzzle_selection,
    random_kethaneum_interval,
    select_genre,
    select_next_puzzle,
)


def make_puzzle(book, part, genre):
    return PuzzleDefinition(
        title=f"{book} {part}", book=book, genre=genre, words=["SUN", "MOON"], story_part=part
    )


def make_state():
    state = GameProgressState()
    state.puzzles = {
        "nature": [
            make_puzzle("Forest", 0, "nature"),
            make_puzzle("Forest", 1, "nature"),
            make_puzzle("Sea", 0, "nature"),
            make_puzzle("Sea", 1, "nature"),
        ],
        "Kethaneum": [
            make_puzzle("Archive", 0, "Kethaneum"),
            make_puzzle("Archive", 1, "Kethaneum"),
            make_puzzle("Archive", 2, "Kethaneum"),
        ],
    }
    state.selected_genre = "nature"
    state.next_kethaneum_interval = 3
    return state


class TestSelectNextPuzzle(unittest.TestCase):
    """Genre selection and Kethaneum weaving"""

    def setUp(self):
        self.config = SelectionConfig()
        self.rng = random.Random(11)

    def test_no_genre_selected(self):
        state = make_state()
        state.selected_genre = ""
        res = select_next_puzzle(state, self.config, self.rng)
        self.assertIsNone(res.puzzle)
        self.assertIs(res.new_state, state)
        self.assertIn("No genre selected", res.message)

    def test_first_pick_is_a_book_start(self):
        state = make_state()
        res = select_next_puzzle(state, self.config, self.rng)
        self.assertFalse(res.is_kethaneum)
        self.assertEqual(res.puzzle.story_part, 0)
        self.assertEqual(res.new_state.puzzles_since_last_kethaneum, 1)
        self.assertEqual(res.new_state.current_genre, "nature")
        self.assertEqual(res.new_state.current_book, res.puzzle.book)
        self.assertEqual(
            res.new_state.puzzles["nature"][res.new_state.current_puzzle_index], res.puzzle
        )
        # input state untouched
        self.assertEqual(state.puzzles_since_last_kethaneum, 0)
        self.assertEqual(state.current_genre, "")

    def test_continues_started_book(self):
        state = make_state()
        state.puzzles["nature"] = state.puzzles["nature"][:2]
        state.completed_puzzles_by_genre["nature"] = {"Forest 0"}
        res = select_next_puzzle(state, self.config, self.rng)
        self.assertEqual(res.puzzle.title, "Forest 1")

    def test_kethaneum_inserted_when_interval_reached(self):
        state = make_state()
        state.puzzles_since_last_kethaneum = 3
        res = select_next_puzzle(state, self.config, self.rng)
        self.assertTrue(res.is_kethaneum)
        self.assertEqual(res.puzzle.title, "Archive 0")
        new = res.new_state
        self.assertEqual(new.puzzles_since_last_kethaneum, 0)
        self.assertEqual(new.next_kethaneum_index, 1)
        self.assertTrue(new.kethaneum_revealed)
        self.assertEqual(new.current_genre, "Kethaneum")
        self.assertEqual(new.current_puzzle_index, 0)
        self.assertTrue(2 <= new.next_kethaneum_interval <= 5)

    def test_weaving_invariant_over_a_session(self):
        state = make_state()
        narrative_titles = []
        for _ in range(40):
            before = state
            res = select_next_puzzle(state, self.config, self.rng)
            self.assertIsNotNone(res.puzzle)
            if res.is_kethaneum:
                self.assertGreaterEqual(
                    before.puzzles_since_last_kethaneum, before.next_kethaneum_interval
                )
                self.assertEqual(res.new_state.puzzles_since_last_kethaneum, 0)
                self.assertTrue(2 <= res.new_state.next_kethaneum_interval <= 5)
                narrative_titles.append(res.puzzle.title)
            else:
                self.assertEqual(
                    res.new_state.puzzles_since_last_kethaneum,
                    before.puzzles_since_last_kethaneum + 1,
                )
                self.assertEqual(
                    res.new_state.next_kethaneum_interval, before.next_kethaneum_interval
                )
            state = record_puzzle_completion(res.new_state, res.puzzle)

        self.assertEqual(narrative_titles, ["Archive 0", "Archive 1", "Archive 2"])

    def test_kethaneum_exhausted_falls_back_to_genre(self):
        state = make_state()
        state.next_kethaneum_index = 3
        state.puzzles_since_last_kethaneum = 10
        res = select_next_puzzle(state, self.config, self.rng)
        self.assertFalse(res.is_kethaneum)
        self.assertEqual(res.puzzle.genre, "nature")

    def test_last_kethaneum_reports_exhausted(self):
        state = make_state()
        state.next_kethaneum_index = 2
        state.puzzles_since_last_kethaneum = 5
        res = select_next_puzzle(state, self.config, self.rng)
        self.assertTrue(res.is_kethaneum)
        self.assertTrue(res.kethaneum_exhausted)

    def test_genre_exhaustion_resets_completed_set(self):
        state = make_state()
        state.completed_puzzles_by_genre["nature"] = {p.title for p in state.puzzles["nature"]}
        res = select_next_puzzle(state, self.config, self.rng)
        self.assertTrue(res.genre_exhausted)
        self.assertTrue(res.new_state.genre_exhausted)
        self.assertEqual(res.new_state.completed_puzzles_by_genre["nature"], set())
        self.assertIn(res.puzzle, state.puzzles["nature"])
        self.assertIn("completed all puzzles", res.message)
        # next call can pick previously completed titles again without exhaustion
        again = select_next_puzzle(res.new_state, self.config, self.rng)
        self.assertFalse(again.genre_exhausted)

    def test_broken_state_returns_message(self):
        state = make_state()
        state.puzzles = None
        res = select_next_puzzle(state, self.config, self.rng)
        self.assertIsNone(res.puzzle)
        self.assertIs(res.new_state, state)
        self.assertTrue(res.message)


class TestSelectionHelpers(unittest.TestCase):

    def test_interval_range(self):
        rng = random.Random(0)
        cfg = SelectionConfig(min_puzzles_before_kethaneum=2, max_puzzles_before_kethaneum=5)
        values = {random_kethaneum_interval(cfg, rng) for _ in range(200)}
        self.assertEqual(values, {2, 3, 4, 5})

    def test_select_genre_resets_counter(self):
        state = make_state()
        state.puzzles_since_last_kethaneum = 4
        state.genre_exhausted = True
        new = select_genre(state, "Kethaneum")
        self.assertEqual(new.selected_genre, "Kethaneum")
        self.assertEqual(new.puzzles_since_last_kethaneum, 0)
        self.assertFalse(new.genre_exhausted)
        self.assertEqual(state.selected_genre, "nature")

    def test_initialize_normalizes(self):
        state = make_state()
        state.next_kethaneum_interval = 0
        state.next_kethaneum_index = -2
        new = initialize_puzzle_selection(state, SelectionConfig(), random.Random(1))
        self.assertEqual(new.next_kethaneum_index, 0)
        self.assertTrue(2 <= new.next_kethaneum_interval <= 5)

    def test_new_game_rolls_interval_from_config(self):
        state = GameProgressState()
        state.puzzles = make_state().puzzles
        cfg = SelectionConfig(min_puzzles_before_kethaneum=5, max_puzzles_before_kethaneum=8)
        new = initialize_puzzle_selection(state, cfg, random.Random(3))
        self.assertTrue(5 <= new.next_kethaneum_interval <= 8)

    def test_unrolled_interval_is_rolled_before_selecting(self):
        state = make_state()
        state.next_kethaneum_interval = 0
        cfg = SelectionConfig(min_puzzles_before_kethaneum=5, max_puzzles_before_kethaneum=8)
        res = select_next_puzzle(state, cfg, random.Random(3))
        self.assertFalse(res.is_kethaneum)
        self.assertEqual(res.puzzle.genre, "nature")
        self.assertTrue(5 <= res.new_state.next_kethaneum_interval <= 8)
        self.assertEqual(state.next_kethaneum_interval, 0)


if __name__ == "__main__":
    unittest.main()

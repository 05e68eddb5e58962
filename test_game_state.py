import json
import os
import tempfile
import unittest

from config import DEFAULT_DIRECTIONS, PuzzleConfig, load_config
from game_state import (
    GameProgressState,
    PuzzleDefinition,
    UncompletedPuzzle,
    attach_content,
    is_book_complete,
    is_book_in_progress,
    is_game_ready,
    record_puzzle_completion,
)


def forest(part):
    return PuzzleDefinition(
        title=f"Forest {part}", book="Forest", genre="nature", words=["OAK"], story_part=part
    )


class TestProgressState(unittest.TestCase):
    """Completion bookkeeping"""

    def setUp(self):
        self.state = attach_content(
            GameProgressState(), {"nature": [forest(0), forest(1), forest(2)]}
        )

    def test_from_dict(self):
        p = PuzzleDefinition.from_dict({
            "title": "T", "book": "B", "genre": "g", "words": ["ONE"],
            "storyPart": 2, "storyExcerpt": "Once",
        })
        self.assertEqual((p.story_part, p.story_excerpt), (2, "Once"))
        self.assertEqual(PuzzleDefinition.from_dict(
            {"title": "T", "book": "B", "genre": "g", "words": []}).story_part, 0)

    def test_record_completion(self):
        new = record_puzzle_completion(self.state, forest(1))
        self.assertEqual(new.books["Forest"], 0b010)
        self.assertIn("Forest", new.discovered_books)
        self.assertEqual(new.completed_puzzles_by_genre["nature"], {"Forest 1"})
        self.assertEqual(new.completed_puzzles, 1)
        self.assertEqual(new.completed_books, 1)
        self.assertTrue(is_book_in_progress(new, "Forest"))
        self.assertFalse(is_book_complete(new, "Forest"))
        # input untouched
        self.assertEqual(self.state.books, {})
        self.assertEqual(self.state.completed_puzzles, 0)

    def test_book_complete(self):
        state = self.state
        for part in range(3):
            state = record_puzzle_completion(state, forest(part))
        self.assertTrue(is_book_complete(state, "Forest"))
        self.assertFalse(is_book_in_progress(state, "Forest"))
        self.assertEqual(state.books["Forest"], 0b111)

    def test_clears_matching_uncompleted_pointer(self):
        self.state.last_uncompleted_puzzle = UncompletedPuzzle("Forest", 2, "nature")
        new = record_puzzle_completion(self.state, forest(2))
        self.assertIsNone(new.last_uncompleted_puzzle)
        other = record_puzzle_completion(self.state, forest(0))
        self.assertIsNotNone(other.last_uncompleted_puzzle)

    def test_bad_input_returns_state(self):
        bad = PuzzleDefinition(title="", book="Forest", genre="nature", words=["OAK"])
        self.assertIs(record_puzzle_completion(self.state, bad), self.state)
        too_far = PuzzleDefinition(title="X", book="Forest", genre="nature", words=["OAK"], story_part=40)
        self.assertIs(record_puzzle_completion(self.state, too_far), self.state)

    def test_clone_is_independent(self):
        self.state.completed_puzzles_by_genre["nature"] = {"Forest 0"}
        copy = self.state.clone()
        copy.completed_puzzles_by_genre["nature"].add("Forest 1")
        copy.book_parts_map["Forest"].append(9)
        self.assertEqual(self.state.completed_puzzles_by_genre["nature"], {"Forest 0"})
        self.assertEqual(self.state.book_parts_map["Forest"], [0, 1, 2])
        self.assertIs(copy.puzzles["nature"], self.state.puzzles["nature"])

    def test_attach_content(self):
        self.assertTrue(is_game_ready(self.state))
        self.assertFalse(is_game_ready(GameProgressState()))
        base = GameProgressState(book_parts_map={"Lost Book": [0, 1]})
        new = attach_content(base, {"nature": [forest(0)]})
        self.assertEqual(new.book_parts_map, {"Lost Book": [0, 1], "Forest": [0]})


class TestConfig(unittest.TestCase):

    def test_defaults(self):
        cfg = load_config(None)
        self.assertEqual(cfg.puzzle.grid_size, 10)
        self.assertEqual(cfg.puzzle.directions, list(DEFAULT_DIRECTIONS))
        self.assertEqual(cfg.selection.min_puzzles_before_kethaneum, 2)
        self.assertEqual(cfg.selection.max_puzzles_before_kethaneum, 5)

    def test_difficulty(self):
        hard = PuzzleConfig().with_difficulty("hard")
        self.assertEqual((hard.grid_size, hard.time_limit, hard.max_words), (12, 150, 10))
        cfg = PuzzleConfig()
        self.assertIs(cfg.with_difficulty("impossible"), cfg)

    def test_load_file(self):
        with tempfile.TemporaryDirectory() as d:
            path = os.path.join(d, "kethaneum.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump({
                    "puzzle": {"max_words": 4, "directions": [[0, 1]], "bogus": 1},
                    "selection": {"kethaneum_genre_name": "Story"},
                    "difficulty": "easy",
                }, f)
            cfg = load_config(path)
        self.assertEqual(cfg.puzzle.directions, [(0, 1)])
        self.assertEqual(cfg.puzzle.grid_size, 8)
        self.assertEqual(cfg.puzzle.max_words, 6)
        self.assertEqual(cfg.selection.kethaneum_genre_name, "Story")


if __name__ == "__main__":
    unittest.main()

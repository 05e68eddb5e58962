import json
import os
import random
import tempfile
import unittest

from config import PuzzleConfig
from game_state import GameProgressState, PuzzleDefinition, UncompletedPuzzle, build_book_parts_map
from puzzle_loader import (
    MANIFEST_NAME,
    load_all_puzzles,
    load_genre_manifest,
    load_puzzle_file,
    load_sequential_puzzle,
)


def record(book, part, genre="nature", words=("OAK", "MOSS")):
    return {
        "title": f"{book} - Part {part + 1}",
        "book": book,
        "genre": genre,
        "storyPart": part,
        "words": list(words),
    }


class TestContentFiles(unittest.TestCase):
    """Manifest and puzzle file loading"""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = self.tmp.name

    def tearDown(self):
        self.tmp.cleanup()

    def write(self, name, data):
        with open(os.path.join(self.dir, name), "w", encoding="utf-8") as f:
            json.dump(data, f)

    def test_manifest(self):
        self.write(MANIFEST_NAME, {"genreFiles": ["a.json", "/b.json"]})
        self.assertEqual(load_genre_manifest(self.dir), ["a.json", "/b.json"])

    def test_missing_manifest_uses_defaults(self):
        self.assertIn("kethaneumPuzzles.json", load_genre_manifest(self.dir))

    def test_bad_records_are_skipped(self):
        self.write("nature.json", [
            record("Forest", 0),
            {"title": "No book", "genre": "nature", "words": ["OAK"]},
            {"title": "No genre", "book": "X", "words": ["OAK"]},
            "not an object",
            record("Forest", 1),
        ])
        by_genre = load_puzzle_file(os.path.join(self.dir, "nature.json"))
        self.assertEqual([p.title for p in by_genre["nature"]], ["Forest - Part 1", "Forest - Part 2"])
        self.assertEqual(by_genre["nature"][1].story_part, 1)

    def test_unreadable_file(self):
        with open(os.path.join(self.dir, "broken.json"), "w") as f:
            f.write("{not json")
        self.assertEqual(load_puzzle_file(os.path.join(self.dir, "broken.json")), {})
        self.assertEqual(load_puzzle_file(os.path.join(self.dir, "missing.json")), {})

    def test_load_all_merges_and_dedupes(self):
        self.write(MANIFEST_NAME, {"genreFiles": ["nature.json", "more.json", "missing.json"]})
        self.write("nature.json", [record("Forest", 0), record("Forest", 1)])
        self.write("more.json", [
            record("Forest", 1),
            record("Sea", 0),
            record("Archive", 0, genre="Kethaneum"),
        ])
        base = GameProgressState()
        puzzles, state = load_all_puzzles(self.dir, base)

        self.assertEqual(len(puzzles["nature"]), 3)
        self.assertEqual(len(puzzles["Kethaneum"]), 1)
        self.assertEqual(state.book_parts_map["Forest"], [0, 1])
        self.assertEqual(state.book_parts_map["Sea"], [0])
        self.assertIs(state.puzzles, puzzles)
        self.assertEqual(base.puzzles, {})


def make_state(*books, genre="nature", parts=3):
    state = GameProgressState()
    pool = []
    for book in books:
        for part in range(parts):
            pool.append(PuzzleDefinition(
                title=f"{book} {part}", book=book, genre=genre,
                words=["OAK", "MOSS"], story_part=part,
            ))
    state.puzzles = {genre: pool}
    state.book_parts_map = build_book_parts_map(state.puzzles)
    return state


class TestSequentialLoad(unittest.TestCase):
    """Book-by-book story loading"""

    def setUp(self):
        self.config = PuzzleConfig(seed=3)
        self.rng = random.Random(5)

    def load(self, state, genre="nature", book=None, allow_replay=False):
        return load_sequential_puzzle(genre, book, state, self.config, allow_replay, self.rng)

    def test_fresh_book_starts_at_part_zero(self):
        state = make_state("Forest")
        res = self.load(state)
        self.assertTrue(res.success)
        self.assertEqual(res.puzzle.title, "Forest 0")
        self.assertEqual(res.new_state.current_book, "Forest")
        self.assertEqual(res.new_state.current_story_part, 0)
        self.assertEqual(res.new_state.current_genre, "nature")
        self.assertEqual(res.new_state.current_puzzle_index, 0)
        self.assertIn("Forest", res.new_state.discovered_books)
        self.assertEqual([p.word for p in res.active.placements], ["OAK", "MOSS"])

    def test_continues_to_next_part(self):
        state = make_state("Forest")
        state.current_book = "Forest"
        state.current_story_part = 0
        state.books["Forest"] = 0b001
        res = self.load(state)
        self.assertEqual(res.puzzle.story_part, 1)

    def test_in_progress_book_before_unstarted(self):
        state = make_state("Forest", "Sea")
        state.books["Sea"] = 0b001
        res = self.load(state)
        self.assertEqual(res.puzzle.title, "Sea 1")

    def test_explicit_book(self):
        state = make_state("Forest", "Sea")
        res = self.load(state, book="Sea")
        self.assertEqual(res.puzzle.book, "Sea")

    def test_genre_complete_without_replay(self):
        state = make_state("Forest")
        state.books["Forest"] = 0b111
        res = self.load(state)
        self.assertFalse(res.success)
        self.assertTrue(res.genre_complete)
        self.assertIs(res.new_state, state)

    def test_replay_clears_progress(self):
        state = make_state("Forest")
        state.books["Forest"] = 0b111
        res = self.load(state, allow_replay=True)
        self.assertTrue(res.success)
        self.assertEqual(res.puzzle.story_part, 0)
        self.assertEqual(res.new_state.books["Forest"], 0)
        self.assertEqual(state.books["Forest"], 0b111)

    def test_resumes_last_uncompleted(self):
        state = make_state("Forest", "Sea")
        state.last_uncompleted_puzzle = UncompletedPuzzle(book="Sea", part=0, genre="nature")
        res = load_sequential_puzzle(None, None, state, self.config, rng=self.rng)
        self.assertEqual(res.puzzle.book, "Sea")

    def test_not_used_in_puzzle_only_mode(self):
        state = make_state("Forest")
        state.game_mode = "puzzle-only"
        res = self.load(state)
        self.assertFalse(res.success)
        self.assertIs(res.new_state, state)

    def test_unknown_genre_fails_cleanly(self):
        state = make_state("Forest")
        res = self.load(state, genre="mystery")
        self.assertFalse(res.success)
        self.assertIs(res.new_state, state)


if __name__ == "__main__":
    unittest.main()

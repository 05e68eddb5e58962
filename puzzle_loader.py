from __future__ import annotations

import json
import os
import random
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from config import PuzzleConfig
from engine_log import log
from game_state import (
    GameProgressState,
    PuzzleDefinition,
    available_parts,
    build_book_parts_map,
    is_book_complete,
    is_book_in_progress,
)
from grid_engine import ActivePuzzle, initialize_puzzle
from progress_bitmap import is_part_completed, uncomplete_part

MANIFEST_NAME = "genreManifest.json"
DEFAULT_GENRE_FILES = [
    "kethaneumPuzzles.json",
    "naturePuzzles.json",
    "testPuzzles.json",
]


# -----------------------------------------------------------------------------
# Content files (UI calls these)
# -----------------------------------------------------------------------------
def load_genre_manifest(content_dir: str) -> List[str]:
    """
    List of puzzle files from genreManifest.json ({"genreFiles": [...]}).
    Falls back to the default files if the manifest is missing or broken.
    """
    path = os.path.join(content_dir, MANIFEST_NAME)
    try:
        with open(path, "r", encoding="utf-8") as f:
            manifest = json.load(f)
        files = manifest.get("genreFiles") or []
        return [str(x) for x in files]
    except (OSError, ValueError, AttributeError) as e:
        log(f"[loader] cannot read manifest {path}: {e}; using default files")
        return list(DEFAULT_GENRE_FILES)


def _resolve(content_dir: str, file_path: str) -> str:
    if os.path.isabs(file_path):
        return file_path
    return os.path.join(content_dir, file_path.lstrip("/"))


def load_puzzle_file(path: str) -> Dict[str, List[PuzzleDefinition]]:
    """
    Read one content file (a JSON array of puzzle records) and group its
    puzzles by their own genre field. Bad records are skipped with a log line;
    an unreadable file gives an empty dict.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            records = json.load(f)
    except (OSError, ValueError) as e:
        log(f"[loader] cannot read {path}: {e}")
        return {}

    if not isinstance(records, list) or not records:
        log(f"[loader] no valid puzzles found in {path}")
        return {}

    by_genre: Dict[str, List[PuzzleDefinition]] = {}
    for raw in records:
        if not isinstance(raw, dict):
            log(f"[loader] skipping non-object record in {path}")
            continue
        if not raw.get("title") or not raw.get("book") or not isinstance(raw.get("words"), list):
            log(f"[loader] skipping invalid puzzle in {path}: {raw.get('title')!r}")
            continue
        if not raw.get("genre"):
            log(f"[loader] skipping puzzle without genre in {path}: {raw.get('title')!r}")
            continue
        try:
            puzzle = PuzzleDefinition.from_dict(raw)
        except (TypeError, ValueError) as e:
            log(f"[loader] skipping malformed puzzle in {path}: {e}")
            continue
        by_genre.setdefault(puzzle.genre, []).append(puzzle)
    return by_genre


def load_all_puzzles(
    content_dir: str, state: Optional[GameProgressState] = None
) -> Tuple[Dict[str, List[PuzzleDefinition]], GameProgressState]:
    """
    Load every file in the manifest, merge by genre (first title wins) and
    rebuild the book -> parts map. Returns (puzzles, new_state).
    """
    base = state if state is not None else GameProgressState()
    new = base.clone()
    puzzles: Dict[str, List[PuzzleDefinition]] = {g: list(lst) for g, lst in new.puzzles.items()}

    for file_path in load_genre_manifest(content_dir):
        for genre, found in load_puzzle_file(_resolve(content_dir, file_path)).items():
            existing = puzzles.setdefault(genre, [])
            titles = {p.title for p in existing}
            for p in found:
                if p.title not in titles:
                    existing.append(p)
                    titles.add(p.title)

    new.puzzles = puzzles
    new.book_parts_map = build_book_parts_map(puzzles)
    total = sum(len(v) for v in puzzles.values())
    log(f"[loader] {total} puzzles in {len(puzzles)} genres")
    return puzzles, new


# -----------------------------------------------------------------------------
# Sequential (in-book story) loading
# -----------------------------------------------------------------------------
@dataclass
class SequentialLoadResult:
    success: bool
    new_state: GameProgressState
    genre_complete: bool = False
    puzzle: Optional[PuzzleDefinition] = None
    active: Optional[ActivePuzzle] = None


def _books_in(puzzles: List[PuzzleDefinition]) -> List[str]:
    return list(dict.fromkeys(p.book for p in puzzles if p.book))


def _pick_genre(state: GameProgressState, rng) -> Optional[str]:
    """Current genre if it still has incomplete books, else a random genre that does, else any."""
    incomplete: Dict[str, int] = {}
    for genre, lst in state.puzzles.items():
        if not lst:
            continue
        incomplete[genre] = sum(1 for b in _books_in(lst) if not is_book_complete(state, b))

    if not incomplete:
        return None
    if state.current_genre and incomplete.get(state.current_genre, 0) > 0:
        return state.current_genre
    open_genres = [g for g, n in incomplete.items() if n > 0]
    if open_genres:
        return rng.choice(open_genres)
    return rng.choice(list(incomplete))


def load_sequential_puzzle(
    genre: Optional[str],
    book: Optional[str],
    state: GameProgressState,
    config: Optional[PuzzleConfig] = None,
    allow_replay: bool = False,
    rng: Optional[random.Random] = None,
) -> SequentialLoadResult:
    """
    Load the next part of a book for continuous story reading.

    Book priority inside the genre: continue current -> random in-progress ->
    random unstarted -> (allow_replay) random completed book with its progress
    cleared. With every book complete and no replay, genre_complete is set so
    the caller can ask the player what to do.
    """
    cfg = config or PuzzleConfig()
    r = rng if rng is not None else random

    if state.game_mode in ("beat-the-clock", "puzzle-only"):
        log(f"[loader] sequential loading is not used in {state.game_mode} mode")
        return SequentialLoadResult(success=False, new_state=state)

    if state.last_uncompleted_puzzle and not genre and not book:
        genre = state.last_uncompleted_puzzle.genre
        book = state.last_uncompleted_puzzle.book

    try:
        # 1) genre
        selected_genre = genre or _pick_genre(state, r)
        if not selected_genre:
            raise ValueError("No genre specified and could not auto-select a genre")
        pool = state.puzzles.get(selected_genre) or []
        if not pool:
            raise ValueError(
                f"No puzzles found for genre: {selected_genre}. "
                f"Available genres: {', '.join(state.puzzles)}"
            )

        new = state.clone()

        # 2) book
        titles = _books_in(pool)
        selected_book = book
        if selected_book and selected_book not in titles:
            log(f"[loader] book '{selected_book}' not in genre '{selected_genre}', picking another")
            selected_book = None

        if not selected_book:
            complete = [b for b in titles if is_book_complete(new, b)]
            in_progress = [b for b in titles if b not in complete and is_book_in_progress(new, b)]
            unstarted = [b for b in titles if b not in complete and b not in in_progress]

            if new.current_book in titles and not is_book_complete(new, new.current_book):
                selected_book = new.current_book
            elif in_progress:
                selected_book = r.choice(in_progress)
            elif unstarted:
                selected_book = r.choice(unstarted)
            elif complete:
                if not allow_replay:
                    log(f"[loader] all books complete in genre '{selected_genre}'")
                    return SequentialLoadResult(success=False, new_state=state, genre_complete=True)
                selected_book = r.choice(complete)
                bitmap = new.books.get(selected_book, 0)
                for part in available_parts(new, selected_book):
                    bitmap = uncomplete_part(bitmap, part)
                new.books[selected_book] = bitmap
            else:
                raise ValueError(f"No valid books found in genre: {selected_genre}")

        book_puzzles = [p for p in pool if p.book == selected_book]
        if not book_puzzles:
            raise ValueError(f"No puzzles found for book: {selected_book}")

        # 3) part
        parts = available_parts(new, selected_book)
        if not parts:
            raise ValueError(f"No story parts defined for book: {selected_book}")
        bitmap = new.books.setdefault(selected_book, 0)
        incomplete = [p for p in parts if not is_part_completed(bitmap, p)]

        higher: List[int] = []
        if new.current_book == selected_book and new.current_story_part is not None:
            higher = [p for p in parts if p > new.current_story_part]
        if higher:
            next_part = min(higher)
        elif incomplete:
            next_part = min(incomplete)
        else:
            next_part = min(parts)
            new.books[selected_book] = uncomplete_part(bitmap, next_part)

        puzzle = next((p for p in book_puzzles if p.story_part == next_part), None)
        if puzzle is None:
            raise ValueError(f"Could not find puzzle for book '{selected_book}' part {next_part}")

        # 4) commit
        new.current_puzzle_index = pool.index(puzzle)
        new.current_genre = selected_genre
        new.current_book = selected_book
        new.current_story_part = next_part

        active, new = initialize_puzzle(puzzle, cfg, new, rng)
        return SequentialLoadResult(success=True, new_state=new, puzzle=puzzle, active=active)
    except Exception as e:
        log(f"[loader] error loading sequential puzzle: {e}")
        return _recover(state, cfg)


def _recover(state: GameProgressState, cfg: PuzzleConfig) -> SequentialLoadResult:
    """Fall back to the first puzzle of the last unfinished book, if there is one."""
    pending = state.last_uncompleted_puzzle
    if pending:
        fallback = [p for p in state.puzzles.get(pending.genre) or [] if p.book == pending.book]
        if fallback:
            try:
                active, new = initialize_puzzle(fallback[0], cfg, state)
                new.current_genre = pending.genre
                new.current_puzzle_index = state.puzzles[pending.genre].index(fallback[0])
                return SequentialLoadResult(success=True, new_state=new, puzzle=fallback[0], active=active)
            except ValueError as e:
                log(f"[loader] recovery failed: {e}")
    return SequentialLoadResult(success=False, new_state=state)

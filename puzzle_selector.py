"""
Puzzle selection with Kethaneum weaving.

- Puzzles come mainly from the genre the player picked.
- Kethaneum narrative puzzles are inserted in strict sequence every
  [min, max] regular puzzles (interval re-rolled after each insertion).
- Completed titles are tracked per genre; an exhausted genre is reset and
  replayed, and the caller is told so.
"""
from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Dict, List, Optional

from config import SelectionConfig
from engine_log import log
from game_state import GameProgressState, PuzzleDefinition


@dataclass
class SelectionResult:
    puzzle: Optional[PuzzleDefinition]
    new_state: GameProgressState
    is_kethaneum: bool = False
    genre_exhausted: bool = False
    kethaneum_exhausted: bool = False
    message: Optional[str] = None


def random_kethaneum_interval(
    config: Optional[SelectionConfig] = None, rng: Optional[random.Random] = None
) -> int:
    """Random interval in [min, max] for the next Kethaneum insertion."""
    cfg = config or SelectionConfig()
    r = rng if rng is not None else random
    lo = cfg.min_puzzles_before_kethaneum
    hi = max(lo, cfg.max_puzzles_before_kethaneum)
    return r.randint(lo, hi)


def select_next_puzzle(
    state: GameProgressState,
    config: Optional[SelectionConfig] = None,
    rng: Optional[random.Random] = None,
) -> SelectionResult:
    """
    Decide which puzzle comes next. Never raises: failures come back as a
    result with a message and the input state unchanged.
    """
    cfg = config or SelectionConfig()
    try:
        if state is None:
            raise ValueError("Game state is missing")
        if not isinstance(state.puzzles, dict):
            raise ValueError("Game state puzzles is invalid")

        log(
            f"[selector] genre='{state.selected_genre}' "
            f"since last Kethaneum: {state.puzzles_since_last_kethaneum}/{state.next_kethaneum_interval}"
        )

        if not state.selected_genre or not state.puzzles.get(state.selected_genre):
            return SelectionResult(
                puzzle=None,
                new_state=state,
                message="No genre selected. Please select a genre from the library.",
            )

        if state.next_kethaneum_interval <= 0:
            state = state.clone()
            state.next_kethaneum_interval = random_kethaneum_interval(cfg, rng)

        if _time_for_kethaneum(state, cfg):
            result = _select_kethaneum_puzzle(state, cfg, rng)
            if result.puzzle is not None:
                return result
            log("[selector] no Kethaneum puzzle available, continuing with regular genre")

        return _select_genre_puzzle(state, cfg, rng)
    except Exception as e:
        log(f"[selector] error selecting puzzle: {e}")
        return SelectionResult(
            puzzle=None,
            new_state=state,
            message=f"Error selecting puzzle: {e}",
        )


def _time_for_kethaneum(state: GameProgressState, cfg: SelectionConfig) -> bool:
    narrative = state.puzzles.get(cfg.kethaneum_genre_name) or []
    if not narrative:
        return False
    if state.next_kethaneum_index >= len(narrative):
        return False
    return state.puzzles_since_last_kethaneum >= state.next_kethaneum_interval


def _is_usable(p: Optional[PuzzleDefinition]) -> bool:
    return p is not None and bool(p.title) and bool(p.book) and bool(p.words)


def _select_kethaneum_puzzle(
    state: GameProgressState, cfg: SelectionConfig, rng: Optional[random.Random]
) -> SelectionResult:
    """The next narrative puzzle, strictly in sequence."""
    try:
        narrative = state.puzzles.get(cfg.kethaneum_genre_name) or []
        index = state.next_kethaneum_index
        if not isinstance(index, int) or index < 0:
            raise ValueError(f"Invalid next Kethaneum index: {index}")
        if index >= len(narrative):
            return SelectionResult(puzzle=None, new_state=state, kethaneum_exhausted=True)

        puzzle = narrative[index]
        if not _is_usable(puzzle):
            raise ValueError(f"Kethaneum puzzle at index {index} is missing required fields")

        log(f"[selector] Kethaneum puzzle {index + 1}/{len(narrative)}: '{puzzle.title}'")

        new = state.clone()
        new.next_kethaneum_index = index + 1
        new.puzzles_since_last_kethaneum = 0
        new.next_kethaneum_interval = random_kethaneum_interval(cfg, rng)
        new.current_genre = cfg.kethaneum_genre_name
        new.current_book = puzzle.book
        new.current_story_part = puzzle.story_part
        new.current_puzzle_index = index
        new.genre_exhausted = False
        new.kethaneum_revealed = True

        return SelectionResult(
            puzzle=puzzle,
            new_state=new,
            is_kethaneum=True,
            kethaneum_exhausted=new.next_kethaneum_index >= len(narrative),
        )
    except Exception as e:
        log(f"[selector] Kethaneum selection error: {e}")
        return SelectionResult(
            puzzle=None,
            new_state=state,
            kethaneum_exhausted=True,
            message=f"Kethaneum puzzle selection error: {e}",
        )


def _book_start_points(puzzles: List[PuzzleDefinition]) -> List[PuzzleDefinition]:
    """Lowest-part puzzle per book, in first-seen book order."""
    starts: Dict[str, PuzzleDefinition] = {}
    for p in puzzles:
        if not p.book:
            continue
        current = starts.get(p.book)
        if current is None or p.story_part < current.story_part:
            starts[p.book] = p
    return list(starts.values())


def _select_genre_puzzle(
    state: GameProgressState, cfg: SelectionConfig, rng: Optional[random.Random]
) -> SelectionResult:
    r = rng if rng is not None else random
    try:
        genre = state.selected_genre
        if not genre or not isinstance(genre, str):
            raise ValueError("Invalid selected genre")

        pool = state.puzzles.get(genre) or []
        if not pool:
            return SelectionResult(
                puzzle=None,
                new_state=state,
                genre_exhausted=True,
                message=f"No puzzles found in genre: {genre}",
            )

        new = state.clone()
        completed = new.completed_puzzles_by_genre.setdefault(genre, set())
        uncompleted = [p for p in pool if p and p.title and p.title not in completed]

        genre_exhausted = False
        if uncompleted:
            starts = _book_start_points(uncompleted)
            if not starts:
                raise ValueError(f"No book starting points in genre '{genre}'")
            puzzle = starts[r.randrange(len(starts))]
            log(
                f"[selector] genre '{genre}': picked '{puzzle.title}' "
                f"(part {puzzle.story_part}) from {len(starts)} books"
            )
        else:
            genre_exhausted = True
            new.completed_puzzles_by_genre[genre] = set()
            puzzle = pool[r.randrange(len(pool))]
            log(f"[selector] genre '{genre}' exhausted, restarting with '{puzzle.title}'")

        if not _is_usable(puzzle):
            raise ValueError(f"Selected puzzle from genre '{genre}' is missing required fields")

        new.puzzles_since_last_kethaneum += 1
        new.current_genre = genre
        new.current_book = puzzle.book
        new.current_story_part = puzzle.story_part
        new.current_puzzle_index = pool.index(puzzle)
        new.genre_exhausted = genre_exhausted

        message = None
        if genre_exhausted:
            message = (
                f"You've completed all puzzles in the {genre} genre! "
                "Starting over, or select a new genre from the library."
            )
        return SelectionResult(
            puzzle=puzzle,
            new_state=new,
            genre_exhausted=genre_exhausted,
            message=message,
        )
    except Exception as e:
        log(f"[selector] genre selection error: {e}")
        return SelectionResult(
            puzzle=None,
            new_state=state,
            genre_exhausted=True,
            message=f"Genre puzzle selection error: {e}",
        )


def select_genre(
    state: GameProgressState,
    genre: str,
    config: Optional[SelectionConfig] = None,
    rng: Optional[random.Random] = None,
) -> GameProgressState:
    """
    The player picked a genre. The weaving counter restarts so the first
    puzzle after a pick always comes from the chosen genre.
    """
    new = state.clone()
    new.selected_genre = genre
    new.puzzles_since_last_kethaneum = 0
    if new.next_kethaneum_interval <= 0:
        new.next_kethaneum_interval = random_kethaneum_interval(config, rng)
    new.genre_exhausted = False
    return new


def initialize_puzzle_selection(
    state: GameProgressState,
    config: Optional[SelectionConfig] = None,
    rng: Optional[random.Random] = None,
) -> GameProgressState:
    """Normalize the weaving fields for a new (or freshly loaded) game."""
    new = state.clone()
    if new.next_kethaneum_index is None or new.next_kethaneum_index < 0:
        new.next_kethaneum_index = 0
    if new.puzzles_since_last_kethaneum is None or new.puzzles_since_last_kethaneum < 0:
        new.puzzles_since_last_kethaneum = 0
    if not new.next_kethaneum_interval or new.next_kethaneum_interval <= 0:
        new.next_kethaneum_interval = random_kethaneum_interval(config, rng)
    if new.completed_puzzles_by_genre is None:
        new.completed_puzzles_by_genre = {}
    if new.selected_genre is None:
        new.selected_genre = ""
    return new

"""
Progress state shared by the selector, the sequential loader and the save system.

Books and genres are referenced only by their title / name strings. Book
progress is always a bitmap (see progress_bitmap); "fully complete" is
derived from the part count, never stored as a separate shape.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Set

from engine_log import log
from progress_bitmap import complete_part, is_part_completed

GameMode = Literal["story", "puzzle-only", "beat-the-clock"]


@dataclass
class PuzzleDefinition:
    """One authored puzzle: a single part of a single book."""
    title: str
    book: str
    genre: str
    words: List[str]
    story_part: int = 0
    story_excerpt: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "PuzzleDefinition":
        """Build from a content-file record (camelCase keys)."""
        part = raw.get("storyPart")
        return cls(
            title=str(raw["title"]),
            book=str(raw["book"]),
            genre=str(raw["genre"]),
            words=[str(w) for w in raw["words"]],
            story_part=int(part) if part is not None else 0,
            story_excerpt=raw.get("storyExcerpt"),
        )


@dataclass
class UncompletedPuzzle:
    book: str
    part: int
    genre: str


@dataclass
class GameProgressState:
    # Loaded content (runtime only; never persisted)
    puzzles: Dict[str, List[PuzzleDefinition]] = field(default_factory=dict)
    book_parts_map: Dict[str, List[int]] = field(default_factory=dict)

    # Progress
    discovered_books: Set[str] = field(default_factory=set)
    books: Dict[str, int] = field(default_factory=dict)  # book title -> bitmap
    completed_puzzles_by_genre: Dict[str, Set[str]] = field(default_factory=dict)
    completed_puzzles: int = 0
    game_mode: GameMode = "story"
    last_uncompleted_puzzle: Optional[UncompletedPuzzle] = None

    # Current pointer
    current_genre: str = ""
    current_book: str = ""
    current_story_part: int = -1
    current_puzzle_index: int = -1

    # Kethaneum weaving
    selected_genre: str = ""
    next_kethaneum_index: int = 0
    puzzles_since_last_kethaneum: int = 0
    next_kethaneum_interval: int = 0  # 0 until rolled from the configured range
    kethaneum_revealed: bool = False
    genre_exhausted: bool = False

    # Owned by other subsystems; carried through saves untouched
    story_progress: Optional[Dict[str, Any]] = None
    completed_story_events: List[str] = field(default_factory=list)
    has_visited_library: bool = False
    audio_settings: Optional[Dict[str, Any]] = None

    @property
    def completed_books(self) -> int:
        return len(self.discovered_books)

    def clone(self) -> "GameProgressState":
        """
        Copy for a state transition. Progress collections are copied so the
        original stays untouched; the content pool is shared (read-only).
        """
        new = copy.copy(self)
        new.puzzles = dict(self.puzzles)
        new.book_parts_map = {b: list(p) for b, p in self.book_parts_map.items()}
        new.discovered_books = set(self.discovered_books)
        new.books = dict(self.books)
        new.completed_puzzles_by_genre = {
            g: set(titles) for g, titles in self.completed_puzzles_by_genre.items()
        }
        new.last_uncompleted_puzzle = copy.copy(self.last_uncompleted_puzzle)
        new.story_progress = copy.deepcopy(self.story_progress)
        new.completed_story_events = list(self.completed_story_events)
        new.audio_settings = copy.deepcopy(self.audio_settings)
        return new


def build_book_parts_map(puzzles: Dict[str, List[PuzzleDefinition]]) -> Dict[str, List[int]]:
    """Book title -> sorted list of story parts available across all genres."""
    parts: Dict[str, Set[int]] = {}
    for genre_puzzles in puzzles.values():
        for p in genre_puzzles:
            parts.setdefault(p.book, set()).add(p.story_part)
    return {book: sorted(vals) for book, vals in parts.items()}


def is_game_ready(state: GameProgressState) -> bool:
    """True once at least one genre has puzzles loaded."""
    return any(len(lst) > 0 for lst in state.puzzles.values())


def available_parts(state: GameProgressState, book: str) -> List[int]:
    if book in state.book_parts_map:
        return state.book_parts_map[book]
    return build_book_parts_map(state.puzzles).get(book, [])


def is_book_complete(state: GameProgressState, book: str) -> bool:
    """All available parts of the book are set in its bitmap."""
    if book not in state.books:
        return False
    parts = available_parts(state, book)
    if not parts:
        return False
    bitmap = state.books[book]
    return all(is_part_completed(bitmap, p) for p in parts)


def is_book_in_progress(state: GameProgressState, book: str) -> bool:
    """Some, but not all, available parts are done."""
    if book not in state.books:
        return False
    parts = available_parts(state, book)
    if not parts:
        return False
    bitmap = state.books[book]
    started = any(is_part_completed(bitmap, p) for p in parts)
    return started and not is_book_complete(state, book)


def record_puzzle_completion(
    state: GameProgressState, puzzle: PuzzleDefinition
) -> GameProgressState:
    """
    Apply a solved puzzle to the progress state and return the new state:
      - its title joins the genre's completed set
      - the completed-puzzle counter goes up by one
      - its part bit is set in the book bitmap; the book becomes discovered
      - a matching last-uncompleted pointer is cleared
    On bad input the original state is returned unchanged.
    """
    if puzzle is None or not puzzle.title:
        log("[progress] cannot record completion: puzzle has no title")
        return state
    genre = puzzle.genre or state.current_genre
    if not genre:
        log(f"[progress] cannot determine genre for '{puzzle.title}'")
        return state

    try:
        new = state.clone()
        new.completed_puzzles_by_genre.setdefault(genre, set()).add(puzzle.title)
        new.completed_puzzles += 1

        book = puzzle.book or new.current_book
        if book:
            new.books[book] = complete_part(new.books.get(book, 0), puzzle.story_part)
            new.discovered_books.add(book)

        pending = new.last_uncompleted_puzzle
        if pending and pending.book == book and pending.part == puzzle.story_part:
            new.last_uncompleted_puzzle = None
    except ValueError as e:
        log(f"[progress] cannot record completion of '{puzzle.title}': {e}")
        return state

    log(f"[progress] completed '{puzzle.title}' in genre '{genre}'")
    return new


def attach_content(
    state: GameProgressState, puzzles: Dict[str, List[PuzzleDefinition]]
) -> GameProgressState:
    """
    Return a copy of `state` holding the given content. The parts index
    keeps entries for books without loaded content and is overlaid by the
    parts the content actually provides.
    """
    new = state.clone()
    new.puzzles = dict(puzzles)
    new.book_parts_map.update(build_book_parts_map(puzzles))
    return new

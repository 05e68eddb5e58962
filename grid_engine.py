from __future__ import annotations

import random
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from config import DEFAULT_DIRECTIONS, PuzzleConfig
from engine_log import log
from game_state import GameProgressState, PuzzleDefinition

Direction = Tuple[int, int]

# Compass names for the 8 placement vectors (row delta, col delta)
DIR_VECTORS: Dict[str, Direction] = {
    "E":  (0, 1),
    "W":  (0, -1),
    "N":  (-1, 0),
    "S":  (1, 0),
    "NE": (-1, 1),
    "SE": (1, 1),
    "SW": (1, -1),
    "NW": (-1, -1),
}

MAX_RANDOM_ATTEMPTS = 100
LETTERS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"


class ContentError(ValueError):
    """Authored puzzle content cannot be turned into a grid; fix it upstream."""


class PlacementError(ContentError):
    """A word fits nowhere in the grid, neither randomly nor by full scan."""


# -----------------------------------------------------------------------------
# Data shapes used across the app
# -----------------------------------------------------------------------------
@dataclass
class WordPlacement:
    """One placed word: start cell and unit direction. 'found' flips as the player solves."""
    word: str
    row: int
    col: int
    direction: Direction
    found: bool = False

    @property
    def end(self) -> Tuple[int, int]:
        n = len(self.word) - 1
        return self.row + self.direction[0] * n, self.col + self.direction[1] * n


@dataclass
class GridResult:
    grid: List[List[str]]                 # N x N uppercase letters
    placements: List[WordPlacement]       # same order as the input words


@dataclass
class ActivePuzzle:
    """The puzzle the player is working on right now."""
    definition: PuzzleDefinition
    grid: List[List[str]]
    placements: List[WordPlacement] = field(default_factory=list)


# -----------------------------------------------------------------------------
# Helpers: normalization and directions
# -----------------------------------------------------------------------------
_NORMALIZE_RE = re.compile(r"[A-Za-z]+")


def _normalize_for_grid(text: str) -> str:
    """
    Remove spaces, digits and punctuation so only letters remain.
    Uppercase so it looks consistent in the grid.
    """
    if not text:
        return ""
    return "".join(_NORMALIZE_RE.findall(str(text).upper()))


def verify_directions(directions: Optional[Sequence]) -> List[Direction]:
    """
    Keep only unit vectors (each axis -1, 0 or 1, not both 0) given as int pairs.
    Falls back to the 8 compass directions if nothing valid is left.
    """
    if not directions:
        log("[grid] no directions configured, using defaults")
        return list(DEFAULT_DIRECTIONS)

    valid: List[Direction] = []
    for d in directions:
        if isinstance(d, str):
            d = DIR_VECTORS.get(d.upper())
        if not isinstance(d, (list, tuple)) or len(d) != 2:
            continue
        dr, dc = d
        if isinstance(dr, bool) or isinstance(dc, bool):
            continue
        if not isinstance(dr, int) or not isinstance(dc, int):
            continue
        if dr not in (-1, 0, 1) or dc not in (-1, 0, 1) or (dr == 0 and dc == 0):
            continue
        if (dr, dc) not in valid:
            valid.append((dr, dc))

    if not valid:
        log("[grid] no valid directions found, using defaults")
        return list(DEFAULT_DIRECTIONS)
    return valid


def prepare_words(words: Sequence[str], config: PuzzleConfig) -> List[str]:
    """
    Normalize, keep words within [min_word_length, max_word_length],
    drop duplicates (first one wins) and cap at max_words.
    """
    seen = set()
    out: List[str] = []
    for w in words or []:
        n = _normalize_for_grid(w)
        if not n or not (config.min_word_length <= len(n) <= config.max_word_length):
            continue
        if n in seen:
            continue
        seen.add(n)
        out.append(n)
    out = out[: max(0, config.max_words)]
    if not out:
        raise ContentError("No valid words provided after filtering")
    return out


# -----------------------------------------------------------------------------
# Grid building
# -----------------------------------------------------------------------------
def _empty_grid(n: int) -> List[List[Optional[str]]]:
    return [[None for _ in range(n)] for _ in range(n)]


def _can_place_word(grid, r, c, dr, dc, word_norm) -> bool:
    """Check bounds and compatibility (allow crossing on identical letters)."""
    H = len(grid)
    W = len(grid[0]) if H else 0
    if r < 0 or r >= H or c < 0 or c >= W:
        return False
    nr = r + dr * (len(word_norm) - 1)
    nc = c + dc * (len(word_norm) - 1)
    if nr < 0 or nr >= H or nc < 0 or nc >= W:
        return False

    rr, cc = r, c
    for ch in word_norm:
        cell = grid[rr][cc]
        if cell is not None and cell != ch:
            return False
        rr += dr
        cc += dc
    return True


def _place_one_word(grid, r, c, dr, dc, word_norm) -> None:
    rr, cc = r, c
    for ch in word_norm:
        grid[rr][cc] = ch
        rr += dr
        cc += dc


def _place_random(grid, word, dirs, rng) -> Optional[WordPlacement]:
    """Phase 1: random cell + random direction, up to MAX_RANDOM_ATTEMPTS tries."""
    n = len(grid)
    for _ in range(MAX_RANDOM_ATTEMPTS):
        r = rng.randrange(n)
        c = rng.randrange(n)
        dr, dc = dirs[rng.randrange(len(dirs))]
        if _can_place_word(grid, r, c, dr, dc, word):
            _place_one_word(grid, r, c, dr, dc, word)
            return WordPlacement(word=word, row=r, col=c, direction=(dr, dc))
    return None


def _place_systematic(grid, word, dirs) -> Optional[WordPlacement]:
    """Phase 2: every row, then column, then direction, in fixed order; first fit wins."""
    n = len(grid)
    for r in range(n):
        for c in range(n):
            for dr, dc in dirs:
                if _can_place_word(grid, r, c, dr, dc, word):
                    _place_one_word(grid, r, c, dr, dc, word)
                    return WordPlacement(word=word, row=r, col=c, direction=(dr, dc))
    return None


def fill_grid(grid: List[List[Optional[str]]], rng: random.Random) -> List[List[str]]:
    """
    Fill empty cells with random uppercase letters.
    Consumes the same rng as placement so a seed reproduces the whole grid.
    """
    out: List[List[str]] = []
    for row in grid:
        out.append([cell if cell else _rand_letter(rng) for cell in row])
    return out


def _rand_letter(rng: random.Random) -> str:
    return LETTERS[rng.randrange(len(LETTERS))]


def generate_grid(
    words: Sequence[str],
    config: PuzzleConfig,
    rng: Optional[random.Random] = None,
) -> GridResult:
    """
    Place every word into a grid_size x grid_size grid.
      - longest words first (they are the hardest to fit late)
      - random attempts, then a full deterministic scan
      - a word that fits nowhere raises PlacementError
      - leftover cells get random letters
    Placements come back in the caller's word order, not placement order.
    """
    _rng = rng if rng is not None else random.Random(config.seed)
    n = int(config.grid_size or 10)
    dirs = verify_directions(config.directions)

    clean = [_normalize_for_grid(w) for w in words or []]
    clean = [w for w in clean if w]
    if not clean:
        raise ContentError("No valid words provided for grid generation")

    grid = _empty_grid(n)
    by_word: Dict[str, WordPlacement] = {}

    for word in sorted(clean, key=len, reverse=True):
        if word in by_word:
            continue
        placement = _place_random(grid, word, dirs, _rng)
        if placement is None:
            log(f"[grid] random placement failed for '{word}', trying systematic placement")
            placement = _place_systematic(grid, word, dirs)
        if placement is None:
            raise PlacementError(
                f"Could not place word: {word} in {n}x{n} after random and systematic attempts"
            )
        by_word[word] = placement

    letters = fill_grid(grid, _rng)

    ordered: List[WordPlacement] = []
    for word in clean:
        p = by_word.pop(word, None)
        if p is not None:
            ordered.append(p)
    return GridResult(grid=letters, placements=ordered)


# ---------------------------------------------------------------------------
# High-level API
# ---------------------------------------------------------------------------
def initialize_puzzle(
    puzzle: PuzzleDefinition,
    config: PuzzleConfig,
    state: GameProgressState,
    rng: Optional[random.Random] = None,
) -> Tuple[ActivePuzzle, GameProgressState]:
    """
    Turn a puzzle definition into a playable grid and point the state at it:
    current book / story part are set and the book becomes discovered.
    The caller sets current_genre and current_puzzle_index.
    """
    if puzzle is None:
        raise ContentError("Cannot initialize puzzle with no data")
    if not puzzle.words:
        raise ContentError(f"Puzzle '{puzzle.title}' has no words to find")

    final_words = prepare_words(puzzle.words, config)
    result = generate_grid(final_words, config, rng)

    new = state.clone()
    new.current_book = puzzle.book or puzzle.title
    new.current_story_part = puzzle.story_part if puzzle.story_part is not None else 0
    new.discovered_books.add(new.current_book)

    log(f"[grid] '{puzzle.title}': placed {len(result.placements)} words in {config.grid_size}x{config.grid_size}")
    return ActivePuzzle(definition=puzzle, grid=result.grid, placements=result.placements), new


def render_preview_ascii(grid: List[List[str]]) -> str:
    """
    Simple ASCII for quick debugging.
    """
    lines = []
    for row in grid:
        lines.append(" ".join(ch if ch else "." for ch in row))
    return "\n".join(lines)


_STORY_PART_NAMES = {
    0: "The Hook/Introduction",
    1: "Rising Action/Complication",
    2: "Midpoint Twist",
    3: "Climactic Moment",
    4: "Resolution/Epilogue",
}


def get_story_part_name(value: int) -> str:
    return _STORY_PART_NAMES.get(value, "Unknown")

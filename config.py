from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Literal, Optional, Tuple

from engine_log import log

Difficulty = Literal["easy", "medium", "hard"]

# 8 compass directions for placement (row delta, col delta)
DEFAULT_DIRECTIONS: List[Tuple[int, int]] = [
    (0, 1),    # right
    (1, 0),    # down
    (1, 1),    # diagonal down-right
    (0, -1),   # left
    (-1, 0),   # up
    (-1, -1),  # diagonal up-left
    (1, -1),   # diagonal down-left
    (-1, 1),   # diagonal up-right
]


@dataclass(frozen=True)
class DifficultyLevel:
    grid_size: int
    time_limit: int
    max_words: int


DIFFICULTY_LEVELS: Dict[str, DifficultyLevel] = {
    "easy": DifficultyLevel(grid_size=8, time_limit=240, max_words=6),
    "medium": DifficultyLevel(grid_size=10, time_limit=180, max_words=8),
    "hard": DifficultyLevel(grid_size=12, time_limit=150, max_words=10),
}


@dataclass
class PuzzleConfig:
    """
    Everything the grid generator needs to build one puzzle.
    Keep this explicit and simple so it is easy to build in app.py.
    """
    grid_size: int = 10
    time_limit: int = 180  # seconds; shown by the UI in beat-the-clock mode
    min_word_length: int = 3
    max_word_length: int = 10
    max_words: int = 10
    directions: List[Tuple[int, int]] = field(default_factory=lambda: list(DEFAULT_DIRECTIONS))
    seed: Optional[str] = None

    def with_difficulty(self, level: str) -> "PuzzleConfig":
        """Return a copy with the difficulty level's grid size, time and word cap applied."""
        preset = DIFFICULTY_LEVELS.get(level)
        if preset is None:
            log(f"[config] unknown difficulty level: {level}")
            return self
        return replace(
            self,
            grid_size=preset.grid_size,
            time_limit=preset.time_limit,
            max_words=preset.max_words,
        )


@dataclass
class SelectionConfig:
    """How often Kethaneum narrative puzzles are woven into the genre stream."""
    # Insert a Kethaneum puzzle every 2-5 regular puzzles
    min_puzzles_before_kethaneum: int = 2
    max_puzzles_before_kethaneum: int = 5
    kethaneum_genre_name: str = "Kethaneum"


@dataclass
class EngineConfig:
    puzzle: PuzzleConfig = field(default_factory=PuzzleConfig)
    selection: SelectionConfig = field(default_factory=SelectionConfig)


def _apply_overrides(obj, overrides: Dict[str, Any], section: str):
    known = {f.name for f in fields(obj)}
    clean: Dict[str, Any] = {}
    for key, val in (overrides or {}).items():
        if key not in known:
            log(f"[config] ignoring unknown {section} key: {key}")
            continue
        if key == "directions" and isinstance(val, list):
            val = [tuple(d) if isinstance(d, (list, tuple)) else d for d in val]
        clean[key] = val
    return replace(obj, **clean)


def load_config(path: Optional[str] = None) -> EngineConfig:
    """
    Load engine configuration from a JSON file:
        {"puzzle": {...PuzzleConfig fields}, "selection": {...SelectionConfig fields}}
    Missing file or missing sections fall back to defaults.
    """
    cfg = EngineConfig()
    if not path or not os.path.exists(path):
        return cfg
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"config file {path} must hold a JSON object")

    cfg.puzzle = _apply_overrides(cfg.puzzle, data.get("puzzle") or {}, "puzzle")
    cfg.selection = _apply_overrides(cfg.selection, data.get("selection") or {}, "selection")
    if "difficulty" in data:
        cfg.puzzle = cfg.puzzle.with_difficulty(str(data["difficulty"]))
    log(f"[config] loaded {path}")
    return cfg

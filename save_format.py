"""
Stored save formats.

LEGACY (implicit version 1): full book titles, a boolean list (or a
{"complete": true} marker) per book, plain lists for every set.

V2 (compact): short keys, book IDs from the registry, one bitmap per book.
    v   version (2)
    d   comma-joined discovered book IDs
    p   {book_id: bitmap}
    g   {genre: [book_id or title, ...]} completed puzzles
    m   game mode: s / p / b
    n   completed puzzle count
    c   current pointer {g, b, p, i}            (optional)
    s   weaving state {g, k, p, i, r, e}        (optional)
    sp, dl, dlv, a                              (other subsystems; carried through)
"""
from __future__ import annotations

import enum
import json
from typing import Any, Dict, Optional

CURRENT_VERSION = 2
DEFAULT_KETHANEUM_INTERVAL = 3

GAME_MODE_CODES: Dict[str, str] = {
    "story": "s",
    "puzzle-only": "p",
    "beat-the-clock": "b",
}
GAME_MODE_NAMES: Dict[str, str] = {v: k for k, v in GAME_MODE_CODES.items()}

# In-memory audio setting name -> compact key
AUDIO_KEYS: Dict[str, str] = {
    "masterVolume": "mv",
    "musicVolume": "mu",
    "ambientVolume": "av",
    "sfxVolume": "sv",
    "voiceVolume": "vv",
    "masterMuted": "mm",
    "musicMuted": "mum",
    "ambientMuted": "am",
    "sfxMuted": "sm",
    "voiceMuted": "vm",
}


class SaveFormat(enum.Enum):
    LEGACY = 1
    V2 = 2


def parse_blob(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    """JSON text -> dict, or None when there is nothing usable. Raises on bad JSON."""
    if not raw:
        return None
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("save data is not a JSON object")
    return data


def blob_version(data: Dict[str, Any]) -> int:
    """Stored version; a blob without a version tag is the legacy format (1)."""
    v = data.get("v")
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return 1
    return int(v) or 1


def detect_format(data: Dict[str, Any]) -> SaveFormat:
    if blob_version(data) >= CURRENT_VERSION:
        return SaveFormat.V2
    return SaveFormat.LEGACY


def game_mode_code(mode: Optional[str]) -> str:
    return GAME_MODE_CODES.get(mode or "story", "s")


def game_mode_name(code: Optional[str]) -> str:
    return GAME_MODE_NAMES.get(code or "s", "story")


def encode_audio(settings: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not settings:
        return None
    return {short: settings[name] for name, short in AUDIO_KEYS.items() if name in settings}


def decode_audio(compact: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not isinstance(compact, dict):
        return None
    return {name: compact[short] for name, short in AUDIO_KEYS.items() if short in compact}


def compact_size(data: Any) -> int:
    """Byte size of the JSON text as stored."""
    return len(json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8"))


def dump_blob(data: Dict[str, Any]) -> str:
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)

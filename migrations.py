"""
Legacy (v1) -> compact (v2) save migration, with backup and rollback.

migrate_legacy_to_v2() is a pure conversion; auto_migrate() wraps it with
the storage side: back up, convert, write, and restore the backup if any
step fails so storage is never left half-migrated.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from book_registry import BookRegistry
from engine_log import log
from game_state import GameProgressState, UncompletedPuzzle
from progress_bitmap import MAX_PARTS, create_completed_bitmap, encode_parts, sanitize_bitmap
from save_format import (
    CURRENT_VERSION,
    DEFAULT_KETHANEUM_INTERVAL,
    SaveFormat,
    blob_version,
    compact_size,
    detect_format,
    dump_blob,
    game_mode_code,
    parse_blob,
)
from save_storage import BACKUP_KEY, STORAGE_KEY


@dataclass
class MigrationStats:
    books_converted: int = 0
    books_failed: int = 0
    puzzles_converted: int = 0
    original_size: int = 0
    new_size: int = 0
    saved_bytes: int = 0
    saved_percentage: int = 0


@dataclass
class MigrationResult:
    success: bool
    from_version: int = 1
    to_version: int = CURRENT_VERSION
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    stats: MigrationStats = field(default_factory=MigrationStats)


# -----------------------------------------------------------------------------
# Legacy book progress
# -----------------------------------------------------------------------------
def legacy_book_bitmap(value: Any, total_parts: Optional[int] = None) -> Optional[int]:
    """
    One legacy book entry -> bitmap.
      [true, false, ...]                 boolean list (nulls count as false)
      {"complete": true}                 every part of the book
      {"0": true, "1": true, ...}        index-keyed object
    Returns None when the entry carries no usable progress.
    """
    bitmap: Optional[int] = None
    if isinstance(value, list):
        bitmap = encode_parts([v is True for v in value[:MAX_PARTS]])
    elif isinstance(value, dict):
        if value.get("complete") is True:
            # part count unknown without the registry: every bit, trimmed on save
            bitmap = create_completed_bitmap(total_parts or MAX_PARTS)
        else:
            bits = [int(k) for k, v in value.items() if str(k).isdigit() and v is True]
            bits = [b for b in bits if b < MAX_PARTS]
            if bits:
                bitmap = encode_parts([i in bits for i in range(max(bits) + 1)])
    if bitmap is not None and total_parts:
        bitmap = sanitize_bitmap(bitmap, total_parts)
    return bitmap


# -----------------------------------------------------------------------------
# Pure conversion
# -----------------------------------------------------------------------------
def migrate_legacy_to_v2(old: Dict[str, Any], registry: BookRegistry) -> MigrationResult:
    """
    Convert a legacy save dict into the compact v2 dict. The registry must be
    loaded. Titles missing from the registry are dropped and counted in
    stats.books_failed; they do not fail the migration.
    """
    stats = MigrationStats()
    try:
        if not isinstance(old, dict):
            raise ValueError("legacy save data is not an object")
        if not registry.is_loaded():
            raise ValueError("book registry is not loaded")

        books = old.get("books") or {}
        discovered_ids: List[str] = []
        progress: Dict[str, int] = {}

        for title in old.get("discoveredBooks") or []:
            book_id = registry.get_book_id_by_title_sync(str(title))
            if not book_id:
                log(f"[migrate] book '{title}' not found in registry")
                stats.books_failed += 1
                continue
            if book_id in discovered_ids:
                continue
            discovered_ids.append(book_id)
            stats.books_converted += 1

            meta = registry.get_book_sync(book_id)
            bitmap = legacy_book_bitmap(books.get(title), meta.parts if meta else None)
            if bitmap is not None:
                progress[book_id] = bitmap

        completed_by_genre: Dict[str, List[str]] = {}
        for genre, titles in (old.get("completedPuzzlesByGenre") or {}).items():
            ids: List[str] = []
            for title in titles or []:
                ids.append(registry.get_book_id_by_title_sync(str(title)) or str(title))
                stats.puzzles_converted += 1
            if ids:
                completed_by_genre[genre] = ids

        new: Dict[str, Any] = {
            "v": CURRENT_VERSION,
            "d": ",".join(discovered_ids),
            "p": progress,
            "g": completed_by_genre,
            "m": game_mode_code(old.get("gameMode")),
            "n": int(old.get("completedPuzzles") or 0),
        }

        current_book = old.get("currentBook")
        current_part = old.get("currentStoryPart")
        if current_book and current_part is not None:
            current_id = registry.get_book_id_by_title_sync(str(current_book))
            if current_id:
                new["c"] = {
                    "g": old.get("currentGenre") or "",
                    "b": current_id,
                    "p": int(current_part),
                    "i": int(old.get("currentPuzzleIndex") or 0),
                }

        if (
            old.get("selectedGenre")
            or old.get("nextKethaneumIndex") is not None
            or old.get("kethaneumRevealed")
        ):
            new["s"] = {
                "g": old.get("selectedGenre") or "",
                "k": int(old.get("nextKethaneumIndex") or 0),
                "p": int(old.get("puzzlesSinceLastKethaneum") or 0),
                "i": int(old.get("nextKethaneumInterval") or DEFAULT_KETHANEUM_INTERVAL),
                "r": bool(old.get("kethaneumRevealed")),
                "e": bool(old.get("genreExhausted")),
            }

        if old.get("storyProgress"):
            new["sp"] = old["storyProgress"]

        stats.original_size = compact_size(old)
        stats.new_size = compact_size(new)
        stats.saved_bytes = stats.original_size - stats.new_size
        if stats.original_size:
            stats.saved_percentage = int(round(stats.saved_bytes / stats.original_size * 100))

        return MigrationResult(success=True, data=new, stats=stats)
    except Exception as e:
        return MigrationResult(success=False, error=str(e) or "Unknown migration error", stats=stats)


# -----------------------------------------------------------------------------
# Detection
# -----------------------------------------------------------------------------
def _read(store) -> Optional[Dict[str, Any]]:
    return parse_blob(store.get_item(STORAGE_KEY))


def needs_migration(store) -> bool:
    """True for a legacy save, or for an unreadable save that a backup can replace."""
    try:
        data = _read(store)
    except (OSError, ValueError):
        return has_backup(store)
    if data is None:
        return False
    return detect_format(data) is SaveFormat.LEGACY


def get_current_version(store) -> int:
    """0 = no save (or unreadable), 1 = legacy, 2+ = compact."""
    try:
        data = _read(store)
    except (OSError, ValueError):
        return 0
    if data is None:
        return 0
    return blob_version(data)


# -----------------------------------------------------------------------------
# Backup
# -----------------------------------------------------------------------------
def create_backup(store) -> bool:
    current = store.get_item(STORAGE_KEY)
    if not current:
        return False
    try:
        store.set_item(BACKUP_KEY, current)
    except OSError as e:
        log(f"[migrate] failed to create backup: {e}")
        return False
    return True


def has_backup(store) -> bool:
    return store.get_item(BACKUP_KEY) is not None


def restore_from_backup(store) -> bool:
    backup = store.get_item(BACKUP_KEY)
    if backup is None:
        log("[migrate] no backup found to restore")
        return False
    try:
        store.set_item(STORAGE_KEY, backup)
    except OSError as e:
        log(f"[migrate] failed to restore from backup: {e}")
        return False
    return True


def delete_backup(store) -> None:
    store.remove_item(BACKUP_KEY)


def get_backup_data(store) -> Optional[Dict[str, Any]]:
    try:
        return parse_blob(store.get_item(BACKUP_KEY))
    except (OSError, ValueError):
        return None


def get_migration_status(store) -> Dict[str, Any]:
    return {
        "current_version": get_current_version(store),
        "needs_migration": needs_migration(store),
        "has_backup": has_backup(store),
        "target_version": CURRENT_VERSION,
    }


# -----------------------------------------------------------------------------
# Entry point
# -----------------------------------------------------------------------------
async def auto_migrate(store, registry: BookRegistry) -> Optional[MigrationResult]:
    """
    Migrate the stored save if it is legacy. Returns None when there is
    nothing to do (no save, or already current), so calling it again after a
    successful run changes nothing. An unreadable save is first replaced by
    its backup when one exists.
    """
    try:
        data = _read(store)
    except (OSError, ValueError) as e:
        if not has_backup(store):
            log(f"[migrate] failed to parse save data: {e}")
            return MigrationResult(success=False, error="Failed to parse save data")
        log("[migrate] save data unreadable, restoring backup before migrating")
        if not restore_from_backup(store):
            return MigrationResult(success=False, error="Failed to restore backup")
        try:
            data = _read(store)
        except (OSError, ValueError):
            return MigrationResult(success=False, error="Backup data is unreadable")

    if data is None or detect_format(data) is SaveFormat.V2:
        return None

    try:
        await registry.load()
    except Exception as e:
        log(f"[migrate] cannot load book registry: {e}")
        return MigrationResult(success=False, error=f"Book registry unavailable: {e}")

    backup_created = create_backup(store)
    if not backup_created:
        log("[migrate] could not create backup, proceeding anyway")

    result = migrate_legacy_to_v2(data, registry)
    if result.success and result.data is not None:
        try:
            store.set_item(STORAGE_KEY, dump_blob(result.data))
        except (OSError, ValueError) as e:
            log(f"[migrate] failed to save migrated data: {e}")
            if backup_created:
                restore_from_backup(store)
            return replace(result, success=False, error="Failed to save migrated data")
        s = result.stats
        log(
            f"[migrate] v1 -> v{CURRENT_VERSION}: {s.books_converted} books, "
            f"{s.books_failed} unknown, saved {s.saved_bytes} bytes"
        )
    elif backup_created:
        restore_from_backup(store)
    return result


# -----------------------------------------------------------------------------
# Legacy fallback load
# -----------------------------------------------------------------------------
def legacy_to_game_state(
    old: Dict[str, Any], registry: Optional[BookRegistry] = None
) -> GameProgressState:
    """Read a legacy save directly into progress state (used when migration fails)."""
    state = GameProgressState()
    for title, value in (old.get("books") or {}).items():
        parts = None
        if registry is not None and registry.is_loaded():
            book_id = registry.get_book_id_by_title_sync(title)
            meta = registry.get_book_sync(book_id) if book_id else None
            parts = meta.parts if meta else None
        bitmap = legacy_book_bitmap(value, parts)
        if bitmap is not None:
            state.books[title] = bitmap

    state.discovered_books = set(old.get("discoveredBooks") or [])
    state.completed_puzzles_by_genre = {
        g: set(titles or []) for g, titles in (old.get("completedPuzzlesByGenre") or {}).items()
    }
    state.completed_puzzles = int(old.get("completedPuzzles") or 0)
    state.game_mode = old.get("gameMode") or "story"
    state.current_genre = old.get("currentGenre") or ""
    state.current_book = old.get("currentBook") or ""
    state.current_story_part = _int_or(old.get("currentStoryPart"), -1)
    state.current_puzzle_index = _int_or(old.get("currentPuzzleIndex"), -1)
    state.selected_genre = old.get("selectedGenre") or ""
    state.next_kethaneum_index = int(old.get("nextKethaneumIndex") or 0)
    state.puzzles_since_last_kethaneum = int(old.get("puzzlesSinceLastKethaneum") or 0)
    state.next_kethaneum_interval = int(old.get("nextKethaneumInterval") or DEFAULT_KETHANEUM_INTERVAL)
    state.kethaneum_revealed = bool(old.get("kethaneumRevealed"))
    state.genre_exhausted = bool(old.get("genreExhausted"))
    state.story_progress = old.get("storyProgress")

    pending = old.get("lastUncompletedPuzzle")
    if isinstance(pending, dict) and pending.get("book"):
        state.last_uncompleted_puzzle = UncompletedPuzzle(
            book=str(pending["book"]),
            part=int(pending.get("part") or 0),
            genre=str(pending.get("genre") or ""),
        )
    return state


def _int_or(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default

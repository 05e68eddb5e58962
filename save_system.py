"""
Save / load of player progress.

Progress is stored as one compact JSON blob (see save_format) under a
single storage key. Loading detects the stored format up front: a legacy
blob is migrated once (with backup and rollback, see migrations), a
current blob is decoded directly. Decoding expands book IDs back into
titles and rebuilds the "parts available per book" index from the
registry's part counts.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from book_registry import BookRegistry
from engine_log import log
from game_state import GameMode, GameProgressState
from migrations import (
    auto_migrate,
    create_backup,
    delete_backup,
    get_migration_status,
    has_backup,
    legacy_to_game_state,
    needs_migration,
    restore_from_backup,
)
from progress_bitmap import (
    decode_parts,
    get_completion_percentage,
    is_book_completed,
    sanitize_bitmap,
)
from save_format import (
    CURRENT_VERSION,
    DEFAULT_KETHANEUM_INTERVAL,
    SaveFormat,
    blob_version,
    decode_audio,
    detect_format,
    dump_blob,
    encode_audio,
    game_mode_code,
    game_mode_name,
    parse_blob,
)
from save_storage import BACKUP_KEY, STORAGE_KEY


# -----------------------------------------------------------------------------
# Encode
# -----------------------------------------------------------------------------
def encode_progress(state: GameProgressState, registry: BookRegistry) -> Dict[str, Any]:
    """
    In-memory state -> compact v2 dict. The registry must be loaded; books
    whose titles it does not know are left out. IDs are emitted sorted so
    the same state always produces the same blob.
    """
    titles = set(state.discovered_books) | set(state.books)
    progress: Dict[str, int] = {}
    discovered_ids: Set[str] = set()
    for title in titles:
        book_id = registry.get_book_id_by_title_sync(title)
        if not book_id:
            log(f"[save] book '{title}' not in registry, not saved")
            continue
        discovered_ids.add(book_id)
        if title in state.books:
            meta = registry.get_book_sync(book_id)
            bitmap = state.books[title]
            progress[book_id] = sanitize_bitmap(bitmap, meta.parts) if meta else bitmap

    completed_by_genre: Dict[str, List[str]] = {}
    for genre, puzzle_titles in state.completed_puzzles_by_genre.items():
        ids = sorted(registry.get_book_id_by_title_sync(t) or t for t in puzzle_titles)
        if ids:
            completed_by_genre[genre] = ids

    blob: Dict[str, Any] = {
        "v": CURRENT_VERSION,
        "d": ",".join(sorted(discovered_ids)),
        "p": {k: progress[k] for k in sorted(progress)},
        "g": completed_by_genre,
        "m": game_mode_code(state.game_mode),
        "n": state.completed_puzzles,
    }

    if state.current_book and state.current_story_part >= 0:
        current_id = registry.get_book_id_by_title_sync(state.current_book)
        if current_id:
            blob["c"] = {
                "g": state.current_genre,
                "b": current_id,
                "p": state.current_story_part,
                "i": max(state.current_puzzle_index, 0),
            }

    if (
        state.selected_genre
        or state.current_genre
        or state.next_kethaneum_index > 0
        or state.kethaneum_revealed
    ):
        blob["s"] = {
            "g": state.selected_genre or state.current_genre,
            "k": state.next_kethaneum_index,
            "p": state.puzzles_since_last_kethaneum,
            "i": state.next_kethaneum_interval or DEFAULT_KETHANEUM_INTERVAL,
            "r": state.kethaneum_revealed,
            "e": state.genre_exhausted,
        }

    if state.story_progress:
        blob["sp"] = state.story_progress
    if state.completed_story_events:
        blob["dl"] = list(state.completed_story_events)
    if state.has_visited_library:
        blob["dlv"] = True
    audio = encode_audio(state.audio_settings)
    if audio:
        blob["a"] = audio
    return blob


# -----------------------------------------------------------------------------
# Decode
# -----------------------------------------------------------------------------
@dataclass
class DecodedBookProgress:
    book_id: str
    title: str
    genre: str
    total_parts: int
    completed_parts: List[bool]
    progress_bitmap: int
    is_complete: bool
    completion_percentage: int


@dataclass
class DecodedPointer:
    genre: str
    book_id: str
    book_title: str
    part: int
    puzzle_index: int


@dataclass
class DecodedSelection:
    selected_genre: str = ""
    next_kethaneum_index: int = 0
    puzzles_since_last_kethaneum: int = 0
    next_kethaneum_interval: int = DEFAULT_KETHANEUM_INTERVAL
    kethaneum_revealed: bool = False
    genre_exhausted: bool = False


@dataclass
class DecodedProgress:
    version: int
    discovered_books: Dict[str, DecodedBookProgress] = field(default_factory=dict)
    completed_puzzles_by_genre: Dict[str, Set[str]] = field(default_factory=dict)
    game_mode: GameMode = "story"
    completed_puzzles_count: int = 0
    current: Optional[DecodedPointer] = None
    selection: Optional[DecodedSelection] = None
    story_progress: Optional[Dict[str, Any]] = None
    completed_story_events: List[str] = field(default_factory=list)
    has_visited_library: bool = False
    audio_settings: Optional[Dict[str, Any]] = None


async def decode_progress(blob: Dict[str, Any], registry: BookRegistry) -> DecodedProgress:
    """Compact v2 dict -> DecodedProgress. IDs unknown to the registry are skipped."""
    await registry.load()

    decoded = DecodedProgress(
        version=blob_version(blob),
        game_mode=game_mode_name(blob.get("m")),
        completed_puzzles_count=int(blob.get("n") or 0),
    )

    progress = blob.get("p") or {}
    for book_id in filter(None, (blob.get("d") or "").split(",")):
        meta = await registry.get_book(book_id)
        if meta is None:
            log(f"[save] unknown book id '{book_id}' in save, skipped")
            continue
        bitmap = sanitize_bitmap(int(progress.get(book_id) or 0), meta.parts)
        decoded.discovered_books[book_id] = DecodedBookProgress(
            book_id=book_id,
            title=meta.title,
            genre=meta.genre,
            total_parts=meta.parts,
            completed_parts=decode_parts(bitmap, meta.parts),
            progress_bitmap=bitmap,
            is_complete=is_book_completed(bitmap, meta.parts),
            completion_percentage=get_completion_percentage(bitmap, meta.parts),
        )

    for genre, ids in (blob.get("g") or {}).items():
        decoded.completed_puzzles_by_genre[genre] = set(ids or [])

    c = blob.get("c")
    if isinstance(c, dict) and c.get("b"):
        meta = await registry.get_book(c["b"])
        decoded.current = DecodedPointer(
            genre=c.get("g") or "",
            book_id=c["b"],
            book_title=meta.title if meta else "",
            part=int(c.get("p") or 0),
            puzzle_index=int(c.get("i") or 0),
        )

    s = blob.get("s")
    if isinstance(s, dict):
        decoded.selection = DecodedSelection(
            selected_genre=s.get("g") or "",
            next_kethaneum_index=int(s.get("k") or 0),
            puzzles_since_last_kethaneum=int(s.get("p") or 0),
            next_kethaneum_interval=int(s.get("i") or DEFAULT_KETHANEUM_INTERVAL),
            kethaneum_revealed=bool(s.get("r")),
            genre_exhausted=bool(s.get("e")),
        )

    if blob.get("sp"):
        decoded.story_progress = blob["sp"]
    if isinstance(blob.get("dl"), list):
        decoded.completed_story_events = list(blob["dl"])
    decoded.has_visited_library = blob.get("dlv") is True
    decoded.audio_settings = decode_audio(blob.get("a"))
    return decoded


def to_game_state(
    decoded: DecodedProgress,
    registry: BookRegistry,
    base: Optional[GameProgressState] = None,
) -> GameProgressState:
    """
    Expand decoded progress into the in-memory state. Loaded content
    (puzzles, parts index) is taken from `base` when given; the parts index
    starts from the registry's part counts and is overlaid by the content's.
    """
    state = base.clone() if base is not None else GameProgressState()

    parts_map: Dict[str, List[int]] = {}
    if registry.is_loaded():
        for book_id in decoded.discovered_books:
            meta = registry.get_book_sync(book_id)
            if meta:
                parts_map[meta.title] = list(range(meta.parts))
    parts_map.update(state.book_parts_map)
    state.book_parts_map = parts_map

    state.books = {b.title: b.progress_bitmap for b in decoded.discovered_books.values()}
    state.discovered_books = set(state.books)

    by_genre: Dict[str, Set[str]] = {}
    for genre, ids in decoded.completed_puzzles_by_genre.items():
        titles = set()
        for item in ids:
            meta = registry.get_book_sync(item) if registry.is_loaded() else None
            titles.add(meta.title if meta else item)
        by_genre[genre] = titles
    state.completed_puzzles_by_genre = by_genre
    state.completed_puzzles = decoded.completed_puzzles_count
    state.game_mode = decoded.game_mode

    cur = decoded.current
    state.current_genre = cur.genre if cur else ""
    state.current_book = cur.book_title if cur else ""
    state.current_story_part = cur.part if cur else -1
    state.current_puzzle_index = cur.puzzle_index if cur else -1

    sel = decoded.selection or DecodedSelection()
    state.selected_genre = sel.selected_genre
    if not state.selected_genre and state.current_genre:
        log(f"[save] selected genre empty, using current genre '{state.current_genre}'")
        state.selected_genre = state.current_genre
    state.next_kethaneum_index = sel.next_kethaneum_index
    state.puzzles_since_last_kethaneum = sel.puzzles_since_last_kethaneum
    state.next_kethaneum_interval = sel.next_kethaneum_interval
    state.kethaneum_revealed = sel.kethaneum_revealed
    state.genre_exhausted = sel.genre_exhausted

    state.story_progress = decoded.story_progress
    state.completed_story_events = list(decoded.completed_story_events)
    state.has_visited_library = decoded.has_visited_library
    state.audio_settings = decoded.audio_settings
    state.last_uncompleted_puzzle = None
    return state


def book_progress_summary(decoded: DecodedProgress) -> Dict[str, int]:
    """Title -> index of the next part to play (total parts when the book is done)."""
    out: Dict[str, int] = {}
    for b in decoded.discovered_books.values():
        nxt = next((i for i, done in enumerate(b.completed_parts) if not done), -1)
        out[b.title] = b.total_parts if nxt == -1 else nxt
    return out


# -----------------------------------------------------------------------------
# Service
# -----------------------------------------------------------------------------
@dataclass
class LoadResult:
    success: bool
    data: Optional[GameProgressState] = None
    was_migrated: bool = False
    version: int = 0
    error: Optional[str] = None


class SaveSystem:
    """Save/load against one storage backend, with migration on load."""

    def __init__(self, store, registry: BookRegistry) -> None:
        self.store = store
        self.registry = registry
        self._load_task: Optional[asyncio.Future] = None

    async def save_progress(self, state: GameProgressState) -> None:
        """Write the compact blob. Storage failures are logged and re-raised."""
        await self.registry.load()
        blob = encode_progress(state, self.registry)
        if self._stored_format() is not SaveFormat.V2 and create_backup(self.store):
            log("[save] backed up non-v2 save before overwriting it")
        try:
            self.store.set_item(STORAGE_KEY, dump_blob(blob))
        except OSError as e:
            log(f"[save] failed to save progress: {e}")
            raise
        log(f"[save] saved {len(blob['p'])} books, {blob['n']} puzzles")

    async def load_progress(self) -> LoadResult:
        """
        Load, migrating a legacy save first. Concurrent callers share one
        in-flight load. Never raises: failures come back as
        LoadResult(success=False, data=None, error=...).
        """
        if self._load_task is None:
            self._load_task = asyncio.ensure_future(self._load())
        task = self._load_task
        try:
            return await task
        finally:
            if self._load_task is task and task.done():
                self._load_task = None

    async def _load(self) -> LoadResult:
        try:
            if needs_migration(self.store):
                log("[save] old format detected, running migration")
                result = await auto_migrate(self.store, self.registry)
                if result is not None and result.success:
                    decoded = await decode_progress(result.data, self.registry)
                    return LoadResult(
                        success=True,
                        data=to_game_state(decoded, self.registry),
                        was_migrated=True,
                        version=decoded.version,
                    )
                legacy = self._read_legacy() if result is not None else None
                if legacy is not None:
                    log("[save] migration failed, falling back to legacy load")
                    return LoadResult(
                        success=True,
                        data=legacy_to_game_state(legacy, self.registry),
                        version=1,
                        error=result.error if result else None,
                    )

            blob = parse_blob(self.store.get_item(STORAGE_KEY))
            if blob is None:
                return LoadResult(success=True)
            if detect_format(blob) is SaveFormat.LEGACY:
                return LoadResult(
                    success=True, data=legacy_to_game_state(blob, self.registry), version=1
                )
            decoded = await decode_progress(blob, self.registry)
            return LoadResult(
                success=True,
                data=to_game_state(decoded, self.registry),
                version=decoded.version,
            )
        except (OSError, ValueError) as e:
            log(f"[save] load failed: {e}")
            return LoadResult(success=False, error=str(e) or type(e).__name__)

    def _stored_format(self) -> Optional[SaveFormat]:
        """Format of the stored blob; None when nothing is stored, LEGACY when unreadable."""
        try:
            blob = parse_blob(self.store.get_item(STORAGE_KEY))
        except (OSError, ValueError):
            return SaveFormat.LEGACY
        return detect_format(blob) if blob is not None else None

    def _read_legacy(self) -> Optional[Dict[str, Any]]:
        try:
            blob = parse_blob(self.store.get_item(STORAGE_KEY))
        except (OSError, ValueError):
            return None
        if blob is None or detect_format(blob) is not SaveFormat.LEGACY:
            return None
        return blob

    async def force_remigration(self) -> LoadResult:
        """Put the backup back and run the load (and so the migration) again."""
        if not has_backup(self.store):
            return LoadResult(success=False, error="No backup available for re-migration")
        restore_from_backup(self.store)
        return await self.load_progress()

    # -------------------------------------------------------------------------
    # Introspection / maintenance
    # -------------------------------------------------------------------------
    def get_save_version(self) -> int:
        try:
            blob = parse_blob(self.store.get_item(STORAGE_KEY))
        except (OSError, ValueError):
            return 0
        return blob_version(blob) if blob is not None else 0

    def is_optimized_format(self) -> bool:
        return self.get_save_version() >= CURRENT_VERSION

    def get_storage_size(self) -> int:
        """Bytes used by the main save blob."""
        raw = self.store.get_item(STORAGE_KEY)
        return len(raw.encode("utf-8")) if raw else 0

    def has_save_data(self) -> bool:
        return self.store.get_item(STORAGE_KEY) is not None

    def clear_all_progress(self) -> None:
        self.store.remove_item(STORAGE_KEY)
        delete_backup(self.store)
        log("[save] all progress cleared")

    def rollback_to_backup(self) -> bool:
        if not has_backup(self.store):
            log("[save] no backup available for rollback")
            return False
        return restore_from_backup(self.store)

    def clear_migration_backup(self) -> None:
        delete_backup(self.store)

    def get_save_system_info(self) -> Dict[str, Any]:
        status = get_migration_status(self.store)
        return {
            "version": status["current_version"],
            "is_optimized": self.is_optimized_format(),
            "needs_migration": status["needs_migration"],
            "has_backup": status["has_backup"],
            "storage_size": self.get_storage_size(),
        }

    def get_debug_info(self) -> Dict[str, Any]:
        return {
            "system_info": self.get_save_system_info(),
            "raw_data": self._debug_blob(STORAGE_KEY),
            "backup_data": self._debug_blob(BACKUP_KEY),
        }

    def _debug_blob(self, key: str) -> Any:
        try:
            return parse_blob(self.store.get_item(key))
        except (OSError, ValueError):
            return "Failed to parse"

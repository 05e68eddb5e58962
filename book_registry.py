"""
Book registry: compact book IDs ("K001") <-> title, genre, part count, order.

The registry is an explicitly constructed service. Build one at startup and
hand it to the save system and the UI; nothing here is global.
"""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from engine_log import log
from progress_bitmap import MAX_PARTS


class RegistryError(ValueError):
    """The registry document is unreadable or breaks its invariants."""


@dataclass(frozen=True)
class BookMetadata:
    title: str
    genre: str
    parts: int
    order: int = 0


@dataclass(frozen=True)
class BookWithId:
    book_id: str
    title: str
    genre: str
    parts: int
    order: int = 0


@dataclass(frozen=True)
class GenreMetadata:
    name: str
    description: Optional[str] = None
    book_count: int = 0


@dataclass
class RegistryData:
    version: int
    books: Dict[str, BookMetadata] = field(default_factory=dict)
    genres: Dict[str, GenreMetadata] = field(default_factory=dict)


def parse_registry(doc: Any) -> RegistryData:
    """
    Validate a registry document:
        {"version": 1, "books": {id: {...}}, "genres": {id: {...}}}
    Titles must be unique ignoring case; parts must be 1..32.
    """
    if not isinstance(doc, dict) or not isinstance(doc.get("books"), dict):
        raise RegistryError("registry document needs a 'books' object")

    books: Dict[str, BookMetadata] = {}
    seen_titles: Dict[str, str] = {}
    for book_id, raw in doc["books"].items():
        if not isinstance(raw, dict):
            raise RegistryError(f"book {book_id}: entry must be an object")
        try:
            title = str(raw["title"])
            genre = str(raw["genre"])
            parts = int(raw["parts"])
        except (KeyError, TypeError, ValueError) as e:
            raise RegistryError(f"book {book_id}: missing or bad field ({e})") from e
        if not 1 <= parts <= MAX_PARTS:
            raise RegistryError(f"book {book_id}: parts={parts} outside 1..{MAX_PARTS}")
        key = title.lower()
        if key in seen_titles:
            raise RegistryError(
                f"book {book_id}: title {title!r} already used by {seen_titles[key]}"
            )
        seen_titles[key] = book_id
        books[book_id] = BookMetadata(
            title=title, genre=genre, parts=parts, order=int(raw.get("order", 0) or 0)
        )

    genres: Dict[str, GenreMetadata] = {}
    for genre_id, raw in (doc.get("genres") or {}).items():
        raw = raw if isinstance(raw, dict) else {}
        genres[genre_id] = GenreMetadata(
            name=str(raw.get("name", genre_id)),
            description=raw.get("description"),
            book_count=int(raw.get("bookCount", 0) or 0),
        )

    return RegistryData(version=int(doc.get("version", 1) or 1), books=books, genres=genres)


def _read_json(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


class BookRegistry:
    """Cached access to the book registry document."""

    def __init__(self, path: Optional[str] = None, document: Optional[dict] = None) -> None:
        self.path = path
        self._document = document
        self._registry: Optional[RegistryData] = None
        self._by_id: Dict[str, BookMetadata] = {}
        self._title_to_id: Dict[str, str] = {}
        self._load_task: Optional[asyncio.Future] = None

    @classmethod
    def from_document(cls, document: dict) -> "BookRegistry":
        """Build an already-loaded registry from an in-memory document."""
        reg = cls(document=document)
        reg._install(parse_registry(document))
        return reg

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------
    async def load(self) -> RegistryData:
        """
        Load once and cache. Concurrent callers share the same pending load
        instead of reading the file again. A failed load is not cached.
        """
        if self._registry is not None:
            return self._registry
        if self._load_task is None:
            self._load_task = asyncio.ensure_future(self._fetch())
        task = self._load_task
        try:
            return await task
        finally:
            if self._load_task is task and task.done():
                self._load_task = None

    async def _fetch(self) -> RegistryData:
        if self._document is not None:
            doc = self._document
        elif self.path:
            try:
                doc = await asyncio.to_thread(_read_json, self.path)
            except (OSError, json.JSONDecodeError) as e:
                log(f"[registry] cannot read {self.path}: {e}")
                raise RegistryError(f"failed to load book registry: {e}") from e
        else:
            raise RegistryError("book registry has neither a path nor a document")
        data = parse_registry(doc)
        self._install(data)
        log(f"[registry] loaded {len(data.books)} books, {len(data.genres)} genres")
        return data

    def _install(self, data: RegistryData) -> None:
        self._registry = data
        self._by_id = dict(data.books)
        self._title_to_id = {b.title.lower(): book_id for book_id, b in data.books.items()}

    def is_loaded(self) -> bool:
        return self._registry is not None

    def clear_cache(self) -> None:
        """Forget the loaded registry (tests, hot reload)."""
        self._registry = None
        self._by_id.clear()
        self._title_to_id.clear()
        self._load_task = None

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------
    async def get_book(self, book_id: str) -> Optional[BookMetadata]:
        await self.load()
        return self._by_id.get(book_id)

    def get_book_sync(self, book_id: str) -> Optional[BookMetadata]:
        """Lookup by ID; needs the registry to be loaded already."""
        return self._by_id.get(book_id)

    async def get_book_id_by_title(self, title: str) -> Optional[str]:
        await self.load()
        return self.get_book_id_by_title_sync(title)

    def get_book_id_by_title_sync(self, title: str) -> Optional[str]:
        """Case-insensitive title lookup; needs the registry to be loaded already."""
        if not title:
            return None
        return self._title_to_id.get(title.lower())

    async def get_books_by_genre(self, genre: str) -> List[BookWithId]:
        reg = await self.load()
        wanted = genre.lower()
        out = [
            BookWithId(book_id=bid, title=b.title, genre=b.genre, parts=b.parts, order=b.order)
            for bid, b in reg.books.items()
            if b.genre.lower() == wanted
        ]
        out.sort(key=lambda b: b.order)
        return out

    async def get_all_books(self) -> List[BookWithId]:
        reg = await self.load()
        return [
            BookWithId(book_id=bid, title=b.title, genre=b.genre, parts=b.parts, order=b.order)
            for bid, b in reg.books.items()
        ]

    async def get_all_genres(self) -> Dict[str, GenreMetadata]:
        reg = await self.load()
        return dict(reg.genres)

    async def get_genre(self, genre_id: str) -> Optional[GenreMetadata]:
        reg = await self.load()
        return reg.genres.get(genre_id) or reg.genres.get(genre_id.lower())

    async def get_book_count(self) -> int:
        reg = await self.load()
        return len(reg.books)

    async def get_total_parts(self) -> int:
        reg = await self.load()
        return sum(b.parts for b in reg.books.values())

    async def get_version(self) -> int:
        reg = await self.load()
        return reg.version

    async def book_exists(self, book_id: str) -> bool:
        reg = await self.load()
        return book_id in reg.books

    async def title_exists(self, title: str) -> bool:
        await self.load()
        return self.get_book_id_by_title_sync(title) is not None

    async def get_next_book_id(self, genre: str) -> str:
        """Next free ID for a genre: its initial plus a 3-digit counter (N003)."""
        reg = await self.load()
        prefix = genre[:1].upper()
        numbers = []
        for book_id in reg.books:
            if book_id.startswith(prefix) and book_id[1:].isdigit():
                numbers.append(int(book_id[1:]))
        next_num = max(numbers) + 1 if numbers else 1
        return f"{prefix}{next_num:03d}"

"""
Compact per-book part completion.

Each bit of a non-negative int is one part of a book (1 = completed):
a 5-part book with parts 0, 2 and 4 done is 0b10101 == 21.
Books have at most MAX_PARTS parts.
"""
from __future__ import annotations

from typing import List, Sequence

# Maximum number of parts supported per book
MAX_PARTS = 32


def _check_index(part_index: int) -> None:
    if not 0 <= part_index < MAX_PARTS:
        raise ValueError(f"part index {part_index} outside 0..{MAX_PARTS - 1}")


def _mask(total_parts: int) -> int:
    return (1 << max(0, min(total_parts, MAX_PARTS))) - 1


# -----------------------------------------------------------------------------
# Encoding
# -----------------------------------------------------------------------------
def encode_parts(completed: Sequence[bool]) -> int:
    """
    Encode a list of part completions into a bitmap.
        encode_parts([True, False, True]) -> 5
    """
    if len(completed) > MAX_PARTS:
        raise ValueError(f"cannot encode {len(completed)} parts (max {MAX_PARTS})")
    bitmap = 0
    for part_index, done in enumerate(completed):
        if done:
            bitmap |= 1 << part_index
    return bitmap


def decode_parts(bitmap: int, total_parts: int) -> List[bool]:
    """
    Decode a bitmap into one bool per part.
        decode_parts(5, 3) -> [True, False, True]
    """
    return [bool(bitmap & (1 << i)) for i in range(total_parts)]


# -----------------------------------------------------------------------------
# Part manipulation
# -----------------------------------------------------------------------------
def complete_part(bitmap: int, part_index: int) -> int:
    _check_index(part_index)
    return bitmap | (1 << part_index)


def uncomplete_part(bitmap: int, part_index: int) -> int:
    _check_index(part_index)
    return bitmap & ~(1 << part_index)


def toggle_part(bitmap: int, part_index: int) -> int:
    _check_index(part_index)
    return bitmap ^ (1 << part_index)


# -----------------------------------------------------------------------------
# Queries
# -----------------------------------------------------------------------------
def is_part_completed(bitmap: int, part_index: int) -> bool:
    if not 0 <= part_index < MAX_PARTS:
        return False
    return bool(bitmap & (1 << part_index))


def get_completed_count(bitmap: int) -> int:
    """Number of set bits (completed parts)."""
    return bin(bitmap & _mask(MAX_PARTS)).count("1")


def is_book_completed(bitmap: int, total_parts: int) -> bool:
    """True when every one of the book's parts is set."""
    if total_parts <= 0:
        return False
    return bitmap == _mask(total_parts)


def get_completion_percentage(bitmap: int, total_parts: int) -> int:
    """Rounded percentage of completed parts (0-100)."""
    if total_parts <= 0:
        return 0
    done = get_completed_count(bitmap & _mask(total_parts))
    return int(round(done / total_parts * 100))


def get_completed_part_indices(bitmap: int, total_parts: int) -> List[int]:
    return [i for i in range(total_parts) if bitmap & (1 << i)]


def get_incomplete_part_indices(bitmap: int, total_parts: int) -> List[int]:
    return [i for i in range(total_parts) if not bitmap & (1 << i)]


def get_next_incomplete_part(bitmap: int, total_parts: int) -> int:
    """Index of the first incomplete part, or -1 when the book is done."""
    for i in range(total_parts):
        if not bitmap & (1 << i):
            return i
    return -1


# -----------------------------------------------------------------------------
# Bulk operations
# -----------------------------------------------------------------------------
def create_completed_bitmap(total_parts: int) -> int:
    """All parts done: create_completed_bitmap(4) -> 15."""
    return _mask(total_parts)


def create_empty_bitmap() -> int:
    return 0


def merge_bitmaps(bitmap1: int, bitmap2: int) -> int:
    return bitmap1 | bitmap2


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------
def is_valid_bitmap(bitmap: int, total_parts: int) -> bool:
    """Only bits inside the book's part range may be set."""
    if not isinstance(bitmap, int) or isinstance(bitmap, bool):
        return False
    return 0 <= bitmap <= _mask(total_parts)


def sanitize_bitmap(bitmap: int, total_parts: int) -> int:
    """Clear every bit outside the book's part range (and any negative value)."""
    if not isinstance(bitmap, int) or bitmap < 0:
        return 0
    return bitmap & _mask(total_parts)


def is_valid_part_count(part_count: int) -> bool:
    return 0 < part_count <= MAX_PARTS

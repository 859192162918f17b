"""Canonical book order, chapter/verse tables and reference helpers."""

import json
import re
from pathlib import Path
from typing import Iterator, Optional


# =============================================================================
# Constants
# =============================================================================

DATA_DIR = Path(__file__).resolve().parent / "data"
BIBLE_STRUCTURE_FILE = DATA_DIR / "bible_structure.json"

TRANSLATIONS = (
    "KJV", "ASV", "WEB", "YLT", "BBE",
    "NIV", "NLT", "ESV", "NKJV", "NASB",
    "CSB", "AMP", "MSG", "NET", "NRSV",
    "RSV", "CEV",
)

DEFAULT_TRANSLATIONS = ("KJV", "ASV", "WEB")

# Spellings seen in source payloads -> canonical name
BOOK_ALIASES = {
    "psalm": "Psalms",
    "song of songs": "Song of Solomon",
    "songs": "Song of Solomon",
    "canticles": "Song of Solomon",
    "solomon's song": "Song of Solomon",
    "revelation of john": "Revelation",
    "revelations": "Revelation",
}

REFERENCE_RE = re.compile(r"^(.+?)\s+(\d+):(\d+)$")

# "I Samuel", "II Kings", "III John"
ROMAN_PREFIX_RE = re.compile(r"^(i{1,3})\s+(?=\S)")


def load_bible_structure(path: Path = BIBLE_STRUCTURE_FILE) -> dict[str, list[int]]:
    """Load the Bible structure (book -> list of verse counts per chapter)."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


# =============================================================================
# Structure
# =============================================================================

class BibleStructure:
    """Ordered 66-book canon with known chapter and verse counts."""

    def __init__(self, structure: Optional[dict[str, list[int]]] = None):
        self._chapters = structure if structure is not None else load_bible_structure()
        self.books: list[str] = list(self._chapters)
        self._lookup = {book.lower(): book for book in self.books}
        self._lookup.update(
            {alias: book for alias, book in BOOK_ALIASES.items() if book in self._chapters}
        )

    def __contains__(self, book: str) -> bool:
        return book in self._chapters

    def __len__(self) -> int:
        return len(self.books)

    def canonical_book(self, name: str) -> Optional[str]:
        """Resolve a source spelling (any case, aliases) to the canonical book name."""
        key = re.sub(r"\s+", " ", name.replace("_", " ")).strip().lower()
        key = ROMAN_PREFIX_RE.sub(lambda m: f"{len(m.group(1))} ", key)
        return self._lookup.get(key)

    def book_number(self, book: str) -> int:
        """1-based position of the book in canon order."""
        return self.books.index(book) + 1

    def book_by_number(self, number: int) -> Optional[str]:
        if 1 <= number <= len(self.books):
            return self.books[number - 1]
        return None

    def chapter_count(self, book: str) -> int:
        return len(self._chapters.get(book, []))

    def verse_count(self, book: str, chapter: int) -> int:
        """Known verse count for a chapter, 0 when the chapter does not exist."""
        chapters = self._chapters.get(book, [])
        if 1 <= chapter <= len(chapters):
            return chapters[chapter - 1]
        return 0

    def has_chapter(self, book: str, chapter: int) -> bool:
        return self.verse_count(book, chapter) > 0

    def has_verse(self, book: str, chapter: int, verse: int) -> bool:
        return 1 <= verse <= self.verse_count(book, chapter)

    def chapters(self) -> Iterator[tuple[str, int, int]]:
        """Yield (book, chapter, verse_count) in canon order."""
        for book in self.books:
            for chapter_idx, verse_count in enumerate(self._chapters[book]):
                yield book, chapter_idx + 1, verse_count

    def references(self) -> Iterator[str]:
        """Yield every canonical reference in order."""
        for book, chapter, verse_count in self.chapters():
            for verse in range(1, verse_count + 1):
                yield format_reference(book, chapter, verse)

    @property
    def total_verses(self) -> int:
        return sum(sum(counts) for counts in self._chapters.values())


# =============================================================================
# References
# =============================================================================

def format_reference(book: str, chapter: int, verse: int) -> str:
    return f"{book} {chapter}:{verse}"


def parse_reference(reference: str) -> tuple[str, int, int]:
    """
    Parse a reference like 'John 3:16' into (book, chapter, verse).

    Raises:
        ValueError: if the reference is malformed or numbers are not positive
    """
    match = REFERENCE_RE.match(reference.strip())
    if not match:
        raise ValueError(f"Malformed reference: {reference!r}")

    book, chapter, verse = match.group(1), int(match.group(2)), int(match.group(3))
    if chapter < 1 or verse < 1:
        raise ValueError(f"Chapter and verse must be positive: {reference!r}")
    return book, chapter, verse


_default_structure: Optional[BibleStructure] = None


def default_structure() -> BibleStructure:
    """Shared structure loaded from the bundled table."""
    global _default_structure
    if _default_structure is None:
        _default_structure = BibleStructure()
    return _default_structure

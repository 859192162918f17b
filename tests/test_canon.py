"""Tests for the canon table and reference helpers."""

import pytest

from bible_importer.canon import (
    BibleStructure,
    default_structure,
    format_reference,
    parse_reference,
)


def test_bundled_structure_totals():
    structure = default_structure()
    assert len(structure) == 66
    assert structure.books[0] == "Genesis"
    assert structure.books[-1] == "Revelation"
    assert sum(1 for _ in structure.chapters()) == 1189
    assert structure.total_verses == 31102


def test_known_chapter_sizes():
    structure = default_structure()
    assert structure.verse_count("Obadiah", 1) == 21
    assert structure.verse_count("John", 3) == 36
    assert structure.chapter_count("Psalms") == 150
    assert structure.verse_count("Psalms", 119) == 176


def test_missing_chapter_has_zero_verses():
    structure = default_structure()
    assert structure.verse_count("Obadiah", 2) == 0
    assert structure.verse_count("Nowhere", 1) == 0
    assert not structure.has_chapter("Jude", 2)
    assert not structure.has_verse("John", 3, 37)
    assert structure.has_verse("John", 3, 16)


def test_book_numbers_follow_canon_order():
    structure = default_structure()
    assert structure.book_number("Genesis") == 1
    assert structure.book_number("Matthew") == 40
    assert structure.book_by_number(43) == "John"
    assert structure.book_by_number(67) is None
    assert structure.book_by_number(0) is None


@pytest.mark.parametrize("spelling,expected", [
    ("genesis", "Genesis"),
    ("1 JOHN", "1 John"),
    ("1_john", "1 John"),
    ("Psalm", "Psalms"),
    ("Song of Songs", "Song of Solomon"),
    ("Revelation of John", "Revelation"),
    ("I Samuel", "1 Samuel"),
    ("II Kings", "2 Kings"),
    ("III John", "3 John"),
    ("Isaiah", "Isaiah"),
    ("Maccabees", None),
])
def test_canonical_book_resolves_source_spellings(spelling, expected):
    assert default_structure().canonical_book(spelling) == expected


def test_references_in_order():
    structure = BibleStructure({"Obadiah": [21]})
    refs = list(structure.references())
    assert refs[0] == "Obadiah 1:1"
    assert refs[-1] == "Obadiah 1:21"
    assert len(refs) == 21


def test_format_and_parse_reference():
    assert format_reference("1 John", 4, 8) == "1 John 4:8"
    assert parse_reference("Song of Solomon 2:4") == ("Song of Solomon", 2, 4)
    assert parse_reference("  John 3:16 ") == ("John", 3, 16)


@pytest.mark.parametrize("reference", ["John 3", "John", "3:16", "John 0:1", "John 3:0"])
def test_parse_reference_rejects_malformed(reference):
    with pytest.raises(ValueError):
        parse_reference(reference)

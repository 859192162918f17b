"""
Verse text cleanup and category tagging.

Sources hand back verse text with different artifacts: inline HTML and
Strong's numbers (bolls.life), leading verse numbers with pilcrows
(scrollmapper KJV), and "John 3:16 in the ... is:" attribution prefixes
(passage APIs). normalize() removes them in a fixed order and then tags the
verse with a category from an ordered keyword table.
"""

import json
import re
from pathlib import Path
from typing import Optional

from bs4 import BeautifulSoup

from .canon import DATA_DIR


DEFAULT_KEYWORDS_FILE = DATA_DIR / "category_keywords.json"
DEFAULT_CATEGORY = "Core"

# Step 2: attribution prefixes
ATTRIBUTION_PATTERNS = [
    re.compile(r"^[1-3]?\s*[A-Za-z][A-Za-z ]*\s+\d+:\d+(?:-\d+)?\s+in\s+the\s+[^:]+?\s+is:\s*", re.I),
    re.compile(r"^[1-3]?\s*[A-Za-z][A-Za-z ]*\s+\d+:\d+(?:-\d+)?\s*\([A-Z]{2,5}\)\s*(?:is:|[-:])\s*"),
    re.compile(r"^[A-Z]{2,5}\s*(?::|\s-)\s*"),
]

# Step 3: leading verse numbers, tried in order
VERSE_NUMBER_PATTERNS = [
    re.compile(r"^\d+[A-Za-z]?\s*¶\s*"),     # 29¶Come
    re.compile(r"^\[\d+[A-Za-z]?\]\s*"),      # [29] Come
    re.compile(r"^\(\d+[A-Za-z]?\)\s*"),      # (29) Come
    re.compile(r"^\d+[A-Za-z]?\.\s+"),        # 29. Come
    re.compile(r"^\d+[A-Za-z]?\s+(?=\D)"),    # 29 Come
    re.compile(r"^\d+(?=[A-Z])"),             # 29Come
]

PILCROW_RE = re.compile(r"\s*¶\s*")
WHITESPACE_RE = re.compile(r"\s+")

# Elements whose content is never verse text
DROP_TAGS = ["sup", "s", "script", "style"]


def load_keyword_table(path: Optional[Path] = None) -> list[tuple[str, list[str]]]:
    """Load the ordered [category, [keywords...]] table from JSON."""
    with open(path or DEFAULT_KEYWORDS_FILE, "r", encoding="utf-8") as f:
        raw = json.load(f)
    return [(category, [k.lower() for k in keywords]) for category, keywords in raw]


def strip_html(text: str) -> str:
    """Remove tags and decode entities."""
    if "<" not in text and "&" not in text:
        return text
    soup = BeautifulSoup(text, "html.parser")
    for tag in soup.find_all(DROP_TAGS):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with(" ")
    return soup.get_text()


def strip_attribution(text: str) -> str:
    for pattern in ATTRIBUTION_PATTERNS:
        text = pattern.sub("", text, count=1)
    return text


def strip_verse_number(text: str) -> str:
    for pattern in VERSE_NUMBER_PATTERNS:
        stripped = pattern.sub("", text, count=1)
        if stripped != text:
            text = stripped
            break
    return PILCROW_RE.sub(" ", text)


def collapse_whitespace(text: str) -> str:
    return WHITESPACE_RE.sub(" ", text).strip()


class TextNormalizer:
    """
    Deterministic verse cleaner and categorizer.

    The keyword table is scanned in order; within a category any keyword
    that starts a word in the lowercased text is a match. The first matching
    category wins, so the table order decides ties.
    """

    def __init__(self, keyword_table: Optional[list[tuple[str, list[str]]]] = None):
        table = keyword_table if keyword_table is not None else load_keyword_table()
        self.keyword_table = table
        self._patterns = [
            (category, re.compile(r"\b(?:" + "|".join(re.escape(k) for k in keywords) + r")"))
            for category, keywords in table
            if keywords
        ]

    @classmethod
    def from_file(cls, path: Optional[Path]) -> "TextNormalizer":
        return cls(load_keyword_table(path))

    def clean(self, raw_text: str) -> str:
        text = strip_html(raw_text or "")
        text = collapse_whitespace(text)
        text = strip_attribution(text)
        text = strip_verse_number(text)
        return collapse_whitespace(text)

    def categorize(self, clean_text: str) -> str:
        lowered = clean_text.lower()
        for category, pattern in self._patterns:
            if pattern.search(lowered):
                return category
        return DEFAULT_CATEGORY

    def normalize(self, raw_text: str) -> tuple[str, str]:
        """Return (clean_text, category) for a raw source string."""
        clean_text = self.clean(raw_text)
        return clean_text, self.categorize(clean_text)

"""
Source adapters for the public Bible APIs.

Each adapter turns (translation, book, chapter) into a list of RawVerse or
raises a FetchError subclass. Adapters never sleep or retry on HTTP status:
pacing and retries belong to the RateLimiter and the orchestrator.
"""

import logging
import threading
from typing import Any, Iterable, Optional
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .canon import BibleStructure, default_structure
from .models import RawVerse

logger = logging.getLogger(__name__)

USER_AGENT = "bible-importer/0.1 (+https://github.com/)"
DEFAULT_TIMEOUT = 15.0
THROTTLE_MARKERS = ("too many requests", "rate limit")


# =============================================================================
# Errors
# =============================================================================

class FetchError(Exception):
    """Base exception for source fetch failures."""

    retryable = False

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class UnsupportedTranslation(FetchError):
    """The source has no mapping for the requested translation."""


class HTTPStatusError(FetchError):
    """Non-2xx response."""

    def __init__(self, status: int, message: str = "", source: Optional[str] = None):
        super().__init__(message or f"HTTP {status}", source)
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.status >= 500


class ThrottledError(HTTPStatusError):
    """HTTP 429 or a 'too many requests' body."""

    retryable = True


class TransientFetchError(FetchError):
    """Timeouts and connection failures."""

    retryable = True


class ParseError(FetchError):
    """Malformed JSON or a response without a verse array."""


class EmptyResult(FetchError):
    """A well-formed response with zero verses."""


class SourceUnavailable(FetchError):
    """The source has been given up on for this translation for the rest of the run."""


# =============================================================================
# Session
# =============================================================================

def build_session(pool_size: int = 10) -> requests.Session:
    """Keep-alive session; connection errors retried at transport level only."""
    session = requests.Session()
    session.headers.update({
        "User-Agent": USER_AGENT,
        "Accept": "application/json",
        "Accept-Encoding": "gzip, deflate",
    })
    adapter = HTTPAdapter(
        pool_connections=pool_size, pool_maxsize=pool_size,
        max_retries=Retry(total=2, connect=2, read=0, status=0, backoff_factor=0.1),
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


# =============================================================================
# Base adapter
# =============================================================================

class SourceAdapter:
    """Base class: translation-code mapping plus shared HTTP/JSON handling."""

    source_id = "base"
    # canonical translation code -> source's code
    translation_codes: dict[str, str] = {}

    def __init__(
        self,
        structure: Optional[BibleStructure] = None,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
        pool_size: int = 10,
    ):
        self.structure = structure or default_structure()
        self.session = session or build_session(pool_size)
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.source_id}>"

    def supports(self, translation: str) -> bool:
        return translation in self.translation_codes

    def fetch(self, translation: str, book: str, chapter: int) -> list[RawVerse]:
        """
        Fetch one chapter.

        Raises:
            UnsupportedTranslation: before any network call
            ThrottledError, TransientFetchError: retryable failures
            HTTPStatusError, ParseError, EmptyResult, SourceUnavailable
        """
        code = self.translation_codes.get(translation)
        if code is None:
            raise UnsupportedTranslation(
                f"{self.source_id} does not carry {translation}", self.source_id
            )

        verses = self._fetch_chapter(code, translation, book, chapter)
        if not verses:
            raise EmptyResult(
                f"{self.source_id} returned no verses for {translation} {book} {chapter}",
                self.source_id,
            )
        return verses

    def _fetch_chapter(self, code: str, translation: str, book: str, chapter: int) -> list[RawVerse]:
        raise NotImplementedError

    def _get_json(self, url: str) -> Any:
        logger.debug(f"[{self.source_id}] GET {url}")
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.Timeout as e:
            raise TransientFetchError(f"Timeout fetching {url}: {e}", self.source_id) from e
        except requests.RequestException as e:
            raise TransientFetchError(f"Request failed for {url}: {e}", self.source_id) from e

        if response.status_code == 429 or self._is_throttle_body(response):
            raise ThrottledError(response.status_code, f"Throttled by {self.source_id}", self.source_id)
        if not response.ok:
            raise HTTPStatusError(
                response.status_code,
                f"HTTP {response.status_code} from {self.source_id}",
                self.source_id,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ParseError(f"Invalid JSON from {url}: {e}", self.source_id) from e

    @staticmethod
    def _is_throttle_body(response: requests.Response) -> bool:
        # Only short bodies: verse payloads are never inspected.
        if len(response.content or b"") > 512:
            return False
        lowered = (response.text or "").lower()
        return any(marker in lowered for marker in THROTTLE_MARKERS)

    @staticmethod
    def _verses_from_rows(rows: Iterable[Any], source_id: str) -> list[RawVerse]:
        verses = []
        for row in rows:
            if not isinstance(row, dict):
                raise ParseError(f"Unexpected verse entry {row!r}", source_id)
            try:
                number = int(row["verse"])
            except (KeyError, TypeError, ValueError) as e:
                raise ParseError(f"Verse entry without a verse number: {row!r}", source_id) from e
            verses.append(RawVerse(verse=number, text=str(row.get("text") or "")))
        return verses


# =============================================================================
# Bulk structured JSON (scrollmapper/bible_databases)
# =============================================================================

class ScrollmapperSource(SourceAdapter):
    """
    Whole-translation JSON download, served chapter by chapter from memory.

    The first fetch for a translation downloads and indexes the file; other
    workers asking for the same translation wait on a per-translation lock.
    Permanent download failures are remembered so later units skip straight
    to the next source.
    """

    source_id = "scrollmapper"
    translation_codes = {"KJV": "kjv", "ASV": "asv", "WEB": "web", "YLT": "ylt", "BBE": "bbe"}
    url_template = "https://raw.githubusercontent.com/scrollmapper/bible_databases/master/json/{code}_bible.json"
    max_download_attempts = 3

    def __init__(self, *args, url_template: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        if url_template:
            self.url_template = url_template
        self._indexes: dict[str, dict[tuple[str, int], list[RawVerse]]] = {}
        self._failed: dict[str, str] = {}
        self._attempts: dict[str, int] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._global_lock = threading.Lock()

    def _get_lock(self, translation: str) -> threading.Lock:
        with self._global_lock:
            if translation not in self._locks:
                self._locks[translation] = threading.Lock()
            return self._locks[translation]

    def _fetch_chapter(self, code: str, translation: str, book: str, chapter: int) -> list[RawVerse]:
        index = self._load(code, translation)
        return list(index.get((book, chapter), []))

    def _load(self, code: str, translation: str) -> dict[tuple[str, int], list[RawVerse]]:
        with self._get_lock(translation):
            if translation in self._indexes:
                return self._indexes[translation]
            if translation in self._failed:
                raise SourceUnavailable(self._failed[translation], self.source_id)

            url = self.url_template.format(code=code)
            logger.info(f"[{self.source_id}] Downloading {translation} from {url}")
            try:
                payload = self._get_json(url)
                index = self._index(payload)
            except FetchError as e:
                self._attempts[translation] = self._attempts.get(translation, 0) + 1
                if not e.retryable or self._attempts[translation] >= self.max_download_attempts:
                    self._failed[translation] = f"Bulk download unavailable: {e}"
                    logger.warning(f"[{self.source_id}] Giving up on {translation}: {e}")
                raise

            if not index:
                self._failed[translation] = f"Bulk file for {translation} held no usable verses"
                raise EmptyResult(self._failed[translation], self.source_id)

            self._indexes[translation] = index
            logger.info(f"[{self.source_id}] Indexed {sum(len(v) for v in index.values()):,} {translation} verses")
            return index

    def _index(self, payload: Any) -> dict[tuple[str, int], list[RawVerse]]:
        index: dict[tuple[str, int], list[RawVerse]] = {}
        skipped = 0
        for book_value, chapter_value, verse_value, text in self._iter_rows(payload):
            book = self._resolve_book(book_value)
            try:
                chapter, verse = int(chapter_value), int(verse_value)
            except (TypeError, ValueError):
                skipped += 1
                continue
            if book is None:
                skipped += 1
                continue
            index.setdefault((book, chapter), []).append(RawVerse(verse=verse, text=str(text or "")))

        if skipped:
            logger.debug(f"[{self.source_id}] Skipped {skipped} unusable rows")
        return index

    def _iter_rows(self, payload: Any):
        """Yield (book, chapter, verse, text) from the layouts the repository has published."""
        if isinstance(payload, dict) and "resultset" in payload:
            rows = payload["resultset"].get("row", [])
            for row in rows:
                fields = row.get("field", []) if isinstance(row, dict) else []
                if len(fields) < 5:
                    raise ParseError(f"Short resultset row {row!r}", self.source_id)
                yield fields[1], fields[2], fields[3], fields[4]
            return

        if isinstance(payload, dict) and isinstance(payload.get("books"), list):
            for book in payload["books"]:
                for chapter in book.get("chapters", []):
                    for verse in chapter.get("verses", []):
                        yield book.get("name"), chapter.get("chapter"), verse.get("verse"), verse.get("text")
            return

        if isinstance(payload, dict) and isinstance(payload.get("verses"), list):
            payload = payload["verses"]

        if not isinstance(payload, list):
            raise ParseError("Bulk payload has no verse array", self.source_id)

        for row in payload:
            if not isinstance(row, dict):
                raise ParseError(f"Unexpected bulk row {row!r}", self.source_id)
            yield row.get("book_name") or row.get("book"), row.get("chapter"), row.get("verse"), row.get("text")

    def _resolve_book(self, value: Any) -> Optional[str]:
        if isinstance(value, int) or (isinstance(value, str) and value.isdigit()):
            return self.structure.book_by_number(int(value))
        if isinstance(value, str):
            return self.structure.canonical_book(value)
        return None


# =============================================================================
# REST: bible-api.com
# =============================================================================

class BibleApiSource(SourceAdapter):
    """bible-api.com chapter endpoint: {"verses": [{"verse", "text"}, ...]}."""

    source_id = "bible-api"
    translation_codes = {"KJV": "kjv", "ASV": "asv", "WEB": "web", "YLT": "ylt", "BBE": "bbe"}
    base_url = "https://bible-api.com"

    def _fetch_chapter(self, code: str, translation: str, book: str, chapter: int) -> list[RawVerse]:
        url = f"{self.base_url}/{quote(book.lower())}+{chapter}?translation={code}"
        data = self._get_json(url)

        if not isinstance(data, dict) or not isinstance(data.get("verses"), list):
            raise ParseError(f"No verse array in bible-api response for {book} {chapter}", self.source_id)

        # Cross-chapter passages are trimmed to the requested chapter
        rows = [
            row for row in data["verses"]
            if not isinstance(row, dict) or str(row.get("chapter", chapter)) == str(chapter)
        ]
        return self._verses_from_rows(rows, self.source_id)


# =============================================================================
# REST: bolls.life
# =============================================================================

class BollsSource(SourceAdapter):
    """bolls.life chapter endpoint: [{"verse", "text"}, ...] with inline HTML."""

    source_id = "bolls"
    translation_codes = {
        code: code for code in (
            "KJV", "ASV", "WEB", "YLT", "NIV", "NLT", "ESV",
            "NKJV", "NASB", "CSB", "AMP", "MSG", "NET", "NRSV", "RSV",
        )
    }
    base_url = "https://bolls.life"

    def _fetch_chapter(self, code: str, translation: str, book: str, chapter: int) -> list[RawVerse]:
        book_number = self.structure.book_number(book)
        url = f"{self.base_url}/get-text/{code}/{book_number}/{chapter}/"
        data = self._get_json(url)

        if not isinstance(data, list):
            raise ParseError(f"No verse array in bolls response for {book} {chapter}", self.source_id)
        return self._verses_from_rows(data, self.source_id)


SOURCE_CLASSES = {
    cls.source_id: cls for cls in (ScrollmapperSource, BibleApiSource, BollsSource)
}

DEFAULT_SOURCE_ORDER = ("scrollmapper", "bible-api", "bolls")


def build_sources(
    order: Iterable[str] = DEFAULT_SOURCE_ORDER,
    structure: Optional[BibleStructure] = None,
    timeout: float = DEFAULT_TIMEOUT,
    pool_size: int = 10,
) -> list[SourceAdapter]:
    """Instantiate adapters in fallback order."""
    sources = []
    for source_id in order:
        cls = SOURCE_CLASSES.get(source_id)
        if cls is None:
            raise ValueError(f"Unknown source: {source_id} (known: {', '.join(SOURCE_CLASSES)})")
        sources.append(cls(structure=structure, timeout=timeout, pool_size=pool_size))
    return sources

"""Data models for the verse import pipeline."""

import json
import threading
from dataclasses import dataclass, field, asdict
from typing import Optional


MAX_TEXT_LENGTH = 2000

CATEGORIES = (
    "Love", "Faith", "Hope", "Peace", "Strength", "Wisdom",
    "Comfort", "Forgiveness", "Joy", "Grace", "Worship", "Core",
)

# WorkUnit outcome statuses
PERSISTED = "persisted"
GAPPED = "gapped"
SKIPPED = "skipped"


@dataclass(frozen=True)
class RawVerse:
    """A verse as returned by a source, before normalization."""

    verse: int
    text: str


@dataclass
class VerseRecord:
    """A single translated verse, keyed by (reference, translation)."""

    reference: str  # e.g., "John 3:16"
    book: str
    chapter: int
    verse: int
    text: str
    translation: str  # e.g., "KJV"
    category: str = "Core"

    @property
    def key(self) -> tuple[str, str]:
        return (self.reference, self.translation)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return asdict(self)


@dataclass(frozen=True, order=True)
class WorkUnit:
    """One fetchable (translation, book, chapter) unit of work."""

    translation: str
    book: str
    chapter: int

    def __str__(self) -> str:
        return f"{self.translation} {self.book} {self.chapter}"


@dataclass
class ImportOutcome:
    """Result of processing one WorkUnit."""

    unit: WorkUnit
    status: str  # persisted, gapped or skipped
    source: Optional[str] = None
    verse_count: int = 0  # verses accepted after validation
    expected_count: int = 0
    inserted: int = 0
    conflicted: int = 0
    dropped: int = 0  # verses rejected during validation
    flagged: bool = False  # count wildly off the canon table
    error: Optional[str] = None
    source_errors: dict[str, str] = field(default_factory=dict)

    @property
    def persisted(self) -> bool:
        return self.status == PERSISTED

    @property
    def gapped(self) -> bool:
        return self.status == GAPPED


@dataclass
class AttemptRecord:
    """One row of the import attempt log."""

    translation: str
    book: str
    chapter: int
    status: str
    source: Optional[str] = None
    verse_count: int = 0
    inserted: int = 0
    conflicted: int = 0
    flagged: bool = False
    error: Optional[str] = None

    @classmethod
    def from_outcome(cls, outcome: ImportOutcome) -> "AttemptRecord":
        error = outcome.error
        if outcome.source_errors:
            details = "; ".join(f"{src}: {msg}" for src, msg in outcome.source_errors.items())
            error = f"{error} ({details})" if error else details
        return cls(
            translation=outcome.unit.translation,
            book=outcome.unit.book,
            chapter=outcome.unit.chapter,
            status=outcome.status,
            source=outcome.source,
            verse_count=outcome.verse_count,
            inserted=outcome.inserted,
            conflicted=outcome.conflicted,
            flagged=outcome.flagged,
            error=error,
        )

    @property
    def unit(self) -> WorkUnit:
        return WorkUnit(self.translation, self.book, self.chapter)

    def to_dict(self) -> dict:
        return asdict(self)


class ImportAttemptLog:
    """Thread-safe, in-memory record of WorkUnit outcomes for one run."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: list[AttemptRecord] = []

    def add(self, record: AttemptRecord):
        with self._lock:
            self._records.append(record)

    def records(self) -> list[AttemptRecord]:
        with self._lock:
            return list(self._records)

    def gaps(self) -> list[AttemptRecord]:
        return [r for r in self.records() if r.status == GAPPED]

    def flagged(self) -> list[AttemptRecord]:
        return [r for r in self.records() if r.flagged]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


@dataclass
class GapEntry:
    """A chapter that is missing or suspect for one translation."""

    unit: WorkUnit
    stored: int
    expected: int
    status: Optional[str] = None  # latest attempt status, None if never attempted
    flagged: bool = False
    error: Optional[str] = None


@dataclass
class TranslationCoverage:
    translation: str
    imported: int
    expected: int

    @property
    def ratio(self) -> float:
        return self.imported / self.expected if self.expected else 0.0


@dataclass
class CoverageReport:
    """Completeness snapshot, recomputed from the verse store on demand."""

    translations: list[TranslationCoverage]
    total_references: int
    full_coverage_references: int

    @property
    def full_coverage_ratio(self) -> float:
        if not self.total_references:
            return 0.0
        return self.full_coverage_references / self.total_references

    @property
    def complete(self) -> bool:
        return self.total_references > 0 and self.full_coverage_references == self.total_references

    def to_dict(self) -> dict:
        data = asdict(self)
        data["full_coverage_ratio"] = self.full_coverage_ratio
        data["complete"] = self.complete
        return data

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)


@dataclass
class BatchResult:
    """Summary of one runBatch invocation."""

    processed: int = 0
    persisted: int = 0
    gapped: int = 0
    skipped: int = 0
    flagged: int = 0
    inserted: int = 0
    conflicted: int = 0
    remaining: int = 0  # pending units not started because of budget or cancellation
    cancelled: bool = False
    coverage_percent: float = 0.0
    elapsed: float = 0.0
    gaps: list[WorkUnit] = field(default_factory=list)

    def add(self, outcome: ImportOutcome):
        self.processed += 1
        self.inserted += outcome.inserted
        self.conflicted += outcome.conflicted
        if outcome.flagged:
            self.flagged += 1
        if outcome.status == PERSISTED:
            self.persisted += 1
        elif outcome.status == GAPPED:
            self.gapped += 1
            self.gaps.append(outcome.unit)
        elif outcome.status == SKIPPED:
            self.skipped += 1

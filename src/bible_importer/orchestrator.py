"""Fallback-chain processing of a single WorkUnit."""

import logging
import threading
from typing import Optional, Sequence

from .canon import BibleStructure, default_structure, format_reference
from .models import (
    GAPPED,
    MAX_TEXT_LENGTH,
    PERSISTED,
    SKIPPED,
    AttemptRecord,
    ImportAttemptLog,
    ImportOutcome,
    RawVerse,
    VerseRecord,
    WorkUnit,
)
from .normalizer import TextNormalizer
from .rate_limit import RateLimiter
from .sources import (
    EmptyResult,
    FetchError,
    ParseError,
    SourceAdapter,
    SourceUnavailable,
    UnsupportedTranslation,
)
from .store import PersistenceGateway

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
# Accepted counts outside [expected * LOW, expected * HIGH] are flagged for review
ANOMALY_LOW = 0.5
ANOMALY_HIGH = 2.0
# Repeated malformed payloads from one source give up after this many
MAX_PARSE_FAILURES = 2


class FetchOrchestrator:
    """
    Processes WorkUnits through an ordered list of SourceAdapters.

    The first adapter that yields a non-empty, valid verse list wins and the
    rest are never called. A unit that no adapter can serve is recorded as a
    gap and the run goes on.
    """

    def __init__(
        self,
        sources: Sequence[SourceAdapter],
        limiter: RateLimiter,
        store: PersistenceGateway,
        normalizer: Optional[TextNormalizer] = None,
        structure: Optional[BibleStructure] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        attempt_log: Optional[ImportAttemptLog] = None,
        persist_attempts: bool = True,
    ):
        self.sources = list(sources)
        self.limiter = limiter
        self.store = store
        self.normalizer = normalizer or TextNormalizer()
        self.structure = structure or default_structure()
        self.max_retries = max(1, max_retries)
        self.attempt_log = attempt_log if attempt_log is not None else ImportAttemptLog()
        self.persist_attempts = persist_attempts

    def process(self, unit: WorkUnit, cancel_event: Optional[threading.Event] = None) -> ImportOutcome:
        """
        Fetch, normalize and persist one WorkUnit.

        Raises:
            ImportCancelled: if the run is cancelled before a source answers
            StoreUnavailableError: if the verse store cannot be written
        """
        expected = self.structure.verse_count(unit.book, unit.chapter)
        if expected == 0:
            # Past the end of the book (or unknown book): nothing to fetch.
            logger.debug(f"Skipping {unit}: chapter not in canon")
            return ImportOutcome(unit=unit, status=SKIPPED)

        outcome = ImportOutcome(unit=unit, status=GAPPED, expected_count=expected)

        for source in self.sources:
            raw = self._fetch_from(source, unit, outcome, cancel_event)
            if raw is None:
                continue

            records, dropped = self._build_records(unit, raw)
            if not records:
                outcome.source_errors[source.source_id] = f"all {len(raw)} verses failed validation"
                continue

            inserted, conflicted = self.store.upsert_batch(records)
            outcome.status = PERSISTED
            outcome.source = source.source_id
            outcome.verse_count = len(records)
            outcome.dropped = dropped
            outcome.inserted = inserted
            outcome.conflicted = conflicted
            outcome.flagged = not (expected * ANOMALY_LOW <= len(records) <= expected * ANOMALY_HIGH)
            if outcome.flagged:
                logger.warning(
                    f"{unit}: {source.source_id} returned {len(records)} verses, expected {expected}"
                )
            logger.info(
                f"{unit}: {len(records)} verses from {source.source_id} "
                f"({inserted} new, {conflicted} already present)"
            )
            break
        else:
            outcome.error = "all sources exhausted"
            logger.warning(f"Gap: {unit} ({'; '.join(f'{k}: {v}' for k, v in outcome.source_errors.items())})")

        self._log(outcome)
        return outcome

    def _fetch_from(
        self,
        source: SourceAdapter,
        unit: WorkUnit,
        outcome: ImportOutcome,
        cancel_event: Optional[threading.Event],
    ) -> Optional[list[RawVerse]]:
        """Run one source's retry loop. Returns verses, or None to fall through."""
        source_id = source.source_id
        if not source.supports(unit.translation):
            outcome.source_errors[source_id] = "unsupported translation"
            return None

        parse_failures = 0
        for attempt in range(1, self.max_retries + 1):
            self.limiter.acquire(source_id, cancel_event)
            try:
                verses = source.fetch(unit.translation, unit.book, unit.chapter)
            except (UnsupportedTranslation, SourceUnavailable, EmptyResult) as e:
                outcome.source_errors[source_id] = str(e)
                return None
            except ParseError as e:
                parse_failures += 1
                outcome.source_errors[source_id] = str(e)
                if parse_failures >= MAX_PARSE_FAILURES:
                    return None
                logger.debug(f"{unit}: malformed payload from {source_id}, retrying")
                continue
            except FetchError as e:
                # 429 / 5xx / timeouts back off and retry; other statuses are permanent
                outcome.source_errors[source_id] = str(e)
                if not e.retryable:
                    return None
                self.limiter.report_throttled(source_id)
                logger.info(f"{unit}: {source_id} attempt {attempt}/{self.max_retries} failed ({e})")
                continue

            self.limiter.report_success(source_id)
            outcome.source_errors.pop(source_id, None)
            return verses

        logger.info(f"{unit}: giving up on {source_id} after {self.max_retries} attempts")
        return None

    def _build_records(self, unit: WorkUnit, raw: list[RawVerse]) -> tuple[list[VerseRecord], int]:
        """Normalize and validate raw verses. Returns (records, dropped_count)."""
        records: dict[int, VerseRecord] = {}
        dropped = 0

        for item in raw:
            if not self.structure.has_verse(unit.book, unit.chapter, item.verse):
                logger.debug(f"{unit}: dropping verse {item.verse} outside canon table")
                dropped += 1
                continue

            text, category = self.normalizer.normalize(item.text)
            if not text or len(text) > MAX_TEXT_LENGTH:
                logger.warning(
                    f"{unit}: dropping verse {item.verse} with {'empty' if not text else 'oversized'} text"
                )
                dropped += 1
                continue

            if item.verse in records:
                dropped += 1
                continue

            records[item.verse] = VerseRecord(
                reference=format_reference(unit.book, unit.chapter, item.verse),
                book=unit.book,
                chapter=unit.chapter,
                verse=item.verse,
                text=text,
                translation=unit.translation,
                category=category,
            )

        return [records[v] for v in sorted(records)], dropped

    def _log(self, outcome: ImportOutcome):
        record = AttemptRecord.from_outcome(outcome)
        self.attempt_log.add(record)
        if self.persist_attempts:
            self.store.record_attempt(record)

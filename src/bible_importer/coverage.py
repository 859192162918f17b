"""
Completeness accounting over the verse store.

Expected counts come from the canon table, so coverage is measurable before
any row exists. The pipeline is complete only when every canonical reference
is present in every target translation.
"""

import logging
from typing import Iterable, Optional, Sequence

from .canon import BibleStructure, default_structure
from .models import (
    PERSISTED,
    CoverageReport,
    GapEntry,
    TranslationCoverage,
    WorkUnit,
)
from .store import PersistenceGateway

logger = logging.getLogger(__name__)


class CoverageAuditor:
    """Read-only view of translation and cross-translation completeness."""

    def __init__(
        self,
        store: PersistenceGateway,
        translations: Sequence[str],
        structure: Optional[BibleStructure] = None,
    ):
        self.store = store
        self.translations = list(translations)
        self.structure = structure or default_structure()

    def translation_coverage(self, translation: str) -> float:
        """Imported / expected verse count for one translation."""
        expected = self.structure.total_verses
        if not expected:
            return 0.0
        return min(self.store.count_verses(translation=translation) / expected, 1.0)

    def full_coverage_ratio(self, references: Optional[Iterable[str]] = None) -> float:
        """
        Fraction of references present in every target translation.

        Args:
            references: universe to measure; defaults to every canonical reference
        """
        universe = set(references) if references is not None else set(self.structure.references())
        if not universe:
            return 0.0
        covered = self.store.full_coverage_references(self.translations, universe)
        return len(covered) / len(universe)

    def is_complete(self) -> bool:
        return self.full_coverage_ratio() == 1.0

    def pending_work_units(self, translation: str) -> list[WorkUnit]:
        """
        Chapters still to fetch for one translation, in canon order.

        A chapter is pending when it has no rows, when its latest attempt was
        a gap, or when it is short and was never completed by an attempt
        (e.g. a run that died between writing and logging).
        """
        stored = self.store.chapter_counts(translation)
        latest = self.store.latest_attempts(translation)

        pending = []
        for book, chapter, expected in self.structure.chapters():
            count = stored.get((book, chapter), 0)
            attempt = latest.get((book, chapter))
            if count >= expected:
                continue
            if count == 0 or attempt is None or attempt.status != PERSISTED:
                pending.append(WorkUnit(translation, book, chapter))
        logger.debug(f"{translation}: {len(pending)} chapters pending")
        return pending

    def all_pending_work_units(self) -> list[WorkUnit]:
        units = []
        for translation in self.translations:
            units.extend(self.pending_work_units(translation))
        return units

    def report(self) -> CoverageReport:
        expected = self.structure.total_verses
        counts = self.store.counts_by_translation()
        universe = set(self.structure.references())
        covered = self.store.full_coverage_references(self.translations, universe)
        return CoverageReport(
            translations=[
                TranslationCoverage(t, min(counts.get(t, 0), expected), expected)
                for t in self.translations
            ],
            total_references=len(universe),
            full_coverage_references=len(covered),
        )

    def gap_report(self, translation: Optional[str] = None) -> list[GapEntry]:
        """Short, gapped and flagged chapters with their last attempt."""
        entries = []
        for t in [translation] if translation else self.translations:
            stored = self.store.chapter_counts(t)
            latest = self.store.latest_attempts(t)
            for book, chapter, expected in self.structure.chapters():
                count = stored.get((book, chapter), 0)
                attempt = latest.get((book, chapter))
                flagged = bool(attempt and attempt.flagged)
                if count >= expected and not flagged:
                    continue
                if attempt is None and count == 0:
                    # never attempted: pending work, not a gap
                    continue
                entries.append(GapEntry(
                    unit=WorkUnit(t, book, chapter),
                    stored=count,
                    expected=expected,
                    status=attempt.status if attempt else None,
                    flagged=flagged,
                    error=attempt.error if attempt else None,
                ))
        return entries

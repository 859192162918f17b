"""
Bible Importer - Imports Bible translations from public sources into a verse store and tracks completeness.
"""

from .canon import BibleStructure, TRANSLATIONS, DEFAULT_TRANSLATIONS, format_reference, parse_reference
from .config import ImportConfig
from .coverage import CoverageAuditor
from .models import VerseRecord, WorkUnit, ImportOutcome, BatchResult, CoverageReport
from .normalizer import TextNormalizer
from .orchestrator import FetchOrchestrator
from .rate_limit import RateLimiter, SourcePacing, ImportCancelled
from .scheduler import BatchScheduler
from .sources import SourceAdapter, ScrollmapperSource, BibleApiSource, BollsSource, FetchError, build_sources
from .store import PersistenceGateway, StoreUnavailableError

__all__ = [
    "BibleStructure",
    "TRANSLATIONS",
    "DEFAULT_TRANSLATIONS",
    "format_reference",
    "parse_reference",
    "ImportConfig",
    "CoverageAuditor",
    "VerseRecord",
    "WorkUnit",
    "ImportOutcome",
    "BatchResult",
    "CoverageReport",
    "TextNormalizer",
    "FetchOrchestrator",
    "RateLimiter",
    "SourcePacing",
    "ImportCancelled",
    "BatchScheduler",
    "SourceAdapter",
    "ScrollmapperSource",
    "BibleApiSource",
    "BollsSource",
    "FetchError",
    "build_sources",
    "PersistenceGateway",
    "StoreUnavailableError",
]

__version__ = "0.1.0"

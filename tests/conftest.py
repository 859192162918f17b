"""
Bible Importer - Test Configuration

Shared fixtures: a small canon, a file-backed SQLite store and a
zero-delay limiter.
"""

import pytest

from bible_importer.canon import BibleStructure
from bible_importer.coverage import CoverageAuditor
from bible_importer.normalizer import TextNormalizer
from bible_importer.orchestrator import FetchOrchestrator
from bible_importer.rate_limit import RateLimiter, SourcePacing
from bible_importer.scheduler import BatchScheduler
from bible_importer.store import PersistenceGateway

from tests.helpers import SMALL_CANON


@pytest.fixture
def structure():
    return BibleStructure(SMALL_CANON)


@pytest.fixture
def store(tmp_path):
    # File-backed: an in-memory SQLite database is private to one connection.
    gateway = PersistenceGateway(f"sqlite:///{tmp_path / 'verses.db'}")
    gateway.create_schema()
    yield gateway
    gateway.dispose()


@pytest.fixture
def limiter():
    """No spacing and no backoff sleeps."""
    return RateLimiter(default=SourcePacing(base_delay_ms=0, ceiling_delay_ms=0))


@pytest.fixture
def normalizer():
    return TextNormalizer()


@pytest.fixture
def make_orchestrator(store, limiter, normalizer, structure):
    def factory(sources, **kwargs):
        kwargs.setdefault("limiter", limiter)
        return FetchOrchestrator(
            sources=sources,
            store=store,
            normalizer=normalizer,
            structure=structure,
            **kwargs,
        )
    return factory


@pytest.fixture
def make_scheduler(make_orchestrator, store, structure):
    def factory(sources, translations=("KJV", "ASV", "WEB"), max_workers=2, orchestrator_kwargs=None, **kwargs):
        orchestrator = make_orchestrator(sources, **(orchestrator_kwargs or {}))
        auditor = CoverageAuditor(store, translations, structure=structure)
        return BatchScheduler(orchestrator, auditor, max_workers=max_workers, **kwargs)
    return factory

"""Tests for the per-unit fallback chain."""

import threading

import pytest

from bible_importer.models import GAPPED, PERSISTED, SKIPPED, RawVerse, WorkUnit
from bible_importer.rate_limit import ImportCancelled, RateLimiter, SourcePacing
from bible_importer.sources import HTTPStatusError, ParseError, ThrottledError
from bible_importer.store import StoreUnavailableError

from tests.helpers import ScriptedSource, chapter_verses


def test_obadiah_single_chapter(make_orchestrator, store, structure):
    source = ScriptedSource("bible-api", ["KJV"], structure)
    orchestrator = make_orchestrator([source])

    outcome = orchestrator.process(WorkUnit("KJV", "Obadiah", 1))

    assert outcome.status == PERSISTED
    assert outcome.inserted == 21
    assert not outcome.flagged
    assert store.count_verses(translation="KJV") == 21
    assert store.count_verses(reference="Obadiah 1:1") == 1
    assert store.count_verses(reference="Obadiah 1:21") == 1
    assert store.count_verses(reference="Obadiah 1:22") == 0


def test_replayed_unit_inserts_nothing(make_orchestrator, store, structure):
    orchestrator = make_orchestrator([ScriptedSource("bible-api", ["KJV"], structure)])
    orchestrator.process(WorkUnit("KJV", "Obadiah", 1))

    again = orchestrator.process(WorkUnit("KJV", "Obadiah", 1))

    assert again.status == PERSISTED
    assert (again.inserted, again.conflicted) == (0, 21)
    assert store.count_verses() == 21


def test_text_is_normalized_before_storing(make_orchestrator, store, structure):
    source = ScriptedSource("bolls", ["KJV"], structure, responses={
        ("KJV", "John", 2): [[
            RawVerse(1, "1¶And the third day there was a marriage"),
            RawVerse(2, "And both Jesus was called<S>2564</S>, and his disciples"),
        ]],
    })
    make_orchestrator([source]).process(WorkUnit("KJV", "John", 2))

    with store.engine.connect() as conn:
        rows = conn.exec_driver_sql(
            "SELECT reference, text FROM bible_verses ORDER BY verse"
        ).fetchall()
    assert rows == [
        ("John 2:1", "And the third day there was a marriage"),
        ("John 2:2", "And both Jesus was called, and his disciples"),
    ]


def test_fallback_stops_at_first_success(make_orchestrator, structure):
    unit = WorkUnit("KJV", "Genesis", 1)
    a = ScriptedSource("a", ["KJV"], structure, responses={
        ("KJV", "Genesis", 1): [ThrottledError(429, "slow down", "a")],
    })
    b = ScriptedSource("b", ["KJV"], structure)
    c = ScriptedSource("c", ["KJV"], structure)

    outcome = make_orchestrator([a, b, c], max_retries=3).process(unit)

    assert outcome.status == PERSISTED
    assert outcome.source == "b"
    assert len(a.calls) == 3
    assert len(b.calls) == 1
    assert c.calls == []


def test_throttling_backs_off_the_source(make_orchestrator, structure):
    limiter = RateLimiter(default=SourcePacing(base_delay_ms=0, ceiling_delay_ms=0))
    a = ScriptedSource("a", ["KJV"], structure, responses={
        ("KJV", "Genesis", 1): [ThrottledError(429, "slow down", "a"), chapter_verses(structure, "Genesis", 1)],
    })
    outcome = make_orchestrator([a], limiter=limiter).process(WorkUnit("KJV", "Genesis", 1))

    assert outcome.source == "a"
    assert limiter.throttle_count("a") == 1


def test_unsupported_source_is_skipped_without_calls(make_orchestrator, structure):
    a = ScriptedSource("a", ["ASV"], structure)
    b = ScriptedSource("b", ["KJV"], structure)

    outcome = make_orchestrator([a, b]).process(WorkUnit("KJV", "Genesis", 2))

    assert outcome.source == "b"
    assert a.calls == []


def test_permanent_error_moves_on_without_retry(make_orchestrator, structure):
    a = ScriptedSource("a", ["KJV"], structure, responses={
        ("KJV", "Genesis", 1): [HTTPStatusError(404, "missing", "a")],
    })
    b = ScriptedSource("b", ["KJV"], structure)

    outcome = make_orchestrator([a, b], max_retries=3).process(WorkUnit("KJV", "Genesis", 1))

    assert outcome.source == "b"
    assert len(a.calls) == 1


def test_malformed_payload_retried_once(make_orchestrator, structure):
    a = ScriptedSource("a", ["KJV"], structure, responses={
        ("KJV", "Genesis", 1): [ParseError("bad json", "a")],
    })
    b = ScriptedSource("b", ["KJV"], structure)

    make_orchestrator([a, b], max_retries=5).process(WorkUnit("KJV", "Genesis", 1))

    assert len(a.calls) == 2


def test_exhausted_sources_record_gap(make_orchestrator, store, structure):
    a = ScriptedSource("a", ["KJV"], structure, serve_all=False)
    b = ScriptedSource("b", ["ASV"], structure)
    orchestrator = make_orchestrator([a, b])

    outcome = orchestrator.process(WorkUnit("KJV", "Genesis", 2))

    assert outcome.status == GAPPED
    assert outcome.error == "all sources exhausted"
    assert set(outcome.source_errors) == {"a", "b"}
    assert store.count_verses() == 0

    attempt = store.latest_attempts("KJV")[("Genesis", 2)]
    assert attempt.status == GAPPED
    assert "all sources exhausted" in attempt.error
    assert orchestrator.attempt_log.gaps()[0].unit == WorkUnit("KJV", "Genesis", 2)


def test_chapter_outside_canon_is_skipped(make_orchestrator, store, structure):
    a = ScriptedSource("a", ["KJV"], structure)
    orchestrator = make_orchestrator([a])

    outcome = orchestrator.process(WorkUnit("KJV", "Obadiah", 2))

    assert outcome.status == SKIPPED
    assert a.calls == []
    assert len(orchestrator.attempt_log) == 0
    assert store.latest_attempts("KJV") == {}


def test_invalid_verses_are_dropped(make_orchestrator, store, structure):
    a = ScriptedSource("a", ["KJV"], structure, responses={
        ("KJV", "Genesis", 1): [[
            RawVerse(1, "In the beginning"),
            RawVerse(1, "In the beginning, again"),
            RawVerse(2, "<sup>2</sup>"),
            RawVerse(3, "x" * 2001),
            RawVerse(4, "past the end of the chapter"),
        ]],
    })

    outcome = make_orchestrator([a]).process(WorkUnit("KJV", "Genesis", 1))

    assert outcome.status == PERSISTED
    assert outcome.verse_count == 1
    assert outcome.dropped == 4
    assert store.count_verses() == 1
    # one of three expected verses
    assert outcome.flagged


def test_all_invalid_falls_through(make_orchestrator, structure):
    a = ScriptedSource("a", ["KJV"], structure, responses={
        ("KJV", "Genesis", 2): [[RawVerse(9, "nowhere"), RawVerse(10, "nowhere")]],
    })
    b = ScriptedSource("b", ["KJV"], structure)

    outcome = make_orchestrator([a, b]).process(WorkUnit("KJV", "Genesis", 2))

    assert outcome.source == "b"
    assert outcome.verse_count == 2


def test_verses_beyond_chapter_end_are_dropped(make_orchestrator, structure):
    # John 1 has 4 verses in the test canon
    big = [RawVerse(v, f"verse {v}") for v in range(1, 10)]
    a = ScriptedSource("a", ["KJV"], structure, responses={("KJV", "John", 1): [big]})

    outcome = make_orchestrator([a]).process(WorkUnit("KJV", "John", 1))

    assert outcome.verse_count == 4
    assert outcome.dropped == 5
    assert not outcome.flagged


def test_cancelled_unit_raises(make_orchestrator, structure):
    a = ScriptedSource("a", ["KJV"], structure)
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(ImportCancelled):
        make_orchestrator([a]).process(WorkUnit("KJV", "Genesis", 1), cancel)
    assert a.calls == []


def test_store_failure_propagates(make_orchestrator, store, structure, monkeypatch):
    def unavailable(records):
        raise StoreUnavailableError("connection refused")

    monkeypatch.setattr(store, "upsert_batch", unavailable)
    a = ScriptedSource("a", ["KJV"], structure)

    with pytest.raises(StoreUnavailableError):
        make_orchestrator([a]).process(WorkUnit("KJV", "Genesis", 1))

"""Tests for the bible-import command line."""

import pytest

from bible_importer import cli
from bible_importer.canon import default_structure
from bible_importer.store import PersistenceGateway

from tests.helpers import ScriptedSource


@pytest.fixture
def database_url(tmp_path, monkeypatch):
    for name in ("BIBLE_IMPORT_DATABASE_URL", "BIBLE_IMPORT_TRANSLATIONS", "BIBLE_IMPORT_SOURCES"):
        monkeypatch.delenv(name, raising=False)
    return f"sqlite:///{tmp_path / 'cli.db'}"


def test_coverage_on_empty_store(database_url, capsys):
    assert cli.main(["coverage", "--database-url", database_url]) == cli.EXIT_OK

    out = capsys.readouterr().out
    assert "KJV" in out
    assert "0/31,102" in out
    assert "Incomplete" in out


def test_gaps_on_empty_store(database_url, capsys):
    assert cli.main(["gaps", "--database-url", database_url, "-t", "KJV"]) == cli.EXIT_OK
    assert "No gaps recorded" in capsys.readouterr().out


def test_database_url_from_environment(database_url, monkeypatch, capsys):
    monkeypatch.setenv("BIBLE_IMPORT_DATABASE_URL", database_url)
    monkeypatch.setenv("BIBLE_IMPORT_TRANSLATIONS", "ylt")

    assert cli.main(["coverage"]) == cli.EXIT_OK
    assert "YLT" in capsys.readouterr().out


def test_run_with_unit_budget(database_url, monkeypatch, capsys):
    source = ScriptedSource("scrollmapper", ["KJV"], default_structure())
    monkeypatch.setattr(cli, "build_sources", lambda *args, **kwargs: [source])

    code = cli.main([
        "run", "--database-url", database_url,
        "--translations", "KJV", "--max-units", "2", "--workers", "1",
    ])

    assert code == cli.EXIT_OK
    assert source.calls == [("KJV", "Genesis", 1), ("KJV", "Genesis", 2)]
    out = capsys.readouterr().out
    assert "Units processed: 2" in out
    assert "Rows inserted: 56" in out

    store = PersistenceGateway(database_url)
    try:
        assert store.count_verses(translation="KJV") == 31 + 25
    finally:
        store.dispose()


def test_unknown_translation_is_usage_error(database_url, capsys):
    assert cli.main(["run", "--database-url", database_url, "-t", "KJV,XYZ"]) == cli.EXIT_USAGE
    assert "Unknown translation codes: XYZ" in capsys.readouterr().err


def test_unsupported_database_is_usage_error(capsys):
    assert cli.main(["coverage", "--database-url", "not a url"]) == cli.EXIT_USAGE


def test_unreachable_store(tmp_path, capsys):
    url = f"sqlite:///{tmp_path / 'missing' / 'cli.db'}"
    assert cli.main(["gaps", "--database-url", url]) == cli.EXIT_STORE_UNAVAILABLE
    assert "Verse store unavailable" in capsys.readouterr().err


def test_command_is_required():
    with pytest.raises(SystemExit) as exc:
        cli.main([])
    assert exc.value.code == 2


def test_negative_unit_budget_is_usage_error(database_url, capsys):
    assert cli.main(["run", "--database-url", database_url, "--max-units", "-3"]) == cli.EXIT_USAGE
    assert "max_batch_units" in capsys.readouterr().err

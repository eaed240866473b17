"""Unit tests for Lifelog CLI commands."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from lifelog.cli import cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def invoke(runner, tmp_path):
    """Run a CLI command against a temporary storage directory."""
    storage = tmp_path / "store"

    def run(*args, **kwargs):
        return runner.invoke(cli, ["--storage-dir", str(storage), *args], obj={}, **kwargs)

    return run


@pytest.fixture
def ingested(invoke, lifelog_export_file):
    result = invoke("ingest", str(lifelog_export_file))
    assert result.exit_code == 0, result.output
    return result


def test_help_lists_commands(runner):
    """lifelog --help shows every command."""
    result = runner.invoke(cli, ["--help"], obj={})
    assert result.exit_code == 0
    for command in ("init", "ingest", "search", "context", "status", "pending", "speakers"):
        assert command in result.output


def test_init_creates_database(invoke, tmp_path):
    result = invoke("init")
    assert result.exit_code == 0, result.output
    assert "Database ready" in result.output
    assert (tmp_path / "store" / "lifelog.db").exists()


def test_status_without_database(invoke):
    result = invoke("status")
    assert result.exit_code == 0
    assert "No database found" in result.output


def test_ingest_summary(ingested):
    assert "Ingest Summary" in ingested.output
    assert "Inserted" in ingested.output
    assert "3" in ingested.output


def test_ingest_missing_file(invoke, tmp_path):
    result = invoke("ingest", str(tmp_path / "missing.json"))
    assert result.exit_code != 0


def test_ingest_invalid_json(invoke, tmp_path):
    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    result = invoke("ingest", str(broken))
    assert result.exit_code == 1
    assert "Error" in result.output


def test_search_finds_utterance(invoke, ingested):
    result = invoke("search", "budget")
    assert result.exit_code == 0, result.output
    assert "budget" in result.output
    assert "Planning" in result.output


def test_search_no_results(invoke, ingested):
    result = invoke("search", "zeppelin")
    assert result.exit_code == 0
    assert "No results found" in result.output


def test_search_invalid_raw_query(invoke, ingested):
    result = invoke("search", '"unterminated', "--raw")
    assert result.exit_code == 1


def test_context_by_external_id(invoke, ingested):
    result = invoke("context", "log-a")
    assert result.exit_code == 0, result.output
    assert "logical event" in result.output
    assert "Alice: Let's review the budget for Q3." in result.output
    assert "The forecast looks fine." in result.output
    assert "Where should we eat?" not in result.output


def test_context_prefers_numeric_external_id(invoke, tmp_path, make_lifelog):
    """A numeric external id is looked up before the surrogate id."""
    export = tmp_path / "numeric.json"
    export.write_text(
        json.dumps(
            [
                make_lifelog("2", (10, 0), (10, 1), segments=[("Alice", "First words.")]),
                make_lifelog("x", (12, 0), (12, 1), segments=[("Alice", "Second words.")]),
            ]
        )
    )
    assert invoke("ingest", str(export)).exit_code == 0

    by_external = invoke("context", "2")
    assert by_external.exit_code == 0, by_external.output
    assert "First words." in by_external.output
    assert "Second words." not in by_external.output

    by_surrogate = invoke("context", "1")
    assert by_surrogate.exit_code == 0
    assert "First words." in by_surrogate.output


def test_context_unknown_conversation(invoke, ingested):
    assert invoke("context", "nope").exit_code == 1
    assert invoke("context", "9999").exit_code == 1


def test_status_counts(invoke, ingested):
    result = invoke("status")
    assert result.exit_code == 0
    assert "Conversations" in result.output
    assert "pending" in result.output


def test_pending_lists_conversations(invoke, ingested):
    result = invoke("pending")
    assert result.exit_code == 0
    assert "log-a" in result.output
    assert "log-c" in result.output


def test_speakers(invoke, ingested):
    result = invoke("speakers")
    assert result.exit_code == 0
    assert "Alice" in result.output
    assert "Bob" in result.output


def test_setting_roundtrip(invoke):
    assert "unset" in invoke("setting", "primary_user_creator_id").output
    result = invoke("setting", "primary_user_creator_id", "alice")
    assert result.exit_code == 0
    assert "alice" in invoke("setting", "primary_user_creator_id").output


def test_setting_unknown_key(invoke):
    result = invoke("setting", "favourite_colour", "blue")
    assert result.exit_code == 1


def test_purge_requires_confirmation(invoke, ingested):
    result = invoke("purge", input="n\n")
    assert result.exit_code != 0
    assert "Deleted" not in result.output


def test_purge(invoke, ingested):
    result = invoke("purge", "--yes")
    assert result.exit_code == 0
    assert "Deleted 3 conversations" in result.output
    assert "No pending conversations" in invoke("pending").output


def test_reindex(invoke, ingested):
    result = invoke("reindex")
    assert result.exit_code == 0
    assert "Search index rebuilt" in result.output
    assert "budget" in invoke("search", "budget").output

"""Tests for raw lifelog parsing and export sources."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from lifelog.core.errors import ParseError
from lifelog.sources import LifelogExportSource, RawLifelog, extract_lifelogs, parse_lifelog


class TestParseLifelog:
    def test_camel_case_fields(self):
        record = parse_lifelog(
            {
                "id": "abc",
                "title": "Standup",
                "markdown": "# Standup",
                "startTime": "2024-05-01T10:00:00Z",
                "endTime": "2024-05-01T10:15:00.500Z",
                "creatorId": "alice",
                "contents": [
                    {
                        "type": "blockquote",
                        "content": "morning",
                        "speakerName": "Alice",
                        "speakerIdentifier": "user",
                        "startOffsetMs": 1200,
                    }
                ],
            }
        )
        assert record.id == "abc"
        assert record.start_time == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
        assert record.end_time.microsecond == 500_000
        assert record.creator_id == "alice"
        segment = record.contents[0]
        assert segment.speaker_name == "Alice"
        assert segment.is_user
        assert segment.start_offset_ms == 1200
        assert segment.start_time is None

    def test_text_preferred_over_content(self):
        record = parse_lifelog(
            {
                "id": "a",
                "startTime": "2024-05-01T10:00:00Z",
                "contents": [{"type": "x", "content": "fallback", "text": "primary"}, {"content": "only"}],
            }
        )
        assert record.contents[0].primary_text == "primary"
        assert record.contents[1].primary_text == "only"

    def test_unknown_fields_ignored(self):
        record = parse_lifelog({"id": "a", "startTime": "2024-05-01T10:00:00Z", "isStarred": True})
        assert record.contents == []

    def test_numeric_id(self):
        assert parse_lifelog({"id": 17, "startTime": "2024-05-01T10:00:00Z"}).id == "17"

    def test_passes_models_through(self):
        model = RawLifelog(id="a", start_time=datetime(2024, 5, 1, tzinfo=timezone.utc))
        assert parse_lifelog(model) is model

    @pytest.mark.parametrize(
        "data",
        [
            {"startTime": "2024-05-01T10:00:00Z"},
            {"id": "", "startTime": "2024-05-01T10:00:00Z"},
            {"id": "a"},
            {"id": "a", "startTime": ""},
            {"id": "a", "startTime": "not a time"},
            {"id": "a", "startTime": "2024-05-01T10:00:00Z", "endTime": "13/45/2024"},
            {"id": "a", "startTime": "2024-05-01T10:00:00Z", "contents": [{"startTime": "soon"}]},
        ],
    )
    def test_invalid_records(self, data):
        with pytest.raises(ParseError):
            parse_lifelog(data)

    def test_parse_error_carries_id(self):
        with pytest.raises(ParseError) as excinfo:
            parse_lifelog({"id": "bad-one", "startTime": "never"})
        assert excinfo.value.external_log_id == "bad-one"


class TestExportSource:
    @pytest.mark.parametrize(
        "wrap",
        [
            lambda logs: logs,
            lambda logs: {"lifelogs": logs},
            lambda logs: {"data": {"lifelogs": logs}},
        ],
    )
    def test_envelopes(self, tmp_path, wrap):
        logs = [{"id": "a", "startTime": "2024-05-01T10:00:00Z"}]
        path = tmp_path / "export.json"
        path.write_text(json.dumps(wrap(logs)))
        assert LifelogExportSource(file_path=path).load() == logs

    def test_unsupported_shape(self):
        with pytest.raises(ParseError):
            extract_lifelogs({"conversations": []})

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with pytest.raises(ParseError):
            LifelogExportSource(file_path=path).load()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            LifelogExportSource(file_path=tmp_path / "missing.json").load()

    def test_source_is_a_fetcher(self, lifelog_export_file):
        source = LifelogExportSource(file_path=lifelog_export_file)
        assert [r["id"] for r in source()] == ["log-a", "log-b", "log-c"]

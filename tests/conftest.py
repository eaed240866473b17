"""Shared test fixtures for Lifelog."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest

if TYPE_CHECKING:
    from lifelog.config import Settings
    from lifelog.db.engine import Store

BASE_DAY = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _iso(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


@pytest.fixture
def at() -> Callable[..., datetime]:
    """Build aware UTC datetimes on a fixed test day: at(10, 3) -> 10:03."""

    def build(hour: int, minute: int = 0, second: int = 0) -> datetime:
        return BASE_DAY + timedelta(hours=hour, minutes=minute, seconds=second)

    return build


@pytest.fixture
def make_lifelog(at) -> Callable[..., dict[str, Any]]:
    """Factory for raw lifelog records in API shape.

    Times are given as (hour, minute) or (hour, minute, second) tuples on
    the test day; end=None leaves the record open-ended.
    """

    def build(
        lifelog_id: str,
        start: tuple[int, ...],
        end: tuple[int, ...] | None = None,
        *,
        title: str | None = None,
        segments: list[tuple[str | None, str]] | None = None,
        creator_id: str | None = None,
        user_speaker: str | None = None,
    ) -> dict[str, Any]:
        start_time = at(*start)
        contents = []
        for i, (speaker, text) in enumerate(segments or []):
            item: dict[str, Any] = {
                "type": "blockquote",
                "content": text,
                "startTime": _iso(start_time + timedelta(seconds=10 * i)),
                "startOffsetMs": 10_000 * i,
            }
            if speaker is not None:
                item["speakerName"] = speaker
                if speaker == user_speaker:
                    item["speakerIdentifier"] = "user"
            contents.append(item)

        record: dict[str, Any] = {
            "id": lifelog_id,
            "title": title or f"Lifelog {lifelog_id}",
            "markdown": "\n".join(text for _, text in segments or []),
            "startTime": _iso(start_time),
            "contents": contents,
        }
        if end is not None:
            record["endTime"] = _iso(at(*end))
        if creator_id is not None:
            record["creatorId"] = creator_id
        return record

    return build


@pytest.fixture
def test_storage_dir(tmp_path: Path) -> Path:
    """Create a temporary storage directory."""
    storage = tmp_path / ".lifelog"
    storage.mkdir(parents=True)
    return storage


@pytest.fixture
def test_settings(test_storage_dir: Path) -> "Settings":
    """Create test settings with temporary storage."""
    from lifelog.config import Settings, reset_settings

    reset_settings()
    return Settings(
        storage_dir=test_storage_dir,
        lock_timeout_seconds=2.0,
        busy_timeout_seconds=1.0,
    )


@pytest.fixture
def store(test_settings: "Settings") -> "Store":
    """Initialized store on a temporary database file."""
    from lifelog.config import reset_settings
    from lifelog.db.engine import initialize

    store = initialize(settings=test_settings)
    yield store
    store.close()
    reset_settings()


@pytest.fixture
def pipeline(store: "Store"):
    from lifelog.pipeline import IngestionPipeline

    return IngestionPipeline(store)


@pytest.fixture
def conversation_repo(store: "Store"):
    from lifelog.services.conversations import ConversationRepository

    return ConversationRepository(store)


@pytest.fixture
def speaker_repo(store: "Store"):
    from lifelog.services.speakers import SpeakerRepository

    return SpeakerRepository(store)


@pytest.fixture
def utterance_repo(store: "Store"):
    from lifelog.services.utterances import UtteranceRepository

    return UtteranceRepository(store)


@pytest.fixture
def lifelog_export_file(tmp_path: Path, make_lifelog) -> Path:
    """A JSON export in the API envelope with three lifelogs."""
    data = {
        "data": {
            "lifelogs": [
                make_lifelog(
                    "log-a",
                    (10, 0),
                    (10, 2),
                    title="Planning",
                    segments=[("Alice", "Let's review the budget for Q3."), ("Bob", "Sure.")],
                    user_speaker="Alice",
                ),
                make_lifelog(
                    "log-b",
                    (10, 3),
                    (10, 5),
                    title="Planning continued",
                    segments=[("Bob", "The forecast looks fine.")],
                ),
                make_lifelog(
                    "log-c",
                    (10, 20),
                    (10, 25),
                    title="Lunch",
                    segments=[("Alice", "Where should we eat?")],
                    user_speaker="Alice",
                ),
            ]
        }
    }
    file_path = tmp_path / "lifelogs.json"
    file_path.write_text(json.dumps(data))
    return file_path

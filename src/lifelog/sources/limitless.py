"""Lifelog export parser.

Exports are JSON in one of three shapes:

    [ {lifelog}, ... ]
    {"lifelogs": [ {lifelog}, ... ]}
    {"data": {"lifelogs": [ {lifelog}, ... ]}}

where each lifelog looks like:

    {
        "id": "abc123",
        "title": "Budget sync",
        "markdown": "...",
        "startTime": "2024-05-01T10:00:00Z",
        "endTime": "2024-05-01T10:02:00Z",
        "contents": [
            {
                "type": "blockquote",
                "content": "Let's review the budget.",
                "speakerName": "Alice",
                "speakerIdentifier": "user",
                "startTime": "2024-05-01T10:00:05Z",
                "startOffsetMs": 5000
            }
        ]
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from lifelog.core.errors import ParseError
from lifelog.sources.base import Source

logger = logging.getLogger(__name__)


def extract_lifelogs(payload: Any) -> list[dict[str, Any]]:
    """Pull the list of raw lifelog records out of any supported envelope."""
    if isinstance(payload, list):
        records = payload
    elif isinstance(payload, dict) and isinstance(payload.get("lifelogs"), list):
        records = payload["lifelogs"]
    elif (
        isinstance(payload, dict)
        and isinstance(payload.get("data"), dict)
        and isinstance(payload["data"].get("lifelogs"), list)
    ):
        records = payload["data"]["lifelogs"]
    else:
        msg = "Expected a list of lifelogs, {'lifelogs': [...]} or {'data': {'lifelogs': [...]}}"
        raise ParseError(msg)
    return list(records)


@dataclass
class LifelogExportSource(Source):
    """Reads lifelogs from a JSON export file."""

    def load(self) -> list[dict[str, Any]]:
        self.validate()

        with open(self.file_path, encoding="utf-8") as f:
            try:
                payload = json.load(f)
            except json.JSONDecodeError as exc:
                msg = f"{self.file_path} is not valid JSON: {exc}"
                raise ParseError(msg) from exc

        records = extract_lifelogs(payload)
        logger.info("Loaded %d lifelogs from %s", len(records), self.file_path)
        return records

"""Raw lifelog records and the source interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, field_validator

from lifelog.core.errors import ParseError
from lifelog.core.timestamps import ensure_utc, parse_timestamp


def _parse_time(value: Any) -> Any:
    if isinstance(value, str):
        return parse_timestamp(value)
    if isinstance(value, datetime):
        return ensure_utc(value)
    return value


Timestamp = Annotated[datetime, BeforeValidator(_parse_time)]


class RawContent(BaseModel):
    """One transcript segment as delivered by the lifelog API."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str = ""
    content: str | None = None
    text: str | None = None
    speaker_name: str | None = Field(default=None, alias="speakerName")
    speaker_identifier: str | None = Field(default=None, alias="speakerIdentifier")
    start_time: Timestamp | None = Field(default=None, alias="startTime")
    end_time: Timestamp | None = Field(default=None, alias="endTime")
    start_offset_ms: int | None = Field(default=None, alias="startOffsetMs")
    end_offset_ms: int | None = Field(default=None, alias="endOffsetMs")

    @property
    def primary_text(self) -> str | None:
        """Segment text, falling back to its content field."""
        return self.text if self.text is not None else self.content

    @property
    def is_user(self) -> bool:
        return self.speaker_identifier == "user"


class RawLifelog(BaseModel):
    """One lifelog record as delivered by the lifelog API."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(min_length=1)
    title: str | None = None
    markdown: str | None = None
    start_time: Timestamp = Field(alias="startTime")
    end_time: Timestamp | None = Field(default=None, alias="endTime")
    creator_id: str | None = Field(default=None, alias="creatorId")
    contents: list[RawContent] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value


def parse_lifelog(data: RawLifelog | dict[str, Any]) -> RawLifelog:
    """Validate one raw record.

    Raises:
        ParseError: missing id or start time, or an unparseable timestamp.
    """
    if isinstance(data, RawLifelog):
        return data
    external_id = data.get("id") if isinstance(data, dict) else None
    try:
        return RawLifelog.model_validate(data)
    except (ValidationError, ValueError) as exc:
        msg = f"Invalid lifelog record {external_id!r}: {exc}"
        raise ParseError(msg, external_log_id=str(external_id) if external_id else None) from exc


LifelogFetcher = Callable[[], Sequence[RawLifelog | dict[str, Any]]]
"""Callable returning the next batch of raw lifelog records."""


@dataclass
class Source(ABC):
    """Abstract base class for lifelog sources.

    Sources read an external export and return raw records for the
    ingestion pipeline. Validation happens per record during ingest, so a
    malformed record never hides the rest of the batch.
    """

    file_path: Path

    @abstractmethod
    def load(self) -> list[dict[str, Any]]:
        """Read the source and return its raw records."""
        ...

    def validate(self) -> None:
        """Validate that the source file exists and is readable."""
        if not self.file_path.exists():
            msg = f"Source file not found: {self.file_path}"
            raise FileNotFoundError(msg)
        if not self.file_path.is_file():
            msg = f"Source path is not a file: {self.file_path}"
            raise ValueError(msg)

    def __call__(self) -> list[dict[str, Any]]:
        return self.load()


def expand_path(path: str | Path) -> Path:
    """Expand user home directory and resolve path."""
    return Path(path).expanduser().resolve()

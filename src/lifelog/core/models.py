"""Core data models for Lifelog.

Values returned by repositories are frozen dataclasses, detached from the
database session. Writes return a new value carrying generated ids.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

DEFAULT_CREATOR_ID = "unknown_user"


class ProcessingStatus(StrEnum):
    """Downstream processing state of a conversation."""

    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"


class ItemType(StrEnum):
    """Kind of item an LLM suggestion proposes."""

    EVENT = "event"
    TASK = "task"
    REMINDER = "reminder"


class SuggestionStatus(StrEnum):
    PENDING_REVIEW = "pending_review"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    AUTO_ADDED = "auto_added"


class ActionType(StrEnum):
    """User feedback on a suggestion."""

    ACCEPTED = "accepted"
    DECLINED = "declined"
    EDITED_ACCEPTED = "edited_accepted"


class SettingKey(StrEnum):
    """Closed set of application setting keys."""

    PRIMARY_USER_CREATOR_ID = "primary_user_creator_id"
    DEFAULT_CALENDAR_ID = "default_calendar_id"
    DEFAULT_TASK_LIST_ID = "default_task_list_id"
    FETCH_SCHEDULE_MINUTES = "fetch_schedule_minutes"
    LLM_CONFIDENCE_THRESHOLD = "llm_confidence_threshold"
    LLM_SERVICE_PREFERENCE = "llm_service_preference"


@dataclass(frozen=True)
class Conversation:
    """One ingested transcript unit."""

    external_log_id: str
    start_time: datetime
    end_time: datetime | None = None
    title: str | None = None
    creator_id: str = DEFAULT_CREATOR_ID
    full_text: str | None = None
    logical_event_id: str | None = None
    status: ProcessingStatus = ProcessingStatus.PENDING
    id: int | None = None
    created_at: datetime | None = None

    @property
    def effective_end_time(self) -> datetime:
        """End time, falling back to start time for open-ended conversations."""
        return self.end_time if self.end_time is not None else self.start_time


@dataclass(frozen=True)
class Speaker:
    """A participant identity."""

    external_speaker_id: str
    name: str
    is_primary_user: bool = False
    id: int | None = None


@dataclass(frozen=True)
class Utterance:
    """One speech or text segment of a conversation."""

    text_content: str
    start_time: datetime
    sequence_in_conversation: int
    conversation_id: int | None = None
    speaker_id: int | None = None
    end_time: datetime | None = None
    start_offset_ms: int | None = None
    end_offset_ms: int | None = None
    content_type: str | None = None
    id: int | None = None


@dataclass(frozen=True)
class Suggestion:
    """An action item proposed by an LLM for a conversation."""

    conversation_id: int
    suggested_item_type: ItemType
    status: SuggestionStatus = SuggestionStatus.PENDING_REVIEW
    triggering_utterance_id_start: int | None = None
    triggering_utterance_id_end: int | None = None
    triggering_snippet_text: str | None = None
    llm_name: str | None = None
    llm_prompt_version: str | None = None
    llm_raw_response: str | None = None
    extracted_title: str | None = None
    extracted_start_date: datetime | None = None
    extracted_end_date: datetime | None = None
    extracted_location: str | None = None
    extracted_details: str | None = None
    extracted_attendees: str | None = None
    confidence_score: float | None = None
    external_item_id: str | None = None
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class UserAction:
    """User feedback recorded against a suggestion."""

    suggestion_id: int
    action_type: ActionType
    corrected_item_type: ItemType | None = None
    corrected_title: str | None = None
    decline_reason: str | None = None
    action_timestamp: datetime | None = None
    id: int | None = None


@dataclass(frozen=True)
class ApplicationSetting:
    key: SettingKey
    value: str
    updated_at: datetime | None = None

"""Database models for Lifelog.

These models map the tables created by lifelog.db.migrations:
- ConversationRecord: one ingested lifelog
- SpeakerRecord: participant identities
- UtteranceRecord: speech segments, indexed by utterances_fts
- SuggestionRecord / UserActionRecord: LLM suggestions and user feedback
- ApplicationSettingRecord: key/value settings

The schema itself is owned by the migrations; the ORM never creates tables.
"""

from datetime import datetime, timezone
from typing import Any, ClassVar

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from lifelog.core.models import (
    ActionType,
    ApplicationSetting,
    Conversation,
    ItemType,
    ProcessingStatus,
    SettingKey,
    Speaker,
    Suggestion,
    SuggestionStatus,
    UserAction,
    Utterance,
)
from lifelog.core.timestamps import ensure_utc


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator[datetime]):
    """Stores naive UTC in SQLite, hands back aware UTC datetimes."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        return ensure_utc(value).replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


def _enum(enum_cls: type, length: int = 32) -> Enum:
    # Persist enum values (not member names) and reject anything else.
    return Enum(
        enum_cls,
        native_enum=False,
        create_constraint=False,
        validate_strings=True,
        length=length,
        values_callable=lambda members: [m.value for m in members],
    )


class LifelogBase(DeclarativeBase):
    """Base class for Lifelog models."""

    type_annotation_map: ClassVar[dict[type, Any]] = {}


class ConversationRecord(LifelogBase):
    __tablename__ = "conversations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_log_id: Mapped[str] = mapped_column(String(256), nullable=False, unique=True)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    creator_id: Mapped[str] = mapped_column(String(256), nullable=False)
    full_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    logical_event_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[ProcessingStatus] = mapped_column(
        _enum(ProcessingStatus), nullable=False, default=ProcessingStatus.PENDING
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("end_time IS NULL OR end_time >= start_time", name="ck_conversation_span"),
        Index("idx_conversations_start", "start_time"),
        Index("idx_conversations_logical_event", "logical_event_id"),
        Index("idx_conversations_creator_start", "creator_id", "start_time"),
        Index("idx_conversations_status_start", "status", "start_time"),
    )

    def to_model(self) -> Conversation:
        return Conversation(
            id=self.id,
            external_log_id=self.external_log_id,
            title=self.title,
            start_time=self.start_time,
            end_time=self.end_time,
            creator_id=self.creator_id,
            full_text=self.full_text,
            logical_event_id=self.logical_event_id,
            status=ProcessingStatus(self.status),
            created_at=self.created_at,
        )


class SpeakerRecord(LifelogBase):
    __tablename__ = "speakers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_speaker_id: Mapped[str] = mapped_column(String(256), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    is_primary_user: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def to_model(self) -> Speaker:
        return Speaker(
            id=self.id,
            external_speaker_id=self.external_speaker_id,
            name=self.name,
            is_primary_user=bool(self.is_primary_user),
        )


class UtteranceRecord(LifelogBase):
    __tablename__ = "utterances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    speaker_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("speakers.id", ondelete="RESTRICT"), nullable=True
    )
    text_content: Mapped[str] = mapped_column(Text, nullable=False)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    start_offset_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    end_offset_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sequence_in_conversation: Mapped[int] = mapped_column(Integer, nullable=False)
    content_type: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        UniqueConstraint("conversation_id", "sequence_in_conversation", name="uq_utterance_sequence"),
        CheckConstraint("sequence_in_conversation >= 0", name="ck_utterance_sequence"),
        Index("idx_utterances_speaker", "speaker_id"),
        Index("idx_utterances_start", "start_time"),
    )

    def to_model(self) -> Utterance:
        return Utterance(
            id=self.id,
            conversation_id=self.conversation_id,
            speaker_id=self.speaker_id,
            text_content=self.text_content,
            start_time=self.start_time,
            end_time=self.end_time,
            start_offset_ms=self.start_offset_ms,
            end_offset_ms=self.end_offset_ms,
            sequence_in_conversation=self.sequence_in_conversation,
            content_type=self.content_type,
        )


class SuggestionRecord(LifelogBase):
    __tablename__ = "suggestions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    triggering_utterance_id_start: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("utterances.id", ondelete="SET NULL"), nullable=True
    )
    triggering_utterance_id_end: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("utterances.id", ondelete="SET NULL"), nullable=True
    )
    triggering_snippet_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    llm_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    llm_prompt_version: Mapped[str | None] = mapped_column(String(64), nullable=True)
    llm_raw_response: Mapped[str | None] = mapped_column(Text, nullable=True)
    suggested_item_type: Mapped[ItemType] = mapped_column(_enum(ItemType), nullable=False)
    extracted_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    extracted_start_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    extracted_end_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    extracted_location: Mapped[str | None] = mapped_column(Text, nullable=True)
    extracted_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    extracted_attendees: Mapped[str | None] = mapped_column(Text, nullable=True)
    confidence_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[SuggestionStatus] = mapped_column(_enum(SuggestionStatus), nullable=False)
    external_item_id: Mapped[str | None] = mapped_column(String(256), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_suggestions_conversation", "conversation_id"),
        Index("idx_suggestions_status", "status"),
    )

    def to_model(self) -> Suggestion:
        return Suggestion(
            id=self.id,
            conversation_id=self.conversation_id,
            triggering_utterance_id_start=self.triggering_utterance_id_start,
            triggering_utterance_id_end=self.triggering_utterance_id_end,
            triggering_snippet_text=self.triggering_snippet_text,
            llm_name=self.llm_name,
            llm_prompt_version=self.llm_prompt_version,
            llm_raw_response=self.llm_raw_response,
            suggested_item_type=ItemType(self.suggested_item_type),
            extracted_title=self.extracted_title,
            extracted_start_date=self.extracted_start_date,
            extracted_end_date=self.extracted_end_date,
            extracted_location=self.extracted_location,
            extracted_details=self.extracted_details,
            extracted_attendees=self.extracted_attendees,
            confidence_score=self.confidence_score,
            status=SuggestionStatus(self.status),
            external_item_id=self.external_item_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class UserActionRecord(LifelogBase):
    __tablename__ = "user_actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    suggestion_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("suggestions.id", ondelete="CASCADE"), nullable=False
    )
    action_type: Mapped[ActionType] = mapped_column(_enum(ActionType), nullable=False)
    corrected_item_type: Mapped[ItemType | None] = mapped_column(_enum(ItemType), nullable=True)
    corrected_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    decline_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    action_timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (Index("idx_user_actions_suggestion", "suggestion_id"),)

    def to_model(self) -> UserAction:
        return UserAction(
            id=self.id,
            suggestion_id=self.suggestion_id,
            action_type=ActionType(self.action_type),
            corrected_item_type=(
                ItemType(self.corrected_item_type) if self.corrected_item_type is not None else None
            ),
            corrected_title=self.corrected_title,
            decline_reason=self.decline_reason,
            action_timestamp=self.action_timestamp,
        )


class ApplicationSettingRecord(LifelogBase):
    __tablename__ = "application_settings"

    key: Mapped[SettingKey] = mapped_column(_enum(SettingKey, length=64), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    def to_model(self) -> ApplicationSetting:
        return ApplicationSetting(
            key=SettingKey(self.key),
            value=self.value,
            updated_at=self.updated_at,
        )

"""LLM suggestion and user feedback persistence."""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TypeVar

from sqlalchemy import delete, select

from lifelog.core.errors import ConstraintViolation, RecordNotFound
from lifelog.core.models import (
    ActionType,
    ItemType,
    Suggestion,
    SuggestionStatus,
    UserAction,
)
from lifelog.db.engine import Store
from lifelog.db.records import SuggestionRecord, UserActionRecord, utcnow

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=StrEnum)


def _coerce(enum_cls: type[E], value: E | str, field: str) -> E:
    try:
        return enum_cls(value)
    except ValueError as exc:
        msg = f"Invalid {field}: {value!r}"
        raise ConstraintViolation(msg) from exc


def _apply_suggestion(row: SuggestionRecord, suggestion: Suggestion) -> None:
    confidence = suggestion.confidence_score
    if confidence is not None and not 0.0 <= confidence <= 1.0:
        msg = f"confidence_score must be within [0, 1], got {confidence}"
        raise ConstraintViolation(msg)
    row.conversation_id = suggestion.conversation_id
    row.triggering_utterance_id_start = suggestion.triggering_utterance_id_start
    row.triggering_utterance_id_end = suggestion.triggering_utterance_id_end
    row.triggering_snippet_text = suggestion.triggering_snippet_text
    row.llm_name = suggestion.llm_name
    row.llm_prompt_version = suggestion.llm_prompt_version
    row.llm_raw_response = suggestion.llm_raw_response
    row.suggested_item_type = _coerce(ItemType, suggestion.suggested_item_type, "item type")
    row.extracted_title = suggestion.extracted_title
    row.extracted_start_date = suggestion.extracted_start_date
    row.extracted_end_date = suggestion.extracted_end_date
    row.extracted_location = suggestion.extracted_location
    row.extracted_details = suggestion.extracted_details
    row.extracted_attendees = suggestion.extracted_attendees
    row.confidence_score = confidence
    row.status = _coerce(SuggestionStatus, suggestion.status, "suggestion status")
    row.external_item_id = suggestion.external_item_id


class SuggestionRepository:
    """Typed access to the suggestions table.

    Suggestions are removed with their conversation. Deleting a triggering
    utterance only clears the reference.
    """

    def __init__(self, store: Store) -> None:
        self.store = store

    def create(self, suggestion: Suggestion) -> Suggestion:
        with self.store.transaction() as session:
            now = utcnow()
            row = SuggestionRecord(
                created_at=suggestion.created_at or now,
                updated_at=suggestion.updated_at or now,
            )
            _apply_suggestion(row, suggestion)
            session.add(row)
            session.flush()
            return row.to_model()

    def fetch_by_id(self, suggestion_id: int) -> Suggestion | None:
        with self.store.query() as session:
            row = session.get(SuggestionRecord, suggestion_id)
            return row.to_model() if row is not None else None

    def fetch_all(self, limit: int | None = None) -> list[Suggestion]:
        stmt = select(SuggestionRecord).order_by(SuggestionRecord.created_at, SuggestionRecord.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.store.query() as session:
            return [row.to_model() for row in session.scalars(stmt)]

    def fetch_by_conversation(self, conversation_id: int) -> list[Suggestion]:
        stmt = (
            select(SuggestionRecord)
            .where(SuggestionRecord.conversation_id == conversation_id)
            .order_by(SuggestionRecord.created_at, SuggestionRecord.id)
        )
        with self.store.query() as session:
            return [row.to_model() for row in session.scalars(stmt)]

    def fetch_by_status(
        self,
        status: SuggestionStatus | str,
        limit: int | None = None,
    ) -> list[Suggestion]:
        """Suggestions in one review state, oldest first."""
        wanted = _coerce(SuggestionStatus, status, "suggestion status")
        stmt = (
            select(SuggestionRecord)
            .where(SuggestionRecord.status == wanted)
            .order_by(SuggestionRecord.created_at, SuggestionRecord.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.store.query() as session:
            return [row.to_model() for row in session.scalars(stmt)]

    def update(self, suggestion: Suggestion) -> Suggestion:
        """Overwrite a suggestion. created_at is kept, updated_at refreshed."""
        if suggestion.id is None:
            msg = "Cannot update a suggestion without an id"
            raise ConstraintViolation(msg)
        with self.store.transaction() as session:
            row = session.get(SuggestionRecord, suggestion.id)
            if row is None:
                msg = f"Suggestion not found: {suggestion.id}"
                raise RecordNotFound(msg)
            _apply_suggestion(row, suggestion)
            row.updated_at = utcnow()
            session.flush()
            return row.to_model()

    def mark_status(self, suggestion_id: int, status: SuggestionStatus | str) -> Suggestion:
        new_status = _coerce(SuggestionStatus, status, "suggestion status")
        with self.store.transaction() as session:
            row = session.get(SuggestionRecord, suggestion_id)
            if row is None:
                msg = f"Suggestion not found: {suggestion_id}"
                raise RecordNotFound(msg)
            row.status = new_status
            row.updated_at = utcnow()
            session.flush()
            return row.to_model()

    def delete(self, suggestion_id: int) -> bool:
        stmt = delete(SuggestionRecord).where(SuggestionRecord.id == suggestion_id)
        with self.store.transaction() as session:
            return bool(session.execute(stmt).rowcount)


class UserActionRepository:
    """Typed access to the user_actions table."""

    def __init__(self, store: Store) -> None:
        self.store = store

    def create(self, action: UserAction) -> UserAction:
        with self.store.transaction() as session:
            row = UserActionRecord(
                suggestion_id=action.suggestion_id,
                action_type=_coerce(ActionType, action.action_type, "action type"),
                corrected_item_type=(
                    _coerce(ItemType, action.corrected_item_type, "item type")
                    if action.corrected_item_type is not None
                    else None
                ),
                corrected_title=action.corrected_title,
                decline_reason=action.decline_reason,
                action_timestamp=action.action_timestamp or utcnow(),
            )
            session.add(row)
            session.flush()
            logger.debug("Recorded %s on suggestion %d", row.action_type, row.suggestion_id)
            return row.to_model()

    def fetch_by_id(self, action_id: int) -> UserAction | None:
        with self.store.query() as session:
            row = session.get(UserActionRecord, action_id)
            return row.to_model() if row is not None else None

    def fetch_all(self, limit: int | None = None) -> list[UserAction]:
        stmt = select(UserActionRecord).order_by(
            UserActionRecord.action_timestamp, UserActionRecord.id
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.store.query() as session:
            return [row.to_model() for row in session.scalars(stmt)]

    def fetch_by_suggestion(self, suggestion_id: int) -> list[UserAction]:
        stmt = (
            select(UserActionRecord)
            .where(UserActionRecord.suggestion_id == suggestion_id)
            .order_by(UserActionRecord.action_timestamp, UserActionRecord.id)
        )
        with self.store.query() as session:
            return [row.to_model() for row in session.scalars(stmt)]

    def update(self, action: UserAction) -> UserAction:
        if action.id is None:
            msg = "Cannot update a user action without an id"
            raise ConstraintViolation(msg)
        with self.store.transaction() as session:
            row = session.get(UserActionRecord, action.id)
            if row is None:
                msg = f"User action not found: {action.id}"
                raise RecordNotFound(msg)
            row.suggestion_id = action.suggestion_id
            row.action_type = _coerce(ActionType, action.action_type, "action type")
            row.corrected_item_type = (
                _coerce(ItemType, action.corrected_item_type, "item type")
                if action.corrected_item_type is not None
                else None
            )
            row.corrected_title = action.corrected_title
            row.decline_reason = action.decline_reason
            if action.action_timestamp is not None:
                row.action_timestamp = action.action_timestamp
            session.flush()
            return row.to_model()

    def delete(self, action_id: int) -> bool:
        stmt = delete(UserActionRecord).where(UserActionRecord.id == action_id)
        with self.store.transaction() as session:
            return bool(session.execute(stmt).rowcount)

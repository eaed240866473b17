"""Tests for suggestion, user action and application setting storage."""

from __future__ import annotations

from dataclasses import replace

import pytest

from lifelog.core.errors import ConstraintViolation, RecordNotFound
from lifelog.core.models import (
    ActionType,
    Conversation,
    ItemType,
    SettingKey,
    Suggestion,
    SuggestionStatus,
    UserAction,
    Utterance,
)
from lifelog.services.app_settings import ApplicationSettingRepository
from lifelog.services.suggestions import SuggestionRepository, UserActionRepository


@pytest.fixture
def suggestion_repo(store):
    return SuggestionRepository(store)


@pytest.fixture
def action_repo(store):
    return UserActionRepository(store)


@pytest.fixture
def conversation(conversation_repo, at):
    return conversation_repo.create(Conversation(external_log_id="conv", start_time=at(10)))


class TestSuggestions:
    def test_create_and_fetch(self, suggestion_repo, conversation, at):
        saved = suggestion_repo.create(
            Suggestion(
                conversation_id=conversation.id,
                suggested_item_type=ItemType.EVENT,
                extracted_title="Budget review",
                extracted_start_date=at(15),
                confidence_score=0.8,
                llm_name="local-model",
            )
        )
        assert saved.id is not None
        assert saved.status == SuggestionStatus.PENDING_REVIEW
        assert saved.created_at is not None
        assert suggestion_repo.fetch_by_id(saved.id) == saved
        assert suggestion_repo.fetch_by_conversation(conversation.id) == [saved]

    def test_confidence_bounds(self, suggestion_repo, conversation):
        with pytest.raises(ConstraintViolation):
            suggestion_repo.create(
                Suggestion(
                    conversation_id=conversation.id,
                    suggested_item_type=ItemType.TASK,
                    confidence_score=1.5,
                )
            )

    def test_unknown_item_type_rejected(self, suggestion_repo, conversation):
        with pytest.raises(ConstraintViolation):
            suggestion_repo.create(
                Suggestion(conversation_id=conversation.id, suggested_item_type="meeting")
            )

    def test_fetch_by_status_and_mark(self, suggestion_repo, conversation):
        a = suggestion_repo.create(
            Suggestion(conversation_id=conversation.id, suggested_item_type=ItemType.TASK)
        )
        b = suggestion_repo.create(
            Suggestion(conversation_id=conversation.id, suggested_item_type=ItemType.REMINDER)
        )
        suggestion_repo.mark_status(a.id, SuggestionStatus.ACCEPTED)

        assert [s.id for s in suggestion_repo.fetch_by_status("pending_review")] == [b.id]
        assert [s.id for s in suggestion_repo.fetch_by_status(SuggestionStatus.ACCEPTED)] == [a.id]
        with pytest.raises(RecordNotFound):
            suggestion_repo.mark_status(999, SuggestionStatus.DECLINED)

    def test_update_keeps_created_at(self, suggestion_repo, conversation):
        saved = suggestion_repo.create(
            Suggestion(conversation_id=conversation.id, suggested_item_type=ItemType.TASK)
        )
        updated = suggestion_repo.update(replace(saved, extracted_title="Call Bob"))
        assert updated.extracted_title == "Call Bob"
        assert updated.created_at == saved.created_at
        assert updated.updated_at >= saved.updated_at

    def test_removed_with_conversation(self, suggestion_repo, conversation_repo, conversation):
        suggestion_repo.create(
            Suggestion(conversation_id=conversation.id, suggested_item_type=ItemType.TASK)
        )
        conversation_repo.delete(conversation.id)
        assert suggestion_repo.fetch_all() == []

    def test_utterance_delete_clears_reference(
        self, suggestion_repo, utterance_repo, conversation, at
    ):
        [utterance] = utterance_repo.save_batch(
            conversation.id,
            [Utterance(text_content="call bob", start_time=at(10), sequence_in_conversation=0)],
        )
        saved = suggestion_repo.create(
            Suggestion(
                conversation_id=conversation.id,
                suggested_item_type=ItemType.TASK,
                triggering_utterance_id_start=utterance.id,
                triggering_utterance_id_end=utterance.id,
            )
        )
        utterance_repo.delete(utterance.id)

        reloaded = suggestion_repo.fetch_by_id(saved.id)
        assert reloaded is not None
        assert reloaded.triggering_utterance_id_start is None
        assert reloaded.triggering_utterance_id_end is None


class TestUserActions:
    def test_record_feedback(self, suggestion_repo, action_repo, conversation):
        suggestion = suggestion_repo.create(
            Suggestion(conversation_id=conversation.id, suggested_item_type=ItemType.EVENT)
        )
        action = action_repo.create(
            UserAction(
                suggestion_id=suggestion.id,
                action_type=ActionType.EDITED_ACCEPTED,
                corrected_item_type=ItemType.TASK,
                corrected_title="Send slides",
            )
        )
        assert action.id is not None
        assert action.action_timestamp is not None
        assert action_repo.fetch_by_suggestion(suggestion.id) == [action]

    def test_unknown_suggestion_rejected(self, action_repo):
        with pytest.raises(ConstraintViolation):
            action_repo.create(UserAction(suggestion_id=404, action_type=ActionType.DECLINED))

    def test_removed_with_suggestion(self, suggestion_repo, action_repo, conversation):
        suggestion = suggestion_repo.create(
            Suggestion(conversation_id=conversation.id, suggested_item_type=ItemType.EVENT)
        )
        action_repo.create(UserAction(suggestion_id=suggestion.id, action_type=ActionType.DECLINED))
        suggestion_repo.delete(suggestion.id)
        assert action_repo.fetch_all() == []


class TestApplicationSettings:
    def test_set_and_get(self, store):
        repo = ApplicationSettingRepository(store)
        assert repo.get_value(SettingKey.PRIMARY_USER_CREATOR_ID) is None
        assert repo.get_value(SettingKey.PRIMARY_USER_CREATOR_ID, "fallback") == "fallback"

        repo.set_value(SettingKey.PRIMARY_USER_CREATOR_ID, "alice")
        repo.set_value("primary_user_creator_id", "bob")

        assert repo.get_value(SettingKey.PRIMARY_USER_CREATOR_ID) == "bob"
        assert [s.key for s in repo.fetch_all()] == [SettingKey.PRIMARY_USER_CREATOR_ID]

    def test_unknown_key_rejected(self, store):
        repo = ApplicationSettingRepository(store)
        with pytest.raises(ConstraintViolation):
            repo.set_value("favourite_colour", "blue")

    def test_delete(self, store):
        repo = ApplicationSettingRepository(store)
        repo.set_value(SettingKey.DEFAULT_CALENDAR_ID, "work")
        assert repo.delete(SettingKey.DEFAULT_CALENDAR_ID) is True
        assert repo.get(SettingKey.DEFAULT_CALENDAR_ID) is None

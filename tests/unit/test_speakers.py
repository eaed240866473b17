"""Tests for SpeakerRepository."""

from __future__ import annotations

from dataclasses import replace

import pytest

from lifelog.core.errors import ConstraintViolation, RecordNotFound
from lifelog.core.models import Conversation, Speaker, Utterance


class TestSpeakers:
    def test_create_and_fetch(self, speaker_repo):
        saved = speaker_repo.create(Speaker(external_speaker_id="alice", name="Alice"))
        assert saved.id is not None
        assert speaker_repo.fetch_by_id(saved.id) == saved
        assert speaker_repo.fetch_by_external_id("alice") == saved
        assert speaker_repo.fetch_by_external_id("nobody") is None

    def test_empty_name_rejected(self, speaker_repo):
        with pytest.raises(ConstraintViolation):
            speaker_repo.create(Speaker(external_speaker_id="x", name=""))

    def test_upsert_updates_name_and_keeps_id(self, speaker_repo):
        first = speaker_repo.upsert_by_external_id(Speaker(external_speaker_id="s1", name="Al"))
        second = speaker_repo.upsert_by_external_id(Speaker(external_speaker_id="s1", name="Alice"))
        assert second.id == first.id
        assert second.name == "Alice"
        assert speaker_repo.count() == 1

    def test_single_primary_user(self, speaker_repo):
        alice = speaker_repo.upsert_by_external_id(
            Speaker(external_speaker_id="alice", name="Alice", is_primary_user=True)
        )
        bob = speaker_repo.upsert_by_external_id(
            Speaker(external_speaker_id="bob", name="Bob", is_primary_user=True)
        )
        assert speaker_repo.fetch_primary_user().id == bob.id
        assert speaker_repo.fetch_by_id(alice.id).is_primary_user is False

    def test_upsert_never_lowers_primary_flag(self, speaker_repo):
        speaker_repo.upsert_by_external_id(
            Speaker(external_speaker_id="alice", name="Alice", is_primary_user=True)
        )
        again = speaker_repo.upsert_by_external_id(Speaker(external_speaker_id="alice", name="Alice"))
        assert again.is_primary_user is True

    def test_update_can_demote(self, speaker_repo):
        alice = speaker_repo.create(
            Speaker(external_speaker_id="alice", name="Alice", is_primary_user=True)
        )
        demoted = speaker_repo.update(replace(alice, is_primary_user=False))
        assert demoted.is_primary_user is False
        assert speaker_repo.fetch_primary_user() is None

    def test_update_unknown(self, speaker_repo):
        with pytest.raises(RecordNotFound):
            speaker_repo.update(Speaker(external_speaker_id="x", name="X", id=77))

    def test_fetch_all_sorted_by_name(self, speaker_repo):
        speaker_repo.create(Speaker(external_speaker_id="2", name="Zoe"))
        speaker_repo.create(Speaker(external_speaker_id="1", name="Adam"))
        assert [s.name for s in speaker_repo.fetch_all()] == ["Adam", "Zoe"]

    def test_delete_unreferenced(self, speaker_repo):
        saved = speaker_repo.create(Speaker(external_speaker_id="x", name="X"))
        assert speaker_repo.delete(saved.id) is True
        assert speaker_repo.fetch_by_id(saved.id) is None

    def test_delete_referenced_is_restricted(
        self, speaker_repo, conversation_repo, utterance_repo, at
    ):
        speaker = speaker_repo.create(Speaker(external_speaker_id="alice", name="Alice"))
        conv = conversation_repo.create(Conversation(external_log_id="a", start_time=at(10)))
        utterance_repo.save_batch(
            conv.id,
            [
                Utterance(
                    text_content="hello",
                    start_time=at(10),
                    sequence_in_conversation=0,
                    speaker_id=speaker.id,
                )
            ],
        )

        with pytest.raises(ConstraintViolation):
            speaker_repo.delete(speaker.id)
        assert speaker_repo.fetch_by_id(speaker.id) is not None
        assert len(utterance_repo.fetch_by_conversation(conv.id)) == 1

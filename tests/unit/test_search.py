"""Unit tests for FTS search over utterances."""

from __future__ import annotations

from dataclasses import replace

import pytest

from lifelog.core.errors import ParseError
from lifelog.core.models import Conversation, Utterance
from lifelog.services.search import build_match_query


@pytest.fixture
def conversation(conversation_repo, at):
    return conversation_repo.create(Conversation(external_log_id="conv", start_time=at(10)))


def _save(utterance_repo, conversation_id, at, *texts):
    return utterance_repo.save_batch(
        conversation_id,
        [
            Utterance(text_content=text, start_time=at(10, i), sequence_in_conversation=i)
            for i, text in enumerate(texts)
        ],
    )


class TestBuildMatchQuery:
    def test_terms_are_quoted(self):
        assert build_match_query("rust ownership") == '"rust" "ownership"'

    def test_punctuation_is_literal(self):
        assert build_match_query("don't") == '"don\'t"'
        assert build_match_query('say "hi"') == '"say" """hi"""'

    def test_nothing_searchable(self):
        assert build_match_query("  -- ** ") is None


class TestFTSSearch:
    def test_search_matches_content(self, utterance_repo, conversation, at):
        _save(
            utterance_repo,
            conversation.id,
            at,
            "let's review the budget",
            "the weather is nice",
            "budget numbers look good",
        )
        hits = utterance_repo.search("budget")

        assert len(hits) == 2
        assert {h.utterance.text_content for h in hits} == {
            "let's review the budget",
            "budget numbers look good",
        }
        assert all(h.rank > 0 for h in hits)
        assert "<mark>" in hits[0].snippet

    def test_ordering_relevance_then_time(self, utterance_repo, conversation, at):
        """Equal relevance falls back to start time ascending."""
        _save(utterance_repo, conversation.id, at, "budget review", "budget review", "something else")
        hits = utterance_repo.search("budget")
        assert [h.utterance.sequence_in_conversation for h in hits] == [0, 1]
        assert hits[0].rank >= hits[1].rank

    def test_search_no_results(self, utterance_repo, conversation, at):
        _save(utterance_repo, conversation.id, at, "rust ownership")
        assert utterance_repo.search("javascript frameworks") == []

    @pytest.mark.parametrize("query", ["", "   ", "\t\n"])
    def test_blank_query_returns_empty(self, utterance_repo, conversation, at, query):
        _save(utterance_repo, conversation.id, at, "anything")
        assert utterance_repo.search(query) == []

    def test_all_words_must_match(self, utterance_repo, conversation, at):
        _save(utterance_repo, conversation.id, at, "budget meeting", "budget only")
        hits = utterance_repo.search("budget meeting")
        assert [h.utterance.text_content for h in hits] == ["budget meeting"]

    def test_stemming(self, utterance_repo, conversation, at):
        _save(utterance_repo, conversation.id, at, "we were meeting downtown")
        assert len(utterance_repo.search("meetings")) == 1

    def test_syntax_characters_do_not_break_plain_search(self, utterance_repo, conversation, at):
        _save(utterance_repo, conversation.id, at, "don't forget the follow-up")
        assert len(utterance_repo.search("don't")) == 1
        assert utterance_repo.search('"unbalanced') == []

    def test_limit(self, utterance_repo, conversation, at):
        _save(utterance_repo, conversation.id, at, *["budget line"] * 5)
        assert len(utterance_repo.search("budget", limit=3)) == 3

    def test_raw_query(self, utterance_repo, conversation, at):
        _save(utterance_repo, conversation.id, at, "budget review", "forecast review", "lunch")
        hits = utterance_repo.search("budget OR forecast", raw=True)
        assert len(hits) == 2

    def test_raw_syntax_error(self, utterance_repo, conversation, at):
        _save(utterance_repo, conversation.id, at, "budget review")
        with pytest.raises(ParseError):
            utterance_repo.search('"unbalanced', raw=True)

    def test_count_matches(self, utterance_repo, conversation, at):
        _save(utterance_repo, conversation.id, at, "budget a", "budget b", "other")
        assert utterance_repo.count_matches("budget") == 2
        assert utterance_repo.count_matches("  ") == 0


class TestIndexConsistency:
    def test_update_reindexes(self, utterance_repo, conversation, at):
        [saved] = _save(utterance_repo, conversation.id, at, "old budget text")
        utterance_repo.update(replace(saved, text_content="new forecast text"))

        assert utterance_repo.search("budget") == []
        assert [h.utterance.id for h in utterance_repo.search("forecast")] == [saved.id]

    def test_delete_unindexes(self, utterance_repo, conversation, at):
        [saved] = _save(utterance_repo, conversation.id, at, "budget")
        utterance_repo.delete(saved.id)
        assert utterance_repo.search("budget") == []
        assert utterance_repo.count_matches("budget") == 0

    def test_rebuild_index(self, store, utterance_repo, conversation, at):
        _save(utterance_repo, conversation.id, at, "budget review")
        store.rebuild_search_index()
        assert len(utterance_repo.search("budget")) == 1

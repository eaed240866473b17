"""Utterance CRUD, batch persistence and search."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime

from sqlalchemy import delete, func, select

from lifelog.core.errors import ConstraintViolation, RecordNotFound
from lifelog.core.models import Utterance
from lifelog.db.engine import Store
from lifelog.db.records import UtteranceRecord
from lifelog.services import search

logger = logging.getLogger(__name__)


def _apply(row: UtteranceRecord, utterance: Utterance) -> None:
    row.speaker_id = utterance.speaker_id
    row.text_content = utterance.text_content
    row.start_time = utterance.start_time
    row.end_time = utterance.end_time
    row.start_offset_ms = utterance.start_offset_ms
    row.end_offset_ms = utterance.end_offset_ms
    row.sequence_in_conversation = utterance.sequence_in_conversation
    row.content_type = utterance.content_type


def _validate(utterance: Utterance) -> None:
    if utterance.conversation_id is None:
        msg = "Utterance must belong to a conversation"
        raise ConstraintViolation(msg)
    if utterance.sequence_in_conversation < 0:
        msg = f"Negative sequence number: {utterance.sequence_in_conversation}"
        raise ConstraintViolation(msg)


class UtteranceRepository:
    """Typed access to the utterances table and its FTS index."""

    def __init__(self, store: Store) -> None:
        self.store = store

    def create(self, utterance: Utterance) -> Utterance:
        _validate(utterance)
        with self.store.transaction() as session:
            row = UtteranceRecord(conversation_id=utterance.conversation_id)
            _apply(row, utterance)
            session.add(row)
            session.flush()
            return row.to_model()

    def fetch_by_id(self, utterance_id: int) -> Utterance | None:
        with self.store.query() as session:
            row = session.get(UtteranceRecord, utterance_id)
            return row.to_model() if row is not None else None

    def fetch_all(self, limit: int | None = None) -> list[Utterance]:
        """All utterances by conversation, then sequence."""
        stmt = select(UtteranceRecord).order_by(
            UtteranceRecord.conversation_id, UtteranceRecord.sequence_in_conversation
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.store.query() as session:
            return [row.to_model() for row in session.scalars(stmt)]

    def update(self, utterance: Utterance) -> Utterance:
        if utterance.id is None:
            msg = "Cannot update an utterance without an id"
            raise ConstraintViolation(msg)
        _validate(utterance)
        with self.store.transaction() as session:
            row = session.get(UtteranceRecord, utterance.id)
            if row is None:
                msg = f"Utterance not found: {utterance.id}"
                raise RecordNotFound(msg)
            row.conversation_id = utterance.conversation_id
            _apply(row, utterance)
            session.flush()
            return row.to_model()

    def delete(self, utterance_id: int) -> bool:
        stmt = delete(UtteranceRecord).where(UtteranceRecord.id == utterance_id)
        with self.store.transaction() as session:
            return bool(session.execute(stmt).rowcount)

    def delete_by_conversation(self, conversation_id: int) -> int:
        stmt = delete(UtteranceRecord).where(UtteranceRecord.conversation_id == conversation_id)
        with self.store.transaction() as session:
            return session.execute(stmt).rowcount or 0

    def save_batch(
        self,
        conversation_id: int,
        utterances: Sequence[Utterance],
    ) -> list[Utterance]:
        """Store the complete utterance list of one conversation, all-or-nothing.

        Rows are matched on sequence number: existing sequences are updated in
        place (keeping their ids), new ones inserted, and sequences missing
        from ``utterances`` removed. Saving the same list twice is a no-op.

        Args:
            conversation_id: Owning conversation.
            utterances: Utterances with unique, non-negative sequence numbers.
                Their conversation_id must be None or equal conversation_id.

        Returns:
            The stored utterances, in input order, with ids.

        Raises:
            ConstraintViolation: duplicate or negative sequence numbers, a
                foreign conversation_id, or an unknown conversation/speaker.
        """
        prepared = []
        seen: set[int] = set()
        for utterance in utterances:
            if utterance.conversation_id not in (None, conversation_id):
                msg = (
                    f"Utterance belongs to conversation {utterance.conversation_id}, "
                    f"not {conversation_id}"
                )
                raise ConstraintViolation(msg)
            seq = utterance.sequence_in_conversation
            if seq in seen:
                msg = f"Duplicate sequence number {seq} in conversation {conversation_id}"
                raise ConstraintViolation(msg)
            seen.add(seq)
            prepared.append(replace(utterance, conversation_id=conversation_id))
        for utterance in prepared:
            _validate(utterance)

        stmt = select(UtteranceRecord).where(UtteranceRecord.conversation_id == conversation_id)
        with self.store.transaction() as session:
            existing = {row.sequence_in_conversation: row for row in session.scalars(stmt)}

            rows = []
            for utterance in prepared:
                row = existing.get(utterance.sequence_in_conversation)
                if row is None:
                    row = UtteranceRecord(conversation_id=conversation_id)
                    session.add(row)
                _apply(row, utterance)
                rows.append(row)

            stale = [row for seq, row in existing.items() if seq not in seen]
            for row in stale:
                session.delete(row)

            session.flush()
            logger.debug(
                "Saved %d utterances for conversation %d (%d removed)",
                len(rows),
                conversation_id,
                len(stale),
            )
            return [row.to_model() for row in rows]

    def fetch_by_conversation(self, conversation_id: int) -> list[Utterance]:
        """Utterances of one conversation in sequence order."""
        stmt = (
            select(UtteranceRecord)
            .where(UtteranceRecord.conversation_id == conversation_id)
            .order_by(UtteranceRecord.sequence_in_conversation)
        )
        with self.store.query() as session:
            return [row.to_model() for row in session.scalars(stmt)]

    def fetch_in_range(
        self,
        conversation_id: int,
        start: datetime,
        end: datetime,
    ) -> list[Utterance]:
        """Utterances of one conversation starting within [start, end]."""
        stmt = (
            select(UtteranceRecord)
            .where(
                UtteranceRecord.conversation_id == conversation_id,
                UtteranceRecord.start_time >= start,
                UtteranceRecord.start_time <= end,
            )
            .order_by(UtteranceRecord.start_time, UtteranceRecord.sequence_in_conversation)
        )
        with self.store.query() as session:
            return [row.to_model() for row in session.scalars(stmt)]

    def search(
        self,
        query: str,
        limit: int | None = None,
        *,
        raw: bool = False,
    ) -> list[search.SearchHit]:
        """Full-text search over utterance text.

        Args:
            query: Free text (all words must match) or, with raw=True, an
                FTS5 expression.
            limit: Maximum hits (default: settings.search_limit).

        Returns:
            Hits by relevance descending, then start time ascending.
        """
        if not query or not query.strip():
            return []
        if limit is None:
            limit = self.store.settings.search_limit
        with self.store.query() as session:
            return search.search_fts(session, query, limit, raw=raw)

    def count(self) -> int:
        with self.store.query() as session:
            return session.scalar(select(func.count()).select_from(UtteranceRecord)) or 0

    def count_matches(self, query: str, *, raw: bool = False) -> int:
        with self.store.query() as session:
            return search.count_matches(session, query, raw=raw)

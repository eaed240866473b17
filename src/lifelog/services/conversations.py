"""Conversation CRUD, upsert and adjacency queries."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from lifelog.core.errors import ConstraintViolation, ConversationNotFound
from lifelog.core.models import Conversation, ProcessingStatus
from lifelog.db.engine import Store
from lifelog.db.records import ConversationRecord, utcnow

logger = logging.getLogger(__name__)


def _validate(conversation: Conversation) -> None:
    if not conversation.external_log_id:
        msg = "Conversation external_log_id must not be empty"
        raise ConstraintViolation(msg)
    if conversation.end_time is not None and conversation.end_time < conversation.start_time:
        msg = (
            f"Conversation {conversation.external_log_id} ends before it starts "
            f"({conversation.end_time.isoformat()} < {conversation.start_time.isoformat()})"
        )
        raise ConstraintViolation(msg)


def _coerce_status(status: ProcessingStatus | str) -> ProcessingStatus:
    try:
        return ProcessingStatus(status)
    except ValueError as exc:
        msg = f"Unknown processing status: {status!r}"
        raise ConstraintViolation(msg) from exc


def _get_row(session: Session, conversation_id: int) -> ConversationRecord:
    row = session.get(ConversationRecord, conversation_id)
    if row is None:
        raise ConversationNotFound(conversation_id)
    return row


class ConversationRepository:
    """Typed access to the conversations table."""

    def __init__(self, store: Store) -> None:
        self.store = store

    # -- CRUD --

    def create(self, conversation: Conversation) -> Conversation:
        """Insert a new conversation and return it with its generated id.

        Raises:
            ConstraintViolation: duplicate external_log_id or invalid span.
        """
        _validate(conversation)
        with self.store.transaction() as session:
            row = ConversationRecord(
                external_log_id=conversation.external_log_id,
                title=conversation.title,
                start_time=conversation.start_time,
                end_time=conversation.end_time,
                creator_id=conversation.creator_id,
                full_text=conversation.full_text,
                logical_event_id=conversation.logical_event_id,
                status=_coerce_status(conversation.status),
                created_at=conversation.created_at or utcnow(),
            )
            session.add(row)
            session.flush()
            return row.to_model()

    def fetch_by_id(self, conversation_id: int) -> Conversation | None:
        with self.store.query() as session:
            row = session.get(ConversationRecord, conversation_id)
            return row.to_model() if row is not None else None

    def fetch_by_external_id(self, external_log_id: str) -> Conversation | None:
        stmt = select(ConversationRecord).where(
            ConversationRecord.external_log_id == external_log_id
        )
        with self.store.query() as session:
            row = session.scalar(stmt)
            return row.to_model() if row is not None else None

    def fetch_all(
        self,
        *,
        status: ProcessingStatus | str | None = None,
        creator_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        newest_first: bool = False,
        limit: int | None = None,
    ) -> list[Conversation]:
        """Fetch conversations ordered by start time.

        Args:
            status: Only conversations in this processing state.
            creator_id: Only conversations by this creator.
            since: Only conversations starting at or after this time.
            until: Only conversations starting before this time.
            newest_first: Order by start time descending instead.
            limit: Maximum number of rows.

        Returns:
            List of conversations.
        """
        stmt = select(ConversationRecord)
        if status is not None:
            stmt = stmt.where(ConversationRecord.status == _coerce_status(status))
        if creator_id is not None:
            stmt = stmt.where(ConversationRecord.creator_id == creator_id)
        if since is not None:
            stmt = stmt.where(ConversationRecord.start_time >= since)
        if until is not None:
            stmt = stmt.where(ConversationRecord.start_time < until)
        if newest_first:
            stmt = stmt.order_by(ConversationRecord.start_time.desc(), ConversationRecord.id.desc())
        else:
            stmt = stmt.order_by(ConversationRecord.start_time, ConversationRecord.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.store.query() as session:
            return [row.to_model() for row in session.scalars(stmt)]

    def update(self, conversation: Conversation) -> Conversation:
        """Overwrite every mutable field of an existing conversation.

        The creation timestamp is preserved. A stored logical_event_id can be
        reassigned but never cleared.

        Raises:
            ConversationNotFound: no row with conversation.id.
            ConstraintViolation: invalid span, cleared group, duplicate external id.
        """
        if conversation.id is None:
            msg = "Cannot update a conversation without an id"
            raise ConstraintViolation(msg)
        _validate(conversation)
        with self.store.transaction() as session:
            row = _get_row(session, conversation.id)
            if row.logical_event_id is not None and conversation.logical_event_id is None:
                msg = f"Conversation {conversation.id} already belongs to a logical event"
                raise ConstraintViolation(msg)
            row.external_log_id = conversation.external_log_id
            row.title = conversation.title
            row.start_time = conversation.start_time
            row.end_time = conversation.end_time
            row.creator_id = conversation.creator_id
            row.full_text = conversation.full_text
            row.logical_event_id = conversation.logical_event_id
            row.status = _coerce_status(conversation.status)
            session.flush()
            return row.to_model()

    def delete(self, conversation_id: int) -> bool:
        """Delete a conversation. Its utterances and suggestions go with it.

        Returns:
            True if a row was deleted.
        """
        stmt = delete(ConversationRecord).where(ConversationRecord.id == conversation_id)
        with self.store.transaction() as session:
            result = session.execute(stmt)
            return bool(result.rowcount)

    def delete_all(self) -> int:
        """Bulk purge of every conversation (and, by cascade, utterances).

        Returns:
            Number of conversations deleted.
        """
        with self.store.transaction() as session:
            result = session.execute(delete(ConversationRecord))
            count = result.rowcount or 0
        logger.warning("Purged %d conversations", count)
        return count

    # -- Ingestion --

    def upsert_by_external_id(self, conversation: Conversation) -> Conversation:
        """Insert or update keyed by external_log_id.

        An existing row keeps its id, creation timestamp and processing
        status; title, times, content, creator and logical_event_id are
        replaced. A None logical_event_id leaves the stored one alone.
        New rows always start as pending.
        """
        _validate(conversation)
        stmt = select(ConversationRecord).where(
            ConversationRecord.external_log_id == conversation.external_log_id
        )
        with self.store.transaction() as session:
            row = session.scalar(stmt)
            if row is None:
                row = ConversationRecord(
                    external_log_id=conversation.external_log_id,
                    status=ProcessingStatus.PENDING,
                    created_at=conversation.created_at or utcnow(),
                )
                session.add(row)
                logger.debug("Inserting conversation %s", conversation.external_log_id)
            else:
                logger.debug("Updating conversation %s (id=%d)", row.external_log_id, row.id)
            row.title = conversation.title
            row.start_time = conversation.start_time
            row.end_time = conversation.end_time
            row.creator_id = conversation.creator_id
            row.full_text = conversation.full_text
            if conversation.logical_event_id is not None:
                row.logical_event_id = conversation.logical_event_id
            session.flush()
            return row.to_model()

    def assign_logical_event(self, conversation_id: int, logical_event_id: str) -> Conversation:
        """Move one conversation into a logical event."""
        if not logical_event_id:
            msg = "logical_event_id must not be empty"
            raise ConstraintViolation(msg)
        with self.store.transaction() as session:
            row = _get_row(session, conversation_id)
            row.logical_event_id = logical_event_id
            session.flush()
            return row.to_model()

    def fetch_latest_before(
        self,
        start_time: datetime,
        exclude_external_ids: Iterable[str] = (),
    ) -> Conversation | None:
        """The most recent conversation starting strictly before start_time.

        Used to seed clustering when a batch continues earlier data.
        Excluded ids are skipped while scanning, so batches of any size
        stay within SQLite's bound-parameter limit.
        """
        excluded = set(exclude_external_ids)
        stmt = (
            select(ConversationRecord)
            .where(ConversationRecord.start_time < start_time)
            .order_by(ConversationRecord.start_time.desc(), ConversationRecord.external_log_id.desc())
            .execution_options(yield_per=100)
        )
        with self.store.query() as session:
            for row in session.scalars(stmt):
                if row.external_log_id not in excluded:
                    return row.to_model()
        return None

    def fetch_between(
        self,
        start: datetime,
        end: datetime,
        exclude_external_ids: Iterable[str] = (),
    ) -> list[Conversation]:
        """Conversations starting within [start, end], ordered like clustering input.

        Used to walk stored conversations that sit between the records of
        an incoming batch.
        """
        excluded = set(exclude_external_ids)
        stmt = (
            select(ConversationRecord)
            .where(ConversationRecord.start_time >= start, ConversationRecord.start_time <= end)
            .order_by(ConversationRecord.start_time, ConversationRecord.external_log_id)
        )
        with self.store.query() as session:
            return [
                row.to_model()
                for row in session.scalars(stmt)
                if row.external_log_id not in excluded
            ]

    # -- Processing state --

    def fetch_pending_processing(self, limit: int = 10) -> list[Conversation]:
        """Pending conversations, oldest first."""
        return self.fetch_all(status=ProcessingStatus.PENDING, limit=limit)

    def mark_status(
        self,
        conversation_id: int,
        status: ProcessingStatus | str,
    ) -> Conversation:
        """Set the processing status of one conversation."""
        new_status = _coerce_status(status)
        with self.store.transaction() as session:
            row = _get_row(session, conversation_id)
            row.status = new_status
            session.flush()
            return row.to_model()

    def count(self, status: ProcessingStatus | str | None = None) -> int:
        stmt = select(func.count()).select_from(ConversationRecord)
        if status is not None:
            stmt = stmt.where(ConversationRecord.status == _coerce_status(status))
        with self.store.query() as session:
            return session.scalar(stmt) or 0

    # -- Grouping and adjacency --

    def fetch_by_logical_event_id(self, logical_event_id: str) -> list[Conversation]:
        """All conversations in one logical event, ordered by start time."""
        stmt = (
            select(ConversationRecord)
            .where(ConversationRecord.logical_event_id == logical_event_id)
            .order_by(ConversationRecord.start_time, ConversationRecord.id)
        )
        with self.store.query() as session:
            return [row.to_model() for row in session.scalars(stmt)]

    def fetch_adjacent(
        self,
        conversation_id: int,
        window: timedelta,
    ) -> tuple[list[Conversation], list[Conversation]]:
        """Same-creator conversations near a reference conversation.

        Preceding conversations start within ``window`` before the reference
        start; succeeding ones start within ``window`` after its end (start
        when open-ended). The reference itself is never included.

        Returns:
            (preceding, succeeding), each in chronological order.

        Raises:
            ConversationNotFound: unknown conversation_id.
        """
        with self.store.query() as session:
            reference = _get_row(session, conversation_id)
            start = reference.start_time
            end = reference.end_time or start

            preceding_stmt = (
                select(ConversationRecord)
                .where(
                    ConversationRecord.creator_id == reference.creator_id,
                    ConversationRecord.id != reference.id,
                    ConversationRecord.start_time >= start - window,
                    ConversationRecord.start_time < start,
                )
                .order_by(ConversationRecord.start_time, ConversationRecord.id)
            )
            succeeding_stmt = (
                select(ConversationRecord)
                .where(
                    ConversationRecord.creator_id == reference.creator_id,
                    ConversationRecord.id != reference.id,
                    ConversationRecord.start_time > end,
                    ConversationRecord.start_time <= end + window,
                )
                .order_by(ConversationRecord.start_time, ConversationRecord.id)
            )
            preceding = [row.to_model() for row in session.scalars(preceding_stmt)]
            succeeding = [row.to_model() for row in session.scalars(succeeding_stmt)]
        return preceding, succeeding

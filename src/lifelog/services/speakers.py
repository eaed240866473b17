"""Speaker CRUD and upsert."""

from __future__ import annotations

import logging

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from lifelog.core.errors import ConstraintViolation, RecordNotFound
from lifelog.core.models import Speaker
from lifelog.db.engine import Store
from lifelog.db.records import SpeakerRecord

logger = logging.getLogger(__name__)


def _validate(speaker: Speaker) -> None:
    if not speaker.external_speaker_id:
        msg = "Speaker external_speaker_id must not be empty"
        raise ConstraintViolation(msg)
    if not speaker.name:
        msg = f"Speaker {speaker.external_speaker_id!r} has an empty name"
        raise ConstraintViolation(msg)


def _clear_other_primary(session: Session, keep_id: int) -> None:
    """At most one speaker may be the primary user."""
    session.execute(
        update(SpeakerRecord)
        .where(SpeakerRecord.id != keep_id, SpeakerRecord.is_primary_user.is_(True))
        .values(is_primary_user=False)
    )


class SpeakerRepository:
    """Typed access to the speakers table.

    Deletes are restricted: a speaker referenced by any utterance cannot be
    removed and the attempt raises ConstraintViolation.
    """

    def __init__(self, store: Store) -> None:
        self.store = store

    def create(self, speaker: Speaker) -> Speaker:
        _validate(speaker)
        with self.store.transaction() as session:
            row = SpeakerRecord(
                external_speaker_id=speaker.external_speaker_id,
                name=speaker.name,
                is_primary_user=speaker.is_primary_user,
            )
            session.add(row)
            session.flush()
            if row.is_primary_user:
                _clear_other_primary(session, row.id)
            return row.to_model()

    def fetch_by_id(self, speaker_id: int) -> Speaker | None:
        with self.store.query() as session:
            row = session.get(SpeakerRecord, speaker_id)
            return row.to_model() if row is not None else None

    def fetch_by_external_id(self, external_speaker_id: str) -> Speaker | None:
        stmt = select(SpeakerRecord).where(SpeakerRecord.external_speaker_id == external_speaker_id)
        with self.store.query() as session:
            row = session.scalar(stmt)
            return row.to_model() if row is not None else None

    def fetch_all(self, limit: int | None = None) -> list[Speaker]:
        """All speakers ordered by name."""
        stmt = select(SpeakerRecord).order_by(SpeakerRecord.name, SpeakerRecord.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.store.query() as session:
            return [row.to_model() for row in session.scalars(stmt)]

    def fetch_primary_user(self) -> Speaker | None:
        stmt = select(SpeakerRecord).where(SpeakerRecord.is_primary_user.is_(True)).limit(1)
        with self.store.query() as session:
            row = session.scalar(stmt)
            return row.to_model() if row is not None else None

    def update(self, speaker: Speaker) -> Speaker:
        """Overwrite name, external id and primary-user flag."""
        if speaker.id is None:
            msg = "Cannot update a speaker without an id"
            raise ConstraintViolation(msg)
        _validate(speaker)
        with self.store.transaction() as session:
            row = session.get(SpeakerRecord, speaker.id)
            if row is None:
                msg = f"Speaker not found: {speaker.id}"
                raise RecordNotFound(msg)
            row.external_speaker_id = speaker.external_speaker_id
            row.name = speaker.name
            row.is_primary_user = speaker.is_primary_user
            session.flush()
            if row.is_primary_user:
                _clear_other_primary(session, row.id)
            return row.to_model()

    def upsert_by_external_id(self, speaker: Speaker) -> Speaker:
        """Insert or update keyed by external_speaker_id.

        The name is always replaced. The primary-user flag is only raised
        here, never lowered; use update() to demote a speaker.
        """
        _validate(speaker)
        stmt = select(SpeakerRecord).where(
            SpeakerRecord.external_speaker_id == speaker.external_speaker_id
        )
        with self.store.transaction() as session:
            row = session.scalar(stmt)
            if row is None:
                row = SpeakerRecord(
                    external_speaker_id=speaker.external_speaker_id,
                    is_primary_user=False,
                )
                session.add(row)
                logger.debug("New speaker %r", speaker.external_speaker_id)
            row.name = speaker.name
            if speaker.is_primary_user:
                row.is_primary_user = True
            session.flush()
            if row.is_primary_user:
                _clear_other_primary(session, row.id)
            return row.to_model()

    def delete(self, speaker_id: int) -> bool:
        """Delete an unreferenced speaker.

        Raises:
            ConstraintViolation: the speaker is referenced by an utterance.
        """
        stmt = delete(SpeakerRecord).where(SpeakerRecord.id == speaker_id)
        with self.store.transaction() as session:
            result = session.execute(stmt)
            return bool(result.rowcount)

    def count(self) -> int:
        with self.store.query() as session:
            return session.scalar(select(func.count()).select_from(SpeakerRecord)) or 0

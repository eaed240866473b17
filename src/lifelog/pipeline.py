"""Ingestion pipeline: raw lifelogs in, clustered conversations out.

Each record is persisted in its own transaction: the clustering decision
(and any relabel of earlier conversations), the conversation upsert,
its speakers and its complete utterance list. A failure never leaves a
conversation without its utterances.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from lifelog.clustering import Assignment, ClusterState, LogicalEventClusterer
from lifelog.core.errors import (
    ConstraintViolation,
    IngestError,
    IngestInProgress,
    ParseError,
    StorageUnavailable,
)
from lifelog.core.models import Conversation, SettingKey, Speaker, Utterance
from lifelog.services.app_settings import ApplicationSettingRepository
from lifelog.services.conversations import ConversationRepository
from lifelog.services.speakers import SpeakerRepository
from lifelog.services.utterances import UtteranceRepository
from lifelog.sources.base import LifelogFetcher, RawLifelog, parse_lifelog

if TYPE_CHECKING:
    from lifelog.config import Settings
    from lifelog.db.engine import Store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordFailure:
    """A record that was skipped or rejected."""

    external_log_id: str | None
    reason: str


@dataclass(frozen=True)
class IngestResult:
    """Outcome of one ingest call."""

    inserted: tuple[str, ...] = ()
    updated: tuple[str, ...] = ()
    relabeled: tuple[str, ...] = ()
    skipped: tuple[RecordFailure, ...] = ()
    failed: tuple[RecordFailure, ...] = ()
    cancelled: bool = False

    @property
    def processed(self) -> int:
        return len(self.inserted) + len(self.updated)

    @property
    def ok(self) -> bool:
        """True when every record was stored."""
        return not (self.skipped or self.failed or self.cancelled)


@dataclass
class _Progress:
    inserted: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    relabeled: list[str] = field(default_factory=list)
    skipped: list[RecordFailure] = field(default_factory=list)
    failed: list[RecordFailure] = field(default_factory=list)
    cancelled: bool = False

    def note_relabeled(self, external_log_ids: Iterable[str]) -> None:
        for external_log_id in external_log_ids:
            if external_log_id not in self.relabeled:
                self.relabeled.append(external_log_id)

    def freeze(self) -> IngestResult:
        return IngestResult(
            inserted=tuple(self.inserted),
            updated=tuple(self.updated),
            relabeled=tuple(self.relabeled),
            skipped=tuple(self.skipped),
            failed=tuple(self.failed),
            cancelled=self.cancelled,
        )


class IngestionPipeline:
    """Turns batches of raw lifelogs into stored, clustered conversations.

    One ingest runs at a time per pipeline; a concurrent call raises
    IngestInProgress.
    """

    def __init__(self, store: Store, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or store.settings
        self.conversations = ConversationRepository(store)
        self.speakers = SpeakerRepository(store)
        self.utterances = UtteranceRepository(store)
        self.app_settings = ApplicationSettingRepository(store)
        self._running = threading.Lock()

    def ingest(
        self,
        batch: Iterable[RawLifelog | dict[str, Any]],
        cancel_event: threading.Event | None = None,
    ) -> IngestResult:
        """Validate, cluster and persist a batch of raw lifelogs.

        Args:
            batch: Raw records (dicts in API shape or RawLifelog models).
            cancel_event: When set, stop before the next record. Records
                already stored stay stored.

        Returns:
            IngestResult listing inserted, updated, skipped and failed ids.

        Raises:
            IngestInProgress: another ingest is running on this pipeline.
            IngestError: storage became unavailable. The error carries the
                partial result and the id of the record that failed.
        """
        if not self._running.acquire(blocking=False):
            msg = "An ingest is already running on this pipeline"
            raise IngestInProgress(msg)
        try:
            return self._ingest(batch, cancel_event)
        finally:
            self._running.release()

    def sync(
        self,
        fetch: LifelogFetcher,
        cancel_event: threading.Event | None = None,
    ) -> IngestResult:
        """Fetch one batch from an external source and ingest it."""
        batch = list(fetch())
        logger.info("Fetched %d lifelogs", len(batch))
        return self.ingest(batch, cancel_event)

    # -- Internals --

    def _parse(
        self,
        batch: Iterable[RawLifelog | dict[str, Any]],
        progress: _Progress,
    ) -> list[RawLifelog]:
        """Validate records, keep the last occurrence of each id, sort."""
        by_id: dict[str, RawLifelog] = {}
        for raw in batch:
            try:
                record = parse_lifelog(raw)
            except ParseError as exc:
                logger.warning("Skipping record: %s", exc)
                progress.skipped.append(RecordFailure(exc.external_log_id, str(exc)))
                continue
            if record.id in by_id:
                logger.debug("Duplicate lifelog %s in batch; keeping the last one", record.id)
            by_id[record.id] = record
        return sorted(by_id.values(), key=lambda r: (r.start_time, r.id))

    def _default_creator_id(self) -> str:
        stored = self.app_settings.get_value(SettingKey.PRIMARY_USER_CREATOR_ID)
        return stored or self.settings.creator_id

    def _ingest(
        self,
        batch: Iterable[RawLifelog | dict[str, Any]],
        cancel_event: threading.Event | None,
    ) -> IngestResult:
        progress = _Progress()
        records = self._parse(batch, progress)
        if not records:
            return progress.freeze()

        batch_ids = {r.id for r in records}
        horizon = max(r.end_time or r.start_time for r in records) + self.settings.gap_threshold
        try:
            creator_id = self._default_creator_id()
            previous = self.conversations.fetch_latest_before(
                records[0].start_time, exclude_external_ids=batch_ids
            )
            between = self.conversations.fetch_between(
                records[0].start_time, horizon, exclude_external_ids=batch_ids
            )
        except StorageUnavailable as exc:
            msg = f"Storage unavailable before ingest: {exc}"
            raise IngestError(msg, result=progress.freeze()) from exc

        clusterer = LogicalEventClusterer(
            self.settings.gap_threshold, ClusterState.from_previous(previous)
        )
        # Stored conversations inside the batch's span carry the pass forward.
        steps: list[RawLifelog | Conversation] = sorted(
            [*records, *between],
            key=lambda item: (
                (item.start_time, item.external_log_id)
                if isinstance(item, Conversation)
                else (item.start_time, item.id)
            ),
        )

        for item in steps:
            if isinstance(item, Conversation):
                external_log_id = item.external_log_id
            else:
                external_log_id = item.id
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("Ingest cancelled before %s", external_log_id)
                    progress.cancelled = True
                    break

            checkpoint = replace(clusterer.state)
            try:
                if isinstance(item, Conversation):
                    self._advance_past(item, clusterer, progress)
                else:
                    self._persist(item, clusterer, creator_id, progress)
            except ConstraintViolation as exc:
                clusterer.state = checkpoint
                logger.warning("Rejected lifelog %s: %s", external_log_id, exc)
                if external_log_id in batch_ids:
                    progress.failed.append(RecordFailure(external_log_id, str(exc)))
            except StorageUnavailable as exc:
                logger.error("Storage unavailable while ingesting %s: %s", external_log_id, exc)
                msg = f"Storage unavailable while ingesting {external_log_id}: {exc}"
                raise IngestError(
                    msg, result=progress.freeze(), external_log_id=external_log_id
                ) from exc

        result = progress.freeze()
        logger.info(
            "Ingested %d lifelogs (%d new, %d updated, %d skipped, %d failed)",
            result.processed,
            len(result.inserted),
            len(result.updated),
            len(result.skipped),
            len(result.failed),
        )
        return result

    def _persist(
        self,
        record: RawLifelog,
        clusterer: LogicalEventClusterer,
        default_creator_id: str,
        progress: _Progress,
    ) -> None:
        conversation = conversation_from_record(record, default_creator_id)

        with self.store.transaction():
            stored = self.conversations.fetch_by_external_id(record.id)
            assignment = clusterer.assign(conversation, stored)
            relabeled = self._relabel(assignment)

            saved = self.conversations.upsert_by_external_id(
                replace(conversation, logical_event_id=assignment.logical_event_id)
            )
            speaker_ids = self._save_speakers(record)
            self.utterances.save_batch(saved.id, self._build_utterances(record, speaker_ids))

        # Only count once the transaction has committed.
        progress.note_relabeled(relabeled)
        if stored is None:
            progress.inserted.append(record.id)
        else:
            progress.updated.append(record.id)

    def _advance_past(
        self,
        conversation: Conversation,
        clusterer: LogicalEventClusterer,
        progress: _Progress,
    ) -> None:
        """Feed a stored conversation outside the batch to the clusterer."""
        assignment = clusterer.observe(conversation)
        if assignment is None:
            return

        with self.store.transaction():
            relabeled = self._relabel(assignment)
            if conversation.logical_event_id != assignment.logical_event_id:
                self.conversations.assign_logical_event(conversation.id, assignment.logical_event_id)
                relabeled.append(conversation.external_log_id)

        progress.note_relabeled(relabeled)

    def _relabel(self, assignment: Assignment) -> list[str]:
        """Move earlier conversations into the assigned group; returns their ids."""
        moved = []
        for earlier in assignment.relabeled:
            current = self.conversations.fetch_by_external_id(earlier.external_log_id)
            if current is not None and current.logical_event_id != assignment.logical_event_id:
                self.conversations.assign_logical_event(current.id, assignment.logical_event_id)
                moved.append(current.external_log_id)
        return moved

    def _save_speakers(self, record: RawLifelog) -> dict[str, int]:
        """Upsert each distinct speaker of a record; returns ids by name."""
        primary: dict[str, bool] = {}
        for content in record.contents:
            name = (content.speaker_name or "").strip()
            if name:
                primary[name] = primary.get(name, False) or content.is_user

        ids = {}
        for name, is_user in primary.items():
            speaker = self.speakers.upsert_by_external_id(
                Speaker(external_speaker_id=name, name=name, is_primary_user=is_user)
            )
            ids[name] = speaker.id
        return ids

    def _build_utterances(self, record: RawLifelog, speaker_ids: dict[str, int]) -> list[Utterance]:
        utterances = []
        for content in record.contents:
            text = content.primary_text
            if text is None or not text.strip():
                continue
            if content.start_time is not None:
                start = content.start_time
            elif content.start_offset_ms is not None:
                start = record.start_time + timedelta(milliseconds=content.start_offset_ms)
            else:
                start = record.start_time
            name = (content.speaker_name or "").strip()
            utterances.append(
                Utterance(
                    text_content=text,
                    start_time=start,
                    end_time=content.end_time,
                    start_offset_ms=content.start_offset_ms,
                    end_offset_ms=content.end_offset_ms,
                    sequence_in_conversation=len(utterances),
                    speaker_id=speaker_ids.get(name),
                    content_type=content.type or None,
                )
            )
        return utterances


def conversation_from_record(record: RawLifelog, creator_id: str) -> Conversation:
    """Conversation value for a raw record, before clustering."""
    return Conversation(
        external_log_id=record.id,
        title=record.title,
        start_time=record.start_time,
        end_time=record.end_time,
        creator_id=record.creator_id or creator_id,
        full_text=record.markdown,
    )


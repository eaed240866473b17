"""Logical event clustering.

Conversations whose gap to the previous conversation is at most the gap
threshold belong to the same logical event. Clustering is a single forward
pass over conversations sorted by (start_time, external_log_id):

- a stored conversation keeps its group while its times are unchanged or
  it is still contiguous; a contiguous run founded earlier in the pass is
  absorbed into that group
- a contiguous conversation joins the current group
- a contiguous conversation after an ungrouped one founds a group together
  with it (the earlier conversation is relabeled)
- a non-contiguous conversation keeps a stored group that differs from the
  current one, otherwise founds a new group

Stored groups are only ever extended, never split. Group ids are derived
from the external id of the group's first member, so the same data always
yields the same ids regardless of batch boundaries.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from lifelog.core.models import Conversation

logger = logging.getLogger(__name__)

LOGICAL_EVENT_NAMESPACE = uuid.UUID("6f1c0a52-8d3e-4b7a-9e1f-2c5d7a4b3e91")


def group_id_for(external_log_id: str) -> str:
    """Logical event id for a group founded by this conversation."""
    return str(uuid.uuid5(LOGICAL_EVENT_NAMESPACE, external_log_id))


def sort_key(conversation: Conversation) -> tuple[datetime, str]:
    return (conversation.start_time, conversation.external_log_id)


def _same_times(a: Conversation, b: Conversation) -> bool:
    return a.start_time == b.start_time and a.end_time == b.end_time


@dataclass
class ClusterState:
    """Where the forward pass currently stands.

    run holds the members of the current group when that group was founded
    during this pass; it is empty while the current group is a stored one.
    """

    last_end_time: datetime | None = None
    current_group_id: str | None = None
    previous: Conversation | None = None
    run: tuple[Conversation, ...] = ()

    @classmethod
    def from_previous(cls, previous: Conversation | None) -> ClusterState:
        """Seed state from the last conversation before a batch."""
        if previous is None:
            return cls()
        return cls(
            last_end_time=previous.effective_end_time,
            current_group_id=previous.logical_event_id,
            previous=previous,
        )


@dataclass(frozen=True)
class Assignment:
    """Clustering decision for one conversation.

    relabeled lists earlier conversations that have to move into
    logical_event_id as well.
    """

    logical_event_id: str
    relabeled: tuple[Conversation, ...] = ()


class LogicalEventClusterer:
    """Stateful single-pass clusterer.

    Feed conversations in sort_key order through assign() (incoming) and
    observe() (stored, not being re-ingested). The caller is responsible for
    persisting each Assignment, including relabels.
    """

    def __init__(self, gap_threshold: timedelta, state: ClusterState | None = None) -> None:
        self.gap_threshold = gap_threshold
        self.state = state or ClusterState()

    def is_contiguous(self, start_time: datetime) -> bool:
        """Whether a conversation starting at start_time continues the current run.

        Overlaps (negative gaps) count as contiguous.
        """
        if self.state.last_end_time is None:
            return False
        return start_time - self.state.last_end_time <= self.gap_threshold

    def _absorbable(self, group: str) -> tuple[Conversation, ...]:
        """Conversations to pull into a stored group met contiguously."""
        state = self.state
        if state.run and state.current_group_id != group:
            return state.run
        if state.current_group_id is None and state.previous is not None:
            return (state.previous,)
        return ()

    def assign(self, conversation: Conversation, stored: Conversation | None = None) -> Assignment:
        """Decide the logical event of conversation and advance the state.

        Args:
            conversation: Incoming conversation (its own logical_event_id is
                ignored).
            stored: The persisted row with the same external id, if any.
        """
        state = self.state
        contiguous = self.is_contiguous(conversation.start_time)
        stored_group = stored.logical_event_id if stored is not None else None
        relabeled: tuple[Conversation, ...] = ()
        run: tuple[Conversation, ...] = ()
        starts_run = False

        if stored_group is not None and (contiguous or _same_times(stored, conversation)):
            group = stored_group
            if contiguous:
                relabeled = self._absorbable(group)
                if relabeled:
                    logger.debug(
                        "Extending %s with %d earlier conversations", group, len(relabeled)
                    )
        elif contiguous and state.current_group_id is not None:
            group = state.current_group_id
            run = state.run
        elif contiguous and state.previous is not None:
            group = group_id_for(state.previous.external_log_id)
            relabeled = (state.previous,)
            run = (replace(state.previous, logical_event_id=group),)
            logger.debug(
                "Founding %s with earlier conversation %s",
                group,
                state.previous.external_log_id,
            )
        elif not contiguous and stored_group is not None and stored_group != state.current_group_id:
            group = stored_group
        else:
            group = group_id_for(conversation.external_log_id)
            starts_run = True

        placed = replace(conversation, logical_event_id=group)
        state.last_end_time = placed.effective_end_time
        state.current_group_id = group
        state.previous = placed
        state.run = (*run, placed) if run or starts_run else ()
        return Assignment(logical_event_id=group, relabeled=relabeled)

    def observe(self, conversation: Conversation) -> Assignment | None:
        """Advance past a stored conversation that is not being re-ingested.

        A grouped conversation keeps its group. An ungrouped one joins a
        contiguous current group and otherwise stays ungrouped.

        Returns:
            The Assignment to persist, or None when nothing changes.
        """
        if conversation.logical_event_id is not None:
            return self.assign(conversation, conversation)
        if self.state.current_group_id is not None and self.is_contiguous(conversation.start_time):
            return self.assign(conversation)

        self.state = ClusterState.from_previous(conversation)
        return None


def cluster(
    conversations: Iterable[Conversation],
    gap_threshold: timedelta,
    *,
    previous: Conversation | None = None,
    stored: Mapping[str, Conversation] | None = None,
    observed: Iterable[Conversation] = (),
) -> dict[str, str]:
    """Cluster conversations without touching storage.

    Args:
        conversations: Conversations in any order.
        gap_threshold: Largest gap that still joins a logical event.
        previous: Last conversation before these, to continue its event.
        stored: Persisted rows by external id.
        observed: Persisted rows among these that are not being clustered
            again; they keep their groups but carry the pass forward.

    Returns:
        Mapping of external_log_id to logical_event_id, including any
        relabeled earlier conversation and any observed row that changes.
    """
    stored = stored or {}
    clusterer = LogicalEventClusterer(gap_threshold, ClusterState.from_previous(previous))
    steps = sorted(
        [*((c, True) for c in conversations), *((c, False) for c in observed)],
        key=lambda step: sort_key(step[0]),
    )
    groups: dict[str, str] = {}
    for conversation, incoming in steps:
        if incoming:
            assignment = clusterer.assign(conversation, stored.get(conversation.external_log_id))
        else:
            assignment = clusterer.observe(conversation)
            if assignment is None:
                continue
        for earlier in assignment.relabeled:
            groups[earlier.external_log_id] = assignment.logical_event_id
        if incoming or assignment.logical_event_id != conversation.logical_event_id:
            groups[conversation.external_log_id] = assignment.logical_event_id
    return groups

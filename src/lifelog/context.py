"""Conversation context resolution.

Given one conversation, find the conversations around it:

- logical_event mode: every conversation sharing its logical event id
- time_window mode (no logical event): same-creator conversations starting
  within the context window before its start or after its end
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from lifelog.core.errors import ConversationNotFound
from lifelog.core.models import Conversation
from lifelog.services.conversations import ConversationRepository
from lifelog.services.speakers import SpeakerRepository
from lifelog.services.utterances import UtteranceRepository

if TYPE_CHECKING:
    from lifelog.config import Settings
    from lifelog.db.engine import Store

logger = logging.getLogger(__name__)

LOGICAL_EVENT_MODE = "logical_event"
TIME_WINDOW_MODE = "time_window"


@dataclass(frozen=True)
class ConversationContext:
    """An anchor conversation with its neighbours, all chronological."""

    anchor: Conversation
    preceding: tuple[Conversation, ...]
    succeeding: tuple[Conversation, ...]
    transcript: str
    mode: str

    @property
    def conversations(self) -> tuple[Conversation, ...]:
        return (*self.preceding, self.anchor, *self.succeeding)


class ContextResolver:
    """Builds ConversationContext values from the store."""

    def __init__(self, store: Store, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or store.settings
        self.conversations = ConversationRepository(store)
        self.speakers = SpeakerRepository(store)
        self.utterances = UtteranceRepository(store)

    def resolve(
        self,
        conversation_id: int,
        window: timedelta | None = None,
    ) -> ConversationContext:
        """Context for one conversation.

        Args:
            conversation_id: Anchor conversation.
            window: Time window for ungrouped conversations
                (default: settings.context_window).

        Raises:
            ConversationNotFound: unknown conversation_id.
        """
        with self.store.query():
            anchor = self.conversations.fetch_by_id(conversation_id)
            if anchor is None:
                raise ConversationNotFound(conversation_id)

            if anchor.logical_event_id is not None:
                members = self.conversations.fetch_by_logical_event_id(anchor.logical_event_id)
                ids = [c.id for c in members]
                position = ids.index(anchor.id)
                preceding = members[:position]
                succeeding = members[position + 1 :]
                mode = LOGICAL_EVENT_MODE
            else:
                preceding, succeeding = self.conversations.fetch_adjacent(
                    conversation_id, window if window is not None else self.settings.context_window
                )
                mode = TIME_WINDOW_MODE

            transcript = self.transcript([*preceding, anchor, *succeeding])

        logger.debug(
            "Context for conversation %d (%s): %d before, %d after",
            conversation_id,
            mode,
            len(preceding),
            len(succeeding),
        )
        return ConversationContext(
            anchor=anchor,
            preceding=tuple(preceding),
            succeeding=tuple(succeeding),
            transcript=transcript,
            mode=mode,
        )

    def transcript(self, conversations: list[Conversation]) -> str:
        """Utterances of the given conversations as "Speaker: text" lines."""
        names: dict[int, str] = {}
        lines = []
        for conversation in conversations:
            for utterance in self.utterances.fetch_by_conversation(conversation.id):
                speaker_id = utterance.speaker_id
                if speaker_id is not None and speaker_id not in names:
                    speaker = self.speakers.fetch_by_id(speaker_id)
                    names[speaker_id] = speaker.name if speaker is not None else ""
                name = names.get(speaker_id) if speaker_id is not None else None
                text = utterance.text_content.strip()
                lines.append(f"{name}: {text}" if name else text)
        return "\n".join(lines)

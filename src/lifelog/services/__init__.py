"""Repository layer for Lifelog.

Every repository wraps a Store handle:
- conversations: Conversation CRUD, upsert, grouping and adjacency
- speakers: Speaker CRUD and upsert
- utterances: Utterance batches and full-text search
- suggestions: LLM suggestions and user feedback
- app_settings: key/value application settings
"""

from lifelog.services.app_settings import ApplicationSettingRepository
from lifelog.services.conversations import ConversationRepository
from lifelog.services.search import SearchHit
from lifelog.services.speakers import SpeakerRepository
from lifelog.services.suggestions import SuggestionRepository, UserActionRepository
from lifelog.services.utterances import UtteranceRepository

__all__ = [
    "ApplicationSettingRepository",
    "ConversationRepository",
    "SearchHit",
    "SpeakerRepository",
    "SuggestionRepository",
    "UserActionRepository",
    "UtteranceRepository",
]

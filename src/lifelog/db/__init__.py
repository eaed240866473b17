"""Database models, migrations and the Store handle for Lifelog.

One SQLite file holds conversations, speakers, utterances (with an FTS5
index), suggestions, user actions and application settings.
"""

from lifelog.db.engine import Store, initialize
from lifelog.db.migrations import MIGRATIONS, apply_migrations
from lifelog.db.records import (
    ApplicationSettingRecord,
    ConversationRecord,
    LifelogBase,
    SpeakerRecord,
    SuggestionRecord,
    UserActionRecord,
    UtteranceRecord,
)

__all__ = [
    "MIGRATIONS",
    "ApplicationSettingRecord",
    "ConversationRecord",
    "LifelogBase",
    "SpeakerRecord",
    "Store",
    "SuggestionRecord",
    "UserActionRecord",
    "UtteranceRecord",
    "apply_migrations",
    "initialize",
]

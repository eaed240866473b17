"""Lifelog - storage, clustering and search for lifelog transcripts.

Usage:
    from lifelog import IngestionPipeline, ContextResolver, initialize

    with initialize("lifelog.db") as store:
        result = IngestionPipeline(store).ingest(raw_lifelogs)
        context = ContextResolver(store).resolve(conversation_id)
"""

from lifelog.clustering import LogicalEventClusterer, cluster, group_id_for
from lifelog.context import ContextResolver, ConversationContext
from lifelog.core.models import (
    ApplicationSetting,
    Conversation,
    ProcessingStatus,
    SettingKey,
    Speaker,
    Suggestion,
    UserAction,
    Utterance,
)
from lifelog.db.engine import Store, initialize
from lifelog.pipeline import IngestionPipeline, IngestResult
from lifelog.services.search import SearchHit

__all__ = [
    "ApplicationSetting",
    "ContextResolver",
    "Conversation",
    "ConversationContext",
    "IngestResult",
    "IngestionPipeline",
    "LogicalEventClusterer",
    "ProcessingStatus",
    "SearchHit",
    "SettingKey",
    "Speaker",
    "Store",
    "Suggestion",
    "UserAction",
    "Utterance",
    "cluster",
    "group_id_for",
    "initialize",
]

__version__ = "0.1.0"

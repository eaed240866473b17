"""Lifelog sources and raw record models."""

from lifelog.sources.base import (
    LifelogFetcher,
    RawContent,
    RawLifelog,
    Source,
    parse_lifelog,
)
from lifelog.sources.limitless import LifelogExportSource, extract_lifelogs

__all__ = [
    "LifelogExportSource",
    "LifelogFetcher",
    "RawContent",
    "RawLifelog",
    "Source",
    "extract_lifelogs",
    "parse_lifelog",
]

"""FTS search over utterance text."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from lifelog.core.errors import ParseError
from lifelog.core.models import Utterance
from lifelog.db.records import UtteranceRecord


@dataclass(frozen=True)
class SearchHit:
    """A matching utterance with relevance info.

    ``rank`` is the negated bm25 score: higher means more relevant.
    """

    utterance: Utterance
    rank: float
    snippet: str | None = None


def build_match_query(query: str) -> str | None:
    """Turn free text into an FTS5 query matching all of its words.

    Each whitespace-separated term is quoted so punctuation such as
    apostrophes or hyphens cannot be read as query syntax. Returns None
    when nothing searchable is left.
    """
    terms = []
    for term in query.split():
        if not any(ch.isalnum() for ch in term):
            continue
        terms.append('"' + term.replace('"', '""') + '"')
    if not terms:
        return None
    return " ".join(terms)


SEARCH_SQL = """
    SELECT
        u.id,
        -bm25(utterances_fts) AS relevance,
        snippet(utterances_fts, 0, '<mark>', '</mark>', '...', 16) AS snippet
    FROM utterances_fts
    JOIN utterances u ON u.id = utterances_fts.rowid
    WHERE utterances_fts MATCH :query
    ORDER BY bm25(utterances_fts), u.start_time, u.id
    LIMIT :limit
"""

COUNT_SQL = """
    SELECT COUNT(*)
    FROM utterances_fts
    WHERE utterances_fts MATCH :query
"""


QUERY_ERROR_MARKERS = ("fts5", "syntax error", "unterminated string", "no such column")


def _is_query_error(exc: OperationalError) -> bool:
    message = str(exc.orig).lower()
    return any(marker in message for marker in QUERY_ERROR_MARKERS)


def _match_expression(query: str, raw: bool) -> str | None:
    if not query or not query.strip():
        return None
    if raw:
        return query.strip()
    return build_match_query(query)


def search_fts(
    session: Session,
    query: str,
    limit: int = 25,
    *,
    raw: bool = False,
) -> list[SearchHit]:
    """Search utterances using FTS5 full-text search.

    Args:
        session: Database session.
        query: Free text; with raw=True, an FTS5 query expression.
        limit: Maximum results to return.
        raw: Pass the query to FTS5 unmodified.

    Returns:
        SearchHits ordered by relevance (best first), then by utterance
        start time. Empty or whitespace-only queries return [].

    Raises:
        ParseError: a raw query is not valid FTS5 syntax.
    """
    match = _match_expression(query, raw)
    if match is None:
        return []

    try:
        rows = session.execute(text(SEARCH_SQL), {"query": match, "limit": limit}).fetchall()
    except OperationalError as exc:
        if raw and _is_query_error(exc):
            msg = f"Invalid search query {query!r}: {exc.orig}"
            raise ParseError(msg) from exc
        raise

    if not rows:
        return []

    ids = [row[0] for row in rows]
    records = {
        record.id: record
        for record in session.scalars(select(UtteranceRecord).where(UtteranceRecord.id.in_(ids)))
    }

    return [
        SearchHit(utterance=records[row[0]].to_model(), rank=float(row[1]), snippet=row[2])
        for row in rows
        if row[0] in records
    ]


def count_matches(session: Session, query: str, *, raw: bool = False) -> int:
    """Count matching utterances for a query."""
    match = _match_expression(query, raw)
    if match is None:
        return 0
    try:
        result = session.execute(text(COUNT_SQL), {"query": match})
    except OperationalError as exc:
        if raw and _is_query_error(exc):
            msg = f"Invalid search query {query!r}: {exc.orig}"
            raise ParseError(msg) from exc
        raise
    return result.scalar() or 0

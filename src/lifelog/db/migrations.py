"""Versioned schema migrations.

Migrations are applied in increasing version order, each inside its own
transaction, and recorded in schema_migrations. All DDL is written with
IF NOT EXISTS so re-running a partially applied version is harmless.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import Connection, Engine, text
from sqlalchemy.exc import SQLAlchemyError

from lifelog.core.errors import MigrationFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    statements: tuple[str, ...]


SCHEMA_MIGRATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    applied_at DATETIME NOT NULL
);
"""

CONVERSATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS conversations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    external_log_id VARCHAR(256) NOT NULL UNIQUE,
    title TEXT,
    start_time DATETIME NOT NULL,
    end_time DATETIME,
    creator_id VARCHAR(256) NOT NULL,
    full_text TEXT,
    logical_event_id VARCHAR(64),
    status VARCHAR(32) NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'processing', 'processed', 'error')),
    created_at DATETIME NOT NULL,
    CONSTRAINT ck_conversation_span CHECK (end_time IS NULL OR end_time >= start_time)
);
"""

SPEAKERS_TABLE = """
CREATE TABLE IF NOT EXISTS speakers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    external_speaker_id VARCHAR(256) NOT NULL UNIQUE,
    name VARCHAR(256) NOT NULL,
    is_primary_user BOOLEAN NOT NULL DEFAULT 0
);
"""

UTTERANCES_TABLE = """
CREATE TABLE IF NOT EXISTS utterances (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id INTEGER NOT NULL
        REFERENCES conversations (id) ON DELETE CASCADE,
    speaker_id INTEGER
        REFERENCES speakers (id) ON DELETE RESTRICT,
    text_content TEXT NOT NULL,
    start_time DATETIME NOT NULL,
    end_time DATETIME,
    start_offset_ms INTEGER,
    end_offset_ms INTEGER,
    sequence_in_conversation INTEGER NOT NULL,
    content_type VARCHAR(64),
    CONSTRAINT uq_utterance_sequence UNIQUE (conversation_id, sequence_in_conversation),
    CONSTRAINT ck_utterance_sequence CHECK (sequence_in_conversation >= 0)
);
"""

CORE_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_conversations_start ON conversations (start_time);",
    "CREATE INDEX IF NOT EXISTS idx_conversations_logical_event ON conversations (logical_event_id);",
    "CREATE INDEX IF NOT EXISTS idx_conversations_creator_start ON conversations (creator_id, start_time);",
    "CREATE INDEX IF NOT EXISTS idx_conversations_status_start ON conversations (status, start_time);",
    "CREATE INDEX IF NOT EXISTS idx_utterances_speaker ON utterances (speaker_id);",
    "CREATE INDEX IF NOT EXISTS idx_utterances_start ON utterances (start_time);",
)

# FTS5 setup SQL
# External content table keyed by utterances.id, kept in sync by triggers
FTS_CREATE_TABLE = """
CREATE VIRTUAL TABLE IF NOT EXISTS utterances_fts USING fts5(
    text_content,
    content='utterances',
    content_rowid='id',
    tokenize='porter unicode61'
);
"""

FTS_INSERT_TRIGGER = """
CREATE TRIGGER IF NOT EXISTS utterances_fts_insert AFTER INSERT ON utterances BEGIN
    INSERT INTO utterances_fts(rowid, text_content)
    VALUES (NEW.id, NEW.text_content);
END;
"""

FTS_UPDATE_TRIGGER = """
CREATE TRIGGER IF NOT EXISTS utterances_fts_update AFTER UPDATE ON utterances BEGIN
    INSERT INTO utterances_fts(utterances_fts, rowid, text_content)
    VALUES ('delete', OLD.id, OLD.text_content);
    INSERT INTO utterances_fts(rowid, text_content)
    VALUES (NEW.id, NEW.text_content);
END;
"""

FTS_DELETE_TRIGGER = """
CREATE TRIGGER IF NOT EXISTS utterances_fts_delete AFTER DELETE ON utterances BEGIN
    INSERT INTO utterances_fts(utterances_fts, rowid, text_content)
    VALUES ('delete', OLD.id, OLD.text_content);
END;
"""

FTS_REBUILD = "INSERT INTO utterances_fts(utterances_fts) VALUES ('rebuild');"

SUGGESTIONS_TABLE = """
CREATE TABLE IF NOT EXISTS suggestions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id INTEGER NOT NULL
        REFERENCES conversations (id) ON DELETE CASCADE,
    triggering_utterance_id_start INTEGER
        REFERENCES utterances (id) ON DELETE SET NULL,
    triggering_utterance_id_end INTEGER
        REFERENCES utterances (id) ON DELETE SET NULL,
    triggering_snippet_text TEXT,
    llm_name VARCHAR(128),
    llm_prompt_version VARCHAR(64),
    llm_raw_response TEXT,
    suggested_item_type VARCHAR(32) NOT NULL
        CHECK (suggested_item_type IN ('event', 'task', 'reminder')),
    extracted_title TEXT,
    extracted_start_date DATETIME,
    extracted_end_date DATETIME,
    extracted_location TEXT,
    extracted_details TEXT,
    extracted_attendees TEXT,
    confidence_score FLOAT,
    status VARCHAR(32) NOT NULL
        CHECK (status IN ('pending_review', 'accepted', 'declined', 'auto_added')),
    external_item_id VARCHAR(256),
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL
);
"""

USER_ACTIONS_TABLE = """
CREATE TABLE IF NOT EXISTS user_actions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    suggestion_id INTEGER NOT NULL
        REFERENCES suggestions (id) ON DELETE CASCADE,
    action_type VARCHAR(32) NOT NULL
        CHECK (action_type IN ('accepted', 'declined', 'edited_accepted')),
    corrected_item_type VARCHAR(32),
    corrected_title TEXT,
    decline_reason TEXT,
    action_timestamp DATETIME NOT NULL
);
"""

SUGGESTION_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_suggestions_conversation ON suggestions (conversation_id);",
    "CREATE INDEX IF NOT EXISTS idx_suggestions_status ON suggestions (status);",
    "CREATE INDEX IF NOT EXISTS idx_user_actions_suggestion ON user_actions (suggestion_id);",
)

APPLICATION_SETTINGS_TABLE = """
CREATE TABLE IF NOT EXISTS application_settings (
    key VARCHAR(64) PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at DATETIME NOT NULL
);
"""

MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        1,
        "core tables",
        (CONVERSATIONS_TABLE, SPEAKERS_TABLE, UTTERANCES_TABLE, *CORE_INDEXES),
    ),
    Migration(
        2,
        "utterance full-text index",
        (FTS_CREATE_TABLE, FTS_INSERT_TRIGGER, FTS_UPDATE_TRIGGER, FTS_DELETE_TRIGGER, FTS_REBUILD),
    ),
    Migration(
        3,
        "suggestion and feedback tables",
        (SUGGESTIONS_TABLE, USER_ACTIONS_TABLE, *SUGGESTION_INDEXES),
    ),
    Migration(4, "application settings", (APPLICATION_SETTINGS_TABLE,)),
)


def applied_versions(conn: Connection) -> set[int]:
    """Versions already recorded in schema_migrations."""
    rows = conn.execute(text("SELECT version FROM schema_migrations"))
    return {int(row[0]) for row in rows}


def rebuild_fts(conn: Connection) -> None:
    """Rebuild the utterance FTS index from the utterances table."""
    conn.execute(text(FTS_REBUILD))


def _check_order(migrations: tuple[Migration, ...]) -> None:
    versions = [m.version for m in migrations]
    if any(b <= a for a, b in zip(versions, versions[1:])):
        msg = f"Migration versions must be strictly increasing: {versions}"
        raise MigrationFailure(msg)


def apply_migrations(
    engine: Engine,
    migrations: tuple[Migration, ...] = MIGRATIONS,
) -> list[int]:
    """Apply all pending migrations. Returns the versions applied by this call.

    Raises:
        MigrationFailure: if any migration fails. The failing version is
            rolled back; earlier versions stay applied.
    """
    _check_order(migrations)

    try:
        with engine.begin() as conn:
            conn.execute(text(SCHEMA_MIGRATIONS_TABLE))
            done = applied_versions(conn)
    except SQLAlchemyError as exc:
        msg = f"Cannot read schema version: {exc}"
        raise MigrationFailure(msg) from exc

    known = {m.version for m in migrations}
    unknown = sorted(done - known)
    if unknown and max(unknown) > max(known, default=0):
        msg = f"Database schema version {max(unknown)} is newer than this release supports"
        raise MigrationFailure(msg, version=max(unknown))

    applied: list[int] = []
    for migration in migrations:
        if migration.version in done:
            continue
        logger.info("Applying migration v%d: %s", migration.version, migration.name)
        try:
            with engine.begin() as conn:
                for statement in migration.statements:
                    conn.execute(text(statement))
                conn.execute(
                    text(
                        "INSERT INTO schema_migrations (version, name, applied_at) "
                        "VALUES (:version, :name, :applied_at)"
                    ),
                    {
                        "version": migration.version,
                        "name": migration.name,
                        "applied_at": datetime.now(timezone.utc).isoformat(),
                    },
                )
        except SQLAlchemyError as exc:
            logger.error("Migration v%d failed: %s", migration.version, exc)
            msg = f"Migration v{migration.version} ({migration.name}) failed: {exc}"
            raise MigrationFailure(msg, version=migration.version) from exc
        applied.append(migration.version)

    return applied

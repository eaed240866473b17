"""Persistent key/value application settings."""

from __future__ import annotations

from sqlalchemy import delete, select

from lifelog.core.errors import ConstraintViolation
from lifelog.core.models import ApplicationSetting, SettingKey
from lifelog.db.engine import Store
from lifelog.db.records import ApplicationSettingRecord, utcnow


def _key(key: SettingKey | str) -> SettingKey:
    try:
        return SettingKey(key)
    except ValueError as exc:
        msg = f"Unknown setting key: {key!r}"
        raise ConstraintViolation(msg) from exc


class ApplicationSettingRepository:
    """Settings stored in the database, keyed by SettingKey."""

    def __init__(self, store: Store) -> None:
        self.store = store

    def set_value(self, key: SettingKey | str, value: str) -> ApplicationSetting:
        """Insert or replace one setting."""
        setting_key = _key(key)
        with self.store.transaction() as session:
            row = session.get(ApplicationSettingRecord, setting_key)
            if row is None:
                row = ApplicationSettingRecord(key=setting_key)
                session.add(row)
            row.value = value
            row.updated_at = utcnow()
            session.flush()
            return row.to_model()

    def get(self, key: SettingKey | str) -> ApplicationSetting | None:
        setting_key = _key(key)
        with self.store.query() as session:
            row = session.get(ApplicationSettingRecord, setting_key)
            return row.to_model() if row is not None else None

    def get_value(self, key: SettingKey | str, default: str | None = None) -> str | None:
        setting = self.get(key)
        return setting.value if setting is not None else default

    def fetch_all(self) -> list[ApplicationSetting]:
        stmt = select(ApplicationSettingRecord).order_by(ApplicationSettingRecord.key)
        with self.store.query() as session:
            return [row.to_model() for row in session.scalars(stmt)]

    def delete(self, key: SettingKey | str) -> bool:
        stmt = delete(ApplicationSettingRecord).where(ApplicationSettingRecord.key == _key(key))
        with self.store.transaction() as session:
            return bool(session.execute(stmt).rowcount)

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, String, Text, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from .config import Settings
from .store import InMemoryReminderStore, JsonFileReminderStore, PersistenceError, PersistentReminderStore


class ReminderStoreBase(DeclarativeBase):
    pass


class _ReminderStoreStateRow(ReminderStoreBase):
    __tablename__ = "reminder_store_state"

    store_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class SqlAlchemyReminderStore(PersistentReminderStore):
    """Same document as the JSON file backend, kept in a single database row."""

    _STORE_KEY = "default"

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise RuntimeError("DATABASE_URL is required for REMINDER_STORE_BACKEND=postgres")
        super().__init__()
        self._engine = create_engine(database_url, future=True, pool_pre_ping=True)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False, future=True)
        if database_url.startswith("sqlite"):
            ReminderStoreBase.metadata.create_all(self._engine)
        self._load_state()

    def _read_payload(self) -> str | None:
        try:
            with self._session_factory() as session:
                row = session.get(_ReminderStoreStateRow, self._STORE_KEY)
                return None if row is None else row.payload
        except SQLAlchemyError as exc:
            raise OSError(f"unable to read reminder store state: {exc}") from exc

    def _write_payload(self, payload: str) -> None:
        now = _now_utc()
        try:
            with self._session_factory() as session:
                with session.begin():
                    row = session.get(_ReminderStoreStateRow, self._STORE_KEY)
                    if row is None:
                        session.add(
                            _ReminderStoreStateRow(
                                store_key=self._STORE_KEY,
                                payload=payload,
                                updated_at=now,
                            )
                        )
                        return
                    row.payload = payload
                    row.updated_at = now
        except SQLAlchemyError as exc:
            raise PersistenceError(f"unable to write reminder store state: {exc}") from exc


def create_reminder_store(settings: Settings) -> InMemoryReminderStore:
    backend = settings.reminder_store_backend.strip().lower()
    if backend == "json":
        return JsonFileReminderStore(settings.data_path)
    if backend == "postgres":
        return SqlAlchemyReminderStore(settings.database_url)
    if backend == "inmemory":
        return InMemoryReminderStore()
    raise RuntimeError(f"unsupported REMINDER_STORE_BACKEND: {settings.reminder_store_backend}")

from __future__ import annotations

import json
import logging
import os
import secrets
from datetime import datetime
from pathlib import Path
from threading import RLock
from typing import Callable, Iterable, Mapping, Protocol

from pydantic import ValidationError

from .models import (
    PushSubscription,
    Reminder,
    ReminderSpec,
    StoreDocument,
    User,
    UserSummary,
    coerce_utc,
)

logger = logging.getLogger(__name__)


class NotFoundError(KeyError):
    """Raised when an operation references an id that does not exist."""


class UserNotFoundError(NotFoundError):
    """Raised when no user matches the given id or endpoint."""


class PersistenceError(RuntimeError):
    """Raised when the store state cannot be written durably."""


class ReminderStore(Protocol):
    def reset(self) -> None: ...

    def find_by_endpoint(self, endpoint: str) -> User | None: ...

    def upsert(self, subscription: PushSubscription) -> User: ...

    def add_reminder(self, endpoint: str, spec: ReminderSpec) -> Reminder: ...

    def delete_reminder(self, reminder_id: str) -> bool: ...

    def remove_user(self, endpoint: str) -> bool: ...

    def list_summary(self) -> list[UserSummary]: ...

    def get_reminders(self, user_id: str) -> list[Reminder]: ...

    def snapshot(self) -> list[User]: ...

    def apply_delivery_results(
        self,
        sent: Mapping[str, datetime],
        gone_endpoints: Iterable[str],
    ) -> int: ...


class InMemoryReminderStore:
    """Users keyed by push endpoint, guarded by a single re-entrant lock.

    Every read hands out deep copies so callers never share live state.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._users: list[User] = []
        self._issued_ids: set[str] = set()
        self._revision = 0

    def reset(self) -> None:
        with self._lock:
            self._users.clear()
            self._issued_ids.clear()
            self._revision += 1

    def _new_id(self, nbytes: int) -> str:
        while True:
            candidate = secrets.token_hex(nbytes)
            if candidate not in self._issued_ids:
                self._issued_ids.add(candidate)
                return candidate

    def _find(self, endpoint: str) -> User | None:
        for user in self._users:
            if user.subscription.endpoint == endpoint:
                return user
        return None

    def find_by_endpoint(self, endpoint: str) -> User | None:
        with self._lock:
            user = self._find(endpoint)
            return None if user is None else user.model_copy(deep=True)

    def upsert(self, subscription: PushSubscription) -> User:
        with self._lock:
            user = self._find(subscription.endpoint)
            if user is None:
                user = User(id=self._new_id(8), subscription=subscription.model_copy(deep=True))
                self._users.append(user)
            else:
                user.subscription = subscription.model_copy(deep=True)
            self._revision += 1
            return user.model_copy(deep=True)

    def add_reminder(self, endpoint: str, spec: ReminderSpec) -> Reminder:
        with self._lock:
            user = self._find(endpoint)
            if user is None:
                raise UserNotFoundError(endpoint)
            reminder = Reminder(
                id=self._new_id(6),
                time=spec.time,
                timezone_offset_minutes=spec.timezone_offset_minutes,
                repeat_every_minutes=spec.repeat_every_minutes,
                repeat_until=spec.repeat_until,
            )
            user.reminders.append(reminder)
            self._revision += 1
            return reminder.model_copy(deep=True)

    def delete_reminder(self, reminder_id: str) -> bool:
        with self._lock:
            for user in self._users:
                for index, reminder in enumerate(user.reminders):
                    if reminder.id == reminder_id:
                        del user.reminders[index]
                        self._revision += 1
                        return True
            return False

    def remove_user(self, endpoint: str) -> bool:
        with self._lock:
            user = self._find(endpoint)
            if user is None:
                return False
            self._users.remove(user)
            self._revision += 1
            return True

    def list_summary(self) -> list[UserSummary]:
        with self._lock:
            return [UserSummary(id=user.id, reminders=len(user.reminders)) for user in self._users]

    def get_reminders(self, user_id: str) -> list[Reminder]:
        with self._lock:
            for user in self._users:
                if user.id == user_id:
                    return [reminder.model_copy(deep=True) for reminder in user.reminders]
            raise UserNotFoundError(user_id)

    def snapshot(self) -> list[User]:
        with self._lock:
            return [user.model_copy(deep=True) for user in self._users]

    def apply_delivery_results(
        self,
        sent: Mapping[str, datetime],
        gone_endpoints: Iterable[str],
    ) -> int:
        """Record confirmed sends and drop gone subscriptions; returns users removed.

        Reminders deleted since the snapshot are ignored, and ``last_sent_at``
        never moves backwards.
        """
        gone = set(gone_endpoints)
        with self._lock:
            changed = False
            for user in self._users:
                for reminder in user.reminders:
                    sent_at = sent.get(reminder.id)
                    if sent_at is None:
                        continue
                    sent_at = coerce_utc(sent_at)
                    if reminder.last_sent_at is None or sent_at > reminder.last_sent_at:
                        reminder.last_sent_at = sent_at
                        changed = True
            kept = [user for user in self._users if user.subscription.endpoint not in gone]
            removed = len(self._users) - len(kept)
            if removed or changed:
                self._users = kept
                self._revision += 1
            return removed

    def _document(self) -> StoreDocument:
        return StoreDocument(users=self._users)

    def _load_document(self, document: StoreDocument) -> None:
        self._users = [user.model_copy(deep=True) for user in document.users]
        self._issued_ids = {user.id for user in self._users}
        self._issued_ids.update(reminder.id for user in self._users for reminder in user.reminders)


class PersistentReminderStore(InMemoryReminderStore):
    """In-memory store that writes its full state after every mutation.

    Subclasses provide ``_read_payload`` and ``_write_payload``.
    """

    _PERSISTING_METHODS = (
        "reset",
        "upsert",
        "add_reminder",
        "delete_reminder",
        "remove_user",
        "apply_delivery_results",
    )

    def _read_payload(self) -> str | None:
        raise NotImplementedError

    def _write_payload(self, payload: str) -> None:
        raise NotImplementedError

    def _load_state(self) -> None:
        # A state that cannot be read starts the service empty; the next
        # successful write replaces whatever was on disk.
        try:
            raw = self._read_payload()
            if raw is None:
                return
            document = StoreDocument.model_validate(json.loads(raw))
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("reminder store state unreadable, starting empty: %s", exc)
            return
        with self._lock:
            self._load_document(document)
        logger.info("loaded %s users from reminder store", len(document.users))

    def _persist_state(self) -> None:
        with self._lock:
            payload = json.dumps(self._document().model_dump(by_alias=True, mode="json"), indent=2)
            self._write_payload(payload)


def _make_persisting_method(method_name: str) -> Callable:
    base_method = getattr(InMemoryReminderStore, method_name)

    def _wrapped(self: PersistentReminderStore, *args, **kwargs):
        with self._lock:
            before = self._revision
            result = base_method(self, *args, **kwargs)
            if self._revision != before:
                self._persist_state()
            return result

    _wrapped.__name__ = method_name
    _wrapped.__doc__ = base_method.__doc__
    return _wrapped


for _method_name in PersistentReminderStore._PERSISTING_METHODS:
    setattr(PersistentReminderStore, _method_name, _make_persisting_method(_method_name))


class JsonFileReminderStore(PersistentReminderStore):
    """Keeps the whole store in one JSON file, replaced atomically on write."""

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self._path = Path(path)
        self._load_state()

    @property
    def path(self) -> Path:
        return self._path

    def _read_payload(self) -> str | None:
        if not self._path.exists():
            return None
        return self._path.read_text(encoding="utf-8")

    def _write_payload(self, payload: str) -> None:
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as exc:
            raise PersistenceError(f"unable to write reminder store to {self._path}: {exc}") from exc

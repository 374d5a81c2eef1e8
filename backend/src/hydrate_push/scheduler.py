from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from apscheduler.schedulers.background import BackgroundScheduler

from .matcher import should_fire
from .models import BroadcastResult, NotificationPayload, Reminder, coerce_utc
from .push import Delivered, PermanentFailure, PushSender, mask_endpoint
from .store import ReminderStore

logger = logging.getLogger(__name__)

REMINDER_TITLE = "Hydrate — Reminder"
TICK_JOB_ID = "hydrate-reminder-tick"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TickReport:
    run_at: datetime
    evaluated_count: int = 0
    fired_count: int = 0
    delivered_count: int = 0
    transient_failure_count: int = 0
    removed_user_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    failed: bool = False


class ReminderScheduler:
    """Evaluates every stored reminder against the clock and delivers the due ones."""

    def __init__(
        self,
        store: ReminderStore,
        sender: PushSender,
        *,
        frontend_url: str,
        tick_budget_seconds: float = 50,
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        self._store = store
        self._sender = sender
        self._frontend_url = frontend_url
        self._tick_budget_seconds = tick_budget_seconds
        self._clock = clock

    def reminder_payload(self, reminder: Reminder) -> dict[str, Any]:
        return {
            "title": REMINDER_TITLE,
            "body": f"Time: {reminder.time} — Drink water 💧",
            "url": self._frontend_url,
        }

    def default_broadcast_payload(self) -> dict[str, Any]:
        return NotificationPayload(url=self._frontend_url).model_dump()

    def run_tick(self, now: datetime | None = None) -> TickReport:
        now = self._clock() if now is None else coerce_utc(now)
        report = TickReport(run_at=now)
        try:
            users = self._store.snapshot()
        except Exception:
            logger.exception("reminder tick could not read the store")
            report.failed = True
            return report

        started = time.monotonic()
        budget_exhausted = False
        sent: dict[str, datetime] = {}
        gone: set[str] = set()

        for user in users:
            endpoint = user.subscription.endpoint
            for reminder in user.reminders:
                if endpoint in gone:
                    break
                report.evaluated_count += 1
                try:
                    if not should_fire(reminder, now):
                        continue
                    if time.monotonic() - started > self._tick_budget_seconds:
                        if not budget_exhausted:
                            logger.warning(
                                "reminder tick exceeded %ss budget; remaining due reminders wait for the next tick",
                                self._tick_budget_seconds,
                            )
                            budget_exhausted = True
                        report.skipped_count += 1
                        continue
                    report.fired_count += 1
                    outcome = self._sender.deliver(user.subscription, self.reminder_payload(reminder))
                except Exception:
                    logger.exception("reminder %s check failed", reminder.id)
                    report.error_count += 1
                    continue

                if isinstance(outcome, Delivered):
                    sent[reminder.id] = now
                    report.delivered_count += 1
                    logger.info("sent reminder %s to %s time %s", reminder.id, mask_endpoint(endpoint), reminder.time)
                elif isinstance(outcome, PermanentFailure):
                    gone.add(endpoint)
                    logger.warning(
                        "push endpoint %s gone (HTTP %s); removing user %s",
                        mask_endpoint(endpoint),
                        outcome.status_code,
                        user.id,
                    )
                else:
                    report.transient_failure_count += 1
                    logger.warning("send error for reminder %s: %s", reminder.id, outcome.detail)

        if sent or gone:
            try:
                report.removed_user_count = self._store.apply_delivery_results(sent, gone)
            except Exception:
                logger.exception("reminder tick could not save delivery results")
                report.failed = True
        return report

    def broadcast(self, payload: dict[str, Any] | None = None) -> list[BroadcastResult]:
        """Send ``payload`` to every subscriber regardless of their reminders."""
        message = payload if payload is not None else self.default_broadcast_payload()
        results: list[BroadcastResult] = []
        gone: set[str] = set()

        for user in self._store.snapshot():
            endpoint = user.subscription.endpoint
            try:
                outcome = self._sender.deliver(user.subscription, message)
            except Exception as exc:
                logger.exception("broadcast to %s failed", mask_endpoint(endpoint))
                results.append(BroadcastResult(endpoint=endpoint, success=False, error=str(exc)))
                continue
            if isinstance(outcome, Delivered):
                results.append(BroadcastResult(endpoint=endpoint, success=True))
                continue
            error: str | int = outcome.status_code if outcome.status_code is not None else outcome.detail
            results.append(BroadcastResult(endpoint=endpoint, success=False, error=error))
            if isinstance(outcome, PermanentFailure):
                gone.add(endpoint)

        if gone:
            removed = self._store.apply_delivery_results({}, gone)
            logger.info("broadcast removed %s gone subscriptions", removed)
        return results


def _next_minute(now: datetime) -> datetime:
    return now.replace(second=0, microsecond=0) + timedelta(minutes=1)


def start_background_scheduler(
    job: Callable[[], object],
    *,
    interval_seconds: int = 60,
) -> BackgroundScheduler:
    """Run ``job`` on a fixed interval aligned to the next whole minute.

    ``max_instances=1`` with ``coalesce`` means a slow tick delays the next
    one instead of overlapping it.
    """
    scheduler = BackgroundScheduler(timezone=timezone.utc)
    scheduler.add_job(
        job,
        "interval",
        seconds=interval_seconds,
        start_date=_next_minute(_now_utc()),
        id=TICK_JOB_ID,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.start()
    logger.info("reminder scheduler started (every %ss)", interval_seconds)
    return scheduler

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, HTTPException
from fastapi.responses import HTMLResponse, PlainTextResponse

from .config import ConfigurationError, Settings, get_settings
from .models import (
    AddReminderRequest,
    BroadcastRequest,
    BroadcastResponse,
    DeleteReminderRequest,
    HealthResponse,
    PushSubscription,
    RemindersResponse,
    SubscribeResponse,
    SubsResponse,
    SuccessResponse,
)
from .pages import render_status_page
from .push import PushSender, StubPushSender, WebPushSender
from .scheduler import ReminderScheduler, TickReport
from .store import UserNotFoundError
from .store_backends import create_reminder_store

logger = logging.getLogger(__name__)

_settings = get_settings()
router = APIRouter(tags=["reminders"])


def _create_push_sender(settings: Settings) -> PushSender:
    if settings.push_sender_type == "stub":
        return StubPushSender(enabled=True)
    return WebPushSender(
        vapid_public_key=settings.vapid_public_key,
        vapid_private_key=settings.vapid_private_key,
        vapid_subject=settings.vapid_subject,
        timeout_seconds=settings.push_timeout_seconds,
        ttl_seconds=settings.push_ttl_seconds,
    )


reminder_store = create_reminder_store(_settings)
push_sender: PushSender = _create_push_sender(_settings)


def _scheduler() -> ReminderScheduler:
    # Resolved per call so tests can swap the store or sender on this module.
    return ReminderScheduler(
        reminder_store,
        push_sender,
        frontend_url=_settings.frontend_url,
        tick_budget_seconds=_settings.scheduler_tick_budget_seconds,
    )


def run_scheduled_tick() -> TickReport:
    report = _scheduler().run_tick()
    if report.fired_count or report.failed:
        logger.info(
            "reminder tick: evaluated=%s fired=%s delivered=%s transient=%s removed=%s errors=%s",
            report.evaluated_count,
            report.fired_count,
            report.delivered_count,
            report.transient_failure_count,
            report.removed_user_count,
            report.error_count,
        )
    return report


@router.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(ok=True, time=int(time.time() * 1000))


@router.get("/vapidPublicKey", response_class=PlainTextResponse)
def vapid_public_key() -> str:
    if not _settings.vapid_public_key:
        raise HTTPException(status_code=500, detail="VAPID key not configured")
    return _settings.vapid_public_key


@router.post("/subscribe", response_model=SubscribeResponse)
def subscribe(payload: PushSubscription) -> SubscribeResponse:
    user = reminder_store.upsert(payload)
    return SubscribeResponse(user_id=user.id)


@router.post("/addReminder", response_model=RemindersResponse)
def add_reminder(payload: AddReminderRequest) -> RemindersResponse:
    user = reminder_store.upsert(payload.subscription)
    try:
        reminder_store.add_reminder(user.subscription.endpoint, payload.to_spec())
        reminders = reminder_store.get_reminders(user.id)
    except UserNotFoundError as exc:
        raise HTTPException(status_code=404, detail="user not found") from exc
    return RemindersResponse(reminders=reminders)


@router.post("/deleteReminder", response_model=SuccessResponse)
def delete_reminder(payload: DeleteReminderRequest) -> SuccessResponse:
    if not reminder_store.delete_reminder(payload.id):
        raise HTTPException(status_code=404, detail="not found")
    return SuccessResponse()


@router.get("/user/{user_id}/reminders", response_model=RemindersResponse)
def get_user_reminders(user_id: str) -> RemindersResponse:
    try:
        reminders = reminder_store.get_reminders(user_id)
    except UserNotFoundError as exc:
        raise HTTPException(status_code=404, detail="user not found") from exc
    return RemindersResponse(reminders=reminders)


@router.post("/sendNotification", response_model=BroadcastResponse, response_model_exclude_none=True)
def send_notification(payload: BroadcastRequest | None = None) -> BroadcastResponse:
    try:
        _settings.require_vapid()
    except ConfigurationError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    message = None
    if payload is not None and payload.payload is not None:
        message = payload.payload.model_dump(exclude_none=True)
    results = _scheduler().broadcast(message)
    return BroadcastResponse(results=results)


@router.get("/subs", response_model=SubsResponse)
def list_subscriptions() -> SubsResponse:
    users = reminder_store.list_summary()
    return SubsResponse(count=len(users), users=users)


@router.get("/", response_class=HTMLResponse)
def status_page() -> str:
    return render_status_page(frontend_url=_settings.frontend_url)

from __future__ import annotations

from dataclasses import replace

from fastapi.testclient import TestClient

from hydrate_push import api as api_module
from hydrate_push.main import create_app
from hydrate_push.push import StubPushSender
from hydrate_push.models import PushSubscription, User
from hydrate_push.store import InMemoryReminderStore, PersistenceError

_BASE_SETTINGS = api_module._settings


def _subscription(endpoint: str = "https://push.example.test/send/ep-001") -> dict:
    return {
        "endpoint": endpoint,
        "expirationTime": None,
        "keys": {"p256dh": "BPUBLICKEY", "auth": "AUTHSECRET"},
    }


def _reminder_payload(**overrides) -> dict:
    payload = {
        "subscription": _subscription(),
        "time": "09:00",
        "timezoneOffsetMinutes": -120,
        "repeatEveryMinutes": 30,
        "repeatUntil": "17:00",
    }
    payload.update(overrides)
    return payload


def _client(*, vapid: bool = True) -> TestClient:
    api_module.reminder_store = InMemoryReminderStore()
    api_module.push_sender = StubPushSender(enabled=True)
    api_module._settings = replace(
        _BASE_SETTINGS,
        vapid_public_key="BVAPIDPUBLIC" if vapid else None,
        vapid_private_key="vapid-private" if vapid else None,
        frontend_url="https://hydrate.example.test",
    )
    return TestClient(create_app())


def test_health() -> None:
    client = _client()

    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert isinstance(data["time"], int)


def test_status_page() -> None:
    client = _client()

    response = client.get("/")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert "Hydrate Backend" in response.text
    assert "https://hydrate.example.test" in response.text


def test_vapid_public_key() -> None:
    client = _client()

    response = client.get("/vapidPublicKey")

    assert response.status_code == 200
    assert response.text == "BVAPIDPUBLIC"


def test_vapid_public_key_unconfigured() -> None:
    client = _client(vapid=False)

    response = client.get("/vapidPublicKey")

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "VAPID key not configured"}


def test_subscribe_is_idempotent_per_endpoint() -> None:
    client = _client()

    first = client.post("/subscribe", json=_subscription())
    second = client.post("/subscribe", json=_subscription())

    assert first.status_code == 200
    assert first.json()["success"] is True
    assert first.json()["userId"] == second.json()["userId"]
    subs = client.get("/subs").json()
    assert subs == {"count": 1, "users": [{"id": first.json()["userId"], "reminders": 0}]}


def test_subscribe_requires_endpoint() -> None:
    client = _client()

    response = client.post("/subscribe", json={"keys": {"auth": "x"}})

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert "endpoint" in response.json()["error"]


def test_add_reminder_returns_all_reminders_for_user() -> None:
    client = _client()

    first = client.post("/addReminder", json=_reminder_payload())
    second = client.post("/addReminder", json=_reminder_payload(time="7:05", repeatEveryMinutes=None, repeatUntil=""))

    assert first.status_code == 200
    reminders = second.json()["reminders"]
    assert second.json()["success"] is True
    assert len(reminders) == 2
    assert set(reminders[0]) == {
        "id",
        "time",
        "timezoneOffsetMinutes",
        "repeatEveryMinutes",
        "repeatUntil",
        "lastSentISO",
    }
    assert reminders[0]["time"] == "09:00"
    assert reminders[0]["timezoneOffsetMinutes"] == -120
    assert reminders[0]["repeatUntil"] == "17:00"
    assert reminders[0]["lastSentISO"] is None
    assert reminders[1]["time"] == "07:05"
    assert reminders[1]["repeatEveryMinutes"] == 0
    assert reminders[1]["repeatUntil"] is None


def test_add_reminder_creates_user_for_new_endpoint() -> None:
    client = _client()

    client.post("/addReminder", json=_reminder_payload())

    subs = client.get("/subs").json()
    assert subs["count"] == 1
    assert subs["users"][0]["reminders"] == 1


def test_add_reminder_validation_errors() -> None:
    client = _client()

    missing_subscription = client.post("/addReminder", json={"time": "08:00"})
    missing_time = client.post("/addReminder", json={"subscription": _subscription()})
    bad_time = client.post("/addReminder", json=_reminder_payload(time="25:00"))
    negative_repeat = client.post("/addReminder", json=_reminder_payload(repeatEveryMinutes=-5))

    assert missing_subscription.status_code == 400
    assert missing_time.status_code == 400
    assert bad_time.status_code == 400
    assert negative_repeat.status_code == 400
    assert client.get("/subs").json()["count"] == 0


def test_user_reminders_lookup() -> None:
    client = _client()
    user_id = client.post("/subscribe", json=_subscription()).json()["userId"]
    client.post("/addReminder", json=_reminder_payload())

    found = client.get(f"/user/{user_id}/reminders")
    missing = client.get("/user/not-a-user/reminders")

    assert found.status_code == 200
    assert found.json()["success"] is True
    assert len(found.json()["reminders"]) == 1
    assert missing.status_code == 404
    assert missing.json() == {"success": False, "error": "user not found"}


def test_delete_reminder() -> None:
    client = _client()
    user_id = client.post("/subscribe", json=_subscription()).json()["userId"]
    reminder_id = client.post("/addReminder", json=_reminder_payload()).json()["reminders"][0]["id"]

    deleted = client.post("/deleteReminder", json={"id": reminder_id})
    again = client.post("/deleteReminder", json={"id": reminder_id})
    missing_id = client.post("/deleteReminder", json={})

    assert deleted.status_code == 200
    assert deleted.json() == {"success": True}
    assert again.status_code == 404
    assert again.json() == {"success": False, "error": "not found"}
    assert missing_id.status_code == 400
    assert client.get(f"/user/{user_id}/reminders").json()["reminders"] == []


def test_send_notification_requires_vapid() -> None:
    client = _client(vapid=False)

    response = client.post("/sendNotification", json={})

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "VAPID keys not set"}


def test_send_notification_broadcasts_and_drops_gone_subscriptions() -> None:
    client = _client()
    client.post("/subscribe", json=_subscription("https://push.example.test/send/ok"))
    client.post("/subscribe", json=_subscription("https://push.example.test/send/gone"))

    response = client.post("/sendNotification", json={"payload": {"title": "Hi", "body": "Drink", "url": "/x"}})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["results"] == [
        {"endpoint": "https://push.example.test/send/ok", "success": True},
        {"endpoint": "https://push.example.test/send/gone", "success": False, "error": 410},
    ]
    assert api_module.push_sender.sent == [
        ("https://push.example.test/send/ok", {"title": "Hi", "body": "Drink", "url": "/x"})
    ]
    assert client.get("/subs").json()["count"] == 1


def test_send_notification_without_body_uses_default_payload() -> None:
    client = _client()
    client.post("/subscribe", json=_subscription())

    response = client.post("/sendNotification")

    assert response.status_code == 200
    assert api_module.push_sender.sent == [
        (
            "https://push.example.test/send/ep-001",
            {"title": "Hydrate", "body": "Time to drink water 💧", "url": "https://hydrate.example.test"},
        )
    ]


def test_scheduled_tick_uses_module_state() -> None:
    client = _client()
    client.post("/addReminder", json=_reminder_payload(time="00:00", timezoneOffsetMinutes=0, repeatEveryMinutes=1, repeatUntil=None))

    report = api_module.run_scheduled_tick()

    assert report.evaluated_count == 1
    assert report.delivered_count == 1
    reminders = client.get("/subs").json()
    assert reminders["count"] == 1


class _UnwritableReminderStore(InMemoryReminderStore):
    def upsert(self, subscription: PushSubscription) -> User:
        raise PersistenceError("disk full")


def test_store_write_failure_returns_500() -> None:
    client = _client()
    api_module.reminder_store = _UnwritableReminderStore()

    response = client.post("/subscribe", json=_subscription())

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "failed to save state"}

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import urlsplit

import requests
from pywebpush import WebPushException, webpush

from .models import PushSubscription

logger = logging.getLogger(__name__)

GONE_STATUS_CODES = frozenset({404, 410})
# Seconds a push service holds a message for an offline browser (four weeks).
DEFAULT_TTL_SECONDS = 2419200


@dataclass(frozen=True)
class Delivered:
    status_code: int | None = None


@dataclass(frozen=True)
class TransientFailure:
    detail: str
    status_code: int | None = None


@dataclass(frozen=True)
class PermanentFailure:
    status_code: int
    detail: str = "push subscription is gone"


DeliveryOutcome = Delivered | TransientFailure | PermanentFailure


def classify_status(status_code: int | None, detail: str) -> DeliveryOutcome:
    if status_code in GONE_STATUS_CODES:
        return PermanentFailure(status_code=status_code, detail=detail)
    return TransientFailure(detail=detail, status_code=status_code)


class PushSender(Protocol):
    def deliver(self, subscription: PushSubscription, payload: dict[str, Any]) -> DeliveryOutcome: ...


class StubPushSender:
    """In-process sender for local runs and tests.

    Endpoints containing ``gone`` answer 410, endpoints containing ``fail``
    fail transiently; everything else is recorded in ``sent``.
    """

    def __init__(self, *, enabled: bool = True) -> None:
        self._enabled = enabled
        self.sent: list[tuple[str, dict[str, Any]]] = []

    def deliver(self, subscription: PushSubscription, payload: dict[str, Any]) -> DeliveryOutcome:
        if not self._enabled:
            return TransientFailure(detail="stub push delivery is disabled")
        endpoint = subscription.endpoint.lower()
        if "gone" in endpoint:
            return PermanentFailure(status_code=410)
        if "fail" in endpoint:
            return TransientFailure(detail="stub sender forced failure", status_code=500)
        self.sent.append((subscription.endpoint, dict(payload)))
        return Delivered(status_code=201)


class WebPushSender:
    """Delivers encrypted Web Push messages signed with the server's VAPID key."""

    def __init__(
        self,
        *,
        vapid_public_key: str | None,
        vapid_private_key: str | None,
        vapid_subject: str,
        timeout_seconds: int = 10,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ) -> None:
        self._vapid_public_key = (vapid_public_key or "").strip() or None
        self._vapid_private_key = (vapid_private_key or "").strip() or None
        self._vapid_subject = vapid_subject
        self._timeout_seconds = timeout_seconds
        self._ttl_seconds = ttl_seconds

    @property
    def configured(self) -> bool:
        return self._vapid_public_key is not None and self._vapid_private_key is not None

    def deliver(self, subscription: PushSubscription, payload: dict[str, Any]) -> DeliveryOutcome:
        if not self.configured:
            return TransientFailure(detail="VAPID keys missing")

        try:
            response = webpush(
                subscription_info=subscription.to_subscription_info(),
                data=json.dumps(payload),
                vapid_private_key=self._vapid_private_key,
                # pywebpush fills in aud/exp on the dict it is given.
                vapid_claims={"sub": self._vapid_subject},
                timeout=self._timeout_seconds,
                ttl=self._ttl_seconds,
            )
        except WebPushException as exc:
            status_code = getattr(exc.response, "status_code", None)
            return classify_status(status_code, detail=f"push service rejected message: {exc.message}")
        except requests.Timeout as exc:
            return TransientFailure(detail=f"push request timed out: {exc}")
        except requests.RequestException as exc:
            return TransientFailure(detail=f"connection error: {exc}")
        except (ValueError, TypeError) as exc:
            logger.warning("invalid push subscription %s: %s", mask_endpoint(subscription.endpoint), exc)
            return TransientFailure(detail=f"invalid subscription: {exc}")
        return Delivered(status_code=getattr(response, "status_code", None))


def mask_endpoint(endpoint: str) -> str:
    """Endpoints are bearer capabilities; keep only the host and a short tail for logs."""
    normalized = endpoint.strip()
    if not normalized:
        return "***"
    parts = urlsplit(normalized)
    tail = normalized[-6:] if len(normalized) > 12 else ""
    if parts.netloc:
        return f"{parts.scheme}://{parts.netloc}/***{tail}"
    if len(normalized) <= 4:
        return "*" * len(normalized)
    return f"{normalized[:2]}***{normalized[-2:]}"

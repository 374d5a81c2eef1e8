from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_FRONTEND_URL = "https://rahulmm22.github.io/hydrate-frontend"
DEFAULT_VAPID_SUBJECT = "mailto:you@example.com"


class ConfigurationError(RuntimeError):
    """Raised when an operation needs configuration that is not set."""


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _as_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _as_csv_tuple(value: str | None, default: tuple[str, ...] = ()) -> tuple[str, ...]:
    if value is None:
        return default
    items = [item.strip() for item in value.split(",")]
    return tuple(item for item in items if item) or default


def _normalize_mode(value: str | None, *, default: str, allowed: set[str]) -> str:
    if value is None:
        return default
    normalized = value.strip().lower()
    return normalized if normalized in allowed else default


def _optional(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


@dataclass(frozen=True)
class Settings:
    app_name: str = "Hydrate Push"
    port: int = 4000
    vapid_public_key: str | None = None
    vapid_private_key: str | None = None
    vapid_subject: str = DEFAULT_VAPID_SUBJECT
    frontend_url: str = DEFAULT_FRONTEND_URL
    reminder_store_backend: str = "json"
    data_path: str = "/data/db.json"
    database_url: str = ""
    push_sender_type: str = "webpush"
    push_timeout_seconds: int = 10
    push_ttl_seconds: int = 2419200
    scheduler_enabled: bool = True
    scheduler_interval_seconds: int = 60
    scheduler_tick_budget_seconds: int = 50
    cors_allow_origins: tuple[str, ...] = ("*",)
    runtime_config_guard_mode: str = "warn"

    @property
    def vapid_configured(self) -> bool:
        return bool(self.vapid_public_key and self.vapid_private_key)

    def require_vapid(self) -> tuple[str, str]:
        if not self.vapid_public_key or not self.vapid_private_key:
            raise ConfigurationError("VAPID keys not set")
        return self.vapid_public_key, self.vapid_private_key


def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("HYDRATE_APP_NAME", "Hydrate Push"),
        port=_as_int(os.getenv("PORT"), 4000),
        vapid_public_key=_optional(os.getenv("VAPID_PUBLIC_KEY")),
        vapid_private_key=_optional(os.getenv("VAPID_PRIVATE_KEY")),
        vapid_subject=os.getenv("VAPID_SUBJECT", DEFAULT_VAPID_SUBJECT),
        frontend_url=os.getenv("FRONTEND_URL", DEFAULT_FRONTEND_URL),
        reminder_store_backend=os.getenv("REMINDER_STORE_BACKEND", "json"),
        data_path=os.getenv("DATA_PATH", "/data/db.json"),
        database_url=os.getenv("DATABASE_URL", ""),
        push_sender_type=_normalize_mode(
            os.getenv("PUSH_SENDER_TYPE"),
            default="webpush",
            allowed={"webpush", "stub"},
        ),
        push_timeout_seconds=_as_int(os.getenv("PUSH_TIMEOUT_SECONDS"), 10),
        push_ttl_seconds=_as_int(os.getenv("PUSH_TTL_SECONDS"), 2419200),
        scheduler_enabled=_as_bool(os.getenv("SCHEDULER_ENABLED"), True),
        scheduler_interval_seconds=_as_int(os.getenv("SCHEDULER_INTERVAL_SECONDS"), 60),
        scheduler_tick_budget_seconds=_as_int(os.getenv("SCHEDULER_TICK_BUDGET_SECONDS"), 50),
        cors_allow_origins=_as_csv_tuple(os.getenv("CORS_ALLOW_ORIGINS"), ("*",)),
        runtime_config_guard_mode=_normalize_mode(
            os.getenv("RUNTIME_CONFIG_GUARD_MODE"),
            default="warn",
            allowed={"off", "warn", "enforce"},
        ),
    )


def runtime_config_issues(settings: Settings) -> tuple[str, ...]:
    issues: list[str] = []
    if settings.push_sender_type == "webpush" and not settings.vapid_configured:
        issues.append("VAPID_PUBLIC_KEY and VAPID_PRIVATE_KEY must both be set; push delivery will fail")
    if settings.vapid_configured and not settings.vapid_subject.startswith(("mailto:", "https://")):
        issues.append("VAPID_SUBJECT must be a mailto: or https: URI")
    backend = settings.reminder_store_backend.strip().lower()
    if backend not in {"json", "inmemory", "postgres"}:
        issues.append(f"REMINDER_STORE_BACKEND={settings.reminder_store_backend} is not supported")
    if backend == "postgres" and not settings.database_url.strip():
        issues.append("DATABASE_URL is required when REMINDER_STORE_BACKEND=postgres")
    if backend == "json" and not settings.data_path.strip():
        issues.append("DATA_PATH is required when REMINDER_STORE_BACKEND=json")
    if settings.push_ttl_seconds <= 0:
        issues.append("PUSH_TTL_SECONDS must be positive; push services drop messages for offline browsers at 0")
    if settings.scheduler_interval_seconds <= 0:
        issues.append("SCHEDULER_INTERVAL_SECONDS must be positive")
    if settings.scheduler_tick_budget_seconds >= settings.scheduler_interval_seconds:
        issues.append("SCHEDULER_TICK_BUDGET_SECONDS should stay below SCHEDULER_INTERVAL_SECONDS")
    return tuple(issues)

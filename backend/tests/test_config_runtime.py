from __future__ import annotations

import os
from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from hydrate_push import __main__ as entrypoint
from hydrate_push.config import ConfigurationError, Settings, get_settings, runtime_config_issues
from hydrate_push.main import create_app


def _set_env(overrides: dict[str, str | None]) -> dict[str, str | None]:
    previous: dict[str, str | None] = {}
    for key, value in overrides.items():
        previous[key] = os.environ.get(key)
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value
    return previous


def _restore_env(previous: dict[str, str | None]) -> None:
    for key, value in previous.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value


def test_get_settings_reads_environment() -> None:
    previous = _set_env(
        {
            "PORT": "8080",
            "VAPID_PUBLIC_KEY": " BPUBLIC ",
            "VAPID_PRIVATE_KEY": "private",
            "FRONTEND_URL": "https://hydrate.example.test",
            "PUSH_TIMEOUT_SECONDS": "not-a-number",
            "PUSH_TTL_SECONDS": "600",
            "CORS_ALLOW_ORIGINS": "https://a.test, https://b.test",
            "PUSH_SENDER_TYPE": "carrier-pigeon",
        }
    )
    try:
        settings = get_settings()
        assert settings.port == 8080
        assert settings.vapid_public_key == "BPUBLIC"
        assert settings.vapid_configured is True
        assert settings.frontend_url == "https://hydrate.example.test"
        assert settings.push_timeout_seconds == 10
        assert settings.push_ttl_seconds == 600
        assert settings.cors_allow_origins == ("https://a.test", "https://b.test")
        assert settings.push_sender_type == "webpush"
    finally:
        _restore_env(previous)


def test_blank_vapid_keys_count_as_unset() -> None:
    previous = _set_env({"VAPID_PUBLIC_KEY": "  ", "VAPID_PRIVATE_KEY": None})
    try:
        settings = get_settings()
        assert settings.vapid_public_key is None
        assert settings.vapid_configured is False
        with pytest.raises(ConfigurationError):
            settings.require_vapid()
    finally:
        _restore_env(previous)


def test_runtime_config_issues() -> None:
    healthy = Settings(vapid_public_key="BPUBLIC", vapid_private_key="private")
    assert runtime_config_issues(healthy) == ()

    issues = runtime_config_issues(
        replace(healthy, vapid_private_key=None, reminder_store_backend="postgres", database_url="")
    )
    assert any("VAPID_PUBLIC_KEY" in issue for issue in issues)
    assert any("DATABASE_URL" in issue for issue in issues)

    ttl_issues = runtime_config_issues(replace(healthy, push_ttl_seconds=0))
    assert any("PUSH_TTL_SECONDS" in issue for issue in ttl_issues)
    assert Settings().push_ttl_seconds == 2419200

    stub_issues = runtime_config_issues(replace(healthy, vapid_private_key=None, push_sender_type="stub"))
    assert not any("VAPID" in issue for issue in stub_issues)


def test_enforce_mode_blocks_startup_without_vapid_keys() -> None:
    previous = _set_env(
        {
            "RUNTIME_CONFIG_GUARD_MODE": "enforce",
            "PUSH_SENDER_TYPE": "webpush",
            "VAPID_PUBLIC_KEY": None,
            "VAPID_PRIVATE_KEY": None,
        }
    )
    try:
        with pytest.raises(RuntimeError, match="runtime config guard blocked startup"):
            create_app()
    finally:
        _restore_env(previous)


def test_lifespan_starts_and_stops_scheduler() -> None:
    previous = _set_env({"SCHEDULER_ENABLED": "true", "SCHEDULER_INTERVAL_SECONDS": "60"})
    background = MagicMock()
    try:
        with patch("hydrate_push.main.start_background_scheduler", return_value=background) as start:
            with TestClient(create_app()) as client:
                assert client.get("/health").status_code == 200
                start.assert_called_once()
                assert start.call_args.kwargs["interval_seconds"] == 60
        background.shutdown.assert_called_once_with(wait=False)
    finally:
        _restore_env(previous)


def test_entrypoint_loads_dotenv_from_working_directory(tmp_path, monkeypatch) -> None:
    (tmp_path / ".env").write_text("PORT=4321\nFRONTEND_URL=https://dotenv.example.test\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    previous = _set_env({"PORT": None, "FRONTEND_URL": None})
    try:
        with patch.object(entrypoint.uvicorn, "run") as run:
            entrypoint.main()
        assert run.call_args.kwargs["port"] == 4321
        assert os.environ["FRONTEND_URL"] == "https://dotenv.example.test"
    finally:
        _restore_env(previous)


def test_entrypoint_prefers_exported_environment_over_dotenv(tmp_path, monkeypatch) -> None:
    (tmp_path / ".env").write_text("PORT=4321\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    previous = _set_env({"PORT": "5000"})
    try:
        with patch.object(entrypoint.uvicorn, "run") as run:
            entrypoint.main()
        assert run.call_args.kwargs["port"] == 5000
    finally:
        _restore_env(previous)

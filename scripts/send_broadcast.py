#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import os
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any

from dotenv import load_dotenv


def _resolve_api_base_url(explicit_value: str | None) -> str:
    if explicit_value:
        candidate = explicit_value.strip()
    else:
        candidate = os.getenv("HYDRATE_API_BASE_URL", "").strip() or f"http://localhost:{os.getenv('PORT', '4000')}"
    return candidate.rstrip("/")


def _request_json(
    method: str,
    base_url: str,
    path: str,
    *,
    payload: dict[str, Any] | None = None,
) -> dict[str, Any]:
    body = None if payload is None else json.dumps(payload).encode("utf-8")
    headers: dict[str, str] = {"Accept": "application/json"}
    if payload is not None:
        headers["Content-Type"] = "application/json"

    request = urllib.request.Request(
        f"{base_url}/{path.lstrip('/')}",
        data=body,
        headers=headers,
        method=method,
    )
    try:
        with urllib.request.urlopen(request, timeout=60) as response:
            return json.loads(response.read().decode("utf-8"))
    except urllib.error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")
        raise RuntimeError(f"{method} {path} failed with {exc.code}: {detail}") from exc


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Send a push notification to every registered subscriber of a running backend."
    )
    parser.add_argument(
        "--api-base-url",
        default=None,
        help="Backend base URL (default: HYDRATE_API_BASE_URL or http://localhost:$PORT).",
    )
    parser.add_argument("--title", default=None, help="Notification title (server default: Hydrate).")
    parser.add_argument("--body", default=None, help="Notification body.")
    parser.add_argument("--url", default=None, help="URL opened when the notification is clicked.")
    parser.add_argument(
        "--list-only",
        action="store_true",
        help="Only print the subscription summary from /subs; do not send anything.",
    )
    return parser.parse_args()


def main() -> int:
    root_dir = Path(__file__).resolve().parents[1]
    load_dotenv(root_dir / ".env")
    args = parse_args()
    api_base_url = _resolve_api_base_url(args.api_base_url)

    summary = _request_json("GET", api_base_url, "subs")
    print(f"{summary.get('count', 0)} subscribers at {api_base_url}")
    if args.list_only:
        for user in summary.get("users", []):
            print(f"  {user['id']}: {user['reminders']} reminders")
        return 0

    request_body: dict[str, Any] = {}
    message = {key: value for key, value in (("title", args.title), ("body", args.body), ("url", args.url)) if value}
    if message:
        request_body["payload"] = message

    response = _request_json("POST", api_base_url, "sendNotification", payload=request_body)
    results = response.get("results")
    if not isinstance(results, list):
        raise SystemExit("invalid /sendNotification response: missing results[]")

    delivered = sum(1 for item in results if item.get("success"))
    print(f"delivered {delivered}/{len(results)}")
    for item in results:
        if not item.get("success"):
            print(f"  failed {item.get('endpoint', '?')[:48]}...: {item.get('error')}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

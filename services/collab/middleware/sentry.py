"""
Sentry instrumentation for the collaboration service.
Server-side only. Scrubs credentials from request headers and breadcrumbs.
"""

from typing import Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from services.collab.config import settings

SENSITIVE_HEADERS = {"authorization", "cookie", "set-cookie", "x-firebase-token"}

FILTERED = "[FILTERED]"


def _scrub_headers(headers: Any) -> None:
    if not isinstance(headers, dict):
        return
    for key in list(headers.keys()):
        if key.lower() in SENSITIVE_HEADERS:
            headers[key] = FILTERED


def scrub_event(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any] | None:
    """before_send hook."""
    for breadcrumb in event.get("breadcrumbs", {}).get("values", []):
        data = breadcrumb.get("data", {})
        if isinstance(data, dict):
            _scrub_headers(data.get("headers"))

    request = event.get("request", {})
    if isinstance(request, dict):
        _scrub_headers(request.get("headers"))
    return event


def setup_sentry() -> bool:
    """Initialise the SDK when a DSN is configured. Returns whether it ran."""
    if not settings.sentry_dsn:
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=f"{settings.app_name}@{settings.app_version}",
        traces_sample_rate=settings.sentry_traces_sample_rate,
        before_send=scrub_event,
        integrations=[
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
        send_default_pii=False,
    )
    return True

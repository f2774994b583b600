from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from app.tenanthub.clients.http import ApiClientError, request_json


class NotificationApiError(ApiClientError):
    pass


@dataclass(frozen=True)
class NotificationApiClient:
    base_url: str
    session_cookie: str | None = None
    csrf_token: str | None = None
    tenant: str | None = None
    timeout_seconds: int = 30
    cookie_name: str = "session"

    def _headers(self) -> dict[str, str]:
        h: dict[str, str] = {}
        if self.session_cookie:
            h["Cookie"] = f"{self.cookie_name}={self.session_cookie}"
        if self.csrf_token:
            h["X-CSRF-Token"] = self.csrf_token
        if self.tenant:
            h["X-Tenant-Id"] = self.tenant
        return h

    def _call(self, method: str, path: str, failure: str, *, params: dict[str, Any] | None = None) -> Any:
        return request_json(
            self.base_url,
            method,
            path,
            params=params,
            headers=self._headers(),
            timeout_seconds=self.timeout_seconds,
            error_cls=NotificationApiError,
            fallback_message=failure,
        )

    def list_notifications(
        self,
        *,
        unread_only: bool = False,
        category: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        data = self._call(
            "GET",
            "/api/notifications",
            "Failed to list notifications",
            params={"unreadOnly": "true" if unread_only else None, "category": category, "limit": limit, "offset": offset},
        )
        return data["notifications"]

    def unread_count(self) -> int:
        return int(self._call("GET", "/api/notifications/unread-count", "Failed to load unread count")["count"])

    def mark_read(self, notification_id: int) -> dict[str, Any]:
        return self._call("POST", f"/api/notifications/{int(notification_id)}/read", "Failed to mark notification as read")

    def mark_all_read(self) -> int:
        return int(self._call("POST", "/api/notifications/read-all", "Failed to mark all notifications as read")["updated"])

    def dismiss(self, notification_id: int) -> dict[str, Any]:
        return self._call("POST", f"/api/notifications/{int(notification_id)}/dismiss", "Failed to dismiss notification")

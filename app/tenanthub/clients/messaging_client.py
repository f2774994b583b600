from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from app.tenanthub.clients.http import ApiClientError, request_json


class MessagingApiError(ApiClientError):
    pass


@dataclass(frozen=True)
class MessagingApiClient:
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

    def _call(self, method: str, path: str, failure: str, *, params: dict[str, Any] | None = None, body: Any = None) -> Any:
        return request_json(
            self.base_url,
            method,
            path,
            params=params,
            body=body,
            headers=self._headers(),
            timeout_seconds=self.timeout_seconds,
            error_cls=MessagingApiError,
            fallback_message=failure,
        )

    # --- conversations ---

    def list_conversations(self, *, type: str | None = None, limit: int | None = None, offset: int | None = None) -> list[dict[str, Any]]:
        data = self._call(
            "GET",
            "/api/conversations",
            "Failed to list conversations",
            params={"type": type, "limit": limit, "offset": offset},
        )
        return data["conversations"]

    def create_conversation(
        self,
        *,
        type: str,
        participant_ids: list[int],
        title: str | None = None,
        admin_ids: list[int] | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"type": type, "participantIds": participant_ids}
        if title is not None:
            body["title"] = title
        if admin_ids is not None:
            body["adminIds"] = admin_ids
        return self._call("POST", "/api/conversations", "Failed to create conversation", body=body)

    def get_conversation(self, conversation_id: int) -> dict[str, Any]:
        return self._call("GET", f"/api/conversations/{int(conversation_id)}", "Failed to get conversation")

    def mark_conversation_as_read(self, conversation_id: int) -> int:
        data = self._call("POST", f"/api/conversations/{int(conversation_id)}/read", "Failed to mark conversation as read")
        return int(data["updated"])

    # --- messages ---

    def list_messages(self, conversation_id: int, *, limit: int | None = None, before: int | None = None) -> list[dict[str, Any]]:
        data = self._call(
            "GET",
            f"/api/conversations/{int(conversation_id)}/messages",
            "Failed to list messages",
            params={"limit": limit, "before": before},
        )
        return data["messages"]

    def send_message(
        self,
        conversation_id: int,
        *,
        body: str,
        body_format: str | None = None,
        client_message_id: str | None = None,
        parent_message_id: int | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"body": body}
        if body_format:
            payload["bodyFormat"] = body_format
        if client_message_id:
            payload["clientMessageId"] = client_message_id
        if parent_message_id is not None:
            payload["parentMessageId"] = parent_message_id
        return self._call("POST", f"/api/conversations/{int(conversation_id)}/messages", "Failed to send message", body=payload)

    def edit_message(self, message_id: int, body: str) -> dict[str, Any]:
        data = self._call("PATCH", f"/api/messages/{int(message_id)}", "Failed to edit message", body={"body": body})
        return data["message"]

    def delete_message(self, message_id: int) -> None:
        self._call("DELETE", f"/api/messages/{int(message_id)}", "Failed to delete message")

    def mark_message_as_read(self, message_id: int) -> None:
        self._call("POST", f"/api/messages/{int(message_id)}/read", "Failed to mark message as read")

    def list_thread_replies(self, parent_message_id: int) -> list[dict[str, Any]]:
        data = self._call("GET", f"/api/messages/{int(parent_message_id)}/thread", "Failed to list thread replies")
        return data["replies"]

    def search_messages(
        self,
        query: str,
        *,
        conversation_id: int | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        data = self._call(
            "GET",
            "/api/messages/search",
            "Failed to search messages",
            params={"q": query, "conversationId": conversation_id, "limit": limit, "offset": offset},
        )
        return data["results"]

    def unread_summary(self) -> dict[str, Any]:
        return self._call("GET", "/api/conversations/unread", "Failed to load unread counts")


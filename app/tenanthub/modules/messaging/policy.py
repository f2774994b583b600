"""
Messaging domain errors + access rules.

Pure functions over already-loaded rows; the service layer loads, these decide.
"""
from __future__ import annotations

from typing import Any, Iterable

from app.tenanthub.errors import ApiError
from app.tenanthub.modules.messaging.models import Conversation, ConversationParticipant, Message


class MessagingDomainError(ApiError):
    status = 400

    def __init__(self, code: str, message: str, context: dict[str, Any] | None = None):
        super().__init__(None, code, message, {"context": context} if context else None)
        self.context = context or {}


class ConversationValidationError(MessagingDomainError):
    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__("CONVERSATION_VALIDATION_ERROR", message, context)


class MessageValidationError(MessagingDomainError):
    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__("MESSAGE_VALIDATION_ERROR", message, context)


class AccessDeniedError(MessagingDomainError):
    status = 403

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__("ACCESS_DENIED", message, context)


class NotFoundError(MessagingDomainError):
    status = 404


def enforce_tenant_isolation(tenant_id: int, resource_tenant_id: int, resource_type: str) -> None:
    if tenant_id != resource_tenant_id:
        raise AccessDeniedError(
            f"Cross-tenant access denied for {resource_type}",
            {"requestTenantId": tenant_id, "resourceTenantId": resource_tenant_id},
        )


def active(participants: Iterable[ConversationParticipant]) -> list[ConversationParticipant]:
    return [p for p in participants if p.left_at is None]


def is_active_participant(participants: Iterable[ConversationParticipant], user_id: int) -> bool:
    return any(p.user_id == user_id for p in active(participants))


def is_conversation_admin(participants: Iterable[ConversationParticipant], user_id: int) -> bool:
    return any(p.user_id == user_id and p.role == "admin" for p in active(participants))


def enforce_participant_access(tenant_id: int, conversation: Conversation, user_id: int) -> None:
    """Read and send both require an active participant in the same tenant."""
    enforce_tenant_isolation(tenant_id, conversation.tenant_id, "conversation")
    if not is_active_participant(conversation.participants, user_id):
        raise AccessDeniedError(
            "Only conversation participants can access this conversation",
            {"conversationId": conversation.id, "userId": user_id},
        )


def enforce_sender(tenant_id: int, message: Message, user_id: int, action: str) -> None:
    enforce_tenant_isolation(tenant_id, message.tenant_id, "message")
    if message.sender_id != user_id:
        raise AccessDeniedError(
            f"Only the message sender can {action} this message",
            {"messageId": message.id, "senderId": message.sender_id, "userId": user_id},
        )


def _enforce_group_admin(tenant_id: int, conversation: Conversation, requester_id: int, what: str) -> None:
    enforce_tenant_isolation(tenant_id, conversation.tenant_id, "conversation")
    if conversation.type == "direct":
        raise AccessDeniedError(f"Cannot {what} direct conversations", {"conversationId": conversation.id})
    if not is_conversation_admin(conversation.participants, requester_id):
        raise AccessDeniedError(
            f"Only conversation admins can {what} this conversation",
            {"conversationId": conversation.id, "requesterId": requester_id},
        )


def enforce_add_participants(tenant_id: int, conversation: Conversation, requester_id: int) -> None:
    _enforce_group_admin(tenant_id, conversation, requester_id, "add participants to")


def enforce_update_title(tenant_id: int, conversation: Conversation, requester_id: int) -> None:
    _enforce_group_admin(tenant_id, conversation, requester_id, "update the title of")


def enforce_remove_participant(tenant_id: int, conversation: Conversation, requester_id: int, target_user_id: int) -> None:
    enforce_tenant_isolation(tenant_id, conversation.tenant_id, "conversation")
    if conversation.type == "direct":
        raise AccessDeniedError("Cannot remove participants from direct conversations", {"conversationId": conversation.id})
    if requester_id == target_user_id:
        return
    if not is_conversation_admin(conversation.participants, requester_id):
        raise AccessDeniedError(
            "Only conversation admins can remove other participants",
            {"conversationId": conversation.id, "requesterId": requester_id, "targetUserId": target_user_id},
        )


def validate_new_participants(participants: Iterable[ConversationParticipant], new_ids: Iterable[int]) -> None:
    current = {p.user_id for p in active(participants)}
    already = sorted(uid for uid in set(new_ids) if uid in current)
    if already:
        raise AccessDeniedError("Cannot add users who are already active participants", {"alreadyParticipants": already})


def validate_admin_removal(participants: Iterable[ConversationParticipant], target_user_id: int) -> None:
    actives = active(participants)
    target = next((p for p in actives if p.user_id == target_user_id), None)
    if target is None or target.role != "admin":
        return
    remaining = [p for p in actives if p.role == "admin" and p.user_id != target_user_id]
    if not remaining:
        raise AccessDeniedError("Cannot remove the last admin from a group conversation", {"targetUserId": target_user_id})

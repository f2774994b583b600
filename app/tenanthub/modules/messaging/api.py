from __future__ import annotations

from flask import Blueprint, current_app, g, request

from app.tenanthub.cache import enforce_rate_limit
from app.tenanthub.db import db_session
from app.tenanthub.errors import ApiError, ok
from app.tenanthub.modules.messaging import service
from app.tenanthub.rbac import require_api_permission
from app.tenanthub.tenancy import current_context
from app.tenanthub.utils import parse_int

conversations_bp = Blueprint("conversations_api", __name__)
messages_bp = Blueprint("messages_api", __name__)


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ApiError(400, "INVALID_JSON", "Request body must be a JSON object.")
    return payload


def _optional_int(name: str) -> int | None:
    raw = (request.args.get(name) or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ApiError(400, "VALIDATION_ERROR", f"{name} must be an integer.")


# --- conversations ----------------------------------------------------------


@conversations_bp.get("")
@require_api_permission("messaging.view")
def list_conversations():
    ctx = current_context()
    rows = service.list_conversations(
        db_session(),
        ctx,
        ctype=(request.args.get("type") or "").strip() or None,
        limit=parse_int(request.args.get("limit"), default=service.DEFAULT_PAGE_SIZE, minimum=1, maximum=service.MAX_PAGE_SIZE),
        offset=parse_int(request.args.get("offset"), default=0, minimum=0),
    )
    return ok({"conversations": [service.conversation_to_dict(c) for c in rows], "count": len(rows)})


@conversations_bp.post("")
@require_api_permission("messaging.send")
def create_conversation():
    ctx = current_context()
    s = db_session()
    c, created = service.create_conversation(s, ctx, g.current_user, _json_body())
    s.commit()
    return ok(service.conversation_with_participants(c), 201 if created else 200)


@conversations_bp.get("/unread")
@require_api_permission("messaging.view")
def unread_summary():
    ctx = current_context()
    return ok(service.unread_summary(db_session(), ctx))


@conversations_bp.get("/<int:conversation_id>")
@require_api_permission("messaging.view")
def get_conversation(conversation_id: int):
    ctx = current_context()
    s = db_session()
    c = service.get_conversation(s, ctx, conversation_id)
    data = service.conversation_with_participants(c)
    data["unreadCount"] = service.unread_count(s, ctx, conversation_id)
    return ok(data)


@conversations_bp.patch("/<int:conversation_id>")
@require_api_permission("messaging.send")
def update_conversation(conversation_id: int):
    ctx = current_context()
    s = db_session()
    c = service.update_title(s, ctx, g.current_user, conversation_id, _json_body().get("title"))
    s.commit()
    return ok(service.conversation_to_dict(c))


@conversations_bp.get("/<int:conversation_id>/messages")
@require_api_permission("messaging.view")
def list_messages(conversation_id: int):
    ctx = current_context()
    rows = service.list_messages(
        db_session(),
        ctx,
        conversation_id,
        limit=parse_int(request.args.get("limit"), default=service.DEFAULT_PAGE_SIZE, minimum=1, maximum=service.MAX_PAGE_SIZE),
        before=_optional_int("before"),
    )
    return ok({"messages": [service.message_to_dict(m) for m in rows], "count": len(rows)})


@conversations_bp.post("/<int:conversation_id>/messages")
@require_api_permission("messaging.send")
def send_message(conversation_id: int):
    ctx = current_context()
    enforce_rate_limit(
        "messages",
        f"{ctx.tenant_id}:{ctx.user_id}",
        limit=current_app.config["RATE_LIMIT_MESSAGES_PER_MINUTE"],
    )
    s = db_session()
    result, created = service.send_message(s, ctx, g.current_user, conversation_id, _json_body())
    s.commit()
    data = {
        "message": service.message_to_dict(result["message"]),
        "deliveryCount": result["deliveryCount"],
        "readCount": result["readCount"],
    }
    return ok(data, 201 if created else 200)


@conversations_bp.post("/<int:conversation_id>/participants")
@require_api_permission("messaging.send")
def add_participants(conversation_id: int):
    ctx = current_context()
    s = db_session()
    added = service.add_participants(s, ctx, g.current_user, conversation_id, _json_body().get("userIds"))
    s.commit()
    return ok({"participants": [service.participant_to_dict(p) for p in added]}, 201)


@conversations_bp.delete("/<int:conversation_id>/participants/<int:user_id>")
@require_api_permission("messaging.send")
def remove_participant(conversation_id: int, user_id: int):
    ctx = current_context()
    s = db_session()
    p = service.remove_participant(s, ctx, g.current_user, conversation_id, user_id)
    s.commit()
    return ok(service.participant_to_dict(p))


@conversations_bp.post("/<int:conversation_id>/read")
@require_api_permission("messaging.view")
def mark_conversation_read(conversation_id: int):
    ctx = current_context()
    s = db_session()
    updated = service.mark_all_as_read(s, ctx, conversation_id)
    s.commit()
    return ok({"updated": updated})


# --- messages ---------------------------------------------------------------


@messages_bp.get("/search")
@require_api_permission("messaging.view")
def search():
    ctx = current_context()
    enforce_rate_limit(
        "message_search",
        f"{ctx.tenant_id}:{ctx.user_id}",
        limit=current_app.config["RATE_LIMIT_SEARCH_PER_MINUTE"],
    )
    query = (request.args.get("q") or "").strip()
    if not query:
        raise ApiError(400, "VALIDATION_ERROR", "q is required.")
    results = service.search_messages(
        db_session(),
        ctx,
        query,
        conversation_id=_optional_int("conversationId"),
        limit=parse_int(request.args.get("limit"), default=service.SEARCH_LIMIT, minimum=1, maximum=service.MAX_PAGE_SIZE),
        offset=parse_int(request.args.get("offset"), default=0, minimum=0),
    )
    payload = [
        {"message": service.message_to_dict(r["message"]), "rank": r["rank"], "headline": r["headline"]}
        for r in results
    ]
    return ok({"results": payload, "count": len(payload)})


@messages_bp.patch("/<int:message_id>")
@require_api_permission("messaging.send")
def edit_message(message_id: int):
    ctx = current_context()
    s = db_session()
    m = service.edit_message(s, ctx, g.current_user, message_id, _json_body().get("body"))
    s.commit()
    return ok({"message": service.message_to_dict(m)})


@messages_bp.delete("/<int:message_id>")
@require_api_permission("messaging.send")
def delete_message(message_id: int):
    ctx = current_context()
    s = db_session()
    m = service.delete_message(s, ctx, g.current_user, message_id)
    s.commit()
    return ok({"message": service.message_to_dict(m)})


@messages_bp.post("/<int:message_id>/read")
@require_api_permission("messaging.view")
def mark_message_read(message_id: int):
    ctx = current_context()
    s = db_session()
    delivery = service.mark_as_read(s, ctx, message_id)
    s.commit()
    return ok({"receipt": service.delivery_to_dict(delivery) if delivery else None})


@messages_bp.get("/<int:message_id>/thread")
@require_api_permission("messaging.view")
def thread(message_id: int):
    ctx = current_context()
    replies = service.list_thread_replies(db_session(), ctx, message_id)
    return ok({"replies": [service.message_to_dict(m) for m in replies], "count": len(replies)})


@messages_bp.get("/<int:message_id>/receipts")
@require_api_permission("messaging.view")
def receipts(message_id: int):
    ctx = current_context()
    rows = service.read_receipts(db_session(), ctx, message_id)
    return ok({"receipts": [service.delivery_to_dict(d) for d in rows]})

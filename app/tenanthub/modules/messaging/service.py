from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, func, or_, select

from app.tenanthub.audit import record_event
from app.tenanthub.models import User
from app.tenanthub.modules.messaging import policy
from app.tenanthub.modules.messaging.models import (
    Conversation,
    ConversationParticipant,
    Message,
    MessageDelivery,
)
from app.tenanthub.modules.messaging.policy import (
    ConversationValidationError,
    MessageValidationError,
    NotFoundError,
)
from app.tenanthub.modules.notifications.service import notify
from app.tenanthub.utils import isoformat, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.tenanthub.tenancy import UserContext

logger = logging.getLogger(__name__)

CONVERSATION_TYPES = ("direct", "group")
BODY_FORMATS = ("plain", "markdown")
MAX_TITLE_LENGTH = 200
MAX_BODY_LENGTH = 10_000
MAX_CLIENT_MESSAGE_ID_LENGTH = 255
CLIENT_MESSAGE_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
DELETED_PLACEHOLDER = "[Message deleted]"

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
THREAD_LIMIT = 100
SEARCH_LIMIT = 20
PREVIEW_LENGTH = 140


# --- validation -------------------------------------------------------------


def _coerce_user_ids(raw: Any, field: str) -> list[int]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConversationValidationError(f"{field} must be a list of user ids", {"field": field})
    out: list[int] = []
    for item in raw:
        try:
            uid = int(item)
        except (TypeError, ValueError):
            raise ConversationValidationError(f"{field} contains an invalid user id", {"field": field, "value": item})
        if uid not in out:
            out.append(uid)
    return out


def validate_title(raw: Any) -> str:
    title = (raw or "").strip() if isinstance(raw, str) or raw is None else None
    if title is None:
        raise ConversationValidationError("Title must be a string")
    if not title:
        raise ConversationValidationError("Group conversations require a title")
    if len(title) > MAX_TITLE_LENGTH:
        raise ConversationValidationError(
            f"Title must be at most {MAX_TITLE_LENGTH} characters", {"length": len(title)}
        )
    return title


def validate_direct_input(creator_id: int, participant_ids: list[int]) -> list[int]:
    ids = list(participant_ids)
    if creator_id not in ids:
        ids.insert(0, creator_id)
    if len(ids) != 2:
        raise ConversationValidationError(
            "Direct conversations must have exactly 2 distinct participants", {"participantIds": ids}
        )
    return ids


def validate_group_input(
    creator_id: int, participant_ids: list[int], title: Any, admin_ids: list[int]
) -> tuple[list[int], str, set[int]]:
    ids = list(participant_ids)
    if creator_id not in ids:
        ids.insert(0, creator_id)
    if len(ids) < 2:
        raise ConversationValidationError("Group conversations need at least 2 participants", {"participantIds": ids})
    clean_title = validate_title(title)
    outsiders = [a for a in admin_ids if a not in ids]
    if outsiders:
        raise ConversationValidationError("adminIds must be participants", {"adminIds": outsiders})
    return ids, clean_title, {creator_id, *admin_ids}


def validate_message_input(body: Any, body_format: Any = "plain", client_message_id: Any = None) -> tuple[str, str, str | None]:
    if not isinstance(body, str) or not body.strip():
        raise MessageValidationError("Message body cannot be empty")
    if len(body) > MAX_BODY_LENGTH:
        raise MessageValidationError(
            f"Message body must be at most {MAX_BODY_LENGTH} characters", {"length": len(body)}
        )
    fmt = body_format or "plain"
    if fmt not in BODY_FORMATS:
        raise MessageValidationError(f"bodyFormat must be one of: {', '.join(BODY_FORMATS)}", {"bodyFormat": fmt})
    cmid = None
    if client_message_id is not None and client_message_id != "":
        if not isinstance(client_message_id, str) or len(client_message_id) > MAX_CLIENT_MESSAGE_ID_LENGTH:
            raise MessageValidationError("clientMessageId must be a string of at most 255 characters")
        if not CLIENT_MESSAGE_ID_RE.match(client_message_id):
            raise MessageValidationError("clientMessageId may only contain letters, digits, '-' and '_'")
        cmid = client_message_id
    return body, fmt, cmid


def _ensure_tenant_users(s: "Session", tenant_id: int, user_ids: list[int]) -> None:
    if not user_ids:
        return
    found = set(
        s.execute(
            select(User.id).where(User.id.in_(user_ids), User.tenant_id == tenant_id, User.is_active.is_(True))
        ).scalars()
    )
    missing = sorted(set(user_ids) - found)
    if missing:
        raise ConversationValidationError("Participants must be active users of this tenant", {"unknownUserIds": missing})


# --- loading ----------------------------------------------------------------


def _get_conversation(s: "Session", ctx: "UserContext", conversation_id: int) -> Conversation:
    c = s.get(Conversation, conversation_id)
    if not c or c.tenant_id != ctx.tenant_id:
        raise NotFoundError("CONVERSATION_NOT_FOUND", f"Conversation {conversation_id} not found")
    return c


def _get_message(s: "Session", ctx: "UserContext", message_id: int) -> Message:
    m = s.get(Message, message_id)
    if not m or m.tenant_id != ctx.tenant_id:
        raise NotFoundError("MESSAGE_NOT_FOUND", f"Message {message_id} not found")
    return m


def _participant(c: Conversation, user_id: int) -> ConversationParticipant | None:
    return next((p for p in c.participants if p.user_id == user_id and p.left_at is None), None)


def get_conversation(s: "Session", ctx: "UserContext", conversation_id: int) -> Conversation:
    c = _get_conversation(s, ctx, conversation_id)
    policy.enforce_participant_access(ctx.tenant_id, c, ctx.user_id)
    return c


# --- conversations ----------------------------------------------------------


def find_direct_conversation(s: "Session", tenant_id: int, user_a: int, user_b: int) -> Conversation | None:
    pair = (
        select(ConversationParticipant.conversation_id)
        .where(ConversationParticipant.tenant_id == tenant_id)
        .where(ConversationParticipant.user_id.in_([user_a, user_b]))
        .group_by(ConversationParticipant.conversation_id)
        .having(func.count(func.distinct(ConversationParticipant.user_id)) == 2)
    )
    return (
        s.execute(
            select(Conversation)
            .where(Conversation.tenant_id == tenant_id, Conversation.type == "direct", Conversation.id.in_(pair))
            .order_by(Conversation.id.asc())
            .limit(1)
        )
        .scalars()
        .first()
    )


def create_conversation(s: "Session", ctx: "UserContext", actor: User, payload: dict) -> tuple[Conversation, bool]:
    """Returns (conversation, created). Re-creating a direct conversation returns the existing one."""
    ctype = payload.get("type")
    if ctype not in CONVERSATION_TYPES:
        raise ConversationValidationError(f"type must be one of: {', '.join(CONVERSATION_TYPES)}", {"type": ctype})
    participant_ids = _coerce_user_ids(payload.get("participantIds"), "participantIds")
    now = utcnow()

    if ctype == "direct":
        ids = validate_direct_input(ctx.user_id, participant_ids)
        _ensure_tenant_users(s, ctx.tenant_id, ids)
        existing = find_direct_conversation(s, ctx.tenant_id, ids[0], ids[1])
        if existing is not None:
            return existing, False
        c = Conversation(tenant_id=ctx.tenant_id, type="direct", title=None, created_at=now, created_by=ctx.user_id)
        for uid in ids:
            c.participants.append(ConversationParticipant(tenant_id=ctx.tenant_id, user_id=uid, role="member", joined_at=now))
    else:
        admin_ids = _coerce_user_ids(payload.get("adminIds"), "adminIds")
        ids, title, admins = validate_group_input(ctx.user_id, participant_ids, payload.get("title"), admin_ids)
        _ensure_tenant_users(s, ctx.tenant_id, ids)
        c = Conversation(tenant_id=ctx.tenant_id, type="group", title=title, created_at=now, created_by=ctx.user_id)
        for uid in ids:
            c.participants.append(
                ConversationParticipant(
                    tenant_id=ctx.tenant_id,
                    user_id=uid,
                    role="admin" if uid in admins else "member",
                    joined_at=now,
                )
            )

    s.add(c)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="conversation.create",
        entity_type="Conversation",
        entity_id=str(c.id),
        metadata={"type": c.type, "participants": [p.user_id for p in c.participants]},
    )
    logger.info("Conversation created id=%s type=%s tenant=%s", c.id, c.type, c.tenant_id)
    return c, True


def list_conversations(
    s: "Session",
    ctx: "UserContext",
    *,
    ctype: str | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> list[Conversation]:
    mine = (
        select(ConversationParticipant.conversation_id)
        .where(ConversationParticipant.tenant_id == ctx.tenant_id)
        .where(ConversationParticipant.user_id == ctx.user_id)
        .where(ConversationParticipant.left_at.is_(None))
    )
    q = select(Conversation).where(Conversation.tenant_id == ctx.tenant_id, Conversation.id.in_(mine))
    if ctype:
        if ctype not in CONVERSATION_TYPES:
            raise ConversationValidationError(f"type must be one of: {', '.join(CONVERSATION_TYPES)}", {"type": ctype})
        q = q.where(Conversation.type == ctype)
    q = q.order_by(Conversation.created_at.desc(), Conversation.id.desc()).limit(limit).offset(offset)
    return list(s.execute(q).scalars())


def update_title(s: "Session", ctx: "UserContext", actor: User, conversation_id: int, title: Any) -> Conversation:
    c = _get_conversation(s, ctx, conversation_id)
    policy.enforce_update_title(ctx.tenant_id, c, ctx.user_id)
    old = c.title
    c.title = validate_title(title)
    c.updated_at = utcnow()
    c.updated_by = ctx.user_id
    record_event(
        s,
        actor=actor,
        action="conversation.update_title",
        entity_type="Conversation",
        entity_id=str(c.id),
        metadata={"from": old, "to": c.title},
    )
    return c


def add_participants(
    s: "Session", ctx: "UserContext", actor: User, conversation_id: int, raw_user_ids: Any
) -> list[ConversationParticipant]:
    c = _get_conversation(s, ctx, conversation_id)
    policy.enforce_add_participants(ctx.tenant_id, c, ctx.user_id)
    user_ids = _coerce_user_ids(raw_user_ids, "userIds")
    if not user_ids:
        raise ConversationValidationError("userIds must contain at least one user id")
    policy.validate_new_participants(c.participants, user_ids)
    _ensure_tenant_users(s, ctx.tenant_id, user_ids)

    now = utcnow()
    added: list[ConversationParticipant] = []
    for uid in user_ids:
        previous = next((p for p in c.participants if p.user_id == uid), None)
        if previous is not None:
            # rejoin after leaving
            previous.left_at = None
            previous.role = "member"
            previous.joined_at = now
            added.append(previous)
        else:
            p = ConversationParticipant(tenant_id=ctx.tenant_id, user_id=uid, role="member", joined_at=now)
            c.participants.append(p)
            added.append(p)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="conversation.add_participants",
        entity_type="Conversation",
        entity_id=str(c.id),
        metadata={"userIds": user_ids},
    )
    return added


def remove_participant(s: "Session", ctx: "UserContext", actor: User, conversation_id: int, target_user_id: int) -> ConversationParticipant:
    c = _get_conversation(s, ctx, conversation_id)
    policy.enforce_remove_participant(ctx.tenant_id, c, ctx.user_id, target_user_id)
    target = _participant(c, target_user_id)
    if target is None:
        raise NotFoundError("PARTICIPANT_NOT_FOUND", f"User {target_user_id} is not an active participant")
    policy.validate_admin_removal(c.participants, target_user_id)
    target.left_at = utcnow()
    record_event(
        s,
        actor=actor,
        action="conversation.remove_participant",
        entity_type="Conversation",
        entity_id=str(c.id),
        metadata={"userId": target_user_id, "self": target_user_id == ctx.user_id},
    )
    return target


# --- messages ---------------------------------------------------------------


def _delivery_counts(s: "Session", message_id: int) -> tuple[int, int]:
    total, read = s.execute(
        select(func.count(MessageDelivery.id), func.count(MessageDelivery.read_at)).where(
            MessageDelivery.message_id == message_id
        )
    ).one()
    return int(total or 0), int(read or 0)


def send_message(s: "Session", ctx: "UserContext", actor: User, conversation_id: int, payload: dict) -> tuple[dict, bool]:
    """
    Returns ({message, deliveryCount, readCount}, created). A repeated clientMessageId from the
    same sender returns the stored message instead of inserting a duplicate.
    """
    body, fmt, cmid = validate_message_input(payload.get("body"), payload.get("bodyFormat"), payload.get("clientMessageId"))
    c = _get_conversation(s, ctx, conversation_id)
    policy.enforce_participant_access(ctx.tenant_id, c, ctx.user_id)

    if cmid:
        existing = (
            s.execute(
                select(Message).where(
                    Message.tenant_id == ctx.tenant_id,
                    Message.sender_id == ctx.user_id,
                    Message.client_message_id == cmid,
                )
            )
            .scalars()
            .first()
        )
        if existing is not None:
            if existing.conversation_id != c.id:
                raise MessageValidationError("clientMessageId already used in another conversation", {"clientMessageId": cmid})
            total, read = _delivery_counts(s, existing.id)
            return {"message": existing, "deliveryCount": total, "readCount": read}, False

    parent_id = payload.get("parentMessageId")
    if parent_id is not None:
        try:
            parent = _get_message(s, ctx, int(parent_id))
        except (TypeError, ValueError):
            raise MessageValidationError("parentMessageId must be a message id")
        if parent.conversation_id != c.id:
            raise MessageValidationError("Parent message belongs to another conversation", {"parentMessageId": parent.id})
        if parent.parent_message_id is not None:
            raise MessageValidationError("Replies can only be added to top-level messages", {"parentMessageId": parent.id})
        parent_id = parent.id

    now = utcnow()
    m = Message(
        tenant_id=ctx.tenant_id,
        conversation_id=c.id,
        sender_id=ctx.user_id,
        body=body,
        body_format=fmt,
        client_message_id=cmid,
        parent_message_id=parent_id,
        created_at=now,
    )
    s.add(m)
    s.flush()

    recipients = [p.user_id for p in policy.active(c.participants) if p.user_id != ctx.user_id]
    for rid in recipients:
        m.deliveries.append(MessageDelivery(tenant_id=ctx.tenant_id, recipient_id=rid, delivered_at=now))

    # sender has read their own message
    me = _participant(c, ctx.user_id)
    if me is not None:
        me.last_read_message_id = m.id
        me.last_read_at = m.created_at
    s.flush()

    sender_name = actor.display_name or actor.email
    preview = body if len(body) <= PREVIEW_LENGTH else body[: PREVIEW_LENGTH - 1] + "…"
    for rid in recipients:
        notify(
            s,
            tenant_id=ctx.tenant_id,
            recipient_id=rid,
            sender_id=ctx.user_id,
            event_code="message.received",
            title=f"New message from {sender_name}",
            body=preview,
            variables={
                "sender": {"id": ctx.user_id, "name": sender_name},
                "conversation": {"id": c.id, "title": c.title or sender_name},
                "message": {"id": m.id, "preview": preview},
            },
            category="messaging",
            icon="message",
            action_url=f"/messages/{c.id}",
            entity_type="message",
            entity_id=str(m.id),
            created_by_service="messaging",
        )

    logger.debug("Message sent id=%s conversation=%s recipients=%s", m.id, c.id, len(recipients))
    return {"message": m, "deliveryCount": len(recipients), "readCount": 0}, True


def list_messages(
    s: "Session",
    ctx: "UserContext",
    conversation_id: int,
    *,
    limit: int = DEFAULT_PAGE_SIZE,
    before: int | None = None,
) -> list[Message]:
    """Top-level messages, newest first; `before` is a message id cursor."""
    c = get_conversation(s, ctx, conversation_id)
    q = select(Message).where(Message.conversation_id == c.id, Message.parent_message_id.is_(None))
    if before is not None:
        cursor = s.get(Message, before)
        if not cursor or cursor.conversation_id != c.id:
            raise MessageValidationError("Invalid 'before' cursor", {"before": before})
        q = q.where(
            or_(
                Message.created_at < cursor.created_at,
                and_(Message.created_at == cursor.created_at, Message.id < cursor.id),
            )
        )
    q = q.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit)
    return list(s.execute(q).scalars())


def list_thread_replies(s: "Session", ctx: "UserContext", parent_message_id: int, *, limit: int = THREAD_LIMIT) -> list[Message]:
    parent = _get_message(s, ctx, parent_message_id)
    get_conversation(s, ctx, parent.conversation_id)
    q = (
        select(Message)
        .where(Message.parent_message_id == parent.id)
        .order_by(Message.created_at.asc(), Message.id.asc())
        .limit(limit)
    )
    return list(s.execute(q).scalars())


def edit_message(s: "Session", ctx: "UserContext", actor: User, message_id: int, body: Any) -> Message:
    m = _get_message(s, ctx, message_id)
    policy.enforce_sender(ctx.tenant_id, m, ctx.user_id, "edit")
    if m.deleted_at is not None:
        raise MessageValidationError("Cannot edit a deleted message", {"messageId": m.id})
    clean, _, _ = validate_message_input(body, m.body_format)
    m.body = clean
    m.edited_at = utcnow()
    record_event(s, actor=actor, action="message.edit", entity_type="Message", entity_id=str(m.id))
    return m


def delete_message(s: "Session", ctx: "UserContext", actor: User, message_id: int) -> Message:
    m = _get_message(s, ctx, message_id)
    policy.enforce_sender(ctx.tenant_id, m, ctx.user_id, "delete")
    if m.deleted_at is not None:
        raise MessageValidationError("Message is already deleted", {"messageId": m.id})
    m.deleted_at = utcnow()
    record_event(s, actor=actor, action="message.delete", entity_type="Message", entity_id=str(m.id))
    return m


# --- read tracking ----------------------------------------------------------


def _advance_pointer(p: ConversationParticipant, m: Message) -> None:
    if p.last_read_at is None or (m.created_at, m.id) > (p.last_read_at, p.last_read_message_id or 0):
        p.last_read_message_id = m.id
        p.last_read_at = m.created_at


def mark_as_read(s: "Session", ctx: "UserContext", message_id: int) -> MessageDelivery | None:
    m = _get_message(s, ctx, message_id)
    c = get_conversation(s, ctx, m.conversation_id)
    delivery = next((d for d in m.deliveries if d.recipient_id == ctx.user_id), None)
    if delivery is not None and delivery.read_at is None:
        delivery.read_at = utcnow()
    me = _participant(c, ctx.user_id)
    if me is not None:
        _advance_pointer(me, m)
    return delivery


def mark_all_as_read(s: "Session", ctx: "UserContext", conversation_id: int) -> int:
    c = get_conversation(s, ctx, conversation_id)
    now = utcnow()
    pending = list(
        s.execute(
            select(MessageDelivery)
            .join(Message, Message.id == MessageDelivery.message_id)
            .where(Message.conversation_id == c.id)
            .where(MessageDelivery.recipient_id == ctx.user_id)
            .where(MessageDelivery.read_at.is_(None))
        ).scalars()
    )
    for d in pending:
        d.read_at = now
    latest = (
        s.execute(
            select(Message).where(Message.conversation_id == c.id).order_by(Message.created_at.desc(), Message.id.desc()).limit(1)
        )
        .scalars()
        .first()
    )
    me = _participant(c, ctx.user_id)
    if latest is not None and me is not None:
        _advance_pointer(me, latest)
    return len(pending)


def _unread_query(c: Conversation, p: ConversationParticipant):
    q = (
        select(func.count(Message.id))
        .where(Message.conversation_id == c.id)
        .where(Message.sender_id != p.user_id)
        .where(Message.deleted_at.is_(None))
    )
    if p.last_read_at is not None:
        q = q.where(
            or_(
                Message.created_at > p.last_read_at,
                and_(Message.created_at == p.last_read_at, Message.id > (p.last_read_message_id or 0)),
            )
        )
    return q


def unread_count(s: "Session", ctx: "UserContext", conversation_id: int) -> int:
    c = get_conversation(s, ctx, conversation_id)
    me = _participant(c, ctx.user_id)
    if me is None:
        return 0
    return int(s.execute(_unread_query(c, me)).scalar_one())


def unread_summary(s: "Session", ctx: "UserContext") -> dict[str, Any]:
    rows = []
    total = 0
    for c in list_conversations(s, ctx, limit=1000):
        me = _participant(c, ctx.user_id)
        if me is None:
            continue
        n = int(s.execute(_unread_query(c, me)).scalar_one())
        if n:
            rows.append({"conversationId": c.id, "unread": n})
            total += n
    return {"total": total, "conversations": rows}


def read_receipts(s: "Session", ctx: "UserContext", message_id: int) -> list[MessageDelivery]:
    m = _get_message(s, ctx, message_id)
    get_conversation(s, ctx, m.conversation_id)
    return sorted(m.deliveries, key=lambda d: d.recipient_id)


# --- search -----------------------------------------------------------------


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _headline(body: str, term: str, radius: int = 40) -> str:
    idx = body.lower().find(term.lower())
    if idx < 0:
        return body[: radius * 2]
    start = max(0, idx - radius)
    end = min(len(body), idx + len(term) + radius)
    snippet = body[start:idx] + "<b>" + body[idx : idx + len(term)] + "</b>" + body[idx + len(term) : end]
    return ("…" if start > 0 else "") + snippet + ("…" if end < len(body) else "")


def search_messages(
    s: "Session",
    ctx: "UserContext",
    query: str,
    *,
    conversation_id: int | None = None,
    limit: int = SEARCH_LIMIT,
    offset: int = 0,
) -> list[dict[str, Any]]:
    """Case-insensitive substring search over the caller's active conversations."""
    term = (query or "").strip()
    if not term:
        return []

    if conversation_id is not None:
        get_conversation(s, ctx, conversation_id)
        scope = select(Conversation.id).where(Conversation.id == conversation_id)
    else:
        scope = (
            select(ConversationParticipant.conversation_id)
            .where(ConversationParticipant.tenant_id == ctx.tenant_id)
            .where(ConversationParticipant.user_id == ctx.user_id)
            .where(ConversationParticipant.left_at.is_(None))
        )

    q = (
        select(Message)
        .where(Message.tenant_id == ctx.tenant_id)
        .where(Message.conversation_id.in_(scope))
        .where(Message.deleted_at.is_(None))
        .where(Message.body.ilike(f"%{_escape_like(term)}%", escape="\\"))
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(limit)
        .offset(offset)
    )
    results = []
    for m in s.execute(q).scalars():
        results.append(
            {
                "message": m,
                "rank": float(m.body.lower().count(term.lower())),
                "headline": _headline(m.body, term),
            }
        )
    return results


# --- serialization ----------------------------------------------------------


def participant_to_dict(p: ConversationParticipant) -> dict[str, Any]:
    return {
        "id": p.id,
        "conversationId": p.conversation_id,
        "tenantId": p.tenant_id,
        "userId": p.user_id,
        "role": p.role,
        "joinedAt": isoformat(p.joined_at),
        "leftAt": isoformat(p.left_at),
        "lastReadMessageId": p.last_read_message_id,
        "lastReadAt": isoformat(p.last_read_at),
    }


def conversation_to_dict(c: Conversation) -> dict[str, Any]:
    return {
        "id": c.id,
        "tenantId": c.tenant_id,
        "type": c.type,
        "title": c.title,
        "createdAt": isoformat(c.created_at),
        "createdBy": c.created_by,
        "updatedAt": isoformat(c.updated_at),
        "updatedBy": c.updated_by,
    }


def conversation_with_participants(c: Conversation) -> dict[str, Any]:
    return {
        "conversation": conversation_to_dict(c),
        "participants": [participant_to_dict(p) for p in policy.active(c.participants)],
    }


def message_to_dict(m: Message) -> dict[str, Any]:
    return {
        "id": m.id,
        "tenantId": m.tenant_id,
        "conversationId": m.conversation_id,
        "senderId": m.sender_id,
        "body": DELETED_PLACEHOLDER if m.deleted_at is not None else m.body,
        "bodyFormat": m.body_format,
        "clientMessageId": m.client_message_id,
        "parentMessageId": m.parent_message_id,
        "createdAt": isoformat(m.created_at),
        "editedAt": isoformat(m.edited_at),
        "deletedAt": isoformat(m.deleted_at),
    }


def delivery_to_dict(d: MessageDelivery) -> dict[str, Any]:
    return {
        "messageId": d.message_id,
        "recipientId": d.recipient_id,
        "deliveredAt": isoformat(d.delivered_at),
        "readAt": isoformat(d.read_at),
    }

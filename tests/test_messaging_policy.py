from datetime import datetime

import pytest

from app.tenanthub.modules.messaging import policy, service
from app.tenanthub.modules.messaging.models import Conversation, ConversationParticipant, Message
from app.tenanthub.modules.messaging.policy import AccessDeniedError, ConversationValidationError, MessageValidationError


def _conversation(ctype="group", tenant_id=1, members=((1, "admin"), (2, "member"))):
    c = Conversation(id=10, tenant_id=tenant_id, type=ctype, title="Ops" if ctype == "group" else None, created_by=1)
    for uid, role in members:
        c.participants.append(ConversationParticipant(tenant_id=tenant_id, user_id=uid, role=role))
    return c


def test_cross_tenant_access_denied():
    c = _conversation(tenant_id=2)
    with pytest.raises(AccessDeniedError) as exc:
        policy.enforce_participant_access(1, c, 1)
    assert exc.value.status == 403
    assert exc.value.code == "ACCESS_DENIED"
    assert exc.value.context == {"requestTenantId": 1, "resourceTenantId": 2}


def test_left_participant_loses_access():
    c = _conversation()
    c.participants[1].left_at = datetime(2024, 1, 1)
    with pytest.raises(AccessDeniedError):
        policy.enforce_participant_access(1, c, 2)
    policy.enforce_participant_access(1, c, 1)


def test_only_sender_can_edit():
    m = Message(id=5, tenant_id=1, sender_id=1, conversation_id=10, body="hi")
    policy.enforce_sender(1, m, 1, "edit")
    with pytest.raises(AccessDeniedError) as exc:
        policy.enforce_sender(1, m, 2, "edit")
    assert "edit" in exc.value.message


def test_group_admin_rules():
    c = _conversation()
    policy.enforce_add_participants(1, c, 1)
    with pytest.raises(AccessDeniedError):
        policy.enforce_add_participants(1, c, 2)
    with pytest.raises(AccessDeniedError):
        policy.enforce_update_title(1, c, 2)


def test_direct_conversations_are_fixed():
    c = _conversation(ctype="direct", members=((1, "member"), (2, "member")))
    with pytest.raises(AccessDeniedError):
        policy.enforce_add_participants(1, c, 1)
    with pytest.raises(AccessDeniedError):
        policy.enforce_remove_participant(1, c, 1, 1)
    with pytest.raises(AccessDeniedError):
        policy.enforce_update_title(1, c, 1)


def test_member_may_remove_self_but_not_others():
    c = _conversation(members=((1, "admin"), (2, "member"), (3, "member")))
    policy.enforce_remove_participant(1, c, 2, 2)
    with pytest.raises(AccessDeniedError):
        policy.enforce_remove_participant(1, c, 2, 3)
    policy.enforce_remove_participant(1, c, 1, 3)


def test_last_admin_cannot_be_removed():
    c = _conversation()
    with pytest.raises(AccessDeniedError):
        policy.validate_admin_removal(c.participants, 1)
    policy.validate_admin_removal(c.participants, 2)

    c.participants[1].role = "admin"
    policy.validate_admin_removal(c.participants, 1)


def test_already_active_participants_rejected():
    c = _conversation()
    with pytest.raises(AccessDeniedError) as exc:
        policy.validate_new_participants(c.participants, [2, 3])
    assert exc.value.context == {"alreadyParticipants": [2]}

    c.participants[1].left_at = datetime(2024, 1, 1)
    policy.validate_new_participants(c.participants, [2, 3])


def test_direct_input_adds_creator():
    assert service.validate_direct_input(1, [2]) == [1, 2]
    assert service.validate_direct_input(1, [2, 1]) == [2, 1]
    with pytest.raises(ConversationValidationError):
        service.validate_direct_input(1, [1])
    with pytest.raises(ConversationValidationError):
        service.validate_direct_input(1, [2, 3])


def test_group_input_rules():
    ids, title, admins = service.validate_group_input(1, [2, 3], "  Ops  ", [2])
    assert ids == [1, 2, 3]
    assert title == "Ops"
    assert admins == {1, 2}

    with pytest.raises(ConversationValidationError):
        service.validate_group_input(1, [], "Solo", [])
    with pytest.raises(ConversationValidationError):
        service.validate_group_input(1, [2], "   ", [])
    with pytest.raises(ConversationValidationError):
        service.validate_group_input(1, [2], "Ops", [9])
    with pytest.raises(ConversationValidationError):
        service.validate_group_input(1, [2], "x" * 201, [])


@pytest.mark.parametrize(
    "body,fmt,cmid",
    [
        ("", "plain", None),
        ("   ", "plain", None),
        (None, "plain", None),
        ("x" * 10_001, "plain", None),
        ("hi", "html", None),
        ("hi", "plain", "has space"),
        ("hi", "plain", "a" * 256),
        ("hi", "plain", 42),
    ],
)
def test_message_input_rejected(body, fmt, cmid):
    with pytest.raises(MessageValidationError) as exc:
        service.validate_message_input(body, fmt, cmid)
    assert exc.value.code == "MESSAGE_VALIDATION_ERROR"
    assert exc.value.status == 400


def test_message_input_defaults():
    assert service.validate_message_input("hello") == ("hello", "plain", None)
    assert service.validate_message_input("# hi", "markdown", "abc_123-x") == ("# hi", "markdown", "abc_123-x")
    assert service.validate_message_input("x" * 10_000, None, "")[2] is None


def test_deleted_message_body_is_masked():
    m = Message(id=1, tenant_id=1, conversation_id=1, sender_id=1, body="secret", body_format="plain", deleted_at=datetime(2024, 1, 1))
    assert service.message_to_dict(m)["body"] == "[Message deleted]"

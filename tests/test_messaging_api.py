import pytest


def _direct(sess, other_id):
    r = sess.post("/api/conversations", json={"type": "direct", "participantIds": [other_id]})
    assert r.status_code in (200, 201), r.json
    return r.json["data"]["conversation"]["id"]


def _group(sess, member_ids, title="Ops", admin_ids=None):
    payload = {"type": "group", "participantIds": member_ids, "title": title}
    if admin_ids is not None:
        payload["adminIds"] = admin_ids
    r = sess.post("/api/conversations", json=payload)
    assert r.status_code == 201, r.json
    return r.json["data"]["conversation"]["id"]


def _send(sess, conversation_id, body="hello", **extra):
    r = sess.post(f"/api/conversations/{conversation_id}/messages", json={"body": body, **extra})
    assert r.status_code in (200, 201), r.json
    return r.json["data"]["message"]


def test_direct_conversation_is_idempotent(alice, bob, ids):
    r = alice.post("/api/conversations", json={"type": "direct", "participantIds": [ids["bob"]]})
    assert r.status_code == 201
    data = r.json["data"]
    assert data["conversation"]["type"] == "direct"
    assert data["conversation"]["title"] is None
    assert sorted(p["userId"] for p in data["participants"]) == sorted([ids["alice"], ids["bob"]])
    assert {p["role"] for p in data["participants"]} == {"member"}

    r2 = bob.post("/api/conversations", json={"type": "direct", "participantIds": [ids["alice"]]})
    assert r2.status_code == 200
    assert r2.json["data"]["conversation"]["id"] == data["conversation"]["id"]


def test_direct_conversation_rejects_other_tenant_user(alice, ids):
    r = alice.post("/api/conversations", json={"type": "direct", "participantIds": [ids["dave"]]})
    assert r.status_code == 400
    assert r.json["error"]["code"] == "CONVERSATION_VALIDATION_ERROR"
    assert r.json["error"]["context"]["unknownUserIds"] == [ids["dave"]]


def test_group_requires_title(alice, ids):
    r = alice.post("/api/conversations", json={"type": "group", "participantIds": [ids["bob"]]})
    assert r.status_code == 400
    assert r.json["error"]["code"] == "CONVERSATION_VALIDATION_ERROR"

    r = alice.post("/api/conversations", json={"type": "channel", "participantIds": [ids["bob"]]})
    assert r.status_code == 400


def test_group_creator_is_admin(alice, ids):
    r = alice.post(
        "/api/conversations",
        json={"type": "group", "participantIds": [ids["bob"], ids["carol"]], "title": "Ops", "adminIds": [ids["bob"]]},
    )
    assert r.status_code == 201
    roles = {p["userId"]: p["role"] for p in r.json["data"]["participants"]}
    assert roles == {ids["alice"]: "admin", ids["bob"]: "admin", ids["carol"]: "member"}


def test_conversation_access_rules(alice, carol, dave, ids):
    cid = _direct(alice, ids["bob"])

    r = carol.get(f"/api/conversations/{cid}")
    assert r.status_code == 403
    assert r.json["error"]["code"] == "ACCESS_DENIED"

    r = dave.get(f"/api/conversations/{cid}")
    assert r.status_code == 404
    assert r.json["error"]["code"] == "CONVERSATION_NOT_FOUND"

    r = carol.post(f"/api/conversations/{cid}/messages", json={"body": "sneaky"})
    assert r.status_code == 403


def test_list_conversations_filters_by_type(alice, ids):
    _direct(alice, ids["bob"])
    _group(alice, [ids["bob"], ids["carol"]])
    r = alice.get("/api/conversations")
    assert r.json["data"]["count"] == 2
    r = alice.get("/api/conversations?type=group")
    assert [c["type"] for c in r.json["data"]["conversations"]] == ["group"]


def test_send_message_updates_unread_and_notifies(alice, bob, ids):
    cid = _direct(alice, ids["bob"])
    r = alice.post(f"/api/conversations/{cid}/messages", json={"body": "hi bob"})
    assert r.status_code == 201
    data = r.json["data"]
    assert data["deliveryCount"] == 1
    assert data["readCount"] == 0
    assert data["message"]["senderId"] == ids["alice"]
    assert data["message"]["bodyFormat"] == "plain"
    m1 = data["message"]["id"]
    _send(alice, cid, "second")

    r = bob.get(f"/api/conversations/{cid}")
    assert r.json["data"]["unreadCount"] == 2
    assert alice.get(f"/api/conversations/{cid}").json["data"]["unreadCount"] == 0

    r = bob.get("/api/conversations/unread")
    assert r.json["data"] == {"total": 2, "conversations": [{"conversationId": cid, "unread": 2}]}

    r = bob.post(f"/api/messages/{m1}/read")
    assert r.status_code == 200
    assert r.json["data"]["receipt"]["readAt"] is not None
    assert bob.get(f"/api/conversations/{cid}").json["data"]["unreadCount"] == 1

    r = bob.post(f"/api/conversations/{cid}/read")
    assert r.json["data"] == {"updated": 1}
    assert bob.get("/api/conversations/unread").json["data"] == {"total": 0, "conversations": []}

    notes = bob.get("/api/notifications").json["data"]["notifications"]
    assert len(notes) == 2
    assert notes[0]["title"] == "New message from Alice"
    assert notes[0]["category"] == "messaging"
    assert notes[0]["actionUrl"] == f"/messages/{cid}"
    assert alice.get("/api/notifications").json["data"]["count"] == 0


def test_client_message_id_is_idempotent(alice, ids):
    cid = _direct(alice, ids["bob"])
    r1 = alice.post(f"/api/conversations/{cid}/messages", json={"body": "once", "clientMessageId": "c-1"})
    r2 = alice.post(f"/api/conversations/{cid}/messages", json={"body": "once", "clientMessageId": "c-1"})
    assert r1.status_code == 201
    assert r2.status_code == 200
    assert r1.json["data"]["message"]["id"] == r2.json["data"]["message"]["id"]
    assert alice.get(f"/api/conversations/{cid}/messages").json["data"]["count"] == 1

    other = _group(alice, [ids["carol"]])
    r3 = alice.post(f"/api/conversations/{other}/messages", json={"body": "once", "clientMessageId": "c-1"})
    assert r3.status_code == 400
    assert r3.json["error"]["code"] == "MESSAGE_VALIDATION_ERROR"


def test_message_validation_errors(alice, ids):
    cid = _direct(alice, ids["bob"])
    for payload in ({"body": ""}, {"body": "x" * 10_001}, {"body": "hi", "bodyFormat": "html"}):
        r = alice.post(f"/api/conversations/{cid}/messages", json=payload)
        assert r.status_code == 400
        assert r.json["error"]["code"] == "MESSAGE_VALIDATION_ERROR"


def test_cursor_pagination(alice, ids):
    cid = _direct(alice, ids["bob"])
    m1 = _send(alice, cid, "one")
    m2 = _send(alice, cid, "two")
    m3 = _send(alice, cid, "three")

    page = alice.get(f"/api/conversations/{cid}/messages?limit=2").json["data"]["messages"]
    assert [m["id"] for m in page] == [m3["id"], m2["id"]]
    page = alice.get(f"/api/conversations/{cid}/messages?limit=2&before={m2['id']}").json["data"]["messages"]
    assert [m["id"] for m in page] == [m1["id"]]

    r = alice.get(f"/api/conversations/{cid}/messages?before=999999")
    assert r.status_code == 400
    r = alice.get(f"/api/conversations/{cid}/messages?before=abc")
    assert r.status_code == 400
    assert r.json["error"]["code"] == "VALIDATION_ERROR"


def test_threads(alice, bob, ids):
    cid = _direct(alice, ids["bob"])
    root = _send(alice, cid, "root")
    reply = _send(bob, cid, "reply", parentMessageId=root["id"])
    assert reply["parentMessageId"] == root["id"]

    top = alice.get(f"/api/conversations/{cid}/messages").json["data"]["messages"]
    assert [m["id"] for m in top] == [root["id"]]

    r = alice.get(f"/api/messages/{root['id']}/thread")
    assert [m["id"] for m in r.json["data"]["replies"]] == [reply["id"]]

    r = alice.post(f"/api/conversations/{cid}/messages", json={"body": "nested", "parentMessageId": reply["id"]})
    assert r.status_code == 400

    other = _group(alice, [ids["carol"]])
    r = alice.post(f"/api/conversations/{other}/messages", json={"body": "cross", "parentMessageId": root["id"]})
    assert r.status_code == 400


def test_edit_and_delete_rules(alice, bob, ids):
    cid = _direct(alice, ids["bob"])
    m = _send(alice, cid, "typo")

    r = bob.patch(f"/api/messages/{m['id']}", json={"body": "hijack"})
    assert r.status_code == 403
    assert r.json["error"]["code"] == "ACCESS_DENIED"

    r = alice.patch(f"/api/messages/{m['id']}", json={"body": "fixed"})
    assert r.status_code == 200
    assert r.json["data"]["message"]["body"] == "fixed"
    assert r.json["data"]["message"]["editedAt"] is not None

    assert bob.delete(f"/api/messages/{m['id']}").status_code == 403
    r = alice.delete(f"/api/messages/{m['id']}")
    assert r.status_code == 200
    assert r.json["data"]["message"]["body"] == "[Message deleted]"
    assert r.json["data"]["message"]["deletedAt"] is not None

    assert alice.delete(f"/api/messages/{m['id']}").status_code == 400
    assert alice.patch(f"/api/messages/{m['id']}", json={"body": "again"}).status_code == 400
    assert alice.get("/api/messages/999999/thread").status_code == 404


def test_search(alice, bob, carol, ids):
    cid = _direct(alice, ids["bob"])
    _send(alice, cid, "deploy is 100% done")
    _send(alice, cid, "deploy is 100 done")
    gone = _send(alice, cid, "100% secret")
    alice.delete(f"/api/messages/{gone['id']}")

    r = bob.get("/api/messages/search?q=100%25")
    data = r.json["data"]
    assert data["count"] == 1
    assert data["results"][0]["message"]["body"] == "deploy is 100% done"
    assert "<b>100%</b>" in data["results"][0]["headline"]
    assert data["results"][0]["rank"] == 1.0

    r = bob.get("/api/messages/search?q=DEPLOY")
    assert r.json["data"]["count"] == 2

    assert carol.get("/api/messages/search?q=deploy").json["data"]["count"] == 0

    r = bob.get("/api/messages/search")
    assert r.status_code == 400
    assert r.json["error"]["code"] == "VALIDATION_ERROR"


def test_participants_add_remove_rejoin(alice, bob, carol, ids):
    cid = _group(alice, [ids["bob"]])

    r = bob.post(f"/api/conversations/{cid}/participants", json={"userIds": [ids["carol"]]})
    assert r.status_code == 403

    r = alice.post(f"/api/conversations/{cid}/participants", json={"userIds": [ids["carol"]]})
    assert r.status_code == 201
    assert [p["userId"] for p in r.json["data"]["participants"]] == [ids["carol"]]

    assert alice.post(f"/api/conversations/{cid}/participants", json={"userIds": [ids["dave"]]}).status_code == 400
    assert alice.post(f"/api/conversations/{cid}/participants", json={"userIds": [ids["erin"]]}).status_code == 400
    assert alice.post(f"/api/conversations/{cid}/participants", json={"userIds": [ids["bob"]]}).status_code == 403

    r = carol.delete(f"/api/conversations/{cid}/participants/{ids['carol']}")
    assert r.status_code == 200
    assert r.json["data"]["leftAt"] is not None
    assert carol.get(f"/api/conversations/{cid}").status_code == 403

    r = alice.post(f"/api/conversations/{cid}/participants", json={"userIds": [ids["carol"]]})
    assert r.status_code == 201
    assert r.json["data"]["participants"][0]["leftAt"] is None
    assert carol.get(f"/api/conversations/{cid}").status_code == 200

    r = alice.delete(f"/api/conversations/{cid}/participants/{ids['alice']}")
    assert r.status_code == 403
    assert r.json["error"]["code"] == "ACCESS_DENIED"

    r = alice.delete(f"/api/conversations/{cid}/participants/{ids['vera']}")
    assert r.status_code == 404
    assert r.json["error"]["code"] == "PARTICIPANT_NOT_FOUND"

    direct = _direct(alice, ids["bob"])
    assert alice.post(f"/api/conversations/{direct}/participants", json={"userIds": [ids["carol"]]}).status_code == 403


def test_update_title(alice, bob, ids):
    cid = _group(alice, [ids["bob"]])
    assert bob.patch(f"/api/conversations/{cid}", json={"title": "Mine"}).status_code == 403

    r = alice.patch(f"/api/conversations/{cid}", json={"title": "Renamed"})
    assert r.status_code == 200
    assert r.json["data"]["title"] == "Renamed"
    assert r.json["data"]["updatedBy"] == ids["alice"]

    assert alice.patch(f"/api/conversations/{cid}", json={"title": ""}).status_code == 400

    direct = _direct(alice, ids["bob"])
    assert alice.patch(f"/api/conversations/{direct}", json={"title": "Nope"}).status_code == 403


def test_read_receipts(alice, bob, ids):
    cid = _group(alice, [ids["bob"], ids["carol"]])
    m = _send(alice, cid, "status?")
    bob.post(f"/api/messages/{m['id']}/read")

    receipts = alice.get(f"/api/messages/{m['id']}/receipts").json["data"]["receipts"]
    by_user = {r["recipientId"]: r for r in receipts}
    assert set(by_user) == {ids["bob"], ids["carol"]}
    assert by_user[ids["bob"]]["readAt"] is not None
    assert by_user[ids["carol"]]["readAt"] is None


@pytest.fixture()
def low_message_limit(app):
    app.config["RATE_LIMIT_MESSAGES_PER_MINUTE"] = 2


def test_send_is_rate_limited(low_message_limit, alice, ids):
    cid = _direct(alice, ids["bob"])
    _send(alice, cid, "one")
    _send(alice, cid, "two")
    r = alice.post(f"/api/conversations/{cid}/messages", json={"body": "three"})
    assert r.status_code == 429
    assert r.json["error"]["code"] == "RATE_LIMITED"
    assert r.json["error"]["retryAfter"] >= 1

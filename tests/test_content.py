import hashlib
from datetime import timedelta

import pytest

from app.tenanthub.db import session_scope
from app.tenanthub.modules.content.models import Attachment
from app.tenanthub.modules.content.service import build_storage_key, cleanup_orphaned_uploads, sanitize_upload_filename
from app.tenanthub.storage import LocalStorage, StorageError, storage_from_config
from app.tenanthub.utils import utcnow

PAYLOAD = b"hello world"


def _initiate(sess, **overrides):
    body = {
        "entityType": "conversation",
        "entityId": "42",
        "fileName": "../Report Q1.pdf",
        "contentType": "application/pdf",
        "sizeBytes": len(PAYLOAD),
    }
    body.update(overrides)
    return sess.post("/api/content/uploads", json=body)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("report.pdf", "report.pdf"),
        ("../../etc/passwd", "etc_passwd"),
        ("My Report (final).pdf", "My_Report_final.pdf"),
        ("", "file.bin"),
        ("...", "file.bin"),
    ],
)
def test_sanitize_upload_filename(raw, expected):
    assert sanitize_upload_filename(raw) == expected


def test_storage_key_layout():
    key = build_storage_key(7, "conversation", "../42", "a b.pdf")
    tenant, entity_type, entity_id, name = key.split("/")
    assert (tenant, entity_type, entity_id) == ("7", "conversation", "42")
    assert name.endswith("-a_b.pdf")


def test_upload_flow(app, bob, carol, dave, ids):
    r = _initiate(bob)
    assert r.status_code == 201, r.json
    data = r.json["data"]
    attachment_id = data["attachmentId"]
    assert data["storageKey"].startswith(f"{ids['tenant:acme']}/conversation/42/")
    assert data["storageKey"].endswith("Report_Q1.pdf")
    assert data["uploadUrl"].startswith("/api/content/local/")
    assert data["expiresAt"].endswith("Z")

    r = bob.post(f"/api/content/attachments/{attachment_id}/complete")
    assert r.status_code == 400
    assert r.json["error"]["code"] == "UPLOAD_NOT_FOUND"

    r = bob.client.put(data["uploadUrl"], data=PAYLOAD, content_type="text/plain")
    assert r.status_code == 400
    assert r.json["error"]["code"] == "CONTENT_TYPE_MISMATCH"

    r = bob.client.put(data["uploadUrl"], data=PAYLOAD, content_type="application/pdf")
    assert r.status_code == 200
    assert r.json["data"]["sizeBytes"] == len(PAYLOAD)

    r = bob.get(f"/api/content/attachments/{attachment_id}/download")
    assert r.status_code == 400
    assert r.json["error"]["code"] == "UPLOAD_INCOMPLETE"

    r = bob.post(f"/api/content/attachments/{attachment_id}/complete", json={"sha256": "0" * 64})
    assert r.status_code == 400
    assert r.json["error"]["code"] == "CHECKSUM_MISMATCH"

    digest = hashlib.sha256(PAYLOAD).hexdigest()
    r = bob.post(f"/api/content/attachments/{attachment_id}/complete", json={"sha256": digest.upper()})
    assert r.status_code == 200
    assert r.json["data"]["sha256"] == digest
    assert r.json["data"]["completedAt"] is not None

    listed = carol.get("/api/content/attachments?entityType=conversation&entityId=42").json["data"]
    assert listed["count"] == 1
    assert listed["attachments"][0]["fileName"] == "../Report Q1.pdf"

    r = carol.get(f"/api/content/attachments/{attachment_id}/download")
    assert r.status_code == 200
    assert r.json["data"]["fileName"] == "../Report Q1.pdf"
    url = r.json["data"]["url"]
    r = carol.client.get(url)
    assert r.status_code == 200
    assert r.data == PAYLOAD
    assert "attachment" in r.headers["Content-Disposition"]
    r.close()

    assert bob.client.put(url, data=PAYLOAD, content_type="application/pdf").status_code == 403

    r = dave.get(f"/api/content/attachments/{attachment_id}/download")
    assert r.status_code == 404
    assert r.json["error"]["code"] == "ATTACHMENT_NOT_FOUND"

    assert carol.delete(f"/api/content/attachments/{attachment_id}").status_code == 403
    assert bob.delete(f"/api/content/attachments/{attachment_id}").status_code == 200
    assert carol.get("/api/content/attachments?entityType=conversation&entityId=42").json["data"]["count"] == 0
    assert bob.get(f"/api/content/attachments/{attachment_id}/download").status_code == 404


def test_other_user_cannot_complete(bob, carol):
    attachment_id = _initiate(bob).json["data"]["attachmentId"]
    r = carol.post(f"/api/content/attachments/{attachment_id}/complete")
    assert r.status_code == 403
    assert r.json["error"]["code"] == "PERMISSION_DENIED"


def test_tampered_token_rejected(bob):
    url = _initiate(bob).json["data"]["uploadUrl"]
    r = bob.client.put(url + "x", data=PAYLOAD, content_type="application/pdf")
    assert r.status_code == 403
    assert r.json["error"]["code"] == "INVALID_SIGNATURE"


def test_upload_validation(app, bob):
    r = _initiate(bob, contentType="application/x-msdownload")
    assert r.status_code == 415
    assert r.json["error"]["code"] == "UNSUPPORTED_CONTENT_TYPE"

    r = _initiate(bob, sizeBytes=app.config["MAX_UPLOAD_BYTES"] + 1)
    assert r.status_code == 413
    assert r.json["error"]["code"] == "FILE_TOO_LARGE"
    assert r.json["error"]["maxBytes"] == app.config["MAX_UPLOAD_BYTES"]

    r = _initiate(bob, fileName="")
    assert r.status_code == 400
    assert r.json["error"]["code"] == "MISSING_REQUIRED_FIELDS"

    r = _initiate(bob, entityType="Bad Type")
    assert r.status_code == 400
    assert r.json["error"]["code"] == "INVALID_ENTITY_TYPE"

    for size in (0, "11", True):
        r = _initiate(bob, sizeBytes=size)
        assert r.status_code == 400
        assert r.json["error"]["code"] == "INVALID_SIZE"

    r = bob.get("/api/content/attachments?entityType=conversation")
    assert r.status_code == 400


def test_uploads_require_permission(login):
    vera = login("vera@acme.test")
    assert vera.post("/api/content/uploads", json={}).status_code == 403


def _uploaded(sess, payload=PAYLOAD, **overrides):
    overrides.setdefault("sizeBytes", len(payload))
    data = _initiate(sess, **overrides).json["data"]
    r = sess.client.put(data["uploadUrl"], data=payload, content_type="application/pdf")
    assert r.status_code == 200
    return data


def _row(app, attachment_id):
    with session_scope(app) as s:
        return s.get(Attachment, attachment_id)


@pytest.mark.parametrize(
    "override,field",
    [
        ({"fileName": 7}, "fileName"),
        ({"entityType": 5}, "entityType"),
        ({"contentType": ["application/pdf"]}, "contentType"),
        ({"entityId": {"id": 42}}, "entityId"),
    ],
)
def test_upload_rejects_non_string_fields(bob, override, field):
    r = _initiate(bob, **override)
    assert r.status_code == 400
    assert r.json["error"]["code"] == "VALIDATION_ERROR"
    assert r.json["error"]["field"] == field


def test_upload_accepts_numeric_entity_id(bob):
    r = _initiate(bob, entityId=42)
    assert r.status_code == 201
    assert "/conversation/42/" in r.json["data"]["storageKey"]


def test_complete_rejects_non_string_checksum(bob):
    data = _uploaded(bob)
    r = bob.post(f"/api/content/attachments/{data['attachmentId']}/complete", json={"sha256": 123})
    assert r.status_code == 400
    assert r.json["error"]["code"] == "VALIDATION_ERROR"


def test_complete_rejects_object_larger_than_declared(app, bob):
    storage = storage_from_config(app.config)
    data = _uploaded(bob, sizeBytes=5)
    r = bob.post(f"/api/content/attachments/{data['attachmentId']}/complete")
    assert r.status_code == 400
    assert r.json["error"]["code"] == "SIZE_MISMATCH"
    assert r.json["error"]["actualBytes"] == len(PAYLOAD)
    assert not storage.exists(data["storageKey"])
    assert _row(app, data["attachmentId"]).completed_at is None


def test_complete_rejects_object_over_limit(app, bob):
    storage = storage_from_config(app.config)
    data = _initiate(bob).json["data"]
    # Written straight to the bucket, the way a presigned S3 PUT would bypass the app.
    storage.put_bytes(data["storageKey"], b"x" * 20)
    app.config["MAX_UPLOAD_BYTES"] = 16
    r = bob.post(f"/api/content/attachments/{data['attachmentId']}/complete")
    assert r.status_code == 413
    assert r.json["error"]["code"] == "FILE_TOO_LARGE"
    assert r.json["error"]["maxBytes"] == 16
    assert not storage.exists(data["storageKey"])


def test_identical_uploads_share_storage(app, bob, carol):
    storage = storage_from_config(app.config)
    first = _uploaded(bob, entityId="1")
    second = _uploaded(carol, entityId="2")
    assert bob.post(f"/api/content/attachments/{first['attachmentId']}/complete").status_code == 200
    r = carol.post(f"/api/content/attachments/{second['attachmentId']}/complete")
    assert r.status_code == 200
    assert r.json["data"]["sha256"] == hashlib.sha256(PAYLOAD).hexdigest()

    assert _row(app, second["attachmentId"]).storage_key == first["storageKey"]
    assert not storage.exists(second["storageKey"])
    assert storage.exists(first["storageKey"])

    # The first owner leaves; the object stays for the second reference.
    assert bob.delete(f"/api/content/attachments/{first['attachmentId']}").status_code == 200
    assert storage.exists(first["storageKey"])
    url = carol.get(f"/api/content/attachments/{second['attachmentId']}/download").json["data"]["url"]
    r = carol.client.get(url)
    assert r.data == PAYLOAD
    r.close()

    assert carol.delete(f"/api/content/attachments/{second['attachmentId']}").status_code == 200
    assert not storage.exists(first["storageKey"])


def test_dedup_is_per_tenant(app, bob, dave):
    first = _uploaded(bob)
    other = _uploaded(dave)
    bob.post(f"/api/content/attachments/{first['attachmentId']}/complete")
    assert dave.post(f"/api/content/attachments/{other['attachmentId']}/complete").status_code == 200
    assert _row(app, other["attachmentId"]).storage_key == other["storageKey"]


def test_deleting_incomplete_upload_removes_object(app, bob):
    storage = storage_from_config(app.config)
    data = _uploaded(bob)
    assert bob.delete(f"/api/content/attachments/{data['attachmentId']}").status_code == 200
    assert not storage.exists(data["storageKey"])


def test_cleanup_orphaned_uploads(app, bob):
    storage = storage_from_config(app.config)
    stale = _uploaded(bob)
    fresh = _initiate(bob).json["data"]
    done = _uploaded(bob, payload=b"kept")
    bob.post(f"/api/content/attachments/{done['attachmentId']}/complete")
    with session_scope(app) as s:
        for attachment_id in (stale["attachmentId"], done["attachmentId"]):
            s.get(Attachment, attachment_id).created_at = utcnow() - timedelta(hours=48)

    with session_scope(app) as s:
        preview = cleanup_orphaned_uploads(s, storage, older_than_hours=24, dry_run=True)
    assert preview == {"found": 1, "deleted": 0, "storageErrors": 0}
    assert _row(app, stale["attachmentId"]) is not None

    with session_scope(app) as s:
        result = cleanup_orphaned_uploads(s, storage, older_than_hours=24)
    assert result == {"found": 1, "deleted": 1, "storageErrors": 0}
    assert _row(app, stale["attachmentId"]) is None
    assert not storage.exists(stale["storageKey"])
    assert _row(app, fresh["attachmentId"]) is not None
    assert storage.exists(done["storageKey"])

    with session_scope(app) as s:
        assert cleanup_orphaned_uploads(s, storage, older_than_hours=24)["found"] == 0


def test_local_urls_expire(tmp_path):
    storage = LocalStorage(root=tmp_path, secret_key="k")
    token = storage.presigned_get_url("a/b.txt", expires_in=-1).rsplit("/", 1)[-1]
    with pytest.raises(StorageError, match="expired"):
        storage.verify_token(token, "GET")

    token = storage.presigned_get_url("a/b.txt", expires_in=60).rsplit("/", 1)[-1]
    assert storage.verify_token(token, "GET")["k"] == "a/b.txt"
    with pytest.raises(StorageError, match="method"):
        storage.verify_token(token, "PUT")
    with pytest.raises(StorageError, match="signature"):
        LocalStorage(root=tmp_path, secret_key="other").verify_token(token, "GET")


def test_local_keys_cannot_escape_root(tmp_path):
    storage = LocalStorage(root=tmp_path / "storage", secret_key="k")
    for key in ("../outside.txt", "../storage-sibling/x.txt"):
        with pytest.raises(StorageError):
            storage.put_bytes(key, b"x")
    storage.put_bytes("/nested/ok.txt", b"x")
    assert storage.size("nested/ok.txt") == 1

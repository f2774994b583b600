from __future__ import annotations

from flask import Blueprint, current_app, g, request, send_file

from app.tenanthub.db import db_session
from app.tenanthub.errors import ApiError, ok
from app.tenanthub.modules.content import service
from app.tenanthub.rbac import require_api_permission
from app.tenanthub.storage import LocalStorage, StorageError, storage_from_config
from app.tenanthub.tenancy import current_context

bp = Blueprint("content_api", __name__)

# Signed-URL endpoints for LocalStorage. The signature is the credential, so these
# sit outside the session/CSRF checks (see create_app).
local_bp = Blueprint("storage_local", __name__)


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ApiError(400, "INVALID_JSON", "Request body must be a JSON object.")
    return payload


def _expiry() -> int:
    return int(current_app.config.get("SIGNED_URL_EXPIRY_SECONDS") or 3600)


@bp.get("/attachments")
@require_api_permission("content.view")
def list_attachments():
    ctx = current_context()
    entity_type = (request.args.get("entityType") or "").strip()
    entity_id = (request.args.get("entityId") or "").strip()
    if not entity_type or not entity_id:
        raise ApiError(400, "MISSING_REQUIRED_FIELDS", "entityType and entityId are required")
    rows = service.list_for_entity(db_session(), ctx, entity_type, entity_id)
    return ok({"attachments": [service.attachment_to_dict(a) for a in rows], "count": len(rows)})


@bp.post("/uploads")
@require_api_permission("content.upload")
def initiate_upload():
    ctx = current_context()
    s = db_session()
    result = service.initiate_upload(
        s,
        storage_from_config(current_app.config),
        ctx,
        g.current_user,
        _json_body(),
        max_bytes=int(current_app.config["MAX_UPLOAD_BYTES"]),
        expires_in=_expiry(),
    )
    s.commit()
    return ok(result, 201)


@bp.post("/attachments/<int:attachment_id>/complete")
@require_api_permission("content.upload")
def complete_upload(attachment_id: int):
    ctx = current_context()
    s = db_session()
    payload = request.get_json(silent=True) or {}
    a = service.complete_upload(
        s,
        storage_from_config(current_app.config),
        ctx,
        g.current_user,
        attachment_id,
        max_bytes=int(current_app.config["MAX_UPLOAD_BYTES"]),
        expected_sha256=payload.get("sha256") if isinstance(payload, dict) else None,
    )
    s.commit()
    return ok(service.attachment_to_dict(a))


@bp.get("/attachments/<int:attachment_id>/download")
@require_api_permission("content.view")
def download(attachment_id: int):
    ctx = current_context()
    return ok(service.download_url(db_session(), storage_from_config(current_app.config), ctx, attachment_id, expires_in=_expiry()))


@bp.delete("/attachments/<int:attachment_id>")
@require_api_permission("content.upload")
def delete_attachment(attachment_id: int):
    ctx = current_context()
    s = db_session()
    a = service.delete_attachment(s, storage_from_config(current_app.config), ctx, g.current_user, attachment_id)
    s.commit()
    return ok(service.attachment_to_dict(a))


def _local_storage() -> LocalStorage:
    storage = storage_from_config(current_app.config)
    if not isinstance(storage, LocalStorage):
        raise ApiError(404, "NOT_FOUND", "Local storage is not enabled.")
    return storage


@local_bp.put("/<token>")
def local_put(token: str):
    storage = _local_storage()
    try:
        claims = storage.verify_token(token, "PUT")
    except StorageError as e:
        raise ApiError(403, "INVALID_SIGNATURE", str(e)) from e
    expected_ct = claims.get("ct")
    if expected_ct and (request.mimetype or "").lower() != expected_ct:
        raise ApiError(400, "CONTENT_TYPE_MISMATCH", "Content-Type does not match the signed upload.")
    data = request.get_data(cache=False)
    if len(data) > int(current_app.config["MAX_UPLOAD_BYTES"]):
        raise ApiError(413, "FILE_TOO_LARGE", "Upload exceeds the configured limit.")
    storage.put_bytes(claims["k"], data, content_type=expected_ct)
    return ok({"storageKey": claims["k"], "sizeBytes": len(data)})


@local_bp.get("/<token>")
def local_get(token: str):
    storage = _local_storage()
    try:
        claims = storage.verify_token(token, "GET")
        fobj = storage.open(claims["k"])
    except StorageError as e:
        raise ApiError(404, "NOT_FOUND", str(e)) from e
    return send_file(
        fobj,
        as_attachment=bool(claims.get("fn")),
        download_name=claims.get("fn") or claims["k"].rsplit("/", 1)[-1],
        max_age=0,
    )

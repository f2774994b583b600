from __future__ import annotations

import hashlib
import logging
import re
import uuid
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from werkzeug.utils import secure_filename

from app.tenanthub.audit import record_event
from app.tenanthub.errors import ApiError
from app.tenanthub.modules.content.models import Attachment
from app.tenanthub.storage import Storage, StorageError
from app.tenanthub.utils import isoformat, str_field, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.tenanthub.models import User
    from app.tenanthub.tenancy import UserContext

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = frozenset(
    {
        "application/pdf",
        "application/json",
        "application/zip",
        "application/msword",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "image/png",
        "image/jpeg",
        "image/gif",
        "image/webp",
        "text/plain",
        "text/csv",
    }
)
_ENTITY_TYPE_RE = re.compile(r"^[a-z][a-z0-9_]{0,63}$")
_CHUNK = 64 * 1024


def sanitize_upload_filename(filename: str) -> str:
    fn = secure_filename(filename or "")
    return fn or "file.bin"


def build_storage_key(tenant_id: int, entity_type: str, entity_id: str, file_name: str) -> str:
    safe_entity = secure_filename(entity_id) or "entity"
    return f"{tenant_id}/{entity_type}/{safe_entity}/{uuid.uuid4().hex}-{sanitize_upload_filename(file_name)}"


def validate_upload_request(payload: dict, *, max_bytes: int) -> dict[str, Any]:
    entity_type = str_field(payload, "entityType")
    entity_id = payload.get("entityId")
    if isinstance(entity_id, int) and not isinstance(entity_id, bool):
        entity_id = str(entity_id)
    else:
        entity_id = str_field(payload, "entityId")
    file_name = str_field(payload, "fileName")
    content_type = str_field(payload, "contentType").lower()
    size = payload.get("sizeBytes")

    if not entity_type or not entity_id or not file_name or not content_type or size is None:
        raise ApiError(
            400,
            "MISSING_REQUIRED_FIELDS",
            "entityType, entityId, fileName, contentType, and sizeBytes are required",
        )
    if not _ENTITY_TYPE_RE.match(entity_type):
        raise ApiError(400, "INVALID_ENTITY_TYPE", "entityType must be lowercase letters, digits or '_'")
    if len(entity_id) > 128:
        raise ApiError(400, "INVALID_ENTITY_ID", "entityId must be at most 128 characters")
    if not isinstance(size, int) or isinstance(size, bool) or size <= 0:
        raise ApiError(400, "INVALID_SIZE", "sizeBytes must be a positive integer")
    if size > max_bytes:
        raise ApiError(413, "FILE_TOO_LARGE", f"File exceeds the {max_bytes} byte limit", {"maxBytes": max_bytes})
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise ApiError(415, "UNSUPPORTED_CONTENT_TYPE", f"Content type {content_type!r} is not allowed")
    return {
        "entity_type": entity_type,
        "entity_id": entity_id,
        "file_name": file_name[:255],
        "content_type": content_type,
        "size_bytes": size,
    }


def _get_attachment(s: "Session", ctx: "UserContext", attachment_id: int) -> Attachment:
    a = s.get(Attachment, attachment_id)
    if not a or a.tenant_id != ctx.tenant_id or a.deleted_at is not None:
        raise ApiError(404, "ATTACHMENT_NOT_FOUND", f"Attachment {attachment_id} not found")
    return a


def initiate_upload(
    s: "Session",
    storage: Storage,
    ctx: "UserContext",
    actor: "User",
    payload: dict,
    *,
    max_bytes: int,
    expires_in: int,
) -> dict[str, Any]:
    req = validate_upload_request(payload, max_bytes=max_bytes)
    key = build_storage_key(ctx.tenant_id, req["entity_type"], req["entity_id"], req["file_name"])
    a = Attachment(
        tenant_id=ctx.tenant_id,
        entity_type=req["entity_type"],
        entity_id=req["entity_id"],
        file_name=req["file_name"],
        content_type=req["content_type"],
        size_bytes=req["size_bytes"],
        storage_key=key,
        uploaded_by=ctx.user_id,
        created_at=utcnow(),
    )
    s.add(a)
    s.flush()
    url = storage.presigned_put_url(key, content_type=a.content_type, expires_in=expires_in)
    record_event(
        s,
        actor=actor,
        action="attachment.initiate",
        entity_type="Attachment",
        entity_id=str(a.id),
        metadata={"entityType": a.entity_type, "entityId": a.entity_id, "sizeBytes": a.size_bytes},
    )
    logger.info("Upload initiated attachment=%s key=%s", a.id, key)
    return {
        "attachmentId": a.id,
        "uploadUrl": url,
        "storageKey": key,
        "expiresAt": isoformat(utcnow() + timedelta(seconds=expires_in)),
    }


def _digest(storage: Storage, key: str) -> tuple[str, int]:
    h = hashlib.sha256()
    size = 0
    fobj = storage.open(key)
    try:
        while True:
            chunk = fobj.read(_CHUNK)
            if not chunk:
                break
            h.update(chunk)
            size += len(chunk)
    finally:
        fobj.close()
    return h.hexdigest(), size


def _discard_object(storage: Storage, key: str) -> bool:
    """Best-effort object removal; a failure leaves the object for the next sweep."""
    try:
        storage.delete(key)
    except StorageError as e:
        logger.warning("Storage delete failed key=%s: %s", key, e)
        return False
    return True


def _find_duplicate(s: "Session", a: Attachment, digest: str) -> Attachment | None:
    return s.execute(
        select(Attachment)
        .where(
            Attachment.tenant_id == a.tenant_id,
            Attachment.sha256 == digest,
            Attachment.id != a.id,
            Attachment.completed_at.is_not(None),
            Attachment.deleted_at.is_(None),
        )
        .order_by(Attachment.id)
        .limit(1)
    ).scalars().first()


def complete_upload(
    s: "Session",
    storage: Storage,
    ctx: "UserContext",
    actor: "User",
    attachment_id: int,
    *,
    max_bytes: int,
    expected_sha256: Any = None,
) -> Attachment:
    a = _get_attachment(s, ctx, attachment_id)
    if a.uploaded_by != ctx.user_id:
        raise ApiError(403, "PERMISSION_DENIED", "Only the uploader can complete this upload")
    if a.completed_at is not None:
        return a
    if expected_sha256 is not None and not isinstance(expected_sha256, str):
        raise ApiError(400, "VALIDATION_ERROR", "sha256 must be a string.", {"field": "sha256"})
    if not storage.exists(a.storage_key):
        raise ApiError(400, "UPLOAD_NOT_FOUND", "The uploaded object was not found in storage")

    # Signed PUT URLs do not bind the body size; check what actually landed.
    try:
        actual_size = storage.size(a.storage_key)
    except StorageError as e:
        raise ApiError(400, "UPLOAD_NOT_FOUND", str(e)) from e
    if actual_size > max_bytes or actual_size > a.size_bytes:
        logger.warning(
            "Rejecting oversized upload attachment=%s declared=%s actual=%s max=%s",
            a.id,
            a.size_bytes,
            actual_size,
            max_bytes,
        )
        _discard_object(storage, a.storage_key)
        if actual_size > max_bytes:
            raise ApiError(413, "FILE_TOO_LARGE", f"File exceeds the {max_bytes} byte limit", {"maxBytes": max_bytes})
        raise ApiError(
            400,
            "SIZE_MISMATCH",
            "Uploaded object is larger than the declared size",
            {"declaredBytes": a.size_bytes, "actualBytes": actual_size},
        )

    try:
        digest, size = _digest(storage, a.storage_key)
    except StorageError as e:
        raise ApiError(400, "UPLOAD_NOT_FOUND", str(e)) from e
    if expected_sha256 and expected_sha256.strip().lower() != digest:
        raise ApiError(400, "CHECKSUM_MISMATCH", "sha256 does not match the uploaded object")

    metadata: dict[str, Any] = {"sha256": digest, "sizeBytes": size}
    original = _find_duplicate(s, a, digest)
    if original is not None and original.storage_key != a.storage_key:
        logger.info("Duplicate upload attachment=%s reuses storage of attachment=%s", a.id, original.id)
        _discard_object(storage, a.storage_key)
        a.storage_key = original.storage_key
        metadata["deduplicatedFrom"] = original.id

    a.sha256 = digest
    a.size_bytes = size
    a.completed_at = utcnow()
    record_event(
        s,
        actor=actor,
        action="attachment.complete",
        entity_type="Attachment",
        entity_id=str(a.id),
        metadata=metadata,
    )
    return a


def download_url(s: "Session", storage: Storage, ctx: "UserContext", attachment_id: int, *, expires_in: int) -> dict[str, Any]:
    a = _get_attachment(s, ctx, attachment_id)
    if a.completed_at is None:
        raise ApiError(400, "UPLOAD_INCOMPLETE", "Upload has not been completed")
    return {
        "url": storage.presigned_get_url(a.storage_key, expires_in=expires_in, file_name=a.file_name),
        "fileName": a.file_name,
        "expiresAt": isoformat(utcnow() + timedelta(seconds=expires_in)),
    }


def live_references(s: "Session", storage_key: str) -> int:
    return int(
        s.execute(
            select(func.count(Attachment.id)).where(
                Attachment.storage_key == storage_key,
                Attachment.deleted_at.is_(None),
            )
        ).scalar_one()
    )


def delete_attachment(s: "Session", storage: Storage, ctx: "UserContext", actor: "User", attachment_id: int) -> Attachment:
    a = _get_attachment(s, ctx, attachment_id)
    if a.uploaded_by != ctx.user_id:
        raise ApiError(403, "PERMISSION_DENIED", "Only the uploader can delete this attachment")
    a.deleted_at = utcnow()
    s.flush()

    remaining = live_references(s, a.storage_key)
    object_deleted = remaining == 0 and _discard_object(storage, a.storage_key)
    if remaining:
        logger.info("Keeping object key=%s; still referenced by %s attachment(s)", a.storage_key, remaining)
    record_event(
        s,
        actor=actor,
        action="attachment.delete",
        entity_type="Attachment",
        entity_id=str(a.id),
        metadata={"objectDeleted": object_deleted, "remainingReferences": remaining},
    )
    return a


def cleanup_orphaned_uploads(
    s: "Session",
    storage: Storage,
    *,
    older_than_hours: int,
    limit: int = 100,
    delete_objects: bool = True,
    dry_run: bool = False,
) -> dict[str, int]:
    """
    Remove uploads that were initiated but never completed within the TTL.
    Incomplete rows always own their storage key, so the object can go with the row.
    """
    cutoff = utcnow() - timedelta(hours=older_than_hours)
    rows = list(
        s.execute(
            select(Attachment)
            .where(
                Attachment.completed_at.is_(None),
                Attachment.deleted_at.is_(None),
                Attachment.created_at < cutoff,
            )
            .order_by(Attachment.created_at, Attachment.id)
            .limit(limit)
        ).scalars()
    )
    result = {"found": len(rows), "deleted": 0, "storageErrors": 0}
    if not rows:
        logger.debug("No orphaned uploads older than %sh", older_than_hours)
        return result
    if dry_run:
        return result

    for a in rows:
        if delete_objects and not _discard_object(storage, a.storage_key):
            result["storageErrors"] += 1
            continue
        record_event(
            s,
            actor=None,
            action="attachment.cleanup_orphan",
            entity_type="Attachment",
            entity_id=str(a.id),
            reason=f"Upload not completed within {older_than_hours}h",
            metadata={"storageKey": a.storage_key, "fileName": a.file_name},
            tenant_id=a.tenant_id,
        )
        s.delete(a)
        result["deleted"] += 1
    s.flush()
    logger.info(
        "Orphaned upload cleanup: found=%s deleted=%s storage_errors=%s",
        result["found"],
        result["deleted"],
        result["storageErrors"],
    )
    return result


def list_for_entity(s: "Session", ctx: "UserContext", entity_type: str, entity_id: str) -> list[Attachment]:
    return list(
        s.execute(
            select(Attachment)
            .where(
                Attachment.tenant_id == ctx.tenant_id,
                Attachment.entity_type == entity_type,
                Attachment.entity_id == entity_id,
                Attachment.deleted_at.is_(None),
                Attachment.completed_at.is_not(None),
            )
            .order_by(Attachment.created_at.desc(), Attachment.id.desc())
        ).scalars()
    )


def attachment_to_dict(a: Attachment) -> dict[str, Any]:
    return {
        "id": a.id,
        "entityType": a.entity_type,
        "entityId": a.entity_id,
        "fileName": a.file_name,
        "contentType": a.content_type,
        "sizeBytes": a.size_bytes,
        "sha256": a.sha256,
        "uploadedBy": a.uploaded_by,
        "createdAt": isoformat(a.created_at),
        "completedAt": isoformat(a.completed_at),
    }

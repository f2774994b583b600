from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

LOCAL_URL_PREFIX = "/api/content/local"


class StorageError(RuntimeError):
    pass


class Storage:
    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def size(self, key: str) -> int:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def presigned_put_url(self, key: str, *, content_type: str, expires_in: int) -> str:
        raise NotImplementedError

    def presigned_get_url(self, key: str, *, expires_in: int, file_name: str | None = None) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class LocalStorage(Storage):
    """
    Filesystem storage for dev/tests. "Presigned" URLs are itsdangerous-signed tokens
    served by the content blueprint under LOCAL_URL_PREFIX.
    """

    root: Path
    secret_key: str = "change-me"
    url_prefix: str = LOCAL_URL_PREFIX

    def _path(self, key: str) -> Path:
        safe_key = key.lstrip("/").replace("\\", "/")
        p = (self.root / safe_key).resolve()
        if not p.is_relative_to(self.root.resolve()):
            raise StorageError(f"Storage key escapes root: {key}")
        return p

    def _serializer(self) -> URLSafeTimedSerializer:
        return URLSafeTimedSerializer(self.secret_key, salt="local-storage-url")

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)

    def open(self, key: str) -> BinaryIO:
        p = self._path(key)
        if not p.exists():
            raise StorageError(f"Object not found: {key}")
        return p.open("rb")

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    def size(self, key: str) -> int:
        p = self._path(key)
        if not p.is_file():
            raise StorageError(f"Object not found: {key}")
        return p.stat().st_size

    def delete(self, key: str) -> None:
        p = self._path(key)
        if p.exists():
            p.unlink()

    def _sign(self, key: str, method: str, expires_in: int, **extra: Any) -> str:
        payload = {"k": key, "m": method, "x": int(expires_in)}
        payload.update({k: v for k, v in extra.items() if v})
        return f"{self.url_prefix}/{self._serializer().dumps(payload)}"

    def presigned_put_url(self, key: str, *, content_type: str, expires_in: int) -> str:
        return self._sign(key, "PUT", expires_in, ct=content_type)

    def presigned_get_url(self, key: str, *, expires_in: int, file_name: str | None = None) -> str:
        return self._sign(key, "GET", expires_in, fn=file_name)

    def verify_token(self, token: str, method: str) -> dict[str, Any]:
        """Decode a signed URL token; raises StorageError when invalid, expired, or for another method."""
        serializer = self._serializer()
        # The URL lifetime travels in the signed payload; loads() verifies it before trusting max_age.
        _, claims = serializer.loads_unsafe(token)
        max_age = claims.get("x") if isinstance(claims, dict) else None
        if not isinstance(max_age, int) or isinstance(max_age, bool):
            raise StorageError("Invalid storage URL signature.")
        try:
            payload = serializer.loads(token, max_age=max_age)
        except SignatureExpired as e:
            raise StorageError("Storage URL expired.") from e
        except BadSignature as e:
            raise StorageError("Invalid storage URL signature.") from e
        if payload.get("m") != method:
            raise StorageError("Storage URL not valid for this method.")
        return payload


@dataclass(frozen=True)
class S3Storage(Storage):
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str

    def _client(self):
        import boto3

        endpoint = self.endpoint
        if endpoint and not endpoint.startswith(("http://", "https://")):
            endpoint = f"https://{endpoint}"
        return boto3.client(
            "s3",
            endpoint_url=endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
        )

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        extra: dict[str, object] = {}
        if content_type:
            extra["ContentType"] = content_type
        self._client().put_object(Bucket=self.bucket, Key=key, Body=data, **extra)

    def open(self, key: str) -> BinaryIO:
        obj = self._client().get_object(Bucket=self.bucket, Key=key)
        return obj["Body"]  # type: ignore[return-value]

    def exists(self, key: str) -> bool:
        from botocore.exceptions import ClientError

        try:
            self._client().head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            status = (e.response.get("ResponseMetadata") or {}).get("HTTPStatusCode")
            if status == 404 or (e.response.get("Error") or {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageError(f"S3 head_object failed for {key}: {e}") from e

    def size(self, key: str) -> int:
        from botocore.exceptions import ClientError

        try:
            head = self._client().head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            raise StorageError(f"S3 head_object failed for {key}: {e}") from e
        return int(head.get("ContentLength") or 0)

    def delete(self, key: str) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self._client().delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"S3 delete_object failed for {key}: {e}") from e

    def presigned_put_url(self, key: str, *, content_type: str, expires_in: int) -> str:
        return self._client().generate_presigned_url(
            "put_object",
            Params={"Bucket": self.bucket, "Key": key, "ContentType": content_type},
            ExpiresIn=int(expires_in),
        )

    def presigned_get_url(self, key: str, *, expires_in: int, file_name: str | None = None) -> str:
        params: dict[str, object] = {"Bucket": self.bucket, "Key": key}
        if file_name:
            params["ResponseContentDisposition"] = f'attachment; filename="{file_name}"'
        return self._client().generate_presigned_url("get_object", Params=params, ExpiresIn=int(expires_in))


def storage_from_config(config: dict) -> Storage:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "s3":
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "nyc3").strip(),
            bucket=(config.get("S3_BUCKET") or "").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
        )
    # default local
    root = Path(config.get("STORAGE_LOCAL_ROOT") or "storage")
    return LocalStorage(root=root, secret_key=str(config.get("SECRET_KEY") or "change-me"))

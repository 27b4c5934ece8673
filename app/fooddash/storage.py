from __future__ import annotations

import hashlib
import os
import uuid
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import BinaryIO

from werkzeug.utils import secure_filename


class StorageError(RuntimeError):
    pass


class Storage:
    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path

    def _path(self, key: str) -> Path:
        safe_key = key.lstrip("/").replace("\\", "/")
        p = (self.root / safe_key).resolve()
        if self.root.resolve() not in p.parents:
            raise StorageError(f"Storage key escapes root: {key}")
        return p

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)

    def open(self, key: str) -> BinaryIO:
        p = self._path(key)
        if not p.exists():
            raise StorageError(f"Missing object: {key}")
        return p.open("rb")

    def exists(self, key: str) -> bool:
        return self._path(key).exists()


@dataclass(frozen=True)
class S3Storage(Storage):
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str

    def _client(self):
        import boto3

        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
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
        from botocore.exceptions import ClientError

        try:
            obj = self._client().get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            raise StorageError(f"Missing object: {key}") from e
        return obj["Body"]  # type: ignore[return-value]

    def exists(self, key: str) -> bool:
        from botocore.exceptions import ClientError

        try:
            self._client().head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError:
            return False


def storage_from_config(config: dict) -> Storage:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "s3":
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "fra1").strip(),
            bucket=(config.get("S3_BUCKET") or "").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
        )
    root = Path(config.get("LOCAL_STORAGE_ROOT") or (Path(os.getcwd()) / "storage"))
    return LocalStorage(root=root)


def build_storage_key(
    prefix: str,
    filename: str,
    upload_date: date | None = None,
    *,
    default_name: str = "file.bin",
    token: str | None = None,
) -> str:
    """<prefix>/<YYYY-MM-DD>/[<token>_]<secure filename>."""
    if upload_date is None:
        upload_date = date.today()
    safe_filename = secure_filename(filename) or default_name
    if token:
        safe_filename = f"{token}_{safe_filename}"
    return f"{prefix.strip('/')}/{upload_date.isoformat()}/{safe_filename}"


def file_digest_and_size(file_bytes: bytes) -> tuple[str, int]:
    h = hashlib.sha256()
    h.update(file_bytes)
    return (h.hexdigest(), len(file_bytes))


def store_upload(
    storage: Storage,
    upload,
    prefix: str,
    *,
    max_bytes: int,
    allowed_types: tuple[str, ...] = (),
    default_name: str = "file.bin",
) -> dict[str, object]:
    """
    Validate and persist a werkzeug FileStorage. `allowed_types` entries ending
    in '/' match a whole family ("audio/"). Raises ValueError on bad input.
    """
    if upload is None or not upload.filename:
        raise ValueError("A file is required.")
    content_type = (upload.mimetype or "").lower()
    if allowed_types and not any(
        content_type.startswith(t) if t.endswith("/") else content_type == t for t in allowed_types
    ):
        raise ValueError(f"Unsupported file type '{content_type or 'unknown'}'.")
    data = upload.read()
    if not data:
        raise ValueError("The file is empty.")
    if len(data) > max_bytes:
        raise ValueError(f"File too large (max {max_bytes // (1024 * 1024)} MB).")
    # Same-named uploads on the same day must not overwrite each other.
    key = build_storage_key(prefix, upload.filename, default_name=default_name, token=uuid.uuid4().hex[:12])
    storage.put_bytes(key, data, content_type=content_type or None)
    sha256, size = file_digest_and_size(data)
    return {
        "key": key,
        "filename": upload.filename,
        "content_type": content_type or None,
        "size": size,
        "sha256": sha256,
    }

import io
from datetime import date
from pathlib import Path

import pytest
from werkzeug.datastructures import FileStorage

from app.fooddash.storage import LocalStorage, S3Storage, StorageError, build_storage_key, storage_from_config, store_upload


def _upload(data: bytes, filename: str = "licence.pdf", content_type: str = "application/pdf") -> FileStorage:
    return FileStorage(stream=io.BytesIO(data), filename=filename, content_type=content_type)


def test_build_storage_key():
    assert build_storage_key("/drivers/4/documents/", "Permis de conduire.pdf", date(2026, 3, 9)) == (
        "drivers/4/documents/2026-03-09/Permis_de_conduire.pdf"
    )
    assert build_storage_key("blog", "../../", date(2026, 3, 9), default_name="image.bin") == "blog/2026-03-09/image.bin"
    assert build_storage_key("blog", "cover.jpg", date(2026, 3, 9), token="a1b2") == "blog/2026-03-09/a1b2_cover.jpg"


def test_local_storage_round_trip_and_escape(tmp_path):
    storage = LocalStorage(root=tmp_path)
    storage.put_bytes("a/b/c.txt", b"hello")
    assert storage.exists("a/b/c.txt")
    with storage.open("a/b/c.txt") as fh:
        assert fh.read() == b"hello"

    with pytest.raises(StorageError, match="Missing"):
        storage.open("a/b/missing.txt")
    with pytest.raises(StorageError, match="escapes root"):
        storage.put_bytes("../outside.txt", b"x")


def test_storage_from_config(tmp_path):
    assert isinstance(storage_from_config({"LOCAL_STORAGE_ROOT": str(tmp_path)}), LocalStorage)
    s3 = storage_from_config({"STORAGE_BACKEND": "S3", "S3_BUCKET": " fooddash ", "S3_ENDPOINT": "fra1.digitaloceanspaces.com"})
    assert isinstance(s3, S3Storage)
    assert s3.bucket == "fooddash"
    assert s3.region == "fra1"


def test_store_upload_validates_and_describes_the_file(tmp_path):
    storage = LocalStorage(root=tmp_path)
    types = ("application/pdf", "image/")

    with pytest.raises(ValueError, match="required"):
        store_upload(storage, None, "docs", max_bytes=10)
    with pytest.raises(ValueError, match="Unsupported"):
        store_upload(storage, _upload(b"x", "a.exe", "application/x-msdownload"), "docs", max_bytes=10, allowed_types=types)
    with pytest.raises(ValueError, match="empty"):
        store_upload(storage, _upload(b""), "docs", max_bytes=10, allowed_types=types)
    with pytest.raises(ValueError, match="too large"):
        store_upload(storage, _upload(b"x" * 11), "docs", max_bytes=10, allowed_types=types)

    doc = store_upload(storage, _upload(b"%PDF", "photo.png", "image/png"), "docs", max_bytes=10, allowed_types=types)
    assert doc["key"].startswith(f"docs/{date.today().isoformat()}/")
    assert doc["key"].endswith("_photo.png")
    assert doc["size"] == 4
    assert len(doc["sha256"]) == 64
    assert storage.exists(doc["key"])


def test_driver_document_upload_endpoint(world, client, app):
    from tests.conftest import login

    h = {"X-CSRF-Token": login(client, "driver@example.com")}
    r = client.post(
        "/api/driver/documents",
        data={"file": (io.BytesIO(b"%PDF-1.7"), "permis.pdf", "application/pdf")},
        headers=h,
        content_type="multipart/form-data",
    )
    assert r.status_code == 201
    key = r.json["documents"][0]["key"]
    assert key.startswith(f"drivers/{world['driver'].id}/documents/")
    assert LocalStorage(root=Path(app.config["LOCAL_STORAGE_ROOT"])).exists(key)


def test_same_named_blog_images_get_distinct_keys(world, client, app):
    from tests.conftest import login

    h = {"X-CSRF-Token": login(client, "admin@example.com")}
    keys = []
    for payload in (b"\x89PNG-first", b"\x89PNG-second"):
        r = client.post(
            "/api/admin/blog/images",
            data={"file": (io.BytesIO(payload), "cover.png", "image/png")},
            headers=h,
            content_type="multipart/form-data",
        )
        assert r.status_code == 201
        keys.append(r.json["image"]["key"])

    assert keys[0] != keys[1]
    storage = LocalStorage(root=Path(app.config["LOCAL_STORAGE_ROOT"]))
    with storage.open(keys[0]) as fh:
        assert fh.read() == b"\x89PNG-first"

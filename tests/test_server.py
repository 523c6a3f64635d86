import hashlib
import zipfile

import httpx
import pytest
from fastapi.testclient import TestClient

import server
from filerelay_backend import proxy


@pytest.fixture()
def storage(tmp_path, monkeypatch):
    root = (tmp_path / "storage").resolve()
    root.mkdir()
    monkeypatch.setattr(server, "STORAGE_ROOT", root)
    return root


@pytest.fixture()
def client(storage):
    return TestClient(server.app)


def test_upload_then_meta(client, storage):
    response = client.put("/api/files/docs/hello.txt", content=b"hello world")
    assert response.status_code == 201
    assert response.json() == {"path": "docs/hello.txt", "bytes": 11}
    assert (storage / "docs" / "hello.txt").read_bytes() == b"hello world"

    meta = client.get("/api/files/docs/hello.txt/meta").json()
    assert meta["size"] == 11
    assert meta["algorithm"] == "sha256"
    assert meta["hash"] == hashlib.sha256(b"hello world").hexdigest()
    assert meta["content_type"] == "text/plain"

    md5 = client.get("/api/files/docs/hello.txt/meta", params={"algorithm": "md5"}).json()
    assert md5["hash"] == hashlib.md5(b"hello world").hexdigest()


def test_upload_conflict_and_overwrite(client, storage):
    assert client.put("/api/files/a.txt", content=b"one").status_code == 201
    assert client.put("/api/files/a.txt", content=b"two").status_code == 409
    assert client.put("/api/files/a.txt", params={"overwrite": "true"}, content=b"two").status_code == 201
    assert (storage / "a.txt").read_bytes() == b"two"


def test_upload_rejects_traversal(client, storage):
    response = client.put("/api/files/..%2F..%2Fescape.txt", content=b"x")
    assert response.status_code == 400
    assert not (storage.parent / "escape.txt").exists()


def test_rejected_upload_leaves_no_directories(client, storage, monkeypatch):
    monkeypatch.setattr(server, "MAX_BODY_BYTES", 4)

    response = client.put("/api/files/deep/nested/big.bin", content=b"0123456789")
    assert response.status_code == 413
    assert not (storage / "deep").exists()


def test_meta_missing_file(client):
    assert client.get("/api/files/nope.txt/meta").status_code == 404


def test_form_upload(client, storage):
    response = client.post(
        "/api/forms/incoming",
        files={"nested/photo.png": ("photo.png", b"\x89PNG\r\n\x1a\n....", "image/png")},
    )
    assert response.status_code == 201
    assert response.json() == {"saved": ["incoming/nested/photo.png"]}
    assert (storage / "incoming" / "nested" / "photo.png").is_file()


def test_archive_extract_round_trip(client, storage):
    src = storage / "src"
    (src / "sub").mkdir(parents=True)
    (src / "a.txt").write_text("hello", encoding="utf-8")
    (src / "sub" / "b.txt").write_text("world", encoding="utf-8")

    response = client.post("/api/archive", json={"source": "src", "archive": "out.zip"})
    assert response.status_code == 201
    assert response.json() == {"archive": "out.zip", "entries": 2}

    entries = client.get("/api/archive/entries", params={"archive": "out.zip"}).json()
    assert entries["entries"] == ["a.txt", "sub/b.txt"]

    response = client.post("/api/extract", json={"archive": "out.zip", "destination": "dst"})
    assert response.status_code == 201
    assert response.json() == {"destination": "dst", "entries": 2}
    assert (storage / "dst" / "a.txt").read_text(encoding="utf-8") == "hello"
    assert (storage / "dst" / "sub" / "b.txt").read_text(encoding="utf-8") == "world"

    # Extracting again into the same destination is refused.
    assert client.post("/api/extract", json={"archive": "out.zip", "destination": "dst"}).status_code == 409


def test_archive_single_file(client, storage):
    (storage / "report.csv").write_text("a,b\n", encoding="utf-8")
    response = client.post("/api/archive", json={"source": "report.csv", "archive": "report.zip"})
    assert response.status_code == 201
    with zipfile.ZipFile(storage / "report.zip") as zf:
        assert zf.namelist() == ["report.csv"]


def test_archive_missing_source(client):
    response = client.post("/api/archive", json={"source": "ghost", "archive": "ghost.zip"})
    assert response.status_code == 404


def test_archive_onto_its_own_source(client, storage):
    (storage / "notes.txt").write_bytes(b"keep me")
    response = client.post("/api/archive", json={"source": "notes.txt", "archive": "notes.txt"})
    assert response.status_code == 400
    assert (storage / "notes.txt").read_bytes() == b"keep me"


def test_extract_zip_slip_is_rejected(client, storage):
    with zipfile.ZipFile(storage / "evil.zip", "w") as zf:
        zf.writestr("../../outside.txt", "pwned")

    response = client.post("/api/extract", json={"archive": "evil.zip", "destination": "dst"})
    assert response.status_code == 400
    assert not (storage.parent / "outside.txt").exists()


def test_extract_invalid_archive(client, storage):
    (storage / "broken.zip").write_bytes(b"nope")
    response = client.post("/api/extract", json={"archive": "broken.zip", "destination": "dst"})
    assert response.status_code == 400


def test_copy_and_list(client, storage):
    (storage / "orig").mkdir()
    (storage / "orig" / "f.txt").write_text("f", encoding="utf-8")

    assert client.post("/api/copy", json={"source": "orig", "destination": "clone"}).status_code == 201
    assert client.post("/api/copy", json={"source": "orig/f.txt", "destination": "g.txt"}).status_code == 201
    assert client.post("/api/copy", json={"source": "orig", "destination": "orig/inner"}).status_code == 400
    assert client.post("/api/copy", json={"source": "orig/f.txt", "destination": "g.txt"}).status_code == 409

    listing = client.get("/api/dirs/clone").json()
    assert listing == {"path": "clone", "children": ["f.txt"]}
    assert (storage / "g.txt").read_text(encoding="utf-8") == "f"


def test_list_missing_dir(client):
    assert client.get("/api/dirs/missing").status_code == 404


def test_proxy_disabled_without_upstream(client, monkeypatch):
    monkeypatch.setattr(server, "UPSTREAM_URL", "")
    assert client.get("/proxy/anything").status_code == 404


def test_lifespan_starts_and_stops(storage):
    with TestClient(server.app) as managed:
        response = managed.get("/api/dirs/")
        assert response.status_code == 200
        assert response.json()["children"] == []


def test_proxy_forwards_to_upstream(client, monkeypatch):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    monkeypatch.setattr(server, "UPSTREAM_URL", "http://upstream.test/base")
    monkeypatch.setattr(proxy, "_client", httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    response = client.get("/proxy/v1/items", params={"q": "x"})
    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert str(seen[0].url) == "http://upstream.test/base/v1/items?q=x"

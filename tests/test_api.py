from __future__ import annotations

import inspect
from pathlib import Path

from fastapi.testclient import TestClient

from media_store.api import create_app
from media_store.cleaner import PassResult
from media_store.scheduler import CleanerScheduler
from media_store.settings import Settings


def _settings(root: Path, **kw) -> Settings:
    base = dict(
        MS_DB="pg",
        MS_PG_TABLES="posts",
        MS_UPLOAD_ROOT=root,
        MS_CLEANER_ENABLED=False,
        MS_MAX_UPLOAD_SIZE=1024,
        MS_MAX_STREAM_BUFFER=4,
        MS_DEFAULT_SIZE=2,
    )
    base.update(kw)
    return Settings(**base)


def _client(root: Path, **kw) -> TestClient:
    return TestClient(create_app(_settings(root, **kw)))


def test_upload_slugifies_and_returns_reference(tmp_path: Path) -> None:
    client = _client(tmp_path)
    r = client.post("/upload", files={"file": ("My File (1).PNG", b"png-bytes", "image/png")}, data={"path": "/avatars/"})
    assert r.status_code == 201
    assert r.json() == {"ok": True, "data": "/uploads/avatars/my-file-1.png"}
    assert (tmp_path / "avatars" / "my-file-1.png").read_bytes() == b"png-bytes"

    again = client.post("/upload", files={"file": ("My File (1).PNG", b"other", "image/png")}, data={"path": "avatars"})
    assert again.status_code == 409
    assert again.json()["ok"] is False


def test_upload_limits_and_path_validation(tmp_path: Path) -> None:
    client = _client(tmp_path)
    big = client.post("/upload", files={"file": ("big.bin", b"x" * 2048, "application/octet-stream")})
    assert big.status_code == 413
    assert not (tmp_path / "big.bin").exists()

    bad = client.post("/upload", files={"file": ("a.png", b"x", "image/png")}, data={"path": "../escape"})
    assert bad.status_code == 400
    assert bad.json() == {"ok": False, "detail": "invalid path"}


def test_rejected_upload_leaves_no_new_directories(tmp_path: Path) -> None:
    (tmp_path / "avatars").mkdir()
    (tmp_path / "avatars" / "taken.png").write_bytes(b"old")
    client = _client(tmp_path)

    big = client.post(
        "/upload",
        files={"file": ("big.bin", b"x" * 2048, "application/octet-stream")},
        data={"path": "avatars/2024/01"},
    )
    assert big.status_code == 413
    assert not (tmp_path / "avatars" / "2024").exists()
    assert (tmp_path / "avatars").is_dir()

    dup = client.post("/upload", files={"file": ("taken.png", b"new", "image/png")}, data={"path": "avatars"})
    assert dup.status_code == 409
    assert (tmp_path / "avatars" / "taken.png").read_bytes() == b"old"

    ok = client.post("/upload", files={"file": ("a.png", b"x", "image/png")}, data={"path": "fresh/deep"})
    assert ok.status_code == 201
    assert (tmp_path / "fresh" / "deep" / "a.png").exists()


def test_upload_handler_runs_off_the_event_loop(tmp_path: Path) -> None:
    app = create_app(_settings(tmp_path))
    route = next(r for r in app.routes if getattr(r, "path", None) == "/upload")
    assert not inspect.iscoroutinefunction(route.endpoint)


def test_list_is_paginated(tmp_path: Path) -> None:
    for name in ("a.png", "b.png", "sub/c.png"):
        p = tmp_path / name
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(b"x")
    client = _client(tmp_path)

    first = client.get("/list/").json()
    assert first["count"] == 3
    assert first["total_pages"] == 2
    assert first["has_next_page"] is True
    assert [d["path"] for d in first["data"]] == ["/uploads/a.png", "/uploads/b.png"]

    second = client.get("/list/", params={"page": 2}).json()
    assert [d["path"] for d in second["data"]] == ["/uploads/sub/c.png"]
    assert second["has_next_page"] is False

    sub = client.get("/list/sub").json()
    assert sub["count"] == 1

    assert client.get("/list/nope").status_code == 404


def test_delete(tmp_path: Path) -> None:
    (tmp_path / "a.png").write_bytes(b"x")
    client = _client(tmp_path)

    assert client.delete("/delete").status_code == 400
    assert client.delete("/delete", params={"path": "/uploads/../etc/passwd"}).status_code == 400
    assert client.delete("/delete", params={"path": "/uploads/a.png"}).status_code == 204
    assert not (tmp_path / "a.png").exists()
    assert client.delete("/delete", params={"path": "/uploads/a.png"}).status_code == 404


def test_stream_and_static(tmp_path: Path) -> None:
    (tmp_path / "clip.mp4").write_bytes(b"0123456789")
    (tmp_path / "doc.txt").write_bytes(b"text")
    client = _client(tmp_path)

    r = client.get("/stream/uploads/clip.mp4")
    assert r.status_code == 200
    assert r.headers["content-type"] == "video/mp4"
    assert r.content == b"0123456789"

    assert client.get("/stream/uploads/doc.txt").status_code == 415
    assert client.get("/stream/uploads/missing.mp4").status_code == 404

    static = client.get("/uploads/doc.txt")
    assert static.status_code == 200
    assert static.content == b"text"


def test_lifespan_starts_and_stops_cleaner(tmp_path: Path) -> None:
    class _Cleaner:
        calls = 0

        def run_pass(self):
            _Cleaner.calls += 1
            return PassResult(ok=True)

    sched = CleanerScheduler(_Cleaner(), interval_seconds=3600)
    app = create_app(_settings(tmp_path), scheduler=sched)

    with TestClient(app) as client:
        assert client.get("/health").json() == {"ok": True}
        assert app.state.scheduler is sched
        assert sched.running or _Cleaner.calls == 1

    assert not sched.running
    assert _Cleaner.calls == 1

from __future__ import annotations

import sys
from pathlib import Path
from types import SimpleNamespace

from typer.testing import CliRunner

import media_store.cli as cli
from media_store.cleaner import Cleaner
from media_store.logging import LogFiles
from media_store.settings import Settings

runner = CliRunner()


class _Scanner:
    backend_name = "fake"

    def __init__(self, refs):
        self.refs = refs

    def scan(self):
        return set(self.refs)


def _patch(monkeypatch, tmp_path: Path, **kw) -> Settings:
    settings = Settings(MS_UPLOAD_ROOT=tmp_path, MS_PG_TABLES="posts", MS_LOG_DIR=tmp_path / "_logs", **kw)
    monkeypatch.setattr(cli, "load_settings", lambda: settings)
    monkeypatch.setattr(cli, "setup_logging", lambda s: LogFiles(tmp_path / "_logs" / "media_store.log", None))
    return settings


def test_clean_dry_run_lists_candidates(monkeypatch, tmp_path: Path) -> None:
    _patch(monkeypatch, tmp_path)
    (tmp_path / "keep.png").write_bytes(b"x")
    (tmp_path / "drop.png").write_bytes(b"x")
    monkeypatch.setattr(
        cli, "build_cleaner", lambda s: Cleaner(_Scanner({"/uploads/keep.png"}), tmp_path, "/uploads")
    )

    result = runner.invoke(cli.app, ["clean", "--dry-run"])

    assert result.exit_code == 0, result.output
    assert "/uploads/drop.png" in result.output
    assert (tmp_path / "drop.png").exists()


def test_clean_exits_nonzero_when_pass_aborts(monkeypatch, tmp_path: Path) -> None:
    _patch(monkeypatch, tmp_path)

    class _Broken:
        backend_name = "broken"

        def scan(self):
            from media_store.errors import BackendConnectionError

            raise BackendConnectionError("refused")

    monkeypatch.setattr(cli, "build_cleaner", lambda s: Cleaner(_Broken(), tmp_path, "/uploads"))
    result = runner.invoke(cli.app, ["clean"])
    assert result.exit_code == 1
    assert "nothing deleted" in result.output


def test_unknown_backend_is_fatal(monkeypatch, tmp_path: Path) -> None:
    _patch(monkeypatch, tmp_path, MS_DB="redis")
    result = runner.invoke(cli.app, ["clean"])
    assert result.exit_code == 2
    assert "invalid database type" in result.output


def test_status_shows_configuration(monkeypatch, tmp_path: Path) -> None:
    _patch(monkeypatch, tmp_path)
    result = runner.invoke(cli.app, ["status"])
    assert result.exit_code == 0, result.output
    assert "posts" in result.output


def test_run_uses_settings_host_port(monkeypatch, tmp_path: Path) -> None:
    _patch(monkeypatch, tmp_path, MS_API_HOST="127.0.0.1", MS_API_PORT=9090)
    captured: dict[str, object] = {}

    def fake_uvicorn_run(app, host=None, port=None, reload=None, **kwargs):
        captured.update(app=app, host=host, port=port, reload=reload)

    # cli.run() imports uvicorn inside the function. Provide a fake module.
    monkeypatch.setitem(sys.modules, "uvicorn", SimpleNamespace(run=fake_uvicorn_run))

    result = runner.invoke(cli.app, ["run"])

    assert result.exit_code == 0, result.output
    assert captured == {"app": "media_store.app:app", "host": "127.0.0.1", "port": 9090, "reload": False}

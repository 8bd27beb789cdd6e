from __future__ import annotations

import logging
import math
from collections.abc import Iterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, File, Form, HTTPException, Query, Request, Response, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles

from .cleaner import build_cleaner
from .reconciler import path_for_reference
from .references import normalize_reference, reference_for
from .scheduler import CleanerScheduler
from .settings import Settings
from .slugify import slugify_filename

logger = logging.getLogger(__name__)

STREAM_CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
}

_UPLOAD_CHUNK = 64 * 1024


def _safe_parts(raw: str) -> list[str]:
    """Split a client-supplied relative directory; reject traversal."""

    cleaned = str(raw or "").strip(" /\\").replace("\\", "/")
    if not cleaned:
        return []
    parts = cleaned.split("/")
    if any(p in ("", ".", "..") for p in parts):
        raise HTTPException(status_code=400, detail="invalid path")
    return parts


def _first_missing(directory: Path, root: Path) -> Path | None:
    """Topmost ancestor of `directory` (below root) that does not exist yet."""

    missing = None
    for d in (directory, *directory.parents):
        if d == root or d.exists():
            break
        missing = d
    return missing


def _prune_created(directory: Path, created: Path | None) -> None:
    """Remove directories a failed upload created, deepest first, while empty."""

    if created is None:
        return
    for d in (directory, *directory.parents):
        try:
            d.rmdir()
        except OSError:
            return
        if d == created:
            return


def _paginate(items: list, page: int, size: int) -> dict:
    count = len(items)
    start = min((page - 1) * size, count)
    end = min(start + size, count)
    total_pages = math.ceil(count / size) if size else 0
    return {
        "data": items[start:end],
        "count": count,
        "total_pages": total_pages,
        "current_page": page,
        "has_next_page": page < total_pages,
    }


def create_app(settings: Settings, *, scheduler: CleanerScheduler | None = None) -> FastAPI:
    """HTTP surface of the store.

    When MS_CLEANER_ENABLED is set, the cleaner scheduler starts with the app
    and stops on shutdown. A ConfigError from backend selection fails startup.
    """

    root = Path(settings.MS_UPLOAD_ROOT)
    root.mkdir(parents=True, exist_ok=True)
    prefix = settings.MS_REFERENCE_PREFIX

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sched = scheduler
        if sched is None and settings.MS_CLEANER_ENABLED:
            sched = CleanerScheduler(build_cleaner(settings), settings.MS_CLEANER_INTERVAL_SECONDS)
        app.state.scheduler = sched
        if sched is not None:
            sched.start()
        try:
            yield
        finally:
            if sched is not None:
                sched.stop(timeout=5)

    app = FastAPI(title="media_store API", version="0.1.0", lifespan=lifespan)

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"ok": False, "detail": exc.detail})

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.post("/upload", status_code=201)
    def upload(file: UploadFile = File(...), path: str = Form("")):
        # Runs in the threadpool; all file IO below is blocking.
        parts = _safe_parts(path)
        target_dir = root.joinpath(*parts)
        name = slugify_filename(file.filename or "")
        dst = target_dir / name
        if dst.exists():
            raise HTTPException(status_code=409, detail="file already exists")

        created = _first_missing(target_dir, root)
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning("Error creating directory %s: %s", target_dir, e)
            raise HTTPException(status_code=400, detail="error creating directory")

        written = 0
        try:
            with dst.open("xb") as out:
                while chunk := file.file.read(_UPLOAD_CHUNK):
                    written += len(chunk)
                    if written > settings.MS_MAX_UPLOAD_SIZE:
                        raise HTTPException(status_code=413, detail="file too big")
                    out.write(chunk)
        except FileExistsError:
            _prune_created(target_dir, created)
            raise HTTPException(status_code=409, detail="file already exists")
        except HTTPException:
            dst.unlink(missing_ok=True)
            _prune_created(target_dir, created)
            raise

        ref = reference_for("/".join([*parts, name]), prefix)
        logger.info("File saved: %s", ref)
        return {"ok": True, "data": ref}

    @app.get("/list/{subpath:path}")
    def list_files(
        subpath: str,
        page: int = Query(default=settings.MS_DEFAULT_PAGE, ge=1),
        size: int = Query(default=settings.MS_DEFAULT_SIZE, ge=1, le=1000),
    ):
        base = root.joinpath(*_safe_parts(subpath))
        if not base.is_dir():
            raise HTTPException(status_code=404, detail="error reading directory")

        items = []
        for p in sorted(base.rglob("*")):
            if p.is_symlink() or not p.is_file():
                continue
            try:
                mod_time = int(p.stat().st_mtime)
            except FileNotFoundError:
                continue
            rel = p.relative_to(root).as_posix()
            items.append({"path": reference_for(rel, prefix), "mod_time": mod_time})
        return _paginate(items, page, size)

    @app.delete("/delete", status_code=204)
    def delete_file(path: str = Query(default="")):
        if not path:
            raise HTTPException(status_code=400, detail="path not provided")
        target = path_for_reference(normalize_reference(path), root, prefix)
        if target is None:
            raise HTTPException(status_code=400, detail="invalid path")
        try:
            target.unlink()
        except FileNotFoundError:
            raise HTTPException(status_code=404, detail="file not found")
        except IsADirectoryError:
            raise HTTPException(status_code=400, detail="invalid path")
        logger.info("File %s deleted", path)
        return Response(status_code=204)

    @app.get(f"/stream{prefix}/{{name:path}}")
    def stream(name: str):
        target = path_for_reference(reference_for(name, prefix), root, prefix)
        if target is None or not target.is_file():
            raise HTTPException(status_code=404, detail="error retrieving file")
        media_type = STREAM_CONTENT_TYPES.get(target.suffix.lower())
        if media_type is None:
            raise HTTPException(status_code=415, detail="unsupported media type")

        chunk_size = max(1, settings.MS_MAX_STREAM_BUFFER)

        def _chunks() -> Iterator[bytes]:
            with target.open("rb") as fh:
                while chunk := fh.read(chunk_size):
                    yield chunk

        logger.info("Streaming mediafile: %s", name)
        return StreamingResponse(_chunks(), media_type=media_type)

    app.mount(prefix, StaticFiles(directory=str(root)), name="uploads")

    return app

"""Slidev preview, build and export API."""

from __future__ import annotations

import logging
import mimetypes
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional

from fastapi import APIRouter, FastAPI, Path as FastAPIPath, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException

from slidev_runtime.artifacts import ArtifactLocator
from slidev_runtime.builder import BuildOrchestrator
from slidev_runtime.config import load_settings
from slidev_runtime.errors import BuildFailure, GenerationFailure, SlidevError, SpawnFailure
from slidev_runtime.files import BuildFileServer
from slidev_runtime.metrics import (
    MetricsMiddleware,
    build_duration_seconds,
    build_runs_total,
    create_metrics_endpoint,
    export_runs_total,
    preview_active,
    preview_spawn_failures_total,
    preview_started_total,
)
from slidev_runtime.ports import PortAllocator
from slidev_runtime.registry import InstanceRegistry
from slidev_runtime.screenshot import ScreenshotService
from slidev_runtime.supervisor import ProcessSupervisor
from slidev_runtime.validation import parse_export_format, require_absolute_path, require_positive_int

settings = load_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("slidev_api")

EXPORT_MEDIA_TYPES = {
    "pdf": "application/pdf",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
}

locator = ArtifactLocator(settings.work_dir)
ports = PortAllocator(settings.preview_base_port, settings.preview_max_port)
supervisor = ProcessSupervisor(settings)
registry = InstanceRegistry(ports, supervisor)
builder = BuildOrchestrator(settings, locator)
files = BuildFileServer(locator)
screenshots = ScreenshotService(registry, settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Slidev API starting; work dir %s", settings.work_dir)
    yield
    logger.info("Shutting down; stopping all previews")
    await registry.shutdown_all()
    locator.clear()


app = FastAPI(
    title="Slidev Runtime API",
    version="1.0.0",
    description="Preview, build and export Slidev decks, and serve their artifacts.",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "preview", "description": "Preview server lifecycle"},
        {"name": "build", "description": "Static builds and build artifacts"},
        {"name": "export", "description": "PDF and PPTX exports"},
        {"name": "health", "description": "Health and readiness checks"},
    ],
)
api = APIRouter(prefix="/api")


def _refresh_gauges() -> None:
    preview_active.set(len(registry.list_instances()))


app.add_middleware(MetricsMiddleware)
create_metrics_endpoint(app, refresh=_refresh_gauges)


class CamelModel(BaseModel):
    # strict: "7", 7.0 and true are not slide ids or ports
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, strict=True)


class PreviewStartRequest(CamelModel):
    slide_id: int
    slides_path: str
    port: Optional[int] = None
    remote: bool = True


class PreviewStopRequest(CamelModel):
    slide_id: int


class BuildRequest(CamelModel):
    slide_id: int
    slides_path: str
    output_dir: Optional[str] = None
    base: Optional[str] = None
    temp_dir: Optional[str] = None


class ExportRequest(CamelModel):
    slide_id: int
    slides_path: str
    format: Optional[str] = None
    output_file: Optional[str] = None
    dark: bool = False


class ScreenshotRequest(CamelModel):
    slide_id: int
    slides_path: str
    cover_path: str
    width: Optional[int] = None
    height: Optional[int] = None


def _ok(data: Any) -> dict:
    return {"success": True, "data": data}


def _fail(status_code: int, message: str, details: Any = None) -> JSONResponse:
    body: dict = {"success": False, "message": message}
    if details is not None:
        body["details"] = jsonable_encoder(details)
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(SlidevError)
async def slidev_error_handler(request: Request, exc: SlidevError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _fail(exc.status_code, exc.message, exc.details)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _fail(400, "invalid request", exc.errors())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _fail(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _fail(500, "internal server error")


@api.post("/preview/start", tags=["preview"])
async def start_preview(payload: PreviewStartRequest):
    """
    Start (or reuse) the preview server for a deck.

    Parameters:
        payload (PreviewStartRequest): `slideId`, absolute `slidesPath`, optional
            preferred `port` and `remote` flag.

    Returns:
        dict: Envelope with `port` and `alreadyRunning`.
    """
    require_absolute_path(payload.slides_path, "slidesPath")
    try:
        started = await registry.start_preview(
            payload.slide_id, payload.slides_path, port=payload.port, remote=payload.remote
        )
    except SpawnFailure:
        preview_spawn_failures_total.inc()
        raise
    if not started.already_running:
        preview_started_total.inc()
    return _ok({"port": started.port, "alreadyRunning": started.already_running})


@api.post("/preview/stop", tags=["preview"])
async def stop_preview(payload: PreviewStopRequest):
    require_positive_int(payload.slide_id, "slideId")
    stopped = await registry.stop_preview(payload.slide_id)
    return _ok({"success": stopped})


@api.get("/processes", tags=["preview"])
async def list_processes():
    processes = [
        {
            "slideId": info.slide_id,
            "port": info.port,
            "pid": info.pid,
            "startedAt": int(info.started_at * 1000),
        }
        for info in registry.list_instances()
    ]
    return _ok({"processes": processes})


@api.post("/build", tags=["build"])
async def build_project(payload: BuildRequest):
    """
    Build a deck into a static site served under `/api/build/{slideId}/`.

    Parameters:
        payload (BuildRequest): `slideId`, absolute `slidesPath`, and optional
            absolute `outputDir`/`tempDir` plus a public `base` URL.

    Returns:
        dict: Envelope with the final `outputDir`.
    """
    require_positive_int(payload.slide_id, "slideId")
    require_absolute_path(payload.slides_path, "slidesPath")
    if payload.output_dir:
        require_absolute_path(payload.output_dir, "outputDir")
        Path(payload.output_dir).mkdir(parents=True, exist_ok=True)
    if payload.temp_dir:
        require_absolute_path(payload.temp_dir, "tempDir")

    started = time.monotonic()
    try:
        result = await builder.build_project(
            payload.slide_id,
            payload.slides_path,
            output_dir=payload.output_dir,
            base=payload.base,
            temp_dir=payload.temp_dir,
        )
    except BuildFailure:
        build_runs_total.inc(status="failure")
        raise
    build_runs_total.inc(status="success")
    build_duration_seconds.observe(time.monotonic() - started)
    return _ok({"outputDir": str(result.output_dir)})


@api.post("/export", tags=["export"])
async def export_presentation(payload: ExportRequest):
    require_positive_int(payload.slide_id, "slideId")
    fmt = parse_export_format(payload.format)
    require_absolute_path(payload.slides_path, "slidesPath")
    if payload.output_file:
        require_absolute_path(payload.output_file, "outputFile")

    try:
        result = await builder.export_presentation(
            payload.slide_id,
            payload.slides_path,
            format=fmt,
            output_file=payload.output_file,
            dark=payload.dark,
        )
    except GenerationFailure:
        export_runs_total.inc(format=fmt, status="failure")
        raise
    export_runs_total.inc(format=fmt, status="success")
    return _ok({"outputFile": str(result.output_file), "format": result.format})


@api.post("/screenshot", tags=["preview"])
async def capture_screenshot(payload: ScreenshotRequest):
    """Capture a cover image of the deck's running preview into `coverPath`."""
    require_positive_int(payload.slide_id, "slideId")
    require_absolute_path(payload.slides_path, "slidesPath")
    require_absolute_path(payload.cover_path, "coverPath")
    result = await screenshots.capture(
        payload.slide_id,
        payload.slides_path,
        payload.cover_path,
        width=payload.width,
        height=payload.height,
    )
    return _ok({"coverPath": str(result.cover_path)})


@api.get("/build/{slide_id}/entries", tags=["build"])
async def list_build_entries(slide_id: int, path: str = ""):
    require_positive_int(slide_id, "slideId")
    entries = files.list_entries(slide_id, path)
    return _ok(
        {
            "files": [
                {
                    "name": entry.name,
                    "path": entry.path,
                    "directory": entry.directory,
                    "size": entry.size,
                    "modifiedAt": entry.modified_at,
                }
                for entry in entries
            ]
        }
    )


def _file_response(slide_id: int, file_path: str) -> Response:
    require_positive_int(slide_id, "slideId")
    data = files.read_asset(slide_id, file_path)
    media_type, _ = mimetypes.guess_type(file_path)
    return Response(content=data, media_type=media_type or "application/octet-stream")


@api.get("/build/{slide_id}/files", tags=["build"])
async def read_build_index(slide_id: int):
    return _file_response(slide_id, "index.html")


@api.get("/build/{slide_id}/files/{file_path:path}", tags=["build"])
async def read_build_file(slide_id: int, file_path: str = FastAPIPath(...)):
    """Serve a file from the slide's build output; an empty path serves `index.html`."""
    return _file_response(slide_id, file_path or "index.html")


@api.get("/build/{slide_id}/assets/{asset_path:path}", tags=["build"])
async def read_build_asset(slide_id: int, asset_path: str = FastAPIPath(...)):
    return _file_response(slide_id, f"assets/{asset_path}")


@api.get("/export/{slide_id}/{fmt}", tags=["export"])
async def read_export(slide_id: int, fmt: str):
    require_positive_int(slide_id, "slideId")
    fmt = parse_export_format(fmt)
    data = files.read_export_file(slide_id, fmt)
    return Response(content=data, media_type=EXPORT_MEDIA_TYPES[fmt])


app.include_router(api)


@app.get("/health", tags=["health"])
async def health_check():
    return {"status": "healthy", "version": "1.0.0"}


@app.get("/health/ready", tags=["health"])
async def readiness_check():
    return {"status": "ready", "previews_active": len(registry.list_instances())}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("slidev_api:app", host="0.0.0.0", port=settings.server_port, reload=False)

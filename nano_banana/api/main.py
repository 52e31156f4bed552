"""FastAPI application exposing the Nano Banana tools over HTTP."""

from __future__ import annotations

from typing import Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from nano_banana.core.config import get_settings
from nano_banana.core.errors import TaskNotFound, UnreachableCollaborator
from nano_banana.core.logger import bind_request_context, clear_request_context, get_logger
from nano_banana.core.metrics import render_prometheus_metrics
from nano_banana.core.observability import init_sentry, sentry_scope
from nano_banana.orchestrator import tools
from nano_banana.schemas.tools import GenerateImageRequest, MakeTransparentRequest, TaskStatusResponse, ToolResult
from nano_banana.tasks.external import get_task_delegate


settings = get_settings()
logger = get_logger("nano_banana.api")

app = FastAPI(title=settings.app_name, version=settings.app_version)


async def test_task_backend() -> tuple[bool, Optional[str]]:
    delegate = get_task_delegate()
    if delegate is None:
        return True, None
    return await delegate.ping()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id", str(uuid4()))
    bind_request_context(request_id=request_id)
    try:
        with sentry_scope(request_id=request_id):
            response = await call_next(request)
    finally:
        clear_request_context()
    response.headers["x-request-id"] = request_id
    return response


@app.on_event("startup")
def on_startup() -> None:
    sentry_enabled = init_sentry()
    logger.info(
        "application_startup",
        env=settings.env,
        version=settings.app_version,
        image_provider=settings.image_provider,
        task_backend="redis" if settings.redis_url.strip() else "memory",
        sentry_enabled=sentry_enabled,
        metrics_enabled=settings.metrics_enabled,
    )


@app.on_event("shutdown")
def on_shutdown() -> None:
    tools.shutdown_orchestrator()


@app.get("/health")
async def health() -> JSONResponse:
    redis_ok, redis_error = await test_task_backend()
    payload = {
        "status": "ok" if redis_ok else "degraded",
        "env": settings.env,
        "services": {
            "task_backend": {"ok": redis_ok, "error": redis_error},
        },
    }
    return JSONResponse(content=payload, status_code=200 if redis_ok else 503)


@app.get("/version")
def version() -> dict[str, str]:
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "env": settings.env,
        "model": settings.nano_banana_model,
    }


@app.get("/metrics")
def metrics() -> PlainTextResponse:
    if not settings.metrics_enabled:
        return PlainTextResponse("metrics disabled\n", status_code=404)

    payload = render_prometheus_metrics(
        app_name=settings.app_name,
        app_version=settings.app_version,
        env=settings.env,
    )
    return PlainTextResponse(
        payload,
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


@app.post("/tools/generate", response_model=ToolResult, response_model_by_alias=True)
async def generate_endpoint(payload: GenerateImageRequest) -> ToolResult:
    return await tools.generate(payload)


@app.post("/tools/make-transparent", response_model=ToolResult, response_model_by_alias=True)
async def make_transparent_endpoint(payload: MakeTransparentRequest) -> ToolResult:
    return await tools.make_transparent(payload)


@app.get("/tasks/{task_id}", response_model=TaskStatusResponse, response_model_by_alias=True)
async def get_task_endpoint(task_id: str) -> TaskStatusResponse:
    try:
        return await tools.get_task(task_id)
    except TaskNotFound as exc:
        raise HTTPException(status_code=404, detail=exc.to_dict()) from exc
    except UnreachableCollaborator as exc:
        raise HTTPException(status_code=503, detail=exc.to_dict()) from exc


def run() -> None:
    import uvicorn

    uvicorn.run("nano_banana.api.main:app", host="0.0.0.0", port=settings.port, log_config=None)

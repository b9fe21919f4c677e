from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from omegaconf import DictConfig

from .configuration import load_settings
from .errors import InvalidImageError, JobNotFoundError, QueueTransportError, TransportError
from .job_manager import JobManager
from .models import CropOptions, JobRecord, JobStatusView, ResizeOptions, TransformOptions, UploadResult
from .services import Services, build_services, configure_logging
from .worker import Worker, WorkerThread

logger = logging.getLogger(__name__)

WORKER_SHUTDOWN_TIMEOUT = 30.0


def create_app(
    settings: Optional[DictConfig] = None,
    services: Optional[Services] = None,
    run_worker: Optional[bool] = None,
) -> FastAPI:
    """
    Build the API application.

    Settings and services are resolved when the app starts, not at import time,
    so tests can inject fakes and a misconfigured deployment fails on startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings if settings is not None else load_settings()
        configure_logging(cfg)
        svc = services if services is not None else build_services(cfg)

        app.state.settings = cfg
        app.state.job_manager = JobManager.from_settings(cfg, svc)

        start_worker = cfg.worker.run_in_api if run_worker is None else run_worker
        worker_thread = None
        if start_worker:
            worker_thread = WorkerThread(Worker.from_settings(cfg, svc))
            worker_thread.start()
        try:
            yield
        finally:
            if worker_thread is not None:
                worker_thread.stop(timeout=WORKER_SHUTDOWN_TIMEOUT)

    app = FastAPI(title="Image Processing API", version="0.1.0", lifespan=lifespan)
    _register_routes(app)
    return app


def get_job_manager(request: Request) -> JobManager:
    return request.app.state.job_manager


def build_transform_options(
    width: Optional[int],
    crop_x: int,
    crop_y: int,
    crop_width: int,
    crop_height: int,
    tint: str,
) -> TransformOptions:
    options = TransformOptions()
    if width is not None:
        options.resize = ResizeOptions(width=width)
    if crop_width > 0 and crop_height > 0:
        options.crop = CropOptions(x=crop_x, y=crop_y, width=crop_width, height=crop_height)
    if tint:
        options.tint = tint
    return options


def _register_routes(app: FastAPI) -> None:
    @app.get("/healthz")
    def healthcheck(manager: JobManager = Depends(get_job_manager)) -> Dict[str, Any]:
        if not manager.queue.ping():
            return {"status": "degraded", "queue": "unreachable"}
        try:
            depth = manager.queue.size()
        except QueueTransportError:
            return {"status": "degraded", "queue": "unreachable"}
        return {"status": "ok", "queue": "ok", "queue_depth": depth}

    @app.post("/images", response_model=UploadResult)
    async def upload_image(
        file: UploadFile = File(...),
        owner_id: str = Form(...),
        width: Optional[int] = Form(None),
        crop_x: int = Form(0),
        crop_y: int = Form(0),
        crop_width: int = Form(0),
        crop_height: int = Form(0),
        tint: str = Form(""),
        manager: JobManager = Depends(get_job_manager),
    ) -> UploadResult:
        if not file.filename:
            raise HTTPException(status_code=400, detail="Uploaded file must have a filename")

        data = await file.read()
        await file.close()
        options = build_transform_options(width, crop_x, crop_y, crop_width, crop_height, tint)

        try:
            return await run_in_threadpool(manager.submit_upload, data, file.filename, options, owner_id)
        except InvalidImageError as exc:
            raise HTTPException(status_code=400, detail=f"Unsupported or corrupt image: {exc}") from exc
        except TransportError as exc:
            logger.error("Upload of %s failed: %s", file.filename, exc)
            raise HTTPException(status_code=502, detail="Storage or queue backend unavailable") from exc

    @app.get("/images", response_model=List[JobRecord])
    def list_images(owner_id: str = Query(...), manager: JobManager = Depends(get_job_manager)) -> List[JobRecord]:
        return manager.list_jobs(owner_id)

    @app.get("/images/{job_id}/status", response_model=JobStatusView)
    def image_status(job_id: str, manager: JobManager = Depends(get_job_manager)) -> JobStatusView:
        try:
            return manager.get_status(job_id)
        except JobNotFoundError as exc:
            raise HTTPException(status_code=404, detail="Job not found") from exc

    @app.delete("/images/{job_id}")
    def delete_image(
        job_id: str,
        owner_id: str = Query(...),
        manager: JobManager = Depends(get_job_manager),
    ) -> Dict[str, str]:
        try:
            deleted = manager.delete_job(job_id, owner_id)
        except TransportError as exc:
            raise HTTPException(status_code=502, detail="Storage backend unavailable") from exc
        if not deleted:
            raise HTTPException(status_code=404, detail="Image not found or does not belong to the user")
        return {"status": "deleted"}


app = create_app()

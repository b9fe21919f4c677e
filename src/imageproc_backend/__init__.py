"""
Image Processing Backend - asynchronous image transform service

This package separates image upload from image transformation. An upload is
stored and acknowledged immediately; a background worker later resizes, crops,
tints and re-encodes it, and clients poll a status field for the result.

Key Components:
    - job_manager: Upload entrypoint, status queries and owner listings
    - task_queue: Redis list handoff of job descriptors
    - descriptors: Versioned wire format for queued jobs
    - processor: Pillow/numpy transform pipeline (resize -> crop -> tint -> JPEG)
    - blob_store: S3 storage of originals and results
    - database: SQLite job records and their status lifecycle
    - worker: Dequeue/execute/status-update loop
    - main: Thin FastAPI layer over the job manager

Usage:
    Run the API (with an in-process worker) with:
        uvicorn imageproc_backend.main:app --host 0.0.0.0 --port 8000

    Or run the worker on its own, with RUN_WORKER_IN_API=false on the API side:
        imageproc-worker
"""

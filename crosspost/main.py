from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.staticfiles import StaticFiles

from crosspost import bulk, db, publisher
from crosspost.bulk import runner as bulk_runner
from crosspost.bulk_routes import router as bulk_router
from crosspost.files_routes import router as files_router
from crosspost.inbox_routes import router as inbox_router
from crosspost.oauth_routes import router as oauth_router
from crosspost.pages import router as pages_router
from crosspost.scheduler import scheduled_runner
from crosspost.splitter_routes import router as splitter_router

logger = logging.getLogger("crosspost")
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

BASE_DIR = Path(__file__).resolve().parent
STATIC_DIR = BASE_DIR / "static"

app = FastAPI(title="Crosspost Media Manager")

if STATIC_DIR.exists():
    app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")


@app.on_event("startup")
def startup() -> None:
    db.init_db()
    with db.get_session() as session:
        bulk.requeue_interrupted(session)
        publisher.fail_interrupted(session)
    if os.getenv("RUN_SCHEDULER", "1") != "0":
        scheduled_runner.start()


@app.on_event("shutdown")
def shutdown() -> None:
    scheduled_runner.stop()
    bulk_runner.stop()


@app.middleware("http")
async def log_requests(request: Request, call_next) -> Response:
    start_time = time.perf_counter()
    response_status = 500
    try:
        response = await call_next(request)
        response_status = response.status_code
        return response
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "request method=%s path=%s status=%s duration_ms=%.2f",
            request.method,
            request.url.path,
            response_status,
            duration_ms,
        )


@app.get("/health")
def health() -> dict[str, bool]:
    return {"ok": True}


@app.head("/health")
def health_head() -> Response:
    return Response(status_code=200)


@app.get("/debug/routes")
def debug_routes() -> list[dict[str, Any]]:
    routes: list[dict[str, Any]] = []
    for route in app.routes:
        methods = sorted(getattr(route, "methods", None) or [])
        routes.append({"path": route.path, "methods": methods})
    return routes


app.include_router(pages_router)
app.include_router(oauth_router)
app.include_router(files_router)
app.include_router(bulk_router)
app.include_router(splitter_router)
app.include_router(inbox_router)

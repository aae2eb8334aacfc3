from contextlib import asynccontextmanager
import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from stagegate.core.errors import ReviewError
from stagegate.core.logging import configure_logging
from stagegate.services.outbox_worker import start_outbox_worker_task
from stagegate.routers.auth import router as auth_router
from stagegate.routers.mockups import router as mockups_router
from stagegate.routers.outbox import router as outbox_router
from stagegate.routers.projects import router as projects_router
from stagegate.routers.reviews import router as reviews_router
from stagegate.routers.workflows import router as workflows_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()

    task = start_outbox_worker_task()
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


app = FastAPI(
    title="Stagegate Review Service",
    lifespan=lifespan,
)


@app.exception_handler(ReviewError)
async def review_error_handler(request: Request, exc: ReviewError):
    log = logger.info if exc.benign else logger.warning
    if exc.status_code >= 500:
        log = logger.error
    log(
        "Review request rejected",
        extra={"error": exc.kind, "path": request.url.path, **exc.context},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.middleware("http")
async def catch_unhandled_exceptions(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception:
        logger.exception("Unhandled exception")
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


app.include_router(auth_router)
app.include_router(workflows_router)
app.include_router(projects_router)
app.include_router(mockups_router)
app.include_router(reviews_router)
app.include_router(outbox_router)


@app.get("/")
def root():
    return {"status": "Stagegate Review Service running"}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "version": "1.0.0",
    }

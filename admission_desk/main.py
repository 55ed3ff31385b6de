from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from contextlib import asynccontextmanager
import asyncio
import logging

from admission_desk.core.config import Settings, settings as default_settings
from admission_desk.core.database import db
from admission_desk.core.errors import AdmissionError, InvalidStateError, ValidationError
from admission_desk.core.services import build_services, build_stores

# Import Routers
from admission_desk.routers import (
    admissions,
    notifications,
    students,
)

logger = logging.getLogger(__name__)


def create_app(settings: Settings = None, stores=None, photo_storage=None, mailer=None) -> FastAPI:
    settings = settings or default_settings
    uses_graph = stores is None and settings.STORE_BACKEND == "neo4j"

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        loop = asyncio.get_running_loop()
        try:
            if uses_graph:
                # Connect to DB on startup
                await loop.run_in_executor(None, db.connect)
            yield
        finally:
            if uses_graph:
                await loop.run_in_executor(None, db.close)

    app = FastAPI(title="Admission Desk API", lifespan=lifespan)

    applications, student_store, notification_store = stores or build_stores(settings)
    app.state.services = build_services(
        settings, applications, student_store, notification_store,
        photo_storage=photo_storage, mailer=mailer,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AdmissionError)
    async def admission_error_handler(request: Request, exc: AdmissionError):
        body = {"success": False, "error_code": exc.error_code, "message": exc.message}
        if isinstance(exc, ValidationError):
            body["fields"] = exc.fields
        if isinstance(exc, InvalidStateError):
            body["current_status"] = exc.current_status
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.get("/")
    def read_root():
        return {"message": "Admission Desk Backend is Running"}

    # Register Routers
    app.include_router(admissions.router, prefix="/admissions", tags=["Admissions"])
    app.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
    app.include_router(students.router, prefix="/students", tags=["Students"])

    app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR, check_dir=False), name="uploads")
    return app


app = create_app()

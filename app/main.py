from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from app.core.config import settings
from app.core.errors import EnrollmentError
from app.api import admin, cron, enrollments, webhooks

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Enrollment Reconciliation API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(EnrollmentError)
async def enrollment_error_handler(request: Request, exc: EnrollmentError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Ensure CORS headers are included even on unhandled exceptions"""
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")

    response = JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

    origin = request.headers.get("origin")
    if origin and origin in settings.get_allowed_origins():
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Access-Control-Allow-Methods"] = "*"
        response.headers["Access-Control-Allow-Headers"] = "*"

    return response


app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
app.include_router(cron.router, prefix="/cron", tags=["cron"])
app.include_router(enrollments.router, prefix="/admin/enrollments", tags=["enrollments"])
app.include_router(admin.router, prefix="/admin", tags=["admin"])


@app.get("/")
async def root():
    return {"message": "Enrollment Reconciliation API", "version": "1.0.0"}


@app.get("/health")
async def health():
    return {"status": "healthy"}

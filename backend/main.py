import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from http import HTTPStatus

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

# Configure Logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger(__name__)

env_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env")
load_dotenv(dotenv_path=env_path)

# Route modules register their tables on the shared metadata when imported.
from backend.academic_module.routes import router as academic_router  # noqa: E402
from backend.communication_module.routes import router as communication_router  # noqa: E402
from backend.finance_module.routes import router as finance_router  # noqa: E402
from backend.people_module.routes import router as people_router  # noqa: E402
from backend.rbac_module import init_rbac_module, router as rbac_router  # noqa: E402
from backend.rbac_module.config import settings  # noqa: E402
from backend.rbac_module.database import engine  # noqa: E402
from backend.records_module.routes import router as records_router  # noqa: E402
from backend.storage_module.routes import router as storage_router  # noqa: E402


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Initializing database and default administrator...")
    init_rbac_module()
    logger.info(f"School platform API ready ({settings.environment})")
    yield
    logger.info("Shutting down...")


app = FastAPI(title="School Platform API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f} ms)")
    return response


def _reason(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


def _error_body(request: Request, status_code: int, message, details=None) -> dict:
    return {
        "success": False,
        "error": {
            "status_code": status_code,
            "message": message,
            "error": _reason(status_code),
            "details": details,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "path": request.url.path,
        },
    }


def _field_name(loc) -> str:
    # Drop the leading "body"/"query"/"path" marker FastAPI adds.
    if len(loc) > 1 and loc[0] in ("body", "query", "path", "header"):
        loc = loc[1:]
    return ".".join(str(part) for part in loc)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, exc.status_code, exc.detail),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [{"field": _field_name(error["loc"]), "message": error["msg"]} for error in exc.errors()]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body(request, status.HTTP_400_BAD_REQUEST, "Validation failed", details),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    message = "Internal server error" if settings.is_production else str(exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(request, status.HTTP_500_INTERNAL_SERVER_ERROR, message),
    )


app.include_router(rbac_router)
app.include_router(people_router)
app.include_router(academic_router)
app.include_router(records_router)
app.include_router(finance_router)
app.include_router(communication_router)
app.include_router(storage_router)


@app.get("/api/health")
def health_check():
    """Health check endpoint to verify the backend is running and the database answers."""
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as e:
        logger.error(f"Health check database error: {e}")
        db_status = "unavailable"
    return {
        "status": "healthy",
        "message": "School platform backend is running",
        "environment": settings.environment,
        "database": db_status,
    }


if __name__ == "__main__":
    import uvicorn

    reload_enabled = os.getenv("BACKEND_RELOAD", "false").lower() == "true"
    backend_host = os.getenv("BACKEND_HOST", "127.0.0.1")
    backend_port = int(os.getenv("BACKEND_PORT", "8000"))
    uvicorn.run("backend.main:app", host=backend_host, port=backend_port, reload=reload_enabled)

import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
import database
from auth_routes import router as auth_router
from campus_routes import router as campus_router
from errors import format_validation_errors
from oauth import GoogleOAuthProvider
from responses import error_response, ok
from student_routes import router as student_router
from teacher_routes import router as teacher_router

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

STARTED_AT = time.time()


@asynccontextmanager
async def lifespan(app: FastAPI):
    config.validate()
    database.ensure_indexes(database.get_db())
    logger.info("Smart Campus backend ready")
    yield
    if database.client is not None:
        database.client.close()


app = FastAPI(title="Smart Campus API", version="1.0.0", lifespan=lifespan)

# Built once here and handed to handlers through get_oauth_provider.
app.state.oauth_provider = GoogleOAuthProvider.from_config()

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.client_origins() or ["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=600,
)


# -------------------- Static files & Uploads -------------------- #
os.makedirs(config.UPLOAD_DIR, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=config.UPLOAD_DIR), name="uploads")


# -------------------- Request logging -------------------- #
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000
    principal = getattr(request.state, "principal", None)
    logger.info(
        f"{request.method} {request.url.path} {response.status_code} "
        f"{elapsed_ms:.1f}ms role={principal.role if principal else '-'}"
    )
    return response


# -------------------- Error envelopes -------------------- #
@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code == 404 and message == "Not Found":
        message = "Resource not found"
    return error_response(exc.status_code, message, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    return error_response(400, format_validation_errors(exc.errors()))


@app.exception_handler(Exception)
async def unexpected_error(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return error_response(500, "Internal server error")


# -------------------- Meta endpoints -------------------- #

@app.get("/")
def read_root():
    return {"message": "Smart Campus backend is running"}


@app.get("/health")
def health():
    return ok("Smart Campus API healthy", {
        "uptime": round(time.time() - STARTED_AT, 3),
        "database": database.ping(database.db),
    })


app.include_router(auth_router, prefix="/auth")
app.include_router(student_router, prefix="/api/student")
app.include_router(teacher_router, prefix="/api/teacher")
app.include_router(campus_router, prefix="/api")


# -------------------- Run -------------------- #

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)

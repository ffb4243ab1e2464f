import logging
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from .config import ALLOWED_ORIGINS, LOG_LEVEL, MIGRATIONS_DIR
from .database import SessionLocal
from .errors import CoreError, InternalFailure
from .routes import include_modular_routers

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Gatherly Groups API")
include_modular_routers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CoreError)
async def core_error_handler(request: Request, exc: CoreError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("[api] %s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    else:
        logger.info("[api] %s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("[api] invalid request body on %s: %s", request.url.path, exc.errors())
    return JSONResponse(status_code=400, content={"error": "Invalid request body", "status": "validation"})


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("[api] %s %s -> database error: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content=InternalFailure("Internal server error").to_response())


def run_migrations() -> None:
    migrations_dir = MIGRATIONS_DIR
    if not migrations_dir.exists() or not migrations_dir.is_dir():
        raise FileNotFoundError(f"Migrations directory not found: {migrations_dir}")

    files = sorted([f.name for f in migrations_dir.iterdir() if f.is_file() and f.suffix == ".sql"])
    with SessionLocal() as db:
        for fname in files:
            sql = (migrations_dir / fname).read_text(encoding="utf-8")
            db.execute(text(sql))
        db.commit()
    logger.info("[startup] applied %s migration files from %s", len(files), migrations_dir)


def wait_for_db(max_attempts: int = 20, delay_seconds: float = 1.5) -> None:
    last_err: Exception | None = None
    for _ in range(max_attempts):
        try:
            with SessionLocal() as db:
                db.execute(text("SELECT 1"))
                db.commit()
            return
        except OperationalError as exc:
            last_err = exc
            time.sleep(delay_seconds)
    if last_err:
        raise last_err


@app.on_event("startup")
def on_startup() -> None:
    wait_for_db()
    run_migrations()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}

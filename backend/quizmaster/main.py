from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from quizmaster.core.config import settings
from quizmaster.api.routes.health import router as health_router
from quizmaster.api.routes.quizzes import router as quizzes_router
from quizmaster.api.routes.attempts import router as attempts_router
from quizmaster.db.base import Base
from quizmaster.db.session import SessionLocal, engine
from quizmaster.services.user_service import ensure_user_exists

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def envelope(request_id: str, data: Any = None, error: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"request_id": request_id, "data": data, "error": error}


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = req_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = req_id
    return response


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    req_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    detail = exc.detail
    # Keep structured details (e.g. the active attempt on ATTEMPT_ALREADY_ACTIVE).
    if isinstance(detail, dict):
        code = str(detail.get("code") or "HTTP_ERROR")
        message = detail.get("message") or str(detail)
        error = {"code": code, "message": message, "details": detail}
    else:
        error = {"code": "HTTP_ERROR", "message": str(detail)}

    return JSONResponse(
        status_code=exc.status_code,
        content=envelope(
            request_id=req_id,
            data=None,
            error=error,
        ),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    req_id = getattr(request.state, "request_id", str(uuid.uuid4()))
    return JSONResponse(
        status_code=422,
        content=envelope(
            request_id=req_id,
            data=None,
            error={
                "code": "VALIDATION_ERROR",
                "message": "Invalid request",
                "details": {"errors": jsonable_errors(exc)},
            },
        ),
    )


def jsonable_errors(exc: RequestValidationError):
    # pydantic puts the raw exception under "ctx" for some validators
    out = []
    for err in exc.errors():
        err = dict(err)
        if "ctx" in err:
            err["ctx"] = {k: str(v) for k, v in (err.get("ctx") or {}).items()}
        err.pop("url", None)
        out.append(err)
    return out


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    req_id = getattr(request.state, "request_id", str(uuid.uuid4()))
    logger.exception("unhandled error request_id=%s path=%s", req_id, request.url.path)
    return JSONResponse(
        status_code=500,
        content=envelope(
            request_id=req_id,
            data=None,
            error={"code": "INTERNAL_ERROR", "message": str(exc)},
        ),
    )


@app.on_event("startup")
def bootstrap_database():
    """Create tables for local runs and make sure the demo admin exists.

    Safe to run repeatedly. Production databases are migrated with alembic
    (set DB_AUTO_CREATE=false).
    """
    if not settings.DB_AUTO_CREATE:
        return

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        ensure_user_exists(db, 1, role="admin")
    finally:
        db.close()
    logger.info("database ready url=%s", engine.url.render_as_string(hide_password=True))


app.include_router(health_router, prefix="/api")
app.include_router(quizzes_router, prefix="/api")
app.include_router(attempts_router, prefix="/api")

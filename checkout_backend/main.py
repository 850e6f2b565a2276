import logging
import math
import os
from datetime import datetime
from typing import Optional

from fastapi import Cookie, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
import psycopg2
import psycopg2.extras
from pydantic import BaseModel
from dotenv import load_dotenv
from jose import JWTError, jwt

from checkout_backend import app_context


load_dotenv()

def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))

DB_CFG = dict(
    host=os.getenv("DB_HOST", "127.0.0.1"),
    port=int(os.getenv("DB_PORT", "5432")),
    dbname=os.getenv("DB_NAME", "checkout_db"),
    user=os.getenv("DB_USER", "checkout_user"),
    password=os.getenv("DB_PASSWORD", "checkout_pass"),
    connect_timeout=_parse_connect_timeout(os.getenv("DB_CONNECT_TIMEOUT", "5")),
)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-change-me")
JWT_ALGORITHM = "HS256"
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

logger = logging.getLogger("auth")


def get_conn():
    return psycopg2.connect(**DB_CFG)


class UserOut(BaseModel):
    id: int
    email: Optional[str] = None
    created_utc: datetime


def get_user_by_id(uid: int) -> Optional[UserOut]:
    with get_conn() as conn, conn.cursor(cursor_factory=psycopg2.extras.DictCursor) as cur:
        cur.execute("SELECT id, email, created_utc FROM users WHERE id = %s", (uid,))
        row = cur.fetchone()
    if not row:
        return None
    return UserOut(**dict(row))


def resolve_user_from_session_token(session_token: str) -> Optional[UserOut]:
    try:
        payload = jwt.decode(session_token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
        subject = payload.get("sub")
        if subject is None:
            return None
        user_id = int(subject)
    except (JWTError, ValueError):
        return None

    return get_user_by_id(user_id)


def get_optional_current_user(
    session_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
) -> Optional[UserOut]:
    if not session_token:
        return None

    try:
        user = resolve_user_from_session_token(session_token)
    except Exception:
        logger.exception("Unexpected error while resolving optional session token")
        return None
    return user


app_context.configure(
    get_conn=get_conn,
    get_optional_current_user=get_optional_current_user,
)

from checkout_backend.app.routes.billing import router as billing_router
from checkout_backend.app.schemas.billing import error_response

app = FastAPI(title="Membership Checkout API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(billing_router)


@app.exception_handler(RequestValidationError)
async def request_validation_error(_request: Request, exc: RequestValidationError):
    fields = []
    for error in exc.errors():
        name = ".".join(str(part) for part in error.get("loc", ()) if isinstance(part, str) and part != "body")
        if name and name not in fields:
            fields.append(name)
    message = f"invalid params: {', '.join(fields)}" if fields else "invalid params"
    return error_response(message)


@app.get("/api/healthz")
def healthz():
    return {"ok": True}

# run: uvicorn checkout_backend.main:app --host 127.0.0.1 --port 8000 --reload

"""FastAPI application exposing the store portal endpoints."""
from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Callable, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .config import Settings, load_settings
from .database import Database
from .errors import BadRequest, NotFound, Unauthenticated, register_error_handlers
from .models import Role, ScopedUser, User
from .resets import PasswordResetService
from .security import require_master, require_roles, require_session
from .sessions import SessionCodec, SessionCookie

logger = logging.getLogger("storeportal.api")

PASSWORD_MIN_LENGTH = 8

ResetNotifier = Callable[[str, str, datetime], None]


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=320)
    password: str = Field(..., min_length=1)


class ForgotPasswordRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=320)


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class ResetWithCodeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(..., min_length=1, max_length=320)
    code: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1, alias="newPassword")
    confirm_password: str = Field(..., min_length=1, alias="confirmPassword")


class PasswordCodeRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=320)


def _trusted_proxy_hosts() -> list[str] | str:
    raw = os.getenv("STOREPORTAL_TRUSTED_PROXIES")
    if not raw:
        return "*"
    hosts = [item.strip() for item in raw.split(",") if item.strip()]
    return hosts or "*"


def _log_reset_issued(email: str, token: str, expires_at: datetime) -> None:
    logger.info("Password reset issued; expires at %s", expires_at.isoformat())


async def _read_json(request: Request) -> Dict[str, object]:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise BadRequest() from exc
    if not isinstance(payload, dict):
        raise BadRequest()
    return payload


def _parse(model: type[BaseModel], payload: Dict[str, object], message: str):
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise BadRequest(message) from exc


def _check_password_strength(password: str) -> None:
    if len(password) < PASSWORD_MIN_LENGTH:
        raise BadRequest(f"Password must be at least {PASSWORD_MIN_LENGTH} characters.")


def create_app(
    *,
    database: Optional[Database] = None,
    settings: Optional[Settings] = None,
    reset_notifier: Optional[ResetNotifier] = None,
    initialize_database: bool = False,
) -> FastAPI:
    """Create the portal API application."""

    if settings is None:
        settings = load_settings()

    if database is None:
        database = Database(settings.database_path)
        database.initialize()
    elif initialize_database:
        database.initialize()

    codec = SessionCodec(settings.session_secret, ttl=settings.session_ttl)
    session_cookie = SessionCookie(codec, name=settings.session_cookie, secure=settings.secure_cookies)
    resets = PasswordResetService(
        database,
        token_ttl=settings.reset_token_ttl,
        code_ttl=settings.reset_code_ttl,
    )

    app = FastAPI(
        title="Store Portal API",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=_trusted_proxy_hosts())
    app.state.database = database
    app.state.settings = settings
    app.state.session_cookie = session_cookie
    app.state.password_resets = resets
    app.state.reset_notifier = reset_notifier or _log_reset_issued
    register_error_handlers(app)

    def get_db() -> Database:
        return database

    auth_router = APIRouter(prefix="/api/auth")

    @auth_router.post("/login")
    async def login(request: Request, db: Database = Depends(get_db)) -> JSONResponse:
        payload = await _read_json(request)
        body = _parse(LoginRequest, payload, "Email and password are required.")

        user = db.authenticate_user(body.email, body.password)
        if user is None:
            raise Unauthenticated("Invalid credentials.")

        token = db.create_session(user.id, settings.session_ttl)
        response = JSONResponse({"user": user.to_dict()})
        session_cookie.set(response, token)
        logger.info("User %s signed in", user.id)
        return response

    @auth_router.post("/logout")
    async def logout(request: Request, db: Database = Depends(get_db)) -> JSONResponse:
        response = JSONResponse({"success": True})
        session_cookie.clear(response)
        token = session_cookie.read_token(request)
        if token is not None:
            try:
                db.revoke_session(token)
            except Exception:
                logger.exception("Failed to revoke session during logout")
        return response

    @auth_router.get("/session")
    async def read_session(user: User = Depends(require_session)) -> Dict[str, object]:
        return {"user": user.to_dict()}

    @auth_router.post("/forgot")
    async def forgot_password(request: Request) -> Dict[str, object]:
        payload = await _read_json(request)
        body = _parse(ForgotPasswordRequest, payload, "Email is required.")
        email = body.email.strip().lower()
        if not email:
            raise BadRequest("Email is required.")

        issued = resets.issue(email)
        if issued.token is not None:
            notifier: ResetNotifier = app.state.reset_notifier
            try:
                notifier(email, issued.token, issued.expires_at)
            except Exception:
                logger.exception("Failed to deliver password reset")
        return {"ok": True}

    @auth_router.post("/reset")
    async def reset_password(request: Request) -> Dict[str, object]:
        payload = await _read_json(request)
        body = _parse(ResetPasswordRequest, payload, "Token and new password are required.")
        _check_password_strength(body.password)

        if not resets.redeem(body.token, body.password):
            raise BadRequest("Invalid or expired token.")
        return {"ok": True}

    @auth_router.post("/reset-with-code")
    async def reset_password_with_code(request: Request) -> Dict[str, object]:
        payload = await _read_json(request)
        body = _parse(ResetWithCodeRequest, payload, "Email, code, and new password are required.")
        if not body.email.strip() or not body.code.strip():
            raise BadRequest("Email, code, and new password are required.")
        if body.new_password != body.confirm_password:
            raise BadRequest("Passwords do not match.")
        _check_password_strength(body.new_password)

        if not resets.redeem_code(body.email, body.code, body.new_password):
            raise BadRequest("Invalid or expired code.")
        return {"success": True}

    master_router = APIRouter(prefix="/api/master")

    @master_router.post("/password-codes")
    async def create_password_code(request: Request, master: User = Depends(require_master)) -> Dict[str, object]:
        payload = await _read_json(request)
        body = _parse(PasswordCodeRequest, payload, "Email is required")
        email = body.email.strip()
        if not email:
            raise BadRequest("Email is required")

        issued = resets.issue_code(email)
        logger.info("Master user %s issued a password reset code", master.id)
        return {"code": issued.token, "expiresAt": issued.expires_at.isoformat()}

    scratchers_router = APIRouter(prefix="/api/scratchers")

    @scratchers_router.get("/files")
    async def read_scratcher_file(
        file_id: Optional[str] = Query(default=None, alias="id"),
        user: User = Depends(require_session),
        db: Database = Depends(get_db),
    ) -> Dict[str, object]:
        if not file_id or not file_id.strip():
            raise BadRequest("Missing file ID.")
        scratcher_file = db.get_scratcher_file(file_id.strip())
        if scratcher_file is None:
            raise NotFound("File not found.")
        return {"file": scratcher_file.to_dict()}

    @scratchers_router.get("/products")
    async def list_scratcher_products(
        scoped: ScopedUser = Depends(require_roles(Role.IRONHAND, Role.CLIENT)),
        db: Database = Depends(get_db),
    ) -> Dict[str, object]:
        products = db.list_scratcher_products()
        return {"products": [product.to_dict() for product in products]}

    stores_router = APIRouter(prefix="/api/stores")

    @stores_router.get("")
    async def list_stores(
        scoped: ScopedUser = Depends(require_roles(Role.IRONHAND)),
        db: Database = Depends(get_db),
    ) -> Dict[str, object]:
        stores = db.list_stores_for_manager(scoped.manager_id or scoped.id, scoped.store_number)
        return {"stores": [store.to_dict() for store in stores]}

    app.include_router(auth_router)
    app.include_router(master_router)
    app.include_router(scratchers_router)
    app.include_router(stores_router)

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    return app


__all__ = ["PASSWORD_MIN_LENGTH", "create_app"]

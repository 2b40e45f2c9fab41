"""Signed session cookies for the portal API."""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

from fastapi import Request, Response
from itsdangerous import BadSignature, URLSafeTimedSerializer

from .database import Database
from .models import User


class SessionCodec:
    """Sign and verify the opaque session token carried in the cookie."""

    _SALT = "storeportal.session"

    def __init__(self, secret: str, *, ttl: timedelta = timedelta(hours=12)) -> None:
        if not secret:
            raise ValueError("A session secret must be provided")
        self._ttl = ttl
        self._serializer = URLSafeTimedSerializer(secret, salt=self._SALT)

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @property
    def cookie_max_age(self) -> int:
        return int(self._ttl.total_seconds())

    def encode(self, token: str) -> str:
        return self._serializer.dumps(token)

    def decode(self, value: Optional[str]) -> Optional[str]:
        """Return the token inside a cookie value, or ``None`` if it is not valid."""

        if not value:
            return None
        try:
            token = self._serializer.loads(value, max_age=self.cookie_max_age)
        except BadSignature:
            # SignatureExpired is a BadSignature subclass.
            return None
        if not isinstance(token, str) or not token:
            return None
        return token


class SessionCookie:
    """Reads and writes the session cookie with consistent attributes."""

    def __init__(self, codec: SessionCodec, *, name: str, secure: bool = False) -> None:
        self.codec = codec
        self.name = name
        self.secure = secure

    def read_token(self, request: Request) -> Optional[str]:
        return self.codec.decode(request.cookies.get(self.name))

    def set(self, response: Response, token: str) -> None:
        response.set_cookie(
            key=self.name,
            value=self.codec.encode(token),
            max_age=self.codec.cookie_max_age,
            httponly=True,
            samesite="lax",
            path="/",
            secure=self.secure,
        )

    def clear(self, response: Response) -> None:
        response.set_cookie(
            key=self.name,
            value="",
            max_age=0,
            httponly=True,
            samesite="lax",
            path="/",
            secure=self.secure,
        )


def resolve_session(request: Request, database: Database, cookie: SessionCookie) -> Optional[User]:
    """Map a request to its signed-in user, or ``None`` when there is no valid session."""

    token = cookie.read_token(request)
    if token is None:
        return None
    return database.resolve_session(token)


__all__ = ["SessionCodec", "SessionCookie", "resolve_session"]

"""Issuing and redeeming one-time password reset tokens."""
from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .database import Database
from .models import IssuedReset, ResetKind

logger = logging.getLogger("storeportal.resets")

RESET_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
RESET_CODE_LENGTH = 8
_MAX_ISSUE_ATTEMPTS = 5


def generate_reset_token() -> str:
    return secrets.token_hex(32)


def generate_reset_code(length: int = RESET_CODE_LENGTH) -> str:
    return "".join(secrets.choice(RESET_CODE_ALPHABET) for _ in range(length))


class PasswordResetService:
    """Issue reset tokens and consume them exactly once.

    Tokens move from *issued* to either *consumed* or *expired*; neither
    state can be left again.
    """

    def __init__(
        self,
        database: Database,
        *,
        token_ttl: timedelta = timedelta(hours=1),
        code_ttl: timedelta = timedelta(minutes=60),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._database = database
        self._token_ttl = token_ttl
        self._code_ttl = code_ttl
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def issue(self, email: str) -> IssuedReset:
        """Issue a reset link token for ``email``.

        A row is recorded for unknown addresses too, but the returned token is
        ``None`` so the caller has nothing to deliver.
        """

        normalized = email.strip().lower()
        exists = self._database.get_user_by_email(normalized) is not None
        token, expires_at = self._store(normalized, ResetKind.LINK, generate_reset_token, self._token_ttl)
        if not exists:
            logger.info("Password reset requested for unknown account")
            return IssuedReset(token=None, expires_at=expires_at)
        return IssuedReset(token=token, expires_at=expires_at)

    def issue_code(self, email: str, ttl: Optional[timedelta] = None) -> IssuedReset:
        """Issue a short reset code that an operator can read out to the user."""

        normalized = email.strip().lower()
        code, expires_at = self._store(normalized, ResetKind.CODE, generate_reset_code, ttl or self._code_ttl)
        return IssuedReset(token=code, expires_at=expires_at)

    def redeem(self, token: str, new_password: str) -> bool:
        """Apply ``new_password`` if link ``token`` is issued, unexpired and unused.

        Operator codes are never accepted here; they need the account email
        and go through :meth:`redeem_code`.
        """

        if not token or not new_password:
            return False
        return self._database.consume_password_reset(token, new_password, now=self._clock())

    def redeem_code(self, email: str, code: str, new_password: str) -> bool:
        normalized_email = email.strip().lower()
        normalized_code = code.strip()
        if not normalized_email or not normalized_code or not new_password:
            return False
        return self._database.consume_password_reset(
            normalized_code,
            new_password,
            email=normalized_email,
            now=self._clock(),
        )

    def _store(
        self,
        email: str,
        kind: ResetKind,
        generator: Callable[[], str],
        ttl: timedelta,
    ) -> tuple[str, datetime]:
        expires_at = self._clock() + ttl
        for _ in range(_MAX_ISSUE_ATTEMPTS):
            token = generator()
            try:
                self._database.create_password_reset(email, token, expires_at, kind=kind)
            except ValueError:
                continue
            return token, expires_at
        raise RuntimeError("Unable to allocate a unique password reset token")


__all__ = [
    "PasswordResetService",
    "RESET_CODE_ALPHABET",
    "generate_reset_code",
    "generate_reset_token",
]

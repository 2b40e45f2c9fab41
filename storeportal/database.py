"""SQLite-backed persistence for portal accounts, sessions and store data."""
from __future__ import annotations

import hashlib
import secrets
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

from passlib.context import CryptContext

from .models import (
    PasswordReset,
    Portal,
    ResetKind,
    Role,
    ScratcherFile,
    ScratcherProduct,
    StoreSummary,
    User,
)

DEFAULT_DATABASE_NAME = "storeportal.sqlite3"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    role TEXT NOT NULL DEFAULT 'employee',
    portal TEXT,
    store_number TEXT,
    password_hash TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sessions (
    token_hash TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    created_at TEXT NOT NULL,
    expires_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS password_resets (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL,
    token TEXT NOT NULL UNIQUE,
    kind TEXT NOT NULL DEFAULT 'link',
    expires_at TEXT NOT NULL,
    used_at TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS stores (
    store_id TEXT PRIMARY KEY,
    name TEXT,
    address TEXT,
    manager_id TEXT REFERENCES users(id) ON DELETE SET NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS scratcher_products (
    id TEXT PRIMARY KEY,
    name TEXT,
    price REAL NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS scratcher_files (
    id TEXT PRIMARY KEY,
    storage_path TEXT NOT NULL,
    original_name TEXT,
    mime_type TEXT,
    size INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sessions_user_id ON sessions(user_id);
CREATE INDEX IF NOT EXISTS idx_password_resets_email ON password_resets(email);
CREATE INDEX IF NOT EXISTS idx_stores_manager_id ON stores(manager_id);
"""


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Return the configured database path, or ``data/storeportal.sqlite3`` beside the package."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    project_root = Path(__file__).resolve().parent.parent
    return (project_root / "data" / DEFAULT_DATABASE_NAME).resolve(strict=False)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_db_time(value: datetime) -> str:
    # Fixed precision keeps stored timestamps comparable as plain strings.
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_db_time(value: object) -> datetime:
    return datetime.fromisoformat(str(value))


def _new_id() -> str:
    return str(uuid.uuid4())


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _hash_session_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def _password_matches(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        return False


class Database:
    """Portal store backed by one SQLite file, opening a connection per call."""

    def __init__(self, path: Path, *, busy_timeout: float = 5.0) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        self._path = path
        self._busy_timeout = busy_timeout

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, timeout=self._busy_timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def initialize(self) -> None:
        """Create missing tables and add columns introduced after a file was created."""

        with self._connect() as conn:
            conn.executescript(_SCHEMA)
            reset_columns = {row["name"] for row in conn.execute("PRAGMA table_info(password_resets)")}
            if "kind" not in reset_columns:
                conn.execute("ALTER TABLE password_resets ADD COLUMN kind TEXT NOT NULL DEFAULT 'link'")

    def _fetch_user_row(self, column: str, value: str) -> Optional[sqlite3.Row]:
        with self._connect() as conn:
            return conn.execute(f"SELECT * FROM users WHERE {column} = ?", (value,)).fetchone()

    def create_user(
        self,
        name: str,
        email: str,
        password: str,
        *,
        role: Role | str = Role.EMPLOYEE,
        portal: Portal | str | None = None,
        store_number: Optional[str] = None,
    ) -> User:
        """Create a portal account. Ironhand accounts land on the manager portal unless told otherwise."""

        if not password:
            raise ValueError("Password must not be empty")
        normalized_email = _normalize_email(email)
        if not normalized_email:
            raise ValueError("Email must not be empty")

        parsed_role = Role.parse(role)
        parsed_portal = Portal.parse(portal)
        if parsed_portal is None and parsed_role is Role.IRONHAND:
            parsed_portal = Portal.MANAGER

        user = User(
            id=_new_id(),
            name=name.strip(),
            email=normalized_email,
            role=parsed_role,
            portal=parsed_portal,
            store_number=store_number,
            created_at=_utcnow(),
        )
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO users (id, name, email, role, portal, store_number, password_hash, created_at)"
                    " VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        user.id,
                        user.name,
                        user.email,
                        user.role.value,
                        user.portal.value if user.portal else None,
                        user.store_number,
                        _pwd_context.hash(password),
                        _to_db_time(user.created_at),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise ValueError("A user with that email already exists") from exc
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        row = self._fetch_user_row("id", user_id)
        return self._row_to_user(row) if row is not None else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        row = self._fetch_user_row("email", _normalize_email(email))
        return self._row_to_user(row) if row is not None else None

    def authenticate_user(self, email: str, password: str) -> Optional[User]:
        row = self._fetch_user_row("email", _normalize_email(email))
        if row is None or not _password_matches(password, row["password_hash"]):
            return None
        return self._row_to_user(row)

    def create_session(self, user_id: str, ttl: timedelta) -> str:
        """Persist a new session for ``user_id`` and return its opaque token.

        Only a digest of the token is stored. Expired rows are pruned here.
        """

        token = secrets.token_urlsafe(32)
        now = _utcnow()
        with self._connect() as conn:
            conn.execute("DELETE FROM sessions WHERE expires_at <= ?", (_to_db_time(now),))
            conn.execute(
                "INSERT INTO sessions (token_hash, user_id, created_at, expires_at) VALUES (?, ?, ?, ?)",
                (_hash_session_token(token), user_id, _to_db_time(now), _to_db_time(now + ttl)),
            )
        return token

    def resolve_session(self, token: str) -> Optional[User]:
        """Return the user owning an unexpired session, without side effects."""

        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT users.*
                  FROM sessions
                  JOIN users ON users.id = sessions.user_id
                 WHERE sessions.token_hash = ? AND sessions.expires_at > ?
                """,
                (_hash_session_token(token), _to_db_time(_utcnow())),
            ).fetchone()
        return self._row_to_user(row) if row is not None else None

    def revoke_session(self, token: str) -> bool:
        with self._connect() as conn:
            deleted = conn.execute(
                "DELETE FROM sessions WHERE token_hash = ?",
                (_hash_session_token(token),),
            )
        return deleted.rowcount > 0

    def create_password_reset(
        self,
        email: str,
        token: str,
        expires_at: datetime,
        *,
        kind: ResetKind | str = ResetKind.LINK,
    ) -> PasswordReset:
        """Record a reset secret. Raises ``ValueError`` if the token is already taken."""

        reset = PasswordReset(
            id=_new_id(),
            email=_normalize_email(email),
            token=token,
            kind=ResetKind(kind),
            expires_at=expires_at,
            used_at=None,
            created_at=_utcnow(),
        )
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO password_resets (id, email, token, kind, expires_at, used_at, created_at)"
                    " VALUES (?, ?, ?, ?, ?, NULL, ?)",
                    (
                        reset.id,
                        reset.email,
                        reset.token,
                        reset.kind.value,
                        _to_db_time(reset.expires_at),
                        _to_db_time(reset.created_at),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise ValueError("Reset token already exists") from exc
        return reset

    def get_password_reset(self, token: str) -> Optional[PasswordReset]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM password_resets WHERE token = ?", (token,)).fetchone()
        return self._row_to_password_reset(row) if row is not None else None

    def consume_password_reset(
        self,
        token: str,
        new_password: str,
        *,
        email: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Mark a reset secret used and update the owner's password atomically.

        Without ``email`` only link tokens match. With ``email`` only codes
        issued to that address match. The consume step is a single
        conditional update, so of several callers racing on the same token
        at most one observes an unused row.
        """

        if not new_password:
            raise ValueError("Password must not be empty")

        moment = _to_db_time(now or _utcnow())
        conditions = ["token = ?", "used_at IS NULL", "expires_at > ?", "kind = ?"]
        params: List[object] = [moment, token, moment]
        if email is None:
            params.append(ResetKind.LINK.value)
        else:
            params.append(ResetKind.CODE.value)
            conditions.append("email = ?")
            params.append(_normalize_email(email))
        claim = "UPDATE password_resets SET used_at = ? WHERE " + " AND ".join(conditions)
        password_hash = _pwd_context.hash(new_password)

        conn = self._connect()
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                if conn.execute(claim, params).rowcount != 1:
                    conn.execute("ROLLBACK")
                    return False

                owner = conn.execute(
                    "SELECT email FROM password_resets WHERE token = ?",
                    (token,),
                ).fetchone()["email"]
                updated = conn.execute(
                    "UPDATE users SET password_hash = ? WHERE email = ?",
                    (password_hash, owner),
                )
                # An account removed since issue leaves the token unused.
                if updated.rowcount == 0:
                    conn.execute("ROLLBACK")
                    return False

                conn.execute("COMMIT")
                return True
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
        finally:
            conn.close()

    def create_store(
        self,
        store_id: str,
        *,
        name: Optional[str] = None,
        address: Optional[str] = None,
        manager_id: Optional[str] = None,
    ) -> StoreSummary:
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO stores (store_id, name, address, manager_id, created_at) VALUES (?, ?, ?, ?, ?)",
                    (store_id, name, address, manager_id, _to_db_time(_utcnow())),
                )
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"Store '{store_id}' already exists") from exc
        return StoreSummary(store_id=store_id, store_name=name, store_address=address)

    def list_stores_for_manager(
        self,
        manager_id: str,
        fallback_store_id: Optional[str] = None,
    ) -> List[StoreSummary]:
        """List stores managed by ``manager_id``.

        The manager's own store number is included first when it is not one of
        the managed stores.
        """

        with self._connect() as conn:
            rows = conn.execute(
                "SELECT store_id, name, address FROM stores WHERE manager_id = ? ORDER BY store_id",
                (manager_id,),
            ).fetchall()

        summaries = [
            StoreSummary(store_id=str(row["store_id"]), store_name=row["name"], store_address=row["address"])
            for row in rows
        ]
        if fallback_store_id and fallback_store_id not in {s.store_id for s in summaries}:
            summaries.insert(0, StoreSummary(store_id=fallback_store_id, store_name=f"Store {fallback_store_id}"))
        return summaries

    def create_scratcher_product(
        self,
        price: float,
        *,
        name: Optional[str] = None,
        is_active: bool = True,
    ) -> ScratcherProduct:
        product = ScratcherProduct(
            id=_new_id(),
            name=name,
            price=float(price),
            is_active=bool(is_active),
            created_at=_utcnow(),
        )
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO scratcher_products (id, name, price, is_active, created_at) VALUES (?, ?, ?, ?, ?)",
                (product.id, product.name, product.price, int(product.is_active), _to_db_time(product.created_at)),
            )
        return product

    def list_scratcher_products(self) -> List[ScratcherProduct]:
        """Products ordered cheapest first."""

        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM scratcher_products ORDER BY price ASC, created_at ASC"
            ).fetchall()
        return [self._row_to_scratcher_product(row) for row in rows]

    def create_scratcher_file(
        self,
        storage_path: str,
        *,
        original_name: Optional[str] = None,
        mime_type: Optional[str] = None,
        size: int = 0,
    ) -> ScratcherFile:
        file_id = _new_id()
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO scratcher_files (id, storage_path, original_name, mime_type, size, created_at)"
                " VALUES (?, ?, ?, ?, ?, ?)",
                (file_id, storage_path, original_name, mime_type, int(size), _to_db_time(_utcnow())),
            )
        stored = self.get_scratcher_file(file_id)
        if stored is None:
            raise RuntimeError("Failed to load scratcher file after creation")
        return stored

    def get_scratcher_file(self, file_id: str) -> Optional[ScratcherFile]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM scratcher_files WHERE id = ?", (file_id,)).fetchone()
        return self._row_to_scratcher_file(row) if row is not None else None

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=str(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            role=Role.parse(row["role"]),
            portal=Portal.parse(row["portal"]),
            store_number=row["store_number"],
            created_at=_from_db_time(row["created_at"]),
        )

    @staticmethod
    def _row_to_password_reset(row: sqlite3.Row) -> PasswordReset:
        used_at = row["used_at"]
        return PasswordReset(
            id=str(row["id"]),
            email=str(row["email"]),
            token=str(row["token"]),
            kind=ResetKind(row["kind"]),
            expires_at=_from_db_time(row["expires_at"]),
            used_at=_from_db_time(used_at) if used_at else None,
            created_at=_from_db_time(row["created_at"]),
        )

    @staticmethod
    def _row_to_scratcher_product(row: sqlite3.Row) -> ScratcherProduct:
        return ScratcherProduct(
            id=str(row["id"]),
            name=row["name"],
            price=float(row["price"] or 0),
            is_active=bool(row["is_active"]),
            created_at=_from_db_time(row["created_at"]),
        )

    @staticmethod
    def _row_to_scratcher_file(row: sqlite3.Row) -> ScratcherFile:
        return ScratcherFile(
            id=str(row["id"]),
            path=str(row["storage_path"] or ""),
            original_name=row["original_name"],
            mime_type=str(row["mime_type"] or "application/octet-stream"),
            size=int(row["size"] or 0),
        )


__all__ = ["Database", "resolve_database_path"]

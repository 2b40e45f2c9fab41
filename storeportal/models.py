"""Domain models shared by the store portal persistence and HTTP layers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Optional


class Role(str, Enum):
    """Closed set of access levels a portal account can hold."""

    IRONHAND = "ironhand"
    CLIENT = "client"
    SURVEILLANCE = "surveillance"
    EMPLOYEE = "employee"

    @classmethod
    def parse(cls, value: object) -> "Role":
        if value is None or value == "":
            return cls.EMPLOYEE
        if isinstance(value, Role):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown role '{value}'") from exc


class Portal(str, Enum):
    MANAGER = "manager"
    MASTER = "master"

    @classmethod
    def parse(cls, value: object) -> Optional["Portal"]:
        if value is None or value == "":
            return None
        if isinstance(value, Portal):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown portal '{value}'") from exc


class ResetKind(str, Enum):
    """How a reset secret reaches its owner: an emailed link or an operator code."""

    LINK = "link"
    CODE = "code"


@dataclass(frozen=True)
class User:
    """Represents a portal account stored in the database."""

    id: str
    name: str
    email: str
    role: Role
    portal: Optional[Portal]
    store_number: Optional[str]
    created_at: datetime

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "portal": self.portal.value if self.portal else None,
            "storeNumber": self.store_number,
        }


@dataclass(frozen=True)
class ScopedUser:
    """An authorized user together with the fields used to scope queries."""

    user: User
    store_number: Optional[str]
    manager_id: Optional[str] = None

    @property
    def id(self) -> str:
        return self.user.id

    @property
    def role(self) -> Role:
        return self.user.role


@dataclass(frozen=True)
class PasswordReset:
    id: str
    email: str
    token: str
    kind: ResetKind
    expires_at: datetime
    used_at: Optional[datetime]
    created_at: datetime


@dataclass(frozen=True)
class IssuedReset:
    """Result of issuing a reset token or code.

    ``token`` is ``None`` when no account exists for the email, so callers
    cannot tell registered addresses apart from unknown ones.
    """

    token: Optional[str]
    expires_at: datetime


@dataclass(frozen=True)
class StoreSummary:
    store_id: str
    store_name: Optional[str] = None
    store_address: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "storeId": self.store_id,
            "storeName": self.store_name,
            "storeAddress": self.store_address,
        }


@dataclass(frozen=True)
class ScratcherProduct:
    id: str
    name: Optional[str]
    price: float
    is_active: bool
    created_at: datetime

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "isActive": self.is_active,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class ScratcherFile:
    id: str
    path: str
    original_name: Optional[str]
    mime_type: str
    size: int
    label: str = "Scratcher File"

    @property
    def kind(self) -> str:
        if self.mime_type.startswith("video"):
            return "video"
        if self.mime_type.startswith("image"):
            return "image"
        return "document"

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "label": self.label,
            "originalName": self.original_name,
            "path": self.path,
            "mimeType": self.mime_type,
            "size": self.size,
            "kind": self.kind,
        }


__all__ = [
    "IssuedReset",
    "PasswordReset",
    "ResetKind",
    "Portal",
    "Role",
    "ScopedUser",
    "ScratcherFile",
    "ScratcherProduct",
    "StoreSummary",
    "User",
]

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from storeportal.database import Database
from storeportal.models import Portal, ResetKind, Role


def test_create_and_authenticate_user(database: Database) -> None:
    user = database.create_user(
        "Store Owner",
        " Owner@Example.com ",
        "Sup3rSecurePwd!",
        role="client",
        store_number="42",
    )

    assert user.email == "owner@example.com"
    assert user.role is Role.CLIENT
    assert user.portal is None

    retrieved = database.authenticate_user("owner@example.com", "Sup3rSecurePwd!")
    assert retrieved is not None
    assert retrieved.id == user.id
    assert retrieved.store_number == "42"

    assert database.authenticate_user("owner@example.com", "wrong") is None
    assert database.authenticate_user("missing@example.com", "Sup3rSecurePwd!") is None


def test_ironhand_defaults_to_manager_portal(database: Database) -> None:
    manager = database.create_user("Manager", "manager@example.com", "manager-password", role=Role.IRONHAND)
    master = database.create_user(
        "Master", "master@example.com", "master-password", role=Role.IRONHAND, portal="master"
    )

    assert manager.portal is Portal.MANAGER
    assert master.portal is Portal.MASTER
    assert database.get_user(master.id).portal is Portal.MASTER


def test_duplicate_email_rejected(database: Database) -> None:
    database.create_user("First", "dup@example.com", "first-password")
    with pytest.raises(ValueError):
        database.create_user("Second", "DUP@example.com", "second-password")


def test_unknown_role_rejected(database: Database) -> None:
    with pytest.raises(ValueError):
        database.create_user("Odd", "odd@example.com", "odd-password", role="admin")


def test_password_hash_is_not_plaintext(tmp_path: Path) -> None:
    database = Database(tmp_path / "hash.sqlite3")
    database.initialize()
    database.create_user("Hashed", "hashed@example.com", "plain-text-password")

    with database._connect() as conn:
        stored = conn.execute("SELECT password_hash FROM users").fetchone()["password_hash"]

    assert stored != "plain-text-password"
    assert stored.startswith("$pbkdf2-sha256$")


def test_stores_scoped_to_manager_with_fallback(database: Database) -> None:
    manager = database.create_user("Manager", "manager@example.com", "manager-password", role="ironhand")
    other = database.create_user("Other", "other@example.com", "other-password", role="ironhand")
    database.create_store("200", name="Uptown", address="1 Main St", manager_id=manager.id)
    database.create_store("300", name="Downtown", manager_id=manager.id)
    database.create_store("400", name="Elsewhere", manager_id=other.id)

    stores = database.list_stores_for_manager(manager.id, "100")
    assert [store.store_id for store in stores] == ["100", "200", "300"]
    assert stores[0].store_name == "Store 100"
    assert stores[1].store_address == "1 Main St"

    assert [s.store_id for s in database.list_stores_for_manager(manager.id, "200")] == ["200", "300"]
    assert [s.store_id for s in database.list_stores_for_manager(manager.id)] == ["200", "300"]
    assert database.list_stores_for_manager("nobody") == []


def test_products_listed_by_price(database: Database) -> None:
    database.create_scratcher_product(10, name="Ten")
    database.create_scratcher_product(2, name="Two")
    database.create_scratcher_product(5, name="Five", is_active=False)

    products = database.list_scratcher_products()
    assert [product.price for product in products] == [2.0, 5.0, 10.0]
    assert products[1].is_active is False


def test_scratcher_file_kind_from_mime_type(database: Database) -> None:
    video = database.create_scratcher_file("scratchers/a.mp4", original_name="a.mp4", mime_type="video/mp4", size=10)
    image = database.create_scratcher_file("scratchers/b.png", mime_type="image/png")
    other = database.create_scratcher_file("scratchers/c.bin")

    assert video.kind == "video"
    assert image.kind == "image"
    assert other.kind == "document"
    assert other.mime_type == "application/octet-stream"
    assert database.get_scratcher_file(video.id) == video
    assert database.get_scratcher_file("missing") is None


def test_initialize_adds_reset_kind_to_existing_file(tmp_path: Path) -> None:
    path = tmp_path / "legacy.sqlite3"
    with sqlite3.connect(path) as conn:
        conn.execute(
            """
            CREATE TABLE password_resets (
                id TEXT PRIMARY KEY,
                email TEXT NOT NULL,
                token TEXT NOT NULL UNIQUE,
                expires_at TEXT NOT NULL,
                used_at TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            "INSERT INTO password_resets VALUES ('r1', 'owner@example.com', 'old-token', "
            "'2999-01-01T00:00:00.000000+00:00', NULL, '2024-01-01T00:00:00.000000+00:00')"
        )
    conn.close()

    database = Database(path)
    database.initialize()
    database.initialize()

    legacy = database.get_password_reset("old-token")
    assert legacy is not None
    assert legacy.kind is ResetKind.LINK

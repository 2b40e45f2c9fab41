"""Tests for issuing and redeeming password reset tokens."""

from __future__ import annotations

import tempfile
import threading
import unittest
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from pathlib import Path

from storeportal.database import Database
from storeportal.models import ResetKind
from storeportal.resets import RESET_CODE_ALPHABET, PasswordResetService


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class PasswordResetServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tempdir = tempfile.TemporaryDirectory()
        self.database = Database(Path(self._tempdir.name) / "portal.sqlite3")
        self.database.initialize()
        self.email = "owner@example.com"
        self.user = self.database.create_user("Owner", self.email, "original-password", role="client")
        self.clock = FakeClock()
        self.service = PasswordResetService(self.database, clock=self.clock)

    def tearDown(self) -> None:
        self._tempdir.cleanup()

    def test_token_redeems_only_once(self) -> None:
        issued = self.service.issue(self.email)
        self.assertIsNotNone(issued.token)

        self.assertTrue(self.service.redeem(issued.token, "brand-new-password"))
        self.assertFalse(self.service.redeem(issued.token, "another-password"))

        self.assertIsNotNone(self.database.authenticate_user(self.email, "brand-new-password"))
        self.assertIsNone(self.database.authenticate_user(self.email, "another-password"))
        self.assertIsNone(self.database.authenticate_user(self.email, "original-password"))

        stored = self.database.get_password_reset(issued.token)
        self.assertIsNotNone(stored)
        self.assertIsNotNone(stored.used_at)

    def test_expired_token_is_rejected(self) -> None:
        issued = self.service.issue(self.email)
        self.clock.advance(timedelta(hours=1, seconds=1))

        self.assertFalse(self.service.redeem(issued.token, "brand-new-password"))
        self.assertIsNotNone(self.database.authenticate_user(self.email, "original-password"))

    def test_token_valid_just_before_expiry(self) -> None:
        issued = self.service.issue(self.email)
        self.clock.advance(timedelta(minutes=59))

        self.assertTrue(self.service.redeem(issued.token, "brand-new-password"))

    def test_unknown_token_is_rejected(self) -> None:
        self.assertFalse(self.service.redeem("does-not-exist", "brand-new-password"))
        self.assertFalse(self.service.redeem("", "brand-new-password"))

    def test_unknown_email_gets_no_token(self) -> None:
        issued = self.service.issue("nobody@example.com")

        self.assertIsNone(issued.token)
        self.assertGreater(issued.expires_at, self.clock.now)

    def test_issue_normalizes_email(self) -> None:
        issued = self.service.issue("  OWNER@Example.com ")
        self.assertIsNotNone(issued.token)
        self.assertTrue(self.service.redeem(issued.token, "brand-new-password"))

    def test_concurrent_redemption_has_single_winner(self) -> None:
        issued = self.service.issue(self.email)
        callers = 6
        barrier = threading.Barrier(callers)

        def attempt(index: int) -> bool:
            barrier.wait()
            return self.service.redeem(issued.token, f"racing-password-{index}")

        with ThreadPoolExecutor(max_workers=callers) as pool:
            results = list(pool.map(attempt, range(callers)))

        self.assertEqual(results.count(True), 1)
        winner = results.index(True)
        self.assertIsNotNone(
            self.database.authenticate_user(self.email, f"racing-password-{winner}")
        )

    def test_reset_code_is_bound_to_email(self) -> None:
        other = "other@example.com"
        self.database.create_user("Other", other, "other-password")
        issued = self.service.issue_code(self.email)

        self.assertEqual(len(issued.token), 8)
        self.assertTrue(set(issued.token) <= set(RESET_CODE_ALPHABET))

        self.assertFalse(self.service.redeem_code(other, issued.token, "brand-new-password"))
        self.assertTrue(self.service.redeem_code(self.email.upper(), f" {issued.token} ", "brand-new-password"))
        self.assertFalse(self.service.redeem_code(self.email, issued.token, "brand-new-password"))

    def test_reset_code_cannot_be_redeemed_as_link_token(self) -> None:
        issued = self.service.issue_code(self.email)

        self.assertFalse(self.service.redeem(issued.token, "brand-new-password"))
        stored = self.database.get_password_reset(issued.token)
        self.assertIs(stored.kind, ResetKind.CODE)
        self.assertIsNone(stored.used_at)
        self.assertIsNotNone(self.database.authenticate_user(self.email, "original-password"))

        self.assertTrue(self.service.redeem_code(self.email, issued.token, "brand-new-password"))

    def test_link_token_cannot_be_redeemed_as_code(self) -> None:
        issued = self.service.issue(self.email)

        self.assertFalse(self.service.redeem_code(self.email, issued.token, "brand-new-password"))
        self.assertIs(self.database.get_password_reset(issued.token).kind, ResetKind.LINK)
        self.assertTrue(self.service.redeem(issued.token, "brand-new-password"))

    def test_reset_code_honours_custom_ttl(self) -> None:
        issued = self.service.issue_code(self.email, ttl=timedelta(minutes=5))
        self.clock.advance(timedelta(minutes=6))

        self.assertFalse(self.service.redeem_code(self.email, issued.token, "brand-new-password"))

    def test_code_for_missing_account_is_not_consumed(self) -> None:
        email = "ghost@example.com"
        issued = self.service.issue_code(email)

        self.assertFalse(self.service.redeem_code(email, issued.token, "brand-new-password"))
        stored = self.database.get_password_reset(issued.token)
        self.assertIsNotNone(stored)
        self.assertIsNone(stored.used_at)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

from __future__ import annotations

import json
import logging
import os
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from jose import jwt

from app.errors import ApiError
from app.logging_utils import JsonFormatter
from app.security import (
    ADMIN_SCOPE,
    LoginLockout,
    hash_password,
    issue_admin_token,
    read_admin_token,
    verify_admin_credentials,
)
from app.settings import get_settings

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class SecurityFeatureTests(unittest.TestCase):
    def setUp(self) -> None:
        get_settings.cache_clear()

    def tearDown(self) -> None:
        get_settings.cache_clear()

    def test_admin_token_roundtrip_carries_scope(self) -> None:
        with patch.dict(os.environ, {"JWT_SECRET": "jwt-test-secret"}, clear=False):
            get_settings.cache_clear()
            token, expires_in = issue_admin_token(username="ops")
            claims = read_admin_token(token)

        self.assertEqual(claims["sub"], "ops")
        self.assertEqual(claims["scope"], ADMIN_SCOPE)
        self.assertEqual(expires_in, 30 * 60)

    def test_token_signed_with_other_secret_rejected(self) -> None:
        with patch.dict(os.environ, {"JWT_SECRET": "first-secret"}, clear=False):
            get_settings.cache_clear()
            token, _ = issue_admin_token(username="ops")
        with patch.dict(os.environ, {"JWT_SECRET": "second-secret"}, clear=False):
            get_settings.cache_clear()
            with self.assertRaises(ApiError) as ctx:
                read_admin_token(token)

        self.assertEqual(ctx.exception.status_code, 401)
        self.assertEqual(ctx.exception.code, "INVALID_TOKEN")

    def test_token_without_admin_scope_forbidden(self) -> None:
        with patch.dict(os.environ, {"JWT_SECRET": "jwt-test-secret"}, clear=False):
            get_settings.cache_clear()
            settings = get_settings()
            token = jwt.encode(
                {
                    "sub": "kiosk",
                    "scope": "presence:kiosk",
                    "iss": settings.jwt_issuer,
                    "aud": settings.jwt_audience,
                    "exp": int((datetime.now(timezone.utc) + timedelta(minutes=5)).timestamp()),
                },
                settings.jwt_secret,
                algorithm="HS256",
            )
            with self.assertRaises(ApiError) as ctx:
                read_admin_token(token)

        self.assertEqual(ctx.exception.status_code, 403)

    def test_admin_credentials_checked_against_hash(self) -> None:
        password_hash = hash_password("s3cret-pass")
        with patch.dict(
            os.environ,
            {"ADMIN_USER": "'ops'", "ADMIN_PASS_HASH": password_hash},
            clear=False,
        ):
            get_settings.cache_clear()
            self.assertTrue(verify_admin_credentials("ops", "s3cret-pass"))
            self.assertFalse(verify_admin_credentials("ops", "wrong"))
            self.assertFalse(verify_admin_credentials("other", "s3cret-pass"))

    def test_missing_password_hash_never_authenticates(self) -> None:
        with patch.dict(os.environ, {"ADMIN_USER": "ops", "ADMIN_PASS_HASH": ""}, clear=False):
            get_settings.cache_clear()
            self.assertFalse(verify_admin_credentials("ops", ""))


class LoginLockoutTests(unittest.TestCase):
    def setUp(self) -> None:
        get_settings.cache_clear()
        self.lockout = LoginLockout()

    def test_locks_after_max_failures_and_reports_retry_after(self) -> None:
        for minute in range(5):
            self.lockout.record_failure("10.0.0.9", NOW + timedelta(minutes=minute))

        with self.assertRaises(ApiError) as ctx:
            self.lockout.ensure_allowed("10.0.0.9", NOW + timedelta(minutes=5))

        self.assertEqual(ctx.exception.status_code, 429)
        self.assertEqual(ctx.exception.code, "LOGIN_LOCKED")
        self.assertEqual(ctx.exception.details["retry_after_seconds"], 10 * 60)
        self.lockout.ensure_allowed("10.0.0.10", NOW + timedelta(minutes=5))

    def test_old_failures_fall_out_of_window(self) -> None:
        for _ in range(5):
            self.lockout.record_failure("10.0.0.9", NOW)

        self.lockout.ensure_allowed("10.0.0.9", NOW + timedelta(minutes=16))

    def test_successful_login_resets_address(self) -> None:
        for _ in range(5):
            self.lockout.record_failure("10.0.0.9", NOW)

        self.lockout.reset("10.0.0.9")

        self.lockout.ensure_allowed("10.0.0.9", NOW)

class JsonLoggingTests(unittest.TestCase):
    def test_formatter_emits_event_and_context(self) -> None:
        record = logging.LogRecord(
            name="app.auto_release",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="auto_release_sweep",
            args=(),
            exc_info=None,
        )
        record.released_count = 2

        payload = json.loads(JsonFormatter(service="PresenceEngine").format(record))

        self.assertEqual(payload["message"], "auto_release_sweep")
        self.assertEqual(payload["logger"], "app.auto_release")
        self.assertEqual(payload["service"], "PresenceEngine")
        self.assertEqual(payload["released_count"], 2)
        self.assertEqual(payload["level"], "INFO")


if __name__ == "__main__":
    unittest.main()

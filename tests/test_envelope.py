from __future__ import annotations

from unittest import TestCase
from unittest.mock import patch

from flask import Flask
from werkzeug.exceptions import NotFound

from fringe_admin.api.envelope import (
    ApiError,
    RateLimiter,
    ValidationError,
    handle_api_error,
    paginated,
    pagination_params,
    require_fields,
)
from fringe_admin.services.queries import DatabaseError
from fringe_admin.utils.auth import AuthError, has_role


class ErrorMappingTests(TestCase):
    def setUp(self) -> None:
        self.app = Flask(__name__)

    def _handle(self, exc: Exception):
        with self.app.test_request_context():
            response, status = handle_api_error(exc)
            return status, response.get_json()

    def test_known_errors_keep_their_status(self) -> None:
        self.assertEqual((418, {"success": False, "error": "Teapot"}), self._handle(ApiError("Teapot", 418)))
        self.assertEqual(
            (403, {"success": False, "error": "Insufficient permissions"}),
            self._handle(AuthError("Insufficient permissions", 403)),
        )
        status, body = self._handle(NotFound())
        self.assertEqual((404, "Not Found"), (status, body["error"]))

    def test_generic_errors_are_classified(self) -> None:
        self.assertEqual(
            (422, {"success": False, "error": "Validation failed", "message": "bad slug"}),
            self._handle(ValidationError("bad slug")),
        )
        self.assertEqual((500, "Database operation failed"), self._first(DatabaseError("timeout")))
        self.assertEqual((401, "Authentication failed"), self._first(RuntimeError("JWT malformed")))
        with self.assertLogs("fringe_admin.api.envelope", level="ERROR"):
            self.assertEqual((500, "An unexpected error occurred"), self._first(RuntimeError("boom")))

    def _first(self, exc: Exception):
        status, body = self._handle(exc)
        return status, body["error"]


class RequestHelperTests(TestCase):
    def setUp(self) -> None:
        self.app = Flask(__name__)

    def test_pagination_params_are_clamped(self) -> None:
        with self.app.test_request_context("/?page=0&limit=500"):
            self.assertEqual((1, 100), pagination_params(10))
        with self.app.test_request_context("/?page=abc&limit="):
            self.assertEqual((1, 25), pagination_params(25))

    def test_paginated_shape(self) -> None:
        self.assertEqual(
            {"data": [], "pagination": {"page": 3, "limit": 10, "total": 21, "totalPages": 3}},
            paginated([], 3, 10, 21),
        )

    def test_require_fields_lists_every_missing_field(self) -> None:
        with self.assertRaises(ApiError) as caught:
            require_fields({"title": "x", "slug": ""}, ["title", "slug", "price"])
        self.assertEqual(("Missing required fields: slug, price", 400), (caught.exception.message, caught.exception.status_code))

    def test_role_hierarchy(self) -> None:
        self.assertTrue(has_role({"role": "super_admin"}, "admin"))
        self.assertFalse(has_role({"role": "editor"}, "admin"))
        self.assertFalse(has_role({"role": "owner"}, "editor"))
        self.assertFalse(has_role(None, "editor"))


class RateLimiterTests(TestCase):
    def test_window_slides(self) -> None:
        limiter = RateLimiter(max_requests=2, window_seconds=60)

        with patch("fringe_admin.api.envelope.time.monotonic", side_effect=[0.0, 1.0, 2.0, 2.0, 2.0, 61.0]):
            self.assertTrue(limiter.is_allowed("1.2.3.4"))
            self.assertTrue(limiter.is_allowed("1.2.3.4"))
            self.assertFalse(limiter.is_allowed("1.2.3.4"))
            self.assertEqual(0, limiter.remaining("1.2.3.4"))
            self.assertTrue(limiter.is_allowed("5.6.7.8"))
            self.assertTrue(limiter.is_allowed("1.2.3.4"))

    def test_idle_clients_are_forgotten(self) -> None:
        limiter = RateLimiter(max_requests=5, window_seconds=60)

        with patch("fringe_admin.api.envelope.time.monotonic", side_effect=[0.0, 1.0, 70.0, 71.0]):
            limiter.is_allowed("10.0.0.1")
            limiter.is_allowed("10.0.0.2")
            limiter.is_allowed("10.0.0.3")
            self.assertEqual(5, limiter.remaining("10.0.0.99"))

        self.assertEqual(["10.0.0.3"], list(limiter._hits))

"""Response envelope, error mapping and small request helpers for the JSON API."""

from __future__ import annotations

import logging
import math
import re
import threading
import time
from collections import deque
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from ..services.queries import DatabaseError
from ..utils.auth import AuthError

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_MISSING = object()


class ApiError(Exception):
    """An error with a client-facing message and HTTP status."""

    def __init__(self, message: str, status_code: int = 500, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class ValidationError(Exception):
    """Raised for semantically invalid payloads (HTTP 422)."""


def success_response(data: Any = _MISSING, message: Optional[str] = None, status: int = 200):
    body: Dict[str, Any] = {"success": True}
    if data is not _MISSING:
        body["data"] = data
    if message:
        body["message"] = message
    return jsonify(body), status


def error_response(error: str, status: int = 500, message: Optional[str] = None):
    body: Dict[str, Any] = {"success": False, "error": error}
    if message:
        body["message"] = message
    return jsonify(body), status


def handle_api_error(exc: Exception):
    """Translate any exception raised by a route into an error envelope."""

    if isinstance(exc, ApiError):
        return error_response(exc.message, exc.status_code)
    if isinstance(exc, AuthError):
        return error_response(exc.message, exc.status_code)
    if isinstance(exc, HTTPException):
        return error_response(exc.name, exc.code or 500, exc.description)
    if isinstance(exc, ValidationError):
        return error_response("Validation failed", 422, str(exc))
    if isinstance(exc, DatabaseError):
        logger.error("Database operation failed: %s", exc)
        return error_response("Database operation failed", 500, str(exc))

    text = str(exc)
    if "JWT" in text or "auth" in text:
        return error_response("Authentication failed", 401, text)

    logger.exception("Unhandled API error")
    return error_response("An unexpected error occurred", 500, text or None)


def validate_required_fields(body: Mapping[str, Any], fields: Iterable[str]) -> List[str]:
    return [name for name in fields if not body.get(name)]


def require_fields(body: Mapping[str, Any], fields: Iterable[str]) -> None:
    missing = validate_required_fields(body, fields)
    if missing:
        raise ApiError(f"Missing required fields: {', '.join(missing)}", 400)


def is_valid_email(value: Any) -> bool:
    return isinstance(value, str) and bool(EMAIL_PATTERN.match(value))


def json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ApiError("Request body must be a JSON object", 400)
    return payload


def parse_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value not in (None, "") else default
    except (TypeError, ValueError):
        return default


def pagination_params(default_limit: int = 10, max_limit: int = 100) -> Tuple[int, int]:
    page = max(parse_int(request.args.get("page"), 1), 1)
    limit = parse_int(request.args.get("limit"), default_limit)
    limit = min(max(limit, 1), max_limit)
    return page, limit


def paginated(rows: List[Dict[str, Any]], page: int, limit: int, total: int) -> Dict[str, Any]:
    return {
        "data": rows,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": math.ceil(total / limit) if limit else 0,
        },
    }


class RateLimiter:
    """Sliding-window limiter keyed by client identifier.

    Identifiers with no hits inside the window are forgotten, so the map only
    holds clients seen during the last window.
    """

    def __init__(self, max_requests: int = 100, window_seconds: float = 60.0) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._hits: Dict[str, deque] = {}
        self._last_sweep = 0.0
        self._lock = threading.Lock()

    def _prune(self, identifier: str, now: float) -> deque:
        hits = self._hits.get(identifier)
        if hits is None:
            return deque()
        while hits and hits[0] <= now - self.window_seconds:
            hits.popleft()
        if not hits:
            del self._hits[identifier]
        return hits

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        for identifier in list(self._hits):
            self._prune(identifier, now)

    def is_allowed(self, identifier: str) -> bool:
        now = time.monotonic()
        with self._lock:
            self._sweep(now)
            hits = self._prune(identifier, now)
            if len(hits) >= self.max_requests:
                return False
            hits.append(now)
            self._hits[identifier] = hits
            return True

    def remaining(self, identifier: str) -> int:
        with self._lock:
            hits = self._prune(identifier, time.monotonic())
            return max(0, self.max_requests - len(hits))

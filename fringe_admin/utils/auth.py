"""Authentication helpers for the admin console APIs."""

from __future__ import annotations

from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Dict, Mapping, Optional

import jwt
from flask import g

ROLE_HIERARCHY: Dict[str, int] = {
    "editor": 1,
    "admin": 2,
    "super_admin": 3,
}


@dataclass
class AuthError(Exception):
    """Raised when a request cannot be authenticated or authorised."""

    message: str
    status_code: int = 401

    def __str__(self) -> str:  # pragma: no cover - dataclass convenience
        return self.message


def decode_access_token(token: str, secret: str) -> Dict[str, Any]:
    """Validate and decode a Supabase access token.

    Parameters
    ----------
    token:
        The encoded JWT string sent in the ``Authorization: Bearer`` header.
    secret:
        The project's JWT secret (``SUPABASE_JWT_SECRET``).

    Returns
    -------
    dict
        The decoded token payload.

    Raises
    ------
    AuthError
        If the token is missing, invalid or expired, or the server has no
        secret to verify it with.
    """

    if not secret:
        raise AuthError("Unauthorized")

    if not token:
        raise AuthError("Authorization token missing.")

    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            options={"require": ["exp", "sub"], "verify_aud": False},
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthError("Authorization token has expired.") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthError("Authorization token is invalid.") from exc

    return payload


def has_role(user: Optional[Mapping[str, Any]], required: str) -> bool:
    """Return ``True`` when ``user`` holds ``required`` or a higher role."""

    if not user:
        return False
    return ROLE_HIERARCHY.get(str(user.get("role")), 0) >= ROLE_HIERARCHY.get(required, 99)


def bearer_token(header: Optional[str]) -> str:
    if not header:
        return ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


def role_required(role: str) -> Callable:
    """Reject the request with 403 unless the signed-in admin has ``role``."""

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            user = getattr(g, "admin_user", None)
            if not user:
                raise AuthError("Unauthorized")
            if not has_role(user, role):
                raise AuthError("Insufficient permissions", 403)
            return view(*args, **kwargs)

        return wrapper

    return decorator

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from werkzeug.security import check_password_hash, generate_password_hash

from ..utils.auth import ROLE_HIERARCHY, AuthError, decode_access_token
from ..utils.dates import now_iso
from .database_service import DatabaseService
from .queries import eq

logger = logging.getLogger(__name__)

ADMIN_TABLE = 'admin_users'


def public_user(admin: Dict[str, Any]) -> Dict[str, Any]:
    return {'id': admin['id'], 'email': admin['email'], 'role': admin.get('role', 'editor')}


class AuthService:
    """Admin sign-in backed by Supabase Auth, or by ``admin_users.password_hash`` locally."""

    def __init__(self, database: DatabaseService) -> None:
        self._db = database

    def authenticate(self, email: str, password: str) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
        email = (email or '').strip().lower()
        admin = self._db.find_one(ADMIN_TABLE, [eq('email', email)])
        if not admin:
            raise AuthError('Invalid credentials')
        if not admin.get('is_active', True):
            raise AuthError('Account is disabled')

        session_tokens = None
        client = self._db.client
        if client:
            try:
                response = client.auth.sign_in_with_password({'email': email, 'password': password})
            except Exception as exc:
                logger.warning('Supabase sign-in failed for %s', email, exc_info=True)
                raise AuthError('Invalid credentials') from exc
            if not getattr(response, 'user', None):
                raise AuthError('Invalid credentials')
            session = getattr(response, 'session', None)
            if session is not None:
                session_tokens = {
                    'access_token': session.access_token,
                    'refresh_token': session.refresh_token,
                    'expires_at': session.expires_at,
                }
        elif not admin.get('password_hash') or not check_password_hash(admin['password_hash'], password):
            raise AuthError('Invalid credentials')

        self._db.update_by_id(ADMIN_TABLE, admin['id'], {'last_login_at': now_iso()})
        return public_user(admin), session_tokens

    def sign_out(self) -> None:
        client = self._db.client
        if not client:
            return
        try:
            client.auth.sign_out()
        except Exception:
            logger.warning('Supabase sign-out failed', exc_info=True)

    def request_password_reset(self, email: str, redirect_to: str) -> None:
        client = self._db.client
        if not client:
            logger.info('Password reset requested for %s (no auth provider configured)', email)
            return
        client.auth.reset_password_for_email(email, {'redirect_to': redirect_to})

    def lookup(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self._db.get(ADMIN_TABLE, user_id)

    def resolve_token(self, token: str, secret: str) -> Dict[str, Any]:
        """Return the session user for a bearer token, or raise :class:`AuthError`."""

        payload = decode_access_token(token, secret)
        admin = self._db.get(ADMIN_TABLE, payload['sub'])
        if admin is None and payload.get('email'):
            admin = self._db.find_one(ADMIN_TABLE, [eq('email', str(payload['email']).lower())])
        if admin is None:
            raise AuthError('Unauthorized')
        if not admin.get('is_active', True):
            raise AuthError('Account is disabled')
        return public_user(admin)

    def create_admin(self, email: str, password: str, role: str = 'editor') -> Dict[str, Any]:
        if role not in ROLE_HIERARCHY:
            raise ValueError(f'Unknown role: {role}')
        email = email.strip().lower()
        if self._db.exists(ADMIN_TABLE, [eq('email', email)]):
            raise ValueError('Admin user already exists.')
        return self._db.insert(
            ADMIN_TABLE,
            {
                'email': email,
                'password_hash': generate_password_hash(password),
                'role': role,
                'is_active': True,
                'last_login_at': None,
            },
        )

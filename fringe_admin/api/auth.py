"""Session endpoints and the authentication guard for every API route."""

from __future__ import annotations

import logging

from flask import current_app, g, request, session

from ..services.auth_service import public_user
from ..utils.auth import AuthError, bearer_token
from ..utils.dates import to_iso, utcnow
from . import api_bp, current_user
from .envelope import ApiError, error_response, json_body, require_fields, success_response

logger = logging.getLogger(__name__)

PUBLIC_ENDPOINTS = {
    'api.login',
    'api.logout',
    'api.session_status',
    'api.forgot_password',
    'api.web_vitals',
}


def _client_identifier() -> str:
    forwarded = request.headers.get('X-Forwarded-For', '')
    return forwarded.split(',')[0].strip() or request.remote_addr or 'anonymous'


@api_bp.before_request
def authenticate_request():
    if request.method == 'OPTIONS':
        return None

    if not current_app.rate_limiter.is_allowed(_client_identifier()):
        return error_response('Too many requests', 429)

    g.admin_user = session.get('admin_user')
    if request.endpoint in PUBLIC_ENDPOINTS or g.admin_user:
        return None

    token = bearer_token(request.headers.get('Authorization'))
    if not token:
        raise AuthError('Unauthorized')
    g.admin_user = current_app.auth_service.resolve_token(token, current_app.settings.jwt_secret)
    return None


@api_bp.route('/auth/login', methods=['POST'], endpoint='login')
def login():
    body = json_body()
    if not body.get('email') or not body.get('password'):
        raise ApiError('Email and password are required', 400)

    user, tokens = current_app.auth_service.authenticate(body['email'], body['password'])
    expires_at = utcnow() + current_app.permanent_session_lifetime
    session.clear()
    session.permanent = True
    session['admin_user'] = user
    session['expires_at'] = to_iso(expires_at)
    logger.info('Admin %s signed in', user['email'])
    return success_response({'user': user, 'session': tokens}, 'Login successful')


@api_bp.route('/auth/logout', methods=['POST'], endpoint='logout')
def logout():
    current_app.auth_service.sign_out()
    session.clear()
    return success_response(None, 'Logout successful')


@api_bp.route('/auth/session', methods=['GET'], endpoint='session_status')
def session_status():
    user = current_user()
    if not user:
        return error_response('No active session', 401)
    admin = current_app.auth_service.lookup(user['id'])
    if admin is None or not admin.get('is_active', True):
        session.clear()
        return error_response('No active session', 401)
    payload = {
        **public_user(admin),
        'is_active': admin.get('is_active', True),
        'last_login_at': admin.get('last_login_at'),
    }
    return success_response({'user': payload, 'expires_at': session.get('expires_at')})


@api_bp.route('/auth/forgot-password', methods=['POST'], endpoint='forgot_password')
def forgot_password():
    body = json_body()
    require_fields(body, ['email'])
    redirect_to = f"{current_app.settings.site_url.rstrip('/')}/admin/reset-password"
    current_app.auth_service.request_password_reset(body['email'].strip().lower(), redirect_to)
    return success_response(None, 'If an account exists for this email, a reset link has been sent')

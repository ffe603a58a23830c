"""JSON API blueprint.

Route modules attach themselves to :data:`api_bp` when imported; the
application factory imports them through :func:`register_api`.
"""

from __future__ import annotations

from flask import Blueprint, Flask, current_app, g

from .envelope import handle_api_error

api_bp = Blueprint('api', __name__, url_prefix='/api')
api_bp.register_error_handler(Exception, handle_api_error)


def database():
    return current_app.database_service


def current_user():
    return getattr(g, 'admin_user', None)


def register_api(app: Flask) -> None:
    from . import analytics, auth, content, crud, email, files, statistics  # noqa: F401

    app.register_blueprint(api_bp)

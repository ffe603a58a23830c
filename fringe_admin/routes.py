from __future__ import annotations

import logging
from functools import wraps

from flask import (
    Blueprint,
    abort,
    current_app,
    flash,
    redirect,
    render_template,
    request,
    send_file,
    session,
    url_for,
)

from .resources import RESOURCES_BY_NAME, page_resources
from .services.auth_service import public_user
from .services.file_storage import BUCKETS
from .services.mailer import read_unsubscribe_token
from .services.queries import eq
from .utils.auth import AuthError
from .utils.dates import now_iso

pages_bp = Blueprint('pages', __name__)

logger = logging.getLogger(__name__)


@pages_bp.before_app_request
def redirect_admin_pages():
    """Send anonymous visitors to the login page and signed-in admins away from it."""

    path = request.path.rstrip('/') or '/'
    if path != '/admin' and not path.startswith('/admin/'):
        return None
    signed_in = 'admin_user' in session
    if path == '/admin/login':
        if signed_in and request.method == 'GET':
            return redirect(url_for('pages.dashboard'))
        return None
    if not signed_in:
        return redirect(url_for('pages.login', next=request.path))
    return None


def login_required(view):
    """Decorator ensuring an admin is signed in before accessing a view."""

    @wraps(view)
    def wrapped(*args, **kwargs):
        if 'admin_user' not in session:
            flash('Please log in to continue.', 'warning')
            return redirect(url_for('pages.login'))
        return view(*args, **kwargs)

    return wrapped


@pages_bp.route('/')
def index():
    return redirect(url_for('pages.dashboard'))


@pages_bp.route('/admin/login', methods=['GET', 'POST'])
def login():
    if request.method == 'POST':
        email = request.form.get('email', '').strip()
        password = request.form.get('password', '')
        if not email or not password:
            flash('Email and password are required.', 'danger')
            return render_template('admin/login.html', email=email), 400
        try:
            user, _ = current_app.auth_service.authenticate(email, password)
        except AuthError as exc:
            flash(exc.message, 'danger')
            return render_template('admin/login.html', email=email), exc.status_code
        session.clear()
        session.permanent = True
        session['admin_user'] = user
        next_url = request.args.get('next') or ''
        if not next_url.startswith('/admin'):
            next_url = url_for('pages.dashboard')
        return redirect(next_url)
    return render_template('admin/login.html', email='')


@pages_bp.route('/admin/logout')
def logout():
    current_app.auth_service.sign_out()
    session.clear()
    flash('You have been signed out.', 'info')
    return redirect(url_for('pages.login'))


@pages_bp.route('/admin')
@login_required
def dashboard():
    stats = current_app.analytics_service.dashboard_stats()
    return render_template(
        'admin/dashboard.html',
        stats=stats,
        user=session['admin_user'],
        resources=page_resources(),
    )


@pages_bp.route('/admin/<path:name>')
@login_required
def resource_page(name: str):
    resource = RESOURCES_BY_NAME.get(name)
    if resource is None or resource.list_style != 'paginated':
        abort(404)

    try:
        page = max(int(request.args.get('page', 1)), 1)
    except ValueError:
        page = 1
    query = resource.build_list_query(request.args).page(page, resource.default_limit)
    result = current_app.database_service.select(query)
    total_pages = max(1, -(-result.total // resource.default_limit))
    columns = [column for column in _display_columns(result.rows) if column not in resource.hidden_fields]
    return render_template(
        'admin/resource_list.html',
        resource=resource,
        rows=[resource.present(row) for row in result.rows],
        columns=columns,
        page=page,
        total=result.total,
        total_pages=total_pages,
        search=request.args.get('search', ''),
        user=session['admin_user'],
        resources=page_resources(),
    )


def _display_columns(rows):
    columns = []
    for row in rows:
        for key, value in row.items():
            if key not in columns and not isinstance(value, (dict, list)) and key != 'id':
                columns.append(key)
    return columns[:8]


@pages_bp.route('/uploads/<bucket>/<path:path>')
def public_upload(bucket: str, path: str):
    if not BUCKETS.get(bucket, {}).get('public'):
        abort(404)
    target = current_app.file_storage.local_file(bucket, path)
    if target is None:
        abort(404)
    return send_file(target)


@pages_bp.route('/unsubscribe')
def unsubscribe():
    """Public unsubscribe link embedded in every newsletter email."""

    token = request.args.get('token') or ''
    email = read_unsubscribe_token(token, current_app.config['SECRET_KEY']) if token else None
    if email is None:
        return render_template('unsubscribe.html', invalid=True, found=False), 400

    db = current_app.database_service
    subscriber = db.find_one('newsletter_subscriptions', [eq('email', email)])
    if subscriber and subscriber.get('status') != 'unsubscribed':
        timestamp = now_iso()
        db.update_by_id(
            'newsletter_subscriptions',
            subscriber['id'],
            {'status': 'unsubscribed', 'unsubscribed_at': timestamp, 'updated_at': timestamp},
        )
        logger.info('Newsletter unsubscribe for %s', email)
    return render_template('unsubscribe.html', found=subscriber is not None)


@pages_bp.app_context_processor
def inject_admin():
    user = session.get('admin_user')
    return {'current_admin': public_user(user) if user else None}


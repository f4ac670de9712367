import hmac

from flask import current_app, request, jsonify
from flask_login import LoginManager, UserMixin, current_user
from flask_login.config import EXEMPT_METHODS

from .errors import OrchestratorError

login_manager = LoginManager()


class ApiUser(UserMixin):
    """The single administrator identity behind API_TOKEN."""

    id = 'admin'


class UnauthorizedError(OrchestratorError):
    status_code = 401


def _token_matches(supplied: str, expected: str) -> bool:
    return hmac.compare_digest(supplied.encode(), expected.encode())


@login_manager.user_loader
def load_user(user_id):
    return ApiUser() if user_id == ApiUser.id else None


@login_manager.request_loader
def load_user_from_request(req):
    expected = current_app.config.get('API_TOKEN')
    header = req.headers.get('Authorization', '')
    if not expected or not header.startswith('Bearer '):
        return None
    if _token_matches(header[len('Bearer '):].strip(), expected):
        return ApiUser()
    return None


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'success': False, 'error': 'Authentication required'}), 401


def require_admin():
    """Blueprint before_request hook with the same semantics as @login_required."""
    if request.method in EXEMPT_METHODS or current_app.config.get('LOGIN_DISABLED'):
        return None
    if not current_user.is_authenticated:
        return login_manager.unauthorized()
    return None


def check_webhook_token():
    expected = current_app.config.get('WEBHOOK_TOKEN')
    if not expected:
        return
    supplied = request.headers.get('X-MatchZy-Token', '')
    if not _token_matches(supplied, expected):
        raise UnauthorizedError('Invalid webhook token')


def require_admin_for_writes():
    """Reads stay public for the spectator pages."""
    if request.method in ('GET', 'HEAD'):
        return None
    return require_admin()

"""Middleware for request identity and access control."""
from functools import wraps
from flask import session, g, current_app
from storefront.database import get_session
from storefront.exceptions import UnauthorizedError
from storefront.models import AppUser


def load_current_user():
    """
    Load the signed-in user into g (Flask's per-request global).

    Called before each request. Sign-in itself happens elsewhere; this only
    trusts session['user_id'] when it maps to an active user.
    """
    g.user = None

    try:
        user_id = session.get('user_id')
        if user_id:
            db_session = get_session()
            if not db_session:
                return

            user = db_session.query(AppUser).filter_by(id=user_id, active=True).first()
            if user:
                g.user = user
            else:
                session.pop('user_id', None)
    except Exception as e:
        # Identity failures degrade to anonymous instead of failing the request
        current_app.logger.error(f"Error in load_current_user: {e}")


def require_login(f):
    """Decorator: require a signed-in user (JSON 401 otherwise)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('user') is None:
            raise UnauthorizedError('Authentication required', status_code=401)
        return f(*args, **kwargs)
    return decorated_function


def require_admin(f):
    """Decorator: require a signed-in back-office admin (401 / 403)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = g.get('user')
        if user is None:
            raise UnauthorizedError('Authentication required', status_code=401)
        if not user.is_admin:
            raise UnauthorizedError('Admin access required')
        return f(*args, **kwargs)
    return decorated_function

"""Authentication helpers: password hashing, bearer tokens and role checks.

Clients authenticate either with ``Authorization: Bearer <token>`` (the
token is returned by ``/api/login`` and ``/api/register``) or with the
server-side session cookie set at login.  Only a sha256 digest of each
token is stored.
"""
import functools
import hashlib
import logging
import secrets

import bcrypt
from flask import current_app, g, jsonify, request, session

from models import AccessToken, User, db
from utils import utcnow

logger = logging.getLogger(__name__)


def hash_password(password):
    rounds = current_app.config.get('BCRYPT_ROUNDS', 12)
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds)).decode('utf-8')


def check_password(password, hashed):
    try:
        return bcrypt.checkpw(password.encode('utf-8'), hashed.encode('utf-8'))
    except ValueError:
        # stored value is not a bcrypt hash
        return False


def _digest(token):
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def issue_token(user, name='auth_token'):
    """Create a new access token for ``user`` and return its plain value."""
    plain = secrets.token_hex(32)
    db.session.add(AccessToken(user=user, name=name, token_hash=_digest(plain)))
    return plain


def _bearer_token():
    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        return auth_header[7:].strip() or None
    return None


def revoke_current_token():
    token = _bearer_token()
    if not token:
        return False
    deleted = AccessToken.query.filter_by(token_hash=_digest(token)).delete()
    return deleted > 0


def resolve_user():
    """Return the authenticated user for this request, or None."""
    token = _bearer_token()
    if token:
        access_token = AccessToken.query.filter_by(token_hash=_digest(token)).first()
        if access_token is None:
            return None
        access_token.last_used_at = utcnow()
        db.session.commit()
        return _active(access_token.user)
    if 'user_id' in session:
        return _active(db.session.get(User, session['user_id']))
    return None


def _active(user):
    if user is None or user.status == 'inactive':
        return None
    return user


def current_user():
    return g.get('current_user')


# Authentication decorator
def login_required(role=None):
    """Require an authenticated user, optionally with one of ``role``.

    ``role`` may be a single role name or a tuple of accepted roles.
    """
    roles = (role,) if isinstance(role, str) else role

    def decorator(f):
        @functools.wraps(f)
        def wrapped(*args, **kwargs):
            user = resolve_user()
            if not user:
                logger.error("Unauthorized access: No valid token or session")
                return jsonify({'message': 'Unauthenticated.'}), 401
            if roles and user.role not in roles:
                logger.error(f"Access denied: Required role {'/'.join(roles)}, got {user.role}")
                return jsonify({'message': 'Unauthorized'}), 403
            g.current_user = user
            return f(*args, **kwargs)
        return wrapped
    return decorator

from functools import wraps

from flask import current_app, g, jsonify, request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from . import db
from .models import User, USER_ROLES

TOKEN_SALT = 'farmtrack-auth'


def _serializer():
    return URLSafeTimedSerializer(current_app.config['SECRET_KEY'], salt=TOKEN_SALT)


def issue_token(user):
    """Creates a signed bearer token for a user."""
    return _serializer().dumps({'id': user.id})


def load_user_from_token(token):
    """
    Returns the active User a token belongs to.
    Raises SignatureExpired / BadSignature for bad tokens and LookupError for unknown or inactive users.
    """
    data = _serializer().loads(token, max_age=current_app.config['AUTH_TOKEN_MAX_AGE'])
    user = db.session.get(User, data.get('id'))
    if user is None:
        raise LookupError('User not found')
    if not user.is_active:
        raise LookupError('Account is deactivated')
    return user


def auth_required(*roles):
    """
    Requires a valid 'Authorization: Bearer <token>' header and stores the user in g.user.
    If roles are given, the user's role must be one of them.
    Non-admin users must belong to a farm.
    """
    unknown = [role for role in roles if role not in USER_ROLES]
    if unknown:
        raise ValueError(f"Unknown roles: {', '.join(unknown)}")

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            auth_header = request.headers.get('Authorization', '')
            if not auth_header.startswith('Bearer '):
                return jsonify({'error': 'No token provided'}), 401

            try:
                user = load_user_from_token(auth_header.split(' ', 1)[1])
            except SignatureExpired:
                return jsonify({'error': 'Token expired'}), 401
            except BadSignature:
                return jsonify({'error': 'Invalid token'}), 401
            except LookupError as e:
                return jsonify({'error': str(e)}), 401

            if user.role != 'admin' and user.farm_id is None:
                return jsonify({'error': 'User does not belong to any farm'}), 403
            if roles and user.role not in roles:
                return jsonify({'error': 'You do not have permission to perform this action'}), 403

            g.user = user
            return view(*args, **kwargs)
        return wrapper
    return decorator


def require_farm():
    """Returns an error response if the current user has no farm yet, else None."""
    if g.user.farm_id is None:
        if g.user.role == 'admin':
            return jsonify({'error': 'Please register your farm first'}), 403
        return jsonify({'error': 'Farm access required'}), 403
    return None

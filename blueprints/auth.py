from datetime import datetime, timedelta
from functools import wraps

import jwt
import pytz
from flask import Blueprint, current_app, g, jsonify, request

from errors import AppError, Conflict, Forbidden, Unauthenticated
from models import db, User
from policy import Actor

auth_bp = Blueprint('auth', __name__, url_prefix='/auth')

JWT_ALGORITHM = 'HS256'


def issue_token(user: User) -> str:
    """Sign a bearer credential carrying the user's id, email and role."""
    now = datetime.now(pytz.utc)
    payload = {
        'userId': user.id,
        'email': user.email,
        'role': user.role,
        'iat': now,
        'exp': now + timedelta(days=current_app.config['JWT_EXPIRES_DAYS']),
    }
    return jwt.encode(payload, current_app.config['JWT_SECRET'], algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Raises jwt.InvalidTokenError subclasses on failure."""
    return jwt.decode(
        token,
        current_app.config['JWT_SECRET'],
        algorithms=[JWT_ALGORITHM],
        options={'require': ['exp', 'iat', 'userId']},
    )


def _bearer_token() -> str | None:
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


# Helper function - load current user
def load_current_user():
    """Resolve the bearer credential into g.current_user (an Actor or None)."""
    g.current_user = None

    token = _bearer_token()
    if token is None:
        return

    try:
        payload = decode_token(token)
    except jwt.InvalidTokenError as exc:
        current_app.logger.info(f'Rejected bearer token: {exc}')
        return

    user = db.session.get(User, payload['userId'])
    if user is None:
        return

    g.current_user = Actor(user_id=user.id, email=user.email, role=user.role)


def current_actor() -> Actor | None:
    return getattr(g, 'current_user', None)


# Decorators for authentication
def login_required(f):
    """Require a valid bearer credential"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_actor():
            raise Unauthenticated()
        return f(*args, **kwargs)
    return decorated_function


def require_role(*roles):
    """Require one of ``roles``"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            actor = current_actor()
            if not actor:
                raise Unauthenticated()
            if actor.role not in roles:
                raise Forbidden('Forbidden - Insufficient permissions')
            return f(*args, **kwargs)
        return decorated_function
    return decorator


@auth_bp.route('/register', methods=['POST'])
def register():
    """Create a regular USER account and sign it in."""
    body = request.get_json(silent=True) or {}
    email = (body.get('email') or '').strip().lower()
    name = (body.get('name') or '').strip()
    password = body.get('password') or ''

    # Validate format (no DB queries)
    errors = User.validate_format(email, name, password)
    if errors:
        raise AppError(
            'Validation error',
            details=[{'field': field, 'message': message} for field, message in errors],
        )

    if User.query.filter_by(email=email).first():
        raise Conflict('User with this email already exists')

    user = User(email=email, name=name, role='USER', city=body.get('city'))
    user.set_password(password)
    db.session.add(user)
    db.session.commit()

    current_app.logger.info(f'Registered user {user.id} ({user.email})')
    return jsonify({
        'message': 'User registered successfully',
        'user': user.to_dict(),
        'token': issue_token(user),
    }), 201


@auth_bp.route('/login', methods=['POST'])
def login():
    body = request.get_json(silent=True) or {}
    email = (body.get('email') or '').strip().lower()
    password = body.get('password') or ''

    if not email or not password:
        raise AppError('Email and password are required')

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password):
        raise Unauthenticated('Invalid credentials')

    current_app.logger.info(f'User {user.id} logged in')
    return jsonify({
        'message': 'Login successful',
        'user': user.to_dict(),
        'token': issue_token(user),
    })


@auth_bp.route('/token', methods=['GET'])
@login_required
def refresh_token():
    """Re-issue a fresh credential for the current bearer."""
    user = db.session.get(User, current_actor().user_id)
    return jsonify({'token': issue_token(user), 'user': user.to_dict()})


@auth_bp.route('/profile', methods=['GET'])
@login_required
def profile():
    user = db.session.get(User, current_actor().user_id)
    return jsonify({'user': user.to_dict(with_counts=True)})

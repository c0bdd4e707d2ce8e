"""Request parsing shared by the API blueprints."""

from flask import request

from errors import NotFound, ValidationError
from models import db, parse_datetime
from policy import Actor, Facts


def json_body() -> dict:
    body = request.get_json(silent=True)
    if body is None:
        body = {}
    if not isinstance(body, dict):
        raise ValidationError('body', 'Request body must be a JSON object')
    return body


def get_or_404(model, object_id, message: str):
    obj = db.session.get(model, object_id)
    if obj is None:
        raise NotFound(message)
    return obj


def page_args(default_limit: int, max_limit: int | None = None) -> tuple[int, int]:
    page = int_arg('page', default=1)
    limit = int_arg('limit', default=default_limit)
    if page < 1:
        raise ValidationError('page', 'page must be a positive integer')
    if limit < 1:
        raise ValidationError('limit', 'limit must be a positive integer')
    if max_limit is not None and limit > max_limit:
        raise ValidationError('limit', f'limit must be at most {max_limit}')
    return page, limit


def int_arg(name: str, default=None):
    raw = request.args.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(name, f'{name} must be an integer') from None


def bool_arg(name: str) -> bool | None:
    """``'true'``/``'false'`` query flags; anything else means unset."""
    raw = request.args.get(name)
    if raw == 'true':
        return True
    if raw == 'false':
        return False
    return None


def date_arg(name: str):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return parse_datetime(raw)
    except ValueError:
        raise ValidationError(name, f'Invalid {name} format') from None


def datetime_field(body: dict, key: str, required: bool = False):
    value = body.get(key)
    if value is None:
        if required:
            raise ValidationError(key, f'{key} is required')
        return None
    try:
        return parse_datetime(value)
    except ValueError:
        raise ValidationError(key, f'Invalid {key} format') from None


def string_field(
    body: dict,
    key: str,
    required: bool = False,
    min_length: int = 1,
    max_length: int | None = None,
):
    value = body.get(key)
    if value is None:
        if required:
            raise ValidationError(key, f'{key} is required')
        return None
    if not isinstance(value, str):
        raise ValidationError(key, f'{key} must be a string')
    value = value.strip()
    if len(value) < min_length:
        raise ValidationError(key, f'{key} must be at least {min_length} characters')
    if max_length is not None and len(value) > max_length:
        raise ValidationError(key, f'{key} must be at most {max_length} characters')
    return value


def id_field(body: dict, key: str, required: bool = False):
    value = body.get(key)
    if value is None:
        if required:
            raise ValidationError(key, f'{key} is required')
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(key, f'Invalid {key}')
    return value


def club_facts(club, actor: Actor | None, **extra) -> Facts:
    """Relational facts about ``actor`` and ``club`` for the policy evaluator."""
    return Facts(
        club_creator_id=club.creator_id,
        is_active_member=club.has_active_member(actor.user_id if actor else None),
        **extra,
    )

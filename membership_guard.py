"""Rules for adding, updating and removing club memberships."""

from errors import Conflict, NotFound, ValidationError
from models import MEMBERSHIP_STATUSES, parse_datetime

NEW_MEMBERSHIP_STATUSES = ('ACTIVE', 'PENDING')


def read_status(value, allowed=MEMBERSHIP_STATUSES) -> str:
    if value not in allowed:
        raise ValidationError('status', f"Status must be one of: {', '.join(allowed)}")
    return value


def read_expiry(value):
    if value is None:
        return None
    try:
        return parse_datetime(value)
    except ValueError:
        raise ValidationError('expiresAt', 'Invalid expiresAt format') from None


def check_add(user, existing_membership) -> None:
    """The target user must exist and hold no row for this club yet."""
    if user is None:
        raise NotFound('User not found')

    if existing_membership is not None:
        raise Conflict('User is already a member of this club')


def check_update(membership) -> None:
    # Any status may follow any other.
    if membership is None:
        raise NotFound('Membership not found')


def check_remove(membership, club) -> None:
    if membership is None:
        raise NotFound('Membership not found')

    if membership.user_id == club.creator_id:
        raise Conflict('Cannot remove the club creator from membership')

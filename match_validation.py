"""Validation for match create/update payloads and the relational checks around them.

Payload reading is pure and raises ``ValidationError``. The ``check_*``
helpers take rows the handler already loaded and raise ``NotFound``,
``Forbidden`` or ``Conflict``.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime

from errors import Conflict, Forbidden, NotFound, ValidationError
from models import MATCH_TYPES, parse_datetime

SCORE_PATTERN = re.compile(r'[0-9]{1,2}-[0-9]{1,2}(?:,[0-9]{1,2}-[0-9]{1,2}){0,4}')
MAX_PARTICIPANTS = {'SINGLES': 2, 'DOUBLES': 4}
TEAMS = (1, 2)


@dataclass(frozen=True)
class ParticipantInput:
    user_id: int
    team: int
    is_winner: bool = False


@dataclass
class MatchInput:
    """Fields supplied by the client, already converted to column values."""

    values: dict = field(default_factory=dict)
    participants: list[ParticipantInput] | None = None

    def __contains__(self, key):
        return key in self.values

    def get(self, key, default=None):
        return self.values.get(key, default)


def validate_match_type(match_type) -> str:
    if match_type not in MATCH_TYPES:
        raise ValidationError('matchType', 'Match type must be SINGLES or DOUBLES')
    return match_type


def validate_score(score) -> str | None:
    """``None`` clears the score; anything else must be 1-5 ``N-N`` sets."""
    if score is None:
        return None
    if not isinstance(score, str) or not SCORE_PATTERN.fullmatch(score):
        raise ValidationError(
            'score', "Invalid score format. Use: '21-19' or '21-19,19-21' (1-5 sets)"
        )
    return score


def validate_time_window(start: datetime | None, end: datetime | None) -> None:
    if end is None:
        return
    if start is None or end <= start:
        raise ValidationError('endTime', 'End time must be after start time')


def validate_participant_count(match_type: str, count: int, creating: bool = True) -> None:
    if creating and count < 1:
        raise ValidationError('participants', 'At least one participant is required')

    limit = MAX_PARTICIPANTS[match_type]
    if count > limit:
        raise ValidationError(
            'participants', f'{match_type} matches allow maximum {limit} participants'
        )


def read_participants(raw, require_winner: bool) -> list[ParticipantInput]:
    if not isinstance(raw, list):
        raise ValidationError('participants', 'Participants must be a list')

    participants = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise ValidationError('participants', 'Each participant must be an object')

        user_id = entry.get('userId')
        if isinstance(user_id, bool) or not isinstance(user_id, int):
            raise ValidationError('participants', 'Invalid user ID')

        team = entry.get('team')
        if isinstance(team, bool) or team not in TEAMS:
            raise ValidationError('participants', 'Team must be 1 or 2')

        if 'isWinner' not in entry and require_winner:
            raise ValidationError('participants', 'isWinner is required for each participant')
        is_winner = entry.get('isWinner', False)
        if not isinstance(is_winner, bool):
            raise ValidationError('participants', 'isWinner must be a boolean')

        participants.append(ParticipantInput(user_id, team, is_winner))

    ids = [p.user_id for p in participants]
    if len(set(ids)) != len(ids):
        raise ValidationError('participants', 'Duplicate participants are not allowed')

    return participants


def _read_time(body: dict, key: str) -> datetime | None:
    value = body.get(key)
    if value is None:
        return None
    try:
        return parse_datetime(value)
    except ValueError:
        raise ValidationError(key, f'Invalid {key} format') from None


def _read_id(body: dict, key: str, nullable: bool = False):
    value = body.get(key)
    if value is None:
        if nullable:
            return None
        raise ValidationError(key, f'Invalid {key}')
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(key, f'Invalid {key}')
    return value


def read_match_payload(body: dict, existing=None, club_match: bool = False) -> MatchInput:
    """Validate a match body.

    With ``existing`` set the body is a partial update: type, participant
    count and time window are checked against the merged result.
    """
    creating = existing is None
    data = MatchInput()

    if 'matchType' in body or creating:
        data.values['match_type'] = validate_match_type(body.get('matchType'))

    for key, column in (('startTime', 'start_at'), ('endTime', 'end_at')):
        if body.get(key) is not None:
            data.values[column] = _read_time(body, key)

    if 'score' in body:
        data.values['score'] = validate_score(body['score'])

    if 'completed' in body:
        if not isinstance(body['completed'], bool):
            raise ValidationError('completed', 'completed must be a boolean')
        data.values['completed'] = body['completed']

    if club_match and creating:
        data.values['court_id'] = _read_id(body, 'courtId')
    elif body.get('courtId') is not None:
        data.values['court_id'] = _read_id(body, 'courtId')

    if 'eventId' in body:
        if body['eventId'] is None and not creating:
            data.values['event_id'] = None
        elif body['eventId'] is not None:
            data.values['event_id'] = _read_id(body, 'eventId')

    if 'participants' in body or creating:
        data.participants = read_participants(body.get('participants'), require_winner=not creating)

    match_type = data.get('match_type', getattr(existing, 'match_type', None))
    if data.participants is not None:
        validate_participant_count(match_type, len(data.participants), creating)
    elif 'match_type' in data:
        stored = getattr(existing, 'participants', None) or []
        validate_participant_count(match_type, len(stored), creating=False)

    start = data.get('start_at', getattr(existing, 'start_at', None))
    end = data.get('end_at', getattr(existing, 'end_at', None))
    if 'start_at' in data or 'end_at' in data:
        validate_time_window(start, end)

    return data


def check_users_exist(participant_ids, found_ids) -> None:
    if set(participant_ids) - set(found_ids):
        raise NotFound('One or more participants not found')


def check_active_court(court) -> None:
    if court is None or not court.is_active:
        raise NotFound('Court not found or not active')


def check_club_court(court, club_id: int) -> None:
    if court is None or court.club_id != club_id or not court.is_active:
        raise NotFound("Court not found, inactive, or doesn't belong to this club")


def check_club_event(event, club_id: int) -> None:
    if event is None or event.club_id != club_id:
        raise NotFound("Event not found or doesn't belong to this club")


def check_participants_are_members(participant_ids, active_member_ids) -> None:
    non_members = [user_id for user_id in participant_ids if user_id not in active_member_ids]
    if non_members:
        raise Forbidden(
            'All participants must be active members of the club',
            details={'nonMemberIds': non_members},
        )


def check_court_has_no_open_matches(incomplete_matches: int) -> None:
    if incomplete_matches > 0:
        raise Conflict(
            'Cannot delete court with incomplete matches',
            details={
                'incompleteMatches': incomplete_matches,
                'suggestion': 'Please complete or delete matches before deleting the court',
            },
        )

from datetime import timedelta

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import IntegrityError

import event_lifecycle
import policy
from blueprints.auth import current_actor, login_required
from blueprints.common import (
    bool_arg,
    club_facts,
    date_arg,
    datetime_field,
    get_or_404,
    id_field,
    int_arg,
    json_body,
    page_args,
    string_field,
)
from errors import Conflict, NotFound, Unauthenticated, ValidationError
from models import (
    db,
    current_time,
    paginate,
    Club,
    Court,
    Event,
    EventParticipant,
    Match,
    EVENT_STATUSES,
    EVENT_TYPES,
    EVENT_VISIBILITIES,
    MATCH_TYPES,
)

events_bp = Blueprint('events', __name__, url_prefix='/api/events')

LISTED_VISIBILITIES = ('OPEN', 'MEMBERS_ONLY')


def _event_or_404(event_id: int) -> Event:
    return get_or_404(Event, event_id, 'Event not found')


def _choice(body: dict, key: str, choices, required: bool = False):
    value = body.get(key)
    if value is None:
        if required:
            raise ValidationError(key, f'{key} is required')
        return None
    if value not in choices:
        raise ValidationError(key, f"{key} must be one of: {', '.join(choices)}")
    return value


def _choice_arg(name: str, choices):
    value = request.args.get(name)
    if not value:
        return None
    if value not in choices:
        raise ValidationError(name, f"{name} must be one of: {', '.join(choices)}")
    return value


def _read_event_fields(body: dict, creating: bool) -> dict:
    values = {}

    title = string_field(body, 'title', required=creating, max_length=100)
    if title is not None:
        values['title'] = title
    if 'description' in body:
        values['description'] = string_field(body, 'description', min_length=0) or None

    event_type = _choice(body, 'type', EVENT_TYPES, required=creating)
    if event_type is not None:
        values['type'] = event_type
    visibility = _choice(body, 'visibility', EVENT_VISIBILITIES)
    if visibility is not None:
        values['visibility'] = visibility

    start = datetime_field(body, 'startDateTime', required=creating)
    if start is not None:
        values['start_at'] = start
    end = datetime_field(body, 'endDateTime', required=creating)
    if end is not None:
        values['end_at'] = end

    if body.get('maxParticipants') is not None:
        max_participants = body['maxParticipants']
        if isinstance(max_participants, bool) or not isinstance(max_participants, int) or max_participants < 1:
            raise ValidationError('maxParticipants', 'maxParticipants must be a positive integer')
        values['max_participants'] = max_participants

    if body.get('price') is not None:
        price = body['price']
        if isinstance(price, bool) or not isinstance(price, (int, float)) or price < 0:
            raise ValidationError('price', 'Price cannot be negative')
        values['price'] = float(price)

    return values


def _check_event_court(club: Club, court_id: int) -> Court:
    court = Court.query.filter_by(id=court_id, club_id=club.id, is_active=True).first()
    if court is None:
        raise NotFound('Court not found or not active in this club')
    return court


def _authorize_view(event: Event):
    """PRIVATE events need a credential and club standing; others are public."""
    actor = current_actor()
    if event.visibility == 'PRIVATE' and actor is None:
        raise Unauthenticated('Unauthorized - Private event')
    if actor is not None:
        policy.authorize(
            policy.VIEW_EVENT, actor, club_facts(event.club, actor, visibility=event.visibility)
        )


def _authorize_manage(event: Event):
    policy.authorize(
        policy.MANAGE_CLUB_EVENT, current_actor(), policy.Facts(club_creator_id=event.club.creator_id)
    )


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@events_bp.route('', methods=['POST'])
@login_required
def create_event():
    actor = current_actor()
    body = json_body()
    values = _read_event_fields(body, creating=True)
    club_id = id_field(body, 'clubId', required=True)
    court_id = id_field(body, 'courtId')

    event_lifecycle.validate_window(values['start_at'], values['end_at'], require_future=True)

    club = get_or_404(Club, club_id, 'Club not found')
    policy.authorize(policy.MANAGE_CLUB_EVENT, actor, policy.Facts(club_creator_id=club.creator_id))

    if court_id is not None:
        _check_event_court(club, court_id)

    event = Event(club_id=club.id, court_id=court_id, status='SCHEDULED', **values)
    db.session.add(event)
    db.session.commit()

    current_app.logger.info(f'Event {event.id} created in club {club.id} by user {actor.user_id}')
    return jsonify({'message': 'Event created successfully', 'event': event.to_dict()}), 201


@events_bp.route('', methods=['GET'])
def list_events():
    """Public listing; PRIVATE events are never included."""
    page, limit = page_args(default_limit=10)
    query = Event.query.filter(Event.visibility.in_(LISTED_VISIBILITIES))

    club_id = int_arg('clubId')
    if club_id is not None:
        query = query.filter(Event.club_id == club_id)

    event_type = _choice_arg('type', EVENT_TYPES)
    if event_type:
        query = query.filter(Event.type == event_type)

    status = _choice_arg('status', EVENT_STATUSES)
    if status:
        query = query.filter(Event.status == status)

    city = request.args.get('city')
    if city:
        query = query.join(Club, Event.club_id == Club.id).filter(Club.city.ilike(f'%{city}%'))

    if bool_arg('upcoming'):
        query = query.filter(Event.start_at >= current_time())

    start_date = date_arg('startDate')
    if start_date is not None:
        query = query.filter(Event.start_at >= start_date)

    end_date = date_arg('endDate')
    if end_date is not None:
        query = query.filter(Event.start_at <= end_date)

    events, pagination = paginate(
        query.order_by(Event.start_at.asc(), Event.created_at.desc()), page, limit
    )
    return jsonify({'events': [e.to_dict() for e in events], 'pagination': pagination})


@events_bp.route('/nearby', methods=['GET'])
def nearby_events():
    """Upcoming SCHEDULED events in clubs whose city matches ``city``."""
    city = (request.args.get('city') or '').strip()
    if not city:
        raise ValidationError('city', 'City is required')

    page, limit = page_args(default_limit=10, max_limit=50)

    days_ahead = int_arg('daysAhead', default=7)
    if not 1 <= days_ahead <= 30:
        raise ValidationError('daysAhead', 'Days ahead must be between 1 and 30')

    now = current_time()
    window_end = (now + timedelta(days=days_ahead)).replace(
        hour=23, minute=59, second=59, microsecond=999999
    )

    open_only = bool_arg('openOnly') is True
    visibilities = ('OPEN',) if open_only else LISTED_VISIBILITIES

    query = (
        Event.query.join(Club, Event.club_id == Club.id)
        .filter(
            Event.start_at >= now,
            Event.start_at <= window_end,
            Event.status == 'SCHEDULED',
            Event.visibility.in_(visibilities),
            Club.city.ilike(f'%{city}%'),
        )
    )

    event_type = _choice_arg('type', EVENT_TYPES)
    if event_type:
        query = query.filter(Event.type == event_type)

    events, pagination = paginate(
        query.order_by(Event.start_at.asc(), Event.created_at.desc()), page, limit
    )

    results = []
    for event in events:
        data = event.to_dict()
        data['distanceInfo'] = {
            'city': event.club.city,
            'isLocal': city.lower() in event.club.city.lower(),
        }
        results.append(data)

    return jsonify({
        'events': results,
        'searchParams': {
            'city': city,
            'daysAhead': days_ahead,
            'type': event_type,
            'openOnly': open_only,
        },
        'pagination': pagination,
    })


@events_bp.route('/<int:event_id>', methods=['GET'])
def get_event(event_id):
    event = _event_or_404(event_id)
    _authorize_view(event)
    return jsonify({'event': event.to_dict(with_participants=True)})


@events_bp.route('/<int:event_id>', methods=['PUT'])
@login_required
def update_event(event_id):
    actor = current_actor()
    event = _event_or_404(event_id)
    body = json_body()
    values = _read_event_fields(body, creating=False)
    status = _choice(body, 'status', EVENT_STATUSES)
    court_id = id_field(body, 'courtId')

    _authorize_manage(event)

    if court_id is not None:
        _check_event_court(event.club, court_id)
        values['court_id'] = court_id

    if 'start_at' in values:
        event_lifecycle.check_reschedule(event, values['start_at'])
    if 'start_at' in values or 'end_at' in values:
        event_lifecycle.validate_window(
            values.get('start_at', event.start_at), values.get('end_at', event.end_at)
        )

    if status is not None:
        event_lifecycle.transition(event, status)

    for key, value in values.items():
        setattr(event, key, value)
    db.session.commit()

    current_app.logger.info(f'Event {event.id} updated by user {actor.user_id}')
    return jsonify({'message': 'Event updated successfully', 'event': event.to_dict()})


@events_bp.route('/<int:event_id>', methods=['DELETE'])
@login_required
def delete_event(event_id):
    actor = current_actor()
    event = _event_or_404(event_id)
    _authorize_manage(event)
    event_lifecycle.check_delete(event)

    db.session.delete(event)
    db.session.commit()

    current_app.logger.info(f'Event {event_id} deleted by user {actor.user_id}')
    return jsonify({'message': 'Event deleted successfully'})


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@events_bp.route('/<int:event_id>/join', methods=['POST'])
@login_required
def join_event(event_id):
    """Register the current user.

    The event row is locked for the capacity check; a racing duplicate is
    caught by the unique (user, event) constraint.
    """
    actor = current_actor()
    event = db.session.execute(
        db.select(Event).filter_by(id=event_id).with_for_update()
    ).scalar_one_or_none()
    if event is None:
        raise NotFound('Event not found')

    already_registered = (
        EventParticipant.query.filter_by(event_id=event.id, user_id=actor.user_id).first()
        is not None
    )
    decision = policy.evaluate(
        policy.JOIN_EVENT, actor, club_facts(event.club, actor, visibility=event.visibility)
    )
    event_lifecycle.check_join(
        event,
        decision,
        participant_count=event.participant_count(),
        already_registered=already_registered,
    )

    participation = EventParticipant(event_id=event.id, user_id=actor.user_id)
    db.session.add(participation)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict('You are already registered for this event') from None

    current_app.logger.info(f'User {actor.user_id} joined event {event.id}')
    data = participation.to_dict()
    data['event'] = event.summary()
    return jsonify({'message': 'Successfully joined the event', 'participation': data}), 201


@events_bp.route('/<int:event_id>/join', methods=['DELETE'])
@login_required
def leave_event(event_id):
    actor = current_actor()
    participation = EventParticipant.query.filter_by(
        event_id=event_id, user_id=actor.user_id
    ).first()
    if participation is None:
        raise NotFound('You are not registered for this event')

    event_lifecycle.check_leave(participation.event)

    db.session.delete(participation)
    db.session.commit()

    current_app.logger.info(f'User {actor.user_id} left event {event_id}')
    return jsonify({'message': 'Successfully left the event'})


# ---------------------------------------------------------------------------
# Check-in
# ---------------------------------------------------------------------------


def _target_user_id(event: Event, requested_id, actor) -> int:
    """Checking in (or undoing) someone else needs club management rights."""
    if requested_id is None or requested_id == actor.user_id:
        return actor.user_id
    policy.authorize(
        policy.CHECK_IN_OTHER, actor, policy.Facts(club_creator_id=event.club.creator_id)
    )
    return requested_id


@events_bp.route('/<int:event_id>/checkin', methods=['POST'])
@login_required
def check_in(event_id):
    actor = current_actor()
    event = _event_or_404(event_id)
    target_id = _target_user_id(event, id_field(json_body(), 'userId'), actor)

    participation = EventParticipant.query.filter_by(event_id=event.id, user_id=target_id).first()
    event_lifecycle.check_check_in(event, participation)
    started = event_lifecycle.mark_checked_in(event, participation)
    db.session.commit()

    if started:
        current_app.logger.info(f'Event {event.id} is now ONGOING')
    current_app.logger.info(f'User {target_id} checked in to event {event.id}')

    if target_id == actor.user_id:
        message = 'Successfully checked in to the event'
    else:
        message = f'Successfully checked in {participation.user.name} to the event'
    return jsonify({'message': message, 'participation': participation.to_dict()})


@events_bp.route('/<int:event_id>/checkin', methods=['DELETE'])
@login_required
def undo_check_in(event_id):
    actor = current_actor()
    event = _event_or_404(event_id)
    target_id = _target_user_id(event, int_arg('userId'), actor)

    participation = EventParticipant.query.filter_by(event_id=event.id, user_id=target_id).first()
    event_lifecycle.check_undo_check_in(event, participation)
    event_lifecycle.undo_check_in(participation)
    db.session.commit()

    current_app.logger.info(f'Check-in of user {target_id} undone for event {event.id}')
    if target_id == actor.user_id:
        message = 'Successfully undid check-in'
    else:
        message = f'Successfully undid check-in for {participation.user.name}'
    return jsonify({'message': message})


# ---------------------------------------------------------------------------
# Participants and matches
# ---------------------------------------------------------------------------


@events_bp.route('/<int:event_id>/participants', methods=['GET'])
@login_required
def list_participants(event_id):
    actor = current_actor()
    event = _event_or_404(event_id)
    policy.authorize(policy.VIEW_EVENT_PARTICIPANTS, actor, club_facts(event.club, actor))
    page, limit = page_args(default_limit=20)

    query = EventParticipant.query.filter_by(event_id=event.id)
    checked_in = bool_arg('checkedIn')
    if checked_in is not None:
        query = query.filter(EventParticipant.checked_in.is_(checked_in))

    participants, pagination = paginate(
        query.order_by(EventParticipant.checked_in.desc(), EventParticipant.registered_at.asc()),
        page,
        limit,
    )

    total = event.participant_count()
    checked_in_count = event.checked_in_count()
    return jsonify({
        'event': event.summary(),
        'participants': [p.to_dict() for p in participants],
        'stats': {
            'total': total,
            'checkedIn': checked_in_count,
            'notCheckedIn': total - checked_in_count,
        },
        'pagination': pagination,
    })


@events_bp.route('/<int:event_id>/matches', methods=['GET'])
def list_event_matches(event_id):
    event = _event_or_404(event_id)
    _authorize_view(event)
    page, limit = page_args(default_limit=20)

    base = Match.query.filter_by(event_id=event.id)
    query = base
    match_type = _choice_arg('matchType', MATCH_TYPES)
    if match_type:
        query = query.filter(Match.match_type == match_type)
    completed = bool_arg('completed')
    if completed is not None:
        query = query.filter(Match.completed.is_(completed))

    matches, pagination = paginate(
        query.order_by(Match.start_at.desc(), Match.created_at.desc()), page, limit
    )

    stats = {
        'total': base.count(),
        'completed': base.filter(Match.completed.is_(True)).count(),
        'inProgress': base.filter(Match.completed.is_(False)).count(),
        'singles': base.filter(Match.match_type == 'SINGLES').count(),
        'doubles': base.filter(Match.match_type == 'DOUBLES').count(),
    }
    return jsonify({
        'event': event.summary(),
        'matches': [m.to_dict() for m in matches],
        'stats': stats,
        'pagination': pagination,
    })

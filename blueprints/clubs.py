from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import or_

import event_lifecycle
import match_validation
import membership_guard
import policy
from blueprints.auth import current_actor, login_required
from blueprints.common import (
    bool_arg,
    get_or_404,
    id_field,
    int_arg,
    json_body,
    page_args,
    string_field,
)
from errors import Conflict, NotFound, ValidationError
from models import db, paginate, Club, ClubMembership, Court, User

clubs_bp = Blueprint('clubs', __name__, url_prefix='/api/clubs')

CLUB_OPTIONAL_FIELDS = ('description', 'phone', 'email', 'website', 'logo')


def _club_or_404(club_id: int) -> Club:
    return get_or_404(Club, club_id, 'Club not found')


def _court_in_club_or_404(club: Club, court_id: int) -> Court:
    court = Court.query.filter_by(id=court_id, club_id=club.id).first()
    if court is None:
        raise NotFound('Court not found in this club')
    return court


def _read_club_fields(body: dict, creating: bool) -> dict:
    values = {}
    name = string_field(body, 'name', required=creating, max_length=100)
    if name is not None:
        values['name'] = name
    for key in ('address', 'city'):
        value = string_field(body, key, required=creating)
        if value is not None:
            values[key] = value
    for key in CLUB_OPTIONAL_FIELDS:
        if key in body:
            # Empty strings clear the field
            values[key] = string_field(body, key, min_length=0) or None
    return values


# ---------------------------------------------------------------------------
# Clubs
# ---------------------------------------------------------------------------


@clubs_bp.route('', methods=['POST'])
@login_required
def create_club():
    """Create a club; the creator is enrolled as an ACTIVE member."""
    actor = current_actor()
    policy.authorize(policy.CREATE_CLUB, actor)

    values = _read_club_fields(json_body(), creating=True)
    if Club.query.filter_by(name=values['name'], city=values['city']).first():
        raise Conflict('A club with this name already exists in this city')

    club = Club(creator_id=actor.user_id, **values)
    db.session.add(club)
    db.session.flush()
    db.session.add(ClubMembership(user_id=actor.user_id, club_id=club.id, status='ACTIVE'))
    db.session.commit()

    current_app.logger.info(f'Club {club.id} created by user {actor.user_id}')
    return jsonify({'message': 'Club created successfully', 'club': club.to_dict()}), 201


@clubs_bp.route('', methods=['GET'])
def list_clubs():
    page, limit = page_args(default_limit=10)
    query = Club.query

    city = request.args.get('city')
    if city:
        query = query.filter(Club.city.ilike(f'%{city}%'))

    search = request.args.get('search')
    if search:
        query = query.filter(
            or_(Club.name.ilike(f'%{search}%'), Club.description.ilike(f'%{search}%'))
        )

    clubs, pagination = paginate(query.order_by(Club.created_at.desc(), Club.id.desc()), page, limit)
    return jsonify({'clubs': [c.to_dict() for c in clubs], 'pagination': pagination})


@clubs_bp.route('/<int:club_id>', methods=['GET'])
def get_club(club_id):
    club = _club_or_404(club_id)
    data = club.to_dict()
    data['courts'] = [
        {'id': court.id, 'name': court.name, 'description': court.description}
        for court in club.courts
        if court.is_active
    ]
    return jsonify({'club': data})


@clubs_bp.route('/<int:club_id>', methods=['PUT'])
@login_required
def update_club(club_id):
    actor = current_actor()
    club = _club_or_404(club_id)
    policy.authorize(policy.MANAGE_CLUB, actor, policy.Facts(club_creator_id=club.creator_id))

    values = _read_club_fields(json_body(), creating=False)
    if 'name' in values or 'city' in values:
        name = values.get('name', club.name)
        city = values.get('city', club.city)
        clash = Club.query.filter(Club.name == name, Club.city == city, Club.id != club.id).first()
        if clash:
            raise Conflict('A club with this name already exists in this city')

    for key, value in values.items():
        setattr(club, key, value)
    db.session.commit()

    current_app.logger.info(f'Club {club.id} updated by user {actor.user_id}')
    return jsonify({'message': 'Club updated successfully', 'club': club.to_dict()})


@clubs_bp.route('/<int:club_id>', methods=['DELETE'])
@login_required
def delete_club(club_id):
    """Delete a club with its courts, memberships and events."""
    actor = current_actor()
    club = _club_or_404(club_id)
    policy.authorize(policy.MANAGE_CLUB, actor, policy.Facts(club_creator_id=club.creator_id))

    db.session.delete(club)
    db.session.commit()

    current_app.logger.info(f'Club {club_id} deleted by user {actor.user_id}')
    return jsonify({'message': 'Club deleted successfully'})


# ---------------------------------------------------------------------------
# Courts
# ---------------------------------------------------------------------------


@clubs_bp.route('/<int:club_id>/courts', methods=['POST'])
@login_required
def create_court(club_id):
    actor = current_actor()
    club = _club_or_404(club_id)
    policy.authorize(policy.MANAGE_COURT, actor, policy.Facts(club_creator_id=club.creator_id))

    body = json_body()
    name = string_field(body, 'name', required=True, max_length=100)
    description = string_field(body, 'description', min_length=0)

    if Court.query.filter_by(club_id=club.id, name=name).first():
        raise Conflict('A court with this name already exists in this club')

    court = Court(club_id=club.id, name=name, description=description or None)
    db.session.add(court)
    db.session.commit()

    current_app.logger.info(f'Court {court.id} created in club {club.id}')
    return jsonify({'message': 'Court created successfully', 'court': court.to_dict()}), 201


@clubs_bp.route('/<int:club_id>/courts', methods=['GET'])
def list_courts(club_id):
    club = _club_or_404(club_id)
    page, limit = page_args(default_limit=20)

    query = Court.query.filter_by(club_id=club.id)
    is_active = bool_arg('isActive')
    if is_active is not None:
        query = query.filter(Court.is_active.is_(is_active))

    courts, pagination = paginate(
        query.order_by(Court.is_active.desc(), Court.name.asc()), page, limit
    )
    return jsonify({
        'club': club.summary(),
        'courts': [c.to_dict() for c in courts],
        'pagination': pagination,
    })


@clubs_bp.route('/<int:club_id>/courts/<int:court_id>', methods=['GET'])
def get_court(club_id, court_id):
    club = _club_or_404(club_id)
    court = _court_in_club_or_404(club, court_id)
    data = court.to_dict()
    data['club'] = club.summary()
    return jsonify({'court': data})


@clubs_bp.route('/<int:club_id>/courts/<int:court_id>', methods=['PUT'])
@login_required
def update_court(club_id, court_id):
    actor = current_actor()
    club = _club_or_404(club_id)
    policy.authorize(policy.MANAGE_COURT, actor, policy.Facts(club_creator_id=club.creator_id))
    court = _court_in_club_or_404(club, court_id)

    body = json_body()
    name = string_field(body, 'name', max_length=100)
    if name is not None and name != court.name:
        if Court.query.filter(Court.club_id == club.id, Court.name == name, Court.id != court.id).first():
            raise Conflict('A court with this name already exists in this club')
        court.name = name

    if 'description' in body:
        court.description = string_field(body, 'description', min_length=0) or None

    if 'isActive' in body:
        is_active = body['isActive']
        if not isinstance(is_active, bool):
            raise ValidationError('isActive', 'isActive must be a boolean')
        if court.is_active and not is_active:
            event_lifecycle.check_court_deactivation(court.future_event_count())
        court.is_active = is_active

    db.session.commit()

    current_app.logger.info(f'Court {court.id} updated in club {club.id}')
    return jsonify({'message': 'Court updated successfully', 'court': court.to_dict()})


@clubs_bp.route('/<int:club_id>/courts/<int:court_id>', methods=['DELETE'])
@login_required
def delete_court(club_id, court_id):
    actor = current_actor()
    club = _club_or_404(club_id)
    policy.authorize(policy.MANAGE_COURT, actor, policy.Facts(club_creator_id=club.creator_id))
    court = _court_in_club_or_404(club, court_id)

    event_lifecycle.check_court_deletion(court.future_event_count())
    match_validation.check_court_has_no_open_matches(court.incomplete_match_count())

    stats = {'eventsDeleted': len(court.events), 'matchesDeleted': len(court.matches)}
    deleted = {'id': court.id, 'name': court.name, 'club': {'id': club.id, 'name': club.name}}
    db.session.delete(court)
    db.session.commit()

    current_app.logger.info(f'Court {court_id} deleted from club {club.id}')
    return jsonify({'message': 'Court deleted successfully', 'deletedCourt': deleted, 'stats': stats})


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


@clubs_bp.route('/<int:club_id>/members', methods=['GET'])
@login_required
def list_members(club_id):
    actor = current_actor()
    club = _club_or_404(club_id)
    policy.authorize(
        policy.VIEW_CLUB_MEMBERS, actor, policy.Facts(club_creator_id=club.creator_id)
    )
    page, limit = page_args(default_limit=20)

    query = ClubMembership.query.filter_by(club_id=club.id)
    status = request.args.get('status')
    if status:
        query = query.filter_by(status=membership_guard.read_status(status))

    memberships, pagination = paginate(
        query.order_by(ClubMembership.joined_at.desc(), ClubMembership.id.desc()), page, limit
    )
    return jsonify({
        'club': club.summary(),
        'members': [m.to_dict() for m in memberships],
        'pagination': pagination,
    })


@clubs_bp.route('/<int:club_id>/members', methods=['POST'])
@login_required
def add_member(club_id):
    actor = current_actor()
    club = _club_or_404(club_id)
    policy.authorize(
        policy.MANAGE_CLUB_MEMBERS, actor, policy.Facts(club_creator_id=club.creator_id)
    )

    body = json_body()
    user_id = id_field(body, 'userId', required=True)
    status = membership_guard.read_status(
        body.get('status', 'PENDING'), allowed=membership_guard.NEW_MEMBERSHIP_STATUSES
    )
    expires_at = membership_guard.read_expiry(body.get('expiresAt'))

    membership_guard.check_add(db.session.get(User, user_id), club.membership_for(user_id))

    membership = ClubMembership(
        user_id=user_id, club_id=club.id, status=status, expires_at=expires_at
    )
    db.session.add(membership)
    db.session.commit()

    current_app.logger.info(f'User {user_id} added to club {club.id} as {status}')
    return jsonify({'message': 'Member added successfully', 'membership': membership.to_dict()}), 201


@clubs_bp.route('/<int:club_id>/members', methods=['PUT'])
@login_required
def update_member(club_id):
    actor = current_actor()
    club = _club_or_404(club_id)
    policy.authorize(
        policy.MANAGE_CLUB_MEMBERS, actor, policy.Facts(club_creator_id=club.creator_id)
    )

    user_id = int_arg('userId')
    if user_id is None:
        raise ValidationError('userId', 'User ID is required')

    body = json_body()
    status = membership_guard.read_status(body.get('status'))
    membership = club.membership_for(user_id)
    membership_guard.check_update(membership)

    membership.status = status
    if 'expiresAt' in body:
        membership.expires_at = membership_guard.read_expiry(body['expiresAt'])
    db.session.commit()

    current_app.logger.info(f'Membership of user {user_id} in club {club.id} set to {status}')
    return jsonify({'message': 'Membership updated successfully', 'membership': membership.to_dict()})


@clubs_bp.route('/<int:club_id>/members', methods=['DELETE'])
@login_required
def remove_member(club_id):
    actor = current_actor()
    club = _club_or_404(club_id)
    policy.authorize(
        policy.MANAGE_CLUB_MEMBERS, actor, policy.Facts(club_creator_id=club.creator_id)
    )

    user_id = int_arg('userId')
    if user_id is None:
        raise ValidationError('userId', 'User ID is required')

    membership = club.membership_for(user_id)
    membership_guard.check_remove(membership, club)

    db.session.delete(membership)
    db.session.commit()

    current_app.logger.info(f'User {user_id} removed from club {club.id}')
    return jsonify({'message': 'Member removed successfully'})

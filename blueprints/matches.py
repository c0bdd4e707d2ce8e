from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import or_

import match_validation
import policy
from blueprints.auth import current_actor, login_required
from blueprints.common import bool_arg, club_facts, get_or_404, int_arg, json_body, page_args
from errors import NotFound
from models import db, paginate, Club, Court, Event, Match, MatchParticipant, User

matches_bp = Blueprint('matches', __name__, url_prefix='/api')


def _match_type_arg():
    value = request.args.get('matchType')
    if not value:
        return None
    return match_validation.validate_match_type(value)


def _existing_user_ids(user_ids) -> set[int]:
    rows = db.session.query(User.id).filter(User.id.in_(list(user_ids))).all()
    return {user_id for (user_id,) in rows}


def _set_participants(match: Match, participants) -> None:
    # Old rows go first so the (match, user) constraint holds.
    if match.participants:
        match.participants.clear()
        db.session.flush()
    match.participants.extend(
        MatchParticipant(user_id=p.user_id, team=p.team, is_winner=p.is_winner)
        for p in participants
    )


def _apply(match: Match, data: match_validation.MatchInput) -> None:
    for key, value in data.values.items():
        setattr(match, key, value)
    if data.participants is not None:
        _set_participants(match, data.participants)


def _filtered(query):
    match_type = _match_type_arg()
    if match_type:
        query = query.filter(Match.match_type == match_type)
    completed = bool_arg('completed')
    if completed is not None:
        query = query.filter(Match.completed.is_(completed))
    return query


# ---------------------------------------------------------------------------
# Informal matches
# ---------------------------------------------------------------------------


def _informal_facts(match: Match, actor) -> policy.Facts:
    return policy.Facts(
        match_creator_id=match.creator_id,
        is_participant=match.has_participant(actor.user_id),
    )


def _authorize_match(action: str, match: Match, actor) -> None:
    """Informal rules; a court-bound match also admits the club's managers."""
    decision = policy.evaluate(action, actor, _informal_facts(match, actor))
    if not decision and match.is_club_match:
        club_action = (
            policy.VIEW_CLUB_MATCH
            if action == policy.VIEW_INFORMAL_MATCH
            else policy.MANAGE_CLUB_MATCH
        )
        decision = policy.evaluate(
            club_action,
            actor,
            club_facts(match.club, actor, is_participant=match.has_participant(actor.user_id)),
        )
    policy.enforce(decision)


@matches_bp.route('/matches', methods=['POST'])
@login_required
def create_match():
    """Record an informal match; the caller becomes its creator."""
    actor = current_actor()
    policy.authorize(policy.CREATE_INFORMAL_MATCH, actor)
    data = match_validation.read_match_payload(json_body())

    ids = [p.user_id for p in data.participants]
    match_validation.check_users_exist(ids, _existing_user_ids(ids))

    if 'court_id' in data:
        match_validation.check_active_court(db.session.get(Court, data.get('court_id')))
    if data.get('event_id') is not None:
        if db.session.get(Event, data.get('event_id')) is None:
            raise NotFound('Event not found')

    match = Match(creator_id=actor.user_id)
    _apply(match, data)
    db.session.add(match)
    db.session.commit()

    current_app.logger.info(f'Match {match.id} created by user {actor.user_id}')
    return jsonify({'message': 'Match created successfully', 'match': match.to_dict()}), 201


@matches_bp.route('/matches', methods=['GET'])
@login_required
def list_matches():
    """Informal matches the user created or played in."""
    actor = current_actor()
    page, limit = page_args(default_limit=20)
    user_id = int_arg('userId', default=actor.user_id)

    query = Match.query.filter(
        Match.court_id.is_(None),
        or_(
            Match.creator_id == user_id,
            Match.participants.any(MatchParticipant.user_id == user_id),
        ),
    )
    query = _filtered(query)

    matches, pagination = paginate(
        query.order_by(Match.start_at.desc(), Match.created_at.desc()), page, limit
    )
    return jsonify({'matches': [m.to_dict() for m in matches], 'pagination': pagination})


@matches_bp.route('/matches/<int:match_id>', methods=['GET'])
@login_required
def get_match(match_id):
    match = get_or_404(Match, match_id, 'Match not found')
    _authorize_match(policy.VIEW_INFORMAL_MATCH, match, current_actor())
    return jsonify({'match': match.to_dict()})


@matches_bp.route('/matches/<int:match_id>', methods=['PUT'])
@login_required
def update_match(match_id):
    actor = current_actor()
    match = get_or_404(Match, match_id, 'Match not found')
    _authorize_match(policy.MANAGE_INFORMAL_MATCH, match, actor)

    data = match_validation.read_match_payload(json_body(), existing=match)
    if match.is_club_match:
        _check_club_match_update(match.club, match, data)
    else:
        if data.participants is not None:
            ids = [p.user_id for p in data.participants]
            match_validation.check_users_exist(ids, _existing_user_ids(ids))
        if 'court_id' in data and data.get('court_id') != match.court_id:
            match_validation.check_active_court(db.session.get(Court, data.get('court_id')))
        if data.get('event_id') is not None and db.session.get(Event, data.get('event_id')) is None:
            raise NotFound('Event not found')

    _apply(match, data)
    db.session.commit()

    current_app.logger.info(f'Match {match.id} updated by user {actor.user_id}')
    return jsonify({'message': 'Match updated successfully', 'match': match.to_dict()})


@matches_bp.route('/matches/<int:match_id>', methods=['DELETE'])
@login_required
def delete_match(match_id):
    actor = current_actor()
    match = get_or_404(Match, match_id, 'Match not found')
    _authorize_match(policy.MANAGE_INFORMAL_MATCH, match, actor)

    db.session.delete(match)
    db.session.commit()

    current_app.logger.info(f'Match {match_id} deleted by user {actor.user_id}')
    return jsonify({'message': 'Match deleted successfully'})


# ---------------------------------------------------------------------------
# Club matches
# ---------------------------------------------------------------------------


def _club_match_or_404(club: Club, match_id: int) -> Match:
    match = (
        Match.query.join(Court, Match.court_id == Court.id)
        .filter(Match.id == match_id, Court.club_id == club.id)
        .first()
    )
    if match is None:
        raise NotFound('Match not found in this club')
    return match


def _check_club_participants(club: Club, participants) -> None:
    ids = [p.user_id for p in participants]
    match_validation.check_users_exist(ids, _existing_user_ids(ids))
    match_validation.check_participants_are_members(ids, club.active_member_ids(ids))


def _check_club_match_update(club: Club, match: Match, data: match_validation.MatchInput) -> None:
    """Court, event and participants of a club match stay within ``club``."""
    if 'court_id' in data and data.get('court_id') != match.court_id:
        match_validation.check_club_court(db.session.get(Court, data.get('court_id')), club.id)
    if data.get('event_id') is not None:
        match_validation.check_club_event(db.session.get(Event, data.get('event_id')), club.id)
    if data.participants is not None:
        _check_club_participants(club, data.participants)


@matches_bp.route('/clubs/<int:club_id>/matches', methods=['POST'])
@login_required
def create_club_match(club_id):
    actor = current_actor()
    club = get_or_404(Club, club_id, 'Club not found')
    policy.authorize(policy.MANAGE_CLUB_MATCH, actor, policy.Facts(club_creator_id=club.creator_id))

    data = match_validation.read_match_payload(json_body(), club_match=True)
    match_validation.check_club_court(db.session.get(Court, data.get('court_id')), club.id)
    if data.get('event_id') is not None:
        match_validation.check_club_event(db.session.get(Event, data.get('event_id')), club.id)
    _check_club_participants(club, data.participants)

    match = Match(creator_id=actor.user_id)
    _apply(match, data)
    db.session.add(match)
    db.session.commit()

    current_app.logger.info(f'Club match {match.id} created in club {club.id}')
    return jsonify({'message': 'Club match created successfully', 'match': match.to_dict()}), 201


@matches_bp.route('/clubs/<int:club_id>/matches', methods=['GET'])
@login_required
def list_club_matches(club_id):
    actor = current_actor()
    club = get_or_404(Club, club_id, 'Club not found')
    policy.authorize(policy.LIST_CLUB_MATCHES, actor, club_facts(club, actor))
    page, limit = page_args(default_limit=20)

    query = Match.query.join(Court, Match.court_id == Court.id).filter(Court.club_id == club.id)
    query = _filtered(query)
    court_id = int_arg('courtId')
    if court_id is not None:
        query = query.filter(Match.court_id == court_id)
    event_id = int_arg('eventId')
    if event_id is not None:
        query = query.filter(Match.event_id == event_id)

    matches, pagination = paginate(
        query.order_by(Match.start_at.desc(), Match.created_at.desc()), page, limit
    )
    return jsonify({
        'club': club.summary(),
        'matches': [m.to_dict() for m in matches],
        'pagination': pagination,
    })


@matches_bp.route('/clubs/<int:club_id>/matches/<int:match_id>', methods=['GET'])
@login_required
def get_club_match(club_id, match_id):
    actor = current_actor()
    club = get_or_404(Club, club_id, 'Club not found')
    match = _club_match_or_404(club, match_id)
    policy.authorize(
        policy.VIEW_CLUB_MATCH,
        actor,
        club_facts(club, actor, is_participant=match.has_participant(actor.user_id)),
    )
    return jsonify({'match': match.to_dict()})


@matches_bp.route('/clubs/<int:club_id>/matches/<int:match_id>', methods=['PUT'])
@login_required
def update_club_match(club_id, match_id):
    actor = current_actor()
    club = get_or_404(Club, club_id, 'Club not found')
    policy.authorize(policy.MANAGE_CLUB_MATCH, actor, policy.Facts(club_creator_id=club.creator_id))
    match = _club_match_or_404(club, match_id)

    data = match_validation.read_match_payload(json_body(), existing=match)
    _check_club_match_update(club, match, data)

    _apply(match, data)
    db.session.commit()

    current_app.logger.info(f'Club match {match.id} updated in club {club.id}')
    return jsonify({'message': 'Club match updated successfully', 'match': match.to_dict()})


@matches_bp.route('/clubs/<int:club_id>/matches/<int:match_id>', methods=['DELETE'])
@login_required
def delete_club_match(club_id, match_id):
    actor = current_actor()
    club = get_or_404(Club, club_id, 'Club not found')
    policy.authorize(policy.MANAGE_CLUB_MATCH, actor, policy.Facts(club_creator_id=club.creator_id))
    match = _club_match_or_404(club, match_id)

    deleted = {
        'id': match.id,
        'matchType': match.match_type,
        'completed': match.completed,
        'court': match.court.name if match.court else None,
    }
    db.session.delete(match)
    db.session.commit()

    current_app.logger.info(f'Club match {match_id} deleted from club {club.id}')
    return jsonify({'message': 'Club match deleted successfully', 'deletedMatch': deleted})

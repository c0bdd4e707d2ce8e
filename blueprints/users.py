from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import or_

import match_validation
import policy
from blueprints.auth import current_actor, login_required, require_role
from blueprints.common import bool_arg, get_or_404, json_body, page_args, string_field
from errors import Conflict, Unauthenticated, ValidationError
from models import db, paginate, Match, MatchParticipant, User, USER_ROLES

users_bp = Blueprint('users', __name__, url_prefix='/api/users')

MAX_USERS_PAGE = 100


@users_bp.route('', methods=['GET'])
@require_role('SUPER_ADMIN')
def list_users():
    page, limit = page_args(default_limit=20)
    limit = min(limit, MAX_USERS_PAGE)
    query = User.query

    search = request.args.get('search')
    if search:
        query = query.filter(or_(User.name.ilike(f'%{search}%'), User.email.ilike(f'%{search}%')))

    city = request.args.get('city')
    if city:
        query = query.filter(User.city.ilike(f'%{city}%'))

    role = request.args.get('role')
    if role:
        if role not in USER_ROLES:
            raise ValidationError('role', f"role must be one of: {', '.join(USER_ROLES)}")
        query = query.filter(User.role == role)

    users, pagination = paginate(query.order_by(User.created_at.desc(), User.id.desc()), page, limit)
    return jsonify({'users': [u.to_dict(with_counts=True) for u in users], 'pagination': pagination})


@users_bp.route('/<int:user_id>', methods=['GET'])
@require_role('SUPER_ADMIN')
def get_user(user_id):
    user = get_or_404(User, user_id, 'User not found')
    return jsonify({'user': user.to_dict(with_counts=True)})


@users_bp.route('/<int:user_id>', methods=['DELETE'])
@login_required
def delete_user(user_id):
    actor = current_actor()
    policy.authorize(policy.ADMINISTER_USERS, actor)
    user = get_or_404(User, user_id, 'User not found')
    policy.check_user_deletion(actor, user.id, len(user.created_clubs))

    deleted = {'id': user.id, 'email': user.email, 'name': user.name}
    db.session.delete(user)
    db.session.commit()

    current_app.logger.info(f'User {user_id} deleted by admin {actor.user_id}')
    return jsonify({'message': 'User deleted successfully', 'deletedUser': deleted})


@users_bp.route('/profile', methods=['PUT'])
@login_required
def update_profile():
    """Update the caller's own profile, optionally changing the password."""
    actor = current_actor()
    user = db.session.get(User, actor.user_id)
    body = json_body()

    name = string_field(body, 'name', min_length=2)
    if name is not None:
        user.name = name
    for key in ('phone', 'city', 'avatar'):
        if key in body:
            setattr(user, key, string_field(body, key, min_length=0) or None)

    if 'duprId' in body:
        dupr_id = string_field(body, 'duprId', min_length=0) or None
        if dupr_id is not None:
            clash = User.query.filter(User.dupr_id == dupr_id, User.id != user.id).first()
            if clash:
                raise Conflict('This DUPR ID is already in use by another user')
        user.dupr_id = dupr_id

    new_password = body.get('newPassword')
    if new_password is not None:
        current_password = body.get('currentPassword')
        if not current_password:
            raise ValidationError(
                'currentPassword', 'Current password is required to set a new password'
            )
        if not isinstance(new_password, str) or len(new_password) < 6:
            raise ValidationError('newPassword', 'Password must be at least 6 characters')
        if not user.check_password(current_password):
            raise Unauthenticated('Current password is incorrect')
        user.set_password(new_password)

    db.session.commit()

    current_app.logger.info(f'User {user.id} updated their profile')
    return jsonify({'message': 'Profile updated successfully', 'user': user.to_dict()})


@users_bp.route('/<int:user_id>/matches', methods=['GET'])
@login_required
def match_history(user_id):
    actor = current_actor()
    user = get_or_404(User, user_id, 'User not found')
    policy.authorize(policy.VIEW_MATCH_HISTORY, actor, policy.Facts(target_user_id=user.id))
    page, limit = page_args(default_limit=20)

    query = Match.query.filter(Match.participants.any(MatchParticipant.user_id == user.id))
    match_type = request.args.get('matchType')
    if match_type:
        match_validation.validate_match_type(match_type)
        query = query.filter(Match.match_type == match_type)
    completed = bool_arg('completed')
    if completed is not None:
        query = query.filter(Match.completed.is_(completed))
    if bool_arg('clubMatches'):
        query = query.filter(Match.court_id.isnot(None))
    elif bool_arg('informalMatches'):
        query = query.filter(Match.court_id.is_(None))

    matches, pagination = paginate(
        query.order_by(Match.start_at.desc(), Match.created_at.desc()), page, limit
    )

    participations = user.match_participations
    completed_rows = [p for p in participations if p.match.completed]
    wins = sum(1 for p in completed_rows if p.is_winner)
    stats = {
        'totalMatches': len(participations),
        'completedMatches': len(completed_rows),
        'wins': wins,
        'losses': len(completed_rows) - wins,
        'singlesMatches': sum(1 for p in participations if p.match.match_type == 'SINGLES'),
        'doublesMatches': sum(1 for p in participations if p.match.match_type == 'DOUBLES'),
        'clubMatches': sum(1 for p in participations if p.match.court_id is not None),
        'informalMatches': sum(1 for p in participations if p.match.court_id is None),
    }
    win_rate = (wins / len(completed_rows) * 100) if completed_rows else 0.0
    stats['winRate'] = f'{win_rate:.1f}%'

    return jsonify({
        'user': user.summary(),
        'matches': [m.to_dict() for m in matches],
        'stats': stats,
        'pagination': pagination,
    })

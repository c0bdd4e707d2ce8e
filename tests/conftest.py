from datetime import timedelta

import pytest

from app import create_app
from blueprints.auth import issue_token
from models import (
    db,
    current_time,
    Club,
    ClubMembership,
    Court,
    Event,
    EventParticipant,
    User,
)


@pytest.fixture
def flask_app():
    """Create test application with in-memory SQLite database"""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SECRET_KEY': 'test-secret-key-0123456789abcdef0123456789',
        'LOG_LEVEL': 'WARNING',
    })

    # Requests issued by the test client reuse this context and its session.
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(flask_app):
    """Test client"""
    return flask_app.test_client()


def _make_user(email, name, role='USER', password='Secret123', **fields):
    user = User(email=email, name=name, role=role, **fields)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def admin_user(flask_app):
    """The super admin seeded by create_app"""
    return User.query.filter_by(role='SUPER_ADMIN').first()


@pytest.fixture
def owner_user(flask_app):
    """Creates clubs in these tests"""
    return _make_user('owner@test.com', 'Club Owner', city='Valencia')


@pytest.fixture
def member_user(flask_app):
    return _make_user('member@test.com', 'Active Member', city='Valencia')


@pytest.fixture
def other_user(flask_app):
    """Authenticated, but no standing in any club"""
    return _make_user('other@test.com', 'Outsider', city='Madrid')


@pytest.fixture
def make_user(flask_app):
    counter = {'n': 0}

    def _factory(**fields):
        counter['n'] += 1
        n = counter['n']
        return _make_user(
            fields.pop('email', f'player{n}@test.com'),
            fields.pop('name', f'Player {n}'),
            **fields,
        )

    return _factory


@pytest.fixture
def club(flask_app, owner_user):
    """A club with its creator enrolled as ACTIVE member"""
    club = Club(
        name='Smash Club',
        address='Calle Mayor 1',
        city='Valencia',
        description='Padel and pickleball',
        creator_id=owner_user.id,
    )
    db.session.add(club)
    db.session.flush()
    db.session.add(ClubMembership(user_id=owner_user.id, club_id=club.id, status='ACTIVE'))
    db.session.commit()
    return club


@pytest.fixture
def membership(flask_app, club, member_user):
    membership = ClubMembership(user_id=member_user.id, club_id=club.id, status='ACTIVE')
    db.session.add(membership)
    db.session.commit()
    return membership


@pytest.fixture
def court(flask_app, club):
    court = Court(club_id=club.id, name='Court 1', description='Indoor')
    db.session.add(court)
    db.session.commit()
    return court


@pytest.fixture
def make_event(flask_app, club):
    """Create events directly, bypassing the future-start rule of the API"""

    def _factory(**fields):
        start = fields.pop('start_at', current_time() + timedelta(days=1))
        event = Event(
            club_id=fields.pop('club_id', club.id),
            title=fields.pop('title', 'Friday Open Play'),
            type=fields.pop('type', 'OPEN_PLAY'),
            visibility=fields.pop('visibility', 'OPEN'),
            status=fields.pop('status', 'SCHEDULED'),
            start_at=start,
            end_at=fields.pop('end_at', start + timedelta(hours=2)),
            **fields,
        )
        db.session.add(event)
        db.session.commit()
        return event

    return _factory


@pytest.fixture
def event(make_event):
    return make_event()


@pytest.fixture
def register(flask_app):
    def _register(event, user, checked_in=False):
        participation = EventParticipant(
            event_id=event.id,
            user_id=user.id,
            checked_in=checked_in,
            checked_in_at=current_time() if checked_in else None,
        )
        db.session.add(participation)
        db.session.commit()
        return participation

    return _register


@pytest.fixture
def auth_headers(flask_app):
    """Bearer headers for a user"""

    def _headers(user):
        return {'Authorization': f'Bearer {issue_token(user)}'}

    return _headers

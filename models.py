from datetime import datetime
import os
import re

import pytz
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import and_, or_
from werkzeug.security import generate_password_hash, check_password_hash

db = SQLAlchemy()

UTC = pytz.utc

USER_ROLES = ('USER', 'SUPER_ADMIN')
MEMBERSHIP_STATUSES = ('ACTIVE', 'INACTIVE', 'PENDING', 'CANCELLED')
EVENT_TYPES = ('OPEN_PLAY', 'TOURNAMENT', 'LEAGUE', 'CLINIC', 'SOCIAL')
EVENT_VISIBILITIES = ('OPEN', 'MEMBERS_ONLY', 'PRIVATE')
EVENT_STATUSES = ('SCHEDULED', 'ONGOING', 'COMPLETED', 'CANCELLED')
MATCH_TYPES = ('SINGLES', 'DOUBLES')

DEFAULT_ADMIN_EMAIL = 'admin@courtclub.local'


def current_time() -> datetime:
    """Naive UTC instant; every persisted timestamp uses this convention."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat() + 'Z'


class User(db.Model):
    """Accounts that can authenticate - regular players and platform admins."""

    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    name = db.Column(db.String(100), nullable=False)
    password_hash = db.Column(db.String(255))
    role = db.Column(db.String(20), nullable=False, default='USER')  # USER or SUPER_ADMIN
    phone = db.Column(db.String(20))
    city = db.Column(db.String(100))
    avatar = db.Column(db.String(255))
    dupr_id = db.Column(db.String(40), unique=True)
    dupr_rating = db.Column(db.Float)
    created_at = db.Column(db.DateTime, default=current_time)
    updated_at = db.Column(db.DateTime, default=current_time, onupdate=current_time)

    created_clubs = db.relationship('Club', back_populates='creator', lazy=True)
    memberships = db.relationship(
        'ClubMembership', back_populates='user', lazy=True, cascade='all, delete-orphan'
    )
    event_participations = db.relationship(
        'EventParticipant', back_populates='user', lazy=True, cascade='all, delete-orphan'
    )
    match_participations = db.relationship(
        'MatchParticipant', back_populates='user', lazy=True, cascade='all, delete-orphan'
    )
    created_matches = db.relationship('Match', back_populates='creator', lazy=True)

    def __repr__(self):  # pragma: no cover - debug helper
        return f"<User {self.id} {self.email} role={self.role}>"

    @property
    def is_super_admin(self) -> bool:
        return self.role == 'SUPER_ADMIN'

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    @staticmethod
    def validate_format(email: str, name: str, password: str) -> list[tuple[str, str]]:
        """Validate registration data format without using the database."""
        errors: list[tuple[str, str]] = []

        email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
        if not email or not re.match(email_pattern, email):
            errors.append(('email', 'Invalid email address'))

        if not name or len(name.strip()) < 2:
            errors.append(('name', 'Name must be at least 2 characters'))

        if not password or len(password) < 6:
            errors.append(('password', 'Password must be at least 6 characters'))

        return errors

    def summary(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'avatar': self.avatar,
            'duprRating': self.dupr_rating,
        }

    def to_dict(self, with_counts: bool = False) -> dict:
        data = {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'role': self.role,
            'phone': self.phone,
            'city': self.city,
            'avatar': self.avatar,
            'duprId': self.dupr_id,
            'duprRating': self.dupr_rating,
            'createdAt': isoformat(self.created_at),
            'updatedAt': isoformat(self.updated_at),
        }
        if with_counts:
            data['_count'] = {
                'clubMemberships': len(self.memberships),
                'eventParticipations': len(self.event_participations),
                'matchParticipations': len(self.match_participations),
                'createdClubs': len(self.created_clubs),
            }
        return data


class Club(db.Model):
    __tablename__ = 'club'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)
    address = db.Column(db.String(255), nullable=False)
    city = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(20))
    email = db.Column(db.String(120))
    website = db.Column(db.String(255))
    logo = db.Column(db.String(255))
    creator_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=current_time)
    updated_at = db.Column(db.DateTime, default=current_time, onupdate=current_time)

    __table_args__ = (db.UniqueConstraint('name', 'city', name='unique_club_name_city'),)

    creator = db.relationship('User', back_populates='created_clubs')
    courts = db.relationship(
        'Court', back_populates='club', lazy=True, cascade='all, delete-orphan'
    )
    memberships = db.relationship(
        'ClubMembership', back_populates='club', lazy=True, cascade='all, delete-orphan'
    )
    events = db.relationship(
        'Event', back_populates='club', lazy=True, cascade='all, delete-orphan'
    )

    def __repr__(self):  # pragma: no cover - debug helper
        return f"<Club {self.id} {self.name} ({self.city})>"

    def membership_for(self, user_id: int) -> 'ClubMembership | None':
        return ClubMembership.query.filter_by(club_id=self.id, user_id=user_id).first()

    def has_active_member(self, user_id: int | None) -> bool:
        if user_id is None:
            return False
        return (
            ClubMembership.query.filter_by(club_id=self.id, user_id=user_id, status='ACTIVE').count()
            > 0
        )

    def active_member_ids(self, user_ids) -> set[int]:
        rows = (
            db.session.query(ClubMembership.user_id)
            .filter(
                ClubMembership.club_id == self.id,
                ClubMembership.user_id.in_(list(user_ids)),
                ClubMembership.status == 'ACTIVE',
            )
            .all()
        )
        return {user_id for (user_id,) in rows}

    def summary(self) -> dict:
        return {'id': self.id, 'name': self.name, 'city': self.city}

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'address': self.address,
            'city': self.city,
            'phone': self.phone,
            'email': self.email,
            'website': self.website,
            'logo': self.logo,
            'creatorId': self.creator_id,
            'creator': {'id': self.creator.id, 'name': self.creator.name} if self.creator else None,
            'createdAt': isoformat(self.created_at),
            'updatedAt': isoformat(self.updated_at),
            '_count': {
                'memberships': len(self.memberships),
                'events': len(self.events),
                'courts': len(self.courts),
            },
        }


class Court(db.Model):
    __tablename__ = 'court'

    id = db.Column(db.Integer, primary_key=True)
    club_id = db.Column(db.Integer, db.ForeignKey('club.id'), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=current_time)

    __table_args__ = (db.UniqueConstraint('club_id', 'name', name='unique_court_name_per_club'),)

    club = db.relationship('Club', back_populates='courts')
    events = db.relationship(
        'Event', back_populates='court', lazy=True, cascade='all'
    )
    matches = db.relationship(
        'Match', back_populates='court', lazy=True, cascade='all'
    )

    def __repr__(self):  # pragma: no cover - debug helper
        return f"<Court {self.id} {self.name} club={self.club_id}>"

    def future_event_count(self, now: datetime | None = None) -> int:
        """Upcoming SCHEDULED events plus every ONGOING event on this court."""
        now = now or current_time()
        return Event.query.filter(
            Event.court_id == self.id,
            or_(
                and_(Event.status == 'SCHEDULED', Event.start_at >= now),
                Event.status == 'ONGOING',
            ),
        ).count()

    def incomplete_match_count(self) -> int:
        return Match.query.filter(Match.court_id == self.id, Match.completed.is_(False)).count()

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'clubId': self.club_id,
            'name': self.name,
            'description': self.description,
            'isActive': self.is_active,
            'createdAt': isoformat(self.created_at),
            '_count': {'events': len(self.events), 'matches': len(self.matches)},
        }


class ClubMembership(db.Model):
    """A user's standing in a club; one row per (user, club)."""

    __tablename__ = 'club_membership'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    club_id = db.Column(db.Integer, db.ForeignKey('club.id'), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='PENDING')
    joined_at = db.Column(db.DateTime, default=current_time)
    expires_at = db.Column(db.DateTime)

    __table_args__ = (db.UniqueConstraint('user_id', 'club_id', name='unique_user_club'),)

    user = db.relationship('User', back_populates='memberships')
    club = db.relationship('Club', back_populates='memberships')

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'userId': self.user_id,
            'clubId': self.club_id,
            'status': self.status,
            'joinedAt': isoformat(self.joined_at),
            'expiresAt': isoformat(self.expires_at),
            'user': self.user.summary() if self.user else None,
        }


class Event(db.Model):
    __tablename__ = 'event'

    id = db.Column(db.Integer, primary_key=True)
    club_id = db.Column(db.Integer, db.ForeignKey('club.id'), nullable=False)
    court_id = db.Column(db.Integer, db.ForeignKey('court.id'))
    title = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)
    type = db.Column(db.String(20), nullable=False)
    visibility = db.Column(db.String(20), nullable=False, default='MEMBERS_ONLY')
    status = db.Column(db.String(20), nullable=False, default='SCHEDULED')
    start_at = db.Column(db.DateTime, nullable=False)
    end_at = db.Column(db.DateTime, nullable=False)
    max_participants = db.Column(db.Integer)
    price = db.Column(db.Float)
    created_at = db.Column(db.DateTime, default=current_time)

    club = db.relationship('Club', back_populates='events')
    court = db.relationship('Court', back_populates='events')
    participants = db.relationship(
        'EventParticipant',
        back_populates='event',
        lazy=True,
        cascade='all, delete-orphan',
        order_by='EventParticipant.registered_at',
    )
    matches = db.relationship('Match', back_populates='event', lazy=True)

    def __repr__(self):  # pragma: no cover - debug helper
        return f"<Event {self.id} {self.title} status={self.status}>"

    def participant_count(self) -> int:
        return EventParticipant.query.filter_by(event_id=self.id).count()

    def checked_in_count(self) -> int:
        return EventParticipant.query.filter_by(event_id=self.id, checked_in=True).count()

    def summary(self) -> dict:
        return {
            'id': self.id,
            'title': self.title,
            'type': self.type,
            'startDateTime': isoformat(self.start_at),
            'endDateTime': isoformat(self.end_at),
        }

    def to_dict(self, with_participants: bool = False) -> dict:
        data = {
            'id': self.id,
            'clubId': self.club_id,
            'courtId': self.court_id,
            'title': self.title,
            'description': self.description,
            'type': self.type,
            'visibility': self.visibility,
            'status': self.status,
            'startDateTime': isoformat(self.start_at),
            'endDateTime': isoformat(self.end_at),
            'maxParticipants': self.max_participants,
            'price': self.price,
            'createdAt': isoformat(self.created_at),
            'club': self.club.summary() if self.club else None,
            'court': {'id': self.court.id, 'name': self.court.name} if self.court else None,
            '_count': {'participants': len(self.participants)},
        }
        if with_participants:
            data['participants'] = [p.to_dict() for p in self.participants]
        return data


class EventParticipant(db.Model):
    __tablename__ = 'event_participant'

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey('event.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    registered_at = db.Column(db.DateTime, default=current_time)
    checked_in = db.Column(db.Boolean, default=False, nullable=False)
    checked_in_at = db.Column(db.DateTime)

    __table_args__ = (db.UniqueConstraint('user_id', 'event_id', name='unique_user_event'),)

    event = db.relationship('Event', back_populates='participants')
    user = db.relationship('User', back_populates='event_participations')

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'eventId': self.event_id,
            'userId': self.user_id,
            'registeredAt': isoformat(self.registered_at),
            'checkedIn': self.checked_in,
            'checkedInAt': isoformat(self.checked_in_at),
            'user': self.user.summary() if self.user else None,
        }


class Match(db.Model):
    """A recorded game. Club matches have a court; informal ones do not."""

    __tablename__ = 'match'

    id = db.Column(db.Integer, primary_key=True)
    match_type = db.Column(db.String(10), nullable=False)
    court_id = db.Column(db.Integer, db.ForeignKey('court.id'))
    event_id = db.Column(db.Integer, db.ForeignKey('event.id'))
    creator_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    start_at = db.Column(db.DateTime)
    end_at = db.Column(db.DateTime)
    score = db.Column(db.String(30))
    completed = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=current_time)

    court = db.relationship('Court', back_populates='matches')
    event = db.relationship('Event', back_populates='matches')
    creator = db.relationship('User', back_populates='created_matches')
    participants = db.relationship(
        'MatchParticipant',
        back_populates='match',
        lazy=True,
        cascade='all, delete-orphan',
        order_by=lambda: [MatchParticipant.team.asc(), MatchParticipant.user_id.asc()],
    )

    def __repr__(self):  # pragma: no cover - debug helper
        return f"<Match {self.id} {self.match_type} completed={self.completed}>"

    @property
    def is_club_match(self) -> bool:
        return self.court_id is not None

    @property
    def club(self):
        return self.court.club if self.court else None

    def has_participant(self, user_id: int | None) -> bool:
        return any(p.user_id == user_id for p in self.participants)

    def to_dict(self) -> dict:
        court = None
        if self.court:
            court = {
                'id': self.court.id,
                'name': self.court.name,
                'description': self.court.description,
                'club': self.court.club.summary() if self.court.club else None,
            }
        return {
            'id': self.id,
            'matchType': self.match_type,
            'courtId': self.court_id,
            'eventId': self.event_id,
            'creatorId': self.creator_id,
            'startTime': isoformat(self.start_at),
            'endTime': isoformat(self.end_at),
            'score': self.score,
            'completed': self.completed,
            'createdAt': isoformat(self.created_at),
            'creator': {'id': self.creator.id, 'name': self.creator.name} if self.creator else None,
            'participants': [p.to_dict() for p in self.participants],
            'court': court,
            'event': self.event.summary() if self.event else None,
        }


class MatchParticipant(db.Model):
    __tablename__ = 'match_participant'

    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.Integer, db.ForeignKey('match.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    team = db.Column(db.Integer, nullable=False)
    is_winner = db.Column(db.Boolean, default=False, nullable=False)

    __table_args__ = (db.UniqueConstraint('match_id', 'user_id', name='unique_match_user'),)

    match = db.relationship('Match', back_populates='participants')
    user = db.relationship('User', back_populates='match_participations')

    def to_dict(self) -> dict:
        return {
            'userId': self.user_id,
            'team': self.team,
            'isWinner': self.is_winner,
            'user': self.user.summary() if self.user else None,
        }


def paginate(query, page: int, limit: int) -> tuple[list, dict]:
    """Slice a query and describe the page the way every list endpoint reports it."""
    total_count = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    total_pages = (total_count + limit - 1) // limit
    return items, {
        'page': page,
        'limit': limit,
        'totalCount': total_count,
        'totalPages': total_pages,
        'hasNextPage': page < total_pages,
        'hasPreviousPage': page > 1,
    }


def init_default_data():
    """Seed the platform super admin if the database has none."""

    admin = User.query.filter_by(role='SUPER_ADMIN').first()
    if admin:
        return admin

    admin = User(
        email=os.environ.get('ADMIN_EMAIL', DEFAULT_ADMIN_EMAIL),
        name='Admin',
        role='SUPER_ADMIN',
    )
    admin.set_password(os.environ.get('ADMIN_PASSWORD', 'admin123'))
    db.session.add(admin)
    db.session.commit()
    return admin


def parse_datetime(value) -> datetime:
    """Parse an ISO-8601 instant into naive UTC. A trailing ``Z`` is accepted."""
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f'Invalid datetime: {value!r}')
    text = value.strip()
    if text[-1] in 'Zz':
        text = text[:-1] + '+00:00'
    return to_utc(datetime.fromisoformat(text))

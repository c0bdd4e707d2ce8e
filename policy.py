"""Authorization policy for clubs, courts, events, memberships, matches and users.

Every permission decision in the API goes through :func:`evaluate`. The
evaluator is pure: callers gather the relational facts (who created the
club, whether the actor holds an ACTIVE membership, whether they play in the
match) and the table below decides. A rule permits when any of its clauses
holds.
"""

from dataclasses import dataclass

from errors import Conflict, Forbidden

SUPER_ADMIN = 'SUPER_ADMIN'


@dataclass(frozen=True)
class Actor:
    """Identity resolved from a bearer credential."""

    user_id: int
    email: str
    role: str

    @property
    def is_super_admin(self) -> bool:
        return self.role == SUPER_ADMIN


@dataclass(frozen=True)
class Facts:
    club_creator_id: int | None = None
    is_active_member: bool = False
    is_participant: bool = False
    match_creator_id: int | None = None
    visibility: str | None = None
    target_user_id: int | None = None


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.allowed

    @classmethod
    def permit(cls) -> 'Decision':
        return cls(True)

    @classmethod
    def deny(cls, reason: str) -> 'Decision':
        return cls(False, reason)


# Actions
CREATE_CLUB = 'club:create'
MANAGE_CLUB = 'club:manage'
MANAGE_COURT = 'court:manage'
VIEW_CLUB_MEMBERS = 'club_members:view'
MANAGE_CLUB_MEMBERS = 'club_members:manage'
MANAGE_CLUB_EVENT = 'event:manage'
VIEW_EVENT = 'event:view'
VIEW_EVENT_PARTICIPANTS = 'event_participants:view'
JOIN_EVENT = 'event:join'
CHECK_IN_OTHER = 'event:check_in_other'
MANAGE_CLUB_MATCH = 'club_match:manage'
VIEW_CLUB_MATCH = 'club_match:view'
LIST_CLUB_MATCHES = 'club_match:list'
CREATE_INFORMAL_MATCH = 'match:create'
MANAGE_INFORMAL_MATCH = 'match:manage'
VIEW_INFORMAL_MATCH = 'match:view'
ADMINISTER_USERS = 'user:administer'
VIEW_MATCH_HISTORY = 'user:match_history'


def _any_user(actor: Actor, facts: Facts) -> bool:
    return True


def _super_admin(actor: Actor, facts: Facts) -> bool:
    return actor.is_super_admin


def _club_creator(actor: Actor, facts: Facts) -> bool:
    return facts.club_creator_id is not None and facts.club_creator_id == actor.user_id


def _active_member(actor: Actor, facts: Facts) -> bool:
    return facts.is_active_member


def _participant(actor: Actor, facts: Facts) -> bool:
    return facts.is_participant


def _match_creator(actor: Actor, facts: Facts) -> bool:
    return facts.match_creator_id is not None and facts.match_creator_id == actor.user_id


def _open_event(actor: Actor, facts: Facts) -> bool:
    return facts.visibility == 'OPEN'


def _not_private(actor: Actor, facts: Facts) -> bool:
    return facts.visibility != 'PRIVATE'


def _self(actor: Actor, facts: Facts) -> bool:
    return facts.target_user_id == actor.user_id


POLICY = {
    CREATE_CLUB: ((_any_user,), "You don't have permission to create clubs"),
    MANAGE_CLUB: (
        (_club_creator, _super_admin),
        "Only the club creator or super admin can manage this club",
    ),
    MANAGE_COURT: (
        (_club_creator, _super_admin),
        'Only club creator or super admin can manage courts',
    ),
    VIEW_CLUB_MEMBERS: (
        (_club_creator, _super_admin),
        "You don't have permission to view club members",
    ),
    MANAGE_CLUB_MEMBERS: (
        (_club_creator, _super_admin),
        "You don't have permission to manage club members",
    ),
    MANAGE_CLUB_EVENT: (
        (_club_creator, _super_admin),
        'Only club creator or super admin can manage events',
    ),
    VIEW_EVENT: (
        (_not_private, _club_creator, _active_member, _super_admin),
        "You don't have access to this private event",
    ),
    VIEW_EVENT_PARTICIPANTS: (
        (_club_creator, _active_member, _super_admin),
        "You don't have permission to view event participants",
    ),
    JOIN_EVENT: (
        (_open_event, _active_member, _club_creator, _super_admin),
        'You must be a member of this club to join this event',
    ),
    CHECK_IN_OTHER: (
        (_club_creator, _super_admin),
        "You don't have permission to check-in other users",
    ),
    MANAGE_CLUB_MATCH: (
        (_club_creator, _super_admin),
        'Only club creator or super admin can manage club matches',
    ),
    VIEW_CLUB_MATCH: (
        (_club_creator, _participant, _active_member, _super_admin),
        "You don't have access to this match",
    ),
    LIST_CLUB_MATCHES: (
        (_club_creator, _active_member, _super_admin),
        'You must be a club member to view club matches',
    ),
    CREATE_INFORMAL_MATCH: ((_any_user,), "You don't have permission to create matches"),
    MANAGE_INFORMAL_MATCH: (
        (_match_creator, _super_admin),
        'Only the match creator can modify this match',
    ),
    VIEW_INFORMAL_MATCH: (
        (_match_creator, _participant, _super_admin),
        "You don't have access to this match",
    ),
    ADMINISTER_USERS: ((_super_admin,), 'Insufficient permissions'),
    VIEW_MATCH_HISTORY: (
        (_self, _super_admin),
        'You can only view your own match history',
    ),
}


def evaluate(action: str, actor: Actor, facts: Facts | None = None) -> Decision:
    """Decide whether ``actor`` may perform ``action`` given ``facts``."""
    try:
        clauses, reason = POLICY[action]
    except KeyError:
        raise ValueError(f'Unknown action: {action}') from None

    facts = facts or Facts()
    if any(clause(actor, facts) for clause in clauses):
        return Decision.permit()
    return Decision.deny(reason)


def enforce(decision: Decision) -> Decision:
    if not decision:
        raise Forbidden(f'Forbidden - {decision.reason}')
    return decision


def authorize(action: str, actor: Actor, facts: Facts | None = None) -> Decision:
    return enforce(evaluate(action, actor, facts))


def can_manage_club(actor: Actor, club_creator_id: int) -> bool:
    return bool(evaluate(MANAGE_CLUB, actor, Facts(club_creator_id=club_creator_id)))


def check_user_deletion(actor: Actor, target_user_id: int, clubs_created: int) -> None:
    """Only a super admin deletes users, never themselves, never a club creator."""
    authorize(ADMINISTER_USERS, actor)

    if target_user_id == actor.user_id:
        raise Conflict('Cannot delete your own account')

    if clubs_created > 0:
        raise Conflict(
            'Cannot delete user who is a club creator',
            details={
                'clubsCreated': clubs_created,
                'suggestion': 'Please transfer club ownership or delete the clubs first',
            },
        )

"""State machine and time windows for club events.

An event moves SCHEDULED -> ONGOING -> COMPLETED and can be CANCELLED from
either of the first two states. The guards below are called by the event
handlers before they persist anything; each one raises an ``AppError``
subclass instead of returning a flag.
"""

from datetime import datetime, timedelta

from errors import Conflict, NotFound, NotSupported, ValidationError
from models import EVENT_STATUSES, current_time
from policy import Decision, enforce

LEAVE_CUTOFF = timedelta(hours=2)
CHECK_IN_OPENS = timedelta(minutes=30)

TRANSITIONS = {
    'SCHEDULED': frozenset({'ONGOING', 'CANCELLED'}),
    'ONGOING': frozenset({'COMPLETED', 'CANCELLED'}),
    'COMPLETED': frozenset(),
    'CANCELLED': frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return current == target or target in TRANSITIONS.get(current, frozenset())


def transition(event, status: str) -> bool:
    """Move ``event`` to ``status``. Returns True when the status changed."""
    if status not in EVENT_STATUSES:
        raise ValidationError('status', f'Invalid status: {status}')

    if event.status == status:
        return False

    if not can_transition(event.status, status):
        raise Conflict(f'Cannot change event status from {event.status} to {status}')

    event.status = status
    return True


def validate_window(
    start: datetime,
    end: datetime,
    now: datetime | None = None,
    require_future: bool = False,
) -> None:
    """End strictly after start; optionally the start must lie in the future."""
    if end <= start:
        raise ValidationError('endDateTime', 'End date must be after start date')

    if require_future:
        now = now or current_time()
        if start <= now:
            raise ValidationError('startDateTime', 'Start date must be in the future')


def check_reschedule(event, start: datetime, now: datetime | None = None) -> None:
    now = now or current_time()
    if event.status == 'SCHEDULED' and start < now:
        raise ValidationError(
            'startDateTime', 'Cannot set start date in the past for scheduled events'
        )


def check_join(
    event,
    decision: Decision,
    participant_count: int,
    already_registered: bool,
    now: datetime | None = None,
) -> None:
    """Guard a registration. ``decision`` is the policy verdict for joining."""
    now = now or current_time()

    if event.status in ('COMPLETED', 'CANCELLED'):
        raise Conflict('Cannot join completed or cancelled events')

    if event.status == 'ONGOING':
        raise Conflict('Cannot join events that have already started')

    if already_registered:
        raise Conflict('You are already registered for this event')

    enforce(decision)

    if event.max_participants and participant_count >= event.max_participants:
        raise Conflict('Event is full - maximum participants reached')

    if event.start_at <= now:
        raise Conflict('Cannot join events that have already started')

    if event.price and event.price > 0:
        raise NotSupported('Paid events are not yet supported')


def check_leave(event, now: datetime | None = None) -> None:
    now = now or current_time()

    if event.status == 'ONGOING':
        raise Conflict('Cannot leave events that have already started')

    if event.status != 'SCHEDULED':
        raise Conflict(f'Cannot leave {event.status.lower()} events')

    if now > event.start_at - LEAVE_CUTOFF:
        hours = int(LEAVE_CUTOFF.total_seconds() // 3600)
        raise Conflict(f'Cannot leave event less than {hours} hours before start time')


def check_check_in(event, participation, now: datetime | None = None) -> None:
    """Check-in opens 30 minutes before start and closes at the end instant."""
    now = now or current_time()

    if now < event.start_at - CHECK_IN_OPENS:
        raise Conflict('Check-in not available yet - opens 30 minutes before event start')

    if event.status in ('COMPLETED', 'CANCELLED'):
        raise Conflict('Cannot check-in to completed or cancelled events')

    if now > event.end_at:
        raise Conflict('Cannot check-in to events that have already ended')

    if participation is None:
        raise NotFound('User is not registered for this event')

    if participation.checked_in:
        raise Conflict('User has already checked in to this event')


def mark_checked_in(event, participation, now: datetime | None = None) -> bool:
    """Record the check-in. The first one starts a SCHEDULED event.

    Returns True when the event status changed as a result.
    """
    participation.checked_in = True
    participation.checked_in_at = now or current_time()

    if event.status == 'SCHEDULED':
        return transition(event, 'ONGOING')
    return False


def check_undo_check_in(event, participation) -> None:
    if participation is None:
        raise NotFound('Participation not found')

    if not participation.checked_in:
        raise Conflict('User has not checked in to this event')

    if event.status == 'COMPLETED':
        raise Conflict('Cannot undo check-in for completed events')


def undo_check_in(participation) -> None:
    participation.checked_in = False
    participation.checked_in_at = None


def check_delete(event) -> None:
    if event.status in ('ONGOING', 'COMPLETED'):
        raise Conflict('Cannot delete events that have already started or completed')


def check_court_deactivation(future_events: int) -> None:
    if future_events > 0:
        raise Conflict(
            'Cannot deactivate court with scheduled or ongoing events',
            details={
                'futureEvents': future_events,
                'suggestion': 'Please cancel or reassign events before deactivating the court',
            },
        )


def check_court_deletion(future_events: int) -> None:
    if future_events > 0:
        raise Conflict(
            'Cannot delete court with scheduled or ongoing events',
            details={
                'futureEvents': future_events,
                'suggestion': (
                    'Please cancel or reassign events before deleting the court, '
                    'or deactivate it instead'
                ),
            },
        )

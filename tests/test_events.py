"""
Integration tests for the events blueprint
Tests event CRUD, registration, check-in and the participant/match listings
"""
from datetime import timedelta

import pytest

from models import db, current_time, isoformat, Event, EventParticipant, Match


def in_future(**delta):
    return isoformat(current_time() + timedelta(**delta))


class TestEventCreation:
    def payload(self, club, **overrides):
        body = {
            'clubId': club.id,
            'title': 'Saturday Ladder',
            'type': 'LEAGUE',
            'visibility': 'MEMBERS_ONLY',
            'startDateTime': in_future(days=2),
            'endDateTime': in_future(days=2, hours=3),
            'maxParticipants': 16,
        }
        body.update(overrides)
        return body

    def test_create_event(self, client, club, court, owner_user, auth_headers):
        response = client.post(
            '/api/events', headers=auth_headers(owner_user), json=self.payload(club, courtId=court.id)
        )

        assert response.status_code == 201
        event = response.get_json()['event']
        assert event['status'] == 'SCHEDULED'
        assert event['court']['id'] == court.id
        assert event['maxParticipants'] == 16

    def test_member_cannot_create(self, client, club, member_user, membership, auth_headers):
        response = client.post('/api/events', headers=auth_headers(member_user), json=self.payload(club))
        assert response.status_code == 403

    def test_start_in_past(self, client, club, owner_user, auth_headers):
        response = client.post(
            '/api/events',
            headers=auth_headers(owner_user),
            json=self.payload(club, startDateTime=in_future(hours=-1)),
        )
        assert response.status_code == 400

    def test_end_before_start(self, client, club, owner_user, auth_headers):
        response = client.post(
            '/api/events',
            headers=auth_headers(owner_user),
            json=self.payload(club, endDateTime=in_future(days=1)),
        )
        assert response.status_code == 400
        assert response.get_json()['field'] == 'endDateTime'

    def test_inactive_court(self, client, club, court, owner_user, auth_headers):
        court.is_active = False
        db.session.commit()

        response = client.post(
            '/api/events', headers=auth_headers(owner_user), json=self.payload(club, courtId=court.id)
        )
        assert response.status_code == 404

    @pytest.mark.parametrize('field, value', [
        ('type', 'PARTY'),
        ('visibility', 'SECRET'),
        ('maxParticipants', 0),
        ('price', -5),
        ('title', 'x' * 101),
    ])
    def test_invalid_fields(self, client, club, owner_user, auth_headers, field, value):
        response = client.post(
            '/api/events', headers=auth_headers(owner_user), json=self.payload(club, **{field: value})
        )
        assert response.status_code == 400
        assert response.get_json()['field'] == field

    def test_unknown_club(self, client, owner_user, club, auth_headers):
        body = self.payload(club, clubId=999)
        response = client.post('/api/events', headers=auth_headers(owner_user), json=body)
        assert response.status_code == 404


class TestEventListing:
    def test_private_events_not_listed(self, client, make_event):
        make_event(title='Open Night', visibility='OPEN')
        make_event(title='Members Night', visibility='MEMBERS_ONLY')
        make_event(title='Board Meeting', visibility='PRIVATE')

        response = client.get('/api/events')

        titles = {e['title'] for e in response.get_json()['events']}
        assert titles == {'Open Night', 'Members Night'}

    def test_filters(self, client, make_event):
        make_event(title='Clinic', type='CLINIC')
        make_event(title='Old', start_at=current_time() - timedelta(days=5), status='COMPLETED')

        upcoming = client.get('/api/events?upcoming=true').get_json()['events']
        assert [e['title'] for e in upcoming] == ['Clinic']

        clinics = client.get('/api/events?type=CLINIC&city=valencia').get_json()['events']
        assert [e['title'] for e in clinics] == ['Clinic']

        assert client.get('/api/events?city=Madrid').get_json()['events'] == []
        assert client.get('/api/events?status=UNKNOWN').status_code == 400

    def test_ordered_by_start(self, client, make_event):
        make_event(title='Later', start_at=current_time() + timedelta(days=3))
        make_event(title='Sooner', start_at=current_time() + timedelta(days=1))

        events = client.get('/api/events').get_json()['events']
        assert [e['title'] for e in events] == ['Sooner', 'Later']


class TestNearbyEvents:
    def test_city_required(self, client):
        assert client.get('/api/events/nearby').status_code == 400

    @pytest.mark.parametrize('days', [0, 31])
    def test_days_ahead_bounds(self, client, days):
        assert client.get(f'/api/events/nearby?city=Valencia&daysAhead={days}').status_code == 400

    def test_limit_bound(self, client):
        assert client.get('/api/events/nearby?city=Valencia&limit=51').status_code == 400

    def test_nearby_window_and_visibility(self, client, make_event):
        make_event(title='Tomorrow', visibility='OPEN')
        make_event(title='Members', visibility='MEMBERS_ONLY')
        make_event(title='Next Month', start_at=current_time() + timedelta(days=20))
        make_event(title='Cancelled', status='CANCELLED')

        response = client.get('/api/events/nearby?city=valen')

        assert response.status_code == 200
        data = response.get_json()
        assert {e['title'] for e in data['events']} == {'Tomorrow', 'Members'}
        assert data['events'][0]['distanceInfo'] == {'city': 'Valencia', 'isLocal': True}
        assert data['searchParams']['daysAhead'] == 7

        open_only = client.get('/api/events/nearby?city=Valencia&openOnly=true').get_json()
        assert [e['title'] for e in open_only['events']] == ['Tomorrow']


class TestEventDetail:
    def test_public_event_anonymous(self, client, event):
        response = client.get(f'/api/events/{event.id}')
        assert response.status_code == 200
        assert response.get_json()['event']['participants'] == []

    def test_private_event_anonymous(self, client, make_event):
        event = make_event(visibility='PRIVATE')
        assert client.get(f'/api/events/{event.id}').status_code == 401

    def test_private_event_outsider(self, client, make_event, other_user, auth_headers):
        event = make_event(visibility='PRIVATE')
        response = client.get(f'/api/events/{event.id}', headers=auth_headers(other_user))
        assert response.status_code == 403

    def test_private_event_member(self, client, make_event, member_user, membership, auth_headers):
        event = make_event(visibility='PRIVATE')
        response = client.get(f'/api/events/{event.id}', headers=auth_headers(member_user))
        assert response.status_code == 200

    def test_unknown_event(self, client):
        assert client.get('/api/events/999').status_code == 404


class TestEventUpdate:
    def test_status_transition(self, client, event, owner_user, auth_headers):
        response = client.put(
            f'/api/events/{event.id}', headers=auth_headers(owner_user), json={'status': 'CANCELLED'}
        )
        assert response.status_code == 200
        assert response.get_json()['event']['status'] == 'CANCELLED'

    def test_invalid_transition(self, client, event, admin_user, auth_headers):
        response = client.put(
            f'/api/events/{event.id}', headers=auth_headers(admin_user), json={'status': 'COMPLETED'}
        )
        assert response.status_code == 409
        assert db.session.get(Event, event.id).status == 'SCHEDULED'

    def test_cannot_move_into_past(self, client, event, owner_user, auth_headers):
        response = client.put(
            f'/api/events/{event.id}',
            headers=auth_headers(owner_user),
            json={'startDateTime': in_future(hours=-2)},
        )
        assert response.status_code == 400

    def test_end_checked_against_stored_start(self, client, event, owner_user, auth_headers):
        response = client.put(
            f'/api/events/{event.id}',
            headers=auth_headers(owner_user),
            json={'endDateTime': isoformat(event.start_at - timedelta(minutes=5))},
        )
        assert response.status_code == 400

    def test_member_cannot_update(self, client, event, member_user, membership, auth_headers):
        response = client.put(
            f'/api/events/{event.id}', headers=auth_headers(member_user), json={'title': 'Mine'}
        )
        assert response.status_code == 403


class TestEventDeletion:
    @pytest.mark.parametrize('status', ['ONGOING', 'COMPLETED'])
    def test_started_events_cannot_be_deleted(self, client, make_event, owner_user, auth_headers, status):
        event = make_event(status=status)
        response = client.delete(f'/api/events/{event.id}', headers=auth_headers(owner_user))
        assert response.status_code == 409

    def test_delete_scheduled_event(self, client, event, member_user, register, owner_user, auth_headers):
        register(event, member_user)
        event_id = event.id

        response = client.delete(f'/api/events/{event_id}', headers=auth_headers(owner_user))

        assert response.status_code == 200
        assert db.session.get(Event, event_id) is None
        assert EventParticipant.query.filter_by(event_id=event_id).count() == 0


class TestJoinAndLeave:
    def test_join_ten_minutes_before_start(self, client, make_event, other_user, auth_headers):
        event = make_event(start_at=current_time() + timedelta(minutes=10))

        response = client.post(f'/api/events/{event.id}/join', headers=auth_headers(other_user))

        assert response.status_code == 201
        assert event.participant_count() == 1

    def test_join_after_start(self, client, make_event, other_user, auth_headers):
        event = make_event(start_at=current_time() - timedelta(minutes=10))
        response = client.post(f'/api/events/{event.id}/join', headers=auth_headers(other_user))
        assert response.status_code == 409

    def test_join_twice(self, client, event, other_user, register, auth_headers):
        register(event, other_user)
        response = client.post(f'/api/events/{event.id}/join', headers=auth_headers(other_user))
        assert response.status_code == 409

    def test_join_full_event(self, client, make_event, member_user, other_user, register, auth_headers):
        event = make_event(max_participants=1)
        register(event, member_user)

        response = client.post(f'/api/events/{event.id}/join', headers=auth_headers(other_user))

        assert response.status_code == 409
        assert 'full' in response.get_json()['error']

    def test_join_priced_event(self, client, make_event, other_user, auth_headers):
        event = make_event(price=12.5)
        response = client.post(f'/api/events/{event.id}/join', headers=auth_headers(other_user))
        assert response.status_code == 501
        assert event.participant_count() == 0

    def test_members_only_event(self, client, make_event, other_user, member_user, membership, auth_headers):
        event = make_event(visibility='MEMBERS_ONLY')

        outsider = client.post(f'/api/events/{event.id}/join', headers=auth_headers(other_user))
        member = client.post(f'/api/events/{event.id}/join', headers=auth_headers(member_user))

        assert outsider.status_code == 403
        assert member.status_code == 201

    def test_cancelled_event(self, client, make_event, other_user, auth_headers):
        event = make_event(status='CANCELLED')
        response = client.post(f'/api/events/{event.id}/join', headers=auth_headers(other_user))
        assert response.status_code == 409

    def test_join_unknown_event(self, client, other_user, auth_headers):
        response = client.post('/api/events/999/join', headers=auth_headers(other_user))
        assert response.status_code == 404

    def test_leave(self, client, make_event, other_user, register, auth_headers):
        event = make_event(start_at=current_time() + timedelta(hours=3))
        register(event, other_user)

        response = client.delete(f'/api/events/{event.id}/join', headers=auth_headers(other_user))

        assert response.status_code == 200
        assert event.participant_count() == 0

    def test_leave_too_close_to_start(self, client, make_event, other_user, register, auth_headers):
        event = make_event(start_at=current_time() + timedelta(hours=1))
        register(event, other_user)

        response = client.delete(f'/api/events/{event.id}/join', headers=auth_headers(other_user))
        assert response.status_code == 409

    def test_leave_without_registration(self, client, event, other_user, auth_headers):
        response = client.delete(f'/api/events/{event.id}/join', headers=auth_headers(other_user))
        assert response.status_code == 404


class TestCheckIn:
    @pytest.fixture
    def starting_event(self, make_event):
        return make_event(start_at=current_time() + timedelta(minutes=10))

    def test_first_check_in_starts_event(self, client, starting_event, other_user, register, auth_headers):
        register(starting_event, other_user)

        response = client.post(
            f'/api/events/{starting_event.id}/checkin', headers=auth_headers(other_user)
        )

        assert response.status_code == 200
        assert response.get_json()['participation']['checkedIn'] is True
        assert db.session.get(Event, starting_event.id).status == 'ONGOING'

    def test_check_in_too_early(self, client, event, other_user, register, auth_headers):
        register(event, other_user)
        response = client.post(f'/api/events/{event.id}/checkin', headers=auth_headers(other_user))
        assert response.status_code == 409

    def test_check_in_twice(self, client, starting_event, other_user, register, auth_headers):
        register(starting_event, other_user, checked_in=True)
        response = client.post(
            f'/api/events/{starting_event.id}/checkin', headers=auth_headers(other_user)
        )
        assert response.status_code == 409

    def test_check_in_unregistered(self, client, starting_event, other_user, auth_headers):
        response = client.post(
            f'/api/events/{starting_event.id}/checkin', headers=auth_headers(other_user)
        )
        assert response.status_code == 404

    def test_member_cannot_check_in_others(
        self, client, starting_event, member_user, membership, other_user, register, auth_headers
    ):
        register(starting_event, other_user)
        response = client.post(
            f'/api/events/{starting_event.id}/checkin',
            headers=auth_headers(member_user),
            json={'userId': other_user.id},
        )
        assert response.status_code == 403

    def test_creator_checks_in_participant(
        self, client, starting_event, owner_user, other_user, register, auth_headers
    ):
        register(starting_event, other_user)
        response = client.post(
            f'/api/events/{starting_event.id}/checkin',
            headers=auth_headers(owner_user),
            json={'userId': other_user.id},
        )
        assert response.status_code == 200
        assert 'Outsider' in response.get_json()['message']

    def test_undo_check_in(self, client, starting_event, other_user, register, auth_headers):
        participation = register(starting_event, other_user, checked_in=True)

        response = client.delete(
            f'/api/events/{starting_event.id}/checkin', headers=auth_headers(other_user)
        )

        assert response.status_code == 200
        stored = db.session.get(EventParticipant, participation.id)
        assert stored.checked_in is False
        assert stored.checked_in_at is None

    def test_undo_without_check_in(self, client, starting_event, other_user, register, auth_headers):
        register(starting_event, other_user)
        response = client.delete(
            f'/api/events/{starting_event.id}/checkin', headers=auth_headers(other_user)
        )
        assert response.status_code == 409


class TestParticipantsAndMatches:
    def test_participants_with_stats(
        self, client, event, owner_user, member_user, other_user, register, auth_headers
    ):
        register(event, member_user)
        register(event, other_user, checked_in=True)

        response = client.get(f'/api/events/{event.id}/participants', headers=auth_headers(owner_user))

        assert response.status_code == 200
        data = response.get_json()
        assert data['stats'] == {'total': 2, 'checkedIn': 1, 'notCheckedIn': 1}
        assert [p['userId'] for p in data['participants']] == [other_user.id, member_user.id]

        pending = client.get(
            f'/api/events/{event.id}/participants?checkedIn=false', headers=auth_headers(owner_user)
        ).get_json()
        assert [p['userId'] for p in pending['participants']] == [member_user.id]

    def test_participants_hidden_from_outsiders(self, client, event, other_user, auth_headers):
        response = client.get(f'/api/events/{event.id}/participants', headers=auth_headers(other_user))
        assert response.status_code == 403

    def test_event_matches_stats(self, client, event, court):
        db.session.add_all([
            Match(match_type='SINGLES', event_id=event.id, court_id=court.id, completed=True),
            Match(match_type='DOUBLES', event_id=event.id, court_id=court.id),
        ])
        db.session.commit()

        response = client.get(f'/api/events/{event.id}/matches?completed=false')

        assert response.status_code == 200
        data = response.get_json()
        assert len(data['matches']) == 1
        assert data['stats'] == {
            'total': 2,
            'completed': 1,
            'inProgress': 1,
            'singles': 1,
            'doubles': 1,
        }

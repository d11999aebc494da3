import os
from datetime import timedelta

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import campus_routes
import config
from database import collection_name, utcnow
from main import app
from schemas import Announcement, Event, Feedback, LostItem, Poll, Student, Teacher

FUTURE = (utcnow() + timedelta(days=10)).isoformat() + 'Z'


# -------------------- Envelope & meta -------------------- #

def test_unknown_route_uses_envelope(client):
    response = client.get('/api/does-not-exist')

    assert response.status_code == 404
    assert response.json() == {'success': False, 'message': 'Resource not found', 'data': None}


def test_health(client):
    response = client.get('/health')

    assert response.status_code == 200
    assert response.json()['success'] is True
    assert 'uptime' in response.json()['data']


def test_unexpected_error_becomes_generic_500(db, login, monkeypatch):
    def boom(*args, **kwargs):
        raise KeyError('corrupt document')

    monkeypatch.setattr(campus_routes, 'get_documents', boom)
    app.dependency_overrides[campus_routes.get_db] = lambda: db
    _, headers = login('student')
    try:
        response = TestClient(app, raise_server_exceptions=False).get('/api/announcements', headers=headers)
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert response.json() == {'success': False, 'message': 'Internal server error', 'data': None}


# -------------------- Announcements -------------------- #

def test_announcements_pinned_first(client, login):
    admin, headers = login('admin', name='Dean Rao')
    client.post('/api/announcements', json={'title': 'Old news', 'content': 'x'}, headers=headers)
    client.post('/api/announcements', json={'title': 'Exams', 'content': 'y', 'pinned': True, 'category': 'Academic'}, headers=headers)
    client.post('/api/announcements', json={'title': 'Latest', 'content': 'z'}, headers=headers)

    data = client.get('/api/announcements', headers=headers).json()['data']

    assert data[0]['title'] == 'Exams'
    assert data[0]['category'] == 'Academic'
    assert data[0]['posted_by'] == 'Dean Rao'
    assert {d['title'] for d in data[1:]} == {'Old news', 'Latest'}
    assert data[1]['category'] == 'General'


def test_announcement_requires_title_and_content(client, db, login):
    _, headers = login('admin')

    response = client.post('/api/announcements', json={'title': '   ', 'content': ''}, headers=headers)

    assert response.status_code == 400
    message = response.json()['message']
    assert 'title' in message and 'content' in message
    assert db[collection_name(Announcement)].count_documents({}) == 0


def test_delete_announcement(client, login):
    _, headers = login('admin')
    created = client.post('/api/announcements', json={'title': 'Bye', 'content': 'soon'}, headers=headers).json()['data']

    assert client.delete(f"/api/announcements/{created['id']}", headers=headers).status_code == 200
    assert client.delete(f"/api/announcements/{created['id']}", headers=headers).status_code == 404
    assert client.delete('/api/announcements/garbage', headers=headers).status_code == 404


# -------------------- Events -------------------- #

def test_teacher_creates_event_and_manages_it(client, db, login):
    teacher, headers = login('teacher')

    response = client.post('/api/events', json={
        'title': '  Tech Talk ', 'description': 'AI in healthcare', 'date': FUTURE, 'location': 'Auditorium',
    }, headers=headers)

    assert response.status_code == 201
    event = response.json()['data']
    assert event['title'] == 'Tech Talk'
    assert event['category'] == 'General'
    assert event['created_by'] == teacher.id
    assert event['attendee_count'] == 0
    profile = db[collection_name(Teacher)].find_one({'user': teacher.oid})
    assert profile['managed_events'] == [ObjectId(event['id'])]


def test_event_with_unparseable_date_is_rejected(client, db, login):
    _, headers = login('admin')

    response = client.post('/api/events', json={
        'title': 'Fest', 'description': 'Annual fest', 'date': 'next friday-ish', 'location': 'Grounds',
    }, headers=headers)

    assert response.status_code == 400
    assert response.json()['success'] is False
    assert 'date' in response.json()['message']
    assert db[collection_name(Event)].count_documents({}) == 0


@pytest.mark.parametrize('date,expected', [('2031', 201), ('1900000000', 400)])
def test_event_digit_only_dates(client, login, date, expected):
    _, headers = login('admin')

    response = client.post('/api/events', json={
        'title': 'Reunion', 'description': 'Alumni meet', 'date': date, 'location': 'Lawn',
    }, headers=headers)

    assert response.status_code == expected
    if expected == 201:
        assert response.json()['data']['date'] == '2031-01-01T00:00:00+00:00'


def test_event_missing_location(client, login):
    _, headers = login('admin')

    response = client.post('/api/events', json={'title': 'Fest', 'description': 'd', 'date': FUTURE}, headers=headers)

    assert response.status_code == 400
    assert 'location' in response.json()['message']


def test_students_cannot_create_events(client, login):
    _, headers = login('student')

    response = client.post('/api/events', json={'title': 'a', 'description': 'b', 'date': FUTURE, 'location': 'c'}, headers=headers)

    assert response.status_code == 403


def test_events_sorted_by_date_and_rsvp(client, login):
    _, admin_headers = login('admin')
    for title, days in (('Later', 20), ('Sooner', 2)):
        client.post('/api/events', json={
            'title': title, 'description': 'd', 'location': 'Hall',
            'date': (utcnow() + timedelta(days=days)).isoformat(),
        }, headers=admin_headers)
    _, headers = login('student')

    events = client.get('/api/events', headers=headers).json()['data']
    assert [e['title'] for e in events] == ['Sooner', 'Later']

    first = client.post(f"/api/events/{events[0]['id']}/rsvp", headers=headers).json()
    second = client.post(f"/api/events/{events[0]['id']}/rsvp", headers=headers).json()

    assert first['success'] and first['message'] == 'RSVP recorded'
    assert second['success'] and second['message'] == "Already RSVP'd"
    assert second['data']['attendee_count'] == 1


def test_rsvp_unknown_event(client, login):
    _, headers = login('student')

    response = client.post(f'/api/events/{ObjectId()}/rsvp', headers=headers)

    assert response.status_code == 404
    assert response.json()['message'] == 'Event not found'


# -------------------- Clubs -------------------- #

def test_club_lifecycle(client, db, login):
    _, admin_headers = login('admin')
    student, headers = login('student')

    created = client.post('/api/clubs', json={'name': 'Drama', 'description': 'Stage', 'category': 'Arts'}, headers=admin_headers)
    assert created.status_code == 201
    club_id = created.json()['data']['id']

    duplicate = client.post('/api/clubs', json={'name': 'Drama', 'description': 'Again', 'category': 'Arts'}, headers=admin_headers)
    assert duplicate.status_code == 409

    joined = client.post(f'/api/student/clubs/{club_id}/join', headers=headers)
    assert joined.status_code == 200
    assert joined.json()['data']['members'] == 1
    assert joined.json()['data']['joined'] is True

    again = client.post(f'/api/student/clubs/{club_id}/join', headers=headers)
    assert again.json()['data']['members'] == 1

    listing = client.get('/api/clubs', headers=headers).json()['data']
    assert len(listing) == 1
    assert listing[0]['joined'] is True
    assert client.get('/api/student/clubs', headers=headers).json()['data'][0]['joined'] is True
    assert client.get('/api/clubs', headers=admin_headers).json()['data'][0]['joined'] is False

    assert client.delete(f'/api/clubs/{club_id}', headers=admin_headers).status_code == 200
    profile = db[collection_name(Student)].find_one({'user': student.oid})
    assert profile['joined_clubs'] == []
    assert client.delete(f'/api/clubs/{club_id}', headers=admin_headers).status_code == 404


def test_leave_club_via_api(client, login):
    _, admin_headers = login('admin')
    _, headers = login('student')
    club_id = client.post('/api/clubs', json={'name': 'Chess', 'description': 'Think', 'category': 'Games'},
                          headers=admin_headers).json()['data']['id']
    client.post(f'/api/student/clubs/{club_id}/join', headers=headers)

    left = client.post(f'/api/student/clubs/{club_id}/leave', headers=headers)
    left_again = client.post(f'/api/student/clubs/{club_id}/leave', headers=headers)

    assert left.json()['message'] == 'Left club'
    assert left.json()['data']['members'] == 0
    assert left_again.status_code == 200


def test_club_requires_fields(client, login):
    _, headers = login('admin')

    response = client.post('/api/clubs', json={'name': 'Solo'}, headers=headers)

    assert response.status_code == 400
    assert 'description' in response.json()['message']
    assert 'category' in response.json()['message']


# -------------------- Lost & found -------------------- #

LOST_FORM = {
    'title': 'Blue bottle',
    'description': 'Steel, dented',
    'location': 'Library',
    'student_id': '2310030001',
}


def test_lost_item_with_short_student_id(client, db, login):
    _, headers = login('student')

    response = client.post('/api/lost-found', data={**LOST_FORM, 'student_id': '12345'}, headers=headers)

    assert response.status_code == 400
    assert '10-digit' in response.json()['message']
    assert db[collection_name(LostItem)].count_documents({}) == 0


def test_lost_item_missing_fields(client, login):
    _, headers = login('student')

    response = client.post('/api/lost-found', data={'title': 'Keys'}, headers=headers)

    assert response.status_code == 400
    message = response.json()['message']
    assert 'description' in message and 'location' in message and 'student_id' in message


def test_lost_item_defaults(client, login):
    student, headers = login('student')

    response = client.post('/api/lost-found', data={**LOST_FORM, 'status': 'Misplaced', 'date': 'yesterday'}, headers=headers)

    assert response.status_code == 201
    item = response.json()['data']
    assert item['status'] == 'lost'
    assert item['category'] == 'Others'
    assert item['reported_by'] == student.id
    assert item['date']


def test_lost_item_year_only_date(client, login):
    _, headers = login('student')

    response = client.post('/api/lost-found', data={**LOST_FORM, 'date': '2024'}, headers=headers)

    assert response.json()['data']['date'] == '2024-01-01T00:00:00+00:00'


def test_lost_item_with_image(client, login):
    _, headers = login('student')

    response = client.post(
        '/api/lost-found',
        data={**LOST_FORM, 'status': 'found'},
        files={'image': ('bottle.PNG', b'\x89PNG\r\n\x1a\nfake', 'image/png')},
        headers=headers,
    )

    assert response.status_code == 201
    image_url = response.json()['data']['image_url']
    assert image_url.startswith('/uploads/lost-found/')
    assert image_url.endswith('.png')
    stored = os.path.join(config.UPLOAD_DIR, 'lost-found', image_url.rsplit('/', 1)[1])
    assert os.path.exists(stored)
    assert client.get(image_url).status_code == 200


def test_lost_item_rejects_non_images(client, db, login):
    _, headers = login('student')

    response = client.post('/api/lost-found', data=LOST_FORM,
                           files={'image': ('notes.txt', b'hello', 'text/plain')}, headers=headers)

    assert response.status_code == 400
    assert response.json()['message'] == 'Only image uploads are allowed'
    assert db[collection_name(LostItem)].count_documents({}) == 0


def test_lost_item_rejects_oversized_images(client, login, monkeypatch):
    monkeypatch.setattr(config, 'MAX_UPLOAD_BYTES', 16)
    _, headers = login('student')

    response = client.post('/api/lost-found', data=LOST_FORM,
                           files={'image': ('big.jpg', b'x' * 64, 'image/jpeg')}, headers=headers)

    assert response.status_code == 400
    assert 'upload limit' in response.json()['message']


def test_lost_item_status_updates(client, login):
    _, student_headers = login('student')
    _, teacher_headers = login('teacher')
    item_id = client.post('/api/lost-found', data=LOST_FORM, headers=student_headers).json()['data']['id']

    assert client.patch(f'/api/lost-found/{item_id}/status', json={'status': 'claimed'}, headers=student_headers).status_code == 403
    assert client.patch(f'/api/lost-found/{item_id}/status', json={'status': 'gone'}, headers=teacher_headers).status_code == 400

    updated = client.patch(f'/api/lost-found/{item_id}/status', json={'status': ' Claimed '}, headers=teacher_headers)
    assert updated.status_code == 200
    assert updated.json()['data']['status'] == 'claimed'

    missing = client.patch(f'/api/lost-found/{ObjectId()}/status', json={'status': 'found'}, headers=teacher_headers)
    assert missing.status_code == 404


# -------------------- Polls -------------------- #

def test_poll_voting_scenario(client, login):
    _, headers = login('student')
    poll = client.post('/api/polls', json={
        'question': 'Best venue?', 'options': ['Hall A', 'Hall B'], 'end_date': FUTURE,
    }, headers=headers)
    assert poll.status_code == 201
    poll_id = poll.json()['data']['id']
    assert [o['option_key'] for o in poll.json()['data']['options']] == ['option_1', 'option_2']

    voted = client.post(f'/api/polls/{poll_id}/vote', json={'option_key': 'option_1'}, headers=headers)
    assert voted.status_code == 200
    assert voted.json()['data']['total_votes'] == 1
    assert voted.json()['data']['options'][0]['votes'] == 1

    again = client.post(f'/api/polls/{poll_id}/vote', json={'option_key': 'option_2'}, headers=headers)
    assert again.status_code == 400
    assert again.json()['message'] == 'User already voted'

    listed = client.get('/api/polls', headers=headers).json()['data'][0]
    assert listed['total_votes'] == 1
    assert [o['votes'] for o in listed['options']] == [1, 0]
    assert listed['voted'] is True
    assert listed['user_vote'] == 'option_1'
    assert 'votes' not in listed


def test_poll_listing_is_per_user(client, login):
    _, headers = login('student')
    _, other_headers = login('teacher')
    poll_id = client.post('/api/polls', json={'question': 'Q?', 'options': ['a', 'b'], 'end_date': FUTURE},
                          headers=headers).json()['data']['id']
    client.post(f'/api/polls/{poll_id}/vote', json={'option_key': 'option_2'}, headers=headers)

    listed = client.get('/api/polls', headers=other_headers).json()['data'][0]

    assert listed['voted'] is False
    assert listed['user_vote'] is None
    assert listed['total_votes'] == 1


def test_vote_invalid_option(client, db, login):
    _, headers = login('student')
    poll_id = client.post('/api/polls', json={'question': 'Q?', 'options': ['a', 'b'], 'end_date': FUTURE},
                          headers=headers).json()['data']['id']

    response = client.post(f'/api/polls/{poll_id}/vote', json={'option_key': 'option_7'}, headers=headers)

    assert response.status_code == 400
    assert response.json()['message'] == 'Invalid option'
    stored = db[collection_name(Poll)].find_one({})
    assert [o['votes'] for o in stored['options']] == [0, 0]


def test_poll_with_custom_keys_and_blank_options(client, login):
    _, headers = login('teacher')

    response = client.post('/api/polls', json={
        'question': 'Lunch?',
        'options': [{'text': 'Pizza', 'option_key': 'pz'}, '   ', {'text': 'Dosa'}],
        'end_date': FUTURE,
    }, headers=headers)

    assert response.status_code == 201
    options = response.json()['data']['options']
    assert [(o['option_key'], o['text']) for o in options] == [('pz', 'Pizza'), ('option_3', 'Dosa')]


@pytest.mark.parametrize('body,fragment', [
    ({'question': 'Q?', 'options': ['only one'], 'end_date': FUTURE}, 'At least two poll options'),
    ({'question': 'Q?', 'options': [{'text': 'a', 'option_key': 'k'}, {'text': 'b', 'option_key': 'k'}], 'end_date': FUTURE}, 'unique'),
    ({'question': 'Q?', 'options': ['a', 'b'], 'end_date': 'whenever'}, 'A valid end date is required'),
    ({'question': 'Q?', 'options': ['a', 'b']}, 'A valid end date is required'),
    ({'question': 'Q?', 'options': ['a', 'b'], 'end_date': '1700000000'}, 'A valid end date is required'),
    ({'question': ' ', 'options': ['a', 'b'], 'end_date': FUTURE}, 'question'),
])
def test_poll_validation(client, db, login, body, fragment):
    _, headers = login('student')

    response = client.post('/api/polls', json=body, headers=headers)

    assert response.status_code == 400
    assert fragment in response.json()['message']
    assert db[collection_name(Poll)].count_documents({}) == 0


@pytest.mark.parametrize('end_date', [None, '', 'whenever'])
def test_poll_end_date_message(client, login, end_date):
    _, headers = login('teacher')
    body = {'question': 'Trip?', 'options': ['Goa', 'Ooty']}
    if end_date is not None:
        body['end_date'] = end_date

    response = client.post('/api/polls', json=body, headers=headers)

    assert response.status_code == 400
    assert response.json() == {'success': False, 'message': 'A valid end date is required', 'data': None}


# -------------------- Resources & feedback -------------------- #

def test_resource_download_counter(client, login):
    _, teacher_headers = login('teacher')
    _, headers = login('student')
    resource_id = client.post('/api/teacher/resources', json={
        'title': 'DBMS notes', 'type': 'notes', 'department': 'CSE', 'semester': '4',
    }, headers=teacher_headers).json()['data']['id']

    client.post(f'/api/resources/{resource_id}/download', headers=headers)
    response = client.post(f'/api/resources/{resource_id}/download', headers=headers)

    assert response.json()['data']['downloads'] == 2
    assert client.get('/api/resources', headers=headers).json()['data'][0]['downloads'] == 2
    assert client.post(f'/api/resources/{ObjectId()}/download', headers=headers).status_code == 404


def test_feedback_visibility(client, db, login):
    student, headers = login('student')
    _, other_headers = login('student')
    _, teacher_headers = login('teacher')

    created = client.post('/api/feedback', json={'category': 'Hostel', 'description': 'Water cooler broken'}, headers=headers)
    client.post('/api/feedback', json={'category': 'Canteen', 'description': 'Too salty'}, headers=other_headers)

    assert created.status_code == 201
    assert created.json()['data']['status'] == 'submitted'
    assert created.json()['data']['submitted_by'] == student.id

    mine = client.get('/api/feedback', headers=headers).json()['data']
    assert [f['category'] for f in mine] == ['Hostel']
    assert len(client.get('/api/feedback', headers=teacher_headers).json()['data']) == 2


def test_feedback_requires_fields(client, db, login):
    _, headers = login('student')

    response = client.post('/api/feedback', json={'category': 'Hostel'}, headers=headers)

    assert response.status_code == 400
    assert 'description' in response.json()['message']
    assert db[collection_name(Feedback)].count_documents({}) == 0


# -------------------- Profile & dashboard -------------------- #

def test_me_includes_joined_clubs(client, login):
    _, admin_headers = login('admin')
    student, headers = login('student', name='Priya')
    club_id = client.post('/api/clubs', json={'name': 'Music', 'description': 'Band', 'category': 'Arts'},
                          headers=admin_headers).json()['data']['id']
    client.post(f'/api/student/clubs/{club_id}/join', headers=headers)

    me = client.get('/api/user/me', headers=headers).json()['data']

    assert me['id'] == student.id
    assert me['name'] == 'Priya'
    assert me['role_details']['joined_clubs'] == [{'id': club_id, 'name': 'Music', 'category': 'Arts'}]


def test_student_dashboard(client, db, login):
    _, admin_headers = login('admin')
    _, headers = login('student')
    client.post('/api/events', json={'title': 'Past', 'description': 'd', 'location': 'x',
                                     'date': (utcnow() - timedelta(days=1)).isoformat()}, headers=admin_headers)
    client.post('/api/events', json={'title': 'Next', 'description': 'd', 'location': 'x', 'date': FUTURE},
                headers=admin_headers)
    client.post('/api/polls', json={'question': 'Q?', 'options': ['a', 'b'], 'end_date': FUTURE}, headers=headers)
    club_id = client.post('/api/clubs', json={'name': 'Art', 'description': 'Paint', 'category': 'Arts'},
                          headers=admin_headers).json()['data']['id']
    client.post(f'/api/student/clubs/{club_id}/join', headers=headers)

    response = client.get('/api/student/dashboard', headers=headers)

    assert response.json()['message'] == 'Student dashboard summary'
    assert response.json()['data'] == {
        'joined_clubs': 1,
        'active_events': 1,
        'available_resources': 0,
        'open_polls': 1,
    }

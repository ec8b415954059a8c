import pytest

from qr_checkin import create_app
from qr_checkin.modules.attendance_store import LAYOUT_PARTITIONED, LAYOUT_PER_EVENT
from qr_checkin.modules.auth_manager import AuthManager

ADMIN_EMAIL = 'admin@example.com'
ADMIN_PASSWORD = 'admin-pass'


@pytest.fixture(params=[LAYOUT_PARTITIONED, LAYOUT_PER_EVENT])
def layout(request):
    return request.param


@pytest.fixture
def app(tmp_path, layout):
    app = create_app('testing', overrides={
        'DATABASE_PATH': tmp_path / 'checkin.db',
        'ATTENDANCE_LAYOUT': layout
    })
    yield app
    app.extensions['qr_checkin']['db'].close_all_connections()


@pytest.fixture
def services(app):
    return app.extensions['qr_checkin']


@pytest.fixture
def db(services):
    return services['db']


@pytest.fixture
def store(services):
    return services['attendance_store']


@pytest.fixture
def codec(services):
    return services['qr_codec']


@pytest.fixture
def events(services):
    return services['event_manager']


@pytest.fixture
def registrations(services):
    return services['registration_manager']


@pytest.fixture
def checkins(services):
    return services['checkin_manager']


@pytest.fixture
def outbox(services):
    return services['notification_system'].outbox


@pytest.fixture
def admin(services):
    result = services['auth_manager'].create_profile(
        'Ada Admin', ADMIN_EMAIL, ADMIN_PASSWORD, role=AuthManager.ROLE_ADMIN
    )
    return result['profile']


@pytest.fixture
def student(services):
    result = services['auth_manager'].create_profile('Sam Student', 'sam@example.com', 'student-pass')
    return result['profile']


@pytest.fixture
def event(events, admin):
    result = events.create_event(
        title='Tech Talk 2024',
        location='Main Hall',
        event_date='2024-05-01',
        event_time='18:00',
        created_by=admin,
        event_id='abc123'
    )
    return result['event']


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_client(client, admin):
    response = client.post('/login', json={'email': ADMIN_EMAIL, 'password': ADMIN_PASSWORD})
    assert response.status_code == 200
    return client

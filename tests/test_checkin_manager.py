import pytest

from qr_checkin.modules.checkin_manager import CheckinStatus
from qr_checkin.modules.errors import DecodeError, NotFoundError


@pytest.fixture
def registration(registrations, event):
    return registrations.register(event['id'], 'Ada', 'ada@x.com')


def test_resolve_by_registration_id(checkins, event, registration):
    found_event, row = checkins.resolve_by_registration_id(registration.registration_id)
    assert found_event['id'] == event['id']
    assert row['email'] == 'ada@x.com'


def test_resolve_unknown_id(checkins, event, registration):
    with pytest.raises(NotFoundError):
        checkins.resolve_by_registration_id('no-such-registration')
    with pytest.raises(NotFoundError):
        checkins.resolve_by_registration_id('')


def test_resolve_by_token(checkins, event, registration):
    found_event, row = checkins.resolve_by_token(registration.token)
    assert found_event['id'] == event['id']
    assert row['id'] == registration.registration_id


def test_resolve_by_malformed_token(checkins, registration):
    with pytest.raises(DecodeError):
        checkins.resolve_by_token('not-base64!!')


def test_render_token_image(checkins, registration):
    png = checkins.render_token_image(registration.registration_id)
    assert png[:8] == b'\x89PNG\r\n\x1a\n'


def test_check_in_is_monotonic(checkins, registration):
    first = checkins.mark_checked_in(registration.registration_id)
    assert first.status == CheckinStatus.CHECKED_IN
    assert first.registration['checked_in'] is True
    assert first.check_in_time

    second = checkins.mark_checked_in(registration.registration_id)
    assert second.status == CheckinStatus.ALREADY_CHECKED_IN
    assert second.check_in_time == first.check_in_time


def test_lost_race_reports_already_checked_in(checkins, store, event, registration):
    _, stale = checkins.resolve_by_registration_id(registration.registration_id)
    store.mark_checked_in(event, registration.registration_id, when='2024-05-01T18:00:00+00:00')

    result = checkins._check_in(event, stale)
    assert result.status == CheckinStatus.ALREADY_CHECKED_IN
    assert result.check_in_time == '2024-05-01T18:00:00+00:00'


def test_check_in_by_token(checkins, registration):
    result = checkins.check_in_by_token(registration.token)
    assert result.status == CheckinStatus.CHECKED_IN
    assert result.registration['id'] == registration.registration_id


def test_deleted_event_registrations_are_gone(checkins, events, admin, event, registration):
    assert events.delete_event(event['id'], deleted_by=admin)['success']

    with pytest.raises(NotFoundError):
        checkins.resolve_by_registration_id(registration.registration_id)
    with pytest.raises(NotFoundError):
        checkins.render_token_image(registration.registration_id)


def test_event_attendance_totals(checkins, registrations, event, registration):
    registrations.register(event['id'], 'Bob', 'bob@x.com')
    checkins.mark_checked_in(registration.registration_id)

    attendance = checkins.get_event_attendance(event['id'])
    assert attendance['total_registered'] == 2
    assert attendance['total_checked_in'] == 1


def test_event_attendance_unknown_event(checkins):
    with pytest.raises(NotFoundError):
        checkins.get_event_attendance('missing')

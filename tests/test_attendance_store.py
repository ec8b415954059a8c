import pytest

from qr_checkin.modules.attendance_store import (DEFAULT_GRANTS, LAYOUT_PER_EVENT,
                                                 PARTITIONED_TABLE, AttendanceStore,
                                                 sanitize_title, table_name_for)
from qr_checkin.modules.errors import (ConflictError, DeletionError, NotFoundError,
                                       ProvisioningError)


@pytest.fixture
def second_event(events, admin):
    return events.create_event(
        title='Career Fair', location='Gym', event_date='2024-06-01',
        event_time='10:00', created_by=admin, event_id='def456'
    )['event']


def test_table_name_for_sanitizes_title():
    assert table_name_for({'id': 'E1', 'title': 'Fall Kickoff!'}) == 'event_fall_kickoff__E1'


@pytest.mark.parametrize('title, expected', [
    ('Tech Talk 2024', 'tech_talk_2024'),
    ('ÉCOLE', '_cole'),
    ('', 'event'),
    (None, 'event'),
])
def test_sanitize_title(title, expected):
    assert sanitize_title(title) == expected


def test_unknown_layout_is_rejected(db):
    with pytest.raises(ValueError):
        AttendanceStore(db, layout='sharded')


def test_storage_table_depends_on_layout(store, event):
    expected = table_name_for(event) if store.layout == LAYOUT_PER_EVENT else PARTITIONED_TABLE
    assert store.storage_table_for(event) == expected


def test_ensure_table_is_idempotent(store, event):
    first = store.ensure_table(event)
    second = store.ensure_table(event)
    assert first == second
    assert store.table_exists(event)


def test_ensure_table_records_grants(store, event):
    store.ensure_table(event)
    assert store.get_grants(event) == DEFAULT_GRANTS


def test_ensure_table_wraps_failures(store, db, monkeypatch):
    def broken(name):
        raise RuntimeError('disk full')
    monkeypatch.setattr(db, 'table_exists', broken)

    with pytest.raises(ProvisioningError):
        store.ensure_table({'id': 'E1', 'title': 'Anything'})


def test_reads_without_table_are_empty(store, event):
    assert not store.table_exists(event)
    assert store.is_registered(event, 'ada@x.com') is False
    assert store.list_registrations(event) == []
    assert store.count_registrations(event) == 0
    assert store.get_registration(event, 'missing') is None


def test_insert_without_table_is_provisioning_error(store, event):
    with pytest.raises(ProvisioningError):
        store.insert_registration(event, 'Ada', 'ada@x.com', 'token-1')


def test_insert_and_read_back(store, event):
    store.ensure_table(event)
    registration_id = store.insert_registration(event, 'Ada', 'ada@x.com', 'token-1')

    row = store.get_registration(event, registration_id)
    assert row['name'] == 'Ada'
    assert row['email'] == 'ada@x.com'
    assert row['token'] == 'token-1'
    assert row['checked_in'] is False
    assert row['check_in_time'] is None
    assert store.is_registered(event, 'ada@x.com')
    assert store.get_registration_by_email(event, 'ada@x.com')['id'] == registration_id


def test_duplicate_email_is_conflict(store, event):
    store.ensure_table(event)
    store.insert_registration(event, 'Ada', 'ada@x.com', 'token-1')

    with pytest.raises(ConflictError):
        store.insert_registration(event, 'Ada Again', 'ada@x.com', 'token-2')
    assert store.count_registrations(event) == 1


def test_same_email_in_two_events(store, event, second_event):
    store.ensure_table(event)
    store.ensure_table(second_event)
    store.insert_registration(event, 'Ada', 'ada@x.com', 'token-1')
    store.insert_registration(second_event, 'Ada', 'ada@x.com', 'token-2')

    assert store.count_registrations(event) == 1
    assert store.count_registrations(second_event) == 1


def test_list_registrations_in_insert_order(store, event):
    store.ensure_table(event)
    for i in range(3):
        store.insert_registration(event, f'Person {i}', f'p{i}@x.com', f'token-{i}')
    assert [row['email'] for row in store.list_registrations(event)] == ['p0@x.com', 'p1@x.com', 'p2@x.com']


def test_find_by_token_follows_candidate_order(store, event, second_event):
    store.ensure_table(event)
    store.ensure_table(second_event)
    store.insert_registration(event, 'Ada', 'ada@x.com', 'shared-token')
    store.insert_registration(second_event, 'Ada', 'ada@x.com', 'shared-token')

    found_event, _ = store.find_by_token([second_event, event], 'shared-token')
    assert found_event['id'] == second_event['id']

    found_event, _ = store.find_by_token([event, second_event], 'shared-token')
    assert found_event['id'] == event['id']


def test_find_by_registration_id(store, event, second_event):
    store.ensure_table(second_event)
    registration_id = store.insert_registration(second_event, 'Ada', 'ada@x.com', 'token-1')

    found_event, row = store.find_by_registration_id([event, second_event], registration_id)
    assert found_event['id'] == second_event['id']
    assert row['id'] == registration_id


def test_find_missing_registration(store, event):
    with pytest.raises(NotFoundError):
        store.find_by_registration_id([event], 'nope')
    with pytest.raises(NotFoundError):
        store.find_by_token([], 'token')


def test_mark_checked_in_only_once(store, event):
    store.ensure_table(event)
    registration_id = store.insert_registration(event, 'Ada', 'ada@x.com', 'token-1')

    assert store.mark_checked_in(event, registration_id, when='2024-05-01T18:05:00+00:00') is True
    assert store.mark_checked_in(event, registration_id, when='2024-05-01T19:00:00+00:00') is False

    row = store.get_registration(event, registration_id)
    assert row['checked_in'] is True
    assert row['check_in_time'] == '2024-05-01T18:05:00+00:00'


def test_mark_checked_in_without_table(store, event):
    assert store.mark_checked_in(event, 'missing') is False


def test_delete_all_registrations(store, event):
    store.ensure_table(event)
    store.insert_registration(event, 'Ada', 'ada@x.com', 'token-1')
    store.insert_registration(event, 'Bob', 'bob@x.com', 'token-2')

    assert store.delete_all_registrations(event) == 2
    assert store.list_registrations(event) == []


def test_delete_event_removes_rows_then_event(store, events, event, second_event):
    store.ensure_table(event)
    store.ensure_table(second_event)
    store.insert_registration(event, 'Ada', 'ada@x.com', 'token-1')
    store.insert_registration(second_event, 'Bob', 'bob@x.com', 'token-2')

    assert store.delete_event(event) == 1
    assert events.get_event(event['id']) is None
    assert store.count_registrations(event) == 0
    assert store.count_registrations(second_event) == 1

    if store.layout == LAYOUT_PER_EVENT:
        assert not store.table_exists(event)
        assert store.get_grants(event) == {}


def test_delete_event_without_registrations(store, events, event):
    assert store.delete_event(event) == 0
    assert events.get_event(event['id']) is None


def test_delete_missing_event(store):
    with pytest.raises(NotFoundError):
        store.delete_event({'id': 'ghost', 'title': 'Ghost'})


def test_failed_event_phase_rolls_back_registrations(store, db, events, event):
    store.ensure_table(event)
    store.insert_registration(event, 'Ada', 'ada@x.com', 'token-1')
    db.execute_update("""
        CREATE TRIGGER block_event_delete BEFORE DELETE ON events
        BEGIN SELECT RAISE(ABORT, 'event deletion blocked'); END
    """)

    with pytest.raises(DeletionError) as excinfo:
        store.delete_event(event)

    assert excinfo.value.phase == 'event'
    assert events.get_event(event['id']) is not None
    assert store.count_registrations(event) == 1

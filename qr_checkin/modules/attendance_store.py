"""
Attendance Store Module - QR Event Check-in System

This module owns the attendance relation: where registrations for an event
live, how that storage gets provisioned, and every read and write against it.
Two layouts are supported. The partitioned layout keeps all registrations in a
single ``attendance`` table keyed by ``event_id``; the per-event layout creates
one ``event_<title>_<id>`` table per event for compatibility with deployments
that already use that scheme. Every statement filters on ``event_id`` in both
layouts, so the CRUD code is shared.

Features:
- Deterministic attendance table naming
- On-demand, race-safe table provisioning with recorded grants
- Registration insert with duplicate detection
- Token and registration-id lookups across events
- Check-in state transition
- Two-phase event deletion in a single transaction
"""

import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Any, Optional, Tuple, Iterable

from .errors import (ConflictError, DeletionError, NotFoundError,
                     PersistError, ProvisioningError)


LAYOUT_PARTITIONED = 'partitioned'
LAYOUT_PER_EVENT = 'per_event'
PARTITIONED_TABLE = 'attendance'

# Privileges recorded for every attendance table
DEFAULT_GRANTS = {
    'admin': 'ALL',
    'authenticated': 'SELECT, INSERT, UPDATE, DELETE',
    'anon': 'SELECT'
}

_UNSAFE_CHARS = re.compile(r'[^a-z0-9]')


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def sanitize_title(title: str) -> str:
    """Lowercase a title and replace everything outside [a-z0-9] with '_'."""
    sanitized = _UNSAFE_CHARS.sub('_', (title or '').lower())
    return sanitized or 'event'


def table_name_for(event: Dict[str, Any]) -> str:
    """
    Derive the per-event attendance table name.

    Args:
        event (dict): Event with ``id`` and ``title``

    Returns:
        str: ``event_<sanitized title>_<event id>``
    """
    return f"event_{sanitize_title(event['title'])}_{event['id']}"


class ProvisioningCapability:
    """
    The only code path allowed to issue DDL and grant writes. Every action is
    written to the ``qr_checkin.audit`` logger.
    """

    def __init__(self, database_manager, grants: Optional[Dict[str, str]] = None):
        self.db = database_manager
        self.grants = grants or DEFAULT_GRANTS
        self.audit = logging.getLogger('qr_checkin.audit')

    def create_attendance_table(self, table_name: str, unique_columns: str) -> None:
        """
        Create an attendance table if absent and record its grants.

        Args:
            table_name (str): Table to create
            unique_columns (str): Column list for the uniqueness constraint
        """
        quoted = self.db.quote_identifier(table_name)
        index_name = self.db.quote_identifier(f"idx_{table_name}_event")

        with self.db.transaction() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {quoted} (
                    id TEXT PRIMARY KEY,
                    event_id TEXT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL,
                    token TEXT NOT NULL,
                    registered_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    checked_in BOOLEAN NOT NULL DEFAULT 0,
                    check_in_time TIMESTAMP,
                    UNIQUE({unique_columns})
                )
            """)
            cursor.execute(f"CREATE INDEX IF NOT EXISTS {index_name} ON {quoted}(event_id)")

            for role, privileges in self.grants.items():
                cursor.execute(
                    """INSERT OR IGNORE INTO table_grants (table_name, role, privileges)
                       VALUES (?, ?, ?)""",
                    (table_name, role, privileges)
                )

        self.audit.info(f"Provisioned attendance table {table_name} with grants for {', '.join(self.grants)}")

    def drop_attendance_table(self, conn, table_name: str) -> None:
        """Drop a per-event table and its grant rows inside the caller's transaction."""
        cursor = conn.cursor()
        cursor.execute(f"DROP TABLE IF EXISTS {self.db.quote_identifier(table_name)}")
        cursor.execute("DELETE FROM table_grants WHERE table_name = ?", (table_name,))
        self.audit.info(f"Dropped attendance table {table_name}")


class AttendanceStore:
    """
    Gateway for registration rows. Callers pass event dicts as returned by
    the event manager; the store decides which table holds their rows.
    """

    COLUMNS = 'id, event_id, name, email, token, registered_at, checked_in, check_in_time'

    def __init__(self, database_manager, layout: str = LAYOUT_PARTITIONED):
        """
        Initialize the attendance store.

        Args:
            database_manager: Database manager instance
            layout (str): 'partitioned' or 'per_event'
        """
        if layout not in (LAYOUT_PARTITIONED, LAYOUT_PER_EVENT):
            raise ValueError(f"Unknown attendance layout: {layout}")

        self.db = database_manager
        self.layout = layout
        self.logger = logging.getLogger(__name__)
        self._provisioner = ProvisioningCapability(database_manager)

    # Table lifecycle

    def table_name_for(self, event: Dict[str, Any]) -> str:
        return table_name_for(event)

    def storage_table_for(self, event: Dict[str, Any]) -> str:
        """Physical table holding the event's rows under the current layout."""
        if self.layout == LAYOUT_PER_EVENT:
            return table_name_for(event)
        return PARTITIONED_TABLE

    def _quoted(self, event: Dict[str, Any]) -> str:
        return self.db.quote_identifier(self.storage_table_for(event))

    def table_exists(self, event: Dict[str, Any]) -> bool:
        return self.db.table_exists(self.storage_table_for(event))

    def ensure_table(self, event: Dict[str, Any]) -> str:
        """
        Make sure the event's attendance table exists. Safe to call any number
        of times, including concurrently for a brand-new event.

        Returns:
            str: Name of the table holding the event's registrations

        Raises:
            ProvisioningError: if the table could not be created
        """
        table_name = self.storage_table_for(event)
        try:
            if self.db.table_exists(table_name):
                return table_name

            unique_columns = 'email' if self.layout == LAYOUT_PER_EVENT else 'event_id, email'
            self._provisioner.create_attendance_table(table_name, unique_columns)
            self.logger.info(f"Attendance table ready for event {event['id']}: {table_name}")
            return table_name

        except Exception as e:
            self.logger.error(f"Provisioning failed for event {event.get('id')}: {str(e)}")
            raise ProvisioningError('Could not create attendance tracking table') from e

    def get_grants(self, event: Dict[str, Any]) -> Dict[str, str]:
        rows = self.db.execute_query(
            "SELECT role, privileges FROM table_grants WHERE table_name = ?",
            (self.storage_table_for(event),)
        )
        return {row['role']: row['privileges'] for row in rows}

    # Registration rows

    @staticmethod
    def _row_to_registration(row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if row is None:
            return None
        row['checked_in'] = bool(row['checked_in'])
        return row

    def insert_registration(self, event: Dict[str, Any], name: str, email: str,
                            token: str) -> str:
        """
        Insert a registration row.

        Returns:
            str: Generated registration ID

        Raises:
            ConflictError: email already registered for this event
            ProvisioningError: attendance table does not exist
            PersistError: any other storage failure
        """
        registration_id = str(uuid.uuid4())
        try:
            self.db.execute_update(
                f"""INSERT INTO {self._quoted(event)}
                        (id, event_id, name, email, token, registered_at, checked_in)
                    VALUES (?, ?, ?, ?, ?, ?, 0)""",
                (registration_id, event['id'], name, email, token, utc_now())
            )
        except Exception as e:
            if self.db.is_unique_violation(e):
                self.logger.info(f"Duplicate registration for {email} in event {event['id']}")
                raise ConflictError(f"{email} is already registered for this event") from e
            if self.db.is_missing_table(e):
                raise ProvisioningError('Attendance table does not exist') from e
            self.logger.error(f"Registration insert failed for event {event['id']}: {str(e)}")
            raise PersistError('Failed to save registration') from e

        self.logger.info(f"Registration {registration_id} stored for event {event['id']}")
        return registration_id

    def _select(self, event: Dict[str, Any], where: str, params: Tuple,
                fetch_all: bool = False):
        """Run a SELECT against the event's rows; a missing table reads as empty."""
        try:
            return self.db.execute_query(
                f"SELECT {self.COLUMNS} FROM {self._quoted(event)} WHERE event_id = ? {where}",
                (event['id'],) + params,
                fetch_all=fetch_all
            )
        except Exception as e:
            if self.db.is_missing_table(e):
                return [] if fetch_all else None
            raise

    def is_registered(self, event: Dict[str, Any], email: str) -> bool:
        """No attendance table means nobody has registered yet."""
        return self._select(event, "AND email = ? LIMIT 1", (email,)) is not None

    def get_registration(self, event: Dict[str, Any], registration_id: str) -> Optional[Dict[str, Any]]:
        return self._row_to_registration(
            self._select(event, "AND id = ?", (registration_id,))
        )

    def get_registration_by_email(self, event: Dict[str, Any], email: str) -> Optional[Dict[str, Any]]:
        return self._row_to_registration(
            self._select(event, "AND email = ?", (email,))
        )

    def list_registrations(self, event: Dict[str, Any]) -> List[Dict[str, Any]]:
        rows = self._select(event, "ORDER BY registered_at, rowid", (), fetch_all=True)
        return [self._row_to_registration(row) for row in rows]

    def count_registrations(self, event: Dict[str, Any]) -> int:
        try:
            row = self.db.execute_query(
                f"SELECT COUNT(*) AS count FROM {self._quoted(event)} WHERE event_id = ?",
                (event['id'],),
                fetch_all=False
            )
        except Exception as e:
            if self.db.is_missing_table(e):
                return 0
            raise
        return row['count']

    def _scan(self, events: Iterable[Dict[str, Any]], where: str,
              value: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        for event in events:
            row = self._select(event, where, (value,))
            if row is not None:
                return event, self._row_to_registration(row)
        raise NotFoundError('Registration not found')

    def find_by_token(self, events: Iterable[Dict[str, Any]],
                      token: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """
        Scan the candidate events, in the order given, for a row holding ``token``.

        Raises:
            NotFoundError: no candidate holds the token
        """
        return self._scan(events, "AND token = ?", token)

    def find_by_registration_id(self, events: Iterable[Dict[str, Any]],
                                registration_id: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Same scan as ``find_by_token`` keyed on the registration ID."""
        return self._scan(events, "AND id = ?", registration_id)

    def mark_checked_in(self, event: Dict[str, Any], registration_id: str,
                        when: Optional[str] = None) -> bool:
        """
        Flip checked_in from false to true.

        Returns:
            bool: True if this call made the transition, False if the row was
            already checked in or does not exist
        """
        try:
            affected = self.db.execute_update(
                f"""UPDATE {self._quoted(event)}
                    SET checked_in = 1, check_in_time = ?
                    WHERE event_id = ? AND id = ? AND checked_in = 0""",
                (when or utc_now(), event['id'], registration_id)
            )
        except Exception as e:
            if self.db.is_missing_table(e):
                return False
            self.logger.error(f"Check-in update failed for {registration_id}: {str(e)}")
            raise PersistError('Failed to record check-in') from e
        return affected > 0

    # Deletion

    def delete_all_registrations(self, event: Dict[str, Any]) -> int:
        """
        Delete every registration row for the event.

        Raises:
            DeletionError: phase 'registrations'
        """
        try:
            return self.db.execute_update(
                f"DELETE FROM {self._quoted(event)} WHERE event_id = ?",
                (event['id'],)
            )
        except Exception as e:
            if self.db.is_missing_table(e):
                return 0
            self.logger.error(f"Failed to delete registrations for event {event['id']}: {str(e)}")
            raise DeletionError('registrations', 'Failed to delete event attendance records') from e

    def delete_event(self, event: Dict[str, Any]) -> int:
        """
        Delete an event after its registrations, all in one transaction.
        Nothing is committed unless every phase succeeds.

        Returns:
            int: Number of registration rows removed

        Raises:
            DeletionError: ``phase`` is 'registrations', 'event' or 'table'
        """
        phase = 'registrations'
        removed = 0
        try:
            with self.db.transaction() as conn:
                cursor = conn.cursor()
                storage_table = self.storage_table_for(event)
                has_table = self.db.table_exists(storage_table)

                if has_table:
                    cursor.execute(
                        f"DELETE FROM {self._quoted(event)} WHERE event_id = ?",
                        (event['id'],)
                    )
                    removed = cursor.rowcount

                phase = 'event'
                cursor.execute("DELETE FROM events WHERE id = ?", (event['id'],))
                if cursor.rowcount == 0:
                    raise NotFoundError(f"Event {event['id']} not found")

                if has_table and self.layout == LAYOUT_PER_EVENT:
                    phase = 'table'
                    self._provisioner.drop_attendance_table(conn, storage_table)

        except NotFoundError:
            raise
        except Exception as e:
            self.logger.error(f"Event {event['id']} deletion failed during {phase} phase: {str(e)}")
            raise DeletionError(phase) from e

        self.logger.info(f"Event {event['id']} deleted with {removed} registrations")
        return removed

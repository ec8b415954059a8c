"""
Event Manager Module - QR Event Check-in System

Administrative CRUD for events. Creation can provision the event's attendance
table straight away; deletion is delegated to the attendance store so that
registrations always go before the event row.
"""

from datetime import datetime, timezone
from typing import Dict, List, Any, Optional
import logging
import uuid

from .attendance_store import LAYOUT_PER_EVENT
from .errors import DeletionError, NotFoundError, ProvisioningError


class EventManager:
    """
    Event administration. Mutating calls take the acting ``Profile`` and
    refuse anyone who is not an admin.
    """

    EDITABLE_FIELDS = ('title', 'description', 'location', 'event_date', 'event_time')
    REQUIRED_FIELDS = ('title', 'location', 'event_date', 'event_time')
    # The title is carried in every registration token
    MAX_TITLE_LENGTH = 200

    def __init__(self, database_manager, attendance_store, provision_on_create: bool = False):
        """
        Initialize the event manager.

        Args:
            database_manager: Database manager instance
            attendance_store: Attendance store used for provisioning and deletion
            provision_on_create (bool): Create the attendance table with the event
        """
        self.db = database_manager
        self.store = attendance_store
        self.provision_on_create = provision_on_create
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _is_admin(profile) -> bool:
        return profile is not None and getattr(profile, 'is_admin', False)

    @staticmethod
    def _validate_schedule(event_date: str, event_time: str) -> Optional[str]:
        try:
            datetime.strptime(event_date, '%Y-%m-%d')
        except (TypeError, ValueError):
            return 'Event date must be in YYYY-MM-DD format'

        for fmt in ('%H:%M', '%H:%M:%S'):
            try:
                datetime.strptime(event_time, fmt)
                return None
            except (TypeError, ValueError):
                continue
        return 'Event time must be in HH:MM or HH:MM:SS format'

    def create_event(self, title: str, location: str, event_date: str, event_time: str,
                     created_by=None, description: Optional[str] = None,
                     event_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a new event.

        Args:
            title (str): Event title, also used in the attendance table name
            location (str): Venue
            event_date (str): YYYY-MM-DD
            event_time (str): HH:MM or HH:MM:SS
            created_by (Profile): Admin creating the event
            description (str): Optional description
            event_id (str): Explicit ID, generated when omitted

        Returns:
            Dict[str, Any]: Creation result with the stored event
        """
        if not self._is_admin(created_by):
            return {'success': False, 'error': 'Admin privileges required', 'error_type': 'forbidden'}

        fields = {
            'title': (title or '').strip(),
            'location': (location or '').strip(),
            'event_date': (event_date or '').strip(),
            'event_time': (event_time or '').strip()
        }
        missing = [name for name in self.REQUIRED_FIELDS if not fields[name]]
        if missing:
            return {
                'success': False,
                'error': f"Missing required fields: {', '.join(missing)}",
                'error_type': 'invalid_input'
            }

        if len(fields['title']) > self.MAX_TITLE_LENGTH:
            return {
                'success': False,
                'error': f'Title must be at most {self.MAX_TITLE_LENGTH} characters',
                'error_type': 'invalid_input'
            }

        schedule_error = self._validate_schedule(fields['event_date'], fields['event_time'])
        if schedule_error:
            return {'success': False, 'error': schedule_error, 'error_type': 'invalid_input'}

        event = {
            'id': event_id or str(uuid.uuid4()),
            'description': (description or '').strip() or None,
            'created_at': datetime.now(timezone.utc).isoformat(),
            'created_by': created_by.id,
            **fields
        }

        try:
            self.db.execute_update(
                """INSERT INTO events (id, title, description, location, event_date,
                                       event_time, created_at, created_by)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (event['id'], event['title'], event['description'], event['location'],
                 event['event_date'], event['event_time'], event['created_at'], event['created_by'])
            )
        except Exception as e:
            if self.db.is_unique_violation(e):
                return {
                    'success': False,
                    'error': 'An event with this ID already exists',
                    'error_type': 'conflict'
                }
            self.logger.error(f"Event creation failed for {event['title']}: {str(e)}")
            return {'success': False, 'error': 'Failed to create event', 'error_type': 'system_error'}

        self.logger.info(f"Event created: {event['title']} (ID: {event['id']})")

        if self.provision_on_create:
            try:
                self.store.ensure_table(event)
            except ProvisioningError as e:
                # Registration provisions on demand, so the event stays usable
                self.logger.warning(f"Attendance table not created for event {event['id']}: {e}")

        return {'success': True, 'event': event}

    def get_event(self, event_id: str) -> Optional[Dict[str, Any]]:
        if not event_id:
            return None
        return self.db.execute_query(
            "SELECT * FROM events WHERE id = ?",
            (event_id,),
            fetch_all=False
        )

    def get_all_events(self) -> List[Dict[str, Any]]:
        """All events in calendar order."""
        return self.db.execute_query(
            "SELECT * FROM events ORDER BY event_date ASC, event_time ASC, rowid ASC"
        )

    def get_events_newest_first(self) -> List[Dict[str, Any]]:
        """All events, most recently created first."""
        return self.db.execute_query(
            "SELECT * FROM events ORDER BY created_at DESC, rowid DESC"
        )

    def get_event_count(self) -> int:
        return self.db.execute_query(
            "SELECT COUNT(*) AS count FROM events",
            fetch_all=False
        )['count']

    def update_event(self, event_id: str, event_data: Dict[str, Any],
                     updated_by=None) -> Dict[str, Any]:
        """
        Update event details. The title cannot change once the event has
        attendance storage, because the title is part of the table name.

        Returns:
            Dict[str, Any]: Update result with the stored event
        """
        if not self._is_admin(updated_by):
            return {'success': False, 'error': 'Admin privileges required', 'error_type': 'forbidden'}

        event = self.get_event(event_id)
        if not event:
            return {'success': False, 'error': 'Event not found', 'error_type': 'not_found'}

        updates = {k: v for k, v in (event_data or {}).items() if k in self.EDITABLE_FIELDS}
        if not updates:
            return {'success': False, 'error': 'No valid fields to update', 'error_type': 'invalid_input'}

        for name in self.REQUIRED_FIELDS:
            if name in updates and not str(updates[name] or '').strip():
                return {'success': False, 'error': f'{name} cannot be empty', 'error_type': 'invalid_input'}

        if len(str(updates.get('title', ''))) > self.MAX_TITLE_LENGTH:
            return {
                'success': False,
                'error': f'Title must be at most {self.MAX_TITLE_LENGTH} characters',
                'error_type': 'invalid_input'
            }

        merged = {**event, **updates}
        schedule_error = self._validate_schedule(merged['event_date'], merged['event_time'])
        if schedule_error:
            return {'success': False, 'error': schedule_error, 'error_type': 'invalid_input'}

        if 'title' in updates and updates['title'] != event['title']:
            has_storage = (self.store.table_exists(event) if self.store.layout == LAYOUT_PER_EVENT
                           else self.store.count_registrations(event) > 0)
            if has_storage:
                return {
                    'success': False,
                    'error': 'Event title cannot change after registrations have started',
                    'error_type': 'conflict'
                }

        assignments = ', '.join(f"{name} = ?" for name in updates)
        self.db.execute_update(
            f"UPDATE events SET {assignments} WHERE id = ?",
            tuple(updates.values()) + (event_id,)
        )

        self.logger.info(f"Event {event_id} updated: {', '.join(updates)}")
        return {'success': True, 'event': self.get_event(event_id)}

    def delete_event(self, event_id: str, deleted_by=None) -> Dict[str, Any]:
        """
        Delete an event and every registration it holds.

        Returns:
            Dict[str, Any]: Deletion result; on failure ``phase`` names the
            step that stopped the deletion
        """
        if not self._is_admin(deleted_by):
            return {'success': False, 'error': 'Admin privileges required', 'error_type': 'forbidden'}

        event = self.get_event(event_id)
        if not event:
            return {'success': False, 'error': 'Event not found', 'error_type': 'not_found'}

        try:
            removed = self.store.delete_event(event)
        except NotFoundError:
            return {'success': False, 'error': 'Event not found', 'error_type': 'not_found'}
        except DeletionError as e:
            return {
                'success': False,
                'error': 'Failed to delete event',
                'error_type': 'system_error',
                'phase': e.phase
            }

        self.logger.info(f"Event {event_id} deleted by {deleted_by.id}")
        return {'success': True, 'event_id': event_id, 'registrations_removed': removed}

"""
Check-in Manager Module - QR Event Check-in System

Resolves a registration ID or a scanned token back to the registrant and the
event, serves the registration's QR image and records check-in. Registrations
are not indexed globally, so a lookup by ID walks every event until one of
them holds the row; the cost grows with the number of events.
"""

from dataclasses import dataclass
from typing import Dict, Any, Optional, Tuple
import logging

from .errors import NotFoundError


class CheckinStatus:
    CHECKED_IN = 'checked_in'
    ALREADY_CHECKED_IN = 'already_checked_in'


@dataclass
class CheckinResult:
    """Outcome of a check-in attempt."""
    status: str
    event: Dict[str, Any]
    registration: Dict[str, Any]

    @property
    def check_in_time(self) -> Optional[str]:
        return self.registration.get('check_in_time')


class CheckinManager:
    """
    Registration lookups and check-in marking.
    """

    def __init__(self, event_manager, attendance_store, qr_codec):
        """
        Initialize the check-in manager.

        Args:
            event_manager: Event lookups
            attendance_store: Registration storage
            qr_codec: Token decoder and renderer
        """
        self.events = event_manager
        self.store = attendance_store
        self.codec = qr_codec
        self.logger = logging.getLogger(__name__)

    def resolve_by_registration_id(self, registration_id: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """
        Find the event and registration row for a registration ID.

        Raises:
            NotFoundError: no event holds the registration
        """
        if not registration_id:
            raise NotFoundError('Missing registration ID')
        return self.store.find_by_registration_id(self.events.get_events_newest_first(), registration_id)

    def resolve_by_token(self, token: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """
        Find the registration a scanned token belongs to. The event named in
        the token is searched first.

        Raises:
            DecodeError: the token is malformed
            NotFoundError: no event holds the token
        """
        metadata = self.codec.decode(token)
        candidates = self.events.get_events_newest_first()
        candidates.sort(key=lambda event: event['id'] != metadata.event_id)
        return self.store.find_by_token(candidates, token.strip())

    def render_token_image(self, registration_id: str, **options) -> bytes:
        """
        Render the stored token of a registration as a PNG.

        Raises:
            NotFoundError: the registration does not exist
            RenderError: the stored token could not be rendered
        """
        _, registration = self.resolve_by_registration_id(registration_id)
        return self.codec.render_image(registration['token'], **options)

    def _check_in(self, event: Dict[str, Any], registration: Dict[str, Any]) -> CheckinResult:
        if registration['checked_in']:
            return CheckinResult(CheckinStatus.ALREADY_CHECKED_IN, event, registration)

        if not self.store.mark_checked_in(event, registration['id']):
            # Another scan won the race; report the stored state
            current = self.store.get_registration(event, registration['id'])
            if current is None:
                raise NotFoundError('Registration not found')
            return CheckinResult(CheckinStatus.ALREADY_CHECKED_IN, event, current)

        current = self.store.get_registration(event, registration['id'])
        self.logger.info(f"Registration {registration['id']} checked in for event {event['id']}")
        return CheckinResult(CheckinStatus.CHECKED_IN, event, current)

    def mark_checked_in(self, registration_id: str) -> CheckinResult:
        """
        Check a registration in. A second call reports ALREADY_CHECKED_IN and
        leaves the first check-in time untouched.

        Raises:
            NotFoundError: the registration does not exist
        """
        event, registration = self.resolve_by_registration_id(registration_id)
        return self._check_in(event, registration)

    def check_in_by_token(self, token: str) -> CheckinResult:
        """Check in the registration a scanned token belongs to."""
        event, registration = self.resolve_by_token(token)
        return self._check_in(event, registration)

    def get_event_attendance(self, event_id: str) -> Dict[str, Any]:
        """Registrations of one event with check-in totals."""
        event = self.events.get_event(event_id)
        if not event:
            raise NotFoundError('Event not found')

        registrations = self.store.list_registrations(event)
        checked_in = sum(1 for row in registrations if row['checked_in'])
        return {
            'event': event,
            'registrations': registrations,
            'total_registered': len(registrations),
            'total_checked_in': checked_in
        }

"""
Registration Manager Module - QR Event Check-in System

This module runs the registration use case from request to confirmation
email. A registration walks through validating, provisioning, encoding,
persisting and notifying; each step either advances or ends the attempt with
a typed outcome. Duplicate registrations are an ordinary outcome decided by
the storage engine's uniqueness constraint, and a failed confirmation email
downgrades a successful registration to a warning instead of undoing it.
"""

from typing import Dict, List, Any, Optional
import logging
from dataclasses import dataclass, field

from .errors import (CodecError, ConflictError, PersistError, ProvisioningError,
                     ValidationError)
from .qr_codec import TokenMetadata, utc_timestamp


class RegistrationState:
    VALIDATING = 'validating'
    PROVISIONING = 'provisioning'
    ENCODING = 'encoding'
    PERSISTING = 'persisting'
    NOTIFYING = 'notifying'
    DONE = 'done'
    FAILED = 'failed'


class RegistrationStatus:
    REGISTERED = 'registered'
    REGISTERED_BUT_NOTIFICATION_FAILED = 'registered_but_notification_failed'
    ALREADY_REGISTERED = 'already_registered'
    INVALID_INPUT = 'invalid_input'
    EVENT_NOT_FOUND = 'event_not_found'
    PROVISIONING_FAILED = 'provisioning_failed'
    ENCODING_FAILED = 'encoding_failed'
    PERSIST_FAILED = 'persist_failed'

    SUCCESSFUL = (REGISTERED, REGISTERED_BUT_NOTIFICATION_FAILED)


@dataclass
class RegistrationResult:
    """Outcome of a registration attempt."""
    status: str
    message: str
    state: str = RegistrationState.DONE
    states: List[str] = field(default_factory=list)
    registration_id: Optional[str] = None
    token: Optional[str] = None
    token_image_url: Optional[str] = None
    event: Optional[Dict[str, Any]] = None
    warning: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status in RegistrationStatus.SUCCESSFUL


class RegistrationManager:
    """
    Registers people for events and sends their check-in QR codes.
    """

    # Keeps the token inside a level-H QR symbol
    MAX_NAME_LENGTH = 100
    MAX_EMAIL_LENGTH = 254

    def __init__(self, event_manager, attendance_store, qr_codec, notification_system,
                 email_qr_scale: int = 6):
        """
        Initialize the registration manager.

        Args:
            event_manager: Event lookups
            attendance_store: Registration storage
            qr_codec: Token encoder and renderer
            notification_system: Confirmation email delivery
            email_qr_scale (int): Module scale of the QR image embedded in email
        """
        self.events = event_manager
        self.store = attendance_store
        self.codec = qr_codec
        self.notifier = notification_system
        self.email_qr_scale = email_qr_scale
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def qr_image_path(registration_id: str) -> str:
        return f"/registrations/{registration_id}/qrcode"

    @staticmethod
    def normalize_email(email: Optional[str]) -> str:
        return (email or '').strip().lower()

    def is_registered(self, event_id: str, email: str) -> bool:
        event = self.events.get_event(event_id)
        if not event:
            return False
        return self.store.is_registered(event, self.normalize_email(email))

    def register(self, event_id: str, name: str, email: str, profile=None,
                 base_url: Optional[str] = None) -> RegistrationResult:
        """
        Register a person for an event.

        Args:
            event_id (str): Event to register for
            name (str): Registrant name
            email (str): Registrant email, unique per event
            profile (Profile): Logged-in caller, if any
            base_url (str): Public root used to build the QR image link

        Returns:
            RegistrationResult: typed outcome; ``success`` is True for both
            REGISTERED and REGISTERED_BUT_NOTIFICATION_FAILED
        """
        states = [RegistrationState.VALIDATING]

        def failed(status: str, message: str, **extra) -> RegistrationResult:
            states.append(RegistrationState.FAILED)
            return RegistrationResult(status=status, message=message,
                                      state=RegistrationState.FAILED, states=states, **extra)

        if any(value is not None and not isinstance(value, str) for value in (event_id, name, email)):
            return failed(RegistrationStatus.INVALID_INPUT, 'Event ID, name and email must be text')

        name = (name or '').strip()
        email = self.normalize_email(email)

        if not name or not email:
            return failed(RegistrationStatus.INVALID_INPUT, 'Name and email are required')
        if '@' not in email or email.startswith('@') or email.endswith('@'):
            return failed(RegistrationStatus.INVALID_INPUT, 'Invalid email address')
        if len(name) > self.MAX_NAME_LENGTH or len(email) > self.MAX_EMAIL_LENGTH:
            return failed(RegistrationStatus.INVALID_INPUT,
                          f'Name must be at most {self.MAX_NAME_LENGTH} characters and '
                          f'email at most {self.MAX_EMAIL_LENGTH}')

        event = self.events.get_event(event_id) if event_id else None
        if not event:
            return failed(RegistrationStatus.EVENT_NOT_FOUND, 'Event not found')

        states.append(RegistrationState.PROVISIONING)
        try:
            self.store.ensure_table(event)
        except ProvisioningError as e:
            self.logger.error(f"Registration for event {event['id']} stopped at provisioning: {e.__cause__ or e}")
            return failed(RegistrationStatus.PROVISIONING_FAILED,
                          'Could not create attendance tracking table. Please contact an administrator.',
                          event=event)

        states.append(RegistrationState.ENCODING)
        try:
            token = self.codec.encode(TokenMetadata(
                name=name,
                email=email,
                event_title=event['title'],
                event_id=event['id'],
                timestamp=utc_timestamp()
            ))
            self.codec.check_renderable(token)
        except (CodecError, ValidationError) as e:
            self.logger.error(f"Token encoding failed for event {event['id']}: {str(e)}")
            return failed(RegistrationStatus.ENCODING_FAILED, 'Failed to generate QR code', event=event)

        states.append(RegistrationState.PERSISTING)
        try:
            registration_id = self.store.insert_registration(event, name, email, token)
        except ConflictError:
            return failed(RegistrationStatus.ALREADY_REGISTERED,
                          'You are already registered for this event.', event=event)
        except ProvisioningError as e:
            self.logger.error(f"Attendance table vanished for event {event['id']}: {e.__cause__ or e}")
            return failed(RegistrationStatus.PROVISIONING_FAILED,
                          'Could not create attendance tracking table. Please contact an administrator.',
                          event=event)
        except PersistError as e:
            self.logger.error(f"Registration insert failed for event {event['id']}: {e.__cause__ or e}")
            return failed(RegistrationStatus.PERSIST_FAILED, 'Failed to register for event.', event=event)

        image_path = self.qr_image_path(registration_id)
        token_image_url = f"{base_url.rstrip('/')}{image_path}" if base_url else image_path

        states.append(RegistrationState.NOTIFYING)
        warning = self._notify(event, name, email, token, token_image_url)

        states.append(RegistrationState.DONE)
        status = (RegistrationStatus.REGISTERED_BUT_NOTIFICATION_FAILED if warning
                  else RegistrationStatus.REGISTERED)
        caller = f" by profile {profile.id}" if profile is not None else ''
        self.logger.info(f"Registration {registration_id} completed for event {event['id']}{caller} ({status})")

        return RegistrationResult(
            status=status,
            message='Registration successful!',
            state=RegistrationState.DONE,
            states=states,
            registration_id=registration_id,
            token=token,
            token_image_url=token_image_url,
            event=event,
            warning=warning
        )

    def _notify(self, event: Dict[str, Any], name: str, email: str, token: str,
                token_image_url: str) -> Optional[str]:
        """Send the confirmation; returns a warning message when delivery fails."""
        warning = 'Registration successful, but failed to send confirmation email.'
        try:
            qr_png = self.codec.render_image(token, scale=self.email_qr_scale)
            self.notifier.send_registration_confirmation(
                event, name, email, qr_png=qr_png, qr_url=token_image_url
            ).raise_for_error()
        except Exception as e:
            # The registration row is already committed
            self.logger.error(f"Confirmation email for {email} failed: {str(e)}")
            return warning
        return None

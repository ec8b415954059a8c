"""
Error Types Module - QR Event Check-in System

Exception taxonomy shared by the registration and check-in modules. Managers
catch these at their boundaries and turn them into typed results; anything
that reaches the HTTP layer unhandled is logged and answered with a generic
500 message.
"""

from typing import Optional


class CheckinError(Exception):
    """Base class for every error raised by the check-in modules."""

    code = 'error'

    def __init__(self, message: str = '', code: Optional[str] = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        if code is not None:
            self.code = code


class InputError(CheckinError):
    """Caller supplied bad or missing fields."""

    code = 'invalid_input'


class ValidationError(InputError):
    """Token metadata is missing a required field."""

    code = 'missing_field'

    def __init__(self, field: str):
        super().__init__(f"Missing required field: {field}")
        self.field = field


class ConflictError(CheckinError):
    """Expected duplicate condition reported by the storage engine."""

    DUPLICATE_EMAIL = 'duplicate_email'
    code = DUPLICATE_EMAIL


class ProvisioningError(CheckinError):
    """Attendance table could not be created or granted."""

    code = 'provisioning_failed'


class PersistError(CheckinError):
    """Storage write failed for a reason other than a duplicate."""

    code = 'persist_failed'


class CodecError(CheckinError):
    """Token could not be decoded or rendered."""

    code = 'codec_error'


class DecodeError(CodecError):
    MALFORMED_TOKEN = 'malformed_token'
    MALFORMED_PAYLOAD = 'malformed_payload'

    def __init__(self, code: str, message: str = ''):
        super().__init__(message or code.replace('_', ' ').capitalize(), code)


class RenderError(CodecError):
    code = 'render_failed'


class NotificationError(CheckinError):
    """Best-effort delivery failed."""

    code = 'notification_failed'


class NotFoundError(CheckinError):
    code = 'not_found'


class DeletionError(CheckinError):
    """Event deletion stopped; ``phase`` names the step that failed."""

    code = 'deletion_failed'

    def __init__(self, phase: str, message: str = ''):
        super().__init__(message or f"Deletion failed during {phase} phase")
        self.phase = phase

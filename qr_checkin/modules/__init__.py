# QR Event Check-in System - Modules Package
"""
Core business logic modules for the QR Event Check-in System.

- database_manager: connection, fixed schema and error classification
- qr_codec: token encoding/decoding and QR image rendering
- attendance_store: attendance table provisioning and registration rows
- event_manager: event administration
- auth_manager: profiles and authentication
- registration_manager: registration workflow
- checkin_manager: registration lookup and check-in
- notification_system: confirmation email delivery
- report_generator: attendance exports
"""

__version__ = "1.0.0"

# QR Event Check-in System - App Package
"""
Flask application package for the QR Event Check-in System.
Administrators create events, students register, and every registration gets
a QR code that is emailed to the registrant and scanned at the door.
"""

import logging

import click
from flask import Flask

from .config import get_config, validate_config
from .modules.database_manager import DatabaseManager
from .modules.qr_codec import QRCodec
from .modules.attendance_store import AttendanceStore
from .modules.event_manager import EventManager
from .modules.auth_manager import AuthManager
from .modules.registration_manager import RegistrationManager
from .modules.checkin_manager import CheckinManager
from .modules.notification_system import NotificationSystem
from .modules.report_generator import ReportGenerator

__version__ = "1.0.0"
__description__ = "Event registration and QR code check-in"

__all__ = [
    'create_app',
    'DatabaseManager',
    'QRCodec',
    'AttendanceStore',
    'EventManager',
    'AuthManager',
    'RegistrationManager',
    'CheckinManager',
    'NotificationSystem',
    'ReportGenerator'
]

logger = logging.getLogger(__name__)


def create_app(config_name=None, overrides=None):
    """
    Build the Flask application and wire the check-in components.

    Args:
        config_name (str): Key in ``config.config``; FLASK_ENV when omitted
        overrides (dict): Settings applied on top of the config class
    """
    app = Flask(__name__)
    config_class = get_config(config_name)
    app.config.from_object(config_class)
    if overrides:
        app.config.update(overrides)

    config_class.init_app(app)

    errors = validate_config(app.config)
    if errors:
        for error in errors:
            app.logger.error(f"Configuration error: {error}")
        raise RuntimeError("Configuration validation failed")

    # Initialize system components
    db_manager = DatabaseManager(app.config['DATABASE_PATH'], timeout=app.config['DATABASE_TIMEOUT'])
    qr_codec = QRCodec(
        error_correction=app.config['QR_CODE_ERROR_CORRECT'],
        scale=app.config['QR_CODE_SCALE'],
        margin=app.config['QR_CODE_MARGIN']
    )
    attendance_store = AttendanceStore(db_manager, layout=app.config['ATTENDANCE_LAYOUT'])
    event_manager = EventManager(db_manager, attendance_store,
                                 provision_on_create=app.config['PROVISION_ON_CREATE'])
    notification_system = NotificationSystem.from_config(app.config)

    app.extensions['qr_checkin'] = {
        'db': db_manager,
        'qr_codec': qr_codec,
        'attendance_store': attendance_store,
        'event_manager': event_manager,
        'auth_manager': AuthManager(db_manager, password_min_length=app.config['PASSWORD_MIN_LENGTH']),
        'notification_system': notification_system,
        'registration_manager': RegistrationManager(
            event_manager, attendance_store, qr_codec, notification_system,
            email_qr_scale=app.config['QR_CODE_EMAIL_SCALE']
        ),
        'checkin_manager': CheckinManager(event_manager, attendance_store, qr_codec),
        'report_generator': ReportGenerator(event_manager, attendance_store)
    }

    from . import routes
    app.register_blueprint(routes.bp)

    @app.cli.command('create-admin')
    @click.option('--name', prompt='Full name')
    @click.option('--email', prompt='Email')
    @click.password_option()
    def create_admin(name, email, password):
        """Create an administrator profile."""
        result = app.extensions['qr_checkin']['auth_manager'].create_profile(
            name, email, password, role=AuthManager.ROLE_ADMIN
        )
        if not result['success']:
            raise click.ClickException(result['error'])
        click.echo(f"Admin {result['profile'].email} created")

    logger.info(f"QR Event Check-in initialized ({app.config['ATTENDANCE_LAYOUT']} attendance layout)")
    return app

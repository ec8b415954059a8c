# QR Event Check-in System Configuration

import os
import logging
from pathlib import Path

# Base directory
BASE_DIR = Path(__file__).parent.parent.absolute()


def _env_flag(name, default='False'):
    return os.environ.get(name, default).lower() in ['true', 'on', '1']


class Config:
    """Base configuration class"""

    # Flask Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'qr-checkin-secret-key-change-me'

    # Database Configuration
    DATABASE_PATH = Path(os.environ.get('DATABASE_PATH') or BASE_DIR / 'database' / 'checkin.db')
    DATABASE_TIMEOUT = 30.0

    # Attendance storage layout: 'partitioned' keeps every registration in one
    # table keyed by event_id, 'per_event' creates event_<title>_<id> tables.
    ATTENDANCE_LAYOUT = os.environ.get('ATTENDANCE_LAYOUT') or 'partitioned'
    PROVISION_ON_CREATE = _env_flag('PROVISION_ON_CREATE')

    # QR Code Configuration
    QR_CODE_ERROR_CORRECT = 'H'  # ~30% of the symbol may be damaged
    QR_CODE_SCALE = 8
    QR_CODE_MARGIN = 2
    QR_CODE_EMAIL_SCALE = 6
    QR_CODE_CACHE_SECONDS = 86400

    # Public URL used in confirmation emails
    BASE_URL = os.environ.get('BASE_URL') or 'http://localhost:5000'

    # Email Configuration
    MAIL_SERVER = os.environ.get('MAIL_SERVER') or 'localhost'
    MAIL_PORT = int(os.environ.get('MAIL_PORT') or 587)
    MAIL_USE_TLS = _env_flag('MAIL_USE_TLS', 'true')
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = os.environ.get('MAIL_DEFAULT_SENDER') or 'noreply@checkin.local'
    MAIL_SUPPRESS_SEND = False
    MAIL_TIMEOUT = 10

    # Security Configuration
    PASSWORD_MIN_LENGTH = 6
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
    LOG_FORMAT = '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
    LOG_FILE = BASE_DIR / 'logs' / 'checkin.log'
    LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
    LOG_BACKUP_COUNT = 5

    DEBUG = _env_flag('DEBUG')
    TESTING = False

    @classmethod
    def init_app(cls, app):
        """Initialize application configuration"""
        if str(app.config['DATABASE_PATH']) != ':memory:':
            Path(app.config['DATABASE_PATH']).parent.mkdir(parents=True, exist_ok=True)

        logging.basicConfig(
            level=getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.INFO),
            format=app.config['LOG_FORMAT']
        )


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    DATABASE_PATH = Path(os.environ.get('DATABASE_PATH') or BASE_DIR / 'database' / 'checkin_dev.db')

    LOG_LEVEL = 'DEBUG'

    # MailHog defaults
    MAIL_SERVER = 'localhost'
    MAIL_PORT = 1025
    MAIL_USE_TLS = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = True

    # Disable email for testing
    MAIL_SUPPRESS_SEND = True
    BASE_URL = 'http://testserver'


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False

    SESSION_COOKIE_SECURE = True  # Requires HTTPS
    LOG_LEVEL = 'WARNING'

    @classmethod
    def init_app(cls, app):
        super().init_app(app)

        from logging.handlers import RotatingFileHandler

        # Setup file logging
        if not app.debug:
            cls.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                cls.LOG_FILE,
                maxBytes=cls.LOG_MAX_BYTES,
                backupCount=cls.LOG_BACKUP_COUNT
            )
            file_handler.setFormatter(logging.Formatter(cls.LOG_FORMAT))
            file_handler.setLevel(logging.INFO)
            app.logger.addHandler(file_handler)

            app.logger.setLevel(logging.INFO)
            app.logger.info('QR Event Check-in startup')


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name=None):
    """Get configuration based on environment variable"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'default')
    return config.get(config_name, DevelopmentConfig)


def validate_config(app_config):
    """Validate configuration settings, returning a list of problems."""
    errors = []

    if app_config.get('ATTENDANCE_LAYOUT') not in ('partitioned', 'per_event'):
        errors.append(f"Unknown ATTENDANCE_LAYOUT: {app_config.get('ATTENDANCE_LAYOUT')}")

    if app_config.get('QR_CODE_ERROR_CORRECT', 'H').upper() not in ('L', 'M', 'Q', 'H'):
        errors.append(f"Unknown QR_CODE_ERROR_CORRECT: {app_config.get('QR_CODE_ERROR_CORRECT')}")

    # Check email configuration if sending is enabled
    if not app_config.get('MAIL_SUPPRESS_SEND'):
        if not app_config.get('MAIL_SERVER'):
            errors.append("MAIL_SERVER is required when email sending is enabled")

    return errors

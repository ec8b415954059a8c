"""
Notification System Module - QR Event Check-in System

This module delivers registration confirmations by email. It renders the
confirmation body from a jinja2 template, attaches the QR code as an inline
image and hands the message to an SMTP server. Delivery is fire-and-report:
the caller gets a success flag or an error string, never an exception, and
decides what a failed delivery means.

Features:
- SMTP delivery with optional STARTTLS and login
- HTML templates with autoescaping
- Inline (cid:) QR images
- Suppressed-send outbox for development and tests
"""

import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.mime.image import MIMEImage
from email.utils import make_msgid
from datetime import datetime
from typing import Dict, List, Any, Optional
import logging
from dataclasses import dataclass, field
from jinja2 import Environment
import ssl

from .errors import NotificationError


@dataclass
class NotificationResult:
    """Outcome of a single delivery attempt."""
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None

    def raise_for_error(self) -> None:
        if not self.success:
            raise NotificationError(self.error or 'Delivery failed')


@dataclass
class OutgoingEmail:
    """Message recorded when sending is suppressed."""
    to: str
    subject: str
    html: str
    inline_images: Dict[str, bytes] = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())


class NotificationSystem:
    """
    Email delivery for registration confirmations.
    """

    def __init__(self, smtp_server: str = 'localhost', smtp_port: int = 587,
                 username: Optional[str] = None, password: Optional[str] = None,
                 use_tls: bool = True, sender: str = 'noreply@checkin.local',
                 suppress_send: bool = False, timeout: int = 10,
                 system_name: str = 'QR Event Check-in'):
        """Initialize the notification system with SMTP settings."""
        self.logger = logging.getLogger(__name__)

        self.email_config = {
            'smtp_server': smtp_server,
            'smtp_port': smtp_port,
            'username': username,
            'password': password,
            'use_tls': use_tls,
            'sender': sender,
            'timeout': timeout
        }
        self.suppress_send = suppress_send
        self.system_name = system_name

        # Messages captured while sending is suppressed
        self.outbox: List[OutgoingEmail] = []

        self.jinja_env = Environment(autoescape=True)
        self.templates = {
            'registration_confirmation': self._get_registration_confirmation_template()
        }

        self.logger.info("Notification system initialized")

    @classmethod
    def from_config(cls, app_config) -> 'NotificationSystem':
        return cls(
            smtp_server=app_config.get('MAIL_SERVER'),
            smtp_port=app_config.get('MAIL_PORT', 587),
            username=app_config.get('MAIL_USERNAME'),
            password=app_config.get('MAIL_PASSWORD'),
            use_tls=app_config.get('MAIL_USE_TLS', True),
            sender=app_config.get('MAIL_DEFAULT_SENDER') or 'noreply@checkin.local',
            suppress_send=app_config.get('MAIL_SUPPRESS_SEND', False),
            timeout=app_config.get('MAIL_TIMEOUT', 10)
        )

    def _is_email_configured(self) -> bool:
        """Check if email configuration is complete."""
        return bool(self.email_config['smtp_server'] and self.email_config['sender'])

    def render_template(self, template_name: str, **context) -> str:
        template = self.jinja_env.from_string(self.templates[template_name])
        return template.render(system_name=self.system_name, **context)

    def send_email(self, to: str, subject: str, html: str,
                   inline_images: Optional[Dict[str, bytes]] = None) -> NotificationResult:
        """
        Send an HTML email.

        Args:
            to (str): Recipient address
            subject (str): Subject line
            html (str): HTML body
            inline_images (dict): Content-ID -> PNG bytes, referenced as cid:<id>

        Returns:
            NotificationResult: success flag and error message if any
        """
        inline_images = inline_images or {}

        if self.suppress_send:
            self.outbox.append(OutgoingEmail(to=to, subject=subject, html=html,
                                             inline_images=dict(inline_images)))
            self.logger.info(f"Email to {to} captured (sending suppressed)")
            return NotificationResult(success=True, message_id=f"suppressed-{len(self.outbox)}")

        if not self._is_email_configured():
            self.logger.warning("Email not configured, skipping email notification")
            return NotificationResult(success=False, error='Email delivery is not configured')

        try:
            msg = MIMEMultipart('related')
            msg['From'] = self.email_config['sender']
            msg['To'] = to
            msg['Subject'] = subject
            msg['Message-ID'] = make_msgid()

            msg.attach(MIMEText(html, 'html', 'utf-8'))

            for content_id, image_data in inline_images.items():
                image = MIMEImage(image_data, _subtype='png')
                image.add_header('Content-ID', f"<{content_id}>")
                image.add_header('Content-Disposition', 'inline', filename=f"{content_id}.png")
                msg.attach(image)

            with smtplib.SMTP(self.email_config['smtp_server'], self.email_config['smtp_port'],
                              timeout=self.email_config['timeout']) as server:
                if self.email_config['use_tls']:
                    context = ssl.create_default_context()
                    server.starttls(context=context)

                if self.email_config['username'] and self.email_config['password']:
                    server.login(self.email_config['username'], self.email_config['password'])
                server.send_message(msg)

            self.logger.info(f"Email sent to {to}")
            return NotificationResult(success=True, message_id=msg['Message-ID'])

        except (smtplib.SMTPException, OSError) as e:
            self.logger.error(f"Failed to send email to {to}: {str(e)}")
            return NotificationResult(success=False, error=str(e) or 'Failed to send email')

    def send_registration_confirmation(self, event: Dict[str, Any], name: str, email: str,
                                       qr_png: Optional[bytes] = None,
                                       qr_url: Optional[str] = None) -> NotificationResult:
        """
        Send the registration confirmation with the check-in QR code.

        Args:
            event (dict): Event the registrant signed up for
            name (str): Registrant name
            email (str): Registrant email
            qr_png (bytes): QR code image, embedded inline
            qr_url (str): Link to the hosted QR code image

        Returns:
            NotificationResult: delivery outcome
        """
        inline_images = {'checkin-qr': qr_png} if qr_png else {}
        html = self.render_template(
            'registration_confirmation',
            event=event,
            name=name,
            qr_cid='checkin-qr' if qr_png else None,
            qr_url=qr_url
        )
        return self.send_email(
            to=email,
            subject=f"Registration Confirmation: {event['title']}",
            html=html,
            inline_images=inline_images
        )

    def _get_registration_confirmation_template(self) -> str:
        """Get email template for registration confirmations."""
        return """
        <!DOCTYPE html>
        <html>
        <head><meta charset="utf-8"><title>Registration Confirmation</title></head>
        <body style="font-family: Arial, sans-serif; color: #333333; line-height: 1.6;">
            <div style="max-width: 600px; margin: 0 auto; padding: 20px; border: 1px solid #e0e0e0;">
                <h1>Registration Confirmation</h1>

                <p>Hello {{ name }},</p>
                <p>Thank you for registering for <strong>{{ event.title }}</strong>!</p>

                <div style="background-color: #f9f9f9; padding: 15px; margin: 20px 0;">
                    <h2 style="margin-top: 0;">Event Details</h2>
                    <p><strong>Date:</strong> {{ event.event_date }}</p>
                    <p><strong>Time:</strong> {{ event.event_time }}</p>
                    <p><strong>Location:</strong> {{ event.location }}</p>
                    {% if event.description %}<p><strong>Description:</strong> {{ event.description }}</p>{% endif %}
                </div>

                <p>Please use the QR code below for check-in on the day of the event:</p>

                <div style="text-align: center; margin: 30px 0;">
                    {% if qr_cid %}
                    <img src="cid:{{ qr_cid }}" alt="Event Check-in QR Code" style="max-width: 250px; border: 1px solid #ddd;" />
                    {% elif qr_url %}
                    <img src="{{ qr_url }}" alt="Event Check-in QR Code" style="max-width: 250px; border: 1px solid #ddd;" />
                    {% endif %}
                </div>

                {% if qr_url %}
                <p style="font-size: 12px; color: #666;">
                    If the QR code is not displaying correctly, please <a href="{{ qr_url }}">click here</a> to view it.
                </p>
                {% endif %}

                <hr>
                <p style="color: #6c757d; font-size: 12px;">
                    This is an automated message from {{ system_name }}. Please do not reply to this email.
                </p>
            </div>
        </body>
        </html>
        """

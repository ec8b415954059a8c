"""
QR Codec Module - QR Event Check-in System

This module builds and reads the token carried by every registration QR code.
A token is the registration metadata serialized as compact JSON and wrapped in
standard base64, so it survives storage, URLs and the QR alphanumeric path
unchanged. The same token string is stored with the registration row and
rendered into the PNG image, byte for byte.

Features:
- Token encoding/decoding (base64 JSON)
- Required-field validation
- PNG rendering with selectable error correction
- Data URI rendering for email bodies
"""

import qrcode
from qrcode.exceptions import DataOverflowError
import io
import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Mapping, Union

from .errors import DecodeError, RenderError, ValidationError


ERROR_CORRECTION_LEVELS = {
    'L': qrcode.constants.ERROR_CORRECT_L,  # ~7% error correction
    'M': qrcode.constants.ERROR_CORRECT_M,  # ~15% error correction
    'Q': qrcode.constants.ERROR_CORRECT_Q,  # ~25% error correction
    'H': qrcode.constants.ERROR_CORRECT_H   # ~30% error correction
}


@dataclass
class TokenMetadata:
    """Registration metadata carried inside a token."""
    name: str
    email: str
    event_title: str
    event_id: str
    timestamp: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    # Attribute name -> key used in the serialized JSON
    WIRE_KEYS = {
        'name': 'name',
        'email': 'email',
        'event_title': 'event',
        'event_id': 'eventId',
        'timestamp': 'timestamp'
    }

    def to_payload(self) -> Dict[str, Any]:
        payload = dict(self.extra)
        for attr, key in self.WIRE_KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                payload[key] = value
        return payload

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> 'TokenMetadata':
        known = set(cls.WIRE_KEYS.values())
        return cls(
            name=payload.get('name'),
            email=payload.get('email'),
            event_title=payload.get('event'),
            event_id=payload.get('eventId'),
            timestamp=payload.get('timestamp'),
            extra={k: v for k, v in payload.items() if k not in known}
        )


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.strftime('%Y-%m-%dT%H:%M:%S.') + f"{now.microsecond // 1000:03d}Z"


class QRCodec:
    """
    Encodes registration metadata into tokens and tokens into QR images.
    Holds no state beyond rendering defaults.
    """

    REQUIRED_FIELDS = (
        ('name', 'name'),
        ('email', 'email'),
        ('event_title', 'eventTitle'),
        ('event_id', 'eventId')
    )

    def __init__(self, error_correction: str = 'H', scale: int = 8, margin: int = 2):
        """
        Initialize the codec with rendering defaults.

        Args:
            error_correction (str): One of L, M, Q, H
            scale (int): Pixels per QR module
            margin (int): Quiet zone width in modules
        """
        self.logger = logging.getLogger(__name__)
        self.default_settings = {
            'error_correction': error_correction,
            'scale': scale,
            'margin': margin,
            'fill_color': 'black',
            'back_color': 'white'
        }

    @staticmethod
    def _as_metadata(metadata: Union[TokenMetadata, Mapping[str, Any]]) -> TokenMetadata:
        if isinstance(metadata, TokenMetadata):
            return metadata
        return TokenMetadata(
            name=metadata.get('name'),
            email=metadata.get('email'),
            event_title=metadata.get('event_title', metadata.get('eventTitle', metadata.get('event'))),
            event_id=metadata.get('event_id', metadata.get('eventId')),
            timestamp=metadata.get('timestamp')
        )

    def validate(self, metadata: Union[TokenMetadata, Mapping[str, Any]]) -> None:
        """
        Check that every required field is present.

        Raises:
            ValidationError: naming the first missing field
        """
        metadata = self._as_metadata(metadata)
        for attr, label in self.REQUIRED_FIELDS:
            value = getattr(metadata, attr)
            if value is None or value == '':
                raise ValidationError(label)

    def encode(self, metadata: Union[TokenMetadata, Mapping[str, Any]]) -> str:
        """
        Serialize metadata to a transport-safe token.

        A timestamp is generated when the metadata does not carry one.

        Returns:
            str: base64 token
        """
        metadata = self._as_metadata(metadata)
        self.validate(metadata)

        payload = metadata.to_payload()
        payload.setdefault('timestamp', utc_timestamp())

        text = json.dumps(payload, ensure_ascii=False, separators=(',', ':'))
        return base64.b64encode(text.encode('utf-8')).decode('ascii')

    def decode(self, token: str) -> TokenMetadata:
        """
        Recover metadata from a token.

        Raises:
            DecodeError: MALFORMED_TOKEN if the base64 layer is invalid,
                MALFORMED_PAYLOAD if the recovered text is not a JSON object
        """
        if not isinstance(token, str) or not token.strip():
            raise DecodeError(DecodeError.MALFORMED_TOKEN, 'Token is empty')

        try:
            raw = base64.b64decode(token.strip(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecodeError(DecodeError.MALFORMED_TOKEN, f'Token is not valid base64: {e}') from e

        try:
            payload = json.loads(raw.decode('utf-8'))
        except (UnicodeDecodeError, ValueError) as e:
            raise DecodeError(DecodeError.MALFORMED_PAYLOAD, f'Token payload is not valid JSON: {e}') from e

        if not isinstance(payload, dict):
            raise DecodeError(DecodeError.MALFORMED_PAYLOAD, 'Token payload is not a JSON object')

        return TokenMetadata.from_payload(payload)

    def _build_qr(self, token: str, options: Dict[str, Any]) -> qrcode.QRCode:
        if not isinstance(token, str) or not token:
            raise RenderError('Token is empty')
        if not token.isascii() or not token.isprintable():
            raise RenderError('Token contains characters outside printable ASCII')

        level = str(options['error_correction']).upper()
        if level not in ERROR_CORRECTION_LEVELS:
            raise RenderError(f"Unknown error correction level: {options['error_correction']}")
        if int(options['scale']) < 1 or int(options['margin']) < 0:
            raise RenderError('Scale must be at least 1 and margin non-negative')

        qr = qrcode.QRCode(
            version=None,
            error_correction=ERROR_CORRECTION_LEVELS[level],
            box_size=int(options['scale']),
            border=int(options['margin'])
        )
        qr.add_data(token)
        try:
            qr.make(fit=True)
        except DataOverflowError as e:
            raise RenderError(f"Token of {len(token)} characters does not fit in a "
                              f"level {level} QR code") from e
        return qr

    def check_renderable(self, token: str, **options) -> None:
        """
        Make sure a token fits in a QR symbol without drawing the image.

        Raises:
            RenderError: the token cannot be rendered with these settings
        """
        settings = self.default_settings.copy()
        settings.update({k: v for k, v in options.items() if v is not None})
        self._build_qr(token, settings)

    def render_image(self, token: str, **options) -> bytes:
        """
        Render a token as a PNG QR code.

        Args:
            token (str): Token produced by ``encode``
            **options: error_correction (L/M/Q/H), scale, margin

        Returns:
            bytes: PNG image data
        """
        settings = self.default_settings.copy()
        settings.update({k: v for k, v in options.items() if v is not None})

        qr = self._build_qr(token, settings)
        img = qr.make_image(
            fill_color=settings['fill_color'],
            back_color=settings['back_color']
        )

        buffer = io.BytesIO()
        img.save(buffer, format='PNG')
        return buffer.getvalue()

    def render_data_uri(self, token: str, **options) -> str:
        """Render a token as a ``data:image/png;base64,...`` URI."""
        png = self.render_image(token, **options)
        return 'data:image/png;base64,' + base64.b64encode(png).decode('ascii')

"""
HTTP routes for the QR Event Check-in System.

JSON API over the registration, check-in and event managers. Handlers build
a ``Profile`` from the session and pass it explicitly; the managers never
read the session themselves.
"""

import io
import logging
from functools import wraps

from flask import (Blueprint, current_app, g, jsonify, request, send_file,
                   session)
from werkzeug.exceptions import HTTPException

from .modules.checkin_manager import CheckinStatus
from .modules.errors import DecodeError, NotFoundError, RenderError, ValidationError
from .modules.registration_manager import RegistrationStatus

bp = Blueprint('routes', __name__)
logger = logging.getLogger(__name__)

# Registration outcome -> (HTTP status, reason)
REGISTRATION_FAILURES = {
    RegistrationStatus.INVALID_INPUT: (400, 'InvalidInput'),
    RegistrationStatus.EVENT_NOT_FOUND: (400, 'EventNotFound'),
    RegistrationStatus.ALREADY_REGISTERED: (409, 'AlreadyRegistered'),
    RegistrationStatus.PROVISIONING_FAILED: (500, 'ProvisioningFailed'),
    RegistrationStatus.ENCODING_FAILED: (500, 'EncodingFailed'),
    RegistrationStatus.PERSIST_FAILED: (500, 'PersistFailed')
}

EXPORT_FORMATS = {'csv': 'csv', 'xlsx': 'excel'}


def services(name):
    return current_app.extensions['qr_checkin'][name]


def json_body():
    """Request JSON object; anything else reads as empty."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def current_profile():
    """Profile of the logged-in caller, loaded once per request."""
    if 'profile' not in g:
        profile_id = session.get('profile_id')
        g.profile = services('auth_manager').get_profile(profile_id) if profile_id else None
    return g.profile


def login_required(f):
    """Decorator to require login for protected routes"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if current_profile() is None:
            return jsonify({'success': False, 'error': 'Please log in to access this resource.'}), 401
        return f(*args, **kwargs)
    return decorated_function


def admin_required(f):
    """Decorator to require admin privileges for protected routes"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        profile = current_profile()
        if profile is None:
            return jsonify({'success': False, 'error': 'Please log in to access this resource.'}), 401
        if not profile.is_admin:
            return jsonify({'success': False, 'error': 'Admin privileges required.'}), 403
        return f(*args, **kwargs)
    return decorated_function


def _manager_error(result):
    """Map a failed manager result dict to an HTTP response."""
    status = {
        'forbidden': 403,
        'not_found': 404,
        'conflict': 409,
        'invalid_input': 400
    }.get(result.get('error_type'), 500)
    body = {'success': False, 'error': result.get('error')}
    if result.get('phase'):
        body['phase'] = result['phase']
    return jsonify(body), status


def _checkin_response(result):
    body = {
        'success': result.status == CheckinStatus.CHECKED_IN,
        'status': result.status,
        'registrationId': result.registration['id'],
        'name': result.registration['name'],
        'email': result.registration['email'],
        'eventId': result.event['id'],
        'eventTitle': result.event['title'],
        'checkInTime': result.check_in_time
    }
    if result.status == CheckinStatus.ALREADY_CHECKED_IN:
        body['reason'] = 'AlreadyCheckedIn'
        return jsonify(body), 409
    return jsonify(body), 200


@bp.app_errorhandler(Exception)
def handle_unexpected_error(error):
    if isinstance(error, HTTPException):
        return error
    logger.error(f"Unhandled error on {request.method} {request.path}: {str(error)}")
    return jsonify({'success': False, 'error': 'An unexpected error occurred'}), 500


# Authentication

@bp.route('/signup', methods=['POST'])
def signup():
    data = json_body()
    result = services('auth_manager').create_profile(
        data.get('fullName') or data.get('full_name'),
        data.get('email'),
        data.get('password')
    )
    if not result['success']:
        status = 409 if result['error'] == 'Email already in use' else 400
        return jsonify({'success': False, 'error': result['error']}), status

    return jsonify({'success': True, 'user': result['profile'].to_dict()}), 201


@bp.route('/login', methods=['POST'])
def login():
    data = json_body()
    email = (data.get('email') or '').strip()
    password = data.get('password') or ''

    if not email or not password:
        return jsonify({'success': False, 'error': 'Please provide both email and password.'}), 400

    profile = services('auth_manager').authenticate(email, password)
    if profile is None:
        return jsonify({'success': False, 'error': 'Invalid email or password'}), 401

    session.clear()
    session['profile_id'] = profile.id
    return jsonify({'success': True, 'user': profile.to_dict()})


@bp.route('/logout', methods=['POST'])
@login_required
def logout():
    session.clear()
    return jsonify({'success': True})


# Events

@bp.route('/events', methods=['GET'])
def list_events():
    return jsonify({'success': True, 'events': services('event_manager').get_all_events()})


@bp.route('/events/<event_id>', methods=['GET'])
def get_event(event_id):
    event = services('event_manager').get_event(event_id)
    if not event:
        return jsonify({'success': False, 'error': 'Event not found'}), 404
    return jsonify({'success': True, 'event': event})


@bp.route('/events', methods=['POST'])
@admin_required
def create_event():
    data = json_body()
    result = services('event_manager').create_event(
        title=data.get('title'),
        location=data.get('location'),
        event_date=data.get('event_date'),
        event_time=data.get('event_time'),
        created_by=current_profile(),
        description=data.get('description')
    )
    if not result['success']:
        return _manager_error(result)
    return jsonify({'success': True, 'event': result['event']}), 201


@bp.route('/events/<event_id>', methods=['PATCH'])
@admin_required
def update_event(event_id):
    data = json_body()
    result = services('event_manager').update_event(event_id, data, updated_by=current_profile())
    if not result['success']:
        return _manager_error(result)
    return jsonify({'success': True, 'event': result['event']})


@bp.route('/events/<event_id>', methods=['DELETE'])
@admin_required
def delete_event(event_id):
    result = services('event_manager').delete_event(event_id, deleted_by=current_profile())
    if not result['success']:
        return _manager_error(result)
    return jsonify({
        'success': True,
        'eventId': event_id,
        'registrationsRemoved': result['registrations_removed']
    })


@bp.route('/events/<event_id>/registrations', methods=['GET'])
@admin_required
def event_registrations(event_id):
    try:
        attendance = services('checkin_manager').get_event_attendance(event_id)
    except NotFoundError:
        return jsonify({'success': False, 'error': 'Event not found'}), 404

    registrations = [
        {k: v for k, v in row.items() if k != 'token'}
        for row in attendance['registrations']
    ]
    return jsonify({
        'success': True,
        'event': attendance['event'],
        'registrations': registrations,
        'totalRegistered': attendance['total_registered'],
        'totalCheckedIn': attendance['total_checked_in']
    })


@bp.route('/events/<event_id>/attendance.<extension>', methods=['GET'])
@admin_required
def export_attendance(event_id, extension):
    if extension not in EXPORT_FORMATS:
        return jsonify({'success': False, 'error': f'Unsupported export format: {extension}'}), 400

    result = services('report_generator').export_event_attendance(event_id, EXPORT_FORMATS[extension])
    if not result['success']:
        return _manager_error(result)

    return send_file(
        io.BytesIO(result['content']),
        mimetype=result['mimetype'],
        as_attachment=True,
        download_name=result['filename']
    )


# Registrations and check-in

@bp.route('/registrations', methods=['POST'])
def register():
    data = json_body()
    user_data = data.get('userData')
    if not isinstance(user_data, dict):
        user_data = {}

    result = services('registration_manager').register(
        event_id=data.get('eventId'),
        name=data.get('name', user_data.get('name')),
        email=data.get('email', user_data.get('email')),
        profile=current_profile(),
        base_url=current_app.config.get('BASE_URL') or request.host_url
    )

    if not result.success:
        status, reason = REGISTRATION_FAILURES[result.status]
        return jsonify({'success': False, 'reason': reason, 'error': result.message}), status

    body = {
        'success': True,
        'message': result.message,
        'registrationId': result.registration_id,
        'tokenImageUrl': result.token_image_url
    }
    if result.warning:
        body['warning'] = result.warning
    return jsonify(body)


@bp.route('/registrations/<registration_id>/qrcode', methods=['GET'])
def registration_qrcode(registration_id):
    try:
        png = services('checkin_manager').render_token_image(registration_id)
    except NotFoundError:
        return jsonify({'success': False, 'error': 'Registration not found'}), 404
    except RenderError as e:
        logger.error(f"QR render failed for registration {registration_id}: {str(e)}")
        return jsonify({'success': False, 'error': 'Error generating QR code'}), 500

    response = send_file(io.BytesIO(png), mimetype='image/png')
    response.headers['Cache-Control'] = f"public, max-age={current_app.config['QR_CODE_CACHE_SECONDS']}"
    return response


@bp.route('/registrations/<registration_id>/checkin', methods=['POST'])
@admin_required
def checkin_registration(registration_id):
    try:
        result = services('checkin_manager').mark_checked_in(registration_id)
    except NotFoundError:
        return jsonify({'success': False, 'error': 'Registration not found'}), 404
    return _checkin_response(result)


@bp.route('/checkin', methods=['POST'])
@admin_required
def checkin_by_token():
    data = json_body()
    try:
        result = services('checkin_manager').check_in_by_token(data.get('token') or '')
    except DecodeError as e:
        return jsonify({'success': False, 'reason': 'MalformedToken', 'error': e.message}), 400
    except NotFoundError:
        return jsonify({'success': False, 'error': 'Registration not found'}), 404
    return _checkin_response(result)


# Token utilities

@bp.route('/qrcode/decode', methods=['GET'])
def decode_token():
    # An unescaped '+' in the query string arrives as a space
    encoded = (request.args.get('data') or '').replace(' ', '+')
    if not encoded:
        return jsonify({'success': False, 'error': 'Missing encoded data parameter'}), 400

    try:
        metadata = services('qr_codec').decode(encoded)
    except DecodeError as e:
        return jsonify({'success': False, 'error': 'Invalid encoded data format', 'code': e.code}), 400

    return jsonify({'success': True, 'data': metadata.to_payload()})


@bp.route('/qrcode', methods=['POST'])
def generate_qrcode():
    """Render arbitrary registration metadata, or an existing token, as a QR data URI."""
    data = json_body()
    payload = data.get('data')
    if not payload:
        return jsonify({'success': False, 'error': 'Missing data for QR code generation'}), 400

    codec = services('qr_codec')
    try:
        if data.get('isBase64'):
            token = payload
            decoded = codec.decode(token).to_payload()
        elif isinstance(payload, dict):
            token = codec.encode(payload)
            decoded = codec.decode(token).to_payload()
        else:
            return jsonify({'success': False, 'error': 'Data must be a token or a metadata object'}), 400
        data_uri = codec.render_data_uri(token)
    except (DecodeError, RenderError, ValidationError) as e:
        return jsonify({'success': False, 'error': e.message}), 400

    return jsonify({'success': True, 'token': token, 'qrCodeDataURL': data_uri, 'decodedData': decoded})

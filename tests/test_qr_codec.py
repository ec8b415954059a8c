import base64
import io
import json

import pytest
from hypothesis import given, strategies as st
from PIL import Image

from qr_checkin.modules.errors import DecodeError, RenderError, ValidationError
from qr_checkin.modules.qr_codec import QRCodec, TokenMetadata, utc_timestamp


@pytest.fixture
def codec():
    return QRCodec()


def metadata(**overrides):
    fields = dict(name='Ada', email='ada@x.com', event_title='Fall Kickoff!',
                  event_id='E1', timestamp='2024-05-01T18:00:00.000Z')
    fields.update(overrides)
    return TokenMetadata(**fields)


def test_encode_decode_round_trip(codec):
    original = metadata()
    decoded = codec.decode(codec.encode(original))
    assert decoded == original


def test_round_trip_preserves_unicode(codec):
    original = metadata(name='Zoë Ünal 李', event_title='Café Night ☕')
    assert codec.decode(codec.encode(original)) == original


@pytest.mark.parametrize('overrides', [
    {'name': '𝒜da 🎉', 'event_title': '𓀀 Launch'},
    {'email': 'ünïcode@exämple.org', 'event_id': '事件-1'},
    {'name': '"quoted" \\ back\\slash', 'event_title': '<b>&amp;</b>'},
    {'name': 'tab\tnew\nline\x00nul'},
    {'timestamp': ''},
])
def test_round_trip_edge_cases(codec, overrides):
    original = metadata(**overrides)
    assert codec.decode(codec.encode(original)) == original


required_text = st.text(min_size=1)


@given(name=required_text, email=required_text, event_title=required_text,
       event_id=required_text, timestamp=st.none() | st.text())
def test_round_trip_generated(name, email, event_title, event_id, timestamp):
    codec = QRCodec()
    original = TokenMetadata(name=name, email=email, event_title=event_title,
                             event_id=event_id, timestamp=timestamp)

    token = codec.encode(original)
    assert token.isascii()
    decoded = codec.decode(token)

    assert (decoded.name, decoded.email, decoded.event_title, decoded.event_id) == \
        (name, email, event_title, event_id)
    if timestamp is None:
        assert decoded.timestamp.endswith('Z')
    else:
        assert decoded.timestamp == timestamp
    assert decoded.extra == {}


def test_token_is_base64_of_compact_json(codec):
    token = codec.encode(metadata())
    payload = json.loads(base64.b64decode(token).decode('utf-8'))
    assert payload == {
        'name': 'Ada',
        'email': 'ada@x.com',
        'event': 'Fall Kickoff!',
        'eventId': 'E1',
        'timestamp': '2024-05-01T18:00:00.000Z'
    }


def test_encode_fills_missing_timestamp(codec):
    decoded = codec.decode(codec.encode(metadata(timestamp=None)))
    assert decoded.timestamp.endswith('Z')
    assert len(decoded.timestamp) == len('2024-05-01T18:00:00.000Z')


def test_encode_accepts_mapping(codec):
    token = codec.encode({'name': 'Ada', 'email': 'ada@x.com', 'eventTitle': 'Talk', 'eventId': 'E9'})
    decoded = codec.decode(token)
    assert decoded.event_title == 'Talk'
    assert decoded.event_id == 'E9'


def test_decode_keeps_unknown_keys(codec):
    raw = json.dumps({'name': 'Ada', 'email': 'a@x.com', 'event': 'T', 'eventId': '1', 'seat': 'B4'})
    decoded = codec.decode(base64.b64encode(raw.encode()).decode())
    assert decoded.extra == {'seat': 'B4'}
    assert decoded.to_payload()['seat'] == 'B4'


@pytest.mark.parametrize('field, label', [
    ('name', 'name'),
    ('email', 'email'),
    ('event_title', 'eventTitle'),
    ('event_id', 'eventId'),
])
def test_validate_names_missing_field(codec, field, label):
    with pytest.raises(ValidationError) as excinfo:
        codec.encode(metadata(**{field: ''}))
    assert excinfo.value.field == label


def test_decode_rejects_invalid_base64(codec):
    with pytest.raises(DecodeError) as excinfo:
        codec.decode('not-base64!!')
    assert excinfo.value.code == DecodeError.MALFORMED_TOKEN


def test_decode_rejects_empty_token(codec):
    with pytest.raises(DecodeError) as excinfo:
        codec.decode('   ')
    assert excinfo.value.code == DecodeError.MALFORMED_TOKEN


@pytest.mark.parametrize('raw', [b'plain text', b'[1, 2, 3]', b'\xff\xfe'])
def test_decode_rejects_non_object_payload(codec, raw):
    with pytest.raises(DecodeError) as excinfo:
        codec.decode(base64.b64encode(raw).decode())
    assert excinfo.value.code == DecodeError.MALFORMED_PAYLOAD


def test_utc_timestamp_format():
    stamp = utc_timestamp()
    assert stamp[10] == 'T'
    assert stamp.endswith('Z')
    assert stamp[19] == '.'


def test_render_image_is_png(codec):
    png = codec.render_image(codec.encode(metadata()))
    image = Image.open(io.BytesIO(png))
    assert image.format == 'PNG'


def test_render_image_scale_and_margin(codec):
    token = 'A' * 40
    small = Image.open(io.BytesIO(codec.render_image(token, scale=4, margin=0)))
    large = Image.open(io.BytesIO(codec.render_image(token, scale=8, margin=0)))
    assert large.size[0] == small.size[0] * 2


def test_render_data_uri(codec):
    uri = codec.render_data_uri('A' * 40)
    assert uri.startswith('data:image/png;base64,')
    png = base64.b64decode(uri.split(',', 1)[1])
    assert png[:8] == b'\x89PNG\r\n\x1a\n'


@pytest.mark.parametrize('token, options', [
    ('', {}),
    ('café', {}),
    ('line\nbreak', {}),
    ('A' * 40, {'error_correction': 'X'}),
    ('A' * 40, {'scale': 0}),
    ('A' * 40, {'margin': -1}),
])
def test_render_rejects_bad_input(codec, token, options):
    with pytest.raises(RenderError):
        codec.render_image(token, **options)


def test_rendered_image_scans_back_to_token(codec):
    cv2 = pytest.importorskip('cv2')
    np = pytest.importorskip('numpy')

    token = 'eyJuYW1lIjoiQWRhIiwiZW1haWwiOiJhQHguY29t'
    assert len(token) == 40

    png = codec.render_image(token, error_correction='H')
    image = np.array(Image.open(io.BytesIO(png)).convert('L'), dtype=np.uint8)
    image = cv2.copyMakeBorder(image, 32, 32, 32, 32, cv2.BORDER_CONSTANT, value=255)

    data, _, _ = cv2.QRCodeDetector().detectAndDecode(image)
    assert data == token


def test_oversized_token_is_render_error(codec):
    token = codec.encode(metadata(name='a' * 1000))

    with pytest.raises(RenderError):
        codec.render_image(token)
    with pytest.raises(RenderError):
        codec.check_renderable(token)


def test_check_renderable_accepts_encoded_token(codec):
    codec.check_renderable(codec.encode(metadata()))


def test_capacity_depends_on_error_correction(codec):
    token = 'A' * 2000
    codec.check_renderable(token, error_correction='L')
    with pytest.raises(RenderError):
        codec.check_renderable(token, error_correction='H')

import base64
import hashlib
import hmac
import struct
import zlib

import pytest

from rtcpresence.core.errors import CryptoError, EncodingError, ValidationError
from rtcpresence.services import agora_token
from rtcpresence.services.agora_token import (
    PRIVILEGE_JOIN_CHANNEL,
    PRIVILEGE_PUBLISH_AUDIO_STREAM,
    PRIVILEGE_PUBLISH_DATA_STREAM,
    PRIVILEGE_PUBLISH_VIDEO_STREAM,
    ByteWriter,
    ServiceRtc,
    _crc32,
    _hmac_sha256,
    build_rtc_token,
    parse_token,
)

ALL_PRIVILEGES = [
    PRIVILEGE_JOIN_CHANNEL,
    PRIVILEGE_PUBLISH_AUDIO_STREAM,
    PRIVILEGE_PUBLISH_VIDEO_STREAM,
    PRIVILEGE_PUBLISH_DATA_STREAM,
]


def _publisher_token(salt=7):
    return build_rtc_token('appid', 'cert', 'room1', '42', 'publisher', 1000, 3600, salt=salt)


def test_byte_writer_little_endian():
    w = ByteWriter()
    w.write_uint16(0x0102).write_uint32(0x01020304).write_string('hé').write_bytes(b'\xff')
    assert w.to_bytes() == b'\x02\x01' + b'\x04\x03\x02\x01' + b'\x03\x00h\xc3\xa9' + b'\xff'
    # finalizing twice returns the same buffer
    assert w.to_bytes() == w.to_bytes()


def test_byte_writer_rejects_oversized_values():
    w = ByteWriter()
    with pytest.raises(EncodingError):
        w.write_string('x' * 65536)
    with pytest.raises(ValueError):
        w.write_uint16(0x10000)
    with pytest.raises(EncodingError):
        w.write_uint32(-1)
    w.write_string('x' * 65535)
    assert len(w.to_bytes()) == 2 + 65535


def test_service_pack_keeps_privilege_order():
    svc = ServiceRtc('ch', 0)
    svc.add_privilege(3, 10)
    svc.add_privilege(1, 20)
    assert svc.pack() == b'\x02\x00ch' + b'\x01\x000' + b'\x02\x00' + struct.pack('<HI', 3, 10) + struct.pack('<HI', 1, 20)


def test_crc32_golden_vectors():
    assert _crc32(b'') == 0
    assert _crc32(b'123456789') == 0xCBF43926


def test_hmac_known_vector_and_bit_flip():
    # RFC 4231, test case 2
    digest = _hmac_sha256('Jefe', b'what do ya want for nothing?')
    assert digest.hex() == '5bdcc146bf60754e6a042426089575c75a003f089d2739839dec58b964ec3843'

    message = bytearray(b'what do ya want for nothing?')
    message[3] ^= 0x01
    assert _hmac_sha256('Jefe', bytes(message)) != digest


def test_publisher_token_decodes_to_expected_payload():
    token = _publisher_token()
    assert token.startswith('007appid')

    decoded = parse_token(token, 'appid')
    assert decoded.issued_at == 1000
    assert decoded.expire == 3600
    assert decoded.salt == 7
    assert len(decoded.services) == 1
    svc = decoded.services[0]
    assert svc.type == 1
    assert svc.channel_name == 'room1'
    assert svc.uid == '42'
    assert svc.privileges == {1: 4600, 2: 4600, 3: 4600, 4: 4600}
    assert list(svc.privileges) == ALL_PRIVILEGES


def test_wire_layout_is_bit_exact():
    token = _publisher_token()
    content = zlib.decompress(base64.b64decode(token[len('007appid'):]), -15)

    payload = struct.pack('<IIIH', 1000, 3600, 7, 1) + struct.pack('<H', 1)
    payload += b'\x05\x00room1' + b'\x02\x0042' + struct.pack('<H', 4)
    payload += b''.join(struct.pack('<HI', code, 4600) for code in ALL_PRIVILEGES)

    signature = hmac.new(b'cert', payload, hashlib.sha256).digest()
    signing = struct.pack('<H', 32) + signature + struct.pack('<I', zlib.crc32(payload))
    assert content == signing + payload


def test_fixed_salt_is_deterministic():
    assert _publisher_token(salt=7) == _publisher_token(salt=7)


def test_salt_changes_only_salt_and_signature():
    a = parse_token(_publisher_token(salt=7), 'appid')
    b = parse_token(_publisher_token(salt=8), 'appid')
    assert a.salt == 7 and b.salt == 8
    assert a.services == b.services
    assert (a.issued_at, a.expire) == (b.issued_at, b.expire)
    assert a.signature != b.signature


def test_random_salt_fits_uint32():
    salts = {parse_token(build_rtc_token('a', 'c', 'ch', 0, 'subscriber', 1, 60), 'a').salt for _ in range(20)}
    assert all(0 <= s < 2 ** 32 for s in salts)
    assert len(salts) > 1


def test_signature_verifies_with_certificate_only():
    decoded = parse_token(_publisher_token(), 'appid')
    assert len(decoded.signature) == 32
    assert decoded.verify('cert')
    assert not decoded.verify('other-cert')


def test_subscriber_only_joins():
    decoded = parse_token(build_rtc_token('appid', 'cert', 'room1', 0, 'subscriber', 50, 10), 'appid')
    svc = decoded.services[0]
    assert svc.uid == '0'
    assert svc.privileges == {PRIVILEGE_JOIN_CHANNEL: 60}


@pytest.mark.parametrize('kwargs', [
    {'app_id': ''},
    {'app_certificate': ''},
    {'channel_name': ''},
    {'uid': -1},
    {'uid': 'abc'},
    {'role': 'admin'},
    {'expire_seconds': 0},
])
def test_invalid_arguments(kwargs):
    args = dict(app_id='appid', app_certificate='cert', channel_name='room1', uid=1,
                role='subscriber', issued_at=1000, expire_seconds=60)
    args.update(kwargs)
    with pytest.raises(ValidationError):
        build_rtc_token(**args)


def test_oversized_channel_is_an_encoding_error():
    with pytest.raises(EncodingError):
        build_rtc_token('appid', 'cert', 'c' * 70000, 1, 'subscriber', 1000, 60)


def test_parse_rejects_foreign_tokens():
    token = _publisher_token()
    with pytest.raises(EncodingError):
        parse_token(token, 'otherapp')
    with pytest.raises(EncodingError):
        parse_token('007appid' + base64.b64encode(b'not deflate').decode(), 'appid')


def test_missing_sha256_is_a_crypto_error(monkeypatch):
    def no_sha256(*args, **kwargs):
        raise ValueError('unsupported hash type sha256')

    monkeypatch.setattr(agora_token.hmac, 'new', no_sha256)
    with pytest.raises(CryptoError):
        build_rtc_token('appid', 'cert', 'room1', 1, 'subscriber', 1000, 60)

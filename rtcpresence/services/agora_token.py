import base64
import binascii
import hmac
import secrets
import struct
import zlib
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from rtcpresence.core.errors import CryptoError, EncodingError, ValidationError

# Agora RTC token builder ("007" / AccessToken2 format).
#
# token   = "007" + app_id + base64(deflate_raw(signing ++ payload))
# signing = u16(len(sig)) ++ HMAC-SHA256(app_cert, payload) ++ u32 crc32(payload)
# payload = u32 issued_at ++ u32 expire ++ u32 salt ++ u16 n ++ {u16 type ++ service}*
# All integers little-endian.

VERSION = "007"

SERVICE_TYPE_RTC = 1

PRIVILEGE_JOIN_CHANNEL = 1
PRIVILEGE_PUBLISH_AUDIO_STREAM = 2
PRIVILEGE_PUBLISH_VIDEO_STREAM = 3
PRIVILEGE_PUBLISH_DATA_STREAM = 4

ROLE_PUBLISHER = "publisher"
ROLE_SUBSCRIBER = "subscriber"

_MAX_UINT16 = 0xFFFF
_MAX_UINT32 = 0xFFFFFFFF


def _crc32(data: bytes) -> int:
    return binascii.crc32(data) & 0xFFFFFFFF


def _hmac_sha256(key: str, message: bytes) -> bytes:
    try:
        return hmac.new(key.encode("utf-8"), message, "sha256").digest()
    except ValueError as e:
        # hashlib raises ValueError when the digest is unsupported (e.g. FIPS builds)
        raise CryptoError(f"HMAC-SHA256 unavailable: {e}") from e


def _deflate_raw(data: bytes) -> bytes:
    # wbits=-15 -> raw DEFLATE stream, no zlib header/trailer
    c = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, -15)
    return c.compress(data) + c.flush()


def _inflate_raw(data: bytes) -> bytes:
    try:
        return zlib.decompress(data, -15)
    except zlib.error as e:
        raise EncodingError(f"token content is not a deflate stream: {e}") from e


class ByteWriter:
    """Append-only little-endian buffer."""

    def __init__(self):
        self._buf = bytearray()

    def write_uint16(self, v: int) -> "ByteWriter":
        if not 0 <= v <= _MAX_UINT16:
            raise EncodingError(f"value {v} does not fit in uint16")
        self._buf.extend(struct.pack("<H", v))
        return self

    def write_uint32(self, v: int) -> "ByteWriter":
        if not 0 <= v <= _MAX_UINT32:
            raise EncodingError(f"value {v} does not fit in uint32")
        self._buf.extend(struct.pack("<I", v))
        return self

    def write_string(self, s: str) -> "ByteWriter":
        b = s.encode("utf-8")
        if len(b) > _MAX_UINT16:
            raise EncodingError(f"string of {len(b)} bytes exceeds the 65535-byte length prefix")
        self.write_uint16(len(b))
        self._buf.extend(b)
        return self

    def write_bytes(self, raw: bytes) -> "ByteWriter":
        self._buf.extend(raw)
        return self

    def to_bytes(self) -> bytes:
        return bytes(self._buf)


class ByteReader:
    def __init__(self, data: bytes):
        self._data = data
        self._pos = 0

    def _take(self, n: int) -> bytes:
        if self._pos + n > len(self._data):
            raise EncodingError("unexpected end of token data")
        chunk = self._data[self._pos:self._pos + n]
        self._pos += n
        return chunk

    def read_uint16(self) -> int:
        return struct.unpack("<H", self._take(2))[0]

    def read_uint32(self) -> int:
        return struct.unpack("<I", self._take(4))[0]

    def read_string(self) -> str:
        raw = self._take(self.read_uint16())
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise EncodingError("token string is not valid UTF-8") from e

    def read_bytes(self, n: int) -> bytes:
        return self._take(n)

    def remaining(self) -> bytes:
        return self._data[self._pos:]


class PrivilegeSet:
    """Ordered privilege code -> expire timestamp (unix seconds)."""

    def __init__(self):
        self._items: Dict[int, int] = {}

    def add(self, privilege: int, expire_ts: int) -> None:
        self._items[int(privilege)] = int(expire_ts)

    def __len__(self) -> int:
        return len(self._items)

    def pack(self, w: ByteWriter) -> None:
        w.write_uint16(len(self))
        for code, expire_ts in self._items.items():
            w.write_uint16(code)
            w.write_uint32(expire_ts)


class ServiceRtc:
    type = SERVICE_TYPE_RTC

    def __init__(self, channel_name: str, uid):
        self.channel_name = channel_name
        # uid travels as decimal text; "0" lets the RTC backend assign one
        self.uid = str(uid)
        self.privileges = PrivilegeSet()

    def add_privilege(self, privilege: int, expire_ts: int) -> None:
        self.privileges.add(privilege, expire_ts)

    def pack(self) -> bytes:
        w = ByteWriter()
        w.write_string(self.channel_name)
        w.write_string(self.uid)
        self.privileges.pack(w)
        return w.to_bytes()


class AccessToken:
    def __init__(self, app_id: str, app_certificate: str, issue_ts: int, expire: int,
                 salt: Optional[int] = None):
        self.app_id = app_id
        self.app_certificate = app_certificate
        self.issue_ts = int(issue_ts)
        self.expire = int(expire)
        # fixed once here: the signature covers it
        self.salt = secrets.randbelow(_MAX_UINT32 + 1) if salt is None else int(salt)
        self.services: Dict[int, ServiceRtc] = {}

    def add_service(self, service: ServiceRtc) -> None:
        self.services[service.type] = service

    def build_payload(self) -> bytes:
        w = ByteWriter()
        w.write_uint32(self.issue_ts)
        w.write_uint32(self.expire)
        w.write_uint32(self.salt)
        w.write_uint16(len(self.services))
        for service_type, service in self.services.items():
            w.write_uint16(service_type)
            w.write_bytes(service.pack())
        return w.to_bytes()

    def build_signing(self, payload: bytes) -> bytes:
        signature = _hmac_sha256(self.app_certificate, payload)
        w = ByteWriter()
        w.write_uint16(len(signature))
        w.write_bytes(signature)
        w.write_uint32(_crc32(payload))
        return w.to_bytes()

    def build(self) -> str:
        payload = self.build_payload()
        content = self.build_signing(payload) + payload
        return f"{VERSION}{self.app_id}{base64.b64encode(_deflate_raw(content)).decode('ascii')}"


def build_rtc_token(
    app_id: str,
    app_certificate: str,
    channel_name: str,
    uid: int,
    role: str,
    issued_at: int,
    expire_seconds: int,
    salt: Optional[int] = None,
) -> str:
    """Build an RTC token granting JOIN_CHANNEL (plus the three publish
    privileges for publishers), all expiring at ``issued_at + expire_seconds``.

    ``issued_at`` is supplied by the caller so the builder stays clock-free.
    ``salt`` is only meant to be pinned by tests.
    """
    if not app_id or not app_certificate:
        raise ValidationError("app_id and app_certificate are required")
    if not channel_name:
        raise ValidationError("channel is required")
    if isinstance(uid, str) and uid.isascii() and uid.isdigit():
        uid = int(uid)
    if isinstance(uid, bool) or not isinstance(uid, int) or uid < 0:
        raise ValidationError("uid must be a non-negative integer")
    if role not in (ROLE_PUBLISHER, ROLE_SUBSCRIBER):
        raise ValidationError(f"role must be '{ROLE_PUBLISHER}' or '{ROLE_SUBSCRIBER}'")
    if expire_seconds <= 0:
        raise ValidationError("expire_seconds must be positive")

    expire_ts = int(issued_at) + int(expire_seconds)

    token = AccessToken(app_id, app_certificate, issued_at, expire_seconds, salt=salt)
    service = ServiceRtc(channel_name, uid)
    service.add_privilege(PRIVILEGE_JOIN_CHANNEL, expire_ts)
    if role == ROLE_PUBLISHER:
        service.add_privilege(PRIVILEGE_PUBLISH_AUDIO_STREAM, expire_ts)
        service.add_privilege(PRIVILEGE_PUBLISH_VIDEO_STREAM, expire_ts)
        service.add_privilege(PRIVILEGE_PUBLISH_DATA_STREAM, expire_ts)
    token.add_service(service)

    return token.build()


# ----------------------------------------------------------------------
# Decoding (diagnostics and tests)
# ----------------------------------------------------------------------

@dataclass
class DecodedService:
    type: int
    channel_name: str
    uid: str
    privileges: Dict[int, int] = field(default_factory=dict)


@dataclass
class DecodedToken:
    app_id: str
    signature: bytes
    checksum: int
    payload: bytes
    issued_at: int
    expire: int
    salt: int
    services: List[DecodedService] = field(default_factory=list)

    def verify(self, app_certificate: str) -> bool:
        expected = _hmac_sha256(app_certificate, self.payload)
        return hmac.compare_digest(expected, self.signature) and _crc32(self.payload) == self.checksum


def parse_token(token: str, app_id: str) -> DecodedToken:
    prefix = VERSION + app_id
    if not token.startswith(prefix):
        raise EncodingError("token does not start with the expected version and app id")
    try:
        compressed = base64.b64decode(token[len(prefix):], validate=True)
    except binascii.Error as e:
        raise EncodingError(f"token body is not base64: {e}") from e

    r = ByteReader(_inflate_raw(compressed))
    signature = r.read_bytes(r.read_uint16())
    checksum = r.read_uint32()
    payload = r.remaining()

    p = ByteReader(payload)
    issued_at = p.read_uint32()
    expire = p.read_uint32()
    salt = p.read_uint32()
    services = []
    for _ in range(p.read_uint16()):
        service_type = p.read_uint16()
        if service_type != SERVICE_TYPE_RTC:
            raise EncodingError(f"unsupported service type {service_type}")
        svc = DecodedService(type=service_type, channel_name=p.read_string(), uid=p.read_string())
        for _ in range(p.read_uint16()):
            code = p.read_uint16()
            svc.privileges[code] = p.read_uint32()
        services.append(svc)
    if p.remaining():
        raise EncodingError("trailing bytes after token payload")

    return DecodedToken(
        app_id=app_id,
        signature=signature,
        checksum=checksum,
        payload=payload,
        issued_at=issued_at,
        expire=expire,
        salt=salt,
        services=services,
    )

"""FastCGI client side: encoding requests and decoding backend replies."""

from __future__ import annotations

import enum
import struct
import time
from dataclasses import dataclass
from typing import Iterable, Optional

from geminid.config import GMID_VERSION, ClientCert

FCGI_HEADER_LEN = 8
FCGI_VERSION_1 = 1

FCGI_KEEP_CONN = 1

FCGI_RESPONDER = 1
FCGI_AUTHORIZER = 2
FCGI_FILTER = 3

FCGI_REQUEST_COMPLETE = 0
FCGI_CANT_MPX_CONN = 1
FCGI_OVERLOADED = 2
FCGI_UNKNOWN_ROLE = 3

FCGI_MAX_CONNS = "FCGI_MAX_CONNS"
FCGI_MAX_REQS = "FCGI_MAX_REQS"
FCGI_MPXS_CONNS = "FCGI_MPXS_CONNS"

# the only request id ever used on a connection
REQUEST_ID = 1

_HEADER = struct.Struct(">BBHHBB")
_END_BODY = struct.Struct(">IB3x")
_MAX_CONTENT = 0xFFFF


class RecordType(enum.IntEnum):
    """FastCGI record types."""

    BEGIN_REQUEST = 1
    ABORT_REQUEST = 2
    END_REQUEST = 3
    PARAMS = 4
    STDIN = 5
    STDOUT = 6
    STDERR = 7
    DATA = 8
    GET_VALUES = 9
    GET_VALUES_RESULT = 10
    UNKNOWN_TYPE = 11


FCGI_MAXTYPE = RecordType.UNKNOWN_TYPE


class FcgiProtocolError(Exception):
    """The backend sent something that is not valid FastCGI for this client."""


@dataclass(frozen=True)
class Record:
    """A record received from the backend."""

    type: RecordType
    content: bytes

    @property
    def app_status(self) -> int:
        """Application exit status of an END_REQUEST record."""
        return self._end_body()[0]

    @property
    def proto_status(self) -> int:
        """Protocol status of an END_REQUEST record."""
        return self._end_body()[1]

    def _end_body(self) -> tuple[int, int]:
        if self.type != RecordType.END_REQUEST:
            raise ValueError(f"{self.type.name} record has no end-request body")
        return _END_BODY.unpack(self.content)


def encode_header(type: int, size: int, padding: int = 0) -> bytes:
    """Encode a record header for request id 1."""
    if not 0 <= size <= _MAX_CONTENT:
        raise ValueError(f"record content of {size} bytes does not fit a record")
    if not 0 <= padding <= 0xFF:
        raise ValueError(f"invalid padding length {padding}")
    return _HEADER.pack(FCGI_VERSION_1, int(type), REQUEST_ID, size, padding, 0)


def begin_request() -> bytes:
    """A BEGIN_REQUEST record for the responder role, keeping the connection."""
    body = bytes([0, FCGI_RESPONDER, FCGI_KEEP_CONN, 0, 0, 0, 0, 0])
    return encode_header(RecordType.BEGIN_REQUEST, len(body)) + body


def _encode_length(length: int) -> bytes:
    return struct.pack(">I", length | 0x80000000)


def encode_param(name: str, value: str) -> bytes:
    """A PARAMS record carrying one name-value pair, padded to 8 bytes."""
    raw_name = name.encode("utf-8", "surrogateescape")
    raw_value = value.encode("utf-8", "surrogateescape")
    size = len(raw_name) + len(raw_value) + 8
    padlen = (8 - (size & 0x7)) & 0x7
    return b"".join(
        (
            encode_header(RecordType.PARAMS, size, padlen),
            _encode_length(len(raw_name)),
            _encode_length(len(raw_value)),
            raw_name,
            raw_value,
            bytes(padlen),
        )
    )


def end_params() -> bytes:
    """Empty PARAMS and STDIN records that close the request."""
    return encode_header(RecordType.PARAMS, 0) + encode_header(RecordType.STDIN, 0)


def encode_request(params: Iterable[tuple[str, str]]) -> bytes:
    """A complete request: begin, every parameter, then the closing records."""
    parts = [begin_request()]
    parts.extend(encode_param(name, value) for name, value in params)
    parts.append(end_params())
    return b"".join(parts)


def format_time(timestamp: int) -> str:
    """Format a UNIX timestamp as an ISO 8601 UTC time."""
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(timestamp))


def _optional_time(timestamp: Optional[int]) -> str:
    return "" if timestamp is None else format_time(timestamp)


def request_params(
    url_path: str,
    query: Optional[str],
    remote_addr: str,
    server_name: str,
    cert: Optional[ClientCert] = None,
    extra_params: Iterable[tuple[str, str]] = (),
) -> list[tuple[str, str]]:
    """The parameters sent to a FastCGI backend for one request.

    The host's extra parameters are sent only when the client presented a
    certificate.
    """
    params = [
        ("GATEWAY_INTERFACE", "CGI/1.1"),
        ("GEMINI_URL_PATH", url_path),
        ("QUERY_STRING", query or ""),
        ("REMOTE_ADDR", remote_addr),
        ("REMOTE_HOST", remote_addr),
        ("REQUEST_METHOD", ""),
        ("SERVER_NAME", server_name),
        ("SERVER_PROTOCOL", "GEMINI"),
        ("SERVER_SOFTWARE", GMID_VERSION),
    ]
    if cert is None:
        params.append(("AUTH_TYPE", ""))
        return params

    params += [
        ("AUTH_TYPE", "CERTIFICATE"),
        ("REMOTE_USER", cert.subject),
        ("TLS_CLIENT_ISSUER", cert.issuer),
        ("TLS_CLIENT_HASH", cert.hash),
        ("TLS_VERSION", cert.version),
        ("TLS_CIPHER", cert.cipher),
        ("TLS_CIPHER_STRENGTH", str(cert.cipher_strength)),
        ("TLS_CLIENT_NOT_BEFORE", _optional_time(cert.not_before)),
        ("TLS_CLIENT_NOT_AFTER", _optional_time(cert.not_after)),
    ]
    params.extend(extra_params)
    return params


class FcgiReader:
    """Reassembles the records a backend sends for the single request."""

    def __init__(self) -> None:
        self._buf = bytearray()
        self.done = False

    def feed(self, data: bytes) -> list[Record]:
        """Add received bytes; return the complete STDOUT and END_REQUEST records.

        STDERR output is discarded.  Raises ``FcgiProtocolError`` on a record
        for another request id, an unexpected record type or a malformed
        end-request record.
        """
        self._buf += data
        records: list[Record] = []
        while len(self._buf) >= FCGI_HEADER_LEN:
            _version, rtype, req_id, length, padding, _ = _HEADER.unpack_from(self._buf)
            if req_id != REQUEST_ID:
                raise FcgiProtocolError(
                    f"got invalid client id {req_id} from fcgi backend"
                )
            total = FCGI_HEADER_LEN + length + padding
            if len(self._buf) < total:
                break

            content = bytes(self._buf[FCGI_HEADER_LEN:FCGI_HEADER_LEN + length])
            if rtype == RecordType.END_REQUEST:
                if length != _END_BODY.size:
                    raise FcgiProtocolError("got invalid end request record size")
                self.done = True
                records.append(Record(RecordType.END_REQUEST, content))
            elif rtype == RecordType.STDERR:
                pass
            elif rtype == RecordType.STDOUT:
                records.append(Record(RecordType.STDOUT, content))
            else:
                raise FcgiProtocolError(f"got invalid fcgi record (type={rtype})")
            del self._buf[:total]
        return records
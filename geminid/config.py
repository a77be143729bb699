"""Server configuration model: virtual hosts, locations and global settings."""

from __future__ import annotations

import enum
import os
import ssl
from dataclasses import dataclass, field

VERSION = "0.1.0"
GMID_STRING = f"gmid {VERSION}"
GMID_VERSION = f"gmid/{VERSION}"

# URL max length + CRLF + terminator
GEMINI_URL_LEN = 1024 + 3

# maximum hostname and label length, +1 for the terminator
DOMAIN_NAME_LEN = 253 + 1
LABEL_LEN = 63 + 1

FCGI_MAX = 32
PROC_MAX = 16

DEFAULT_PORT = 1965
DEFAULT_PREFORK = 3
DEFAULT_PROTOCOLS = frozenset({ssl.TLSVersion.TLSv1_2, ssl.TLSVersion.TLSv1_3})


class Status(enum.IntEnum):
    """Gemini response status codes used by the server."""

    SUCCESS = 20
    TEMP_REDIRECT = 30
    TEMP_FAILURE = 40
    CGI_ERROR = 42
    NOT_FOUND = 51
    PROXY_REFUSED = 53
    BAD_REQUEST = 59
    CLIENT_CERT_REQ = 60
    CERT_NOT_AUTH = 61


class RequestType(enum.IntEnum):
    """How a client request is being served."""

    UNDECIDED = 0
    FILE = 1
    DIR = 2
    CGI = 3
    FCGI = 4
    DONE = 5

    @property
    def is_internal(self) -> bool:
        """True when the request is served by the server itself."""
        return self not in (RequestType.CGI, RequestType.FCGI)


class ImsgType(enum.IntEnum):
    """Message types exchanged between the server processes."""

    CGI_REQ = 0
    CGI_RES = 1
    FCGI_REQ = 2
    FCGI_FD = 3
    LOG = 4
    LOG_REQUEST = 5
    LOG_TYPE = 6
    QUIT = 7


@dataclass
class ClientCert:
    """TLS details of a client connection, as handed to gateways."""

    subject: str = ""
    issuer: str = ""
    hash: str = ""
    version: str = ""
    cipher: str = ""
    cipher_strength: int = 0
    not_before: int | None = None
    not_after: int | None = None


@dataclass
class FcgiServer:
    """A FastCGI backend: a program to start, a UNIX socket or a host and port."""

    id: int
    path: str | None = None
    port: str | None = None
    prog: str | None = None


@dataclass
class Location:
    """A location rule inside a virtual host."""

    match: str | None = None
    lang: str | None = None
    default_mime: str | None = None
    index: str | None = None
    auto_index: int = 0  # 0 auto, -1 off, 1 on
    block_code: int = 0
    block_fmt: str | None = None
    strip: int = 0
    reqca: object | None = None
    disable_log: bool = False
    fcgi: int | None = None
    dir: str | None = None
    dirfd: int | None = None

    def close(self) -> None:
        """Close the directory descriptor, if one is open."""
        if self.dirfd is not None:
            os.close(self.dirfd)
            self.dirfd = None


@dataclass
class VHost:
    """A virtual host.

    The first location is always ``*`` and holds the defaults for the host;
    the rules from the configuration follow it.
    """

    domain: str | None = None
    cert: str | None = None
    key: str | None = None
    ocsp: str | None = None
    cgi: str | None = None
    entrypoint: str | None = None
    locations: list[Location] = field(default_factory=list)
    env: list[tuple[str, str]] = field(default_factory=list)
    params: list[tuple[str, str]] = field(default_factory=list)
    aliases: list[str] = field(default_factory=list)


@dataclass
class Config:
    """Global server configuration."""

    foreground: bool = False
    verbose: int = 0
    port: int = DEFAULT_PORT
    ipv6: bool = False
    protos: frozenset = DEFAULT_PROTOCOLS
    mime: dict[str, str] = field(default_factory=dict)
    chroot: str | None = None
    user: str | None = None
    prefork: int = DEFAULT_PREFORK
    hosts: list[VHost] = field(default_factory=list)
    fcgi: list[FcgiServer] = field(default_factory=list)

    def reset(self) -> None:
        """Release every host and backend and restore the defaults.

        Open location directories are closed; only the verbosity survives.
        """
        for host in self.hosts:
            for location in host.locations:
                location.close()
        self.hosts = []
        self.fcgi = []
        self.foreground = False
        self.port = DEFAULT_PORT
        self.ipv6 = False
        self.protos = DEFAULT_PROTOCOLS
        self.mime = {}
        self.chroot = None
        self.user = None
        self.prefork = DEFAULT_PREFORK
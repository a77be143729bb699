"""Starting CGI scripts and opening connections to FastCGI backends."""

from __future__ import annotations

import logging
import os
import socket
import subprocess
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import unquote

from geminid.config import (
    GMID_VERSION,
    ClientCert,
    Config,
    FcgiServer,
    Location,
    Status,
    VHost,
)
from geminid.fcgi import format_time

log = logging.getLogger(__name__)

_children: list[subprocess.Popen] = []


def _reap() -> None:
    _children[:] = [child for child in _children if child.poll() is None]


@dataclass
class CgiRequest:
    """What the executor needs to know to run a CGI script for a client."""

    url: str
    server_name: str
    query: Optional[str] = None
    spath: str = ""
    relpath: str = ""
    addr: str = ""
    cert: ClientCert = field(default_factory=ClientCert)
    host_index: int = 0
    location_index: int = 0


def cgi_environ(
    request: CgiRequest, vhost: VHost, location: Location, port: int
) -> dict[str, str]:
    """The CGI variables for a script, the host's own variables last."""
    root = location.dir or ""
    cert = request.cert
    env = {
        "GATEWAY_INTERFACE": "CGI/1.1",
        "GEMINI_DOCUMENT_ROOT": root,
        "GEMINI_SCRIPT_FILENAME": f"{root}/{request.spath}",
        "GEMINI_URL": request.url,
        "GEMINI_URL_PATH": f"/{request.spath}",
    }
    if request.relpath:
        env["PATH_INFO"] = f"/{request.relpath}"
        env["PATH_TRANSLATED"] = f"{root}/{request.relpath}"

    env.update(
        {
            "QUERY_STRING": request.query or "",
            "REMOTE_ADDR": request.addr,
            "REMOTE_HOST": request.addr,
            "REQUEST_METHOD": "",
            "SCRIPT_NAME": f"/{request.spath}",
            "SERVER_NAME": request.server_name,
            "SERVER_PORT": str(port),
            "SERVER_PROTOCOL": "GEMINI",
            "SERVER_SOFTWARE": GMID_VERSION,
            "AUTH_TYPE": "Certificate" if cert.subject else "",
            "REMOTE_USER": cert.subject,
            "TLS_CLIENT_ISSUER": cert.issuer,
            "TLS_CLIENT_HASH": cert.hash,
            "TLS_VERSION": cert.version,
            "TLS_CIPHER": cert.cipher,
            "TLS_CIPHER_STRENGTH": str(cert.cipher_strength),
        }
    )
    if cert.not_after is not None:
        env["TLS_CLIENT_NOT_AFTER"] = format_time(cert.not_after)
    if cert.not_before is not None:
        env["TLS_CLIENT_NOT_BEFORE"] = format_time(cert.not_before)

    for name, value in vhost.env:
        env[name] = value or ""
    return env


def script_argv(script_path: str, query: Optional[str]) -> list[str]:
    """Arguments for a script: its name, then the query as search terms.

    A query holding ``=`` is not split into arguments; otherwise it is split
    on ``+`` and each term is percent-decoded.  An empty query counts as none.
    """
    name = os.path.basename(script_path.rstrip("/")) or script_path
    if not query or "=" in query:
        return [name]
    return [name, *(unquote(term, errors="surrogateescape") for term in query.split("+"))]


def launch_cgi(
    request: CgiRequest, vhost: VHost, location: Location, port: int
) -> socket.socket:
    """Start the script and return a non-blocking socket carrying its output.

    If the script cannot be started, the socket carries a temporary-failure
    response instead.
    """
    _reap()
    parent, child = socket.socketpair(socket.AF_UNIX, socket.SOCK_STREAM)
    executable = f"{location.dir}/{request.spath}"
    env = dict(os.environ)
    env.update(cgi_environ(request, vhost, location, port))

    try:
        with child:
            try:
                process = subprocess.Popen(
                    script_argv(request.spath, request.query),
                    executable=executable,
                    cwd=os.path.dirname(executable),
                    env=env,
                    stdout=child.fileno(),
                    stderr=subprocess.DEVNULL,
                )
            except OSError as exc:
                log.warning("cannot run %s: %s", executable, exc)
                child.sendall(
                    f"{int(Status.TEMP_FAILURE)} internal server error\r\n".encode()
                )
            else:
                _children.append(process)
    except OSError:
        parent.close()
        raise

    parent.setblocking(False)
    return parent


def _open_prog(server: FcgiServer) -> socket.socket:
    ours, theirs = socket.socketpair(socket.AF_UNIX, socket.SOCK_STREAM)
    with theirs:
        try:
            process = subprocess.Popen([server.prog], stdin=theirs.fileno())
        except OSError:
            ours.close()
            raise
    _children.append(process)
    return ours


def _open_sock(server: FcgiServer) -> Optional[socket.socket]:
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.connect(server.path)
    except OSError as exc:
        log.warning("failed to connect to %s: %s", server.path, exc.strerror or exc)
        sock.close()
        return None
    return sock


def _open_conn(server: FcgiServer) -> Optional[socket.socket]:
    try:
        addresses = socket.getaddrinfo(
            server.path,
            server.port,
            socket.AF_UNSPEC,
            socket.SOCK_STREAM,
            0,
            socket.AI_ADDRCONFIG,
        )
    except socket.gaierror as exc:
        log.warning("getaddrinfo %s:%s: %s", server.path, server.port, exc)
        return None

    for family, socktype, proto, _name, address in addresses:
        try:
            sock = socket.socket(family, socktype, proto)
        except OSError:
            continue
        try:
            sock.connect(address)
        except OSError:
            sock.close()
            continue
        return sock

    log.warning("couldn't connect to %s:%s", server.path, server.port)
    return None


def open_fcgi(server: FcgiServer) -> Optional[socket.socket]:
    """Connect to a FastCGI backend, starting it first if it is a program.

    Returns None when a socket backend cannot be reached.
    """
    _reap()
    if server.prog is not None:
        return _open_prog(server)
    if server.port is not None:
        return _open_conn(server)
    return _open_sock(server)


class Executor:
    """Runs gateways on behalf of the server processes."""

    def __init__(self, config: Config):
        self.config = config

    def handle_cgi_request(self, request: CgiRequest) -> socket.socket:
        """Start the script for a request on the host and location it names."""
        try:
            vhost = self.config.hosts[request.host_index]
        except IndexError:
            raise LookupError(f"no virtual host number {request.host_index}") from None
        try:
            location = vhost.locations[request.location_index]
        except IndexError:
            raise LookupError(
                f"no location number {request.location_index} in {vhost.domain}"
            ) from None
        return launch_cgi(request, vhost, location, self.config.port)

    def handle_fcgi_request(self, fcgi_id: int) -> Optional[socket.socket]:
        """Open a connection to the configured backend ``fcgi_id``."""
        servers = self.config.fcgi
        if not 0 <= fcgi_id < len(servers):
            raise LookupError(f"no fastcgi backend number {fcgi_id}")
        server = servers[fcgi_id]
        if server.path is None and server.prog is None:
            raise LookupError(f"fastcgi backend {fcgi_id} is not configured")
        return open_fcgi(server)
"""Process setup for the server: options, directories, sockets and privileges."""

from __future__ import annotations

import errno
import fcntl
import getopt
import logging
import os
import pwd
import socket
from dataclasses import dataclass, field
from typing import Mapping, Optional

from geminid.config import GMID_STRING, Config
from geminid.util import NumberError, parse_portno, program_name

log = logging.getLogger(__name__)

_SHORT_OPTS = "6c:D:d:fH:hnP:p:Vvx:"
_LONG_OPTS = ["help", "version"]
_DATA_SUBDIR = "gmid"
_LISTEN_BACKLOG = 16


class UsageError(Exception):
    """The command line is malformed or its options contradict each other."""


@dataclass
class Options:
    """What the command line asked for."""

    ipv6: bool = False
    config_path: Optional[str] = None
    macros: dict[str, str] = field(default_factory=dict)
    certs_dir: Optional[str] = None
    foreground: bool = False
    hostname: Optional[str] = None
    help: bool = False
    conftest: int = 0
    pidfile: Optional[str] = None
    port: Optional[int] = None
    version: bool = False
    verbose: int = 0
    cgi: Optional[str] = None
    configless: bool = False
    prefork: Optional[int] = None
    args: list[str] = field(default_factory=list)


def data_dir(environ: Optional[Mapping[str, str]] = None) -> str:
    """The per-user data directory, created if missing.

    It is ``$XDG_DATA_HOME/gmid``, or ``$HOME/.local/share/gmid`` when the
    former is unset.  Raises ``RuntimeError`` if neither variable is set.
    """
    env = os.environ if environ is None else environ
    xdg = env.get("XDG_DATA_HOME")
    if xdg is None:
        home = env.get("HOME")
        if home is None:
            raise RuntimeError("XDG_DATA_HOME and HOME both empty")
        path = f"{home}/.local/share/{_DATA_SUBDIR}"
    else:
        path = f"{xdg}/{_DATA_SUBDIR}"
    mkdirs(path, 0o755)
    return path


def mkdirs(path: str, mode: int = 0o755) -> None:
    """Create ``path`` and its missing parents; existing entries are accepted."""
    parent = os.path.dirname(path.rstrip("/")) or "."
    if parent not in ("/", ".") and parent != path:
        mkdirs(parent, mode)
    try:
        os.mkdir(path, mode)
    except OSError as exc:
        if exc.errno != errno.EEXIST:
            raise


def local_cert_paths(hostname: str, directory: str) -> tuple[str, str]:
    """Certificate and key paths for ``hostname`` inside ``directory``."""
    return (
        f"{directory}/{hostname}.cert.pem",
        f"{directory}/{hostname}.key.pem",
    )


def make_socket(port: int, family: int) -> socket.socket:
    """A non-blocking socket listening on every address of ``family``."""
    if family == socket.AF_INET:
        address: tuple = ("0.0.0.0", port)
    elif family == socket.AF_INET6:
        address = ("::", port, 0, 0)
    else:
        raise ValueError(f"unsupported address family {family}")

    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if hasattr(socket, "SO_REUSEPORT"):
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        sock.setblocking(False)
        sock.bind(address)
        sock.listen(_LISTEN_BACKLOG)
    except OSError:
        sock.close()
        raise
    return sock


def write_pidfile(path: Optional[str]) -> Optional[int]:
    """Lock ``path`` and write this process id in it.

    Returns the descriptor holding the lock, or None when no path is given.
    Raises ``RuntimeError`` if another process holds the lock.
    """
    if path is None:
        return None

    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_CLOEXEC, 0o600)
    try:
        try:
            fcntl.lockf(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            raise RuntimeError(
                f"can't lock {path}, the server is already running?"
            ) from exc
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
    except BaseException:
        os.close(fd)
        raise
    return fd


def drop_priv(config: Config) -> None:
    """Chroot and switch to the configured user, as the configuration asks.

    Raises ``ValueError`` when a chroot is set without a user and
    ``LookupError`` when the user does not exist.
    """
    if config.chroot is not None and config.user is None:
        raise ValueError("can't chroot without an user to switch to after.")

    entry = None
    if config.user is not None:
        try:
            entry = pwd.getpwnam(config.user)
        except KeyError:
            raise LookupError(f"can't find user {config.user}") from None

    if config.chroot is not None:
        os.chroot(config.chroot)
        os.chdir("/")

    if entry is not None:
        os.setresuid(entry.pw_uid, entry.pw_uid, entry.pw_uid)

    if os.getuid() == 0:
        log.warning("not a good idea to run a network daemon as root")


def _absolutify(path: str) -> str:
    return os.path.abspath(path)


def parse_args(argv: list[str]) -> Options:
    """Parse the command line.

    Parsing stops at ``-h`` or ``-V``, which set ``help`` or ``version``.
    Raises ``UsageError`` on unknown options, bad values and options that do
    not go with a configuration file.
    """
    try:
        pairs, args = getopt.gnu_getopt(list(argv), _SHORT_OPTS, _LONG_OPTS)
    except getopt.GetoptError as exc:
        raise UsageError(str(exc)) from None

    opts = Options()
    for flag, value in pairs:
        if flag == "-6":
            opts.ipv6 = True
            opts.configless = True
        elif flag == "-c":
            opts.config_path = _absolutify(value)
        elif flag == "-D":
            name, sep, macro_value = value.partition("=")
            if not sep or not name:
                raise UsageError(f"could not parse macro definition: {value}")
            opts.macros[name] = macro_value
        elif flag == "-d":
            opts.certs_dir = value
            opts.configless = True
        elif flag == "-f":
            opts.foreground = True
        elif flag == "-H":
            opts.hostname = value
            opts.configless = True
        elif flag in ("-h", "--help"):
            opts.help = True
            return opts
        elif flag == "-n":
            opts.conftest += 1
        elif flag == "-P":
            opts.pidfile = value
        elif flag == "-p":
            try:
                opts.port = parse_portno(value)
            except NumberError as exc:
                raise UsageError(str(exc)) from None
            opts.configless = True
        elif flag in ("-V", "--version"):
            opts.version = True
            return opts
        elif flag == "-v":
            opts.verbose += 1
        elif flag == "-x":
            opts.cgi = value[1:] if value.startswith("/") else value
            opts.configless = True

    opts.args = args

    if opts.config_path is None:
        opts.configless = True
        opts.foreground = True
        opts.prefork = 1
        opts.verbose += 1

    if opts.config_path is not None and (opts.args or opts.configless):
        raise UsageError("can't specify options in config mode.")

    if opts.conftest and opts.config_path is None:
        raise UsageError("missing configuration")

    return opts


def usage(prog: Optional[str] = None) -> str:
    """The usage message."""
    name = prog or program_name()
    return (
        f"Version: {GMID_STRING}\n"
        f"Usage: {name} [-fnv] [-c config] [-D macro=value] [-P pidfile]\n"
        f"       {name} [-6hVv] [-d certs-dir] [-H hostname] [-p port]"
        f" [-x cgi] [dir]\n"
    )
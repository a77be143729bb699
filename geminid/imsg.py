"""Framed messages, optionally carrying a file descriptor, over a UNIX socket."""

from __future__ import annotations

import array
import errno
import os
import socket
import struct
from collections import deque
from dataclasses import dataclass
from typing import Optional

IBUF_READ_SIZE = 65535
MAX_IMSGSIZE = 16384
IMSGF_HASFD = 1

_HEADER = struct.Struct("=IHHII")
IMSG_HEADER_SIZE = _HEADER.size

_IOV_MAX = 1024
_INT_SIZE = array.array("i").itemsize


class ImsgError(Exception):
    """A message could not be built, framed or transmitted."""


@dataclass
class ImsgHeader:
    """Fixed-size header that precedes every message on the wire."""

    type: int
    len: int
    flags: int
    peerid: int
    pid: int

    def pack(self) -> bytes:
        """Encode the header in native byte order."""
        return _HEADER.pack(self.type, self.len, self.flags, self.peerid, self.pid)


def unpack_header(data: bytes) -> ImsgHeader:
    """Decode a header from the first bytes of ``data``."""
    if len(data) < IMSG_HEADER_SIZE:
        raise ImsgError(
            f"short header: {len(data)} bytes, need {IMSG_HEADER_SIZE}"
        )
    return ImsgHeader(*_HEADER.unpack_from(data))


@dataclass
class Imsg:
    """A received message: header, payload and the passed descriptor, if any."""

    hdr: ImsgHeader
    fd: Optional[int]
    data: bytes

    @property
    def type(self) -> int:
        return self.hdr.type

    @property
    def peerid(self) -> int:
        return self.hdr.peerid


class _OutBuf:
    __slots__ = ("data", "rpos", "fd")

    def __init__(self, data: bytes, fd: Optional[int]):
        self.data = data
        self.rpos = 0
        self.fd = fd

    @property
    def pending(self) -> memoryview:
        return memoryview(self.data)[self.rpos:]


class ImsgBuffer:
    """Queues outgoing messages and reassembles incoming ones on a socket."""

    def __init__(self, sock: socket.socket):
        self.sock = sock
        self.pid = os.getpid()
        self._out: deque[_OutBuf] = deque()
        self._rbuf = bytearray()
        self._fds: deque[int] = deque()

    @property
    def queued(self) -> int:
        """Number of messages waiting to be written."""
        return len(self._out)

    def compose(
        self,
        type: int,
        peerid: int = 0,
        pid: int = 0,
        fd: Optional[int] = None,
        data: bytes = b"",
    ) -> None:
        """Queue a message; ``fd`` is sent along with it and closed once sent.

        A ``pid`` of 0 stands for this process.  Raises ``ImsgError`` if the
        message would exceed ``MAX_IMSGSIZE``.
        """
        payload = bytes(data or b"")
        total = IMSG_HEADER_SIZE + len(payload)
        if total > MAX_IMSGSIZE:
            raise ImsgError(
                f"message of {total} bytes exceeds the limit of {MAX_IMSGSIZE}"
            )
        if fd is not None and fd < 0:
            fd = None
        header = ImsgHeader(
            type=int(type),
            len=total,
            flags=IMSGF_HASFD if fd is not None else 0,
            peerid=peerid,
            pid=pid or self.pid,
        )
        self._out.append(_OutBuf(header.pack() + payload, fd))

    def read(self) -> int:
        """Receive pending bytes into the read buffer.

        Returns the number of bytes read; 0 means the peer closed the
        connection.  At most one descriptor is kept per call; extra ones are
        closed.
        """
        space = max(IBUF_READ_SIZE - len(self._rbuf), 0)
        msg, ancdata, _flags, _addr = self.sock.recvmsg(
            space, socket.CMSG_SPACE(_INT_SIZE)
        )
        self._rbuf += msg

        kept = False
        for level, kind, cdata in ancdata:
            if level != socket.SOL_SOCKET or kind != socket.SCM_RIGHTS:
                continue
            fds = array.array("i")
            fds.frombytes(cdata[: len(cdata) - len(cdata) % _INT_SIZE])
            for fd in fds:
                if not kept:
                    self._fds.append(fd)
                    kept = True
                else:
                    os.close(fd)
        return len(msg)

    def get(self) -> Optional[Imsg]:
        """Take the next complete message from the read buffer, or None."""
        available = len(self._rbuf)
        if available < IMSG_HEADER_SIZE:
            return None
        hdr = unpack_header(self._rbuf)
        if hdr.len < IMSG_HEADER_SIZE or hdr.len > MAX_IMSGSIZE:
            raise ImsgError(f"invalid message length {hdr.len}")
        if hdr.len > available:
            return None

        data = bytes(self._rbuf[IMSG_HEADER_SIZE:hdr.len])
        fd = self._take_fd() if hdr.flags & IMSGF_HASFD else None
        del self._rbuf[: hdr.len]
        return Imsg(hdr=hdr, fd=fd, data=data)

    def flush(self) -> None:
        """Write every queued message, blocking as the socket requires."""
        while self._out:
            if self._write() <= 0:
                raise ImsgError("connection closed while flushing")

    def clear(self) -> None:
        """Drop queued output and close every descriptor not yet handed out."""
        while self._out:
            self._dequeue()
        while (fd := self._take_fd()) is not None:
            os.close(fd)

    def _take_fd(self) -> Optional[int]:
        return self._fds.popleft() if self._fds else None

    def _write(self) -> int:
        iov = []
        fd_buf: Optional[_OutBuf] = None
        for buf in self._out:
            if len(iov) >= _IOV_MAX:
                break
            iov.append(buf.pending)
            if buf.fd is not None:
                fd_buf = buf
                break

        ancdata = []
        if fd_buf is not None:
            ancdata.append(
                (socket.SOL_SOCKET, socket.SCM_RIGHTS, array.array("i", [fd_buf.fd]))
            )

        try:
            sent = self.sock.sendmsg(iov, ancdata)
        except OSError as exc:
            if exc.errno == errno.ENOBUFS:
                raise BlockingIOError(errno.EAGAIN, os.strerror(errno.EAGAIN)) from exc
            raise

        if sent == 0:
            return 0

        # descriptors go one at a time, so the fd left with whatever was sent
        if fd_buf is not None:
            os.close(fd_buf.fd)
            fd_buf.fd = None

        self._drain(sent)
        return 1

    def _drain(self, n: int) -> None:
        while self._out and n > 0:
            buf = self._out[0]
            remaining = len(buf.data) - buf.rpos
            if n >= remaining:
                n -= remaining
                self._dequeue()
            else:
                buf.rpos += n
                n = 0

    def _dequeue(self) -> None:
        buf = self._out.popleft()
        if buf.fd is not None:
            os.close(buf.fd)
            buf.fd = None
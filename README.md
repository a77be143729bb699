# geminid

`geminid` holds the pieces a Gemini server is built from: a
configuration model, the gateways that run CGI scripts and reach
FastCGI applications, a framed message channel between processes, and
helpers for setting up a daemon process.

## Modules

- `geminid.config`: the configuration model. `Config` holds the global
  settings and lists of virtual hosts (`VHost`) and FastCGI backends
  (`FcgiServer`). A `VHost` has per-path rules (`Location`) and lists
  of environment variables, FastCGI parameters and aliases.
  `ClientCert` carries the TLS details of a client. The enumerations
  are `Status` (Gemini status codes), `RequestType` and `ImsgType`.
  `Config.reset()` closes any open location directories and restores
  the defaults: port 1965, no IPv6, TLS 1.2 and 1.3, and a prefork of
  3. The verbosity is kept.
- `geminid.util`: `strtonum(numstr, minval, maxval)` parses a bounded
  base-10 integer. It raises `NumberError`, a `ValueError` whose
  `reason` is `"invalid"`, `"too small"` or `"too large"`.
  `parse_portno(text)` accepts 0 to 65535. `program_name()` returns
  the name the program was started as.
- `geminid.dirs`: `scandir_fd(fd, select, key)` lists the entries of a
  directory open on a descriptor, including `.` and `..`. It can filter
  the entries and sort them. `select_non_dot` and `select_non_dotdot`
  are ready-made filters.
- `geminid.imsg`: framed messages over a UNIX socket.
  `ImsgBuffer.compose` queues a message, which may carry one file
  descriptor. `flush` sends the queue. `read` receives bytes and `get`
  returns the next whole `Imsg`, or `None` if none is complete yet.
  `clear` drops queued output and closes received descriptors that
  were not handed out. `ImsgHeader.pack` and `unpack_header` encode and
  decode the header. Failures raise `ImsgError`.
- `geminid.fcgi`: the FastCGI client side. `encode_header`,
  `begin_request`, `encode_param`, `end_params` and `encode_request`
  build request bytes. `request_params` builds the CGI-style
  parameters for one request. `format_time` renders a timestamp in ISO
  8601 UTC. `FcgiReader.feed` takes reply bytes and returns the
  `Record`s for STDOUT and END_REQUEST. STDERR is discarded. A bad
  record raises `FcgiProtocolError`.
- `geminid.gateway`: `cgi_environ` builds a script's environment.
  `script_argv` builds its argument list. `launch_cgi` starts the
  script and returns a non-blocking socket that carries its output.
  `open_fcgi` connects to a FastCGI backend, which can be a program to
  start, a UNIX socket or a host and port. `Executor` looks up hosts,
  locations and backends in a `Config` and answers `CgiRequest`s and
  FastCGI requests.
- `geminid.daemon`: process setup. `parse_args` turns a command line
  into `Options` and raises `UsageError` when the line is wrong.
  `usage` returns the usage text. The module also provides:
  - `data_dir`, which creates a per-user data directory under
    `$XDG_DATA_HOME` or `~/.local/share`;
  - `mkdirs` and `local_cert_paths`;
  - `make_socket`, which returns a non-blocking listening socket;
  - `write_pidfile`, which writes a locked pid file;
  - `drop_priv`, which does a chroot and switches the user.

## Examples

```python
from geminid.util import parse_portno, strtonum, NumberError

port = parse_portno("1965")          # 1965

try:
    strtonum("70000", 0, 65535)
except NumberError as exc:
    print(exc.reason)                # too large
```

A query without `=` is split on `+` into percent-decoded arguments.
A query with `=` is left for the script to read from `QUERY_STRING`:

```python
from geminid.gateway import script_argv

script_argv("cgi/hello.sh", "a+b%20c")   # ["hello.sh", "a", "b c"]
script_argv("cgi/hello.sh", "x=1")       # ["hello.sh"]
```

Sending a message between two ends of a socket pair:

```python
import socket
from geminid.config import ImsgType
from geminid.imsg import ImsgBuffer

left, right = socket.socketpair()
sender, receiver = ImsgBuffer(left), ImsgBuffer(right)

sender.compose(ImsgType.QUIT, data=b"bye")
sender.flush()

receiver.read()
message = receiver.get()             # message.type == ImsgType.QUIT, message.data == b"bye"
```

## What it does not do

This is a library of parts, not a running server. It has no
command-line program. It does not read configuration files, and it has
no TLS listener or request loop that serves files or directory
listings. It has no logging process and no MIME type table. Code that
uses the package has to put these together itself. It can use
`parse_args`, `make_socket`, `Executor` and the FastCGI and imsg
helpers to do that.

## Requirements

Python 3.10 or newer on a POSIX system. Only the standard library is
used. Install the `test` extra to run the tests with pytest.
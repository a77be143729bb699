import os
import socket
import stat

import pytest

from geminid.config import GMID_STRING, Config
from geminid.daemon import (
    Options,
    UsageError,
    data_dir,
    drop_priv,
    local_cert_paths,
    make_socket,
    mkdirs,
    parse_args,
    usage,
    write_pidfile,
)


def test_data_dir_uses_xdg(tmp_path):
    result = data_dir({"XDG_DATA_HOME": str(tmp_path), "HOME": "/nonexistent"})
    assert result == f"{tmp_path}/gmid"
    assert os.path.isdir(result)


def test_data_dir_falls_back_to_home(tmp_path):
    result = data_dir({"HOME": str(tmp_path)})
    assert result == f"{tmp_path}/.local/share/gmid"
    assert os.path.isdir(result)


def test_data_dir_without_home_fails():
    with pytest.raises(RuntimeError):
        data_dir({})


def test_mkdirs_creates_nested(tmp_path):
    target = tmp_path / "a" / "b" / "c"
    mkdirs(str(target))
    assert target.is_dir()
    mkdirs(str(target))
    assert target.is_dir()


def test_mkdirs_file_in_the_way(tmp_path):
    (tmp_path / "f").write_text("x")
    with pytest.raises(OSError):
        mkdirs(str(tmp_path / "f" / "sub"))


def test_local_cert_paths():
    cert, key = local_cert_paths("localhost", "/certs")
    assert cert == "/certs/localhost.cert.pem"
    assert key == "/certs/localhost.key.pem"


def test_make_socket_listens():
    sock = make_socket(0, socket.AF_INET)
    try:
        host, port = sock.getsockname()
        assert port > 0
        assert sock.gettimeout() == 0.0
        client = socket.create_connection(("127.0.0.1", port), timeout=5)
        client.close()
    finally:
        sock.close()


def test_make_socket_bad_family():
    with pytest.raises(ValueError):
        make_socket(0, socket.AF_UNIX)


def test_write_pidfile_contents(tmp_path):
    path = tmp_path / "server.pid"
    path.write_text("stale contents that are long\n")
    fd = write_pidfile(str(path))
    try:
        assert path.read_text() == f"{os.getpid()}\n"
    finally:
        os.close(fd)


def test_write_pidfile_permissions(tmp_path):
    path = tmp_path / "new.pid"
    fd = write_pidfile(str(path))
    try:
        assert stat.S_IMODE(os.stat(path).st_mode) & 0o077 == 0
    finally:
        os.close(fd)


def test_write_pidfile_none():
    assert write_pidfile(None) is None


def test_drop_priv_chroot_without_user():
    with pytest.raises(ValueError):
        drop_priv(Config(chroot="/var/empty"))


def test_drop_priv_unknown_user():
    with pytest.raises(LookupError):
        drop_priv(Config(user="no-such-user-for-tests"))


def test_parse_args_configless_defaults():
    opts = parse_args([])
    assert opts.configless is True
    assert opts.foreground is True
    assert opts.prefork == 1
    assert opts.verbose == 1
    assert opts.args == []


def test_parse_args_directory_argument():
    opts = parse_args(["some/dir"])
    assert opts.args == ["some/dir"]
    assert opts.configless is True


def test_parse_args_config_mode(tmp_path):
    opts = parse_args(["-c", "server.conf", "-f", "-P", "x.pid"])
    assert opts.config_path == os.path.abspath("server.conf")
    assert opts.configless is False
    assert opts.foreground is True
    assert opts.pidfile == "x.pid"
    assert opts.prefork is None


@pytest.mark.parametrize(
    "argv",
    [
        ["-c", "server.conf", "-p", "1966"],
        ["-c", "server.conf", "dir"],
        ["-c", "server.conf", "-6"],
        ["-c", "server.conf", "-H", "example.com"],
    ],
)
def test_parse_args_options_in_config_mode(argv):
    with pytest.raises(UsageError):
        parse_args(argv)


def test_parse_args_conftest_needs_config():
    with pytest.raises(UsageError):
        parse_args(["-n"])


def test_parse_args_conftest_counts():
    opts = parse_args(["-nn", "-c", "server.conf"])
    assert opts.conftest == 2


def test_parse_args_cgi_strips_slash():
    opts = parse_args(["-x", "/cgi-bin/script"])
    assert opts.cgi == "cgi-bin/script"


def test_parse_args_port():
    opts = parse_args(["-p", "1966", "-6"])
    assert opts.port == 1966
    assert opts.ipv6 is True


@pytest.mark.parametrize("port", ["65536", "-1", "abc"])
def test_parse_args_bad_port(port):
    with pytest.raises(UsageError):
        parse_args(["-p", port])


def test_parse_args_macros():
    opts = parse_args(["-D", "name=value", "-c", "server.conf"])
    assert opts.macros == {"name": "value"}


def test_parse_args_bad_macro():
    with pytest.raises(UsageError):
        parse_args(["-D", "novalue"])


def test_parse_args_unknown_option():
    with pytest.raises(UsageError):
        parse_args(["-z"])


def test_parse_args_help_and_version():
    assert parse_args(["-h"]).help is True
    assert parse_args(["--help"]).help is True
    assert parse_args(["-V"]).version is True
    assert parse_args(["--version"]).version is True


def test_parse_args_verbose_counts():
    opts = parse_args(["-vv"])
    assert opts.verbose == 3


def test_options_defaults():
    opts = Options()
    assert opts.macros == {} and opts.conftest == 0 and opts.configless is False


def test_usage_text():
    text = usage("srv")
    assert text.startswith(f"Version: {GMID_STRING}\n")
    assert text.count("srv") == 2
    assert "[-D macro=value]" in text
    assert text.endswith("[dir]\n")
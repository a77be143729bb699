import os
from types import SimpleNamespace

import pytest

from geminid.dirs import scandir_fd, select_non_dot, select_non_dotdot


@pytest.fixture
def populated(tmp_path):
    for name in ("beta.gmi", "Alpha.gmi", "gamma"):
        (tmp_path / name).write_text("x")
    (tmp_path / "sub").mkdir()
    fd = os.open(tmp_path, os.O_RDONLY)
    yield fd
    os.close(fd)


def test_lists_everything_without_selector(populated):
    names = scandir_fd(populated)
    assert sorted(names) == sorted([".", "..", "beta.gmi", "Alpha.gmi", "gamma", "sub"])


def test_select_non_dotdot(populated):
    names = scandir_fd(populated, select_non_dotdot, None)
    assert sorted(names) == sorted(["beta.gmi", "Alpha.gmi", "gamma", "sub"])


def test_select_non_dot_keeps_parent(populated):
    names = scandir_fd(populated, select_non_dot, None)
    assert "." not in names
    assert ".." in names
    assert len(names) == 5


def test_sorted_with_key(populated):
    names = scandir_fd(populated, select_non_dotdot, str.lower)
    assert names == sorted(names, key=str.lower)
    assert names[0] == "Alpha.gmi"


def test_descriptor_stays_usable(populated):
    first = scandir_fd(populated, select_non_dotdot, sorted and str)
    second = scandir_fd(populated, select_non_dotdot, str)
    assert first == second


def test_empty_directory(tmp_path):
    fd = os.open(tmp_path, os.O_RDONLY)
    try:
        assert scandir_fd(fd, select_non_dotdot, None) == []
    finally:
        os.close(fd)


def test_bad_descriptor_raises(tmp_path):
    fd = os.open(tmp_path, os.O_RDONLY)
    os.close(fd)
    with pytest.raises(OSError):
        scandir_fd(fd)


@pytest.mark.parametrize(
    "name, non_dot, non_dotdot",
    [
        (".", False, False),
        ("..", True, False),
        (".hidden", True, True),
        ("index.gmi", True, True),
    ],
)
def test_selectors(name, non_dot, non_dotdot):
    assert select_non_dot(name) is non_dot
    assert select_non_dotdot(name) is non_dotdot


def test_selectors_accept_named_entries():
    assert select_non_dotdot(SimpleNamespace(name="..")) is False
    assert select_non_dot(SimpleNamespace(name="..")) is True
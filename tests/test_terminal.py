import io

import pytest

from sshm.session.terminal import TerminalSize, raw_mode, terminal_size


@pytest.fixture
def no_tty():
    return io.StringIO()


def test_explicit_values_win(no_tty):
    size = terminal_size(120, 40, stream=no_tty, environ={"COLUMNS": "90", "LINES": "30"})
    assert size == TerminalSize(120, 40)


def test_environment_fallback(no_tty):
    assert terminal_size(stream=no_tty, environ={"COLUMNS": "90", "LINES": "30"}) == TerminalSize(90, 30)


def test_partial_explicit_fills_from_discovered(no_tty):
    assert terminal_size(cols=132, stream=no_tty, environ={}) == TerminalSize(132, 24)


def test_default(no_tty):
    assert terminal_size(stream=no_tty, environ={"COLUMNS": "wide"}) == TerminalSize(80, 24)


@pytest.mark.parametrize("cols, rows, expected", [
    (1, 1, TerminalSize(10, 2)),
    (5000, 5000, TerminalSize(1000, 1000)),
    (200, 60, TerminalSize(200, 60)),
])
def test_clamped(cols, rows, expected, no_tty):
    assert terminal_size(cols, rows, stream=no_tty, environ={}) == expected


def test_raw_mode_leaves_non_tty_alone():
    with raw_mode(io.BytesIO()) as entered:
        assert entered is False

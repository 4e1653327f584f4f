#! /usr/bin/env python3

"""Terminal background color detection.

This module finds the background color of the controlling terminal,
so that a text UI can decide whether it runs on a dark or light theme.

Two strategies are tried, in order:

1. On unix-like platforms, the terminal is asked for its background
   color with the xterm "dynamic colors" OSC 11 query, and the
   ``rgb:`` reply is parsed. This value is precise and up to date.
2. The ``COLORFGBG`` environment variable, set by konsole, the rxvt
   family or by the user, is read and its background ANSI index is
   mapped to a conventional RGB value. This value is approximate.

Nothing is cached: every call runs the detection again.
"""

from __future__ import annotations

import contextlib
import os
import re
import selectors
import sys
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

try:
    import termios
except ImportError:  # not a unix-like platform
    termios = None  # type: ignore[assignment]

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from contextlib import AbstractContextManager

DEBUG = os.environ.get("DEBUG") is not None

DEFAULT_TIMEOUT = 0.02
DARK_THRESHOLD = 0.6
MAX_REPLY_SIZE = 1024
READ_SIZE = 256
TTY_PATH = "/dev/tty"

OSC_QUERY = b"\033]11;?\a"  # OSC 11, background color
DA_QUERY = b"\033[c"  # primary device attributes
BEL = b"\a"
ST = b"\033\\"

_OSC_REPLY = re.compile(rb"\033\]\s*11;")
_DA_REPLY = re.compile(rb"\033\[\?[\d;]*c")
_HEX_FIELD = re.compile(r"[0-9a-fA-F]{1,4}")

# xterm defaults for the 16 standard ANSI colors, 8-15 being the bright variants.
ANSI_PALETTE: tuple[tuple[int, int, int], ...] = (
    (0, 0, 0),
    (128, 0, 0),
    (0, 128, 0),
    (128, 128, 0),
    (0, 0, 128),
    (128, 0, 128),
    (0, 128, 128),
    (192, 192, 192),
    (128, 128, 128),
    (255, 0, 0),
    (0, 255, 0),
    (255, 255, 0),
    (0, 0, 255),
    (255, 0, 255),
    (0, 255, 255),
    (255, 255, 255),
)

# Rec. 709 luma coefficients, applied to gamma-encoded channels.
LUMA_WEIGHTS = (0.2126, 0.7152, 0.0722)


def debug(*args: str) -> None:
    """Print debug messages to stderr if DEBUG is enabled."""
    if DEBUG:
        print(*args, file=sys.stderr)  # noqa: T201


class DetectionError(Exception):
    """Base class of every detection failure."""


class Unsupported(DetectionError):
    """No strategy could determine the background color."""


class TerminalIOError(DetectionError):
    """The terminal device is missing, or a read, write or mode change failed."""


class QueryTimeout(DetectionError):
    """The terminal did not answer the color query in time."""


class ParseError(DetectionError, ValueError):
    """A color reply or ``COLORFGBG`` value is malformed."""


@dataclass(frozen=True)
class Color:
    """An RGB color, each channel in 0-255."""

    r: int
    g: int
    b: int

    def __post_init__(self) -> None:
        """Reject channels outside of the 8-bit range."""
        for name in ("r", "g", "b"):
            value = getattr(self, name)
            if not isinstance(value, int) or not 0 <= value <= 255:  # noqa: PLR2004
                msg = f"invalid {name} channel: {value!r}"
                raise ValueError(msg)

    @classmethod
    def from_ansi(cls, index: int) -> Color:
        """Return the conventional RGB value of an ANSI color index (0-15)."""
        if not 0 <= index < len(ANSI_PALETTE):
            msg = f"ANSI index out of range: {index}"
            raise ValueError(msg)
        return cls(*ANSI_PALETTE[index])

    def luma(self) -> float:
        """Return the perceived brightness of the color.

        Returns:
            A value between 0 (black) and 1 (white).

        """
        wr, wg, wb = LUMA_WEIGHTS
        value = (wr * self.r + wg * self.g + wb * self.b) / 255.0
        return min(value, 1.0)

    def is_dark(self, threshold: float = DARK_THRESHOLD) -> bool:
        """Tell whether the luma of the color is below ``threshold``."""
        return self.luma() < threshold

    def hex(self) -> str:
        """Return the color as ``#rrggbb``."""
        return f"#{self.r:02x}{self.g:02x}{self.b:02x}"


class Terminal(Protocol):
    """What the color query needs from a terminal device."""

    def write(self, data: bytes) -> None:
        """Write all of ``data`` to the terminal."""
        ...

    def read(self, size: int, timeout: float) -> bytes:
        """Read up to ``size`` bytes, waiting at most ``timeout`` seconds.

        Returns ``b""`` when nothing arrived in time.
        """
        ...

    def raw(self) -> AbstractContextManager[None]:
        """Return a guard keeping the terminal in raw mode while held."""
        ...

    def close(self) -> None:
        """Release the terminal device."""
        ...


def _check_foreground(fd: int) -> None:
    """Refuse to touch a terminal whose foreground job is another process group.

    Changing its mode from the background would stop the process with
    SIGTTOU. A terminal that is not the controlling one of this process
    is not subject to job control.
    """
    try:
        foreground = os.tcgetpgrp(fd)
    except OSError:
        return
    if foreground != os.getpgrp():
        msg = "not in the foreground process group of the terminal"
        raise TerminalIOError(msg)


def _restore_mode(fd: int, mode: list) -> None:
    try:
        termios.tcsetattr(fd, termios.TCSAFLUSH, mode)
    except termios.error as exc:
        msg = f"cannot restore terminal mode: {exc}"
        raise TerminalIOError(msg) from exc


@contextlib.contextmanager
def raw_mode(fd: int) -> Iterator[None]:
    """Disable line buffering and echo on a terminal for the duration of a block.

    The previous mode is restored exactly once when the block exits,
    whatever the way it exits. Pending input is discarded on restore, so
    that late replies do not reach the application. A failed restore is
    only reported when the block itself succeeded.

    Args:
        fd: File descriptor of the terminal device.

    Raises:
        TerminalIOError: If the platform has no termios, the process is
            in the background, or the terminal rejects the mode change.

    """
    if termios is None:
        msg = "raw terminal mode is not available on this platform"
        raise TerminalIOError(msg)
    _check_foreground(fd)
    try:
        old = termios.tcgetattr(fd)
        new = old[:]
        new[3] &= ~(termios.ICANON | termios.ECHO)
        termios.tcsetattr(fd, termios.TCSANOW, new)
    except termios.error as exc:
        msg = f"cannot switch terminal to raw mode: {exc}"
        raise TerminalIOError(msg) from exc
    try:
        yield
    except BaseException:
        try:
            _restore_mode(fd, old)
        except TerminalIOError as exc:
            debug(str(exc))
        raise
    _restore_mode(fd, old)


class TtyDevice:
    """The controlling terminal.

    It is opened directly rather than through the standard streams,
    which may be redirected while the terminal is still interactive.
    """

    def __init__(self, path: str | None = None) -> None:
        path = path or TTY_PATH
        try:
            self.fd = os.open(path, os.O_RDWR | os.O_NOCTTY)
        except OSError as exc:
            msg = f"no controlling terminal: {exc}"
            raise TerminalIOError(msg) from exc

    def __enter__(self) -> TtyDevice:
        """Return the open device."""
        return self

    def __exit__(self, *exc_info: object) -> None:
        """Close the device."""
        self.close()

    def write(self, data: bytes) -> None:
        """Write all of ``data``, looping over partial writes."""
        try:
            while data:
                written = os.write(self.fd, data)
                data = data[written:]
        except OSError as exc:
            msg = f"cannot write to terminal: {exc}"
            raise TerminalIOError(msg) from exc

    def read(self, size: int, timeout: float) -> bytes:
        """Read up to ``size`` bytes, waiting at most ``timeout`` seconds.

        A selector is used rather than ``select.select``, which cannot
        watch descriptors above ``FD_SETSIZE``.
        """
        try:
            with selectors.DefaultSelector() as selector:
                selector.register(self.fd, selectors.EVENT_READ)
                if not selector.select(max(timeout, 0.0)):
                    return b""
            return os.read(self.fd, size)
        except (OSError, ValueError) as exc:
            msg = f"cannot read from terminal: {exc}"
            raise TerminalIOError(msg) from exc

    def raw(self) -> AbstractContextManager[None]:
        """Return the raw-mode guard of this device."""
        return raw_mode(self.fd)

    def close(self) -> None:
        """Close the descriptor."""
        os.close(self.fd)


def _reply_complete(buf: bytes) -> bool:
    m = _OSC_REPLY.search(buf)
    if not m:
        return False
    rest = buf[m.end() :]
    return BEL in rest or ST in rest


def query_background(
    timeout: float = DEFAULT_TIMEOUT,
    terminal: Terminal | None = None,
    *,
    device_attributes: bool = True,
) -> bytes:
    """Query the terminal for its background color using OSC 11.

    The reply is read in a loop, as it may come in fragments, until it
    is terminated by BEL or ST, or until ``timeout`` seconds elapsed in
    total. The terminal is in raw mode only while the query runs.

    When ``device_attributes`` is set, a device attributes request is
    sent after the color query. Terminals answer in order, so a device
    attributes reply coming first means the color query is ignored and
    there is no point in waiting for the timeout.

    Args:
        timeout: Maximum time to wait for the reply, in seconds.
        terminal: Terminal to query, the controlling terminal if None.
        device_attributes: Whether to send the device attributes request.

    Returns:
        The raw bytes received, containing a complete OSC 11 reply.

    Raises:
        TerminalIOError: If the terminal cannot be opened, read or written.
        QueryTimeout: If no complete reply arrived in time.
        Unsupported: If the terminal ignores the color query.
        ParseError: If the terminal sent too much without answering.

    """
    if terminal is None:
        with TtyDevice() as tty:
            return query_background(
                timeout, tty, device_attributes=device_attributes
            )

    query = OSC_QUERY + DA_QUERY if device_attributes else OSC_QUERY
    deadline = time.monotonic() + timeout
    buf = b""
    with terminal.raw():
        terminal.write(query)
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                msg = f"no reply within {timeout * 1000:.0f} ms (got {buf!r})"
                raise QueryTimeout(msg)
            buf += terminal.read(READ_SIZE, remaining)
            if _reply_complete(buf):
                return buf
            if device_attributes and _DA_REPLY.search(buf):
                msg = "terminal does not answer the background color query"
                raise Unsupported(msg)
            if len(buf) > MAX_REPLY_SIZE:
                msg = f"reply exceeds {MAX_REPLY_SIZE} bytes without terminator"
                raise ParseError(msg)


def _scale_hex(field: str) -> int:
    """Convert a 1-4 digit hex field to an 8-bit channel.

    The field is scaled to 16 bits, then its most significant 8 bits
    are kept: ``f``, ``ff`` and ``ffff`` all give 255.
    """
    if not _HEX_FIELD.fullmatch(field):
        msg = f"invalid hex color field: {field!r}"
        raise ParseError(msg)
    full = 16 ** len(field) - 1
    return (int(field, 16) * 0xFFFF // full) >> 8


def parse_osc_color(reply: bytes) -> Color:
    """Parse an OSC 11 reply into a color.

    Args:
        reply: Bytes like ``ESC ] 11;rgb:RRRR/GGGG/BBBB`` followed by
            BEL or ESC backslash. Fields have 1 to 4 hex digits.

    Returns:
        The background color.

    Raises:
        ParseError: If the reply holds no well-formed ``rgb:`` color.

    """
    start = reply.find(b"rgb:")
    if start < 0:
        msg = f"no rgb: color in reply {reply!r}"
        raise ParseError(msg)
    # the terminator, and whatever follows it, carries no color
    body = re.split(rb"[\a\033]", reply[start + 4 :], maxsplit=1)[0]
    try:
        text = body.decode("ascii")
    except UnicodeDecodeError as exc:
        msg = f"non-ascii color in reply {reply!r}"
        raise ParseError(msg) from exc
    fields = text.split("/")
    rgb_fields = 3
    if len(fields) != rgb_fields:
        msg = f"expected 3 color fields, got {len(fields)} in {text!r}"
        raise ParseError(msg)
    r, g, b = (_scale_hex(f) for f in fields)
    return Color(r, g, b)


def parse_colorfgbg(value: str) -> Color:
    """Parse a ``COLORFGBG`` value like ``15;0`` into the background color.

    Only the second field, the background ANSI index, is used. The
    resulting color comes from a conventional palette, so it is less
    precise than what the terminal reports to an OSC 11 query.

    Raises:
        ParseError: If the value has fewer than two fields, or the
            background is not an index between 0 and 15.

    """
    fields = value.split(";")
    min_fields = 2
    if len(fields) < min_fields:
        msg = f"expected fg;bg in COLORFGBG, got {value!r}"
        raise ParseError(msg)
    bg = fields[1].strip()
    if not (bg.isascii() and bg.isdigit()) or int(bg) >= len(ANSI_PALETTE):
        msg = f"invalid background ANSI index in COLORFGBG: {bg!r}"
        raise ParseError(msg)
    return Color.from_ansi(int(bg))


def _color_from_env() -> Color:
    value = os.environ.get("COLORFGBG")
    if value is None:
        msg = "COLORFGBG is not set"
        raise Unsupported(msg)
    return parse_colorfgbg(value)


def _strategies(timeout: float) -> list[tuple[str, Callable[[], Color]]]:
    """Return the detection strategies of this platform, best first."""
    strategies: list[tuple[str, Callable[[], Color]]] = []
    if termios is not None:
        strategies.append(
            ("OSC 11", lambda: parse_osc_color(query_background(timeout)))
        )
    strategies.append(("COLORFGBG", _color_from_env))
    return strategies


def background_color(timeout: float = DEFAULT_TIMEOUT) -> Color:
    """Determine the background color of the terminal.

    Each strategy is tried once, and the first color found is returned.

    Args:
        timeout: Maximum time to wait for the terminal reply, in seconds.

    Returns:
        The background color.

    Raises:
        Unsupported: If no strategy could determine the color.

    """
    error: DetectionError | None = None
    for name, strategy in _strategies(timeout):
        try:
            color = strategy()
        except DetectionError as exc:
            debug(f"{name} failed: {exc}")
            error = exc
        else:
            debug(f"{name}: {color=}")
            return color
    msg = "unable to determine the terminal background color"
    raise Unsupported(msg) from error


def luma(timeout: float = DEFAULT_TIMEOUT) -> float:
    """Return the luma of the terminal background, from 0 (black) to 1 (white).

    Raises:
        Unsupported: If the background color cannot be determined.

    """
    return background_color(timeout).luma()


def main() -> int:
    """Print whether the terminal background is dark or light."""
    try:
        lum = luma()
    except Unsupported:
        debug("unable to determine background color")
        sys.stdout.write("unknown")
        return 2
    debug(f"{lum=}")

    sys.stdout.write("dark" if lum < DARK_THRESHOLD else "light")
    return 0


if __name__ == "__main__":
    sys.exit(main())

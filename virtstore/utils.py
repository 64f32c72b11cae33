"""Small helpers shared by the storage code: naming, UUIDs, retries, timestamps."""

from __future__ import annotations

import logging
import re
import string
import time
import uuid
from typing import Callable, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")

DISK_LETTERS = string.ascii_lowercase

LIBVIRT_CON_IS_NIL = "the libvirt connection was nil"

RESOURCE_STATE_TIMEOUT = 60.0
RESOURCE_STATE_DELAY = 5.0
RESOURCE_STATE_MIN_TIMEOUT = 3.0

COPIER_BUFFER_SIZE = 4 * 1024 * 1024

WAIT_SLEEP_INTERVAL = 1.0
WAIT_TIMEOUT = 5 * 60.0

_INTEGER = re.compile(r"[+-]?[0-9]+")

_YES_NO = {True: "yes", False: "no"}


class LibvirtError(Exception):
    """An error reported by libvirt, carrying its numeric error code."""

    def __init__(self, code: int, message: str = "") -> None:
        super().__init__(message or f"libvirt error {code}")
        self.code = int(code)
        self.message = message


class WaitTimeoutError(Exception):
    """Raised when an operation keeps failing past its deadline."""


def disk_letter_for_index(i: int) -> str:
    """Return the disk suffix for index ``i``: a..z, aa..az, ba.. and so on."""
    q, r = divmod(i, len(DISK_LETTERS))
    letter = DISK_LETTERS[r]
    if q == 0:
        return letter
    return disk_letter_for_index(q - 1) + letter


def wait_for_success(
    error_message: str,
    func: Callable[[], T],
    sleep_interval: float | None = None,
    timeout: float | None = None,
) -> T:
    """Call ``func`` until it stops raising, or raise WaitTimeoutError."""
    interval = WAIT_SLEEP_INTERVAL if sleep_interval is None else sleep_interval
    deadline = WAIT_TIMEOUT if timeout is None else timeout
    start = time.monotonic()
    while True:
        try:
            return func()
        except Exception as exc:  # noqa: BLE001 - any failure is retried
            log.debug("%s. Re-trying.", exc)
            time.sleep(interval)
            if time.monotonic() - start > deadline:
                raise WaitTimeoutError(f"{error_message}: {exc}") from exc


def format_bool_yes_no(b: bool) -> str:
    """Render a truth value as libvirt's "yes" or "no"."""
    return _YES_NO[bool(b)]


def is_error(err: BaseException | None, error_code: int) -> bool:
    """Tell whether ``err`` or an exception it was raised from has ``error_code``."""
    seen: set[int] = set()
    current = err
    while current is not None and id(current) not in seen:
        if isinstance(current, LibvirtError):
            return current.code == int(error_code)
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return False


def parse_uuid(uuid_str: str) -> bytes:
    """Parse a textual UUID into its 16 raw bytes; raise ValueError if invalid."""
    return uuid.UUID(uuid_str).bytes


def uuid_string(value: bytes) -> str:
    """Format 16 raw UUID bytes in canonical lower-case form."""
    return str(uuid.UUID(bytes=bytes(value)))


def int2bool(b: int) -> bool:
    """Libvirt flags are true only when exactly 1."""
    return b == 1


def bool2int(b: bool) -> int:
    """Encode a truth value as the 0/1 flag libvirt expects."""
    return int(bool(b))


def _atoi(text: str) -> int:
    return int(text) if _INTEGER.fullmatch(text) else 0


def time_from_epoch(text: str) -> int:
    """Turn a libvirt "seconds.nanoseconds" stamp into nanoseconds since the epoch.

    Unparsable parts count as zero; the fractional part is read as a plain
    number of nanoseconds.
    """
    parts = text.split(".")
    nanos = _atoi(parts[1]) if len(parts) == 2 else 0
    seconds = _atoi(parts[0])
    return seconds * 1_000_000_000 + nanos
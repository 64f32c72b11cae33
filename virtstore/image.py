"""Source images for volumes, read from local files or over HTTP."""

from __future__ import annotations

import logging
import os
import time
import urllib.error
import urllib.parse
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.utils import formatdate
from typing import BinaryIO, Callable

from .utils import time_from_epoch
from .volume_def import StorageVolume

log = logging.getLogger(__name__)

QCOW2_MAGIC = b"QFI\xfb\x00\x00\x00\x03"
HEADER_SIZE = 8

MAX_HTTP_RETRIES = 3
RETRY_WAIT = 2.0

Copier = Callable[[BinaryIO], object]


class Image(ABC):
    """A source image that can be sized, probed and copied into a volume."""

    @abstractmethod
    def size(self) -> int:
        """Return the image size in bytes."""

    @abstractmethod
    def is_qcow2(self) -> bool:
        """Tell whether the image starts with a qcow2 header."""

    @abstractmethod
    def import_image(self, copier: Copier, vol: StorageVolume) -> None:
        """Feed the image to ``copier`` unless ``vol`` is already up to date."""

    @abstractmethod
    def __str__(self) -> str:
        ...


def _volume_mtime(vol: StorageVolume) -> str:
    target = vol.target
    if target is None or target.timestamps is None:
        return ""
    return target.timestamps.mtime


def is_qcow2_header(buf: bytes) -> bool:
    """Tell whether ``buf`` starts with the qcow2 magic and version 3."""
    if len(buf) < HEADER_SIZE:
        raise ValueError(f"expected header of 8 bytes. Got {len(buf)}")
    return bytes(buf[:HEADER_SIZE]) == QCOW2_MAGIC


@dataclass
class LocalImage(Image):
    path: str

    def __str__(self) -> str:
        return self.path

    def size(self) -> int:
        return os.stat(self.path).st_size

    def is_qcow2(self) -> bool:
        with open(self.path, "rb") as file:
            header = file.read(HEADER_SIZE)
        if len(header) < HEADER_SIZE:
            raise ValueError(
                f"could not read {HEADER_SIZE} header bytes from {self.path}"
            )
        return is_qcow2_header(header)

    def import_image(self, copier: Copier, vol: StorageVolume) -> None:
        with open(self.path, "rb") as file:
            mtime = _volume_mtime(vol)
            # skip the upload when the modification times are the same
            if mtime and os.fstat(file.fileno()).st_mtime_ns == time_from_epoch(mtime):
                log.info("Modification time is the same: skipping image copy")
                return
            copier(file)


def _fetch(url: str, method: str = "GET", headers: dict[str, str] | None = None):
    """Open ``url``; HTTP error statuses come back as responses, not exceptions."""
    request = urllib.request.Request(url, method=method, headers=headers or {})
    try:
        return urllib.request.urlopen(request)
    except urllib.error.HTTPError as exc:
        return exc


def _status_line(response) -> str:
    return f"{response.status} {getattr(response, 'reason', '')}".strip()


@dataclass
class HttpImage(Image):
    url: str

    def __str__(self) -> str:
        return self.url

    def size(self) -> int:
        with _fetch(self.url, method="HEAD") as response:
            status = response.status
            status_line = _status_line(response)
            length = response.headers.get("Content-Length")
        if status == 403:
            # possibly only HEAD is forbidden; try a GET without reading the body
            with _fetch(self.url) as response:
                status = response.status
                status_line = _status_line(response)
                length = response.headers.get("Content-Length")
        if status != 200:
            raise OSError(
                f"error accessing remote resource: {self.url} - {status_line}"
            )
        try:
            return int(length or "")
        except ValueError as exc:
            raise ValueError(
                f'error while getting Content-Length of "{self.url}": {exc} - got {length or ""}'
            ) from exc

    def is_qcow2(self) -> bool:
        with _fetch(self.url, headers={"Range": f"bytes=0-{HEADER_SIZE - 1}"}) as response:
            if response.status != 206:
                raise OSError(
                    "can't retrieve partial header of resource to determine file type: "
                    f"{self.url} - {_status_line(response)}"
                )
            header = response.read()
        if len(header) < HEADER_SIZE:
            raise OSError(
                "can't retrieve read header of resource to determine file type: "
                f"{self.url} - {len(header)} bytes read"
            )
        return is_qcow2_header(header)

    def import_image(self, copier: Copier, vol: StorageVolume) -> None:
        headers: dict[str, str] = {}
        mtime = _volume_mtime(vol)
        if mtime:
            seconds = time_from_epoch(mtime) // 1_000_000_000
            headers["If-Modified-Since"] = formatdate(seconds, usegmt=True)

        status_line = ""
        for attempt in range(MAX_HTTP_RETRIES):
            try:
                response = _fetch(self.url, headers=headers)
            except urllib.error.URLError as exc:
                raise OSError(f"error while downloading {self.url}: {exc}") from exc
            with response:
                status = response.status
                status_line = _status_line(response)
                log.debug("url resp status code %s (retry #%d)", status_line, attempt)
                if status == 304:
                    return
                if status == 200:
                    copier(response)
                    return
            if status < 500:
                break
            # server side problem: wait a little and try again
            time.sleep(RETRY_WAIT)

        raise OSError(f"error while downloading {self.url}: {status_line}")


def new_image(source: str) -> Image:
    """Build the image for a path, a file:// URL or an http(s) URL."""
    try:
        parsed = urllib.parse.urlsplit(source)
    except ValueError as exc:
        raise ValueError(f"can't parse source '{source}' as url: {exc}") from exc

    scheme = parsed.scheme
    if scheme.startswith("http"):
        return HttpImage(url=parsed.geturl())
    path = urllib.parse.unquote(parsed.path)
    if scheme == "file" and os.name == "nt":
        # file:///C:/foo/bar.iso carries a leading "/" before the drive
        return LocalImage(path=os.path.normpath(path.lstrip("/")))
    if scheme in ("file", ""):
        return LocalImage(path=path)
    if os.name == "nt" and os.path.isfile(source):
        # a plain path such as C:\foo\bar.iso looks like a URL with scheme "c"
        return LocalImage(path=os.path.normpath(source))
    raise ValueError(
        f"don't know how to handle image URI from '{source}' (scheme: {scheme})"
    )
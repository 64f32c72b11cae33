import os
import re
import threading
from email.utils import parsedate_to_datetime
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from unittest import mock

import pytest

from virtstore.image import (
    HttpImage,
    LocalImage,
    is_qcow2_header,
    new_image,
)
from virtstore.volume_def import StorageVolumeTimestamps, new_def_volume

QCOW2_CONTENT = b"QFI\xfb\x00\x00\x00\x03" + b"\x00" * 120
RAW_CONTENT = b"this is a qcow image... well, it is not"
SERVER_MTIME = 1_500_000_000


class _Handler(BaseHTTPRequestHandler):
    content = b""
    mtime = SERVER_MTIME
    errors: list = []
    forbid_head = False

    def log_message(self, *args):
        pass

    def do_HEAD(self):
        self._respond(with_body=False)

    def do_GET(self):
        self._respond(with_body=True)

    def _respond(self, with_body):
        if self.errors:
            self.send_error(self.errors.pop(0))
            return
        if not with_body and self.forbid_head:
            self.send_error(403)
            return
        since = self.headers.get("If-Modified-Since")
        if since and parsedate_to_datetime(since).timestamp() >= self.mtime:
            self.send_response(304)
            self.end_headers()
            return
        body = self.content
        match = re.fullmatch(r"bytes=(\d+)-(\d+)", self.headers.get("Range", ""))
        if match:
            start, end = int(match.group(1)), int(match.group(2))
            body = self.content[start : end + 1]
            self.send_response(206)
            self.send_header(
                "Content-Range", f"bytes {start}-{start + len(body) - 1}/{len(self.content)}"
            )
        else:
            self.send_response(200)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if with_body:
            self.wfile.write(body)


@pytest.fixture
def serve():
    servers = []

    def start(**attrs):
        handler = type("Handler", (_Handler,), attrs)
        server = ThreadingHTTPServer(("127.0.0.1", 0), handler)
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        host, port = server.server_address[:2]
        return f"http://{host}:{port}/image"

    yield start
    for server in servers:
        server.shutdown()
        server.server_close()


@pytest.fixture
def qcow2_file(tmp_path):
    path = tmp_path / "test.qcow2"
    path.write_bytes(QCOW2_CONTENT)
    return str(path)


@pytest.fixture
def raw_file(tmp_path):
    path = tmp_path / "initrd.img"
    path.write_bytes(RAW_CONTENT)
    return str(path)


def _reader(store):
    def copier(reader):
        store.append(reader.read())

    return copier


def test_is_qcow2_header():
    assert is_qcow2_header(QCOW2_CONTENT) is True
    assert is_qcow2_header(b"QFI\xfb\x00\x00\x00\x02") is False
    assert is_qcow2_header(RAW_CONTENT) is False


def test_is_qcow2_header_too_short():
    with pytest.raises(ValueError, match="Got 3"):
        is_qcow2_header(b"QFI")


@pytest.mark.parametrize(
    "fixture_name, size, qcow2",
    [("qcow2_file", len(QCOW2_CONTENT), True), ("raw_file", len(RAW_CONTENT), False)],
)
def test_new_local_image(request, fixture_name, size, qcow2):
    path = request.getfixturevalue(fixture_name)
    for source in (path, "file://" + path):
        img = new_image(source)
        assert img == LocalImage(path=path)
        assert str(img) == path
        assert img.is_qcow2() is qcow2
        assert img.size() == size


@pytest.mark.parametrize(
    "content, qcow2", [(QCOW2_CONTENT, True), (RAW_CONTENT, False)]
)
def test_new_http_image(serve, content, qcow2):
    url = serve(content=content)
    img = new_image(url)
    assert img == HttpImage(url=url)
    assert str(img) == url
    assert img.is_qcow2() is qcow2
    assert img.size() == len(content)


def test_new_image_unknown_scheme():
    with pytest.raises(ValueError, match="scheme: ftp"):
        new_image("ftp://example.com/image.qcow2")


def test_local_is_qcow2_short_file(tmp_path):
    path = tmp_path / "short"
    path.write_bytes(b"QFI")
    with pytest.raises(ValueError):
        LocalImage(str(path)).is_qcow2()


def test_local_missing_file():
    with pytest.raises(FileNotFoundError):
        LocalImage("/nonexistent/dir/image.img").size()


def test_local_image_skipped_when_unmodified(raw_file):
    stat = os.stat(raw_file)
    vol = new_def_volume()
    vol.target.timestamps = StorageVolumeTimestamps(
        mtime=f"{stat.st_mtime_ns // 10**9}.{stat.st_mtime_ns % 10**9}"
    )
    copied = []
    new_image("file:///" + raw_file).import_image(_reader(copied), vol)
    assert copied == []


def test_local_image_copied_when_modified(raw_file):
    vol = new_def_volume()
    vol.target.timestamps = StorageVolumeTimestamps(mtime="123.456")
    copied = []
    LocalImage(raw_file).import_image(_reader(copied), vol)
    assert copied == [RAW_CONTENT]


def test_local_image_copied_without_timestamps(raw_file):
    copied = []
    LocalImage(raw_file).import_image(_reader(copied), new_def_volume())
    assert copied == [RAW_CONTENT]


def test_http_size_falls_back_to_get(serve):
    url = serve(content=RAW_CONTENT, forbid_head=True)
    assert HttpImage(url).size() == len(RAW_CONTENT)


def test_http_size_error_status(serve):
    url = serve(content=RAW_CONTENT, errors=[404])
    with pytest.raises(OSError, match="error accessing remote resource"):
        HttpImage(url).size()


def test_http_is_qcow2_without_range_support(serve):
    url = serve(content=RAW_CONTENT, errors=[500])
    with pytest.raises(OSError, match="partial header"):
        HttpImage(url).is_qcow2()


def test_remote_image_download(serve):
    url = serve(content=RAW_CONTENT)
    copied = []
    HttpImage(url).import_image(_reader(copied), new_def_volume())
    assert copied == [RAW_CONTENT]


def test_remote_image_not_modified(serve):
    url = serve(content=RAW_CONTENT)
    vol = new_def_volume()
    vol.target.timestamps = StorageVolumeTimestamps(mtime=f"{SERVER_MTIME}.0")
    copied = []
    new_image(url).import_image(_reader(copied), vol)
    assert copied == []


def test_remote_image_download_retry(serve):
    url = serve(content=RAW_CONTENT, errors=[503, 503])
    copied = []
    with mock.patch("virtstore.image.time.sleep") as sleep:
        new_image(url).import_image(_reader(copied), new_def_volume())
    assert copied == [RAW_CONTENT]
    assert sleep.call_count == 2
    sleep.assert_called_with(2.0)


def test_remote_image_download_client_error_stops(serve):
    url = serve(content=RAW_CONTENT, errors=[503, 404])
    copied = []
    with mock.patch("virtstore.image.time.sleep") as sleep:
        with pytest.raises(OSError, match="404"):
            new_image(url).import_image(_reader(copied), new_def_volume())
    assert copied == []
    assert sleep.call_count == 1


def test_remote_image_download_gives_up(serve):
    url = serve(content=RAW_CONTENT, errors=[503, 503, 503, 503])
    copied = []
    with mock.patch("virtstore.image.time.sleep") as sleep:
        with pytest.raises(OSError, match="503"):
            HttpImage(url).import_image(_reader(copied), new_def_volume())
    assert copied == []
    assert sleep.call_count == 3
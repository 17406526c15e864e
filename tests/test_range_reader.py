"""Tests for prompt_randomizer.range_reader — byte-range transports."""
from __future__ import annotations

import io
import threading
from collections.abc import Iterator
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any

import pytest
from botocore.exceptions import ClientError

from prompt_randomizer import range_reader
from prompt_randomizer.errors import FetchError
from prompt_randomizer.range_reader import (
    HttpRangeReader,
    LocalFileRangeReader,
    S3RangeReader,
    open_range_reader,
    range_header,
)

PAYLOAD = b"0123456789abcdefghij"


# ───────────────────── Fixtures ──────────────────────────────────────


class _RangeHandler(BaseHTTPRequestHandler):
    honour_range = True

    def do_GET(self) -> None:  # noqa: N802
        if self.path.endswith("/missing"):
            self.send_error(404)
            return
        header = self.headers.get("Range", "")
        if self.honour_range and header.startswith("bytes="):
            first, _, last = header[len("bytes="):].partition("-")
            body = PAYLOAD[int(first):int(last) + 1]
            self.send_response(206)
        else:
            body = PAYLOAD
            self.send_response(200)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, *_args: object) -> None:
        pass


class _NoRangeHandler(_RangeHandler):
    honour_range = False


def _serve(handler: type[BaseHTTPRequestHandler]) -> Iterator[str]:
    server = ThreadingHTTPServer(("127.0.0.1", 0), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()


@pytest.fixture()
def http_base() -> Iterator[str]:
    yield from _serve(_RangeHandler)


@pytest.fixture()
def http_base_no_range() -> Iterator[str]:
    yield from _serve(_NoRangeHandler)


class _FakeS3:
    def __init__(self, data: bytes, fail: bool = False) -> None:
        self.data = data
        self.fail = fail
        self.calls: list[dict[str, Any]] = []

    def get_object(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(kwargs)
        if self.fail:
            raise ClientError(
                {"Error": {"Code": "InvalidRange", "Message": "bad range"}},
                "GetObject",
            )
        first, _, last = kwargs["Range"][len("bytes="):].partition("-")
        return {"Body": io.BytesIO(self.data[int(first):int(last) + 1])}


# ───────────────────── Tests ─────────────────────────────────────────


class TestRangeHeader:
    def test_inclusive_end(self) -> None:
        assert range_header(8, 4) == "bytes=8-11"


class TestLocalFileRangeReader:
    def test_reads_slice(self, tmp_path: Path) -> None:
        path = tmp_path / "f.dat"
        path.write_bytes(PAYLOAD)
        assert LocalFileRangeReader(path).read_range(3, 4) == b"3456"

    def test_short_read_at_eof(self, tmp_path: Path) -> None:
        path = tmp_path / "f.dat"
        path.write_bytes(PAYLOAD)
        assert LocalFileRangeReader(path).read_range(18, 10) == b"ij"

    def test_zero_length(self, tmp_path: Path) -> None:
        assert LocalFileRangeReader(tmp_path / "absent").read_range(0, 0) == b""

    def test_missing_file_is_fetch_error(self, tmp_path: Path) -> None:
        with pytest.raises(FetchError, match="Cannot read"):
            LocalFileRangeReader(tmp_path / "absent").read_range(0, 4)


class TestHttpRangeReader:
    def test_partial_content(self, http_base: str) -> None:
        reader = HttpRangeReader(f"{http_base}/pos.dat", timeout=5)
        assert reader.read_range(10, 5) == b"abcde"

    def test_full_body_is_sliced(self, http_base_no_range: str) -> None:
        reader = HttpRangeReader(f"{http_base_no_range}/pos.dat", timeout=5)
        assert reader.read_range(2, 3) == b"234"

    def test_full_body_skipped_in_bounded_chunks(
        self, http_base_no_range: str, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(range_reader, "DISCARD_CHUNK_BYTES", 3)
        reader = HttpRangeReader(f"{http_base_no_range}/pos.dat", timeout=5)
        assert reader.read_range(7, 5) == b"789ab"
        assert reader.read_range(18, 10) == b"ij"
        assert reader.read_range(40, 4) == b""

    def test_http_error(self, http_base: str) -> None:
        reader = HttpRangeReader(f"{http_base}/missing", timeout=5)
        with pytest.raises(FetchError, match="HTTP 404") as info:
            reader.read_range(0, 4)
        assert info.value.location.endswith("/missing")

    def test_connection_refused(self) -> None:
        reader = HttpRangeReader("http://127.0.0.1:9/pos.dat", timeout=2)
        with pytest.raises(FetchError, match="Transport error"):
            reader.read_range(0, 4)


class TestS3RangeReader:
    def test_ranged_get(self) -> None:
        client = _FakeS3(PAYLOAD)
        reader = S3RangeReader("bucket", "data/pos.dat", client=client)
        assert reader.read_range(4, 4) == b"4567"
        assert client.calls == [
            {"Bucket": "bucket", "Key": "data/pos.dat", "Range": "bytes=4-7"}
        ]
        assert reader.location == "s3://bucket/data/pos.dat"

    def test_client_error_wrapped(self) -> None:
        reader = S3RangeReader("bucket", "k", client=_FakeS3(PAYLOAD, fail=True))
        with pytest.raises(FetchError, match="S3 error"):
            reader.read_range(0, 4)


class TestOpenRangeReader:
    def test_http(self) -> None:
        reader = open_range_reader("https://example.com/repo/", "pos.dat")
        assert isinstance(reader, HttpRangeReader)
        assert reader.location == "https://example.com/repo/pos.dat"

    def test_s3(self) -> None:
        reader = open_range_reader("s3://bucket/prefix/", "tags.dat", s3_client=_FakeS3(b""))
        assert isinstance(reader, S3RangeReader)
        assert reader.location == "s3://bucket/prefix/tags.dat"

    def test_s3_bucket_root(self) -> None:
        reader = open_range_reader("s3://bucket", "tags.dat", s3_client=_FakeS3(b""))
        assert reader.location == "s3://bucket/tags.dat"

    def test_local(self, tmp_path: Path) -> None:
        reader = open_range_reader(str(tmp_path), "pos.dat")
        assert isinstance(reader, LocalFileRangeReader)
        assert reader.location == str(tmp_path / "pos.dat")

    def test_file_uri(self, tmp_path: Path) -> None:
        reader = open_range_reader(f"file://{tmp_path}", "pos.dat")
        assert reader.location == str(tmp_path / "pos.dat")

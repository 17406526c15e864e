"""Byte-range transport for the remote position table and prompt corpus.

Design:
- ``RangeReader`` is the abstract interface; one reader is bound to one file.
- ``HttpRangeReader`` issues HTTP ``Range`` requests (Hugging Face ``resolve``
  URLs, any static file server).
- ``S3RangeReader`` issues ``GetObject`` with a ``Range`` parameter.
- ``LocalFileRangeReader`` seeks in a local copy (offline use, tests).
- Every transport failure surfaces as ``FetchError``; every remote read has a
  timeout.  Reads past end-of-file return the bytes that exist.
"""
from __future__ import annotations

import logging
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from prompt_randomizer.errors import FetchError

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

# Upper bound on memory held while skipping to an offset in a full-body reply
DISCARD_CHUNK_BYTES = 64 * 1024


def range_header(start: int, length: int) -> str:
    """Inclusive HTTP byte range covering ``[start, start + length)``."""
    return f"bytes={start}-{start + length - 1}"


class RangeReader(ABC):
    """Abstract reader for byte ranges of a single file."""

    @property
    @abstractmethod
    def location(self) -> str:
        """Human-readable location of the underlying file (URL, s3 URI, path)."""

    @abstractmethod
    def read_range(self, start: int, length: int) -> bytes:
        """Read at most *length* bytes beginning at byte offset *start*.

        Raises
        ------
        FetchError
            On any transport failure.
        """


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

class HttpRangeReader(RangeReader):
    """Reader backed by HTTP ``Range`` requests.

    Parameters
    ----------
    url:
        Absolute URL of the file.
    timeout:
        Socket timeout in seconds for each request.
    headers:
        Extra request headers (e.g. ``Authorization`` for gated repos).
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._headers = dict(headers or {})

    @property
    def location(self) -> str:
        return self._url

    def read_range(self, start: int, length: int) -> bytes:
        if length <= 0:
            return b""
        req = urllib.request.Request(
            self._url,
            headers={**self._headers, "Range": range_header(start, length)},
            method="GET",
        )
        log.debug("GET %s %s", self._url, range_header(start, length))
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:
                if resp.status == 200:
                    # Server ignored the Range header and is sending the whole file
                    log.debug("Range not honoured by %s; streaming to offset", self._url)
                    _discard(resp, start)
                    body = resp.read(length)
                else:
                    body = resp.read()
        except urllib.error.HTTPError as exc:
            raise FetchError(
                f"HTTP {exc.code} reading {range_header(start, length)}",
                location=self._url,
            ) from exc
        except (urllib.error.URLError, OSError) as exc:
            raise FetchError(
                f"Transport error reading {range_header(start, length)}: {exc}",
                location=self._url,
            ) from exc
        return body


def _discard(resp: Any, count: int) -> None:
    """Read and drop *count* bytes from *resp* in bounded chunks."""
    while count > 0:
        chunk = resp.read(min(count, DISCARD_CHUNK_BYTES))
        if not chunk:
            return
        count -= len(chunk)


# ---------------------------------------------------------------------------
# S3
# ---------------------------------------------------------------------------

class S3RangeReader(RangeReader):
    """Reader backed by S3 ranged ``GetObject`` calls."""

    def __init__(
        self,
        bucket: str,
        key: str,
        *,
        client: Any = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._bucket = bucket
        self._key = key
        if client is None:
            client = boto3.client(
                "s3",
                config=Config(connect_timeout=timeout, read_timeout=timeout),
            )
        self._client = client

    @property
    def location(self) -> str:
        return f"s3://{self._bucket}/{self._key}"

    def read_range(self, start: int, length: int) -> bytes:
        if length <= 0:
            return b""
        log.debug("GetObject %s %s", self.location, range_header(start, length))
        try:
            resp = self._client.get_object(
                Bucket=self._bucket, Key=self._key,
                Range=range_header(start, length),
            )
            return resp["Body"].read()
        except (BotoCoreError, ClientError) as exc:
            raise FetchError(
                f"S3 error reading {range_header(start, length)}: {exc}",
                location=self.location,
            ) from exc


# ---------------------------------------------------------------------------
# Local file
# ---------------------------------------------------------------------------

class LocalFileRangeReader(RangeReader):
    """Reader over a local copy of the file."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def location(self) -> str:
        return str(self._path)

    def read_range(self, start: int, length: int) -> bytes:
        if length <= 0:
            return b""
        try:
            with self._path.open("rb") as f:
                f.seek(start)
                return f.read(length)
        except OSError as exc:
            raise FetchError(f"Cannot read {self._path}: {exc}", location=self.location) from exc


def open_range_reader(
    base: str,
    name: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    s3_client: Any = None,
) -> RangeReader:
    """Build the reader for file *name* under *base*.

    *base* is an ``http(s)://`` URL prefix, an ``s3://bucket/prefix`` URI, a
    ``file://`` URI or a local directory.
    """
    if base.startswith(("http://", "https://")):
        return HttpRangeReader(f"{base.rstrip('/')}/{name}", timeout=timeout)
    if base.startswith("s3://"):
        bucket, _, prefix = base[len("s3://"):].partition("/")
        prefix = prefix.strip("/")
        key = f"{prefix}/{name}" if prefix else name
        return S3RangeReader(bucket, key, client=s3_client, timeout=timeout)
    if base.startswith("file://"):
        base = base[len("file://"):]
    return LocalFileRangeReader(Path(base) / name)

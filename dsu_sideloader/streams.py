"""Resolution of source locators into readable byte streams.

Supported locators:
    - ``http://`` and ``https://`` URLs, streamed with requests
    - ``file://`` URLs
    - plain filesystem paths
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import BinaryIO, Iterator, Optional
from urllib.parse import unquote, urlparse

import requests
from requests import exceptions as req_exc

from dsu_sideloader.config import settings
from dsu_sideloader.installer.exceptions import SourceUnavailableError
from dsu_sideloader.logging import LoggerFactory


log = LoggerFactory.for_streams()

REMOTE_SCHEMES = ("http", "https")
DOWNLOAD_CHUNK_SIZE = 64 * 1024


def is_remote_locator(locator: str) -> bool:
    return urlparse(locator).scheme.lower() in REMOTE_SCHEMES


def local_path(locator: str) -> Optional[Path]:
    """Return the filesystem path of a local locator, or None for remote ones."""
    parsed = urlparse(locator)
    scheme = parsed.scheme.lower()
    if scheme == "file":
        return Path(unquote(parsed.path))
    if scheme in REMOTE_SCHEMES:
        return None
    return Path(locator)


class ResponseStream(io.RawIOBase):
    """Read-only file object over a streamed ``requests.Response``.

    Transport failures while reading surface as ``SourceUnavailableError``.
    """

    def __init__(self, response: requests.Response, chunk_size: int = DOWNLOAD_CHUNK_SIZE):
        super().__init__()
        self.response = response
        self.url = response.url
        self._chunks: Iterator[bytes] = response.iter_content(chunk_size=chunk_size)
        self._pending = b""

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        while not self._pending:
            try:
                chunk = next(self._chunks, None)
            except req_exc.RequestException as error:
                raise SourceUnavailableError(self.url, str(error)) from error
            if chunk is None:
                return 0
            self._pending = chunk
        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size

    def close(self) -> None:
        if not self.closed:
            self.response.close()
        super().close()


class DefaultStreamProvider:
    """Opens local files and streams remote downloads."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ):
        self.session = session or requests.Session()
        if timeout is None:
            timeout = settings.get_int("http_timeout_seconds", 30)
        self.timeout = timeout

    def open_stream(self, locator: str) -> BinaryIO:
        path = local_path(locator)
        if path is None:
            return self._open_remote(locator)
        log.debug(f"Opening local file {path}")
        try:
            return open(path, "rb")
        except OSError as error:
            raise SourceUnavailableError(locator, error.strerror or str(error)) from error

    def _open_remote(self, url: str) -> BinaryIO:
        log.info(f"Downloading {url}")
        try:
            response = self.session.get(url, stream=True, timeout=self.timeout)
        except req_exc.RequestException as error:
            raise SourceUnavailableError(url, str(error)) from error
        if not response.ok:
            response.close()
            raise SourceUnavailableError(
                url, f"HTTP {response.status_code} {response.reason}"
            )
        length = response.headers.get("Content-Length")
        if length:
            log.debug(f"Remote payload is {length} bytes")
        return io.BufferedReader(ResponseStream(response))

"""Archive transports: HTTP(S) via httpx, and local files.

A transport copies the bytes at a source location into a destination file.
It raises ``TransientTransportError`` for failures worth retrying and
``FetchError`` for failures that will not improve with another attempt.
Retry policy lives in the fetcher, not here.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import unquote, urlparse

import httpx

from venvforge.core.errors import FetchError

logger = logging.getLogger(__name__)

# HTTP statuses that indicate a temporary condition on the server side.
TRANSIENT_STATUS_CODES: frozenset[int] = frozenset({408, 425, 429, 500, 502, 503, 504})


class TransientTransportError(RuntimeError):
    """A transport failure that may succeed on retry."""


@runtime_checkable
class Transport(Protocol):
    """Copies the archive at ``source`` into ``destination``."""

    def download(self, source: str, destination: Path) -> None: ...


def archive_filename(source: str) -> str:
    """Return the archive's file name as given by its source location."""
    parsed = urlparse(source)
    if parsed.scheme in ("http", "https", "file"):
        return Path(unquote(parsed.path)).name
    return Path(source).name


def local_path(source: str) -> Path | None:
    """Return the filesystem path for ``file://`` or bare-path sources."""
    parsed = urlparse(source)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    if parsed.scheme == "" or (len(parsed.scheme) == 1 and source[1:2] == ":"):
        return Path(source)
    return None


class HttpTransport:
    """Streams archives over HTTP(S) with httpx."""

    def __init__(self, *, timeout_seconds: float = 60.0, client: httpx.Client | None = None) -> None:
        self._timeout = timeout_seconds
        self._client = client

    def download(self, source: str, destination: Path) -> None:
        client = self._client or httpx.Client(
            timeout=self._timeout, follow_redirects=True
        )
        try:
            with client.stream("GET", source) as response:
                if response.status_code in TRANSIENT_STATUS_CODES:
                    raise TransientTransportError(
                        f"HTTP {response.status_code} from {source}"
                    )
                try:
                    response.raise_for_status()
                except httpx.HTTPStatusError as exc:
                    raise FetchError(
                        f"HTTP {exc.response.status_code} fetching {source}",
                        stage="fetch",
                        details={"source": source, "status": exc.response.status_code},
                    ) from exc
                with open(destination, "wb") as fh:
                    for chunk in response.iter_bytes():
                        fh.write(chunk)
        except httpx.TransportError as exc:
            raise TransientTransportError(f"{type(exc).__name__} fetching {source}: {exc}") from exc
        finally:
            if self._client is None:
                client.close()


class LocalFileTransport:
    """Copies archives from the local filesystem (``file://`` or a path)."""

    def download(self, source: str, destination: Path) -> None:
        path = local_path(source)
        if path is None or not path.is_file():
            raise FetchError(
                f"Local archive not found: {source}",
                stage="fetch",
                details={"source": source},
            )
        try:
            shutil.copyfile(path, destination)
        except OSError as exc:
            raise TransientTransportError(f"Copy failed for {source}: {exc}") from exc


class DefaultTransport:
    """Dispatches to the HTTP or local transport by source scheme."""

    def __init__(self, *, timeout_seconds: float = 60.0) -> None:
        self._http = HttpTransport(timeout_seconds=timeout_seconds)
        self._local = LocalFileTransport()

    def download(self, source: str, destination: Path) -> None:
        scheme = urlparse(source).scheme
        if scheme in ("http", "https"):
            self._http.download(source, destination)
        elif local_path(source) is not None:
            self._local.download(source, destination)
        else:
            raise FetchError(
                f"Unsupported source scheme {scheme!r}: {source}",
                stage="fetch",
                details={"source": source},
            )

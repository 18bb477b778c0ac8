"""
Storage resolution for source references.
A source reference is a local path, a file:// URL or an http(s):// URL.
Upload, signed-URL issuance and bucket lifecycle live outside MediaPress.
"""

import shutil
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator
from urllib.parse import urlparse, unquote

import requests
import urllib3

from mediapress.core.constants import PROVIDER_TIMEOUT_SEC
from mediapress.core.error_codes import InvalidMediaError, StorageError
from mediapress.core.security_utils import sanitize_title

logger = logging.getLogger(__name__)

_COPY_BUFFER = 1024 * 1024


@dataclass
class SourceMetadata:
    name: str
    size: int | None = None


def is_http_ref(source_ref: str) -> bool:
    return urlparse(source_ref).scheme in ('http', 'https')


class LocalStorageResolver:
    """Plain filesystem paths and file:// URLs."""

    @staticmethod
    def _path(source_ref: str) -> Path:
        parsed = urlparse(source_ref)
        if parsed.scheme == 'file':
            return Path(unquote(parsed.path))
        return Path(source_ref).expanduser()

    @contextmanager
    def resolve(self, source_ref: str) -> Iterator[BinaryIO]:
        path = self._path(source_ref)
        if not path.is_file():
            raise InvalidMediaError(f"Source file not found: {source_ref}")
        try:
            f = open(path, 'rb')
        except OSError as e:
            raise InvalidMediaError(f"Source file is not readable: {e}")
        with f:
            yield f

    def metadata(self, source_ref: str) -> SourceMetadata:
        path = self._path(source_ref)
        if not path.is_file():
            raise InvalidMediaError(f"Source file not found: {source_ref}")
        return SourceMetadata(name=path.name, size=path.stat().st_size)


class HttpStorageResolver:
    """Public or pre-signed http(s) URLs, streamed with requests."""

    def __init__(self, timeout_sec: float = PROVIDER_TIMEOUT_SEC):
        self.timeout_sec = timeout_sec

    @staticmethod
    def _raise_for_status(resp: requests.Response, source_ref: str):
        if resp.status_code in (404, 410):
            raise InvalidMediaError(f"Source not found (HTTP {resp.status_code}): {source_ref}")
        if resp.status_code >= 400:
            raise StorageError(f"Source download failed (HTTP {resp.status_code})")

    @contextmanager
    def resolve(self, source_ref: str) -> Iterator[BinaryIO]:
        try:
            resp = requests.get(source_ref, stream=True, timeout=self.timeout_sec)
        except requests.exceptions.Timeout:
            raise StorageError("Source download timed out")
        except requests.exceptions.RequestException as e:
            raise StorageError(f"Source download failed: {type(e).__name__}")

        try:
            self._raise_for_status(resp, source_ref)
            resp.raw.decode_content = True
            yield resp.raw
        finally:
            resp.close()

    def metadata(self, source_ref: str) -> SourceMetadata:
        name = Path(unquote(urlparse(source_ref).path)).name or "source"
        try:
            resp = requests.head(source_ref, allow_redirects=True, timeout=self.timeout_sec)
        except requests.exceptions.RequestException as e:
            raise StorageError(f"Source metadata request failed: {type(e).__name__}")
        self._raise_for_status(resp, source_ref)
        length = resp.headers.get('Content-Length')
        return SourceMetadata(name=name, size=int(length) if length and length.isdigit() else None)


class StorageResolver:
    """Dispatches a source reference to the matching resolver by scheme."""

    def __init__(self, local: LocalStorageResolver | None = None,
                 http: HttpStorageResolver | None = None):
        self.local = local or LocalStorageResolver()
        self.http = http or HttpStorageResolver()

    def _for(self, source_ref: str):
        if not source_ref or not source_ref.strip():
            raise InvalidMediaError("Empty source reference")
        return self.http if is_http_ref(source_ref) else self.local

    def resolve(self, source_ref: str):
        return self._for(source_ref).resolve(source_ref)

    def metadata(self, source_ref: str) -> SourceMetadata:
        return self._for(source_ref).metadata(source_ref)

    def fetch_to(self, source_ref: str, dest_dir: Path) -> Path:
        """Copy the source into dest_dir, keeping its extension. Returns the copy."""
        meta = self.metadata(source_ref)
        suffix = Path(sanitize_title(meta.name)).suffix.lower()
        dest_dir.mkdir(parents=True, exist_ok=True)
        dest = dest_dir / f"source{suffix}"

        with self.resolve(source_ref) as stream, open(dest, 'wb') as out:
            # resp.raw surfaces urllib3 errors directly, not wrapped by requests
            try:
                shutil.copyfileobj(stream, out, _COPY_BUFFER)
            except (requests.exceptions.RequestException, urllib3.exceptions.HTTPError,
                    OSError) as e:
                raise StorageError(f"Source copy interrupted: {type(e).__name__}") from e

        logger.info("Fetched source %s (%s bytes) -> %s",
                    meta.name, meta.size if meta.size is not None else "?", dest)
        return dest

"""Local media store: fetch remote media with a byte ceiling and persist buffers."""

from __future__ import annotations

import asyncio
import mimetypes
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import aiohttp
from yarl import URL

from webhook_bridge.log import get_logger

logger = get_logger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
FETCH_TIMEOUT_SECONDS = 30
_READ_CHUNK = 64 * 1024

# Types missing from some platform mime tables.
_EXTRA_TYPES = {
    ".md": "text/markdown",
    ".webp": "image/webp",
    ".m4a": "audio/mp4",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
}

_MAGIC = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"%PDF-", "application/pdf"),
    (b"PK\x03\x04", "application/zip"),
)


class MediaFetchError(Exception):
    """Remote media could not be downloaded."""


class MediaTooLargeError(Exception):
    """Media exceeded the configured byte ceiling."""


@dataclass(frozen=True, slots=True)
class FetchedMedia:
    data: bytes
    content_type: Optional[str]
    filename: Optional[str]


@dataclass(frozen=True, slots=True)
class SavedMedia:
    path: str
    content_type: str
    size: int


def mime_type_for_path(path: str) -> str:
    """Guess a MIME type from a file name or URL path."""
    suffix = Path(path).suffix.lower()
    if suffix in _EXTRA_TYPES:
        return _EXTRA_TYPES[suffix]
    guessed, _ = mimetypes.guess_type(path)
    return guessed or DEFAULT_CONTENT_TYPE


def sniff_content_type(data: bytes) -> Optional[str]:
    for magic, content_type in _MAGIC:
        if data.startswith(magic):
            return content_type
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def filename_from_url(url: str) -> Optional[str]:
    name = URL(url).path.rsplit("/", 1)[-1]
    return name or None


class MediaStore:
    """Stores media under ``<root>/<subdir>/`` with generated file names."""

    def __init__(self, root: str | Path):
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    async def fetch_remote(
        self, url: str, max_bytes: int, timeout: float = FETCH_TIMEOUT_SECONDS
    ) -> FetchedMedia:
        """Download ``url``, aborting once more than ``max_bytes`` arrive."""
        client_timeout = aiohttp.ClientTimeout(total=timeout)
        try:
            async with aiohttp.ClientSession(timeout=client_timeout) as session:
                async with session.get(url) as response:
                    if response.status >= 400:
                        raise MediaFetchError(
                            f"Failed to fetch: {response.status} {response.reason}"
                        )
                    if response.content_length and response.content_length > max_bytes:
                        raise MediaTooLargeError(
                            f"media exceeds {max_bytes} bytes ({response.content_length})"
                        )
                    buffer = bytearray()
                    async for chunk in response.content.iter_chunked(_READ_CHUNK):
                        buffer.extend(chunk)
                        if len(buffer) > max_bytes:
                            raise MediaTooLargeError(f"media exceeds {max_bytes} bytes")
                    content_type = response.headers.get("Content-Type")
        except asyncio.TimeoutError as e:
            raise MediaFetchError(f"timeout fetching {url}") from e
        except aiohttp.ClientError as e:
            raise MediaFetchError(str(e)) from e

        if content_type:
            content_type = content_type.split(";", 1)[0].strip() or None
        return FetchedMedia(
            data=bytes(buffer),
            content_type=content_type,
            filename=filename_from_url(url),
        )

    async def save_buffer(
        self,
        data: bytes,
        content_type: Optional[str],
        subdir: str = "inbound",
        max_bytes: Optional[int] = None,
        filename: Optional[str] = None,
    ) -> SavedMedia:
        if max_bytes is not None and len(data) > max_bytes:
            raise MediaTooLargeError(f"media exceeds {max_bytes} bytes ({len(data)})")

        resolved = content_type
        if not resolved or resolved == DEFAULT_CONTENT_TYPE:
            resolved = sniff_content_type(data) or (
                mime_type_for_path(filename) if filename else None
            ) or DEFAULT_CONTENT_TYPE

        extension = mimetypes.guess_extension(resolved) or ""
        if not extension and filename:
            extension = Path(filename).suffix
        stem = Path(filename).stem if filename else "media"
        target_dir = self._root / subdir
        target = target_dir / f"{_safe_stem(stem)}---{uuid.uuid4().hex}{extension}"

        def _write() -> None:
            target_dir.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.debug("media_saved", path=str(target), content_type=resolved, size=len(data))
        return SavedMedia(path=str(target), content_type=resolved, size=len(data))


def _safe_stem(stem: str) -> str:
    cleaned = "".join(c if c.isalnum() or c in "-_." else "_" for c in stem)
    return cleaned[:60] or "media"

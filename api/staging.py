"""
Staging of uploaded files on local disk.

Uploads are streamed in chunks with the size limit enforced while reading,
so a client that under-reports its size can not fill the disk. Temporary
files a request creates are registered with a TempFileSet, which removes
them when the request finishes, whatever the outcome.
"""

import logging
import mimetypes
import re
import secrets
from pathlib import Path
from typing import List, Optional

from fastapi import UploadFile

from api.errors import InternalFailureError, InvalidRequestError

logger = logging.getLogger(__name__)

# Bytes of randomness in generated asset names (43 url-safe characters)
ASSET_NAME_BYTES = 32

_EXTENSION_UNSAFE_RE = re.compile(r"[^a-z0-9]+")

# Built-in table only, so results do not depend on the host's mime.types
_MIME_TYPES = mimetypes.MimeTypes()


def random_asset_name(ext: str) -> str:
    """Return an unguessable file name ending in ``ext`` (e.g. ``".mp4"``)."""
    return secrets.token_urlsafe(ASSET_NAME_BYTES) + ext


def extension_for_content_type(content_type: Optional[str]) -> str:
    """
    Map a media type to a file extension.

    Registered types get their conventional extension, anything else
    falls back to the sanitized subtype.

    Examples:
        >>> extension_for_content_type("image/png")
        '.png'
        >>> extension_for_content_type("image/svg+xml; charset=utf-8")
        '.svg'
        >>> extension_for_content_type("image/x-tubely-still")
        '.xtubelystill'
        >>> extension_for_content_type("garbage")
        '.bin'
    """
    if not content_type or "/" not in content_type:
        return ".bin"
    media_type = content_type.split(";")[0].strip().lower()
    known = _MIME_TYPES.guess_extension(media_type)
    if known:
        return known
    subtype = _EXTENSION_UNSAFE_RE.sub("", media_type.split("/", 1)[1])
    return f".{subtype}" if subtype else ".bin"


async def read_upload_with_size_limit(file: UploadFile, max_size: int, chunk_size: int, too_large_detail: str) -> bytes:
    """
    Read an upload into memory, enforcing max_size while reading.

    Raises:
        InvalidRequestError: If the upload is larger than max_size
    """
    chunks: List[bytes] = []
    total_size = 0
    while chunk := await file.read(chunk_size):
        total_size += len(chunk)
        if total_size > max_size:
            raise InvalidRequestError(too_large_detail)
        chunks.append(chunk)
    return b"".join(chunks)


async def save_upload_with_size_limit(
    file: UploadFile,
    upload_path: Path,
    max_size: int,
    chunk_size: int,
    too_large_detail: str,
) -> int:
    """
    Stream upload to disk with size validation.

    Returns the total bytes written. The partial file is removed on any
    failure.

    Raises:
        InvalidRequestError: If the upload is larger than max_size
        InternalFailureError: If the file can not be written
    """
    total_size = 0
    try:
        with open(upload_path, "wb") as f:
            while chunk := await file.read(chunk_size):
                total_size += len(chunk)
                if total_size > max_size:
                    raise InvalidRequestError(too_large_detail)
                f.write(chunk)
    except InvalidRequestError:
        upload_path.unlink(missing_ok=True)
        raise
    except OSError as e:
        upload_path.unlink(missing_ok=True)
        logger.warning(f"Storage error during upload to {upload_path}: {e}")
        raise InternalFailureError("Couldn't save file") from e
    except BaseException:
        upload_path.unlink(missing_ok=True)
        raise

    return total_size


class TempFileSet:
    """
    Scoped set of temporary files.

    Every path registered with ``add`` is deleted when the ``with`` block
    exits, on success, error, and cancellation alike. Paths that were never
    created are ignored.

    Example:
        with TempFileSet() as temp_files:
            staged = temp_files.add(assets_root / name)
            ...
    """

    def __init__(self):
        self._paths: List[Path] = []

    def add(self, path: Path) -> Path:
        self._paths.append(path)
        return path

    @property
    def paths(self) -> List[Path]:
        return list(self._paths)

    def cleanup(self) -> None:
        for path in self._paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Failed to remove temporary file {path}: {e}")
        self._paths.clear()

    def __enter__(self) -> "TempFileSet":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

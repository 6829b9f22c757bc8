"""Clip storage on disk.

Clips live as flat files in the cache directory, named by their identifier.
Identifiers are restricted to [-_a-zA-Z0-9]+ and checked before any path
is built from them.
"""

import logging
import re
import secrets
from pathlib import Path
from typing import BinaryIO

from trust.errors import PcopyError

logger = logging.getLogger(__name__)

FILE_ID_PATTERN = re.compile(r"[-_a-zA-Z0-9]+")


class InvalidFileIdError(PcopyError):
    """Clip identifier contains characters outside [-_a-zA-Z0-9]."""

    def __init__(self, file_id: str):
        self.file_id = file_id
        super().__init__("E101", f"Invalid file ID: {file_id!r}")


class IncompleteUploadError(PcopyError):
    """Upload body ended before the declared Content-Length."""

    def __init__(self, file_id: str, received: int, expected: int):
        self.file_id = file_id
        super().__init__("E102", f"Request body shorter than Content-Length ({received} of {expected} bytes)")


def validate_file_id(file_id: str) -> str:
    """Return file_id unchanged, or raise InvalidFileIdError."""
    if not file_id or not FILE_ID_PATTERN.fullmatch(file_id):
        raise InvalidFileIdError(file_id)
    return file_id


class ClipStore:
    """Reads and writes clips under a cache directory."""

    def __init__(self, cache_dir: Path):
        self.cache_dir = Path(cache_dir)

    def path_for(self, file_id: str) -> Path:
        return self.cache_dir / validate_file_id(file_id)

    def open_reader(self, file_id: str) -> BinaryIO:
        """Open a clip for reading.

        Raises:
            InvalidFileIdError: If the identifier is invalid
            FileNotFoundError: If the clip does not exist
        """
        return open(self.path_for(file_id), "rb")

    def write(self, file_id: str, source: BinaryIO, length: int, chunk_size: int = 64 * 1024) -> int:
        """Store exactly length bytes read from source as a clip.

        The body goes to a hidden temp file in the cache directory, which
        replaces the clip only once every byte has arrived. A short or failed
        upload leaves the previous clip untouched.

        Returns:
            Number of bytes stored

        Raises:
            InvalidFileIdError: If the identifier is invalid
            IncompleteUploadError: If source ends before length bytes
            OSError: If reading the body or writing the file fails
        """
        path = self.path_for(file_id)
        self.cache_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        # Leading dot keeps temp files outside the identifier namespace
        tmp_path = self.cache_dir / f".{file_id}.{secrets.token_hex(8)}.tmp"
        logger.debug("Writing clip %s to %s", file_id, path)

        remaining = length
        try:
            with open(tmp_path, "wb") as f:
                while remaining > 0:
                    chunk = source.read(min(chunk_size, remaining))
                    if not chunk:
                        break
                    f.write(chunk)
                    remaining -= len(chunk)
            if remaining > 0:
                raise IncompleteUploadError(file_id, length - remaining, length)
            tmp_path.replace(path)
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise
        return length

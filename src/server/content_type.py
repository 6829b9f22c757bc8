"""Content-Type detection for clip downloads.

ContentTypeWriter sniffs the first chunk written to a response and sets
Content-Type (and, for downloads, Content-Disposition) from it. HTML is
never served as text/html inline, so a clip can't be rendered as a page in
the server's origin.
"""

import mimetypes
import re
from typing import Optional, Protocol

SNIFF_LENGTH = 512

TEXT_PLAIN_UTF8 = "text/plain; charset=utf-8"
OCTET_STREAM = "application/octet-stream"

EXTENSION_OVERRIDES = {
    "text/plain": ".txt",
}

_HTML_TAGS = (
    b"<!DOCTYPE HTML", b"<HTML", b"<HEAD", b"<SCRIPT", b"<IFRAME", b"<H1",
    b"<DIV", b"<FONT", b"<TABLE", b"<A", b"<STYLE", b"<TITLE", b"<B",
    b"<BODY", b"<BR", b"<P", b"<!--",
)

# (prefix, content type), checked in order after the HTML/XML rules
_EXACT_SIGNATURES = (
    (b"%PDF-", "application/pdf"),
    (b"%!PS-Adobe-", "application/postscript"),
    (b"\xfe\xff", "text/plain; charset=utf-16be"),
    (b"\xff\xfe", "text/plain; charset=utf-16le"),
    (b"\xef\xbb\xbf", TEXT_PLAIN_UTF8),
    (b"\x00\x00\x01\x00", "image/x-icon"),
    (b"\x00\x00\x02\x00", "image/x-icon"),
    (b"BM", "image/bmp"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"ID3", "audio/mpeg"),
    (b"OggS\x00", "application/ogg"),
    (b"\x1a\x45\xdf\xa3", "video/webm"),
    (b"\x1f\x8b\x08", "application/x-gzip"),
    (b"PK\x03\x04", "application/zip"),
    (b"Rar!\x1a\x07\x00", "application/x-rar-compressed"),
    (b"Rar!\x1a\x07\x01\x00", "application/x-rar-compressed"),
    (b"\x00asm", "application/wasm"),
    (b"wOFF", "font/woff"),
    (b"wOF2", "font/woff2"),
)

# RIFF containers carry their format at offset 8
_RIFF_FORMATS = (
    (b"WEBPVP", "image/webp"),
    (b"WAVE", "audio/wave"),
    (b"AVI ", "video/avi"),
)

_BINARY_BYTES = frozenset(
    list(range(0x00, 0x09)) + [0x0B] + list(range(0x0E, 0x1B)) + list(range(0x1C, 0x20))
)

_TOKEN_PATTERN = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")


def _is_tag_terminator(byte: int) -> bool:
    return byte in b" >"


def detect_content_type(data: bytes) -> str:
    """Guess the content type of data from its first bytes.

    Always returns a valid MIME type; falls back to text/plain for data
    without binary bytes and application/octet-stream otherwise.
    """
    data = data[:SNIFF_LENGTH]
    stripped = data.lstrip(b"\t\n\x0c\r ")
    upper = stripped.upper()

    for tag in _HTML_TAGS:
        if upper.startswith(tag) and len(upper) > len(tag) and _is_tag_terminator(upper[len(tag)]):
            return "text/html; charset=utf-8"
    if stripped.startswith(b"<?xml"):
        return "text/xml; charset=utf-8"

    for prefix, content_type in _EXACT_SIGNATURES:
        if data.startswith(prefix):
            return content_type

    if data.startswith(b"RIFF") and len(data) >= 12:
        for fmt, content_type in _RIFF_FORMATS:
            if data[8:8 + len(fmt)] == fmt:
                return content_type

    if len(data) >= 12 and data[4:8] == b"ftyp" and data[8:11] == b"mp4":
        return "video/mp4"

    if any(byte in _BINARY_BYTES for byte in data):
        return OCTET_STREAM
    return TEXT_PLAIN_UTF8


def extension_for(content_type: str) -> str:
    """Return a file extension (with dot) for a content type, or ""."""
    media_type = content_type.split(";", 1)[0].strip().lower()
    if not media_type:
        return ""
    if media_type in EXTENSION_OVERRIDES:
        return EXTENSION_OVERRIDES[media_type]
    return mimetypes.guess_extension(media_type) or ""


def format_disposition(filename: str) -> str:
    """Build an attachment Content-Disposition header value."""
    if _TOKEN_PATTERN.fullmatch(filename):
        return f"attachment; filename={filename}"
    escaped = filename.replace("\\", "\\\\").replace('"', '\\"')
    return f'attachment; filename="{escaped}"'


class ResponseTarget(Protocol):
    """The parts of BaseHTTPRequestHandler the writer needs."""

    wfile: object

    def send_header(self, keyword: str, value: str) -> None: ...

    def end_headers(self) -> None: ...


class ContentTypeWriter:
    """Writes a response body, setting headers from the first chunk.

    The status line must already be sent; headers are closed on the first
    write (or on close() for an empty body).

    Args:
        target: Request handler (status line sent, headers still open)
        filename: Base filename for Content-Disposition
        download: Send as an attachment instead of inline
    """

    def __init__(self, target: ResponseTarget, filename: str = "", download: bool = False):
        self._target = target
        self._filename = filename
        self._download = download
        self._sniffed = False
        self.content_type: Optional[str] = None

    def write(self, data: bytes) -> int:
        if not self._sniffed:
            self._send_headers(data)
        self._target.wfile.write(data)
        return len(data)

    def close(self):
        """Finish headers if nothing was written."""
        if not self._sniffed:
            self._send_headers(b"")

    def _send_headers(self, data: bytes):
        content_type = detect_content_type(data)
        if not self._download:
            if content_type.startswith("text/html"):
                content_type = content_type.replace("text/html", "text/plain")
            elif content_type == OCTET_STREAM:
                content_type = ""

        if content_type:
            self._target.send_header("Content-Type", content_type)
            self.content_type = content_type

        if self._download:
            ext = extension_for(content_type)
            filename = self._filename
            if not filename.endswith(ext):
                filename += ext
            self._target.send_header("Content-Disposition", format_disposition(filename))

        self._target.end_headers()
        self._sniffed = True

"""
Filename helpers for uploads and download names
"""

from urllib.parse import quote

FALLBACK_STEM = "audio"
FALLBACK_UPLOAD_NAME = "upload.bin"

_UNSAFE_HEADER_CHARS = {'"', "'", " ", "\\"}


def base_name(name: str) -> str:
    """Last path component, ignoring trailing separators ("a/b/" -> "b")."""
    return name.rstrip("/").rpartition("/")[2]


def strip_newlines(name: str) -> str:
    # Header injection guard
    return name.replace("\r", "").replace("\n", "")


def safe_base_name(name: str) -> str:
    """
    ASCII-only base name usable in a path or a quoted header parameter.

    Quotes, apostrophes, spaces, backslashes, control characters and
    non-ASCII characters become "_".
    """
    base = base_name(name)
    base = "".join(
        "_" if ch in _UNSAFE_HEADER_CHARS or not (32 <= ord(ch) < 127) else ch
        for ch in base
    )
    if base in ("", "."):
        return FALLBACK_UPLOAD_NAME
    return base


def output_file_name(input_name: str, new_ext: str = ".mp3") -> str:
    """
    Derive the download name from an input name by swapping its extension.

    The original stem is kept as-is (non-ASCII, spaces); the
    Content-Disposition filename* parameter carries it to the client.

    Example:
        >>> output_file_name("clip.mp4")
        'clip.mp3'
        >>> output_file_name("clip")
        'clip.mp3'
        >>> output_file_name(".mp4")
        'audio.mp3'
    """
    base = strip_newlines(base_name(input_name))
    stem, dot, _ = base.rpartition(".")
    if not dot:
        stem = base
    if stem in ("", "."):
        stem = FALLBACK_STEM
    if not new_ext.startswith("."):
        new_ext = "." + new_ext
    return stem + new_ext


def content_disposition_attachment(filename: str) -> str:
    """
    Attachment header with an ASCII fallback plus the RFC 5987 UTF-8 name.

    Example:
        >>> content_disposition_attachment("movie.mp3")
        'attachment; filename="movie.mp3"; filename*=UTF-8\\'\\'movie.mp3'
    """
    fallback = safe_base_name(filename)
    utf8_name = strip_newlines(filename)
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(utf8_name, safe='')}"

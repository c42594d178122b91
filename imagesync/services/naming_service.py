"""Name sanitization for object keys, SQL identifiers and folder references."""

from __future__ import annotations

import mimetypes
import posixpath
import re
import unicodedata
from urllib.parse import parse_qs, urlparse

MAX_SLUG_LENGTH = 80
MAX_FILE_NAME_LENGTH = 200
MAX_EXTENSION_LENGTH = 16

_FOLDER_PATH_RE = re.compile(r"/folders/([A-Za-z0-9_\-]+)")
_BARE_ID_RE = re.compile(r"^[A-Za-z0-9_\-]{10,}$")

# Preferred extensions; mimetypes.guess_extension is platform dependent.
_MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "image/avif": ".avif",
    "image/heic": ".heic",
    "image/tiff": ".tiff",
    "image/bmp": ".bmp",
    "image/svg+xml": ".svg",
}


def slugify(text: str) -> str:
    """Lowercase ASCII slug with hyphen separators.

    Returns "untitled" for input with no usable characters.
    """
    text = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode("ascii")
    text = re.sub(r"[^a-z0-9]+", "-", text.lower().strip()).strip("-")
    if not text:
        return "untitled"

    # Truncate to MAX_SLUG_LENGTH without cutting mid-word
    if len(text) > MAX_SLUG_LENGTH:
        truncated = text[:MAX_SLUG_LENGTH]
        last_hyphen = truncated.rfind("-")
        if last_hyphen > 0:
            truncated = truncated[:last_hyphen]
        text = truncated.rstrip("-")
    return text


def sanitize_identifier(name: str) -> str:
    """Turn an arbitrary field or table name into a SQL column identifier.

    Non ``[a-zA-Z0-9_]`` characters become underscores, a leading digit is
    prefixed with an underscore, and the result is lowercased.
    """
    cleaned = re.sub(r"[^a-zA-Z0-9_]", "_", name)
    cleaned = re.sub(r"^[0-9]", lambda m: "_" + m.group(0), cleaned)
    return cleaned.lower() or "_"


def sanitize_file_name(name: str) -> str:
    """Make a remote file name safe for use as the last segment of an object key."""
    base = posixpath.basename((name or "").replace("\\", "/"))
    base = re.sub(r"[^a-zA-Z0-9._-]", "_", base)
    base = base.lstrip(".")
    if not base:
        return "file"
    if len(base) > MAX_FILE_NAME_LENGTH:
        stem, ext = posixpath.splitext(base)
        if len(ext) > MAX_EXTENSION_LENGTH:
            stem, ext = base, ""
        base = stem[: MAX_FILE_NAME_LENGTH - len(ext)] + ext
    return base


def extension_for_mime(mime_type: str) -> str | None:
    """Return the canonical file extension for a MIME type."""
    mime = mime_type.split(";", 1)[0].strip().lower()
    return _MIME_EXTENSIONS.get(mime) or mimetypes.guess_extension(mime)


def rewrite_extension(file_name: str, mime_type: str) -> str:
    """Replace the extension of file_name to match mime_type when they disagree."""
    ext = extension_for_mime(mime_type)
    if ext is None:
        return file_name
    stem, current = posixpath.splitext(file_name)
    current = current.lower()
    if current == ext or (ext == ".jpg" and current == ".jpeg"):
        return file_name
    return f"{stem or 'file'}{ext}"


def extract_folder_id(ref: str | None) -> str | None:
    """Resolve a Drive folder URL, open-link or bare id to a folder id.

    Returns None when the reference cannot be resolved.
    """
    if not ref:
        return None
    candidate = ref.strip()

    match = _FOLDER_PATH_RE.search(candidate)
    if match:
        return match.group(1)

    parsed = urlparse(candidate)
    if parsed.scheme in ("http", "https"):
        ids = parse_qs(parsed.query).get("id")
        if ids and _BARE_ID_RE.match(ids[0]):
            return ids[0]
        return None

    if _BARE_ID_RE.match(candidate):
        return candidate
    return None

"""
Upload naming and file helpers.

Generates ids and on-disk names for uploaded assets, repairs display names
that arrive as latin-1 mojibake, and maps public ``/uploads/...`` paths back
to files without letting them escape the uploads directory.
"""

import logging
import re
import secrets
import time
import unicodedata
from pathlib import Path, PurePosixPath
from typing import Optional

from ..const import DEFAULT_UPLOAD_EXTENSION

logger = logging.getLogger(__name__)

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"
_MOJIBAKE_PATTERN = re.compile(r"(?:Ã.|Â|â.|�)")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

PUBLIC_UPLOADS_PREFIX = "uploads"


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def timestamp_token() -> str:
    """Current time in milliseconds, base36 encoded."""
    return to_base36(int(time.time() * 1000))


def random_suffix() -> str:
    """Eight random hex characters."""
    return secrets.token_hex(4)


def slugify(value: str) -> str:
    """Lowercase ASCII slug; ``element`` when nothing survives."""
    decomposed = unicodedata.normalize("NFD", value.lower())
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    slug = _NON_ALNUM.sub("-", stripped).strip("-")
    return slug or "element"


def looks_like_mojibake(value: str) -> bool:
    return bool(_MOJIBAKE_PATTERN.search(value))


def decode_upload_text(value: Optional[str]) -> str:
    """
    Repair UTF-8 text that was decoded as latin-1 (multipart file names often are).

    The input is returned unchanged when it does not look garbled or when the
    repair does not produce cleaner text.
    """
    text = value or ""
    if not text or not looks_like_mojibake(text):
        return text

    try:
        decoded = text.encode("latin-1").decode("utf-8")
    except UnicodeError:
        return text

    if not decoded or looks_like_mojibake(decoded):
        return text
    return decoded


def create_asset_id(prefix: str, name: str) -> str:
    return f"{prefix}-{slugify(name)}-{random_suffix()}"


def create_campaign_id(name: Optional[str]) -> str:
    return f"campaign-{slugify(name or 'campaign')}-{timestamp_token()}-{random_suffix()}"


def create_file_name(original_name: Optional[str]) -> str:
    """Unique on-disk name that keeps the original extension."""
    safe_name = decode_upload_text(original_name)
    path = PurePosixPath(safe_name)
    extension = path.suffix or DEFAULT_UPLOAD_EXTENSION
    base_name = slugify(path.name[: -len(path.suffix)] if path.suffix else path.name)
    return f"{base_name}-{timestamp_token()}-{random_suffix()}{extension}"


def public_upload_path(subdir: str, file_name: str) -> str:
    return f"/{PUBLIC_UPLOADS_PREFIX}/{subdir}/{file_name}"


def resolve_upload_path(public_path: Optional[str], uploads_dir: Path) -> Optional[Path]:
    """
    Map a public ``/uploads/...`` path to a file below ``uploads_dir``.

    Returns:
        Absolute path, or None when the path is not a string or points outside the uploads directory
    """
    if not public_path or not isinstance(public_path, str):
        return None

    relative = public_path.lstrip("/")
    prefix = f"{PUBLIC_UPLOADS_PREFIX}/"
    if not relative.startswith(prefix):
        return None

    root = uploads_dir.resolve()
    candidate = (root / relative[len(prefix) :]).resolve()
    try:
        candidate.relative_to(root)
    except ValueError:
        return None
    if candidate == root:
        return None
    return candidate


def remove_upload_file(public_path: Optional[str], uploads_dir: Path) -> bool:
    """Delete an uploaded file; failures are logged and ignored."""
    file_path = resolve_upload_path(public_path, uploads_dir)
    if file_path is None:
        return False

    try:
        if file_path.is_file():
            file_path.unlink()
            logger.info(f"Removed upload file: {file_path}")
            return True
    except OSError as e:
        logger.warning(f"Failed to remove upload file {file_path}: {e}")
    return False

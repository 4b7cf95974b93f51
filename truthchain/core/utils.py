import mimetypes
import time
import structlog
from typing import Optional

from truthchain.models.attestation import MediaType

logger = structlog.get_logger()

IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.gif', '.webp', '.bmp', '.tiff', '.tif'}
VIDEO_EXTENSIONS = {'.mp4', '.avi', '.mov', '.webm', '.mkv', '.flv', '.wmv'}
AUDIO_EXTENSIONS = {'.mp3', '.wav', '.flac', '.ogg', '.m4a', '.aac', '.wma'}
DOCUMENT_EXTENSIONS = {'.pdf', '.txt', '.doc', '.docx', '.md', '.json'}


def now_ms() -> int:
    """Current wall-clock time in milliseconds since epoch."""
    return int(time.time() * 1000)


def short_hash(value: Optional[str], length: int = 16) -> str:
    """Truncate a hash for log output."""
    if not value:
        return ""
    return value[:length] + "..." if len(value) > length else value


def format_file_size(size_bytes: int) -> str:
    """Format file size in human-readable format."""
    if size_bytes == 0:
        return "0 B"

    size_names = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    while size_bytes >= 1024 and i < len(size_names) - 1:
        size_bytes /= 1024.0
        i += 1

    return f"{size_bytes:.1f} {size_names[i]}"


def detect_media_type(filename: Optional[str], content_type: Optional[str] = None) -> Optional[MediaType]:
    """
    Map an upload to a ledger media type.

    The declared MIME type wins; the file extension is the fallback.
    """
    if not content_type and filename:
        content_type = mimetypes.guess_type(filename)[0]

    if content_type:
        if content_type.startswith("image/"):
            return MediaType.PHOTO
        if content_type.startswith("video/"):
            return MediaType.VIDEO
        if content_type.startswith("audio/"):
            return MediaType.AUDIO
        if content_type.startswith("text/") or content_type in ("application/pdf", "application/json"):
            return MediaType.DOCUMENT

    if not filename:
        return None

    filename_lower = filename.lower()
    if any(filename_lower.endswith(ext) for ext in IMAGE_EXTENSIONS):
        return MediaType.PHOTO
    if any(filename_lower.endswith(ext) for ext in VIDEO_EXTENSIONS):
        return MediaType.VIDEO
    if any(filename_lower.endswith(ext) for ext in AUDIO_EXTENSIONS):
        return MediaType.AUDIO
    if any(filename_lower.endswith(ext) for ext in DOCUMENT_EXTENSIONS):
        return MediaType.DOCUMENT

    logger.debug("Could not determine media type", filename=filename, content_type=content_type)
    return None

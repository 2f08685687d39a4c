import re
import os
import uuid
from typing import Iterator, List, Optional, Sequence, TypeVar

T = TypeVar("T")

IMAGE_EXTENSIONS = {
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.gif': 'image/gif',
    '.webp': 'image/webp',
    '.bmp': 'image/bmp',
}


def new_image_id() -> str:
    """Generate a new unique image ID."""
    return str(uuid.uuid4())


def batched(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive slices of at most ``size`` items, preserving order."""
    if size < 1:
        raise ValueError("Batch size must be at least 1")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def guess_image_mime_type(filename: str) -> Optional[str]:
    """Return the image MIME type implied by a filename extension, or None."""
    if not filename:
        return None
    _, ext = os.path.splitext(filename.lower())
    return IMAGE_EXTENSIONS.get(ext)


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


def sanitize_filename(filename: str) -> str:
    """Sanitize an uploaded filename for display and logging."""
    if not filename:
        return "unnamed_image"

    # Keep only alphanumeric, dots, dashes, underscores
    sanitized = re.sub(r'[^\w\-_\.]', '_', filename)

    # Remove multiple consecutive underscores
    sanitized = re.sub(r'_{2,}', '_', sanitized)

    # Ensure it doesn't start with a dot (hidden file)
    if sanitized.startswith('.'):
        sanitized = 'file_' + sanitized

    # Limit length
    if len(sanitized) > 255:
        name, ext = os.path.splitext(sanitized)
        sanitized = name[:255-len(ext)] + ext

    return sanitized

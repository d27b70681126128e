"""Project-wide named constants.

Constants defined here replace inline magic values across the codebase.
"""

# Order matters: derive_key() strips the first entry that matches.
SUPPORTED_EXTENSIONS: tuple[str, ...] = (".png", ".jpg", ".jpeg", ".webp", ".gif")

# Storage endpoint ceiling for a single image (20 MiB).
MAX_FILE_SIZE_BYTES: int = 20 * 1024 * 1024

# Used when the local file carries no MIME type.
DEFAULT_MIME_TYPE: str = "image/png"

# Multipart field that carries the file bytes in the storage transfer.
TRANSFER_FILE_FIELD: str = "file"

MEDIA_CONTENT_TYPE: str = "IMAGE"

"""Batch intake: finding photos on disk and loading them as image records."""

import logging
from pathlib import Path

from ex_remover.records import ImageRecord, make_record_id

logger = logging.getLogger(__name__)

# Supported image formats and the MIME type sent to the provider
MEDIA_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".heic": "image/heic",
}
SUPPORTED_EXTENSIONS = set(MEDIA_TYPES)

# Directory patterns to exclude
EXCLUDED_DIRS = {"_cache", "__MACOSX", "thumbnails", ".thumbnails"}


def media_type_for(path: Path) -> str | None:
    return MEDIA_TYPES.get(path.suffix.lower())


def discover_images(
    paths: list[Path], recursive: bool = False, max_images: int | None = None
) -> tuple[list[Path], list[Path]]:
    """Expand files and directories into the ordered list of batch images.

    Files are kept in the order given; each directory contributes its images
    sorted by name.

    Args:
        paths: Files and/or directories
        recursive: If True, search subdirectories
        max_images: Optional limit on number of images to return

    Returns:
        Tuple of (images, ignored) where ignored holds non-image files

    Raises:
        ValueError: If a path doesn't exist
    """
    images: list[Path] = []
    ignored: list[Path] = []

    for path in paths:
        if not path.exists():
            raise ValueError(f"Path does not exist: {path}")

        if path.is_dir():
            logger.info(f"Discovering images in: {path} (recursive={recursive})")
            pattern = "**/*" if recursive else "*"
            candidates = sorted(
                (p for p in path.glob(pattern) if p.is_file()),
                key=lambda p: str(p.relative_to(path)).lower(),
            )
        else:
            candidates = [path]

        for file_path in candidates:
            if any(excluded in file_path.parts for excluded in EXCLUDED_DIRS):
                logger.debug(f"Skipping (excluded dir): {file_path}")
                continue

            if file_path.suffix.lower() not in SUPPORTED_EXTENSIONS:
                ignored.append(file_path)
                continue

            if file_path in images:
                continue

            images.append(file_path)
            logger.debug(f"Discovered: {file_path}")

            if max_images and len(images) >= max_images:
                logger.info(f"Reached max_images limit: {max_images}")
                return images, ignored

    if ignored:
        logger.warning(
            f"Some files were not valid image types and were ignored ({len(ignored)})"
        )
    logger.info(f"Discovered {len(images)} images")
    return images, ignored


def load_record(path: Path) -> ImageRecord:
    """Read one photo into a queued image record.

    Raises:
        ValueError: If the file type is not supported
        OSError: If the file cannot be read
    """
    media_type = media_type_for(path)
    if media_type is None:
        raise ValueError(f"Unsupported image type: {path.name}")

    stat = path.stat()
    data = path.read_bytes()
    return ImageRecord(
        id=make_record_id(path.name, stat.st_mtime),
        filename=path.name,
        source_image=data,
        mime_type=media_type,
    )


def load_records(images: list[Path]) -> tuple[list[ImageRecord], list[str]]:
    """Load every image, collecting unreadable files as batch-level messages.

    An unreadable file never prevents the rest of the batch from loading.

    Returns:
        Tuple of (records, messages)
    """
    records: list[ImageRecord] = []
    messages: list[str] = []
    seen: set[str] = set()

    for path in images:
        try:
            record = load_record(path)
        except (OSError, ValueError) as e:
            logger.warning(f"Cannot read {path}: {e}")
            messages.append(f"Could not read {path.name}: {e}")
            continue

        if record.id in seen:
            logger.debug(f"Skipping duplicate file identity: {record.id}")
            continue
        seen.add(record.id)
        records.append(record)

    return records, messages


def get_batch_stats(records: list[ImageRecord]) -> dict[str, int | float | dict[str, int]]:
    """Get statistics about a loaded batch.

    Returns:
        Dictionary with total, total_size_mb, avg_size_mb and by_type counts
    """
    if not records:
        return {"total": 0, "total_size_mb": 0.0, "avg_size_mb": 0.0, "by_type": {}}

    total_size_mb = sum(len(r.source_image) for r in records) / (1024 * 1024)

    by_type: dict[str, int] = {}
    for record in records:
        by_type[record.mime_type] = by_type.get(record.mime_type, 0) + 1

    return {
        "total": len(records),
        "total_size_mb": round(total_size_mb, 2),
        "avg_size_mb": round(total_size_mb / len(records), 2),
        "by_type": by_type,
    }

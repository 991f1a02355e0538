"""Export of finished images and the batch report."""

import json
import logging
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Any

from ex_remover.prepare import EXTENSIONS
from ex_remover.records import ImageRecord, ImageStatus, ImageStore

logger = logging.getLogger(__name__)

DEFAULT_ARCHIVE_NAME = "ex-remover-results.zip"


def archive_name(record: ImageRecord) -> str:
    """Name for a result inside the archive, matching its actual format."""
    if record.result_mime_type == record.mime_type:
        return record.filename
    stem = Path(record.filename).stem or "image"
    return f"{stem}{EXTENSIONS.get(record.result_mime_type or '', '.png')}"


def export_results(store: ImageStore, output_path: Path) -> int:
    """Write every ``done`` result into a zip archive.

    Args:
        store: Image records of the batch
        output_path: Path to the archive

    Returns:
        Number of images written

    Raises:
        ValueError: If no image has finished
    """
    finished = [
        r for r in store if r.status == ImageStatus.DONE and r.result_image is not None
    ]
    if not finished:
        raise ValueError("No images have been successfully processed to download.")

    used: set[str] = set()
    with zipfile.ZipFile(output_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for record in finished:
            name = archive_name(record)
            if name in used:
                stem, suffix = Path(name).stem, Path(name).suffix
                counter = 2
                while f"{stem}_{counter}{suffix}" in used:
                    counter += 1
                name = f"{stem}_{counter}{suffix}"
            used.add(name)
            archive.writestr(name, record.result_image)
            logger.debug(f"Archived {record.id} as {name}")

    logger.info(f"Exported {len(finished)} images to: {output_path}")
    return len(finished)


def build_rows(store: ImageStore) -> list[dict[str, Any]]:
    return [
        {
            "id": record.id,
            "filename": record.filename,
            "status": record.status.value,
            "pass_through": record.is_pass_through,
            "error": record.error,
        }
        for record in store
    ]


def calculate_statistics(store: ImageStore) -> dict[str, Any]:
    counts = store.counts()
    return {
        "total_images": len(store),
        "removed": sum(
            1 for r in store if r.status == ImageStatus.DONE and not r.is_pass_through
        ),
        "not_present": sum(1 for r in store if r.is_pass_through),
        "status_counts": counts,
    }


def generate_json_report(
    store: ImageStore, description: str, balance: int, output_path: Path
) -> None:
    """Generate JSON report."""
    report = {
        "generated_at": datetime.now().isoformat(),
        "description": description,
        "credits_remaining": balance,
        "statistics": calculate_statistics(store),
        "results": build_rows(store),
    }

    with open(output_path, "w") as f:
        json.dump(report, f, indent=2)

    logger.info(f"JSON report written to: {output_path}")


def generate_markdown_report(
    store: ImageStore, description: str, balance: int, output_path: Path
) -> None:
    """Generate Markdown report."""
    stats = calculate_statistics(store)

    lines = [
        "# Ex Remover Report",
        "",
        f"**Generated:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        "",
        "## Subject",
        "",
        description or "_none_",
        "",
        "## Statistics",
        "",
        f"- **Total Images:** {stats['total_images']}",
        f"- **Removed:** {stats['removed']}",
        f"- **Not Present:** {stats['not_present']}",
        f"- **Credits Remaining:** {balance}",
        "",
        "| File | Status | Notes |",
        "| --- | --- | --- |",
    ]

    for row in build_rows(store):
        notes = row["error"] or ("kept original" if row["pass_through"] else "")
        notes = notes.replace("|", "\\|").replace("\n", " ")
        lines.append(f"| {row['filename']} | {row['status']} | {notes} |")

    with open(output_path, "w") as f:
        f.write("\n".join(lines) + "\n")

    logger.info(f"Markdown report written to: {output_path}")


def generate_report(
    store: ImageStore,
    description: str,
    balance: int,
    output_path: Path,
    format: str = "json",
) -> None:
    """Generate the batch report.

    Args:
        store: Image records of the batch
        description: Final subject description
        balance: Credit balance after the batch
        output_path: Path to output file (suffix replaced per format)
        format: Output format ('json', 'markdown', or 'both')

    Raises:
        ValueError: If format is invalid
    """
    if format not in {"json", "markdown", "both"}:
        raise ValueError(f"Invalid format: {format}")

    if format in {"json", "both"}:
        generate_json_report(store, description, balance, output_path.with_suffix(".json"))

    if format in {"markdown", "both"}:
        generate_markdown_report(store, description, balance, output_path.with_suffix(".md"))

"""Per-image state, status update messages, and the shared subject description."""

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum

from ex_remover.errors import InvalidTransition, RecordBusy

logger = logging.getLogger(__name__)

AUGMENT_DELIMITER = "\n\n[Additional detail from another photo]: "


class ImageStatus(str, Enum):
    QUEUED = "queued"
    VERIFYING = "verifying"
    PROCESSING = "processing"
    PERSON_NOT_FOUND = "person_not_found"
    DONE = "done"
    FAILED = "failed"


# Allowed moves. Leaving DONE only happens through a paid re-fix and
# leaving PERSON_NOT_FOUND only through a user action or a reverify sweep.
TRANSITIONS: dict[ImageStatus, set[ImageStatus]] = {
    ImageStatus.QUEUED: {ImageStatus.VERIFYING},
    ImageStatus.VERIFYING: {
        ImageStatus.PROCESSING,
        ImageStatus.PERSON_NOT_FOUND,
        ImageStatus.FAILED,
    },
    ImageStatus.PROCESSING: {ImageStatus.DONE, ImageStatus.FAILED},
    ImageStatus.PERSON_NOT_FOUND: {
        ImageStatus.DONE,
        ImageStatus.PROCESSING,
        ImageStatus.VERIFYING,
    },
    ImageStatus.DONE: {ImageStatus.PROCESSING},
    ImageStatus.FAILED: set(),
}


def make_record_id(name: str, mtime: float) -> str:
    """Derive a stable id from file identity (name + modification time in ms)."""
    return f"{name}-{int(mtime * 1000)}"


@dataclass
class ImageRecord:
    """One photo in the batch and where it stands in the pipeline."""

    id: str
    filename: str
    source_image: bytes
    mime_type: str
    status: ImageStatus = ImageStatus.QUEUED
    result_image: bytes | None = None
    result_mime_type: str | None = None
    error: str | None = None
    pass_through: bool = False

    @property
    def is_pass_through(self) -> bool:
        return self.status == ImageStatus.DONE and self.pass_through


@dataclass(frozen=True)
class StatusUpdate:
    """Message emitted by a pipeline stage, applied to a record by id."""

    record_id: str
    status: ImageStatus
    result_image: bytes | None = None
    result_mime_type: str | None = None
    error: str | None = None
    pass_through: bool = False


Listener = Callable[[ImageRecord, StatusUpdate], None]


class ImageStore:
    """Ordered collection of image records.

    All status changes go through ``apply``, which validates them against the
    state machine and notifies listeners in the order updates arrive.
    """

    def __init__(self, records: list[ImageRecord] | None = None) -> None:
        self._records: dict[str, ImageRecord] = {}
        self._owners: dict[str, str] = {}
        self._listeners: list[Listener] = []
        for record in records or []:
            self.add(record)

    def add(self, record: ImageRecord) -> None:
        if record.id in self._records:
            raise ValueError(f"Duplicate image id in batch: {record.id}")
        self._records[record.id] = record

    def get(self, record_id: str) -> ImageRecord:
        try:
            return self._records[record_id]
        except KeyError:
            raise KeyError(f"Unknown image id: {record_id}") from None

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    def __iter__(self) -> Iterator[ImageRecord]:
        return iter(list(self._records.values()))

    def __len__(self) -> int:
        return len(self._records)

    def ids(self) -> list[str]:
        return list(self._records)

    def ids_with_status(self, status: ImageStatus) -> list[str]:
        return [r.id for r in self._records.values() if r.status == status]

    def counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in ImageStatus}
        for record in self._records.values():
            counts[record.status.value] += 1
        return counts

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def owner_of(self, record_id: str) -> str | None:
        return self._owners.get(record_id)

    def is_busy(self, record_id: str) -> bool:
        return record_id in self._owners

    @contextmanager
    def claim(self, record_id: str, owner: str) -> Iterator[ImageRecord]:
        """Mark ``owner`` as the one sequence advancing this record.

        Raises:
            KeyError: If the id is unknown
            RecordBusy: If another sequence already holds the record
        """
        record = self.get(record_id)
        current = self._owners.get(record_id)
        if current is not None:
            raise RecordBusy(f"Image {record_id} is already being processed by {current}")
        self._owners[record_id] = owner
        try:
            yield record
        finally:
            del self._owners[record_id]

    def apply(self, update: StatusUpdate) -> ImageRecord:
        """Apply a status update to the record it names.

        Raises:
            KeyError: If the id is unknown
            InvalidTransition: If the move is not allowed or the payload does
                not match the target status
        """
        record = self.get(update.record_id)
        if update.status not in TRANSITIONS[record.status]:
            raise InvalidTransition(
                f"{record.id}: cannot move from {record.status.value} "
                f"to {update.status.value}"
            )

        if update.status == ImageStatus.DONE:
            if update.result_image is None or update.error is not None:
                raise InvalidTransition(f"{record.id}: done requires a result and no error")
        elif update.pass_through:
            raise InvalidTransition(f"{record.id}: only a done image can be a pass-through")
        elif update.status == ImageStatus.FAILED:
            if update.error is None or update.result_image is not None:
                raise InvalidTransition(f"{record.id}: failed requires an error and no result")
        elif update.result_image is not None or update.error is not None:
            raise InvalidTransition(
                f"{record.id}: {update.status.value} carries no result or error"
            )

        record.status = update.status
        record.result_image = update.result_image
        record.result_mime_type = (
            update.result_mime_type or record.mime_type
            if update.result_image is not None
            else None
        )
        record.error = update.error
        record.pass_through = update.pass_through
        logger.debug(f"{record.id} -> {record.status.value}")

        for listener in self._listeners:
            try:
                listener(record, update)
            except Exception:
                # Listeners only observe; they must not unwind the pipeline
                logger.exception(f"Status listener failed for {record.id}")
        return record

    def clear(self) -> None:
        """Drop every record and the image data they hold."""
        if self._owners:
            raise RecordBusy(f"Cannot discard batch while images are in flight: {list(self._owners)}")
        self._records.clear()


class TargetDescriptor:
    """Text description of the subject, shared by every image in the batch."""

    def __init__(self, text: str = "") -> None:
        self._text = text

    @property
    def text(self) -> str:
        return self._text

    def __bool__(self) -> bool:
        return bool(self._text.strip())

    def __str__(self) -> str:
        return self._text

    def set(self, text: str) -> None:
        self._text = text

    def augment(self, detail: str) -> str:
        """Append detail from another photo; prior text is never removed."""
        detail = detail.strip()
        if not detail:
            return self._text
        if self._text:
            self._text = f"{self._text}{AUGMENT_DELIMITER}{detail}"
        else:
            self._text = detail
        return self._text

    def clear(self) -> None:
        self._text = ""


@dataclass(frozen=True)
class Point:
    """Pixel coordinate on the natural (unscaled) image."""

    x: int
    y: int

    @classmethod
    def parse(cls, value: str) -> "Point":
        """Parse ``"X,Y"`` into a point.

        Raises:
            ValueError: If the value is not two non-negative integers
        """
        parts = [p.strip() for p in value.split(",")]
        if len(parts) != 2:
            raise ValueError(f"Expected X,Y but got: {value!r}")
        x, y = (int(p) for p in parts)
        if x < 0 or y < 0:
            raise ValueError(f"Coordinates must be non-negative: {value!r}")
        return cls(x, y)

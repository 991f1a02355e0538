"""Batch orchestrator: drives every image through verify and remove."""

import logging

from ex_remover.credits import CreditLedger
from ex_remover.errors import AdapterError, RemoverError, is_billing_error
from ex_remover.prepare import sniff_media_type
from ex_remover.provider import VisionEditAdapter
from ex_remover.records import (
    ImageRecord,
    ImageStatus,
    ImageStore,
    Point,
    StatusUpdate,
    TargetDescriptor,
)

logger = logging.getLogger(__name__)

BATCH_OWNER = "batch"


def error_message(error: Exception) -> str:
    if isinstance(error, AdapterError):
        return error.message
    return str(error) or "An unexpected error occurred."


class BatchOrchestrator:
    """Owns one batch of images and the subject description for it.

    Images are advanced strictly in batch order, one at a time, so at most
    one provider call from the batch loop is in flight.
    """

    def __init__(
        self,
        store: ImageStore,
        ledger: CreditLedger,
        adapter: VisionEditAdapter,
        descriptor: TargetDescriptor | None = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.adapter = adapter
        self.descriptor = descriptor if descriptor is not None else TargetDescriptor()
        self.started = False

    @property
    def reference(self) -> ImageRecord:
        for record in self.store:
            return record
        raise ValueError("Batch is empty")

    async def identify_target(self, point: Point, record_id: str | None = None) -> str:
        """Describe the person at ``point`` on the reference photo.

        The description replaces whatever was there before. Identification
        costs no credits.

        Raises:
            AdapterError: If the provider cannot identify anyone
        """
        if self.started:
            raise RemoverError("The description cannot change once processing has started")

        record = self.store.get(record_id) if record_id else self.reference
        self.descriptor.clear()
        logger.info(f"Identifying subject on {record.filename} at ({point.x}, {point.y})")

        description = await self.adapter.identify(record.source_image, record.mime_type, point)
        self.descriptor.set(description)
        logger.info("Subject identified")
        logger.debug(f"Description: {description}")
        return description

    def set_description(self, text: str) -> None:
        """Let the user edit the description before processing starts."""
        if self.started:
            raise RemoverError("The description cannot change once processing has started")
        self.descriptor.set(text.strip())

    async def run(self) -> dict[str, int]:
        """Reserve credits for every queued image, then process them in order.

        Returns:
            Count of images per status once the batch has settled

        Raises:
            ValueError: If no subject has been described
            InsufficientCredits: If the balance cannot cover the batch; no
                image leaves the queue in that case
        """
        if not self.descriptor:
            raise ValueError("Please select a person to remove by clicking on them in the photo.")

        queued = self.store.ids_with_status(ImageStatus.QUEUED)
        self.ledger.reserve(len(queued))
        self.started = True

        description = self.descriptor.text
        logger.info(f"Processing {len(queued)} images")

        for record_id in queued:
            with self.store.claim(record_id, BATCH_OWNER):
                await self.process_record(record_id, description)

        counts = self.store.counts()
        logger.info(
            f"Batch settled: {counts['done']} done, "
            f"{counts['person_not_found']} not found, {counts['failed']} failed"
        )
        return counts

    async def process_record(self, record_id: str, description: str) -> ImageStatus:
        """Run one image through verifying -> processing -> done.

        The caller must hold the record's claim. Provider failures end in
        ``failed`` and never propagate.
        """
        record = self.store.apply(StatusUpdate(record_id, ImageStatus.VERIFYING))

        try:
            present = await self.adapter.verify(record.source_image, record.mime_type, description)
        except Exception as e:
            return self.fail(record_id, e)

        if not present:
            logger.info(f"Subject not found in {record.filename}")
            self.store.apply(StatusUpdate(record_id, ImageStatus.PERSON_NOT_FOUND))
            return ImageStatus.PERSON_NOT_FOUND

        self.store.apply(StatusUpdate(record_id, ImageStatus.PROCESSING))
        try:
            edited = await self.adapter.edit(record.source_image, record.mime_type, description)
        except Exception as e:
            return self.fail(record_id, e)

        return self.complete(record_id, edited)

    def complete(self, record_id: str, edited: bytes) -> ImageStatus:
        self.store.apply(
            StatusUpdate(
                record_id,
                ImageStatus.DONE,
                result_image=edited,
                result_mime_type=sniff_media_type(edited),
            )
        )
        logger.info(f"Removed subject from {self.store.get(record_id).filename}")
        return ImageStatus.DONE

    def fail(self, record_id: str, error: Exception) -> ImageStatus:
        """Move an image to ``failed``, refunding its credit on billing/quota errors."""
        message = error_message(error)
        if is_billing_error(error):
            self.ledger.refund(1)
        logger.error(f"Failed to process {record_id}: {message}")
        self.store.apply(StatusUpdate(record_id, ImageStatus.FAILED, error=message))
        return ImageStatus.FAILED

    def mark_not_present(self, record_id: str) -> bool:
        """User confirms the subject is not in this photo.

        The original becomes the result and the image's credit is refunded.
        Only applies to ``person_not_found`` images; anything else is a no-op.

        Returns:
            True if the image was settled
        """
        record = self.store.get(record_id)
        if record.status != ImageStatus.PERSON_NOT_FOUND or self.store.is_busy(record_id):
            logger.debug(f"Ignoring 'not here' for {record_id} ({record.status.value})")
            return False

        self.store.apply(
            StatusUpdate(
                record_id,
                ImageStatus.DONE,
                result_image=record.source_image,
                result_mime_type=record.mime_type,
                pass_through=True,
            )
        )
        self.ledger.refund(1)
        logger.info(f"Kept {record.filename} unchanged (subject not present)")
        return True

    def discard(self) -> None:
        """Release every image and reset the description for a new batch."""
        self.store.clear()
        self.descriptor.clear()
        self.started = False

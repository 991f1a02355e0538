"""Point-and-click correction for single images, followed by a reverify sweep."""

import logging

from ex_remover.errors import InvalidTransition, RecordBusy
from ex_remover.orchestrator import BatchOrchestrator
from ex_remover.records import ImageStatus, Point, StatusUpdate

logger = logging.getLogger(__name__)

REPOINT_OWNER = "repoint"
SWEEP_OWNER = "sweep"


class ReverifyCoordinator:
    """Re-identifies the subject on one image and widens the description.

    After the image is fixed, every image still marked ``person_not_found``
    is verified again with the augmented description. No new credits are
    reserved for the sweep.
    """

    def __init__(self, orchestrator: BatchOrchestrator) -> None:
        self.orchestrator = orchestrator
        self.store = orchestrator.store
        self.ledger = orchestrator.ledger
        self.adapter = orchestrator.adapter
        self.descriptor = orchestrator.descriptor

    async def free_repoint(self, record_id: str, point: Point) -> bool:
        """Point again on a ``person_not_found`` image at no extra charge.

        Returns:
            False without doing anything if the image is not awaiting a
            decision, otherwise whether the image ended up ``done``
        """
        record = self.store.get(record_id)
        if record.status != ImageStatus.PERSON_NOT_FOUND or self.store.is_busy(record_id):
            logger.info(f"Re-point not available for {record.filename} ({record.status.value})")
            return False
        return await self._repoint(record_id, point)

    async def paid_refix(self, record_id: str, point: Point) -> bool:
        """Redo a ``done`` image for one credit.

        Raises:
            InvalidTransition: If the image is not done
            RecordBusy: If the image is being processed
            InsufficientCredits: If no credit is available; nothing changes
        """
        record = self.store.get(record_id)
        if record.status != ImageStatus.DONE:
            raise InvalidTransition(
                f"Only finished images can be fixed ({record.filename} is {record.status.value})"
            )
        if self.store.is_busy(record_id):
            raise RecordBusy(f"Image {record_id} is already being processed")

        self.ledger.reserve(1)
        return await self._repoint(record_id, point)

    async def _repoint(self, record_id: str, point: Point) -> bool:
        with self.store.claim(record_id, REPOINT_OWNER) as record:
            self.store.apply(StatusUpdate(record_id, ImageStatus.PROCESSING))

            try:
                detail = await self.adapter.identify(record.source_image, record.mime_type, point)
            except Exception as e:
                self.orchestrator.fail(record_id, e)
                return False

            try:
                edited = await self.adapter.edit(record.source_image, record.mime_type, detail)
            except Exception as e:
                self.orchestrator.fail(record_id, e)
                return False

            self.orchestrator.complete(record_id, edited)

        self.descriptor.augment(detail)
        logger.info("Subject description augmented with detail from another photo")
        await self.sweep()
        return True

    async def sweep(self) -> dict[str, ImageStatus]:
        """Verify every ``person_not_found`` image again with the current description.

        The work list is taken once, up front; each id is looked up in the
        live store when its turn comes and skipped if something else has
        settled or claimed it in the meantime.

        Returns:
            Final status of each image the sweep processed
        """
        work = self.store.ids_with_status(ImageStatus.PERSON_NOT_FOUND)
        description = self.descriptor.text
        outcomes: dict[str, ImageStatus] = {}

        if not work:
            return outcomes
        logger.info(f"Reverifying {len(work)} image(s)")

        for record_id in work:
            if record_id not in self.store:
                continue
            record = self.store.get(record_id)
            if record.status != ImageStatus.PERSON_NOT_FOUND or self.store.is_busy(record_id):
                logger.debug(f"Skipping {record_id} in sweep ({record.status.value})")
                continue

            with self.store.claim(record_id, SWEEP_OWNER):
                outcomes[record_id] = await self.orchestrator.process_record(
                    record_id, description
                )

        return outcomes

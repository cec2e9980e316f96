"""
Discharge workflow - Admitted -> Discharged, then free the bed.

Two independently owned resources are involved, so the workflow is a small
saga rather than a single write:
1. Commit discharged_at on the ledger record together with the release claim
   (bed_release_started_at); the precondition is re-checked against the
   fresh record inside the merge
2. Set the bed to Available in the bed registry
3. Confirm the release on the record (bed -> released_bed)

Only the caller whose merge set the claim talks to the bed registry. If step 2
fails the claim is dropped again and the record shows up in
pending_bed_releases() for retry_bed_release(). If step 3 fails the bed is
already free, so the claim stays: retry_bed_release() will not touch the
registry again and confirm_bed_release() records the release instead.
"""

import logging
from datetime import datetime, timezone
from typing import List

from ipd_billing.core.errors import (
    AlreadyDischargedError,
    MissingBedInfoError,
    PartialDischargeError,
    ValidationError,
)
from ipd_billing.models.bed import BedRef, BedStatus
from ipd_billing.models.ledger import LedgerRecord
from ipd_billing.repositories.bed_repo import BedRegistry
from ipd_billing.repositories.ledger_store import LedgerRecordStore

logger = logging.getLogger(__name__)


class DischargeService:

    def __init__(self, store: LedgerRecordStore, beds: BedRegistry):
        self.store = store
        self.beds = beds

    async def discharge(self, record_id: str) -> LedgerRecord:
        """
        Discharge a stay and release its bed.

        Raises AlreadyDischargedError (carrying the record) if already
        discharged, MissingBedInfoError if no bed is assigned, and
        PartialDischargeError if the bed could not be released or the
        release could not be recorded.
        """
        record = await self.store.fetch(record_id)
        self._check_can_discharge(record)

        def mutation(current: LedgerRecord) -> LedgerRecord:
            self._check_can_discharge(current)
            now = datetime.now(timezone.utc)
            current.discharged_at = now
            current.bed_release_started_at = now
            return current

        record = await self.store.merge(record_id, mutation)
        logger.info("Ledger record %s discharged at %s", record_id, record.discharged_at.isoformat())

        return await self._release_bed(record)

    async def retry_bed_release(self, record_id: str) -> LedgerRecord:
        """
        Release the bed of a discharged record whose release never happened.

        Does nothing when the release is confirmed or already claimed by
        another caller (in flight, or freed but not yet recorded).
        """
        record = await self._fetch_discharged(record_id, "nothing to release")
        if record.bed is None:
            return record

        claimed = False

        def claim(current: LedgerRecord) -> LedgerRecord:
            nonlocal claimed
            claimed = current.bed is not None and current.bed_release_started_at is None
            if claimed:
                current.bed_release_started_at = datetime.now(timezone.utc)
            return current

        record = await self.store.merge(record_id, claim)
        if not claimed:
            logger.info(
                "Bed release for ledger record %s already in progress or done; skipping",
                record_id
            )
            return record

        logger.info("Retrying bed release for ledger record %s (%s)", record_id, record.bed.key())
        return await self._release_bed(record)

    async def confirm_bed_release(self, record_id: str) -> LedgerRecord:
        """
        Record a bed release without calling the bed registry.

        For stays whose bed is known to be free: after a PartialDischargeError
        with bed_released=True, or a release claim left behind by a crashed
        worker once the bed has been checked by hand.
        """
        record = await self._fetch_discharged(record_id, "nothing to confirm")
        if record.bed is None:
            return record

        bed: BedRef = record.bed
        record = await self.store.merge(record_id, self._confirm(bed))
        logger.warning("Bed %s release confirmed manually for ledger record %s", bed.key(), record_id)
        return record

    async def pending_bed_releases(self) -> List[LedgerRecord]:
        """Discharged records holding an unclaimed bed, oldest discharge first."""
        return await self.store.list_pending_bed_releases()

    def _check_can_discharge(self, record: LedgerRecord) -> None:
        if record.discharged_at is not None:
            raise AlreadyDischargedError(record)
        if record.bed is None:
            raise MissingBedInfoError(record.id)

    async def _fetch_discharged(self, record_id: str, reason: str) -> LedgerRecord:
        record = await self.store.fetch(record_id)
        if record.discharged_at is None:
            raise ValidationError(f"Ledger record {record_id} is not discharged; {reason}", record_id)
        return record

    @staticmethod
    def _confirm(bed: BedRef):
        def confirm(current: LedgerRecord) -> LedgerRecord:
            if current.bed == bed:
                current.released_bed = bed
                current.bed = None
                current.bed_released_at = datetime.now(timezone.utc)
            return current
        return confirm

    async def _release_bed(self, record: LedgerRecord) -> LedgerRecord:
        """Steps 2-3. The caller must hold the release claim."""
        bed: BedRef = record.bed

        try:
            await self.beds.set_status(bed.room_type, bed.bed_id, BedStatus.AVAILABLE)
        except Exception as exc:
            logger.error(
                "Partial discharge of ledger record %s: bed %s not released (%s)",
                record.id, bed.key(), exc
            )
            await self._drop_claim(record.id, bed)
            raise PartialDischargeError(record.id, bed, bed_released=False) from exc

        try:
            record = await self.store.merge(record.id, self._confirm(bed))
        except Exception as exc:
            logger.error(
                "Partial discharge of ledger record %s: bed %s released but not recorded (%s)",
                record.id, bed.key(), exc
            )
            raise PartialDischargeError(record.id, bed, bed_released=True) from exc

        logger.info("Bed %s released for ledger record %s", bed.key(), record.id)
        return record

    async def _drop_claim(self, record_id: str, bed: BedRef) -> None:
        def unclaim(current: LedgerRecord) -> LedgerRecord:
            if current.bed == bed:
                current.bed_release_started_at = None
            return current

        try:
            await self.store.merge(record_id, unclaim)
        except Exception:
            # Claim stays set; the record needs confirm_bed_release or a manual check
            logger.exception("Could not drop bed release claim on ledger record %s", record_id)

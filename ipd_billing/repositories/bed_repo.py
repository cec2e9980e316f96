"""
Bed registry adapters.

Bed allocation belongs to the admission side; the ledger only ever calls
set_status(..., Available) from the discharge workflow.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase

from ipd_billing.core.config import settings
from ipd_billing.core.errors import NotFoundError
from ipd_billing.models.bed import BedStatus

logger = logging.getLogger(__name__)


class BedRegistry:
    """Interface of the bed registry as seen from the ledger."""

    async def set_status(self, room_type: str, bed_id: str, status: BedStatus) -> None:
        raise NotImplementedError

    async def get_status(self, room_type: str, bed_id: str) -> Optional[BedStatus]:
        raise NotImplementedError


class MongoBedRegistry(BedRegistry):
    """Beds stored one document per bed: {room_type, bed_id, status, updated_at}."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db[settings.BEDS_COLLECTION]

    async def set_status(self, room_type: str, bed_id: str, status: BedStatus) -> None:
        result = await self.collection.update_one(
            {"room_type": room_type, "bed_id": bed_id},
            {
                "$set": {
                    "status": BedStatus(status).value,
                    "updated_at": datetime.now(timezone.utc)
                }
            }
        )
        if result.matched_count == 0:
            raise NotFoundError(f"Bed {room_type}/{bed_id} not found")
        logger.info("Bed %s/%s set to %s", room_type, bed_id, BedStatus(status).value)

    async def get_status(self, room_type: str, bed_id: str) -> Optional[BedStatus]:
        doc = await self.collection.find_one({"room_type": room_type, "bed_id": bed_id})
        if not doc:
            return None
        return BedStatus(doc["status"])


class InMemoryBedRegistry(BedRegistry):
    """Process-local registry; beds must be registered before use."""

    def __init__(self):
        self._beds: Dict[Tuple[str, str], BedStatus] = {}

    def add_bed(self, room_type: str, bed_id: str, status: BedStatus = BedStatus.AVAILABLE) -> None:
        self._beds[(room_type, bed_id)] = BedStatus(status)

    async def set_status(self, room_type: str, bed_id: str, status: BedStatus) -> None:
        await asyncio.sleep(0)
        if (room_type, bed_id) not in self._beds:
            raise NotFoundError(f"Bed {room_type}/{bed_id} not found")
        self._beds[(room_type, bed_id)] = BedStatus(status)

    async def get_status(self, room_type: str, bed_id: str) -> Optional[BedStatus]:
        return self._beds.get((room_type, bed_id))

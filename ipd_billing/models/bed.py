from enum import Enum

from pydantic import BaseModel, ConfigDict


class BedStatus(str, Enum):
    AVAILABLE = "Available"
    OCCUPIED = "Occupied"


class BedRef(BaseModel):
    """Pointer into the bed registry: beds/{room_type}/{bed_id}."""

    model_config = ConfigDict(frozen=True)

    room_type: str
    bed_id: str

    def key(self) -> str:
        return f"{self.room_type}/{self.bed_id}"

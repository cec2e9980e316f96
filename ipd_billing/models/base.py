from datetime import datetime, timezone

from pydantic import BaseModel, Field, ConfigDict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MongoModel(BaseModel):
    """Document stored under a caller-assigned string `_id`, with a revision counter."""

    id: str = Field(alias="_id")
    version: int = 1
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
        from_attributes=True
    )

    def to_document(self) -> dict:
        """Serialize for persistence (derived fields included as a read snapshot)."""
        return self.model_dump(by_alias=True, mode="python")

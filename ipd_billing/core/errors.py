"""
Ledger error taxonomy.

Every mutating operation either returns the updated LedgerRecord or raises
one of these. Callers translate them into user-facing messages:

- ValidationError          bad input, nothing was written
- NotFoundError            unknown record or service index
- RecordDischargedError    mutation attempted on a discharged record
- ConcurrentUpdateError    optimistic merge retries exhausted
- MissingBedInfoError      discharge without a bed to release
- AlreadyDischargedError   discharge repeated; non-fatal, carries the record
- PartialDischargeError    record discharged but bed release failed;
                           needs reconciliation, never a generic retry
"""

from typing import Optional


class LedgerError(Exception):
    """Base class for billing ledger errors."""

    def __init__(self, message: str, record_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.record_id = record_id


class ValidationError(LedgerError):
    pass


class NotFoundError(LedgerError):
    pass


class RecordDischargedError(LedgerError):
    def __init__(self, record_id: str):
        super().__init__(
            f"Ledger record {record_id} is discharged and can no longer be modified",
            record_id
        )


class ConcurrentUpdateError(LedgerError):
    def __init__(self, record_id: str, attempts: int):
        super().__init__(
            f"Ledger record {record_id} changed concurrently; gave up after {attempts} attempts",
            record_id
        )
        self.attempts = attempts


class MissingBedInfoError(LedgerError):
    def __init__(self, record_id: str):
        super().__init__(
            f"Bed or room type information missing for {record_id}; cannot discharge",
            record_id
        )


class AlreadyDischargedError(LedgerError):
    """Discharge was already applied. `record` is the current state."""

    def __init__(self, record):
        super().__init__(
            f"Ledger record {record.id} was already discharged at {record.discharged_at.isoformat()}",
            record.id
        )
        self.record = record


class PartialDischargeError(LedgerError):
    """
    The billing record is discharged but the bed was not confirmed released.

    bed_released tells reconciliation whether the registry call itself
    succeeded (only the confirmation write failed) or not.
    """

    def __init__(self, record_id: str, bed, bed_released: bool = False):
        if bed_released:
            detail = "bed was released but the release could not be recorded"
        else:
            detail = "bed could not be released"
        super().__init__(
            f"Ledger record {record_id} discharged but {detail} "
            f"(room_type={bed.room_type}, bed_id={bed.bed_id})",
            record_id
        )
        self.bed = bed
        self.bed_released = bed_released

"""Bed status derivation.

A bed's ``status`` must stay consistent with its occupant. The rule is a pure
function so every write path (service operations and the ORM guard in
:mod:`common.models`) resolves status the same way.
"""
from __future__ import annotations

from enum import Enum
from typing import NamedTuple, Optional


class BedStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"


class BedState(NamedTuple):
    status: BedStatus
    patient_id: Optional[int]


def resolve_bed_status(
    current_status: Optional[BedStatus],
    current_patient_id: Optional[int],
    proposed_patient_id: Optional[int],
    requested_status: Optional[BedStatus] = None,
) -> BedState:
    """Return the status and occupant a bed must be persisted with.

    Precedence:

    1. an explicit ``maintenance`` request wins and clears the occupant;
    2. an explicit ``available`` request clears the occupant;
    3. a newly set occupant forces ``occupied`` unless the bed is in maintenance;
    4. removing the occupant from an ``occupied`` bed yields ``available``.
    """

    if requested_status == BedStatus.MAINTENANCE:
        return BedState(BedStatus.MAINTENANCE, None)
    if requested_status == BedStatus.AVAILABLE:
        return BedState(BedStatus.AVAILABLE, None)

    status = BedStatus(requested_status or current_status or BedStatus.AVAILABLE)
    if proposed_patient_id != current_patient_id:
        if proposed_patient_id is not None and status != BedStatus.MAINTENANCE:
            status = BedStatus.OCCUPIED
        elif proposed_patient_id is None and status == BedStatus.OCCUPIED:
            status = BedStatus.AVAILABLE
    return BedState(status, proposed_patient_id)

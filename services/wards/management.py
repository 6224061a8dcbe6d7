"""Room and bed management operations.

Every mutation runs inside :func:`common.database.atomic`, so a failure at
any step leaves rooms and beds exactly as they were. ``Room.total_beds`` is
always recomputed from the beds the room actually owns, and every bed status
change goes through :func:`common.bed_rules.resolve_bed_status`.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from common.bed_rules import BedStatus, resolve_bed_status
from common.database import atomic
from common.events import build_bed_event, publish_bed_event
from common.exceptions import ConflictError, NotFoundError, ValidationError
from common.models import Bed, Room
from common.patients import ensure_assignable
from common.schemas import BedUpdate, RoomCreate, RoomUpdate, WardSummary

logger = logging.getLogger(__name__)


def get_room(db: Session, room_id: int) -> Room:
    room = db.get(Room, room_id)
    if room is None:
        raise NotFoundError("Room not found")
    return room


def get_bed(db: Session, bed_id: int) -> Bed:
    bed = db.get(Bed, bed_id)
    if bed is None:
        raise NotFoundError("Bed not found")
    return bed


def list_rooms(db: Session) -> List[Room]:
    return (
        db.query(Room)
        .options(selectinload(Room.beds).selectinload(Bed.patient))
        .order_by(Room.room_number.asc())
        .all()
    )


def _ensure_unique_room_number(db: Session, room_number: str, exclude_room_id: Optional[int] = None) -> None:
    query = db.query(Room.id).filter(Room.room_number == room_number)
    if exclude_room_id is not None:
        query = query.filter(Room.id != exclude_room_id)
    if query.first() is not None:
        raise ValidationError(
            "The room number has already been taken.",
            errors={"room_number": ["The room number has already been taken."]},
        )


def _is_free(bed: Bed) -> bool:
    return bed.status != BedStatus.OCCUPIED and bed.patient_id is None


def _append_beds(room: Room, count: int) -> List[Bed]:
    next_number = max((bed.bed_number for bed in room.beds), default=0) + 1
    added = [Bed(bed_number=number, status=BedStatus.AVAILABLE, patient_id=None) for number in range(next_number, next_number + count)]
    room.beds.extend(added)
    return added


def _resize(room: Room, new_total: int) -> None:
    current = len(room.beds)
    if new_total > current:
        _append_beds(room, new_total - current)
    elif new_total < current:
        excess = current - new_total
        removable = sorted((bed for bed in room.beds if _is_free(bed)), key=lambda bed: bed.bed_number, reverse=True)
        if len(removable) < excess:
            raise ConflictError("Cannot reduce beds: some beds are currently occupied")
        for bed in removable[:excess]:
            room.beds.remove(bed)
    room.total_beds = len(room.beds)


def _apply(bed: Bed, patient_id: Optional[int], requested: Optional[BedStatus] = None) -> None:
    state = resolve_bed_status(bed.status, bed.patient_id, patient_id, requested)
    bed.patient_id = state.patient_id
    bed.status = state.status


def create_room(db: Session, room_in: RoomCreate) -> Room:
    with atomic(db):
        _ensure_unique_room_number(db, room_in.room_number)
        room = Room(
            room_number=room_in.room_number,
            floor=room_in.floor,
            type=room_in.type,
            notes=room_in.notes,
            total_beds=0,
        )
        _append_beds(room, room_in.total_beds)
        room.total_beds = len(room.beds)
        db.add(room)
    logger.info("Created room %s with %d beds", room.room_number, room.total_beds)
    return room


def resize_room(db: Session, room_id: int, new_total_beds: int) -> Room:
    if new_total_beds < 1:
        raise ValidationError("A room needs at least one bed", errors={"total_beds": ["The total beds must be at least 1."]})
    with atomic(db):
        room = get_room(db, room_id)
        _resize(room, new_total_beds)
    logger.info("Resized room %s to %d beds", room.room_number, room.total_beds)
    return room


def update_room(db: Session, room_id: int, changes: RoomUpdate) -> Room:
    """Apply the fields present in ``changes``; a new ``total_beds`` resizes the room."""

    data = changes.model_dump(exclude_unset=True)
    new_total = data.pop("total_beds", None)
    with atomic(db):
        room = get_room(db, room_id)
        room_number = data.get("room_number")
        if room_number and room_number != room.room_number:
            _ensure_unique_room_number(db, room_number, exclude_room_id=room.id)
        for field, value in data.items():
            if value is None and field != "notes":
                continue
            setattr(room, field, value)
        if new_total is not None:
            _resize(room, new_total)
    logger.info("Updated room %s", room.room_number)
    return room


def delete_room(db: Session, room_id: int) -> None:
    with atomic(db):
        room = get_room(db, room_id)
        if not all(_is_free(bed) for bed in room.beds):
            raise ConflictError("Cannot delete room: some beds are currently occupied")
        room_number = room.room_number
        db.delete(room)
    logger.info("Deleted room %s and its beds", room_number)


def add_bed(db: Session, room_id: int) -> Bed:
    with atomic(db):
        room = get_room(db, room_id)
        (bed,) = _append_beds(room, 1)
        room.total_beds = len(room.beds)
    logger.info("Added bed %d to room %s", bed.bed_number, room.room_number)
    return bed


def remove_bed(db: Session, bed_id: int) -> None:
    with atomic(db):
        bed = get_bed(db, bed_id)
        if not _is_free(bed):
            raise ConflictError("Cannot remove occupied bed", status_code=400)
        room = bed.room
        bed_number, room_number = bed.bed_number, room.room_number
        room.beds.remove(bed)
        room.total_beds = len(room.beds)
    logger.info("Removed bed %d from room %s", bed_number, room_number)


def update_bed(db: Session, bed_id: int, changes: BedUpdate) -> Bed:
    """Manual bed override; only the fields present in ``changes`` are applied."""

    data = changes.model_dump(exclude_unset=True)
    with atomic(db):
        bed = get_bed(db, bed_id)
        requested: Optional[BedStatus] = data.get("status")
        patient_id = data["patient_id"] if "patient_id" in data else bed.patient_id
        if requested in (BedStatus.AVAILABLE, BedStatus.MAINTENANCE):
            patient_id = None
        if requested == BedStatus.OCCUPIED and patient_id is None:
            raise ValidationError(
                "Patient ID is required when status is occupied",
                errors={"patient_id": ["The patient id field is required when status is occupied."]},
            )
        if patient_id is not None and patient_id != bed.patient_id:
            ensure_assignable(db, patient_id, target_bed_id=bed.id)
            if requested is None and bed.status == BedStatus.MAINTENANCE:
                raise ConflictError("Bed is under maintenance")
        _apply(bed, patient_id, requested)
    logger.info("Updated bed %d: status=%s patient=%s", bed.id, bed.status.value, bed.patient_id)
    return bed


def assign_patient(db: Session, bed_id: int, patient_id: int) -> Bed:
    with atomic(db):
        bed = get_bed(db, bed_id)
        if bed.patient_id is not None:
            raise ConflictError("Bed is already occupied")
        if bed.status == BedStatus.MAINTENANCE:
            raise ConflictError("Bed is under maintenance")
        ensure_assignable(db, patient_id, target_bed_id=bed.id)
        _apply(bed, patient_id)
    logger.info("Assigned patient %d to bed %d", patient_id, bed.id)
    publish_bed_event(build_bed_event("patient_assigned", bed.id, bed.room_id, patient_id))
    return bed


def set_maintenance(db: Session, bed_id: int) -> Bed:
    with atomic(db):
        bed = get_bed(db, bed_id)
        previous_patient = bed.patient_id
        _apply(bed, None, BedStatus.MAINTENANCE)
    logger.info("Bed %d set to maintenance", bed.id)
    publish_bed_event(build_bed_event("bed_maintenance", bed.id, bed.room_id, None, released_patient_id=previous_patient))
    return bed


def transfer_patient(db: Session, bed_id: int, new_bed_id: int) -> Bed:
    """Move the occupant of ``bed_id`` to ``new_bed_id``; returns the target bed."""

    with atomic(db):
        source = get_bed(db, bed_id)
        target = get_bed(db, new_bed_id)
        if source.id == target.id:
            raise ValidationError("Choose a different bed for the transfer", errors={"new_bed_id": ["The new bed must differ from the current bed."]})
        if source.patient_id is None:
            raise ConflictError("There is no patient in this bed to transfer")
        if not _is_free(target):
            raise ConflictError("Target bed is already occupied")
        if target.status == BedStatus.MAINTENANCE:
            raise ConflictError("Target bed is under maintenance")
        patient_id = source.patient_id
        _apply(source, None)
        # release first so the one-bed-per-patient constraint holds at every statement
        db.flush()
        _apply(target, patient_id)
    logger.info("Transferred patient %d from bed %d to bed %d", patient_id, source.id, target.id)
    publish_bed_event(build_bed_event("patient_transferred", target.id, target.room_id, patient_id, from_bed_id=source.id))
    return target


def discharge_patient(db: Session, bed_id: int) -> Bed:
    """Release the occupant; the bed goes to maintenance before it can be reused."""

    with atomic(db):
        bed = get_bed(db, bed_id)
        patient_id = bed.patient_id
        if patient_id is None:
            raise ConflictError("No patient is assigned to this bed")
        _apply(bed, None, BedStatus.MAINTENANCE)
    logger.info("Discharged patient %d from bed %d", patient_id, bed.id)
    publish_bed_event(build_bed_event("patient_discharged", bed.id, bed.room_id, patient_id))
    return bed


def ward_summary(db: Session) -> WardSummary:
    counts = {status: count for status, count in db.query(Bed.status, func.count(Bed.id)).group_by(Bed.status).all()}
    return WardSummary(
        rooms=db.query(func.count(Room.id)).scalar() or 0,
        total_beds=sum(counts.values()),
        available=counts.get(BedStatus.AVAILABLE, 0),
        occupied=counts.get(BedStatus.OCCUPIED, 0),
        maintenance=counts.get(BedStatus.MAINTENANCE, 0),
    )

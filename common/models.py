"""SQLAlchemy models shared across all services."""
from __future__ import annotations

from datetime import date as DateType, datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .bed_rules import BedStatus, resolve_bed_status
from .database import Base


class RoleEnum(str, Enum):
    ADMIN = "admin"
    NURSE = "nurse"
    PATIENT = "patient"


class RoomType(str, Enum):
    WARD = "ward"
    PRIVATE = "private"
    ICU = "icu"


class Shift(str, Enum):
    MORNING = "morning"
    EVENING = "evening"
    NIGHT = "night"


class ScheduleStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    ABSENT = "absent"
    CANCELLED = "cancelled"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), index=True)
    username: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255), unique=True)
    role: Mapped[RoleEnum] = mapped_column(SqlEnum(RoleEnum), default=RoleEnum.PATIENT, index=True)
    staff_id: Mapped[Optional[str]] = mapped_column(String(50), default=None)
    gender: Mapped[Optional[str]] = mapped_column(String(10), default=None)
    ic_number: Mapped[Optional[str]] = mapped_column(String(20), default=None)
    address: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    blood_type: Mapped[Optional[str]] = mapped_column(String(5), default=None)
    contact_number: Mapped[Optional[str]] = mapped_column(String(15), default=None)
    emergency_contact: Mapped[Optional[str]] = mapped_column(String(100), default=None)
    relation: Mapped[Optional[str]] = mapped_column(String(50), default=None)
    medical_history: Mapped[Optional[str]] = mapped_column(Text, default=None)
    description: Mapped[Optional[str]] = mapped_column(String(500), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    bed: Mapped[Optional["Bed"]] = relationship(back_populates="patient", uselist=False)
    schedules: Mapped[List["NurseSchedule"]] = relationship(back_populates="nurse", cascade="all, delete-orphan")


class Room(Base):
    __tablename__ = "rooms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    room_number: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    floor: Mapped[int] = mapped_column(Integer)
    type: Mapped[RoomType] = mapped_column(SqlEnum(RoomType), default=RoomType.WARD)
    total_beds: Mapped[int] = mapped_column(Integer, default=0)
    notes: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    beds: Mapped[List["Bed"]] = relationship(
        back_populates="room", cascade="all, delete-orphan", order_by="Bed.bed_number"
    )
    schedules: Mapped[List["NurseSchedule"]] = relationship(back_populates="room", cascade="all, delete-orphan")

    @property
    def available_beds(self) -> int:
        return sum(1 for bed in self.beds if bed.status == BedStatus.AVAILABLE)


class Bed(Base):
    __tablename__ = "beds"
    __table_args__ = (UniqueConstraint("room_id", "bed_number", name="uq_beds_room_bed_number"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), index=True)
    bed_number: Mapped[int] = mapped_column(Integer)
    status: Mapped[BedStatus] = mapped_column(SqlEnum(BedStatus), default=BedStatus.AVAILABLE, index=True)
    # one active bed per patient; NULLs do not collide
    patient_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), unique=True, default=None
    )

    room: Mapped[Room] = relationship(back_populates="beds")
    patient: Mapped[Optional[User]] = relationship(back_populates="bed")


class NurseSchedule(Base):
    __tablename__ = "nurse_schedules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    nurse_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), index=True)
    shift: Mapped[Shift] = mapped_column(SqlEnum(Shift))
    date: Mapped[DateType] = mapped_column(Date, index=True)
    status: Mapped[ScheduleStatus] = mapped_column(SqlEnum(ScheduleStatus), default=ScheduleStatus.SCHEDULED)
    notes: Mapped[Optional[str]] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    nurse: Mapped[User] = relationship(back_populates="schedules")
    room: Mapped[Room] = relationship(back_populates="schedules")


@event.listens_for(Bed, "before_insert")
@event.listens_for(Bed, "before_update")
def _guard_bed_status(_mapper, _connection, bed: Bed) -> None:
    """Re-run the status rules whenever the occupant or the status is about to change.

    A changed status counts as an explicit request, so writing `maintenance` or
    `available` on an occupied bed also releases the occupant.
    """

    attrs = inspect(bed).attrs
    occupant, status = attrs.patient_id.history, attrs.status.history
    if not (occupant.has_changes() or status.has_changes()):
        return

    if occupant.has_changes():
        previous_patient = occupant.deleted[0] if occupant.deleted else None
    else:
        previous_patient = bed.patient_id
    if status.has_changes():
        current_status = status.deleted[0] if status.deleted else None
        requested = bed.status
    else:
        current_status, requested = bed.status, None

    state = resolve_bed_status(current_status, previous_patient, bed.patient_id, requested)
    bed.status = state.status
    bed.patient_id = state.patient_id

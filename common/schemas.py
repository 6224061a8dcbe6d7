"""Pydantic schemas shared across the microservices."""
from __future__ import annotations

from datetime import date as DateType, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from .bed_rules import BedStatus
from .models import RoleEnum, RoomType, ScheduleStatus, Shift


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class TokenData(BaseModel):
    """Claims of a bearer token issued by the users service."""

    username: str = Field(..., alias="sub")
    role: RoleEnum


class ActionResult(BaseModel):
    success: bool = True
    message: str


# Users


class UserBase(BaseModel):
    name: str = Field(..., max_length=255)
    username: str = Field(..., max_length=50)
    email: EmailStr
    role: RoleEnum = RoleEnum.PATIENT
    gender: Optional[Literal["male", "female"]] = None


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)
    staff_id: Optional[str] = Field(None, max_length=50)

    @model_validator(mode="after")
    def _nurses_need_staff_id(self) -> "UserCreate":
        if self.role == RoleEnum.NURSE and not self.staff_id:
            raise ValueError("staff_id is required for nurses")
        if self.role == RoleEnum.PATIENT:
            self.staff_id = None
        return self


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    email: Optional[EmailStr] = None
    role: Optional[RoleEnum] = None
    password: Optional[str] = Field(None, min_length=8)


class ProfileUpdate(BaseModel):
    ic_number: str = Field(..., max_length=20)
    address: str = Field(..., max_length=255)
    blood_type: str = Field(..., max_length=5)
    contact_number: str = Field(..., max_length=15)
    emergency_contact: str = Field(..., max_length=100)
    relation: str = Field(..., max_length=50)
    medical_history: Optional[List[str]] = None
    description: Optional[str] = Field(None, max_length=500)


class UserRead(UserBase):
    id: int
    staff_id: Optional[str] = None
    ic_number: Optional[str] = None
    address: Optional[str] = None
    blood_type: Optional[str] = None
    contact_number: Optional[str] = None
    emergency_contact: Optional[str] = None
    relation: Optional[str] = None
    medical_history: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class NurseList(BaseModel):
    nurses: List[UserRead]
    active_nurse_count: int


# Patients


class PatientBrief(BaseModel):
    id: int
    name: str

    model_config = {"from_attributes": True}


class PatientSummary(PatientBrief):
    email: str
    gender: Optional[str] = None
    blood_type: Optional[str] = None
    contact_number: Optional[str] = None


class PatientListItem(PatientBrief):
    ic_number: Optional[str] = None
    contact_number: Optional[str] = None
    gender: Optional[str] = None
    blood_type: Optional[str] = None


class PatientDetail(PatientSummary):
    staff_id: Optional[str] = None
    ic_number: Optional[str] = None
    address: Optional[str] = None
    emergency_contact: Optional[str] = None


class PatientPage(BaseModel):
    items: List[PatientListItem]
    page: int
    per_page: int
    total: int
    pages: int


class PatientPageEnvelope(BaseModel):
    patients: PatientPage


# Rooms and beds


class RoomBase(BaseModel):
    room_number: str = Field(..., min_length=1, max_length=50)
    floor: int = Field(..., ge=1)
    type: RoomType
    notes: Optional[str] = Field(None, max_length=255)


class RoomCreate(RoomBase):
    total_beds: int = Field(..., ge=1)


class RoomUpdate(BaseModel):
    """Only the fields present in the request are applied."""

    room_number: Optional[str] = Field(None, min_length=1, max_length=50)
    floor: Optional[int] = Field(None, ge=1)
    type: Optional[RoomType] = None
    total_beds: Optional[int] = Field(None, ge=1)
    notes: Optional[str] = Field(None, max_length=255)


class BedRead(BaseModel):
    id: int
    room_id: int
    bed_number: int
    status: BedStatus
    patient_id: Optional[int] = None
    patient: Optional[PatientBrief] = None

    model_config = {"from_attributes": True}


class RoomRead(RoomBase):
    id: int
    total_beds: int
    available_beds: int

    model_config = {"from_attributes": True}


class RoomWithBeds(RoomRead):
    beds: List[BedRead]


class RoomCreated(ActionResult):
    room: RoomWithBeds


class RoomBrief(BaseModel):
    id: int
    room_number: str

    model_config = {"from_attributes": True}


class RoomBeds(BaseModel):
    success: bool = True
    room: RoomBrief
    beds: List[BedRead]


class BedUpdate(BaseModel):
    """Patch-style bed change; unset fields keep their stored value."""

    status: Optional[BedStatus] = None
    patient_id: Optional[int] = None


class BedResult(ActionResult):
    bed: BedRead


class BedAction(BaseModel):
    bed_id: int
    action: Literal["assign", "maintenance", "transfer"]
    patient_id: Optional[int] = None
    new_bed_id: Optional[int] = None

    @model_validator(mode="after")
    def _check_action_arguments(self) -> "BedAction":
        if self.action == "assign" and self.patient_id is None:
            raise ValueError("patient_id is required to assign a bed")
        if self.action == "transfer" and self.new_bed_id is None:
            raise ValueError("new_bed_id is required to transfer a patient")
        return self


class WardSummary(BaseModel):
    rooms: int
    total_beds: int
    available: int
    occupied: int
    maintenance: int


# Nurse schedules


class ScheduleCreate(BaseModel):
    nurse_id: int
    room_id: int
    shift: Shift
    date: DateType
    status: ScheduleStatus = ScheduleStatus.SCHEDULED
    notes: Optional[str] = None


class ScheduleUpdate(BaseModel):
    room_id: Optional[int] = None
    shift: Optional[Shift] = None
    date: Optional[DateType] = None
    status: Optional[ScheduleStatus] = None
    notes: Optional[str] = None


class _RestDaysMixin(BaseModel):
    rest_days: List[int] = Field(..., min_length=1, description="Weekday indexes, Sunday=0 .. Saturday=6")

    @field_validator("rest_days")
    @classmethod
    def _valid_rest_days(cls, value: List[int]) -> List[int]:
        days = sorted(set(value))
        if any(day < 0 or day > 6 for day in days):
            raise ValueError("rest days must be between 0 (Sunday) and 6 (Saturday)")
        if len(days) == 7:
            raise ValueError("at least one working day is required")
        return days


class WeeklyAssignment(_RestDaysMixin):
    nurse_id: int
    room_id: int
    shift: Shift
    start_date: DateType


class MonthlyAssignment(_RestDaysMixin):
    nurse_id: int
    room_id: int
    shift: Shift
    month: str = Field(..., pattern=r"^\d{4}-(0[1-9]|1[0-2])$")


class ScheduleNurse(BaseModel):
    id: int
    name: str

    model_config = {"from_attributes": True}


class ScheduleRead(BaseModel):
    id: int
    nurse_id: int
    room_id: int
    shift: Shift
    date: DateType
    status: ScheduleStatus
    notes: Optional[str] = None
    nurse: ScheduleNurse
    room: RoomBrief
    shift_time: str
    status_color: str
    badge_color: str


class ScheduleResult(ActionResult):
    schedule: ScheduleRead


class AssignmentResult(ActionResult):
    created: int
    skipped: List[DateType]

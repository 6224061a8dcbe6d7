"""Patient lookup: free-text search over patient accounts and bed-assignment checks."""
from __future__ import annotations

import math
from typing import List, Optional

from sqlalchemy import exists, or_
from sqlalchemy.orm import Query, Session

from .exceptions import ConflictError, NotFoundError, ValidationError
from .models import Bed, RoleEnum, User
from .schemas import PatientListItem, PatientPage

SEARCH_COLUMNS = (
    User.name,
    User.ic_number,
    User.email,
    User.gender,
    User.address,
    User.blood_type,
    User.contact_number,
    User.emergency_contact,
)


def escape_like(term: str) -> str:
    """Escape LIKE wildcards so a search term matches literally."""

    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _patients(db: Session, term: Optional[str]) -> Query:
    query = db.query(User).filter(User.role == RoleEnum.PATIENT)
    term = (term or "").strip()
    if term:
        pattern = f"%{escape_like(term)}%"
        query = query.filter(or_(*(column.ilike(pattern, escape="\\") for column in SEARCH_COLUMNS)))
    return query


def search_patients(db: Session, term: Optional[str] = None, limit: Optional[int] = None) -> List[User]:
    """Patients whose details contain ``term`` (case-insensitive), by name."""

    query = _patients(db, term).order_by(User.name.asc(), User.id.asc())
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def search_unassigned_patients(db: Session, term: Optional[str] = None, page: int = 1, per_page: int = 10) -> PatientPage:
    """Same search restricted to patients without a bed, one page at a time."""

    occupying = exists().where(Bed.patient_id == User.id)
    query = _patients(db, term).filter(~occupying)
    total = query.count()
    page = max(page, 1)
    rows = (
        query.order_by(User.name.asc(), User.id.asc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return PatientPage(
        items=[PatientListItem.model_validate(row) for row in rows],
        page=page,
        per_page=per_page,
        total=total,
        pages=max(1, math.ceil(total / per_page)),
    )


def get_patient(db: Session, patient_id: int) -> User:
    patient = db.query(User).filter(User.id == patient_id, User.role == RoleEnum.PATIENT).first()
    if patient is None:
        raise NotFoundError("Patient not found")
    return patient


def occupied_bed(db: Session, patient_id: int) -> Optional[Bed]:
    return db.query(Bed).filter(Bed.patient_id == patient_id).first()


def ensure_assignable(db: Session, patient_id: int, *, target_bed_id: Optional[int] = None) -> User:
    """Validate that ``patient_id`` names a patient who holds no other bed."""

    user = db.get(User, patient_id)
    if user is None:
        raise ValidationError("Selected patient does not exist", errors={"patient_id": ["The selected patient is invalid."]})
    if user.role != RoleEnum.PATIENT:
        raise ValidationError("Selected user is not a patient", errors={"patient_id": ["The selected user is not a patient."]})

    current = occupied_bed(db, patient_id)
    if current is not None and current.id != target_bed_id:
        raise ConflictError(f"Patient is already assigned to bed {current.bed_number} in room {current.room.room_number}")
    return user

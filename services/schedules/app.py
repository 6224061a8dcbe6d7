import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Iterable, List, Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import case
from sqlalchemy.orm import Session, joinedload

from common import scheduling
from common.config import get_settings
from common.database import Base, atomic, engine, get_db
from common.dependencies import require_staff
from common.exceptions import ConflictError, NotFoundError, ValidationError, register_exception_handlers
from common.logging_middleware import add_audit_middleware, configure_logging
from common.models import NurseSchedule, RoleEnum, Room, ScheduleStatus, Shift, User
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import (
    ActionResult,
    AssignmentResult,
    MonthlyAssignment,
    RoomBrief,
    ScheduleCreate,
    ScheduleNurse,
    ScheduleRead,
    ScheduleResult,
    ScheduleUpdate,
    WeeklyAssignment,
)

logger = logging.getLogger(__name__)
settings = get_settings()
# Shift is stored by name, so order by the day sequence instead of the column
SHIFT_ORDER = case(*((NurseSchedule.shift == shift, position) for position, shift in enumerate(Shift)))


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    configure_logging()
    fastapi_app = FastAPI(title="Schedules Service", version="0.3.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    register_exception_handlers(fastapi_app)
    add_audit_middleware(fastapi_app, "schedules")
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "schedules"}


def _to_read(schedule: NurseSchedule) -> ScheduleRead:
    return ScheduleRead(
        id=schedule.id,
        nurse_id=schedule.nurse_id,
        room_id=schedule.room_id,
        shift=schedule.shift,
        date=schedule.date,
        status=schedule.status,
        notes=schedule.notes,
        nurse=ScheduleNurse.model_validate(schedule.nurse),
        room=RoomBrief.model_validate(schedule.room),
        shift_time=scheduling.shift_time(schedule.shift),
        status_color=scheduling.status_color(schedule.status),
        badge_color=scheduling.nurse_badge_color(schedule.nurse_id),
    )


def _get_nurse(db: Session, nurse_id: int) -> User:
    nurse = db.get(User, nurse_id)
    if nurse is None or nurse.role != RoleEnum.NURSE:
        raise ValidationError("Selected user is not a nurse", errors={"nurse_id": ["The selected nurse is invalid."]})
    return nurse


def _get_room(db: Session, room_id: int) -> Room:
    room = db.get(Room, room_id)
    if room is None:
        raise ValidationError("Selected room does not exist", errors={"room_id": ["The selected room is invalid."]})
    return room


def _get_schedule(db: Session, schedule_id: int) -> NurseSchedule:
    schedule = db.get(NurseSchedule, schedule_id)
    if schedule is None:
        raise NotFoundError("Schedule not found")
    return schedule


def _booked_dates(db: Session, nurse_id: int, shift: Shift, days: Iterable[date], exclude_id: Optional[int] = None) -> set:
    days = list(days)
    if not days:
        return set()
    query = db.query(NurseSchedule.date).filter(
        NurseSchedule.nurse_id == nurse_id,
        NurseSchedule.shift == shift,
        NurseSchedule.date.in_(days),
        NurseSchedule.status != ScheduleStatus.CANCELLED,
    )
    if exclude_id is not None:
        query = query.filter(NurseSchedule.id != exclude_id)
    return {row.date for row in query.all()}


def _bulk_assign(db: Session, nurse_id: int, room_id: int, shift: Shift, days: List[date]) -> AssignmentResult:
    with atomic(db):
        _get_nurse(db, nurse_id)
        _get_room(db, room_id)
        booked = _booked_dates(db, nurse_id, shift, days)
        created = [day for day in days if day not in booked]
        db.add_all(
            NurseSchedule(nurse_id=nurse_id, room_id=room_id, shift=shift, date=day, status=ScheduleStatus.SCHEDULED)
            for day in created
        )
    logger.info("Assigned nurse %d to %d %s shifts, skipped %d", nurse_id, len(created), shift.value, len(booked))
    return AssignmentResult(
        message=f"{len(created)} shifts scheduled",
        created=len(created),
        skipped=sorted(booked),
    )


@app.get("/schedules", response_model=List[ScheduleRead])
@limiter.limit("60/minute")
def list_schedules(
    request: Request,
    month: Optional[str] = Query(None, pattern=r"^\d{4}-(0[1-9]|1[0-2])$"),
    nurse_id: Optional[int] = None,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
) -> List[ScheduleRead]:
    query = db.query(NurseSchedule).options(joinedload(NurseSchedule.nurse), joinedload(NurseSchedule.room))
    if month:
        days = scheduling.month_days(month)
        query = query.filter(NurseSchedule.date >= days[0], NurseSchedule.date <= days[-1])
    if nurse_id is not None:
        query = query.filter(NurseSchedule.nurse_id == nurse_id)
    schedules = query.order_by(NurseSchedule.date.asc(), SHIFT_ORDER, NurseSchedule.id.asc()).all()
    return [_to_read(schedule) for schedule in schedules]


@app.post("/schedules", response_model=ScheduleResult, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_schedule(
    request: Request,
    schedule_in: ScheduleCreate,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
) -> ScheduleResult:
    with atomic(db):
        _get_nurse(db, schedule_in.nurse_id)
        _get_room(db, schedule_in.room_id)
        if _booked_dates(db, schedule_in.nurse_id, schedule_in.shift, [schedule_in.date]):
            raise ConflictError("Nurse is already scheduled for this shift on that date")
        schedule = NurseSchedule(**schedule_in.model_dump())
        db.add(schedule)
    return ScheduleResult(message="Schedule has been saved successfully", schedule=_to_read(schedule))


@app.post("/schedules/assign-week", response_model=AssignmentResult, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def assign_week(
    request: Request,
    assignment: WeeklyAssignment,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
) -> AssignmentResult:
    if assignment.start_date < date.today():
        raise ValidationError("The week cannot start in the past", errors={"start_date": ["The start date must be today or later."]})
    days = scheduling.working_days(scheduling.week_days(assignment.start_date), assignment.rest_days)
    return _bulk_assign(db, assignment.nurse_id, assignment.room_id, assignment.shift, days)


@app.post("/schedules/assign-month", response_model=AssignmentResult, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def assign_month(
    request: Request,
    assignment: MonthlyAssignment,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
) -> AssignmentResult:
    if assignment.month < date.today().strftime("%Y-%m"):
        raise ValidationError("The month cannot be in the past", errors={"month": ["The month must be the current month or later."]})
    days = scheduling.working_days(scheduling.month_days(assignment.month), assignment.rest_days)
    return _bulk_assign(db, assignment.nurse_id, assignment.room_id, assignment.shift, days)


@app.get("/schedules/{schedule_id}", response_model=ScheduleRead)
@limiter.limit("60/minute")
def get_schedule(
    request: Request,
    schedule_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
) -> ScheduleRead:
    return _to_read(_get_schedule(db, schedule_id))


@app.patch("/schedules/{schedule_id}", response_model=ScheduleResult)
@limiter.limit("30/minute")
def update_schedule(
    request: Request,
    schedule_id: int,
    schedule_update: ScheduleUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
) -> ScheduleResult:
    data = {key: value for key, value in schedule_update.model_dump(exclude_unset=True).items() if value is not None or key == "notes"}
    with atomic(db):
        schedule = _get_schedule(db, schedule_id)
        if "room_id" in data:
            _get_room(db, data["room_id"])
        shift = data.get("shift", schedule.shift)
        day = data.get("date", schedule.date)
        active = data.get("status", schedule.status) != ScheduleStatus.CANCELLED
        if active and _booked_dates(db, schedule.nurse_id, shift, [day], exclude_id=schedule.id):
            raise ConflictError("Nurse is already scheduled for this shift on that date")
        for field, value in data.items():
            setattr(schedule, field, value)
    return ScheduleResult(message="Schedule updated successfully", schedule=_to_read(schedule))


@app.delete("/schedules/{schedule_id}", response_model=ActionResult)
@limiter.limit("30/minute")
def delete_schedule(
    request: Request,
    schedule_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
) -> ActionResult:
    with atomic(db):
        db.delete(_get_schedule(db, schedule_id))
    return ActionResult(message="Schedule has been deleted.")

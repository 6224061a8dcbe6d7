from contextlib import asynccontextmanager
from typing import List, Optional

from circuitbreaker import circuit
from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.orm import Session

from common.cache import SimpleTTLCache
from common.config import get_settings
from common.database import Base, engine, get_db
from common.dependencies import require_staff
from common.exceptions import register_exception_handlers
from common.logging_middleware import add_audit_middleware, configure_logging
from common.models import Room, User
from common.patients import get_patient, search_patients, search_unassigned_patients
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import (
    ActionResult,
    BedAction,
    BedRead,
    BedResult,
    BedUpdate,
    PatientDetail,
    PatientListItem,
    PatientPageEnvelope,
    PatientSummary,
    RoomBeds,
    RoomBrief,
    RoomCreate,
    RoomCreated,
    RoomRead,
    RoomUpdate,
    RoomWithBeds,
    WardSummary,
)
from services.wards import management

settings = get_settings()
ward_summary_cache: SimpleTTLCache[WardSummary] = SimpleTTLCache(ttl=settings.ward_summary_cache_ttl)
_SUMMARY_KEY = "ward-summary"


def _invalidate_ward_cache() -> None:
    ward_summary_cache.pop(_SUMMARY_KEY)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    configure_logging()
    fastapi_app = FastAPI(title="Wards Service", version="0.3.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    register_exception_handlers(fastapi_app)
    add_audit_middleware(fastapi_app, "wards")
    Instrumentator().instrument(fastapi_app).expose(fastapi_app)
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "wards"}


# Rooms


@app.get("/rooms", response_model=List[RoomWithBeds])
@circuit(failure_threshold=5, recovery_timeout=60)
def list_rooms(
    request: Request,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
) -> List[Room]:
    return management.list_rooms(db)


@app.post("/rooms", response_model=RoomCreated, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_room(
    request: Request,
    room_in: RoomCreate,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
) -> RoomCreated:
    room = management.create_room(db, room_in)
    _invalidate_ward_cache()
    return RoomCreated(message="Room created successfully", room=RoomWithBeds.model_validate(room))


@app.get("/rooms/{room_id}", response_model=RoomRead)
@limiter.limit("60/minute")
def get_room(
    request: Request,
    room_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
) -> Room:
    return management.get_room(db, room_id)


@app.api_route("/rooms/{room_id}", methods=["PUT", "POST"], response_model=ActionResult)
@limiter.limit("20/minute")
def update_room(
    request: Request,
    room_id: int,
    room_update: RoomUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
) -> ActionResult:
    management.update_room(db, room_id, room_update)
    _invalidate_ward_cache()
    return ActionResult(message="Room updated successfully")


@app.delete("/rooms/{room_id}", response_model=ActionResult)
@limiter.limit("20/minute")
def delete_room(
    request: Request,
    room_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
) -> ActionResult:
    management.delete_room(db, room_id)
    _invalidate_ward_cache()
    return ActionResult(message="Room and associated beds deleted successfully")


@app.get("/rooms/{room_id}/beds", response_model=RoomBeds)
@limiter.limit("60/minute")
def room_beds(
    request: Request,
    room_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
) -> RoomBeds:
    room = management.get_room(db, room_id)
    return RoomBeds(room=RoomBrief.model_validate(room), beds=[BedRead.model_validate(bed) for bed in room.beds])


@app.post("/rooms/{room_id}/beds", response_model=BedResult)
@limiter.limit("30/minute")
def add_bed(
    request: Request,
    room_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
) -> BedResult:
    bed = management.add_bed(db, room_id)
    _invalidate_ward_cache()
    return BedResult(message="Bed added successfully", bed=BedRead.model_validate(bed))


# Beds


@app.post("/beds/manage", response_model=ActionResult)
@limiter.limit("60/minute")
def manage_bed(
    request: Request,
    action: BedAction,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
) -> ActionResult:
    if action.action == "assign":
        management.assign_patient(db, action.bed_id, action.patient_id)
        message = "Patient assigned successfully"
    elif action.action == "maintenance":
        management.set_maintenance(db, action.bed_id)
        message = "Bed set to maintenance"
    else:
        management.transfer_patient(db, action.bed_id, action.new_bed_id)
        message = "Patient transferred successfully"
    _invalidate_ward_cache()
    return ActionResult(message=message)


@app.patch("/beds/{bed_id}", response_model=BedResult)
@limiter.limit("60/minute")
def update_bed(
    request: Request,
    bed_id: int,
    bed_update: BedUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
) -> BedResult:
    bed = management.update_bed(db, bed_id, bed_update)
    _invalidate_ward_cache()
    return BedResult(message="Bed updated successfully", bed=BedRead.model_validate(bed))


@app.delete("/beds/{bed_id}", response_model=ActionResult)
@limiter.limit("30/minute")
def remove_bed(
    request: Request,
    bed_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
) -> ActionResult:
    management.remove_bed(db, bed_id)
    _invalidate_ward_cache()
    return ActionResult(message="Bed removed successfully")


@app.post("/beds/{bed_id}/discharge", response_model=ActionResult)
@limiter.limit("60/minute")
def discharge_bed(
    request: Request,
    bed_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
) -> ActionResult:
    management.discharge_patient(db, bed_id)
    _invalidate_ward_cache()
    return ActionResult(message="Patient discharged and bed set to maintenance")


@app.get("/wards/summary", response_model=WardSummary)
@limiter.limit("60/minute")
def ward_summary(
    request: Request,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
) -> WardSummary:
    return ward_summary_cache.get_or_set(_SUMMARY_KEY, lambda: management.ward_summary(db))


# Patient lookup


@app.get("/patients", response_model=List[PatientListItem])
@limiter.limit("60/minute")
def list_patients(
    request: Request,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
) -> List[User]:
    return search_patients(db, search)


@app.get("/patients/search", response_model=List[PatientSummary])
@limiter.limit("120/minute")
def quick_search_patients(
    request: Request,
    term: Optional[str] = None,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
) -> List[User]:
    return search_patients(db, term, limit=settings.patient_search_limit)


@app.get("/patients/unassigned", response_model=PatientPageEnvelope)
@limiter.limit("120/minute")
def unassigned_patients(
    request: Request,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
) -> PatientPageEnvelope:
    result = search_unassigned_patients(db, search, page=page, per_page=settings.patient_page_size)
    return PatientPageEnvelope(patients=result)


@app.get("/patients/{patient_id}", response_model=PatientDetail)
@limiter.limit("60/minute")
def patient_details(
    request: Request,
    patient_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
) -> User:
    return get_patient(db, patient_id)

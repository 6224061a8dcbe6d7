"""Service-level tests for room and bed management."""
import pytest
from sqlalchemy.exc import OperationalError

from common.bed_rules import BedStatus
from common.exceptions import ConflictError, InternalError, NotFoundError, ValidationError
from common.models import Bed, RoleEnum, Room, RoomType
from common.schemas import BedUpdate, RoomCreate, RoomUpdate
from services.wards import management


def _room(db_session, number: str = "101A", beds: int = 3) -> Room:
    return management.create_room(
        db_session, RoomCreate(room_number=number, floor=1, type=RoomType.WARD, total_beds=beds)
    )


def _bed(room: Room, number: int) -> Bed:
    return next(bed for bed in room.beds if bed.bed_number == number)


def assert_room_consistent(db_session, room_id: int) -> None:
    room = db_session.get(Room, room_id)
    db_session.refresh(room)
    beds = db_session.query(Bed).filter(Bed.room_id == room_id).all()
    assert room.total_beds == len(beds)
    for bed in beds:
        assert (bed.status == BedStatus.OCCUPIED) == (bed.patient_id is not None)


class TestRooms:
    def test_create_room_creates_numbered_available_beds(self, db_session):
        room = _room(db_session)

        assert room.total_beds == 3
        assert [bed.bed_number for bed in room.beds] == [1, 2, 3]
        assert all(bed.status == BedStatus.AVAILABLE and bed.patient_id is None for bed in room.beds)
        assert room.available_beds == 3
        assert_room_consistent(db_session, room.id)

    def test_create_room_rejects_duplicate_number(self, db_session):
        _room(db_session)

        with pytest.raises(ValidationError) as exc_info:
            _room(db_session)

        assert "room_number" in exc_info.value.errors
        assert db_session.query(Room).count() == 1

    def test_resize_up_appends_beds(self, db_session):
        room = _room(db_session, beds=2)

        room = management.resize_room(db_session, room.id, 4)

        assert [bed.bed_number for bed in room.beds] == [1, 2, 3, 4]
        assert room.total_beds == 4
        assert_room_consistent(db_session, room.id)

    def test_resize_down_skips_occupied_beds(self, db_session, make_user):
        patient = make_user("p1")
        room = _room(db_session)
        management.assign_patient(db_session, _bed(room, 1).id, patient.id)

        room = management.resize_room(db_session, room.id, 2)

        assert [bed.bed_number for bed in room.beds] == [1, 2]
        assert room.total_beds == 2
        assert _bed(room, 1).patient_id == patient.id
        assert_room_consistent(db_session, room.id)

    def test_resize_down_removes_highest_free_beds(self, db_session, make_user):
        patient = make_user("p1")
        room = _room(db_session, beds=4)
        management.assign_patient(db_session, _bed(room, 4).id, patient.id)

        room = management.resize_room(db_session, room.id, 2)

        assert [bed.bed_number for bed in room.beds] == [1, 4]

    def test_resize_down_fails_atomically_when_too_many_occupied(self, db_session, make_user):
        first, second = make_user("p1"), make_user("p2")
        room = _room(db_session)
        management.assign_patient(db_session, _bed(room, 1).id, first.id)
        management.assign_patient(db_session, _bed(room, 2).id, second.id)

        with pytest.raises(ConflictError, match="Cannot reduce beds"):
            management.resize_room(db_session, room.id, 1)

        room = db_session.get(Room, room.id)
        assert [bed.bed_number for bed in room.beds] == [1, 2, 3]
        assert room.total_beds == 3
        assert_room_consistent(db_session, room.id)

    def test_resize_unknown_room(self, db_session):
        with pytest.raises(NotFoundError):
            management.resize_room(db_session, 999, 2)

    def test_update_room_applies_only_present_fields(self, db_session):
        room = _room(db_session)

        room = management.update_room(db_session, room.id, RoomUpdate(floor=3, total_beds=5))

        assert room.floor == 3
        assert room.room_number == "101A"
        assert room.type == RoomType.WARD
        assert room.total_beds == 5

    def test_update_room_rejects_taken_number(self, db_session):
        _room(db_session, "101A")
        other = _room(db_session, "102A")

        with pytest.raises(ValidationError):
            management.update_room(db_session, other.id, RoomUpdate(room_number="101A"))

    def test_delete_room_with_occupied_bed_fails(self, db_session, make_user):
        patient = make_user("p1")
        room = _room(db_session)
        management.assign_patient(db_session, _bed(room, 2).id, patient.id)

        with pytest.raises(ConflictError):
            management.delete_room(db_session, room.id)

        assert db_session.query(Bed).filter(Bed.room_id == room.id).count() == 3

    def test_delete_room_cascades_beds(self, db_session, make_user):
        patient = make_user("p1")
        room = _room(db_session)
        bed_id = _bed(room, 2).id
        management.assign_patient(db_session, bed_id, patient.id)
        management.discharge_patient(db_session, bed_id)

        management.delete_room(db_session, room.id)

        assert db_session.query(Room).count() == 0
        assert db_session.query(Bed).count() == 0


class TestBeds:
    def test_add_bed_uses_next_number(self, db_session):
        room = _room(db_session, beds=2)

        bed = management.add_bed(db_session, room.id)

        assert bed.bed_number == 3
        assert bed.status == BedStatus.AVAILABLE
        assert db_session.get(Room, room.id).total_beds == 3

    def test_grow_after_gap_keeps_numbers_unique(self, db_session):
        room = _room(db_session, beds=3)
        management.remove_bed(db_session, _bed(room, 2).id)

        room = management.resize_room(db_session, room.id, 3)

        assert [bed.bed_number for bed in room.beds] == [1, 3, 4]

    def test_remove_bed(self, db_session):
        room = _room(db_session)

        management.remove_bed(db_session, _bed(room, 3).id)

        room = db_session.get(Room, room.id)
        assert room.total_beds == 2
        assert_room_consistent(db_session, room.id)

    def test_remove_occupied_bed_fails(self, db_session, make_user):
        patient = make_user("p1")
        room = _room(db_session)
        bed_id = _bed(room, 1).id
        management.assign_patient(db_session, bed_id, patient.id)

        with pytest.raises(ConflictError) as exc_info:
            management.remove_bed(db_session, bed_id)

        assert exc_info.value.status_code == 400
        assert db_session.get(Room, room.id).total_beds == 3

    def test_assign_patient_marks_bed_occupied(self, db_session, make_user):
        patient = make_user("p1")
        room = _room(db_session)

        bed = management.assign_patient(db_session, _bed(room, 1).id, patient.id)

        assert bed.status == BedStatus.OCCUPIED
        assert bed.patient_id == patient.id

    def test_patient_cannot_hold_two_beds(self, db_session, make_user):
        patient = make_user("p1")
        room = _room(db_session)
        management.assign_patient(db_session, _bed(room, 1).id, patient.id)

        with pytest.raises(ConflictError, match="already assigned"):
            management.assign_patient(db_session, _bed(room, 2).id, patient.id)

        assert db_session.get(Bed, _bed(room, 2).id).status == BedStatus.AVAILABLE

    def test_assign_rejects_non_patient(self, db_session, make_user):
        nurse = make_user("n1", RoleEnum.NURSE, staff_id="N-1")
        room = _room(db_session)

        with pytest.raises(ValidationError):
            management.assign_patient(db_session, _bed(room, 1).id, nurse.id)

    def test_assign_rejects_bed_in_maintenance(self, db_session, make_user):
        patient = make_user("p1")
        room = _room(db_session)
        management.set_maintenance(db_session, _bed(room, 1).id)

        with pytest.raises(ConflictError, match="maintenance"):
            management.assign_patient(db_session, _bed(room, 1).id, patient.id)

    def test_set_maintenance_clears_occupant(self, db_session, make_user):
        patient = make_user("p1")
        room = _room(db_session)
        bed_id = _bed(room, 1).id
        management.assign_patient(db_session, bed_id, patient.id)

        bed = management.set_maintenance(db_session, bed_id)

        assert bed.status == BedStatus.MAINTENANCE
        assert bed.patient_id is None

    def test_discharge_routes_bed_through_maintenance(self, db_session, make_user):
        patient = make_user("p2")
        room = _room(db_session)
        bed_id = _bed(room, 2).id
        management.assign_patient(db_session, bed_id, patient.id)

        bed = management.discharge_patient(db_session, bed_id)

        assert bed.status == BedStatus.MAINTENANCE
        assert bed.patient_id is None

    def test_discharge_empty_bed_fails(self, db_session):
        room = _room(db_session)

        with pytest.raises(ConflictError):
            management.discharge_patient(db_session, _bed(room, 1).id)

    def test_transfer_moves_occupant(self, db_session, make_user):
        patient = make_user("p1")
        room = _room(db_session, beds=4)
        source_id, target_id = _bed(room, 1).id, _bed(room, 4).id
        management.assign_patient(db_session, source_id, patient.id)

        target = management.transfer_patient(db_session, source_id, target_id)

        source = db_session.get(Bed, source_id)
        assert target.patient_id == patient.id
        assert target.status == BedStatus.OCCUPIED
        assert source.patient_id is None
        assert source.status == BedStatus.AVAILABLE

    def test_transfer_to_occupied_bed_changes_nothing(self, db_session, make_user):
        first, second = make_user("p1"), make_user("p2")
        room = _room(db_session)
        source_id, target_id = _bed(room, 1).id, _bed(room, 2).id
        management.assign_patient(db_session, source_id, first.id)
        management.assign_patient(db_session, target_id, second.id)

        with pytest.raises(ConflictError):
            management.transfer_patient(db_session, source_id, target_id)

        assert db_session.get(Bed, source_id).patient_id == first.id
        assert db_session.get(Bed, target_id).patient_id == second.id

    def test_transfer_across_rooms(self, db_session, make_user):
        patient = make_user("p1")
        ward = _room(db_session, "101A")
        icu = management.create_room(
            db_session, RoomCreate(room_number="ICU-1", floor=2, type=RoomType.ICU, total_beds=1)
        )
        source_id = _bed(ward, 1).id
        management.assign_patient(db_session, source_id, patient.id)

        target = management.transfer_patient(db_session, source_id, icu.beds[0].id)

        assert target.room_id == icu.id
        assert target.patient_id == patient.id
        assert db_session.get(Bed, source_id).status == BedStatus.AVAILABLE

    def test_update_bed_requires_patient_for_occupied(self, db_session):
        room = _room(db_session)

        with pytest.raises(ValidationError):
            management.update_bed(db_session, _bed(room, 1).id, BedUpdate(status=BedStatus.OCCUPIED))

    def test_update_bed_available_clears_patient(self, db_session, make_user):
        patient = make_user("p1")
        room = _room(db_session)
        bed_id = _bed(room, 1).id
        management.assign_patient(db_session, bed_id, patient.id)

        bed = management.update_bed(db_session, bed_id, BedUpdate(status=BedStatus.AVAILABLE, patient_id=patient.id))

        assert bed.status == BedStatus.AVAILABLE
        assert bed.patient_id is None

    def test_update_bed_with_patient_only(self, db_session, make_user):
        patient = make_user("p1")
        room = _room(db_session)

        bed = management.update_bed(db_session, _bed(room, 1).id, BedUpdate(patient_id=patient.id))

        assert bed.status == BedStatus.OCCUPIED
        assert bed.patient_id == patient.id

    def test_update_bed_returns_maintenance_bed_to_service(self, db_session):
        room = _room(db_session)
        bed_id = _bed(room, 1).id
        management.set_maintenance(db_session, bed_id)

        bed = management.update_bed(db_session, bed_id, BedUpdate(status=BedStatus.AVAILABLE))

        assert bed.status == BedStatus.AVAILABLE

    def test_orm_guard_derives_status_from_occupant(self, db_session, make_user):
        patient = make_user("p1")
        room = _room(db_session)
        bed = db_session.get(Bed, _bed(room, 1).id)
        assert bed.status == BedStatus.AVAILABLE

        bed.patient_id = patient.id
        db_session.commit()
        assert db_session.get(Bed, bed.id).status == BedStatus.OCCUPIED

        bed.patient_id = None
        db_session.commit()
        assert db_session.get(Bed, bed.id).status == BedStatus.AVAILABLE

    def test_orm_guard_explicit_status_releases_occupant(self, db_session, make_user):
        patient = make_user("p1")
        room = _room(db_session)
        first_id, second_id = _bed(room, 1).id, _bed(room, 2).id
        management.assign_patient(db_session, first_id, patient.id)

        bed = db_session.get(Bed, first_id)
        assert bed.patient_id == patient.id
        bed.status = BedStatus.MAINTENANCE
        db_session.commit()

        bed = db_session.get(Bed, first_id)
        assert (bed.status, bed.patient_id) == (BedStatus.MAINTENANCE, None)

        # the released patient can take another bed
        management.assign_patient(db_session, second_id, patient.id)
        bed = db_session.get(Bed, second_id)
        assert bed.status == BedStatus.OCCUPIED
        bed.status = BedStatus.AVAILABLE
        db_session.commit()

        bed = db_session.get(Bed, second_id)
        assert (bed.status, bed.patient_id) == (BedStatus.AVAILABLE, None)
        summary = management.ward_summary(db_session)
        assert (summary.available, summary.occupied, summary.maintenance) == (2, 0, 1)


class TestStoreFailures:
    def test_transfer_failing_after_release_restores_source(self, db_session, make_user, monkeypatch):
        patient = make_user("p1")
        room = _room(db_session)
        source_id, target_id = _bed(room, 1).id, _bed(room, 3).id
        management.assign_patient(db_session, source_id, patient.id)
        apply = management._apply

        def failing_apply(bed, patient_id, requested=None):
            if patient_id is not None:
                raise OperationalError("UPDATE beds", {}, Exception("database is locked"))
            apply(bed, patient_id, requested)

        monkeypatch.setattr(management, "_apply", failing_apply)

        with pytest.raises(InternalError):
            management.transfer_patient(db_session, source_id, target_id)

        source, target = db_session.get(Bed, source_id), db_session.get(Bed, target_id)
        assert (source.status, source.patient_id) == (BedStatus.OCCUPIED, patient.id)
        assert (target.status, target.patient_id) == (BedStatus.AVAILABLE, None)
        assert_room_consistent(db_session, room.id)

    def test_resize_failing_in_store_changes_nothing(self, db_session, monkeypatch):
        room = _room(db_session)

        def failing_resize(room, new_total):
            room.beds.pop()
            raise OperationalError("DELETE FROM beds", {}, Exception("disk I/O error"))

        monkeypatch.setattr(management, "_resize", failing_resize)

        with pytest.raises(InternalError):
            management.resize_room(db_session, room.id, 2)

        assert db_session.query(Bed).filter(Bed.room_id == room.id).count() == 3
        assert_room_consistent(db_session, room.id)


def test_ward_summary_counts_statuses(db_session, make_user):
    patient = make_user("p1")
    room = _room(db_session)
    _room(db_session, "102A", beds=2)
    management.assign_patient(db_session, _bed(room, 1).id, patient.id)
    management.set_maintenance(db_session, _bed(room, 2).id)

    summary = management.ward_summary(db_session)

    assert summary.rooms == 2
    assert summary.total_beds == 5
    assert summary.occupied == 1
    assert summary.maintenance == 1
    assert summary.available == 3

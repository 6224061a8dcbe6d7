#!/usr/bin/env python3
"""Add the lookup indexes used by bed occupancy and schedule queries."""
from sqlalchemy import create_engine, text

from common.config import get_settings

INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_beds_room_id ON beds (room_id);",
    "CREATE INDEX IF NOT EXISTS idx_beds_patient_id ON beds (patient_id);",
    "CREATE INDEX IF NOT EXISTS idx_beds_status ON beds (status);",
    "CREATE INDEX IF NOT EXISTS idx_nurse_schedules_date ON nurse_schedules (date);",
    "CREATE INDEX IF NOT EXISTS idx_nurse_schedules_nurse_shift ON nurse_schedules (nurse_id, shift, date);",
    "CREATE INDEX IF NOT EXISTS idx_users_role ON users (role);",
)


def add_indexes():
    engine = create_engine(get_settings().database_url)
    with engine.begin() as conn:
        for statement in INDEXES:
            conn.execute(text(statement))
    print(f"{len(INDEXES)} indexes ensured.")


if __name__ == "__main__":
    add_indexes()

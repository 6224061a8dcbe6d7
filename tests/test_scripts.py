import importlib.util
from pathlib import Path

from sqlalchemy import inspect

from common.database import engine

SCRIPTS = Path(__file__).resolve().parent.parent / "scripts"


def load_script(name: str):
    spec = importlib.util.spec_from_file_location(name, SCRIPTS / f"{name}.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_add_indexes_is_idempotent(capsys):
    add_indexes = load_script("add_indexes")

    add_indexes.add_indexes()
    add_indexes.add_indexes()

    names = {index["name"] for index in inspect(engine).get_indexes("nurse_schedules")}
    assert {"idx_nurse_schedules_date", "idx_nurse_schedules_nurse_shift"} <= names
    assert "indexes ensured" in capsys.readouterr().out


def test_check_indexes_lists_tables(capsys):
    load_script("add_indexes").add_indexes()

    load_script("check_indexes").check_indexes()

    out = capsys.readouterr().out
    assert "Table: beds" in out
    assert "idx_beds_patient_id: patient_id" in out

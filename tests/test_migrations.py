from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import inspect
from sqlmodel import SQLModel

from ambulink.infra import db, migrate

ALEMBIC_INI = Path(__file__).resolve().parents[1] / "alembic.ini"


def test_upgrade_head_matches_models(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    url = f"sqlite:///{tmp_path / 'migrated.db'}"
    engine = db.build_engine(url)
    monkeypatch.setattr(db, "DATABASE_URL", url)
    monkeypatch.setattr(db, "engine", engine)
    monkeypatch.setattr(migrate, "ALEMBIC_CONFIG", str(ALEMBIC_INI))

    assert migrate.current_revision() is None
    migrate.run_upgrade()

    assert migrate.current_revision() == "202610190001"
    tables = set(inspect(engine).get_table_names())
    assert set(SQLModel.metadata.tables) <= tables
    trip_columns = {column["name"] for column in inspect(engine).get_columns("trips")}
    assert {"active_vehicle_id", "active_patient_id", "offboard_snapshot"} <= trip_columns
    engine.dispose()

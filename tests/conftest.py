import os
import tempfile
from pathlib import Path

import pytest

os.environ.setdefault("APP_DB_PATH", str(Path(tempfile.mkdtemp()) / "import.db"))
os.environ.setdefault("APP_SEED_DIR", str(Path(tempfile.mkdtemp()) / "seed"))

import db


@pytest.fixture(autouse=True)
def fresh_db(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "app.db")
    db.init_db()
    return db.DB_PATH


@pytest.fixture
def planning_data():
    class PlanningData:
        def consignment(self, consignment_id, **fields):
            record = {
                "id": consignment_id,
                "customer_name_raw": fields.pop("customer_name_raw", "Acme Limited"),
                "destination_raw": fields.pop("destination_raw", "North-West Depot"),
            }
            record.setdefault("customer_key", "ACME LTD")
            record.setdefault("destination_key", "NORTH WEST DEPOT")
            record.update(fields)
            db.upsert_consignments([record])
            return db.get_consignment(consignment_id)

        def lorry(self, name="Lorry 1", capacity_pallets=26, **fields):
            lorry_id = db.create_lorry(
                {"name": name, "capacity_pallets": capacity_pallets, **fields}
            )
            return db.get_lorry(lorry_id)

    return PlanningData()

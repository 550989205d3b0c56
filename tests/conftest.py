"""
Shared fixtures: an in-memory SQLite database per test, a small
two-item product and helpers to put stock on hand.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session

from production_engine.database import build_engine, create_db_and_tables, get_session
from production_engine.main import app
from production_engine.models import BlankSpec, BOMItem, ItemType, Material, Product
from production_engine.services import inventory
from production_engine.services.work_orders import create_child_work_order, create_master_work_order


@pytest.fixture
def engine():
    eng = build_engine("sqlite://", poolclass=StaticPool)
    create_db_and_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def client(session):
    def _session_override():
        yield session

    app.dependency_overrides[get_session] = _session_override
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def plant(session):
    """
    Product P: 2 x BLANK-A (10 pcs per sheet, 5% scrap allowance, critical)
    and 1 x bought-out hinge.
    """
    session.add_all([
        Product(product_id="P", product_code="P-001", name="Panel Frame"),
        Material(material_id="SHEET-A", material_code="HRC-3", name="HRC Sheet 3mm",
                 material_type="SHEET", uom="SHEET", unit_cost=100.0),
        Material(material_id="BOB", material_code="HNG-1", name="Hinge",
                 material_type="BOUGHT_OUT", unit_cost=2.0),
    ])
    session.add(
        BlankSpec(
            blank_id="BLANK-A", product_id="P", sub_assembly_name="Side Panel", material_id="SHEET-A",
            width_mm=400, length_mm=500, thickness_mm=3,
            sheet_width_mm=1220, sheet_length_mm=2440, sheet_weight_kg=70.0,
            pcs_per_sheet=10, consumption_pct=80.0, scrap_pct=20.0,
        )
    )
    session.add_all([
        BOMItem(product_id="P", item_type=ItemType.CUT_PART, blank_id="BLANK-A", material_id="SHEET-A",
                item_name="Side Panel", quantity_per_unit=2, scrap_allowance_pct=5, is_critical=True,
                sub_assembly_name="Side Panel", step_sequence=10),
        BOMItem(product_id="P", item_type=ItemType.BOUGHT_OUT, material_id="BOB",
                item_name="Hinge", quantity_per_unit=1, step_sequence=20),
    ])
    session.commit()
    return "P"


@pytest.fixture
def add_stock(session):
    def _add(item_id, quantity):
        inventory.receive(session, item_id, quantity, inventory.main_store(session))
        session.commit()

    return _add


@pytest.fixture
def make_hierarchy(session, plant):
    """Master for 25 x P plus one PLANNED child per requested operation."""
    def _make(*operations, quantity=25):
        master = create_master_work_order(session, plant, quantity, customer="ACME")
        children = [create_child_work_order(session, master.work_order_id, op) for op in operations]
        return master, children

    return _make

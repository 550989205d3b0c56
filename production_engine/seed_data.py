from datetime import date, timedelta

from sqlmodel import Session, select

from .database import engine
from .models.master import Product, Material, BlankSpec, BOMItem, SalesOrder, ItemType
from .services import inventory


def seed_demo_data() -> None:
    """
    Seeds a small two-level product (wheelbarrow with a tray sub-assembly),
    its materials, blank specs, BOM, opening stock and one sales order.
    Skips seeding if Product table is non-empty.
    """
    today = date.today()

    with Session(engine) as session:
        # Skip if already seeded
        if session.exec(select(Product)).first():
            return

        # === Products ===
        session.add_all([
            Product(product_id="P-WB", product_code="WB-100", name="Heavy Duty Wheelbarrow"),
            Product(product_id="P-TRAY", product_code="TRAY-100", name="Wheelbarrow Tray Assembly"),
        ])

        # === Materials ===
        session.add_all([
            Material(material_id="MAT-HRC-3", material_code="HRC-3", name="HRC Sheet 3mm", material_type="SHEET", uom="SHEET", unit_cost=4200.0),
            Material(material_id="MAT-HRC-2", material_code="HRC-2", name="HRC Sheet 2mm", material_type="SHEET", uom="SHEET", unit_cost=2900.0),
            Material(material_id="MAT-WHEEL", material_code="WHL-16", name="16in Pneumatic Wheel", material_type="BOUGHT_OUT", unit_cost=650.0),
            Material(material_id="MAT-BOLT-M8", material_code="BLT-M8", name="M8 Hex Bolt", material_type="BOUGHT_OUT", unit_cost=4.5),
            Material(material_id="MAT-WIRE", material_code="MIG-08", name="MIG Welding Wire 0.8mm", material_type="CONSUMABLE", uom="KG", unit_cost=180.0),
        ])

        # === Blank specs ===
        session.add_all([
            BlankSpec(
                blank_id="BS-SHELL", product_id="P-TRAY", sub_assembly_name="Shell HRC",
                material_id="MAT-HRC-2", material_type="HRC",
                width_mm=900, length_mm=1100, thickness_mm=2, blank_weight_kg=15.5,
                sheet_type="1250x2500", sheet_width_mm=1250, sheet_length_mm=2500, sheet_weight_kg=49.1,
                pcs_per_sheet=2, consumption_pct=63.1, sheet_util_pct=63.1, scrap_pct=36.9,
                cutting_direction="HORIZONTAL",
            ),
            BlankSpec(
                blank_id="BS-BRACKET", product_id="P-WB", sub_assembly_name="Leg Bracket",
                material_id="MAT-HRC-3", material_type="HRC",
                width_mm=120, length_mm=300, thickness_mm=3, blank_weight_kg=0.85,
                sheet_type="1220x2440", sheet_width_mm=1220, sheet_length_mm=2440,
                pcs_per_sheet=80, cutting_direction="VERTICAL",
            ),
        ])

        # === BOM ===
        session.add_all([
            BOMItem(product_id="P-TRAY", item_type=ItemType.CUT_PART, blank_id="BS-SHELL", material_id="MAT-HRC-2",
                    item_name="Tray Shell", quantity_per_unit=1, scrap_allowance_pct=2, is_critical=True,
                    sub_assembly_name="Shell", step_sequence=10, operation_code="CUT"),
            BOMItem(product_id="P-TRAY", item_type=ItemType.CONSUMABLE, material_id="MAT-WIRE",
                    item_name="Rim Weld", quantity_per_unit=0.12, step_sequence=20, operation_code="WELD"),
            BOMItem(product_id="P-WB", item_type=ItemType.SUB_ASSEMBLY, child_product_id="P-TRAY",
                    item_name="Tray Assembly", quantity_per_unit=1, sub_assembly_name="Tray", step_sequence=10),
            BOMItem(product_id="P-WB", item_type=ItemType.CUT_PART, blank_id="BS-BRACKET", material_id="MAT-HRC-3",
                    item_name="Leg Bracket", quantity_per_unit=2, scrap_allowance_pct=5,
                    sub_assembly_name="Leg Bracket", step_sequence=20, operation_code="CUT"),
            BOMItem(product_id="P-WB", item_type=ItemType.BOUGHT_OUT, material_id="MAT-WHEEL",
                    item_name="Wheel", quantity_per_unit=1, is_critical=True, step_sequence=30, operation_code="ASSY"),
            BOMItem(product_id="P-WB", item_type=ItemType.BOUGHT_OUT, material_id="MAT-BOLT-M8",
                    item_name="Bolts", quantity_per_unit=8, scrap_allowance_pct=2.5, step_sequence=30, operation_code="ASSY"),
            BOMItem(product_id="P-WB", item_type=ItemType.CONSUMABLE, material_id="MAT-WIRE",
                    item_name="Frame Weld", quantity_per_unit=0.05, step_sequence=40, operation_code="WELD"),
        ])

        # === Opening stock (main store) ===
        store = inventory.main_store(session)
        stock = {"MAT-HRC-3": 40, "MAT-HRC-2": 6, "MAT-WHEEL": 10, "MAT-BOLT-M8": 500, "MAT-WIRE": 25}
        for mid, qty in stock.items():
            inventory.receive(session, mid, qty, store, reference="OPENING-STOCK", created_by="seed")

        # Fixed locations exist before the first cascade needs them
        inventory.finished_goods_store(session)
        inventory.qa_section(session)

        # === Sales order ===
        session.add(
            SalesOrder(sales_order_id="SO-1001", product_id="P-WB", quantity=25,
                       customer="Greenfield Hardware", required_by=today + timedelta(days=14))
        )

        session.commit()

"""
Work order hierarchy: creation, the transition table, dependency checks,
forward triggering, the master completion cascade and deletion.
"""
import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import select

from production_engine.errors import InvalidTransitionError, NotFoundError, ValidationError
from production_engine.models import Event, InventoryBalance, InventoryTxn, WorkOrder, WorkOrderStep
from production_engine.services import completion, inventory
from production_engine.services.execution import record_production_output
from production_engine.services.work_orders import (
    DEPENDENCIES,
    TRIGGERS,
    check_master_completion,
    check_work_order_dependencies,
    create_child_work_order,
    create_master_work_order,
    delete_work_order,
    get_work_order_hierarchy,
    trigger_next_work_orders,
    update_work_order_status,
)


def _status(session, work_order_id):
    return session.get(WorkOrder, work_order_id).status.value


def _complete(session, work_order_id, scheduled=None):
    """Start (if needed), book output and complete one child; scrap work is only recorded."""
    schedule = (lambda fn, *args: scheduled.append((fn, args))) if scheduled is not None else (lambda *a: None)
    if _status(session, work_order_id) == "PLANNED":
        update_work_order_status(session, work_order_id, "IN_PROGRESS", schedule=schedule)
    quantity = session.get(WorkOrder, work_order_id).quantity
    record_production_output(session, work_order_id, quantity_good=quantity)
    return update_work_order_status(session, work_order_id, "COMPLETED", schedule=schedule)


def _qa_balance(session, product_id):
    qa = inventory.qa_section(session)
    bal = session.exec(
        select(InventoryBalance).where(
            InventoryBalance.item_id == product_id, InventoryBalance.location_id == qa.location_id
        )
    ).first()
    return bal.quantity if bal else 0.0


class TestCreation:

    def test_master_is_planned_without_operation(self, session, plant):
        master = create_master_work_order(session, plant, 25, customer="ACME", purchase_order_ref="PO-7")

        assert master.status.value == "PLANNED"
        assert master.parent_wo_id is None
        assert master.operation_type is None
        assert master.wo_number.startswith("MWO-")

    def test_child_inherits_from_master(self, session, make_hierarchy):
        master, (child,) = make_hierarchy("CUTTING")

        assert child.parent_wo_id == master.work_order_id
        assert child.product_id == master.product_id
        assert child.quantity == 25
        assert child.customer == "ACME"
        assert child.operation_type.value == "CUTTING"
        assert child.status.value == "PLANNED"

    def test_child_cannot_have_children(self, session, make_hierarchy):
        _, (child,) = make_hierarchy("CUTTING")
        with pytest.raises(ValidationError):
            create_child_work_order(session, child.work_order_id, "FORMING")

    def test_unknown_operation_type(self, session, make_hierarchy):
        master, _ = make_hierarchy()
        with pytest.raises(ValidationError):
            create_child_work_order(session, master.work_order_id, "POLISHING")

    def test_master_validation(self, session, plant):
        with pytest.raises(ValidationError):
            create_master_work_order(session, plant, 0)
        with pytest.raises(NotFoundError):
            create_master_work_order(session, "NOPE", 5)

    def test_hierarchy_view(self, session, make_hierarchy):
        master, children = make_hierarchy("CUTTING", "FORMING")

        view = get_work_order_hierarchy(session, master.work_order_id)
        assert view["total_work_orders"] == 3
        assert [c["operation_type"] for c in view["children"]] == ["CUTTING", "FORMING"]

        with pytest.raises(ValidationError):
            get_work_order_hierarchy(session, children[0].work_order_id)


class TestTransitions:

    def test_start_stamps_schedule_and_starts_master(self, session, make_hierarchy):
        master, (child,) = make_hierarchy("CUTTING")

        result = update_work_order_status(session, child.work_order_id, "IN_PROGRESS")

        assert result["changed"] is True
        assert result["work_order"]["status"] == "IN_PROGRESS"
        assert session.get(WorkOrder, child.work_order_id).scheduled_start is not None
        assert _status(session, master.work_order_id) == "IN_PROGRESS"

    def test_planned_cannot_jump_to_completed(self, session, make_hierarchy):
        _, (child,) = make_hierarchy("CUTTING")
        with pytest.raises(InvalidTransitionError):
            update_work_order_status(session, child.work_order_id, "COMPLETED")
        assert _status(session, child.work_order_id) == "PLANNED"

    def test_completion_needs_recorded_output(self, session, make_hierarchy):
        master, (child,) = make_hierarchy("FORMING")
        update_work_order_status(session, child.work_order_id, "IN_PROGRESS")

        with pytest.raises(ValidationError):
            update_work_order_status(session, child.work_order_id, "COMPLETED")

        assert _status(session, child.work_order_id) == "IN_PROGRESS"
        assert _status(session, master.work_order_id) == "IN_PROGRESS"
        assert session.exec(select(InventoryTxn).where(InventoryTxn.txn_type == "TRANSFER_OUT")).all() == []

        record_production_output(session, child.work_order_id, quantity_good=25)
        result = update_work_order_status(session, child.work_order_id, "COMPLETED")

        assert _status(session, master.work_order_id) == "COMPLETED"
        assert result["qa_transfer"]["transferred"] is True

    def test_master_cannot_be_completed_directly(self, session, make_hierarchy):
        master, _ = make_hierarchy("CUTTING")
        with pytest.raises(InvalidTransitionError):
            update_work_order_status(session, master.work_order_id, "COMPLETED")

    def test_back_to_planned_is_rejected(self, session, make_hierarchy):
        _, (child,) = make_hierarchy("CUTTING")
        update_work_order_status(session, child.work_order_id, "IN_PROGRESS")
        with pytest.raises(InvalidTransitionError):
            update_work_order_status(session, child.work_order_id, "PLANNED")

    def test_cancelled_is_terminal(self, session, make_hierarchy):
        _, (child,) = make_hierarchy("CUTTING")
        update_work_order_status(session, child.work_order_id, "CANCELLED")
        with pytest.raises(InvalidTransitionError):
            update_work_order_status(session, child.work_order_id, "IN_PROGRESS")

    def test_same_status_is_a_no_op(self, session, make_hierarchy):
        _, (child,) = make_hierarchy("CUTTING")
        result = update_work_order_status(session, child.work_order_id, "PLANNED")
        assert result["changed"] is False
        assert result["triggered"] == []

    def test_unknown_status(self, session, make_hierarchy):
        _, (child,) = make_hierarchy("CUTTING")
        with pytest.raises(ValidationError):
            update_work_order_status(session, child.work_order_id, "DONE")

    def test_unknown_work_order(self, session):
        with pytest.raises(NotFoundError):
            update_work_order_status(session, "missing", "IN_PROGRESS")

    def test_status_changes_are_audited(self, session, make_hierarchy):
        _, (child,) = make_hierarchy("CUTTING")
        update_work_order_status(session, child.work_order_id, "IN_PROGRESS", updated_by="op-1")

        events = session.exec(
            select(Event).where(
                Event.event_type == "WORK_ORDER_STATUS_CHANGED", Event.reference_id == child.work_order_id
            )
        ).all()
        assert len(events) == 1
        assert "op-1" in events[0].description


class TestDependencies:

    def test_tables_only_reference_known_operations(self):
        for op, required in DEPENDENCIES.items():
            assert op not in required
        for op, unblocks in TRIGGERS.items():
            assert op not in unblocks

    def test_forming_waits_for_cutting(self, session, make_hierarchy):
        _, (cutting, forming) = make_hierarchy("CUTTING", "FORMING")

        before = check_work_order_dependencies(session, forming.work_order_id)
        assert before["has_dependencies"] is True
        assert before["can_start"] is False
        assert before["missing_operations"] == ["CUTTING"]

        _complete(session, cutting.work_order_id, scheduled=[])

        after = check_work_order_dependencies(session, forming.work_order_id)
        assert after["can_start"] is True
        assert after["completed_operations"] == ["CUTTING"]
        assert after["missing_operations"] == []

    def test_every_prerequisite_must_be_completed(self, session, make_hierarchy):
        _, (cutting, forming, assembly) = make_hierarchy("CUTTING", "FORMING", "ASSEMBLY")
        _complete(session, cutting.work_order_id, scheduled=[])

        deps = check_work_order_dependencies(session, assembly.work_order_id)
        assert deps["can_start"] is False
        assert deps["missing_operations"] == ["FORMING"]

    def test_master_and_cutting_have_no_dependencies(self, session, make_hierarchy):
        master, (cutting,) = make_hierarchy("CUTTING")
        for wo_id in (master.work_order_id, cutting.work_order_id):
            deps = check_work_order_dependencies(session, wo_id)
            assert deps["has_dependencies"] is False
            assert deps["can_start"] is True


class TestTriggerNext:

    def test_completing_cutting_starts_forming_only(self, session, make_hierarchy):
        _, (cutting, forming, painting) = make_hierarchy("CUTTING", "FORMING", "PAINTING")

        result = _complete(session, cutting.work_order_id, scheduled=[])

        assert [t["operation_type"] for t in result["triggered"]] == ["FORMING"]
        assert _status(session, forming.work_order_id) == "IN_PROGRESS"
        assert session.get(WorkOrder, forming.work_order_id).scheduled_start is not None
        assert _status(session, painting.work_order_id) == "PLANNED"

    def test_explicit_trigger_skips_non_planned_siblings(self, session, make_hierarchy):
        _, (forming, assembly, welding) = make_hierarchy("FORMING", "ASSEMBLY", "WELDING")
        update_work_order_status(session, welding.work_order_id, "CANCELLED")

        triggered = trigger_next_work_orders(session, forming.work_order_id)

        assert [t["operation_type"] for t in triggered] == ["ASSEMBLY"]
        assert _status(session, welding.work_order_id) == "CANCELLED"


class TestCompletionCascade:

    def test_last_child_completes_master_and_moves_goods_to_qa_once(self, session, make_hierarchy):
        master, (c1, c2) = make_hierarchy("CUTTING", "FORMING")
        master_id = master.work_order_id
        scheduled = []

        first = _complete(session, c1.work_order_id, scheduled)
        assert first["qa_transfer"] is None
        assert _status(session, c2.work_order_id) == "IN_PROGRESS"
        assert _status(session, master_id) == "IN_PROGRESS"

        record_production_output(session, c2.work_order_id, quantity_good=25)
        second = update_work_order_status(session, c2.work_order_id, "COMPLETED")

        assert _status(session, master_id) == "COMPLETED"
        assert second["qa_transfer"]["transferred"] is True
        assert second["qa_transfer"]["quantity"] == 25
        assert second["qa_transfer"]["reference"] == f"QA-TRANSFER-{master_id}"
        assert _qa_balance(session, "P") == 25

        # Re-applying COMPLETED runs no cascade
        again = update_work_order_status(session, c2.work_order_id, "COMPLETED")
        assert again["changed"] is False
        assert again["qa_transfer"] is None

        transfers_in = session.exec(
            select(InventoryTxn).where(
                InventoryTxn.txn_type == "TRANSFER_IN", InventoryTxn.reference == f"QA-TRANSFER-{master_id}"
            )
        ).all()
        assert len(transfers_in) == 1
        assert transfers_in[0].wo_id == master_id

        # Only the CUTTING child queues a scrap pass
        assert len(scheduled) == 1

    def test_incomplete_sibling_keeps_master_open(self, session, make_hierarchy):
        master, (c1, c2) = make_hierarchy("CUTTING", "PAINTING")
        _complete(session, c1.work_order_id, scheduled=[])

        assert _status(session, master.work_order_id) == "IN_PROGRESS"
        assert _status(session, c2.work_order_id) == "PLANNED"

    def test_cancelled_sibling_blocks_completion(self, session, make_hierarchy):
        master, (c1, c2) = make_hierarchy("CUTTING", "PAINTING")
        update_work_order_status(session, c2.work_order_id, "CANCELLED")
        _complete(session, c1.work_order_id, scheduled=[])

        assert _status(session, master.work_order_id) == "IN_PROGRESS"

    def test_master_without_children_never_completes(self, session, make_hierarchy):
        master, _ = make_hierarchy()

        assert check_master_completion(session, master.work_order_id) is None
        assert _status(session, master.work_order_id) == "PLANNED"

    def test_invalid_master_quantity_skips_transfer_but_completes(self, session, make_hierarchy):
        master, (child,) = make_hierarchy("FORMING")
        wo = session.get(WorkOrder, master.work_order_id)
        wo.quantity = 0
        session.add(wo)
        session.commit()

        result = _complete(session, child.work_order_id)

        assert result["qa_transfer"]["transferred"] is False
        assert _status(session, master.work_order_id) == "COMPLETED"
        assert session.exec(select(Event).where(Event.event_type == "QA_TRANSFER_SKIPPED")).first() is not None


    @pytest.mark.parametrize("error", [
        OperationalError("INSERT INTO inventorytxn", {}, Exception("db down")),
        TypeError("bad quantity"),
    ])
    def test_failed_qa_transfer_keeps_master_completed(self, session, make_hierarchy, monkeypatch, error):
        master, (child,) = make_hierarchy("FORMING")

        def _broken(session, work_order):
            raise error

        monkeypatch.setattr(completion, "transfer_finished_goods_to_qa", _broken)

        result = _complete(session, child.work_order_id)

        assert result["qa_transfer"]["transferred"] is False
        assert str(error) in result["qa_transfer"]["error"]
        assert _status(session, child.work_order_id) == "COMPLETED"
        assert _status(session, master.work_order_id) == "COMPLETED"
        failed = session.exec(select(Event).where(Event.event_type == "QA_TRANSFER_FAILED")).all()
        assert len(failed) == 1
        assert failed[0].reference_id == master.work_order_id
        assert _qa_balance(session, "P") == 0


class TestDeletion:

    def test_deleting_master_takes_children_and_their_rows(self, session, make_hierarchy):
        master, (c1, c2) = make_hierarchy("CUTTING", "FORMING")
        session.add(WorkOrderStep(work_order_id=c1.work_order_id, step_sequence=1, operation_code="CUT"))
        session.commit()

        result = delete_work_order(session, master.work_order_id)

        assert result["count"] == 3
        assert session.exec(select(WorkOrder)).all() == []
        assert session.exec(select(WorkOrderStep)).all() == []

    def test_deleting_child_leaves_master(self, session, make_hierarchy):
        master, (c1, c2) = make_hierarchy("CUTTING", "FORMING")
        c1_id = c1.work_order_id

        result = delete_work_order(session, c1_id)

        assert result["deleted"] == [c1_id]
        remaining = {wo.work_order_id for wo in session.exec(select(WorkOrder)).all()}
        assert remaining == {master.work_order_id, c2.work_order_id}

    def test_delete_unknown(self, session):
        with pytest.raises(NotFoundError):
            delete_work_order(session, "missing")

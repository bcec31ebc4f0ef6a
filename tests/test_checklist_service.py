import uuid

import pytest
from pydantic import ValidationError

from checklist.config import settings
from checklist.errors import (
    InvalidTransition,
    LogWriteFailure,
    NotFound,
    PermissionDenied,
    PersistenceError,
    RuleViolation,
)
from checklist.models.models import EquipmentLog
from checklist.schemas.checklist import CatalogSource, CustomSource, EquipmentStatus as S, WarehouseType
from checklist.services.audit import integrity_hash
from checklist.services.checklist_service import ChecklistService
from checklist.services.permissions import ADMIN, COORDINATOR, DEPARTMENT_WORKER, SITE_WORKER
from checklist.services.store import EquipmentStore


class FailingStore(EquipmentStore):
    """Store whose writes fail on demand."""

    def __init__(self, db, fail_update_call=None, fail_insert_call=None, fail_logs=False):
        super().__init__(db)
        self.fail_update_call = fail_update_call
        self.fail_insert_call = fail_insert_call
        self.fail_logs = fail_logs
        self.update_calls = 0
        self.insert_calls = 0

    def update_equipment(self, ids, status, warehouse_id):
        self.update_calls += 1
        if self.update_calls == self.fail_update_call:
            raise PersistenceError("connection reset")
        return super().update_equipment(ids, status, warehouse_id)

    def insert_equipment(self, rows):
        self.insert_calls += 1
        if self.insert_calls == self.fail_insert_call:
            raise PersistenceError("connection reset")
        return super().insert_equipment(rows)

    def append_log(self, entry):
        if self.fail_logs:
            raise LogWriteFailure("log table is read-only")
        return super().append_log(entry)


@pytest.fixture
def service(db, seed):
    return ChecklistService(EquipmentStore(db), seed.actors[COORDINATOR])


def _logs(db, action=None):
    q = db.query(EquipmentLog)
    if action:
        q = q.filter(EquipmentLog.action_type == action)
    return q.all()


def test_round_trip_to_destination_writes_two_entries(db, seed, service, add_row):
    item = add_row(seed.project, seed.electrical)

    service.move_equipment(item.id, S.loading)
    outcome = service.move_equipment(item.id, S.delivered)

    stored = service.store.get_equipment(item.id)
    assert stored.status == S.delivered
    assert stored.intermediate_warehouse_id is None
    assert outcome.record.status == S.delivered
    logs = _logs(db)
    assert len(logs) == 2
    assert {log.action_type for log in logs} == {"position_changed"}
    assert {(log.old_value, log.new_value) for log in logs} == {
        ("Department", "Coordination"),
        ("Coordination", "Delivered"),
    }


def test_move_carries_accessories_in_the_same_place(db, seed, service, add_row):
    main = add_row(seed.project, seed.electrical)
    accessory = add_row(seed.project, seed.electrical, project_parent_id=main.id)

    outcome = service.move_equipment(main.id, S.loading)

    assert outcome.moved_accessory_ids == [accessory.id]
    assert outcome.warning is None
    assert service.store.get_equipment(accessory.id).status == S.loading
    # one entry for the move, none per accessory
    assert len(_logs(db)) == 1


def test_accessory_moved_elsewhere_is_left_behind(db, seed, service, add_row):
    main = add_row(seed.project, seed.electrical)
    accessory = add_row(seed.project, seed.electrical, project_parent_id=main.id)
    service.store.update_equipment([accessory.id], S.ready, None)

    outcome = service.move_equipment(main.id, S.loading)

    assert outcome.moved_accessory_ids == []
    assert service.store.get_equipment(accessory.id).status == S.ready


def test_rejected_move_writes_nothing(db, seed, service, add_row):
    item = add_row(seed.project, seed.electrical)
    with pytest.raises(InvalidTransition):
        service.move_equipment(item.id, S.delivered)
    assert service.store.get_equipment(item.id).status == S.pending
    assert _logs(db) == []


def test_move_unknown_record(service):
    with pytest.raises(NotFound):
        service.move_equipment(uuid.uuid4(), S.loading)


def test_set_ready_toggles_and_logs_status_change(db, seed, service, add_row):
    item = add_row(seed.project, seed.electrical)

    service.set_ready(item.id, True)
    assert service.store.get_equipment(item.id).status == S.ready
    service.set_ready(item.id, False)
    assert service.store.get_equipment(item.id).status == S.pending

    logs = _logs(db, "status_changed")
    assert {(log.old_value, log.new_value) for log in logs} == {("pending", "ready"), ("ready", "pending")}


def test_warehouse_move_logs_warehouse_label(db, seed, service, add_row):
    warehouse = service.add_warehouse(seed.project.id, "North Yard", WarehouseType.pre_coordination)
    item = add_row(seed.project, seed.electrical, status="ready")

    service.move_equipment(item.id, S.ready, warehouse_id=warehouse.id)

    log = _logs(db, "position_changed")[0]
    assert log.new_value == "Warehouse: North Yard"
    assert log.details["new_warehouse_id"] == str(warehouse.id)


def test_main_write_failure_raises_and_leaves_record(db, seed, add_row):
    item = add_row(seed.project, seed.electrical)
    service = ChecklistService(FailingStore(db, fail_update_call=1), seed.actors[COORDINATOR])

    with pytest.raises(PersistenceError):
        service.move_equipment(item.id, S.loading)
    assert service.store.get_equipment(item.id).status == S.pending
    assert _logs(db) == []


def test_accessory_write_failure_is_partial(db, seed, add_row):
    main = add_row(seed.project, seed.electrical)
    accessory = add_row(seed.project, seed.electrical, project_parent_id=main.id)
    service = ChecklistService(FailingStore(db, fail_update_call=2), seed.actors[COORDINATOR])

    outcome = service.move_equipment(main.id, S.loading)

    assert outcome.partial_failure is not None
    assert outcome.partial_failure.accessory_ids == [accessory.id]
    assert outcome.warning
    assert outcome.moved_accessory_ids == []
    assert service.store.get_equipment(main.id).status == S.loading
    assert service.store.get_equipment(accessory.id).status == S.pending
    assert len(_logs(db)) == 1


def test_log_failure_does_not_block_move(db, seed, add_row):
    item = add_row(seed.project, seed.electrical)
    service = ChecklistService(FailingStore(db, fail_logs=True), seed.actors[COORDINATOR])

    outcome = service.move_equipment(item.id, S.loading)

    assert outcome.record.status == S.loading
    assert service.store.get_equipment(item.id).status == S.loading
    assert _logs(db) == []


def test_reverse_flow_site_pull(db, seed, add_row):
    seed.project.reverse_flow = True
    db.commit()
    item = add_row(seed.project, seed.electrical, status="delivered")

    worker = ChecklistService(EquipmentStore(db), seed.actors[SITE_WORKER])
    with pytest.raises(PermissionDenied):
        worker.move_equipment(item.id, S.loading)

    manager = ChecklistService(EquipmentStore(db), seed.actors[COORDINATOR])
    assert manager.move_equipment(item.id, S.loading).record.status == S.loading


def test_add_catalog_equipment_brings_accessories(db, seed, service):
    outcome = service.add_equipment(
        seed.project.id, seed.electrical.id, CatalogSource(equipment_id=seed.generator.id, description=" spare "),
    )

    assert outcome.record.display_name == "Generator"
    assert outcome.record.custom_description == "spare"
    assert [a.display_name for a in outcome.accessories] == ["Cable kit"]
    assert outcome.accessories[0].project_parent_id == outcome.record.id
    assert all(r.status == S.pending for r in [outcome.record] + outcome.accessories)

    logs = _logs(db, "added")
    assert sorted(log.new_value for log in logs) == ["Cable kit", "Generator"]
    accessory_log = [log for log in logs if log.new_value == "Cable kit"][0]
    assert accessory_log.details["parent_equipment"] == "Generator"
    assert accessory_log.details["department"] == "Electrical"


def test_add_catalog_equipment_accessory_insert_failure(db, seed):
    service = ChecklistService(FailingStore(db, fail_insert_call=2), seed.actors[COORDINATOR])

    outcome = service.add_equipment(seed.project.id, seed.electrical.id, CatalogSource(equipment_id=seed.generator.id))

    assert outcome.partial_failure is not None
    assert outcome.accessories == []
    assert len(service.list_equipment(seed.project.id)) == 1


def test_add_custom_equipment(db, seed, service):
    outcome = service.add_equipment(seed.project.id, seed.mechanical.id, CustomSource(name="  Scissor lift "))

    assert outcome.record.is_custom
    assert outcome.record.display_name == "Scissor lift"
    assert outcome.record.equipment_id is None
    log = _logs(db, "added")[0]
    assert log.details["is_custom"] is True


def test_custom_equipment_needs_a_name():
    with pytest.raises(ValidationError):
        CustomSource(name="   ")


def test_add_to_department_outside_project(seed, service):
    with pytest.raises(NotFound):
        service.add_equipment(seed.project.id, seed.carpentry.id, CustomSource(name="Saw"))


def test_remove_main_orphans_accessories(db, seed, service, add_row):
    main = add_row(seed.project, seed.electrical)
    accessory = add_row(seed.project, seed.electrical, project_parent_id=main.id)
    main_id, main_name, accessory_id = main.id, main.custom_name, accessory.id
    admin = ChecklistService(EquipmentStore(db), seed.actors[ADMIN])

    admin.remove_equipment(main_id)

    orphan = admin.store.get_equipment(accessory_id)
    assert orphan.project_parent_id == main_id
    view = admin.board(seed.project.id)
    assert view.board.departments[seed.electrical.id] == []
    log = _logs(db, "removed")[0]
    assert log.old_value == main_name
    assert log.details["status"] == "pending"
    assert log.details["department_name"] == "Electrical"


def test_remove_requires_delete_permission(seed, add_row, db):
    item = add_row(seed.project, seed.electrical)
    worker = ChecklistService(EquipmentStore(db), seed.actors[DEPARTMENT_WORKER])
    with pytest.raises(PermissionDenied):
        worker.remove_equipment(item.id)


def test_warehouse_order_and_removal(db, seed, service, add_row):
    first = service.add_warehouse(seed.project.id, "Yard A", WarehouseType.post_coordination)
    second = service.add_warehouse(seed.project.id, "Yard B", WarehouseType.post_coordination)
    pre = service.add_warehouse(seed.project.id, "Dock", WarehouseType.pre_coordination)
    assert (first.position_order, second.position_order, pre.position_order) == (0, 1, 0)

    add_row(seed.project, seed.electrical, status="loading", intermediate_warehouse_id=first.id)
    with pytest.raises(RuleViolation):
        service.remove_warehouse(first.id)

    service.remove_warehouse(second.id)
    assert [w.id for w in service.list_warehouses(seed.project.id)] == [first.id, pre.id]
    assert len(_logs(db, "warehouse_created")) == 3
    assert _logs(db, "warehouse_deleted")[0].old_value == "Yard B"


def test_project_department_rules(seed, service, monkeypatch):
    with pytest.raises(RuleViolation):
        service.add_project_department(seed.project.id, seed.electrical.id)

    monkeypatch.setattr(settings, "max_project_departments", 2)
    with pytest.raises(RuleViolation):
        service.add_project_department(seed.project.id, seed.carpentry.id)

    monkeypatch.setattr(settings, "max_project_departments", 8)
    row = service.add_project_department(seed.project.id, seed.carpentry.id)
    assert row.position_order == 2

    service.remove_project_department(row.id)
    assert len(service.store.list_project_departments(seed.project.id)) == 2


def test_logs_newest_first_with_integrity_hash(db, seed, service, add_row):
    item = add_row(seed.project, seed.electrical)
    service.set_ready(item.id, True)
    service.move_equipment(item.id, S.loading)
    service.move_equipment(item.id, S.delivered)

    logs = service.list_logs(seed.project.id)
    assert len(logs) == 3
    stamps = [log.created_at for log in logs]
    assert stamps == sorted(stamps, reverse=True)
    assert all(log.integrity_hash for log in logs)
    assert len(service.list_logs(seed.project.id, limit=1)) == 1


def test_integrity_hash_ignores_none_and_depends_on_secret():
    entry = {"action_type": "added", "new_value": "Generator", "old_value": None}
    assert integrity_hash(entry, "s1") == integrity_hash({"action_type": "added", "new_value": "Generator"}, "s1")
    assert integrity_hash(entry, "s1") != integrity_hash(entry, "s2")
    assert integrity_hash(entry, "") is None


def test_drop_check_reports_reason(seed, service, add_row):
    main = add_row(seed.project, seed.electrical)
    accessory = add_row(seed.project, seed.electrical, project_parent_id=main.id)

    assert service.drop_check(main.id, "coordination") == (True, None)
    allowed, reason = service.drop_check(main.id, "destination")
    assert not allowed and reason
    allowed, _ = service.drop_check(accessory.id, "coordination")
    assert not allowed


def test_board_labels_follow_flow(db, seed, service):
    assert service.board(seed.project.id).policy.coordination_label == "Coordination"
    seed.project.reverse_flow = True
    db.commit()
    view = service.board(seed.project.id)
    assert view.policy.coordination_label == "Shipment Coordination"
    assert view.policy.destination_label == "Construction Site"


def test_drop_check_on_warehouse_without_id(seed, service, add_row):
    warehouse = service.add_warehouse(seed.project.id, "Laydown", WarehouseType.post_coordination)
    item = add_row(seed.project, seed.electrical, status="loading", intermediate_warehouse_id=warehouse.id)

    assert service.drop_check(item.id, "warehouse", None) == (False, "Unknown warehouse")
    assert service.drop_check(item.id, "coordination") == (True, None)


def test_catalog_accessory_cannot_be_added_alone(db, seed, service):
    with pytest.raises(RuleViolation):
        service.add_equipment(seed.project.id, seed.electrical.id, CatalogSource(equipment_id=seed.cable_kit.id))
    assert service.list_equipment(seed.project.id) == []
    assert _logs(db, "added") == []

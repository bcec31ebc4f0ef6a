"""
Checklist operations: moving, adding and removing project equipment, plus the
warehouse and department bookkeeping around them.

The service is synchronous per call: it fetches the project's state, validates
against the guard table, then writes. Callers re-fetch afterwards.
"""
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import structlog

from ..config import settings
from ..errors import InvalidTransition, NotFound, PartialAccessoryFailure, PermissionDenied, PersistenceError, RuleViolation
from ..schemas.checklist import (
    CatalogSource,
    CustomSource,
    EquipmentRecord,
    EquipmentSource,
    EquipmentStatus,
    LogAction,
    ProjectInfo,
    Warehouse,
    WarehouseType,
)
from .audit import create_equipment_log, location_label, record_details
from .flow_policy import FlowPolicy, policy_for
from .hierarchy import Board, group_by_location
from .permissions import ActorContext
from .store import EquipmentStore
from . import transitions
from .transitions import MoveContext, MoveRequest

logger = structlog.get_logger(__name__)


@dataclass
class MoveOutcome:
    record: EquipmentRecord
    moved_accessory_ids: List[uuid.UUID] = field(default_factory=list)
    partial_failure: Optional[PartialAccessoryFailure] = None
    refresh: bool = True

    @property
    def warning(self) -> Optional[str]:
        return self.partial_failure.message if self.partial_failure else None


@dataclass
class AddOutcome:
    record: EquipmentRecord
    accessories: List[EquipmentRecord] = field(default_factory=list)
    partial_failure: Optional[PartialAccessoryFailure] = None

    @property
    def warning(self) -> Optional[str]:
        return self.partial_failure.message if self.partial_failure else None


@dataclass
class BoardView:
    project: ProjectInfo
    policy: FlowPolicy
    board: Board
    records: List[EquipmentRecord]
    warehouses: List[Warehouse]


class ChecklistService:
    def __init__(self, store: EquipmentStore, actor: ActorContext, strict_roles: Optional[bool] = None):
        self.store = store
        self.actor = actor
        self.strict_roles = settings.strict_role_moves if strict_roles is None else strict_roles

    def _require_manage(self) -> None:
        if not self.actor.can_manage:
            raise PermissionDenied("You are not allowed to manage this project")

    def _require_delete(self) -> None:
        if not self.actor.can_delete:
            raise PermissionDenied("Only administrators and coordinators can delete")

    def _context(self, project: ProjectInfo, warehouses: List[Warehouse]) -> MoveContext:
        return MoveContext.build(policy_for(project.reverse_flow), warehouses, actor=self.actor, strict_roles=self.strict_roles)

    # ---------- READ ----------
    def board(self, project_id: uuid.UUID) -> BoardView:
        project = self.store.get_project(project_id)
        records = self.store.fetch_equipment(project_id)
        warehouses = self.store.list_warehouses(project_id)
        department_ids = [pd.department_id for pd in self.store.list_project_departments(project_id)]
        return BoardView(
            project=project,
            policy=policy_for(project.reverse_flow),
            board=group_by_location(records, warehouses, department_ids),
            records=records,
            warehouses=warehouses,
        )

    def list_equipment(self, project_id: uuid.UUID) -> List[EquipmentRecord]:
        self.store.get_project(project_id)
        return self.store.fetch_equipment(project_id)

    def list_warehouses(self, project_id: uuid.UUID) -> List[Warehouse]:
        self.store.get_project(project_id)
        return self.store.list_warehouses(project_id)

    def list_logs(self, project_id: uuid.UUID, limit: Optional[int] = None):
        self.store.get_project(project_id)
        return self.store.list_logs(project_id, limit=limit or settings.log_list_limit)

    # ---------- MOVES ----------
    def move_equipment(
        self,
        record_id: uuid.UUID,
        new_status: EquipmentStatus,
        warehouse_id: Optional[uuid.UUID] = None,
        department_id: Optional[uuid.UUID] = None,
    ) -> MoveOutcome:
        record = self.store.get_equipment(record_id)
        project = self.store.get_project(record.project_id)
        all_records = self.store.fetch_equipment(project.id)
        warehouses = self.store.list_warehouses(project.id)
        ctx = self._context(project, warehouses)
        request = MoveRequest(new_status=EquipmentStatus(new_status), warehouse_id=warehouse_id, department_id=department_id)

        try:
            plan = transitions.plan_move(record, all_records, request, ctx)
        except InvalidTransition as e:
            logger.info(
                "move_rejected",
                record_id=str(record_id),
                status=record.status.value,
                requested_status=request.new_status.value,
                warehouse_id=str(warehouse_id) if warehouse_id else None,
                reason=e.message,
            )
            raise

        try:
            self.store.update_equipment([record.id], plan.new_status, plan.new_warehouse_id)
        except PersistenceError as e:
            logger.error("equipment_move_failed", record_id=str(record.id), error=e.message)
            raise

        accessory_ids = [a.id for a in plan.accessories]
        partial = None
        if accessory_ids:
            try:
                self.store.update_equipment(accessory_ids, plan.new_status, plan.new_warehouse_id)
            except PersistenceError as e:
                logger.warning("accessory_move_failed", record_id=str(record.id), accessory_ids=[str(i) for i in accessory_ids], error=e.message)
                partial = PartialAccessoryFailure(accessory_ids, "Equipment was moved, but its accessories were not")
                accessory_ids = []

        self._log_move(record, plan, ctx)
        logger.info(
            "equipment_moved",
            record_id=str(record.id),
            rule=plan.rule.name,
            transition=plan.rule.event,
            old_status=record.status.value,
            new_status=plan.new_status.value,
            accessories=len(accessory_ids),
            actor_id=str(self.actor.user_id) if self.actor.user_id else None,
            actor_role=self.actor.role,
        )
        moved = record.model_copy(update={"status": plan.new_status, "intermediate_warehouse_id": plan.new_warehouse_id})
        return MoveOutcome(record=moved, moved_accessory_ids=accessory_ids, partial_failure=partial)

    def _log_move(self, record: EquipmentRecord, plan: transitions.MovePlan, ctx: MoveContext) -> None:
        details = record_details(
            record,
            old_status=record.status.value,
            new_status=plan.new_status.value,
            old_warehouse_id=record.intermediate_warehouse_id,
            new_warehouse_id=plan.new_warehouse_id,
        )
        if plan.is_status_toggle:
            action = LogAction.status_changed
            old_value, new_value = record.status.value, plan.new_status.value
        else:
            action = LogAction.position_changed
            old_value = location_label(record.status, record.intermediate_warehouse_id, ctx.warehouses)
            new_value = location_label(plan.new_status, plan.new_warehouse_id, ctx.warehouses)
        create_equipment_log(
            self.store,
            record.project_id,
            action,
            actor_id=self.actor.user_id,
            equipment_id=record.equipment_id,
            project_equipment_id=record.id,
            old_value=old_value,
            new_value=new_value,
            details=details,
        )

    def set_ready(self, record_id: uuid.UUID, ready: bool) -> MoveOutcome:
        """Department toggle between pending and ready."""
        status = EquipmentStatus.ready if ready else EquipmentStatus.pending
        record = self.store.get_equipment(record_id)
        return self.move_equipment(record_id, status, None, record.department_id)

    def drop_check(self, record_id: uuid.UUID, target_kind: str, target_id: Optional[uuid.UUID] = None) -> Tuple[bool, Optional[str]]:
        """Would dropping the record on this tile be accepted? Never writes."""
        record = self.store.get_equipment(record_id)
        project = self.store.get_project(record.project_id)
        ctx = self._context(project, self.store.list_warehouses(project.id))
        return transitions.drop_verdict(record, target_kind, ctx, target_id)

    # ---------- ADD / REMOVE ----------
    def _department_in_project(self, project_id: uuid.UUID, department_id: uuid.UUID):
        for pd in self.store.list_project_departments(project_id):
            if pd.department_id == department_id:
                return pd.department
        raise NotFound("Department", department_id, "Department is not part of this project")

    def add_equipment(self, project_id: uuid.UUID, department_id: uuid.UUID, source: EquipmentSource) -> AddOutcome:
        self._require_manage()
        self.store.get_project(project_id)
        department = self._department_in_project(project_id, department_id)
        base = {
            "project_id": project_id,
            "department_id": department_id,
            "quantity": 1,
            "status": EquipmentStatus.pending.value,
        }

        if isinstance(source, CustomSource):
            description = (source.description or "").strip() or None
            main = self.store.insert_equipment([
                dict(base, is_custom=True, custom_name=source.name, custom_description=description),
            ])[0]
            self._log_added(main, department, description=description)
            logger.info("equipment_added", record_id=str(main.id), custom=True)
            return AddOutcome(record=main)

        if not isinstance(source, CatalogSource):
            raise TypeError(f"Unsupported equipment source: {source!r}")

        item = self.store.get_catalog_item(source.equipment_id)
        if item.parent_id:
            raise RuleViolation("Accessories are added together with their main equipment")
        description = (source.description or "").strip() or None
        main = self.store.insert_equipment([
            dict(base, is_custom=False, equipment_id=item.id, custom_description=description),
        ])[0]
        self._log_added(main, department, description=description)
        logger.info("equipment_added", record_id=str(main.id), custom=False)

        catalog_accessories = self.store.catalog_accessories(item.id)
        if not catalog_accessories:
            return AddOutcome(record=main)

        try:
            accessories = self.store.insert_equipment([
                dict(base, is_custom=False, equipment_id=acc.id, project_parent_id=main.id)
                for acc in catalog_accessories
            ])
        except PersistenceError as e:
            logger.warning("accessory_insert_failed", record_id=str(main.id), error=e.message)
            failure = PartialAccessoryFailure(
                [acc.id for acc in catalog_accessories],
                "Equipment was added, but its accessories were not",
            )
            return AddOutcome(record=main, partial_failure=failure)

        for accessory in accessories:
            self._log_added(accessory, department, parent_equipment=main.display_name)
        return AddOutcome(record=main, accessories=accessories)

    def _log_added(self, record: EquipmentRecord, department, **extra) -> None:
        create_equipment_log(
            self.store,
            record.project_id,
            LogAction.added,
            actor_id=self.actor.user_id,
            equipment_id=record.equipment_id,
            project_equipment_id=record.id,
            new_value=record.display_name,
            details=record_details(
                record,
                department=department.name if department else None,
                status=record.status.value,
                **extra,
            ),
        )

    def remove_equipment(self, record_id: uuid.UUID) -> EquipmentRecord:
        """Delete exactly one record. Its accessories stay behind with a dangling parent link."""
        self._require_delete()
        record = self.store.get_equipment(record_id)
        department = self.store.get_department(record.department_id)
        self.store.delete_equipment(record.id)
        create_equipment_log(
            self.store,
            record.project_id,
            LogAction.removed,
            actor_id=self.actor.user_id,
            equipment_id=record.equipment_id,
            project_equipment_id=record.id,
            old_value=record.display_name,
            details=record_details(
                record,
                department_name=department.name if department else None,
                status=record.status.value,
                was_custom=record.is_custom,
            ),
        )
        logger.info("equipment_removed", record_id=str(record.id))
        return record

    # ---------- WAREHOUSES ----------
    def add_warehouse(self, project_id: uuid.UUID, name: str, type_: WarehouseType) -> Warehouse:
        self._require_manage()
        self.store.get_project(project_id)
        type_ = WarehouseType(type_)
        position_order = self.store.max_warehouse_order(project_id, type_.value) + 1
        warehouse = self.store.insert_warehouse(project_id, name, type_.value, position_order)
        create_equipment_log(
            self.store,
            project_id,
            LogAction.warehouse_created,
            actor_id=self.actor.user_id,
            new_value=name,
            details={
                "warehouse_id": warehouse.id,
                "warehouse_type": type_.value,
                "position_order": position_order,
            },
        )
        return warehouse

    def remove_warehouse(self, warehouse_id: uuid.UUID) -> Warehouse:
        self._require_delete()
        warehouse = self.store.get_warehouse(warehouse_id)
        count = self.store.count_in_warehouse(warehouse_id)
        if count:
            raise RuleViolation(f"Warehouse holds {count} equipment items. Move the equipment elsewhere first.")
        self.store.delete_warehouse(warehouse_id)
        create_equipment_log(
            self.store,
            warehouse.project_id,
            LogAction.warehouse_deleted,
            actor_id=self.actor.user_id,
            old_value=warehouse.name,
            details={
                "warehouse_id": warehouse.id,
                "warehouse_type": warehouse.type.value,
            },
        )
        return warehouse

    # ---------- PROJECT DEPARTMENTS ----------
    def add_project_department(self, project_id: uuid.UUID, department_id: uuid.UUID):
        self._require_manage()
        self.store.get_project(project_id)
        if not self.store.get_department(department_id):
            raise NotFound("Department", department_id)
        existing = self.store.list_project_departments(project_id)
        if any(pd.department_id == department_id for pd in existing):
            raise RuleViolation("Department is already part of this project")
        if len(existing) >= settings.max_project_departments:
            raise RuleViolation(f"A project can have at most {settings.max_project_departments} departments")
        position_order = max((pd.position_order for pd in existing), default=-1) + 1
        return self.store.insert_project_department(project_id, department_id, position_order)

    def remove_project_department(self, project_department_id: uuid.UUID) -> None:
        self._require_delete()
        self.store.delete_project_department(project_department_id)

"""
Persistence collaborator for the checklist.

Every write commits on its own, mirroring the one-round-trip-per-call model of
the checklist: a move is a fetch followed by conditional writes, and a failed
accessory write never undoes the main write.
"""
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import LogWriteFailure, NotFound, PersistenceError
from ..models.models import (
    CatalogEquipment,
    Department,
    EquipmentLog,
    IntermediateWarehouse,
    Project,
    ProjectDepartment,
    ProjectEquipment,
)
from ..schemas.checklist import EquipmentRecord, EquipmentStatus, ProjectInfo, Warehouse


class EquipmentStore:
    def __init__(self, db: Session):
        self.db = db

    def _commit(self, what: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to {what}: {e}") from e

    # ---------- PROJECTS / DEPARTMENTS ----------
    def get_project(self, project_id: uuid.UUID) -> ProjectInfo:
        row = self.db.query(Project).filter(Project.id == project_id).first()
        if not row:
            raise NotFound("Project", project_id)
        return ProjectInfo.model_validate(row)

    def get_department(self, department_id: uuid.UUID) -> Optional[Department]:
        return self.db.query(Department).filter(Department.id == department_id).first()

    def list_project_departments(self, project_id: uuid.UUID) -> List[ProjectDepartment]:
        return (
            self.db.query(ProjectDepartment)
            .filter(ProjectDepartment.project_id == project_id)
            .order_by(ProjectDepartment.position_order)
            .all()
        )

    def get_project_department(self, project_department_id: uuid.UUID) -> ProjectDepartment:
        row = self.db.query(ProjectDepartment).filter(ProjectDepartment.id == project_department_id).first()
        if not row:
            raise NotFound("Project department", project_department_id)
        return row

    def insert_project_department(self, project_id: uuid.UUID, department_id: uuid.UUID, position_order: int) -> ProjectDepartment:
        row = ProjectDepartment(project_id=project_id, department_id=department_id, position_order=position_order)
        self.db.add(row)
        self._commit("add department to project")
        self.db.refresh(row)
        return row

    def delete_project_department(self, project_department_id: uuid.UUID) -> None:
        row = self.get_project_department(project_department_id)
        self.db.delete(row)
        self._commit("remove department from project")

    # ---------- CATALOG ----------
    def get_catalog_item(self, equipment_id: uuid.UUID) -> CatalogEquipment:
        row = self.db.query(CatalogEquipment).filter(CatalogEquipment.id == equipment_id).first()
        if not row:
            raise NotFound("Equipment", equipment_id)
        return row

    def catalog_accessories(self, equipment_id: uuid.UUID) -> List[CatalogEquipment]:
        return (
            self.db.query(CatalogEquipment)
            .filter(CatalogEquipment.parent_id == equipment_id)
            .order_by(CatalogEquipment.name)
            .all()
        )

    # ---------- PROJECT EQUIPMENT ----------
    def fetch_equipment(self, project_id: uuid.UUID) -> List[EquipmentRecord]:
        rows = (
            self.db.query(ProjectEquipment)
            .filter(ProjectEquipment.project_id == project_id)
            .order_by(ProjectEquipment.created_at)
            .all()
        )
        return [EquipmentRecord.from_row(r) for r in rows]

    def get_equipment(self, record_id: uuid.UUID) -> EquipmentRecord:
        row = self.db.query(ProjectEquipment).filter(ProjectEquipment.id == record_id).first()
        if not row:
            raise NotFound("Equipment", record_id)
        return EquipmentRecord.from_row(row)

    def update_equipment(self, ids: Sequence[uuid.UUID], status: EquipmentStatus, warehouse_id: Optional[uuid.UUID]) -> None:
        ids = list(ids)
        if not ids:
            return
        try:
            (
                self.db.query(ProjectEquipment)
                .filter(ProjectEquipment.id.in_(ids))
                .update(
                    {
                        ProjectEquipment.status: EquipmentStatus(status).value,
                        ProjectEquipment.intermediate_warehouse_id: warehouse_id,
                        ProjectEquipment.updated_at: datetime.now(timezone.utc),
                    },
                    synchronize_session=False,
                )
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to update equipment: {e}") from e
        self._commit("update equipment")
        self.db.expire_all()

    def insert_equipment(self, rows: Iterable[Dict]) -> List[EquipmentRecord]:
        objs = [ProjectEquipment(**values) for values in rows]
        if not objs:
            return []
        self.db.add_all(objs)
        self._commit("add equipment")
        for obj in objs:
            self.db.refresh(obj)
        return [EquipmentRecord.from_row(o) for o in objs]

    def delete_equipment(self, record_id: uuid.UUID) -> None:
        row = self.db.query(ProjectEquipment).filter(ProjectEquipment.id == record_id).first()
        if not row:
            raise NotFound("Equipment", record_id)
        self.db.delete(row)
        self._commit("delete equipment")

    # ---------- WAREHOUSES ----------
    def list_warehouses(self, project_id: uuid.UUID) -> List[Warehouse]:
        rows = (
            self.db.query(IntermediateWarehouse)
            .filter(IntermediateWarehouse.project_id == project_id)
            .order_by(IntermediateWarehouse.type, IntermediateWarehouse.position_order)
            .all()
        )
        return [Warehouse.model_validate(r) for r in rows]

    def get_warehouse(self, warehouse_id: uuid.UUID) -> Warehouse:
        row = self.db.query(IntermediateWarehouse).filter(IntermediateWarehouse.id == warehouse_id).first()
        if not row:
            raise NotFound("Warehouse", warehouse_id)
        return Warehouse.model_validate(row)

    def max_warehouse_order(self, project_id: uuid.UUID, type_: str) -> int:
        value = (
            self.db.query(func.max(IntermediateWarehouse.position_order))
            .filter(IntermediateWarehouse.project_id == project_id, IntermediateWarehouse.type == type_)
            .scalar()
        )
        return -1 if value is None else int(value)

    def insert_warehouse(self, project_id: uuid.UUID, name: str, type_: str, position_order: int) -> Warehouse:
        row = IntermediateWarehouse(project_id=project_id, name=name, type=type_, position_order=position_order)
        self.db.add(row)
        self._commit("add warehouse")
        self.db.refresh(row)
        return Warehouse.model_validate(row)

    def count_in_warehouse(self, warehouse_id: uuid.UUID) -> int:
        return (
            self.db.query(func.count(ProjectEquipment.id))
            .filter(ProjectEquipment.intermediate_warehouse_id == warehouse_id)
            .scalar()
        ) or 0

    def delete_warehouse(self, warehouse_id: uuid.UUID) -> None:
        row = self.db.query(IntermediateWarehouse).filter(IntermediateWarehouse.id == warehouse_id).first()
        if not row:
            raise NotFound("Warehouse", warehouse_id)
        self.db.delete(row)
        self._commit("delete warehouse")

    # ---------- LOGS ----------
    def append_log(self, entry: Dict) -> EquipmentLog:
        try:
            row = EquipmentLog(**entry)
            self.db.add(row)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise LogWriteFailure(f"Failed to write equipment log: {e}") from e
        return row

    def list_logs(self, project_id: uuid.UUID, limit: int = 500) -> List[EquipmentLog]:
        return (
            self.db.query(EquipmentLog)
            .filter(EquipmentLog.project_id == project_id)
            .order_by(EquipmentLog.created_at.desc())
            .limit(limit)
            .all()
        )

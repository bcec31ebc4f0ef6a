import uuid
from datetime import datetime, date
from typing import List, Optional, Dict, Any, Literal, Union
from enum import Enum

from pydantic import BaseModel, Field, field_validator


UNKNOWN_EQUIPMENT = "Unknown equipment"


# Enums
class EquipmentStatus(str, Enum):
    pending = "pending"
    ready = "ready"
    loading = "loading"
    delivered = "delivered"


class WarehouseType(str, Enum):
    pre_coordination = "pre_coordination"
    post_coordination = "post_coordination"


class LogAction(str, Enum):
    added = "added"
    removed = "removed"
    status_changed = "status_changed"
    position_changed = "position_changed"
    warehouse_created = "warehouse_created"
    warehouse_deleted = "warehouse_deleted"


class ProjectStatus(str, Enum):
    active = "active"
    completed = "completed"
    pending = "pending"


# Records handed to the engine
class EquipmentRecord(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    department_id: uuid.UUID
    equipment_id: Optional[uuid.UUID] = None
    is_custom: bool = False
    custom_name: Optional[str] = None
    custom_description: Optional[str] = None
    project_parent_id: Optional[uuid.UUID] = None
    status: EquipmentStatus = EquipmentStatus.pending
    intermediate_warehouse_id: Optional[uuid.UUID] = None
    quantity: int = Field(default=1, ge=1)
    # joined from the catalog row when equipment_id is set
    catalog_name: Optional[str] = None
    catalog_parent_id: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_row(cls, row) -> "EquipmentRecord":
        catalog = getattr(row, "equipment", None)
        return cls(
            id=row.id,
            project_id=row.project_id,
            department_id=row.department_id,
            equipment_id=row.equipment_id,
            is_custom=bool(row.is_custom),
            custom_name=row.custom_name,
            custom_description=row.custom_description,
            project_parent_id=row.project_parent_id,
            status=row.status,
            intermediate_warehouse_id=row.intermediate_warehouse_id,
            quantity=row.quantity or 1,
            catalog_name=catalog.name if catalog else None,
            catalog_parent_id=catalog.parent_id if catalog else None,
            created_at=row.created_at,
        )

    @property
    def display_name(self) -> str:
        if self.is_custom:
            return self.custom_name or UNKNOWN_EQUIPMENT
        return self.catalog_name or UNKNOWN_EQUIPMENT

    @property
    def position(self):
        """The (status, warehouse) pair accessories must share to travel with their parent."""
        return (self.status, self.intermediate_warehouse_id)


class WarehouseBase(BaseModel):
    name: str
    type: WarehouseType

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        v = str(v or "").strip()
        if not v:
            raise ValueError("Warehouse name is required")
        return v


class WarehouseCreate(WarehouseBase):
    pass


class Warehouse(WarehouseBase):
    id: uuid.UUID
    project_id: uuid.UUID
    position_order: int = 0

    class Config:
        from_attributes = True


class ProjectInfo(BaseModel):
    id: uuid.UUID
    name: str
    reverse_flow: bool = False
    status: Optional[ProjectStatus] = None
    location: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    class Config:
        from_attributes = True


# Sources for add_equipment
class CatalogSource(BaseModel):
    kind: Literal["catalog"] = "catalog"
    equipment_id: uuid.UUID
    description: Optional[str] = None


class CustomSource(BaseModel):
    kind: Literal["custom"] = "custom"
    name: str
    description: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        v = str(v or "").strip()
        if not v:
            raise ValueError("Equipment name is required")
        return v


EquipmentSource = Union[CatalogSource, CustomSource]


# Requests
class EquipmentAddRequest(BaseModel):
    department_id: uuid.UUID
    source: EquipmentSource = Field(discriminator="kind")


class MoveRequestBody(BaseModel):
    new_status: EquipmentStatus
    warehouse_id: Optional[uuid.UUID] = None
    department_id: Optional[uuid.UUID] = None


class ReadyToggleBody(BaseModel):
    ready: bool


class DropTargetBody(BaseModel):
    kind: Literal["department", "warehouse", "coordination", "destination"]
    target_id: Optional[uuid.UUID] = None


class ProjectDepartmentCreate(BaseModel):
    department_id: uuid.UUID


# Responses
class EquipmentResponse(BaseModel):
    id: uuid.UUID
    department_id: uuid.UUID
    equipment_id: Optional[uuid.UUID] = None
    name: str
    is_custom: bool
    custom_description: Optional[str] = None
    project_parent_id: Optional[uuid.UUID] = None
    status: EquipmentStatus
    intermediate_warehouse_id: Optional[uuid.UUID] = None
    quantity: int
    draggable: bool = False

    @classmethod
    def from_record(cls, record: EquipmentRecord, draggable: bool = False) -> "EquipmentResponse":
        return cls(
            id=record.id,
            department_id=record.department_id,
            equipment_id=record.equipment_id,
            name=record.display_name,
            is_custom=record.is_custom,
            custom_description=record.custom_description,
            project_parent_id=record.project_parent_id,
            status=record.status,
            intermediate_warehouse_id=record.intermediate_warehouse_id,
            quantity=record.quantity,
            draggable=draggable,
        )


class TreeNodeResponse(BaseModel):
    equipment: EquipmentResponse
    accessories: List[EquipmentResponse] = []


class BoardResponse(BaseModel):
    project: ProjectInfo
    coordination_label: str
    destination_label: str
    departments: Dict[str, List[TreeNodeResponse]]
    warehouses: Dict[str, List[TreeNodeResponse]]
    coordination: List[TreeNodeResponse]
    destination: List[TreeNodeResponse]


class MoveResponse(BaseModel):
    equipment: EquipmentResponse
    moved_accessory_ids: List[uuid.UUID] = []
    warning: Optional[str] = None
    refresh: bool = True


class AddEquipmentResponse(BaseModel):
    equipment: EquipmentResponse
    accessories: List[EquipmentResponse] = []
    warning: Optional[str] = None


class CanDropResponse(BaseModel):
    allowed: bool
    reason: Optional[str] = None


class ProjectDepartmentResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    department_id: uuid.UUID
    position_order: int

    class Config:
        from_attributes = True


class EquipmentLogResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    action_type: LogAction
    equipment_id: Optional[uuid.UUID] = None
    project_equipment_id: Optional[uuid.UUID] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    user_id: Optional[uuid.UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True

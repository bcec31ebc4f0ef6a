import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_actor
from ..errors import ChecklistError, InvalidTransition, NotFound, PermissionDenied, PersistenceError, RuleViolation
from ..schemas.checklist import (
    AddEquipmentResponse,
    BoardResponse,
    CanDropResponse,
    DropTargetBody,
    EquipmentAddRequest,
    EquipmentLogResponse,
    EquipmentResponse,
    MoveRequestBody,
    MoveResponse,
    ProjectDepartmentCreate,
    ProjectDepartmentResponse,
    ReadyToggleBody,
    TreeNodeResponse,
    Warehouse,
    WarehouseCreate,
)
from ..services.checklist_service import ChecklistService
from ..services.hierarchy import TreeNode
from ..services.permissions import ActorContext
from ..services.store import EquipmentStore
from ..services.transitions import can_drag


router = APIRouter(prefix="/projects", tags=["checklist"])


def get_service(db: Session = Depends(get_db), actor: ActorContext = Depends(get_actor)) -> ChecklistService:
    return ChecklistService(EquipmentStore(db), actor)


def _http_error(e: ChecklistError) -> HTTPException:
    if isinstance(e, PermissionDenied):
        return HTTPException(status_code=403, detail=e.message)
    if isinstance(e, NotFound):
        return HTTPException(status_code=404, detail=e.message)
    if isinstance(e, (InvalidTransition, RuleViolation)):
        return HTTPException(status_code=400, detail=e.message)
    if isinstance(e, PersistenceError):
        return HTTPException(status_code=500, detail="Could not save changes")
    return HTTPException(status_code=500, detail=e.message)


def _node(node: TreeNode, actor: ActorContext) -> TreeNodeResponse:
    return TreeNodeResponse(
        equipment=EquipmentResponse.from_record(node.record, draggable=can_drag(node.record, actor)),
        accessories=[EquipmentResponse.from_record(a) for a in node.accessories],
    )


def _nodes(nodes: List[TreeNode], actor: ActorContext) -> List[TreeNodeResponse]:
    return [_node(n, actor) for n in nodes]


# ---------- BOARD ----------
@router.get("/{project_id}/board", response_model=BoardResponse)
def get_board(project_id: uuid.UUID, service: ChecklistService = Depends(get_service)):
    try:
        view = service.board(project_id)
    except ChecklistError as e:
        raise _http_error(e)
    actor = service.actor
    return BoardResponse(
        project=view.project,
        coordination_label=view.policy.coordination_label,
        destination_label=view.policy.destination_label,
        departments={str(k): _nodes(v, actor) for k, v in view.board.departments.items()},
        warehouses={str(k): _nodes(v, actor) for k, v in view.board.warehouses.items()},
        coordination=_nodes(view.board.coordination, actor),
        destination=_nodes(view.board.destination, actor),
    )


# ---------- EQUIPMENT ----------
@router.get("/{project_id}/equipment", response_model=List[EquipmentResponse])
def list_equipment(project_id: uuid.UUID, service: ChecklistService = Depends(get_service)):
    try:
        records = service.list_equipment(project_id)
    except ChecklistError as e:
        raise _http_error(e)
    return [EquipmentResponse.from_record(r, draggable=can_drag(r, service.actor)) for r in records]


@router.post("/{project_id}/equipment", response_model=AddEquipmentResponse)
def add_equipment(project_id: uuid.UUID, payload: EquipmentAddRequest, service: ChecklistService = Depends(get_service)):
    try:
        outcome = service.add_equipment(project_id, payload.department_id, payload.source)
    except ChecklistError as e:
        raise _http_error(e)
    return AddEquipmentResponse(
        equipment=EquipmentResponse.from_record(outcome.record, draggable=can_drag(outcome.record, service.actor)),
        accessories=[EquipmentResponse.from_record(a) for a in outcome.accessories],
        warning=outcome.warning,
    )


@router.delete("/{project_id}/equipment/{record_id}")
def remove_equipment(project_id: uuid.UUID, record_id: uuid.UUID, service: ChecklistService = Depends(get_service)):
    try:
        record = service.store.get_equipment(record_id)
        if record.project_id != project_id:
            raise NotFound("Equipment", record_id)
        service.remove_equipment(record_id)
    except ChecklistError as e:
        raise _http_error(e)
    return {"status": "ok"}


def _move_response(outcome, actor: ActorContext) -> MoveResponse:
    return MoveResponse(
        equipment=EquipmentResponse.from_record(outcome.record, draggable=can_drag(outcome.record, actor)),
        moved_accessory_ids=outcome.moved_accessory_ids,
        warning=outcome.warning,
        refresh=outcome.refresh,
    )


@router.post("/{project_id}/equipment/{record_id}/move", response_model=MoveResponse)
def move_equipment(project_id: uuid.UUID, record_id: uuid.UUID, payload: MoveRequestBody, service: ChecklistService = Depends(get_service)):
    try:
        record = service.store.get_equipment(record_id)
        if record.project_id != project_id:
            raise NotFound("Equipment", record_id)
        outcome = service.move_equipment(record_id, payload.new_status, payload.warehouse_id, payload.department_id)
    except ChecklistError as e:
        raise _http_error(e)
    return _move_response(outcome, service.actor)


@router.put("/{project_id}/equipment/{record_id}/ready", response_model=MoveResponse)
def set_ready(project_id: uuid.UUID, record_id: uuid.UUID, payload: ReadyToggleBody, service: ChecklistService = Depends(get_service)):
    try:
        record = service.store.get_equipment(record_id)
        if record.project_id != project_id:
            raise NotFound("Equipment", record_id)
        outcome = service.set_ready(record_id, payload.ready)
    except ChecklistError as e:
        raise _http_error(e)
    return _move_response(outcome, service.actor)


@router.post("/{project_id}/equipment/{record_id}/can-drop", response_model=CanDropResponse)
def can_drop(project_id: uuid.UUID, record_id: uuid.UUID, payload: DropTargetBody, service: ChecklistService = Depends(get_service)):
    try:
        record = service.store.get_equipment(record_id)
        if record.project_id != project_id:
            raise NotFound("Equipment", record_id)
        allowed, reason = service.drop_check(record_id, payload.kind, payload.target_id)
    except ChecklistError as e:
        raise _http_error(e)
    return CanDropResponse(allowed=allowed, reason=reason)


# ---------- WAREHOUSES ----------
@router.get("/{project_id}/warehouses", response_model=List[Warehouse])
def list_warehouses(project_id: uuid.UUID, service: ChecklistService = Depends(get_service)):
    try:
        return service.list_warehouses(project_id)
    except ChecklistError as e:
        raise _http_error(e)


@router.post("/{project_id}/warehouses", response_model=Warehouse)
def create_warehouse(project_id: uuid.UUID, payload: WarehouseCreate, service: ChecklistService = Depends(get_service)):
    try:
        return service.add_warehouse(project_id, payload.name, payload.type)
    except ChecklistError as e:
        raise _http_error(e)


@router.delete("/{project_id}/warehouses/{warehouse_id}")
def delete_warehouse(project_id: uuid.UUID, warehouse_id: uuid.UUID, service: ChecklistService = Depends(get_service)):
    try:
        warehouse = service.store.get_warehouse(warehouse_id)
        if warehouse.project_id != project_id:
            raise NotFound("Warehouse", warehouse_id)
        service.remove_warehouse(warehouse_id)
    except ChecklistError as e:
        raise _http_error(e)
    return {"status": "ok"}


# ---------- PROJECT DEPARTMENTS ----------
@router.post("/{project_id}/departments", response_model=ProjectDepartmentResponse)
def add_project_department(project_id: uuid.UUID, payload: ProjectDepartmentCreate, service: ChecklistService = Depends(get_service)):
    try:
        return service.add_project_department(project_id, payload.department_id)
    except ChecklistError as e:
        raise _http_error(e)


@router.delete("/{project_id}/departments/{project_department_id}")
def remove_project_department(project_id: uuid.UUID, project_department_id: uuid.UUID, service: ChecklistService = Depends(get_service)):
    try:
        row = service.store.get_project_department(project_department_id)
        if row.project_id != project_id:
            raise NotFound("Project department", project_department_id)
        service.remove_project_department(project_department_id)
    except ChecklistError as e:
        raise _http_error(e)
    return {"status": "ok"}


# ---------- LOGS ----------
@router.get("/{project_id}/logs", response_model=List[EquipmentLogResponse])
def list_logs(project_id: uuid.UUID, limit: Optional[int] = Query(default=None, ge=1, le=500), service: ChecklistService = Depends(get_service)):
    try:
        return service.list_logs(project_id, limit=limit)
    except ChecklistError as e:
        raise _http_error(e)

"""
Equipment audit logging service.
Append-only log with integrity hashing. A failed log write never blocks or
undoes the operation it describes.
"""
import hashlib
import json
import uuid
from datetime import datetime
from typing import Optional, Dict, Any, Mapping

import structlog

from ..config import settings
from ..errors import LogWriteFailure
from ..schemas.checklist import EquipmentRecord, EquipmentStatus, LogAction, Warehouse

logger = structlog.get_logger(__name__)

DEPARTMENT_LABEL = "Department"
COORDINATION_LABEL = "Coordination"
DELIVERED_LABEL = "Delivered"
UNKNOWN_WAREHOUSE_LABEL = "Warehouse: unknown"


def location_label(
    status: EquipmentStatus,
    warehouse_id: Optional[uuid.UUID],
    warehouses: Mapping[uuid.UUID, Warehouse],
) -> str:
    """Human readable location for a (status, warehouse) pair."""
    if warehouse_id:
        warehouse = warehouses.get(warehouse_id)
        return f"Warehouse: {warehouse.name}" if warehouse else UNKNOWN_WAREHOUSE_LABEL
    if status == EquipmentStatus.loading:
        return COORDINATION_LABEL
    if status == EquipmentStatus.delivered:
        return DELIVERED_LABEL
    return DEPARTMENT_LABEL


def integrity_hash(entry: Dict[str, Any], secret: Optional[str] = None) -> Optional[str]:
    if secret is None:
        secret = settings.audit_secret or settings.jwt_secret
    if not secret:
        return None
    # Remove None values and sort keys for consistency
    canonical_data = {k: v for k, v in entry.items() if v is not None}
    canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)
    return hashlib.sha256(f"{canonical_json}:{secret}".encode()).hexdigest()


def create_equipment_log(
    store,
    project_id: uuid.UUID,
    action: LogAction,
    actor_id: Optional[uuid.UUID] = None,
    equipment_id: Optional[uuid.UUID] = None,
    project_equipment_id: Optional[uuid.UUID] = None,
    old_value: Optional[str] = None,
    new_value: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
):
    """
    Append an equipment log entry.

    Args:
        store: EquipmentStore used for the write
        project_id: Owning project
        action: added|removed|status_changed|position_changed|warehouse_created|warehouse_deleted
        actor_id: User who performed the action
        equipment_id: Catalog equipment id, if any
        project_equipment_id: Checklist record id, if any
        old_value / new_value: Human readable before/after values
        details: Structured context (department, custom flag, statuses, warehouse ids)

    Returns:
        The stored row, or None when the write failed
    """
    entry = {
        "project_id": project_id,
        "action_type": LogAction(action).value,
        "equipment_id": equipment_id,
        "project_equipment_id": project_equipment_id,
        "old_value": old_value,
        "new_value": new_value,
        "details": _jsonable(details),
        "user_id": actor_id,
        "created_at": datetime.utcnow(),
    }
    entry["integrity_hash"] = integrity_hash(entry)
    try:
        return store.append_log(entry)
    except LogWriteFailure as e:
        logger.warning("equipment_log_write_failed", project_id=str(project_id), action=entry["action_type"], error=str(e))
        return None


def _jsonable(details: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if details is None:
        return None
    return json.loads(json.dumps(details, default=str))


def record_details(record: EquipmentRecord, **extra) -> Dict[str, Any]:
    details = {
        "equipment_name": record.display_name,
        "department_id": record.department_id,
        "is_custom": record.is_custom,
    }
    details.update(extra)
    return details

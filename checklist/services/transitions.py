"""
Equipment location/status state machine.

State is two axes: the workflow status (pending|ready|loading|delivered) and a
location derived from it plus the optional intermediate warehouse:

    warehouse set        -> Warehouse(id)
    pending | ready      -> Department
    loading              -> Coordination
    delivered            -> Destination

Every legal move is a row in TRANSITIONS. A request that matches no row is
rejected before anything is written.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from ..errors import InvalidTransition, PermissionDenied
from ..schemas.checklist import EquipmentRecord, EquipmentStatus, Warehouse, WarehouseType
from .flow_policy import FlowPolicy, FORWARD
from .hierarchy import is_main, resolve_accessories
from .permissions import ActorContext


class LocationKind(str, Enum):
    department = "department"
    warehouse = "warehouse"
    coordination = "coordination"
    destination = "destination"


class TargetKind(str, Enum):
    department = "department"
    pre_coordination = "pre_coordination"
    post_coordination = "post_coordination"
    coordination = "coordination"
    destination = "destination"


@dataclass(frozen=True)
class Location:
    kind: LocationKind
    warehouse_id: Optional[uuid.UUID] = None
    department_id: Optional[uuid.UUID] = None


def location_of(record: EquipmentRecord) -> Location:
    if record.intermediate_warehouse_id:
        return Location(LocationKind.warehouse, warehouse_id=record.intermediate_warehouse_id)
    if record.status == EquipmentStatus.loading:
        return Location(LocationKind.coordination)
    if record.status == EquipmentStatus.delivered:
        return Location(LocationKind.destination)
    return Location(LocationKind.department, department_id=record.department_id)


def _kind_for(status: EquipmentStatus, in_warehouse: bool) -> LocationKind:
    if in_warehouse:
        return LocationKind.warehouse
    if status == EquipmentStatus.loading:
        return LocationKind.coordination
    if status == EquipmentStatus.delivered:
        return LocationKind.destination
    return LocationKind.department


Source = Tuple[EquipmentStatus, LocationKind]
S = EquipmentStatus
L = LocationKind


def _everywhere(statuses) -> FrozenSet[Source]:
    return frozenset((s, k) for s in statuses for k in LocationKind)


@dataclass(frozen=True)
class TransitionRule:
    name: str
    target: TargetKind
    sources: Callable[[FlowPolicy], FrozenSet[Source]]
    result: Optional[EquipmentStatus]  # None keeps the current status
    event: str = ""

    def resulting_status(self, current: EquipmentStatus) -> EquipmentStatus:
        return self.result or current


TRANSITIONS: Tuple[TransitionRule, ...] = (
    TransitionRule(
        name="mark_ready",
        target=TargetKind.department,
        sources=lambda p: frozenset({(S.pending, L.department)}),
        result=S.ready,
        event="mark ready",
    ),
    TransitionRule(
        name="mark_pending",
        target=TargetKind.department,
        sources=lambda p: frozenset({(S.ready, L.department)}),
        result=S.pending,
        event="mark pending",
    ),
    TransitionRule(
        name="return_to_department",
        target=TargetKind.department,
        sources=lambda p: frozenset({(S.ready, L.warehouse), (S.loading, L.warehouse), (S.loading, L.coordination)}),
        result=S.pending,
        event="drop into department",
    ),
    TransitionRule(
        name="into_pre_coordination",
        target=TargetKind.pre_coordination,
        sources=lambda p: _everywhere(p.pre_coordination_statuses),
        result=None,
        event="drop into pre-coordination warehouse",
    ),
    TransitionRule(
        name="into_coordination",
        target=TargetKind.coordination,
        sources=lambda p: _everywhere(p.coordination_statuses) | {(S.loading, L.warehouse)},
        result=S.loading,
        event="drop into coordination",
    ),
    TransitionRule(
        name="into_post_coordination",
        target=TargetKind.post_coordination,
        sources=lambda p: frozenset({(S.loading, L.coordination), (S.loading, L.warehouse)}),
        result=None,
        event="drop into post-coordination warehouse",
    ),
    TransitionRule(
        name="into_destination",
        target=TargetKind.destination,
        sources=lambda p: frozenset({(S.loading, L.coordination), (S.loading, L.warehouse)}),
        result=S.delivered,
        event="drop into destination",
    ),
)


@dataclass(frozen=True)
class MoveRequest:
    new_status: EquipmentStatus
    warehouse_id: Optional[uuid.UUID] = None
    department_id: Optional[uuid.UUID] = None


@dataclass
class MoveContext:
    """Everything a guard needs besides the record itself."""
    policy: FlowPolicy = FORWARD
    warehouses: Mapping[uuid.UUID, Warehouse] = field(default_factory=dict)
    actor: Optional[ActorContext] = None
    strict_roles: bool = False

    @classmethod
    def build(cls, policy: FlowPolicy, warehouses: Sequence[Warehouse], actor: Optional[ActorContext] = None, strict_roles: bool = False) -> "MoveContext":
        return cls(policy=policy, warehouses={w.id: w for w in warehouses}, actor=actor, strict_roles=strict_roles)


@dataclass
class MovePlan:
    record: EquipmentRecord
    rule: TransitionRule
    old_location: Location
    new_location: Location
    new_status: EquipmentStatus
    new_warehouse_id: Optional[uuid.UUID]
    accessories: List[EquipmentRecord] = field(default_factory=list)

    @property
    def is_status_toggle(self) -> bool:
        return self.rule.name in ("mark_ready", "mark_pending")


def _reject(record: EquipmentRecord, request: MoveRequest, message: str = "Cannot move equipment here") -> InvalidTransition:
    return InvalidTransition(message, current_status=record.status.value, requested_status=request.new_status.value)


def _target_of(record: EquipmentRecord, request: MoveRequest, ctx: MoveContext) -> Tuple[TargetKind, Location]:
    if request.warehouse_id:
        warehouse = ctx.warehouses.get(request.warehouse_id)
        if warehouse is None or warehouse.project_id != record.project_id:
            raise _reject(record, request, "Unknown warehouse")
        kind = TargetKind.pre_coordination if warehouse.type == WarehouseType.pre_coordination else TargetKind.post_coordination
        return kind, Location(LocationKind.warehouse, warehouse_id=warehouse.id)
    if request.new_status == EquipmentStatus.loading:
        return TargetKind.coordination, Location(LocationKind.coordination)
    if request.new_status == EquipmentStatus.delivered:
        return TargetKind.destination, Location(LocationKind.destination)
    department_id = request.department_id or record.department_id
    return TargetKind.department, Location(LocationKind.department, department_id=department_id)


def _match_rule(record: EquipmentRecord, request: MoveRequest, target: TargetKind, ctx: MoveContext) -> Optional[TransitionRule]:
    source = (record.status, location_of(record).kind)
    for rule in TRANSITIONS:
        if rule.target != target or source not in rule.sources(ctx.policy):
            continue
        if rule.resulting_status(record.status) != request.new_status:
            continue
        return rule
    return None


def _check_actor(record: EquipmentRecord, rule: TransitionRule, old: Location, new: Location, ctx: MoveContext) -> None:
    actor = ctx.actor
    if actor is None:
        return
    if not actor.can_manage:
        raise PermissionDenied("You are not allowed to move equipment in this project", current_status=record.status.value)

    if rule.target == TargetKind.coordination:
        reason = ctx.policy.coordination_blocked_for(record.status, actor)
        if reason:
            raise PermissionDenied(reason, current_status=record.status.value, requested_status=EquipmentStatus.loading.value)

    if not ctx.strict_roles or rule.name in ("mark_ready", "mark_pending"):
        return
    checks = []
    if old.kind == LocationKind.department and new.kind != LocationKind.department:
        checks.append(actor.can_move_from_departments)
    if new.kind == LocationKind.coordination:
        checks.append(actor.can_move_to_coordination)
    if old.kind == LocationKind.coordination:
        checks.append(actor.can_move_from_coordination)
    if LocationKind.warehouse in (old.kind, new.kind):
        checks.append(actor.can_move_warehouses)
    if not all(checks):
        raise PermissionDenied("Your role does not allow this move", current_status=record.status.value)


def check_transition(record: EquipmentRecord, request: MoveRequest, ctx: MoveContext) -> Tuple[TransitionRule, Location]:
    """Validate a move of a single record. Raises InvalidTransition (or PermissionDenied)."""
    target, new_location = _target_of(record, request, ctx)
    old_location = location_of(record)

    if new_location == old_location and record.status == request.new_status:
        raise _reject(record, request, "Equipment is already there")
    if target == TargetKind.department and new_location.department_id != record.department_id:
        raise _reject(record, request, "Equipment can only return to its own department")

    rule = _match_rule(record, request, target, ctx)
    if rule is None:
        raise _reject(record, request)

    _check_actor(record, rule, old_location, new_location, ctx)
    return rule, new_location


def can_drag(record: EquipmentRecord, actor: Optional[ActorContext] = None) -> bool:
    """Only main items can be picked up; accessories travel with their parent."""
    if not is_main(record):
        return False
    if actor is not None and not actor.can_manage:
        return False
    return True


def request_for_drop(record: EquipmentRecord, target_kind: str, target_id: Optional[uuid.UUID] = None) -> MoveRequest:
    """Translate a drop onto a tile into the move it would perform."""
    if target_kind == "warehouse":
        if target_id is None:
            raise InvalidTransition("Unknown warehouse", current_status=record.status.value)
        return MoveRequest(new_status=record.status, warehouse_id=target_id)
    if target_kind == "coordination":
        return MoveRequest(new_status=EquipmentStatus.loading)
    if target_kind == "destination":
        return MoveRequest(new_status=EquipmentStatus.delivered)
    if target_kind == "department":
        return MoveRequest(new_status=EquipmentStatus.pending, department_id=target_id)
    raise ValueError(f"Unknown drop target: {target_kind}")


def drop_verdict(record: EquipmentRecord, target_kind: str, ctx: MoveContext, target_id: Optional[uuid.UUID] = None) -> Tuple[bool, Optional[str]]:
    """Whether a drop onto a tile would be accepted, with the rejection reason."""
    if not can_drag(record, ctx.actor):
        return False, "This equipment cannot be moved on its own"
    try:
        check_transition(record, request_for_drop(record, target_kind, target_id), ctx)
    except InvalidTransition as e:
        return False, e.message
    return True, None


def can_drop(record: EquipmentRecord, target_kind: str, ctx: MoveContext, target_id: Optional[uuid.UUID] = None) -> bool:
    return drop_verdict(record, target_kind, ctx, target_id)[0]


def plan_move(record: EquipmentRecord, all_records: Sequence[EquipmentRecord], request: MoveRequest, ctx: MoveContext) -> MovePlan:
    """Validate a move and collect the accessories that travel with the record."""
    if not is_main(record):
        raise _reject(record, request, "Accessories move together with their main equipment")
    rule, new_location = check_transition(record, request, ctx)
    new_status = rule.resulting_status(record.status)
    accessories = [a for a in resolve_accessories(record, all_records) if a.position == record.position]
    return MovePlan(
        record=record,
        rule=rule,
        old_location=location_of(record),
        new_location=new_location,
        new_status=new_status,
        new_warehouse_id=new_location.warehouse_id,
        accessories=accessories,
    )


def next_states(status: EquipmentStatus, in_warehouse: bool, policy: FlowPolicy = FORWARD) -> FrozenSet[Tuple[EquipmentStatus, TargetKind]]:
    """Enumerate the legal (status, target) outcomes for a (status, warehouse presence) pair."""
    source = (status, _kind_for(status, in_warehouse))
    return frozenset(
        (rule.resulting_status(status), rule.target)
        for rule in TRANSITIONS
        if source in rule.sources(policy)
    )


def guard_table(policy: FlowPolicy = FORWARD) -> Dict[Tuple[EquipmentStatus, bool], FrozenSet[Tuple[EquipmentStatus, TargetKind]]]:
    return {
        (status, in_warehouse): next_states(status, in_warehouse, policy)
        for status in EquipmentStatus
        for in_warehouse in (False, True)
    }

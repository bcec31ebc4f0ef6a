"""
Accessory hierarchy for project equipment.

An item is an accessory either through an explicit project_parent_id (the only
option for custom equipment) or, for catalog equipment, through the catalog
item's parent_id. The link is classified once per record and every caller goes
through classify_link / resolve_accessories.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Union

from ..schemas.checklist import EquipmentRecord, EquipmentStatus, Warehouse


@dataclass(frozen=True)
class ExplicitLink:
    parent_id: uuid.UUID


@dataclass(frozen=True)
class CatalogDerived:
    catalog_parent_id: uuid.UUID


@dataclass(frozen=True)
class NoLink:
    pass


MAIN = NoLink()

AccessoryLink = Union[ExplicitLink, CatalogDerived, NoLink]


def classify_link(record: EquipmentRecord) -> AccessoryLink:
    if record.project_parent_id:
        return ExplicitLink(record.project_parent_id)
    if record.catalog_parent_id:
        return CatalogDerived(record.catalog_parent_id)
    return MAIN


def is_main(record: EquipmentRecord) -> bool:
    return isinstance(classify_link(record), NoLink)


def _ordered(records: Iterable[EquipmentRecord]) -> List[EquipmentRecord]:
    return sorted(records, key=lambda r: (r.created_at is None, r.created_at or 0, str(r.id)))


def resolve_accessories(record: EquipmentRecord, all_records: Sequence[EquipmentRecord]) -> List[EquipmentRecord]:
    """Return the accessories of record, explicit links first, catalog parents as fallback."""
    explicit = [
        r for r in all_records
        if r.id != record.id and classify_link(r) == ExplicitLink(record.id)
    ]
    if explicit:
        return _ordered(explicit)
    if not record.equipment_id:
        return []
    derived = [
        r for r in all_records
        if r.id != record.id
        and r.project_id == record.project_id
        and r.department_id == record.department_id
        and classify_link(r) == CatalogDerived(record.equipment_id)
    ]
    return _ordered(derived)


@dataclass
class TreeNode:
    record: EquipmentRecord
    accessories: List[EquipmentRecord] = field(default_factory=list)


def build_display_tree(records: Sequence[EquipmentRecord]) -> List[TreeNode]:
    """Group records into main items and their accessories. Rendering only."""
    records = list(records)
    return [
        TreeNode(record=main, accessories=resolve_accessories(main, records))
        for main in _ordered(r for r in records if is_main(r))
    ]


@dataclass
class Board:
    departments: Dict[uuid.UUID, List[TreeNode]] = field(default_factory=dict)
    warehouses: Dict[uuid.UUID, List[TreeNode]] = field(default_factory=dict)
    coordination: List[TreeNode] = field(default_factory=list)
    destination: List[TreeNode] = field(default_factory=list)


def _in_tile(main: EquipmentRecord, node_records: List[EquipmentRecord]) -> List[TreeNode]:
    return [TreeNode(record=main, accessories=[a for a in node_records if a.position == main.position])]


def group_by_location(
    records: Sequence[EquipmentRecord],
    warehouses: Sequence[Warehouse],
    department_ids: Optional[Sequence[uuid.UUID]] = None,
) -> Board:
    """Lay the project's main items out on tiles: department columns, warehouses, coordination, destination."""
    board = Board()
    for dept_id in department_ids or []:
        board.departments[dept_id] = []
    for warehouse in warehouses:
        board.warehouses[warehouse.id] = []

    for node in build_display_tree(records):
        main = node.record
        tile_nodes = _in_tile(main, node.accessories)
        if main.intermediate_warehouse_id:
            board.warehouses.setdefault(main.intermediate_warehouse_id, []).extend(tile_nodes)
        elif main.status == EquipmentStatus.loading:
            board.coordination.extend(tile_nodes)
        elif main.status == EquipmentStatus.delivered:
            board.destination.extend(tile_nodes)
        else:
            board.departments.setdefault(main.department_id, []).extend(tile_nodes)
    return board

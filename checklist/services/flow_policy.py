"""
Forward (dispatch) and reverse (equipment return) flow rules.

In reverse flow, delivered items represent equipment standing on the
construction site. They may wait in pre-coordination warehouses, and only a
coordination manager may pull them back into coordination.
"""
from dataclasses import dataclass
from typing import FrozenSet, Optional

from ..schemas.checklist import EquipmentStatus


@dataclass(frozen=True)
class FlowPolicy:
    name: str
    pre_coordination_statuses: FrozenSet[EquipmentStatus]
    coordination_statuses: FrozenSet[EquipmentStatus]
    site_pull_requires_manager: bool
    coordination_label: str
    destination_label: str

    def coordination_blocked_for(self, status: EquipmentStatus, actor) -> Optional[str]:
        """Return a reason when the actor may not pull this item into coordination, else None."""
        if not self.site_pull_requires_manager or status != EquipmentStatus.delivered:
            return None
        if actor is None:
            return None
        perms = actor.coordination
        if perms.is_worker and not perms.is_manager:
            return "Workers cannot move equipment from the construction site"
        return None


FORWARD = FlowPolicy(
    name="forward",
    pre_coordination_statuses=frozenset({EquipmentStatus.ready}),
    coordination_statuses=frozenset({EquipmentStatus.pending, EquipmentStatus.ready, EquipmentStatus.delivered}),
    site_pull_requires_manager=False,
    coordination_label="Coordination",
    destination_label="Destination",
)

REVERSE = FlowPolicy(
    name="reverse",
    pre_coordination_statuses=frozenset({EquipmentStatus.ready, EquipmentStatus.delivered}),
    coordination_statuses=frozenset({EquipmentStatus.pending, EquipmentStatus.ready, EquipmentStatus.delivered}),
    site_pull_requires_manager=True,
    coordination_label="Shipment Coordination",
    destination_label="Construction Site",
)


def policy_for(reverse_flow: bool) -> FlowPolicy:
    return REVERSE if reverse_flow else FORWARD

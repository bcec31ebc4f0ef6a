import uuid

from checklist.schemas.checklist import EquipmentStatus, WarehouseType
from checklist.services.hierarchy import (
    MAIN,
    CatalogDerived,
    ExplicitLink,
    build_display_tree,
    classify_link,
    group_by_location,
    is_main,
    resolve_accessories,
)

from conftest import DEPT_ID, OTHER_DEPT_ID, make_record, make_warehouse


GENERATOR = uuid.uuid4()


def test_classify_link_variants():
    main = make_record()
    explicit = make_record(project_parent_id=main.id)
    derived = make_record(equipment_id=uuid.uuid4(), catalog_parent_id=GENERATOR)

    assert classify_link(main) == MAIN
    assert classify_link(explicit) == ExplicitLink(main.id)
    assert classify_link(derived) == CatalogDerived(GENERATOR)
    assert is_main(main) and not is_main(explicit) and not is_main(derived)


def test_explicit_link_wins_over_catalog_parent():
    acc = make_record(equipment_id=uuid.uuid4(), catalog_parent_id=GENERATOR, project_parent_id=uuid.uuid4())
    assert isinstance(classify_link(acc), ExplicitLink)


def test_main_without_links_has_no_accessories():
    main = make_record(equipment_id=GENERATOR)
    other = make_record(seq=1, is_custom=True, custom_name="Ladder")
    assert resolve_accessories(main, [main, other]) == []


def test_explicit_accessories_in_creation_order():
    main = make_record(is_custom=True, custom_name="Scaffold")
    second = make_record(seq=2, project_parent_id=main.id)
    first = make_record(seq=1, project_parent_id=main.id)
    assert resolve_accessories(main, [main, second, first]) == [first, second]


def test_catalog_fallback_only_without_explicit_links():
    main = make_record(equipment_id=GENERATOR)
    derived = make_record(seq=1, equipment_id=uuid.uuid4(), catalog_parent_id=GENERATOR)
    assert resolve_accessories(main, [main, derived]) == [derived]

    explicit = make_record(seq=2, project_parent_id=main.id)
    assert resolve_accessories(main, [main, derived, explicit]) == [explicit]


def test_catalog_fallback_stays_in_department():
    main = make_record(equipment_id=GENERATOR)
    elsewhere = make_record(seq=1, equipment_id=uuid.uuid4(), catalog_parent_id=GENERATOR, department_id=OTHER_DEPT_ID)
    assert resolve_accessories(main, [main, elsewhere]) == []


def test_orphaned_accessory_resolves_to_nobody():
    parent_id = uuid.uuid4()
    orphan = make_record(seq=1, project_parent_id=parent_id)
    survivor = make_record(seq=2, is_custom=True, custom_name="Crane")
    remaining = [orphan, survivor]

    assert all(orphan not in resolve_accessories(r, remaining) for r in remaining)
    tree = build_display_tree(remaining)
    assert [n.record for n in tree] == [survivor]


def test_display_tree_groups_accessories_under_mains():
    main = make_record(is_custom=True, custom_name="Scaffold")
    acc = make_record(seq=1, project_parent_id=main.id)
    lone = make_record(seq=2, is_custom=True, custom_name="Ladder")

    tree = build_display_tree([acc, lone, main])
    assert [n.record.id for n in tree] == [main.id, lone.id]
    assert tree[0].accessories == [acc]
    assert tree[1].accessories == []


def test_group_by_location_places_tiles():
    post = make_warehouse(WarehouseType.post_coordination)
    pending = make_record(is_custom=True, custom_name="A")
    loading = make_record(seq=1, is_custom=True, custom_name="B", status=EquipmentStatus.loading)
    delivered = make_record(seq=2, is_custom=True, custom_name="C", status=EquipmentStatus.delivered)
    parked = make_record(seq=3, is_custom=True, custom_name="D", status=EquipmentStatus.loading, intermediate_warehouse_id=post.id)

    board = group_by_location([pending, loading, delivered, parked], [post], [DEPT_ID, OTHER_DEPT_ID])

    assert [n.record for n in board.departments[DEPT_ID]] == [pending]
    assert board.departments[OTHER_DEPT_ID] == []
    assert [n.record for n in board.coordination] == [loading]
    assert [n.record for n in board.destination] == [delivered]
    assert [n.record for n in board.warehouses[post.id]] == [parked]


def test_group_by_location_leaves_relocated_accessory_off_the_tile():
    main = make_record(is_custom=True, custom_name="Scaffold", status=EquipmentStatus.loading)
    travelling = make_record(seq=1, project_parent_id=main.id, status=EquipmentStatus.loading)
    left_behind = make_record(seq=2, project_parent_id=main.id, status=EquipmentStatus.ready)

    board = group_by_location([main, travelling, left_behind], [])
    assert board.coordination[0].accessories == [travelling]

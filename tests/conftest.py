import os
import uuid
from datetime import datetime, timedelta
from types import SimpleNamespace

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_DB", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from checklist.db import Base
from checklist.models.models import (
    CatalogEquipment,
    Department,
    IntermediateWarehouse,
    Project,
    ProjectDepartment,
    ProjectEquipment,
    Role,
    User,
)
from checklist.schemas.checklist import EquipmentRecord, EquipmentStatus, Warehouse, WarehouseType
from checklist.services.permissions import ADMIN, COORDINATOR, DEPARTMENT_WORKER, SITE_WORKER, build_actor


PROJECT_ID = uuid.UUID("00000000-0000-0000-0000-00000000a001")
DEPT_ID = uuid.UUID("00000000-0000-0000-0000-00000000d001")
OTHER_DEPT_ID = uuid.UUID("00000000-0000-0000-0000-00000000d002")
BASE_TIME = datetime(2024, 1, 1, 8, 0, 0)


def make_record(seq: int = 0, **kw) -> EquipmentRecord:
    """Plain record for engine tests; seq orders records by creation time."""
    values = dict(
        id=uuid.uuid4(),
        project_id=PROJECT_ID,
        department_id=DEPT_ID,
        status=EquipmentStatus.pending,
        created_at=BASE_TIME + timedelta(minutes=seq),
    )
    values.update(kw)
    return EquipmentRecord(**values)


def make_warehouse(type_: WarehouseType, name: str = "W1", project_id: uuid.UUID = PROJECT_ID) -> Warehouse:
    return Warehouse(id=uuid.uuid4(), project_id=project_id, name=name, type=type_, position_order=0)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    session = Session()
    try:
        yield session
    finally:
        session.close()


def _user(db, email: str, role: Role) -> User:
    user = User(email=email, display_name=email.split("@")[0], is_active=True)
    user.roles.append(role)
    db.add(user)
    return user


@pytest.fixture
def seed(db):
    """A project with two departments, a catalog generator with one accessory, and one user per role."""
    roles = {name: Role(name=name) for name in (ADMIN, COORDINATOR, DEPARTMENT_WORKER, SITE_WORKER)}
    db.add_all(roles.values())

    project = Project(name="Harbour Tower", status="active", reverse_flow=False)
    electrical = Department(name="Electrical")
    mechanical = Department(name="Mechanical")
    carpentry = Department(name="Carpentry")
    db.add_all([project, electrical, mechanical, carpentry])
    db.flush()
    db.add_all([
        ProjectDepartment(project_id=project.id, department_id=electrical.id, position_order=0),
        ProjectDepartment(project_id=project.id, department_id=mechanical.id, position_order=1),
    ])

    generator = CatalogEquipment(name="Generator")
    db.add(generator)
    db.flush()
    cable_kit = CatalogEquipment(name="Cable kit", parent_id=generator.id)
    db.add(cable_kit)

    users = {
        ADMIN: _user(db, "admin@example.com", roles[ADMIN]),
        COORDINATOR: _user(db, "coordinator@example.com", roles[COORDINATOR]),
        DEPARTMENT_WORKER: _user(db, "dept@example.com", roles[DEPARTMENT_WORKER]),
        SITE_WORKER: _user(db, "site@example.com", roles[SITE_WORKER]),
    }
    db.commit()

    return SimpleNamespace(
        project=project,
        electrical=electrical,
        mechanical=mechanical,
        carpentry=carpentry,
        generator=generator,
        cable_kit=cable_kit,
        users=users,
        actors={name: build_actor(u.id, [name]) for name, u in users.items()},
    )


@pytest.fixture
def add_row(db):
    """Insert a project_equipment row directly, bypassing the service."""
    counter = {"n": 0}

    def _add(project, department, **kw) -> ProjectEquipment:
        counter["n"] += 1
        values = dict(
            project_id=project.id,
            department_id=department.id,
            status="pending",
            quantity=1,
            is_custom=kw.get("equipment_id") is None,
            custom_name=None if kw.get("equipment_id") else f"Item {counter['n']}",
            created_at=BASE_TIME + timedelta(minutes=counter["n"]),
        )
        values.update(kw)
        row = ProjectEquipment(**values)
        db.add(row)
        db.commit()
        db.refresh(row)
        return row

    return _add


@pytest.fixture
def add_warehouse_row(db):
    def _add(project, type_: str, name: str = "Yard", position_order: int = 0) -> IntermediateWarehouse:
        row = IntermediateWarehouse(project_id=project.id, name=name, type=type_, position_order=position_order)
        db.add(row)
        db.commit()
        db.refresh(row)
        return row

    return _add

"""
Seed script for checklist roles and the default department list.
Safe to run repeatedly: existing rows are left as they are.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Load environment variables first
try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError as e:
    print(f"WARNING: Could not load .env file: {e}")

from checklist.db import Base, SessionLocal, engine
from checklist.models.models import Department, Role
from checklist.services.permissions import DOMAIN_ROLES

DEFAULT_DEPARTMENTS = [
    "Electrical",
    "Mechanical",
    "Carpentry",
    "Welding & Custom Fabrication",
]


def seed_roles():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        for name in DOMAIN_ROLES:
            if db.query(Role).filter(Role.name == name).first():
                print(f"Role '{name}' already exists")
                continue
            db.add(Role(name=name))
            print(f"Created role '{name}'")
        for name in DEFAULT_DEPARTMENTS:
            if db.query(Department).filter(Department.name == name).first():
                continue
            db.add(Department(name=name))
            print(f"Created department '{name}'")
        db.commit()
        print("Roles seeded successfully")
    except Exception as e:
        db.rollback()
        print(f"ERROR: Could not seed roles: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed_roles()

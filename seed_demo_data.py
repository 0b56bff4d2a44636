"""
Seed demo data
Creates two regions, one user per role, a few customers and a small stock
catalogue with opening warehouse balances, then prints a bearer token per
user so the API can be exercised straight away.

Execute from the project root:
    python seed_demo_data.py
"""
import os
import sys

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from sqlalchemy.orm import Session
from fieldservice import roles
from fieldservice.api.deps import create_access_token
from fieldservice.database import SessionLocal, engine, Base
from fieldservice.models import Region, Customer, User, StockItem, ItemKind, WAREHOUSE
from fieldservice.reasons import Enumerated
from fieldservice.services.stock_ledger import StockLedger

REGIONS = ["North", "South"]

USERS = [
    {"name": "Alice Admin", "email": "superadmin@example.com", "role": roles.SUPER_ADMIN, "region": None},
    {"name": "Sam Service", "email": "serviceadmin@example.com", "role": roles.SERVICE_ADMIN, "region": None},
    {"name": "Sara Sales", "email": "salesadmin@example.com", "role": roles.SALES_ADMIN, "region": None},
    {"name": "Mark Manager", "email": "servicemanager@example.com", "role": roles.SERVICE_MANAGER, "region": "North"},
    {"name": "Lee Lead", "email": "serviceteamlead@example.com", "role": roles.SERVICE_TEAM_LEAD, "region": "North"},
    {"name": "Steve Salesman", "email": "salesman@example.com", "role": roles.SALESMAN, "region": "North"},
    {"name": "Tom Tech", "email": "tech.north1@example.com", "role": roles.TECHNICIAN, "region": "North"},
    {"name": "Tina Tech", "email": "tech.north2@example.com", "role": roles.TECHNICIAN, "region": "North"},
    {"name": "Theo Tech", "email": "tech.south1@example.com", "role": roles.TECHNICIAN, "region": "South"},
]

CUSTOMERS = [
    {"name": "Harbor Hotel", "phone": "+1-555-2001", "region": "North"},
    {"name": "Greenfield School", "phone": "+1-555-2002", "region": "North"},
    {"name": "Southside Clinic", "phone": "+1-555-2003", "region": "South"},
]

ITEMS = [
    {"kind": ItemKind.PRODUCT, "name": "Water Purifier RO-500", "sku": "PRD-RO500", "unit": "pcs", "threshold": 2, "opening": 10},
    {"kind": ItemKind.SPARE_PART, "name": "Sediment Filter", "sku": "SP-SED10", "unit": "pcs", "threshold": 10, "opening": 50},
    {"kind": ItemKind.SPARE_PART, "name": "Carbon Cartridge", "sku": "SP-CARB", "unit": "pcs", "threshold": 10, "opening": 40},
    {"kind": ItemKind.SPARE_PART, "name": "RO Membrane", "sku": "SP-MEM75", "unit": "pcs", "threshold": 5, "opening": 8},
]


def seed_demo_data():
    Base.metadata.create_all(bind=engine)
    db: Session = SessionLocal()

    try:
        regions = {}
        for name in REGIONS:
            region = db.query(Region).filter(Region.name == name).first()
            if not region:
                region = Region(name=name)
                db.add(region)
                db.flush()
                print(f"  CREATE region: {name}")
            regions[name] = region

        users = []
        for data in USERS:
            user = db.query(User).filter(User.email == data["email"]).first()
            if user:
                print(f"  SKIP user: {data['email']} (already exists)")
            else:
                user = User(
                    name=data["name"],
                    email=data["email"],
                    role=data["role"],
                    region_id=regions[data["region"]].id if data["region"] else None
                )
                db.add(user)
                db.flush()
                print(f"  CREATE user: {data['name']} ({data['role']})")
            users.append(user)

        for data in CUSTOMERS:
            if not db.query(Customer).filter(Customer.name == data["name"]).first():
                db.add(Customer(name=data["name"], phone=data["phone"], region_id=regions[data["region"]].id))
                print(f"  CREATE customer: {data['name']}")

        admin = users[0]
        ledger = StockLedger(db, admin)
        for data in ITEMS:
            if db.query(StockItem).filter(StockItem.sku == data["sku"]).first():
                print(f"  SKIP item: {data['sku']} (already exists)")
                continue
            item = StockItem(
                kind=data["kind"],
                name=data["name"],
                sku=data["sku"],
                unit=data["unit"],
                low_stock_threshold=data["threshold"]
            )
            db.add(item)
            db.flush()
            ledger.adjust(item.id, WAREHOUSE, data["opening"], Enumerated("Added Stock", "Opening balance"))
            print(f"  CREATE item: {data['name']} with {data['opening']} {data['unit']} in the warehouse")

        db.commit()

        print("\nBearer tokens:")
        for user in users:
            print(f"  {user.role:<18} {user.email:<30} {create_access_token({'sub': user.email}, expires_minutes=60 * 24)}")
        print("\nDone!")

    except Exception as e:
        db.rollback()
        print(f"ERROR: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed_demo_data()

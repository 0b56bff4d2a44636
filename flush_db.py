#!/usr/bin/env python3
"""
Full database reset - drops all tables and recreates them.
WARNING: This destroys ALL data including requests, audit history and stock.

Execute from the project root:
    python flush_db.py
"""

import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fieldservice.database import engine, Base
from fieldservice import models  # Import all models to register them with Base


def flush_database():
    print("=" * 60)
    print("FULL DATABASE RESET")
    print("=" * 60)
    print(f"\nDatabase: {engine.url.render_as_string(hide_password=True)}")
    print("WARNING: This will DELETE ALL DATA in the database!")
    print("This includes: service requests, approvals, assignments, work sessions and stock.\n")

    confirm = input("Type 'YES' to confirm full database reset: ")
    if confirm != "YES":
        print("Aborted. No changes made.")
        return

    print("\nDropping all tables...")
    # Dependency order, so foreign keys don't block the drop
    for table in reversed(Base.metadata.sorted_tables):
        table.drop(bind=engine, checkfirst=True)
        print(f"  Dropped {table.name}")
    print("✓ All tables dropped")

    print("\nRecreating all tables...")
    Base.metadata.create_all(bind=engine)
    print("✓ All tables created")

    print("\n" + "=" * 60)
    print("DATABASE RESET COMPLETE!")
    print("=" * 60)
    print("\nRun `python seed_demo_data.py` to load demo regions, users and stock.")


if __name__ == "__main__":
    flush_database()

"""
Catalog Initialization Script
Creates the exposed entity and policy tables
"""
from sqlalchemy import text

from autorest.database import app_engine, init_catalog


def init_database():
    """Initialize the catalog database."""
    print("🔧 Checking catalog database connection...")

    try:
        with app_engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("✓ Catalog database connection successful")
    except Exception as e:
        print(f"❌ Catalog database is not reachable: {str(e)}")
        raise

    print("Creating catalog tables...")
    init_catalog(app_engine)
    print("✓ Tables created")
    print("\n✅ Catalog initialization complete!")


if __name__ == "__main__":
    init_database()

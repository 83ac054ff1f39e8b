"""
Local store initialization script.
Creates the preference table in the SQLite file.
"""

import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import load_settings
from flowdesk.models.base import init_db, create_tables, get_engine
from sqlalchemy import inspect


def check_existing_store():
    """Check if the local store file already exists."""
    settings = load_settings()
    if settings.local_store_path == ":memory:":
        return False
    return Path(settings.local_store_path).exists()


def drop_all_tables():
    """Drop all existing tables."""
    from flowdesk.models.base import Base
    from flowdesk.models.preference import WorkflowPreference

    engine = get_engine()
    Base.metadata.drop_all(bind=engine)
    print("✓ All tables dropped")


def verify_tables():
    """Verify that the preference table was created."""
    inspector = inspect(get_engine())
    tables = inspector.get_table_names()

    if "workflow_preferences" not in tables:
        print("✗ Missing table: workflow_preferences")
        return False

    print(f"✓ Tables present: {', '.join(tables)}")
    return True


def main():
    """Main initialization logic."""
    print("=" * 60)
    print("Local Store Initialization")
    print("=" * 60)

    try:
        settings = load_settings()
    except Exception as e:
        print(f"✗ Configuration error: {e}")
        sys.exit(1)

    if check_existing_store():
        print(f"⚠ Local store already exists at: {settings.local_store_path}")
        response = input("Drop saved preferences and recreate? (y/n): ").strip().lower()

        if response != 'y':
            print("Aborted.")
            sys.exit(0)

        try:
            init_db()
            drop_all_tables()
        except Exception as e:
            print(f"✗ Error dropping tables: {e}")
            sys.exit(1)
    else:
        print(f"Creating local store at: {settings.local_store_path}")

    try:
        init_db()
        create_tables()
    except Exception as e:
        print(f"✗ Error creating tables: {e}")
        sys.exit(1)

    if not verify_tables():
        sys.exit(1)

    print("=" * 60)
    print("✓ Local store initialization complete!")
    print("=" * 60)


if __name__ == "__main__":
    main()

"""
Create (or rebuild) the relational schema.

Usage:
    python -m scripts.init_db            # create missing tables, then verify
    python -m scripts.init_db --reset    # drop every table first
"""

import argparse
import sys

from core_intelligence.database.manager import DatabaseManager
from core_intelligence.database.tables import Base
from shared_utils.config_loader import get_settings
from shared_utils.error_handler import ExternalServiceError


def init_db(reset: bool = False, database_uri: str = "") -> bool:
    """Create the schema and report whether it matches what the stores need."""
    settings = get_settings()
    db = DatabaseManager.from_uri(database_uri or settings.database_uri)

    print(f"Targeting database: {db.dialect}")
    try:
        if reset:
            print("Dropping existing tables...")
            Base.metadata.drop_all(db.engine)
        db.create_schema()
    except ExternalServiceError as e:
        print(f"Error creating schema: {e.message}")
        print("Tip: check DATABASE_URI and that the database server is reachable.")
        return False
    finally:
        ok = db.validate_schema()
        db.dispose()

    print("Schema ready." if ok else "Schema is missing columns; see the log for details.")
    return ok


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Initialize the pipeline database")
    parser.add_argument("--reset", action="store_true", help="drop all tables before creating them")
    parser.add_argument("--database-uri", default="", help="override DATABASE_URI")
    args = parser.parse_args(argv)
    return 0 if init_db(reset=args.reset, database_uri=args.database_uri) else 1


if __name__ == "__main__":
    sys.exit(main())

from config import settings
from database import Base, Database
from sqlalchemy import inspect
import models  # noqa: F401  registers the portal tables on Base.metadata


def init_database(database: Database = None):
    """Create the portal-owned tables. ERP tables are never created or altered here."""
    database = database or Database(settings.database_url)
    database.init()

    existing = set(inspect(database.engine).get_table_names())
    Base.metadata.create_all(bind=database.engine)
    created = [name for name in Base.metadata.tables if name not in existing]

    if created:
        print(f"Created tables: {', '.join(sorted(created))}")
    else:
        print("Portal tables already exist")
    return created


if __name__ == "__main__":
    db = Database(settings.database_url)
    try:
        init_database(db)
    finally:
        db.shutdown()

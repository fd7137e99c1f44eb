"""
Create the schema directly from the models (development / SQLite).
Production databases are managed with `alembic upgrade head`.
"""
import sys
from pathlib import Path

from dotenv import load_dotenv

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.ipverify.models import Base  # noqa: E402
from scripts._db_utils import create_script_engine, resolve_db_url  # noqa: E402


def init_schema(*, database_url: str | None = None) -> list[str]:
    db_url = resolve_db_url(database_url)
    engine = create_script_engine(db_url)
    try:
        Base.metadata.create_all(bind=engine)
    finally:
        engine.dispose()
    return sorted(Base.metadata.tables)


if __name__ == "__main__":
    load_dotenv()
    tables = init_schema()
    print(f"Schema ready: {', '.join(tables)}")

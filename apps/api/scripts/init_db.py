"""
Create the database tables.

Run from apps/api:
    python scripts/init_db.py
"""
import logging
import sys
from pathlib import Path

# apps/api on the import path so core/ and models resolve
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from core.database import Base, engine  # noqa: E402
from core.logging import setup_logging  # noqa: E402
import models  # noqa: E402,F401  registers every model on Base

logger = logging.getLogger(__name__)


def main() -> None:
    setup_logging()
    logger.info(f"Creating tables on {engine.url.render_as_string(hide_password=True)}")
    Base.metadata.create_all(bind=engine)
    logger.info(f"Tables ready: {', '.join(sorted(Base.metadata.tables))}")


if __name__ == "__main__":
    main()

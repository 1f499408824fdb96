"""Create the schema on the configured database."""

from __future__ import annotations

import logging
import sys

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from dupefinder.config import Settings, configure_logging
from dupefinder.db.session import create_engine_from_settings
from dupefinder.db.tables import metadata

logger = logging.getLogger(__name__)


def run_migrations(engine: Engine) -> None:
    """Create missing tables. Existing tables are left untouched."""
    metadata.create_all(engine)
    logger.info("Schema up to date (%s tables)", len(metadata.tables))


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    engine = create_engine_from_settings(settings)
    try:
        run_migrations(engine)
    except SQLAlchemyError as exc:
        print(f"Migration failed: {exc}", file=sys.stderr)
        sys.exit(2)
    finally:
        engine.dispose()


if __name__ == "__main__":
    main()

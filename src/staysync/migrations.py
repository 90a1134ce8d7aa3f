"""Apply the alembic ``core`` chain from Python.

``staysync migrate`` calls :func:`run_migrations` after provisioning the
database, so no alembic CLI invocation is needed.
"""

from __future__ import annotations

import logging
from pathlib import Path

from alembic.config import Config

from alembic import command
from staysync.db import normalize_schema

logger = logging.getLogger(__name__)

# alembic/ sits next to src/ at the repository root.
ALEMBIC_DIR = Path(__file__).resolve().parents[2] / "alembic"
CORE_HEAD = "core@head"


def build_alembic_config(db_url: str, target_schema: str | None = None) -> Config:
    config = Config(str(ALEMBIC_DIR / "alembic.ini"))
    config.set_main_option("script_location", str(ALEMBIC_DIR))
    config.set_main_option("version_locations", str(ALEMBIC_DIR / "versions" / "core"))
    # Config values go through configparser interpolation.
    config.set_main_option("sqlalchemy.url", db_url.replace("%", "%%"))
    schema = normalize_schema(target_schema)
    if schema is not None:
        config.set_main_option("staysync.target_schema", schema)
        config.set_main_option("version_table_schema", schema)
    return config


def run_migrations(db_url: str, schema: str | None = None, revision: str = CORE_HEAD) -> None:
    """Upgrade the database at *db_url* to *revision*."""
    logger.info("Upgrading schema to %s (schema=%s)", revision, schema or "public")
    command.upgrade(build_alembic_config(db_url, target_schema=schema), revision)

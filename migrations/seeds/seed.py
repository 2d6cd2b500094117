#!/usr/bin/env python3
"""
Seed runner — loads the district → subdistrict → village tree into geo_areas.

Usage:
  # Development (local Docker Compose):
  ENVIRONMENT=development python seed.py

  # Production:
  ENVIRONMENT=production python seed.py

Seeds are idempotent — safe to re-run (all INSERT … ON CONFLICT DO NOTHING).
"""
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy import create_engine, text

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Load .env before Settings is built
# ---------------------------------------------------------------------------
_repo_root = Path(__file__).resolve().parent.parent.parent
load_dotenv(dotenv_path=_repo_root / ".env", override=False)

from grievance.core.config import get_settings

SEEDS_DIR = Path(__file__).parent

SEED_FILES = [
    "seed_geo_areas.sql",
]

VERIFY_QUERIES = {
    "district":    ("SELECT COUNT(*) FROM geo_areas WHERE entity_type = 'district'", 2),
    "subdistrict": ("SELECT COUNT(*) FROM geo_areas WHERE entity_type = 'subdistrict'", 6),
    "village":     ("SELECT COUNT(*) FROM geo_areas WHERE entity_type = 'village'", 8),
}


def _get_engine():
    try:
        return create_engine(get_settings().database_url_sync)
    except RuntimeError as exc:
        logger.error("%s", exc)
        sys.exit(1)


def run_seeds() -> None:
    engine = _get_engine()
    try:
        with engine.begin() as conn:
            for filename in SEED_FILES:
                sql = (SEEDS_DIR / filename).read_text(encoding="utf-8")
                logger.info("Running seed: %s", filename)
                conn.exec_driver_sql(sql)
        logger.info("All seeds committed successfully.")
    except Exception:
        logger.exception("Seed failed — transaction rolled back.")
        sys.exit(1)
    finally:
        engine.dispose()


def verify() -> None:
    engine = _get_engine()
    all_ok = True

    try:
        with engine.connect() as conn:
            for label, (query, expected) in VERIFY_QUERIES.items():
                count = conn.execute(text(query)).scalar_one()
                status = "OK" if count >= expected else "FAIL"
                if status == "FAIL":
                    all_ok = False
                logger.info("  %-12s %s  (got %d, expected >= %d)", label, status, count, expected)
    finally:
        engine.dispose()

    if not all_ok:
        logger.error("Verification failed — some levels have fewer rows than expected.")
        sys.exit(1)

    logger.info("Verification passed.")


if __name__ == "__main__":
    logger.info("Environment: %s", get_settings().environment)
    logger.info("--- Running seeds ---")
    run_seeds()
    logger.info("--- Verifying row counts ---")
    verify()

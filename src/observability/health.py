from __future__ import annotations

import logging
from typing import Dict

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from src.database import engine

logger = logging.getLogger(__name__)


def check_database_health() -> Dict[str, str]:
    """Run SELECT 1 against the festival database."""
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return {"status": "UP"}
    except SQLAlchemyError as exc:
        logger.warning("Database health check failed: %s", exc)
        return {"status": "DOWN", "detail": exc.__class__.__name__}

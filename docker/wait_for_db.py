"""Block container start-up until the festival database accepts connections, then create tables."""
import logging
import os
import time

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError

from src.config import Config
from src.database import init_database

logging.basicConfig(level=Config.LOG_LEVEL)
logger = logging.getLogger("wait_for_db")

MAX_ATTEMPTS = int(os.environ.get("DB_WAIT_ATTEMPTS", "30"))
SLEEP_SECONDS = int(os.environ.get("DB_WAIT_INTERVAL", "2"))


def main() -> None:
    engine = create_engine(Config.DATABASE_URL, pool_pre_ping=True)
    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            with engine.connect():
                logger.info("Database connection established.")
                break
        except OperationalError as exc:
            logger.warning("Attempt %s/%s failed: %s", attempt, MAX_ATTEMPTS, exc)
            time.sleep(SLEEP_SECONDS)
    else:
        raise RuntimeError("Database not reachable after waiting.")

    init_database(bind=engine)
    engine.dispose()


if __name__ == "__main__":
    main()

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.errors import ConflictError, InternalError, MegaOfferError


@contextmanager
def atomic(
    db: Session,
    logger: logging.Logger,
    action: str,
    conflict_message: str = "Duplicate record",
) -> Iterator[Session]:
    """
    Run a block as one all-or-nothing unit: commit on success, roll back on any failure.

    Unique-constraint violations surface as ConflictError; other database
    failures are logged and surface as InternalError without their detail.
    """
    try:
        yield db
        db.commit()
    except MegaOfferError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        logger.info("Conflict while %s: %s", action, exc.orig)
        raise ConflictError(conflict_message) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Database error while %s", action)
        raise InternalError() from exc

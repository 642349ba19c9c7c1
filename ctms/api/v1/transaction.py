# ctms/api/v1/transaction.py
import logging

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ctms.services.validation import ValidationFailedError

logger = logging.getLogger(__name__)


def commit_or_raise(db: Session, failure: str) -> None:
    """
    Commit the request's unit of work (mutation + audit entries).

    - concurrent modification (version counter mismatch) -> 409
    - any other database error -> 500 with a generic message
    """
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        logger.warning("Concurrent modification detected: %s", failure)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="The record was modified by another user. Reload and try again.",
        )
    except SQLAlchemyError:
        db.rollback()
        logger.exception("%s", failure)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=failure)


def validation_http_error(db: Session, exc: ValidationFailedError) -> HTTPException:
    db.rollback()
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT if exc.conflict else status.HTTP_400_BAD_REQUEST,
        detail={
            "message": "Validation failed",
            "reasons": exc.result.reasons,
            "warnings": exc.result.warnings,
        },
    )

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from telehealth_backend.core.errors import SchedulingError
from telehealth_backend.database import ensure_session_schema

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Please try again shortly.'


def ensure_database_ready() -> None:
    try:
        ensure_session_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def to_http_exception(exc: SchedulingError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())

from __future__ import annotations

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session


class ServiceError(Exception):
    pass


class NotFoundError(ServiceError):
    pass


class InvalidStateError(ServiceError):
    pass


class ConflictError(ServiceError):
    pass


class ForbiddenError(ServiceError):
    pass


class InternalError(ServiceError):
    pass


def commit_or_raise(session: Session, conflict_message: str) -> None:
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise ConflictError(conflict_message) from exc
    except SQLAlchemyError as exc:
        session.rollback()
        raise InternalError("storage failure") from exc

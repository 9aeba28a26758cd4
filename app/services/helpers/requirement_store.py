"""
Requirement persistence helpers.

The traceability service never talks to ``db.session`` directly for
requirements; it goes through these three calls so the storage contract
stays in one place:

    load_all()           → every requirement, oldest first
    load_by_id(id)       → one requirement or None
    save(requirement)    → single-record commit; raises PersistenceError

There is no optimistic locking: two concurrent saves of the same
requirement race at the database and the last commit wins.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import PersistenceError
from app.models import db
from app.models.requirement import Requirement

logger = logging.getLogger(__name__)


def load_all() -> list[Requirement]:
    stmt = select(Requirement).order_by(Requirement.created_at, Requirement.id)
    return list(db.session.execute(stmt).scalars())


def load_by_id(requirement_id) -> Requirement | None:
    if not requirement_id:
        return None
    return db.session.get(Requirement, str(requirement_id))


def save(requirement: Requirement) -> Requirement:
    """Commit *requirement*.  On failure roll back and raise PersistenceError."""
    try:
        db.session.add(requirement)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Requirement save failed id=%s: %s", requirement.id, exc, exc_info=True)
        raise PersistenceError("save requirement", exc) from exc
    return requirement

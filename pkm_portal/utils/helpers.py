"""Shared helpers for service-layer transaction handling.

atomic:  one unit of work. Commit on success, rollback on any error,
         lost optimistic-lock races surfaced as ConflictError.
"""

import logging
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from pkm_portal.core.exceptions import ConflictError

logger = logging.getLogger(__name__)


@contextmanager
def atomic(session, *, resource: str = "Submission", resource_id=None):
    """Run the enclosed block as a single transaction on ``session``.

    Usage::

        with atomic(self.session, resource_id=submission_id):
            sub = self._lock(submission_id)
            ...

    StaleDataError (version counter moved on) → ConflictError
    IntegrityError / OperationalError → rolled back and re-raised
    Any other exception → rolled back and re-raised unchanged
    """
    try:
        yield session
        session.commit()
    except StaleDataError:
        session.rollback()
        logger.warning("Concurrent update lost the race on %s id=%s", resource, resource_id)
        raise ConflictError(resource, "version", resource_id)
    except IntegrityError as exc:
        session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        raise
    except OperationalError:
        session.rollback()
        logger.exception("Database operational error on commit")
        raise
    except Exception:
        session.rollback()
        raise

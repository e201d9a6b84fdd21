"""
Submission code generator.

Format: {PREFIX}-{CATEGORY_SHORT_CODE}-{YEAR}-{SEQ:03d}   e.g. PKM-K-2026-001

SEQ comes from a per-(category, year) CodeSequence counter locked with
SELECT ... FOR UPDATE, so unrelated categories never serialise on each
other. The owning Submission row is inserted inside a SAVEPOINT in the same
transaction; if the unique ``code`` constraint still fires (rows issued
before the counter existed, or a racing writer on a dialect without row
locks) the counter advances and the insert is retried.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from pkm_portal.core.exceptions import ConflictError
from pkm_portal.models.submission import CodeSequence

logger = logging.getLogger(__name__)


def format_code(prefix: str, short_code: str, year: int, seq: int) -> str:
    return f"{prefix}-{short_code.upper()}-{year}-{seq:03d}"


class CodeGenerator:
    """Issues submission codes and inserts the owning row in one step."""

    def __init__(self, prefix: str = "PKM", max_attempts: int = 5) -> None:
        self.prefix = prefix
        self.max_attempts = max_attempts

    def _next_sequence(self, session, category_id: int, year: int) -> int:
        counter = session.execute(
            select(CodeSequence)
            .where(CodeSequence.category_id == category_id, CodeSequence.year == year)
            .with_for_update()
        ).scalar_one_or_none()
        if counter is None:
            try:
                with session.begin_nested():
                    counter = CodeSequence(category_id=category_id, year=year, last_seq=0)
                    session.add(counter)
            except IntegrityError:
                # Another writer created the counter first; lock theirs.
                counter = session.execute(
                    select(CodeSequence)
                    .where(CodeSequence.category_id == category_id, CodeSequence.year == year)
                    .with_for_update()
                ).scalar_one()
        counter.last_seq += 1
        session.flush()
        return counter.last_seq

    def generate(self, session, category, year: int) -> str:
        """Reserve the next code for (category, year) without inserting anything."""
        seq = self._next_sequence(session, category.id, year)
        return format_code(self.prefix, category.short_code, year, seq)

    def insert_with_code(self, session, submission, category, year: int) -> str:
        """Assign ``submission.code`` and INSERT it, retrying on a duplicate code.

        Must run inside the caller's transaction.
        """
        for attempt in range(1, self.max_attempts + 1):
            submission.code = self.generate(session, category, year)
            try:
                with session.begin_nested():
                    session.add(submission)
            except IntegrityError:
                logger.warning(
                    "Submission code %s already taken (attempt %d/%d), retrying",
                    submission.code, attempt, self.max_attempts,
                )
                continue
            return submission.code
        raise ConflictError("Submission", "code", submission.code)

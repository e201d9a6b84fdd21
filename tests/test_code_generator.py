"""Submission code generation: format, per-(category, year) counters, retry on duplicates."""

import pytest
from sqlalchemy import select

from pkm_portal.core.exceptions import ConflictError
from pkm_portal.models import db
from pkm_portal.models.reference import Category
from pkm_portal.models.submission import CodeSequence, Submission
from pkm_portal.services.code_generator import CodeGenerator, format_code


def _category(short_code="K"):
    cat = Category(name=f"PKM {short_code}", short_code=short_code)
    db.session.add(cat)
    db.session.flush()
    return cat


def _submission(category, year=2026):
    return Submission(
        category_id=category.id,
        title="A sufficiently long title",
        year=year,
        lead_key="2021001",
    )


def test_format_code():
    assert format_code("PKM", "k", 2026, 1) == "PKM-K-2026-001"
    assert format_code("PKM", "RE", 2026, 42) == "PKM-RE-2026-042"
    assert format_code("PKM", "K", 2026, 1234) == "PKM-K-2026-1234"


def test_sequence_starts_at_one_and_increments():
    gen = CodeGenerator()
    cat = _category()
    codes = []
    for _ in range(3):
        sub = _submission(cat)
        codes.append(gen.insert_with_code(db.session, sub, cat, 2026))
    db.session.commit()
    assert codes == ["PKM-K-2026-001", "PKM-K-2026-002", "PKM-K-2026-003"]


def test_counters_are_independent_per_category_and_year():
    gen = CodeGenerator()
    k, re = _category("K"), _category("RE")
    assert gen.insert_with_code(db.session, _submission(k), k, 2026) == "PKM-K-2026-001"
    assert gen.insert_with_code(db.session, _submission(re), re, 2026) == "PKM-RE-2026-001"
    assert gen.insert_with_code(db.session, _submission(k, 2027), k, 2027) == "PKM-K-2027-001"
    assert gen.insert_with_code(db.session, _submission(k), k, 2026) == "PKM-K-2026-002"
    db.session.commit()
    counters = db.session.execute(select(CodeSequence)).scalars().all()
    assert len(counters) == 3


def test_retries_past_codes_issued_before_the_counter_existed():
    gen = CodeGenerator()
    cat = _category()
    legacy = _submission(cat)
    legacy.code = "PKM-K-2026-001"
    db.session.add(legacy)
    db.session.commit()

    sub = _submission(cat)
    assert gen.insert_with_code(db.session, sub, cat, 2026) == "PKM-K-2026-002"
    db.session.commit()
    assert db.session.get(Submission, sub.id).code == "PKM-K-2026-002"


def test_gives_up_after_max_attempts():
    gen = CodeGenerator(max_attempts=2)
    cat = _category()
    for seq in (1, 2, 3):
        legacy = _submission(cat)
        legacy.code = f"PKM-K-2026-{seq:03d}"
        db.session.add(legacy)
    db.session.commit()

    with pytest.raises(ConflictError):
        gen.insert_with_code(db.session, _submission(cat), cat, 2026)


def test_custom_prefix():
    gen = CodeGenerator(prefix="GRANT")
    cat = _category()
    assert gen.insert_with_code(db.session, _submission(cat), cat, 2026) == "GRANT-K-2026-001"

"""
Shared pytest fixtures for the PKM submission portal test suite.

Provides:
    - app: Flask application (session-scoped) wired to fake directories
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - directories: the in-process student / staff / org-unit directories
    - lifecycle, assignments, views: services bound to db.session
    - category, open_window: reference data
    - lead, admin, reviewer, other_reviewer: CallerContexts
"""

import os
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from pkm_portal import create_app
from pkm_portal.core.caller import CallerContext, Role
from pkm_portal.integrations.directory import (
    DirectoryResult,
    OrgUnitRecord,
    StaffRecord,
    StudentRecord,
)
from pkm_portal.integrations.storage import LocalDocumentStorage
from pkm_portal.models import db as _db
from pkm_portal.models.reference import Category, RegistrationWindow
from pkm_portal.services.code_generator import CodeGenerator
from pkm_portal.services.container import WorkflowServices
from pkm_portal.services.identity_resolver import IdentityResolver
from pkm_portal.services.review_state_machine import ReviewStateMachine

LEAD_KEY = "2021001"
ADMIN_KEY = "admin01"
REVIEWER_KEY = "198001"
OTHER_REVIEWER_KEY = "198002"

PDF_BYTES = b"%PDF-1.4 proposal body"


class FakeDirectory:
    """In-process stand-in for DirectoryClient with the same lookup contract."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        self.records: dict = {}
        self.error: str | None = None
        self.calls: list[frozenset] = []

    def add(self, *records) -> None:
        for record in records:
            self.records[record.key] = record

    def reset(self) -> None:
        self.records.clear()
        self.error = None
        self.calls.clear()

    def lookup(self, keys) -> DirectoryResult:
        requested = frozenset(str(k) for k in keys if k not in (None, ""))
        result = DirectoryResult(provider=self.provider, requested=requested)
        if not requested:
            return result
        self.calls.append(requested)
        if self.error:
            result.error = self.error
            return result
        result.records = {k: self.records[k] for k in requested if k in self.records}
        return result


def _seed(directories) -> None:
    directories.students.add(*(
        StudentRecord(key=f"202100{i}", name=f"Student {i}", cohort="2021", org_unit_key="P01")
        for i in range(1, 8)
    ))
    directories.staff.add(
        StaffRecord(key=REVIEWER_KEY, name="Dr. Reviewer", org_unit_key="F01"),
        StaffRecord(key=OTHER_REVIEWER_KEY, name="Dr. Second", org_unit_key="F01"),
    )
    directories.org_units.add(
        OrgUnitRecord(key="P01", name="Informatics", level="S1", parent_key="F01"),
        OrgUnitRecord(key="F01", name="Faculty of Engineering"),
    )


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def directories():
    return SimpleNamespace(
        students=FakeDirectory("student"),
        staff=FakeDirectory("staff"),
        org_units=FakeDirectory("org_unit"),
    )


@pytest.fixture(scope="session")
def upload_dir(tmp_path_factory):
    return str(tmp_path_factory.mktemp("proposals"))


@pytest.fixture(scope="session")
def app(directories, upload_dir):
    """Create the Flask application once per test session."""
    services = WorkflowServices(
        resolver=IdentityResolver(directories.students, directories.staff, directories.org_units),
        storage=LocalDocumentStorage(upload_dir),
        code_generator=CodeGenerator(prefix="PKM", max_attempts=5),
        state_machine=ReviewStateMachine(),
    )
    return create_app("testing", services=services)


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db, directories, upload_dir):
    """Per-test: open app context, rollback after test, recreate tables."""
    for directory in (directories.students, directories.staff, directories.org_units):
        directory.reset()
    _seed(directories)
    with app.app_context():
        yield _db.session
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()
    for name in os.listdir(upload_dir):
        os.remove(os.path.join(upload_dir, name))


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Services ─────────────────────────────────────────────────────────────


@pytest.fixture()
def services(app):
    return app.extensions["pkm"]


@pytest.fixture()
def lifecycle(services):
    return services.lifecycle(_db.session)


@pytest.fixture()
def assignments(services):
    return services.assignments(_db.session)


@pytest.fixture()
def views(services):
    return services.views(_db.session)


# ── Reference data ───────────────────────────────────────────────────────


@pytest.fixture()
def category():
    cat = Category(name="PKM Kewirausahaan", short_code="K", is_active=True)
    _db.session.add(cat)
    _db.session.commit()
    return cat


@pytest.fixture()
def open_window():
    now = datetime.now(timezone.utc)
    window = RegistrationWindow(
        opens_at=now - timedelta(days=1),
        closes_at=now + timedelta(days=30),
        is_active=True,
    )
    _db.session.add(window)
    _db.session.commit()
    return window


# ── Callers ──────────────────────────────────────────────────────────────


@pytest.fixture()
def lead():
    return CallerContext(LEAD_KEY, Role.LEAD)


@pytest.fixture()
def admin():
    return CallerContext(ADMIN_KEY, Role.ADMIN)


@pytest.fixture()
def reviewer():
    return CallerContext(REVIEWER_KEY, Role.REVIEWER)


@pytest.fixture()
def other_reviewer():
    return CallerContext(OTHER_REVIEWER_KEY, Role.REVIEWER)


def headers_for(caller: CallerContext) -> dict:
    return {"X-Caller-Id": caller.identity_key, "X-Caller-Role": caller.role.value}


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def submission(lifecycle, lead, category, open_window):
    """A freshly created submission: lead plus one member, title pending."""
    return lifecycle.create_submission(
        lead,
        category_id=category.id,
        title="Smart irrigation for small farms",
        members=[{"member_key": "2021002"}],
        form_answers={"summary": "IoT sensors"},
    )


@pytest.fixture()
def accepted_title(submission, assignments, admin, reviewer):
    """The ``submission`` with its title reviewed and accepted."""
    assignments.assign_reviewer(submission["id"], "title", REVIEWER_KEY, admin)
    assignments.submit_review(
        submission["id"], "title", "accepted", "Clear and feasible title.", reviewer
    )
    return submission


@pytest.fixture()
def uploaded_proposal(accepted_title, lifecycle, lead):
    """The ``submission`` with an accepted title and an uploaded proposal."""
    return lifecycle.upload_proposal(accepted_title["id"], lead, PDF_BYTES, "proposal.pdf")

"""
Per-application collaborator wiring.

The long-lived collaborators (directory clients, storage, code generator,
state machine) are built once by the app factory and kept on
``app.extensions["pkm"]``. Services that need a persistence session are
built per request around the request's session.
"""

from __future__ import annotations

from dataclasses import dataclass

from pkm_portal.integrations.directory import (
    DirectoryClient,
    OrgUnitRecord,
    StaffRecord,
    StudentRecord,
)
from pkm_portal.integrations.storage import DocumentStorage, LocalDocumentStorage
from pkm_portal.services.code_generator import CodeGenerator
from pkm_portal.services.identity_resolver import IdentityResolver
from pkm_portal.services.review_state_machine import ReviewStateMachine
from pkm_portal.services.reviewer_assignment import ReviewerAssignmentService
from pkm_portal.services.submission_service import SubmissionLifecycleManager
from pkm_portal.services.submission_views import SubmissionViews


@dataclass
class WorkflowServices:
    resolver: IdentityResolver
    storage: DocumentStorage
    code_generator: CodeGenerator
    state_machine: ReviewStateMachine

    @classmethod
    def from_config(cls, config) -> "WorkflowServices":
        common = {
            "api_key": config.get("DIRECTORY_API_KEY"),
            "timeout": config.get("DIRECTORY_TIMEOUT_SECONDS", 5.0),
            "retry_max": config.get("DIRECTORY_RETRY_MAX", 1),
        }
        resolver = IdentityResolver(
            students=DirectoryClient(
                "student", config.get("STUDENT_DIRECTORY_URL"), StudentRecord, **common
            ),
            staff=DirectoryClient(
                "staff", config.get("STAFF_DIRECTORY_URL"), StaffRecord, **common
            ),
            org_units=DirectoryClient(
                "org_unit", config.get("ORG_UNIT_DIRECTORY_URL"), OrgUnitRecord, **common
            ),
        )
        extensions = config.get("ALLOWED_PROPOSAL_EXTENSIONS", "pdf,doc,docx")
        if isinstance(extensions, str):
            extensions = [e.strip() for e in extensions.split(",") if e.strip()]
        storage = LocalDocumentStorage(
            config["UPLOAD_DIR"],
            max_bytes=config.get("MAX_PROPOSAL_BYTES", int(2.5 * 1024 * 1024)),
            allowed_extensions=extensions,
        )
        code_generator = CodeGenerator(
            prefix=config.get("SUBMISSION_CODE_PREFIX", "PKM"),
            max_attempts=config.get("CODE_GENERATOR_MAX_ATTEMPTS", 5),
        )
        return cls(
            resolver=resolver,
            storage=storage,
            code_generator=code_generator,
            state_machine=ReviewStateMachine(),
        )

    def lifecycle(self, session) -> SubmissionLifecycleManager:
        return SubmissionLifecycleManager(
            session, self.resolver, self.storage, self.code_generator, self.state_machine
        )

    def assignments(self, session) -> ReviewerAssignmentService:
        return ReviewerAssignmentService(session, self.resolver, self.storage, self.state_machine)

    def views(self, session) -> SubmissionViews:
        return SubmissionViews(session, self.resolver)

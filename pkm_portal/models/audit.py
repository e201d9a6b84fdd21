"""
PKM Submission Portal
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for lifecycle events.
"""

import json
from datetime import datetime, timezone

from pkm_portal.models import db


AUDIT_ACTIONS = {
    "submission.create",
    "submission.revise_title",
    "submission.announce",
    "submission.delete",
    "proposal.upload",
    "proposal.revise",
    "reviewer.assign",
    "reviewer.cancel",
    "review.submit",
    "review.admin_override",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every committed submission mutation.

    One row per action. ``diff_json`` carries an old→new snapshot for the
    fields the action touched.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_actor", "actor"),
        db.Index("idx_audit_action", "action"),
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(50), nullable=False)
    entity_id = db.Column(db.String(64), nullable=False)
    action = db.Column(db.String(50), nullable=False)
    actor = db.Column(db.String(64), nullable=False, default="system")
    actor_role = db.Column(db.String(20), nullable=True)
    diff_json = db.Column(db.Text, nullable=True)
    timestamp = db.Column(
        db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    @property
    def diff(self) -> dict:
        return json.loads(self.diff_json) if self.diff_json else {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "actor_role": self.actor_role,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.action} {self.entity_type}:{self.entity_id}>"


def write_audit(
    session,
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor: str = "system",
    actor_role: str | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row. Uses ``flush`` so callers keep
    transaction control; the row commits or rolls back with the mutation
    it describes.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")
    entry = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor,
        actor_role=actor_role,
        diff_json=json.dumps(diff, default=str) if diff else None,
    )
    session.add(entry)
    session.flush()
    return entry

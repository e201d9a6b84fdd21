"""
Caller context handed to the workflow services by the HTTP boundary.

Identity and role are established upstream (authentication is not this
service's job); the services only consult them.
"""

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    LEAD = "lead"
    REVIEWER = "reviewer"


@dataclass(frozen=True)
class CallerContext:
    identity_key: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def audit_actor(self) -> dict:
        return {"actor": self.identity_key, "actor_role": self.role.value}

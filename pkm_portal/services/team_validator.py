"""
Team composition rules.

A team is 1..5 students, identity keys unique, exactly one lead. The lead
is always the submitting student: ``normalize_team`` puts them first with
``is_lead=True`` (inserting them if the caller left them out) and demotes
anyone else who was flagged as lead. ``validate_team`` then checks the
result and raises ValidationError with a field-level breakdown.
"""

from __future__ import annotations

from dataclasses import dataclass

from pkm_portal.core.exceptions import ValidationError

MIN_TEAM_SIZE = 1
MAX_TEAM_SIZE = 5


@dataclass(frozen=True)
class MemberInput:
    member_key: str
    is_lead: bool = False
    display_order: int | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "MemberInput":
        key = data.get("member_key") or data.get("nim") or data.get("key")
        return cls(
            member_key=str(key).strip() if key is not None else "",
            is_lead=bool(data.get("is_lead", False)),
            display_order=data.get("display_order"),
        )


def normalize_team(lead_key: str, members) -> list[MemberInput]:
    """Return the roster with ``lead_key`` first as the only lead, orders 1..N."""
    lead_key = str(lead_key).strip()
    others = [
        m for m in (members or [])
        if m.member_key != lead_key
    ]
    roster = [MemberInput(member_key=lead_key, is_lead=True, display_order=1)]
    for position, member in enumerate(others, start=2):
        roster.append(MemberInput(member_key=member.member_key, is_lead=False, display_order=position))
    return roster


def validate_team(members: list[MemberInput]) -> None:
    """Raise ValidationError unless the roster satisfies every team rule."""
    errors: dict[str, str] = {}

    size = len(members)
    if size < MIN_TEAM_SIZE or size > MAX_TEAM_SIZE:
        errors["members"] = f"team size must be between {MIN_TEAM_SIZE} and {MAX_TEAM_SIZE}, got {size}"

    blank = [i for i, m in enumerate(members) if not m.member_key]
    if blank:
        errors["member_key"] = f"identity key is required (positions {blank})"

    keys = [m.member_key for m in members if m.member_key]
    duplicates = sorted({k for k in keys if keys.count(k) > 1})
    if duplicates:
        errors["duplicates"] = f"duplicate identity keys: {', '.join(duplicates)}"

    leads = sum(1 for m in members if m.is_lead)
    if leads != 1:
        errors["is_lead"] = f"exactly one team lead is required, got {leads}"

    if errors:
        raise ValidationError("Invalid team composition", details=errors)

"""
Task access rules as an explicit capability predicate.

An actor's right to act on a task comes from their relationship to it
(agency membership, client membership, assignment), not from the role label
alone. The role only narrows things for specialists.
"""
from dataclasses import dataclass, field
from enum import Enum


class Role(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    AGENCY = "AGENCY"
    SPECIALIST = "SPECIALIST"
    USER = "USER"

    @classmethod
    def parse(cls, value: str) -> "Role":
        try:
            return cls(value.upper())
        except (ValueError, AttributeError):
            return cls.USER

    @property
    def is_platform_admin(self) -> bool:
        return self in (Role.SUPER_ADMIN, Role.ADMIN)


class Capability(str, Enum):
    VIEW = "view"
    PATCH_STATUS = "patch_status"
    EDIT_DETAILS = "edit_details"
    DELETE = "delete"


SPECIALIST_CAPABILITIES = frozenset({Capability.VIEW, Capability.PATCH_STATUS})


@dataclass(frozen=True)
class Actor:
    """Resolved identity of whoever performs a workflow operation."""
    user_id: int
    role: Role

    @property
    def is_specialist(self) -> bool:
        return self.role is Role.SPECIALIST


@dataclass(frozen=True)
class TaskRelations:
    """Who is linked to a task, loaded once per access check."""
    assignee_id: int | None = None
    agency_member_ids: frozenset[int] = field(default_factory=frozenset)
    active_client_member_ids: frozenset[int] = field(default_factory=frozenset)
    client_owner_id: int | None = None


def can_access_task(actor: Actor, capability: Capability, relations: TaskRelations) -> bool:
    if actor.is_specialist:
        return capability in SPECIALIST_CAPABILITIES and relations.assignee_id == actor.user_id

    return (
        actor.role.is_platform_admin
        or actor.user_id in relations.agency_member_ids
        or actor.user_id in relations.active_client_member_ids
        or (relations.client_owner_id is not None and relations.client_owner_id == actor.user_id)
    )


def can_manage_agency_scope(actor: Actor, agency_member_ids: frozenset[int]) -> bool:
    """Recurring rules and report schedules: admins and agency members, never specialists."""
    if actor.is_specialist:
        return False
    return actor.role.is_platform_admin or actor.user_id in agency_member_ids

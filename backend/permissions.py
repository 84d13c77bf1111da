"""
Permission evaluation for company-scoped ToDos.

All functions here are pure: they look only at the objects passed in and
never touch the database, the session store or any global state. The
active company is always passed explicitly as a ``CompanyContext``; ``None``
means the user is not scoped to any company and every check denies.

Rules:
- admin / gl / superuser ("elevated") see and manage every todo of the
  active company
- everybody else sees todos they created or are assigned to, may change the
  status of those, but may only edit or delete todos they created
- nothing ever crosses company boundaries, not even for admins
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, List, Optional


class Role(str, Enum):
    ADMIN = "admin"
    GL = "gl"  # Geschäftsleitung / management
    SUPERUSER = "superuser"
    USER = "user"

    @classmethod
    def parse(cls, value) -> Optional["Role"]:
        """Return the matching Role, or None for anything unrecognised."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


MANAGEMENT_ROLES = frozenset({Role.ADMIN, Role.GL})
ELEVATED_ROLES = frozenset({Role.ADMIN, Role.GL, Role.SUPERUSER})


@dataclass(frozen=True)
class CompanyContext:
    """The active company of a user together with the user's role in it."""

    company_id: int
    role: Role


@dataclass(frozen=True)
class TodoAccess:
    """The fields of a todo that access decisions depend on.

    The ORM ``Todo`` exposes the same attribute names, so either can be
    passed to the predicates below.
    """

    id: int
    company_id: int
    created_by: int
    assignee_ids: FrozenSet[int] = field(default_factory=frozenset)


def _role(context: Optional[CompanyContext]) -> Optional[Role]:
    if context is None:
        return None
    return Role.parse(context.role)


def _in_company(todo, context: CompanyContext) -> bool:
    return todo.company_id == context.company_id


def _is_creator(todo, user_id) -> bool:
    return todo.created_by == user_id


def _is_assignee(todo, user_id) -> bool:
    return user_id in todo.assignee_ids


# ------------------------------------------------------------------
# ROLE CHECKS
# ------------------------------------------------------------------

def is_admin(context: Optional[CompanyContext]) -> bool:
    return _role(context) is Role.ADMIN


def is_admin_or_management(context: Optional[CompanyContext]) -> bool:
    return _role(context) in MANAGEMENT_ROLES


def is_elevated(context: Optional[CompanyContext]) -> bool:
    """Admin, GL and superuser see and manage everything in their company."""
    return _role(context) in ELEVATED_ROLES


# ------------------------------------------------------------------
# TODO CHECKS
# ------------------------------------------------------------------

def can_view(todo, user_id, context: Optional[CompanyContext]) -> bool:
    """Elevated roles see the whole company, others only own or assigned todos."""
    if context is None:
        return False

    if is_elevated(context):
        return _in_company(todo, context)

    return _in_company(todo, context) and (
        _is_creator(todo, user_id) or _is_assignee(todo, user_id)
    )


def can_edit(todo, user_id, context: Optional[CompanyContext]) -> bool:
    """Elevated roles edit everything, others only the todos they created.

    Being assigned is not enough to edit.
    """
    if context is None:
        return False

    if is_elevated(context):
        return _in_company(todo, context)

    return _in_company(todo, context) and _is_creator(todo, user_id)


def can_change_status(todo, user_id, context: Optional[CompanyContext]) -> bool:
    """Creators and assignees may move a todo along, elevated roles always."""
    if context is None:
        return False

    if is_elevated(context):
        return _in_company(todo, context)

    # Same rule as can_view today, kept separate so the two can diverge
    return _in_company(todo, context) and (
        _is_creator(todo, user_id) or _is_assignee(todo, user_id)
    )


def can_delete(todo, user_id, context: Optional[CompanyContext]) -> bool:
    if context is None:
        return False

    if is_elevated(context):
        return _in_company(todo, context)

    return _in_company(todo, context) and _is_creator(todo, user_id)


def can_delete_company(context: Optional[CompanyContext]) -> bool:
    """Only admins may delete a company."""
    return is_admin(context)


def filter_visible(todos: Iterable, user_id, context: Optional[CompanyContext]) -> List:
    """Keep the todos the user may view, in their input order."""
    if context is None:
        return []

    return [todo for todo in todos if can_view(todo, user_id, context)]

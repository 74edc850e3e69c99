"""
External collaborators consumed by the engine: user directory and
permission oracle.

Both are Protocols.  The engine never owns user records; supervisor
chains and role membership are plain id lookups through the directory.
The in-memory implementations back tests and the admin CLI.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

APPROVED_STATUS = "APPROVED"


@dataclass(frozen=True)
class UserRecord:
    """Directory view of a user."""

    id: UUID
    role: str | None = None
    is_active: bool = True
    approval_status: str = APPROVED_STATUS
    first_supervisor_id: UUID | None = None

    @property
    def is_eligible_approver(self) -> bool:
        return self.is_active and self.approval_status == APPROVED_STATUS


class UserDirectory(Protocol):
    def get_user(self, user_id: UUID) -> UserRecord | None:
        ...

    def users_with_role(self, role: str) -> list[UserRecord]:
        """All holders of ``role``, in any order, eligible or not."""
        ...


class PermissionOracle(Protocol):
    def check(self, user_id: UUID, module: str, action: str) -> bool:
        ...


class InMemoryUserDirectory:
    """Dict-backed UserDirectory."""

    def __init__(self, users: Iterable[UserRecord] = ()):
        self._users: dict[UUID, UserRecord] = {u.id: u for u in users}

    def add(self, user: UserRecord) -> UserRecord:
        self._users[user.id] = user
        return user

    def get_user(self, user_id: UUID) -> UserRecord | None:
        return self._users.get(user_id)

    def users_with_role(self, role: str) -> list[UserRecord]:
        return [u for u in self._users.values() if u.role == role]


class StaticPermissionOracle:
    """Grants a fixed set of (user, module, action) triples."""

    def __init__(self, grants: Iterable[tuple[UUID, str, str]] = ()):
        self._grants: set[tuple[UUID, str, str]] = set(grants)

    def grant(self, user_id: UUID, module: str, action: str) -> None:
        self._grants.add((user_id, module, action))

    def check(self, user_id: UUID, module: str, action: str) -> bool:
        return (user_id, module, action) in self._grants

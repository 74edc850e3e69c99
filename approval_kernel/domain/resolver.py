"""
Approver resolution -- pure first-match over an ordered candidate list.

Responsibility:
    Given the levels configured for one scope, a target level number and
    the requester, pick the concrete user who must act, or report that the
    chain has no approver at that level.

Architecture position:
    Kernel > Domain -- pure function.  Directory lookups go through the
    ``UserDirectory`` protocol; no session, no shared mutable state.

Rules:
    - Only active levels count toward ``total_levels``.
    - Candidates are tried in ``sort_order``; the first that resolves wins.
    - Supervisor-relative resolves only when the requester has a recorded
      supervisor.  Fixed-user resolves unconditionally.  Role-based
      resolves to the eligible (active and APPROVED) holder with the
      smallest id in string form.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from uuid import UUID

from approval_kernel.domain.directory import UserDirectory, UserRecord
from approval_kernel.domain.workflow import (
    ApproverCandidate,
    ApproverKind,
    LevelDefinition,
)


@dataclass(frozen=True)
class ApproverResolution:
    """Outcome of one resolution."""

    approver_id: UUID | None
    total_levels: int
    level: LevelDefinition | None = None
    candidate: ApproverCandidate | None = None

    @property
    def resolved(self) -> bool:
        return self.approver_id is not None


def pick_role_holder(role: str, directory: UserDirectory) -> UUID | None:
    """Deterministic tie-break: lowest id (string form) among eligible holders."""
    eligible = [u for u in directory.users_with_role(role) if u.is_eligible_approver]
    if not eligible:
        return None
    return min(eligible, key=lambda u: str(u.id)).id


def resolve_candidate(
    candidate: ApproverCandidate,
    requester: UserRecord | None,
    directory: UserDirectory,
) -> UUID | None:
    if candidate.kind == ApproverKind.REQUESTER_SUPERVISOR:
        if requester is None:
            return None
        return requester.first_supervisor_id
    if candidate.kind == ApproverKind.USER:
        return candidate.user_id
    return pick_role_holder(candidate.role or "", directory)


def resolve_approver(
    levels: Sequence[LevelDefinition],
    level_number: int,
    requester: UserRecord | None,
    directory: UserDirectory,
) -> ApproverResolution:
    """
    Resolve the approver for ``level_number``.

    Preconditions:
        ``levels`` all belong to one (template, scope) pair, already
        chosen by the caller (including any global fallback).

    Returns:
        ApproverResolution.  ``approver_id`` is None when the level
        number is past the chain, the level is missing, it has no
        candidates, or no candidate resolves.
    """
    active = [lvl for lvl in levels if lvl.is_active]
    total_levels = len(active)

    if level_number < 1 or level_number > total_levels:
        return ApproverResolution(None, total_levels)

    level = next((lvl for lvl in active if lvl.level_number == level_number), None)
    if level is None:
        return ApproverResolution(None, total_levels)

    candidates = sorted(
        (c for c in level.candidates if c.is_active),
        key=lambda c: c.sort_order,
    )
    for candidate in candidates:
        approver_id = resolve_candidate(candidate, requester, directory)
        if approver_id is not None:
            return ApproverResolution(approver_id, total_levels, level, candidate)

    return ApproverResolution(None, total_levels, level)

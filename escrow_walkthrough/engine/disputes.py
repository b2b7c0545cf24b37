"""Milestone-level dispute workflow with role-gated transitions.

    worker:      pending   -> completed
    client:      completed -> approved | disputed (opens a dispute)
    arbitrator:  disputed  -> approved | cancelled | pending  (approve | reject | modify)
    release:     every milestone approved, no open dispute -> all released
"""
from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from escrow_walkthrough.errors import ConflictError, PreconditionError
from escrow_walkthrough.types import RESOLUTIONS, Dispute, Milestone

if TYPE_CHECKING:
    from collections.abc import Callable

    from escrow_walkthrough.types import MilestoneDefinition

log = logging.getLogger("escrow_walkthrough.disputes")

RESOLUTION_OUTCOME = {
    "approve": "approved",
    "reject": "cancelled",
    "modify": "pending",
}


def _utc_now() -> str:
    return datetime.now(tz=UTC).strftime("%Y-%m-%d %H:%M:%S")


class DisputeBoard:
    def __init__(
        self,
        milestones: list[MilestoneDefinition],
        clock: Callable[[], str] = _utc_now,
    ):
        self._definitions = list(milestones)
        self.clock = clock
        self.milestones: dict[str, Milestone] = {}
        self.disputes: list[Dispute] = []
        self._dispute_seq = 0
        self.reset()

    def reset(self) -> None:
        self.milestones = {
            m.id: Milestone(id=m.id, title=m.title, amount=m.amount) for m in self._definitions
        }
        self.disputes = []
        self._dispute_seq = 0

    # ─── Queries ───

    def milestone(self, milestone_id: str) -> Milestone:
        m = self.milestones.get(milestone_id)
        if m is None:
            raise PreconditionError(
                f'Milestone "{milestone_id}" not found. '
                f"Available milestones: {', '.join(self.milestones)}"
            )
        return m

    def dispute(self, dispute_id: str) -> Dispute:
        for d in self.disputes:
            if d.id == dispute_id:
                return d
        raise PreconditionError(f'Dispute "{dispute_id}" not found.')

    def open_dispute_for(self, milestone_id: str) -> Dispute | None:
        return next(
            (d for d in self.disputes if d.milestone_id == milestone_id and d.status == "open"),
            None,
        )

    def open_disputes(self) -> list[Dispute]:
        return [d for d in self.disputes if d.status == "open"]

    def release_blockers(self) -> list[str]:
        blockers = [
            f'milestone "{m.title}" is {m.status}'
            for m in self.milestones.values()
            if m.status != "approved"
        ]
        blockers.extend(
            f'dispute {d.id} on "{self.milestones[d.milestone_id].title}" is still open'
            for d in self.open_disputes()
        )
        return blockers

    @property
    def all_released(self) -> bool:
        return bool(self.milestones) and all(m.status == "released" for m in self.milestones.values())

    # ─── Transitions ───

    def complete_milestone(self, milestone_id: str, role: str) -> Milestone:
        _require_role(role, "worker", "mark a milestone complete")
        m = self.milestone(milestone_id)
        _require_status(m, "pending", "be marked complete")
        m.status = "completed"
        log.info('milestone "%s" completed by worker', m.id)
        return m

    def approve(self, milestone_id: str, role: str) -> Milestone:
        _require_role(role, "client", "approve a milestone")
        m = self.milestone(milestone_id)
        _require_status(m, "completed", "be approved")
        m.status = "approved"
        log.info('milestone "%s" approved by client', m.id)
        return m

    def raise_dispute(self, milestone_id: str, reason: str, role: str) -> Dispute:
        _require_role(role, "client", "raise a dispute")
        m = self.milestone(milestone_id)
        if not reason or not reason.strip():
            raise PreconditionError("A dispute needs a reason.")
        existing = self.open_dispute_for(milestone_id)
        if existing is not None:
            raise ConflictError(f'Milestone "{m.title}" already has an open dispute ({existing.id}).')
        _require_status(m, "completed", "be disputed")

        self._dispute_seq += 1
        dispute = Dispute(
            id=f"dispute_{self._dispute_seq}",
            milestone_id=milestone_id,
            raised_by_role=role,
            reason=reason.strip(),
        )
        self.disputes.append(dispute)
        m.status = "disputed"
        log.info('dispute %s raised on milestone "%s"', dispute.id, m.id)
        return dispute

    def resolve(self, dispute_id: str, resolution: str, reason: str | None, role: str) -> Milestone:
        _require_role(role, "arbitrator", "resolve a dispute")
        if resolution not in RESOLUTIONS:
            raise PreconditionError(
                f"Unknown resolution {resolution!r}. Expected one of: {', '.join(RESOLUTIONS)}"
            )
        dispute = self.dispute(dispute_id)
        if dispute.status != "open":
            raise ConflictError(f"Dispute {dispute_id} is already resolved ({dispute.resolution}).")

        m = self.milestone(dispute.milestone_id)
        dispute.status = "resolved"
        dispute.resolution = resolution
        dispute.resolution_reason = (reason or "").strip() or f"Resolved by arbitrator: {resolution}"
        dispute.resolved_at = self.clock()
        m.status = RESOLUTION_OUTCOME[resolution]
        log.info('dispute %s resolved (%s): milestone "%s" -> %s', dispute.id, resolution, m.id, m.status)
        return m

    def release_all(self, role: str = "client") -> list[Milestone]:
        _require_role(role, "client", "release funds")
        if not self.milestones:
            raise PreconditionError("There are no milestones to release.")
        if self.all_released:
            raise ConflictError("Funds have already been released.")
        blockers = self.release_blockers()
        if blockers:
            raise PreconditionError("Cannot release funds: " + "; ".join(blockers) + ".")
        for m in self.milestones.values():
            m.status = "released"
        log.info("released %d milestones", len(self.milestones))
        return list(self.milestones.values())


def _require_role(role: str, expected: str, what: str) -> None:
    if role != expected:
        raise PreconditionError(f"Only the {expected} can {what} (acting as {role}).")


def _require_status(m: Milestone, expected: str, what: str) -> None:
    if m.status != expected:
        raise PreconditionError(
            f'Milestone "{m.title}" is {m.status}; only {expected} milestones can {what}.'
        )

"""Approval subsystem.

Answers "is this contract fully approved for its current round?" and
maintains the per-approver step list. It has no transitions of its own:
the lifecycle state machine calls these helpers inside its transaction.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from datetime import datetime

from pydantic import BaseModel

from contract_workflow.errors import ConflictError, NotFoundError, ValidationError
from contract_workflow.models import ApprovalStatus, ApprovalStep, Contract


class ApprovalSummary(BaseModel):
    """Aggregate view of one approval round."""

    total: int
    approved: int
    pending: int
    rejected: int
    requested_changes: int
    fully_approved: bool
    has_rejection: bool


def summarize_steps(steps: Iterable[ApprovalStep]) -> ApprovalSummary:
    """Aggregate a set of steps.

    Depends only on the multiset of step statuses, never on their order.
    An empty set is not fully approved.
    """
    counts = Counter(step.status for step in steps)
    total = sum(counts.values())
    approved = counts[ApprovalStatus.APPROVED]
    return ApprovalSummary(
        total=total,
        approved=approved,
        pending=counts[ApprovalStatus.PENDING],
        rejected=counts[ApprovalStatus.REJECTED],
        requested_changes=counts[ApprovalStatus.REQUESTED_CHANGES],
        fully_approved=total > 0 and approved == total,
        has_rejection=counts[ApprovalStatus.REJECTED] > 0,
    )


def is_fully_approved(steps: Iterable[ApprovalStep]) -> bool:
    return summarize_steps(steps).fully_approved


def void_active_round(contract: Contract) -> int:
    """Mark every step of the active round void. Returns how many were voided."""
    voided = 0
    for step in contract.active_steps:
        step.void = True
        voided += 1
    contract.review_version_id = None
    contract.approval_started_at = None
    contract.approval_completed_at = None
    return voided


def open_round(
    contract: Contract,
    version_id: str,
    approvers: list[str],
    now: datetime,
) -> list[ApprovalStep]:
    """Start a fresh approval round for *version_id*.

    Steps of earlier rounds are kept for audit but voided.

    Raises:
        ValidationError: If the version does not exist or *approvers* is empty.
    """
    if contract.find_version(version_id) is None:
        raise ValidationError(
            f"Version {version_id} does not exist on contract {contract.id}"
        )
    if not approvers:
        raise ValidationError("At least one approver is required")

    void_active_round(contract)
    contract.approval_round += 1
    steps = [
        ApprovalStep(
            approver_id=approver_id,
            round_number=contract.approval_round,
            version_id=version_id,
        )
        for approver_id in approvers
    ]
    contract.approval_steps.extend(steps)
    contract.review_version_id = version_id
    contract.approval_started_at = now
    contract.approval_completed_at = None
    return steps


def find_step(
    contract: Contract,
    step_id: str | None = None,
    approver_id: str | None = None,
) -> ApprovalStep:
    """Locate a step of the active round by id or by approver.

    Raises:
        ValidationError: If neither identifier is given.
        NotFoundError: If no active step matches.
    """
    if not step_id and not approver_id:
        raise ValidationError("step_id or approver_id is required")
    for step in contract.active_steps:
        if step_id and step.id != step_id:
            continue
        if approver_id and step.approver_id != approver_id:
            continue
        return step
    ref = step_id or f"for approver {approver_id}"
    raise NotFoundError(f"Approval step {ref} not found in the active round")


def record_decision(
    step: ApprovalStep,
    status: ApprovalStatus,
    now: datetime,
    comment: str | None = None,
) -> ApprovalStep:
    """Record an approver's decision on a pending step.

    Raises:
        ConflictError: If the step was already decided.
    """
    if step.status != ApprovalStatus.PENDING:
        raise ConflictError(
            f"Approval step {step.id} was already decided ({step.status.value})"
        )
    step.status = status
    step.decided_at = now
    step.comment = comment
    if status == ApprovalStatus.APPROVED:
        step.approved_at = now
    return step

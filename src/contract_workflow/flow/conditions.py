"""Guard functions for the contract lifecycle state machine.

These pure functions decide whether a requested move is legal from a
contract's current status. The state machine consults them before it
touches any state.
"""

from __future__ import annotations

from contract_workflow.errors import InvalidTransitionError
from contract_workflow.models import ContractStatus, SigningStatus

S = ContractStatus

# Targets reachable through a plain status change. APPROVED is absent on
# purpose: only the last APPROVE_STEP of a round can produce it.
STATUS_TRANSITIONS: dict[ContractStatus, frozenset[ContractStatus]] = {
    S.DRAFT: frozenset({S.IN_REVIEW, S.PENDING_APPROVAL, S.ARCHIVED}),
    S.IN_REVIEW: frozenset({S.DRAFT, S.PENDING_APPROVAL, S.ARCHIVED}),
    S.PENDING_APPROVAL: frozenset({S.IN_REVIEW, S.ARCHIVED}),
    S.APPROVED: frozenset({S.IN_REVIEW, S.SENT_FOR_SIGNATURE, S.ARCHIVED}),
    S.SENT_FOR_SIGNATURE: frozenset({S.APPROVED, S.FULLY_EXECUTED, S.ARCHIVED}),
    S.FULLY_EXECUTED: frozenset({S.ACTIVE, S.ARCHIVED}),
    S.ACTIVE: frozenset({S.EXPIRED, S.TERMINATED, S.ARCHIVED}),
    S.EXPIRED: frozenset({S.ARCHIVED}),
    S.TERMINATED: frozenset({S.ARCHIVED}),
    S.ARCHIVED: frozenset(),
    S.SUPERSEDED: frozenset(),
}

# Statuses from which a new version may be created.
VERSIONABLE_STATUSES = frozenset({
    S.DRAFT,
    S.IN_REVIEW,
    S.PENDING_APPROVAL,
    S.APPROVED,
    S.SENT_FOR_SIGNATURE,
})

SIGNING_ORDER: tuple[SigningStatus, ...] = tuple(SigningStatus)


def can_set_status(current: ContractStatus, target: ContractStatus) -> bool:
    """Check whether a plain status change from *current* to *target* is legal."""
    return target in STATUS_TRANSITIONS[current]


def require_status_change(current: ContractStatus, target: ContractStatus) -> None:
    """Raise :class:`InvalidTransitionError` unless *current* -> *target* is legal."""
    if not can_set_status(current, target):
        raise InvalidTransitionError(
            f"Cannot move contract from {current.value} to {target.value}"
        )


def require_status(
    current: ContractStatus,
    allowed: ContractStatus | frozenset[ContractStatus] | set[ContractStatus],
    action: str,
) -> None:
    """Raise :class:`InvalidTransitionError` unless *current* is in *allowed*."""
    allowed_set = {allowed} if isinstance(allowed, ContractStatus) else set(allowed)
    if current not in allowed_set:
        expected = ", ".join(sorted(s.value for s in allowed_set))
        raise InvalidTransitionError(
            f"{action} is not allowed while the contract is {current.value} "
            f"(requires {expected})"
        )


def can_edit_content(status: ContractStatus) -> bool:
    """Version content may only change in place while the contract is a draft."""
    return status == S.DRAFT


def can_create_version(status: ContractStatus) -> bool:
    return status in VERSIONABLE_STATUSES


def new_version_resets_review(status: ContractStatus) -> bool:
    """A new version outside DRAFT voids the active round and forces IN_REVIEW."""
    return status != S.DRAFT


def can_advance_signing(
    current: SigningStatus | None,
    target: SigningStatus,
) -> bool:
    """Signing sub-state only moves forward (skipping steps is allowed)."""
    if current is None:
        return False
    return SIGNING_ORDER.index(target) > SIGNING_ORDER.index(current)

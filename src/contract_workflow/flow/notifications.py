"""Notification intent builders.

The engine describes who should hear about a change and why; delivering
the message over email, in-app or SMS is the caller's job.
"""

from __future__ import annotations

from datetime import date

from contract_workflow.models import (
    Contract,
    ContractStatus,
    NotificationIntent,
    NotificationKind,
    SigningStatus,
)

_STATUS_LABELS: dict[ContractStatus, str] = {
    ContractStatus.DRAFT: "Draft",
    ContractStatus.IN_REVIEW: "In Review",
    ContractStatus.PENDING_APPROVAL: "Pending Approval",
    ContractStatus.APPROVED: "Approved",
    ContractStatus.SENT_FOR_SIGNATURE: "Sent for Signature",
    ContractStatus.FULLY_EXECUTED: "Fully Executed",
    ContractStatus.ACTIVE: "Active",
    ContractStatus.EXPIRED: "Expired",
    ContractStatus.TERMINATED: "Terminated",
    ContractStatus.ARCHIVED: "Archived",
    ContractStatus.SUPERSEDED: "Superseded",
}

_SIGNING_LABELS: dict[SigningStatus, str] = {
    SigningStatus.AWAITING_INTERNAL: "Awaiting Internal Signature",
    SigningStatus.SENT_TO_COUNTERPARTY: "Sent to Counterparty",
    SigningStatus.VIEWED_BY_COUNTERPARTY: "Viewed by Counterparty",
    SigningStatus.SIGNED_BY_COUNTERPARTY: "Signed by Counterparty",
}


def status_label(status: ContractStatus) -> str:
    return _STATUS_LABELS[status]


def _intent(
    contract: Contract,
    target_user_id: str,
    kind: NotificationKind,
    message: str,
) -> NotificationIntent:
    return NotificationIntent(
        target_user_id=target_user_id,
        kind=kind,
        message=message,
        related_contract_id=contract.id,
    )


def approval_requested(contract: Contract, approver_id: str, version_number: int) -> NotificationIntent:
    return _intent(
        contract,
        approver_id,
        NotificationKind.APPROVAL_REQUEST,
        f'Your approval is requested for "{contract.title}" (version {version_number}).',
    )


def approval_response(contract: Contract, approver_id: str, decision: str) -> NotificationIntent:
    return _intent(
        contract,
        contract.owner_id,
        NotificationKind.APPROVAL_RESPONSE,
        f'{approver_id} {decision} "{contract.title}".',
    )


def status_changed(
    contract: Contract,
    old_status: ContractStatus,
    target_user_id: str | None = None,
) -> NotificationIntent:
    return _intent(
        contract,
        target_user_id or contract.owner_id,
        NotificationKind.STATUS_CHANGE,
        f'"{contract.title}" moved from {status_label(old_status)} '
        f"to {status_label(contract.status)}.",
    )


def signing_progress(contract: Contract) -> NotificationIntent:
    label = _SIGNING_LABELS[contract.signing_status] if contract.signing_status else "Not in signing"
    return _intent(
        contract,
        contract.owner_id,
        NotificationKind.SIGNING_PROGRESS,
        f'Signing update for "{contract.title}": {label}.',
    )


def mentioned(contract: Contract, user_id: str, author_id: str) -> NotificationIntent:
    return _intent(
        contract,
        user_id,
        NotificationKind.COMMENT_MENTION,
        f'{author_id} mentioned you in renewal feedback on "{contract.title}".',
    )


def renewal_reminder(contract: Contract, target_user_id: str, message: str) -> NotificationIntent:
    return _intent(contract, target_user_id, NotificationKind.RENEWAL_REMINDER, message)


def renewal_started(contract: Contract, target_user_id: str, deadline: date) -> NotificationIntent:
    return renewal_reminder(
        contract,
        target_user_id,
        f'Renewal decision needed for "{contract.title}" before the notice '
        f"deadline on {deadline.isoformat()}.",
    )


def expiring_soon(contract: Contract, days_remaining: int) -> NotificationIntent:
    end = contract.end_date.isoformat() if contract.end_date else "an unknown date"
    return renewal_reminder(
        contract,
        contract.owner_id,
        f'Contract "{contract.title}" is expiring in {days_remaining} days on {end}.',
    )

"""Renewal subsystem.

Models the decision tree a contract owner walks through as the end date
approaches: renew as-is, amend, renegotiate as a new contract, or
terminate. Functions here operate on working copies handed to them by
the lifecycle state machine and return the notification intents the
change should produce.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from typing import TypeVar

import structlog

from contract_workflow.config import Settings
from contract_workflow.errors import (
    ConflictError,
    NotFoundError,
    ValidationError,
)
from contract_workflow.flow import notifications
from contract_workflow.flow.actions import (
    AmendPayload,
    RenegotiatePayload,
    RenewAsIsPayload,
    StartRenewalPayload,
)
from contract_workflow.flow.approval import void_active_round
from contract_workflow.flow.versions import append_version
from contract_workflow.models import (
    TERMINAL_STATUSES,
    Contract,
    ContractStatus,
    ContractVersion,
    NotificationIntent,
    RenewalFeedback,
    RenewalMode,
    RenewalRequest,
    RenewalStatus,
    SigningStatus,
    TerminationPolicy,
)
from contract_workflow.tools.term_tools import (
    RenewalTerms,
    compute_renewal_terms,
    internal_decision_deadline,
    notice_deadline,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Lookup helpers
# ---------------------------------------------------------------------------


def require_live_renewal(contract: Contract, renewal_request_id: str | None = None) -> RenewalRequest:
    """Return the contract's live renewal request.

    Raises:
        NotFoundError: If there is no live request, or *renewal_request_id*
            names a request that does not exist or has concluded.
    """
    if renewal_request_id:
        request = next((r for r in contract.renewal_requests if r.id == renewal_request_id), None)
        if request is None:
            raise NotFoundError(f"Renewal request {renewal_request_id} not found")
        if not request.is_live:
            raise NotFoundError(
                f"Renewal request {renewal_request_id} is {request.status.value} "
                "and no longer accepts actions"
            )
        return request

    request = contract.live_renewal
    if request is None:
        raise NotFoundError(f"Contract {contract.id} has no live renewal request")
    return request


def ensure_no_live_renewal(contract: Contract) -> None:
    """Raise :class:`ConflictError` if the contract already has a live renewal."""
    live = contract.live_renewal
    if live is not None:
        raise ConflictError(
            f"Contract {contract.id} already has a live renewal request "
            f"{live.id} ({live.status.value})"
        )


def require_decision_needed(request: RenewalRequest) -> None:
    """Raise :class:`ConflictError` if a branch was already chosen."""
    if request.status != RenewalStatus.DECISION_NEEDED:
        raise ConflictError(
            f"Renewal request {request.id} already has a decision "
            f"({request.mode.value}, {request.status.value})"
        )


def _audience(contract: Contract, request: RenewalRequest) -> list[str]:
    users = [contract.owner_id]
    if request.renewal_owner_id and request.renewal_owner_id != contract.owner_id:
        users.append(request.renewal_owner_id)
    return users


def _complete(request: RenewalRequest, now: datetime) -> None:
    request.status = RenewalStatus.COMPLETED
    request.completed_at = now


def _terms_for(contract: Contract, request: RenewalRequest) -> RenewalTerms:
    if contract.end_date is None:
        raise ValidationError(f"Contract {contract.id} has no end date to renew from")
    return compute_renewal_terms(
        end_date=contract.end_date,
        value=contract.value,
        term_months=request.renewal_term_months,
        uplift_percent=request.uplift_percent,
    )


# ---------------------------------------------------------------------------
# Starting and editing a renewal
# ---------------------------------------------------------------------------


def start_renewal(
    contract: Contract,
    payload: StartRenewalPayload,
    settings: Settings,
    now: datetime,
) -> tuple[RenewalRequest, list[NotificationIntent]]:
    """Open a renewal request in ``DECISION_NEEDED`` for an ACTIVE contract.

    Term, notice period and uplift come from the payload, then from the
    contract's own renewal defaults, then from settings.

    Raises:
        ConflictError: If a live renewal already exists.
        ValidationError: If the contract has no end date.
    """
    ensure_no_live_renewal(contract)
    if contract.end_date is None:
        raise ValidationError(f"Contract {contract.id} has no end date to renew from")

    term_months = _first_set(
        payload.renewal_term_months,
        contract.renewal_term_months,
        settings.default_renewal_term_months,
    )
    notice_days = _first_set(
        payload.notice_period_days,
        contract.notice_period_days,
        settings.default_notice_period_days,
    )
    uplift = _first_set(
        payload.uplift_percent,
        contract.uplift_percent,
        Decimal(str(settings.default_uplift_percent)),
    )
    deadline = notice_deadline(contract.end_date, notice_days)

    request = RenewalRequest(
        contract_id=contract.id,
        renewal_owner_id=payload.renewal_owner_id or contract.owner_id,
        renewal_term_months=term_months,
        notice_period_days=notice_days,
        uplift_percent=uplift,
        notice_deadline=deadline,
        internal_decision_deadline=internal_decision_deadline(
            deadline, settings.internal_decision_lead_days
        ),
        created_at=now,
    )
    contract.renewal_requests.append(request)

    logger.info(
        "renewal_started",
        contract_id=contract.id,
        renewal_request_id=request.id,
        notice_deadline=deadline.isoformat(),
    )
    intents = [
        notifications.renewal_started(contract, user_id, deadline)
        for user_id in _audience(contract, request)
    ]
    return request, intents


def _first_set(*values: T | None) -> T:
    return next(v for v in values if v is not None)


def update_terms(
    contract: Contract,
    request: RenewalRequest,
    settings: Settings,
    renewal_term_months: int | None = None,
    notice_period_days: int | None = None,
    uplift_percent: Decimal | None = None,
) -> RenewalRequest:
    """Adjust the terms of a live renewal and recompute its deadlines."""
    if renewal_term_months is not None:
        if renewal_term_months < 1:
            raise ValidationError("renewal_term_months must be at least 1")
        request.renewal_term_months = renewal_term_months
    if notice_period_days is not None:
        if notice_period_days < 0:
            raise ValidationError("notice_period_days must not be negative")
        request.notice_period_days = notice_period_days
    if uplift_percent is not None:
        request.uplift_percent = uplift_percent

    if contract.end_date is not None:
        request.notice_deadline = notice_deadline(contract.end_date, request.notice_period_days)
        request.internal_decision_deadline = internal_decision_deadline(
            request.notice_deadline, settings.internal_decision_lead_days
        )
    return request


def add_feedback(
    contract: Contract,
    request: RenewalRequest,
    user_id: str,
    text: str,
    mentions: list[str],
    now: datetime,
) -> tuple[RenewalFeedback, list[NotificationIntent]]:
    """Append feedback to a live renewal; status and mode never change."""
    if not text.strip():
        raise ValidationError("Feedback text must not be empty")
    feedback = RenewalFeedback(
        user_id=user_id,
        text=text,
        mentions=list(dict.fromkeys(mentions)),
        created_at=now,
    )
    request.feedback.append(feedback)
    intents = [
        notifications.mentioned(contract, mentioned_id, user_id)
        for mentioned_id in feedback.mentions
        if mentioned_id != user_id
    ]
    return feedback, intents


def cancel(
    contract: Contract,
    request: RenewalRequest,
    now: datetime,
    reason: str | None = None,
) -> list[NotificationIntent]:
    """Cancel a live renewal request."""
    request.status = RenewalStatus.CANCELLED
    request.completed_at = now
    if reason:
        request.notes = reason
    logger.info("renewal_cancelled", contract_id=contract.id, renewal_request_id=request.id)
    return [
        notifications.renewal_reminder(
            contract, user_id, f'The renewal of "{contract.title}" was cancelled.'
        )
        for user_id in _audience(contract, request)
    ]


# ---------------------------------------------------------------------------
# Decision branches
# ---------------------------------------------------------------------------


def decide_terminate(
    contract: Contract,
    request: RenewalRequest,
    policy: TerminationPolicy,
    now: datetime,
    notes: str | None = None,
) -> list[NotificationIntent]:
    """Record a decision not to renew.

    Under ``IMMEDIATE`` the contract becomes TERMINATED now. Under
    ``AT_END_DATE`` it stays ACTIVE with ``scheduled_termination_date``
    set, and the expiry sweep terminates it once the end date passes.
    """
    require_decision_needed(request)
    request.mode = RenewalMode.TERMINATE
    request.termination_policy = policy
    request.notes = notes
    _complete(request, now)

    if policy == TerminationPolicy.IMMEDIATE:
        old_status = contract.status
        contract.status = ContractStatus.TERMINATED
        contract.terminated_at = now
        return [notifications.status_changed(contract, old_status, user_id)
                for user_id in _audience(contract, request)]

    contract.scheduled_termination_date = contract.end_date
    end = contract.end_date.isoformat() if contract.end_date else "its end date"
    return [
        notifications.renewal_reminder(
            contract,
            user_id,
            f'"{contract.title}" will not be renewed and will be marked as '
            f"Terminated on {end}.",
        )
        for user_id in _audience(contract, request)
    ]


def start_amendment(
    contract: Contract,
    request: RenewalRequest,
    payload: AmendPayload,
    now: datetime,
) -> tuple[ContractVersion, list[NotificationIntent]]:
    """Amend the same contract: new version, back to IN_REVIEW."""
    require_decision_needed(request)
    request.mode = RenewalMode.AMENDMENT
    request.status = RenewalStatus.IN_PROGRESS
    request.notes = payload.notes

    version = append_version(
        contract,
        now,
        content=payload.content,
        author_id=payload.actor_id,
        value=payload.value,
        effective_date=payload.effective_date,
        end_date=payload.end_date,
        frequency=payload.frequency,
    )
    void_active_round(contract)
    old_status = contract.status
    contract.status = ContractStatus.IN_REVIEW
    return version, [notifications.status_changed(contract, old_status)]


def _build_successor(
    contract: Contract,
    request: RenewalRequest,
    terms: RenewalTerms,
    status: ContractStatus,
    title: str,
    now: datetime,
    author_id: str | None,
) -> Contract:
    latest = contract.latest_version
    successor = Contract(
        title=title,
        contract_type=contract.contract_type,
        status=status,
        risk_level=contract.risk_level,
        counterparty_id=contract.counterparty_id,
        owner_id=contract.owner_id,
        value=terms.value,
        frequency=contract.frequency,
        effective_date=terms.start_date,
        end_date=terms.end_date,
        auto_renew=contract.auto_renew,
        renewal_term_months=request.renewal_term_months,
        notice_period_days=request.notice_period_days,
        uplift_percent=request.uplift_percent,
        parent_contract_id=contract.id,
        created_at=now,
        updated_at=now,
    )
    append_version(
        successor,
        now,
        content=latest.content if latest else "",
        author_id=author_id,
        value=terms.value,
        effective_date=terms.start_date,
        end_date=terms.end_date,
        frequency=contract.frequency,
    )
    return successor


def start_renegotiation(
    contract: Contract,
    request: RenewalRequest,
    payload: RenegotiatePayload,
    now: datetime,
) -> tuple[Contract, list[NotificationIntent]]:
    """Create a DRAFT sibling contract to negotiate the next term.

    The renewal stays IN_PROGRESS until the sibling either becomes ACTIVE
    (renewal completed, original superseded) or is archived (renewal
    cancelled).
    """
    require_decision_needed(request)
    terms = _terms_for(contract, request)
    successor = _build_successor(
        contract,
        request,
        terms,
        status=ContractStatus.DRAFT,
        title=payload.title or f"[RENEWAL] {contract.title}",
        now=now,
        author_id=payload.actor_id,
    )
    request.mode = RenewalMode.NEW_CONTRACT
    request.status = RenewalStatus.IN_PROGRESS
    request.successor_contract_id = successor.id
    request.notes = payload.notes

    logger.info(
        "renewal_draft_created",
        contract_id=contract.id,
        successor_id=successor.id,
        renewal_request_id=request.id,
    )
    intents = [
        notifications.renewal_reminder(
            contract,
            user_id,
            f'A renewal draft "{successor.title}" was created for "{contract.title}".',
        )
        for user_id in _audience(contract, request)
    ]
    return successor, intents


def renew_as_is(
    contract: Contract,
    request: RenewalRequest,
    payload: RenewAsIsPayload,
    settings: Settings,
    now: datetime,
) -> tuple[Contract, list[NotificationIntent]]:
    """Renew on unchanged terms: successor contract, original superseded.

    The successor is created ACTIVE without another approval round. When
    ``settings.enforce_reexecution_gate`` is on and the caller asks for
    re-execution, it starts in SENT_FOR_SIGNATURE instead.
    """
    require_decision_needed(request)
    terms = _terms_for(contract, request)

    gated = settings.enforce_reexecution_gate and payload.require_reexecution
    status = ContractStatus.SENT_FOR_SIGNATURE if gated else ContractStatus.ACTIVE
    successor = _build_successor(
        contract,
        request,
        terms,
        status=status,
        title=contract.title,
        now=now,
        author_id=payload.actor_id,
    )
    if gated:
        successor.signing_status = SigningStatus.AWAITING_INTERNAL
        successor.signing_status_updated_at = now
    else:
        successor.executed_version_id = successor.versions[0].id

    request.mode = RenewalMode.RENEW_AS_IS
    request.require_reexecution = payload.require_reexecution
    request.successor_contract_id = successor.id
    request.notes = payload.notes
    _complete(request, now)

    old_status = contract.status
    contract.status = ContractStatus.SUPERSEDED

    logger.info(
        "renewed_as_is",
        contract_id=contract.id,
        successor_id=successor.id,
        start_date=terms.start_date.isoformat(),
        end_date=terms.end_date.isoformat(),
        value=str(terms.value),
        reexecution_gate=gated,
    )
    return successor, [notifications.status_changed(contract, old_status)]


def _renegotiation_for(parent: Contract, successor_id: str) -> RenewalRequest | None:
    return next(
        (
            r for r in parent.renewal_requests
            if r.is_live
            and r.mode == RenewalMode.NEW_CONTRACT
            and r.successor_contract_id == successor_id
        ),
        None,
    )


def conclude_renegotiation(
    parent: Contract,
    successor: Contract,
    now: datetime,
) -> list[NotificationIntent]:
    """Settle the parent's renewal once its successor reaches an outcome.

    A successor that became ACTIVE completes the renewal and supersedes
    the parent; an archived successor cancels the renewal.
    """
    request = _renegotiation_for(parent, successor.id)
    if request is None:
        return []

    if successor.status == ContractStatus.ACTIVE:
        _complete(request, now)
        if parent.status in TERMINAL_STATUSES:
            return []
        old_status = parent.status
        parent.status = ContractStatus.SUPERSEDED
        return [notifications.status_changed(parent, old_status)]

    if successor.status == ContractStatus.ARCHIVED:
        return cancel(parent, request, now, reason="Renewal draft was archived")

    return []


def complete_amendment(contract: Contract, now: datetime) -> bool:
    """Complete a live AMENDMENT renewal once the amended contract is ACTIVE again."""
    request = contract.live_renewal
    if request is None or request.mode != RenewalMode.AMENDMENT:
        return False
    _complete(request, now)
    return True


# ---------------------------------------------------------------------------
# Derived data
# ---------------------------------------------------------------------------


def lifetime_value(contract_id: str, get_contract: Callable[[str], Contract]) -> Decimal:
    """Sum the value of a contract and every ancestor on its parent chain.

    Read-only; a missing ancestor ends the walk and a cycle is never
    counted twice.
    """
    total = Decimal("0")
    seen: set[str] = set()
    current_id: str | None = contract_id
    while current_id and current_id not in seen:
        seen.add(current_id)
        try:
            contract = get_contract(current_id)
        except NotFoundError:
            if current_id == contract_id:
                raise
            logger.warning("ancestor_missing", contract_id=contract_id, ancestor_id=current_id)
            break
        total += contract.value
        current_id = contract.parent_contract_id
    return total

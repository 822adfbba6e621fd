"""Contract Lifecycle Flow - the transactional state machine.

Every operation follows the same shape: load working copies inside one
store transaction, check guards, apply the change through the approval,
renewal and version helpers, then commit. The authoritative contract is
re-read after commit and returned together with the notification intents
the change produced.

State graph::

    DRAFT -> IN_REVIEW -> PENDING_APPROVAL -> APPROVED -> SENT_FOR_SIGNATURE
                ^                |                              |
                +----------------+ (reject / withdraw)          v
                                                         FULLY_EXECUTED
                                                                |
                                                                v
                            SUPERSEDED <- (renewal) <------- ACTIVE
                                                           /        \\
                                                      EXPIRED    TERMINATED

    ARCHIVED is reachable from every non-terminal status.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, TYPE_CHECKING

import structlog
from pydantic import ValidationError as PydanticValidationError

from contract_workflow.config import Settings, get_settings
from contract_workflow.errors import (
    ConflictError,
    InvalidTransitionError,
    TransitionError,
    ValidationError,
)
from contract_workflow.flow import notifications, renewal
from contract_workflow.flow.actions import (
    Action,
    ActionName,
    ActionPayload,
    AmendPayload,
    RenegotiatePayload,
    RenewAsIsPayload,
    RenewalDecisionPayload,
    RequestApprovalPayload,
    SetStatus,
    StartRenewalPayload,
    StepDecisionPayload,
    TerminatePayload,
    Verb,
    parse_action,
)
from contract_workflow.flow.approval import (
    ApprovalSummary,
    find_step,
    is_fully_approved,
    open_round,
    record_decision,
    summarize_steps,
    void_active_round,
)
from contract_workflow.flow.conditions import (
    can_advance_signing,
    can_create_version,
    new_version_resets_review,
    require_status,
    require_status_change,
)
from contract_workflow.flow.versions import append_version, edit_draft_version
from contract_workflow.models import (
    ApprovalStatus,
    Contract,
    ContractStatus,
    NotificationIntent,
    RenewalMode,
    RenewalRequest,
    RenewalStatus,
    SigningStatus,
    TransitionResult,
)
from contract_workflow.store import ContractStore, UnitOfWork
from contract_workflow.tools.diff_tools import DiffEntry, compare_versions

if TYPE_CHECKING:
    from contract_workflow.streaming import ContractEventStream

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass
class _Changes:
    """Side output collected while a transaction runs."""

    uow: UnitOfWork
    now: datetime
    notifications: list[NotificationIntent] = field(default_factory=list)
    created: list[Contract] = field(default_factory=list)

    def notify(self, *intents: NotificationIntent) -> None:
        self.notifications.extend(intents)

    def create(self, contract: Contract) -> Contract:
        self.uow.add(contract)
        self.created.append(contract)
        return contract


Operation = Callable[[_Changes, Contract], None]


class ContractLifecycleFlow:
    """Transactional state machine over a :class:`ContractStore`.

    Args:
        store: Where contracts live.
        settings: Renewal defaults and policies. Defaults to
            :func:`get_settings`.
        clock: Returns the current time; injectable for tests.
        event_stream: Optional stream that receives one event per
            committed operation.
    """

    def __init__(
        self,
        store: ContractStore,
        settings: Settings | None = None,
        clock: Clock | None = None,
        event_stream: ContractEventStream | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or get_settings()
        self._clock = clock or _utcnow
        self._event_stream = event_stream
        self._handlers: dict[Verb, Callable[[_Changes, Contract, Any], None]] = {
            Verb.APPROVE_STEP: self._approve_step,
            Verb.REJECT_STEP: self._reject_step,
            Verb.START_RENEWAL: self._start_renewal,
            Verb.RENEW_AS_IS: self._renew_as_is,
            Verb.RENEW_AMEND_START: self._renew_amend,
            Verb.RENEW_RENEGOTIATE_START: self._renew_renegotiate,
            Verb.RENEW_DECIDE_TERMINATE: self._renew_terminate,
        }

    @property
    def store(self) -> ContractStore:
        return self._store

    @property
    def settings(self) -> Settings:
        return self._settings

    def today(self) -> date:
        return self._clock().date()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def transition(
        self,
        contract_id: str,
        action: str | ActionName | Action,
        payload: dict[str, Any] | ActionPayload | None = None,
    ) -> TransitionResult:
        """Apply one named action to a contract.

        Args:
            contract_id: Target contract.
            action: One of the :class:`ActionName` strings.
            payload: Action-specific fields; see :mod:`contract_workflow.flow.actions`.

        Returns:
            The committed contract, the notification intents to deliver,
            any contracts the action created and any other existing
            contracts it changed.

        Raises:
            ValidationError: Unknown action or malformed payload.
            InvalidTransitionError: Action not legal from the current status.
            ConflictError: Stale ``expected_revision`` or duplicate renewal.
            NotFoundError: Unknown contract, step, version or renewal.
        """
        try:
            parsed = parse_action(action, payload)
        except ValidationError as exc:
            logger.info("transition_rejected", contract_id=contract_id, action=str(action), error=exc.kind)
            raise

        def apply(changes: _Changes, contract: Contract) -> None:
            if isinstance(parsed, SetStatus):
                self._set_status(changes, contract, parsed.target, parsed.payload)
            else:
                self._handlers[parsed.verb](changes, contract, parsed.payload)

        return self._run(contract_id, parsed.name, parsed.payload.expected_revision, apply)

    def create_contract(
        self,
        title: str,
        owner_id: str,
        content: str = "",
        author_id: str | None = None,
        **fields: Any,
    ) -> Contract:
        """Create a DRAFT contract with version 1.

        Extra keyword arguments are any :class:`Contract` fields (value,
        dates, renewal defaults, ...). The status is always DRAFT.

        Raises:
            ValidationError: If a field is malformed.
        """
        if not title.strip():
            raise ValidationError("Contract title must not be empty")
        fields.pop("status", None)
        now = self._clock()
        try:
            contract = Contract(title=title, owner_id=owner_id, created_at=now, updated_at=now, **fields)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid contract: {exc.errors()[0]['msg']}") from exc
        append_version(contract, now, content=content, author_id=author_id or owner_id)
        stored = self._store.insert(contract)
        logger.info("contract_created", contract_id=stored.id, title=stored.title, owner_id=owner_id)
        return stored

    def create_version(
        self,
        contract_id: str,
        content: str | None = None,
        author_id: str | None = None,
        value: Decimal | None = None,
        effective_date: date | None = None,
        end_date: date | None = None,
        frequency: str | None = None,
        expected_revision: int | None = None,
    ) -> TransitionResult:
        """Append a new version; outside DRAFT this restarts review."""

        def apply(changes: _Changes, contract: Contract) -> None:
            if not can_create_version(contract.status):
                raise InvalidTransitionError(
                    f"Cannot create a version while the contract is {contract.status.value}"
                )
            append_version(
                contract,
                changes.now,
                content=content,
                author_id=author_id,
                value=value,
                effective_date=effective_date,
                end_date=end_date,
                frequency=frequency,
            )
            if new_version_resets_review(contract.status):
                void_active_round(contract)
                self._clear_signing(contract, changes.now)
                self._move(changes, contract, ContractStatus.IN_REVIEW)

        return self._run(contract_id, "CREATE_VERSION", expected_revision, apply)

    def update_draft_version(
        self,
        contract_id: str,
        version_id: str,
        content: str | None = None,
        value: Decimal | None = None,
        effective_date: date | None = None,
        end_date: date | None = None,
        frequency: str | None = None,
        expected_revision: int | None = None,
    ) -> TransitionResult:
        """Edit the latest version in place while the contract is a draft."""

        def apply(changes: _Changes, contract: Contract) -> None:
            edit_draft_version(
                contract,
                version_id,
                content=content,
                value=value,
                effective_date=effective_date,
                end_date=end_date,
                frequency=frequency,
            )

        return self._run(contract_id, "UPDATE_DRAFT_VERSION", expected_revision, apply)

    def update_signing_status(
        self,
        contract_id: str,
        signing_status: SigningStatus,
        expected_revision: int | None = None,
    ) -> TransitionResult:
        """Move the signing sub-state forward."""

        def apply(changes: _Changes, contract: Contract) -> None:
            require_status(contract.status, ContractStatus.SENT_FOR_SIGNATURE, "Signing update")
            if not can_advance_signing(contract.signing_status, signing_status):
                current = contract.signing_status.value if contract.signing_status else "none"
                raise InvalidTransitionError(
                    f"Signing status cannot move from {current} to {signing_status.value}"
                )
            contract.signing_status = signing_status
            contract.signing_status_updated_at = changes.now
            changes.notify(notifications.signing_progress(contract))

        return self._run(contract_id, "UPDATE_SIGNING_STATUS", expected_revision, apply)

    def add_renewal_feedback(
        self,
        contract_id: str,
        user_id: str,
        text: str,
        mentions: list[str] | None = None,
        renewal_request_id: str | None = None,
    ) -> TransitionResult:
        def apply(changes: _Changes, contract: Contract) -> None:
            request = renewal.require_live_renewal(contract, renewal_request_id)
            _, intents = renewal.add_feedback(
                contract, request, user_id, text, mentions or [], changes.now
            )
            changes.notify(*intents)

        return self._run(contract_id, "ADD_RENEWAL_FEEDBACK", None, apply)

    def update_renewal_terms(
        self,
        contract_id: str,
        renewal_request_id: str | None = None,
        renewal_term_months: int | None = None,
        notice_period_days: int | None = None,
        uplift_percent: Decimal | None = None,
        expected_revision: int | None = None,
    ) -> TransitionResult:
        """Adjust a renewal that is still waiting for a decision."""

        def apply(changes: _Changes, contract: Contract) -> None:
            request = renewal.require_live_renewal(contract, renewal_request_id)
            renewal.require_decision_needed(request)
            renewal.update_terms(
                contract,
                request,
                self._settings,
                renewal_term_months=renewal_term_months,
                notice_period_days=notice_period_days,
                uplift_percent=uplift_percent,
            )

        return self._run(contract_id, "UPDATE_RENEWAL_TERMS", expected_revision, apply)

    def cancel_renewal(
        self,
        contract_id: str,
        renewal_request_id: str | None = None,
        reason: str | None = None,
        expected_revision: int | None = None,
    ) -> TransitionResult:
        def apply(changes: _Changes, contract: Contract) -> None:
            request = renewal.require_live_renewal(contract, renewal_request_id)
            changes.notify(*renewal.cancel(contract, request, changes.now, reason))

        return self._run(contract_id, "CANCEL_RENEWAL", expected_revision, apply)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_contract(self, contract_id: str) -> Contract:
        return self._store.get(contract_id)

    def list_contracts(self, status: ContractStatus | None = None) -> list[Contract]:
        return self._store.list(status)

    def approval_summary(self, contract_id: str) -> ApprovalSummary:
        return summarize_steps(self._store.get(contract_id).active_steps)

    def lifetime_value(self, contract_id: str) -> Decimal:
        return renewal.lifetime_value(contract_id, self._store.get)

    def compare_versions(self, contract_id: str, from_number: int, to_number: int) -> list[DiffEntry]:
        return compare_versions(self._store.get(contract_id), from_number, to_number)

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------

    def _run(
        self,
        contract_id: str,
        name: str,
        expected_revision: int | None,
        apply: Operation,
    ) -> TransitionResult:
        log = logger.bind(contract_id=contract_id, action=name)
        try:
            with self._store.transaction() as uow:
                changes = _Changes(uow=uow, now=self._clock())
                contract = uow.load(contract_id, expected_revision)
                apply(changes, contract)
        except TransitionError as exc:
            log.info("transition_rejected", error=exc.kind, detail=exc.message)
            raise

        created_ids = [c.id for c in changes.created]
        result = TransitionResult(
            contract=uow.committed[contract_id],
            notifications=changes.notifications,
            created_contracts=[uow.committed[cid] for cid in created_ids],
            related_contracts=[
                uow.committed[cid]
                for cid in uow.written
                if cid != contract_id and cid not in created_ids
            ],
        )
        log.info(
            "transition_committed",
            status=result.contract.status.value,
            revision=result.contract.revision,
            notifications=len(result.notifications),
            created=len(result.created_contracts),
        )
        if self._event_stream is not None:
            self._event_stream.publish(name, result)
        return result

    def _move(self, changes: _Changes, contract: Contract, target: ContractStatus) -> None:
        old_status = contract.status
        if old_status == target:
            return
        contract.status = target
        changes.notify(notifications.status_changed(contract, old_status))

    def _clear_signing(self, contract: Contract, now: datetime) -> None:
        if contract.signing_status is not None:
            contract.signing_status = None
            contract.signing_status_updated_at = now

    def _load_related(self, changes: _Changes, contract_id: str) -> Contract | None:
        try:
            return changes.uow.load(contract_id)
        except TransitionError:
            logger.warning("related_contract_missing", contract_id=contract_id)
            return None

    # ------------------------------------------------------------------
    # Status changes
    # ------------------------------------------------------------------

    def _set_status(
        self,
        changes: _Changes,
        contract: Contract,
        target: ContractStatus,
        payload: ActionPayload,
    ) -> None:
        require_status_change(contract.status, target)
        old_status = contract.status
        now = changes.now

        if target == ContractStatus.PENDING_APPROVAL:
            if not isinstance(payload, RequestApprovalPayload):
                raise ValidationError("PENDING_APPROVAL requires a version_id and approvers")
            steps = open_round(contract, payload.version_id, payload.approvers, now)
            version = contract.find_version(payload.version_id)
            changes.notify(*(
                notifications.approval_requested(contract, step.approver_id, version.version_number)
                for step in steps
            ))
        elif target in (ContractStatus.DRAFT, ContractStatus.IN_REVIEW):
            void_active_round(contract)

        if old_status == ContractStatus.SENT_FOR_SIGNATURE:
            self._clear_signing(contract, now)

        contract.status = target
        changes.notify(notifications.status_changed(contract, old_status))

        if target == ContractStatus.SENT_FOR_SIGNATURE:
            contract.signing_status = SigningStatus.AWAITING_INTERNAL
            contract.signing_status_updated_at = now
            changes.notify(notifications.signing_progress(contract))
        elif target == ContractStatus.FULLY_EXECUTED:
            latest = contract.latest_version
            contract.executed_at = now
            contract.executed_version_id = contract.review_version_id or (latest.id if latest else None)
        elif target == ContractStatus.ACTIVE:
            self._on_activated(changes, contract)
        elif target == ContractStatus.EXPIRED:
            contract.expired_at = now
        elif target == ContractStatus.TERMINATED:
            contract.terminated_at = now

        if target in (ContractStatus.EXPIRED, ContractStatus.TERMINATED, ContractStatus.ARCHIVED):
            self._on_closed(changes, contract, target)

    def _on_activated(self, changes: _Changes, contract: Contract) -> None:
        if renewal.complete_amendment(contract, changes.now):
            logger.info("amendment_completed", contract_id=contract.id)
        if contract.parent_contract_id:
            parent = self._load_related(changes, contract.parent_contract_id)
            if parent is not None:
                changes.notify(*renewal.conclude_renegotiation(parent, contract, changes.now))

    def _on_closed(self, changes: _Changes, contract: Contract, target: ContractStatus) -> None:
        request = contract.live_renewal
        if request is not None and (
            target == ContractStatus.ARCHIVED or request.status == RenewalStatus.DECISION_NEEDED
        ):
            changes.notify(*renewal.cancel(
                contract, request, changes.now, reason=f"Contract moved to {target.value}"
            ))
        if target == ContractStatus.ARCHIVED and contract.parent_contract_id:
            parent = self._load_related(changes, contract.parent_contract_id)
            if parent is not None:
                changes.notify(*renewal.conclude_renegotiation(parent, contract, changes.now))

    # ------------------------------------------------------------------
    # Approval verbs
    # ------------------------------------------------------------------

    def _approve_step(self, changes: _Changes, contract: Contract, payload: StepDecisionPayload) -> None:
        require_status(contract.status, ContractStatus.PENDING_APPROVAL, Verb.APPROVE_STEP.value)
        step = find_step(contract, payload.step_id, payload.approver_id)
        record_decision(step, ApprovalStatus.APPROVED, changes.now, payload.comment)
        if step.approver_id != contract.owner_id:
            changes.notify(notifications.approval_response(contract, step.approver_id, "approved"))

        if is_fully_approved(contract.active_steps):
            contract.approval_completed_at = changes.now
            self._move(changes, contract, ContractStatus.APPROVED)
            logger.info("approval_round_completed", contract_id=contract.id, round=contract.approval_round)

    def _reject_step(self, changes: _Changes, contract: Contract, payload: StepDecisionPayload) -> None:
        require_status(contract.status, ContractStatus.PENDING_APPROVAL, Verb.REJECT_STEP.value)
        step = find_step(contract, payload.step_id, payload.approver_id)
        if payload.request_changes:
            record_decision(step, ApprovalStatus.REQUESTED_CHANGES, changes.now, payload.comment)
            decision = "requested changes on"
        else:
            record_decision(step, ApprovalStatus.REJECTED, changes.now, payload.comment)
            decision = "rejected"
        changes.notify(notifications.approval_response(contract, step.approver_id, decision))
        contract.status = ContractStatus.IN_REVIEW

    # ------------------------------------------------------------------
    # Renewal verbs
    # ------------------------------------------------------------------

    def _open_decision(self, contract: Contract, payload: RenewalDecisionPayload, verb: Verb) -> RenewalRequest:
        request = renewal.require_live_renewal(contract, payload.renewal_request_id)
        renewal.require_decision_needed(request)
        require_status(contract.status, ContractStatus.ACTIVE, verb.value)
        return request

    def _start_renewal(self, changes: _Changes, contract: Contract, payload: StartRenewalPayload) -> None:
        renewal.ensure_no_live_renewal(contract)
        require_status(contract.status, ContractStatus.ACTIVE, Verb.START_RENEWAL.value)
        _, intents = renewal.start_renewal(contract, payload, self._settings, changes.now)
        changes.notify(*intents)

    def _renew_as_is(self, changes: _Changes, contract: Contract, payload: RenewAsIsPayload) -> None:
        already = next(
            (
                r for r in contract.renewal_requests
                if r.mode == RenewalMode.RENEW_AS_IS and r.successor_contract_id
                and (payload.renewal_request_id is None or r.id == payload.renewal_request_id)
            ),
            None,
        )
        if already is not None or contract.status == ContractStatus.SUPERSEDED:
            raise ConflictError(f"Contract {contract.id} has already been renewed")
        request = self._open_decision(contract, payload, Verb.RENEW_AS_IS)
        successor, intents = renewal.renew_as_is(contract, request, payload, self._settings, changes.now)
        changes.create(successor)
        changes.notify(*intents)

    def _renew_amend(self, changes: _Changes, contract: Contract, payload: AmendPayload) -> None:
        request = self._open_decision(contract, payload, Verb.RENEW_AMEND_START)
        _, intents = renewal.start_amendment(contract, request, payload, changes.now)
        changes.notify(*intents)

    def _renew_renegotiate(self, changes: _Changes, contract: Contract, payload: RenegotiatePayload) -> None:
        request = self._open_decision(contract, payload, Verb.RENEW_RENEGOTIATE_START)
        successor, intents = renewal.start_renegotiation(contract, request, payload, changes.now)
        changes.create(successor)
        changes.notify(*intents)

    def _renew_terminate(self, changes: _Changes, contract: Contract, payload: TerminatePayload) -> None:
        request = self._open_decision(contract, payload, Verb.RENEW_DECIDE_TERMINATE)
        policy = payload.policy or self._settings.default_termination_policy
        changes.notify(*renewal.decide_terminate(contract, request, policy, changes.now, payload.notes))

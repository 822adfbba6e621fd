"""Typed transition actions.

Callers name an action with one of the :class:`ActionName` strings and
pass a loose payload mapping. :func:`parse_action` turns that pair into
either a :class:`SetStatus` or a :class:`WorkflowAction`, validating the
payload against the model registered for that action so handlers only
ever see well-formed input.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from contract_workflow.errors import ValidationError
from contract_workflow.models import ContractStatus, TerminationPolicy


class ActionName(str, Enum):
    """Exact action strings accepted by ``transition``."""

    DRAFT = "DRAFT"
    IN_REVIEW = "IN_REVIEW"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    SENT_FOR_SIGNATURE = "SENT_FOR_SIGNATURE"
    FULLY_EXECUTED = "FULLY_EXECUTED"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    TERMINATED = "TERMINATED"
    ARCHIVED = "ARCHIVED"
    APPROVE_STEP = "APPROVE_STEP"
    REJECT_STEP = "REJECT_STEP"
    START_RENEWAL = "START_RENEWAL"
    RENEW_AS_IS = "RENEW_AS_IS"
    RENEW_AMEND_START = "RENEW_AMEND_START"
    RENEW_RENEGOTIATE_START = "RENEW_RENEGOTIATE_START"
    RENEW_DECIDE_TERMINATE = "RENEW_DECIDE_TERMINATE"


class Verb(str, Enum):
    """Workflow verbs, i.e. the actions that are not a plain status name."""

    APPROVE_STEP = "APPROVE_STEP"
    REJECT_STEP = "REJECT_STEP"
    START_RENEWAL = "START_RENEWAL"
    RENEW_AS_IS = "RENEW_AS_IS"
    RENEW_AMEND_START = "RENEW_AMEND_START"
    RENEW_RENEGOTIATE_START = "RENEW_RENEGOTIATE_START"
    RENEW_DECIDE_TERMINATE = "RENEW_DECIDE_TERMINATE"


# ---------------------------------------------------------------------------
# Payload models
# ---------------------------------------------------------------------------


class ActionPayload(BaseModel):
    """Fields every action accepts."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    actor_id: str | None = None
    expected_revision: int | None = None


class StatusPayload(ActionPayload):
    pass


class RequestApprovalPayload(ActionPayload):
    version_id: str = Field(..., min_length=1)
    approvers: list[str]

    @field_validator("approvers")
    @classmethod
    def _non_empty_unique(cls, value: list[str]) -> list[str]:
        approvers = list(dict.fromkeys(a for a in value if a))
        if not approvers:
            raise ValueError("at least one approver is required")
        return approvers


class StepDecisionPayload(ActionPayload):
    step_id: str | None = None
    approver_id: str | None = None
    comment: str | None = None
    request_changes: bool = False


class StartRenewalPayload(ActionPayload):
    renewal_owner_id: str | None = None
    renewal_term_months: int | None = Field(None, ge=1)
    notice_period_days: int | None = Field(None, ge=0)
    uplift_percent: Decimal | None = None


class RenewalDecisionPayload(ActionPayload):
    renewal_request_id: str | None = None
    notes: str | None = None


class RenewAsIsPayload(RenewalDecisionPayload):
    require_reexecution: bool = False


class AmendPayload(RenewalDecisionPayload):
    content: str | None = None
    value: Decimal | None = None
    effective_date: date | None = None
    end_date: date | None = None
    frequency: str | None = None


class RenegotiatePayload(RenewalDecisionPayload):
    title: str | None = None


class TerminatePayload(RenewalDecisionPayload):
    policy: TerminationPolicy | None = None


_VERB_PAYLOADS: dict[Verb, type[ActionPayload]] = {
    Verb.APPROVE_STEP: StepDecisionPayload,
    Verb.REJECT_STEP: StepDecisionPayload,
    Verb.START_RENEWAL: StartRenewalPayload,
    Verb.RENEW_AS_IS: RenewAsIsPayload,
    Verb.RENEW_AMEND_START: AmendPayload,
    Verb.RENEW_RENEGOTIATE_START: RenegotiatePayload,
    Verb.RENEW_DECIDE_TERMINATE: TerminatePayload,
}


# ---------------------------------------------------------------------------
# Tagged union
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SetStatus:
    """Move the contract to ``target``."""

    target: ContractStatus
    payload: ActionPayload

    @property
    def name(self) -> str:
        return self.target.value


@dataclass(frozen=True)
class WorkflowAction:
    """Run a named workflow step with its own payload shape."""

    verb: Verb
    payload: ActionPayload

    @property
    def name(self) -> str:
        return self.verb.value


Action = Union[SetStatus, WorkflowAction]


def parse_action(
    action: str | ActionName | Action,
    payload: dict[str, Any] | ActionPayload | None = None,
) -> Action:
    """Resolve an action name and payload into a typed action.

    Args:
        action: One of the :class:`ActionName` strings, or an already
            built action whose payload is validated like a raw one.
        payload: Raw payload mapping (snake_case or camelCase keys) or a
            payload model.

    Returns:
        A :class:`SetStatus` or :class:`WorkflowAction`.

    Raises:
        ValidationError: Unknown action name or malformed payload.
    """
    if isinstance(action, (SetStatus, WorkflowAction)):
        action, payload = action.name, action.payload

    try:
        name = ActionName(action)
    except ValueError as exc:
        raise ValidationError(f"Unknown action '{action}'") from exc

    if name.value in Verb.__members__:
        verb = Verb(name.value)
        model = _VERB_PAYLOADS[verb]
        return WorkflowAction(verb=verb, payload=_validate(model, payload, name))

    target = ContractStatus(name.value)
    model = RequestApprovalPayload if target == ContractStatus.PENDING_APPROVAL else StatusPayload
    return SetStatus(target=target, payload=_validate(model, payload, name))


def _validate(
    model: type[ActionPayload],
    payload: dict[str, Any] | ActionPayload | None,
    name: ActionName,
) -> ActionPayload:
    if isinstance(payload, model):
        return payload
    if isinstance(payload, ActionPayload):
        payload = payload.model_dump(exclude_unset=True)
    try:
        return model.model_validate(payload or {})
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'payload'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ValidationError(f"Invalid payload for {name.value}: {problems}") from exc

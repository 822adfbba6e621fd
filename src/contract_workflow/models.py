"""Pydantic models for the Contract Workflow engine.

Defines the domain objects shared by the state machine, the store and
the API: contract statuses, approval steps, renewal requests, versions,
notification intents and transition results.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ContractStatus(str, Enum):
    """Lifecycle statuses of a contract."""

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
    SUPERSEDED = "SUPERSEDED"


class SigningStatus(str, Enum):
    """Signing sub-state, in the order a contract moves through it."""

    AWAITING_INTERNAL = "AWAITING_INTERNAL"
    SENT_TO_COUNTERPARTY = "SENT_TO_COUNTERPARTY"
    VIEWED_BY_COUNTERPARTY = "VIEWED_BY_COUNTERPARTY"
    SIGNED_BY_COUNTERPARTY = "SIGNED_BY_COUNTERPARTY"


class ApprovalStatus(str, Enum):
    """Decision recorded on a single approval step."""

    PENDING = "PENDING"
    REQUESTED_CHANGES = "REQUESTED_CHANGES"
    REJECTED = "REJECTED"
    APPROVED = "APPROVED"


class RenewalStatus(str, Enum):
    DECISION_NEEDED = "DECISION_NEEDED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class RenewalMode(str, Enum):
    PENDING = "PENDING"
    RENEW_AS_IS = "RENEW_AS_IS"
    AMENDMENT = "AMENDMENT"
    NEW_CONTRACT = "NEW_CONTRACT"
    TERMINATE = "TERMINATE"


class TerminationPolicy(str, Enum):
    """When a terminate decision takes effect on the contract status."""

    IMMEDIATE = "IMMEDIATE"
    AT_END_DATE = "AT_END_DATE"


class RiskLevel(str, Enum):
    """Risk severity levels."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ContractType(str, Enum):
    """Supported contract categories."""

    NDA = "NDA"
    MSA = "MSA"
    SOW = "SOW"
    VENDOR = "VENDOR"
    EMPLOYMENT = "EMPLOYMENT"
    LEASE = "LEASE"
    SAAS = "SAAS"
    OTHER = "OTHER"


class NotificationKind(str, Enum):
    APPROVAL_REQUEST = "APPROVAL_REQUEST"
    APPROVAL_RESPONSE = "APPROVAL_RESPONSE"
    STATUS_CHANGE = "STATUS_CHANGE"
    SIGNING_PROGRESS = "SIGNING_PROGRESS"
    COMMENT_MENTION = "COMMENT_MENTION"
    RENEWAL_REMINDER = "RENEWAL_REMINDER"


TERMINAL_STATUSES = frozenset({ContractStatus.ARCHIVED, ContractStatus.SUPERSEDED})
LIVE_RENEWAL_STATUSES = frozenset({RenewalStatus.DECISION_NEEDED, RenewalStatus.IN_PROGRESS})


# ---------------------------------------------------------------------------
# Domain models
# ---------------------------------------------------------------------------


class ContractVersion(BaseModel):
    """Snapshot of a contract revision.

    Only ``content`` of the latest version may change, and only while the
    contract is still a draft.
    """

    id: str = Field(default_factory=_new_id)
    version_number: int = Field(..., ge=1)
    content: str = ""
    value: Decimal = Decimal("0")
    effective_date: date | None = None
    end_date: date | None = None
    frequency: str | None = None
    author_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class ApprovalStep(BaseModel):
    """One approver's decision within an approval round."""

    id: str = Field(default_factory=_new_id)
    approver_id: str
    status: ApprovalStatus = ApprovalStatus.PENDING
    round_number: int
    version_id: str
    comment: str | None = None
    approved_at: datetime | None = None
    decided_at: datetime | None = None
    void: bool = False


class RenewalFeedback(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str
    text: str
    mentions: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)


class RenewalRequest(BaseModel):
    """Renewal decision tree state for a contract nearing its end date."""

    id: str = Field(default_factory=_new_id)
    contract_id: str
    status: RenewalStatus = RenewalStatus.DECISION_NEEDED
    mode: RenewalMode = RenewalMode.PENDING
    renewal_owner_id: str | None = None
    notice_deadline: date
    internal_decision_deadline: date
    renewal_term_months: int = Field(..., ge=1)
    notice_period_days: int = Field(..., ge=0)
    uplift_percent: Decimal = Decimal("0")
    require_reexecution: bool = False
    termination_policy: TerminationPolicy | None = None
    successor_contract_id: str | None = None
    notes: str | None = None
    feedback: list[RenewalFeedback] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = None

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_RENEWAL_STATUSES


class Contract(BaseModel):
    """The central aggregate tracked through the lifecycle."""

    id: str = Field(default_factory=_new_id)
    title: str
    contract_type: ContractType = ContractType.OTHER
    status: ContractStatus = ContractStatus.DRAFT
    risk_level: RiskLevel = RiskLevel.LOW
    counterparty_id: str | None = None
    owner_id: str
    value: Decimal = Decimal("0")
    frequency: str | None = None
    effective_date: date | None = None
    end_date: date | None = None

    # Renewal defaults carried by the contract itself
    auto_renew: bool = False
    renewal_term_months: int | None = None
    notice_period_days: int | None = None
    uplift_percent: Decimal | None = None

    versions: list[ContractVersion] = Field(default_factory=list)
    approval_steps: list[ApprovalStep] = Field(default_factory=list)
    approval_round: int = 0
    review_version_id: str | None = None
    executed_version_id: str | None = None
    renewal_requests: list[RenewalRequest] = Field(default_factory=list)
    parent_contract_id: str | None = None
    signing_status: SigningStatus | None = None
    scheduled_termination_date: date | None = None

    revision: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    approval_started_at: datetime | None = None
    approval_completed_at: datetime | None = None
    signing_status_updated_at: datetime | None = None
    executed_at: datetime | None = None
    expired_at: datetime | None = None
    terminated_at: datetime | None = None

    @property
    def latest_version(self) -> ContractVersion | None:
        if not self.versions:
            return None
        return max(self.versions, key=lambda v: v.version_number)

    @property
    def active_steps(self) -> list[ApprovalStep]:
        """Steps of the current approval round that have not been voided."""
        return [
            s for s in self.approval_steps
            if s.round_number == self.approval_round and not s.void
        ]

    @property
    def live_renewal(self) -> RenewalRequest | None:
        return next((r for r in self.renewal_requests if r.is_live), None)

    @property
    def renewal_request(self) -> RenewalRequest | None:
        """The most recent renewal request, live or concluded."""
        return self.renewal_requests[-1] if self.renewal_requests else None

    def find_version(self, version_id: str) -> ContractVersion | None:
        return next((v for v in self.versions if v.id == version_id), None)


class NotificationIntent(BaseModel):
    """A notification the caller should deliver; the engine never sends it."""

    target_user_id: str
    kind: NotificationKind
    message: str
    related_contract_id: str


class TransitionResult(BaseModel):
    """Authoritative outcome of a committed transition."""

    contract: Contract
    notifications: list[NotificationIntent] = Field(default_factory=list)
    created_contracts: list[Contract] = Field(default_factory=list)
    # Other existing contracts the same commit changed, e.g. a superseded parent.
    related_contracts: list[Contract] = Field(default_factory=list)


class ContractEvent(BaseModel):
    """SSE event emitted after a transition commits."""

    event_type: str
    contract_id: str
    data: dict[str, Any] = Field(default_factory=dict)
    message: str = ""
    timestamp: datetime = Field(default_factory=_utcnow)

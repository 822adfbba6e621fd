"""FastAPI application for the Contract Workflow service.

Exposes REST endpoints for:
- Contract creation, listing and detail
- Lifecycle transitions (status changes, approval and renewal verbs)
- Version creation, draft edits and version comparison
- Signing progress and renewal feedback/terms
- SSE streaming of committed changes
- Date-driven maintenance sweeps
"""

from __future__ import annotations

import json
from datetime import date
from decimal import Decimal
from typing import Any

import structlog
from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from contract_workflow.config import Settings
from contract_workflow.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    TransitionError,
    ValidationError,
)
from contract_workflow.flow import maintenance
from contract_workflow.flow.lifecycle_flow import ContractLifecycleFlow
from contract_workflow.mock_data.contracts import seed_demo_contracts
from contract_workflow.models import (
    Contract,
    ContractStatus,
    ContractType,
    RiskLevel,
    SigningStatus,
    TransitionResult,
)
from contract_workflow.store import ContractStore
from contract_workflow.streaming import ContractEventStream
from contract_workflow.tools.diff_tools import diff_lines, edit_distance

logger = structlog.get_logger(__name__)

ERROR_STATUS_CODES: dict[type[TransitionError], int] = {
    ValidationError: 422,
    InvalidTransitionError: 409,
    ConflictError: 409,
    NotFoundError: 404,
}


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Body returned for every failed request."""

    error: str
    detail: str
    status_code: int


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    environment: str
    contracts: int = 0


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CreateContractRequest(BaseModel):
    """Request body for creating a DRAFT contract with version 1."""

    title: str = Field(..., min_length=1, description="Contract title.")
    owner_id: str = Field(..., min_length=1, description="User responsible for the contract.")
    content: str = Field(default="", description="Text of version 1.")
    author_id: str | None = None
    contract_type: ContractType = ContractType.OTHER
    risk_level: RiskLevel = RiskLevel.LOW
    counterparty_id: str | None = None
    value: Decimal = Decimal("0")
    frequency: str | None = None
    effective_date: date | None = None
    end_date: date | None = None
    auto_renew: bool = False
    renewal_term_months: int | None = Field(None, ge=1)
    notice_period_days: int | None = Field(None, ge=0)
    uplift_percent: Decimal | None = None


class TransitionRequest(BaseModel):
    """Request body for a named lifecycle action."""

    action: str = Field(..., description="One of the ActionName strings, e.g. APPROVE_STEP.")
    payload: dict[str, Any] = Field(default_factory=dict)


class VersionTerms(BaseModel):
    content: str | None = None
    value: Decimal | None = None
    effective_date: date | None = None
    end_date: date | None = None
    frequency: str | None = None
    expected_revision: int | None = None


class CreateVersionRequest(VersionTerms):
    author_id: str | None = None


class SigningStatusRequest(BaseModel):
    signing_status: SigningStatus
    expected_revision: int | None = None


class RenewalFeedbackRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    mentions: list[str] = Field(default_factory=list)
    renewal_request_id: str | None = None


class RenewalTermsRequest(BaseModel):
    renewal_request_id: str | None = None
    renewal_term_months: int | None = Field(None, ge=1)
    notice_period_days: int | None = Field(None, ge=0)
    uplift_percent: Decimal | None = None
    expected_revision: int | None = None


class CancelRenewalRequest(BaseModel):
    renewal_request_id: str | None = None
    reason: str | None = None
    expected_revision: int | None = None


class DiffRequest(BaseModel):
    old_text: str = ""
    new_text: str = ""


class SweepRequest(BaseModel):
    today: date | None = Field(None, description="Reference date; defaults to today.")


class RenewalRemindersRequest(SweepRequest):
    days_before: list[int] | None = Field(
        None, description="Reminder offsets; defaults to RENEWAL_REMINDER_DAYS."
    )


# ---------------------------------------------------------------------------
# Application state container
# ---------------------------------------------------------------------------


class AppState:
    """Shared application state accessible from route handlers."""

    def __init__(self, settings: Settings, store: ContractStore | None = None) -> None:
        self.settings = settings
        self.store = store or ContractStore()
        self.event_stream = ContractEventStream(max_queue_size=settings.event_queue_size)
        self.flow = ContractLifecycleFlow(
            self.store,
            settings=settings,
            event_stream=self.event_stream,
        )


def _contract_body(contract: Contract) -> dict[str, Any]:
    return contract.model_dump(mode="json")


def _result_body(result: TransitionResult) -> dict[str, Any]:
    return result.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or Settings()

    app = FastAPI(
        title="Contract Workflow",
        description=(
            "Contract lifecycle engine: approvals, signing progress, "
            "renewals and line-based version diffs."
        ),
        version=settings.service_version,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Shared state
    state = AppState(settings)
    app.state.app_state = state
    app.state.settings = settings
    flow = state.flow

    if settings.seed_demo_data:
        seed_demo_contracts(flow)

    # -------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            service=settings.service_name,
            version=settings.service_version,
            environment=settings.environment,
            contracts=len(flow.list_contracts()),
        )

    # -------------------------------------------------------------------
    # Contracts
    # -------------------------------------------------------------------

    @app.post("/api/v1/contracts", status_code=201, tags=["contracts"])
    async def create_contract(req: CreateContractRequest) -> dict[str, Any]:
        """Create a DRAFT contract with version 1."""
        contract = flow.create_contract(**req.model_dump())
        return _contract_body(contract)

    @app.get("/api/v1/contracts", tags=["contracts"])
    async def list_contracts(status: ContractStatus | None = None) -> dict[str, Any]:
        """List contracts, optionally filtered by status."""
        contracts = flow.list_contracts(status)
        return {
            "contracts": [
                {
                    "id": c.id,
                    "title": c.title,
                    "status": c.status.value,
                    "owner_id": c.owner_id,
                    "value": str(c.value),
                    "end_date": c.end_date.isoformat() if c.end_date else None,
                    "parent_contract_id": c.parent_contract_id,
                    "revision": c.revision,
                }
                for c in contracts
            ],
            "total": len(contracts),
        }

    @app.get("/api/v1/contracts/{contract_id}", tags=["contracts"])
    async def get_contract(contract_id: str) -> dict[str, Any]:
        """Contract detail with the approval summary of the current round."""
        contract = flow.get_contract(contract_id)
        return {
            "contract": _contract_body(contract),
            "approval_summary": flow.approval_summary(contract_id).model_dump(),
        }

    @app.post("/api/v1/contracts/{contract_id}/transitions", tags=["lifecycle"])
    async def transition_contract(contract_id: str, req: TransitionRequest) -> dict[str, Any]:
        """Apply a status change or workflow verb.

        Failures come back as ``{error, detail, status_code}`` with the
        error kind and its message.
        """
        return _result_body(flow.transition(contract_id, req.action, req.payload))

    # -------------------------------------------------------------------
    # Versions
    # -------------------------------------------------------------------

    @app.post("/api/v1/contracts/{contract_id}/versions", status_code=201, tags=["versions"])
    async def create_version(contract_id: str, req: CreateVersionRequest) -> dict[str, Any]:
        """Append a new version to the contract."""
        return _result_body(flow.create_version(contract_id, **req.model_dump()))

    @app.patch("/api/v1/contracts/{contract_id}/versions/{version_id}", tags=["versions"])
    async def update_version(contract_id: str, version_id: str, req: VersionTerms) -> dict[str, Any]:
        """Edit the latest version while the contract is a draft."""
        return _result_body(flow.update_draft_version(contract_id, version_id, **req.model_dump()))

    @app.get("/api/v1/contracts/{contract_id}/versions/compare", tags=["versions"])
    async def compare_versions(
        contract_id: str,
        from_version: int = Query(..., alias="from", ge=1),
        to_version: int = Query(..., alias="to", ge=1),
    ) -> dict[str, Any]:
        """Line diff between two version numbers of the same contract."""
        script = flow.compare_versions(contract_id, from_version, to_version)
        return {
            "contract_id": contract_id,
            "from": from_version,
            "to": to_version,
            "edit_distance": edit_distance(script),
            "diff": [entry.model_dump(mode="json") for entry in script],
        }

    # -------------------------------------------------------------------
    # Signing
    # -------------------------------------------------------------------

    @app.post("/api/v1/contracts/{contract_id}/signing-status", tags=["lifecycle"])
    async def update_signing_status(contract_id: str, req: SigningStatusRequest) -> dict[str, Any]:
        """Advance the signing sub-state of a contract out for signature."""
        return _result_body(
            flow.update_signing_status(contract_id, req.signing_status, req.expected_revision)
        )

    # -------------------------------------------------------------------
    # Renewal
    # -------------------------------------------------------------------

    @app.post("/api/v1/contracts/{contract_id}/renewal/feedback", tags=["renewal"])
    async def add_renewal_feedback(contract_id: str, req: RenewalFeedbackRequest) -> dict[str, Any]:
        return _result_body(flow.add_renewal_feedback(contract_id, **req.model_dump()))

    @app.patch("/api/v1/contracts/{contract_id}/renewal/terms", tags=["renewal"])
    async def update_renewal_terms(contract_id: str, req: RenewalTermsRequest) -> dict[str, Any]:
        return _result_body(flow.update_renewal_terms(contract_id, **req.model_dump()))

    @app.post("/api/v1/contracts/{contract_id}/renewal/cancel", tags=["renewal"])
    async def cancel_renewal(contract_id: str, req: CancelRenewalRequest) -> dict[str, Any]:
        return _result_body(flow.cancel_renewal(contract_id, **req.model_dump()))

    @app.get("/api/v1/contracts/{contract_id}/lifetime-value", tags=["renewal"])
    async def lifetime_value(contract_id: str) -> dict[str, Any]:
        """Sum of the contract's value and every ancestor on its renewal chain."""
        return {
            "contract_id": contract_id,
            "lifetime_value": str(flow.lifetime_value(contract_id)),
        }

    # -------------------------------------------------------------------
    # SSE streaming
    # -------------------------------------------------------------------

    @app.get("/api/v1/contracts/{contract_id}/stream", tags=["contracts"])
    async def stream_contract(contract_id: str) -> EventSourceResponse:
        """SSE stream of committed changes to a contract."""
        flow.get_contract(contract_id)

        async def event_generator():  # type: ignore[no-untyped-def]
            async for event in state.event_stream.subscribe(contract_id):
                yield {
                    "event": event.event_type,
                    "data": json.dumps(event.model_dump(mode="json")),
                }

        return EventSourceResponse(event_generator())

    # -------------------------------------------------------------------
    # Diff
    # -------------------------------------------------------------------

    @app.post("/api/v1/diff", tags=["versions"])
    async def diff(req: DiffRequest) -> dict[str, Any]:
        """Line diff between two arbitrary texts."""
        script = diff_lines(req.old_text, req.new_text)
        return {
            "edit_distance": edit_distance(script),
            "diff": [entry.model_dump(mode="json") for entry in script],
        }

    # -------------------------------------------------------------------
    # Maintenance sweeps
    # -------------------------------------------------------------------

    @app.post("/api/v1/maintenance/activate", tags=["maintenance"])
    async def activate_due(req: SweepRequest) -> dict[str, Any]:
        """Activate fully executed contracts whose effective date has arrived."""
        results = maintenance.activate_due_contracts(flow, req.today)
        return {"moved": [r.contract.id for r in results], "total": len(results)}

    @app.post("/api/v1/maintenance/expire", tags=["maintenance"])
    async def expire_due(req: SweepRequest) -> dict[str, Any]:
        """Expire or terminate active contracts past their end date."""
        results = maintenance.expire_due_contracts(flow, req.today)
        return {
            "moved": [
                {"id": r.contract.id, "status": r.contract.status.value} for r in results
            ],
            "total": len(results),
        }

    @app.post("/api/v1/maintenance/renewal-reminders", tags=["maintenance"])
    async def renewal_reminders(req: RenewalRemindersRequest) -> dict[str, Any]:
        """Build reminder intents for contracts ending soon."""
        intents = maintenance.renewal_reminders(flow, req.today, req.days_before)
        return {
            "notifications": [n.model_dump(mode="json") for n in intents],
            "total": len(intents),
        }

    # -------------------------------------------------------------------
    # Error handlers
    # -------------------------------------------------------------------

    @app.exception_handler(TransitionError)
    async def transition_error_handler(
        request: Request, exc: TransitionError
    ) -> JSONResponse:
        """Map engine errors to HTTP status codes, message verbatim."""
        status_code = ERROR_STATUS_CODES.get(type(exc), 400)
        logger.info(
            "request_rejected",
            error=exc.kind,
            detail=exc.message,
            path=request.url.path,
            status_code=status_code,
        )
        return JSONResponse(
            status_code=status_code,
            content=ErrorResponse(
                error=exc.kind,
                detail=exc.message,
                status_code=status_code,
            ).model_dump(),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all error handler."""
        logger.error(
            "unhandled_exception", error=str(exc), path=request.url.path
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="Internal server error",
                detail=str(exc),
                status_code=500,
            ).model_dump(),
        )

    return app

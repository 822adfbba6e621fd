"""Test fixtures for Contract Workflow."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest

from contract_workflow.config import Settings
from contract_workflow.flow.lifecycle_flow import ContractLifecycleFlow
from contract_workflow.logging_config import setup_logging
from contract_workflow.models import Contract
from contract_workflow.store import ContractStore


class FixedClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set up test environment variables."""
    monkeypatch.setenv("ENVIRONMENT", "testing")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    for key in ("ENFORCE_REEXECUTION_GATE", "DEFAULT_TERMINATION_POLICY", "SEED_DEMO_DATA"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture(scope="session", autouse=True)
def _logging() -> None:
    setup_logging("DEBUG")


@pytest.fixture()
def settings() -> Settings:
    """Create test settings."""
    return Settings(environment="testing", log_level="DEBUG")


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture()
def store() -> ContractStore:
    return ContractStore()


@pytest.fixture()
def flow(store: ContractStore, settings: Settings, clock: FixedClock) -> ContractLifecycleFlow:
    return ContractLifecycleFlow(store, settings=settings, clock=clock)


@pytest.fixture()
def new_contract(flow: ContractLifecycleFlow) -> Callable[..., Contract]:
    """Factory for DRAFT contracts ending 2024-01-14 and worth 100000."""

    def _create(**overrides: Any) -> Contract:
        fields: dict[str, Any] = {
            "title": "Acme Master Services Agreement",
            "owner_id": "owner-1",
            "content": "1. Scope\n2. Fees\n3. Term",
            "value": Decimal("100000"),
            "frequency": "annual",
            "effective_date": date(2023, 1, 15),
            "end_date": date(2024, 1, 14),
            "renewal_term_months": 12,
            "notice_period_days": 30,
            "uplift_percent": Decimal("10"),
        }
        fields.update(overrides)
        return flow.create_contract(**fields)

    return _create


@pytest.fixture()
def approve(flow: ContractLifecycleFlow) -> Callable[..., Contract]:
    """Walk a DRAFT or IN_REVIEW contract through a full approval round."""

    def _approve(contract_id: str, approvers: tuple[str, ...] = ("legal-1", "finance-1")) -> Contract:
        contract = flow.get_contract(contract_id)
        flow.transition(
            contract_id,
            "PENDING_APPROVAL",
            {"version_id": contract.latest_version.id, "approvers": list(approvers)},
        )
        result = None
        for approver in approvers:
            result = flow.transition(contract_id, "APPROVE_STEP", {"approver_id": approver})
        return result.contract

    return _approve


@pytest.fixture()
def activate(flow: ContractLifecycleFlow, approve: Callable[..., Contract]) -> Callable[..., Contract]:
    """Drive a contract from DRAFT or IN_REVIEW all the way to ACTIVE."""

    def _activate(contract_id: str) -> Contract:
        approve(contract_id)
        flow.transition(contract_id, "SENT_FOR_SIGNATURE")
        flow.transition(contract_id, "FULLY_EXECUTED")
        return flow.transition(contract_id, "ACTIVE").contract

    return _activate


@pytest.fixture()
def active_contract(new_contract: Callable[..., Contract], activate: Callable[..., Contract]) -> Contract:
    return activate(new_contract().id)


@pytest.fixture()
def app(settings: Settings):
    """Create a test FastAPI application."""
    from contract_workflow.api import create_app

    return create_app(settings)


@pytest.fixture()
def client(app):
    """Create an async test client."""
    from httpx import ASGITransport, AsyncClient

    transport = ASGITransport(app=app)
    return AsyncClient(transport=transport, base_url="http://test")

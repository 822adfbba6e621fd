"""Tests for the date-driven sweeps."""

from __future__ import annotations

from datetime import date

from contract_workflow.flow.maintenance import (
    activate_due_contracts,
    expire_due_contracts,
    renewal_reminders,
)
from contract_workflow.models import ContractStatus, NotificationKind


def _execute(flow, approve, contract_id: str):
    approve(contract_id)
    flow.transition(contract_id, "SENT_FOR_SIGNATURE")
    flow.transition(contract_id, "FULLY_EXECUTED")


def test_activates_only_due_contracts(flow, new_contract, approve):
    """FULLY_EXECUTED contracts activate once their effective date arrives."""
    due = new_contract(effective_date=date(2024, 1, 1))
    later = new_contract(effective_date=date(2024, 6, 1))
    _execute(flow, approve, due.id)
    _execute(flow, approve, later.id)

    results = activate_due_contracts(flow, date(2024, 1, 1))

    assert [r.contract.id for r in results] == [due.id]
    assert flow.get_contract(due.id).status == ContractStatus.ACTIVE
    assert flow.get_contract(later.id).status == ContractStatus.FULLY_EXECUTED


def test_activation_defaults_to_the_flow_clock(flow, new_contract, approve):
    contract = new_contract(effective_date=date(2023, 12, 31))
    _execute(flow, approve, contract.id)
    assert len(activate_due_contracts(flow)) == 1


def test_expires_contracts_past_end_date(flow, new_contract, activate):
    """ACTIVE contracts past their end date move to EXPIRED."""
    ended = activate(new_contract(end_date=date(2024, 1, 14)).id)
    running = activate(new_contract(end_date=date(2024, 12, 31)).id)

    results = expire_due_contracts(flow, date(2024, 1, 15))

    assert [r.contract.id for r in results] == [ended.id]
    expired = flow.get_contract(ended.id)
    assert expired.status == ContractStatus.EXPIRED
    assert expired.expired_at is not None
    assert flow.get_contract(running.id).status == ContractStatus.ACTIVE


def test_end_date_itself_is_not_expired(flow, active_contract):
    assert expire_due_contracts(flow, date(2024, 1, 14)) == []


def test_scheduled_termination_becomes_terminated(flow, active_contract):
    flow.transition(active_contract.id, "START_RENEWAL")
    flow.transition(active_contract.id, "RENEW_DECIDE_TERMINATE", {"policy": "AT_END_DATE"})

    expire_due_contracts(flow, date(2024, 1, 15))

    assert flow.get_contract(active_contract.id).status == ContractStatus.TERMINATED


def test_expiry_cancels_undecided_renewal(flow, active_contract):
    """Expiring a contract cancels a renewal still waiting for a decision."""
    flow.transition(active_contract.id, "START_RENEWAL")
    expire_due_contracts(flow, date(2024, 2, 1))

    contract = flow.get_contract(active_contract.id)
    assert contract.status == ContractStatus.EXPIRED
    assert contract.live_renewal is None


def test_reminds_on_exact_offsets(flow, new_contract, activate):
    """Reminders fire only on the configured days before the end date."""
    in_thirty = activate(new_contract(title="Thirty", end_date=date(2024, 1, 31)).id)
    activate(new_contract(title="Forty", end_date=date(2024, 2, 10)).id)

    intents = renewal_reminders(flow, date(2024, 1, 1), days_before=[30, 60, 90])

    assert len(intents) == 1
    [intent] = intents
    assert intent.kind == NotificationKind.RENEWAL_REMINDER
    assert intent.related_contract_id == in_thirty.id
    assert intent.message == 'Contract "Thirty" is expiring in 30 days on 2024-01-31.'


def test_reminders_default_to_configured_offsets(flow, new_contract, activate):
    activate(new_contract(end_date=date(2024, 3, 31)).id)
    intents = renewal_reminders(flow, date(2024, 1, 1))
    assert len(intents) == 1
    assert "90 days" in intents[0].message


def test_reminders_ignore_non_active_contracts(flow, new_contract):
    new_contract(end_date=date(2024, 1, 31))
    assert renewal_reminders(flow, date(2024, 1, 1), days_before=[30]) == []

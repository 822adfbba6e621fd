"""Date-driven sweeps run by an external scheduler.

Each sweep moves contracts through :meth:`ContractLifecycleFlow.transition`
so every guard and side effect of a manual transition still applies. A
contract that changed underneath the sweep is skipped and logged.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date

import structlog

from contract_workflow.errors import TransitionError
from contract_workflow.flow import notifications
from contract_workflow.flow.lifecycle_flow import ContractLifecycleFlow
from contract_workflow.models import (
    ContractStatus,
    NotificationIntent,
    TransitionResult,
)

logger = structlog.get_logger(__name__)


def _sweep(
    flow: ContractLifecycleFlow,
    sweep: str,
    moves: Iterable[tuple[str, ContractStatus, int]],
) -> list[TransitionResult]:
    results: list[TransitionResult] = []
    for contract_id, target, revision in moves:
        try:
            results.append(
                flow.transition(contract_id, target.value, {"expected_revision": revision})
            )
        except TransitionError as exc:
            logger.warning(
                "sweep_skipped",
                sweep=sweep,
                contract_id=contract_id,
                error=exc.kind,
                detail=exc.message,
            )
    logger.info("sweep_finished", sweep=sweep, moved=len(results))
    return results


def activate_due_contracts(
    flow: ContractLifecycleFlow,
    today: date | None = None,
) -> list[TransitionResult]:
    """Move FULLY_EXECUTED contracts whose effective date has arrived to ACTIVE."""
    today = today or flow.today()
    moves = [
        (c.id, ContractStatus.ACTIVE, c.revision)
        for c in flow.list_contracts(ContractStatus.FULLY_EXECUTED)
        if c.effective_date is not None and c.effective_date <= today
    ]
    return _sweep(flow, "activate", moves)


def expire_due_contracts(
    flow: ContractLifecycleFlow,
    today: date | None = None,
) -> list[TransitionResult]:
    """Close ACTIVE contracts whose end date has passed.

    Contracts with a scheduled termination become TERMINATED, the rest
    EXPIRED.
    """
    today = today or flow.today()
    moves = [
        (
            c.id,
            ContractStatus.TERMINATED if c.scheduled_termination_date else ContractStatus.EXPIRED,
            c.revision,
        )
        for c in flow.list_contracts(ContractStatus.ACTIVE)
        if c.end_date is not None and c.end_date < today
    ]
    return _sweep(flow, "expire", moves)


def renewal_reminders(
    flow: ContractLifecycleFlow,
    today: date | None = None,
    days_before: Iterable[int] | None = None,
) -> list[NotificationIntent]:
    """Build reminders for ACTIVE contracts ending exactly N days from *today*.

    Args:
        flow: The lifecycle flow to read contracts from.
        today: Reference date; defaults to the flow's clock.
        days_before: Reminder offsets; defaults to
            ``settings.renewal_reminder_days``.

    Returns:
        One ``RENEWAL_REMINDER`` intent per matching contract and offset.
        No contract state changes.
    """
    today = today or flow.today()
    offsets = sorted(set(days_before if days_before is not None else flow.settings.renewal_reminder_days))
    intents: list[NotificationIntent] = []
    for contract in flow.list_contracts(ContractStatus.ACTIVE):
        if contract.end_date is None:
            continue
        days_remaining = (contract.end_date - today).days
        if days_remaining in offsets:
            intents.append(notifications.expiring_soon(contract, days_remaining))
    logger.info("renewal_reminders_built", reminders=len(intents), offsets=offsets)
    return intents

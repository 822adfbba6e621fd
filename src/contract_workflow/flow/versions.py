"""Version helpers shared by the lifecycle and renewal handlers."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from contract_workflow.errors import InvalidTransitionError, NotFoundError
from contract_workflow.flow.conditions import can_edit_content
from contract_workflow.models import Contract, ContractVersion


def append_version(
    contract: Contract,
    now: datetime,
    content: str | None = None,
    author_id: str | None = None,
    value: Decimal | None = None,
    effective_date: date | None = None,
    end_date: date | None = None,
    frequency: str | None = None,
) -> ContractVersion:
    """Append version ``n + 1`` and copy its commercial terms onto the contract.

    Unspecified fields are carried over from the latest version (content)
    or from the contract (terms).
    """
    latest = contract.latest_version
    version = ContractVersion(
        version_number=(latest.version_number if latest else 0) + 1,
        content=content if content is not None else (latest.content if latest else ""),
        value=value if value is not None else contract.value,
        effective_date=effective_date or contract.effective_date,
        end_date=end_date or contract.end_date,
        frequency=frequency if frequency is not None else contract.frequency,
        author_id=author_id,
        created_at=now,
    )
    contract.versions.append(version)
    contract.value = version.value
    contract.effective_date = version.effective_date
    contract.end_date = version.end_date
    contract.frequency = version.frequency
    return version


def edit_draft_version(
    contract: Contract,
    version_id: str,
    content: str | None = None,
    value: Decimal | None = None,
    effective_date: date | None = None,
    end_date: date | None = None,
    frequency: str | None = None,
) -> ContractVersion:
    """Update the latest version in place while the contract is a draft.

    Raises:
        NotFoundError: If the version does not exist.
        InvalidTransitionError: If the contract has left DRAFT or the
            version is not the latest one.
    """
    version = contract.find_version(version_id)
    if version is None:
        raise NotFoundError(f"Version {version_id} not found on contract {contract.id}")
    if not can_edit_content(contract.status):
        raise InvalidTransitionError(
            f"Version content is frozen once the contract leaves DRAFT "
            f"(currently {contract.status.value}); create a new version instead"
        )
    if any(step.version_id == version.id for step in contract.approval_steps):
        raise InvalidTransitionError(
            f"Version {version.version_number} was submitted for approval; "
            "create a new version instead"
        )
    latest = contract.latest_version
    if latest is None or latest.id != version.id:
        raise InvalidTransitionError(
            f"Only the latest version can be edited; version {version.version_number} "
            "is superseded by a newer version"
        )

    if content is not None:
        version.content = content
    if value is not None:
        version.value = value
        contract.value = value
    if effective_date is not None:
        version.effective_date = effective_date
        contract.effective_date = effective_date
    if end_date is not None:
        version.end_date = end_date
        contract.end_date = end_date
    if frequency is not None:
        version.frequency = frequency
        contract.frequency = frequency
    return version

"""In-memory contract store with transactional writes.

Contracts are persisted as serialized rows. Reads go through a cache of
hydrated :class:`Contract` models keyed by contract id; every committed
transaction invalidates only the ids it touched. Writes happen inside
:meth:`ContractStore.transaction`, which serialises transactions and
publishes all changes together or not at all.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

import structlog

from contract_workflow.errors import ConflictError, NotFoundError
from contract_workflow.models import Contract, ContractStatus

logger = structlog.get_logger(__name__)


class UnitOfWork:
    """Working copies of the contracts touched by one transaction."""

    def __init__(self, store: ContractStore) -> None:
        self._store = store
        self._loaded: dict[str, Contract] = {}
        self._added: dict[str, Contract] = {}
        # Filled on commit, under the store lock.
        self.committed: dict[str, Contract] = {}
        self.written: list[str] = []

    def load(self, contract_id: str, expected_revision: int | None = None) -> Contract:
        """Return a mutable working copy of a stored contract.

        Raises:
            NotFoundError: If the contract does not exist.
            ConflictError: If *expected_revision* is given and stale.
        """
        if contract_id in self._added:
            return self._added[contract_id]
        if contract_id not in self._loaded:
            self._loaded[contract_id] = self._store._hydrate(contract_id)
        contract = self._loaded[contract_id]
        if expected_revision is not None and contract.revision != expected_revision:
            raise ConflictError(
                f"Contract {contract_id} was modified concurrently "
                f"(expected revision {expected_revision}, found {contract.revision})"
            )
        return contract

    def add(self, contract: Contract) -> Contract:
        """Stage a new contract for insertion."""
        if contract.id in self._added or self._store.exists(contract.id):
            raise ConflictError(f"Contract {contract.id} already exists")
        self._added[contract.id] = contract
        return contract

    def _touched(self) -> list[Contract]:
        return [*self._loaded.values(), *self._added.values()]


class ContractStore:
    """Thread-safe contract repository with a read-through cache."""

    def __init__(self) -> None:
        self._rows: dict[str, dict[str, Any]] = {}
        self._cache: dict[str, Contract] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def exists(self, contract_id: str) -> bool:
        return contract_id in self._rows

    def get(self, contract_id: str) -> Contract:
        """Return a detached copy of the committed contract.

        Raises:
            NotFoundError: If the contract does not exist.
        """
        with self._lock:
            return self._cached(contract_id).model_copy(deep=True)

    def list(self, status: ContractStatus | None = None) -> list[Contract]:
        """Return detached copies of all contracts, optionally by status."""
        with self._lock:
            contracts = [self._cached(cid) for cid in self._rows]
        return [
            c.model_copy(deep=True)
            for c in contracts
            if status is None or c.status == status
        ]

    def child_ids(self, parent_id: str) -> list[str]:
        with self._lock:
            return [
                cid for cid, row in self._rows.items()
                if row.get("parent_contract_id") == parent_id
            ]

    def _cached(self, contract_id: str) -> Contract:
        cached = self._cache.get(contract_id)
        if cached is None:
            cached = self._hydrate(contract_id)
            self._cache[contract_id] = cached
        return cached

    def _hydrate(self, contract_id: str) -> Contract:
        row = self._rows.get(contract_id)
        if row is None:
            raise NotFoundError(f"Contract {contract_id} not found")
        return Contract.model_validate(row)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[UnitOfWork]:
        """Run a block of changes atomically.

        Every contract loaded or added through the yielded
        :class:`UnitOfWork` is written back when the block exits normally.
        If the block raises, nothing is written and the exception
        propagates unchanged. After a commit, ``uow.committed`` holds a
        detached copy of each touched contract exactly as it was written,
        and ``uow.written`` lists the ids whose rows actually changed.
        """
        with self._lock:
            uow = UnitOfWork(self)
            yield uow
            self._commit(uow)

    def _commit(self, uow: UnitOfWork) -> None:
        now = datetime.now(tz=timezone.utc)
        touched = uow._touched()
        for contract in touched:
            previous = self._rows.get(contract.id)
            if previous is not None and contract.model_dump(mode="json") == previous:
                uow.committed[contract.id] = contract.model_copy(deep=True)
                continue
            contract.revision += 1
            contract.updated_at = now
            self._rows[contract.id] = contract.model_dump(mode="json")
            self._cache.pop(contract.id, None)
            uow.committed[contract.id] = contract.model_copy(deep=True)
            uow.written.append(contract.id)
            logger.debug(
                "contract_committed",
                contract_id=contract.id,
                revision=contract.revision,
                status=contract.status.value,
            )

    def insert(self, contract: Contract) -> Contract:
        """Insert a single new contract in its own transaction."""
        with self.transaction() as uow:
            uow.add(contract)
        return uow.committed[contract.id]

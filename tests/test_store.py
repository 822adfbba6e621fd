"""Tests for the transactional contract store."""

from __future__ import annotations

import threading
from contextlib import contextmanager

import pytest

from contract_workflow.errors import ConflictError, NotFoundError
from contract_workflow.flow.lifecycle_flow import ContractLifecycleFlow
from contract_workflow.models import Contract, ContractStatus
from contract_workflow.store import ContractStore


def _contract(**kwargs) -> Contract:
    return Contract(title=kwargs.pop("title", "Lease"), owner_id="owner-1", **kwargs)


class _InterleavingStore(ContractStore):
    """Store that runs ``after_commit`` once, right after the next commit releases the lock."""

    def __init__(self) -> None:
        super().__init__()
        self.after_commit = None

    @contextmanager
    def transaction(self):
        with super().transaction() as uow:
            yield uow
        hook, self.after_commit = self.after_commit, None
        if hook is not None:
            hook()


def test_insert_assigns_first_revision(store):
    """Inserted contracts start at revision 1."""
    stored = store.insert(_contract())
    assert stored.revision == 1
    assert store.exists(stored.id)


def test_get_returns_detached_copy(store):
    """Mutating a read copy never reaches the stored row."""
    stored = store.insert(_contract())
    copy = store.get(stored.id)
    copy.title = "Mutated outside a transaction"
    assert store.get(stored.id).title == "Lease"


def test_missing_contract_raises_not_found(store):
    with pytest.raises(NotFoundError):
        store.get("missing")


def test_duplicate_insert_is_a_conflict(store):
    contract = store.insert(_contract())
    with pytest.raises(ConflictError):
        store.insert(contract)


def test_commit_bumps_revision_only_on_change(store):
    """A transaction that changes nothing leaves the revision alone."""
    stored = store.insert(_contract())
    with store.transaction() as uow:
        uow.load(stored.id)
    assert store.get(stored.id).revision == 1
    assert uow.written == []

    with store.transaction() as uow:
        uow.load(stored.id).status = ContractStatus.IN_REVIEW
    after = store.get(stored.id)
    assert after.revision == 2
    assert after.status == ContractStatus.IN_REVIEW
    assert uow.written == [stored.id]


def test_committed_snapshots_are_detached(store):
    """Snapshots taken at commit match the written row and stay unchanged afterwards."""
    stored = store.insert(_contract())
    with store.transaction() as uow:
        uow.load(stored.id).title = "Renamed"

    snapshot = uow.committed[stored.id]
    assert snapshot.title == "Renamed"
    assert snapshot.revision == 2

    with store.transaction() as later:
        later.load(stored.id).title = "Renamed again"
    assert snapshot.title == "Renamed"
    assert snapshot.revision == 2


def test_failed_transaction_writes_nothing(store):
    """An exception inside the block discards every staged change."""
    parent = store.insert(_contract())
    child = _contract(title="Lease renewal", parent_contract_id=parent.id)

    with pytest.raises(RuntimeError):
        with store.transaction() as uow:
            uow.load(parent.id).status = ContractStatus.SUPERSEDED
            uow.add(child)
            raise RuntimeError("boom")

    assert store.get(parent.id).status == ContractStatus.DRAFT
    assert store.get(parent.id).revision == 1
    assert not store.exists(child.id)


def test_expected_revision_mismatch(store):
    stored = store.insert(_contract())
    with pytest.raises(ConflictError):
        with store.transaction() as uow:
            uow.load(stored.id, expected_revision=7)


def test_list_filters_by_status(store):
    draft = store.insert(_contract())
    active = store.insert(_contract(title="Active lease", status=ContractStatus.ACTIVE))
    assert {c.id for c in store.list()} == {draft.id, active.id}
    assert [c.id for c in store.list(ContractStatus.ACTIVE)] == [active.id]


def test_cache_is_invalidated_on_commit(store):
    stored = store.insert(_contract())
    store.get(stored.id)
    with store.transaction() as uow:
        uow.load(stored.id).title = "Renamed"
    assert store.get(stored.id).title == "Renamed"


def test_transition_result_reflects_its_own_commit(settings, clock):
    """A commit landing right after ours does not leak into our result."""
    store = _InterleavingStore()
    flow = ContractLifecycleFlow(store, settings=settings, clock=clock)
    contract = flow.create_contract(title="Lease", owner_id="owner-1")
    store.after_commit = lambda: flow.transition(contract.id, "ARCHIVED")

    result = flow.transition(contract.id, "IN_REVIEW")

    assert result.contract.status == ContractStatus.IN_REVIEW
    assert result.contract.revision == contract.revision + 1
    latest = flow.get_contract(contract.id)
    assert latest.status == ContractStatus.ARCHIVED
    assert latest.revision == contract.revision + 2


def test_concurrent_approvals_both_count(flow, new_contract):
    """Simultaneous APPROVE_STEP calls are serialized and none is lost."""
    contract = new_contract()
    approvers = [f"approver-{i}" for i in range(8)]
    flow.transition(
        contract.id,
        "PENDING_APPROVAL",
        {"version_id": contract.latest_version.id, "approvers": approvers},
    )
    barrier = threading.Barrier(len(approvers))

    def approve(approver_id: str) -> None:
        barrier.wait()
        flow.transition(contract.id, "APPROVE_STEP", {"approver_id": approver_id})

    threads = [threading.Thread(target=approve, args=(a,)) for a in approvers]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    final = flow.get_contract(contract.id)
    assert final.status == ContractStatus.APPROVED
    assert flow.approval_summary(contract.id).approved == len(approvers)


def test_concurrent_renew_as_is_creates_one_successor(flow, store, active_contract):
    """Two simultaneous RENEW_AS_IS calls yield exactly one successor."""
    flow.transition(active_contract.id, "START_RENEWAL")
    barrier = threading.Barrier(2)
    results = []
    errors = []

    def renew() -> None:
        barrier.wait()
        try:
            results.append(flow.transition(active_contract.id, "RENEW_AS_IS"))
        except ConflictError as exc:
            errors.append(exc)

    threads = [threading.Thread(target=renew) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 1
    assert len(errors) == 1
    [successor] = results[0].created_contracts
    assert store.child_ids(active_contract.id) == [successor.id]
    assert flow.get_contract(active_contract.id).status == ContractStatus.SUPERSEDED

"""API endpoint tests for Contract Workflow."""

from __future__ import annotations

import pytest

from contract_workflow.mock_data.contracts import SAAS_SUBSCRIPTION, SAAS_SUBSCRIPTION_REVISED

CONTRACT_BODY = {
    "title": "CloudTech SaaS Subscription",
    "owner_id": "owner-1",
    "content": SAAS_SUBSCRIPTION,
    "contract_type": "SAAS",
    "value": "100000",
    "effective_date": "2023-01-15",
    "end_date": "2024-01-14",
    "renewal_term_months": 12,
    "notice_period_days": 30,
    "uplift_percent": "10",
}


async def _create(client) -> dict:
    resp = await client.post("/api/v1/contracts", json=CONTRACT_BODY)
    assert resp.status_code == 201
    return resp.json()


async def _transition(client, contract_id: str, action: str, payload: dict | None = None):
    return await client.post(
        f"/api/v1/contracts/{contract_id}/transitions",
        json={"action": action, "payload": payload or {}},
    )


async def _activate(client, contract: dict) -> None:
    version_id = contract["versions"][-1]["id"]
    steps = [
        ("PENDING_APPROVAL", {"versionId": version_id, "approvers": ["legal-1"]}),
        ("APPROVE_STEP", {"approverId": "legal-1"}),
        ("SENT_FOR_SIGNATURE", None),
        ("FULLY_EXECUTED", None),
        ("ACTIVE", None),
    ]
    for action, payload in steps:
        resp = await _transition(client, contract["id"], action, payload)
        assert resp.status_code == 200, resp.json()


@pytest.mark.asyncio
async def test_health(client):
    """Health endpoint returns service info."""
    resp = await client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["service"] == "contract-workflow"
    assert data["environment"] == "testing"


@pytest.mark.asyncio
async def test_create_and_get_contract(client):
    """A new contract is a DRAFT with version 1."""
    created = await _create(client)
    assert created["status"] == "DRAFT"
    assert [v["version_number"] for v in created["versions"]] == [1]

    resp = await client.get(f"/api/v1/contracts/{created['id']}")
    assert resp.status_code == 200
    data = resp.json()
    assert data["contract"]["title"] == "CloudTech SaaS Subscription"
    assert data["approval_summary"]["total"] == 0


@pytest.mark.asyncio
async def test_create_contract_rejects_missing_title(client):
    resp = await client.post("/api/v1/contracts", json={"owner_id": "owner-1"})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_list_contracts_by_status(client):
    created = await _create(client)
    await _transition(client, created["id"], "IN_REVIEW")
    await _create(client)

    resp = await client.get("/api/v1/contracts", params={"status": "IN_REVIEW"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 1
    assert data["contracts"][0]["id"] == created["id"]


@pytest.mark.asyncio
async def test_get_nonexistent_contract(client):
    resp = await client.get("/api/v1/contracts/missing")
    assert resp.status_code == 404
    assert resp.json() == {
        "error": "NotFoundError",
        "detail": "Contract missing not found",
        "status_code": 404,
    }


@pytest.mark.asyncio
async def test_invalid_transition_maps_to_409(client):
    created = await _create(client)
    resp = await _transition(client, created["id"], "ACTIVE")
    assert resp.status_code == 409
    body = resp.json()
    assert body["error"] == "InvalidTransitionError"
    assert body["detail"] == "Cannot move contract from DRAFT to ACTIVE"


@pytest.mark.asyncio
async def test_malformed_payload_maps_to_422(client):
    created = await _create(client)
    resp = await _transition(client, created["id"], "PENDING_APPROVAL", {"approvers": ["legal-1"]})
    assert resp.status_code == 422
    assert resp.json()["error"] == "ValidationError"


@pytest.mark.asyncio
async def test_stale_revision_maps_to_409(client):
    created = await _create(client)
    await _transition(client, created["id"], "IN_REVIEW")
    resp = await _transition(client, created["id"], "DRAFT", {"expectedRevision": created["revision"]})
    assert resp.status_code == 409
    assert resp.json()["error"] == "ConflictError"


@pytest.mark.asyncio
async def test_approval_flow(client):
    created = await _create(client)
    version_id = created["versions"][0]["id"]

    resp = await _transition(
        client, created["id"], "PENDING_APPROVAL", {"versionId": version_id, "approvers": ["legal-1"]}
    )
    assert resp.status_code == 200
    assert resp.json()["notifications"][0]["kind"] == "APPROVAL_REQUEST"

    resp = await _transition(client, created["id"], "APPROVE_STEP", {"approverId": "legal-1"})
    assert resp.status_code == 200
    assert resp.json()["contract"]["status"] == "APPROVED"


@pytest.mark.asyncio
async def test_versions_and_compare(client):
    created = await _create(client)
    resp = await client.post(
        f"/api/v1/contracts/{created['id']}/versions",
        json={"content": SAAS_SUBSCRIPTION_REVISED, "author_id": "editor-1"},
    )
    assert resp.status_code == 201
    assert resp.json()["contract"]["versions"][-1]["version_number"] == 2

    resp = await client.get(
        f"/api/v1/contracts/{created['id']}/versions/compare", params={"from": 1, "to": 2}
    )
    assert resp.status_code == 200
    data = resp.json()
    added = [e["value"] for e in data["diff"] if e["type"] == "added"]
    assert added[-1].startswith("6. Data Protection")
    assert data["edit_distance"] == 7


@pytest.mark.asyncio
async def test_edit_draft_version(client):
    created = await _create(client)
    version_id = created["versions"][0]["id"]
    resp = await client.patch(
        f"/api/v1/contracts/{created['id']}/versions/{version_id}",
        json={"content": "short"},
    )
    assert resp.status_code == 200
    assert resp.json()["contract"]["versions"][0]["content"] == "short"

    await _transition(client, created["id"], "IN_REVIEW")
    resp = await client.patch(
        f"/api/v1/contracts/{created['id']}/versions/{version_id}",
        json={"content": "too late"},
    )
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_signing_status(client):
    created = await _create(client)
    version_id = created["versions"][0]["id"]
    await _transition(client, created["id"], "PENDING_APPROVAL", {"versionId": version_id, "approvers": ["legal-1"]})
    await _transition(client, created["id"], "APPROVE_STEP", {"approverId": "legal-1"})
    await _transition(client, created["id"], "SENT_FOR_SIGNATURE")

    resp = await client.post(
        f"/api/v1/contracts/{created['id']}/signing-status",
        json={"signing_status": "SIGNED_BY_COUNTERPARTY"},
    )
    assert resp.status_code == 200
    assert resp.json()["contract"]["signing_status"] == "SIGNED_BY_COUNTERPARTY"

    resp = await client.post(
        f"/api/v1/contracts/{created['id']}/signing-status",
        json={"signing_status": "AWAITING_INTERNAL"},
    )
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_renew_as_is_and_lifetime_value(client):
    created = await _create(client)
    await _activate(client, created)

    resp = await _transition(client, created["id"], "START_RENEWAL")
    assert resp.status_code == 200
    resp = await _transition(client, created["id"], "RENEW_AS_IS")
    assert resp.status_code == 200
    data = resp.json()
    assert data["contract"]["status"] == "SUPERSEDED"
    successor = data["created_contracts"][0]
    assert successor["effective_date"] == "2024-01-15"
    assert successor["end_date"] == "2025-01-14"
    assert successor["value"] == "110000.00"

    resp = await _transition(client, created["id"], "RENEW_AS_IS")
    assert resp.status_code == 409

    resp = await client.get(f"/api/v1/contracts/{successor['id']}/lifetime-value")
    assert resp.json()["lifetime_value"] == "210000.00"


@pytest.mark.asyncio
async def test_renewal_feedback_terms_and_cancel(client):
    created = await _create(client)
    await _activate(client, created)
    await _transition(client, created["id"], "START_RENEWAL")

    resp = await client.post(
        f"/api/v1/contracts/{created['id']}/renewal/feedback",
        json={"user_id": "owner-1", "text": "Budget ok?", "mentions": ["finance-1"]},
    )
    assert resp.status_code == 200
    assert resp.json()["notifications"][0]["kind"] == "COMMENT_MENTION"

    resp = await client.patch(
        f"/api/v1/contracts/{created['id']}/renewal/terms",
        json={"renewal_term_months": 24},
    )
    assert resp.status_code == 200
    assert resp.json()["contract"]["renewal_requests"][0]["renewal_term_months"] == 24

    resp = await client.post(f"/api/v1/contracts/{created['id']}/renewal/cancel", json={})
    assert resp.status_code == 200
    assert resp.json()["contract"]["renewal_requests"][0]["status"] == "CANCELLED"

    resp = await client.post(f"/api/v1/contracts/{created['id']}/renewal/cancel", json={})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_diff_endpoint(client):
    resp = await client.post("/api/v1/diff", json={"old_text": "a\nb\nc", "new_text": "a\nc\nd"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["edit_distance"] == 2
    assert [e["type"] for e in data["diff"]] == ["common", "removed", "common", "added"]
    assert data["diff"][1]["line_number"] is None


@pytest.mark.asyncio
async def test_maintenance_sweeps(client):
    created = await _create(client)
    await _activate(client, created)

    resp = await client.post("/api/v1/maintenance/renewal-reminders", json={"today": "2023-12-15"})
    assert resp.status_code == 200
    assert resp.json()["total"] == 1

    resp = await client.post("/api/v1/maintenance/expire", json={"today": "2024-01-15"})
    assert resp.status_code == 200
    assert resp.json()["moved"] == [{"id": created["id"], "status": "EXPIRED"}]

    resp = await client.post("/api/v1/maintenance/activate", json={"today": "2024-01-15"})
    assert resp.json()["total"] == 0


@pytest.mark.asyncio
async def test_stream_unknown_contract(client):
    resp = await client.get("/api/v1/contracts/missing/stream")
    assert resp.status_code == 404

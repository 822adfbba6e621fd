"""Demo contracts for local runs and tests.

The texts are short on purpose: they exist to show version diffs and to
give the renewal flow something to copy forward.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import structlog

from contract_workflow.flow.lifecycle_flow import ContractLifecycleFlow
from contract_workflow.models import Contract, ContractType, RiskLevel

logger = structlog.get_logger(__name__)

SAAS_SUBSCRIPTION = """\
SOFTWARE SUBSCRIPTION AGREEMENT
1. Term. Twelve (12) months from the Effective Date.
2. Renewal. Renews for successive twelve-month terms unless either party gives thirty (30) days notice.
3. Fees. Customer pays an annual subscription fee of $100,000.
4. Service Levels. Provider targets 99.5% monthly availability.
5. Liability. Each party's liability is capped at the fees paid in the prior twelve months."""

SAAS_SUBSCRIPTION_REVISED = """\
SOFTWARE SUBSCRIPTION AGREEMENT
1. Term. Twelve (12) months from the Effective Date.
2. Renewal. Renews for successive twelve-month terms unless either party gives sixty (60) days notice.
3. Fees. Customer pays an annual subscription fee of $110,000.
4. Service Levels. Provider targets 99.9% monthly availability.
5. Liability. Each party's liability is capped at the fees paid in the prior twelve months.
6. Data Protection. Provider processes personal data only on documented instructions."""

MUTUAL_NDA = """\
MUTUAL NON-DISCLOSURE AGREEMENT
1. Purpose. Evaluating a possible supply relationship.
2. Obligations. Each party keeps the other's Confidential Information secret.
3. Duration. Obligations survive for three (3) years after disclosure."""

DEMO_CONTRACTS: dict[str, dict] = {
    "saas_subscription": {
        "title": "CloudTech SaaS Subscription",
        "owner_id": "user-legal-1",
        "content": SAAS_SUBSCRIPTION,
        "contract_type": ContractType.SAAS,
        "risk_level": RiskLevel.MEDIUM,
        "counterparty_id": "cp-cloudtech",
        "value": Decimal("100000"),
        "frequency": "annual",
        "effective_date": date(2024, 1, 15),
        "end_date": date(2025, 1, 14),
        "auto_renew": True,
        "renewal_term_months": 12,
        "notice_period_days": 30,
        "uplift_percent": Decimal("10"),
    },
    "mutual_nda": {
        "title": "Globex Mutual NDA",
        "owner_id": "user-legal-2",
        "content": MUTUAL_NDA,
        "contract_type": ContractType.NDA,
        "counterparty_id": "cp-globex",
        "effective_date": date(2024, 3, 1),
        "end_date": date(2027, 2, 28),
    },
}


def seed_demo_contracts(flow: ContractLifecycleFlow) -> list[Contract]:
    """Create the demo contracts as DRAFTs and return them."""
    created = [flow.create_contract(**fields) for fields in DEMO_CONTRACTS.values()]
    logger.info("demo_contracts_seeded", count=len(created))
    return created

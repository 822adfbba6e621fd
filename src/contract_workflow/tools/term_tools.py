"""Date and money arithmetic for renewal terms.

All monetary values are :class:`~decimal.Decimal` and rounded to cents;
month arithmetic clamps to the last day of shorter months.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel

_CENTS = Decimal("0.01")


class RenewalTerms(BaseModel):
    """Start, end and value of the term following a renewal."""

    start_date: date
    end_date: date
    value: Decimal


def next_term_start(end_date: date) -> date:
    """The day after the current term ends."""
    return end_date + timedelta(days=1)


def term_end(start_date: date, term_months: int) -> date:
    """Last day of a term of *term_months* beginning on *start_date*."""
    return start_date + relativedelta(months=term_months) - timedelta(days=1)


def apply_uplift(value: Decimal, uplift_percent: Decimal | float | int) -> Decimal:
    """Apply a percentage uplift once to *value*.

    >>> apply_uplift(Decimal("100000"), 10)
    Decimal('110000.00')
    """
    factor = Decimal(1) + Decimal(str(uplift_percent)) / Decimal(100)
    return (Decimal(value) * factor).quantize(_CENTS, rounding=ROUND_HALF_UP)


def compute_renewal_terms(
    end_date: date,
    value: Decimal,
    term_months: int,
    uplift_percent: Decimal | float | int,
) -> RenewalTerms:
    """Compute the successor term for a contract ending on *end_date*."""
    start = next_term_start(end_date)
    return RenewalTerms(
        start_date=start,
        end_date=term_end(start, term_months),
        value=apply_uplift(value, uplift_percent),
    )


def notice_deadline(end_date: date, notice_period_days: int) -> date:
    """Last date a renewal or termination decision can be communicated."""
    return end_date - timedelta(days=notice_period_days)


def internal_decision_deadline(deadline: date, lead_days: int) -> date:
    """Internal cut-off that leaves *lead_days* before the notice deadline."""
    return deadline - timedelta(days=lead_days)

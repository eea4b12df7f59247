"""Interest and penalty accrual for loan settlement"""

import math
from datetime import datetime

from lending_gateway.domain.models import Loan, PayableBreakdown
from lending_gateway.utils.date_utils import days_between

DAYS_PER_YEAR = 365
DAYS_PER_MONTH = 30
PENALTY_RATE = 0.10  # of one month's interest, per full month overdue


def compute_payable(loan: Loan, now: datetime) -> PayableBreakdown:
    """
    Compute the amount owed on a loan as of `now`.

    Rules:
    - Simple interest prorated by elapsed days over a 365-day year
    - No penalty up to and including the next payment date
    - After it, 10% of one month's interest per full 30 days overdue
    - Fees are reserved and always 0

    Example:
        1000 @ 12%, started 365 days ago, due 30 days ago
        interest = 120.00, penalty = (120 / 12) * 1 * 0.10 = 1.00
        total = 1121.00
    """
    principal = loan.total_principle
    days_elapsed = max(0.0, days_between(loan.start_date, now))

    yearly_interest = principal * loan.interest_rate / 100
    interest = yearly_interest * days_elapsed / DAYS_PER_YEAR

    penalty = 0.0
    days_overdue = days_between(loan.next_payment_date, now)
    if days_overdue > 0:
        months_overdue = math.floor(days_overdue / DAYS_PER_MONTH)
        penalty = (yearly_interest / 12) * months_overdue * PENALTY_RATE

    fees = 0.0

    # Round components first so the total is exactly their sum
    principal = round(principal, 2)
    interest = round(interest, 2)
    penalty = round(penalty, 2)
    total = round(principal + interest + fees + penalty, 2)

    return PayableBreakdown(
        loan_id=loan.loan_id,
        principal=principal,
        interest=interest,
        fees=fees,
        penalty=penalty,
        total=total,
    )

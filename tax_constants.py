from __future__ import annotations
from datetime import date
from typing import Optional

# Tax year these constants apply to ("YYYY/YY")
TAX_YEAR = "2024/25"
# First day of the following tax year; from this date the table is stale
TAX_YEAR_END = date(2025, 4, 6)

# 25% Pension Commencement Lump Sum
PENSION_TAX_FREE_LUMP_SUM_FRACTION = 0.25


class TaxConstants:
    # Income tax
    personal_allowance = 12_570
    personal_allowance_taper_threshold = 100_000
    personal_allowance_taper_rate = 0.5  # £1 lost per £2 over the threshold

    basic_rate = 0.20
    basic_rate_upper_limit = 50_270
    higher_rate = 0.40
    higher_rate_upper_limit = 125_140
    additional_rate = 0.45

    # National Insurance (Class 1 employee)
    ni_primary_threshold = 12_570
    ni_upper_earnings_limit = 50_270
    ni_employee_rate = 0.08
    ni_employee_rate_above_uel = 0.02

    # Student loan repayment: plan -> (threshold, rate)
    student_loan = {
        "plan1": (24_990, 0.09),
        "plan2": (27_295, 0.09),
        "plan4": (31_395, 0.09),
        "plan5": (25_000, 0.09),
        "postgrad": (21_000, 0.06),
    }

    # Capital gains tax
    cgt_annual_exempt_amount = 3_000
    cgt_basic_rate = 0.18
    cgt_higher_rate = 0.24

    # ISA
    isa_annual_allowance = 20_000

    # Pension
    pension_annual_allowance = 60_000

    # State pension
    full_new_state_pension_annual = 11_502.40


def is_tax_year_stale(today: Optional[date] = None) -> bool:
    """True once the tax year covered by TaxConstants has ended."""
    today = today or date.today()
    return today >= TAX_YEAR_END

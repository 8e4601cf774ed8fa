"""
UK income tax, National Insurance and student loan calculations.

Used by the drawdown and scenario modules as plain oracles: gross in, tax out.
Bands come from tax_constants.TaxConstants; pass a different constants object
to model another tax year.
"""

from __future__ import annotations
import math
from dataclasses import dataclass, field
from typing import List, Optional

from household import PersonIncome
from safe_math import round_pence, safe_divide
from tax_constants import TaxConstants


@dataclass(frozen=True)
class TaxBand:
    band: str
    rate: float
    amount: float
    tax: float


@dataclass(frozen=True)
class IncomeTaxResult:
    tax: float
    effective_rate: float
    breakdown: List[TaxBand] = field(default_factory=list)


@dataclass(frozen=True)
class NIResult:
    ni: float
    breakdown: List[TaxBand] = field(default_factory=list)


@dataclass(frozen=True)
class TakeHomeResult:
    gross: float
    adjusted_gross: float
    income_tax: float
    ni: float
    student_loan: float
    pension_deduction: float
    take_home: float
    monthly_take_home: float


def _adjusted_gross_for_tax(gross: float, pension: float, method: str) -> float:
    # Relief at source is paid from net pay; the basic band is extended instead
    if method in ("salary_sacrifice", "net_pay"):
        return gross - pension
    return gross


def _adjusted_gross_for_ni(gross: float, pension: float, method: str) -> float:
    if method == "salary_sacrifice":
        return gross - pension
    return gross


def personal_allowance(adjusted_net_income: float, constants: Optional[TaxConstants] = None) -> float:
    """Personal allowance after the taper (£1 lost per £2 over the threshold)."""
    c = constants or TaxConstants()
    if adjusted_net_income <= c.personal_allowance_taper_threshold:
        return c.personal_allowance
    excess = adjusted_net_income - c.personal_allowance_taper_threshold
    reduction = math.floor(excess * c.personal_allowance_taper_rate)
    return max(0, c.personal_allowance - reduction)


def calculate_income_tax(
    gross: float,
    pension_contribution: float = 0.0,
    method: str = "salary_sacrifice",
    constants: Optional[TaxConstants] = None,
) -> IncomeTaxResult:
    c = constants or TaxConstants()
    adjusted = _adjusted_gross_for_tax(gross, pension_contribution, method)
    allowance = personal_allowance(adjusted, c)

    basic_limit = c.basic_rate_upper_limit
    if method == "relief_at_source" and pension_contribution > 0:
        basic_limit += pension_contribution / 0.8

    breakdown = [TaxBand("Personal Allowance", 0.0, max(0.0, min(adjusted, allowance)), 0.0)]
    taxable = max(0.0, adjusted - allowance)
    if taxable <= 0:
        return IncomeTaxResult(tax=0.0, effective_rate=0.0, breakdown=breakdown)

    basic_width = max(0.0, basic_limit - allowance)
    basic_amount = min(taxable, basic_width)

    higher_width = max(0.0, c.higher_rate_upper_limit - basic_limit)
    above_basic = max(0.0, taxable - basic_width)
    higher_amount = min(above_basic, higher_width)

    additional_amount = max(0.0, above_basic - higher_width)

    total = 0.0
    for name, rate, amount in (
        ("Basic Rate", c.basic_rate, basic_amount),
        ("Higher Rate", c.higher_rate, higher_amount),
        ("Additional Rate", c.additional_rate, additional_amount),
    ):
        if amount > 0:
            breakdown.append(TaxBand(name, rate, amount, amount * rate))
            total += amount * rate

    effective = math.floor(safe_divide(total, adjusted) * 10_000 + 0.5) / 10_000
    return IncomeTaxResult(tax=round_pence(total), effective_rate=effective, breakdown=breakdown)


def calculate_ni(
    gross: float,
    pension_contribution: float = 0.0,
    method: str = "salary_sacrifice",
    constants: Optional[TaxConstants] = None,
) -> NIResult:
    c = constants or TaxConstants()
    adjusted = _adjusted_gross_for_ni(gross, pension_contribution, method)

    breakdown = [TaxBand("Below Primary Threshold", 0.0, max(0.0, min(adjusted, c.ni_primary_threshold)), 0.0)]
    main_band = max(0.0, min(adjusted, c.ni_upper_earnings_limit) - c.ni_primary_threshold)
    above_uel = max(0.0, adjusted - c.ni_upper_earnings_limit)

    total = 0.0
    if main_band > 0:
        breakdown.append(TaxBand("Primary Threshold to Upper Earnings Limit", c.ni_employee_rate,
                                 main_band, main_band * c.ni_employee_rate))
        total += main_band * c.ni_employee_rate
    if above_uel > 0:
        breakdown.append(TaxBand("Above Upper Earnings Limit", c.ni_employee_rate_above_uel,
                                 above_uel, above_uel * c.ni_employee_rate_above_uel))
        total += above_uel * c.ni_employee_rate_above_uel

    return NIResult(ni=round_pence(total), breakdown=breakdown)


def calculate_student_loan(gross: float, plan: str, constants: Optional[TaxConstants] = None) -> float:
    c = constants or TaxConstants()
    if plan == "none" or plan not in c.student_loan:
        return 0.0
    threshold, rate = c.student_loan[plan]
    return round_pence(max(0.0, gross - threshold) * rate)


def calculate_take_home_pay(
    income: PersonIncome,
    student_loan_plan: str = "none",
    constants: Optional[TaxConstants] = None,
) -> TakeHomeResult:
    gross = income.gross_salary
    pension = income.employee_pension_contribution
    method = income.pension_contribution_method

    income_tax = calculate_income_tax(gross, pension, method, constants).tax
    ni = calculate_ni(gross, pension, method, constants).ni

    loan_gross = gross - pension if method == "salary_sacrifice" else gross
    student_loan = calculate_student_loan(loan_gross, student_loan_plan, constants)

    # Under every method the employee contribution leaves the pay packet once
    take_home = gross - pension - income_tax - ni - student_loan

    return TakeHomeResult(
        gross=gross,
        adjusted_gross=_adjusted_gross_for_tax(gross, pension, method),
        income_tax=income_tax,
        ni=ni,
        student_loan=student_loan,
        pension_deduction=pension,
        take_home=round_pence(take_home),
        monthly_take_home=round_pence(take_home / 12),
    )

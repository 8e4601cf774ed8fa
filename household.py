"""
Plain household records consumed by the calculation modules.

Every record is a frozen dataclass and every collection a tuple, so a change is
always made with dataclasses.replace on a copy and callers' values stay valid.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional, Tuple, Union

DateLike = Union[str, date, datetime]

ACCOUNT_TAX_WRAPPERS = {
    "workplace_pension": "pension",
    "sipp": "pension",
    "stocks_and_shares_isa": "isa",
    "cash_isa": "isa",
    "lifetime_isa": "isa",
    "gia": "gia",
    "cash_savings": "cash",
    "premium_bonds": "premium_bonds",
}

CONTRIBUTION_FREQUENCY_MULTIPLIERS = {
    "monthly": 12,
    "annually": 1,
}


@dataclass(frozen=True)
class Person:
    id: str
    name: str
    relationship: str = "self"
    date_of_birth: str = ""
    planned_retirement_age: int = 60
    pension_access_age: int = 57
    state_retirement_age: int = 67
    ni_qualifying_years: int = 35
    student_loan_plan: str = "none"


@dataclass(frozen=True)
class PersonIncome:
    person_id: str
    gross_salary: float
    employer_pension_contribution: float = 0.0
    employee_pension_contribution: float = 0.0
    pension_contribution_method: str = "salary_sacrifice"


@dataclass(frozen=True)
class BonusStructure:
    person_id: str
    cash_bonus_annual: float = 0.0


@dataclass(frozen=True)
class Contribution:
    id: str
    person_id: str
    label: str
    target: str  # "isa" | "pension" | "gia"
    amount: float
    frequency: str = "annually"


@dataclass(frozen=True)
class Holding:
    fund_id: str
    units: float
    purchase_price: float
    current_price: float


@dataclass(frozen=True)
class Account:
    id: str
    person_id: str
    type: str
    name: str
    current_value: float
    holdings: Tuple[Holding, ...] = ()
    provider: str = ""


@dataclass(frozen=True)
class Fund:
    id: str
    name: str


@dataclass(frozen=True)
class Transaction:
    id: str
    account_id: str
    fund_id: str
    type: str  # "buy" | "sell" | "dividend" | "contribution"
    date: DateLike
    units: float
    price_per_unit: float
    amount: float
    notes: str = ""

    @property
    def day(self) -> date:
        return as_date(self.date)

    @property
    def cost(self) -> float:
        """Acquisition cost; the recorded amount, else units x price."""
        if self.amount:
            return self.amount
        return self.units * self.price_per_unit


@dataclass(frozen=True)
class RetirementConfig:
    target_annual_income: float
    withdrawal_rate: float = 0.04
    include_state_pension: bool = True
    scenario_rates: Tuple[float, ...] = ()


@dataclass(frozen=True)
class HouseholdData:
    persons: Tuple[Person, ...]
    accounts: Tuple[Account, ...]
    income: Tuple[PersonIncome, ...]
    contributions: Tuple[Contribution, ...]
    retirement: RetirementConfig
    bonus_structures: Tuple[BonusStructure, ...] = ()
    funds: Tuple[Fund, ...] = ()


@dataclass(frozen=True)
class ContributionTotals:
    isa_contribution: float = 0.0
    pension_contribution: float = 0.0
    gia_contribution: float = 0.0

    @property
    def total(self) -> float:
        return self.isa_contribution + self.pension_contribution + self.gia_contribution


def as_date(value: DateLike) -> date:
    """Calendar day of an ISO string, date or datetime; time of day is dropped."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def account_tax_wrapper(account_type: str) -> str:
    return ACCOUNT_TAX_WRAPPERS.get(account_type, account_type)


def annualise_contribution(amount: float, frequency: str) -> float:
    return amount * CONTRIBUTION_FREQUENCY_MULTIPLIERS.get(frequency, 1)


def find_income(income: Iterable[PersonIncome], person_id: str) -> Optional[PersonIncome]:
    return next((i for i in income if i.person_id == person_id), None)


def get_person_gross_income(
    income: Iterable[PersonIncome],
    bonus_structures: Iterable[BonusStructure],
    person_id: str,
) -> float:
    """Salary plus annual cash bonus for one person (0 with no income record)."""
    record = find_income(income, person_id)
    if record is None:
        return 0.0
    bonus = sum(b.cash_bonus_annual for b in bonus_structures if b.person_id == person_id)
    return record.gross_salary + bonus


def get_person_contribution_totals(
    contributions: Iterable[Contribution], person_id: str
) -> ContributionTotals:
    totals = {"isa": 0.0, "pension": 0.0, "gia": 0.0}
    for c in contributions:
        if c.person_id != person_id or c.target not in totals:
            continue
        totals[c.target] += annualise_contribution(c.amount, c.frequency)
    return ContributionTotals(
        isa_contribution=totals["isa"],
        pension_contribution=totals["pension"],
        gia_contribution=totals["gia"],
    )

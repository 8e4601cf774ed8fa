"""
What-if overrides on a household.

apply_scenario_overrides never touches its input: every step returns a new
HouseholdData built with dataclasses.replace, and records that a step does not
change are shared with the original.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence

from household import (
    BonusStructure,
    Contribution,
    HouseholdData,
    Person,
    PersonIncome,
    find_income,
    get_person_contribution_totals,
    get_person_gross_income,
)
from safe_math import finite_or, round_pence, round_whole
from tax import calculate_income_tax, calculate_ni, calculate_take_home_pay
from tax_constants import TaxConstants

logger = logging.getLogger(__name__)

# Relief at source contributions are paid net of basic rate tax
RELIEF_AT_SOURCE_NET_FRACTION = 0.8

CONTRIBUTION_TARGETS = ("isa", "pension", "gia")
_TARGET_LABELS = {"isa": "ISA", "pension": "Pension", "gia": "GIA"}


@dataclass(frozen=True)
class ContributionOverride:
    person_id: str
    isa_contribution: Optional[float] = None
    pension_contribution: Optional[float] = None
    gia_contribution: Optional[float] = None

    def amount_for(self, target: str) -> Optional[float]:
        return getattr(self, f"{target}_contribution")


@dataclass(frozen=True)
class ScenarioOverrides:
    """
    Sparse set of changes to a household.

    person_overrides and income hold partial records keyed by "id" and
    "person_id" respectively. market_shock_percent is a fraction (-0.30 is a
    30% fall).
    """
    person_overrides: Optional[Sequence[Mapping[str, Any]]] = None
    income: Optional[Sequence[Mapping[str, Any]]] = None
    contribution_overrides: Optional[Sequence[ContributionOverride]] = None
    retirement: Optional[Mapping[str, Any]] = None
    account_values: Optional[Mapping[str, float]] = None
    market_shock_percent: Optional[float] = None


@dataclass(frozen=True)
class ScenarioImpact:
    tax_saved: float
    ni_saved: float
    total_saved: float
    take_home_change: float


def _merge(record, partial: Mapping[str, Any], key: str):
    changes = {k: v for k, v in partial.items() if k != key}
    return replace(record, **changes)


# --------------------------------------------------------
# Override steps, applied in order
# --------------------------------------------------------


def _apply_person_overrides(household: HouseholdData,
                            person_overrides: Optional[Sequence[Mapping[str, Any]]]) -> HouseholdData:
    if not person_overrides:
        return household

    persons = []
    for person in household.persons:
        override = next((o for o in person_overrides if o.get("id") == person.id), None)
        persons.append(_merge(person, override, "id") if override is not None else person)
    return replace(household, persons=tuple(persons))


def _apply_income_overrides(household: HouseholdData,
                            income_overrides: Optional[Sequence[Mapping[str, Any]]]) -> HouseholdData:
    if not income_overrides:
        return household

    income = []
    for record in household.income:
        override = next((o for o in income_overrides if o.get("person_id") == record.person_id), None)
        income.append(_merge(record, override, "person_id") if override is not None else record)
    return replace(household, income=tuple(income))


def _apply_contribution_overrides(household: HouseholdData,
                                  overrides: Optional[Sequence[ContributionOverride]]) -> HouseholdData:
    if not overrides:
        return household

    overridden = {o.person_id for o in overrides}
    kept = [c for c in household.contributions if c.person_id not in overridden]

    synthetic = []
    for override in overrides:
        for target in CONTRIBUTION_TARGETS:
            amount = override.amount_for(target)
            if amount is None or amount <= 0:
                continue
            synthetic.append(Contribution(
                id=f"scenario-{target}-{override.person_id}",
                person_id=override.person_id,
                label=f"{_TARGET_LABELS[target]} (scenario)",
                target=target,
                amount=amount,
                frequency="annually",
            ))
    return replace(household, contributions=tuple(kept + synthetic))


def _apply_retirement_overrides(household: HouseholdData,
                                retirement: Optional[Mapping[str, Any]]) -> HouseholdData:
    if retirement is None:
        return household
    return replace(household, retirement=replace(household.retirement, **retirement))


def _apply_account_overrides(household: HouseholdData,
                             account_values: Optional[Mapping[str, float]],
                             market_shock_percent: Optional[float]) -> HouseholdData:
    if account_values is None and market_shock_percent is None:
        return household

    accounts = []
    for account in household.accounts:
        value = account.current_value
        # Shock first; an explicit value for the account wins over it
        if market_shock_percent is not None:
            value = value * (1 + market_shock_percent)
        if account_values is not None and account.id in account_values:
            value = account_values[account.id]

        if value != account.current_value:
            account = replace(account, current_value=max(0.0, finite_or(value, account.current_value)))
        accounts.append(account)
    return replace(household, accounts=tuple(accounts))


def apply_scenario_overrides(household: HouseholdData, overrides: ScenarioOverrides) -> HouseholdData:
    """Household with the overrides applied: persons, income, contributions, retirement, accounts."""
    result = replace(household)
    result = _apply_person_overrides(result, overrides.person_overrides)
    result = _apply_income_overrides(result, overrides.income)
    result = _apply_contribution_overrides(result, overrides.contribution_overrides)
    result = _apply_retirement_overrides(result, overrides.retirement)
    result = _apply_account_overrides(result, overrides.account_values, overrides.market_shock_percent)
    logger.debug("Applied scenario overrides: %s", overrides)
    return result


# --------------------------------------------------------
# Helpers that build overrides
# --------------------------------------------------------


def scale_savings_rate_contributions(
    persons: Sequence[Person],
    income: Sequence[PersonIncome],
    bonus_structures: Sequence[BonusStructure],
    contributions: Sequence[Contribution],
    target_rate_percent: float,
    constants: Optional[TaxConstants] = None,
) -> List[ContributionOverride]:
    """
    Contribution overrides that bring the household to a target savings rate.

    Each person saves their income share of the household target. An existing
    ISA/pension/GIA mix is scaled to hit it; a person with no contributions
    gets ISA first, then GIA. ISA amounts above the annual allowance spill
    into GIA.
    """
    c = constants or TaxConstants()

    gross_by_person = {p.id: get_person_gross_income(income, bonus_structures, p.id) for p in persons}
    total_gross = sum(gross_by_person.values())
    if total_gross <= 0:
        return []

    household_target = total_gross * target_rate_percent / 100

    result = []
    for person in persons:
        person_target = household_target * gross_by_person[person.id] / total_gross
        current = get_person_contribution_totals(contributions, person.id)

        if current.total > 0:
            scale = person_target / current.total
            isa = current.isa_contribution * scale
            pension = current.pension_contribution * scale
            gia = current.gia_contribution * scale
        else:
            isa, pension, gia = person_target, 0.0, 0.0

        if isa > c.isa_annual_allowance:
            gia += isa - c.isa_annual_allowance
            isa = c.isa_annual_allowance

        result.append(ContributionOverride(
            person_id=person.id,
            isa_contribution=round_whole(isa),
            pension_contribution=round_whole(pension),
            gia_contribution=round_whole(gia),
        ))
    return result


def calculate_scenario_impact(
    persons: Sequence[Person],
    income: Sequence[PersonIncome],
    pension_overrides: Mapping[str, float],
) -> Dict[str, ScenarioImpact]:
    """
    Tax, NI and take-home effect of changing each person's employee pension
    contribution. Persons without an override (or without income) show no change.
    """
    impacts = {}
    for person in persons:
        current = find_income(income, person.id)
        if current is None:
            continue
        proposed = replace(
            current,
            employee_pension_contribution=pension_overrides.get(person.id, current.employee_pension_contribution),
        )

        tax_now = calculate_income_tax(current.gross_salary, current.employee_pension_contribution,
                                       current.pension_contribution_method).tax
        tax_then = calculate_income_tax(proposed.gross_salary, proposed.employee_pension_contribution,
                                        proposed.pension_contribution_method).tax
        ni_now = calculate_ni(current.gross_salary, current.employee_pension_contribution,
                              current.pension_contribution_method).ni
        ni_then = calculate_ni(proposed.gross_salary, proposed.employee_pension_contribution,
                               proposed.pension_contribution_method).ni

        take_home_now = calculate_take_home_pay(current, person.student_loan_plan).take_home
        take_home_then = calculate_take_home_pay(proposed, person.student_loan_plan).take_home

        tax_saved = round_pence(tax_now - tax_then)
        ni_saved = round_pence(ni_now - ni_then)
        impacts[person.id] = ScenarioImpact(
            tax_saved=tax_saved,
            ni_saved=ni_saved,
            total_saved=round_pence(tax_saved + ni_saved),
            take_home_change=round_pence(take_home_then - take_home_now),
        )
    return impacts


def build_avoid_taper_preset(
    persons: Sequence[Person],
    income: Sequence[PersonIncome],
    contributions: Sequence[Contribution],
    constants: Optional[TaxConstants] = None,
) -> ScenarioOverrides:
    """
    Raise employee pension contributions so adjusted income falls back to the
    personal allowance taper threshold, within the annual allowance.

    Only persons between the taper threshold and the higher rate limit are
    touched.
    """
    c = constants or TaxConstants()
    threshold = c.personal_allowance_taper_threshold

    income_overrides = []
    for person in persons:
        record = find_income(income, person.id)
        if record is None:
            continue

        employee = record.employee_pension_contribution
        relief_at_source = record.pension_contribution_method == "relief_at_source"
        employee_gross = employee / RELIEF_AT_SOURCE_NET_FRACTION if relief_at_source else employee
        adjusted = record.gross_salary - employee_gross

        if not threshold < adjusted < c.higher_rate_upper_limit:
            continue

        discretionary = get_person_contribution_totals(contributions, person.id).pension_contribution
        headroom = max(0.0, c.pension_annual_allowance - record.employer_pension_contribution
                       - employee_gross - discretionary)
        extra_gross = min(adjusted - threshold, headroom)
        if extra_gross <= 0:
            continue

        extra = extra_gross * RELIEF_AT_SOURCE_NET_FRACTION if relief_at_source else extra_gross
        income_overrides.append({
            "person_id": person.id,
            "employee_pension_contribution": round_pence(employee + extra),
        })

    return ScenarioOverrides(income=income_overrides)


# --------------------------------------------------------
# Description
# --------------------------------------------------------


def _compact(amount: float) -> str:
    if abs(amount) >= 1_000_000:
        return f"£{amount / 1_000_000:.1f}m"
    if abs(amount) >= 1_000:
        return f"£{amount / 1_000:.1f}k"
    return f"£{amount:,.0f}"


def generate_scenario_description(overrides: ScenarioOverrides, household: HouseholdData) -> str:
    """One-line summary of the overrides, e.g. "Alice salary £50.0k · Market: -30%"."""
    persons = {p.id: p for p in household.persons}

    def name_of(person_id: str) -> str:
        person = persons.get(person_id)
        return person.name if person is not None else person_id

    parts = []
    for override in overrides.person_overrides or ():
        if "planned_retirement_age" in override:
            person = persons.get(override.get("id"))
            text = f"{name_of(override.get('id'))} retires at {override['planned_retirement_age']}"
            if person is not None:
                text += f" (was {person.planned_retirement_age})"
            parts.append(text)

    for override in overrides.income or ():
        name = name_of(override.get("person_id"))
        if "gross_salary" in override:
            parts.append(f"{name} salary {_compact(override['gross_salary'])}")
        if "employee_pension_contribution" in override:
            parts.append(f"{name} pension {_compact(override['employee_pension_contribution'])}")

    for override in overrides.contribution_overrides or ():
        total = sum(override.amount_for(t) or 0 for t in CONTRIBUTION_TARGETS)
        parts.append(f"{name_of(override.person_id)} saves {_compact(total)}/yr")

    if overrides.retirement and "target_annual_income" in overrides.retirement:
        parts.append(f"Target income {_compact(overrides.retirement['target_annual_income'])}")

    if overrides.market_shock_percent is not None:
        parts.append(f"Market: {round_whole(overrides.market_shock_percent * 100):+d}%")

    if overrides.account_values:
        parts.append(f"{len(overrides.account_values)} account value(s) set")

    return " · ".join(parts) if parts else "No changes"

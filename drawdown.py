"""
Year-by-year retirement drawdown across pension, ISA, GIA and cash pots.

Two strategies are modelled:

- tax_optimal: GIA first (uses the CGT exemption), then ISA, then cash, and
  the pension last (25% tax-free, 75% taxed as income).
- proportional: every pot is drawn in proportion to its share of the total.

The GIA sub-routine assumes half of every withdrawal is gain. This is a flat
modelling simplification and does not look at real cost basis (see cgt.py for
that).
"""

from __future__ import annotations
import logging
from dataclasses import asdict, dataclass, field, fields
from typing import Iterable, List, Mapping, Optional, Sequence, Union

import pandas as pd

from household import Account, account_tax_wrapper
from params import Params
from safe_math import cap_value, finite_or, is_finite, round_whole, safe_add
from tax import calculate_income_tax
from tax_constants import PENSION_TAX_FREE_LUMP_SUM_FRACTION, TaxConstants

logger = logging.getLogger(__name__)

STRATEGIES = ("tax_optimal", "proportional")
WRAPPERS = ("pension", "isa", "gia", "cash")
# Cash does not grow
GROWING_WRAPPERS = ("pension", "isa", "gia")

# Share of a GIA withdrawal treated as capital gain
GIA_ASSUMED_GAIN_FRACTION = 0.5
PENSION_GROSS_UP_ITERATIONS = 3


@dataclass(frozen=True)
class AccountPot:
    type: str  # "pension" | "isa" | "gia" | "cash"
    balance: float


@dataclass(frozen=True)
class DrawdownYearResult:
    age: int
    pension_drawn: int
    isa_drawn: int
    gia_drawn: int
    cash_drawn: int
    net_income: int
    tax_paid: int
    pension_remaining: int
    isa_remaining: int
    gia_remaining: int
    cash_remaining: int

    @property
    def total_drawn(self) -> int:
        return self.pension_drawn + self.isa_drawn + self.gia_drawn + self.cash_drawn


@dataclass(frozen=True)
class DrawdownPlan:
    years: List[DrawdownYearResult] = field(default_factory=list)
    total_tax_paid: int = 0
    total_net_income: int = 0
    exhaustion_age: Optional[int] = None


@dataclass(frozen=True)
class DrawdownComparison:
    optimal_tax_paid: int
    proportional_tax_paid: int
    tax_saving: int
    optimal: DrawdownPlan
    proportional: DrawdownPlan


@dataclass
class PotBalances:
    """Working balances of one simulation run, one field per wrapper."""
    pension: float = 0.0
    isa: float = 0.0
    gia: float = 0.0
    cash: float = 0.0

    def total(self) -> float:
        return self.pension + self.isa + self.gia + self.cash


@dataclass
class Withdrawal:
    net: float
    tax: float


PotsLike = Union[Mapping[str, float], Sequence[AccountPot]]


def _collect_balances(pots: PotsLike) -> PotBalances:
    if isinstance(pots, Mapping):
        items = list(pots.items())
    else:
        items = [(p.type, p.balance) for p in pots]

    balances = PotBalances()
    for wrapper, balance in items:
        if wrapper not in WRAPPERS:
            logger.debug("Ignoring pot with unknown wrapper %r", wrapper)
            continue
        setattr(balances, wrapper, safe_add(getattr(balances, wrapper), balance))
    return balances


# --------------------------------------------------------
# Tax on withdrawals
# --------------------------------------------------------


def _gia_taxable_gain(amount: float, c: TaxConstants) -> float:
    if amount <= 0:
        return 0.0
    return max(0.0, amount * GIA_ASSUMED_GAIN_FRACTION - c.cgt_annual_exempt_amount)


def net_gia_withdrawal(amount: float, other_income: float, c: TaxConstants) -> Withdrawal:
    """CGT on a GIA withdrawal; the rate follows the band of other_income."""
    if amount <= 0:
        return Withdrawal(0.0, 0.0)

    taxable_gain = _gia_taxable_gain(amount, c)
    if taxable_gain <= 0:
        return Withdrawal(amount, 0.0)

    if other_income > c.basic_rate_upper_limit:
        rate = c.cgt_higher_rate
    else:
        rate = c.cgt_basic_rate
    tax = taxable_gain * rate
    return Withdrawal(amount - tax, tax)


def net_pension_withdrawal(gross: float, other_income: float, c: TaxConstants) -> Withdrawal:
    """
    Net of a gross pension withdrawal.

    A quarter is paid tax free as a lump sum. The rest is taxed at the margin,
    as income on top of other_income.
    """
    if gross <= 0:
        return Withdrawal(0.0, 0.0)

    tax_free = gross * PENSION_TAX_FREE_LUMP_SUM_FRACTION
    taxable = gross - tax_free

    tax_on_total = calculate_income_tax(other_income + taxable, constants=c).tax
    tax_on_other = calculate_income_tax(other_income, constants=c).tax
    marginal_tax = tax_on_total - tax_on_other

    return Withdrawal(tax_free + taxable - marginal_tax, marginal_tax)


def _pension_gross_up(remaining: float, available: float, other_income: float, c: TaxConstants) -> float:
    """Gross pension withdrawal needed to net `remaining`, clamped to what is available."""
    gross = remaining / (1 - PENSION_TAX_FREE_LUMP_SUM_FRACTION)
    # A fixed number of proportional corrections, not a converging solver
    for _ in range(PENSION_GROSS_UP_ITERATIONS):
        clamped = min(max(0.0, gross), available)
        net = net_pension_withdrawal(clamped, other_income, c).net
        if net <= 0:
            gross = available
            break
        gross = gross * (remaining / net)
        if not is_finite(gross) or gross <= 0:
            gross = available
            break
    return min(max(0.0, gross), available)


# --------------------------------------------------------
# Strategies
# --------------------------------------------------------


def _draw_tax_optimal(balances: PotBalances, drawn: PotBalances, net_need: float,
                      state_pension: float, c: TaxConstants) -> float:
    remaining = net_need
    year_tax = 0.0
    gia_gain = 0.0

    # GIA first
    if remaining > 0 and balances.gia > 0:
        draw = min(remaining, balances.gia)
        w = net_gia_withdrawal(draw, state_pension, c)
        drawn.gia = draw
        balances.gia -= draw
        remaining = max(0.0, remaining - w.net)
        year_tax += w.tax
        gia_gain = _gia_taxable_gain(draw, c)

    # Tax-free wrappers next
    for wrapper in ("isa", "cash"):
        available = getattr(balances, wrapper)
        if remaining > 0 and available > 0:
            draw = min(remaining, available)
            setattr(drawn, wrapper, draw)
            setattr(balances, wrapper, available - draw)
            remaining -= draw

    # Pension last
    if remaining > 0 and balances.pension > 0:
        other_income = state_pension + gia_gain
        draw = _pension_gross_up(remaining, balances.pension, other_income, c)
        w = net_pension_withdrawal(draw, other_income, c)
        drawn.pension = draw
        balances.pension -= draw
        year_tax += w.tax

    return year_tax


def _draw_proportional(balances: PotBalances, drawn: PotBalances, net_need: float,
                       state_pension: float, c: TaxConstants) -> float:
    total = balances.total()
    if total <= 0 or net_need <= 0:
        return 0.0

    ratio = min(1.0, net_need / total)
    for wrapper in WRAPPERS:
        draw = getattr(balances, wrapper) * ratio
        setattr(drawn, wrapper, draw)
        setattr(balances, wrapper, getattr(balances, wrapper) - draw)

    gia_tax = net_gia_withdrawal(drawn.gia, state_pension, c).tax
    other_income = state_pension + _gia_taxable_gain(drawn.gia, c)
    pension_tax = net_pension_withdrawal(drawn.pension, other_income, c).tax
    return pension_tax + gia_tax


_STRATEGY_FUNCTIONS = {
    "tax_optimal": _draw_tax_optimal,
    "proportional": _draw_proportional,
}


# --------------------------------------------------------
# Plans
# --------------------------------------------------------


def generate_drawdown_plan(
    pots: PotsLike,
    annual_need: float,
    state_pension_annual: float,
    state_pension_start_age: int,
    start_age: int,
    end_age: int = Params.drawdown_end_age,
    growth_rate: float = Params.growth_rate,
    strategy: str = "tax_optimal",
    constants: Optional[TaxConstants] = None,
) -> DrawdownPlan:
    """
    Simulate drawdown from start_age to end_age inclusive.

    Each year the state pension (once payable) covers part of annual_need and
    the rest is drawn from the pots. Balances are floored at zero and then
    grown by growth_rate; cash does not grow. The exhaustion age is the first
    year the pots are empty while there is still a need to meet.
    """
    if strategy not in _STRATEGY_FUNCTIONS:
        raise ValueError(f"Unknown drawdown strategy {strategy!r}; expected one of {STRATEGIES}")

    c = constants or TaxConstants()
    draw_year = _STRATEGY_FUNCTIONS[strategy]
    balances = _collect_balances(pots)
    if not is_finite(growth_rate):
        logger.warning("Non-finite growth rate %r; using 0", growth_rate)
        growth_rate = 0.0

    years: List[DrawdownYearResult] = []
    total_tax_paid = 0.0
    total_net_income = 0.0
    exhaustion_age: Optional[int] = None

    for age in range(start_age, end_age + 1):
        state_pension = state_pension_annual if age >= state_pension_start_age else 0.0
        net_need = max(0.0, annual_need - state_pension)

        drawn = PotBalances()
        year_tax = draw_year(balances, drawn, net_need, state_pension, c)

        gross_drawn = drawn.total()
        net_income = gross_drawn + state_pension - year_tax

        if exhaustion_age is None and balances.total() <= 0 and net_need > 0:
            exhaustion_age = age

        for wrapper in WRAPPERS:
            setattr(balances, wrapper, max(0.0, getattr(balances, wrapper)))
        for wrapper in GROWING_WRAPPERS:
            balance = getattr(balances, wrapper)
            setattr(balances, wrapper, cap_value(finite_or(balance * (1 + growth_rate), balance)))

        if not is_finite(year_tax):
            logger.warning("Non-finite tax at age %d (%s); treated as 0", age, strategy)
            year_tax = 0.0
        if not is_finite(net_income):
            logger.warning("Non-finite net income at age %d (%s); using gross", age, strategy)
            net_income = finite_or(gross_drawn + state_pension)

        total_tax_paid = safe_add(total_tax_paid, year_tax)
        total_net_income = safe_add(total_net_income, net_income)

        years.append(DrawdownYearResult(
            age=age,
            pension_drawn=round_whole(drawn.pension),
            isa_drawn=round_whole(drawn.isa),
            gia_drawn=round_whole(drawn.gia),
            cash_drawn=round_whole(drawn.cash),
            net_income=round_whole(net_income),
            tax_paid=round_whole(year_tax),
            pension_remaining=round_whole(balances.pension),
            isa_remaining=round_whole(balances.isa),
            gia_remaining=round_whole(balances.gia),
            cash_remaining=round_whole(balances.cash),
        ))

    logger.debug("%s plan %d-%d: tax %.0f, net income %.0f, exhausted at %s",
                 strategy, start_age, end_age, total_tax_paid, total_net_income, exhaustion_age)

    return DrawdownPlan(
        years=years,
        total_tax_paid=round_whole(total_tax_paid),
        total_net_income=round_whole(total_net_income),
        exhaustion_age=exhaustion_age,
    )


def compare_drawdown_strategies(
    pots: PotsLike,
    annual_need: float,
    state_pension_annual: float,
    state_pension_start_age: int,
    start_age: int,
    end_age: int = Params.drawdown_end_age,
    growth_rate: float = Params.growth_rate,
    constants: Optional[TaxConstants] = None,
) -> DrawdownComparison:
    """Run both strategies on identical inputs; tax_saving is proportional minus optimal."""
    optimal = generate_drawdown_plan(pots, annual_need, state_pension_annual, state_pension_start_age,
                                     start_age, end_age, growth_rate, "tax_optimal", constants)
    proportional = generate_drawdown_plan(pots, annual_need, state_pension_annual, state_pension_start_age,
                                          start_age, end_age, growth_rate, "proportional", constants)
    return DrawdownComparison(
        optimal_tax_paid=optimal.total_tax_paid,
        proportional_tax_paid=proportional.total_tax_paid,
        tax_saving=proportional.total_tax_paid - optimal.total_tax_paid,
        optimal=optimal,
        proportional=proportional,
    )


def pots_from_accounts(accounts: Iterable[Account]) -> List[AccountPot]:
    """One pot per wrapper, summing account values; premium bonds count as cash."""
    totals = dict.fromkeys(WRAPPERS, 0.0)
    for account in accounts:
        wrapper = account_tax_wrapper(account.type)
        if wrapper == "premium_bonds":
            wrapper = "cash"
        if wrapper in totals:
            totals[wrapper] = safe_add(totals[wrapper], account.current_value)
    return [AccountPot(wrapper, balance) for wrapper, balance in totals.items()]


def plan_to_frame(plan: DrawdownPlan) -> pd.DataFrame:
    """Plan years as a DataFrame indexed by age, with a total_remaining column."""
    columns = [f.name for f in fields(DrawdownYearResult)]
    df = pd.DataFrame([asdict(y) for y in plan.years], columns=columns).set_index("age")
    df["total_remaining"] = df[[f"{w}_remaining" for w in WRAPPERS]].sum(axis=1)
    return df

"""
UK Capital Gains Tax on fund disposals.

Disposals are matched against acquisitions using the HMRC share identification
rules, in this order of precedence:

1. Same-day rule: acquisitions on the same calendar day as the disposal.
2. Bed-and-breakfast rule: acquisitions in the 30 days after the disposal.
3. Section 104 pool: the remainder is costed at the pool's average cost.

Transactions are grouped per (account, fund). Pools are rebuilt from the
history on every call; nothing here keeps state between calls.
"""

from __future__ import annotations
import logging
import re
from dataclasses import asdict, dataclass, field, fields
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from household import Account, DateLike, Fund, Transaction, as_date
from safe_math import round_pence, round_units, safe_divide
from tax_constants import TaxConstants

logger = logging.getLogger(__name__)

SAME_DAY = "same_day"
BED_AND_BREAKFAST = "bed_and_breakfast"
SECTION_104 = "section_104"

ACQUISITION_TYPES = ("buy", "contribution")
BED_AND_BREAKFAST_DAYS = 30

# Units left after matching below this are float noise
_UNIT_EPSILON = 1e-9

_TAX_YEAR_LABEL = re.compile(r"^(\d{4})/(\d{2})$")


@dataclass(frozen=True)
class Section104Pool:
    account_id: str
    fund_id: str
    total_units: float
    pooled_cost: float
    average_cost: float


@dataclass(frozen=True)
class DisposalRecord:
    date: date
    account_id: str
    fund_id: str
    units: float
    proceeds_per_unit: float
    proceeds: float
    cost_basis: float
    gain: float
    rule: str


@dataclass(frozen=True)
class TaxYearGains:
    tax_year: str
    total_gains: float
    total_losses: float
    net_gain: float
    annual_exempt_amount: float
    taxable_gain: float
    tax_due: float
    disposals: List[DisposalRecord] = field(default_factory=list)


@dataclass(frozen=True)
class UnrealisedGain:
    account_id: str
    fund_id: str
    unrealised_gain: float
    units: float
    average_cost: float
    current_price: float


@dataclass(frozen=True)
class BedAndIsaResult:
    sell_amount: float
    cgt_cost: float
    annual_tax_saved: float


@dataclass
class _Lot:
    """Working copy of an acquisition while disposals are matched against it."""
    day: date
    unit_cost: float
    remaining: float


# --------------------------------------------------------
# Tax years
# --------------------------------------------------------


def get_tax_year(when: DateLike) -> str:
    """UK tax year label for a date; the year runs 6 April to 5 April."""
    d = as_date(when)
    if (d.month, d.day) < (4, 6):
        start = d.year - 1
    else:
        start = d.year
    return f"{start}/{str(start + 1)[2:]}"


def parse_tax_year_dates(tax_year: str) -> Tuple[date, date]:
    """"2024/25" -> (2024-04-06, 2025-04-05)."""
    match = _TAX_YEAR_LABEL.match(tax_year.strip())
    if not match:
        raise ValueError(f"Tax year must look like '2024/25', got {tax_year!r}")
    start_year = int(match.group(1))
    return date(start_year, 4, 6), date(start_year + 1, 4, 5)


# --------------------------------------------------------
# Matching
# --------------------------------------------------------


def _group_by_holding(transactions: Iterable[Transaction]) -> Dict[Tuple[str, str], List[Transaction]]:
    groups: Dict[Tuple[str, str], List[Transaction]] = {}
    for tx in transactions:
        groups.setdefault((tx.account_id, tx.fund_id), []).append(tx)
    return groups


def _chronological(txs: Sequence[Transaction]) -> List[Transaction]:
    # Acquisitions sort ahead of disposals on the same day
    return sorted(txs, key=lambda t: (t.day, 0 if t.type in ACQUISITION_TYPES else 1))


def _disposal(sell: Transaction, units: float, cost: float, rule: str,
              account_id: str, fund_id: str) -> DisposalRecord:
    proceeds = units * sell.price_per_unit
    return DisposalRecord(
        date=sell.day,
        account_id=account_id,
        fund_id=fund_id,
        units=round_units(units),
        proceeds_per_unit=sell.price_per_unit,
        proceeds=round_pence(proceeds),
        cost_basis=round_pence(cost),
        gain=round_pence(proceeds - cost),
        rule=rule,
    )


def _match_holding(account_id: str, fund_id: str,
                   txs: Sequence[Transaction]) -> Tuple[List[DisposalRecord], Section104Pool]:
    history = _chronological(txs)

    lots: Dict[int, _Lot] = {}
    sells: List[Tuple[int, Transaction]] = []
    for idx, tx in enumerate(history):
        if tx.type in ACQUISITION_TYPES:
            lots[idx] = _Lot(day=tx.day, unit_cost=safe_divide(tx.cost, tx.units, tx.price_per_unit),
                             remaining=tx.units)
        elif tx.type == "sell":
            sells.append((idx, tx))

    unmatched = {idx: sell.units for idx, sell in sells}
    matched: Dict[int, List[DisposalRecord]] = {idx: [] for idx, _ in sells}

    def match_against(idx: int, sell: Transaction, lot: _Lot, rule: str) -> None:
        units = min(unmatched[idx], lot.remaining)
        if units <= _UNIT_EPSILON:
            return
        lot.remaining -= units
        unmatched[idx] -= units
        matched[idx].append(_disposal(sell, units, units * lot.unit_cost, rule, account_id, fund_id))

    # Same-day matching takes precedence over any bed-and-breakfast match
    for idx, sell in sells:
        for lot in lots.values():
            if unmatched[idx] <= _UNIT_EPSILON:
                break
            if lot.day == sell.day:
                match_against(idx, sell, lot, SAME_DAY)

    for idx, sell in sells:
        for lot in lots.values():
            if unmatched[idx] <= _UNIT_EPSILON:
                break
            if 0 < (lot.day - sell.day).days <= BED_AND_BREAKFAST_DAYS:
                match_against(idx, sell, lot, BED_AND_BREAKFAST)

    # Walk the history once more to cost remainders against the pool
    pool_units = 0.0
    pool_cost = 0.0
    for idx, tx in enumerate(history):
        if idx in lots:
            lot = lots[idx]
            if lot.remaining > _UNIT_EPSILON:
                pool_units += lot.remaining
                pool_cost += lot.remaining * lot.unit_cost
        elif idx in unmatched:
            remainder = unmatched[idx]
            if remainder <= _UNIT_EPSILON:
                continue
            from_pool = min(remainder, pool_units)
            cost = from_pool * safe_divide(pool_cost, pool_units)
            pool_cost = max(0.0, pool_cost - cost)
            pool_units = max(0.0, pool_units - from_pool)
            # Units beyond the pool have no recorded cost
            matched[idx].append(_disposal(tx, remainder, cost, SECTION_104, account_id, fund_id))

    disposals = [d for idx, _ in sells for d in matched[idx]]

    total_units = round_units(pool_units)
    pooled_cost = round_pence(pool_cost) if total_units > 0 else 0.0
    pool = Section104Pool(
        account_id=account_id,
        fund_id=fund_id,
        total_units=total_units,
        pooled_cost=pooled_cost,
        average_cost=round_pence(safe_divide(pooled_cost, total_units)),
    )
    return disposals, pool


def _match_all(transactions: Iterable[Transaction]) -> Tuple[List[DisposalRecord], List[Section104Pool]]:
    disposals: List[DisposalRecord] = []
    pools: List[Section104Pool] = []
    for (account_id, fund_id), txs in _group_by_holding(transactions).items():
        holding_disposals, pool = _match_holding(account_id, fund_id, txs)
        disposals.extend(holding_disposals)
        pools.append(pool)
    disposals.sort(key=lambda d: d.date)
    return disposals, pools


def calculate_disposals(transactions: Iterable[Transaction]) -> List[DisposalRecord]:
    """Every disposal in the history, matched by rule, in date order."""
    return _match_all(transactions)[0]


def calculate_section104_pools(transactions: Iterable[Transaction]) -> List[Section104Pool]:
    """Section 104 pool of every (account, fund) after the whole history."""
    return _match_all(transactions)[1]


# --------------------------------------------------------
# Tax year aggregation
# --------------------------------------------------------


def calculate_gains_for_tax_year(
    transactions: Iterable[Transaction],
    tax_year: str,
    basic_rate_band_remaining: Optional[float] = None,
    constants: Optional[TaxConstants] = None,
) -> TaxYearGains:
    """
    Realised gains for one tax year.

    The full history is matched (earlier disposals shape the pool); only
    disposals dated inside the tax year are summed. When the unused basic rate
    band is unknown the taxable gain is charged entirely at the higher rate.
    """
    c = constants or TaxConstants()
    parse_tax_year_dates(tax_year)

    disposals = [d for d in calculate_disposals(transactions) if get_tax_year(d.date) == tax_year]

    total_gains = sum(d.gain for d in disposals if d.gain > 0)
    total_losses = abs(sum(d.gain for d in disposals if d.gain < 0))
    net_gain = total_gains - total_losses
    taxable_gain = max(0.0, net_gain - c.cgt_annual_exempt_amount)

    tax_due = 0.0
    if taxable_gain > 0:
        if basic_rate_band_remaining is not None and basic_rate_band_remaining > 0:
            at_basic = min(taxable_gain, basic_rate_band_remaining)
            at_higher = max(0.0, taxable_gain - basic_rate_band_remaining)
            tax_due = at_basic * c.cgt_basic_rate + at_higher * c.cgt_higher_rate
        else:
            tax_due = taxable_gain * c.cgt_higher_rate

    logger.debug("Tax year %s: %d disposals, net gain %.2f", tax_year, len(disposals), net_gain)

    return TaxYearGains(
        tax_year=tax_year,
        total_gains=round_pence(total_gains),
        total_losses=round_pence(total_losses),
        net_gain=round_pence(net_gain),
        annual_exempt_amount=c.cgt_annual_exempt_amount,
        taxable_gain=round_pence(taxable_gain),
        tax_due=round_pence(tax_due),
        disposals=disposals,
    )


# --------------------------------------------------------
# Holdings
# --------------------------------------------------------


def get_unrealised_gains(accounts: Iterable[Account],
                         transactions: Iterable[Transaction]) -> List[UnrealisedGain]:
    """
    Unrealised gain of every current holding against its pooled average cost.

    Holdings without transaction history fall back to their recorded
    purchase price.
    """
    pools = {(p.account_id, p.fund_id): p for p in calculate_section104_pools(transactions)}

    results = []
    for account in accounts:
        for holding in account.holdings:
            pool = pools.get((account.id, holding.fund_id))
            average_cost = pool.average_cost if pool is not None else holding.purchase_price
            results.append(UnrealisedGain(
                account_id=account.id,
                fund_id=holding.fund_id,
                unrealised_gain=round_pence(holding.units * (holding.current_price - average_cost)),
                units=holding.units,
                average_cost=round_pence(average_cost),
                current_price=holding.current_price,
            ))
    return results


def calculate_bed_and_isa(unrealised_gain: float, cgt_allowance_remaining: float,
                          cgt_rate: float) -> BedAndIsaResult:
    """Cost of crystallising a GIA gain to move the holding into an ISA."""
    taxable_gain = max(0.0, unrealised_gain - cgt_allowance_remaining)
    return BedAndIsaResult(
        sell_amount=unrealised_gain,
        cgt_cost=round_pence(taxable_gain * cgt_rate),
        annual_tax_saved=round_pence(unrealised_gain * cgt_rate),
    )


def fund_label(funds: Iterable[Fund], fund_id: str) -> str:
    """Display name for a fund, or its id when the fund is unknown."""
    return next((f.name for f in funds if f.id == fund_id), fund_id)


def disposals_to_frame(disposals: Sequence[DisposalRecord]) -> pd.DataFrame:
    """Disposals as a DataFrame, one row per matched tranche."""
    columns = [f.name for f in fields(DisposalRecord)]
    return pd.DataFrame([asdict(d) for d in disposals], columns=columns)

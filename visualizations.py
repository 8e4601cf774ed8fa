"""
Charts for drawdown plans and capital gains.
Every method returns a matplotlib Figure; saving and closing is up to the caller.
"""

from __future__ import annotations
import math
from typing import List, Sequence, Tuple

import matplotlib.pyplot as plt
import numpy as np

from cgt import BED_AND_BREAKFAST, SAME_DAY, SECTION_104, TaxYearGains
from drawdown import WRAPPERS, DrawdownComparison, DrawdownPlan, plan_to_frame
from params import Params

# Wrapper and rule colours (colorblind-friendly)
COLORS = {
    'pension': '#1f77b4',            # Blue
    'isa': '#2ca02c',                # Green
    'gia': '#ff7f0e',                # Orange
    'cash': '#9467bd',               # Purple
    'tax': '#d62728',                # Red
    'optimal': '#17becf',            # Cyan
    'proportional': '#bcbd22',       # Olive
    SAME_DAY: '#e377c2',             # Pink
    BED_AND_BREAKFAST: '#8c564b',    # Brown
    SECTION_104: '#1f77b4',          # Blue
    'neutral': '#7f7f7f'             # Gray
}

RULE_LABELS = {
    SAME_DAY: "Same day",
    BED_AND_BREAKFAST: "Bed & breakfast",
    SECTION_104: "Section 104",
}

plt.style.use('default')
plt.rcParams.update({
    'font.size': 10,
    'font.family': 'sans-serif',
    'axes.labelsize': 11,
    'axes.titlesize': 12,
    'xtick.labelsize': 9,
    'ytick.labelsize': 9,
    'legend.fontsize': 9,
    'figure.titlesize': 14,
    'axes.grid': True,
    'grid.alpha': 0.3,
    'axes.axisbelow': True
})


class PlannerVisualizer:
    """Chart builder for the household planner"""

    def __init__(self, params: Params) -> None:
        self.params = params
        self.fig_size: Tuple[int, int] = (12, 8)
        self.dpi: int = 100

    def format_currency(self, amount: float, symbol: str = "£") -> str:
        """Compact currency label with NaN/Inf handling"""
        if not math.isfinite(amount):
            return "N/A"
        if abs(amount) >= 1_000_000:
            return f"{symbol}{amount/1_000_000:.1f}M"
        elif abs(amount) >= 1_000:
            return f"{symbol}{amount/1_000:.0f}K"
        else:
            return f"{symbol}{amount:,.0f}"

    def _currency_axis(self, axis) -> None:
        axis.set_major_formatter(plt.FuncFormatter(lambda x, p: self.format_currency(x)))

    def create_drawdown_chart(self, plan: DrawdownPlan, title: str = "Drawdown plan") -> plt.Figure:
        """
        Withdrawals per wrapper (stacked bars) above remaining balances
        (stacked areas), both by age.
        """
        if not plan.years:
            raise ValueError("create_drawdown_chart: plan has no years")

        df = plan_to_frame(plan)
        ages = df.index.to_numpy()

        fig, (ax1, ax2) = plt.subplots(2, 1, figsize=self.fig_size, height_ratios=[1, 1], sharex=True)

        bottom = np.zeros(len(ages))
        for wrapper in WRAPPERS:
            values = df[f"{wrapper}_drawn"].to_numpy(dtype=float)
            ax1.bar(ages, values, bottom=bottom, color=COLORS[wrapper], alpha=0.8, label=wrapper.upper())
            bottom += values
        ax1.plot(ages, df["tax_paid"].to_numpy(dtype=float), color=COLORS['tax'],
                 linewidth=2, marker='o', markersize=3, label="Tax paid")
        ax1.set_ylabel("Drawn per year")
        ax1.set_title(f"{title}: withdrawals", fontweight='bold')
        ax1.legend(loc='upper right', ncol=5)
        self._currency_axis(ax1.yaxis)

        balances = [df[f"{wrapper}_remaining"].to_numpy(dtype=float) for wrapper in WRAPPERS]
        ax2.stackplot(ages, *balances, colors=[COLORS[w] for w in WRAPPERS],
                      labels=[w.upper() for w in WRAPPERS], alpha=0.7)
        if plan.exhaustion_age is not None:
            ax2.axvline(x=plan.exhaustion_age, color=COLORS['tax'], linestyle='--',
                        label=f"Exhausted at {plan.exhaustion_age}")
        ax2.set_xlabel("Age")
        ax2.set_ylabel("Remaining balance")
        ax2.set_title("Remaining balances after growth", fontweight='bold')
        ax2.legend(loc='upper right')
        self._currency_axis(ax2.yaxis)

        plt.tight_layout()
        return fig

    def create_strategy_comparison_chart(self, comparison: DrawdownComparison) -> plt.Figure:
        """Lifetime tax by strategy next to cumulative tax by age."""
        fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(15, 6))

        names = ["Tax optimal", "Proportional"]
        totals = [comparison.optimal_tax_paid, comparison.proportional_tax_paid]
        bars = ax1.bar(names, totals, color=[COLORS['optimal'], COLORS['proportional']], alpha=0.8)
        for bar, value in zip(bars, totals):
            ax1.text(bar.get_x() + bar.get_width()/2, bar.get_height(),
                     self.format_currency(value), ha='center', va='bottom', fontsize=9)
        ax1.set_ylabel("Total tax paid")
        ax1.set_title(f"Tax saved by sequencing: {self.format_currency(comparison.tax_saving)}",
                      fontweight='bold')
        self._currency_axis(ax1.yaxis)

        for plan, key, label in ((comparison.optimal, 'optimal', names[0]),
                                 (comparison.proportional, 'proportional', names[1])):
            ages = np.array([y.age for y in plan.years])
            cumulative = np.cumsum([y.tax_paid for y in plan.years])
            ax2.plot(ages, cumulative, color=COLORS[key], linewidth=2.5, label=label)
        ax2.set_xlabel("Age")
        ax2.set_ylabel("Cumulative tax")
        ax2.set_title("Cumulative tax by age", fontweight='bold')
        ax2.legend(loc='upper left')
        self._currency_axis(ax2.yaxis)

        plt.tight_layout()
        return fig

    def create_gains_chart(self, tax_year_gains: Sequence[TaxYearGains]) -> plt.Figure:
        """Realised gains per tax year, stacked by matching rule, against the annual exemption."""
        if not tax_year_gains:
            raise ValueError("create_gains_chart: tax_year_gains cannot be empty")

        fig, ax = plt.subplots(figsize=self.fig_size)

        labels: List[str] = [g.tax_year for g in tax_year_gains]
        x = np.arange(len(labels))
        positive_bottom = np.zeros(len(labels))
        negative_bottom = np.zeros(len(labels))

        for rule in (SAME_DAY, BED_AND_BREAKFAST, SECTION_104):
            values = np.array([sum(d.gain for d in g.disposals if d.rule == rule) for g in tax_year_gains])
            bottom = np.where(values >= 0, positive_bottom, negative_bottom)
            ax.bar(x, values, bottom=bottom, color=COLORS[rule], alpha=0.8, label=RULE_LABELS[rule])
            positive_bottom += np.clip(values, 0, None)
            negative_bottom += np.clip(values, None, 0)

        exempt = [g.annual_exempt_amount for g in tax_year_gains]
        ax.plot(x, exempt, color=COLORS['neutral'], linestyle='--', marker='_', markersize=20,
                label="Annual exempt amount")
        for xi, g in zip(x, tax_year_gains):
            if g.tax_due > 0:
                ax.text(xi, max(g.total_gains, g.annual_exempt_amount),
                        f"CGT {self.format_currency(g.tax_due)}", ha='center', va='bottom', fontsize=9)

        ax.axhline(y=0, color='black', linewidth=0.8)
        ax.set_xticks(x)
        ax.set_xticklabels(labels)
        ax.set_xlabel("Tax year")
        ax.set_ylabel("Realised gain")
        ax.set_title("Realised gains by matching rule", fontweight='bold')
        ax.legend(loc='upper left')
        self._currency_axis(ax.yaxis)

        plt.tight_layout()
        return fig

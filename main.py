#!/usr/bin/env python3
"""
UK Household Finance Analysis - Main Entry Point

This script runs the planner end to end on the demo household in params.py:
1. Load parameters
2. Compare tax-optimal and proportional drawdown
3. Match the demo GIA transactions for capital gains
4. Apply what-if scenarios (market shock, savings rate, taper preset)
5. Save charts as PNG files

Usage: python main.py
"""

from __future__ import annotations
import sys
import logging
from datetime import datetime
from typing import List, Optional, Tuple

import matplotlib.pyplot as plt

from params import Params
from household import (
    Account,
    Contribution,
    Fund,
    Holding,
    HouseholdData,
    Person,
    PersonIncome,
    RetirementConfig,
    Transaction,
)
from tax_constants import TAX_YEAR, is_tax_year_stale
from cgt import (
    TaxYearGains,
    calculate_gains_for_tax_year,
    calculate_section104_pools,
    disposals_to_frame,
    fund_label,
    get_tax_year,
    get_unrealised_gains,
)
from drawdown import DrawdownComparison, compare_drawdown_strategies, plan_to_frame, pots_from_accounts
from scenario import (
    ScenarioOverrides,
    apply_scenario_overrides,
    build_avoid_taper_preset,
    calculate_scenario_impact,
    generate_scenario_description,
    scale_savings_rate_contributions,
)
from visualizations import PlannerVisualizer

# Configure logging
logging.basicConfig(
    level=logging.WARNING,
    format='%(asctime)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(Params.log_file),
        logging.StreamHandler(sys.stdout)
    ]
)
logger = logging.getLogger(__name__)


def demo_household(params: Params) -> HouseholdData:
    """Two-person household whose account balances match the pots in params."""
    return HouseholdData(
        persons=(
            Person(id="p1", name="Alice", date_of_birth="1970-05-14"),
            Person(id="p2", name="Sam", relationship="spouse", date_of_birth="1972-09-02"),
        ),
        accounts=(
            Account(id="a1", person_id="p1", type="sipp", name="SIPP",
                    current_value=params.initial_pension),
            Account(id="a2", person_id="p2", type="stocks_and_shares_isa", name="ISA",
                    current_value=params.initial_isa),
            Account(id="a3", person_id="p1", type="gia", name="GIA", current_value=params.initial_gia,
                    holdings=(Holding(fund_id="f1", units=1_000, purchase_price=100, current_price=150),)),
            Account(id="a4", person_id="p2", type="cash_savings", name="Savings",
                    current_value=params.initial_cash),
        ),
        income=(
            PersonIncome(person_id="p1", gross_salary=120_000, employer_pension_contribution=5_000,
                         employee_pension_contribution=5_000),
            PersonIncome(person_id="p2", gross_salary=45_000, employer_pension_contribution=2_250,
                         employee_pension_contribution=2_250, pension_contribution_method="net_pay"),
        ),
        contributions=(
            Contribution(id="c1", person_id="p1", label="Monthly ISA", target="isa", amount=1_000,
                         frequency="monthly"),
            Contribution(id="c2", person_id="p2", label="SIPP top-up", target="pension", amount=3_000),
        ),
        retirement=RetirementConfig(target_annual_income=params.annual_need),
        funds=(Fund(id="f1", name="Global Equity Index"),),
    )


def demo_transactions() -> List[Transaction]:
    """GIA history exercising all three matching rules."""
    return [
        Transaction("t1", "a3", "f1", "buy", "2022-06-01", 1_000, 100, 100_000),
        Transaction("t2", "a3", "f1", "buy", "2023-02-10", 200, 120, 24_000),
        Transaction("t3", "a3", "f1", "sell", "2024-05-20", 300, 140, 42_000),
        Transaction("t4", "a3", "f1", "buy", "2024-05-20", 100, 140, 14_000),
        Transaction("t5", "a3", "f1", "sell", "2024-11-04", 150, 150, 22_500),
        Transaction("t6", "a3", "f1", "buy", "2024-11-18", 50, 145, 7_250),
    ]


class HouseholdAnalyzer:
    """Main class for the UK household drawdown, CGT and scenario analysis"""

    def __init__(self) -> None:
        self.params: Optional[Params] = None
        self.household: Optional[HouseholdData] = None
        self.transactions: List[Transaction] = []
        self.comparison: Optional[DrawdownComparison] = None
        self.gains: List[TaxYearGains] = []
        self.scenarios: List[Tuple[str, HouseholdData]] = []

    def load_parameters(self) -> bool:
        """Load parameters and the demo household"""
        try:
            print("🔧 Loading parameters from params.py...")
            self.params = Params()
            self.household = demo_household(self.params)
            self.transactions = demo_transactions()

            print(f"   📊 Drawdown: age {self.params.drawdown_start_age} → {self.params.drawdown_end_age}")
            print(f"   📊 Annual need: £{self.params.annual_need:,}")
            print(f"   📊 State pension: £{self.params.state_pension_annual:,.2f}/yr "
                  f"from {self.params.state_pension_start_age}")
            print(f"   📊 Growth rate: {self.params.growth_rate:.1%}")
            print(f"   📊 Tax year: {TAX_YEAR}")
            if is_tax_year_stale():
                print(f"   ⚠️  Tax constants are for {TAX_YEAR} and may be out of date")
                logger.warning(f"Tax constants for {TAX_YEAR} are stale")

            return True

        except Exception as e:
            print(f"❌ Failed to load parameters: {e}")
            logger.error(f"Parameter loading failed: {e}")
            return False

    def run_drawdown(self) -> bool:
        """Compare both drawdown strategies on the demo pots"""
        try:
            assert self.params is not None and self.household is not None
            print("\n📉 Comparing drawdown strategies...")

            pots = pots_from_accounts(self.household.accounts)
            self.comparison = compare_drawdown_strategies(
                pots,
                self.params.annual_need,
                self.params.state_pension_annual,
                self.params.state_pension_start_age,
                self.params.drawdown_start_age,
                self.params.drawdown_end_age,
                self.params.growth_rate,
            )

            for name, plan in (("Tax optimal", self.comparison.optimal),
                               ("Proportional", self.comparison.proportional)):
                exhausted = plan.exhaustion_age if plan.exhaustion_age is not None else "never"
                print(f"   📈 {name:<13} tax £{plan.total_tax_paid:>10,}  "
                      f"net income £{plan.total_net_income:>11,}  exhausted: {exhausted}")
            print(f"   💰 Tax saved by sequencing: £{self.comparison.tax_saving:,}")

            df = plan_to_frame(self.comparison.optimal)
            print("\n   First five years (tax optimal):")
            print(df.head().to_string())

            return True

        except Exception as e:
            print(f"❌ Drawdown comparison failed: {e}")
            logger.error(f"Drawdown comparison failed: {e}")
            return False

    def run_capital_gains(self) -> bool:
        """Match the demo GIA transactions and report gains"""
        try:
            assert self.household is not None
            print("\n🧾 Calculating capital gains...")

            tax_years = sorted({get_tax_year(t.day) for t in self.transactions if t.type == "sell"})
            self.gains = [calculate_gains_for_tax_year(self.transactions, ty) for ty in tax_years]
            for g in self.gains:
                print(f"   📅 {g.tax_year}: net gain £{g.net_gain:,.2f}, "
                      f"taxable £{g.taxable_gain:,.2f}, CGT £{g.tax_due:,.2f}")

            disposals = [d for g in self.gains for d in g.disposals]
            if disposals:
                print(disposals_to_frame(disposals)[["date", "units", "proceeds", "cost_basis", "gain", "rule"]]
                      .to_string(index=False))

            for pool in calculate_section104_pools(self.transactions):
                name = fund_label(self.household.funds, pool.fund_id)
                print(f"   🏦 Pool {name}: {pool.total_units:,.2f} units at £{pool.average_cost:,.2f}")

            for u in get_unrealised_gains(self.household.accounts, self.transactions):
                name = fund_label(self.household.funds, u.fund_id)
                print(f"   📊 Unrealised {name}: £{u.unrealised_gain:,.2f}")

            return True

        except Exception as e:
            print(f"❌ Capital gains calculation failed: {e}")
            logger.error(f"Capital gains calculation failed: {e}")
            return False

    def run_scenarios(self) -> bool:
        """Apply the what-if scenarios to the demo household"""
        try:
            assert self.params is not None and self.household is not None
            print("\n🎯 Applying scenarios...")
            h = self.household

            savings = scale_savings_rate_contributions(
                h.persons, h.income, h.bonus_structures, h.contributions,
                self.params.target_savings_rate_percent,
            )
            candidates = [
                ScenarioOverrides(market_shock_percent=self.params.market_shock_percent),
                ScenarioOverrides(contribution_overrides=savings),
                build_avoid_taper_preset(h.persons, h.income, h.contributions),
            ]

            for overrides in candidates:
                description = generate_scenario_description(overrides, h)
                self.scenarios.append((description, apply_scenario_overrides(h, overrides)))
                print(f"   ✅ {description}")

            taper = candidates[-1]
            pension_overrides = {o["person_id"]: o["employee_pension_contribution"] for o in taper.income or []}
            for person_id, impact in calculate_scenario_impact(h.persons, h.income, pension_overrides).items():
                if impact.total_saved:
                    print(f"      💷 {person_id}: tax saved £{impact.tax_saved:,.2f}, "
                          f"NI saved £{impact.ni_saved:,.2f}, take-home {impact.take_home_change:+,.2f}")

            shocked = self.scenarios[0][1]
            before = sum(a.current_value for a in h.accounts)
            after = sum(a.current_value for a in shocked.accounts)
            print(f"   📉 Market shock: £{before:,.0f} → £{after:,.0f}")

            return True

        except Exception as e:
            print(f"❌ Scenario analysis failed: {e}")
            logger.error(f"Scenario analysis failed: {e}")
            return False

    def generate_visualizations(self) -> bool:
        """Generate and save all charts"""
        try:
            assert self.params is not None
            if not self.params.save_plots:
                return True
            if self.comparison is None:
                print("❌ No drawdown data available")
                return False

            print("\n📊 Creating charts...")
            visualizer = PlannerVisualizer(self.params)
            if self.params.drawdown_strategy == "proportional":
                plan, plan_title = self.comparison.proportional, "Proportional"
            else:
                plan, plan_title = self.comparison.optimal, "Tax optimal"

            charts = [
                ("Drawdown plan", "drawdown_plan.png",
                 lambda: visualizer.create_drawdown_chart(plan, plan_title)),
                ("Strategy comparison", "strategy_comparison.png",
                 lambda: visualizer.create_strategy_comparison_chart(self.comparison)),
                ("Capital gains", "capital_gains.png",
                 lambda: visualizer.create_gains_chart(self.gains)),
            ]

            for chart_name, filename, chart_function in charts:
                try:
                    fig = chart_function()
                    fig.savefig(filename, dpi=300, bbox_inches='tight', facecolor='white')
                    plt.close(fig)
                    print(f"   ✅ {chart_name} saved as {filename}")

                except Exception as e:
                    print(f"   ❌ {chart_name} failed: {e}")
                    logger.error(f"Chart generation failed for {chart_name}: {e}")

            return True

        except Exception as e:
            print(f"❌ Visualization failed: {e}")
            logger.error(f"Visualization generation failed: {e}")
            return False

    def run_complete_analysis(self) -> bool:
        """Run every analysis step in order"""
        try:
            print("🚀 UK HOUSEHOLD FINANCE ANALYSIS")
            print("=" * 60)
            print(f"🕐 {datetime.now().strftime('%d/%m/%Y %H:%M:%S')}")

            steps = [
                self.load_parameters,
                self.run_drawdown,
                self.run_capital_gains,
                self.run_scenarios,
                self.generate_visualizations,
            ]
            for step in steps:
                if not step():
                    return False

            print("\n🎉 ANALYSIS COMPLETE")
            print(f"   Details are logged to {Params.log_file}. Edit params.py and run again to compare.")
            return True

        except Exception as e:
            print(f"\n❌ CRITICAL ERROR: {e}")
            logger.error(f"Complete analysis failed: {e}")
            return False


def main():
    """Main entry point for the household analysis"""
    try:
        analyzer = HouseholdAnalyzer()
        success = analyzer.run_complete_analysis()
        sys.exit(0 if success else 1)

    except KeyboardInterrupt:
        print("\n\n⏹️  Analysis cancelled.")
        sys.exit(1)

    except Exception as e:
        print(f"\n❌ Unexpected error: {e}")
        logger.error(f"Unexpected error in main: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

from tax_constants import TaxConstants


class Params:
    # Drawdown horizon
    drawdown_start_age = 60
    drawdown_end_age = 95

    # Growth applied to invested pots each simulated year (cash does not grow)
    growth_rate = 0.04

    # "tax_optimal" or "proportional"
    drawdown_strategy = "tax_optimal"

    # Desired gross annual spending in retirement
    annual_need = 40_000

    # State pension
    state_pension_annual = TaxConstants.full_new_state_pension_annual
    state_pension_start_age = 67

    # Starting pots by wrapper
    initial_pension = 600_000
    initial_isa = 200_000
    initial_gia = 150_000
    initial_cash = 50_000

    # Scenario defaults
    market_shock_percent = -0.30
    target_savings_rate_percent = 30

    # Output
    save_plots = True
    log_file = "household_analysis.log"

    def pots(self):
        return {
            "pension": self.initial_pension,
            "isa": self.initial_isa,
            "gia": self.initial_gia,
            "cash": self.initial_cash,
        }

import unittest
from datetime import date, datetime

from household import (
    BonusStructure,
    Contribution,
    PersonIncome,
    Transaction,
    account_tax_wrapper,
    annualise_contribution,
    as_date,
    get_person_contribution_totals,
    get_person_gross_income,
)


class TestHouseholdHelpers(unittest.TestCase):
    def test_account_tax_wrapper(self):
        self.assertEqual(account_tax_wrapper("sipp"), "pension")
        self.assertEqual(account_tax_wrapper("lifetime_isa"), "isa")
        self.assertEqual(account_tax_wrapper("cash_savings"), "cash")
        self.assertEqual(account_tax_wrapper("crypto"), "crypto")

    def test_annualise_contribution(self):
        self.assertEqual(annualise_contribution(500, "monthly"), 6_000)
        self.assertEqual(annualise_contribution(500, "annually"), 500)

    def test_as_date(self):
        self.assertEqual(as_date("2024-04-05T10:30:00Z"), date(2024, 4, 5))
        self.assertEqual(as_date(datetime(2024, 4, 5, 23, 59)), date(2024, 4, 5))
        self.assertEqual(as_date(date(2024, 4, 5)), date(2024, 4, 5))

    def test_transaction_cost_falls_back_to_units_times_price(self):
        self.assertEqual(Transaction("t1", "a1", "f1", "buy", "2024-05-01", 10, 12.5, 0).cost, 125)
        self.assertEqual(Transaction("t1", "a1", "f1", "buy", "2024-05-01", 10, 12.5, 130).cost, 130)

    def test_gross_income_includes_bonus(self):
        income = [PersonIncome("p1", 60_000), PersonIncome("p2", 30_000)]
        bonuses = [BonusStructure("p1", 5_000)]
        self.assertEqual(get_person_gross_income(income, bonuses, "p1"), 65_000)
        self.assertEqual(get_person_gross_income(income, bonuses, "p2"), 30_000)
        self.assertEqual(get_person_gross_income(income, bonuses, "p3"), 0)

    def test_contribution_totals(self):
        contributions = [
            Contribution("c1", "p1", "ISA", "isa", 500, "monthly"),
            Contribution("c2", "p1", "SIPP", "pension", 2_000),
            Contribution("c3", "p1", "GIA", "gia", 100, "monthly"),
            Contribution("c4", "p2", "ISA", "isa", 20_000),
        ]
        totals = get_person_contribution_totals(contributions, "p1")
        self.assertEqual(totals.isa_contribution, 6_000)
        self.assertEqual(totals.pension_contribution, 2_000)
        self.assertEqual(totals.gia_contribution, 1_200)
        self.assertEqual(totals.total, 9_200)


if __name__ == '__main__':
    unittest.main()

import unittest
from datetime import date

from cgt import (
    BED_AND_BREAKFAST,
    SAME_DAY,
    SECTION_104,
    calculate_bed_and_isa,
    calculate_disposals,
    calculate_gains_for_tax_year,
    calculate_section104_pools,
    disposals_to_frame,
    fund_label,
    get_tax_year,
    get_unrealised_gains,
    parse_tax_year_dates,
)
from household import Account, Fund, Holding, Transaction


def buy(tx_id, day, units, price, fund="f1", account="a1"):
    return Transaction(tx_id, account, fund, "buy", day, units, price, units * price)


def sell(tx_id, day, units, price, fund="f1", account="a1"):
    return Transaction(tx_id, account, fund, "sell", day, units, price, units * price)


class TestTaxYears(unittest.TestCase):
    def test_tax_year_boundary(self):
        self.assertEqual(get_tax_year("2025-04-05"), "2024/25")
        self.assertEqual(get_tax_year("2025-04-06"), "2025/26")
        self.assertEqual(get_tax_year(date(2024, 1, 1)), "2023/24")
        self.assertEqual(get_tax_year("2099-12-31T23:59:00"), "2099/00")

    def test_parse_tax_year_dates(self):
        self.assertEqual(parse_tax_year_dates("2024/25"), (date(2024, 4, 6), date(2025, 4, 5)))

    def test_parse_rejects_bad_label(self):
        for label in ("2024", "2024-25", "24/25", ""):
            with self.assertRaises(ValueError):
                parse_tax_year_dates(label)


class TestMatchingRules(unittest.TestCase):
    def test_same_day_rule_wins_over_pool(self):
        txs = [
            buy("t1", "2024-01-01", 100, 10),
            buy("t2", "2024-06-01", 50, 12),
            sell("t3", "2024-06-01", 50, 15),
        ]
        disposals = calculate_disposals(txs)
        self.assertEqual(len(disposals), 1)
        d = disposals[0]
        self.assertEqual(d.rule, SAME_DAY)
        self.assertEqual(d.units, 50)
        self.assertEqual(d.cost_basis, 600)
        self.assertEqual(d.proceeds, 750)
        self.assertEqual(d.gain, 150)

    def test_same_day_acquisition_stays_out_of_pool(self):
        txs = [
            buy("t1", "2024-01-01", 100, 10),
            buy("t2", "2024-06-01", 50, 12),
            sell("t3", "2024-06-01", 50, 15),
        ]
        pool = calculate_section104_pools(txs)[0]
        self.assertEqual(pool.total_units, 100)
        self.assertEqual(pool.pooled_cost, 1000)
        self.assertEqual(pool.average_cost, 10)

    def test_same_day_ignores_time_of_day(self):
        txs = [
            buy("t1", "2024-06-01T09:00:00", 10, 10),
            sell("t2", "2024-06-01T16:30:00", 10, 11),
        ]
        self.assertEqual(calculate_disposals(txs)[0].rule, SAME_DAY)

    def test_bed_and_breakfast_within_30_days(self):
        txs = [
            buy("t1", "2024-01-01", 100, 10),
            sell("t2", "2024-03-01", 40, 15),
            buy("t3", "2024-03-11", 40, 12),
        ]
        disposals = calculate_disposals(txs)
        self.assertEqual(len(disposals), 1)
        d = disposals[0]
        self.assertEqual(d.rule, BED_AND_BREAKFAST)
        self.assertEqual(d.cost_basis, 480)
        self.assertEqual(d.gain, 120)

        # The repurchase was matched, so the pool keeps its original 100 units
        pool = calculate_section104_pools(txs)[0]
        self.assertEqual(pool.total_units, 100)
        self.assertEqual(pool.average_cost, 10)

    def test_repurchase_after_30_days_enters_pool(self):
        txs = [
            buy("t1", "2024-01-01", 100, 10),
            sell("t2", "2024-03-01", 40, 15),
            buy("t3", "2024-04-01", 40, 12),
        ]
        d = calculate_disposals(txs)[0]
        self.assertEqual(d.rule, SECTION_104)
        self.assertEqual(d.cost_basis, 400)

        pool = calculate_section104_pools(txs)[0]
        self.assertEqual(pool.total_units, 100)
        self.assertEqual(pool.pooled_cost, 1080)

    def test_earlier_acquisition_is_not_bed_and_breakfast(self):
        txs = [
            buy("t1", "2024-02-20", 100, 10),
            sell("t2", "2024-03-01", 40, 15),
        ]
        self.assertEqual(calculate_disposals(txs)[0].rule, SECTION_104)

    def test_sell_split_across_all_three_rules(self):
        txs = [
            buy("t1", "2024-01-01", 100, 10),
            sell("t2", "2024-06-01", 100, 15),
            buy("t3", "2024-06-01", 30, 14),
            buy("t4", "2024-06-15", 20, 13),
        ]
        disposals = calculate_disposals(txs)
        self.assertEqual([d.rule for d in disposals], [SAME_DAY, BED_AND_BREAKFAST, SECTION_104])
        self.assertEqual([d.units for d in disposals], [30, 20, 50])
        self.assertEqual([d.cost_basis for d in disposals], [420, 260, 500])
        self.assertAlmostEqual(sum(d.gain for d in disposals), 1500 - 1180, places=2)

        pool = calculate_section104_pools(txs)[0]
        self.assertEqual(pool.total_units, 50)
        self.assertEqual(pool.pooled_cost, 500)

    def test_sell_without_buys_has_zero_cost(self):
        disposals = calculate_disposals([sell("t1", "2024-06-01", 10, 5)])
        self.assertEqual(len(disposals), 1)
        self.assertEqual(disposals[0].rule, SECTION_104)
        self.assertEqual(disposals[0].cost_basis, 0)
        self.assertEqual(disposals[0].gain, 50)

        pool = calculate_section104_pools([sell("t1", "2024-06-01", 10, 5)])[0]
        self.assertEqual(pool.total_units, 0)
        self.assertEqual(pool.average_cost, 0)

    def test_dividends_are_ignored(self):
        txs = [
            buy("t1", "2024-01-01", 100, 10),
            Transaction("t2", "a1", "f1", "dividend", "2024-02-01", 0, 0, 250),
        ]
        self.assertEqual(calculate_disposals(txs), [])
        self.assertEqual(calculate_section104_pools(txs)[0].pooled_cost, 1000)

    def test_contributions_count_as_acquisitions(self):
        txs = [
            Transaction("t1", "a1", "f1", "contribution", "2024-01-01", 50, 20, 1000),
            sell("t2", "2024-05-01", 10, 25),
        ]
        d = calculate_disposals(txs)[0]
        self.assertEqual(d.cost_basis, 200)
        self.assertEqual(d.gain, 50)

    def test_zero_amount_falls_back_to_units_times_price(self):
        txs = [
            Transaction("t1", "a1", "f1", "buy", "2024-01-01", 10, 7, 0),
        ]
        self.assertEqual(calculate_section104_pools(txs)[0].pooled_cost, 70)

    def test_holdings_are_pooled_separately(self):
        txs = [
            buy("t1", "2024-01-01", 10, 10, fund="f1"),
            buy("t2", "2024-01-01", 10, 30, fund="f2"),
            buy("t3", "2024-01-01", 10, 50, fund="f1", account="a2"),
        ]
        pools = {(p.account_id, p.fund_id): p for p in calculate_section104_pools(txs)}
        self.assertEqual(pools[("a1", "f1")].average_cost, 10)
        self.assertEqual(pools[("a1", "f2")].average_cost, 30)
        self.assertEqual(pools[("a2", "f1")].average_cost, 50)

    def test_disposals_are_in_date_order(self):
        txs = [
            buy("t1", "2023-01-01", 100, 10, fund="f2"),
            sell("t2", "2024-09-01", 10, 12, fund="f2"),
            buy("t3", "2023-01-01", 100, 10, fund="f1"),
            sell("t4", "2024-02-01", 10, 12, fund="f1"),
        ]
        dates = [d.date for d in calculate_disposals(txs)]
        self.assertEqual(dates, sorted(dates))


class TestSection104Pool(unittest.TestCase):
    def test_pool_average_and_partial_sale(self):
        txs = [
            buy("t1", "2023-01-01", 100, 10),
            buy("t2", "2023-02-01", 100, 20),
        ]
        pool = calculate_section104_pools(txs)[0]
        self.assertEqual(pool.total_units, 200)
        self.assertEqual(pool.pooled_cost, 3000)
        self.assertEqual(pool.average_cost, 15)

        txs.append(sell("t3", "2023-06-01", 50, 25))
        d = calculate_disposals(txs)[0]
        self.assertEqual(d.rule, SECTION_104)
        self.assertEqual(d.cost_basis, 750)
        self.assertEqual(d.gain, 500)

        pool = calculate_section104_pools(txs)[0]
        self.assertEqual(pool.total_units, 150)
        self.assertEqual(pool.pooled_cost, 2250)
        self.assertEqual(pool.average_cost, 15)

    def test_inputs_are_not_mutated_and_results_repeat(self):
        txs = [
            sell("t3", "2024-06-01", 100, 15),
            buy("t1", "2024-01-01", 100, 10),
            buy("t2", "2024-06-01", 30, 14),
        ]
        snapshot = list(txs)
        first = calculate_disposals(txs)
        second = calculate_disposals(txs)
        self.assertEqual(txs, snapshot)
        self.assertEqual(first, second)
        self.assertEqual(calculate_section104_pools(txs), calculate_section104_pools(txs))


class TestTaxYearGains(unittest.TestCase):
    def setUp(self):
        self.txs = [
            buy("t1", "2023-01-01", 1000, 10),
            sell("t2", "2024-06-01", 500, 30),
        ]

    def test_gain_charged_at_higher_rate_without_band(self):
        result = calculate_gains_for_tax_year(self.txs, "2024/25")
        self.assertEqual(result.total_gains, 10000)
        self.assertEqual(result.total_losses, 0)
        self.assertEqual(result.net_gain, 10000)
        self.assertEqual(result.annual_exempt_amount, 3000)
        self.assertEqual(result.taxable_gain, 7000)
        self.assertAlmostEqual(result.tax_due, 1680, places=2)
        self.assertEqual(len(result.disposals), 1)

    def test_remaining_basic_band_charged_at_basic_rate(self):
        result = calculate_gains_for_tax_year(self.txs, "2024/25", basic_rate_band_remaining=5000)
        self.assertAlmostEqual(result.tax_due, 5000 * 0.18 + 2000 * 0.24, places=2)

    def test_losses_offset_gains(self):
        txs = self.txs + [
            buy("t3", "2023-01-01", 100, 50, fund="f2"),
            sell("t4", "2024-07-01", 100, 30, fund="f2"),
        ]
        result = calculate_gains_for_tax_year(txs, "2024/25")
        self.assertEqual(result.total_gains, 10000)
        self.assertEqual(result.total_losses, 2000)
        self.assertEqual(result.net_gain, 8000)
        self.assertEqual(result.taxable_gain, 5000)

    def test_other_tax_year_is_empty(self):
        result = calculate_gains_for_tax_year(self.txs, "2023/24")
        self.assertEqual(result.disposals, [])
        self.assertEqual(result.net_gain, 0)
        self.assertEqual(result.tax_due, 0)

    def test_gain_within_exemption_is_untaxed(self):
        txs = [buy("t1", "2023-01-01", 100, 10), sell("t2", "2024-06-01", 100, 30)]
        result = calculate_gains_for_tax_year(txs, "2024/25")
        self.assertEqual(result.net_gain, 2000)
        self.assertEqual(result.taxable_gain, 0)
        self.assertEqual(result.tax_due, 0)

    def test_bad_label_raises(self):
        with self.assertRaises(ValueError):
            calculate_gains_for_tax_year(self.txs, "2024")


class TestHoldings(unittest.TestCase):
    def test_unrealised_gain_against_pool_average(self):
        txs = [buy("t1", "2023-01-01", 100, 10), buy("t2", "2023-02-01", 50, 25)]
        accounts = [
            Account("a1", "p1", "gia", "GIA", 2700,
                    holdings=(Holding("f1", 150, 12, 18), Holding("f9", 10, 40, 35))),
        ]
        gains = get_unrealised_gains(accounts, txs)
        self.assertEqual(len(gains), 2)

        pooled = gains[0]
        self.assertEqual(pooled.average_cost, 15)
        self.assertEqual(pooled.unrealised_gain, 450)

        # No history for f9, so the recorded purchase price is used
        fallback = gains[1]
        self.assertEqual(fallback.average_cost, 40)
        self.assertEqual(fallback.unrealised_gain, -50)

    def test_bed_and_isa(self):
        result = calculate_bed_and_isa(10000, 3000, 0.24)
        self.assertEqual(result.sell_amount, 10000)
        self.assertAlmostEqual(result.cgt_cost, 1680, places=2)
        self.assertAlmostEqual(result.annual_tax_saved, 2400, places=2)
        self.assertEqual(calculate_bed_and_isa(2000, 3000, 0.24).cgt_cost, 0)

    def test_fund_label_falls_back_to_id(self):
        funds = [Fund("f1", "Global Equity")]
        self.assertEqual(fund_label(funds, "f1"), "Global Equity")
        self.assertEqual(fund_label(funds, "missing"), "missing")

    def test_disposals_frame(self):
        txs = [buy("t1", "2024-01-01", 100, 10), sell("t2", "2024-06-01", 100, 15), buy("t3", "2024-06-01", 30, 14)]
        df = disposals_to_frame(calculate_disposals(txs))
        self.assertEqual(list(df["rule"]), [SAME_DAY, SECTION_104])
        self.assertAlmostEqual(df["gain"].sum(), 30 * 1 + 70 * 5, places=2)
        self.assertTrue(disposals_to_frame([]).empty)


if __name__ == '__main__':
    unittest.main()

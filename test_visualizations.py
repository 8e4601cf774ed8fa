"""
Chart tests. Figures are built on the Agg backend and closed after each test.
"""

import unittest

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from cgt import calculate_gains_for_tax_year
from drawdown import DrawdownPlan, compare_drawdown_strategies, generate_drawdown_plan
from household import Transaction
from params import Params
from visualizations import PlannerVisualizer


class TestPlannerVisualizer(unittest.TestCase):
    def setUp(self):
        self.params = Params()
        self.visualizer = PlannerVisualizer(self.params)
        self.pots = self.params.pots()

    def tearDown(self):
        plt.close('all')

    def test_format_currency(self):
        self.assertEqual(self.visualizer.format_currency(1_500_000), "£1.5M")
        self.assertEqual(self.visualizer.format_currency(25_000), "£25K")
        self.assertEqual(self.visualizer.format_currency(999), "£999")
        self.assertEqual(self.visualizer.format_currency(float('nan')), "N/A")

    def test_drawdown_chart(self):
        plan = generate_drawdown_plan(self.pots, 40_000, 11_502.40, 67, 60, 95)
        fig = self.visualizer.create_drawdown_chart(plan)
        self.assertIsInstance(fig, plt.Figure)
        self.assertEqual(len(fig.axes), 2)

    def test_drawdown_chart_marks_exhaustion(self):
        plan = generate_drawdown_plan({"cash": 50_000}, 20_000, 0, 67, 60, 70, 0.0)
        fig = self.visualizer.create_drawdown_chart(plan)
        labels = fig.axes[1].get_legend_handles_labels()[1]
        self.assertIn("Exhausted at 62", labels)

    def test_empty_plan_raises(self):
        with self.assertRaises(ValueError):
            self.visualizer.create_drawdown_chart(DrawdownPlan())

    def test_strategy_comparison_chart(self):
        comparison = compare_drawdown_strategies(self.pots, 40_000, 11_502.40, 67, 60, 95)
        fig = self.visualizer.create_strategy_comparison_chart(comparison)
        self.assertEqual(len(fig.axes), 2)
        self.assertIn("Tax saved by sequencing", fig.axes[0].get_title())

    def test_gains_chart(self):
        txs = [
            Transaction("t1", "a1", "f1", "buy", "2022-06-01", 1_000, 100, 100_000),
            Transaction("t2", "a1", "f1", "sell", "2023-05-20", 300, 140, 42_000),
            Transaction("t3", "a1", "f1", "buy", "2023-05-20", 100, 140, 14_000),
            Transaction("t4", "a1", "f1", "sell", "2024-11-04", 150, 90, 13_500),
        ]
        gains = [calculate_gains_for_tax_year(txs, ty) for ty in ("2023/24", "2024/25")]
        fig = self.visualizer.create_gains_chart(gains)
        ax = fig.axes[0]
        self.assertEqual([t.get_text() for t in ax.get_xticklabels()], ["2023/24", "2024/25"])

    def test_empty_gains_raise(self):
        with self.assertRaises(ValueError):
            self.visualizer.create_gains_chart([])


if __name__ == '__main__':
    unittest.main()

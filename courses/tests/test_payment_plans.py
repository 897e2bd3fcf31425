from datetime import date

from django.test import SimpleTestCase

from courses.payment_plans import add_months, build_payment_plan, format_usd, split_amount


class SplitAmountTests(SimpleTestCase):
    def test_remainder_goes_to_first_installment(self):
        self.assertEqual(split_amount(39500, 3), [13168, 13166, 13166])

    def test_even_split(self):
        self.assertEqual(split_amount(39500, 2), [19750, 19750])

    def test_single_installment(self):
        self.assertEqual(split_amount(49200, 1), [49200])

    def test_installments_sum_to_total(self):
        for total in (3, 99, 100, 39500, 49201, 123457):
            for count in (1, 2, 3):
                with self.subTest(total=total, count=count):
                    amounts = split_amount(total, count)
                    self.assertEqual(sum(amounts), total)
                    self.assertEqual(len(set(amounts[1:])), min(1, count - 1))
                    self.assertTrue(all(amount > 0 for amount in amounts))

    def test_total_smaller_than_count_raises(self):
        self.assertEqual(split_amount(1, 1), [1])
        for total, count in ((1, 2), (2, 3)):
            with self.subTest(total=total, count=count):
                with self.assertRaises(ValueError):
                    split_amount(total, count)

    def test_invalid_count_raises(self):
        for count in (0, 4, -1):
            with self.assertRaises(ValueError):
                split_amount(39500, count)

    def test_non_positive_total_raises(self):
        with self.assertRaises(ValueError):
            split_amount(0, 1)
        with self.assertRaises(ValueError):
            split_amount(-100, 2)


class AddMonthsTests(SimpleTestCase):
    def test_plain_shift(self):
        self.assertEqual(add_months(date(2025, 3, 10), 1), date(2025, 4, 10))

    def test_year_rollover(self):
        self.assertEqual(add_months(date(2025, 12, 5), 2), date(2026, 2, 5))

    def test_clamps_to_short_month(self):
        self.assertEqual(add_months(date(2025, 1, 31), 1), date(2025, 2, 28))
        self.assertEqual(add_months(date(2024, 1, 31), 1), date(2024, 2, 29))


class PaymentPlanTests(SimpleTestCase):
    def test_full_payment_plan(self):
        plan = build_payment_plan(39500, 1, date(2025, 3, 10))
        self.assertFalse(plan.is_split)
        self.assertEqual(plan.first_amount, 39500)
        self.assertEqual(plan.recurring_amount, 0)
        self.assertEqual(plan.remaining_count, 0)
        self.assertEqual(plan.payment_type, "full_payment")
        self.assertEqual(plan.label, "Pay in full: $395.00")
        self.assertEqual(plan.schedule_lines(), ["One-time payment: $395.00"])

    def test_three_installments(self):
        plan = build_payment_plan(39500, 3, date(2025, 3, 10))
        self.assertTrue(plan.is_split)
        self.assertEqual(plan.option_type, "split-3")
        self.assertEqual(plan.payment_type, "split_payment")
        self.assertEqual(plan.first_amount, 13168)
        self.assertEqual(plan.recurring_amount, 13166)
        self.assertEqual(plan.remaining_count, 2)
        self.assertEqual(
            [i.due_date for i in plan.installments],
            [date(2025, 3, 10), date(2025, 4, 10), date(2025, 5, 10)],
        )
        self.assertEqual(plan.label, "3 payments starting at $131.68")
        self.assertEqual(
            plan.schedule_lines(),
            [
                "First Payment Today: $131.68 (Mar 10, 2025)",
                "Second Payment: $131.66 (Apr 10, 2025)",
                "Final Payment: $131.66 (May 10, 2025)",
            ],
        )

    def test_two_equal_installments_label(self):
        plan = build_payment_plan(39500, 2, date(2025, 3, 10))
        self.assertEqual(plan.label, "2 payments × $197.50")
        self.assertEqual(plan.as_dict()["schedule"][1]["due_date"], "2025-04-10")

    def test_format_usd(self):
        self.assertEqual(format_usd(39500), "$395.00")
        self.assertEqual(format_usd(123456), "$1,234.56")
        self.assertEqual(format_usd(5), "$0.05")

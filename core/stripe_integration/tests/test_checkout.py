"""
Checkout Orchestrator Tests
===========================

The gateway and the Make.com notifier are replaced by mocks; no request
leaves the process.
"""

from datetime import date, datetime, timedelta, timezone as dt_timezone
from unittest import mock
from zoneinfo import ZoneInfo

from django.test import SimpleTestCase

from core.exceptions import (
    ConfigurationError,
    GatewayError,
    InvalidSelectionError,
    PaymentDeclinedError,
)
from core.stripe_integration.checkout import (
    CheckoutOrchestrator,
    CheckoutRequest,
    CheckoutState,
    Contact,
    plan_metadata,
)
from courses import offers
from courses.payment_plans import add_months, build_payment_plan

NEW_YORK = ZoneInfo("America/New_York")
# 11:00 in New York
NOW = datetime(2025, 3, 10, 15, 0, tzinfo=dt_timezone.utc)


def make_request(installments=1, payment_method_id="pm_card_visa", selection=("bundle",)):
    priced = offers.price_selection(list(selection), False, NOW)
    plan = build_payment_plan(priced.total, installments, date(2025, 3, 10))
    return CheckoutRequest(
        contact=Contact(email="ada@example.com", full_name="Ada Lovelace", phone="+1 555 0100"),
        selection=priced,
        plan=plan,
        payment_method_id=payment_method_id,
        attempt_id="attempt-1",
    )


def make_gateway(intent_status="succeeded"):
    gateway = mock.Mock()
    gateway.upsert_customer_by_email.return_value = {"id": "cus_1"}
    gateway.create_payment_intent.return_value = {
        "id": "pi_1",
        "status": intent_status,
        "client_secret": "pi_1_secret_abc",
    }
    gateway.create_installment_subscription.return_value = {"id": "sub_1"}
    gateway.find_installment_subscription.return_value = None
    return gateway


class CheckoutFullPaymentTests(SimpleTestCase):
    def setUp(self):
        self.gateway = make_gateway()
        self.notifier = mock.Mock()
        self.orchestrator = CheckoutOrchestrator(self.gateway, self.notifier, clock=lambda: NOW)

    def test_single_payment_completes_without_schedule(self):
        result = self.orchestrator.run(make_request(installments=1))

        self.assertTrue(result.success)
        self.assertEqual(
            result.history,
            [
                CheckoutState.INITIATED,
                CheckoutState.PAYER_RESOLVED,
                CheckoutState.FIRST_CHARGE_CAPTURED,
                CheckoutState.COMPLETE,
            ],
        )
        self.gateway.create_installment_subscription.assert_not_called()
        self.assertIsNone(result.next_payment_date)

        kwargs = self.gateway.create_payment_intent.call_args.kwargs
        self.assertEqual(kwargs["amount"], 39500)
        self.assertTrue(kwargs["confirm"])
        self.assertFalse(kwargs["save_card"])
        self.assertEqual(kwargs["customer_id"], "cus_1")
        self.assertEqual(kwargs["idempotency_key"], "first-charge-attempt-1")
        self.assertEqual(kwargs["metadata"]["type"], "full_payment")
        self.assertEqual(kwargs["metadata"]["remaining_payments"], "0")

    def test_payer_is_resolved_by_email_with_card(self):
        self.orchestrator.run(make_request())
        self.gateway.upsert_customer_by_email.assert_called_once_with(
            "ada@example.com",
            name="Ada Lovelace",
            phone="+1 555 0100",
            payment_method_id="pm_card_visa",
        )

    def test_confirmed_checkout_requires_payment_method(self):
        with self.assertRaises(InvalidSelectionError):
            self.orchestrator.run(make_request(payment_method_id=None))
        self.gateway.upsert_customer_by_email.assert_not_called()

    def test_result_as_dict(self):
        body = self.orchestrator.run(make_request()).as_dict()
        self.assertEqual(body["state"], "complete")
        self.assertEqual(body["payment_intent_id"], "pi_1")
        self.assertEqual(body["plan"]["total"], 39500)
        self.assertFalse(body["schedule_failed"])


class CheckoutSplitPaymentTests(SimpleTestCase):
    def setUp(self):
        self.gateway = make_gateway()
        self.notifier = mock.Mock()
        self.orchestrator = CheckoutOrchestrator(self.gateway, self.notifier, clock=lambda: NOW)

    def test_first_installment_charged_with_plan_metadata(self):
        self.orchestrator.run(make_request(installments=3))

        kwargs = self.gateway.create_payment_intent.call_args.kwargs
        self.assertEqual(kwargs["amount"], 13168)
        self.assertTrue(kwargs["save_card"])
        metadata = kwargs["metadata"]
        self.assertEqual(metadata["type"], "split_payment")
        self.assertEqual(metadata["payment_number"], "1")
        self.assertEqual(metadata["total_payments"], "3")
        self.assertEqual(metadata["total_amount"], "39500")
        self.assertEqual(metadata["installment_amount"], "13166")
        self.assertEqual(metadata["remaining_payments"], "2")
        self.assertIn("Reiki Expansion", metadata["items"])
        self.assertIn("ada@example.com", metadata["contact_info"])

    def test_schedule_anchored_one_month_after_first_charge(self):
        result = self.orchestrator.run(make_request(installments=3))

        self.assertTrue(result.success)
        self.assertEqual(result.state, CheckoutState.COMPLETE)
        self.assertIn(CheckoutState.SCHEDULE_REGISTERED, result.history)
        self.assertEqual(result.subscription_id, "sub_1")
        self.assertEqual(result.next_payment_date, "2025-04-10")

        kwargs = self.gateway.create_installment_subscription.call_args.kwargs
        self.assertEqual(kwargs["customer_id"], "cus_1")
        self.assertEqual(kwargs["payment_method_id"], "pm_card_visa")
        self.assertEqual(kwargs["amount"], 13166)
        self.assertEqual(kwargs["anchor"].astimezone(NEW_YORK).date(), date(2025, 4, 10))
        # two remaining charges: April 10 and May 10, cancelled at the end of the May period
        self.assertEqual(kwargs["cancel_at"].astimezone(NEW_YORK).date(), date(2025, 6, 10))
        self.assertEqual(kwargs["idempotency_key"], "installments-pi_1")
        self.assertEqual(kwargs["metadata"]["original_payment_intent"], "pi_1")
        self.gateway.enable_automatic_collection.assert_called_once_with("sub_1")
        self.notifier.send.assert_not_called()

    def test_schedule_failure_still_succeeds_with_warning(self):
        self.gateway.create_installment_subscription.side_effect = GatewayError("boom")

        with self.assertLogs("core.stripe_integration.checkout", level="ERROR") as logs:
            result = self.orchestrator.run(make_request(installments=2))

        self.assertTrue(result.success)
        self.assertEqual(result.state, CheckoutState.COMPLETE)
        self.assertEqual(result.history[-2:], [CheckoutState.SCHEDULE_FAILED, CheckoutState.COMPLETE])
        self.assertIsNotNone(result.warning)
        self.assertIsNone(result.next_payment_date)
        self.assertTrue(any("pi_1" in line for line in logs.output))

        # the captured charge is left alone
        called = [name for name, _, _ in self.gateway.method_calls]
        self.assertFalse(any("refund" in name or "cancel" in name for name in called))

        payload = self.notifier.send.call_args.args[0]
        self.assertEqual(payload["event"], "subscription.failed")
        self.assertEqual(payload["payment"]["id"], "pi_1")
        self.assertEqual(payload["customer"]["lastName"], "Lovelace")

    def test_failure_switching_to_automatic_collection_is_a_schedule_failure(self):
        self.gateway.enable_automatic_collection.side_effect = GatewayError("boom")

        with self.assertLogs("core.stripe_integration.checkout", level="ERROR"):
            result = self.orchestrator.run(make_request(installments=3))

        self.assertTrue(result.success)
        self.assertTrue(result.schedule_failed)
        self.assertEqual(result.subscription_id, "sub_1")

    def test_unreported_schedule_failure_when_make_url_missing(self):
        self.gateway.create_installment_subscription.side_effect = GatewayError("boom")
        self.notifier.send.side_effect = ConfigurationError("MAKE_WEBHOOK_URL is not set.")

        with self.assertLogs("core.stripe_integration.checkout", level="ERROR"):
            result = self.orchestrator.run(make_request(installments=2))

        self.assertTrue(result.success)
        self.assertTrue(result.schedule_failed)


class CheckoutFailureTests(SimpleTestCase):
    def setUp(self):
        self.gateway = make_gateway()
        self.orchestrator = CheckoutOrchestrator(self.gateway, clock=lambda: NOW)

    def test_payer_failure_aborts_before_charge(self):
        self.gateway.upsert_customer_by_email.side_effect = GatewayError("rejected")

        with self.assertRaises(GatewayError):
            self.orchestrator.run(make_request())

        self.gateway.create_payment_intent.assert_not_called()
        self.assertEqual(self.gateway.upsert_customer_by_email.call_count, 1)

    def test_payer_lookup_retried_once_on_timeout(self):
        self.gateway.upsert_customer_by_email.side_effect = [
            GatewayError("timeout", retryable=True),
            {"id": "cus_1"},
        ]

        result = self.orchestrator.run(make_request())

        self.assertTrue(result.success)
        self.assertEqual(self.gateway.upsert_customer_by_email.call_count, 2)

    def test_payer_lookup_not_retried_twice(self):
        self.gateway.upsert_customer_by_email.side_effect = GatewayError("timeout", retryable=True)

        with self.assertRaises(GatewayError):
            self.orchestrator.run(make_request())

        self.assertEqual(self.gateway.upsert_customer_by_email.call_count, 2)
        self.gateway.create_payment_intent.assert_not_called()

    def test_declined_card_is_not_retried(self):
        self.gateway.create_payment_intent.side_effect = PaymentDeclinedError("Your card was declined.")

        with self.assertRaises(PaymentDeclinedError):
            self.orchestrator.run(make_request(installments=3))

        self.assertEqual(self.gateway.create_payment_intent.call_count, 1)
        self.gateway.create_installment_subscription.assert_not_called()

    def test_charge_timeout_is_not_retried(self):
        self.gateway.create_payment_intent.side_effect = GatewayError("timeout", retryable=True)

        with self.assertRaises(GatewayError):
            self.orchestrator.run(make_request())

        self.assertEqual(self.gateway.create_payment_intent.call_count, 1)

    def test_unexpected_intent_status_is_declined(self):
        self.gateway.create_payment_intent.return_value = {
            "id": "pi_1",
            "status": "requires_payment_method",
            "client_secret": "s",
        }
        with self.assertRaises(PaymentDeclinedError):
            self.orchestrator.run(make_request())


class CheckoutClientConfirmationTests(SimpleTestCase):
    def test_card_requiring_authentication_pauses(self):
        gateway = make_gateway(intent_status="requires_action")
        result = CheckoutOrchestrator(gateway, clock=lambda: NOW).run(make_request(installments=3))

        self.assertFalse(result.success)
        self.assertEqual(result.state, CheckoutState.ACTION_REQUIRED)
        self.assertEqual(result.client_secret, "pi_1_secret_abc")
        gateway.create_installment_subscription.assert_not_called()

    def test_unconfirmed_intent_for_stripe_js(self):
        gateway = make_gateway(intent_status="requires_confirmation")
        result = CheckoutOrchestrator(gateway, clock=lambda: NOW).run(
            make_request(installments=2), confirm=False
        )

        self.assertEqual(result.state, CheckoutState.ACTION_REQUIRED)
        self.assertFalse(gateway.create_payment_intent.call_args.kwargs["confirm"])

    def test_register_schedule_after_confirmation(self):
        gateway = make_gateway()
        gateway.retrieve_payment_intent.return_value = {
            "id": "pi_1",
            "status": "succeeded",
            "customer": "cus_1",
            "payment_method": "pm_card_visa",
            "metadata": plan_metadata(make_request(installments=3)),
        }

        result = CheckoutOrchestrator(gateway, clock=lambda: NOW).register_schedule("pi_1")

        self.assertTrue(result.success)
        self.assertEqual(result.attempt_id, "attempt-1")
        self.assertIn(CheckoutState.SCHEDULE_REGISTERED, result.history)
        kwargs = gateway.create_installment_subscription.call_args.kwargs
        self.assertEqual(kwargs["amount"], 13166)
        self.assertEqual(kwargs["customer_id"], "cus_1")

    def test_register_schedule_for_full_payment_completes(self):
        gateway = make_gateway()
        gateway.retrieve_payment_intent.return_value = {
            "id": "pi_1",
            "status": "succeeded",
            "customer": "cus_1",
            "payment_method": "pm_card_visa",
            "metadata": plan_metadata(make_request(installments=1)),
        }

        result = CheckoutOrchestrator(gateway, clock=lambda: NOW).register_schedule("pi_1")

        self.assertTrue(result.success)
        gateway.create_installment_subscription.assert_not_called()

    def test_register_schedule_rejects_unpaid_intent(self):
        gateway = make_gateway()
        gateway.retrieve_payment_intent.return_value = {
            "id": "pi_1",
            "status": "requires_action",
            "metadata": plan_metadata(make_request(installments=3)),
        }

        with self.assertRaises(InvalidSelectionError) as ctx:
            CheckoutOrchestrator(gateway, clock=lambda: NOW).register_schedule("pi_1")

        self.assertEqual(ctx.exception.error_code, "payment_incomplete")
        gateway.create_installment_subscription.assert_not_called()

    def test_register_schedule_rejects_foreign_intent(self):
        gateway = make_gateway()
        gateway.retrieve_payment_intent.return_value = {"id": "pi_x", "status": "succeeded", "metadata": {}}

        with self.assertRaises(InvalidSelectionError):
            CheckoutOrchestrator(gateway, clock=lambda: NOW).register_schedule("pi_x")


def billing_dates(anchor, cancel_at):
    """Dates Stripe invoices between the anchor and the cancellation."""
    dates = []
    while True:
        when = datetime.combine(add_months(anchor.date(), len(dates)), anchor.timetz())
        if when >= cancel_at:
            return dates
        dates.append(when.date())


class ScheduleDatesTests(SimpleTestCase):
    def test_mid_month_charge(self):
        anchor, cancel_at = CheckoutOrchestrator.schedule_dates(NOW, 2)

        self.assertEqual(anchor.date(), date(2025, 4, 10))
        self.assertEqual(billing_dates(anchor, cancel_at), [date(2025, 4, 10), date(2025, 5, 10)])

    def test_month_end_charge_bills_exactly_the_remaining_installments(self):
        cases = [
            # 11:00 in New York on the first charge date
            (datetime(2025, 1, 31, 16, 0, tzinfo=dt_timezone.utc), 1, [date(2025, 2, 28)]),
            (datetime(2025, 1, 31, 16, 0, tzinfo=dt_timezone.utc), 2, [date(2025, 2, 28), date(2025, 3, 28)]),
            (
                datetime(2025, 10, 31, 15, 0, tzinfo=dt_timezone.utc),
                2,
                [date(2025, 11, 30), date(2025, 12, 30)],
            ),
            (datetime(2024, 1, 30, 16, 0, tzinfo=dt_timezone.utc), 2, [date(2024, 2, 29), date(2024, 3, 29)]),
        ]
        for charged_at, remaining, expected in cases:
            with self.subTest(charged_at=charged_at, remaining=remaining):
                anchor, cancel_at = CheckoutOrchestrator.schedule_dates(charged_at, remaining)
                self.assertEqual(billing_dates(anchor, cancel_at), expected)

    def test_local_time_is_kept_across_dst(self):
        anchor, cancel_at = CheckoutOrchestrator.schedule_dates(
            datetime(2025, 10, 31, 15, 0, tzinfo=dt_timezone.utc), 2
        )

        self.assertEqual(anchor.astimezone(NEW_YORK).hour, 11)
        self.assertEqual(cancel_at.astimezone(NEW_YORK).hour, 11)


class ScheduleRegistrationRepeatTests(SimpleTestCase):
    def setUp(self):
        self.gateway = make_gateway()
        self.notifier = mock.Mock()
        self.intent = {
            "id": "pi_1",
            "status": "succeeded",
            "customer": "cus_1",
            "payment_method": "pm_card_visa",
            # 2025-01-31 11:00 in New York
            "created": int(datetime(2025, 1, 31, 16, 0, tzinfo=dt_timezone.utc).timestamp()),
            "metadata": plan_metadata(make_request(installments=3)),
        }
        self.gateway.retrieve_payment_intent.return_value = self.intent

    def orchestrator(self, now):
        return CheckoutOrchestrator(self.gateway, self.notifier, clock=lambda: now)

    def test_anchor_comes_from_the_charge_not_the_clock(self):
        self.orchestrator(NOW).register_schedule("pi_1")

        kwargs = self.gateway.create_installment_subscription.call_args.kwargs
        self.assertEqual(kwargs["anchor"].astimezone(NEW_YORK).date(), date(2025, 2, 28))
        self.assertEqual(kwargs["cancel_at"].astimezone(NEW_YORK).date(), date(2025, 4, 28))

    def test_run_anchors_on_the_intent_creation_time(self):
        self.gateway.create_payment_intent.return_value = dict(self.intent, client_secret="s")

        result = self.orchestrator(NOW).run(make_request(installments=3))

        self.assertEqual(result.next_payment_date, "2025-02-28")

    def test_registered_subscription_is_tagged_on_the_intent(self):
        self.orchestrator(NOW).register_schedule("pi_1")

        self.gateway.tag_payment_intent.assert_called_once_with(
            "pi_1", {CheckoutOrchestrator.SCHEDULE_KEY: "sub_1"}
        )

    def test_second_call_returns_the_existing_schedule(self):
        first = self.orchestrator(NOW).register_schedule("pi_1")
        self.intent["metadata"] = dict(self.intent["metadata"], installment_subscription="sub_1")

        second = self.orchestrator(NOW + timedelta(minutes=5)).register_schedule("pi_1")

        self.assertEqual(self.gateway.create_installment_subscription.call_count, 1)
        self.assertEqual(second.subscription_id, "sub_1")
        self.assertEqual(second.next_payment_date, first.next_payment_date)
        self.assertIn(CheckoutState.SCHEDULE_REGISTERED, second.history)
        self.assertFalse(second.schedule_failed)
        self.notifier.send.assert_not_called()

    def test_untagged_subscription_is_found_by_payment_intent(self):
        self.gateway.find_installment_subscription.return_value = {"id": "sub_9"}

        result = self.orchestrator(NOW).register_schedule("pi_1")

        self.gateway.find_installment_subscription.assert_called_once_with("cus_1", "pi_1")
        self.gateway.create_installment_subscription.assert_not_called()
        self.assertEqual(result.subscription_id, "sub_9")
        self.assertEqual(result.state, CheckoutState.COMPLETE)

    def test_retried_create_sends_identical_parameters(self):
        self.orchestrator(NOW).register_schedule("pi_1")
        self.orchestrator(NOW + timedelta(minutes=5)).register_schedule("pi_1")

        first, second = self.gateway.create_installment_subscription.call_args_list
        self.assertEqual(first.kwargs, second.kwargs)

    def test_tagging_failure_keeps_the_schedule(self):
        self.gateway.tag_payment_intent.side_effect = GatewayError("timeout")

        with self.assertLogs("core.stripe_integration.checkout", level="WARNING"):
            result = self.orchestrator(NOW).register_schedule("pi_1")

        self.assertEqual(result.subscription_id, "sub_1")
        self.assertFalse(result.schedule_failed)
        self.notifier.send.assert_not_called()

    def test_lookup_failure_does_not_create_a_subscription(self):
        self.gateway.find_installment_subscription.side_effect = GatewayError("down", retryable=True)

        with self.assertRaises(GatewayError):
            self.orchestrator(NOW).register_schedule("pi_1")

        self.gateway.create_installment_subscription.assert_not_called()

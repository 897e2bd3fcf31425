"""
Stripe Integration Package
==========================

Everything that talks to Stripe or to the Make.com automation lives here;
pricing and calendar rules stay in the `courses` app.

Scope
-----
- Checkout orchestration: payer upsert, first-installment charge and the
  monthly subscription for the remaining installments.
- Client-side confirmation flow (PaymentIntent + schedule registration)
  for cards that need 3-D Secure.
- Stripe-hosted Checkout Sessions and their success-page details.
- Signed webhook receiver forwarding purchase events to Make.com.

Structure
---------
- __init__.py     → this file
- apps.py         → App configuration (`StripeIntegrationConfig`)
- gateway.py      → Stripe SDK adapter (`StripeGateway`)
- checkout.py     → Checkout state machine (`CheckoutOrchestrator`)
- notifications.py → Make.com webhook client (`AutomationNotifier`)
- webhooks.py     → Stripe event dispatch
- serializers.py  → Request validation
- views.py        → API endpoints
- urls.py         → Routes under /api/payments/

Author: Beacons of Change Development Team
Date: 2025-03-04
"""

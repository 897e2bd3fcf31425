"""
Courses Package - Reiki Expansion & Reactivation
=================================================

Course catalog and the date-driven sales logic for the five-part course:

- catalog.py        → static course, bundle and add-on configuration
- calendar.py       → calendar rules (before / during / after, class status)
- payment_plans.py  → installment split and schedule
- offers.py         → which offer and price to show for a given day
- views.py          → API endpoints consumed by the marketing front-end

Author: Beacons of Change Development Team
"""

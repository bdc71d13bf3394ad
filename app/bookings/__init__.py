"""
Bookings app: the marketplace side a payment is attached to.

A payment belongs either to a trip (a traveler's request) plus the guide
offer that was accepted for it, or to a guide product plus the traveler's
product offer. The payment flow drives these statuses; the CRUD pages that
create them live elsewhere.
"""

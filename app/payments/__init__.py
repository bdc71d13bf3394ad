"""
Payments app for Toss Payments integration.

This app handles:
- The payment ledger, kept in step with the gateway
- Cancellation requests and the date-tiered refund policy
- Gateway webhook handling and periodic reconciliation
- Guide settlements

Related apps:
    - bookings: Trip, offer and product-offer statuses follow the payment

Usage:
    from payments.services import CancellationService

    # Traveler or guide asks to cancel
    result = CancellationService.create_cancellation_request(
        payment_id, user, requester_type="traveler", reason_type="schedule_change"
    )

    # Admin decides an exception case
    CancellationService.process_cancellation(request_id, admin, decision="approved")
"""

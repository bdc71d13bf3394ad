"""
URL configuration for the payments app.

Routes:
    - POST /cancellations/calculate/ - Refund preview
    - POST /cancellations/ - Create cancellation request
    - GET /cancellations/pending/ - Pending requests (admin)
    - POST /cancellations/<id>/process/ - Approve/reject (admin)
    - POST /confirm/ - Checkout confirmation
    - POST /webhooks/toss/ - Gateway webhook endpoint

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.
"""

from django.urls import path

from payments import views
from payments.webhooks.views import toss_webhook

app_name = "payments"

urlpatterns = [
    # Cancellations
    path(
        "cancellations/calculate/",
        views.RefundPreviewView.as_view(),
        name="cancellation_calculate",
    ),
    path(
        "cancellations/",
        views.CancellationRequestCreateView.as_view(),
        name="cancellation_create",
    ),
    path(
        "cancellations/pending/",
        views.PendingCancellationListView.as_view(),
        name="cancellation_pending",
    ),
    path(
        "cancellations/<uuid:request_id>/process/",
        views.ProcessCancellationView.as_view(),
        name="cancellation_process",
    ),
    # Checkout
    path("confirm/", views.ConfirmPaymentView.as_view(), name="payment_confirm"),
    # Webhook endpoints
    path("webhooks/toss/", toss_webhook, name="toss_webhook"),
]

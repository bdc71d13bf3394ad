"""
Celery configuration for the payments backend.

Celery runs the work that must not block a web request:
- Periodic reconciliation of failed or stuck webhook events
- Retries of approved cancellations whose gateway refund did not go through
- On-demand reconciliation of a single payment (admin action)

Redis is both the message broker and result backend. Periodic schedules live
in the database (django-celery-beat) and are created by data migrations.

Usage:
    from payments.tasks import reconcile_payment

    reconcile_payment.delay(str(payment.id))
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Looks for a tasks.py module in each installed app
app.autodiscover_tasks()

"""
Add celery-beat schedules for the payment reconciliation sweeps.

Both tasks run every 15 minutes:
- reconcile_failed_webhooks re-checks failed and stuck webhook events
  against the gateway
- retry_unprocessed_cancellations retries approved cancellations whose
  gateway refund did not go through
"""

from django.db import migrations

PERIODIC_TASKS = [
    {
        "name": "Reconcile Failed Webhook Events",
        "task": "payments.tasks.reconcile_failed_webhooks",
        "description": (
            "Reads the live payment state from the gateway for webhook events "
            "that failed or were never processed, and applies it."
        ),
    },
    {
        "name": "Retry Unprocessed Cancellations",
        "task": "payments.tasks.retry_unprocessed_cancellations",
        "description": (
            "Retries gateway refunds for approved cancellation requests that "
            "are not yet resolved."
        ),
    },
]


def create_periodic_tasks(apps, schema_editor):
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    schedule, _ = IntervalSchedule.objects.get_or_create(
        every=15,
        period="minutes",
    )

    for entry in PERIODIC_TASKS:
        PeriodicTask.objects.get_or_create(
            name=entry["name"],
            defaults={
                "task": entry["task"],
                "interval": schedule,
                "enabled": True,
                "description": entry["description"],
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[entry["name"] for entry in PERIODIC_TASKS],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]

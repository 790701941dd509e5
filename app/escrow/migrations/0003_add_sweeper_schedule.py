"""
Add celery-beat schedule for the expired escrow sweep.

This migration creates the periodic task for sweep_expired_escrows, which
runs every ESCROW_SWEEP_INTERVAL_MINUTES (default 5) to refund escrows
whose auto-release deadline has passed.
"""

from django.conf import settings
from django.db import migrations

TASK_NAME = "Sweep Expired Escrows"


def create_periodic_task(apps, schema_editor):
    """Create the periodic task for the expired escrow sweep."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    schedule, _ = IntervalSchedule.objects.get_or_create(
        every=getattr(settings, "ESCROW_SWEEP_INTERVAL_MINUTES", 5),
        period="minutes",
    )

    PeriodicTask.objects.get_or_create(
        name=TASK_NAME,
        defaults={
            "task": "escrow.workers.sweeper.sweep_expired_escrows",
            "interval": schedule,
            "enabled": True,
            "description": (
                "Refunds funded or completed escrows whose auto-release "
                "deadline has passed, net of commission."
            ),
        },
    )


def remove_periodic_task(apps, schema_editor):
    """Remove the periodic task on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name=TASK_NAME).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("escrow", "0002_seed_escrow_stats"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_task, remove_periodic_task),
    ]

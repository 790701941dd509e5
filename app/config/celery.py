"""
Celery configuration for the escrow service.

Celery runs the background side of the escrow lifecycle:
- The expired escrow sweep, scheduled by celery-beat (DatabaseScheduler)
- One extra sweep each time a worker comes up (see escrow.workers.sweeper)

This configuration uses Redis as both the message broker and result backend.
Tasks are auto-discovered from all installed Django apps.

Usage:
    # Start a worker and the beat scheduler:
    celery -A config worker -l info
    celery -A config beat -l info

    # Trigger a sweep by hand:
    from escrow.tasks import sweep_expired_escrows
    sweep_expired_escrows.delay()

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings should be prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Celery will look for a tasks.py module in each installed app
app.autodiscover_tasks()

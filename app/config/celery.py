"""
Celery configuration for the chat service.

Celery runs the periodic housekeeping of the chat core:
- Sweeping expired typing indicators
- Pruning read notifications past the retention window

This configuration uses Redis as both the message broker and result backend.
Tasks are auto-discovered from all installed Django apps; the beat schedule
lives in settings.CELERY_BEAT_SCHEDULE.

Usage:
    # Define a task in any app's tasks.py:
    from celery import shared_task

    @shared_task
    def prune_read_notifications(days=None):
        ...

    # Call the task asynchronously:
    prune_read_notifications.delay(days=30)

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Celery will look for a tasks.py module in each installed app
app.autodiscover_tasks()

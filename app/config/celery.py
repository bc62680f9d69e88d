"""
Celery configuration for the Django application.

The worker runs maintenance that no request or connection triggers:
- prune_stale_presence (chat/tasks.py), scheduled by Celery beat through
  CELERY_BEAT_SCHEDULE, removes presence handles left behind by gateway
  processes that died without running their disconnect path

Redis is both the message broker and the result backend. Tasks are
auto-discovered from all installed Django apps.

Usage:
    # Worker and scheduler
    celery -A config worker -l info
    celery -A config beat -l info

    # Run once by hand
    from chat.tasks import prune_stale_presence
    prune_stale_presence.delay()
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()

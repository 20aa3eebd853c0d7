"""Celery application for background ride tasks."""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "ridehail.settings.base")

app = Celery("ridehail")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()

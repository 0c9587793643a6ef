"""
Celery application for background optimization work.

Runs are fire-and-forget from the trigger endpoint; the worker executes them
one task per run. Beat drives the auto-revert monitor and scheduled runs.
"""
import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'portal_backend.settings')

app = Celery('portal_backend')

# All CELERY_* keys in Django settings configure the app
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()

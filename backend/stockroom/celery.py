"""
Celery application for the stockroom project.

Tasks are discovered from installed apps (stock.tasks). Settings are read
from Django settings with the CELERY_ prefix.
"""

import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'stockroom.settings')

app = Celery('stockroom')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# Every CELERY_* Django setting maps onto the matching Celery option
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()

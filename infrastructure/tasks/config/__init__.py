from .beat import CELERY_BEAT_SCHEDULE
from .celery import REFUND_TASK_MODULES, celery_app

__all__ = ["CELERY_BEAT_SCHEDULE", "REFUND_TASK_MODULES", "celery_app"]

"""Refund worker package: the Celery app and the dispatcher the API enqueues through."""
from .config.celery import celery_app
from .utils.dispatcher import TaskDispatcher

__all__ = ["TaskDispatcher", "celery_app"]

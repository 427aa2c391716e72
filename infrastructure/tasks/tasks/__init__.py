"""Task modules grouped by domain.

Importing this package registers the Celery tasks.
"""
from . import refunds  # noqa: F401 to register tasks

__all__ = ["refunds"]

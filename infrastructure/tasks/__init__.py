"""Celery task infrastructure: app, beat schedule and dispatcher facade."""
from .config.celery import celery_app
from .utils.dispatcher import TaskDispatcher

__all__ = ["celery_app", "TaskDispatcher"]

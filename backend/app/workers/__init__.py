"""Celery worker and tasks."""

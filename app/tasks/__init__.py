"""
Celery tasks package.

Tasks are organized by domain:
- email_tasks: One-time code delivery via SES
- cleanup_tasks: Periodic purge of expired codes and sessions
"""

from app.tasks import email_tasks, cleanup_tasks

__all__ = ["email_tasks", "cleanup_tasks"]

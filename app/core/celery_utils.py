"""
Celery utility functions for reliable task queueing.

Request handlers queue OTP emails through queue_task_safely so a broker
outage degrades to a logged failure instead of a failed login request.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Optional, Tuple
from celery import Task
from kombu import Connection

from app.core.config import settings

logger = logging.getLogger(__name__)

QUEUE_TIMEOUT_SECONDS = 5

# Thread pool for queueing tasks from async contexts
# This avoids conflicts with FastAPI's uvicorn async event loop
_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="celery_queue")


def _queue_task_sync(task: Task, args: tuple, kwargs: dict, expires: Optional[int] = None) -> Tuple[bool, str, str]:
    """
    Queue a task synchronously over a fresh broker connection.

    Returns:
        Tuple[bool, str, str]: (success, task_id, error_message)
    """
    try:
        # Fresh Kombu connection; the app's pooled connection can go stale
        with Connection(settings.REDIS_URL) as conn:
            result = task.apply_async(
                args=args,
                kwargs=kwargs,
                connection=conn,
                expires=expires,
                retry=True,
                retry_policy={
                    'max_retries': 3,
                    'interval_start': 0,
                    'interval_step': 0.2,
                    'interval_max': 0.2,
                }
            )
            return (True, result.id, "")
    except Exception as e:
        return (False, "", str(e))


def queue_task_safely(task: Task, *args, expires: Optional[int] = None, **kwargs) -> bool:
    """
    Safely queue a Celery task with connection retry logic.

    Works from both sync and async FastAPI endpoints by running the actual
    queueing in a thread pool.

    Args:
        task: The Celery task to queue
        *args: Positional arguments for the task
        expires: Seconds after which an unconsumed message is discarded
        **kwargs: Keyword arguments for the task

    Returns:
        bool: True if task was queued successfully, False otherwise

    Example:
        from app.tasks.email_tasks import send_otp_email_task
        success = queue_task_safely(
            send_otp_email_task,
            to_email='user@example.com',
            otp_code='482913',
            expiry_minutes=10
        )
    """
    future = _executor.submit(_queue_task_sync, task, args, kwargs, expires)
    try:
        success, task_id, error = future.result(timeout=QUEUE_TIMEOUT_SECONDS)
    except FutureTimeoutError:
        logger.error(f"Timed out queueing task {task.name} after {QUEUE_TIMEOUT_SECONDS}s")
        return False

    if success:
        logger.info(f"Task {task.name} queued successfully: {task_id}")
        return True
    else:
        logger.error(f"Failed to queue task {task.name}: {error}")
        return False

"""
Fire-and-forget execution for work that must never block or fail a
security decision (emails, suspicious-activity detection).

Jobs run on a small shared thread pool inside a fresh app context. With
BACKGROUND_TASKS_ASYNC disabled they run inline, still with every error
logged and dropped.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor

from flask import current_app

logger = logging.getLogger(__name__)

_executor = None
_executor_lock = threading.Lock()


def _get_executor(max_workers: int) -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="payconsole-bg")
        return _executor


def _run_quietly(name: str, fn, args, kwargs):
    try:
        fn(*args, **kwargs)
    except Exception:
        logger.exception("Background job %s failed", name)


def _run_in_context(app, name: str, fn, args, kwargs):
    with app.app_context():
        try:
            _run_quietly(name, fn, args, kwargs)
        finally:
            # background jobs get their own scoped session; release it
            from models import db
            db.session.remove()


def dispatch(fn, *args, **kwargs):
    """
    Schedule fn(*args, **kwargs). Returns the Future when queued, None when run inline.
    Never raises.
    """
    name = getattr(fn, "__name__", repr(fn))
    try:
        app = current_app._get_current_object()
        if not app.config.get("BACKGROUND_TASKS_ASYNC", True):
            _run_quietly(name, fn, args, kwargs)
            return None
        executor = _get_executor(app.config.get("BACKGROUND_MAX_WORKERS", 4))
        return executor.submit(_run_in_context, app, name, fn, args, kwargs)
    except Exception:
        logger.exception("Could not dispatch background job %s", name)
        return None


def shutdown(wait: bool = True):
    global _executor
    with _executor_lock:
        if _executor is not None:
            _executor.shutdown(wait=wait)
            _executor = None

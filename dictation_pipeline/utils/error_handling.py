"""
Error handling decorators for the host seams: Qt slots, hotkey callbacks
and background threads.

Pipeline errors (``DictationError``) are expected failures and are logged
in one line. Anything else is logged with its traceback.
"""

import functools
import logging

from dictation_pipeline.exceptions import DictationError

logger = logging.getLogger(__name__)


def describe_error(error) -> str:
    """One-line, user-facing description of ``error``."""
    if isinstance(error, DictationError):
        return str(error)
    return f"Unexpected {type(error).__name__}: {error}"


def _log_error(func, error):
    if isinstance(error, DictationError):
        logger.warning(f"{func.__qualname__}: {error}")
    else:
        logger.exception(f"Unexpected error in {func.__qualname__}: {error}")


def log_exceptions(func):
    """Log any exception raised by ``func`` and re-raise it."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            _log_error(func, e)
            raise
    return wrapper


def safe_execution(default_value=None, log_error=True, notify: str = None):
    """
    Decorator for callbacks that must never propagate an exception,
    such as hotkey handlers and Qt slots.

    Args:
        default_value: Value to return if an exception occurs
        log_error: Whether to log exceptions
        notify: Name of a method on the decorated method's instance, called
            with ``describe_error(e)`` so the user sees what went wrong

    Returns:
        Decorator function
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if log_error:
                    _log_error(func, e)
                handler = getattr(args[0], notify, None) if notify and args else None
                if handler is not None:
                    try:
                        handler(describe_error(e))
                    except Exception as notify_error:
                        logger.error(f"Error notification failed: {notify_error}")
                return default_value
        return wrapper
    return decorator

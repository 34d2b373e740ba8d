"""
Simple in-memory rate limiting for admin endpoints.

Counters live in this process only. A horizontally scaled deployment needs a
shared store for the limits to hold across instances.
"""
from functools import wraps
from fastapi import HTTPException, status, Request
from typing import Callable
from datetime import datetime, timedelta
from collections import defaultdict
from sqlalchemy.exc import SQLAlchemyError
import logging
import threading

logger = logging.getLogger(__name__)

# In-memory store for rate limiting
# Format: {identifier: [timestamp, ...]}
_rate_limit_store = defaultdict(list)
_rate_limit_lock = threading.Lock()

# Cleanup old entries every 5 minutes
_last_cleanup = datetime.utcnow()
_cleanup_interval = timedelta(minutes=5)


def _cleanup_old_entries():
    """Remove entries older than the time window"""
    global _last_cleanup

    now = datetime.utcnow()
    if now - _last_cleanup < _cleanup_interval:
        return

    with _rate_limit_lock:
        _last_cleanup = now
        cutoff_time = now - timedelta(hours=1)  # Keep last hour of data

        for key in list(_rate_limit_store.keys()):
            _rate_limit_store[key] = [ts for ts in _rate_limit_store[key] if ts > cutoff_time]
            if not _rate_limit_store[key]:
                del _rate_limit_store[key]


def reset_rate_limits():
    with _rate_limit_lock:
        _rate_limit_store.clear()


def _log_rate_limit_exceeded(db, admin, endpoint: str, max_requests: int, window_seconds: int, recent: int):
    from app.core.audit import log_activity

    try:
        log_activity(
            db,
            actor=admin.email,
            action="rate_limit_exceeded",
            entity_type="api_endpoint",
            entity_id=endpoint,
            details={
                "max_requests": max_requests,
                "window_seconds": window_seconds,
                "recent_requests": recent,
            },
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"[RATE_LIMIT] Failed to log rate limit event for {admin.email}: {e}")


def rate_limit(max_requests: int = 30, window_seconds: int = 60, identifier_func: Callable = None):
    """
    Rate limiting decorator for FastAPI endpoints.

    Args:
        max_requests: Maximum number of requests allowed
        window_seconds: Time window in seconds
        identifier_func: Function to extract identifier from request (default: uses admin email)

    Usage:
        @router.post("/endpoint")
        @rate_limit(max_requests=5, window_seconds=300)
        def my_endpoint(admin: AdminIdentity = Depends(get_current_admin)):
            ...
    """
    def decorator(func: Callable):
        @wraps(func)
        def wrapper(*args, **kwargs):
            from app.api.deps import AdminIdentity

            request = None
            admin = None

            for value in list(args) + list(kwargs.values()):
                if isinstance(value, Request):
                    request = value
                elif isinstance(value, AdminIdentity):
                    admin = value

            if identifier_func:
                identifier = identifier_func(request, admin)
            elif admin:
                identifier = f"admin_{admin.email}"
            elif request:
                identifier = request.client.host if request.client else "unknown"
            else:
                identifier = "unknown"
            identifier = f"{func.__name__}:{identifier}"

            _cleanup_old_entries()

            now = datetime.utcnow()
            window_start = now - timedelta(seconds=window_seconds)

            with _rate_limit_lock:
                recent_requests = [ts for ts in _rate_limit_store[identifier] if ts > window_start]
                exceeded = len(recent_requests) >= max_requests
                if not exceeded:
                    _rate_limit_store[identifier].append(now)

            if exceeded:
                db = kwargs.get("db")
                if db is not None and admin is not None:
                    _log_rate_limit_exceeded(db, admin, func.__name__, max_requests, window_seconds, len(recent_requests))
                raise HTTPException(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    detail=f"Rate limit exceeded: {max_requests} requests per {window_seconds} seconds. Please try again later."
                )

            return func(*args, **kwargs)

        return wrapper
    return decorator

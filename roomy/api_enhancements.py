"""
API Enhancements Module
========================

Cross-cutting pieces of the HTTP surface:
- Per-client rate limiting for chat turns (token bucket)
- Audit error log with truncated stack traces
- Request logging middleware with request ids and timing headers
"""

import time
import uuid
import logging
import hashlib
import traceback
from typing import Dict, Optional, Any
from collections import defaultdict
from datetime import datetime
from dataclasses import dataclass
from threading import Lock

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from roomy.config import get_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# =============================================================================
# RATE LIMITING
# =============================================================================

@dataclass
class RateLimitBucket:
    """Token bucket for rate limiting"""
    tokens: float
    last_update: float
    max_tokens: int
    refill_rate: float  # tokens per second


class RateLimiter:
    """
    Token bucket rate limiter with per-key limits.

    Usage:
        limiter = RateLimiter(requests_per_minute=10)
        if not limiter.allow("user_123"):
            raise RateLimitedError()
    """

    def __init__(
        self,
        requests_per_minute: int = 10,
        burst_size: Optional[int] = None,
        cleanup_interval: int = 300,  # Clean old buckets every 5 min
        clock=time.time
    ):
        self.requests_per_minute = requests_per_minute
        self.burst_size = burst_size if burst_size is not None else requests_per_minute
        self.refill_rate = requests_per_minute / 60.0
        self.buckets: Dict[str, RateLimitBucket] = {}
        self.lock = Lock()
        self.clock = clock
        self.last_cleanup = clock()
        self.cleanup_interval = cleanup_interval

    def _cleanup_old_buckets(self, now: float) -> None:
        """Remove buckets that haven't been used in a while (call with lock held)"""
        if now - self.last_cleanup < self.cleanup_interval:
            return
        stale_keys = [
            key for key, bucket in self.buckets.items()
            if now - bucket.last_update > 600
        ]
        for key in stale_keys:
            del self.buckets[key]
        self.last_cleanup = now
        if stale_keys:
            logger.info(f"Rate limiter cleanup: removed {len(stale_keys)} stale buckets")

    def allow(self, key: str) -> bool:
        """
        Check if request is allowed for given key.

        Args:
            key: Client identifier (user id or IP)

        Returns:
            True if request is allowed, False if rate limited
        """
        now = self.clock()

        with self.lock:
            self._cleanup_old_buckets(now)

            if key not in self.buckets:
                self.buckets[key] = RateLimitBucket(
                    tokens=self.burst_size,
                    last_update=now,
                    max_tokens=self.burst_size,
                    refill_rate=self.refill_rate
                )

            bucket = self.buckets[key]

            # Refill tokens based on time elapsed
            elapsed = now - bucket.last_update
            bucket.tokens = min(
                bucket.max_tokens,
                bucket.tokens + (elapsed * bucket.refill_rate)
            )
            bucket.last_update = now

            if bucket.tokens >= 1:
                bucket.tokens -= 1
                return True

            return False

    def get_wait_time(self, key: str) -> float:
        """Get seconds until next request is allowed"""
        with self.lock:
            bucket = self.buckets.get(key)
            if bucket is None or bucket.tokens >= 1 or not bucket.refill_rate:
                return 0.0
            return (1 - bucket.tokens) / bucket.refill_rate

    def get_stats(self) -> Dict[str, Any]:
        """Get rate limiter statistics"""
        with self.lock:
            return {
                "active_buckets": len(self.buckets),
                "requests_per_minute": self.requests_per_minute,
                "burst_size": self.burst_size
            }


# Global rate limiter instance
_chat_rate_limiter: Optional[RateLimiter] = None


def get_chat_rate_limiter() -> RateLimiter:
    """Get the global chat rate limiter (CHAT_RATE_LIMIT_RPM)"""
    global _chat_rate_limiter
    if _chat_rate_limiter is None:
        _chat_rate_limiter = RateLimiter(requests_per_minute=get_config().chat_rate_limit_rpm)
    return _chat_rate_limiter


# =============================================================================
# ERROR LOGGING
# =============================================================================

MAX_TRACEBACK_CHARS = 500


class ErrorLogger:
    """
    Audit log for unexpected errors.

    Entries keep a truncated traceback and never leave the process; callers
    only ever see the generic message plus the error id.
    """

    def __init__(self, max_recent: int = 100):
        self.error_counts: Dict[str, int] = defaultdict(int)
        self.recent_errors: list = []
        self.max_recent = max_recent
        self.lock = Lock()

    def log_error(
        self,
        error: Exception,
        context: Optional[Dict[str, Any]] = None,
        request: Optional[Request] = None,
        source: str = "roomy-api"
    ) -> str:
        """
        Log an error with context.

        Returns:
            Error ID for tracking
        """
        error_id = str(uuid.uuid4())[:8]
        error_type = type(error).__name__
        stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))

        error_entry = {
            "id": error_id,
            "source": source,
            "severity": "error",
            "type": error_type,
            "message": str(error),
            "timestamp": datetime.now().isoformat(),
            "context": context or {},
            "traceback": stack[:MAX_TRACEBACK_CHARS]
        }

        if request is not None:
            error_entry["request"] = {
                "method": request.method,
                "path": request.url.path,
                "client": request.client.host if request.client else None
            }

        with self.lock:
            self.error_counts[error_type] += 1
            # Keep bounded history
            if len(self.recent_errors) >= self.max_recent:
                self.recent_errors.pop(0)
            self.recent_errors.append(error_entry)

        logger.error(
            f"[{error_id}] {source} {error_type}: {error}",
            extra={"error_id": error_id, "context": context}
        )

        return error_id

    def get_stats(self) -> Dict[str, Any]:
        """Get error statistics"""
        with self.lock:
            return {
                "total_errors": sum(self.error_counts.values()),
                "error_counts_by_type": dict(self.error_counts),
                "recent_error_count": len(self.recent_errors)
            }

    def get_recent_errors(self, limit: int = 20) -> list:
        """Get recent errors"""
        with self.lock:
            return self.recent_errors[-limit:]


# Global error logger
_error_logger: Optional[ErrorLogger] = None


def get_error_logger() -> ErrorLogger:
    """Get global error logger"""
    global _error_logger
    if _error_logger is None:
        _error_logger = ErrorLogger()
    return _error_logger


# =============================================================================
# REQUEST LOGGING MIDDLEWARE
# =============================================================================

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log all requests with timing"""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        request_id = hashlib.md5(
            f"{time.time()}{request.url}".encode()
        ).hexdigest()[:8]

        logger.info(f"[{request_id}] {request.method} {request.url.path} - Started")

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = int((time.time() - start_time) * 1000)
            error_id = get_error_logger().log_error(e, request=request)
            logger.error(
                f"[{request_id}] {request.method} {request.url.path} - "
                f"Error [{error_id}] ({duration_ms}ms)"
            )
            raise

        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"[{request_id}] {request.method} {request.url.path} - "
            f"{response.status_code} ({duration_ms}ms)"
        )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = str(duration_ms)
        return response


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_client_id(request: Request) -> str:
    """Extract client identifier from request (proxy headers first)"""
    forwarded = request.headers.get("x-real-ip") or request.headers.get("cf-connecting-ip")
    if forwarded:
        return f"ip:{forwarded}"
    client_ip = request.client.host if request.client else "anonymous"
    return f"ip:{client_ip}"


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    # Rate limiting
    "RateLimiter",
    "get_chat_rate_limiter",

    # Error logging
    "ErrorLogger",
    "get_error_logger",

    # Middleware
    "RequestLoggingMiddleware",

    # Helpers
    "get_client_id",
]

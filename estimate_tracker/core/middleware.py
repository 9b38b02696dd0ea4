"""
Custom middleware and request throttling for the FastAPI application.
"""
import time
import logging
from typing import Callable, Dict, List, Optional, Sequence
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp, Receive, Scope, Send
import uuid

# Set up logging
logger = logging.getLogger(__name__)

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware for logging request and response information.
    """
    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(self, request: Request, call_next):
        """
        Process the request and log information.

        Args:
            request: The incoming request
            call_next: The next middleware or endpoint handler

        Returns:
            Response: The response from the next handler
        """
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        # Log request details
        client_host = request.client.host if request.client else "unknown"
        logger.info(f"Request {request_id} started: {request.method} {request.url.path} from {client_host}")

        # Record request start time
        start_time = time.time()

        # Process the request
        try:
            response = await call_next(request)

            # Calculate processing time
            process_time = time.time() - start_time

            # Add custom headers
            response.headers["X-Process-Time"] = str(process_time)
            response.headers["X-Request-ID"] = request_id

            # Log response details
            logger.info(
                f"Request {request_id} completed: {request.method} {request.url.path} "
                f"- Status: {response.status_code} - Duration: {process_time:.4f}s"
            )

            return response
        except Exception as e:
            # Log exception details
            process_time = time.time() - start_time
            logger.error(
                f"Request {request_id} failed: {request.method} {request.url.path} "
                f"- Error: {str(e)} - Duration: {process_time:.4f}s"
            )
            raise


class DashboardCORSMiddleware(CORSMiddleware):
    """
    CORS middleware for the dashboard routes.

    Paths listed in ``exempt_paths`` bypass it entirely; they answer their own
    preflight requests with permissive headers.
    """
    def __init__(self, app: ASGIApp, exempt_paths: Sequence[str] = (), **kwargs):
        super().__init__(app, **kwargs)
        self.exempt_paths = tuple(exempt_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["path"] in self.exempt_paths:
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


class SlidingWindowRateLimiter:
    """
    In-memory sliding-window rate limiter keyed by caller identity.

    State lives in the process only: counters reset on restart and are not
    shared between instances, so the effective limit under horizontal scaling
    is per instance.
    """
    def __init__(
        self,
        limit: int = 10,
        window_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock
        self.requests: Dict[str, List[float]] = {}  # identity -> [timestamp1, timestamp2, ...]
        self.cleanup_interval = window_seconds
        self.last_cleanup: Optional[float] = None

    def hit(self, identifier: str, now: Optional[float] = None) -> bool:
        """
        Record a request for ``identifier`` if it fits in the current window.

        Args:
            identifier: Caller identity (usually the client address)
            now: Optional timestamp, defaults to the limiter clock

        Returns:
            bool: True if the request is accepted, False if the limit is exceeded
        """
        if now is None:
            now = self.clock()

        self.cleanup_expired(now)

        # Clean up old requests
        recent = [
            timestamp for timestamp in self.requests.get(identifier, [])
            if now - timestamp < self.window_seconds
        ]

        # Check rate limit
        if len(recent) >= self.limit:
            self.requests[identifier] = recent
            logger.warning(f"Rate limit exceeded for: {identifier}")
            return False

        # Add current request
        recent.append(now)
        self.requests[identifier] = recent
        return True

    def cleanup_expired(self, now: float) -> None:
        """Drop identities whose requests have all left the window, at most once per interval."""
        if self.last_cleanup is not None and now - self.last_cleanup < self.cleanup_interval:
            return

        expired = [
            identifier for identifier, timestamps in self.requests.items()
            if not timestamps or now - timestamps[-1] >= self.window_seconds
        ]
        for identifier in expired:
            del self.requests[identifier]

        if expired:
            logger.debug(f"🧹 Cleaned up {len(expired)} expired rate limit entries")

        self.last_cleanup = now

    def reset(self) -> None:
        """Forget every recorded request."""
        self.requests.clear()


def setup_middlewares(app):
    """
    Set up all custom middlewares for the application.

    Args:
        app: FastAPI application instance
    """
    app.add_middleware(RequestLoggingMiddleware)

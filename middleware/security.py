from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from collections import defaultdict
from config import settings
import threading
import time


# In-memory per-process rate limiter
class RateLimiter:
    def __init__(self, cleanup_interval: int = 60):
        self.requests = defaultdict(list)
        self.cleanup_interval = cleanup_interval
        self.last_cleanup = time.time()
        self._lock = threading.Lock()

    def is_allowed(self, key: str, max_requests: int = 100, window_seconds: int = 60) -> bool:
        """
        Check if request is allowed based on rate limit
        Args:
            key: Unique identifier (IP address, user ID, etc.)
            max_requests: Maximum requests allowed in the time window
            window_seconds: Time window in seconds
        """
        current_time = time.time()

        with self._lock:
            if current_time - self.last_cleanup > self.cleanup_interval:
                self.cleanup(current_time)
                self.last_cleanup = current_time

            cutoff_time = current_time - window_seconds
            self.requests[key] = [req_time for req_time in self.requests[key] if req_time > cutoff_time]

            if len(self.requests[key]) >= max_requests:
                return False

            self.requests[key].append(current_time)
            return True

    def cleanup(self, current_time: float):
        """Remove entries older than five minutes"""
        cutoff_time = current_time - 300

        for key in list(self.requests.keys()):
            self.requests[key] = [req_time for req_time in self.requests[key] if req_time > cutoff_time]
            if not self.requests[key]:
                del self.requests[key]


class SecurityMiddleware(BaseHTTPMiddleware):
    """
    Per-IP rate limiting, request size ceiling and security headers.
    The size ceiling is derived from the upload limits so a full receipt upload
    (main photo plus all additional photos) still fits.
    """

    def __init__(self, app, rate_limiter: RateLimiter = None,
                 max_requests: int = settings.rate_limit_requests,
                 window_seconds: int = settings.rate_limit_window_seconds,
                 max_body_bytes: int = settings.max_request_bytes):
        super().__init__(app)
        self.rate_limiter = rate_limiter or RateLimiter()
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.max_body_bytes = max_body_bytes

    async def dispatch(self, request: Request, call_next):
        client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
        if not client_ip and request.client:
            client_ip = request.client.host
        if not client_ip:
            client_ip = "unknown"

        if not self.rate_limiter.is_allowed(client_ip, self.max_requests, self.window_seconds):
            return Response(
                content="Rate limit exceeded. Please try again later.",
                status_code=429,
                headers={"Retry-After": str(self.window_seconds)}
            )

        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self.max_body_bytes:
            return Response(
                content="Request body too large",
                status_code=413
            )

        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=(self)"

        # Swagger UI and ReDoc load their assets from a CDN
        if request.url.path in ["/docs", "/redoc"] or request.url.path.startswith("/openapi"):
            response.headers["Content-Security-Policy"] = (
                "default-src 'self'; "
                "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
                "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
                "img-src 'self' data: https:; "
                "font-src 'self' data: https://cdn.jsdelivr.net; "
                "frame-ancestors 'none';"
            )
        else:
            response.headers["Content-Security-Policy"] = (
                "default-src 'self'; "
                "img-src 'self' data: blob:; "
                "frame-ancestors 'none'; "
                "base-uri 'self';"
            )

        if request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response

"""
Rate limiting middleware for FastAPI
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request
from fastapi.responses import JSONResponse
import logging

logger = logging.getLogger(__name__)

# Per-endpoint limits, per client per minute
RATE_LIMITS = {
    "generate": "10/minute",
    "checkout": "20/minute",
    "download": "30/minute",
    "image_info": "60/minute",
    "webhook": "100/minute",
}


def get_client_ip(request: Request) -> str:
    """
    Resolve the client identifier from proxy headers, falling back to the socket address
    """
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip

    vercel_forwarded_for = request.headers.get("x-vercel-forwarded-for")
    if vercel_forwarded_for:
        return vercel_forwarded_for.split(",")[0].strip()

    return get_remote_address(request) or "unknown"


# Fixed-window counters keyed by client; expired windows are evicted by the storage TTL
limiter = Limiter(
    key_func=get_client_ip,
    storage_uri="memory://",  # Use Redis in production: "redis://localhost:6379"
    strategy="fixed-window"
)


def get_limiter():
    """Get the rate limiter instance"""
    return limiter


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """
    Custom handler for rate limit exceeded errors
    """
    logger.warning(f"Rate limit exceeded for {get_client_ip(request)}: {exc.detail}")
    return JSONResponse(
        status_code=429,
        content={"detail": "Too many requests. Please wait a moment before trying again."},
        headers={"Retry-After": "60", "X-RateLimit-Remaining": "0"}
    )

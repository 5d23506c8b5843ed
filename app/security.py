"""
Request hardening for the NYC visitor guide.

Provides:
- Client IP resolution behind a reverse proxy
- Sliding-window rate limits for sign-in and write-heavy endpoints
- Security headers for a JSON-only API
"""

import time
import threading
import logging
from dataclasses import dataclass
from typing import Optional, Dict, List, Tuple
from collections import defaultdict

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("nycguide.security")


def get_client_ip(request: Request) -> str:
    """Leftmost X-Forwarded-For entry, else the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop
    return request.client.host if request.client else "unknown"


# ─────────────────────────── RATE LIMITING ───────────────────────────

@dataclass(frozen=True)
class RateRule:
    limit: int
    window_seconds: int


# (method, path) -> rule. Paths match exactly.
RATE_RULES: Dict[Tuple[str, str], RateRule] = {
    ("POST", "/auth/magic-link"): RateRule(5, 300),      # sign-in emails
    ("GET", "/auth/verify"): RateRule(20, 60),           # token guessing
    ("POST", "/api/schedule/save"): RateRule(30, 60),    # trip spam
}
MAX_WINDOW_SECONDS = max(r.window_seconds for r in RATE_RULES.values())


# Stale keys are swept after this many recorded hits
PRUNE_EVERY = 500


class SlidingWindowLimiter:
    """In-process request log per key. Single instance deployments only."""

    def __init__(self, prune_every: int = PRUNE_EVERY):
        self._hits: Dict[str, List[float]] = defaultdict(list)
        self._lock = threading.Lock()
        self._prune_every = prune_every
        self._since_prune = 0

    def hit(self, key: str, rule: RateRule, now: float = None) -> Tuple[bool, int]:
        """Record a request if under the limit. Returns (allowed, remaining)."""
        now = time.time() if now is None else now
        horizon = now - rule.window_seconds
        with self._lock:
            self._since_prune += 1
            due = self._since_prune >= self._prune_every
            if due:
                self._since_prune = 0
            recent = [t for t in self._hits[key] if t > horizon]
            allowed = len(recent) < rule.limit
            if allowed:
                recent.append(now)
            self._hits[key] = recent
        if due:
            self.prune(max_age_seconds=max(MAX_WINDOW_SECONDS, rule.window_seconds), now=now)
        if not allowed:
            return False, 0
        return True, rule.limit - len(recent)

    def prune(self, max_age_seconds: int = 3600, now: float = None) -> int:
        """Forget hits older than max_age_seconds; returns how many were dropped."""
        cutoff = (time.time() if now is None else now) - max_age_seconds
        dropped = 0
        with self._lock:
            for key in list(self._hits):
                kept = [t for t in self._hits[key] if t > cutoff]
                dropped += len(self._hits[key]) - len(kept)
                if kept:
                    self._hits[key] = kept
                else:
                    del self._hits[key]
        if dropped:
            logger.debug(f"Pruned {dropped} rate limit entries")
        return dropped

    def reset(self):
        with self._lock:
            self._hits.clear()
            self._since_prune = 0


limiter = SlidingWindowLimiter()


def get_rate_rule(method: str, path: str) -> Optional[RateRule]:
    return RATE_RULES.get((method.upper(), path.rstrip("/") or "/"))


def reset_rate_limits():
    limiter.reset()


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Answers 429 once a client exceeds the rule for a limited route."""

    async def dispatch(self, request: Request, call_next) -> Response:
        rule = get_rate_rule(request.method, request.url.path)
        if rule is None:
            return await call_next(request)

        key = f"{request.method} {request.url.path} {get_client_ip(request)}"
        allowed, remaining = limiter.hit(key, rule)
        if not allowed:
            logger.warning(f"Rate limited: {key}")
            return JSONResponse(
                status_code=429,
                content={"success": False, "error": "Too many requests, please slow down"},
                headers={"Retry-After": str(rule.window_seconds)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(rule.limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response


# ─────────────────────────── SECURITY HEADERS ───────────────────────────

SECURITY_HEADERS = {
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

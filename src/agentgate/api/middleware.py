"""
HTTP admission middleware.

Implements, for every non-static request:
- Block list → 403 Access denied
- /api/ paths → sliding-window admission (429 with rate headers when denied)
- Store outage under fail-closed → 503
- Bot / crawler / spider user agents → bot_traffic report
- /projects/ and /agents/ paths with less than half of the api window left
  → rapid_requests report (read-only peek, no slot consumed)

Rate headers on every /api/ response:
    X-RateLimit-Limit, X-RateLimit-Remaining, X-RateLimit-Reset (ISO-8601)
"""

import logging
import math
import re
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Sequence

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ..admission import AdmissionController, AdmissionDecision, DenialReason
from ..core.config import RateCategory
from ..core.errors import StoreUnavailable
from ..limits.sliding_window import RateLimitDecision
from ..security.models import ActivityKind, BotTraffic, RapidRequests

logger = logging.getLogger(__name__)

DEFAULT_SKIP_PREFIXES = ("/_next/", "/static/", "/favicon.ico")
BOT_PATTERN = re.compile(r"bot|crawler|spider", re.IGNORECASE)
WATCHED_PREFIXES = ("/projects/", "/agents/")
STATIC_FILE_PATTERN = re.compile(r"\.[A-Za-z0-9]+$")


def get_client_ip(request: Request) -> str:
    """
    Extract client IP from request.

    Handles X-Forwarded-For (first hop), CF-Connecting-IP (Cloudflare)
    and direct connections.
    """
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    cf_ip = request.headers.get("cf-connecting-ip")
    if cf_ip:
        return cf_ip

    if request.client:
        return request.client.host

    return "unknown"


def rate_limit_headers(rate: RateLimitDecision, now_ms: int) -> Dict[str, str]:
    reset = datetime.fromtimestamp(rate.reset_time / 1000, tz=timezone.utc)
    headers = {
        "X-RateLimit-Limit": str(rate.limit),
        "X-RateLimit-Remaining": str(rate.remaining),
        "X-RateLimit-Reset": reset.isoformat().replace("+00:00", "Z"),
    }
    if not rate.allowed:
        headers["Retry-After"] = str(max(1, math.ceil((rate.reset_time - now_ms) / 1000)))
    return headers


class AdmissionMiddleware(BaseHTTPMiddleware):
    """
    Admission control for a FastAPI/Starlette application.

    Usage::

        controller = AdmissionController(load_security_config(), SQLiteStore())
        app.add_middleware(AdmissionMiddleware, controller=controller)
    """

    def __init__(
        self,
        app,
        controller: AdmissionController,
        skip_prefixes: Optional[Sequence[str]] = None,
        api_prefix: str = "/api/",
    ):
        super().__init__(app)
        self.controller = controller
        self.skip_prefixes = tuple(skip_prefixes or DEFAULT_SKIP_PREFIXES)
        self.api_prefix = api_prefix

    def _skip(self, path: str) -> bool:
        return path.startswith(self.skip_prefixes) or bool(STATIC_FILE_PATTERN.search(path))

    async def dispatch(self, request: Request, call_next: Callable):
        path = request.url.path
        if self._skip(path):
            return await call_next(request)

        ip = get_client_ip(request)

        # admit() screens first, so non-api paths only need the screen
        if path.startswith(self.api_prefix):
            decision = await self.controller.admit(ip, RateCategory.API)
        else:
            decision = await self.controller.screen(ip)
        if not decision.allowed:
            return self._deny(decision, now_ms=self.controller.now())
        rate = decision.rate

        await self._detect_suspicious(request, ip, path)

        response = await call_next(request)
        if rate is not None:
            response.headers.update(rate_limit_headers(rate, self.controller.now()))
        return response

    async def _detect_suspicious(self, request: Request, ip: str, path: str) -> None:
        user_agent = request.headers.get("user-agent", "")
        if BOT_PATTERN.search(user_agent):
            await self._report(
                ip,
                ActivityKind.BOT_TRAFFIC,
                BotTraffic(
                    user_agent=user_agent,
                    pathname=path,
                    referer=request.headers.get("referer", ""),
                ),
            )

        if path.startswith(WATCHED_PREFIXES):
            try:
                window = await self.controller.peek_rate(ip, RateCategory.API)
            except StoreUnavailable:
                logger.warning("Rate peek failed for %s on %s", ip, path)
                return
            if window.remaining < window.limit * 0.5:
                await self._report(
                    ip,
                    ActivityKind.RAPID_REQUESTS,
                    RapidRequests(pathname=path, remaining=window.remaining),
                )

    async def _report(self, ip: str, activity: ActivityKind, metadata) -> None:
        try:
            await self.controller.report_suspicious_activity(ip, activity, metadata)
        except Exception:
            # Reporting never changes the outcome of the request
            logger.warning(
                "Failed to record %s for %s", activity.value, ip, exc_info=True
            )

    def _deny(self, decision: AdmissionDecision, now_ms: int) -> JSONResponse:
        if decision.reason in (DenialReason.BLOCKED, DenialReason.SUSPENDED):
            return JSONResponse({"error": "Access denied"}, status_code=403)

        if decision.reason == DenialReason.STORE_UNAVAILABLE:
            return JSONResponse(
                {"error": decision.message or "Service temporarily unavailable"},
                status_code=503,
            )

        headers = rate_limit_headers(decision.rate, now_ms) if decision.rate else {}
        return JSONResponse(
            {"error": decision.message or "Too many requests"},
            status_code=429,
            headers=headers,
        )

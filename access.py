import logging
import threading
import time
from collections import defaultdict, deque
from typing import Any, Deque, Dict, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import Settings, get_settings
from errors import AccountInactive, AppError, Forbidden, RateLimited, Unauthorized
from identity import IdentityEngine, get_identity

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def authenticate(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
                 identity: IdentityEngine = Depends(get_identity)) -> Dict[str, Any]:
    if credentials is None or not credentials.credentials:
        raise Unauthorized()
    user = identity.resolve_session(credentials.credentials)
    if not user.get("isActive", True):
        raise AccountInactive()
    return user


def require_admin(user: Dict[str, Any] = Depends(authenticate)) -> Dict[str, Any]:
    if user.get("role") != "admin":
        raise Forbidden("Admin access required")
    return user


def optional_authenticate(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
                          identity: IdentityEngine = Depends(get_identity)) -> Optional[Dict[str, Any]]:
    if credentials is None or not credentials.credentials:
        return None
    try:
        user = identity.resolve_session(credentials.credentials)
    except AppError:
        return None
    if not user.get("isActive", True):
        return None
    return user


class RateLimiter:
    """Sliding-window request limit per client IP, used as a route dependency.

    IPs whose window has emptied are swept out at most once per window.
    """

    def __init__(self, limit_setting: str, message: str, clock=time.monotonic):
        self.limit_setting = limit_setting
        self.message = message
        self.clock = clock
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._last_sweep: Optional[float] = None
        self._lock = threading.Lock()

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
            self._last_sweep = None

    def tracked(self) -> int:
        with self._lock:
            return len(self._hits)

    def _sweep(self, now: float, window: float) -> None:
        stale = [ip for ip, hits in self._hits.items() if not hits or now - hits[-1] >= window]
        for ip in stale:
            del self._hits[ip]
        self._last_sweep = now

    def __call__(self, request: Request, settings: Settings = Depends(get_settings)) -> None:
        limit = getattr(settings, self.limit_setting)
        window = settings.rate_limit_window_minutes * 60
        ip = request.client.host if request.client else "unknown"
        now = self.clock()
        with self._lock:
            if self._last_sweep is None or now - self._last_sweep >= window:
                self._sweep(now, window)
            hits = self._hits[ip]
            while hits and now - hits[0] >= window:
                hits.popleft()
            if len(hits) >= limit:
                logger.warning("Rate limit hit on %s for %s", request.url.path, ip)
                raise RateLimited(self.message)
            hits.append(now)


otp_send_limiter = RateLimiter("otp_send_limit", "Too many OTP requests, please try again later")
otp_verify_limiter = RateLimiter("otp_verify_limit", "Too many login attempts, please try again later")

"""
Global slowapi rate limiter.

Imported by auth/router.py for per-endpoint limits.  Mounted onto app.state in
main.py so slowapi middleware can find it.

Storage: in-process memory by default (the OTP ledgers are single-process
too).  Point RATE_LIMIT_STORAGE_URI at a shared backend to change that, or set
RATE_LIMIT_ENABLED=false to switch limiting off.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.config import get_settings

# Per-endpoint limits, keyed by client IP
SIGNUP_LIMIT = "5/hour"
OTP_REQUEST_LIMIT = "5/10minutes"
LOGIN_LIMIT = "10/15minutes"
OTP_VERIFY_LIMIT = "20/10minutes"

_settings = get_settings()

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=_settings.rate_limit_storage_uri,
    enabled=_settings.rate_limit_enabled,
)

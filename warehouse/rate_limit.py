"""Shared rate limiter instance for use across routers.

Counters live in process memory, keyed by client address and endpoint, so
limits are approximate and not shared between workers.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import RATE_LIMIT_ENABLED, RATE_LIMIT_DEFAULT, RATE_LIMIT_LOGIN

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[RATE_LIMIT_DEFAULT],
    enabled=RATE_LIMIT_ENABLED,
)

LOGIN_LIMIT = RATE_LIMIT_LOGIN

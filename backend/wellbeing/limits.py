from slowapi import Limiter
from slowapi.util import get_remote_address
import os

RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").strip().lower() in {
    "1", "true", "yes", "on"
}

# Shared by the app state and every router decorator
limiter = Limiter(key_func=get_remote_address, enabled=RATE_LIMIT_ENABLED)

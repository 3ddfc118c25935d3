import os
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

PLACEHOLDER_API_KEY = "your_api_key_here"
FALLBACK_USER_AGENT = "halfway/0.1 (meeting point finder)"


def _as_float(val: Optional[str], default: float) -> float:
    if val is None or val == '':
        return default
    try:
        return float(val)
    except ValueError:
        return default


def _as_int(val: Optional[str], default: int) -> int:
    if val is None or val == '':
        return default
    try:
        return int(val)
    except ValueError:
        return default


class Settings:
    """Runtime configuration read from the environment (and .env)"""

    def __init__(self) -> None:
        api_key = os.getenv('GOOGLE_MAPS_API_KEY')
        if api_key == PLACEHOLDER_API_KEY:
            api_key = None
        self.GOOGLE_MAPS_API_KEY: Optional[str] = api_key or None
        self.PLACES_BACKEND: str = os.getenv('HALFWAY_PLACES_BACKEND', 'google').lower()

        self.DEFAULT_RADIUS_M: float = _as_float(os.getenv('HALFWAY_DEFAULT_RADIUS_M'), 1000.0)
        self.MAX_RETRY_RADIUS_M: float = _as_float(os.getenv('HALFWAY_MAX_RETRY_RADIUS_M'), 5000.0)
        self.RESULTS_PER_QUERY: int = _as_int(os.getenv('HALFWAY_RESULTS_PER_QUERY'), 5)
        self.MAX_ORIGINS: int = _as_int(os.getenv('HALFWAY_MAX_ORIGINS'), 5)
        self.ENRICHMENT_INTERVAL_S: float = _as_float(os.getenv('HALFWAY_ENRICHMENT_INTERVAL_S'), 1.0)
        self.REQUEST_TIMEOUT_S: float = _as_float(os.getenv('HALFWAY_REQUEST_TIMEOUT_S'), 10.0)
        self.SESSION_TTL_S: float = _as_float(os.getenv('HALFWAY_SESSION_TTL_S'), 1800.0)
        self.MAX_SESSIONS: int = _as_int(os.getenv('HALFWAY_MAX_SESSIONS'), 100)

        self.NOMINATIM_USER_AGENT: str = os.getenv('NOMINATIM_USER_AGENT') or FALLBACK_USER_AGENT
        self.NOMINATIM_MIN_INTERVAL: float = _as_float(os.getenv('NOMINATIM_MIN_INTERVAL'), 1.1)

        self.LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO').upper()
        self.LOG_FILE: Optional[str] = os.getenv('LOG_FILE', 'app.log') or None
        self.HOST: str = os.getenv('HOST', '0.0.0.0')
        self.PORT: int = _as_int(os.getenv('PORT'), 5001)

    @property
    def has_google_key(self) -> bool:
        return bool(self.GOOGLE_MAPS_API_KEY)


settings = Settings()

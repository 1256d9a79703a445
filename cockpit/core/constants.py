"""
Centralized constants for the cockpit backend.

Every value reads from an environment variable with a hardcoded default,
so a bare deployment runs without any configuration.
"""
import os
from pathlib import Path
from datetime import datetime, timezone

# --- Logging ---
LOG_LEVEL = os.getenv("COCKPIT_LOG_LEVEL", "INFO")

# --- API ---
API_VERSION = os.getenv("COCKPIT_API_VERSION", "1.0.0")
API_HOST = os.getenv("COCKPIT_HOST", "0.0.0.0")
API_PORT = int(os.getenv("COCKPIT_PORT", "5000"))

# --- Query execution ---
QUERY_TIMEOUT = float(os.getenv("COCKPIT_QUERY_TIMEOUT", "30.0"))
EXECUTION_RETRIES = int(os.getenv("COCKPIT_EXECUTION_RETRIES", "1"))

# --- Row limits ---
OVERRIDE_ROW_LIMIT = int(os.getenv("COCKPIT_OVERRIDE_ROW_LIMIT", "100"))
LIST_ROW_LIMIT = int(os.getenv("COCKPIT_LIST_ROW_LIMIT", "100"))
DRILL_DOWN_LIMIT = int(os.getenv("COCKPIT_DRILL_DOWN_LIMIT", "100"))
SPARKLINE_POINTS = int(os.getenv("COCKPIT_SPARKLINE_POINTS", "12"))

# --- Cache TTLs (seconds) ---
DEFAULT_CACHE_TTL = int(os.getenv("COCKPIT_DEFAULT_CACHE_TTL", "300"))
CACHE_BACKEND = os.getenv("COCKPIT_CACHE_BACKEND", "memory")

# --- Refresh scheduling ---
REFRESH_DEBOUNCE = float(os.getenv("COCKPIT_REFRESH_DEBOUNCE", "0.3"))

# --- Analytical store ---
DATABASE_URL = os.getenv("COCKPIT_DATABASE_URL", "sqlite:///:memory:")
CLICKHOUSE_URL = os.getenv("CLICKHOUSE_URL", "http://localhost:8123")
CLICKHOUSE_DATABASE = os.getenv("CLICKHOUSE_DATABASE", "analytics")
CLICKHOUSE_USER = os.getenv("CLICKHOUSE_USER", "default")
CLICKHOUSE_PASSWORD = os.getenv("CLICKHOUSE_PASSWORD", "")

# --- Redis ---
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_KEY_PREFIX = os.getenv("COCKPIT_REDIS_PREFIX", "cockpit:")

# --- Catalog ---
CONFIG_DIR = Path(__file__).parent.parent / "config"
CATALOG_PATH = Path(os.getenv("COCKPIT_CATALOG_PATH", str(CONFIG_DIR / "catalog.yaml")))

# --- CORS ---
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")


def utc_now() -> str:
    """Return current UTC time as ISO-8601 string. Single format everywhere."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

"""Central configuration for the security log analyzer.

All tunables such as file paths, reputation service settings and detection
baselines are defined here so they can easily be modified or injected via
environment variables.  This keeps the rest of the code base clean and focused
on business logic.
"""

import os
from pathlib import Path

# Base directory for operational files.  ``SECURELOG_HOME`` allows moving the
# working area without changing code.
BASE_DIR = Path(os.getenv("SECURELOG_HOME", Path.cwd())).resolve()

# Paths for input logs and exported results.  They can be overridden via env
# vars; the CLI also accepts explicit paths.
DEFAULT_TARGET_LOG_DIR = "/var/log/securelog"
DEFAULT_ANALYSIS_OUTPUT_FILE = BASE_DIR / "threat_report.json"
DEFAULT_OPERATIONAL_LOG_FILE = BASE_DIR / "securelog_analyzer.log"

TARGET_LOG_DIR = Path(os.getenv("SECURELOG_TARGET_LOG_DIR", DEFAULT_TARGET_LOG_DIR))
ANALYSIS_OUTPUT_FILE = Path(os.getenv("SECURELOG_ANALYSIS_OUTPUT_FILE", str(DEFAULT_ANALYSIS_OUTPUT_FILE)))
OPERATIONAL_LOG_FILE = Path(os.getenv("SECURELOG_OPERATIONAL_LOG_FILE", str(DEFAULT_OPERATIONAL_LOG_FILE)))
LOG_FILE_SUFFIXES = [".log", ".txt", ".gz", ".bz2"]

# Parsing limits.
MAX_PARSE_ERRORS = int(os.getenv("SECURELOG_MAX_PARSE_ERRORS", 10))
MIN_LINE_LENGTH = int(os.getenv("SECURELOG_MIN_LINE_LENGTH", 10))

# Behavioral baselines used by the statistical anomaly detector when the
# caller does not supply its own.
BASELINE_REQUESTS_PER_HOUR = float(os.getenv("SECURELOG_BASELINE_REQUESTS_PER_HOUR", 10))
BASELINE_FAILED_AUTH_PER_DAY = float(os.getenv("SECURELOG_BASELINE_FAILED_AUTH_PER_DAY", 2))

# Number of worker threads used to run detection methods per source.
DETECTION_WORKERS = int(os.getenv("SECURELOG_DETECTION_WORKERS", 4))

# External reputation (AbuseIPDB) integration.  When no key is present the
# client silently uses the local heuristic store instead.
ABUSEIPDB_API_KEY = os.getenv("ABUSEIPDB_API_KEY")
ABUSEIPDB_API_URL = os.getenv("SECURELOG_ABUSEIPDB_API_URL", "https://api.abuseipdb.com/api/v2")
REPUTATION_API_ENABLED = bool(ABUSEIPDB_API_KEY)
REPUTATION_TIMEOUT = float(os.getenv("SECURELOG_REPUTATION_TIMEOUT", 5))
REPUTATION_MAX_AGE_DAYS = int(os.getenv("SECURELOG_REPUTATION_MAX_AGE_DAYS", 90))
REPUTATION_CACHE_TTL_HOURS = float(os.getenv("SECURELOG_REPUTATION_CACHE_TTL_HOURS", 24))
# Courtesy delay between consecutive external lookups in a batch, and the
# back-off applied after a 429 when the service sends no Retry-After header.
REPUTATION_BATCH_DELAY = float(os.getenv("SECURELOG_REPUTATION_BATCH_DELAY", 1.0))
REPUTATION_RATE_LIMIT_BACKOFF = float(os.getenv("SECURELOG_REPUTATION_RATE_LIMIT_BACKOFF", 60))

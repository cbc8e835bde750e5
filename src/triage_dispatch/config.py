import os
from pathlib import Path

TRIAGE_SERVICE_URL = os.getenv("TRIAGE_SERVICE_URL", "")
CLASSIFIER_TIMEOUT_SECONDS = float(os.getenv("CLASSIFIER_TIMEOUT_SECONDS", "2.0"))
POOL_TIMEOUT_SECONDS = float(os.getenv("POOL_TIMEOUT_SECONDS", "2.0"))

AVERAGE_SPEED_KMH = float(os.getenv("AVERAGE_SPEED_KMH", "40"))
ETA_MIN_MINUTES = int(os.getenv("ETA_MIN_MINUTES", "5"))
ETA_MAX_MINUTES = int(os.getenv("ETA_MAX_MINUTES", "30"))

DEFAULT_ETA_LOW_MINUTES = int(os.getenv("DEFAULT_ETA_LOW_MINUTES", "5"))
DEFAULT_ETA_HIGH_MINUTES = int(os.getenv("DEFAULT_ETA_HIGH_MINUTES", "20"))
DEFAULT_UNIT_SEED = int(os.getenv("DEFAULT_UNIT_SEED", "0"))
STANDBY_UNIT_CAPACITY = int(os.getenv("STANDBY_UNIT_CAPACITY", "100"))

PENDING_TIMEOUT_MINUTES = int(os.getenv("PENDING_TIMEOUT_MINUTES", "60"))
MAX_FACILITY_RADIUS_KM = float(os.getenv("MAX_FACILITY_RADIUS_KM", "100"))

_db_path = os.getenv("CASE_DB_PATH", "")
CASE_DB_PATH = Path(_db_path) if _db_path else None

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

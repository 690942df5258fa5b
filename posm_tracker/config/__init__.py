"""
POSM Tracker — Configuration & Constants
Environment variables, feature flags, status vocabulary, cascade method names.
"""
import os
import logging
from pathlib import Path

# ============================================================
# PATHS
# ============================================================
BASE_DIR = Path(__file__).parent.parent.parent
DATA_DIR = Path(os.environ.get("POSM_DATA_DIR", BASE_DIR / "data"))
SNAPSHOT_PATH = Path(os.environ.get("POSM_SNAPSHOT_PATH", DATA_DIR / "snapshot.json"))

# ============================================================
# FEATURE FLAGS
# ============================================================
LOG_LEVEL = os.environ.get("POSM_LOG_LEVEL", "INFO").upper()
MAX_WORKERS = int(os.environ.get("POSM_MAX_WORKERS", "4"))
RECENT_DISPLAY_DAYS = int(os.environ.get("POSM_RECENT_DISPLAY_DAYS", "90"))

# ============================================================
# STATUS VOCABULARY
# ============================================================
STATUS_COMPLETE = "complete"
STATUS_PARTIAL = "partial"
STATUS_NOT_VERIFIED = "not_verified"
STATUS_NO_DISPLAYS = "no_displays"
STATUSES = [STATUS_COMPLETE, STATUS_PARTIAL, STATUS_NOT_VERIFIED, STATUS_NO_DISPLAYS]

# Matrix cells use their own vocabulary (a store may not carry a model at all)
CELL_COMPLETE = "complete"
CELL_PARTIAL = "partial"
CELL_NONE = "none"
CELL_NOT_APPLICABLE = "not_applicable"

UNKNOWN = "Unknown"

# ============================================================
# IDENTITY CASCADE METHODS (precedence order)
# ============================================================
METHOD_EXACT_NAME = "exact_store_name"
METHOD_EXACT_ID = "exact_identifier"
METHOD_PARTIAL_NAME = "strict_partial_name"
METHOD_ID_IN_NAME = "identifier_in_name"
METHOD_LABEL_IN_NAME = "label_in_name"
METHOD_NONE = "none"

# ============================================================
# AUDIT CONFIDENCE LEVELS
# ============================================================
CONFIDENCE_HIGH = "high"
CONFIDENCE_MEDIUM = "medium"
CONFIDENCE_LOW = "low"


def configure_logging(level: str = None) -> None:
    """Configure root logging once for the service process."""
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

"""
Application constants and enumerations
"""

from enum import Enum
from typing import Final

# =============================================================================
# Application Info
# =============================================================================

APP_NAME: Final[str] = "SQL Advisor"
APP_VERSION: Final[str] = "1.0.0"

# =============================================================================
# File Paths
# =============================================================================

CONFIG_FILE: Final[str] = "settings.json"
LOG_FILE: Final[str] = "sqladvisor.log"

# =============================================================================
# AI/LLM Constants
# =============================================================================

DEFAULT_OLLAMA_HOST: Final[str] = "http://localhost:11434"
DEFAULT_MODEL: Final[str] = "gemma3:12b"
GENERATE_ENDPOINT: Final[str] = "/api/generate"
TAGS_ENDPOINT: Final[str] = "/api/tags"

AI_RESPONSE_TIMEOUT: Final[int] = 300  # seconds
AI_CONNECT_TIMEOUT: Final[int] = 10  # seconds
BACKEND_PROBE_TIMEOUT: Final[float] = 5.0  # seconds

DEFAULT_MAX_PLAN_LENGTH: Final[int] = 10_000  # characters
PLAN_TRUNCATED_MARKER: Final[str] = "\n... (plan truncated)"
PLAN_NOT_PROVIDED: Final[str] = "Not Provided"

DEFAULT_PROGRESS_QUEUE_SIZE: Final[int] = 256
QUERY_PREVIEW_LENGTH: Final[int] = 200

# Backend error text that triggers the "pull the model" hint.
# Matches both `model not found` and `model "gemma3:12b" not found`.
MODEL_NOT_FOUND_PATTERN: Final[str] = r"model\s+(?:\S+\s+)?not\s+found"

# =============================================================================
# Enumerations
# =============================================================================


class BackendKind(str, Enum):
    """Recommendation backend types"""
    OLLAMA = "ollama"
    ON_DEVICE = "on_device"


class RecommendationStatus(str, Enum):
    """Final status of a recommendation request"""
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"

"""
Configuration constants for the book recommender.

This module centralizes all magic numbers and configurable parameters.
Values can be overridden via environment variables.
"""
import os
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def _get_float_env(key: str, default: float, min_val: float = 0) -> float:
    """
    Safely parse float from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated float value
    """
    try:
        val = float(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_int_env(key: str, default: int, min_val: int = 1) -> int:
    """
    Safely parse integer from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated integer value
    """
    try:
        val = int(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


# Storage
DB_PATH = Path(os.environ.get("BOOKREC_DB", "data/bookrec.db"))
SCORING_WEIGHTS_PATH = Path(os.environ.get("BOOKREC_WEIGHTS", "data/scoring_weights.json"))

# Request limits
DEFAULT_LIMIT = 10
MAX_LIMIT = 100

# Rating scale
MIN_RATING_VALUE = 1.0
MAX_RATING_VALUE = 5.0
NEUTRAL_RATING = 3.0

# Preference learning
DEFAULT_LEARNING_RATE = _get_float_env("BOOKREC_LEARNING_RATE", 0.1, min_val=0.0)
DEFAULT_AFFINITY = 0.5  # Starting point for genres never updated before

# Candidate filtering
DEFAULT_MIN_RATING = _get_float_env("BOOKREC_MIN_RATING", 0.0, min_val=0.0)
MAX_STATED_PREFERENCES = _get_int_env("BOOKREC_MAX_STATED_PREFERENCES", 20, min_val=1)

# Scoring
POPULARITY_CAP = 1000  # rating_count at which popularity saturates
WEIGHTS = {
    'genre': 0.6,
    'quality': 0.3,
    'popularity': 0.1,
}
MAX_COMPONENT_WEIGHT = 10.0

# Explanations
EXPLANATION_AFFINITY_THRESHOLD = 0.6
EXPLANATION_MAX_GENRES = 2
HIGHLY_RATED_THRESHOLD = 4.5

# Bump when scoring weights or formulas change
ALGORITHM_VERSION = "genre-affinity-1"

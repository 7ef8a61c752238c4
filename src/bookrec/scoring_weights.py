"""
Utilities for loading and applying the composite score weights.

Weights are stored per score component (genre affinity, book quality,
popularity) and may be loaded from a JSON file. When no file is available
the recommender falls back to the defaults in ``config.WEIGHTS``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import MAX_COMPONENT_WEIGHT, SCORING_WEIGHTS_PATH, WEIGHTS

logger = logging.getLogger(__name__)

MIN_WEIGHT = 0.0
MAX_WEIGHT = MAX_COMPONENT_WEIGHT
COMPONENTS = ("genre", "quality", "popularity")


def _clamp_weight(value: float) -> float:
    return max(MIN_WEIGHT, min(MAX_WEIGHT, value))


@dataclass
class ScoringWeights:
    """Per-component multipliers for the composite score."""

    genre: float = WEIGHTS['genre']
    quality: float = WEIGHTS['quality']
    popularity: float = WEIGHTS['popularity']
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Clamp values; anything unparseable reverts to the default."""
        for name in COMPONENTS:
            raw = getattr(self, name)
            try:
                value = _clamp_weight(float(raw))
            except (TypeError, ValueError):
                logger.warning(f"Invalid {name} weight {raw!r}, using default {WEIGHTS[name]}")
                value = WEIGHTS[name]
            setattr(self, name, value)

    def items(self) -> list[tuple[str, float]]:
        return [(name, getattr(self, name)) for name in COMPONENTS]

    @property
    def total(self) -> float:
        return sum(weight for _, weight in self.items())

    def to_dict(self) -> dict[str, Any]:
        return {
            "metadata": self.metadata,
            "genre": self.genre,
            "quality": self.quality,
            "popularity": self.popularity,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ScoringWeights":
        return cls(
            genre=payload.get("genre", WEIGHTS['genre']),
            quality=payload.get("quality", WEIGHTS['quality']),
            popularity=payload.get("popularity", WEIGHTS['popularity']),
            metadata=payload.get("metadata", {}),
        )


def load_scoring_weights(path: str | Path | None = None) -> ScoringWeights | None:
    """Load weights from disk; return None if missing or invalid."""
    weight_path = Path(path) if path else SCORING_WEIGHTS_PATH
    if not weight_path.exists():
        logger.debug("Scoring weights file not found at %s; using defaults", weight_path)
        return None

    try:
        return ScoringWeights.from_dict(json.loads(weight_path.read_text()))
    except (OSError, ValueError, AttributeError) as exc:
        logger.warning("Failed to load scoring weights from %s: %s", weight_path, exc)
        return None


def save_scoring_weights(weights: ScoringWeights, path: str | Path | None = None) -> Path:
    """Persist weights to disk."""
    weight_path = Path(path) if path else SCORING_WEIGHTS_PATH
    weight_path.parent.mkdir(parents=True, exist_ok=True)
    weight_path.write_text(json.dumps(weights.to_dict(), indent=2))
    return weight_path

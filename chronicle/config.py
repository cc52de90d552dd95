"""
Engine configuration.

Thresholds and text-normalization knobs shared by the resolver, the merger and
the location report. Values come from dataclass defaults, optionally overridden
by a YAML file and then by command-line flags.
"""
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml

from chronicle.logger import get_logger

logger = get_logger(__name__)


# ===| DEFAULTS |===

# Polish case endings first (the campaign is written in Polish), then English
# plural and possessive forms. Longest first so "ami" wins over "i".
DEFAULT_STEM_SUFFIXES: List[str] = [
    "owie", "iego", "iemu", "ami", "ach", "owi", "ego", "emu", "iej", "ych",
    "ymi", "imi", "ów", "om", "ie", "ej", "ą", "ę", "a", "u", "y", "i", "e", "o",
    "'s", "es", "s",
]

DEFAULT_ROUTE_SEPARATOR_PATTERN = r"\s*(?:->|=>|→|»)\s*|\s+[-–—]\s+"

DEFAULT_TRAILING_DECORATION_CHARS = "*?!.,;:~#"

REGISTRY_LAYER = "registry"
SESSION_LOG_LAYER = "session_log"


# ===| CONFIG |===

@dataclass
class EngineConfig:
    """Configuration for name resolution, merging and location reporting."""

    # Name resolver
    fuzzy_max_distance: int = 2
    min_fuzzy_query_length: int = 3

    # Stem index
    min_stem_length: int = 3
    stem_suffixes: List[str] = field(default_factory=lambda: list(DEFAULT_STEM_SUFFIXES))

    # Location report
    near_duplicate_max_distance: int = 2
    trailing_decoration_chars: str = DEFAULT_TRAILING_DECORATION_CHARS
    route_separator_pattern: str = DEFAULT_ROUTE_SEPARATOR_PATTERN
    hierarchy_separator: str = "/"
    include_references: bool = False

    # Layered merge: earlier layers are overridden by later ones on ties
    layer_priority: Tuple[str, ...] = (REGISTRY_LAYER, SESSION_LOG_LAYER)

    def __post_init__(self):
        if self.fuzzy_max_distance < 0:
            raise ValueError(f"fuzzy_max_distance must be >= 0, got {self.fuzzy_max_distance}")
        if self.near_duplicate_max_distance < 1:
            raise ValueError(
                f"near_duplicate_max_distance must be >= 1, got {self.near_duplicate_max_distance}"
            )
        if not self.hierarchy_separator:
            raise ValueError("hierarchy_separator must not be empty")
        self.layer_priority = tuple(self.layer_priority)
        # Longest suffix must be tried first
        self.stem_suffixes = sorted(self.stem_suffixes, key=len, reverse=True)
        re.compile(self.route_separator_pattern)

    @property
    def route_separator_regex(self) -> re.Pattern:
        return re.compile(self.route_separator_pattern)

    @classmethod
    def from_yaml(cls, path: Path) -> "EngineConfig":
        """Load configuration from a YAML file."""
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise TypeError(f"Expected YAML top-level mapping (dict), got {type(data).__name__}")

        logger.info(f"Loaded engine config from {path}")
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Create from dictionary, ignoring unknown keys with a warning."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known})

    def with_overrides(self, **overrides: Any) -> "EngineConfig":
        """Return a copy with non-None overrides applied (CLI flags)."""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data.update({k: v for k, v in overrides.items() if v is not None})
        return EngineConfig(**data)
